"""kdbxstream - read and write KeePass KDBX 3.x databases.

The load pipeline runs header parsing, key derivation, payload
decryption and a streaming XML parse that decrypts protected values in
document order. Saving runs it in reverse with fresh key material.

Example:
    from kdbxstream import Credentials, Database, PrintVisitor

    creds = Credentials(password="123")
    db = Database.load(creds, "vault.kdbx")
    db.visit(PrintVisitor())

    group = db.root_group.add_subgroup(db.new_group("Email"))
    group.add_entry(db.new_entry(title="Gmail", username="me"))
    db.save(creds, "vault.kdbx")
"""

__version__ = "0.1.0"

from .credentials import Credentials
from .database import Database, DatabaseSettings, DatabaseState, LoadStrategy
from .exceptions import (
    AuthenticationError,
    CorruptedDataError,
    CredentialError,
    CryptoError,
    DecryptionError,
    FormatError,
    InvalidKeyFileError,
    InvalidSignatureError,
    KdbxError,
    MissingCredentialsError,
    ParseError,
    UnknownCipherError,
    UnknownCompressionError,
    UnknownKdfError,
    UnknownStreamCipherError,
    UnsupportedFormatError,
    UnsupportedVersionError,
)
from .models import (
    BaseVisitor,
    Entry,
    Group,
    HistoryEntry,
    PrintVisitor,
    StringField,
    Times,
    splice,
    walk,
)
from .parsing import CompressionType
from .security import AesKdfConfig, Cipher, KdfType, ProtectedStreamId

__all__ = [
    # Core classes
    "AesKdfConfig",
    "Cipher",
    "CompressionType",
    "Credentials",
    "Database",
    "DatabaseSettings",
    "DatabaseState",
    "Entry",
    "Group",
    "HistoryEntry",
    "KdfType",
    "LoadStrategy",
    "ProtectedStreamId",
    "StringField",
    "Times",
    # Tree operations
    "BaseVisitor",
    "PrintVisitor",
    "splice",
    "walk",
    # Exceptions
    "KdbxError",
    "FormatError",
    "InvalidSignatureError",
    "UnsupportedVersionError",
    "CorruptedDataError",
    "UnsupportedFormatError",
    "UnknownCipherError",
    "UnknownKdfError",
    "UnknownCompressionError",
    "UnknownStreamCipherError",
    "CryptoError",
    "DecryptionError",
    "AuthenticationError",
    "CredentialError",
    "InvalidKeyFileError",
    "MissingCredentialsError",
    "ParseError",
]
