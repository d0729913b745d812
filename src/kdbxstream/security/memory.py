"""Zeroizable container for key material."""

from __future__ import annotations

from types import TracebackType

from .crypto import constant_time_compare


class SecureBytes:
    """Mutable byte buffer that can be overwritten with zeros.

    Python cannot guarantee that no copy of a secret survives somewhere
    in the heap, but keeping keys in a bytearray and clearing it as soon
    as the operation ends keeps the window short.

    Example:
        >>> with SecureBytes(b"secret") as key:
        ...     use(key.data)
    """

    __slots__ = ("_buffer", "_zeroized")

    def __init__(self, data: bytes | bytearray) -> None:
        self._buffer = bytearray(data)
        self._zeroized = False

    @property
    def data(self) -> bytes:
        """Return a copy of the buffer contents.

        Raises:
            ValueError: If the buffer has already been zeroized
        """
        if self._zeroized:
            raise ValueError("SecureBytes has been zeroized")
        return bytes(self._buffer)

    @property
    def is_zeroized(self) -> bool:
        """Whether zeroize() has been called."""
        return self._zeroized

    def zeroize(self) -> None:
        """Overwrite the buffer with zeros."""
        for i in range(len(self._buffer)):
            self._buffer[i] = 0
        self._zeroized = True

    def __len__(self) -> int:
        return len(self._buffer)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, SecureBytes):
            return constant_time_compare(bytes(self._buffer), bytes(other._buffer))
        return NotImplemented

    def __hash__(self) -> int:
        # Identity hash: contents are secret and mutable
        return id(self)

    def __enter__(self) -> SecureBytes:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.zeroize()

    def __del__(self) -> None:
        if getattr(self, "_buffer", None) is not None:
            self.zeroize()

    def __repr__(self) -> str:
        return f"SecureBytes(<{len(self._buffer)} bytes>)"
