"""Bounds-checked big-endian byte cursor and writer used by every codec."""

from __future__ import annotations

from typing import List

from liquidity_relayer.core.errors import DecodeError
from liquidity_relayer.core.utils import UNIVERSAL_ADDRESS_LENGTH, BytesLike

U8_MAX = 2**8 - 1
U16_MAX = 2**16 - 1
U32_MAX = 2**32 - 1
U64_MAX = 2**64 - 1
U256_MAX = 2**256 - 1


class Reader:
    """Read fixed-width fields from a buffer, tracking the offset.

    Every read validates that enough bytes remain and raises
    :class:`DecodeError` otherwise, so callers never slice out of range.
    """

    def __init__(self, data: BytesLike, *, offset: int = 0) -> None:
        self._data = bytes(data)
        if offset < 0 or offset > len(self._data):
            raise DecodeError(f"Offset {offset} outside buffer of {len(self._data)} bytes")
        self._offset = offset

    @property
    def offset(self) -> int:
        return self._offset

    @property
    def remaining(self) -> int:
        return len(self._data) - self._offset

    def read_bytes(self, size: int, *, field: str = "bytes") -> bytes:
        if size < 0:
            raise DecodeError(f"Negative length for {field}")
        end = self._offset + size
        if end > len(self._data):
            raise DecodeError(
                f"Truncated {field}: need {size} bytes at offset {self._offset}, "
                f"only {self.remaining} remain"
            )
        chunk = self._data[self._offset : end]
        self._offset = end
        return chunk

    def _read_uint(self, size: int, field: str) -> int:
        return int.from_bytes(self.read_bytes(size, field=field), "big")

    def read_u8(self, field: str = "u8") -> int:
        return self._read_uint(1, field)

    def read_u16(self, field: str = "u16") -> int:
        return self._read_uint(2, field)

    def read_u32(self, field: str = "u32") -> int:
        return self._read_uint(4, field)

    def read_u64(self, field: str = "u64") -> int:
        return self._read_uint(8, field)

    def read_u256(self, field: str = "u256") -> int:
        return self._read_uint(32, field)

    def read_u256_as_u64(self, field: str = "amount") -> int:
        value = self.read_u256(field)
        if value > U64_MAX:
            raise DecodeError(f"{field} does not fit in u64: {value}")
        return value

    def read_address(self, field: str = "address") -> bytes:
        return self.read_bytes(UNIVERSAL_ADDRESS_LENGTH, field=field)

    def read_prefixed_u32(self, field: str = "message") -> bytes:
        size = self.read_u32(f"{field} length")
        return self.read_bytes(size, field=field)

    def read_rest(self) -> bytes:
        return self.read_bytes(self.remaining, field="remainder")

    def expect_end(self, context: str = "message") -> None:
        if self.remaining:
            raise DecodeError(f"{context} has {self.remaining} trailing bytes")


class Writer:
    """Accumulate fixed-width big-endian fields."""

    def __init__(self) -> None:
        self._parts: List[bytes] = []

    def _write_uint(self, value: int, size: int, maximum: int, field: str) -> "Writer":
        if not isinstance(value, int) or isinstance(value, bool):
            raise ValueError(f"{field} must be an integer, got {type(value).__name__}")
        if value < 0 or value > maximum:
            raise ValueError(f"{field} out of range: {value}")
        self._parts.append(value.to_bytes(size, "big"))
        return self

    def write_u8(self, value: int, field: str = "u8") -> "Writer":
        return self._write_uint(value, 1, U8_MAX, field)

    def write_u16(self, value: int, field: str = "u16") -> "Writer":
        return self._write_uint(value, 2, U16_MAX, field)

    def write_u32(self, value: int, field: str = "u32") -> "Writer":
        return self._write_uint(value, 4, U32_MAX, field)

    def write_u64(self, value: int, field: str = "u64") -> "Writer":
        return self._write_uint(value, 8, U64_MAX, field)

    def write_u64_as_u256(self, value: int, field: str = "amount") -> "Writer":
        if isinstance(value, int) and value > U64_MAX:
            raise ValueError(f"{field} does not fit in u64: {value}")
        return self._write_uint(value, 32, U256_MAX, field)

    def write_u256(self, value: int, field: str = "u256") -> "Writer":
        return self._write_uint(value, 32, U256_MAX, field)

    def write_bytes(self, data: BytesLike) -> "Writer":
        self._parts.append(bytes(data))
        return self

    def write_address(self, address: BytesLike, field: str = "address") -> "Writer":
        raw = bytes(address)
        if len(raw) != UNIVERSAL_ADDRESS_LENGTH:
            raise ValueError(f"{field} must be {UNIVERSAL_ADDRESS_LENGTH} bytes, got {len(raw)}")
        self._parts.append(raw)
        return self

    def write_prefixed_u32(self, data: BytesLike, field: str = "message") -> "Writer":
        raw = bytes(data)
        self.write_u32(len(raw), f"{field} length")
        self._parts.append(raw)
        return self

    def to_bytes(self) -> bytes:
        return b"".join(self._parts)


__all__ = ["Reader", "U16_MAX", "U256_MAX", "U32_MAX", "U64_MAX", "U8_MAX", "Writer"]
