#!/usr/bin/env python3
"""
Binary Cursor - Bounds-checked reader/writer over a byte buffer
===============================================================

Every binary structure in the IDO tool is read through BinaryReader and
written through BinaryWriter. Byte order is fixed when the cursor is created.

Reader rules:
    - a read that runs past the buffer raises UnexpectedEof
    - the position only moves forward
    - block(length) limits reads to a declared sub-block and requires the
      sub-decoder to consume it exactly (LengthMismatch otherwise)

Writer rules:
    - values that do not fit their field raise ValueOutOfRange
    - reserve_u32()/patch_u32() and block() backpatch length fields once the
      body is known
"""

import struct
from contextlib import contextmanager
from enum import Enum
from typing import Iterator, List, Optional

from ido_errors import LengthMismatch, UnexpectedEof, ValueOutOfRange


class ByteOrder(Enum):
    """struct prefix for each byte order"""
    LITTLE = '<'
    BIG = '>'


# Field code -> (struct format char, size in bytes)
FIELD_FORMATS = {
    'u8': ('B', 1),
    'u16': ('H', 2),
    'u32': ('I', 4),
    'u64': ('Q', 8),
    'i8': ('b', 1),
    'i16': ('h', 2),
    'i32': ('i', 4),
    'i64': ('q', 8),
    'f32': ('f', 4),
    'f64': ('d', 8),
}

LENGTH_FIELDS = {1: 'u8', 2: 'u16', 4: 'u32'}


# =============================================================================
# Reader
# =============================================================================

class BinaryReader:
    """Forward-only reader over an in-memory buffer."""

    def __init__(self, data: bytes, byte_order: ByteOrder = ByteOrder.LITTLE):
        self._data = bytes(data)
        self._pos = 0
        self._order = byte_order.value
        self._limits: List[int] = []

    def __len__(self):
        return len(self._data)

    @property
    def position(self) -> int:
        return self._pos

    @property
    def limit(self) -> int:
        """End of the innermost open block, or end of buffer."""
        return self._limits[-1] if self._limits else len(self._data)

    @property
    def remaining(self) -> int:
        return self.limit - self._pos

    def at_end(self) -> bool:
        return self._pos >= self.limit

    def _check(self, count: int) -> None:
        if count < 0:
            raise ValueError(f"negative read length: {count}")
        if self._pos + count <= self.limit:
            return
        if self._limits and self._pos + count <= len(self._data):
            raise LengthMismatch(
                f"read of {count} byte(s) runs past the end of a "
                f"{self.limit - self._pos}-byte remainder of its block",
                self._pos)
        raise UnexpectedEof(self._pos, count, self.limit - self._pos)

    def _take(self, count: int) -> bytes:
        self._check(count)
        chunk = self._data[self._pos:self._pos + count]
        self._pos += count
        return chunk

    def read(self, field: str):
        """Read one fixed-width field by code ('u8', 'i32', 'f64', ...)."""
        fmt, size = FIELD_FORMATS[field]
        return struct.unpack(self._order + fmt, self._take(size))[0]

    def read_u8(self) -> int:
        return self.read('u8')

    def read_u16(self) -> int:
        return self.read('u16')

    def read_u32(self) -> int:
        return self.read('u32')

    def read_u64(self) -> int:
        return self.read('u64')

    def read_i8(self) -> int:
        return self.read('i8')

    def read_i16(self) -> int:
        return self.read('i16')

    def read_i32(self) -> int:
        return self.read('i32')

    def read_i64(self) -> int:
        return self.read('i64')

    def read_f32(self) -> float:
        return self.read('f32')

    def read_f64(self) -> float:
        return self.read('f64')

    def read_bytes(self, count: int) -> bytes:
        return self._take(count)

    def read_cstring(self) -> bytes:
        """Read bytes up to a 0x00 terminator; the terminator is consumed, not returned."""
        end = self._data.find(b'\x00', self._pos, self.limit)
        if end == -1:
            raise UnexpectedEof(self._pos, self.remaining + 1, self.remaining)
        value = self._data[self._pos:end]
        self._pos = end + 1
        return value

    def read_length_prefixed(self, width: int = 2) -> bytes:
        """Read a length field of `width` bytes followed by that many bytes."""
        length = self.read(LENGTH_FIELDS[width])
        return self._take(length)

    def since(self, start: int) -> bytes:
        """Bytes consumed between `start` and the current position."""
        return self._data[start:self._pos]

    def peek(self, count: int = 1) -> bytes:
        self._check(count)
        return self._data[self._pos:self._pos + count]

    def skip(self, count: int) -> None:
        self._take(count)

    def align_to(self, alignment: int) -> bytes:
        """Advance to the next multiple of `alignment`; returns the skipped padding."""
        pad = -self._pos % alignment
        return self._take(pad)

    @contextmanager
    def block(self, length: int) -> Iterator[int]:
        """
        Mark/resume around a length-prefixed sub-block.

        Inside the block reads cannot cross its end. On normal exit the
        position must sit exactly on the end of the block.
        """
        start = self._pos
        end = start + length
        if end > self.limit:
            if self._limits and end <= len(self._data):
                raise LengthMismatch(
                    f"declared block length {length} exceeds the enclosing block", start)
            raise UnexpectedEof(start, length, self.limit - start)

        self._limits.append(end)
        try:
            yield end
        finally:
            self._limits.pop()

        if self._pos != end:
            raise LengthMismatch(
                f"block declared {length} byte(s) but {self._pos - start} were consumed",
                start)


# =============================================================================
# Writer
# =============================================================================

class BinaryWriter:
    """Append-only writer with backpatching support."""

    def __init__(self, byte_order: ByteOrder = ByteOrder.LITTLE):
        self._buf = bytearray()
        self._order = byte_order.value

    def __len__(self):
        return len(self._buf)

    @property
    def position(self) -> int:
        return len(self._buf)

    def getvalue(self) -> bytes:
        return bytes(self._buf)

    def _pack(self, field: str, value) -> bytes:
        fmt, _ = FIELD_FORMATS[field]
        try:
            return struct.pack(self._order + fmt, value)
        except (struct.error, OverflowError) as e:
            raise ValueOutOfRange(f"{value!r} does not fit in {field}: {e}")

    def write(self, field: str, value) -> None:
        self._buf.extend(self._pack(field, value))

    def write_u8(self, value: int) -> None:
        self.write('u8', value)

    def write_u16(self, value: int) -> None:
        self.write('u16', value)

    def write_u32(self, value: int) -> None:
        self.write('u32', value)

    def write_u64(self, value: int) -> None:
        self.write('u64', value)

    def write_i8(self, value: int) -> None:
        self.write('i8', value)

    def write_i16(self, value: int) -> None:
        self.write('i16', value)

    def write_i32(self, value: int) -> None:
        self.write('i32', value)

    def write_i64(self, value: int) -> None:
        self.write('i64', value)

    def write_f32(self, value: float) -> None:
        self.write('f32', value)

    def write_f64(self, value: float) -> None:
        self.write('f64', value)

    def write_bytes(self, data: bytes) -> None:
        self._buf.extend(data)

    def write_cstring(self, data: bytes) -> None:
        if b'\x00' in data:
            raise ValueOutOfRange("nul-terminated string contains a 0x00 byte")
        self._buf.extend(data)
        self._buf.append(0)

    def write_length_prefixed(self, data: bytes, width: int = 2) -> None:
        self.write(LENGTH_FIELDS[width], len(data))
        self._buf.extend(data)

    def align_to(self, alignment: int, fill: Optional[bytes] = None) -> None:
        """
        Pad to the next multiple of `alignment`.

        `fill` is used verbatim when it has exactly the required length
        (captured padding); otherwise zero bytes are written.
        """
        pad = -len(self._buf) % alignment
        if fill is not None and len(fill) == pad:
            self._buf.extend(fill)
        else:
            self._buf.extend(b'\x00' * pad)

    def reserve_u32(self) -> int:
        """Write a placeholder u32 and return its offset for patch_u32()."""
        offset = len(self._buf)
        self._buf.extend(b'\x00' * 4)
        return offset

    def patch_u32(self, offset: int, value: int) -> None:
        if offset < 0 or offset + 4 > len(self._buf):
            raise IndexError(f"patch offset 0x{offset:X} outside buffer of {len(self._buf)} bytes")
        self._buf[offset:offset + 4] = self._pack('u32', value)

    @contextmanager
    def block(self) -> Iterator[int]:
        """Write a u32 length prefix, yield, then backpatch it with the body size."""
        offset = self.reserve_u32()
        start = len(self._buf)
        yield start
        self.patch_u32(offset, len(self._buf) - start)
