import struct

import pytest

from binary_cursor import BinaryReader, BinaryWriter, ByteOrder
from ido_errors import LengthMismatch, UnexpectedEof, ValueOutOfRange


def test_reads_follow_byte_order():
    data = bytes.fromhex('01020304')
    assert BinaryReader(data, ByteOrder.LITTLE).read_u32() == 0x04030201
    assert BinaryReader(data, ByteOrder.BIG).read_u32() == 0x01020304


def test_signed_and_float_reads():
    data = struct.pack('<bhiqfd', -1, -2, -3, -4, 1.5, -0.25)
    reader = BinaryReader(data)
    assert reader.read_i8() == -1
    assert reader.read_i16() == -2
    assert reader.read_i32() == -3
    assert reader.read_i64() == -4
    assert reader.read_f32() == 1.5
    assert reader.read_f64() == -0.25
    assert reader.at_end()


def test_read_past_end_reports_offset_and_sizes():
    reader = BinaryReader(b'\x01\x02\x03')
    reader.read_u8()
    with pytest.raises(UnexpectedEof) as excinfo:
        reader.read_u32()
    assert excinfo.value.offset == 1
    assert excinfo.value.needed == 4
    assert excinfo.value.available == 2
    # Failed read leaves the position alone
    assert reader.position == 1


def test_cstring_and_length_prefixed():
    reader = BinaryReader(b'abc\x00' + b'\x02\x00hi' + b'\x01z')
    assert reader.read_cstring() == b'abc'
    assert reader.read_length_prefixed() == b'hi'
    assert reader.read_length_prefixed(width=1) == b'z'


def test_cstring_without_terminator():
    with pytest.raises(UnexpectedEof):
        BinaryReader(b'abc').read_cstring()


def test_peek_skip_and_since():
    reader = BinaryReader(b'\x10\x20\x30\x40')
    assert reader.peek(2) == b'\x10\x20'
    assert reader.position == 0
    reader.skip(1)
    start = reader.position
    reader.read_u16()
    assert reader.since(start) == b'\x20\x30'


def test_align_to_returns_skipped_padding():
    reader = BinaryReader(b'\x01\xaa\xbb\xcc\x02')
    reader.read_u8()
    assert reader.align_to(4) == b'\xaa\xbb\xcc'
    assert reader.align_to(4) == b''
    assert reader.read_u8() == 2


def test_block_must_be_consumed_exactly():
    reader = BinaryReader(b'\x01\x02\x03')
    with reader.block(2) as end:
        assert end == 2
        reader.read_u16()
    assert reader.read_u8() == 3

    reader = BinaryReader(b'\x01\x02\x03')
    with pytest.raises(LengthMismatch):
        with reader.block(2):
            reader.read_u8()


def test_block_limits_reads():
    reader = BinaryReader(b'\x01\x02\x03\x04')
    with pytest.raises(LengthMismatch):
        with reader.block(2):
            reader.read_u32()


def test_block_past_buffer():
    reader = BinaryReader(b'\x01\x02')
    with pytest.raises(UnexpectedEof):
        with reader.block(8):
            pass


def test_writer_mirrors_reader():
    writer = BinaryWriter()
    writer.write_u8(1)
    writer.write_i16(-2)
    writer.write_u32(3)
    writer.write_f64(0.5)
    writer.write_cstring(b'ok')
    writer.write_length_prefixed(b'xyz', width=4)
    assert writer.getvalue() == (struct.pack('<BhId', 1, -2, 3, 0.5) + b'ok\x00'
                                 + struct.pack('<I', 3) + b'xyz')


def test_writer_range_errors():
    writer = BinaryWriter()
    with pytest.raises(ValueOutOfRange):
        writer.write_u8(256)
    with pytest.raises(ValueOutOfRange):
        writer.write_i16(-0x8001)
    with pytest.raises(ValueOutOfRange):
        writer.write_cstring(b'a\x00b')
    with pytest.raises(ValueOutOfRange):
        writer.write_length_prefixed(b'x' * 256, width=1)
    assert len(writer) == 0


def test_writer_block_backpatches_length():
    writer = BinaryWriter()
    writer.write_u8(0x01)
    with writer.block():
        writer.write_bytes(b'abcde')
    assert writer.getvalue() == b'\x01\x05\x00\x00\x00abcde'


def test_writer_reserve_and_patch():
    writer = BinaryWriter(ByteOrder.BIG)
    offset = writer.reserve_u32()
    writer.write_u16(7)
    writer.patch_u32(offset, len(writer))
    assert writer.getvalue() == b'\x00\x00\x00\x06\x00\x07'
    with pytest.raises(IndexError):
        writer.patch_u32(4, 0)


def test_writer_align_uses_fill_only_when_it_fits():
    writer = BinaryWriter()
    writer.write_u8(1)
    writer.align_to(4, fill=b'\xaa\xbb\xcc')
    assert writer.getvalue() == b'\x01\xaa\xbb\xcc'

    writer = BinaryWriter()
    writer.write_u8(1)
    writer.align_to(4, fill=b'\xaa')
    assert writer.getvalue() == b'\x01\x00\x00\x00'
