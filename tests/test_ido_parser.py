import struct

import pytest

from ido_document import Container, RawNode, Scalar, ScalarKind, ScalarNode
from ido_errors import (
    BadMagic, InvalidValue, LengthMismatch, TrailingBytes, TruncatedInput,
    UnexpectedEof, UnknownScalarCode, UnsupportedVersion,
)
from ido_parser import decode, describe

from .builders import (
    SAMPLE, SCENARIO, attribute, container, ido_file, node, str_payload,
)


def test_scenario_decodes_to_single_container():
    document = decode(SCENARIO)
    root = document.root
    assert isinstance(root, Container)
    assert root.tag == 0x01
    assert root.attributes == {'name': Scalar(ScalarKind.STR, b'root')}
    assert root.children == ()
    assert document.names == ('name',)
    assert document.version == 1
    assert document.padding == b'\x00\x00\x00'
    assert root.span == (24, 18)


def test_sample_tree_shape():
    root = decode(SAMPLE).root
    assert list(root.attributes) == ['name', 'count']
    assert root.attributes['count'] == Scalar(ScalarKind.U32, 7)

    u32, inner, raw, blob = root.children
    assert u32 == ScalarNode(Scalar(ScalarKind.U32, 5))
    assert inner.tag == 0x02
    assert inner.attributes['scale'].value == 1.5
    assert inner.children == (ScalarNode(Scalar(ScalarKind.CSTR, b'hi')),)
    assert raw == RawNode(0x99, bytes.fromhex('deadbeef'))
    assert blob == ScalarNode(Scalar(ScalarKind.BYTES, b'\x00\x01'))


def test_float_keeps_source_bits():
    root = decode(SAMPLE).root
    scale = root.children[1].attributes['scale']
    assert scale.raw == struct.pack('<f', 1.5)


def test_bad_magic():
    with pytest.raises(BadMagic):
        decode(b'XIDO' + bytes(12))


def test_unsupported_version():
    with pytest.raises(UnsupportedVersion) as excinfo:
        decode(ido_file(node(0x10, b'\x00'), version=2))
    assert excinfo.value.offset == 4


@pytest.mark.parametrize('data', [b'', b'I', b'IDO', b'IDO\x1a\x01\x00'])
def test_short_header_is_truncated(data):
    with pytest.raises(TruncatedInput):
        decode(data)


def test_every_truncation_fails_closed():
    for length in range(len(SAMPLE)):
        with pytest.raises((TruncatedInput, UnexpectedEof)):
            decode(SAMPLE[:length])


def test_trailing_bytes_after_declared_length():
    with pytest.raises(TrailingBytes):
        decode(SCENARIO + b'\x00')


def test_trailing_bytes_inside_declared_length():
    root = node(0x10, b'\x05')
    data = ido_file(root, total=16 + len(root) + 1) + b'\x00'
    with pytest.raises(TrailingBytes):
        decode(data)


def test_body_not_consumed_exactly():
    with pytest.raises(LengthMismatch):
        decode(ido_file(node(0x12, b'\x05\x00\x00\x00\x00')))


def test_body_read_past_its_length():
    # u32 scalar declared with a 2-byte body
    with pytest.raises(LengthMismatch):
        decode(ido_file(container(0x01, children=[node(0x12, b'\x05\x00'), node(0x10, b'\x00')])))


def test_unknown_attribute_code():
    data = ido_file(container(0x01, [attribute(0, 0x42, b'\x00')]), names=[b'a'])
    with pytest.raises(UnknownScalarCode):
        decode(data)


def test_invalid_bool_byte():
    with pytest.raises(InvalidValue):
        decode(ido_file(node(0x1A, b'\x02')))


def test_name_index_outside_table():
    data = ido_file(container(0x01, [attribute(3, 0x10, b'\x00')]), names=[b'a'])
    with pytest.raises(InvalidValue):
        decode(data)


def test_duplicate_attribute_on_one_node():
    attrs = [attribute(0, 0x10, b'\x01'), attribute(0, 0x10, b'\x02')]
    with pytest.raises(InvalidValue):
        decode(ido_file(container(0x01, attrs), names=[b'a']))


def test_duplicate_name_table_entries():
    with pytest.raises(InvalidValue):
        decode(ido_file(container(0x01), names=[b'a', b'a']))


def test_unknown_tag_is_preserved_as_raw():
    data = ido_file(container(0x03, [attribute(0, 0x1B, str_payload(b'x'))], [
        node(0xE0, b'\x01\x02\x03'),
    ]), names=[b'id'])
    root = decode(data).root
    assert root.children == (RawNode(0xE0, b'\x01\x02\x03'),)
    assert root.children[0].span == (35, 8)


def test_captured_padding_and_header_fields():
    data = ido_file(container(0x01), names=[b'a'], flags=0x8001, reserved=0x1234,
                    padding=b'\xaa\xbb')
    document = decode(data)
    assert document.flags == 0x8001
    assert document.reserved == 0x1234
    assert document.padding == b'\xaa\xbb'


def test_describe_counts():
    summary = describe(decode(SAMPLE))
    assert summary == {'containers': 2, 'scalars': 3, 'raw': 1, 'attributes': 3, 'names': 3}
