import sys
import math
import struct

import pytest

from ido_document import Container, Document, RawNode, Scalar, ScalarKind, ScalarNode
from ido_errors import MalformedLiteral, UnbalancedStructure, UnknownScalarType
from ido_markup import from_text, to_text
from ido_parser import decode
from ido_serializer import encode

from .builders import SAMPLE, SAMPLE_TEXT, SCENARIO, attribute, container, ido_file, node


def doc(root):
    return Document.from_root(root)


def round_trip(document):
    assert from_text(to_text(document)) == document


# =============================================================================
# Rendering
# =============================================================================

def test_scenario_text():
    text = to_text(decode(SCENARIO))
    assert text == '<tag0x01 name="root"/>'
    assert encode(from_text(text)) == SCENARIO


def test_sample_text():
    assert to_text(decode(SAMPLE)) == SAMPLE_TEXT
    assert encode(from_text(SAMPLE_TEXT)) == SAMPLE


def test_string_that_looks_like_a_marker():
    document = doc(Container(0x01, {'v': Scalar(ScalarKind.STR, b'u32:5')}))
    assert to_text(document) == '<tag0x01 v="str:u32:5"/>'
    round_trip(document)


def test_plain_string_needs_no_marker():
    document = from_text('<tag0x01 label="hello world"/>')
    assert document.root.attributes['label'] == Scalar(ScalarKind.STR, b'hello world')


def test_korean_text_stays_readable():
    value = '검'.encode('cp949')
    document = doc(Container(0x01, {'n': Scalar(ScalarKind.STR, value)},
                             (ScalarNode(Scalar(ScalarKind.CSTR, value)),)))
    text = to_text(document)
    assert 'n="검"' in text
    assert '<cstr>검</cstr>' in text
    round_trip(document)


def test_undecodable_bytes_use_hex():
    document = doc(Container(0x01, {'n': Scalar(ScalarKind.STR, b'\xff\xfe')},
                             (ScalarNode(Scalar(ScalarKind.STR, b'a\x01b')),)))
    text = to_text(document)
    assert 'n="str.hex:fffe"' in text
    assert '<str.hex>610162</str.hex>' in text
    round_trip(document)


def test_whitespace_and_markup_characters_survive():
    value = b' <a & "b">\r\n\tend '
    document = doc(Container(0x01, {'s': Scalar(ScalarKind.STR, value)},
                             (ScalarNode(Scalar(ScalarKind.STR, value)),)))
    round_trip(document)


def test_numeric_literals():
    attrs = {
        'a': Scalar(ScalarKind.I8, -3),
        'b': Scalar(ScalarKind.U64, 0xFFFFFFFFFFFFFFFF),
        'c': Scalar(ScalarKind.F64, 0.1),
        'd': Scalar(ScalarKind.BOOL, True),
        'e': Scalar(ScalarKind.BYTES, b'\xde\xad'),
    }
    text = to_text(doc(Container(0x01, attrs)))
    assert text == ('<tag0x01 a="i8:-3" b="u64:18446744073709551615" c="f64:0.1" '
                    'd="bool:true" e="bytes:2:dead"/>')
    round_trip(doc(Container(0x01, attrs)))


def test_attribute_order_is_kept():
    forward = Container(0x01, {'x': Scalar(ScalarKind.U8, 1), 'y': Scalar(ScalarKind.U8, 2)})
    backward = Container(0x01, {'y': Scalar(ScalarKind.U8, 2), 'x': Scalar(ScalarKind.U8, 1)})
    assert forward != backward
    assert doc(forward) != doc(backward)
    assert encode(doc(forward)) != encode(doc(backward))

    parsed = from_text('<tag0x01 y="u8:2" x="u8:1"/>')
    assert list(parsed.root.attributes) == ['y', 'x']
    assert parsed == doc(backward)
    round_trip(doc(forward))


def test_nan_written_as_bit_pattern():
    data = ido_file(node(0x18, b'\x01\x00\xc0\x7f'))
    document = decode(data)
    text = to_text(document)
    assert text == '<f32>0x7fc00001</f32>'
    parsed = from_text(text)
    assert math.isnan(parsed.root.scalar.value)
    assert parsed == document
    assert encode(parsed) == data


def test_negative_zero_and_infinity():
    for value in (-0.0, float('inf'), float('-inf')):
        round_trip(doc(ScalarNode(Scalar(ScalarKind.F64, value))))
    assert to_text(doc(ScalarNode(Scalar(ScalarKind.F32, -0.0)))) == '<f32>-0.0</f32>'


def test_hex_integer_accepted():
    assert from_text('<u16>0x10</u16>').root == ScalarNode(Scalar(ScalarKind.U16, 16))


def test_raw_node_text():
    document = doc(Container(0x01, children=(RawNode(0xF0, b''),)))
    assert to_text(document) == '<tag0x01>\n  <raw tag="0xf0" length="0"></raw>\n</tag0x01>'
    round_trip(document)


def test_escaped_attribute_names():
    attrs = {'my name': Scalar(ScalarKind.U8, 1), 'xmlns': Scalar(ScalarKind.U8, 2),
             '': Scalar(ScalarKind.U8, 3)}
    document = doc(Container(0x01, attrs))
    text = to_text(document)
    assert '_x_6d79206e616d65="u8:1"' in text
    assert 'xmlns=' not in text
    round_trip(document)


def test_non_canonical_prologue_comment():
    data = ido_file(container(0x01, [attribute(1, 0x10, b'\x02')]),
                    names=[b'unused', b'a'], flags=3, padding=b'\x11\x22\x33')
    document = decode(data)
    text = to_text(document)
    assert text.startswith('<tag0x01 a="u8:2"/>\n<!-- IDO PROLOGUE: 49444f1a')
    assert from_text(text) == document
    assert encode(from_text(text)) == data


def test_names_added_in_text_extend_prologue_names():
    data = ido_file(container(0x01, [attribute(1, 0x10, b'\x02')]),
                    names=[b'unused', b'a'])
    text = to_text(decode(data)).replace('a="u8:2"', 'a="u8:2" b="u8:9"')
    document = from_text(text)
    assert document.names == ('unused', 'a', 'b')
    assert decode(encode(document)).root.attributes['b'] == Scalar(ScalarKind.U8, 9)


# =============================================================================
# Errors
# =============================================================================

def test_mismatched_close_tag():
    with pytest.raises(UnbalancedStructure) as excinfo:
        from_text('<tag0x01>\n  <u32>5</tag0x01>')
    assert excinfo.value.line == 2
    assert excinfo.value.column is not None
    assert f'line 2, column {excinfo.value.column}' in str(excinfo.value)
    assert str(excinfo.value).startswith('mismatched tag')


def test_unclosed_element():
    with pytest.raises(UnbalancedStructure):
        from_text('<tag0x01>')


def test_deep_nesting_is_a_parse_error():
    depth = sys.getrecursionlimit()
    with pytest.raises(UnbalancedStructure) as excinfo:
        from_text('<tag0x01>' * depth + '</tag0x01>' * depth)
    assert excinfo.value.path == '/tag0x01[0]'
    assert 'nest deeper' in str(excinfo.value)


def test_unknown_element():
    with pytest.raises(UnknownScalarType) as excinfo:
        from_text('<tag0x01><u32>1</u32><foo/></tag0x01>')
    assert excinfo.value.path == '/tag0x01[0]/foo[1]'


def test_unknown_attribute_marker():
    with pytest.raises(UnknownScalarType) as excinfo:
        from_text('<tag0x01 count="u33:5"/>')
    assert excinfo.value.path == '/tag0x01[0]@count'


@pytest.mark.parametrize('text, path', [
    ('<tag0x01><u8>256</u8></tag0x01>', '/tag0x01[0]/u8[0]'),
    ('<tag0x01 count="u8:x"/>', '/tag0x01[0]@count'),
    ('<tag0x01><i16>-40000</i16></tag0x01>', '/tag0x01[0]/i16[0]'),
    ('<tag0x01><bool>yes</bool></tag0x01>', '/tag0x01[0]/bool[0]'),
    ('<tag0x01><f32>1e39</f32></tag0x01>', '/tag0x01[0]/f32[0]'),
    ('<tag0x01><bytes length="3">dead</bytes></tag0x01>', '/tag0x01[0]/bytes[0]'),
    ('<tag0x01><bytes length="2">xyz1</bytes></tag0x01>', '/tag0x01[0]/bytes[0]'),
    ('<tag0x01 b="bytes:dead"/>', '/tag0x01[0]@b'),
    ('<tag0x20/>', '/tag0x20[0]'),
    ('<tag0x01><raw tag="0x12" length="0"></raw></tag0x01>', '/tag0x01[0]/raw[0]'),
    ('<tag0x01>stray<u8>1</u8></tag0x01>', '/tag0x01[0]'),
    ('<tag0x01><u8 unit="m">1</u8></tag0x01>', '/tag0x01[0]/u8[0]'),
    ('<tag0x01><cstr.hex>610062</cstr.hex></tag0x01>', '/tag0x01[0]/cstr.hex[0]'),
])
def test_malformed_literals_name_their_path(text, path):
    with pytest.raises(MalformedLiteral) as excinfo:
        from_text(text)
    assert excinfo.value.path == path


def test_unencodable_character():
    with pytest.raises(MalformedLiteral):
        from_text('<str>\U0001F600</str>')


def test_prologue_comment_must_be_last():
    with pytest.raises(MalformedLiteral):
        from_text('<tag0x01/>\n<!-- IDO PROLOGUE: 49444f1a -->\n<!-- later -->')


def test_bad_prologue_bytes():
    with pytest.raises(MalformedLiteral):
        from_text('<tag0x01/>\n<!-- IDO PROLOGUE: 00112233 -->')


def test_float_literals_compare_by_bits():
    parsed = from_text('<f32>0.1</f32>')
    data = encode(parsed)
    assert data.endswith(struct.pack('<f', 0.1))
    assert decode(data) == parsed
