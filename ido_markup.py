#!/usr/bin/env python3
"""
IDO Markup - Document <-> human-editable text
=============================================

The text form mirrors the node tree one element per node:

| Node                 | Text                                              |
|----------------------|---------------------------------------------------|
| Container tag 0x01   | <tag0x01 name="root">...children...</tag0x01>     |
| Scalar child (u32)   | <u32>5</u32>                                      |
| Scalar child (str)   | <str>text</str>  or  <str.hex>b0a1</str.hex>      |
| Scalar child (bytes) | <bytes length="4">deadbeef</bytes>                |
| Unknown tag 0x99     | <raw tag="0x99" length="4">deadbeef</raw>         |

Attribute values carry their type as a "marker:" prefix:

| Literal            | Scalar                                  |
|--------------------|-----------------------------------------|
| root               | str (plain strings have no marker)      |
| str:u32:5          | str whose text looks like a marker      |
| str.hex:b0a1       | str bytes that are not clean CP949 text |
| u32:5  i8:-3       | integers (decimal, 0x.. also accepted)  |
| f32:1.5            | floats via repr(); NaN as 0x7fc00000    |
| bool:true          | bool                                    |
| bytes:4:deadbeef   | bytes (length, then hex)                |

Attribute names that are not plain XML names are written as "_x_" followed
by the hex of their CP949 bytes.

Documents whose header fields or name table differ from what the tree
implies end with a prologue comment holding the exact prologue bytes:

    <!-- IDO PROLOGUE: 49444f1a0100... -->
"""

import re
import sys
import math
import struct
import argparse
import xml.etree.ElementTree as ET
from typing import Dict, List, Optional, Tuple
from xml.parsers import expat
from xml.sax.saxutils import escape, quoteattr

from binary_cursor import BinaryReader, BinaryWriter
from ido_document import (
    INTEGER_RANGES, SCALAR_MARKERS, TEXT_ENCODING, Container, Document, Node,
    RawNode, Scalar, ScalarKind, ScalarNode, is_canonical_prologue,
    is_container_tag, is_known_tag, node_label,
)
from ido_errors import (
    DecodeError, IdoError, MalformedLiteral, UnbalancedStructure,
    UnknownScalarType,
)
from ido_parser import read_prologue
from ido_serializer import write_prologue

INDENT = '  '

PROLOGUE_LABEL = 'IDO PROLOGUE:'
PROLOGUE_RE = re.compile(r'<!--\s*IDO PROLOGUE:\s*([0-9A-Fa-f]*)\s*-->\s*\Z')

CONTAINER_RE = re.compile(r'tag0x([0-9A-Fa-f]{2})\Z')
MARKER_RE = re.compile(r'([A-Za-z0-9_.]+):')
NAME_RE = re.compile(r'[A-Za-z_][A-Za-z0-9_.-]*\Z')
ESCAPED_NAME_PREFIX = '_x_'

HEX_SUFFIX = '.hex'
RAW_ELEMENT = 'raw'

TEXT_ESCAPES = {'\r': '&#13;'}


# =============================================================================
# Literal formatting
# =============================================================================

def is_xml_char(ch: str) -> bool:
    code = ord(ch)
    return (code in (0x09, 0x0A, 0x0D)
            or 0x20 <= code <= 0xD7FF
            or 0xE000 <= code <= 0xFFFD
            or 0x10000 <= code <= 0x10FFFF)


def text_of(data: bytes) -> Optional[str]:
    """Decoded string if the bytes survive a CP949 round trip as XML text, else None."""
    try:
        text = data.decode(TEXT_ENCODING)
    except UnicodeDecodeError:
        return None
    if text.encode(TEXT_ENCODING) != data:
        return None
    if not all(is_xml_char(ch) for ch in text):
        return None
    return text


def format_float(scalar: Scalar) -> str:
    if math.isnan(scalar.value):
        size = 4 if scalar.kind is ScalarKind.F32 else 8
        bits = scalar.raw if scalar.raw is not None and len(scalar.raw) == size \
            else struct.pack('<f' if size == 4 else '<d', scalar.value)
        return f"0x{int.from_bytes(bits, 'little'):0{size * 2}x}"
    return repr(scalar.value)


def format_value(scalar: Scalar) -> str:
    """Text for numeric and bool scalars."""
    if scalar.kind is ScalarKind.BOOL:
        return 'true' if scalar.value else 'false'
    if scalar.kind.is_float:
        return format_float(scalar)
    return str(scalar.value)


def format_attribute(scalar: Scalar) -> str:
    kind = scalar.kind
    if kind.is_string:
        text = text_of(scalar.value)
        if text is None:
            return f"{kind.marker}{HEX_SUFFIX}:{scalar.value.hex()}"
        if kind is ScalarKind.STR and not MARKER_RE.match(text):
            return text
        return f"{kind.marker}:{text}"
    if kind is ScalarKind.BYTES:
        return f"bytes:{len(scalar.value)}:{scalar.value.hex()}"
    return f"{kind.marker}:{format_value(scalar)}"


def format_name(name: str) -> str:
    if NAME_RE.match(name) and not name.lower().startswith('xml') \
            and not name.startswith(ESCAPED_NAME_PREFIX):
        return name
    return ESCAPED_NAME_PREFIX + name.encode(TEXT_ENCODING).hex()


# =============================================================================
# Document -> text
# =============================================================================

class MarkupWriter:
    """Renders a Document as indented markup lines"""

    def __init__(self):
        self.lines: List[str] = []

    def write_node(self, node: Node, depth: int):
        pad = INDENT * depth

        if isinstance(node, Container):
            label = node_label(node)
            attrs = ''.join(f" {format_name(name)}={quoteattr(format_attribute(scalar))}"
                            for name, scalar in node.attributes.items())
            if not node.children:
                self.lines.append(f"{pad}<{label}{attrs}/>")
                return
            self.lines.append(f"{pad}<{label}{attrs}>")
            for child in node.children:
                self.write_node(child, depth + 1)
            self.lines.append(f"{pad}</{label}>")

        elif isinstance(node, ScalarNode):
            scalar = node.scalar
            kind = scalar.kind
            if kind.is_string:
                text = text_of(scalar.value)
                if text is None:
                    self.element(pad, kind.marker + HEX_SUFFIX, scalar.value.hex())
                else:
                    self.element(pad, kind.marker, escape(text, TEXT_ESCAPES))
            elif kind is ScalarKind.BYTES:
                self.element(pad, 'bytes', scalar.value.hex(),
                             f' length="{len(scalar.value)}"')
            else:
                self.element(pad, kind.marker, format_value(scalar))

        else:
            self.element(pad, RAW_ELEMENT, node.payload.hex(),
                         f' tag="0x{node.tag:02x}" length="{len(node.payload)}"')

    def element(self, pad: str, name: str, content: str, attrs: str = ''):
        self.lines.append(f"{pad}<{name}{attrs}>{content}</{name}>")


def prologue_bytes(document: Document) -> bytes:
    """Header, name table and padding exactly as the encoder would write them."""
    writer = BinaryWriter()
    write_prologue(writer, document)
    return writer.getvalue()


def to_text(document: Document) -> str:
    """Render a Document as markup text."""
    out = MarkupWriter()
    out.write_node(document.root, 0)
    if not is_canonical_prologue(document):
        out.lines.append(f"<!-- {PROLOGUE_LABEL} {prologue_bytes(document).hex()} -->")
    return '\n'.join(out.lines)


# =============================================================================
# Text -> Document
# =============================================================================

def parse_int(text: str, kind: ScalarKind, path: str) -> int:
    try:
        value = int(text, 0) if text.lower().lstrip('+-').startswith('0x') else int(text, 10)
    except ValueError:
        raise MalformedLiteral(f"{text!r} is not a {kind.marker} integer", path)
    low, high = INTEGER_RANGES[kind]
    if not low <= value <= high:
        raise MalformedLiteral(f"{value} is outside the {kind.marker} range [{low}, {high}]", path)
    return value


def parse_float(text: str, kind: ScalarKind, path: str) -> Scalar:
    size, fmt = (4, '<f') if kind is ScalarKind.F32 else (8, '<d')

    if text.lower().startswith('0x'):
        # Bit pattern
        try:
            bits = int(text, 16)
        except ValueError:
            raise MalformedLiteral(f"{text!r} is not a {kind.marker} bit pattern", path)
        if bits >= 1 << (size * 8):
            raise MalformedLiteral(f"{text!r} is wider than {kind.marker}", path)
        raw = bits.to_bytes(size, 'little')
        return Scalar(kind, struct.unpack(fmt, raw)[0], raw=raw)

    try:
        value = float(text)
    except ValueError:
        raise MalformedLiteral(f"{text!r} is not a {kind.marker} number", path)
    try:
        struct.pack(fmt, value)
    except OverflowError:
        raise MalformedLiteral(f"{text!r} is out of range for {kind.marker}", path)
    return Scalar(kind, value)


def parse_hex(text: str, path: str) -> bytes:
    try:
        return bytes.fromhex(text)
    except ValueError:
        raise MalformedLiteral(f"invalid hex payload {text[:32]!r}", path)


def parse_length(text: Optional[str], payload: bytes, path: str):
    if text is None:
        raise MalformedLiteral("missing length", path)
    try:
        length = int(text, 10)
    except ValueError:
        raise MalformedLiteral(f"length {text!r} is not a number", path)
    if length != len(payload):
        raise MalformedLiteral(f"length {length} does not match {len(payload)} payload bytes", path)


def encode_text(text: str, path: str) -> bytes:
    try:
        return text.encode(TEXT_ENCODING)
    except UnicodeEncodeError as e:
        raise MalformedLiteral(
            f"character {text[e.start:e.end]!r} cannot be stored as {TEXT_ENCODING}", path)


def parse_scalar(marker: str, text: str, path: str) -> Scalar:
    """Build a scalar from a type marker and its literal text."""
    if marker.endswith(HEX_SUFFIX):
        kind = SCALAR_MARKERS.get(marker[:-len(HEX_SUFFIX)])
        if kind is None or not kind.is_string:
            raise UnknownScalarType(f"unknown type marker {marker!r}", path)
        value = parse_hex(text.strip(), path)
        if kind is ScalarKind.CSTR and b'\x00' in value:
            raise MalformedLiteral("cstr payload contains a 0x00 byte", path)
        return Scalar(kind, value)

    kind = SCALAR_MARKERS.get(marker)
    if kind is None:
        raise UnknownScalarType(f"unknown type marker {marker!r}", path)

    if kind.is_string:
        value = encode_text(text, path)
        if kind is ScalarKind.CSTR and b'\x00' in value:
            raise MalformedLiteral("cstr text contains a NUL character", path)
        return Scalar(kind, value)

    text = text.strip()
    if kind is ScalarKind.BOOL:
        if text not in ('true', 'false'):
            raise MalformedLiteral(f"{text!r} is not a bool (true/false)", path)
        return Scalar(kind, text == 'true')
    if kind.is_float:
        return parse_float(text, kind, path)
    if kind is ScalarKind.BYTES:
        length, sep, payload = text.partition(':')
        if not sep:
            raise MalformedLiteral("bytes literal must be <length>:<hex>", path)
        value = parse_hex(payload, path)
        parse_length(length, value, path)
        return Scalar(kind, value)
    return Scalar(kind, parse_int(text, kind, path))


def parse_attribute(literal: str, path: str) -> Scalar:
    match = MARKER_RE.match(literal)
    if match is None:
        return Scalar(ScalarKind.STR, encode_text(literal, path))
    return parse_scalar(match.group(1), literal[match.end():], path)


def parse_name(name: str, path: str) -> str:
    if not name.startswith(ESCAPED_NAME_PREFIX):
        return name
    raw_name = parse_hex(name[len(ESCAPED_NAME_PREFIX):], path)
    try:
        return raw_name.decode(TEXT_ENCODING)
    except UnicodeDecodeError:
        raise MalformedLiteral(f"escaped name {name!r} is not valid {TEXT_ENCODING}", path)


def is_blank(text: Optional[str]) -> bool:
    return text is None or not text.strip()


class MarkupParser:
    """Builds Document nodes from a parsed element tree"""

    def __init__(self):
        # Attribute names in first-use order
        self.names: Dict[str, None] = {}

    def parse_element(self, element: ET.Element, path: str) -> Node:
        label = element.tag

        container = CONTAINER_RE.match(label)
        if container:
            return self.parse_container(element, int(container.group(1), 16), path)

        if len(element):
            raise MalformedLiteral(f"<{label}> cannot have child elements", path)
        text = element.text or ''

        if label == RAW_ELEMENT:
            return self.parse_raw(element, text, path)

        if label == 'bytes':
            self.check_attributes(element, ('length',), path)
            value = parse_hex(text.strip(), path)
            parse_length(element.get('length'), value, path)
            return ScalarNode(Scalar(ScalarKind.BYTES, value))

        if label.endswith(HEX_SUFFIX) or label in SCALAR_MARKERS:
            self.check_attributes(element, (), path)
            return ScalarNode(parse_scalar(label, text, path))

        raise UnknownScalarType(f"unknown element <{label}>", path)

    def parse_container(self, element: ET.Element, tag: int, path: str) -> Container:
        if not is_container_tag(tag):
            raise MalformedLiteral(f"container tag 0x{tag:02X} is outside 0x01-0x0F", path)
        if not is_blank(element.text):
            raise MalformedLiteral(f"unexpected text {element.text.strip()[:32]!r}", path)

        attributes: Dict[str, Scalar] = {}
        for xml_name, literal in element.attrib.items():
            name = parse_name(xml_name, f"{path}@{xml_name}")
            attr_path = f"{path}@{name}"
            if name in attributes:
                raise MalformedLiteral(f"attribute {name!r} given twice", attr_path)
            attributes[name] = parse_attribute(literal, attr_path)
            self.names.setdefault(name, None)

        children = []
        for i, child in enumerate(element):
            if not is_blank(child.tail):
                raise MalformedLiteral(f"unexpected text {child.tail.strip()[:32]!r}", path)
            children.append(self.parse_element(child, f"{path}/{child.tag}[{i}]"))

        return Container(tag, attributes, tuple(children))

    def parse_raw(self, element: ET.Element, text: str, path: str) -> RawNode:
        self.check_attributes(element, ('tag', 'length'), path)
        tag_text = element.get('tag')
        try:
            tag = int(tag_text, 0)
        except (TypeError, ValueError):
            raise MalformedLiteral(f"raw tag {tag_text!r} is not a number", path)
        if not 0 <= tag <= 0xFF:
            raise MalformedLiteral(f"raw tag {tag} does not fit in a byte", path)
        if is_known_tag(tag):
            raise MalformedLiteral(f"raw tag 0x{tag:02X} is a known tag", path)
        payload = parse_hex(text.strip(), path)
        parse_length(element.get('length'), payload, path)
        return RawNode(tag, payload)

    def check_attributes(self, element: ET.Element, allowed: Tuple[str, ...], path: str):
        for name in element.attrib:
            if name not in allowed:
                raise MalformedLiteral(f"unexpected attribute {name!r} on <{element.tag}>", path)


def split_prologue(text: str) -> Optional[bytes]:
    """Prologue bytes from a trailing prologue comment, or None when there is none."""
    start = text.rfind(f"<!-- {PROLOGUE_LABEL}")
    if start == -1:
        return None
    match = PROLOGUE_RE.match(text, start)
    if match is None:
        line = text.count('\n', 0, start) + 1
        raise MalformedLiteral("prologue comment must be the last thing in the text", line=line)
    return parse_hex(match.group(1), 'prologue')


def from_text(text: str) -> Document:
    """Parse markup text back into a Document."""
    prologue_data = split_prologue(text)

    try:
        root_element = ET.fromstring(text)
    except ET.ParseError as e:
        line, column = getattr(e, 'position', None) or (None, None)
        raise UnbalancedStructure(
            expat.ErrorString(e.code), line=line,
            column=column + 1 if column is not None else None)

    builder = MarkupParser()
    try:
        root = builder.parse_element(root_element, f"/{root_element.tag}[0]")
    except RecursionError:
        raise UnbalancedStructure(
            f"elements nest deeper than {sys.getrecursionlimit()} levels",
            f"/{root_element.tag}[0]")

    if prologue_data is None:
        return Document.from_root(root)

    reader = BinaryReader(prologue_data)
    try:
        prologue = read_prologue(reader)
    except DecodeError as e:
        raise MalformedLiteral(f"bad prologue: {e}", 'prologue')
    if not reader.at_end():
        raise MalformedLiteral(f"{reader.remaining} extra byte(s) in the prologue", 'prologue')

    names = list(prologue.names)
    names.extend(name for name in builder.names if name not in prologue.names)
    return Document(root=root, names=tuple(names), version=prologue.version,
                    flags=prologue.flags, reserved=prologue.reserved,
                    padding=prologue.padding)


# =============================================================================
# CLI
# =============================================================================

def main():
    from ido_parser import decode

    parser = argparse.ArgumentParser(description='Print an .ido node tree as markup text')
    parser.add_argument('file', help='Input .ido file')
    parser.add_argument('--check', action='store_true',
                        help='Parse the text back and confirm it matches the decoded tree')
    args = parser.parse_args()

    with open(args.file, 'rb') as f:
        data = f.read()

    try:
        document = decode(data)
        text = to_text(document)
        print(text)
        if args.check:
            same = from_text(text) == document
            print(f"\nText round trip: {'OK' if same else 'MISMATCH'}", file=sys.stderr)
            return 0 if same else 1
    except IdoError as e:
        print(f"ERROR: {e.kind}: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
