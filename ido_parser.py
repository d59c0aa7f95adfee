#!/usr/bin/env python3
"""
IDO Parser - Binary .ido node tree -> Document
==============================================

File Structure (little-endian):
------------------------------
| Offset | Size      | Field                                         |
|--------|-----------|-----------------------------------------------|
| 0x00   | 4 bytes   | Magic "IDO\\x1A"                              |
| 0x04   | u16       | Version (only 1 is known)                     |
| 0x06   | u16       | Flags (kept verbatim)                         |
| 0x08   | u32       | Total file length                             |
| 0x0C   | u16       | Name table entry count                        |
| 0x0E   | u16       | Reserved (kept verbatim)                      |
| 0x10   | variable  | Name table: u8 length + CP949 bytes per name  |
| ...    | 0-3 bytes | Padding up to a multiple of 4                 |
| ...    | variable  | Root node                                     |

Node Structure:
--------------
    u8  tag
    u32 body length
    body:
        container (0x01-0x0F): u16 attr count,
                               (u16 name index, u8 type code, payload) x count,
                               u16 child count, node x count
        scalar (0x10-0x1D):    payload of that scalar kind
        anything else:         opaque bytes, kept as a RawNode

Every count and length comes from the stream; nothing is inferred.
"""

import sys
import argparse
from dataclasses import replace
from typing import Dict, List, Tuple

from binary_cursor import BinaryReader, ByteOrder
from ido_document import (
    BODY_ALIGNMENT, HEADER_SIZE, MAGIC, SCALAR_CODES, SUPPORTED_VERSIONS,
    TEXT_ENCODING, Container, Document, Node, RawNode, Scalar, ScalarKind,
    ScalarNode, count_nodes, is_container_tag, is_scalar_tag,
)
from ido_errors import (
    BadMagic, IdoError, InvalidValue, TrailingBytes, TruncatedInput,
    UnknownScalarCode, UnsupportedVersion,
)


class Prologue:
    """Header fields, name table and padding that precede the root node"""

    def __init__(self, version: int, flags: int, total_length: int, reserved: int,
                 names: Tuple[str, ...], padding: bytes):
        self.version = version
        self.flags = flags
        self.total_length = total_length
        self.reserved = reserved
        self.names = names
        self.padding = padding

    def __repr__(self):
        return (f"Prologue(version={self.version}, flags=0x{self.flags:04X}, "
                f"total_length={self.total_length}, reserved=0x{self.reserved:04X}, "
                f"names={len(self.names)}, padding={self.padding.hex() or '-'})")


def read_prologue(reader: BinaryReader) -> Prologue:
    """
    Read and validate the header and name table.

    Also used by the text codec to read back a prologue comment.
    """
    if len(reader) < len(MAGIC) or reader.peek(len(MAGIC)) != MAGIC:
        found = reader.peek(min(len(MAGIC), reader.remaining)) if reader.remaining else b''
        raise BadMagic(f"expected magic {MAGIC.hex()}, found {found.hex() or 'nothing'}", 0)
    reader.skip(len(MAGIC))

    version = reader.read_u16()
    if version not in SUPPORTED_VERSIONS:
        raise UnsupportedVersion(
            f"format version {version} is not supported "
            f"(known: {', '.join(str(v) for v in SUPPORTED_VERSIONS)})", 4)

    flags = reader.read_u16()
    total_length = reader.read_u32()
    name_count = reader.read_u16()
    reserved = reader.read_u16()

    names: List[str] = []
    seen: Dict[str, int] = {}
    for index in range(name_count):
        offset = reader.position
        raw_name = reader.read_length_prefixed(width=1)
        try:
            name = raw_name.decode(TEXT_ENCODING)
        except UnicodeDecodeError:
            raise InvalidValue(f"name table entry {index} is not valid {TEXT_ENCODING}", offset)
        if name.encode(TEXT_ENCODING) != raw_name:
            raise InvalidValue(f"name table entry {index} does not re-encode to the same bytes",
                               offset)
        if name in seen:
            raise InvalidValue(f"name table entry {index} duplicates entry {seen[name]} ({name!r})",
                               offset)
        seen[name] = index
        names.append(name)

    padding = reader.align_to(BODY_ALIGNMENT)
    return Prologue(version, flags, total_length, reserved, tuple(names), padding)


# =============================================================================
# Node decoding
# =============================================================================

def read_scalar(reader: BinaryReader, kind: ScalarKind) -> Scalar:
    """Read one scalar payload of a known kind."""
    start = reader.position

    if kind is ScalarKind.STR:
        value = reader.read_length_prefixed(width=2)
    elif kind is ScalarKind.CSTR:
        value = reader.read_cstring()
    elif kind is ScalarKind.BYTES:
        value = reader.read_length_prefixed(width=4)
    elif kind is ScalarKind.BOOL:
        byte = reader.read_u8()
        if byte not in (0, 1):
            raise InvalidValue(f"boolean byte must be 0 or 1, found 0x{byte:02X}", start)
        value = bool(byte)
    else:
        value = reader.read(kind.field_code)

    if kind.is_float:
        # Bit pattern kept so NaN payloads are re-emitted unchanged
        return Scalar(kind, value, raw=reader.since(start))
    return Scalar(kind, value)


class IdoParser:
    """Decoder for node-tree .ido files"""

    def __init__(self, data: bytes):
        self.reader = BinaryReader(data, ByteOrder.LITTLE)
        self.names: Tuple[str, ...] = ()

    def parse(self) -> Document:
        reader = self.reader
        head = reader.peek(min(len(reader), len(MAGIC)))
        if len(reader) < HEADER_SIZE and MAGIC.startswith(head):
            # Header itself cut short
            raise TruncatedInput(
                f"file is {len(reader)} bytes, shorter than the {HEADER_SIZE}-byte header",
                len(reader))

        prologue = read_prologue(reader)
        self.names = prologue.names

        if prologue.total_length > len(reader):
            raise TruncatedInput(
                f"header declares {prologue.total_length} bytes but file has {len(reader)}",
                len(reader))
        if prologue.total_length < reader.position:
            raise InvalidValue(
                f"header declares {prologue.total_length} bytes, less than its own "
                f"{reader.position}-byte prologue", 8)

        with reader.block(prologue.total_length - reader.position):
            root = self.read_node()
            if not reader.at_end():
                raise TrailingBytes(
                    f"{reader.remaining} byte(s) after the root node inside the declared length",
                    reader.position)

        if reader.position != len(reader):
            raise TrailingBytes(
                f"{len(reader) - reader.position} byte(s) after the declared total length "
                f"of {prologue.total_length}", reader.position)

        return Document(root=root, names=prologue.names, version=prologue.version,
                        flags=prologue.flags, reserved=prologue.reserved,
                        padding=prologue.padding)

    def read_node(self) -> Node:
        reader = self.reader
        start = reader.position
        tag = reader.read_u8()
        length = reader.read_u32()

        with reader.block(length):
            if is_container_tag(tag):
                attributes = self.read_attributes()
                node = Container(tag, attributes, self.read_children())
            elif is_scalar_tag(tag):
                node = ScalarNode(read_scalar(reader, SCALAR_CODES[tag]))
            else:
                node = RawNode(tag, reader.read_bytes(length))

        span = (start, reader.position - start)
        return replace(node, span=span)

    def read_attributes(self) -> Dict[str, Scalar]:
        reader = self.reader
        attributes: Dict[str, Scalar] = {}
        for _ in range(reader.read_u16()):
            offset = reader.position
            index = reader.read_u16()
            if index >= len(self.names):
                raise InvalidValue(
                    f"attribute name index {index} outside name table of {len(self.names)}",
                    offset)
            name = self.names[index]
            if name in attributes:
                raise InvalidValue(f"attribute {name!r} appears twice on one node", offset)

            code_offset = reader.position
            code = reader.read_u8()
            if code not in SCALAR_CODES:
                raise UnknownScalarCode(f"unknown attribute type code 0x{code:02X}", code_offset)
            attributes[name] = read_scalar(reader, SCALAR_CODES[code])
        return attributes

    def read_children(self) -> Tuple[Node, ...]:
        reader = self.reader
        count = reader.read_u16()
        return tuple(self.read_node() for _ in range(count))


def decode(data: bytes) -> Document:
    """Decode a node-tree .ido file into a Document."""
    try:
        return IdoParser(data).parse()
    except RecursionError:
        raise InvalidValue("node nesting too deep to decode")


def describe(document: Document) -> Dict[str, int]:
    """Summary counts for diagnostic output."""
    summary = count_nodes(document.root)
    summary['names'] = len(document.names)
    return summary


# =============================================================================
# CLI (inspection only)
# =============================================================================

def print_tree(node: Node, indent: int = 0):
    pad = '  ' * indent
    if isinstance(node, Container):
        attrs = ', '.join(f"{k}={v.value!r}" for k, v in node.attributes.items())
        print(f"{pad}Container 0x{node.tag:02X} @0x{node.span[0]:04X} [{attrs}]")
        for child in node.children:
            print_tree(child, indent + 1)
    elif isinstance(node, ScalarNode):
        print(f"{pad}{node.scalar.kind.marker} @0x{node.span[0]:04X} = {node.scalar.value!r}")
    else:
        print(f"{pad}Raw 0x{node.tag:02X} @0x{node.span[0]:04X} ({len(node.payload)} bytes)")


def main():
    parser = argparse.ArgumentParser(description='Dump the node tree of an .ido file')
    parser.add_argument('file', help='Input .ido file')
    args = parser.parse_args()

    with open(args.file, 'rb') as f:
        data = f.read()

    try:
        document = decode(data)
    except IdoError as e:
        print(f"ERROR: {e.kind}: {e}", file=sys.stderr)
        return 1

    print(f"File: {args.file} ({len(data):,} bytes)")
    print(f"Version: {document.version}  Flags: 0x{document.flags:04X}")
    print(f"Names: {', '.join(document.names) or '-'}")
    print()
    print_tree(document.root)
    return 0


if __name__ == "__main__":
    sys.exit(main())
