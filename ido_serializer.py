#!/usr/bin/env python3
"""
IDO Serializer - Document -> binary .ido node tree
==================================================

Inverse of ido_parser. Nodes are written in the order they were read:

    1. Header with a placeholder total length
    2. Name table (u8 length + CP949 bytes per name)
    3. Padding to a multiple of 4 (captured bytes when they fit, else zeros)
    4. Root node, each body wrapped in a backpatched u32 length
    5. Total length patched at offset 0x08

Limits enforced while writing:

| Field                  | Limit          | Error               |
|------------------------|----------------|---------------------|
| name table entries     | 65535          | UnencodableDocument |
| name length            | 255 bytes      | UnencodableDocument |
| attributes / children  | 65535 per node | UnencodableDocument |
| str payload            | 65535 bytes    | ValueOutOfRange     |
| cstr payload           | no 0x00 byte   | ValueOutOfRange     |
| integers / floats      | field width    | ValueOutOfRange     |

Usage:
    python ido_serializer.py input.ido            # re-encode and compare
    python ido_serializer.py input.ido -o out.ido
"""

import sys
import math
import argparse
from typing import Dict, List

from binary_cursor import BinaryWriter, ByteOrder
from ido_document import (
    BODY_ALIGNMENT, INTEGER_RANGES, MAGIC, TEXT_ENCODING, Container, Document,
    Node, RawNode, Scalar, ScalarKind, ScalarNode, is_container_tag,
    is_known_tag, node_label,
)
from ido_errors import EncodeError, IdoError, UnencodableDocument, ValueOutOfRange

MAX_COUNT = 0xFFFF
MAX_NAME_LENGTH = 0xFF
MAX_STR_LENGTH = 0xFFFF
MAX_BYTES_LENGTH = 0xFFFFFFFF

TOTAL_LENGTH_OFFSET = 0x08


def write_prologue(writer: BinaryWriter, document: Document) -> int:
    """
    Write header, name table and padding.

    Returns the offset of the total-length field, which is left as zero for
    the caller to patch.
    """
    names = document.names
    if len(names) > MAX_COUNT:
        raise UnencodableDocument(f"{len(names)} names exceed the {MAX_COUNT}-entry name table")

    encoded: List[bytes] = []
    seen = set()
    for index, name in enumerate(names):
        if name in seen:
            raise UnencodableDocument(f"name table entry {index} repeats {name!r}")
        seen.add(name)
        try:
            raw_name = name.encode(TEXT_ENCODING)
        except UnicodeEncodeError:
            raise UnencodableDocument(f"name {name!r} cannot be encoded as {TEXT_ENCODING}")
        if len(raw_name) > MAX_NAME_LENGTH:
            raise UnencodableDocument(
                f"name {name[:20]!r}... is {len(raw_name)} bytes, limit is {MAX_NAME_LENGTH}")
        encoded.append(raw_name)

    writer.write_bytes(MAGIC)
    writer.write_u16(document.version)
    writer.write_u16(document.flags)
    total_offset = writer.reserve_u32()
    writer.write_u16(len(encoded))
    writer.write_u16(document.reserved)

    for raw_name in encoded:
        writer.write_length_prefixed(raw_name, width=1)

    writer.align_to(BODY_ALIGNMENT, fill=document.padding)
    return total_offset


def write_scalar(writer: BinaryWriter, scalar: Scalar) -> None:
    """Write one scalar payload (no tag, no length)."""
    kind = scalar.kind
    value = scalar.value

    if kind is ScalarKind.STR:
        if len(value) > MAX_STR_LENGTH:
            raise ValueOutOfRange(f"str of {len(value)} bytes exceeds {MAX_STR_LENGTH}")
        writer.write_length_prefixed(bytes(value), width=2)
    elif kind is ScalarKind.CSTR:
        writer.write_cstring(bytes(value))
    elif kind is ScalarKind.BYTES:
        if len(value) > MAX_BYTES_LENGTH:
            raise ValueOutOfRange(f"bytes of {len(value)} exceed {MAX_BYTES_LENGTH}")
        writer.write_length_prefixed(bytes(value), width=4)
    elif kind is ScalarKind.BOOL:
        if not isinstance(value, bool):
            raise ValueOutOfRange(f"bool value must be True or False, got {value!r}")
        writer.write_u8(1 if value else 0)
    elif kind.is_float:
        size = 4 if kind is ScalarKind.F32 else 8
        if scalar.raw is not None and len(scalar.raw) == size and math.isnan(value):
            # NaN payload bits
            writer.write_bytes(scalar.raw)
        else:
            writer.write(kind.field_code, value)
    else:
        low, high = INTEGER_RANGES[kind]
        if isinstance(value, bool) or not isinstance(value, int) or not low <= value <= high:
            raise ValueOutOfRange(f"{value!r} is outside the {kind.marker} range [{low}, {high}]")
        writer.write(kind.field_code, value)


class IdoSerializer:
    """Encoder for node-tree .ido files"""

    def __init__(self, document: Document):
        self.document = document
        self.writer = BinaryWriter(ByteOrder.LITTLE)
        self.name_index: Dict[str, int] = {}

    def serialize(self) -> bytes:
        writer = self.writer
        total_offset = write_prologue(writer, self.document)
        self.name_index = {name: i for i, name in enumerate(self.document.names)}

        root = self.document.root
        self.write_node(root, f"/{node_label(root)}[0]")

        writer.patch_u32(total_offset, len(writer))
        return writer.getvalue()

    def write_node(self, node: Node, path: str) -> None:
        writer = self.writer
        try:
            if isinstance(node, Container):
                if not is_container_tag(node.tag):
                    raise UnencodableDocument(
                        f"container tag 0x{node.tag:02X} is outside 0x01-0x0F")
                writer.write_u8(node.tag)
                with writer.block():
                    self.write_attributes(node, path)
                    self.write_children(node, path)
            elif isinstance(node, ScalarNode):
                writer.write_u8(node.tag)
                with writer.block():
                    write_scalar(writer, node.scalar)
            elif isinstance(node, RawNode):
                if is_known_tag(node.tag):
                    raise UnencodableDocument(
                        f"raw node uses known tag 0x{node.tag:02X} and would not decode back")
                writer.write_u8(node.tag)
                with writer.block():
                    writer.write_bytes(node.payload)
            else:
                raise UnencodableDocument(f"not a node: {type(node).__name__}")
        except EncodeError as e:
            if e.path is None:
                e.path = path
            raise

    def write_attributes(self, node: Container, path: str) -> None:
        writer = self.writer
        if len(node.attributes) > MAX_COUNT:
            raise UnencodableDocument(f"{len(node.attributes)} attributes exceed {MAX_COUNT}")

        writer.write_u16(len(node.attributes))
        for name, scalar in node.attributes.items():
            index = self.name_index.get(name)
            if index is None:
                raise UnencodableDocument(f"attribute {name!r} is missing from the name table",
                                          f"{path}@{name}")
            writer.write_u16(index)
            writer.write_u8(scalar.kind.value)
            try:
                write_scalar(writer, scalar)
            except EncodeError as e:
                e.path = f"{path}@{name}"
                raise

    def write_children(self, node: Container, path: str) -> None:
        writer = self.writer
        if len(node.children) > MAX_COUNT:
            raise UnencodableDocument(f"{len(node.children)} children exceed {MAX_COUNT}")

        writer.write_u16(len(node.children))
        for i, child in enumerate(node.children):
            self.write_node(child, f"{path}/{node_label(child)}[{i}]")


def encode(document: Document) -> bytes:
    """Encode a Document into a node-tree .ido file."""
    try:
        return IdoSerializer(document).serialize()
    except RecursionError:
        raise UnencodableDocument("node nesting too deep to encode")


# =============================================================================
# CLI (round-trip check)
# =============================================================================

def compare_files(original: bytes, rebuilt: bytes) -> bool:
    """Print a byte-level comparison; returns True on an exact match."""
    print(f"  Original: {len(original):,} bytes")
    print(f"  Rebuilt:  {len(rebuilt):,} bytes")

    if original == rebuilt:
        print("  PERFECT MATCH!")
        return True

    if len(original) != len(rebuilt):
        print(f"  SIZE MISMATCH: {len(original) - len(rebuilt):+d}")

    differences = [i for i, (a, b) in enumerate(zip(original, rebuilt)) if a != b]
    print(f"  Found {len(differences)} differing byte(s)")
    for offset in differences[:10]:
        print(f"    0x{offset:04X}: {original[offset]:02X} vs {rebuilt[offset]:02X}")
    if len(differences) > 10:
        print(f"    ... and {len(differences) - 10} more")
    return False


def main():
    from ido_parser import decode

    parser = argparse.ArgumentParser(description='Re-encode an .ido file and compare it to the input')
    parser.add_argument('file', help='Input .ido file')
    parser.add_argument('-o', '--output', help='Write the re-encoded file here')
    args = parser.parse_args()

    with open(args.file, 'rb') as f:
        original = f.read()

    try:
        rebuilt = encode(decode(original))
    except IdoError as e:
        print(f"ERROR: {e.kind}: {e}", file=sys.stderr)
        return 1

    print(f"Comparing {args.file}:")
    matched = compare_files(original, rebuilt)

    if args.output:
        with open(args.output, 'wb') as f:
            f.write(rebuilt)
        print(f"\nWrote: {args.output}")

    return 0 if matched else 1


if __name__ == "__main__":
    sys.exit(main())
