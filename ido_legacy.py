#!/usr/bin/env python3
"""
IDO Legacy Container - zlib-compressed markup behind a fixed header
===================================================================

Older .ido files are not node trees. They hold a 0x5F-byte header the tool
does not interpret, followed by one zlib stream:

| Offset | Size     | Field                                        |
|--------|----------|----------------------------------------------|
| 0x00   | 0x5F     | Opaque header (kept verbatim)                |
| 0x5F   | variable | zlib stream (default compression level)      |

The decompressed payload is either CP949 markup or an embedded image:

| Signature                        | Type |
|----------------------------------|------|
| starts with "DDS "               | dds  |
| ends with "TRUEVISION-XFILE.\\0" | tga  |
| starts with "BM"                 | bmp  |
| starts with "\\x89PNG"           | png  |

Decompiled markup keeps the header as a trailing comment:

    <markup ...>
    <!-- IDO HEADER: 0a0b0c... -->

Compiling finds the last header comment, drops it together with the newline
the decompiler put in front of it, and recompresses the markup.
"""

import re
import sys
import zlib
import argparse
from typing import Optional, Tuple

from ido_errors import (
    CorruptPayload, IdoError, MalformedLiteral, TrailingBytes, TruncatedInput,
    UnexpectedEof,
)

LEGACY_HEADER_SIZE = 0x5F
MARKUP_ENCODING = 'cp949'

HEADER_COMMENT_START = '<!-- IDO HEADER: '
HEADER_COMMENT_END = ' -->'
HEADER_HEX_RE = re.compile(r'[0-9A-Fa-f]*\Z')

# (type, test) in detection order
TEXTURE_SIGNATURES = [
    ('dds', lambda payload: payload.startswith(b'DDS ')),
    ('tga', lambda payload: payload.endswith(b'TRUEVISION-XFILE.\x00')),
    ('bmp', lambda payload: payload.startswith(b'BM')),
    ('png', lambda payload: payload.startswith(b'\x89PNG')),
]


def unpack(data: bytes) -> Tuple[bytes, bytes]:
    """
    Split a legacy container into (header, decompressed payload).

    The zlib stream must end exactly at the end of the file.
    """
    if len(data) < LEGACY_HEADER_SIZE:
        raise UnexpectedEof(0, LEGACY_HEADER_SIZE, len(data))
    header = data[:LEGACY_HEADER_SIZE]

    decompressor = zlib.decompressobj()
    try:
        payload = decompressor.decompress(data[LEGACY_HEADER_SIZE:])
    except zlib.error as e:
        raise CorruptPayload(f"zlib stream is corrupt: {e}", LEGACY_HEADER_SIZE)

    if not decompressor.eof:
        raise TruncatedInput("zlib stream ends before its final block", len(data))
    if decompressor.unused_data:
        unused = len(decompressor.unused_data)
        raise TrailingBytes(f"{unused} byte(s) after the end of the zlib stream",
                            len(data) - unused)
    return header, payload


def pack(header: bytes, payload: bytes) -> bytes:
    """Build a legacy container from its header and uncompressed payload."""
    if len(header) != LEGACY_HEADER_SIZE:
        raise MalformedLiteral(
            f"header is {len(header)} bytes, expected {LEGACY_HEADER_SIZE}", 'IDO HEADER')
    return header + zlib.compress(payload)


def detect_texture(payload: bytes) -> Optional[str]:
    """File extension of an embedded image, or None for markup."""
    for extension, matches in TEXTURE_SIGNATURES:
        if matches(payload):
            return extension
    return None


# =============================================================================
# Markup <-> container
# =============================================================================

def decompile_markup(data: bytes) -> str:
    """Container bytes -> markup text with the header comment appended."""
    return markup_text(*unpack(data))


def markup_text(header: bytes, payload: bytes) -> str:
    """Markup text for an already unpacked container."""
    texture = detect_texture(payload)
    if texture is not None:
        raise CorruptPayload(
            f"payload is a {texture.upper()} texture, not markup; extract it instead",
            LEGACY_HEADER_SIZE)

    try:
        markup = payload.decode(MARKUP_ENCODING)
    except UnicodeDecodeError as e:
        raise CorruptPayload(
            f"payload byte 0x{e.start:X} is not valid {MARKUP_ENCODING} text", LEGACY_HEADER_SIZE)

    return f"{markup}\n{HEADER_COMMENT_START}{header.hex()}{HEADER_COMMENT_END}"


def split_header_comment(text: str) -> Tuple[str, bytes]:
    """Separate markup text from the header recorded in its last header comment."""
    start = text.rfind(HEADER_COMMENT_START)
    if start == -1:
        raise MalformedLiteral("no '<!-- IDO HEADER: ... -->' comment found", 'IDO HEADER')
    line = text.count('\n', 0, start) + 1

    hex_start = start + len(HEADER_COMMENT_START)
    end = text.find(HEADER_COMMENT_END, hex_start)
    if end == -1:
        raise MalformedLiteral("header comment is not closed", 'IDO HEADER', line)

    hex_text = text[hex_start:end].strip()
    if not HEADER_HEX_RE.match(hex_text) or len(hex_text) % 2:
        raise MalformedLiteral("header comment is not a hex string", 'IDO HEADER', line)
    header = bytes.fromhex(hex_text)
    if len(header) != LEGACY_HEADER_SIZE:
        raise MalformedLiteral(
            f"header comment holds {len(header)} bytes, expected {LEGACY_HEADER_SIZE}",
            'IDO HEADER', line)

    markup = text[:start]
    if markup.endswith('\n'):
        markup = markup[:-1]
    return markup, header


def compile_markup(text: str) -> bytes:
    """Markup text with header comment -> container bytes."""
    markup, header = split_header_comment(text)
    try:
        payload = markup.encode(MARKUP_ENCODING)
    except UnicodeEncodeError as e:
        line = markup.count('\n', 0, e.start) + 1
        raise MalformedLiteral(
            f"character {markup[e.start:e.end]!r} cannot be stored as {MARKUP_ENCODING}",
            line=line)
    return pack(header, payload)


# =============================================================================
# CLI
# =============================================================================

def main():
    parser = argparse.ArgumentParser(description='Inspect a legacy compressed .ido file')
    parser.add_argument('file', help='Input .ido file')
    args = parser.parse_args()

    with open(args.file, 'rb') as f:
        data = f.read()

    try:
        header, payload = unpack(data)
    except IdoError as e:
        print(f"ERROR: {e.kind}: {e}", file=sys.stderr)
        return 1

    print(f"File: {args.file} ({len(data):,} bytes)")
    print(f"Header: {header[:16].hex(' ')} ...")
    print(f"Compressed: {len(data) - LEGACY_HEADER_SIZE:,} bytes")
    print(f"Decompressed: {len(payload):,} bytes")
    texture = detect_texture(payload)
    print(f"Payload: {texture.upper() + ' texture' if texture else 'markup'}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
