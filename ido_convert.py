#!/usr/bin/env python3
"""
IDO Conversion - decompile / compile for every .ido variant
===========================================================

| Format  | Recognised by                     | Text form            |
|---------|-----------------------------------|----------------------|
| tree    | magic "IDO\\x1A"                  | markup (ido_markup)  |
| shop-db | first record starts 01 00 01 00   | CSV (ido_shopdb)     |
| legacy  | anything else                     | markup + header note |

decompile(data) and compile(text) pick the codec, run it, and add a context
note to any IdoError on the way out. The error kind never changes.
"""

from typing import Optional, Tuple, Union

from ido_document import MAGIC
from ido_errors import DecodeError, EncodeError, IdoError, ParseError
from ido_legacy import (
    HEADER_COMMENT_START, compile_markup, decompile_markup, detect_texture, markup_text, unpack,
)
from ido_markup import from_text, to_text
from ido_parser import decode
from ido_serializer import encode
from ido_shopdb import CSV_HEADER, compile_shop, decompile_shop, is_shop_db

FORMAT_TREE = 'tree'
FORMAT_SHOP_DB = 'shop-db'
FORMAT_LEGACY = 'legacy'

FORMAT_NAMES = {
    FORMAT_TREE: 'IDO Node Tree',
    FORMAT_SHOP_DB: 'Shop Database (Binary Structs)',
    FORMAT_LEGACY: 'Compressed Markup',
}


def detect_format(data: bytes) -> str:
    """Binary variant of an .ido file."""
    # A cut-short magic still counts as a node tree so it fails as truncated
    if data[:len(MAGIC)] == MAGIC[:len(data)]:
        return FORMAT_TREE
    if is_shop_db(data):
        return FORMAT_SHOP_DB
    return FORMAT_LEGACY


def detect_text_format(text: str) -> str:
    """Which binary variant a decompiled text compiles back to."""
    first_line = text.split('\n', 1)[0].strip()
    if first_line == CSV_HEADER:
        return FORMAT_SHOP_DB
    if HEADER_COMMENT_START in text:
        return FORMAT_LEGACY
    return FORMAT_TREE


def add_decode_context(error: IdoError, fmt: str) -> None:
    offset = getattr(error, 'offset', None)
    if isinstance(error, DecodeError) and offset is not None:
        error.add_context(f"while decoding byte offset 0x{offset:X}")
    else:
        error.add_context(f"while decoding {FORMAT_NAMES[fmt]}")


def add_parse_context(error: IdoError, fmt: str) -> None:
    line = getattr(error, 'line', None)
    if isinstance(error, ParseError) and line is not None:
        error.add_context(f"while parsing text line {line}")
    elif isinstance(error, EncodeError):
        error.add_context(f"while encoding {FORMAT_NAMES[fmt]}")
    else:
        error.add_context(f"while parsing {FORMAT_NAMES[fmt]} text")


# =============================================================================
# Facade
# =============================================================================

def decompile(data: bytes) -> str:
    """Binary .ido -> text."""
    fmt = detect_format(data)
    try:
        if fmt == FORMAT_TREE:
            return to_text(decode(data))
        if fmt == FORMAT_SHOP_DB:
            return decompile_shop(data)
        return decompile_markup(data)
    except IdoError as e:
        add_decode_context(e, fmt)
        raise


def decompile_file(data: bytes) -> Tuple[Optional[str], Union[str, bytes]]:
    """
    Binary .ido -> text, passing embedded textures through.

    Returns (None, text) for markup and CSV, or (extension, image bytes) when
    a legacy container holds a texture. The container is unpacked once.
    """
    fmt = detect_format(data)
    if fmt != FORMAT_LEGACY:
        return None, decompile(data)
    try:
        header, payload = unpack(data)
        extension = detect_texture(payload)
        if extension is not None:
            return extension, payload
        return None, markup_text(header, payload)
    except IdoError as e:
        add_decode_context(e, fmt)
        raise


def compile(text: str) -> bytes:
    """Text -> binary .ido."""
    fmt = detect_text_format(text)
    try:
        if fmt == FORMAT_TREE:
            return encode(from_text(text))
        if fmt == FORMAT_SHOP_DB:
            return compile_shop(text)
        return compile_markup(text)
    except IdoError as e:
        add_parse_context(e, fmt)
        raise


def extract_texture(data: bytes) -> Optional[Tuple[str, bytes]]:
    """(extension, image bytes) when a legacy container holds an image, else None."""
    if detect_format(data) != FORMAT_LEGACY:
        return None
    try:
        _, payload = unpack(data)
    except IdoError as e:
        add_decode_context(e, FORMAT_LEGACY)
        raise
    extension = detect_texture(payload)
    if extension is None:
        return None
    return extension, payload
