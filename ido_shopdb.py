#!/usr/bin/env python3
"""
IDO Shop Database - fixed-size item records <-> CSV
===================================================

Shop .ido files are a plain array of 456-byte (0x1C8) records. The first
record starts with 01 00 01 00, which is how the file is recognised.

Record Structure (little-endian):
--------------------------------
| Offset | Size      | Field        |
|--------|-----------|--------------|
| 0x00   | u16       | category     |
| 0x02   | u16       | item_type_id |
| 0x04   | i16       | variant_id   |
| 0x06   | i16       | validity     |
| 0x0C   | u8        | type_flag    |
| 0x38   | i32       | set_item_id  |
| 0x64   | 100 bytes | name, UTF-16LE, nul-terminated |

Everything else in the record is unknown. The CSV keeps the whole record as
hex in a trailing `raw` column so a compile can start from the original bytes
and only patch the columns above.
"""

import io
import csv
import sys
import struct
import argparse
from dataclasses import dataclass, fields
from typing import List

from binary_cursor import BinaryReader, ByteOrder
from ido_errors import IdoError, MalformedLiteral, TrailingBytes

RECORD_SIZE = 456
SHOP_DB_SIGNATURE = b'\x01\x00\x01\x00'

NAME_OFFSET = 0x64
NAME_SIZE = 100
NAME_ENCODING = 'utf-16-le'

# column -> (offset, struct format)
FIELD_LAYOUT = {
    'category': (0x00, '<H'),
    'item_type_id': (0x02, '<H'),
    'variant_id': (0x04, '<h'),
    'validity': (0x06, '<h'),
    'type_flag': (0x0C, '<B'),
    'set_item_id': (0x38, '<i'),
}

CSV_COLUMNS = list(FIELD_LAYOUT) + ['name', 'raw']
CSV_HEADER = ','.join(CSV_COLUMNS)


@dataclass
class ShopItem:
    """One shop record; `raw` is the full record it was read from."""
    category: int
    item_type_id: int
    variant_id: int
    validity: int
    type_flag: int
    set_item_id: int
    name: str
    raw: bytes = b''


def decode_name(buffer: bytes) -> str:
    """UTF-16LE up to the first 0x0000 unit, trimmed."""
    units = []
    for i in range(0, len(buffer) - 1, 2):
        unit = buffer[i:i + 2]
        if unit == b'\x00\x00':
            break
        units.append(unit)
    return b''.join(units).decode(NAME_ENCODING, errors='replace').strip()


def encode_name(name: str, path: str) -> bytes:
    data = name.encode(NAME_ENCODING, errors='surrogatepass')
    if len(data) > NAME_SIZE:
        raise MalformedLiteral(f"name is {len(data)} bytes as UTF-16LE, limit is {NAME_SIZE}",
                               path)
    return data.ljust(NAME_SIZE, b'\x00')


def is_shop_db(data: bytes) -> bool:
    return data.startswith(SHOP_DB_SIGNATURE)


# =============================================================================
# Records
# =============================================================================

def read_item(record: bytes) -> ShopItem:
    reader = BinaryReader(record, ByteOrder.LITTLE)
    category = reader.read_u16()
    item_type_id = reader.read_u16()
    variant_id = reader.read_i16()
    validity = reader.read_i16()

    reader.skip(0x0C - reader.position)
    type_flag = reader.read_u8()

    reader.skip(0x38 - reader.position)
    set_item_id = reader.read_i32()

    reader.skip(NAME_OFFSET - reader.position)
    name = decode_name(reader.read_bytes(NAME_SIZE))

    return ShopItem(category, item_type_id, variant_id, validity, type_flag,
                    set_item_id, name, raw=record)


def write_item(item: ShopItem, row: int) -> bytes:
    """Patch the parsed fields into the item's raw record (zeros when it has none)."""
    if item.raw and len(item.raw) != RECORD_SIZE:
        raise MalformedLiteral(
            f"raw record is {len(item.raw)} bytes, expected {RECORD_SIZE}", f"row {row}.raw")
    record = bytearray(item.raw or bytes(RECORD_SIZE))

    for column, (offset, fmt) in FIELD_LAYOUT.items():
        value = getattr(item, column)
        try:
            struct.pack_into(fmt, record, offset, value)
        except struct.error:
            raise MalformedLiteral(f"{value} does not fit in {fmt[1:]}", f"row {row}.{column}")

    name_field = bytes(record[NAME_OFFSET:NAME_OFFSET + NAME_SIZE])
    if item.name != decode_name(name_field):
        record[NAME_OFFSET:NAME_OFFSET + NAME_SIZE] = encode_name(item.name, f"row {row}.name")

    return bytes(record)


def decode_records(data: bytes) -> List[ShopItem]:
    """Split a shop database into items."""
    remainder = len(data) % RECORD_SIZE
    if remainder:
        raise TrailingBytes(
            f"file size {len(data)} is not a multiple of the {RECORD_SIZE}-byte record "
            f"({remainder} byte(s) left over)", len(data) - remainder)
    return [read_item(data[offset:offset + RECORD_SIZE])
            for offset in range(0, len(data), RECORD_SIZE)]


def encode_records(items: List[ShopItem]) -> bytes:
    return b''.join(write_item(item, row) for row, item in enumerate(items, start=1))


# =============================================================================
# CSV
# =============================================================================

def to_csv(items: List[ShopItem]) -> str:
    out = io.StringIO()
    writer = csv.writer(out)
    writer.writerow(CSV_COLUMNS)
    for item in items:
        writer.writerow([getattr(item, column) for column in FIELD_LAYOUT]
                        + [item.name, item.raw.hex()])
    return out.getvalue()


def from_csv(text: str) -> List[ShopItem]:
    reader = csv.DictReader(io.StringIO(text, newline=''))
    if reader.fieldnames != CSV_COLUMNS:
        raise MalformedLiteral(f"CSV header must be: {CSV_HEADER}", line=1)

    items = []
    for row, record in enumerate(reader, start=1):
        line = reader.line_num
        values = {}
        for column in CSV_COLUMNS:
            cell = record.get(column)
            if cell is None:
                raise MalformedLiteral("missing column", f"row {row}.{column}", line)
            if column == 'name':
                values[column] = cell
            elif column == 'raw':
                try:
                    values[column] = bytes.fromhex(cell)
                except ValueError:
                    raise MalformedLiteral("raw column is not hex", f"row {row}.raw", line)
            else:
                try:
                    values[column] = int(cell.strip(), 10)
                except ValueError:
                    raise MalformedLiteral(f"{cell!r} is not an integer",
                                           f"row {row}.{column}", line)
        if None in record:
            raise MalformedLiteral("row has more cells than columns", f"row {row}", line)
        items.append(ShopItem(**values))
    return items


def decompile_shop(data: bytes) -> str:
    return to_csv(decode_records(data))


def compile_shop(text: str) -> bytes:
    return encode_records(from_csv(text))


# =============================================================================
# CLI
# =============================================================================

def main():
    parser = argparse.ArgumentParser(description='List the records of a shop database .ido file')
    parser.add_argument('file', help='Input .ido file')
    parser.add_argument('--limit', type=int, default=20, help='Records to print (default: 20)')
    args = parser.parse_args()

    with open(args.file, 'rb') as f:
        data = f.read()

    try:
        items = decode_records(data)
    except IdoError as e:
        print(f"ERROR: {e.kind}: {e}", file=sys.stderr)
        return 1

    print(f"Found {len(items)} items.")
    columns = [f.name for f in fields(ShopItem) if f.name != 'raw']
    print('  '.join(columns))
    for item in items[:args.limit]:
        print('  '.join(str(getattr(item, column)) for column in columns))
    if len(items) > args.limit:
        print(f"... and {len(items) - args.limit} more")
    return 0


if __name__ == "__main__":
    sys.exit(main())
