#!/usr/bin/env python3
"""
IDO Tool - compile and decompile .ido files
===========================================

Decompile:
    python ido_tool.py -d -f Item.ido -o Item.xml
    python ido_tool.py -d -f Shop.ido -o Shop.csv
    python ido_tool.py -d -f Icon.ido -o Icon          # texture -> Icon.dds

Compile:
    python ido_tool.py -c -f Item.xml -o Item.ido

The output file is only written once the whole conversion has succeeded.
Exit code is 0 on success, 1 on any error.
"""

import os
import sys
import argparse
from pathlib import Path

import ido_convert
from ido_errors import IdoError, IoFailure, MalformedLiteral

TEXT_ENCODING = 'utf-8'
HEX_SAMPLE_SIZE = 16


def read_bytes(path: Path) -> bytes:
    try:
        with open(path, 'rb') as f:
            return f.read()
    except OSError as e:
        raise IoFailure(f"cannot read input: {e.strerror or e}", str(path))


def write_bytes(path: Path, data: bytes) -> None:
    """Write to a sibling temp file, then move it over `path` in one step."""
    temp = path.with_name(f".{path.name}.tmp")
    try:
        with open(temp, 'wb') as f:
            f.write(data)
        os.replace(temp, path)
    except OSError as e:
        if temp.exists():
            temp.unlink()
        raise IoFailure(f"cannot write output: {e.strerror or e}", str(path))


class IdoTool:
    """Runs one conversion and reports progress the way the CLI prints it"""

    def __init__(self, verbose: bool = False, quiet: bool = False):
        self.verbose = verbose and not quiet
        self.quiet = quiet

    def say(self, message: str = ""):
        if not self.quiet:
            print(message)

    def detail(self, message: str):
        if self.verbose:
            print(f"  {message}")

    def decompile(self, source: Path, output: Path) -> Path:
        data = read_bytes(source)
        fmt = ido_convert.detect_format(data)
        self.detail(f"Input: {len(data):,} bytes")
        self.detail(f"Leading bytes: {data[:HEX_SAMPLE_SIZE].hex(' ')}")

        extension, result = ido_convert.decompile_file(data)
        if extension is not None:
            self.say(f"Detected Type: {extension.upper()} Texture")
            if not output.suffix:
                output = output.with_suffix('.' + extension)
            write_bytes(output, result)
            self.say(f"Saved as {output}")
            return output

        self.say(f"Detected Type: {ido_convert.FORMAT_NAMES[fmt]}")
        text = result
        self.detail(f"Text: {len(text):,} characters, {text.count(chr(10)) + 1:,} lines")
        write_bytes(output, text.encode(TEXT_ENCODING))
        self.say(f"Decompiled {source} -> {output}")
        return output

    def compile(self, source: Path, output: Path) -> Path:
        raw = read_bytes(source)
        try:
            text = raw.decode(TEXT_ENCODING)
        except UnicodeDecodeError as e:
            raise MalformedLiteral(f"input is not {TEXT_ENCODING} text (byte 0x{e.start:X})",
                                   str(source))

        fmt = ido_convert.detect_text_format(text)
        self.say(f"Detected Type: {ido_convert.FORMAT_NAMES[fmt]}")
        data = ido_convert.compile(text)
        self.detail(f"Output: {len(data):,} bytes")
        self.detail(f"Leading bytes: {data[:HEX_SAMPLE_SIZE].hex(' ')}")
        write_bytes(output, data)
        self.say(f"Compiled {source} -> {output}")
        return output


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='ido-tool',
        description='Compile and decompile .ido files (CP949 text, zlib and node-tree variants)',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  ido-tool -d -f Item.ido -o Item.xml
  ido-tool -c -f Item.xml -o Item.ido
"""
    )
    action = parser.add_mutually_exclusive_group(required=True)
    action.add_argument('-d', '--decompile', action='store_true', help='Decompile .ido file')
    action.add_argument('-c', '--compile', action='store_true', help='Compile text file to .ido')
    parser.add_argument('-f', '--file', required=True, type=Path, help='Input file')
    parser.add_argument('-o', '--output', required=True, type=Path, help='Output file path')
    parser.add_argument('-v', '--verbose', action='store_true', help='Print sizes and hex samples')
    parser.add_argument('--quiet', action='store_true', help='Only print errors')
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)
    tool = IdoTool(verbose=args.verbose, quiet=args.quiet)

    try:
        if args.compile:
            tool.compile(args.file, args.output)
        else:
            tool.decompile(args.file, args.output)
    except IdoError as e:
        print(f"Error: {e.kind}: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
