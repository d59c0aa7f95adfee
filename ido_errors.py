#!/usr/bin/env python3
"""
IDO Errors - Shared error taxonomy
==================================

Every failure raised by the IDO codec modules derives from IdoError, which
itself is a ValueError so callers that only care about "bad input" can keep
catching that.

| Family      | Kind                | Raised when                                  |
|-------------|---------------------|----------------------------------------------|
| DecodeError | BadMagic            | Magic bytes / container signature unknown    |
|             | UnsupportedVersion  | Header version not in SUPPORTED_VERSIONS     |
|             | TruncatedInput      | File shorter than its declared length        |
|             | TrailingBytes       | Bytes left over after the declared structure |
|             | LengthMismatch      | Sub-block not consumed exactly               |
|             | UnexpectedEof       | Read past the end of the buffer              |
|             | UnknownScalarCode   | Attribute type code not in the tag table     |
|             | InvalidValue        | Bad bool byte, name index, duplicate name    |
|             | CorruptPayload      | Broken zlib stream or undecodable text       |
| ParseError  | UnbalancedStructure | Markup open/close mismatch or syntax error   |
|             | UnknownScalarType   | Unknown element name or literal marker       |
|             | MalformedLiteral    | Bad number, hex blob, length or string       |
| EncodeError | ValueOutOfRange     | Value does not fit its binary field          |
|             | UnencodableDocument | Structure cannot be framed in the format     |
| IoFailure   | IoFailure           | Reading or writing a file failed             |
"""

from typing import List, Optional


class IdoError(ValueError):
    """Base class for every IDO conversion failure."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message
        self.context: List[str] = []

    @property
    def kind(self) -> str:
        return type(self).__name__

    def location(self) -> Optional[str]:
        return None

    def add_context(self, note: str) -> 'IdoError':
        """Attach a context line without changing the error kind."""
        self.context.append(note)
        return self

    def __str__(self):
        text = self.message
        where = self.location()
        if where:
            text = f"{text} ({where})"
        for note in self.context:
            text = f"{text}; {note}"
        return text


# =============================================================================
# Binary decode errors
# =============================================================================

class DecodeError(IdoError):
    """A binary input could not be decoded. `offset` is the byte position."""

    def __init__(self, message: str, offset: Optional[int] = None):
        super().__init__(message)
        self.offset = offset

    def location(self) -> Optional[str]:
        if self.offset is None:
            return None
        return f"at byte offset 0x{self.offset:X}"


class BadMagic(DecodeError):
    pass


class UnsupportedVersion(DecodeError):
    pass


class TruncatedInput(DecodeError):
    pass


class TrailingBytes(DecodeError):
    pass


class LengthMismatch(DecodeError):
    pass


class UnexpectedEof(DecodeError):
    def __init__(self, offset: int, needed: int, available: int):
        super().__init__(f"needed {needed} byte(s) but only {available} remain", offset)
        self.needed = needed
        self.available = available


class UnknownScalarCode(DecodeError):
    pass


class InvalidValue(DecodeError):
    pass


class CorruptPayload(DecodeError):
    pass


# =============================================================================
# Text parse errors
# =============================================================================

class ParseError(IdoError):
    """Text could not be parsed. `path` names the element, `line`/`column` the text position."""

    def __init__(self, message: str, path: Optional[str] = None, line: Optional[int] = None,
                 column: Optional[int] = None):
        super().__init__(message)
        self.path = path
        self.line = line
        self.column = column

    def location(self) -> Optional[str]:
        parts = []
        if self.path:
            parts.append(f"at {self.path}")
        if self.line is not None:
            parts.append(f"line {self.line}")
        if self.column is not None:
            parts.append(f"column {self.column}")
        return ', '.join(parts) or None


class UnbalancedStructure(ParseError):
    pass


class UnknownScalarType(ParseError):
    pass


class MalformedLiteral(ParseError):
    pass


# =============================================================================
# Binary encode errors
# =============================================================================

class EncodeError(IdoError):
    """A document cannot be written in the binary format."""

    def __init__(self, message: str, path: Optional[str] = None):
        super().__init__(message)
        self.path = path

    def location(self) -> Optional[str]:
        return f"at {self.path}" if self.path else None


class ValueOutOfRange(EncodeError):
    pass


class UnencodableDocument(EncodeError):
    pass


# =============================================================================
# Collaborator errors
# =============================================================================

class IoFailure(IdoError):
    """File access failed; wraps the OSError reported by the collaborator."""

    def __init__(self, message: str, filename: Optional[str] = None):
        super().__init__(message)
        self.filename = filename

    def location(self) -> Optional[str]:
        return self.filename
