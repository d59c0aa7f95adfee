#!/usr/bin/env python3
"""
IDO Document Model
==================

In-memory tree shared by the binary codec (ido_parser / ido_serializer) and
the text codec (ido_markup).

Tag Table:
---------
| Tag         | Layout     | Notes                                      |
|-------------|------------|--------------------------------------------|
| 0x01 - 0x0F | Container  | attributes + children                      |
| 0x10 - 0x1D | Scalar     | one typed value, see ScalarKind            |
| anything    | Raw        | unknown tag, body kept as opaque bytes     |

Scalar Kinds (type code == tag):
-------------------------------
| Code | Kind  | Payload                       | Text marker        |
|------|-------|-------------------------------|--------------------|
| 0x10 | U8    | 1 byte                        | u8                 |
| 0x11 | U16   | 2 bytes                       | u16                |
| 0x12 | U32   | 4 bytes                       | u32                |
| 0x13 | U64   | 8 bytes                       | u64                |
| 0x14 | I8    | 1 byte                        | i8                 |
| 0x15 | I16   | 2 bytes                       | i16                |
| 0x16 | I32   | 4 bytes                       | i32                |
| 0x17 | I64   | 8 bytes                       | i64                |
| 0x18 | F32   | 4 bytes IEEE-754              | f32                |
| 0x19 | F64   | 8 bytes IEEE-754              | f64                |
| 0x1A | BOOL  | 1 byte (0/1)                  | bool               |
| 0x1B | STR   | u16 length + CP949 bytes      | str / str.hex      |
| 0x1C | CSTR  | CP949 bytes + 0x00            | cstr / cstr.hex    |
| 0x1D | BYTES | u32 length + opaque bytes     | bytes              |

Strings are stored as their exact encoded bytes; decoding them for display
is the text codec's job.
"""

import math
import struct
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterator, Optional, Tuple, Union


# =============================================================================
# Format Constants
# =============================================================================

MAGIC = b'IDO\x1a'
HEADER_SIZE = 16
DEFAULT_VERSION = 1
SUPPORTED_VERSIONS = (1,)
BODY_ALIGNMENT = 4

# Strings inside IDO files use the Korean Windows code page
TEXT_ENCODING = 'cp949'

CONTAINER_TAGS = range(0x01, 0x10)

# Span = (offset, length) in the source binary
Span = Tuple[int, int]


class ScalarKind(Enum):
    """Scalar type codes; the value is the byte written to the stream"""
    U8 = 0x10
    U16 = 0x11
    U32 = 0x12
    U64 = 0x13
    I8 = 0x14
    I16 = 0x15
    I32 = 0x16
    I64 = 0x17
    F32 = 0x18
    F64 = 0x19
    BOOL = 0x1A
    STR = 0x1B
    CSTR = 0x1C
    BYTES = 0x1D

    @property
    def marker(self) -> str:
        return self.name.lower()

    @property
    def field_code(self) -> Optional[str]:
        """binary_cursor field code for fixed-width kinds"""
        return FIXED_FIELDS.get(self)

    @property
    def is_integer(self) -> bool:
        return self in INTEGER_RANGES

    @property
    def is_float(self) -> bool:
        return self in (ScalarKind.F32, ScalarKind.F64)

    @property
    def is_string(self) -> bool:
        return self in (ScalarKind.STR, ScalarKind.CSTR)


FIXED_FIELDS = {
    ScalarKind.U8: 'u8',
    ScalarKind.U16: 'u16',
    ScalarKind.U32: 'u32',
    ScalarKind.U64: 'u64',
    ScalarKind.I8: 'i8',
    ScalarKind.I16: 'i16',
    ScalarKind.I32: 'i32',
    ScalarKind.I64: 'i64',
    ScalarKind.F32: 'f32',
    ScalarKind.F64: 'f64',
    ScalarKind.BOOL: 'u8',
}

INTEGER_RANGES = {
    ScalarKind.U8: (0, 0xFF),
    ScalarKind.U16: (0, 0xFFFF),
    ScalarKind.U32: (0, 0xFFFFFFFF),
    ScalarKind.U64: (0, 0xFFFFFFFFFFFFFFFF),
    ScalarKind.I8: (-0x80, 0x7F),
    ScalarKind.I16: (-0x8000, 0x7FFF),
    ScalarKind.I32: (-0x80000000, 0x7FFFFFFF),
    ScalarKind.I64: (-0x8000000000000000, 0x7FFFFFFFFFFFFFFF),
}

SCALAR_CODES = {kind.value: kind for kind in ScalarKind}
SCALAR_MARKERS = {kind.marker: kind for kind in ScalarKind}


def is_container_tag(tag: int) -> bool:
    return tag in CONTAINER_TAGS


def is_scalar_tag(tag: int) -> bool:
    return tag in SCALAR_CODES


def is_known_tag(tag: int) -> bool:
    return is_container_tag(tag) or is_scalar_tag(tag)


def float_bits(kind: ScalarKind, value: float) -> bytes:
    """Little-endian bit pattern of a float scalar."""
    return struct.pack('<f' if kind is ScalarKind.F32 else '<d', value)


# =============================================================================
# Nodes
# =============================================================================

@dataclass(frozen=True, eq=False)
class Scalar:
    """
    One typed value.

    `raw` holds the exact bytes the value was read from (binary decode) or
    given as (hex float literal). It does not take part in equality, except
    that floats compare by bit pattern so NaN payloads and -0.0 are kept
    apart from their look-alikes.
    """
    kind: ScalarKind
    value: Union[int, float, bool, bytes]
    raw: Optional[bytes] = None

    def _key(self):
        if self.kind.is_float:
            if self.raw is not None and math.isnan(self.value):
                return self.raw
            return float_bits(self.kind, self.value)
        return self.value

    def __eq__(self, other):
        if not isinstance(other, Scalar):
            return NotImplemented
        return self.kind is other.kind and self._key() == other._key()

    def __hash__(self):
        return hash((self.kind, self._key()))

    def __repr__(self):
        return f"Scalar({self.kind.marker}, {self.value!r})"


@dataclass(frozen=True, eq=False)
class Container:
    """Tagged node with ordered attributes and ordered children."""
    tag: int
    attributes: Dict[str, Scalar] = field(default_factory=dict)
    children: Tuple['Node', ...] = ()
    span: Optional[Span] = field(default=None, compare=False, repr=False)

    def __eq__(self, other):
        # Attribute order is significant
        if not isinstance(other, Container):
            return NotImplemented
        return ((self.tag, tuple(self.attributes.items()), self.children)
                == (other.tag, tuple(other.attributes.items()), other.children))


@dataclass(frozen=True)
class ScalarNode:
    """A scalar appearing as a child node; its tag is the scalar's type code."""
    scalar: Scalar
    span: Optional[Span] = field(default=None, compare=False, repr=False)

    @property
    def tag(self) -> int:
        return self.scalar.kind.value


@dataclass(frozen=True)
class RawNode:
    """Unknown tag preserved byte-for-byte."""
    tag: int
    payload: bytes
    span: Optional[Span] = field(default=None, compare=False, repr=False)


Node = Union[Container, ScalarNode, RawNode]


@dataclass(frozen=True)
class Document:
    """
    A decoded IDO file.

    `names` is the name table attribute names point into, `padding` the
    alignment bytes between the name table and the root node.
    """
    root: Node
    names: Tuple[str, ...] = ()
    version: int = DEFAULT_VERSION
    flags: int = 0
    reserved: int = 0
    padding: bytes = b''

    @classmethod
    def from_root(cls, root: Node, **kwargs) -> 'Document':
        """Build a document whose name table and padding are derived from the tree."""
        names = canonical_names(root)
        return cls(root=root, names=names, padding=canonical_padding(names), **kwargs)


# =============================================================================
# Tree helpers
# =============================================================================

def iter_nodes(root: Node) -> Iterator[Node]:
    """Pre-order walk, the same order the binary stores nodes in."""
    stack = [root]
    while stack:
        node = stack.pop()
        yield node
        if isinstance(node, Container):
            stack.extend(reversed(node.children))


def canonical_names(root: Node) -> Tuple[str, ...]:
    """Attribute names in first-use order; the table an encoder would build."""
    seen: Dict[str, None] = {}
    for node in iter_nodes(root):
        if isinstance(node, Container):
            for name in node.attributes:
                seen.setdefault(name, None)
    return tuple(seen)


def prologue_size(names: Tuple[str, ...], encoding: str = TEXT_ENCODING) -> int:
    """Header plus name table size, before padding."""
    return HEADER_SIZE + sum(1 + len(name.encode(encoding)) for name in names)


def canonical_padding(names: Tuple[str, ...]) -> bytes:
    """Zero padding that aligns the root node after this name table."""
    return b"\x00" * (-prologue_size(names) % BODY_ALIGNMENT)


def is_canonical_prologue(document: Document) -> bool:
    """True when the prologue carries nothing the tree does not already imply."""
    return (document.version == DEFAULT_VERSION
            and document.flags == 0
            and document.reserved == 0
            and document.names == canonical_names(document.root)
            and document.padding == canonical_padding(document.names))


def count_nodes(root: Node) -> Dict[str, int]:
    """Node counts by layout, for diagnostics."""
    counts = {'containers': 0, 'scalars': 0, 'raw': 0, 'attributes': 0}
    for node in iter_nodes(root):
        if isinstance(node, Container):
            counts['containers'] += 1
            counts['attributes'] += len(node.attributes)
        elif isinstance(node, ScalarNode):
            counts['scalars'] += 1
        else:
            counts['raw'] += 1
    return counts


def node_label(node: Node) -> str:
    """Element name a node gets in the text form."""
    if isinstance(node, Container):
        return f"tag0x{node.tag:02x}"
    if isinstance(node, ScalarNode):
        return node.scalar.kind.marker
    return 'raw'
