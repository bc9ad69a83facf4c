"""
Marshal Value Model — typed values produced by the decoder.

Every wire opcode maps onto one of these frozen dataclasses. Integer widths
are kept apart (Byte / Short / Integer / BigInt) because the server treats
them differently, even though they compare equal as dict keys.

Strings come in two flavours:
- String: a memoryview borrowed from the decoded buffer (zero-copy, raw
  bytes, not assumed to be text). Keep the source buffer alive while you
  hold one, or call bytes() on it.
- OwnedString: a validated str produced by the UCS-2 and UTF-8 opcodes.

Dict keys are wrapped in HashableValue, which carries the cross-type
ordering the server side uses for its dictionaries (see compare_keys).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from functools import total_ordering
from types import MappingProxyType
from typing import Iterable, Iterator, Mapping

from .errors import UnhashableKeyError


# ---- Value variants ----

@dataclass(frozen=True)
class Value:
    """Base class for every decoded value."""


@dataclass(frozen=True)
class NoneValue(Value):
    pass


@dataclass(frozen=True)
class Byte(Value):
    value: int  # u8


@dataclass(frozen=True)
class Short(Value):
    value: int  # i16


@dataclass(frozen=True)
class Integer(Value):
    value: int  # i64, also carries widened i32


@dataclass(frozen=True)
class BigInt(Value):
    value: int  # i128 from VAR_INTEGER


@dataclass(frozen=True)
class Float(Value):
    value: float


@dataclass(frozen=True)
class String(Value):
    """Raw byte string borrowed from the source buffer."""
    data: memoryview

    def __post_init__(self):
        if not isinstance(self.data, memoryview):
            object.__setattr__(self, "data", memoryview(bytes(self.data)))

    def __bytes__(self) -> bytes:
        return self.data.tobytes()

    def __len__(self) -> int:
        return self.data.nbytes

    def text(self, encoding: str = "utf-8", errors: str = "replace") -> str:
        return self.data.tobytes().decode(encoding, errors=errors)

    def __repr__(self) -> str:
        return f"String({self.data.tobytes()!r})"


@dataclass(frozen=True)
class OwnedString(Value):
    value: str


@dataclass(frozen=True)
class Tuple(Value):
    items: tuple[Value, ...] = ()

    def __post_init__(self):
        if not isinstance(self.items, tuple):
            object.__setattr__(self, "items", tuple(self.items))

    def __len__(self) -> int:
        return len(self.items)

    def __iter__(self) -> Iterator[Value]:
        return iter(self.items)

    def __getitem__(self, index: int) -> Value:
        return self.items[index]


@dataclass(frozen=True)
class Dict(Value):
    """Mapping of HashableValue -> Value, iterated in key order."""
    entries: Mapping[HashableValue, Value] = field(default_factory=dict)

    def __post_init__(self):
        # read-only view over a private copy
        object.__setattr__(self, "entries", MappingProxyType(dict(self.entries)))

    @classmethod
    def from_pairs(cls, pairs: Iterable[tuple[Value, Value]]) -> Dict:
        """Build from (key, value) pairs. A later key equal to an earlier
        one replaces its value; the first key object is kept."""
        entries: dict[HashableValue, Value] = {}
        for key, value in pairs:
            entries[to_hashable(key)] = value
        return cls(entries)

    def __len__(self) -> int:
        return len(self.entries)

    def __iter__(self) -> Iterator[HashableValue]:
        return iter(sorted(self.entries))

    def __contains__(self, key: object) -> bool:
        try:
            return _as_key(key) in self.entries
        except UnhashableKeyError:
            return False

    def __getitem__(self, key: Value | HashableValue) -> Value:
        return self.entries[_as_key(key)]

    def get(self, key: Value | HashableValue, default: Value | None = None) -> Value | None:
        return self.entries.get(_as_key(key), default)

    def keys(self) -> list[HashableValue]:
        return sorted(self.entries)

    def values(self) -> list[Value]:
        return [self.entries[k] for k in self.keys()]

    def items(self) -> list[tuple[HashableValue, Value]]:
        return [(k, self.entries[k]) for k in self.keys()]


@dataclass(frozen=True)
class Object(Value):
    """Instantiated object: type descriptor plus constructor arguments."""
    descriptor: Value
    arguments: Value


@dataclass(frozen=True)
class SubStream(Value):
    """Embedded, independently framed message."""
    values: tuple[Value, ...] = ()
    save_count: int = field(default=0, compare=False)

    def __post_init__(self):
        if not isinstance(self.values, tuple):
            object.__setattr__(self, "values", tuple(self.values))

    def __len__(self) -> int:
        return len(self.values)

    def __iter__(self) -> Iterator[Value]:
        return iter(self.values)


# ---- Dict keys ----

KEY_TYPES = (NoneValue, Byte, Short, Integer, Float, String, OwnedString)

def is_key_eligible(value: Value) -> bool:
    return isinstance(value, KEY_TYPES)


def _key_bytes(value: String | OwnedString) -> bytes:
    if isinstance(value, String):
        return value.data.tobytes()
    return value.value.encode("utf-8")


def _sign(a, b) -> int:
    return (a > b) - (a < b)


def compare_keys(a: Value, b: Value) -> int:
    """Three-way compare of two key-eligible values: -1, 0 or 1.

    Order: None < integers < floats < strings. Integers compare by value
    across widths, strings by raw bytes whether borrowed or owned. A float
    pair that isn't comparable (NaN) resolves to -1.
    """
    if not is_key_eligible(a) or not is_key_eligible(b):
        bad = b if is_key_eligible(a) else a
        raise UnhashableKeyError(f"{type(bad).__name__} is not a valid dict key")

    match a, b:
        case NoneValue(), NoneValue():
            return 0
        case NoneValue(), _:
            return -1
        case _, NoneValue():
            return 1
        case (Byte() | Short() | Integer()), (Byte() | Short() | Integer()):
            return _sign(a.value, b.value)
        case (Byte() | Short() | Integer()), _:
            return -1
        case _, (Byte() | Short() | Integer()):
            return 1
        case Float(), Float():
            if a.value == b.value:
                return 0
            if a.value > b.value:
                return 1
            return -1
        case Float(), _:
            return -1
        case _, Float():
            return 1
        case _:
            return _sign(_key_bytes(a), _key_bytes(b))


@total_ordering
@dataclass(frozen=True, eq=False)
class HashableValue:
    """A decoded value usable as a Dict key.

    Equality and hashing follow compare_keys, so Byte(5) and Short(5)
    are the same key, and so are String(b"x") and OwnedString("x").
    """
    value: Value

    def __post_init__(self):
        if not is_key_eligible(self.value):
            raise UnhashableKeyError(f"{type(self.value).__name__} is not a valid dict key")

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, HashableValue):
            return NotImplemented
        return compare_keys(self.value, other.value) == 0

    def __lt__(self, other: HashableValue) -> bool:
        if not isinstance(other, HashableValue):
            return NotImplemented
        return compare_keys(self.value, other.value) < 0

    def __hash__(self) -> int:
        match self.value:
            case NoneValue():
                return hash(None)
            case Byte(v) | Short(v) | Integer(v):
                return hash(("int", v))
            case Float(v):
                return hash(("float", v))
            case _:
                return hash(("str", _key_bytes(self.value)))

    def __repr__(self) -> str:
        return f"Key({self.value!r})"


def to_hashable(value: Value) -> HashableValue:
    """Convert a value to a dict key, or raise UnhashableKeyError."""
    if isinstance(value, HashableValue):
        return value
    return HashableValue(value)


def _as_key(key: object) -> HashableValue:
    if isinstance(key, HashableValue):
        return key
    if isinstance(key, Value):
        return to_hashable(key)
    raise UnhashableKeyError(f"{type(key).__name__} is not a marshal value")
