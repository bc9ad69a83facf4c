"""
Message Analyzer — inspect decoded marshal messages.

Key techniques:
1. Tree dump: indented rendering of a value tree for eyeballing captures
2. Plain conversion: Values → builtin Python objects (for JSON output)
3. Frequency analysis: which value types and dict keys show up, and how often
"""

from __future__ import annotations

import logging
from collections import Counter

from .decoder import Message
from .values import (
    BigInt, Byte, Dict, Float, HashableValue, Integer, NoneValue, Object, OwnedString,
    Short, String, SubStream, Tuple, Value,
)

log = logging.getLogger(__name__)


def _string_repr(value: String) -> str:
    raw = value.data.tobytes()
    try:
        return repr(raw.decode("ascii"))
    except UnicodeDecodeError:
        return f"b'{raw.hex()}'"


def render(value: Value | HashableValue, indent: int = 0) -> str:
    """Human-readable, indented tree of a value."""
    pad = "  " * indent
    if isinstance(value, HashableValue):
        value = value.value

    match value:
        case NoneValue():
            return f"{pad}None"
        case Byte(v):
            return f"{pad}Byte {v}"
        case Short(v):
            return f"{pad}Short {v}"
        case Integer(v):
            return f"{pad}Integer {v}"
        case BigInt(v):
            return f"{pad}BigInt {v}"
        case Float(v):
            return f"{pad}Float {v!r}"
        case String():
            return f"{pad}String {_string_repr(value)}"
        case OwnedString(v):
            return f"{pad}OwnedString {v!r}"
        case Tuple():
            lines = [f"{pad}Tuple ({len(value)})"]
            lines.extend(render(item, indent + 1) for item in value)
            return "\n".join(lines)
        case Dict():
            lines = [f"{pad}Dict ({len(value)})"]
            for key, item in value.items():
                lines.append(f"{pad}  {render(key).strip()}:")
                lines.append(render(item, indent + 2))
            return "\n".join(lines)
        case Object():
            return "\n".join([
                f"{pad}Object",
                render(value.descriptor, indent + 1),
                render(value.arguments, indent + 1),
            ])
        case SubStream():
            lines = [f"{pad}SubStream ({len(value)}, save_count={value.save_count})"]
            lines.extend(render(item, indent + 1) for item in value)
            return "\n".join(lines)
        case _:
            return f"{pad}{value!r}"


def to_python(value: Value | HashableValue):
    """Convert a value tree to builtin Python objects.

    Raw strings become str when they're valid UTF-8, otherwise hex.
    Dict keys become strings so the result can go straight into json.dumps.
    Distinct keys that render the same (Integer(1) and String(b"1")) keep
    the first as is; later ones get their variant name as a prefix.
    """
    if isinstance(value, HashableValue):
        value = value.value

    match value:
        case NoneValue():
            return None
        case Byte(v) | Short(v) | Integer(v) | BigInt(v) | Float(v) | OwnedString(v):
            return v
        case String():
            raw = value.data.tobytes()
            try:
                return raw.decode("utf-8")
            except UnicodeDecodeError:
                return raw.hex()
        case Tuple():
            return [to_python(item) for item in value]
        case Dict():
            return _dict_to_python(value)
        case Object():
            return {"__object__": to_python(value.descriptor), "args": to_python(value.arguments)}
        case SubStream():
            return {"__substream__": [to_python(item) for item in value]}
        case _:
            raise TypeError(f"Not a marshal value: {value!r}")


def _dict_to_python(value: Dict) -> dict:
    result = {}
    for key, item in value.items():
        name = str(to_python(key))
        if name in result:
            prefixed = f"{type(key.value).__name__}:{name}"
            log.warning("Dict key %r collides as %r, emitting %r", key, name, prefixed)
            name = prefixed
        result[name] = to_python(item)
    return result


def walk(value: Value):
    """Yield value and every value nested inside it, depth first."""
    yield value
    match value:
        case Tuple() | SubStream():
            for item in value:
                yield from walk(item)
        case Dict():
            for key, item in value.items():
                yield from walk(key.value)
                yield from walk(item)
        case Object():
            yield from walk(value.descriptor)
            yield from walk(value.arguments)


class MessageAnalyzer:
    """Aggregate statistics over a batch of decoded messages."""

    def __init__(self, messages: list[Message] | None = None):
        self.messages: list[Message] = list(messages or [])

    def add(self, message: Message) -> None:
        self.messages.append(message)

    def type_distribution(self) -> dict[str, int]:
        """Count every value (nested ones included) by variant name."""
        counter = Counter(
            type(v).__name__
            for msg in self.messages
            for top in msg.values
            for v in walk(top)
        )
        return dict(counter.most_common())

    def dict_key_frequency(self) -> Counter:
        """How often each string dict key appears across all messages."""
        counter = Counter()
        for msg in self.messages:
            for top in msg.values:
                for v in walk(top):
                    if not isinstance(v, Dict):
                        continue
                    for key in v.keys():
                        if isinstance(key.value, (String, OwnedString)):
                            counter[str(to_python(key))] += 1
        return counter

    def object_types(self) -> Counter:
        """Object descriptors that are plain strings, e.g. 'macho.CallReq'."""
        counter = Counter()
        for msg in self.messages:
            for top in msg.values:
                for v in walk(top):
                    if isinstance(v, Object) and isinstance(v.descriptor, (String, OwnedString)):
                        counter[str(to_python(v.descriptor))] += 1
        return counter

    def save_counts(self) -> list[int]:
        return [msg.save_count for msg in self.messages]

    def report(self) -> str:
        """Generate a human-readable analysis report."""
        if not self.messages:
            return "No messages to analyze."

        lines = []
        lines.append("=== Marshal Analysis Report ===")
        lines.append(f"Messages: {len(self.messages)}")
        lines.append(f"Top-level values: {sum(len(m) for m in self.messages)}")
        lines.append("")

        lines.append("Value types:")
        for name, count in self.type_distribution().items():
            lines.append(f"  {name:>12}: {count:>5}x")
        lines.append("")

        objects = self.object_types()
        if objects:
            lines.append("Object types (top 10):")
            for name, count in objects.most_common(10):
                lines.append(f"  {name} — {count}x")
            lines.append("")

        keys = self.dict_key_frequency()
        if keys:
            lines.append("Dict keys (top 15):")
            for name, count in keys.most_common(15):
                lines.append(f"  {name!r}: {count}x")
            lines.append("")

        counts = sorted(set(self.save_counts()))
        lines.append(f"Save counters seen: {counts[:10]}{' ...' if len(counts) > 10 else ''}")
        return "\n".join(lines)
