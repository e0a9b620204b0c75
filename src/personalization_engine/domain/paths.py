"""Field-path resolution over a tagged value tree.

Pure domain module. Profiles are converted once into a tree of ``Obj``,
``Arr`` and ``Scalar`` nodes; paths are parsed into segments and walked
over that tree. Any miss yields the ``ABSENT`` sentinel instead of raising.

Path grammar (dot separated)::

    preferences.hairType          nested object traversal
    behavior.bookings[0].amount   indexed element access (negative allowed)
    behavior.bookings.0.amount    same, numeric segment on an array
    behavior.bookings.length      terminal size of an array/object/string
    behavior.bookings.serviceType projection of a field over array elements
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime
from functools import lru_cache
from typing import Any

from personalization_engine.errors import PathSyntaxError

# ---------------------------------------------------------------------------
# Tagged values
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Absent:
    """Sentinel for an unresolvable path. Distinct from ``None``."""

    def __repr__(self) -> str:
        return "ABSENT"


ABSENT = Absent()


@dataclass(frozen=True, slots=True)
class Scalar:
    value: str | int | float | bool | datetime | None


@dataclass(frozen=True, slots=True)
class Arr:
    items: tuple[Value, ...]


@dataclass(frozen=True, slots=True)
class Obj:
    fields: dict[str, Value]


Value = Obj | Arr | Scalar | Absent


def to_value(raw: Any) -> Value:
    """Convert plain Python data (dicts, lists, scalars) into a tagged tree."""
    if isinstance(raw, Obj | Arr | Scalar | Absent):
        return raw
    if isinstance(raw, dict):
        return Obj({str(key): to_value(item) for key, item in raw.items()})
    if isinstance(raw, list | tuple | set | frozenset):
        items = sorted(raw, key=str) if isinstance(raw, set | frozenset) else raw
        return Arr(tuple(to_value(item) for item in items))
    if raw is None or isinstance(raw, str | int | float | bool | datetime):
        return Scalar(raw)
    return Scalar(str(raw))


def to_python(value: Value) -> Any:
    """Convert a tagged value back into plain Python. ``ABSENT`` is kept."""
    if isinstance(value, Scalar):
        return value.value
    if isinstance(value, Arr):
        return [to_python(item) for item in value.items]
    if isinstance(value, Obj):
        return {key: to_python(item) for key, item in value.fields.items()}
    return ABSENT


# ---------------------------------------------------------------------------
# Path parsing
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Key:
    name: str


@dataclass(frozen=True, slots=True)
class Index:
    position: int


@dataclass(frozen=True, slots=True)
class Length:
    pass


Segment = Key | Index | Length

_PART_PATTERN = re.compile(r"^(?P<name>[A-Za-z_$][\w$-]*|-?\d+)?(?P<indexes>(\[-?\d+\])*)$")
_INDEX_PATTERN = re.compile(r"\[(-?\d+)\]")


@lru_cache(maxsize=1024)
def parse_path(path: str) -> tuple[Segment, ...]:
    """Parse a dotted path into segments.

    A terminal ``length`` part becomes a ``Length`` segment; elsewhere it is
    an ordinary key. Raises ``PathSyntaxError`` on malformed input.
    """
    if not path or not path.strip():
        raise PathSyntaxError(path, "empty path")

    parts = path.split(".")
    segments: list[Segment] = []
    for position, part in enumerate(parts):
        match = _PART_PATTERN.match(part)
        if part == "" or match is None:
            raise PathSyntaxError(path, f"invalid segment {part!r}")

        name = match.group("name")
        is_last = position == len(parts) - 1
        if name is not None:
            if name == "length" and is_last and not match.group("indexes"):
                segments.append(Length())
            elif name.lstrip("-").isdigit():
                segments.append(Index(int(name)))
            else:
                segments.append(Key(name))

        for index in _INDEX_PATTERN.findall(match.group("indexes") or ""):
            segments.append(Index(int(index)))

    return tuple(segments)


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------


def _step(node: Value, segment: Segment) -> Value:
    if isinstance(node, Absent):
        return ABSENT

    if isinstance(segment, Length):
        if isinstance(node, Arr):
            return Scalar(len(node.items))
        if isinstance(node, Obj):
            if "length" in node.fields:
                return node.fields["length"]
            return Scalar(len(node.fields))
        if isinstance(node, Scalar) and isinstance(node.value, str):
            return Scalar(len(node.value))
        return ABSENT

    if isinstance(segment, Index):
        if not isinstance(node, Arr):
            return ABSENT
        try:
            return node.items[segment.position]
        except IndexError:
            return ABSENT

    # Key
    if isinstance(node, Obj):
        return node.fields.get(segment.name, ABSENT)
    if isinstance(node, Arr):
        projected = tuple(
            item
            for item in (_step(element, segment) for element in node.items)
            if not isinstance(item, Absent)
        )
        return Arr(projected)
    return ABSENT


def resolve(root: Value, path: str) -> Value:
    """Resolve ``path`` against ``root``. Raises only ``PathSyntaxError``."""
    node = root
    for segment in parse_path(path):
        node = _step(node, segment)
        if isinstance(node, Absent):
            return ABSENT
    return node
