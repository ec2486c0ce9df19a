"""Per-space creation ordinals.

The encoder hands out (space, ordinal) on allocation; the decoder appends
every allocated object to the table of its space, so ordinal N of space S
names the same object on both sides.
"""

from __future__ import annotations

from typing import NamedTuple

from snap_core.domains import NUMBER_OF_SPACES, SnapshotSpace, addressing_space
from snap_core.errors import SnapshotCorruptError


class BackReference(NamedTuple):
    space: SnapshotSpace
    ordinal: int


class SpaceCounters:
    """Encoder side: identity -> BackReference."""

    def __init__(self):
        self._next = [0] * NUMBER_OF_SPACES
        self._refs: dict[int, BackReference] = {}
        # Keep referents alive so ids are never recycled within a session.
        self._keep: list = []

    def assign(self, obj, space: int) -> BackReference:
        s = addressing_space(space)
        if id(obj) in self._refs:
            raise SnapshotCorruptError(f"{obj!r} allocated twice")
        ref = BackReference(s, self._next[s])
        self._next[s] += 1
        self._refs[id(obj)] = ref
        self._keep.append(obj)
        return ref

    def lookup(self, obj) -> BackReference | None:
        return self._refs.get(id(obj))

    def count(self, space: int) -> int:
        return self._next[addressing_space(space)]


class BackReferenceTable:
    """Decoder side: (space, ordinal) -> object."""

    def __init__(self):
        self._tables: list[list] = [[] for _ in range(NUMBER_OF_SPACES)]

    def register(self, obj, space: int) -> BackReference:
        s = addressing_space(space)
        table = self._tables[s]
        table.append(obj)
        return BackReference(s, len(table) - 1)

    def lookup(self, space: int, ordinal: int, *, position: int | None = None):
        s = addressing_space(space)
        table = self._tables[s]
        if not 0 <= ordinal < len(table):
            raise SnapshotCorruptError(
                f"backref {s.name}[{ordinal}] not yet created (count={len(table)})",
                position=position,
            )
        return table[ordinal]

    def count(self, space: int) -> int:
        return len(self._tables[addressing_space(space)])


__all__ = ["BackReference", "SpaceCounters", "BackReferenceTable"]
