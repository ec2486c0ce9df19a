"""Forward references: slots that point at objects not allocated yet.

A reservation is opened by the first registration carrying the next free id,
collects one or more write locations, and is resolved exactly once when its
target is allocated. Locations hold an `UnresolvedSlot` until then.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from snap_core.errors import (
    ForwardReferenceResolutionError,
    UnresolvedForwardReferenceError,
)
from snap_heap.objects import UnresolvedSlot, WeakRef


class ReservationState(str, Enum):
    REGISTERED = "registered"
    RESOLVED = "resolved"


@dataclass(frozen=True)
class SlotLocation:
    holder: object
    index: int
    weak: bool = False


@dataclass
class PendingForwardReference:
    ref_id: int
    locations: list[SlotLocation] = field(default_factory=list)
    state: ReservationState = ReservationState.REGISTERED


class ForwardReferenceTable:
    """Decoder side of the protocol."""

    def __init__(self):
        self._entries: list[PendingForwardReference] = []
        self._open = 0

    @property
    def open_count(self) -> int:
        return self._open

    def open_ids(self) -> tuple[int, ...]:
        return tuple(
            e.ref_id for e in self._entries if e.state is ReservationState.REGISTERED
        )

    def register(self, ref_id: int, holder, index: int, *, weak: bool = False) -> None:
        if ref_id == len(self._entries):
            entry = PendingForwardReference(ref_id)
            self._entries.append(entry)
            self._open += 1
        elif 0 <= ref_id < len(self._entries):
            entry = self._entries[ref_id]
            if entry.state is ReservationState.RESOLVED:
                raise ForwardReferenceResolutionError(
                    "registration against an already resolved reservation", ref_id=ref_id
                )
        else:
            raise ForwardReferenceResolutionError(
                f"registration skips ahead of next id {len(self._entries)}", ref_id=ref_id
            )
        entry.locations.append(SlotLocation(holder, index, weak))
        holder.slots[index] = UnresolvedSlot("forward", ref_id)

    def resolve(self, ref_id: int, target) -> int:
        if not 0 <= ref_id < len(self._entries):
            raise ForwardReferenceResolutionError(
                "resolution without a matching registration", ref_id=ref_id
            )
        entry = self._entries[ref_id]
        if entry.state is ReservationState.RESOLVED:
            raise ForwardReferenceResolutionError(
                "reservation resolved twice", ref_id=ref_id
            )
        for loc in entry.locations:
            loc.holder.slots[loc.index] = WeakRef(target) if loc.weak else target
        entry.state = ReservationState.RESOLVED
        self._open -= 1
        return len(entry.locations)

    def check_all_resolved(self) -> None:
        if self._open:
            raise UnresolvedForwardReferenceError(
                "forward references left open at end of stream",
                pending=self.open_ids(),
            )


class PendingObjects:
    """Encoder side: objects whose header is out but which are not allocated.

    An object is pending while its map is being serialized. A reference to it
    from an allocated body registers a reservation (one per object).
    """

    def __init__(self):
        self._pending: dict[int, int | None] = {}
        self._next_id = 0

    def begin(self, obj) -> None:
        self._pending[id(obj)] = None

    def is_pending(self, obj) -> bool:
        return id(obj) in self._pending

    def register(self, obj) -> int:
        ref_id = self._pending[id(obj)]
        if ref_id is None:
            ref_id = self._next_id
            self._next_id += 1
            self._pending[id(obj)] = ref_id
        return ref_id

    def end(self, obj) -> int | None:
        """Object allocated: return the reservation to resolve, if any."""
        return self._pending.pop(id(obj))

    @property
    def open_count(self) -> int:
        return sum(1 for ref_id in self._pending.values() if ref_id is not None)


__all__ = [
    "ReservationState",
    "SlotLocation",
    "PendingForwardReference",
    "ForwardReferenceTable",
    "PendingObjects",
]
