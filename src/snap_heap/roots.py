"""Ordered root set and the shared root-iteration entry point.

Both directions walk the same sections in the same order; the visitor decides
whether a slot is emitted (serializer) or allocated-and-filled (deserializer).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum

from snap_core.protocols import RootVisitor
from snap_heap.objects import UNFILLED


class SyncTag(IntEnum):
    STRONG_ROOT_LIST = 0
    SMI_ROOT_LIST = 1
    STRING_TABLE = 2
    EXTERNAL_STRINGS = 3
    HANDLE_SCOPE = 4
    BUILTINS = 5
    GLOBAL_HANDLES = 6
    EMBEDDER_ROOTS = 7
    DEFERRED_OBJECTS = 8
    END = 9


@dataclass
class RootSection:
    tag: SyncTag
    slots: list = field(default_factory=list)


@dataclass
class RootSet:
    sections: list[RootSection] = field(default_factory=list)

    def add(self, tag: SyncTag, slots) -> RootSection:
        section = RootSection(tag=SyncTag(tag), slots=list(slots))
        self.sections.append(section)
        return section

    def root_list(self) -> list:
        """Flat root array in iteration order (addressed by root index)."""
        return [slot for section in self.sections for slot in section.slots]

    def shape(self) -> tuple[tuple[int, int], ...]:
        return tuple((int(s.tag), len(s.slots)) for s in self.sections)

    @classmethod
    def from_shape(cls, shape) -> "RootSet":
        return cls(
            sections=[
                RootSection(tag=SyncTag(tag), slots=[UNFILLED] * count)
                for tag, count in shape
            ]
        )


def iterate_roots(root_set: RootSet, visitor: RootVisitor) -> None:
    for section in root_set.sections:
        visitor.visit_root_pointers(section.tag, section.slots, 0, len(section.slots))
        visitor.synchronize(section.tag)


__all__ = ["SyncTag", "RootSection", "RootSet", "iterate_roots"]
