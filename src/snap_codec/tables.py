from __future__ import annotations

from dataclasses import dataclass, field
from typing import Sequence

from snap_core.errors import ExternalIndexOutOfRangeError, UnknownExternalReferenceError
from snap_core.protocols import EmbedderFieldsCallback


@dataclass(frozen=True)
class SnapshotTables:
    """Collaborator DI bundle: embedder-supplied tables shared by both sides.

    external_references / api_references: native addresses or callback ids.
    attached_references: objects substituted instead of rebuilt.
    startup_object_cache / read_only_object_cache: objects owned by an
    enclosing snapshot and referenced by index.
    """

    external_references: Sequence[int] = ()
    api_references: Sequence[int] = ()
    attached_references: Sequence[object] = ()
    startup_object_cache: Sequence[object] = ()
    read_only_object_cache: Sequence[object] = ()
    builtin_count: int = 0
    embedder_fields_callback: EmbedderFieldsCallback | None = field(
        default=None, compare=False
    )


DEFAULT_SNAPSHOT_TABLES = SnapshotTables()


def lookup_index(table: Sequence, index: int, name: str):
    if not 0 <= index < len(table):
        raise ExternalIndexOutOfRangeError(table=name, index=index, size=len(table))
    return table[index]


class AddressEncoder:
    """Value -> first index map for an external address table."""

    def __init__(self, table: Sequence[int], name: str):
        self._name = name
        self._index: dict[int, int] = {}
        for i, address in enumerate(table):
            self._index.setdefault(address, i)

    def encode(self, address: int) -> int:
        try:
            return self._index[address]
        except KeyError:
            raise UnknownExternalReferenceError(table=self._name, address=address) from None


class IdentityIndex:
    """Object identity -> first index map for object lists."""

    def __init__(self, objects: Sequence[object]):
        self._index: dict[int, int] = {}
        self._keep = list(objects)
        for i, obj in enumerate(self._keep):
            self._index.setdefault(id(obj), i)

    def find(self, obj) -> int | None:
        return self._index.get(id(obj))

    def __len__(self) -> int:
        return len(self._keep)


__all__ = [
    "SnapshotTables",
    "DEFAULT_SNAPSHOT_TABLES",
    "lookup_index",
    "AddressEncoder",
    "IdentityIndex",
]
