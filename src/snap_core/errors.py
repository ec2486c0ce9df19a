from __future__ import annotations

from dataclasses import dataclass


class SnapshotError(RuntimeError):
    """Base class for every fatal snapshot encode/decode failure."""


@dataclass(frozen=True)
class FormatMismatchError(SnapshotError):
    expected: str
    found: object = None
    position: int | None = None

    def __str__(self) -> str:
        return (
            f"snapshot format mismatch at {self.position}: "
            f"expected {self.expected}, found {self.found}"
        )


@dataclass(frozen=True)
class UnknownBytecodeError(SnapshotError):
    bytecode: int
    position: int | None = None

    def __str__(self) -> str:
        return f"unknown bytecode 0x{self.bytecode:02x} at {self.position}"


@dataclass(frozen=True)
class UnresolvedForwardReferenceError(SnapshotError):
    message: str
    pending: tuple[int, ...] = ()

    def __str__(self) -> str:
        if self.pending:
            return f"{self.message} (pending={list(self.pending)})"
        return self.message


@dataclass(frozen=True)
class ForwardReferenceResolutionError(SnapshotError):
    message: str
    ref_id: int | None = None

    def __str__(self) -> str:
        return f"{self.message} (ref_id={self.ref_id})"


@dataclass(frozen=True)
class OutOfRangeParameterError(SnapshotError, ValueError):
    name: str
    value: object
    lo: int
    hi: int | None = None

    def __str__(self) -> str:
        hi = "inf" if self.hi is None else self.hi
        return f"{self.name}={self.value!r} outside encodable range [{self.lo}, {hi}]"


@dataclass(frozen=True)
class TruncatedStreamError(SnapshotError):
    needed: int
    position: int
    length: int

    def __str__(self) -> str:
        return (
            f"truncated snapshot: need {self.needed} byte(s) at {self.position}, "
            f"stream length {self.length}"
        )


@dataclass(frozen=True)
class ExternalIndexOutOfRangeError(SnapshotError):
    table: str
    index: int
    size: int

    def __str__(self) -> str:
        return f"{self.table} index {self.index} out of range (size={self.size})"


@dataclass(frozen=True)
class UnknownExternalReferenceError(SnapshotError):
    table: str
    address: object

    def __str__(self) -> str:
        return f"address {self.address!r} not present in {self.table}"


@dataclass(frozen=True)
class SnapshotCorruptError(SnapshotError):
    message: str
    position: int | None = None

    def __str__(self) -> str:
        if self.position is None:
            return f"corrupt snapshot: {self.message}"
        return f"corrupt snapshot at {self.position}: {self.message}"


@dataclass(frozen=True)
class UnencodableGraphError(SnapshotError):
    message: str
    obj: object = None

    def __str__(self) -> str:
        return f"cannot encode {self.obj!r}: {self.message}"


@dataclass(frozen=True)
class BytecodeTableError(SnapshotError):
    message: str

    def __str__(self) -> str:
        return f"bytecode table: {self.message}"


@dataclass(frozen=True)
class HeapRelocationError(SnapshotError):
    pins: int

    def __str__(self) -> str:
        return f"heap relocation while placement is pinned (pins={self.pins})"


@dataclass(frozen=True)
class SnapshotConfigError(ValueError):
    name: str
    value: object
    context: str | None = None

    def __str__(self) -> str:
        return f"invalid {self.name}={self.value!r}"


__all__ = [
    "SnapshotError",
    "FormatMismatchError",
    "UnknownBytecodeError",
    "UnresolvedForwardReferenceError",
    "ForwardReferenceResolutionError",
    "OutOfRangeParameterError",
    "TruncatedStreamError",
    "ExternalIndexOutOfRangeError",
    "UnknownExternalReferenceError",
    "SnapshotCorruptError",
    "UnencodableGraphError",
    "BytecodeTableError",
    "HeapRelocationError",
    "SnapshotConfigError",
]
