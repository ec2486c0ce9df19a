"""Initialize-once 256-entry decode table.

The table lives on device as two int32 columns (kind, param) so whole
bytecode arrays can be classified in one jitted gather; a host mirror serves
the per-byte lookups of the sequential decoder.
"""

from __future__ import annotations

from typing import NamedTuple

import jax
import jax.numpy as jnp
import numpy as np

from snap_core.errors import BytecodeTableError, UnknownBytecodeError
from snap_core.host import host_array
from snap_format.bytecodes import PARAM_RANGES, SINGLE_PURPOSE, BytecodeKind

TABLE_SIZE = 256
NO_PARAM = -1


class DecodedBytecode(NamedTuple):
    kind: BytecodeKind
    param: int


class BytecodeTable(NamedTuple):
    kind: jnp.ndarray
    param: jnp.ndarray


def _build_host_table() -> tuple[np.ndarray, np.ndarray]:
    kind = np.full(TABLE_SIZE, -1, dtype=np.int32)
    param = np.full(TABLE_SIZE, NO_PARAM, dtype=np.int32)

    def _claim(code: int, k: BytecodeKind, p: int) -> None:
        if kind[code] != -1:
            raise BytecodeTableError(
                f"0x{code:02x} claimed by {BytecodeKind(int(kind[code])).name} and {k.name}"
            )
        kind[code] = int(k)
        param[code] = p

    for code, k in SINGLE_PURPOSE.items():
        _claim(code, k, NO_PARAM)
    for k, base, lo, count in PARAM_RANGES:
        for offset in range(count):
            _claim(base + offset, k, lo + offset)
    unclaimed = kind == -1
    kind[unclaimed] = int(BytecodeKind.RESERVED)
    return kind, param


_HOST_KIND, _HOST_PARAM = _build_host_table()
_HOST_KIND.setflags(write=False)
_HOST_PARAM.setflags(write=False)

BYTECODE_TABLE = BytecodeTable(
    kind=jnp.asarray(_HOST_KIND, dtype=jnp.int32),
    param=jnp.asarray(_HOST_PARAM, dtype=jnp.int32),
)


def verify_partition(table: BytecodeTable = BYTECODE_TABLE) -> None:
    """Check that every byte 0..255 belongs to exactly one range."""
    kinds = host_array(table.kind)
    if kinds.shape != (TABLE_SIZE,):
        raise BytecodeTableError(f"table has shape {kinds.shape}")
    counts = host_array(
        jnp.bincount(table.kind, length=len(BytecodeKind))
    )
    if int(counts.sum()) != TABLE_SIZE:
        raise BytecodeTableError("table does not cover 0..255")
    for k, base, lo, count in PARAM_RANGES:
        if int(counts[int(k)]) != count:
            raise BytecodeTableError(f"{k.name} range has {int(counts[int(k)])} codes")
    for code, k in SINGLE_PURPOSE.items():
        if int(counts[int(k)]) != 1 or int(kinds[code]) != int(k):
            raise BytecodeTableError(f"{k.name} not uniquely mapped to 0x{code:02x}")


def decode_bytecode(bytecode: int, *, position: int | None = None) -> DecodedBytecode:
    """Recover (kind, embedded param) from one byte; reserved bytes are fatal."""
    code = int(bytecode)
    if not 0 <= code < TABLE_SIZE:
        raise UnknownBytecodeError(bytecode=code, position=position)
    kind = int(_HOST_KIND[code])
    if kind == BytecodeKind.RESERVED:
        raise UnknownBytecodeError(bytecode=code, position=position)
    return DecodedBytecode(BytecodeKind(kind), int(_HOST_PARAM[code]))


def is_reserved(bytecode: int) -> bool:
    return int(_HOST_KIND[int(bytecode) & 0xFF]) == BytecodeKind.RESERVED


@jax.jit
def classify_bytecodes(codes: jnp.ndarray) -> tuple[jnp.ndarray, jnp.ndarray]:
    """Vectorized table lookup: (kinds, params) for an array of bytecodes."""
    idx = jnp.asarray(codes, dtype=jnp.int32) & 0xFF
    return BYTECODE_TABLE.kind[idx], BYTECODE_TABLE.param[idx]


verify_partition()

__all__ = [
    "TABLE_SIZE",
    "NO_PARAM",
    "DecodedBytecode",
    "BytecodeTable",
    "BYTECODE_TABLE",
    "verify_partition",
    "decode_bytecode",
    "is_reserved",
    "classify_bytecodes",
]
