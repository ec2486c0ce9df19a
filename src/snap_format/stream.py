"""Byte sink/source for snapshot payloads.

Out-of-band integers use a 1..4 byte little-endian encoding whose low two
bits hold (byte count - 1); values must be below 2**30.
"""

from __future__ import annotations

import numpy as np

from snap_core.errors import OutOfRangeParameterError, TruncatedStreamError
from snap_core.domains import TAGGED_SIZE

MAX_VARINT = (1 << 30) - 1
_WORD_DTYPE = np.dtype("<i8")


class SnapshotByteSink:
    def __init__(self):
        self._data = bytearray()

    def put(self, byte: int) -> None:
        self._data.append(byte)

    def put_int(self, value: int) -> None:
        value = int(value)
        if not 0 <= value <= MAX_VARINT:
            raise OutOfRangeParameterError(name="varint", value=value, lo=0, hi=MAX_VARINT)
        value <<= 2
        nbytes = 1
        if value > 0xFF:
            nbytes = 2
        if value > 0xFFFF:
            nbytes = 3
        if value > 0xFFFFFF:
            nbytes = 4
        value |= nbytes - 1
        self._data.extend(value.to_bytes(nbytes, "little"))

    def put_raw(self, data: bytes) -> None:
        self._data.extend(data)

    def put_words(self, words) -> None:
        self._data.extend(np.asarray(words, dtype=_WORD_DTYPE).tobytes())

    def position(self) -> int:
        return len(self._data)

    def data(self) -> bytes:
        return bytes(self._data)


class SnapshotByteSource:
    def __init__(self, data: bytes):
        self._data = memoryview(bytes(data))
        self._pos = 0

    @property
    def position(self) -> int:
        return self._pos

    def __len__(self) -> int:
        return len(self._data)

    def has_more(self) -> bool:
        return self._pos < len(self._data)

    def _require(self, count: int) -> None:
        if self._pos + count > len(self._data):
            raise TruncatedStreamError(
                needed=count, position=self._pos, length=len(self._data)
            )

    def peek(self) -> int:
        self._require(1)
        return self._data[self._pos]

    def get(self) -> int:
        self._require(1)
        byte = self._data[self._pos]
        self._pos += 1
        return byte

    def get_int(self) -> int:
        self._require(1)
        nbytes = (self._data[self._pos] & 3) + 1
        self._require(nbytes)
        raw = int.from_bytes(self._data[self._pos:self._pos + nbytes], "little")
        self._pos += nbytes
        return raw >> 2

    def get_raw(self, count: int) -> bytes:
        self._require(count)
        out = bytes(self._data[self._pos:self._pos + count])
        self._pos += count
        return out

    def get_words(self, count: int) -> list[int]:
        raw = self.get_raw(count * TAGGED_SIZE)
        return [int(w) for w in np.frombuffer(raw, dtype=_WORD_DTYPE)]


__all__ = ["MAX_VARINT", "SnapshotByteSink", "SnapshotByteSource"]
