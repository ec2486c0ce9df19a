from __future__ import annotations

import jax
import numpy as np


def host_int(value) -> int:
    """Pull a (possibly device) scalar back to a Python int."""
    if isinstance(value, bool):
        raise TypeError("expected int, got bool")
    if isinstance(value, int):
        return value
    return int(jax.device_get(value))


def host_array(value) -> np.ndarray:
    """Pull a device array to a host numpy array."""
    return np.asarray(jax.device_get(value))


__all__ = ["host_int", "host_array"]
