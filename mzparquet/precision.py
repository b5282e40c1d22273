"""Numeric narrowing applied to every value written to the output file.

One rule for everything, so repeated conversions are byte-identical:

- floats are cast to IEEE float32 (round-half-to-even)
- integer intensities are rounded half-to-even, clipped to the uint32 range
"""

from __future__ import annotations

import numpy as np

FLOAT = "float"
INTEGER = "integer"
PRECISIONS = (FLOAT, INTEGER)

UINT32_MAX = int(np.iinfo(np.uint32).max)
FLOAT32_MAX = float(np.finfo(np.float32).max)


def check_precision(name: str, value: str) -> str:
    if value not in PRECISIONS:
        raise ValueError(f"Unknown {name}: {value!r}. Must be one of: {PRECISIONS}")
    return value


def narrow_float(value: float) -> float:
    """Round a double to the nearest float32, returned as a Python float."""
    return float(np.float32(value))


def narrow_floats(values: np.ndarray) -> np.ndarray:
    return np.asarray(values, dtype=np.float64).astype(np.float32)


def narrow_uints(values: np.ndarray) -> np.ndarray:
    rounded = np.rint(np.asarray(values, dtype=np.float64))
    return np.clip(rounded, 0, UINT32_MAX).astype(np.uint32)


def narrow_intensities(values: np.ndarray, precision: str) -> np.ndarray:
    """Narrow an intensity array to float32 or uint32."""
    if precision == INTEGER:
        return narrow_uints(values)
    return narrow_floats(values)
