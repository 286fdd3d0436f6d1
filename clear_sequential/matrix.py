"""
Matrix kernel used by every layer.

The heavy lifting is numpy's; this module only pins down the shape contract
(every mismatch is an InvalidDimensionError instead of silent broadcasting)
and the handful of reshapes the layers and optimizers rely on.
"""

import logging
from typing import Sequence, Tuple

import numpy as np

from .exceptions import InvalidDimensionError


def _as_matrix(m: np.ndarray, name: str) -> np.ndarray:
    m = np.asarray(m, dtype=float)
    if m.ndim != 2:
        raise InvalidDimensionError(f"{name}: expected a 2D matrix, got shape {m.shape}")
    return m


def multiply(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    """Dense matrix product A @ B.

    Raises:
        InvalidDimensionError: If A.cols != B.rows.
    """
    a = _as_matrix(a, "multiply")
    b = _as_matrix(b, "multiply")
    if a.shape[1] != b.shape[0]:
        raise InvalidDimensionError(
            f"multiply: #columns of A ({a.shape[1]}) must equal #rows of B ({b.shape[0]})"
        )
    return a @ b


def transpose(m: np.ndarray) -> np.ndarray:
    return _as_matrix(m, "transpose").T.copy()


def add_in_place(target: np.ndarray, other: np.ndarray) -> np.ndarray:
    """target += other, element-wise. Both must have identical shapes."""
    if target.shape != np.shape(other):
        raise InvalidDimensionError(
            f"add_in_place: shapes {target.shape} and {np.shape(other)} must be identical"
        )
    target += other
    return target


def multiply_in_place(target: np.ndarray, other: np.ndarray) -> np.ndarray:
    """target *= other, element-wise. Both must have identical shapes."""
    if target.shape != np.shape(other):
        raise InvalidDimensionError(
            f"multiply_in_place: shapes {target.shape} and {np.shape(other)} must be identical"
        )
    target *= other
    return target


def reshape(data: np.ndarray, shape: Sequence[int], truncate: bool = False) -> np.ndarray:
    """
    Reinterprets `data` (row-major) with a new shape.

    With truncate=False the element counts must match exactly. With
    truncate=True surplus trailing elements are dropped and a warning is
    logged; too few elements is always an error.

    Args:
        data: Array of any dimensionality (1D to 5D in practice).
        shape: Target shape.
        truncate: Whether surplus input elements may be dropped.

    Returns:
        A new array of the requested shape.

    Raises:
        InvalidDimensionError: If the element counts are incompatible.
    """
    data = np.asarray(data, dtype=float)
    shape = tuple(int(s) for s in shape)
    needed = int(np.prod(shape)) if shape else 1
    if data.size < needed:
        raise InvalidDimensionError(
            f"reshape: {data.size} input elements cannot fill output shape {shape} ({needed} elements)"
        )
    if data.size > needed:
        if not truncate:
            raise InvalidDimensionError(
                f"reshape: number of elements differs ({data.size} vs {needed} for shape {shape})"
            )
        logging.warning(
            f"reshape: more elements in input ({data.size}) than accounted for by output shape "
            f"{shape}. Truncation will occur."
        )
    return data.reshape(-1)[:needed].reshape(shape).copy()


def append_ones_column(m: np.ndarray) -> np.ndarray:
    """Returns [m | 1], the bias-augmented version of a batch matrix."""
    m = _as_matrix(m, "append_ones_column")
    return np.hstack([m, np.ones((m.shape[0], 1))])


def flatten_batch(batch: np.ndarray) -> np.ndarray:
    """(N, d, h, w) or (N, features) -> (N, d*h*w). A single 1D example becomes (1, features)."""
    batch = np.asarray(batch, dtype=float)
    if batch.ndim == 1:
        return batch.reshape(1, -1)
    return batch.reshape(batch.shape[0], -1)


def row_argmax(m: np.ndarray) -> np.ndarray:
    """Column index of each row's maximum; ties resolve to the first occurrence."""
    return np.argmax(_as_matrix(m, "row_argmax"), axis=1)


def min_value(data: np.ndarray) -> float:
    return float(np.min(data))


def max_value(data: np.ndarray) -> float:
    return float(np.max(data))


def min_max_normalize(data: np.ndarray) -> np.ndarray:
    """
    Rescales every element of a 4D tensor into [0, 1] using the global
    minimum and maximum. Works in place on float arrays and returns the array.

    A constant tensor is mapped to all zeros.
    """
    if np.ndim(data) != 4:
        raise InvalidDimensionError(f"min_max_normalize: expected a 4D tensor, got {np.ndim(data)}D")
    if not (isinstance(data, np.ndarray) and np.issubdtype(data.dtype, np.floating)):
        data = np.asarray(data, dtype=float)
    low, high = min_value(data), max_value(data)
    span = high - low
    if span == 0:
        data[...] = 0.0
        return data
    data -= low
    data /= span
    return data


def spatial_output_dims(in_dims: Tuple[int, int], window: Tuple[int, int], stride: Tuple[int, int]) -> Tuple[int, int]:
    """(inH - windowH) // strideH + 1, (inW - windowW) // strideW + 1"""
    return ((in_dims[0] - window[0]) // stride[0] + 1,
            (in_dims[1] - window[1]) // stride[1] + 1)
