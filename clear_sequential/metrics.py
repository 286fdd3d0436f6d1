"""Metrics computed over a batch of network outputs."""

from typing import Iterable, List

import numpy as np

from . import matrix
from .exceptions import InvalidDimensionError, InvalidOperationError
from .losses import LossFunction

SUPPORTED_METRICS = ("accuracy",)


def validate_metrics(names: Iterable[str]) -> List[str]:
    """Returns the metric names as a list, rejecting any unsupported one."""
    names = list(names)
    for name in names:
        if name not in SUPPORTED_METRICS:
            raise InvalidOperationError(
                f"Unknown metric '{name}'. Available metrics: {list(SUPPORTED_METRICS)}"
            )
    return names


def is_correct(expected: np.ndarray, actual: np.ndarray) -> bool:
    """True if the one-hot `expected` has a 1 where `actual` has its maximum."""
    expected = np.asarray(expected, dtype=float).reshape(-1)
    actual = np.asarray(actual, dtype=float).reshape(-1)
    return bool(expected[int(np.argmax(actual))] == 1.0)


def batch_accuracy(expected: np.ndarray, actual: np.ndarray) -> float:
    """Fraction of rows whose argmax hits the one-hot target."""
    expected = matrix.flatten_batch(expected)
    actual = matrix.flatten_batch(actual)
    if expected.shape != actual.shape:
        raise InvalidDimensionError(
            f"Accuracy: expected shape {expected.shape} doesn't match actual shape {actual.shape}"
        )
    predictions = matrix.row_argmax(actual)
    hits = expected[np.arange(expected.shape[0]), predictions] == 1.0
    return float(np.mean(hits))


def batch_loss(loss_function: LossFunction, expected: np.ndarray, actual: np.ndarray) -> float:
    return loss_function.batch_loss(matrix.flatten_batch(expected), matrix.flatten_batch(actual))
