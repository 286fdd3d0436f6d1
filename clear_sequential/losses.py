"""
Loss functions.

Each loss works on 2D (batch_size x outputs) matrices of expected and actual
values and offers the per-example loss, the batch mean and the partial
derivative of the per-example loss w.r.t. every actual output.
"""

import logging
from typing import Dict, Type

import numpy as np

from .exceptions import InvalidDimensionError, InvalidNetworkFormatError


class LossFunction:
    """Base class for all loss functions."""
    name = None  # token used by the text serialization format

    @staticmethod
    def _check(expected: np.ndarray, actual: np.ndarray):
        expected = np.atleast_2d(np.asarray(expected, dtype=float))
        actual = np.atleast_2d(np.asarray(actual, dtype=float))
        if expected.shape != actual.shape:
            raise InvalidDimensionError(
                f"Loss: expected shape {expected.shape} doesn't match actual shape {actual.shape}"
            )
        return expected, actual

    def loss(self, expected: np.ndarray, actual: np.ndarray) -> np.ndarray:
        """Per-example loss, shape (batch_size,)."""
        raise NotImplementedError

    def batch_loss(self, expected: np.ndarray, actual: np.ndarray) -> float:
        """Mean of the per-example losses."""
        return float(np.mean(self.loss(expected, actual)))

    def partial_derivatives(self, expected: np.ndarray, actual: np.ndarray) -> np.ndarray:
        """dL/d(actual) for each example, same shape as `actual`."""
        raise NotImplementedError

    def __repr__(self):
        return f"{self.__class__.__name__}()"


class MeanSquaredError(LossFunction):
    """
    Mean squared error per example:
        L = Σ (y_i - p_i)^2 / n
        dL/dp_i = -2 (y_i - p_i) / n
    """
    name = "meanSquaredError"

    def loss(self, expected, actual):
        expected, actual = self._check(expected, actual)
        return np.mean((expected - actual) ** 2, axis=1)

    def partial_derivatives(self, expected, actual):
        expected, actual = self._check(expected, actual)
        return -2.0 * (expected - actual) / expected.shape[1]


class CrossEntropy(LossFunction):
    """
    Categorical cross-entropy per example, base-10 logarithm:
        L = -Σ y_i log10(p_i)
        dL/dp_i = -y_i / (p_i ln 10)
    Probabilities are clipped to [1e-15, 1] to avoid log(0) and division by zero.
    """
    name = "crossEntropy"
    epsilon = 1e-15

    def loss(self, expected, actual):
        expected, actual = self._check(expected, actual)
        clipped = np.clip(actual, self.epsilon, 1.0)
        return -np.sum(expected * np.log10(clipped), axis=1)

    def partial_derivatives(self, expected, actual):
        expected, actual = self._check(expected, actual)
        clipped = np.clip(actual, self.epsilon, 1.0)
        return -expected / (clipped * np.log(10))


# Dictionary mapping serialized loss names to their classes
LOSS_FUNCTIONS: Dict[str, Type[LossFunction]] = {
    MeanSquaredError.name: MeanSquaredError,
    CrossEntropy.name: CrossEntropy,
}


def get_loss(name: str) -> LossFunction:
    """
    Factory function to get a loss instance by its serialized name.

    Raises:
        InvalidNetworkFormatError: If the name is not a known loss.
    """
    if name not in LOSS_FUNCTIONS:
        raise InvalidNetworkFormatError(
            f"Invalid loss function: {name}. Available: {list(LOSS_FUNCTIONS.keys())}"
        )
    logging.debug(f"Loss function selected: {name}")
    return LOSS_FUNCTIONS[name]()
