import logging
from typing import Sequence

import numpy as np

from . import matrix
from .exceptions import InvalidDimensionError, InvalidOperationError
from .layers import Layer


class Activation(Layer):
    """Base class for all activation layers. Output shape equals input shape."""

    def _check_gradients(self, gradients: np.ndarray, reference: np.ndarray) -> np.ndarray:
        gradients = np.asarray(gradients, dtype=float)
        if gradients.shape != reference.shape:
            raise InvalidDimensionError(
                f"{self.__class__.__name__}: gradients shape {gradients.shape} "
                f"doesn't match layer input/output shape {reference.shape}"
            )
        return gradients

    def describe(self) -> str:
        return f"{self.__class__.__name__} Activation Layer: In/Out: {list(self.input_shape)}"


class ReLU(Activation):
    """Rectified Linear Unit activation layer.

    Mathematical form:
        forward: f(x) = max(0, x)
        backward: dL/dx = dL/dy if x > 0 else 0
    """
    kind = "relu"

    def _compute(self, batch):
        return np.maximum(0.0, batch)

    def compute_gradients(self, gradients, prev_input):
        """Gradient passes through where the layer's input was positive."""
        prev_input = matrix.flatten_batch(prev_input)
        gradients = self._check_gradients(gradients, prev_input)
        logging.debug(f"ReLU backward - input shape: {gradients.shape}")
        return gradients * (prev_input > 0)


class Sigmoid(Activation):
    """Sigmoid activation layer.

    Mathematical form:
        forward: f(x) = 1 / (1 + e^-x)
        backward: dL/dx = dL/dy * f(x) * (1 - f(x))
    """
    kind = "sigmoid"

    def _compute(self, batch):
        # Clip input to avoid overflow in exp(-x) for large negative x
        clipped = np.clip(batch, -500, 500)
        return 1.0 / (1.0 + np.exp(-clipped))

    def compute_gradients(self, gradients, prev_input):
        prev_input = matrix.flatten_batch(prev_input)
        gradients = self._check_gradients(gradients, prev_input)
        logging.debug(f"Sigmoid backward - input shape: {gradients.shape}")
        sig = self._compute(prev_input)
        return gradients * sig * (1.0 - sig)


class Softmax(Activation):
    """Softmax activation layer.

    Normalizes each row of the batch to a probability distribution:
        forward: f(x_i) = e^x_i / Σ(e^x_j)

    Backward pass:
        Uses the full per-row Jacobian J = diag(s) - s s^T built from the
        cached output s, so it stays correct whatever loss follows it.
        compute_gradients therefore requires a prior forward_batch call.
    """
    kind = "softmax"

    def _compute(self, batch):
        # Max subtraction trick for numerical stability along the feature axis
        shifted = batch - np.max(batch, axis=1, keepdims=True)
        exp_x = np.exp(shifted)
        return exp_x / np.sum(exp_x, axis=1, keepdims=True)

    def compute_gradients(self, gradients, prev_input):
        if self.last_output is None:
            raise InvalidOperationError("Softmax: compute_gradients called before a forward batch pass")
        gradients = self._check_gradients(gradients, self.last_output)
        logging.debug(f"Softmax backward - input shape: {gradients.shape}")
        result = np.empty_like(gradients)
        for i, s in enumerate(self.last_output):
            jacobian = np.diag(s) - np.outer(s, s)
            result[i] = matrix.multiply(gradients[i].reshape(1, -1), jacobian)[0]
        return result


# Dictionary mapping activation names to their layer classes
ACTIVATION_FUNCTIONS = {
    'relu': ReLU,
    'sigmoid': Sigmoid,
    'softmax': Softmax,
}


def get_activation(name: str, input_shape: Sequence[int]) -> Activation:
    """Factory function to get an activation layer instance by name.

    Args:
        name: Name of the activation (case-insensitive).
        input_shape: The (depth, height, width) shape the layer receives.

    Returns:
        An instance of the requested Activation class.

    Raises:
        InvalidOperationError: If the activation name is not recognized.
    """
    name_lower = name.lower()
    if name_lower not in ACTIVATION_FUNCTIONS:
        raise InvalidOperationError(
            f"Unknown activation function '{name}'. "
            f"Available functions: {list(ACTIVATION_FUNCTIONS.keys())}"
        )
    return ACTIVATION_FUNCTIONS[name_lower](input_shape)
