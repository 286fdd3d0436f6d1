"""
conftest.py
~~~~~~~~~~~

Shared fixtures and helpers for the clear_sequential test suite.
"""

import numpy as np
import pytest

from clear_sequential import Adam, Sequential


def numeric_gradient(f, array, eps=1e-6):
    """Central finite differences of the scalar f() w.r.t. every element of `array` (perturbed in place)."""
    grad = np.zeros_like(array, dtype=float)
    for idx in np.ndindex(*array.shape):
        original = array[idx]
        array[idx] = original + eps
        plus = f()
        array[idx] = original - eps
        minus = f()
        array[idx] = original
        grad[idx] = (plus - minus) / (2 * eps)
    return grad


@pytest.fixture(autouse=True)
def seeded():
    """Make every test reproducible."""
    np.random.seed(1234)


@pytest.fixture
def conv_network():
    """conv(2 filters, 2x2) -> [relu] -> maxpool(2x2) -> dense(3) -> [softmax] on (1, 4, 4) inputs."""
    net = Sequential()
    net.add_conv(2, (2, 2), input_shape=(1, 4, 4))
    net.add_max_pool((2, 2), stride=(1, 1))
    net.add_dense(3)
    net.compile(loss="crossEntropy", optimizer=Adam(), metrics=["accuracy"])
    return net


@pytest.fixture
def image_data():
    """Eight random (1, 4, 4) images with one-hot labels over 3 classes."""
    x = np.random.rand(8, 1, 4, 4)
    y = np.eye(3)[np.arange(8) % 3]
    return x, y
