"""
test_activations.py
~~~~~~~~~~~~~~~~~~~

Unit tests for the ReLU, Sigmoid and Softmax activation layers.
"""

import numpy as np
import pytest

from conftest import numeric_gradient
from clear_sequential.activations import ReLU, Sigmoid, Softmax, get_activation
from clear_sequential.exceptions import InvalidDimensionError, InvalidOperationError


@pytest.mark.unit
class TestReLU:
    """ReLU forward and backward passes."""

    def test_forward_batch_caches_output(self):
        """Test forward_batch clamps negatives and caches the result."""
        layer = ReLU((1, 1, 4))
        out = layer.forward_batch(np.array([[-1.0, 0.0, 2.0, -3.0]]))
        assert np.array_equal(out, np.array([[0.0, 0.0, 2.0, 0.0]]))
        assert layer.last_output is out

    def test_forward_single_example_does_not_cache(self):
        """Test the single-example forward leaves the cache alone."""
        layer = ReLU((1, 2, 2))
        out = layer.forward(np.array([[[1.0, -1.0], [-2.0, 3.0]]]))
        assert np.array_equal(out, np.array([1.0, 0.0, 0.0, 3.0]))
        assert layer.last_output is None

    def test_backward_zero_where_input_not_positive(self):
        """Test gradient passes only where the pre-activation input was positive."""
        layer = ReLU((1, 1, 3))
        x = np.array([[-1.0, 0.0, 2.0]])
        grads = layer.compute_gradients(np.array([[5.0, 6.0, 7.0]]), x)
        assert np.array_equal(grads, np.array([[0.0, 0.0, 7.0]]))

    def test_backward_shape_mismatch(self):
        """Test gradient and input shapes must agree."""
        layer = ReLU((1, 1, 3))
        with pytest.raises(InvalidDimensionError):
            layer.compute_gradients(np.ones((2, 3)), np.ones((1, 3)))

    def test_wrong_input_width(self):
        """Test a batch of the wrong width is rejected."""
        with pytest.raises(InvalidDimensionError):
            ReLU((1, 1, 3)).forward_batch(np.ones((2, 4)))


@pytest.mark.unit
class TestSigmoid:
    """Sigmoid forward and backward passes."""

    def test_forward_values(self):
        """Test sigmoid(0) = 0.5 and saturation at large magnitudes."""
        out = Sigmoid((1, 1, 3)).forward_batch(np.array([[0.0, 1000.0, -1000.0]]))
        assert np.allclose(out, [[0.5, 1.0, 0.0]])

    def test_backward_matches_finite_differences(self):
        """Test the analytic gradient against central differences."""
        layer = Sigmoid((1, 1, 5))
        x = np.random.randn(3, 5)
        g = np.random.randn(3, 5)
        analytic = layer.compute_gradients(g, x)
        numeric = numeric_gradient(lambda: np.sum(g * layer.transform(x)), x)
        assert np.allclose(analytic, numeric, atol=1e-6)

    def test_backward_shape_mismatch(self):
        """Test gradient and input shapes must agree."""
        with pytest.raises(InvalidDimensionError):
            Sigmoid((1, 1, 2)).compute_gradients(np.ones((1, 3)), np.ones((1, 2)))


@pytest.mark.unit
class TestSoftmax:
    """Softmax forward and Jacobian backward."""

    def test_rows_sum_to_one(self):
        """Test every output row is a probability distribution, even for large inputs."""
        x = np.vstack([np.random.randn(4, 6) * 10, np.array([[1000.0, -1000.0, 0.0, 5.0, 700.0, 1.0]])])
        out = Softmax((1, 1, 6)).forward_batch(x)
        assert np.all(np.isfinite(out))
        assert np.allclose(out.sum(axis=1), 1.0)
        assert np.all(out >= 0.0)

    def test_backward_matches_finite_differences(self):
        """Test the Jacobian product against central differences."""
        layer = Softmax((1, 1, 4))
        x = np.random.randn(3, 4)
        g = np.random.randn(3, 4)
        layer.forward_batch(x)
        analytic = layer.compute_gradients(g, x)
        numeric = numeric_gradient(lambda: np.sum(g * layer.transform(x)), x)
        assert np.allclose(analytic, numeric, atol=1e-6)

    def test_backward_requires_forward(self):
        """Test backward before any forward batch is an invalid operation."""
        with pytest.raises(InvalidOperationError):
            Softmax((1, 1, 3)).compute_gradients(np.ones((1, 3)), np.ones((1, 3)))

    def test_backward_shape_mismatch(self):
        """Test gradients must match the cached output."""
        layer = Softmax((1, 1, 3))
        layer.forward_batch(np.ones((2, 3)))
        with pytest.raises(InvalidDimensionError):
            layer.compute_gradients(np.ones((1, 3)), np.ones((1, 3)))


@pytest.mark.unit
class TestActivationFactory:
    """get_activation lookup."""

    def test_lookup_is_case_insensitive(self):
        """Test names resolve regardless of case and keep the given shape."""
        layer = get_activation("ReLU", (2, 3, 3))
        assert isinstance(layer, ReLU)
        assert layer.output_shape == (2, 3, 3)

    def test_unknown_name(self):
        """Test an unknown activation is an invalid operation."""
        with pytest.raises(InvalidOperationError):
            get_activation("tanh", (1, 1, 3))

    def test_input_shape_must_be_3d(self):
        """Test activation layers reject non-3D shapes."""
        with pytest.raises(InvalidDimensionError):
            Sigmoid((3, 3))
