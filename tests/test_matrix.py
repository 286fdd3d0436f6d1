"""
test_matrix.py
~~~~~~~~~~~~~~

Unit tests for the matrix kernel and the He-normal initializer.
"""

import logging

import numpy as np
import pytest

from clear_sequential import matrix
from clear_sequential.exceptions import InvalidDimensionError, InvalidOperationError
from clear_sequential.initializers import HeNormal


@pytest.mark.unit
class TestMatrixKernel:
    """Shape contract of the dense matrix helpers."""

    def test_multiply(self):
        """Test that multiply returns the ordinary matrix product."""
        a = np.array([[1.0, 2.0], [3.0, 4.0]])
        b = np.array([[5.0], [6.0]])
        assert np.array_equal(matrix.multiply(a, b), np.array([[17.0], [39.0]]))

    def test_multiply_dimension_mismatch(self):
        """Test that A.cols != B.rows is a dimension error."""
        with pytest.raises(InvalidDimensionError):
            matrix.multiply(np.ones((2, 3)), np.ones((2, 3)))

    def test_transpose_returns_copy(self):
        """Test that transpose does not alias its input."""
        m = np.arange(6.0).reshape(2, 3)
        t = matrix.transpose(m)
        t[0, 0] = 100.0
        assert t.shape == (3, 2)
        assert m[0, 0] == 0.0

    def test_elementwise_in_place(self):
        """Test element-wise add and multiply modify the target."""
        target = np.ones((2, 2))
        matrix.add_in_place(target, np.full((2, 2), 2.0))
        matrix.multiply_in_place(target, np.full((2, 2), 3.0))
        assert np.array_equal(target, np.full((2, 2), 9.0))

    def test_elementwise_shape_mismatch(self):
        """Test element-wise operations reject differing shapes instead of broadcasting."""
        with pytest.raises(InvalidDimensionError):
            matrix.add_in_place(np.ones((2, 2)), np.ones((1, 2)))
        with pytest.raises(InvalidDimensionError):
            matrix.multiply_in_place(np.ones((2, 2)), np.ones(4))

    def test_reshape_exact(self):
        """Test reshape between flat and multi-dimensional views."""
        data = np.arange(24.0)
        assert matrix.reshape(data, (2, 3, 4)).shape == (2, 3, 4)
        assert matrix.reshape(data.reshape(2, 3, 4), (24,))[5] == 5.0

    def test_reshape_count_mismatch(self):
        """Test that differing element counts are an error without truncation."""
        with pytest.raises(InvalidDimensionError):
            matrix.reshape(np.arange(10.0), (3, 3))

    def test_reshape_truncates_with_warning(self, caplog):
        """Test that truncating reshape drops trailing elements and logs a warning."""
        with caplog.at_level(logging.WARNING):
            result = matrix.reshape(np.arange(10.0), (3, 3), truncate=True)
        assert result.shape == (3, 3)
        assert result[-1, -1] == 8.0
        assert "Truncation" in caplog.text

    def test_reshape_too_few_elements(self):
        """Test that too few elements is an error even when truncation is allowed."""
        with pytest.raises(InvalidDimensionError):
            matrix.reshape(np.arange(5.0), (3, 2), truncate=True)

    def test_row_argmax_ties_pick_first(self):
        """Test per-row argmax breaks ties by first occurrence."""
        m = np.array([[1.0, 3.0, 3.0], [2.0, 2.0, 2.0], [0.0, -1.0, 5.0]])
        assert list(matrix.row_argmax(m)) == [1, 0, 2]

    def test_append_ones_column(self):
        """Test the bias column is appended on the right."""
        result = matrix.append_ones_column(np.zeros((2, 3)))
        assert result.shape == (2, 4)
        assert np.array_equal(result[:, -1], np.ones(2))

    def test_flatten_batch(self):
        """Test 4D batches and single 1D examples become 2D matrices."""
        assert matrix.flatten_batch(np.zeros((5, 2, 3, 4))).shape == (5, 24)
        assert matrix.flatten_batch(np.zeros(7)).shape == (1, 7)

    def test_min_max_normalize(self):
        """Test global min-max normalization of a 4D tensor in place."""
        data = np.arange(16.0).reshape(2, 2, 2, 2) + 3.0
        result = matrix.min_max_normalize(data)
        assert result is data
        assert matrix.min_value(data) == 0.0
        assert matrix.max_value(data) == 1.0

    def test_min_max_normalize_constant(self):
        """Test a constant tensor maps to zeros."""
        data = np.full((1, 1, 2, 2), 7.0)
        assert np.array_equal(matrix.min_max_normalize(data), np.zeros((1, 1, 2, 2)))

    def test_min_max_normalize_requires_4d(self):
        """Test non-4D input is rejected."""
        with pytest.raises(InvalidDimensionError):
            matrix.min_max_normalize(np.ones((2, 2)))

    def test_spatial_output_dims(self):
        """Test the sliding-window output size rule."""
        assert matrix.spatial_output_dims((4, 4), (2, 2), (1, 1)) == (3, 3)
        assert matrix.spatial_output_dims((7, 9), (3, 2), (2, 3)) == (3, 3)


@pytest.mark.unit
class TestHeNormal:
    """He-normal weight sampling."""

    def test_sample_requires_fan_in(self):
        """Test sampling before the fan-in is set is an invalid operation."""
        with pytest.raises(InvalidOperationError):
            HeNormal().sample((2, 2))

    def test_sample_scale(self):
        """Test samples have standard deviation close to sqrt(2 / fan_in)."""
        init = HeNormal()
        init.set_fan_in(50)
        weights = init.sample((200, 200))
        assert weights.shape == (200, 200)
        assert abs(np.std(weights) - np.sqrt(2.0 / 50)) < 0.01
        assert abs(np.mean(weights)) < 0.01
