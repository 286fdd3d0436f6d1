"""
Layer building blocks for the sequential network engine.

Every layer works on *flattened* batches: a batch is a 2D matrix of shape
(batch_size, depth * height * width), and each layer knows the 3D shape
(depth, height, width) its flat rows stand for. That keeps every forward and
backward computation a plain matrix product:

1. Dense layers append a column of ones to the batch and multiply it by a
   (fan_in + 1) x nodes weight matrix whose last row holds the biases.
2. Conv2D and MaxPool2D layers use a precomputed IndexMap (an im2col table)
   that scatters each flat input value into a "formed" matrix with one row
   per output position and one column per window cell. Convolution is then
   a single product with the filter matrix, pooling is a per-row argmax.
   The same table routes gradients back to the input in the backward pass.

Cached state and its lifetime:
    last_output       overwritten by every forward_batch call; read by the
                      next layer and by the optimizer for gradient routing.
    preserved_argmax  (MaxPool2D only) valid only between a forward_batch
                      call and the compute_gradients call for the same batch.
    param_gradient    set by compute_gradients, consumed by the update step
                      that immediately follows it.
"""

import logging
from typing import List, Optional, Sequence, Tuple

import numpy as np

from . import matrix
from .exceptions import InvalidDimensionError, InvalidOperationError
from .initializers import HeNormal

Shape3D = Tuple[int, int, int]


def _shape3d(shape: Sequence[int]) -> Shape3D:
    try:
        dims = tuple(int(d) for d in shape)
    except (TypeError, ValueError):
        raise InvalidDimensionError(f"Input shape must be a sequence of 3 integers, got {shape!r}")
    if len(dims) != 3:
        raise InvalidDimensionError("Incoming dimension sizes must be of length 3")
    if any(d <= 0 for d in dims):
        raise InvalidDimensionError(f"Input dimensions must be positive, got {dims}")
    return dims


def _window_pair(values: Sequence[int], label: str) -> Tuple[int, int]:
    try:
        dims = tuple(int(v) for v in values)
    except (TypeError, ValueError):
        raise InvalidDimensionError(f"{label} must be a sequence of 2 integers, got {values!r}")
    if len(dims) != 2:
        raise InvalidDimensionError(f"{label} array must be of length 2")
    if dims[0] <= 0 or dims[1] <= 0:
        raise InvalidDimensionError(f"{label} values must be positive, got {dims}")
    return dims


# --- Base Layer Classes ---

class Layer:
    """
    Abstract base class for all layers.

    Subclasses implement `_compute` (the pure batch transform),
    `compute_gradients` and, when they carry metadata, `to_lines`.
    """
    kind = None  # token used by the text serialization format

    def __init__(self, input_shape: Sequence[int]):
        self.input_shape = _shape3d(input_shape)
        self.last_output = None

    @property
    def output_shape(self) -> Shape3D:
        return self.input_shape

    @property
    def input_size(self) -> int:
        return int(np.prod(self.input_shape))

    @property
    def output_size(self) -> int:
        return int(np.prod(self.output_shape))

    def _check_batch(self, batch: np.ndarray) -> np.ndarray:
        batch = matrix.flatten_batch(batch)
        if batch.shape[1] != self.input_size:
            raise InvalidDimensionError(
                f"{self.__class__.__name__}: input width {batch.shape[1]} doesn't match "
                f"layer input size {self.input_size} {self.input_shape}"
            )
        return batch

    def _compute(self, batch: np.ndarray) -> np.ndarray:
        raise NotImplementedError("Each layer must implement its own forward computation.")

    def forward(self, sample: np.ndarray) -> np.ndarray:
        """Single-example forward pass. Leaves the cached batch state alone."""
        return self.transform(np.asarray(sample, dtype=float).reshape(1, -1))[0]

    def transform(self, batch: np.ndarray) -> np.ndarray:
        """Batch forward pass that leaves the cached batch state alone."""
        return self._compute(self._check_batch(batch))

    def forward_batch(self, batch: np.ndarray) -> np.ndarray:
        """Forward pass over a (batch_size, input_size) matrix; caches the result in last_output."""
        batch = self._check_batch(batch)
        logging.debug(f"{self.__class__.__name__} forward - input shape: {batch.shape}")
        self.last_output = self._compute(batch)
        logging.debug(f"{self.__class__.__name__} forward - output shape: {self.last_output.shape}")
        return self.last_output

    def compute_gradients(self, gradients: np.ndarray, prev_input: np.ndarray) -> np.ndarray:
        """
        Given dL/d(output) for a batch and the batch this layer received,
        returns dL/d(input). Trainable layers also cache their parameter gradient.
        """
        raise NotImplementedError("Each layer must implement its own backward pass.")

    def to_lines(self) -> List[str]:
        """Serialized form: the metadata line followed by any parameter rows."""
        return [self.kind]

    def parameter_count(self) -> int:
        return 0

    def describe(self) -> str:
        return f"{self.__class__.__name__}: In: {list(self.input_shape)} Out: {list(self.output_shape)}"


class TransformationLayer(Layer):
    """
    A layer that changes the shape of its input (Dense, Conv2D, MaxPool2D).

    The update hooks are no-ops here so that the optimizers can treat every
    transformation layer alike; MaxPool2D has nothing to update.
    """
    # Whether a following transformation layer needs an activation in between.
    needs_activation = True

    def update_params_mini_batch(self, learn_rate: float):
        pass

    def update_params_adam(self, alpha: float, beta1: float, beta2: float, epsilon: float,
                           beta1_power: float, beta2_power: float):
        pass


class TrainableLayer(TransformationLayer):
    """
    A transformation layer with a parameter matrix whose last row holds the biases,
    plus the first/second moment matrices used by Adam.
    """

    def _init_parameters(self, shape: Tuple[int, int], fan_in: int):
        self.initializer = HeNormal(fan_in)
        params = self.initializer.sample(shape)
        params[-1, :] = 0.0  # biases start at zero
        self.params = params
        self.first_moments = np.zeros(shape)
        self.second_moments = np.zeros(shape)
        self.param_gradient = None
        logging.debug(f"{self.__class__.__name__}: parameters {shape}, He-normal fan_in={fan_in}")

    @property
    def parameter_shape(self) -> Tuple[int, int]:
        return self.params.shape

    def parameter_count(self) -> int:
        return int(self.params.size)

    def set_params(self, params: np.ndarray):
        """Replaces the parameter matrix (e.g. when loading a saved network)."""
        params = np.array(params, dtype=float)
        if params.shape != self.params.shape:
            raise InvalidDimensionError(
                f"{self.__class__.__name__}: parameter shape {params.shape} "
                f"does not match expected shape {self.params.shape}"
            )
        self.params = params

    def _require_gradient(self) -> np.ndarray:
        if self.param_gradient is None:
            raise InvalidOperationError(
                f"{self.__class__.__name__}: parameters cannot be updated before gradients are computed"
            )
        return self.param_gradient

    def update_params_mini_batch(self, learn_rate: float):
        """params += -learn_rate * gradient"""
        gradient = self._require_gradient()
        matrix.add_in_place(self.params, -learn_rate * gradient)

    def update_params_adam(self, alpha: float, beta1: float, beta2: float, epsilon: float,
                           beta1_power: float, beta2_power: float):
        """
        One Adam step.

        The moments are blended from the stored previous moments with the raw
        decay rates; the bias correction uses the powers beta1^t and beta2^t
        supplied by the optimizer.
        """
        gradient = self._require_gradient()
        first = beta1 * self.first_moments + (1 - beta1) * gradient
        second = beta2 * self.second_moments + (1 - beta2) * gradient ** 2
        step = alpha * np.sqrt(1 - beta2_power) / (1 - beta1_power)
        self.params -= step * first / (np.sqrt(second) + epsilon)
        self.first_moments = first
        self.second_moments = second

    def _parameter_lines(self) -> List[str]:
        return [" ".join(repr(float(v)) for v in row) for row in self.params]


# --- Fully Connected Layer ---

class Dense(TrainableLayer):
    """
    Fully connected layer.
    Input shape: (N, fan_in)
    Output shape: (N, num_nodes), reported as the 3D shape (1, 1, num_nodes)
    Weights: (fan_in + 1, num_nodes), last row = biases
    """
    kind = "dense"

    def __init__(self, num_nodes: int, input_shape: Sequence[int]):
        super().__init__(input_shape)
        if int(num_nodes) <= 0:
            raise InvalidDimensionError(f"Dense layer needs a positive number of nodes, got {num_nodes}")
        self.num_nodes = int(num_nodes)
        self._init_parameters((self.input_size + 1, self.num_nodes), fan_in=self.input_size)

    @property
    def weights(self) -> np.ndarray:
        return self.params

    @property
    def output_shape(self) -> Shape3D:
        return (1, 1, self.num_nodes)

    def _compute(self, batch):
        return matrix.multiply(matrix.append_ones_column(batch), self.params)

    def compute_gradients(self, gradients, prev_input):
        gradients = np.asarray(gradients, dtype=float)
        prev_input = matrix.flatten_batch(prev_input)
        if gradients.shape[0] != prev_input.shape[0]:
            raise InvalidDimensionError(
                "Dense: compute_gradients: mismatch in batch size between gradients and given input"
            )
        input_gradients = matrix.multiply(gradients, matrix.transpose(self.params[:-1]))
        self.param_gradient = matrix.multiply(
            matrix.transpose(matrix.append_ones_column(prev_input)), gradients
        )
        return input_gradients

    def to_lines(self):
        return [f"dense -n {self.num_nodes}"] + self._parameter_lines()

    def describe(self):
        return f"Dense Layer: {self.num_nodes:4d} nodes. " + super().describe().split(": ", 1)[1]


# --- Sliding-window index maps ---

class IndexMap:
    """
    im2col table: for every flat input position, the ordered
    (output_row, window_column) pairs that position is copied into.

    Stored CSR-style: `offsets[i]:offsets[i + 1]` slices `rows` / `columns`
    for input position i, and `sources` repeats each position once per pair.
    Built once, read-only afterwards.
    """

    def __init__(self, entries: List[List[Tuple[int, int]]]):
        counts = np.array([len(e) for e in entries], dtype=int)
        self.offsets = np.concatenate([[0], np.cumsum(counts)]).astype(int)
        self.sources = np.repeat(np.arange(len(entries)), counts)
        flat = [pair for entry in entries for pair in entry]
        self.rows = np.array([r for r, _ in flat], dtype=int)
        self.columns = np.array([c for _, c in flat], dtype=int)
        for arr in (self.offsets, self.sources, self.rows, self.columns):
            arr.setflags(write=False)

    def __len__(self) -> int:
        return len(self.offsets) - 1

    def pairs(self, flat_index: int) -> List[Tuple[int, int]]:
        start, end = self.offsets[flat_index], self.offsets[flat_index + 1]
        return list(zip(self.rows[start:end].tolist(), self.columns[start:end].tolist()))

    def scatter(self, batch: np.ndarray, num_rows: int, num_columns: int) -> np.ndarray:
        """Copies each input value of every batch row into its formed-matrix cells."""
        formed = np.zeros((batch.shape[0], num_rows, num_columns))
        formed[:, self.rows, self.columns] = batch[:, self.sources]
        return formed

    def gather(self, formed_gradients: np.ndarray) -> np.ndarray:
        """For each input position, sums the formed-matrix cells the position was copied into."""
        batch_size = formed_gradients.shape[0]
        result = np.zeros((batch_size, len(self)))
        contributions = formed_gradients[:, self.rows, self.columns]
        np.add.at(result.T, self.sources, contributions.T)
        return result


def _convolution_entries(input_shape: Shape3D, window: Tuple[int, int], stride: Tuple[int, int],
                         out_width: int) -> List[List[Tuple[int, int]]]:
    depth, height, width = input_shape
    entries = [[] for _ in range(depth * height * width)]
    for i in range(0, height - window[0] + 1, stride[0]):
        for j in range(0, width - window[1] + 1, stride[1]):
            out_row = (i // stride[0]) * out_width + (j // stride[1])
            for layer in range(depth):
                for r in range(window[0]):
                    for c in range(window[1]):
                        flat_index = layer * height * width + (r + i) * width + (c + j)
                        column = layer * window[0] * window[1] + r * window[1] + c
                        entries[flat_index].append((out_row, column))
    return entries


def _pooling_entries(input_shape: Shape3D, window: Tuple[int, int], stride: Tuple[int, int],
                     out_dims: Tuple[int, int]) -> List[List[Tuple[int, int]]]:
    depth, height, width = input_shape
    out_height, out_width = out_dims
    entries = [[] for _ in range(depth * height * width)]
    for layer in range(depth):
        for i in range(0, height - window[0] + 1, stride[0]):
            for j in range(0, width - window[1] + 1, stride[1]):
                out_row = layer * out_height * out_width + (i // stride[0]) * out_width + (j // stride[1])
                for r in range(window[0]):
                    for c in range(window[1]):
                        flat_index = layer * height * width + (r + i) * width + (c + j)
                        entries[flat_index].append((out_row, r * window[1] + c))
    return entries


def _check_window_fits(input_shape: Shape3D, window: Tuple[int, int]):
    if window[0] > input_shape[1] or window[1] > input_shape[2]:
        raise InvalidDimensionError(
            f"Window dimensions {window} cannot be greater than layer input dimensions {input_shape[1:]}"
        )


# --- Convolutional Layer ---

class Conv2D(TrainableLayer):
    """
    2D convolution (valid padding) computed as one matrix product per example.

    Input shape:  (depth, H_in, W_in), flattened
    Filters:      (depth * K_h * K_w + 1, num_filters), last row = biases
    Output shape: (num_filters, H_out, W_out), flattened filter-major

    H_out = (H_in - K_h) // S_h + 1, W_out = (W_in - K_w) // S_w + 1
    """
    kind = "conv"

    def __init__(self, num_filters: int, filter_shape: Sequence[int], input_shape: Sequence[int],
                 stride: Sequence[int] = (1, 1)):
        super().__init__(input_shape)
        self.stride = _window_pair(stride, "Stride length")
        self.filter_shape = _window_pair(filter_shape, "Spatial window dimension")
        _check_window_fits(self.input_shape, self.filter_shape)
        if int(num_filters) <= 0:
            raise InvalidDimensionError(f"Conv layer needs a positive number of filters, got {num_filters}")
        self.num_filters = int(num_filters)

        out_h, out_w = matrix.spatial_output_dims(self.input_shape[1:], self.filter_shape, self.stride)
        self._output_shape = (self.num_filters, out_h, out_w)
        self.window_size = self.input_shape[0] * self.filter_shape[0] * self.filter_shape[1]
        self.index_map = IndexMap(_convolution_entries(self.input_shape, self.filter_shape, self.stride, out_w))

        # fan-in is the number of output positions each filter is applied to
        self._init_parameters((self.window_size + 1, self.num_filters), fan_in=out_h * out_w)

    @property
    def filters(self) -> np.ndarray:
        return self.params

    @property
    def output_shape(self) -> Shape3D:
        return self._output_shape

    @property
    def output_spatial(self) -> int:
        return self._output_shape[1] * self._output_shape[2]

    def _formed_input(self, batch: np.ndarray) -> np.ndarray:
        """(N, output_spatial, window_size + 1); the last column is all ones for the bias."""
        formed = self.index_map.scatter(batch, self.output_spatial, self.window_size + 1)
        formed[:, :, -1] = 1.0
        return formed

    def _compute(self, batch):
        formed = self._formed_input(batch)
        result = np.empty((batch.shape[0], self.output_size))
        for i in range(batch.shape[0]):
            # (spatial x filters) -> filter-major flat row
            result[i] = matrix.multiply(formed[i], self.params).T.reshape(-1)
        return result

    def compute_gradients(self, gradients, prev_input):
        gradients = np.asarray(gradients, dtype=float)
        prev_input = self._check_batch(prev_input)
        if gradients.shape[0] != prev_input.shape[0]:
            raise InvalidDimensionError(
                "Conv: compute_gradients: mismatch in batch size between gradients and given input"
            )
        if gradients.ndim != 2 or gradients.shape[1] != self.output_size:
            raise InvalidDimensionError(
                f"Conv: compute_gradients: expected gradients of width {self.output_size}, got {gradients.shape}"
            )
        batch_size = gradients.shape[0]
        formed = self._formed_input(prev_input)
        blocks = gradients.reshape(batch_size, self.num_filters, self.output_spatial).transpose(0, 2, 1)
        filters_t = matrix.transpose(self.params)

        filter_gradient = np.zeros_like(self.params)
        formed_gradients = np.empty_like(formed)
        for i in range(batch_size):
            matrix.add_in_place(filter_gradient, matrix.multiply(matrix.transpose(formed[i]), blocks[i]))
            formed_gradients[i] = matrix.multiply(blocks[i], filters_t)
        self.param_gradient = filter_gradient
        # the bias column has no input position in the map, so it drops out here
        return self.index_map.gather(formed_gradients)

    def to_lines(self):
        meta = (f"conv -n {self.num_filters} -d {self.filter_shape[0]} {self.filter_shape[1]} "
                f"-s {self.stride[0]} {self.stride[1]}")
        return [meta] + self._parameter_lines()

    def describe(self):
        return (f"Conv Layer: {self.num_filters:4d} filters. Filter Size: {list(self.filter_shape)} "
                f"In: {list(self.input_shape)} Out: {list(self.output_shape)} "
                f"VertStride: {self.stride[0]} HorStride: {self.stride[1]}")


# --- Pooling Layer ---

class MaxPool2D(TransformationLayer):
    """
    Max pooling per depth slice.
    Input shape:  (depth, H_in, W_in), flattened
    Output shape: (depth, H_out, W_out), flattened
    Stride defaults to the pool size.
    """
    kind = "maxpool"
    needs_activation = False

    def __init__(self, pool_shape: Sequence[int], input_shape: Sequence[int],
                 stride: Optional[Sequence[int]] = None):
        super().__init__(input_shape)
        self.pool_shape = _window_pair(pool_shape, "Spatial window dimension")
        self.stride = _window_pair(stride if stride is not None else self.pool_shape, "Stride length")
        _check_window_fits(self.input_shape, self.pool_shape)

        out_h, out_w = matrix.spatial_output_dims(self.input_shape[1:], self.pool_shape, self.stride)
        self._output_shape = (self.input_shape[0], out_h, out_w)
        self.window_size = self.pool_shape[0] * self.pool_shape[1]
        self.index_map = IndexMap(_pooling_entries(self.input_shape, self.pool_shape, self.stride, (out_h, out_w)))
        self.preserved_argmax = None

    @property
    def output_shape(self) -> Shape3D:
        return self._output_shape

    def _pool(self, batch):
        formed = self.index_map.scatter(batch, self.output_size, self.window_size)
        argmax = np.empty((batch.shape[0], self.output_size), dtype=int)
        for i in range(batch.shape[0]):
            argmax[i] = matrix.row_argmax(formed[i])
        values = np.take_along_axis(formed, argmax[:, :, None], axis=2)[:, :, 0]
        return values, argmax

    def _compute(self, batch):
        return self._pool(batch)[0]

    def forward_batch(self, batch):
        batch = self._check_batch(batch)
        logging.debug(f"{self.__class__.__name__} forward - input shape: {batch.shape}")
        self.last_output, self.preserved_argmax = self._pool(batch)
        logging.debug(f"{self.__class__.__name__} forward - output shape: {self.last_output.shape}")
        return self.last_output

    def compute_gradients(self, gradients, prev_input):
        """Routes each output gradient to the single input position that won its window."""
        if self.preserved_argmax is None:
            raise InvalidOperationError("MaxPool: compute_gradients called before a forward batch pass")
        gradients = np.asarray(gradients, dtype=float)
        if gradients.shape != self.preserved_argmax.shape:
            raise InvalidDimensionError(
                f"MaxPool: compute_gradients: gradients shape {gradients.shape} doesn't match "
                f"the last forward batch {self.preserved_argmax.shape}"
            )
        formed_gradients = np.zeros((gradients.shape[0], self.output_size, self.window_size))
        np.put_along_axis(formed_gradients, self.preserved_argmax[:, :, None], gradients[:, :, None], axis=2)
        return self.index_map.gather(formed_gradients)

    def to_lines(self):
        return [f"maxpool -d {self.pool_shape[0]} {self.pool_shape[1]} -s {self.stride[0]} {self.stride[1]}"]

    def describe(self):
        return (f"Maxpool Layer: Pool Size: {list(self.pool_shape)} "
                f"In: {list(self.input_shape)} Out: {list(self.output_shape)} "
                f"VertStride: {self.stride[0]} HorStride: {self.stride[1]}")
