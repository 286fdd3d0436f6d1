import logging
from typing import Callable, Dict, List, Optional, Sequence, Union

import numpy as np

from . import matrix, serialization
from .activations import ReLU, Sigmoid, Softmax, get_activation
from .exceptions import InvalidDimensionError, InvalidOperationError
from .layers import Conv2D, Dense, Layer, MaxPool2D, TransformationLayer
from .losses import LOSS_FUNCTIONS, LossFunction, MeanSquaredError
from .metrics import batch_accuracy, validate_metrics
from .optimizers import Adam, Optimizer
from .progress import ProgressReporter


class Sequential:
    """
    A feed-forward network built as an ordered stack of layers.

    Assembly rules:
        - Only the first layer is given an input shape; every later layer
          takes the previous layer's output shape.
        - The first layer cannot be an activation layer.
        - A ReLU is inserted automatically between two consecutive
          transformation layers, unless the earlier one is a max-pooling layer.
        - `compile` appends a Softmax if the network ends in a Dense layer.

    Example:
        net = Sequential()
        net.add_conv(8, (3, 3), input_shape=(1, 8, 8))
        net.add_max_pool((2, 2))
        net.add_dense(10)
        net.compile(loss="crossEntropy", optimizer=Adam(), metrics=["accuracy"])
        history = net.fit(x, y, batch_size=32, epochs=10)
    """

    def __init__(self):
        self.layers: List[Layer] = []
        self.loss_function: Optional[LossFunction] = None
        self.optimizer: Optional[Optimizer] = None
        self.metrics: List[str] = []
        self.input_shape = None
        self.compiled = False

    # --- Assembly ---

    def _next_input_shape(self, input_shape: Optional[Sequence[int]]):
        if self.compiled:
            raise InvalidOperationError("Cannot add layers to a network after it has been compiled")
        if not self.layers:
            if input_shape is None:
                raise InvalidOperationError("The first layer of the network must be given an input shape")
            return tuple(input_shape)
        if input_shape is not None:
            raise InvalidOperationError("Only the first layer of the network may be given an input shape")
        return self.layers[-1].output_shape

    def _add_transformation(self, build: Callable[[Sequence[int]], TransformationLayer],
                            input_shape: Optional[Sequence[int]], activation: Optional[str]) -> TransformationLayer:
        shape = self._next_input_shape(input_shape)
        if self.layers and isinstance(self.layers[-1], TransformationLayer) and self.layers[-1].needs_activation:
            logging.debug(f"Inserting ReLU after {self.layers[-1].__class__.__name__}")
            self.layers.append(ReLU(shape))
        layer = build(shape)
        if not self.layers:
            self.input_shape = layer.input_shape
        self.layers.append(layer)
        logging.info(f"Added {layer.describe()}")
        if activation is not None:
            self._add_activation(get_activation(activation, layer.output_shape))
        return layer

    def _add_activation(self, layer: Layer) -> Layer:
        if self.compiled:
            raise InvalidOperationError("Cannot add layers to a network after it has been compiled")
        self.layers.append(layer)
        logging.info(f"Added {layer.describe()}")
        return layer

    def _previous_output_shape(self):
        if not self.layers:
            raise InvalidOperationError("The first layer of the network cannot be an activation layer")
        return self.layers[-1].output_shape

    def add_dense(self, num_nodes: int, input_shape: Optional[Sequence[int]] = None,
                  activation: Optional[str] = None) -> Dense:
        """
        Appends a fully connected layer.

        Args:
            num_nodes: Number of output nodes.
            input_shape: (depth, height, width), only for the first layer.
            activation: Optional activation name ('relu', 'sigmoid', 'softmax') appended after the layer.
        """
        return self._add_transformation(lambda shape: Dense(num_nodes, shape), input_shape, activation)

    def add_conv(self, num_filters: int, filter_shape: Sequence[int], input_shape: Optional[Sequence[int]] = None,
                 stride: Sequence[int] = (1, 1), activation: Optional[str] = None) -> Conv2D:
        """
        Appends a convolutional layer.

        Args:
            num_filters: Number of filters (output depth).
            filter_shape: (height, width) of each filter.
            input_shape: (depth, height, width), only for the first layer.
            stride: (vertical, horizontal) stride.
            activation: Optional activation name appended after the layer.
        """
        return self._add_transformation(lambda shape: Conv2D(num_filters, filter_shape, shape, stride),
                                        input_shape, activation)

    def add_max_pool(self, pool_shape: Sequence[int], input_shape: Optional[Sequence[int]] = None,
                     stride: Optional[Sequence[int]] = None) -> MaxPool2D:
        """Appends a max-pooling layer. The stride defaults to the pool shape."""
        return self._add_transformation(lambda shape: MaxPool2D(pool_shape, shape, stride), input_shape, None)

    def add_relu(self) -> ReLU:
        return self._add_activation(ReLU(self._previous_output_shape()))

    def add_sigmoid(self) -> Sigmoid:
        return self._add_activation(Sigmoid(self._previous_output_shape()))

    def add_softmax(self) -> Softmax:
        return self._add_activation(Softmax(self._previous_output_shape()))

    def compile(self, loss: Union[str, LossFunction, None] = None, optimizer: Optional[Optimizer] = None,
                metrics: Optional[Sequence[str]] = None):
        """
        Fixes the loss function, optimizer and metrics.

        Args:
            loss: A LossFunction or its name ('meanSquaredError', 'crossEntropy').
                Defaults to mean squared error.
            optimizer: An Optimizer instance. Defaults to Adam().
            metrics: Metric names; only 'accuracy' is supported.
        """
        if not self.layers:
            raise InvalidOperationError("Cannot compile a network without layers")
        if loss is None:
            loss = MeanSquaredError()
        elif isinstance(loss, str):
            if loss not in LOSS_FUNCTIONS:
                raise InvalidOperationError(
                    f"Unknown loss function '{loss}'. Available: {list(LOSS_FUNCTIONS.keys())}"
                )
            loss = LOSS_FUNCTIONS[loss]()
        self.metrics = validate_metrics(metrics or [])
        self.loss_function = loss
        self.optimizer = optimizer if optimizer is not None else Adam()

        if isinstance(self.layers[-1], Dense):
            self.layers.append(Softmax(self.layers[-1].output_shape))
            logging.debug("Appended Softmax after the final Dense layer")
        self.compiled = True
        logging.info(f"Compiled network: loss={self.loss_function.name}, optimizer={self.optimizer!r}, "
                     f"metrics={self.metrics}")

    def _require_compiled(self, action: str):
        if not self.compiled:
            raise InvalidOperationError(f"Network must be compiled before {action}")

    # --- Forward / backward composition ---

    @property
    def output_shape(self):
        if not self.layers:
            raise InvalidOperationError("Network has no layers")
        return self.layers[-1].output_shape

    def forward_batch_pass(self, batch: np.ndarray) -> np.ndarray:
        """Threads a batch through every layer; each layer caches its output."""
        output = matrix.flatten_batch(batch)
        for i, layer in enumerate(self.layers):
            output = layer.forward_batch(output)
            logging.debug(f"Forward pass - Layer {i} output shape: {output.shape}")
        return output

    def loss_gradient(self, expected: np.ndarray) -> np.ndarray:
        """dL/d(output) of the last forward batch, divided by the batch size."""
        self._require_compiled("computing a loss gradient")
        final_output = self.layers[-1].last_output
        if final_output is None:
            raise InvalidOperationError("loss_gradient called before a forward batch pass")
        expected = matrix.flatten_batch(expected)
        return self.loss_function.partial_derivatives(expected, final_output) / final_output.shape[0]

    def backward_pass(self, batch: np.ndarray, gradients: np.ndarray,
                      update: Optional[Callable[[TransformationLayer], None]] = None) -> np.ndarray:
        """
        Runs the layers in reverse order, feeding each layer's input gradient to
        the layer before it. `update` is called on every transformation layer
        right after its gradients are computed.

        Args:
            batch: The input batch of the matching forward_batch_pass.
            gradients: dL/d(output) of the final layer.
            update: Parameter update step, usually supplied by the optimizer.

        Returns:
            dL/d(input) of the first layer.
        """
        batch = matrix.flatten_batch(batch)
        for j in range(len(self.layers) - 1, -1, -1):
            layer = self.layers[j]
            prev_input = self.layers[j - 1].last_output if j > 0 else batch
            gradients = layer.compute_gradients(gradients, prev_input)
            if update is not None and isinstance(layer, TransformationLayer):
                update(layer)
        return gradients

    # --- Training and inference ---

    def fit(self, x: np.ndarray, y: np.ndarray, batch_size: int = 32, epochs: int = 1,
            verbose: bool = True) -> Dict[str, List[float]]:
        """
        Trains the network with its compiled optimizer.

        Args:
            x: Inputs of shape (N, depth, height, width).
            y: One-hot (or real-valued) targets of shape (N, outputs).
            batch_size: Examples per batch; leftovers that do not fill a batch are dropped.
            epochs: Number of passes over the data.
            verbose: Whether to print a progress bar per epoch.

        Returns:
            {"loss": [...], "accuracy": [...]}, one entry per epoch.
        """
        self._require_compiled("training")
        reporter = None
        if verbose:
            num_examples = len(x)
            effective = batch_size if 0 < batch_size <= num_examples else num_examples
            reporter = ProgressReporter(num_examples // max(effective, 1), epochs,
                                        show_accuracy="accuracy" in self.metrics)
        return self.optimizer.train(self, x, y, batch_size, epochs, reporter)

    def _as_batch(self, x: np.ndarray) -> np.ndarray:
        x = np.asarray(x, dtype=float)
        if self.input_shape is not None and x.shape == self.input_shape:
            x = x.reshape((1,) + x.shape)
        return matrix.flatten_batch(x)

    def predict(self, x: np.ndarray) -> np.ndarray:
        """
        Network outputs for a batch of inputs (or a single input of the network's
        input shape). Does not disturb any layer's cached training state.
        """
        if not self.layers:
            raise InvalidOperationError("Cannot predict with a network without layers")
        output = self._as_batch(x)
        for layer in self.layers:
            output = layer.transform(output)
        return output

    def evaluate(self, x: np.ndarray, y: np.ndarray) -> Dict[str, float]:
        """
        Mean loss (and accuracy, when compiled with it) over a data set.

        Returns:
            {"loss": float[, "accuracy": float]}
        """
        self._require_compiled("evaluation")
        inputs = self._as_batch(x)
        expected = matrix.flatten_batch(y)
        if inputs.shape[0] != expected.shape[0]:
            raise InvalidDimensionError(
                f"Number of inputs ({inputs.shape[0]}) doesn't match number of expected outputs ({expected.shape[0]})"
            )
        outputs = self.predict(inputs)
        results = {"loss": self.loss_function.batch_loss(expected, outputs)}
        if "accuracy" in self.metrics:
            results["accuracy"] = batch_accuracy(expected, outputs)
        logging.info(f"Evaluation on {inputs.shape[0]} examples: {results}")
        return results

    def summary(self) -> str:
        """One line per layer plus the total parameter count."""
        lines = [f"Input shape: {list(self.input_shape) if self.input_shape else None}"]
        for i, layer in enumerate(self.layers):
            lines.append(f"  Layer {i + 1}: {layer.describe()}  Params: {layer.parameter_count()}")
        total = sum(layer.parameter_count() for layer in self.layers)
        lines.append(f"Total parameters: {total}")
        return "\n".join(lines)

    # --- Persistence ---

    def save(self, path: str):
        """Writes the network in the text model format."""
        serialization.write_network(self, path)

    @classmethod
    def load(cls, path: str) -> "Sequential":
        """Rebuilds a compiled network from a file written by `save`."""
        return serialization.load_network(path, cls)
