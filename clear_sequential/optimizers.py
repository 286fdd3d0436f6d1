"""
Optimizers own the training loop.

For every batch they run the network's forward pass, take the loss gradient,
sweep the layers in reverse order and update each transformation layer right
after its gradients are computed. The network is passed to `train` on every
call; optimizers keep no reference to it.
"""

import logging
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from . import matrix
from .exceptions import InvalidDimensionError, InvalidNetworkFormatError
from .layers import TransformationLayer
from .metrics import batch_accuracy, batch_loss
from .progress import ProgressReporter


def make_batches(x: np.ndarray, y: np.ndarray, batch_size: int) -> Tuple[np.ndarray, np.ndarray]:
    """
    Splits examples into equally sized batches.

    Returns:
        (x_batches, y_batches) of shapes (num_batches, batch_size, input_size)
        and (num_batches, batch_size, output_size). Examples that do not fill
        a whole batch are dropped.
    """
    x = matrix.flatten_batch(x)
    y = matrix.flatten_batch(y)
    if x.shape[0] != y.shape[0]:
        raise InvalidDimensionError(
            f"Number of inputs ({x.shape[0]}) doesn't match number of expected outputs ({y.shape[0]})"
        )
    num_examples = x.shape[0]
    if num_examples == 0:
        raise InvalidDimensionError("Cannot train on an empty data set")
    if batch_size <= 0 or batch_size > num_examples:
        logging.warning(f"Batch size {batch_size} is invalid for {num_examples} examples; using {num_examples}")
        batch_size = num_examples

    num_batches = num_examples // batch_size
    x_batches = matrix.reshape(x, (num_batches, batch_size, x.shape[1]), truncate=True)
    y_batches = matrix.reshape(y, (num_batches, batch_size, y.shape[1]), truncate=True)
    return x_batches, y_batches


class Optimizer:
    """Base class: batching and the epoch/batch loop. Subclasses supply the update rule."""
    name = None  # token used by the text serialization format

    def _start_epoch(self, epoch: int):
        pass

    def _update_layer(self, layer: TransformationLayer):
        raise NotImplementedError

    def train(self, network, x: np.ndarray, y: np.ndarray, batch_size: int, epochs: int,
              reporter: Optional[ProgressReporter] = None) -> Dict[str, List[float]]:
        """
        Fits `network` to the examples.

        Args:
            network: A compiled Sequential network.
            x: Inputs, (N, depth, height, width) or already flattened (N, features).
            y: Expected outputs, (N, outputs).
            batch_size: Examples per batch.
            epochs: Number of passes over the data.
            reporter: Optional console progress reporter.

        Returns:
            History dict with the mean batch loss (and accuracy, when tracked) per epoch.
        """
        x_batches, y_batches = make_batches(x, y, batch_size)
        track_accuracy = "accuracy" in network.metrics
        history: Dict[str, List[float]] = {"loss": [], "accuracy": []}
        logging.info(f"{self.__class__.__name__}: training for {epochs} epochs, "
                     f"{len(x_batches)} batches of {x_batches.shape[1]}")

        for epoch in range(epochs):
            self._start_epoch(epoch)
            if reporter:
                reporter.new_epoch(epoch)
            epoch_losses, epoch_accuracies = [], []

            for x_batch, y_batch in zip(x_batches, y_batches):
                output = network.forward_batch_pass(x_batch)
                if not np.all(np.isfinite(output)):
                    logging.warning(f"Non-finite values in network output during epoch {epoch + 1}")
                gradients = network.loss_gradient(y_batch)

                loss = batch_loss(network.loss_function, y_batch, output)
                accuracy = batch_accuracy(y_batch, output) if track_accuracy else None
                epoch_losses.append(loss)
                if accuracy is not None:
                    epoch_accuracies.append(accuracy)
                if reporter:
                    reporter.log_batch(loss, accuracy)

                network.backward_pass(x_batch, gradients, self._update_layer)

            history["loss"].append(float(np.mean(epoch_losses)))
            if track_accuracy:
                history["accuracy"].append(float(np.mean(epoch_accuracies)))
            if reporter:
                reporter.finish_epoch()
            logging.debug(f"Epoch {epoch + 1}/{epochs} - loss: {history['loss'][-1]:.6f}")

        logging.info(f"{self.__class__.__name__}: training finished")
        return history

    def to_line(self) -> str:
        raise NotImplementedError


class MiniBatch(Optimizer):
    """Plain mini-batch gradient descent: params += -learn_rate * gradient."""
    name = "mini"

    def __init__(self, learn_rate: float = 0.01):
        self.learn_rate = float(learn_rate)

    def _update_layer(self, layer):
        layer.update_params_mini_batch(self.learn_rate)

    def to_line(self):
        return f"mini {self.learn_rate!r}"

    def __repr__(self):
        return f"MiniBatch(learn_rate={self.learn_rate})"


class Adam(Optimizer):
    """
    Adam optimizer.

    The bias-correction powers beta1^t and beta2^t use t = epoch + 1 and are
    recomputed once per epoch, so every batch of an epoch shares them.
    """
    name = "adam"

    def __init__(self, alpha: float = 0.001, beta1: float = 0.9, beta2: float = 0.999, epsilon: float = 1e-8):
        self.alpha = float(alpha)
        self.beta1 = float(beta1)
        self.beta2 = float(beta2)
        self.epsilon = float(epsilon)
        self.beta1_power = self.beta1
        self.beta2_power = self.beta2

    def _start_epoch(self, epoch):
        self.beta1_power = self.beta1 ** (epoch + 1)
        self.beta2_power = self.beta2 ** (epoch + 1)

    def _update_layer(self, layer):
        layer.update_params_adam(self.alpha, self.beta1, self.beta2, self.epsilon,
                                 self.beta1_power, self.beta2_power)

    def to_line(self):
        return f"adam {self.alpha!r} {self.beta1!r} {self.beta2!r} {self.epsilon!r}"

    def __repr__(self):
        return f"Adam(alpha={self.alpha}, beta1={self.beta1}, beta2={self.beta2}, epsilon={self.epsilon})"


# Serialized optimizer name -> (class, number of numeric arguments)
OPTIMIZERS = {
    MiniBatch.name: (MiniBatch, 1),
    Adam.name: (Adam, 4),
}


def get_optimizer(tokens: Sequence[str]) -> Optimizer:
    """
    Builds an optimizer from the tokens of a serialized optimizer line,
    e.g. ["mini", "0.01"] or ["adam", "0.001", "0.9", "0.999", "1e-08"].

    Raises:
        InvalidNetworkFormatError: Unknown name, wrong argument count or an unparsable number.
    """
    if not tokens:
        raise InvalidNetworkFormatError("Missing optimizer line")
    name, args = tokens[0], list(tokens[1:])
    if name not in OPTIMIZERS:
        raise InvalidNetworkFormatError(f"Invalid optimizer: {name}")
    cls, arg_count = OPTIMIZERS[name]
    if len(args) != arg_count:
        raise InvalidNetworkFormatError(
            f"Optimizer {name} expects {arg_count} values, got {len(args)}: {' '.join(tokens)}"
        )
    values = []
    for token in args:
        try:
            values.append(float(token))
        except ValueError:
            raise InvalidNetworkFormatError(f"Invalid number for optimizer {name}: {token}")
    return cls(*values)
