"""
Text model format.

    Inshape: <d> <h> <w>
    <layer line>
    [<parameter row> ...]       only after dense/conv lines
    ...
    <loss name>
    <optimizer name> <values...>
    metrics: <name> ...

Layer lines:
    conv -n <filters> -d <fh> <fw> -s <sh> <sw>
    dense -n <nodes>
    maxpool -d <ph> <pw> -s <sh> <sw>
    relu | sigmoid | softmax

Parameter rows hold one matrix row each as whitespace-separated floats,
written with repr() so that a save/load round trip is exact.
"""

import logging
from typing import Dict, List, Tuple

import numpy as np

from .exceptions import InvalidDimensionError, InvalidNetworkFormatError, InvalidOperationError
from .layers import TrainableLayer
from .losses import LOSS_FUNCTIONS, get_loss
from .optimizers import get_optimizer

# Option flag -> number of integer values it takes
OPTION_FLAGS = {"-n": 1, "-d": 2, "-s": 2}
ACTIVATION_TOKENS = ("relu", "sigmoid", "softmax")
LAYER_TOKENS = ("conv", "dense", "maxpool") + ACTIVATION_TOKENS


def network_to_text(network) -> str:
    """Serializes a compiled network to the text model format."""
    if not network.compiled:
        raise InvalidOperationError("Network must be compiled before it can be saved")
    d, h, w = network.input_shape
    lines = [f"Inshape: {d} {h} {w}"]
    for layer in network.layers:
        lines.extend(layer.to_lines())
    lines.append(network.loss_function.name)
    lines.append(network.optimizer.to_line())
    lines.append(" ".join(["metrics:"] + list(network.metrics)))
    return "\n".join(lines) + "\n"


def write_network(network, path: str):
    text = network_to_text(network)
    with open(path, "w") as f:
        f.write(text)
    logging.info(f"Saved network with {len(network.layers)} layers to {path}")


class _LineReader:
    """Iterates over the non-blank lines of a model file, tracking line numbers for error messages."""

    def __init__(self, text: str):
        self.lines = [(i + 1, line.strip()) for i, line in enumerate(text.splitlines()) if line.strip()]
        self.position = 0

    def at_end(self) -> bool:
        return self.position >= len(self.lines)

    def next(self, expecting: str) -> Tuple[int, str]:
        if self.at_end():
            raise InvalidNetworkFormatError(f"Unexpected end of file, expected {expecting}")
        entry = self.lines[self.position]
        self.position += 1
        return entry


def _parse_int(token: str, context: str) -> int:
    try:
        return int(token)
    except ValueError:
        raise InvalidNetworkFormatError(f"Invalid integer '{token}' in line: {context}")


def _parse_options(tokens: List[str], line: str) -> Dict[str, Tuple[int, ...]]:
    options = {}
    i = 0
    while i < len(tokens):
        flag = tokens[i]
        if flag not in OPTION_FLAGS:
            raise InvalidNetworkFormatError(f"Invalid option: {flag}")
        count = OPTION_FLAGS[flag]
        values = tokens[i + 1:i + 1 + count]
        if len(values) != count:
            raise InvalidNetworkFormatError(f"Option {flag} expects {count} values in line: {line}")
        options[flag] = tuple(_parse_int(v, line) for v in values)
        i += 1 + count
    return options


def _require(options: Dict[str, Tuple[int, ...]], flag: str, layer: str, line: str) -> Tuple[int, ...]:
    if flag not in options:
        raise InvalidNetworkFormatError(f"Layer {layer} is missing required option {flag}: {line}")
    return options[flag]


def _read_parameters(reader: _LineReader, layer: TrainableLayer) -> np.ndarray:
    rows, cols = layer.parameter_shape
    params = np.empty((rows, cols))
    for r in range(rows):
        number, line = reader.next(f"parameter row {r + 1} of {rows} for {layer.kind} layer")
        tokens = line.split()
        if len(tokens) != cols:
            raise InvalidNetworkFormatError(
                f"Line {number}: expected {cols} parameter values for {layer.kind} layer, got {len(tokens)}"
            )
        for c, token in enumerate(tokens):
            try:
                params[r, c] = float(token)
            except ValueError:
                raise InvalidNetworkFormatError(f"Line {number}: invalid parameter value '{token}'")
    return params


def _add_layer(network, tokens: List[str], line: str, input_shape):
    """Replays one layer line onto the network; returns the new layer."""
    name = tokens[0]
    if name not in LAYER_TOKENS:
        raise InvalidNetworkFormatError(f"Layer option: {name} is not valid")
    options = _parse_options(tokens[1:], line)
    if name == "dense":
        (num_nodes,) = _require(options, "-n", name, line)
        return network.add_dense(num_nodes, input_shape=input_shape)
    if name == "conv":
        (num_filters,) = _require(options, "-n", name, line)
        window = _require(options, "-d", name, line)
        return network.add_conv(num_filters, window, input_shape=input_shape, stride=options.get("-s", (1, 1)))
    if name == "maxpool":
        window = _require(options, "-d", name, line)
        return network.add_max_pool(window, input_shape=input_shape, stride=options.get("-s"))
    if name in ACTIVATION_TOKENS:
        if options:
            raise InvalidNetworkFormatError(f"Activation layer {name} takes no options: {line}")
        return getattr(network, f"add_{name}")()


def network_from_text(text: str, network_class=None):
    """
    Rebuilds a compiled network from the text model format.

    Args:
        text: Model file contents.
        network_class: Class to instantiate, Sequential or a subclass of it.
            Defaults to Sequential.

    Raises:
        InvalidNetworkFormatError: For any malformed line, with the offending token
            or line in the message. Errors raised while re-assembling the layers
            are chained to it.
    """
    if network_class is None:
        from .network import Sequential
        network_class = Sequential

    reader = _LineReader(text)
    number, line = reader.next("the Inshape line")
    tokens = line.split()
    if tokens[0] != "Inshape:" or len(tokens) != 4:
        raise InvalidNetworkFormatError(f"Line {number}: expected 'Inshape: <d> <h> <w>', got: {line}")
    input_shape = tuple(_parse_int(t, line) for t in tokens[1:])

    network = network_class()
    while True:
        number, line = reader.next("a layer or the loss function line")
        tokens = line.split()
        if tokens[0] in LOSS_FUNCTIONS:
            break
        try:
            layer = _add_layer(network, tokens, line, input_shape if not network.layers else None)
        except (InvalidOperationError, InvalidDimensionError) as err:
            raise InvalidNetworkFormatError(f"Line {number}: cannot build layer from '{line}': {err}") from err
        if isinstance(layer, TrainableLayer):
            layer.set_params(_read_parameters(reader, layer))

    if not network.layers:
        raise InvalidNetworkFormatError(f"Line {number}: network file declares no layers")
    if len(tokens) != 1:
        raise InvalidNetworkFormatError(f"Line {number}: unexpected tokens after loss function: {line}")
    loss = get_loss(tokens[0])

    number, line = reader.next("the optimizer line")
    optimizer = get_optimizer(line.split())

    number, line = reader.next("the metrics line")
    tokens = line.split()
    if tokens[0] != "metrics:":
        raise InvalidNetworkFormatError(f"Line {number}: invalid metrics line: {line}")
    if not reader.at_end():
        number, line = reader.next("end of file")
        raise InvalidNetworkFormatError(f"Line {number}: unexpected content after metrics line: {line}")

    try:
        network.compile(loss=loss, optimizer=optimizer, metrics=tokens[1:])
    except InvalidOperationError as err:
        raise InvalidNetworkFormatError(f"Invalid metrics line: {line}: {err}") from err
    return network


def load_network(path: str, network_class=None):
    with open(path) as f:
        text = f.read()
    network = network_from_text(text, network_class)
    logging.info(f"Loaded network with {len(network.layers)} layers from {path}")
    return network
