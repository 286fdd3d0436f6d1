"""Exception types raised by the network engine.

All three are fatal to the call that raised them; nothing inside the library
retries or recovers from them.
"""


class SequentialError(Exception):
    """Base class for every error raised by clear_sequential."""


class InvalidDimensionError(SequentialError, ValueError):
    """Raised whenever operand shapes disagree (matrix products, gradients vs.
    cached inputs, losses vs. expected vectors, reshapes)."""


class InvalidOperationError(SequentialError, RuntimeError):
    """Raised when the API is used out of order, e.g. training before
    compiling or starting a network with an activation layer."""


class InvalidNetworkFormatError(SequentialError, ValueError):
    """Raised when a serialized network cannot be parsed."""
