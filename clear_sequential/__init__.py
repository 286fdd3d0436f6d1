"""
NumPy-based Sequential Network Engine

Dense, convolutional and max-pooling layers with hand-derived forward and
backward passes, mini-batch and Adam optimizers, and a plain-text model format.
"""

from .activations import ReLU, Sigmoid, Softmax, get_activation
from .exceptions import InvalidDimensionError, InvalidNetworkFormatError, InvalidOperationError, SequentialError
from .layers import Conv2D, Dense, IndexMap, Layer, MaxPool2D, TrainableLayer, TransformationLayer
from .losses import CrossEntropy, LossFunction, MeanSquaredError, get_loss
from .network import Sequential
from .optimizers import Adam, MiniBatch, Optimizer, get_optimizer
from .progress import ProgressReporter
from .serialization import load_network, network_from_text, network_to_text, write_network

__version__ = "1.0.0"
