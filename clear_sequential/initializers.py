import logging
from typing import Optional, Tuple

import numpy as np

from .exceptions import InvalidOperationError


class HeNormal:
    """He-normal weight sampler: N(0, 2 / fan_in)."""

    def __init__(self, fan_in: Optional[int] = None):
        self.fan_in = fan_in

    def set_fan_in(self, fan_in: int):
        self.fan_in = fan_in

    def sample(self, shape: Tuple[int, ...]) -> np.ndarray:
        """
        Draws a weight array of the given shape.

        Raises:
            InvalidOperationError: If fan-in has not been set (or is zero).
        """
        if not self.fan_in:
            raise InvalidOperationError("Tried to initialize weights before setting the number of input nodes")
        scale = np.sqrt(2.0 / self.fan_in)
        logging.debug(f"HeNormal: sampling {shape} with scale {scale:.4f} (fan_in={self.fan_in})")
        return np.random.randn(*shape) * scale
