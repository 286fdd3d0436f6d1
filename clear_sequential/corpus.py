"""
Reader and writer for whitespace-separated integer corpus files.

Image files:  <numDim> <numImages> <height> <width> followed by the pixels,
              image after image, row-major.
Label files:  <numDim> <numLabels> followed by one integer class per image.
"""

import logging
from typing import List, Tuple

import numpy as np

from .exceptions import InvalidDimensionError


def _read_ints(path: str) -> List[int]:
    with open(path) as f:
        tokens = f.read().split()
    values = []
    for token in tokens:
        try:
            values.append(int(token))
        except ValueError:
            raise ValueError(f"{path}: expected an integer, got '{token}'")
    return values


def _split_header(values: List[int], size: int, path: str) -> Tuple[List[int], List[int]]:
    if len(values) < size:
        raise InvalidDimensionError(f"{path}: header needs {size} integers, file has {len(values)}")
    return values[:size], values[size:]


def read_images_file(path: str) -> np.ndarray:
    """
    Reads an image corpus file.

    Returns:
        Float array of shape (num_images, 1, height, width).

    Raises:
        InvalidDimensionError: If the pixel count doesn't match the header.
        ValueError: If the file contains a non-integer token.
    """
    (_, num_images, height, width), pixels = _split_header(_read_ints(path), 4, path)
    expected = num_images * height * width
    if len(pixels) != expected:
        raise InvalidDimensionError(
            f"{path}: header declares {num_images} images of {height}x{width} ({expected} values), "
            f"found {len(pixels)}"
        )
    images = np.array(pixels, dtype=float).reshape(num_images, 1, height, width)
    logging.info(f"Read {num_images} images of {height}x{width} from {path}")
    return images


def read_labels_file(path: str, num_classes: int = 10) -> np.ndarray:
    """
    Reads a label corpus file and one-hot encodes it.

    Returns:
        Float array of shape (num_labels, num_classes).
    """
    (_, num_labels), labels = _split_header(_read_ints(path), 2, path)
    if len(labels) != num_labels:
        raise InvalidDimensionError(f"{path}: header declares {num_labels} labels, found {len(labels)}")
    labels = np.array(labels, dtype=int)
    if labels.size and (labels.min() < 0 or labels.max() >= num_classes):
        raise InvalidDimensionError(f"{path}: labels must lie in [0, {num_classes}), got {labels.min()}..{labels.max()}")
    one_hot = np.zeros((num_labels, num_classes))
    one_hot[np.arange(num_labels), labels] = 1.0
    logging.info(f"Read {num_labels} labels from {path}")
    return one_hot


def write_images_file(path: str, images: np.ndarray):
    """Writes (N, H, W) or (N, 1, H, W) integer-valued images in the corpus format."""
    images = np.asarray(images)
    if images.ndim == 4 and images.shape[1] == 1:
        images = images[:, 0]
    if images.ndim != 3:
        raise InvalidDimensionError(f"Expected images of shape (N, H, W) or (N, 1, H, W), got {images.shape}")
    num_images, height, width = images.shape
    with open(path, "w") as f:
        f.write(f"3 {num_images} {height} {width}\n")
        for image in images.astype(int):
            f.write("\n".join(" ".join(str(v) for v in row) for row in image) + "\n")


def write_labels_file(path: str, labels: np.ndarray):
    """Writes integer class labels (N,) in the corpus format."""
    labels = np.asarray(labels, dtype=int).reshape(-1)
    with open(path, "w") as f:
        f.write(f"1 {labels.size}\n")
        f.write("\n".join(str(v) for v in labels) + "\n")
