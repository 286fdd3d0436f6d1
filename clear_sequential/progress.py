import sys
from typing import Optional, TextIO


class ProgressReporter:
    """
    Console progress bar for training.

    Prints one line per epoch:
        Epoch: (k/N) ****************************** Loss = 0.123456 Accuracy = 0.987654

    Args:
        num_batches: Batches per epoch.
        epochs: Total number of epochs.
        num_stars: Width of the progress bar.
        show_accuracy: Whether the accuracy column is printed.
        stream: Where to write (defaults to stdout).
    """

    def __init__(self, num_batches: int, epochs: int, num_stars: int = 30,
                 show_accuracy: bool = False, stream: Optional[TextIO] = None):
        self.num_batches = max(int(num_batches), 1)
        self.epochs = epochs
        self.num_stars = num_stars
        self.show_accuracy = show_accuracy
        self.stream = stream if stream is not None else sys.stdout
        self._reset()

    def _reset(self):
        self.batches_completed = 0
        self.stars_printed = 0
        self.total_loss = 0.0
        self.total_accuracy = 0.0

    def new_epoch(self, epoch: int):
        """Starts the line for a 0-based epoch index."""
        self._reset()
        self.stream.write(f"Epoch: ({epoch + 1}/{self.epochs}) ")
        self.stream.flush()

    def log_batch(self, loss: float, accuracy: Optional[float] = None):
        self.batches_completed += 1
        self.total_loss += loss
        if accuracy is not None:
            self.total_accuracy += accuracy
        target = self.batches_completed * self.num_stars // self.num_batches
        if target > self.stars_printed:
            self.stream.write("*" * (target - self.stars_printed))
            self.stream.flush()
            self.stars_printed = target

    def finish_epoch(self):
        count = max(self.batches_completed, 1)
        line = f" Loss = {self.total_loss / count:5f}"
        if self.show_accuracy:
            line += f" Accuracy = {self.total_accuracy / count:5f}"
        self.stream.write(line + "\n")
        self.stream.flush()
