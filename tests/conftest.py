import threading

import cv2
import numpy as np
import pytest

from focusstack.stacking.reporting import Reporter


class RecordingReporter(Reporter):
    def __init__(self):
        self.progress = []
        self.previews = []
        self.completed = []
        self.errors = []

    def on_progress(self, label, value, maximum):
        self.progress.append((label, value, maximum))

    def on_preview(self, image, is_float_grayscale=False):
        self.previews.append((image, is_float_grayscale))

    def on_complete(self, result):
        self.completed.append(result)

    def on_error(self, exc):
        self.errors.append(exc)

    def labels(self):
        return {label for label, _, _ in self.progress}


class BlockingReporter(RecordingReporter):
    """Holds the worker inside the first progress callback until released."""

    def __init__(self):
        super().__init__()
        self.started = threading.Event()
        self.release = threading.Event()

    def on_progress(self, label, value, maximum):
        super().on_progress(label, value, maximum)
        self.started.set()
        self.release.wait(10)


def make_texture(height=160, width=160, seed=0):
    """Smoothed random noise: plenty of SIFT features and high frequencies."""
    rng = np.random.default_rng(seed)
    noise = rng.integers(0, 256, size=(height, width, 3), dtype=np.uint8)
    return cv2.GaussianBlur(noise, (0, 0), 1.0)


@pytest.fixture
def texture():
    return make_texture()


@pytest.fixture
def reporter():
    return RecordingReporter()
