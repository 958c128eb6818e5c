"""Progress / preview reporting for stacking runs.

A `Reporter` receives one-way notifications from the worker running a stack.
Callbacks must not block: the pipeline never waits for them and they are
called on the worker thread.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import cv2
import numpy as np

if TYPE_CHECKING:
    from focusstack.stacking.pipeline import StackResult

logger = logging.getLogger(__name__)


class Reporter:
    """Receives progress and intermediate results of a stacking run.

    The default implementation ignores everything; subclasses override the
    notifications they care about.
    """

    def on_progress(self, label: str, value: int, maximum: int) -> None:
        """Progress within a phase; `maximum` is fixed for a given `label`."""

    def on_preview(self, image: np.ndarray, is_float_grayscale: bool = False) -> None:
        """An intermediate image (aligned layer, depth map snapshot)."""

    def on_complete(self, result: "StackResult") -> None:
        """Terminal notification of a successful run."""

    def on_error(self, exc: BaseException) -> None:
        """Terminal notification of a failed run."""


NullReporter = Reporter


class LoggingReporter(Reporter):
    """Reporter that writes every notification to the log."""

    def __init__(self, log: logging.Logger | None = None) -> None:
        self.log = log or logger

    def on_progress(self, label: str, value: int, maximum: int) -> None:
        self.log.info("%s %d/%d", label, value, maximum)

    def on_preview(self, image: np.ndarray, is_float_grayscale: bool = False) -> None:
        self.log.debug("Preview %s (grayscale=%s)", image.shape, is_float_grayscale)

    def on_complete(self, result: "StackResult") -> None:
        self.log.info("Stacking complete, composite %s", result.composite.shape)
        for warning in result.warnings:
            self.log.warning("%s", warning)

    def on_error(self, exc: BaseException) -> None:
        self.log.error("Stacking failed: %s", exc)


def ensure_reporter(reporter: Any) -> Reporter:
    return reporter if reporter is not None else NullReporter()


def normalize_for_display(image: np.ndarray) -> np.ndarray:
    """Min-max normalize a single channel raster to a uint8 0-255 preview."""
    preview = cv2.normalize(np.asarray(image, dtype=np.float32), None, 0, 255, cv2.NORM_MINMAX)
    return preview.astype(np.uint8)
