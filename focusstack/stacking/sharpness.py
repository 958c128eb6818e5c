"""Sharpness map computation for focus stacking.

Focus quality is measured as the local variance of the Laplacian: in-focus
regions carry strong high-frequency edge responses whose magnitude varies a
lot within a small window, while defocused regions give a flat response.
"""

from __future__ import annotations

import logging

import cv2
import numpy as np

from focusstack.stacking.errors import UnsupportedParameterValue
from focusstack.stacking.preprocess import to_gray

logger = logging.getLogger(__name__)

# Aperture of the Laplacian operator. The configurable kernel size is the
# variance window, not this aperture.
LAPLACIAN_KSIZE = 5


def ensure_odd_kernel(value: int, name: str = "kernel size") -> int:
    """Validate a kernel size, bumping even sizes to the next odd size.

    Raises:
        UnsupportedParameterValue: If `value` is not a positive integer.
    """
    size = int(value)
    if size != value or size <= 0:
        raise UnsupportedParameterValue(f"{name} must be a positive odd integer, got {value!r}")
    if size % 2 == 0:
        logger.warning("%s %d is even, using %d", name, size, size + 1)
        size += 1
    return size


def compute_local_variance(laplacian: np.ndarray, window_size: int) -> np.ndarray:
    """Local variance over a `window_size` box: mean(L^2) - mean(L)^2."""
    ksize = (window_size, window_size)
    mean = cv2.boxFilter(laplacian, cv2.CV_64F, ksize)
    mean_square = cv2.boxFilter(laplacian * laplacian, cv2.CV_64F, ksize)
    variance = mean_square - mean * mean
    # Cancellation can leave tiny negative values.
    return np.maximum(variance, 0.0)


def compute_sharpness_map(image: np.ndarray, window_size: int = 3) -> np.ndarray:
    """Compute the per-pixel sharpness of one layer.

    Args:
        image: BGR or grayscale layer.
        window_size: Side of the square window the variance is taken over
            (odd; even values are bumped to the next odd value).

    Returns:
        A float64 (H, W) map, higher values meaning sharper, never negative.
    """
    window_size = ensure_odd_kernel(window_size, "Laplacian kernel size")
    gray = to_gray(image)
    laplacian = cv2.Laplacian(gray, cv2.CV_64F, ksize=LAPLACIAN_KSIZE)
    return compute_local_variance(laplacian, window_size)
