"""Depth map construction for focus stacking.

The raw depth map stores, for every pixel, the index of the layer with the
highest sharpness at that position. Picking the argmax pixel by pixel is noisy
along texture boundaries, so the map is then smoothed with repeated bilateral
filtering, which removes isolated wrong picks while keeping sharp depth
discontinuities.
"""

from __future__ import annotations

import logging
from typing import Optional, Sequence

import cv2
import numpy as np

from focusstack.stacking.errors import EmptyInput, UnsupportedParameterValue
from focusstack.stacking.reporting import Reporter, ensure_reporter, normalize_for_display
from focusstack.stacking.sharpness import compute_sharpness_map, ensure_odd_kernel

logger = logging.getLogger(__name__)


def check_smoothing_params(smooth_strength: float, smooth_iterations: int) -> int:
    """Reject non-positive strengths and negative or fractional iteration counts."""
    if not smooth_strength > 0:
        raise UnsupportedParameterValue(f"Smooth strength must be positive, got {smooth_strength!r}")
    if int(smooth_iterations) != smooth_iterations or smooth_iterations < 0:
        raise UnsupportedParameterValue(
            f"Smooth iterations must be a non-negative integer, got {smooth_iterations!r}"
        )
    return int(smooth_iterations)


def build_raw_depth_map(
    image_stack: Sequence[np.ndarray],
    laplace_kernel_size: int = 3,
    reporter: Optional[Reporter] = None,
) -> np.ndarray:
    """Build the per-pixel "sharpest layer" index map.

    A layer replaces the current winner when its sharpness is greater than
    *or equal to* the best seen so far, so later layers win ties.

    Args:
        image_stack: Aligned layers.
        laplace_kernel_size: Variance window of the sharpness measure.
        reporter: Receives progress and a preview after every layer.

    Returns:
        Integer (H, W) map with values in [0, N-1]; uint8 when N <= 256.
    """
    reporter = ensure_reporter(reporter)
    num_images = len(image_stack)
    if num_images == 0:
        raise EmptyInput("No images to build a depth map from")

    rows, cols = image_stack[0].shape[:2]
    dtype = np.uint8 if num_images <= 256 else np.int32
    depth_map = np.zeros((rows, cols), dtype=dtype)
    sharpness_max = np.zeros((rows, cols), dtype=np.float64)

    reporter.on_progress("Generating depth map.", 0, num_images)
    for layer, image in enumerate(image_stack):
        logger.debug("Processing layer %d", layer)
        sharpness = compute_sharpness_map(image, laplace_kernel_size)

        selected = sharpness >= sharpness_max
        sharpness_max[selected] = sharpness[selected]
        depth_map[selected] = layer

        reporter.on_preview(normalize_for_display(depth_map), True)
        reporter.on_progress("Generating depth map.", layer + 1, num_images)

    return depth_map


def smooth_depth_map(
    depth_map: np.ndarray,
    smooth_kernel_size: int = 17,
    smooth_strength: float = 100.0,
    smooth_iterations: int = 5,
    reporter: Optional[Reporter] = None,
) -> np.ndarray:
    """Smooth a depth map with `smooth_iterations` bilateral filter passes.

    `smooth_strength` is used as both the range and the spatial sigma. With
    zero iterations the raw map is returned as float32.

    Returns:
        A float32 (H, W) map of (possibly fractional) layer indices.
    """
    reporter = ensure_reporter(reporter)
    smooth_kernel_size = ensure_odd_kernel(smooth_kernel_size, "Smooth kernel size")
    smooth_iterations = check_smoothing_params(smooth_strength, smooth_iterations)

    smoothed = depth_map.astype(np.float32)
    reporter.on_progress("Smoothening depth map.", 0, smooth_iterations)
    for i in range(smooth_iterations):
        smoothed = cv2.bilateralFilter(smoothed, smooth_kernel_size, float(smooth_strength), float(smooth_strength))
        reporter.on_progress("Smoothening depth map.", i + 1, smooth_iterations)
        reporter.on_preview(normalize_for_display(smoothed), True)

    return smoothed


def build_depth_map(
    image_stack: Sequence[np.ndarray],
    laplace_kernel_size: int = 3,
    smooth_kernel_size: int = 17,
    smooth_strength: float = 100.0,
    smooth_iterations: int = 5,
    reporter: Optional[Reporter] = None,
) -> tuple[np.ndarray, np.ndarray]:
    """Convenience wrapper: layers -> (raw depth map, smoothed depth map)."""
    raw = build_raw_depth_map(image_stack, laplace_kernel_size, reporter=reporter)
    smoothed = smooth_depth_map(raw, smooth_kernel_size, smooth_strength, smooth_iterations, reporter=reporter)
    return raw, smoothed
