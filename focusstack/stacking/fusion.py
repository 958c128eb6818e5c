"""Composite synthesis for focus stacking.

Every output pixel is taken from the layer the depth map points at, or, when
blending, linearly interpolated between the two layers that bracket a
fractional depth value.
"""

from __future__ import annotations

import logging
from typing import Sequence

import numpy as np

from focusstack.stacking.errors import DimensionMismatch, EmptyInput

logger = logging.getLogger(__name__)


def _check_layers(image_stack: Sequence[np.ndarray], depth_map: np.ndarray) -> None:
    shape = image_stack[0].shape
    for index, image in enumerate(image_stack):
        if image.shape != shape:
            raise DimensionMismatch(f"Layer {index} has shape {image.shape}, expected {shape}")
    if depth_map.shape != shape[:2]:
        raise DimensionMismatch(f"Depth map shape {depth_map.shape} does not match layers {shape[:2]}")


def composite_from_depth_map(
    image_stack: Sequence[np.ndarray],
    depth_map: np.ndarray,
    blend_layers: bool = True,
) -> np.ndarray:
    """Create the all-in-focus composite from aligned layers and a depth map.

    Layers are read in place, one at a time; the stack is never copied into a
    single array, so memory use does not grow with the number of layers.

    Args:
        image_stack: Aligned layers, (H, W, C) or (H, W).
        depth_map: (H, W) map of layer indices, possibly fractional. Values are
            clamped to [0, N-1].
        blend_layers: If False, copy the pixel of the nearest layer (depth
            rounded half up). If True, blend the floor and ceil layers with
            weight `depth - floor(depth)`.

    Returns:
        Composite with the size, channel layout and dtype of the layers.
    """
    num_images = len(image_stack)
    if num_images == 0:
        raise EmptyInput("No images to composite")
    _check_layers(image_stack, depth_map)

    depth = np.clip(depth_map.astype(np.float64), 0, num_images - 1)
    logger.debug("Depth map range: %.3f - %.3f", float(depth.min()), float(depth.max()))

    composite = np.empty_like(image_stack[0])

    if not blend_layers:
        # Set layer index to the nearest integer value
        layer_index = np.floor(depth + 0.5).astype(np.intp)
        for layer, image in enumerate(image_stack):
            selected = layer_index == layer
            composite[selected] = image[selected]
        return composite

    lower_index = np.floor(depth).astype(np.intp)
    weight = depth - lower_index
    dtype = composite.dtype
    for layer, image in enumerate(image_stack):
        selected = lower_index == layer
        if not selected.any():
            continue
        lower_pixel = image[selected].astype(np.float64)
        # At N-1 the depth is clamped, so the weight of the upper layer is 0.
        upper_image = image_stack[min(layer + 1, num_images - 1)]
        upper_pixel = upper_image[selected].astype(np.float64)
        w = weight[selected]
        if lower_pixel.ndim == 2:
            w = w[:, np.newaxis]
        # (1 - w) * lower + w * upper, in place
        lower_pixel *= 1.0 - w
        upper_pixel *= w
        lower_pixel += upper_pixel

        if np.issubdtype(dtype, np.integer):
            info = np.iinfo(dtype)
            np.rint(lower_pixel, out=lower_pixel)
            np.clip(lower_pixel, info.min, info.max, out=lower_pixel)
        composite[selected] = lower_pixel.astype(dtype)
    return composite
