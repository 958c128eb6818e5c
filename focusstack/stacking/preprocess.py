"""Focus stacking preprocessing utilities.

This module loads an image stack from disk, verifies that all layers share
the same spatial size, and aligns every layer onto the first one using SIFT
features and a robust partial affine (rotation + uniform scale + translation)
estimate.
"""

from __future__ import annotations

import glob
import logging
import os
from dataclasses import dataclass, field
from typing import Optional, Sequence

import cv2
import numpy as np

from focusstack.stacking.errors import AlignmentWarning, DimensionMismatch, EmptyInput
from focusstack.stacking.reporting import Reporter, ensure_reporter

logger = logging.getLogger(__name__)

RATIO_THRESHOLD = 0.75
MIN_MATCHES = 4


@dataclass
class AlignmentResult:
    """Output of `align_images`.

    Attributes:
        layers: Aligned layers, reference first. Dropped layers are absent.
        transforms: One 2x3 matrix per entry of `layers` (identity for the
            reference) mapping the input layer onto the reference frame.
        source_indices: Input index of every entry in `layers`.
        warnings: One record per layer that could not be aligned.
    """

    layers: list[np.ndarray] = field(default_factory=list)
    transforms: list[np.ndarray] = field(default_factory=list)
    source_indices: list[int] = field(default_factory=list)
    warnings: list[AlignmentWarning] = field(default_factory=list)


def load_image_stack(image_paths: Sequence[str]) -> list[np.ndarray]:
    """Load layers from a list of files, keeping the given order.

    Args:
        image_paths: Paths of the layers, ordered by focus distance.

    Returns:
        A list of uint8 BGR images.

    Raises:
        FileNotFoundError: If a file is missing or cannot be decoded.
    """
    image_stack: list[np.ndarray] = []
    for image_path in image_paths:
        image = cv2.imread(str(image_path), cv2.IMREAD_COLOR)
        if image is None:
            raise FileNotFoundError(f"Could not read image: {image_path}")
        image_stack.append(image)
    logger.info("Loaded %d layers", len(image_stack))
    return image_stack


def find_image_files(folder_path: str, file_extension: str = "png") -> list[str]:
    """Return the sorted image files with the given extension in a folder."""
    return sorted(glob.glob(os.path.join(folder_path, f"*.{file_extension}")))


def check_same_size(image_stack: Sequence[np.ndarray]) -> tuple[int, int]:
    """Verify that every layer has the size of the first one.

    Returns:
        The common (height, width).

    Raises:
        EmptyInput: If the stack is empty.
        DimensionMismatch: If any layer differs in width or height.
    """
    if len(image_stack) == 0:
        raise EmptyInput("No images to stack")

    target_shape = image_stack[0].shape[:2]
    for i, image in enumerate(image_stack):
        if image.shape[:2] != target_shape:
            raise DimensionMismatch(
                f"Images must have the same size: layer {i} is {image.shape[1]}x{image.shape[0]}, "
                f"expected {target_shape[1]}x{target_shape[0]}"
            )
    return target_shape


def to_gray(image: np.ndarray) -> np.ndarray:
    if image.ndim == 3 and image.shape[2] > 1:
        return cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)
    if image.ndim == 3:
        return image[:, :, 0]
    return image


def detect_features(
    image: np.ndarray, detector: Optional[cv2.Feature2D] = None
) -> tuple[Sequence[cv2.KeyPoint], Optional[np.ndarray]]:
    """Detect SIFT keypoints/descriptors on the equalized grayscale image."""
    if detector is None:
        detector = cv2.SIFT_create()
    gray = to_gray(image)
    if gray.dtype != np.uint8:
        gray = np.clip(gray, 0, 255).astype(np.uint8)
    gray = cv2.equalizeHist(gray)
    return detector.detectAndCompute(gray, None)


def match_features(
    ref_descriptors: Optional[np.ndarray],
    descriptors: Optional[np.ndarray],
    ratio: float = RATIO_THRESHOLD,
) -> list[cv2.DMatch]:
    """Match reference descriptors against a layer's descriptors.

    Uses FLANN 2-nearest-neighbour search and keeps a match only if the best
    distance is below `ratio` times the second best (Lowe's ratio test).
    `queryIdx` indexes the reference, `trainIdx` the layer.
    """
    if ref_descriptors is None or descriptors is None or len(ref_descriptors) == 0 or len(descriptors) < 2:
        return []

    matcher = cv2.FlannBasedMatcher()
    knn_matches = matcher.knnMatch(ref_descriptors, descriptors, k=2)

    good_matches = []
    for knn_match in knn_matches:
        if len(knn_match) >= 2 and knn_match[0].distance < ratio * knn_match[1].distance:
            good_matches.append(knn_match[0])
    return good_matches


def align_images(image_stack: Sequence[np.ndarray], reporter: Optional[Reporter] = None) -> AlignmentResult:
    """Align images in the stack onto the first image using SIFT + RANSAC.

    Layers with fewer than `MIN_MATCHES` good correspondences (or for which no
    transform could be estimated) are dropped and reported as warnings; the
    rest of the stack is still aligned.

    Args:
        image_stack: Layers to align. Not modified.
        reporter: Receives progress and one preview per aligned layer.

    Returns:
        The aligned stack and its transforms.
    """
    reporter = ensure_reporter(reporter)
    result = AlignmentResult()
    if len(image_stack) == 0:
        return result

    # Use the first image as the reference
    reference_image = image_stack[0]
    H, W = reference_image.shape[:2]
    result.layers.append(reference_image)
    result.transforms.append(np.eye(2, 3, dtype=np.float64))
    result.source_indices.append(0)

    total = len(image_stack) - 1
    reporter.on_progress("Aligning images.", 0, total)
    if total == 0:
        return result

    detector = cv2.SIFT_create()
    ref_keypoints, ref_descriptors = detect_features(reference_image, detector)
    logger.debug("Reference layer: %d keypoints", len(ref_keypoints))

    for i in range(1, len(image_stack)):
        logger.debug("Aligning image %d", i)
        image = image_stack[i]
        keypoints, descriptors = detect_features(image, detector)
        good_matches = match_features(ref_descriptors, descriptors)

        transform = None
        if len(good_matches) >= MIN_MATCHES:
            points_ref = np.float32([ref_keypoints[m.queryIdx].pt for m in good_matches]).reshape(-1, 1, 2)
            points_cur = np.float32([keypoints[m.trainIdx].pt for m in good_matches]).reshape(-1, 1, 2)
            transform, _inliers = cv2.estimateAffinePartial2D(points_cur, points_ref, method=cv2.RANSAC)
            if transform is None:
                warning = AlignmentWarning(i, len(good_matches), "no transform could be estimated")
            else:
                warning = None
        else:
            warning = AlignmentWarning(i, len(good_matches), "not enough matches to estimate a transform")

        if warning is not None:
            logger.warning("%s", warning)
            result.warnings.append(warning)
        else:
            aligned_image = cv2.warpAffine(
                image,
                transform,
                (W, H),
                flags=cv2.INTER_CUBIC,
                borderMode=cv2.BORDER_REPLICATE,
            )
            result.layers.append(aligned_image)
            result.transforms.append(transform)
            result.source_indices.append(i)
            reporter.on_preview(aligned_image.copy(), False)

        reporter.on_progress("Aligning images.", i, total)

    logger.info("Aligned %d of %d layers", len(result.layers), len(image_stack))
    return result
