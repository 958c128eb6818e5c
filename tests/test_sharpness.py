import cv2
import numpy as np
import pytest

from focusstack.stacking.errors import UnsupportedParameterValue
from focusstack.stacking.sharpness import compute_local_variance, compute_sharpness_map, ensure_odd_kernel


def test_sharpness_map_shape_and_non_negative(texture):
    sharpness = compute_sharpness_map(texture, 3)

    assert sharpness.shape == texture.shape[:2]
    assert sharpness.dtype == np.float64
    assert (sharpness >= 0).all()


def test_sharp_texture_scores_higher_than_blurred(texture):
    blurred = cv2.GaussianBlur(texture, (0, 0), 6)

    sharp = compute_sharpness_map(texture, 5)
    soft = compute_sharpness_map(blurred, 5)

    assert (sharp > soft).all()


def test_flat_image_has_zero_sharpness():
    flat = np.full((40, 50, 3), 128, dtype=np.uint8)

    assert not compute_sharpness_map(flat, 3).any()


def test_local_variance_of_constant_is_zero():
    constant = np.full((20, 20), 7.0)

    assert np.allclose(compute_local_variance(constant, 5), 0.0)


def test_local_variance_matches_window_variance():
    values = np.arange(25, dtype=np.float64).reshape(5, 5)

    variance = compute_local_variance(values, 3)

    assert variance[2, 2] == pytest.approx(values[1:4, 1:4].var())


def test_even_window_is_bumped_to_odd(texture):
    assert ensure_odd_kernel(4) == 5
    assert np.array_equal(compute_sharpness_map(texture, 4), compute_sharpness_map(texture, 5))


@pytest.mark.parametrize("size", [0, -3, 2.5])
def test_invalid_window_rejected(size):
    with pytest.raises(UnsupportedParameterValue):
        ensure_odd_kernel(size)
