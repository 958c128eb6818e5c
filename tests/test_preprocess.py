import cv2
import numpy as np
import pytest

from conftest import make_texture
from focusstack.stacking.errors import DimensionMismatch, EmptyInput
from focusstack.stacking.preprocess import (
    align_images,
    check_same_size,
    find_image_files,
    load_image_stack,
    match_features,
)


def test_identical_layers_align_to_identity(texture):
    result = align_images([texture, texture.copy(), texture.copy()])

    assert result.warnings == []
    assert result.source_indices == [0, 1, 2]
    for transform in result.transforms:
        assert np.allclose(transform, np.eye(2, 3), atol=1e-6)
    for layer in result.layers:
        assert np.array_equal(layer, texture)


def test_reference_passes_through_unchanged(texture):
    result = align_images([texture])

    assert len(result.layers) == 1
    assert result.layers[0] is texture
    assert np.array_equal(result.transforms[0], np.eye(2, 3))


def test_shifted_layer_is_registered():
    big = make_texture(220, 220, seed=5)
    reference = big[30:190, 30:190]
    shifted = big[28:188, 27:187]  # content moved by (+3, +2) px

    result = align_images([reference, shifted])

    assert result.warnings == []
    transform = result.transforms[1]
    assert np.allclose(transform[:, :2], np.eye(2), atol=0.01)
    assert transform[0, 2] == pytest.approx(-3.0, abs=0.1)
    assert transform[1, 2] == pytest.approx(-2.0, abs=0.1)

    aligned = result.layers[1].astype(int)
    diff = np.abs(aligned[10:-10, 10:-10] - reference[10:-10, 10:-10].astype(int))
    assert diff.mean() < 2.0


def test_featureless_layer_is_dropped_with_warning(texture, reporter):
    flat = np.full_like(texture, 90)

    result = align_images([texture, flat, texture.copy()], reporter=reporter)

    assert result.source_indices == [0, 2]
    assert len(result.layers) == 2
    assert len(result.warnings) == 1
    assert result.warnings[0].layer_index == 1
    assert "Layer 1" in str(result.warnings[0])
    assert reporter.progress == [
        ("Aligning images.", 0, 2),
        ("Aligning images.", 1, 2),
        ("Aligning images.", 2, 2),
    ]
    # One preview per aligned layer only.
    assert len(reporter.previews) == 1
    assert reporter.previews[0][1] is False


def test_align_does_not_modify_input(texture):
    original = texture.copy()
    shifted = np.roll(texture, 2, axis=1)

    align_images([texture, shifted])

    assert np.array_equal(texture, original)


def test_match_features_handles_missing_descriptors():
    assert match_features(None, None) == []
    assert match_features(np.zeros((3, 128), np.float32), None) == []


def test_check_same_size():
    a = np.zeros((10, 12, 3), np.uint8)
    assert check_same_size([a, a.copy()]) == (10, 12)

    with pytest.raises(DimensionMismatch):
        check_same_size([a, np.zeros((10, 13, 3), np.uint8)])
    with pytest.raises(EmptyInput):
        check_same_size([])


def test_load_image_stack(tmp_path, texture):
    paths = []
    for i in range(2):
        path = tmp_path / f"layer_{i}.png"
        cv2.imwrite(str(path), texture)
        paths.append(str(path))

    images = load_image_stack(paths)

    assert len(images) == 2
    assert np.array_equal(images[0], texture)
    assert find_image_files(str(tmp_path), "png") == paths


def test_load_image_stack_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_image_stack([str(tmp_path / "missing.png")])
