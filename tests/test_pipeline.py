import numpy as np
import pytest

from conftest import BlockingReporter, RecordingReporter
from focusstack.stacking import depth, pipeline
from focusstack.stacking import (
    DimensionMismatch,
    EmptyInput,
    FocusStackPipeline,
    LoggingReporter,
    StackingBusy,
    StackingWorker,
    UnsupportedParameterValue,
)


def test_identical_layers_reproduce_the_image(texture, reporter):
    layers = [texture, texture.copy(), texture.copy()]

    result = FocusStackPipeline().run(layers, 3, 17, 100, 5, True, reporter=reporter)

    assert np.array_equal(result.composite, texture)
    assert result.warnings == []
    assert reporter.completed == [result]
    assert reporter.errors == []
    assert reporter.labels() == {"Aligning images.", "Generating depth map.", "Smoothening depth map."}


def test_single_layer_passes_through(texture):
    result = FocusStackPipeline().run([texture], blend_layers=False)

    assert np.array_equal(result.composite, texture)
    assert not result.raw_depth_map.any()
    assert not result.depth_map.any()


def test_zero_iterations_keeps_raw_depth(texture):
    rolled = np.roll(texture, 1, axis=0)

    result = FocusStackPipeline().run([texture, rolled], smooth_iterations=0)

    assert np.array_equal(result.depth_map, result.raw_depth_map.astype(np.float32))


def test_unaligned_layer_is_dropped_and_reported(texture, reporter):
    flat = np.full_like(texture, 40)

    result = FocusStackPipeline().run([texture, flat], reporter=reporter)

    assert [w.layer_index for w in result.warnings] == [1]
    assert result.source_indices == [0]
    assert np.array_equal(result.composite, texture)
    assert reporter.completed == [result]


def test_empty_input_is_fatal(reporter):
    with pytest.raises(EmptyInput):
        FocusStackPipeline().run([], reporter=reporter)

    assert reporter.completed == []
    assert len(reporter.errors) == 1
    assert "Generating depth map." not in reporter.labels()


def test_dimension_mismatch_is_fatal(texture, reporter):
    with pytest.raises(DimensionMismatch):
        FocusStackPipeline().run([texture, texture[:100]], reporter=reporter)

    assert reporter.completed == []
    assert reporter.progress == []


def test_invalid_parameters_are_fatal(texture, reporter):
    with pytest.raises(UnsupportedParameterValue):
        FocusStackPipeline().run([texture], smooth_strength=0, reporter=reporter)

    assert reporter.completed == []


def test_even_kernel_sizes_are_corrected(texture):
    result = FocusStackPipeline().run([texture, texture.copy()], laplace_kernel_size=4, smooth_kernel_size=8)

    assert np.array_equal(result.composite, texture)


def test_logging_reporter(texture, caplog):
    caplog.set_level("INFO")

    FocusStackPipeline().run([texture], reporter=LoggingReporter())

    assert "Stacking complete" in caplog.text


def test_worker_runs_in_background(texture):
    worker = StackingWorker()
    reporter = RecordingReporter()

    worker.submit([texture, texture.copy()], reporter=reporter)

    assert worker.wait(30)
    assert not worker.busy
    assert worker.last_error is None
    assert np.array_equal(worker.last_result.composite, texture)
    assert reporter.completed == [worker.last_result]


def test_worker_rejects_overlapping_runs(texture):
    worker = StackingWorker()
    reporter = BlockingReporter()

    worker.submit([texture], reporter=reporter)
    assert reporter.started.wait(10)
    try:
        assert worker.busy
        assert worker.pipeline.busy
        rejected = RecordingReporter()
        with pytest.raises(StackingBusy):
            worker.submit([texture], reporter=rejected)
        with pytest.raises(StackingBusy):
            worker.pipeline.run([texture], reporter=rejected)
        assert [type(exc) for exc in rejected.errors] == [StackingBusy, StackingBusy]
        assert rejected.completed == []
    finally:
        reporter.release.set()

    assert worker.wait(30)
    assert worker.last_result is not None
    assert len(reporter.completed) == 1


def test_worker_reports_failures():
    worker = StackingWorker()
    reporter = RecordingReporter()

    worker.submit([], reporter=reporter)

    assert worker.wait(30)
    assert isinstance(worker.last_error, EmptyInput)
    assert worker.last_result is None
    assert reporter.completed == []
    assert len(reporter.errors) == 1


def test_depth_stage_uses_build_depth_map(texture, monkeypatch):
    calls = []

    def recording_build(*args, **kwargs):
        result = depth.build_depth_map(*args, **kwargs)
        calls.append(result)
        return result

    monkeypatch.setattr(pipeline, "build_depth_map", recording_build)

    result = FocusStackPipeline().run([texture, texture], smooth_iterations=1)

    assert len(calls) == 1
    raw, smoothed = calls[0]
    assert result.raw_depth_map is raw
    assert result.depth_map is smoothed
