"""Focus stacking pipeline: align -> depth map -> composite.

`FocusStackPipeline.run` executes one complete stacking pass synchronously.
`StackingWorker` runs it on a dedicated background thread so that a UI can
stay responsive, and refuses to start a second run while one is in flight.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Optional, Sequence

import numpy as np

from focusstack.stacking.depth import build_depth_map, check_smoothing_params
from focusstack.stacking.errors import AlignmentWarning, StackingBusy
from focusstack.stacking.fusion import composite_from_depth_map
from focusstack.stacking.preprocess import align_images, check_same_size
from focusstack.stacking.reporting import LoggingReporter, NullReporter, Reporter, ensure_reporter
from focusstack.stacking.sharpness import ensure_odd_kernel

logger = logging.getLogger(__name__)

__all__ = [
    "FocusStackPipeline",
    "LoggingReporter",
    "NullReporter",
    "Reporter",
    "StackResult",
    "StackingWorker",
]


@dataclass
class StackResult:
    """Everything a stacking run produces."""

    composite: np.ndarray
    raw_depth_map: np.ndarray
    depth_map: np.ndarray
    transforms: list[np.ndarray] = field(default_factory=list)
    source_indices: list[int] = field(default_factory=list)
    warnings: list[AlignmentWarning] = field(default_factory=list)


class FocusStackPipeline:
    """Runs the stacking stages strictly in sequence.

    A pipeline instance only runs one stack at a time; calling `run` while
    another thread is inside `run` raises `StackingBusy`.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    def run(
        self,
        layers: Sequence[np.ndarray],
        laplace_kernel_size: int = 3,
        smooth_kernel_size: int = 17,
        smooth_strength: float = 100.0,
        smooth_iterations: int = 5,
        blend_layers: bool = True,
        reporter: Optional[Reporter] = None,
    ) -> StackResult:
        """Focus stack a set of layers.

        Args:
            layers: Layers ordered by focus distance, same size, uint8 BGR.
            laplace_kernel_size: Variance window of the sharpness measure (odd).
            smooth_kernel_size: Bilateral filter diameter (odd).
            smooth_strength: Bilateral filter sigma (range and space).
            smooth_iterations: Number of smoothing passes (>= 0).
            blend_layers: Blend neighbouring layers for fractional depths.
            reporter: Receives progress, previews and the terminal event.

        Returns:
            The composite and intermediate maps.

        Raises:
            EmptyInput, DimensionMismatch, UnsupportedParameterValue: Fatal
                errors; `reporter.on_error` is called and no result is produced.
            StackingBusy: Another run is in progress on this pipeline; it is
                also passed to `reporter.on_error`.
        """
        reporter = ensure_reporter(reporter)
        if not self._lock.acquire(blocking=False):
            exc = StackingBusy("A stacking run is already in progress")
            reporter.on_error(exc)
            raise exc
        try:
            result = self._run(
                list(layers),
                laplace_kernel_size,
                smooth_kernel_size,
                smooth_strength,
                smooth_iterations,
                bool(blend_layers),
                reporter,
            )
        except Exception as exc:
            reporter.on_error(exc)
            raise
        finally:
            self._lock.release()

        reporter.on_complete(result)
        return result

    def _run(
        self,
        layers: list[np.ndarray],
        laplace_kernel_size: int,
        smooth_kernel_size: int,
        smooth_strength: float,
        smooth_iterations: int,
        blend_layers: bool,
        reporter: Reporter,
    ) -> StackResult:
        check_same_size(layers)
        laplace_kernel_size = ensure_odd_kernel(laplace_kernel_size, "Laplacian kernel size")
        smooth_kernel_size = ensure_odd_kernel(smooth_kernel_size, "Smooth kernel size")
        smooth_iterations = check_smoothing_params(smooth_strength, smooth_iterations)

        logger.info("Stacking %d layers", len(layers))
        alignment = align_images(layers, reporter=reporter)
        images = alignment.layers

        logger.info("Computing depth map")
        raw_depth_map, depth_map = build_depth_map(
            images, laplace_kernel_size, smooth_kernel_size, smooth_strength, smooth_iterations, reporter=reporter
        )

        logger.info("Creating composite (blend=%s)", blend_layers)
        composite = composite_from_depth_map(images, depth_map, blend_layers)

        return StackResult(
            composite=composite,
            raw_depth_map=raw_depth_map,
            depth_map=depth_map,
            transforms=alignment.transforms,
            source_indices=alignment.source_indices,
            warnings=alignment.warnings,
        )


class StackingWorker:
    """Runs stacking requests on a single background thread, one at a time."""

    def __init__(self, pipeline: Optional[FocusStackPipeline] = None) -> None:
        self.pipeline = pipeline or FocusStackPipeline()
        self._state_lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None
        self.last_result: Optional[StackResult] = None
        self.last_error: Optional[BaseException] = None

    @property
    def busy(self) -> bool:
        with self._state_lock:
            return self._thread is not None and self._thread.is_alive()

    def submit(
        self,
        layers: Sequence[np.ndarray],
        laplace_kernel_size: int = 3,
        smooth_kernel_size: int = 17,
        smooth_strength: float = 100.0,
        smooth_iterations: int = 5,
        blend_layers: bool = True,
        reporter: Optional[Reporter] = None,
    ) -> threading.Thread:
        """Start a run in the background and return its thread.

        Raises:
            StackingBusy: A previous run has not finished yet; it is also
                passed to `reporter.on_error`.
        """
        with self._state_lock:
            if self._thread is not None and self._thread.is_alive():
                exc = StackingBusy("A stacking run is already in progress")
                ensure_reporter(reporter).on_error(exc)
                raise exc
            self.last_result = None
            self.last_error = None
            thread = threading.Thread(
                target=self._run,
                args=(
                    list(layers),
                    laplace_kernel_size,
                    smooth_kernel_size,
                    smooth_strength,
                    smooth_iterations,
                    blend_layers,
                    reporter,
                ),
                name="focus-stack-worker",
                daemon=True,
            )
            self._thread = thread
            thread.start()
        return thread

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Wait for the current run; returns True if no run is left active."""
        with self._state_lock:
            thread = self._thread
        if thread is None:
            return True
        thread.join(timeout)
        return not thread.is_alive()

    def _run(self, layers, laplace_kernel_size, smooth_kernel_size, smooth_strength,
             smooth_iterations, blend_layers, reporter) -> None:
        try:
            self.last_result = self.pipeline.run(
                layers,
                laplace_kernel_size,
                smooth_kernel_size,
                smooth_strength,
                smooth_iterations,
                blend_layers,
                reporter=reporter,
            )
        except Exception as exc:
            self.last_error = exc
            logger.exception("Stacking run failed")
