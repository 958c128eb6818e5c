"""Focus stacking core.

Layers are aligned onto the first layer, a per-pixel "sharpest layer" depth
map is built from the local variance of the Laplacian, smoothed with an
edge-preserving bilateral filter, and finally used to pick (or blend) pixels
from the aligned layers.
"""

from focusstack.stacking.errors import (
    AlignmentWarning,
    DimensionMismatch,
    EmptyInput,
    FocusStackError,
    StackingBusy,
    UnsupportedParameterValue,
)
from focusstack.stacking.pipeline import (
    FocusStackPipeline,
    LoggingReporter,
    NullReporter,
    Reporter,
    StackingWorker,
    StackResult,
)

__all__ = [
    "AlignmentWarning",
    "DimensionMismatch",
    "EmptyInput",
    "FocusStackError",
    "FocusStackPipeline",
    "LoggingReporter",
    "NullReporter",
    "Reporter",
    "StackingBusy",
    "StackingWorker",
    "StackResult",
    "UnsupportedParameterValue",
]
