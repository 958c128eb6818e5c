"""Errors raised by the focus stacking core."""

from __future__ import annotations

from dataclasses import dataclass


class FocusStackError(Exception):
    """Base class for all fatal stacking errors."""


class EmptyInput(FocusStackError, ValueError):
    """Raised when a stacking run is started without any layers."""


class DimensionMismatch(FocusStackError, ValueError):
    """Raised when the layers of a stack do not share the same width/height."""


class UnsupportedParameterValue(FocusStackError, ValueError):
    """Raised for kernel sizes or smoothing parameters that cannot be used."""


class StackingBusy(FocusStackError, RuntimeError):
    """Raised when a run is submitted while another one is still in flight."""


@dataclass(frozen=True)
class AlignmentWarning:
    """A layer that could not be aligned and was dropped from the stack.

    Attributes:
        layer_index: Index of the layer in the input stack.
        matches: Number of matches that survived the ratio test.
        reason: Human readable explanation.
    """

    layer_index: int
    matches: int
    reason: str

    def __str__(self) -> str:
        return f"Layer {self.layer_index} skipped: {self.reason} ({self.matches} matches)"
