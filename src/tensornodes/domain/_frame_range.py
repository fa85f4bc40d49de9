"""
Frame selectors.

A `FrameRange` tells a node which physical columns of its value and gradient
matrices the current call is about: either every column, or the columns of a
single time step across all parallel sequences (optionally narrowed to one
sequence). Mapping a frame to column indices is the job of the minibatch
layout (`MBLayout.column_range`); nodes without a layout ignore the frame and
always operate on all of their columns.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from ._errors import InvalidArgumentError


@dataclass(frozen=True)
class FrameRange:
    """
    Immutable description of the column subset an operation acts on.

    Attributes
    ----------
    time_step : Optional[int]
        Time step index, or None for all frames.
    sequence : Optional[int]
        Parallel sequence index within `time_step`, or None for every
        sequence. Only meaningful when `time_step` is set.
    """

    time_step: Optional[int] = None
    sequence: Optional[int] = None

    def __post_init__(self) -> None:
        if self.time_step is None and self.sequence is not None:
            raise InvalidArgumentError("A sequence index requires a time step")
        if self.time_step is not None and self.time_step < 0:
            raise InvalidArgumentError(f"time_step must be >= 0, got {self.time_step}")
        if self.sequence is not None and self.sequence < 0:
            raise InvalidArgumentError(f"sequence must be >= 0, got {self.sequence}")

    @classmethod
    def all(cls) -> "FrameRange":
        """Frame range covering every column."""
        return cls()

    @classmethod
    def at(cls, time_step: int, sequence: Optional[int] = None) -> "FrameRange":
        """Frame range for one time step (optionally one sequence of it)."""
        return cls(time_step=time_step, sequence=sequence)

    @property
    def is_all_frames(self) -> bool:
        return self.time_step is None

    def __str__(self) -> str:
        if self.is_all_frames:
            return "FrameRange(all)"
        if self.sequence is None:
            return f"FrameRange(t={self.time_step})"
        return f"FrameRange(t={self.time_step}, s={self.sequence})"
