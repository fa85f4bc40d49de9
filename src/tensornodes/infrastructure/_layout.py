"""
Minibatch layout: mapping frames to physical columns.

A minibatch packs S parallel sequences of up to T time steps into S * T
columns. Column ``t * S + s`` holds step ``t`` of sequence ``s``. Sequences
shorter than T leave padding ("gap") columns behind, which must be zeroed
before any reduction over frames.
"""

from __future__ import annotations

from typing import Optional

import numpy as np

from ..domain._errors import InvalidArgumentError, LogicError
from ..domain._frame_range import FrameRange
from ._matrix import Matrix


class MBLayout:
    """
    Packing descriptor of a minibatch.

    Parameters
    ----------
    num_parallel_sequences : int
        Number of sequences packed side by side (S).
    num_time_steps : int
        Number of time steps (T).

    Notes
    -----
    Layouts are compared by value: two layouts are equal when they describe
    the same packing and the same gaps. Nodes usually share one layout
    object with the input they inherited it from.
    """

    def __init__(self, num_parallel_sequences: int, num_time_steps: int) -> None:
        if num_parallel_sequences <= 0 or num_time_steps <= 0:
            raise InvalidArgumentError(
                "MBLayout requires at least one sequence and one time step, got "
                f"S={num_parallel_sequences}, T={num_time_steps}"
            )
        self._num_parallel_sequences = int(num_parallel_sequences)
        self._num_time_steps = int(num_time_steps)
        self._gaps = np.zeros((num_parallel_sequences, num_time_steps), dtype=bool)

    @property
    def num_parallel_sequences(self) -> int:
        return self._num_parallel_sequences

    @property
    def num_time_steps(self) -> int:
        return self._num_time_steps

    @property
    def num_cols(self) -> int:
        return self._num_parallel_sequences * self._num_time_steps

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, MBLayout):
            return NotImplemented
        return (
            self._num_parallel_sequences == other._num_parallel_sequences
            and self._num_time_steps == other._num_time_steps
            and bool(np.array_equal(self._gaps, other._gaps))
        )

    __hash__ = None  # mutable

    def __repr__(self) -> str:
        return (
            f"MBLayout(S={self._num_parallel_sequences}, T={self._num_time_steps}, "
            f"gaps={int(self._gaps.sum())})"
        )

    # ------------------------------------------------------------------
    # Gap bookkeeping
    # ------------------------------------------------------------------
    def _check_position(self, sequence: int, time_step: int) -> None:
        if not 0 <= sequence < self._num_parallel_sequences:
            raise LogicError(
                f"Sequence {sequence} out of range [0, {self._num_parallel_sequences})"
            )
        if not 0 <= time_step < self._num_time_steps:
            raise LogicError(
                f"Time step {time_step} out of range [0, {self._num_time_steps})"
            )

    def set_gap(self, sequence: int, time_step: int, is_gap: bool = True) -> None:
        """Mark (or unmark) one (sequence, time step) position as padding."""
        self._check_position(sequence, time_step)
        self._gaps[sequence, time_step] = is_gap

    def mark_sequence_end(self, sequence: int, length: int) -> None:
        """
        Declare that `sequence` has `length` valid steps.

        Every later step of that sequence becomes a gap.
        """
        if not 0 <= length <= self._num_time_steps:
            raise LogicError(
                f"Sequence length {length} out of range [0, {self._num_time_steps}]"
            )
        self._check_position(sequence, 0)
        self._gaps[sequence, :length] = False
        self._gaps[sequence, length:] = True

    def is_gap(self, sequence: int, time_step: int) -> bool:
        self._check_position(sequence, time_step)
        return bool(self._gaps[sequence, time_step])

    def has_gaps(self, frame: Optional[FrameRange] = None) -> bool:
        """True if any column selected by `frame` (default: all) is padding."""
        return bool(self.column_mask(frame or FrameRange.all()).any())

    # ------------------------------------------------------------------
    # Frame addressing
    # ------------------------------------------------------------------
    def column_range(self, frame: FrameRange) -> tuple[int, int]:
        """
        Physical columns selected by `frame`.

        Returns
        -------
        tuple[int, int]
            ``(start, num_cols)``.

        Raises
        ------
        LogicError
            If the frame addresses a time step or sequence outside the layout.
        """
        if frame.is_all_frames:
            return 0, self.num_cols
        s = self._num_parallel_sequences
        if frame.time_step >= self._num_time_steps:
            raise LogicError(
                f"{frame} out of range for a layout of {self._num_time_steps} time steps"
            )
        if frame.sequence is None:
            return frame.time_step * s, s
        if frame.sequence >= s:
            raise LogicError(
                f"{frame} out of range for a layout of {s} parallel sequences"
            )
        return frame.time_step * s + frame.sequence, 1

    def column_mask(self, frame: FrameRange) -> np.ndarray:
        """
        Boolean gap flags of the columns selected by `frame`.

        Returns
        -------
        np.ndarray
            One flag per selected column, True for padding.
        """
        start, n = self.column_range(frame)
        # column t * S + s reads gaps[s, t]
        return self._gaps.T.reshape(-1)[start : start + n].copy()

    def mask_missing_columns(
        self, matrix: Matrix, frame: FrameRange, value: float = 0.0
    ) -> Matrix:
        """
        Set the padding columns of `matrix` (a slice for `frame`) to `value`.

        Masking is idempotent. Returns `matrix` for chaining.
        """
        mask = self.column_mask(frame)
        if matrix.cols != mask.shape[0]:
            raise LogicError(
                f"Matrix with {matrix.cols} columns does not match {frame} "
                f"({mask.shape[0]} columns)"
            )
        if mask.any():
            matrix.mask_columns(mask, value)
        return matrix
