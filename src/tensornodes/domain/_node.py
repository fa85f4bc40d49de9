"""
Computation node interface definitions.

This module defines the abstract contract every node kind of the catalogue
implements. A node is a vertex of a computation graph that owns a value
matrix and a gradient matrix and knows how to:

- resolve its shape from its inputs (`validate`, called in two passes),
- compute its value for a frame (`evaluate`),
- accumulate the gradient of one input for a frame (`compute_gradient`).

The graph scheduler decides *when* each method runs. It guarantees that both
validation passes precede the first evaluation, that evaluation precedes
gradient computation within a pass, and that a node's own gradient is fully
accumulated before `compute_gradient` is called for its inputs.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from ._frame_range import FrameRange


class INode(ABC):
    """
    Abstract base class of computation nodes.

    Notes
    -----
    The interface is flat: concrete node kinds derive from a
    single shared infrastructure base and implement these three methods.
    Shape-compatibility logic that several kinds share is provided by free
    functions rather than by intermediate base classes.
    """

    @abstractmethod
    def validate(self, is_final_pass: bool) -> None:
        """
        Resolve this node's shape from its inputs.

        Parameters
        ----------
        is_final_pass : bool
            False for the inference pass, in which unknown dimensions may be
            filled from peers and no mismatch is fatal. True for the final pass,
            in which every dimension must be resolved and compatible.

        Raises
        ------
        ShapeError
            In the final pass, for unresolved or incompatible dimensions.
        InvalidArgumentError
            For structurally invalid configuration.
        """
        ...

    @abstractmethod
    def evaluate(self, frame: FrameRange) -> None:
        """
        Compute this node's value for the columns selected by `frame`.

        Parameters
        ----------
        frame : FrameRange
            Column selector.
        """
        ...

    @abstractmethod
    def compute_gradient(self, input_index: int, frame: FrameRange) -> None:
        """
        Accumulate into the gradient of input `input_index`.

        Parameters
        ----------
        input_index : int
            Index of the input whose gradient receives the contribution.
        frame : FrameRange
            Column selector.
        """
        ...
