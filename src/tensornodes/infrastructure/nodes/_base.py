"""
Shared plumbing of computation nodes.

`ComputationNode` is the single infrastructure base every node kind derives
from. It owns the value and gradient matrices and provides:

- input attachment with arity enforcement,
- frame slicing of values and gradients (nodes without a minibatch layout
  ignore the frame and always use every column),
- padding masks for reductions over frames,
- dimension inference into inferable peers,
- minibatch-layout inference,
- image-layout bookkeeping for `infer_output_descriptor`,
- scratch-matrix lease hooks around the forward and backward passes.

Node kinds implement `validate`, `evaluate` and `compute_gradient` and
declare their scratch buffers through `eval_scratch_names` and
`gradient_scratch_names`.
"""

from __future__ import annotations

from typing import Any, Optional, Sequence

import numpy as np

from ...domain._errors import (
    InvalidArgumentError,
    LogicError,
    ScratchLeaseError,
    ShapeError,
)
from ...domain._frame_range import FrameRange
from ...domain._image_layout import ImageLayout
from ...domain._node import INode
from ...domain.device._device import Device
from ...domain.device._device_protocol import DeviceLike
from .._layout import MBLayout
from .._matrix import Matrix, resolve_element_type
from .._scratch_pool import ScratchPool


class ComputationNode(INode):
    """
    Base class of every node kind.

    Parameters
    ----------
    name : str
        Unique name of the node inside its graph.
    *inputs : ComputationNode
        Input nodes. May be omitted and attached later with `attach_inputs`.
    device : DeviceLike, optional
        Placement of the value and gradient matrices. Defaults to the CPU.
    dtype : Any, optional
        Element type, float32 (default) or float64.

    Attributes
    ----------
    num_inputs : int
        Fixed input arity of the node kind.
    operation_name : str
        Name of the operation, used in error messages and `describe()`.
    eval_scratch_names : tuple[str, ...]
        Scratch buffers leased before evaluation.
    gradient_scratch_names : tuple[str, ...]
        Scratch buffers leased before gradient computation.
    inferable : bool
        Whether validation of a consumer may write inferred dimensions into
        this node.
    """

    num_inputs: int = 0
    operation_name: str = "ComputationNode"
    eval_scratch_names: tuple[str, ...] = ()
    gradient_scratch_names: tuple[str, ...] = ()
    inferable: bool = False

    def __init__(
        self,
        name: str,
        *inputs: "ComputationNode",
        device: Optional[DeviceLike] = None,
        dtype: Any = np.float32,
    ) -> None:
        self.name = name
        self._dtype = resolve_element_type(dtype)
        self._device: DeviceLike = device if device is not None else Device("cpu")
        self._value = Matrix(0, 0, device=self._device, dtype=self._dtype)
        self._gradient: Optional[Matrix] = None
        self._layout: Optional[MBLayout] = None
        self._inputs: tuple[ComputationNode, ...] = ()
        self._scratch: dict[str, Matrix] = {}
        self._input_image_layout = ImageLayout()
        self._output_image_layout = ImageLayout()
        if inputs:
            self.attach_inputs(*inputs)

    # ------------------------------------------------------------------
    # Inputs
    # ------------------------------------------------------------------
    def attach_inputs(self, *inputs: "ComputationNode") -> None:
        """
        Connect the input nodes.

        Raises
        ------
        InvalidArgumentError
            If the number of inputs differs from `num_inputs` or an input is
            not a computation node.
        """
        if len(inputs) != self.num_inputs:
            raise InvalidArgumentError(
                f"{self.name} {self.operation_name} operation expects "
                f"{self.num_inputs} inputs, got {len(inputs)}"
            )
        for i, node in enumerate(inputs):
            if not isinstance(node, ComputationNode):
                raise InvalidArgumentError(
                    f"{self.name}: input {i} is not a computation node ({type(node).__name__})"
                )
        self._inputs = tuple(inputs)

    @property
    def inputs(self) -> tuple["ComputationNode", ...]:
        return self._inputs

    def input(self, index: int) -> "ComputationNode":
        return self._inputs[index]

    def _check_arity(self) -> None:
        if len(self._inputs) != self.num_inputs:
            raise InvalidArgumentError(
                f"{self.name} {self.operation_name} operation expects "
                f"{self.num_inputs} inputs, {len(self._inputs)} attached"
            )

    def _check_input_index(self, input_index: int) -> None:
        if not 0 <= input_index < self.num_inputs:
            raise InvalidArgumentError(
                f"{self.name} {self.operation_name} operation has no input {input_index}"
            )

    # ------------------------------------------------------------------
    # Value / gradient
    # ------------------------------------------------------------------
    @property
    def value(self) -> Matrix:
        return self._value

    @property
    def gradient(self) -> Matrix:
        """Gradient matrix, zero-allocated to the value's shape on first use."""
        return self.ensure_gradient()

    @property
    def has_gradient(self) -> bool:
        return self._gradient is not None

    @property
    def rows(self) -> int:
        return self._value.rows

    @property
    def cols(self) -> int:
        return self._value.cols

    @property
    def shape(self) -> tuple[int, int]:
        return self._value.shape

    @property
    def dtype(self) -> np.dtype:
        return self._dtype

    @property
    def device(self) -> DeviceLike:
        return self._device

    def ensure_gradient(self) -> Matrix:
        if self._gradient is None:
            self._gradient = Matrix(
                self.rows, self.cols, device=self._device, dtype=self._dtype
            )
        elif self._gradient.shape != self.shape:
            self._gradient.resize(self.rows, self.cols)
        return self._gradient

    def zero_gradient(self) -> None:
        self.ensure_gradient().fill(0.0)

    # ------------------------------------------------------------------
    # Minibatch layout and frame slicing
    # ------------------------------------------------------------------
    @property
    def layout(self) -> Optional[MBLayout]:
        return self._layout

    def set_layout(self, layout: Optional[MBLayout]) -> None:
        self._layout = layout

    def column_range(self, frame: FrameRange) -> tuple[int, int]:
        """
        Columns of this node selected by `frame`.

        Nodes without a layout ignore the frame and select every column.
        """
        if self._layout is None or frame.is_all_frames:
            return 0, self.cols
        return self._layout.column_range(frame)

    def _slice(self, matrix: Matrix, frame: FrameRange) -> Matrix:
        start, n = self.column_range(frame)
        if start == 0 and n == matrix.cols:
            return matrix
        return matrix.column_slice(start, n)

    def value_slice(self, frame: FrameRange) -> Matrix:
        return self._slice(self._value, frame)

    def gradient_slice(self, frame: FrameRange) -> Matrix:
        return self._slice(self.ensure_gradient(), frame)

    def gap_mask(self, frame: FrameRange) -> Optional[np.ndarray]:
        """Padding flags of the selected columns, or None when there are none."""
        if self._layout is None:
            return None
        mask = self._layout.column_mask(frame)
        return mask if mask.any() else None

    def masked_value_slice(self, frame: FrameRange) -> Matrix:
        """
        Copy of the value slice with padding columns set to zero.

        The node's own value is left untouched.
        """
        src = self.value_slice(frame)
        out = Matrix(device=self._device, dtype=self._dtype).set_value(src)
        mask = self.gap_mask(frame)
        if mask is not None:
            out.mask_columns(mask)
        return out

    def mask_gradient_gaps(self, frame: FrameRange) -> Matrix:
        """Zero the padding columns of this node's own gradient slice in place."""
        grad = self.gradient_slice(frame)
        mask = self.gap_mask(frame)
        if mask is not None:
            grad.mask_columns(mask)
        return grad

    def _require_all_frames(self, frame: FrameRange) -> None:
        if not frame.is_all_frames:
            raise LogicError(
                f"{self.name} {self.operation_name} operation cannot be evaluated "
                f"per frame ({frame})"
            )

    # ------------------------------------------------------------------
    # Validation helpers
    # ------------------------------------------------------------------
    def shape_error(self, detail: str, *nodes: "ComputationNode") -> ShapeError:
        return ShapeError(
            self.name,
            self.operation_name,
            detail,
            shapes=[n.shape for n in (nodes or self._inputs)],
        )

    def infer_dims(self, rows: int, cols: int) -> None:
        """
        Fill unknown (zero) dimensions of an inferable node.

        Known dimensions and non-inferable nodes are left unchanged. Zero
        arguments carry no information and are ignored.
        """
        if not self.inferable:
            return
        new_rows = self.rows if self.rows != 0 else rows
        new_cols = self.cols if self.cols != 0 else cols
        if (new_rows, new_cols) != self.shape:
            self._value.resize(new_rows, new_cols)
            self._output_image_layout = ImageLayout.for_rows(new_rows)

    def infer_layout_from_inputs(
        self, is_final_pass: bool, indices: Optional[Sequence[int]] = None
    ) -> None:
        """
        Adopt the minibatch layout of the inputs that carry one.

        Parameters
        ----------
        is_final_pass : bool
            When True, two inputs carrying different layouts raise.
        indices : Sequence[int], optional
            Inputs to consider. Defaults to every input.

        Raises
        ------
        ShapeError
            In the final pass, if the considered inputs carry different layouts.
        """
        chosen = range(len(self._inputs)) if indices is None else indices
        layout: Optional[MBLayout] = None
        for i in chosen:
            candidate = self._inputs[i].layout
            if candidate is None:
                continue
            if layout is None:
                layout = candidate
            elif candidate is not layout and candidate != layout and is_final_pass:
                raise self.shape_error(
                    f"inputs carry incompatible minibatch layouts ({layout!r} vs {candidate!r})"
                )
        self._layout = layout

    def _validate_inputs_resolved(self, is_final_pass: bool, *indices: int) -> None:
        if not is_final_pass:
            return
        for i in indices or range(len(self._inputs)):
            node = self._inputs[i]
            if node.rows == 0 or node.cols == 0:
                raise self.shape_error(
                    f"dimensions of input {i} ({node.name}) are not resolved"
                )

    def _require_single_element(self, index: int, what: str) -> float:
        node = self._inputs[index]
        if node.shape != (1, 1):
            raise InvalidArgumentError(
                f"{self.name} {self.operation_name} operation: {what} (input {index}) "
                f"must be a single element, got [{node.rows} x {node.cols}]"
            )
        return node.value.get_00_element()

    # ------------------------------------------------------------------
    # Image layouts
    # ------------------------------------------------------------------
    @property
    def input_image_layout(self) -> ImageLayout:
        return self._input_image_layout

    @property
    def output_image_layout(self) -> ImageLayout:
        return self._output_image_layout

    def infer_image_layouts_from_input(
        self, index: int, output_same_as_input: bool = True
    ) -> None:
        self._input_image_layout = self._inputs[index].output_image_layout
        if output_same_as_input:
            self._output_image_layout = self._input_image_layout
        else:
            self._output_image_layout = ImageLayout.for_rows(self.rows)

    def infer_output_descriptor(self) -> None:
        """
        Derive the image layouts of this node from its inputs.

        The default takes both layouts from input 0; leaves describe
        themselves as plain vectors.
        """
        if self._inputs:
            self.infer_image_layouts_from_input(0)
        else:
            self._input_image_layout = ImageLayout.for_rows(self.rows)
            self._output_image_layout = self._input_image_layout

    # ------------------------------------------------------------------
    # Scratch leases
    # ------------------------------------------------------------------
    def _lease(self, pool: ScratchPool, name: str) -> None:
        if name in self._scratch:
            raise ScratchLeaseError(f"scratch '{name}' is already leased", self.name)
        self._scratch[name] = pool.request(
            self.name, dtype=self._dtype, device=self._device
        )

    def _return(self, pool: ScratchPool, name: str) -> None:
        matrix = self._scratch.pop(name, None)
        if matrix is None:
            raise ScratchLeaseError(f"scratch '{name}' is not leased", self.name)
        pool.release(matrix, self.name)

    def scratch(self, name: str) -> Matrix:
        """
        Leased scratch matrix `name`.

        Raises
        ------
        ScratchLeaseError
            If `name` is not currently leased by this node.
        """
        try:
            return self._scratch[name]
        except KeyError:
            raise ScratchLeaseError(
                f"scratch '{name}' used outside of its lease", self.name
            ) from None

    @property
    def leased_scratch_names(self) -> tuple[str, ...]:
        return tuple(self._scratch)

    def request_scratch_before_eval(self, pool: ScratchPool) -> None:
        for name in self.eval_scratch_names:
            self._lease(pool, name)

    def release_scratch_after_eval(self, pool: ScratchPool) -> None:
        """Return the evaluation scratch when no gradient pass follows."""
        for name in self.eval_scratch_names:
            self._return(pool, name)

    def request_scratch_before_gradient(self, pool: ScratchPool) -> None:
        for name in self.gradient_scratch_names:
            self._lease(pool, name)

    def release_scratch_after_gradient(self, pool: ScratchPool) -> None:
        """Return every scratch matrix still leased, evaluation ones included."""
        for name in list(self._scratch):
            self._return(pool, name)

    # ------------------------------------------------------------------
    # Placement and diagnostics
    # ------------------------------------------------------------------
    def move_to(self, device: DeviceLike) -> None:
        """Move the value, gradient and leased scratch matrices to `device`."""
        self._device = device
        self._value.move_to(device)
        if self._gradient is not None:
            self._gradient.move_to(device)
        for matrix in self._scratch.values():
            matrix.move_to(device)

    def describe(self) -> str:
        """One-line description: ``name = Op(child[r x c], ...)``."""
        args = ", ".join(f"{n.name}[{n.rows} x {n.cols}]" for n in self._inputs)
        return f"{self.name} = {self.operation_name}({args})"

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name} [{self.rows} x {self.cols}]>"

    # ------------------------------------------------------------------
    # Node contract
    # ------------------------------------------------------------------
    def compute_gradient(self, input_index: int, frame: FrameRange) -> None:
        raise InvalidArgumentError(
            f"{self.name} {self.operation_name} operation has no differentiable "
            f"input {input_index}"
        )
