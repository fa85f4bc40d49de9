"""
Reduction and shape nodes.

- SumElements        1 x 1 sum of every (non-padding) element
- SumColumnElements  1 x n per-column sums
- Transpose          full transpose of a static matrix
- Diagonal           1 x n run of ``X[j mod rows, j]``

`Transpose` and `Diagonal` mix rows and columns, so they only run over all
frames and their output never carries a minibatch layout.
"""

from __future__ import annotations

import warnings

from ...domain._errors import InvalidArgumentError
from ...domain._frame_range import FrameRange
from ...domain._image_layout import ImageLayout
from .._matrix import Matrix
from ._base import ComputationNode


class SumElements(ComputationNode):
    """
    Sum of all elements of the input as a 1 x 1 matrix.

    Padding columns are excluded. The result never carries a minibatch
    layout.
    """

    num_inputs = 1
    operation_name = "SumElements"

    def validate(self, is_final_pass: bool) -> None:
        self._check_arity()
        self._validate_inputs_resolved(is_final_pass)
        self.set_layout(None)
        self.value.resize(1, 1)
        self.infer_output_descriptor()

    def infer_output_descriptor(self) -> None:
        self.infer_image_layouts_from_input(0)
        self._output_image_layout = ImageLayout(1, 1, 1)

    def evaluate(self, frame: FrameRange) -> None:
        # masked copy, the input's own value stays untouched
        masked = self.input(0).masked_value_slice(frame)
        self.value.assign_sum_of_elements(masked)

    def compute_gradient(self, input_index: int, frame: FrameRange) -> None:
        self._check_input_index(input_index)
        input_grad = self.input(0).gradient_slice(frame)
        input_grad += self.gradient.get_00_element()


class SumColumnElements(ComputationNode):
    """Per-column sums of the input as a 1 x n row."""

    num_inputs = 1
    operation_name = "SumColumnElements"

    def validate(self, is_final_pass: bool) -> None:
        self._check_arity()
        self._validate_inputs_resolved(is_final_pass)
        self.infer_layout_from_inputs(is_final_pass)
        self.value.resize(1, self.input(0).cols)
        self.infer_output_descriptor()

    def infer_output_descriptor(self) -> None:
        self.infer_image_layouts_from_input(0)
        self._output_image_layout = ImageLayout(1, 1, 1)

    def evaluate(self, frame: FrameRange) -> None:
        self.value_slice(frame).assign_column_sums_of(self.input(0).value_slice(frame))

    def compute_gradient(self, input_index: int, frame: FrameRange) -> None:
        self._check_input_index(input_index)
        input_grad = self.input(0).gradient_slice(frame)
        ones = Matrix.ones(
            input_grad.rows, 1, device=input_grad.device, dtype=input_grad.dtype
        )
        Matrix.multiply_and_add(ones, False, self.gradient_slice(frame), False, input_grad)


class Transpose(ComputationNode):
    """
    Transpose of a matrix without a minibatch layout.

    Transposing would swap the time and sample axes of packed sequences, so
    an input carrying a layout is rejected.
    """

    num_inputs = 1
    operation_name = "Transpose"

    def validate(self, is_final_pass: bool) -> None:
        self._check_arity()
        x = self.input(0)
        if is_final_pass and x.layout is not None:
            raise InvalidArgumentError(
                f"{self.name} {self.operation_name} operation: the input "
                f"({x.name}) must not carry a minibatch layout"
            )
        self._validate_inputs_resolved(is_final_pass)
        self.set_layout(None)
        self.value.resize(x.cols, x.rows)
        self.infer_output_descriptor()

    def infer_output_descriptor(self) -> None:
        self.infer_image_layouts_from_input(0, output_same_as_input=False)

    def evaluate(self, frame: FrameRange) -> None:
        self._require_all_frames(frame)
        self.value.assign_transpose_of(self.input(0).value)

    def compute_gradient(self, input_index: int, frame: FrameRange) -> None:
        self._check_input_index(input_index)
        self._require_all_frames(frame)
        self.input(0).gradient.add_transpose_of(self.gradient)


class Diagonal(ComputationNode):
    """
    Diagonal run of a matrix: ``out[0, j] = X[j mod rows, j]``.

    For a square input this is the main diagonal; wider inputs cycle through
    the rows.
    """

    num_inputs = 1
    operation_name = "Diagonal"

    def validate(self, is_final_pass: bool) -> None:
        self._check_arity()
        x = self.input(0)
        if is_final_pass and x.value.num_elements == 0:
            raise self.shape_error("the input has no elements")
        self.set_layout(None)
        self.value.resize(1, x.cols)
        self.infer_output_descriptor()

    def infer_output_descriptor(self) -> None:
        self.infer_image_layouts_from_input(0)
        if self._input_image_layout.width * self._input_image_layout.channels != 1:
            warnings.warn(
                f"{self.name} {self.operation_name} operation cannot inherit image "
                "size information from its input; image size info is lost",
                RuntimeWarning,
                stacklevel=2,
            )
        self._output_image_layout = ImageLayout(1, self._input_image_layout.height, 1)

    def evaluate(self, frame: FrameRange) -> None:
        self._require_all_frames(frame)
        self.value.assign_diagonal_of(self.input(0).value)

    def compute_gradient(self, input_index: int, frame: FrameRange) -> None:
        self._check_input_index(input_index)
        self._require_all_frames(frame)
        self.input(0).gradient.add_diagonal_values(self.gradient)
