"""
Element-wise and broadcast arithmetic nodes.

Implemented node kinds:

- Plus, Minus          broadcast addition / subtraction (see `_broadcast`)
- Scale                scalar times matrix
- Negate               unary minus
- ElementTimes         Hadamard product of equally shaped operands
- RowElementTimes      scale every column j of input 0 by ``input1[0, j]``
- ColumnElementTimes   scale every row i of input 0 by ``input1[i, 0]``
- DiagTimes            diag(input0) @ input1 without materializing the diagonal
"""

from __future__ import annotations

from ...domain._frame_range import FrameRange
from .._matrix import Matrix
from ._base import ComputationNode
from ._broadcast import (
    backprop_broadcast,
    broadcast_combine,
    validate_broadcast_binary,
)


def _infer_image_layouts_from_larger_operand(node: ComputationNode) -> None:
    """
    The operand with more elements provides the image layouts.

    On a tie, input 0 wins if it describes an image, input 1 otherwise.
    """
    a, b = node.input(0), node.input(1)
    if a.value.num_elements > b.value.num_elements:
        node.infer_image_layouts_from_input(0)
    elif a.value.num_elements < b.value.num_elements:
        node.infer_image_layouts_from_input(1)
    else:
        node.infer_image_layouts_from_input(0 if a.output_image_layout.is_image else 1)


class Plus(ComputationNode):
    """
    Broadcast sum of two matrices.

    Operands may differ in shape when the smaller one is a scalar, a column
    vector, a row vector or a column tiling of the larger one.
    """

    num_inputs = 2
    operation_name = "Plus"

    _subtract = False

    def validate(self, is_final_pass: bool) -> None:
        self._check_arity()
        validate_broadcast_binary(self, is_final_pass)
        self.infer_output_descriptor()

    def infer_output_descriptor(self) -> None:
        _infer_image_layouts_from_larger_operand(self)

    def evaluate(self, frame: FrameRange) -> None:
        broadcast_combine(
            self.value_slice(frame),
            self.input(0).value_slice(frame),
            self.input(1).value_slice(frame),
            subtract=self._subtract,
            allow_tiling=self.layout is None,
        )

    def compute_gradient(self, input_index: int, frame: FrameRange) -> None:
        self._check_input_index(input_index)
        sign = -1.0 if self._subtract and input_index == 1 else 1.0
        backprop_broadcast(self, input_index, frame, sign)


class Minus(Plus):
    """Broadcast difference ``input0 - input1``; same patterns as `Plus`."""

    operation_name = "Minus"

    _subtract = True


class Negate(ComputationNode):
    num_inputs = 1
    operation_name = "Negate"

    def validate(self, is_final_pass: bool) -> None:
        self._check_arity()
        self._validate_inputs_resolved(is_final_pass)
        self.infer_layout_from_inputs(is_final_pass)
        self.value.resize(*self.input(0).shape)
        self.infer_output_descriptor()

    def evaluate(self, frame: FrameRange) -> None:
        self.value_slice(frame).assign_negation_of(self.input(0).value_slice(frame))

    def compute_gradient(self, input_index: int, frame: FrameRange) -> None:
        self._check_input_index(input_index)
        input_grad = self.input(0).gradient_slice(frame)
        input_grad -= self.gradient_slice(frame)


class Scale(ComputationNode):
    """
    ``out = s * M`` for a single-element input 0 and any matrix input 1.
    """

    num_inputs = 2
    operation_name = "Scale"

    def validate(self, is_final_pass: bool) -> None:
        self._check_arity()
        self.input(0).infer_dims(1, 1)
        self._validate_inputs_resolved(is_final_pass)
        if is_final_pass and self.input(0).shape != (1, 1):
            raise self.shape_error("the scale factor (input 0) must be a single element")
        self.infer_layout_from_inputs(is_final_pass, [1])
        self.value.resize(*self.input(1).shape)
        self.infer_output_descriptor()

    def infer_output_descriptor(self) -> None:
        self.infer_image_layouts_from_input(1)

    def evaluate(self, frame: FrameRange) -> None:
        self.value_slice(frame).assign_scaled_of(
            self.input(0).value.get_00_element(), self.input(1).value_slice(frame)
        )

    def compute_gradient(self, input_index: int, frame: FrameRange) -> None:
        self._check_input_index(input_index)
        if input_index == 0:
            grad = self.mask_gradient_gaps(frame)
            masked = self.input(1).masked_value_slice(frame)
            scale_grad = self.input(0).gradient
            scale_grad += Matrix.inner_product_of_matrices(grad, masked)
        else:
            self.input(1).gradient_slice(frame).scale_and_add(
                self.input(0).value.get_00_element(), self.gradient_slice(frame)
            )


class ElementTimes(ComputationNode):
    """Hadamard product of two matrices of identical shape."""

    num_inputs = 2
    operation_name = "ElementTimes"

    def validate(self, is_final_pass: bool) -> None:
        self._check_arity()
        validate_broadcast_binary(self, is_final_pass, allow_broadcast=False)
        self.infer_output_descriptor()

    def infer_output_descriptor(self) -> None:
        self.infer_image_layouts_from_input(
            0 if self.input(0).output_image_layout.is_image else 1
        )

    def evaluate(self, frame: FrameRange) -> None:
        self.value_slice(frame).assign_element_product_of(
            self.input(0).value_slice(frame), self.input(1).value_slice(frame)
        )

    def compute_gradient(self, input_index: int, frame: FrameRange) -> None:
        self._check_input_index(input_index)
        other = self.input(1 - input_index).value_slice(frame)
        self.input(input_index).gradient_slice(frame).add_element_product_of(
            self.gradient_slice(frame), other
        )


class RowElementTimes(ComputationNode):
    """
    Scale column j of input 0 (m x n) by element j of the row vector input 1
    (1 x n).
    """

    num_inputs = 2
    operation_name = "RowElementTimes"
    gradient_scratch_names = ("temp",)

    def validate(self, is_final_pass: bool) -> None:
        self._check_arity()
        a, b = self.input(0), self.input(1)
        b.infer_dims(1, a.cols)
        self._validate_inputs_resolved(is_final_pass)
        if is_final_pass and (b.rows != 1 or b.cols != a.cols):
            raise self.shape_error(
                "input 1 must be a row vector with as many columns as input 0"
            )
        self.infer_layout_from_inputs(is_final_pass)
        self.value.resize(a.rows, a.cols)
        self.infer_output_descriptor()

    def evaluate(self, frame: FrameRange) -> None:
        out = self.value_slice(frame)
        out.set_value(self.input(0).value_slice(frame))
        out.row_element_multiply_with(self.input(1).value_slice(frame))

    def compute_gradient(self, input_index: int, frame: FrameRange) -> None:
        self._check_input_index(input_index)
        temp = self.scratch("temp")
        grad = self.gradient_slice(frame)
        if input_index == 0:
            temp.set_value(grad)
            temp.row_element_multiply_with(self.input(1).value_slice(frame))
        else:
            temp.assign_inner_product_of(
                grad, self.input(0).value_slice(frame), col_wise=True
            )
        input_grad = self.input(input_index).gradient_slice(frame)
        input_grad += temp


class ColumnElementTimes(ComputationNode):
    """
    Scale row i of input 0 (m x n) by element i of the column vector input 1
    (m x 1). Input 1 is static and never frame-sliced.
    """

    num_inputs = 2
    operation_name = "ColumnElementTimes"
    gradient_scratch_names = ("temp",)

    def validate(self, is_final_pass: bool) -> None:
        self._check_arity()
        a, b = self.input(0), self.input(1)
        b.infer_dims(a.rows, 1)
        self._validate_inputs_resolved(is_final_pass)
        if is_final_pass and (b.cols != 1 or b.rows != a.rows):
            raise self.shape_error(
                "input 1 must be a column vector with as many rows as input 0"
            )
        self.infer_layout_from_inputs(is_final_pass, [0])
        self.value.resize(a.rows, a.cols)
        self.infer_output_descriptor()

    def evaluate(self, frame: FrameRange) -> None:
        out = self.value_slice(frame)
        out.set_value(self.input(0).value_slice(frame))
        out.column_element_multiply_with(self.input(1).value)

    def compute_gradient(self, input_index: int, frame: FrameRange) -> None:
        self._check_input_index(input_index)
        temp = self.scratch("temp")
        if input_index == 0:
            temp.set_value(self.gradient_slice(frame))
            temp.column_element_multiply_with(self.input(1).value)
            input_grad = self.input(0).gradient_slice(frame)
            input_grad += temp
        else:
            grad = self.mask_gradient_gaps(frame)
            temp.assign_inner_product_of(
                grad, self.input(0).value_slice(frame), col_wise=False
            )
            column_grad = self.input(1).gradient
            column_grad += temp


class DiagTimes(ComputationNode):
    """
    ``diag(d) @ M`` where input 0 is the column vector d (m x 1) and input 1
    is M (m x n): every row i of M is scaled by ``d[i]``.
    """

    num_inputs = 2
    operation_name = "DiagTimes"
    gradient_scratch_names = ("inner_product", "right_gradient")

    def validate(self, is_final_pass: bool) -> None:
        self._check_arity()
        d, m = self.input(0), self.input(1)
        d.infer_dims(m.rows, 1)
        self._validate_inputs_resolved(is_final_pass)
        if is_final_pass and (d.cols != 1 or d.rows != m.rows):
            raise self.shape_error(
                "the diagonal (input 0) must be a column vector with as many rows "
                "as input 1"
            )
        self.infer_layout_from_inputs(is_final_pass, [1])
        self.value.resize(m.rows, m.cols)
        self.infer_output_descriptor()

    def infer_output_descriptor(self) -> None:
        self.infer_image_layouts_from_input(1)

    def evaluate(self, frame: FrameRange) -> None:
        out = self.value_slice(frame)
        out.set_value(self.input(1).value_slice(frame))
        out.column_element_multiply_with(self.input(0).value)

    def compute_gradient(self, input_index: int, frame: FrameRange) -> None:
        self._check_input_index(input_index)
        if input_index == 0:
            inner = self.scratch("inner_product")
            grad = self.mask_gradient_gaps(frame)
            inner.assign_inner_product_of(
                grad, self.input(1).value_slice(frame), col_wise=False
            )
            diag_grad = self.input(0).gradient
            diag_grad += inner
        else:
            right = self.scratch("right_gradient")
            right.set_value(self.gradient_slice(frame))
            right.column_element_multiply_with(self.input(0).value)
            input_grad = self.input(1).gradient_slice(frame)
            input_grad += right
