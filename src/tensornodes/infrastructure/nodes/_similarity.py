"""
Cosine-similarity nodes.

- CosDistance                     per-column cosine similarity of A and B
- CosDistanceWithNegativeSamples  one true pair plus shifted negative pairs

Both compute ``dot * inv_norm_a * inv_norm_b`` in that order, so negative
sampling with ``shift = 0`` and ``neg_count = 0`` reproduces `CosDistance`
exactly. The inverse column norms are computed during evaluation and kept in
scratch for the gradient pass; they are recomputed when the gradient is
requested for a different frame than the last evaluation.
"""

from __future__ import annotations

import warnings
from typing import Optional

from ...domain._errors import InvalidArgumentError, LogicError
from ...domain._frame_range import FrameRange
from ...domain._image_layout import ImageLayout
from .._matrix import Matrix
from ._base import ComputationNode


def _assign_inverse_column_norms(node: ComputationNode, inv: Matrix, x: Matrix) -> None:
    """inv = 1 / ||x[:, j]|| for every column j."""
    inv.assign_vector_norm2_of(x, col_wise=True)
    if (inv.data == 0).any():
        warnings.warn(
            f"{node.name} {node.operation_name}: zero-norm column in {x.shape} "
            "operand, cosine similarity is not finite",
            RuntimeWarning,
            stacklevel=3,
        )
    inv.assign_element_inverse_of(inv)


def _infer_peer_dims(node: ComputationNode) -> None:
    a, b = node.input(0), node.input(1)
    if 0 in a.shape and 0 not in b.shape:
        a.infer_dims(b.rows, b.cols)
    if 0 in b.shape and 0 not in a.shape:
        b.infer_dims(a.rows, a.cols)


class CosDistance(ComputationNode):
    """
    Per-column cosine similarity ``cos(A[:, j], B[:, j])`` as a 1 x n row.
    """

    num_inputs = 2
    operation_name = "CosDistance"
    eval_scratch_names = ("inv_norm0", "inv_norm1")
    gradient_scratch_names = ("left_term", "right_term", "temp")

    def __init__(self, *args, **kwargs) -> None:
        self._norm_frame: Optional[FrameRange] = None
        super().__init__(*args, **kwargs)

    def validate(self, is_final_pass: bool) -> None:
        self._check_arity()
        _infer_peer_dims(self)
        a, b = self.input(0), self.input(1)
        self.infer_layout_from_inputs(is_final_pass)
        if is_final_pass:
            self._validate_inputs_resolved(True)
            if a.shape != b.shape:
                raise self.shape_error("inputs 0 and 1 must have the same dimensions")
        self.value.resize(1, b.cols)
        self.infer_output_descriptor()

    def infer_output_descriptor(self) -> None:
        self.infer_image_layouts_from_input(0)
        self._output_image_layout = ImageLayout(1, 1, 1)

    def _compute_inverse_norms(self, frame: FrameRange) -> None:
        _assign_inverse_column_norms(
            self, self.scratch("inv_norm0"), self.input(0).value_slice(frame)
        )
        _assign_inverse_column_norms(
            self, self.scratch("inv_norm1"), self.input(1).value_slice(frame)
        )
        self._norm_frame = frame

    def evaluate(self, frame: FrameRange) -> None:
        self._compute_inverse_norms(frame)
        out = self.value_slice(frame)
        out.assign_inner_product_of(
            self.input(0).value_slice(frame), self.input(1).value_slice(frame), col_wise=True
        )
        out.element_multiply_with(self.scratch("inv_norm0"))
        out.element_multiply_with(self.scratch("inv_norm1"))

    def compute_gradient(self, input_index: int, frame: FrameRange) -> None:
        self._check_input_index(input_index)
        if self._norm_frame != frame:
            self._compute_inverse_norms(frame)
        inv0, inv1 = self.scratch("inv_norm0"), self.scratch("inv_norm1")
        left, right, temp = (
            self.scratch("left_term"),
            self.scratch("right_term"),
            self.scratch("temp"),
        )
        this = self.input(input_index).value_slice(frame)
        other = self.input(1 - input_index).value_slice(frame)
        inv_self = inv0 if input_index == 0 else inv1

        # out * inv_self^2 * this
        temp.assign_element_product_of(inv_self, inv_self)
        temp.element_multiply_with(self.value_slice(frame))
        right.set_value(this)
        right.row_element_multiply_with(temp)
        # inv0 * inv1 * other
        temp.assign_element_product_of(inv0, inv1)
        left.set_value(other)
        left.row_element_multiply_with(temp)

        left -= right
        left.row_element_multiply_with(self.gradient_slice(frame))
        input_grad = self.input(input_index).gradient_slice(frame)
        input_grad += left


class CosDistanceWithNegativeSamples(ComputationNode):
    """
    Cosine similarity against the true pair and `neg_count` shifted pairs.

    Inputs are A (d x n), B (d x n), and the single-element `shift` and
    `neg_count`. The output is (neg_count + 1) x n: row 0 holds
    ``cos(A[:, j], B[:, j])`` and row m >= 1 holds
    ``cos(A[:, j], B[:, (j + shift + m - 1) mod n])``.

    Notes
    -----
    `shift` and `neg_count` are not differentiable; requesting their
    gradient raises `InvalidArgumentError`.
    """

    num_inputs = 4
    operation_name = "CosDistanceWithNegativeSamples"
    eval_scratch_names = ("inv_norm0", "inv_norm1", "left_term", "right_term")
    gradient_scratch_names = ("inv_norm_square", "temp")

    def __init__(self, *args, **kwargs) -> None:
        self._norm_frame: Optional[FrameRange] = None
        self.shift = 0
        self.neg_count = 0
        super().__init__(*args, **kwargs)

    def _read_sampling_parameters(self) -> None:
        shift = self._require_single_element(2, "shift")
        neg_count = self._require_single_element(3, "the negative sample count")
        if shift != int(shift) or shift < 0:
            raise InvalidArgumentError(
                f"{self.name} {self.operation_name} operation: shift must be a "
                f"non-negative integer, got {shift}"
            )
        if neg_count != int(neg_count) or neg_count < 0:
            raise InvalidArgumentError(
                f"{self.name} {self.operation_name} operation: the negative sample "
                f"count must be a non-negative integer, got {neg_count}"
            )
        self.shift, self.neg_count = int(shift), int(neg_count)

    def validate(self, is_final_pass: bool) -> None:
        self._check_arity()
        self._read_sampling_parameters()
        _infer_peer_dims(self)
        a, b = self.input(0), self.input(1)
        self.infer_layout_from_inputs(is_final_pass, [0, 1])
        if is_final_pass:
            self._validate_inputs_resolved(True, 0, 1)
            if a.shape != b.shape:
                raise self.shape_error("inputs 0 and 1 must have the same dimensions")
        self.value.resize(self.neg_count + 1, b.cols)
        self.infer_output_descriptor()

    def infer_output_descriptor(self) -> None:
        self.infer_image_layouts_from_input(0)
        self._output_image_layout = ImageLayout(1, 1, 1)

    def _compute_inverse_norms(self, frame: FrameRange) -> None:
        _assign_inverse_column_norms(
            self, self.scratch("inv_norm0"), self.input(0).value_slice(frame)
        )
        _assign_inverse_column_norms(
            self, self.scratch("inv_norm1"), self.input(1).value_slice(frame)
        )
        self._norm_frame = frame

    def evaluate(self, frame: FrameRange) -> None:
        self._read_sampling_parameters()
        if self.rows != self.neg_count + 1:
            raise LogicError(
                f"{self.name}: the negative sample count changed after validation "
                f"({self.rows - 1} -> {self.neg_count})"
            )
        self._compute_inverse_norms(frame)
        a = self.input(0).value_slice(frame)
        b = self.input(1).value_slice(frame)
        dots, shifted_inv1 = self.scratch("right_term"), self.scratch("left_term")

        dots.assign_inner_product_of_with_shift_neg(a, b, self.shift, self.neg_count)
        shifted_inv1.assign_shift_neg_of(
            self.scratch("inv_norm1"), self.shift, self.neg_count
        )
        out = self.value_slice(frame)
        out.set_value(dots)
        out.row_element_multiply_with(self.scratch("inv_norm0"))
        out.element_multiply_with(shifted_inv1)

    def compute_gradient(self, input_index: int, frame: FrameRange) -> None:
        self._check_input_index(input_index)
        if input_index > 1:
            raise InvalidArgumentError(
                f"{self.name} {self.operation_name} operation: input {input_index} "
                "is not differentiable"
            )
        if self._norm_frame != frame:
            self._compute_inverse_norms(frame)
        if input_index == 0:
            self._backprop_left(frame)
        else:
            self._backprop_right(frame)

    def _pair_shift(self, m: int, num_cols: int) -> int:
        return 0 if m == 0 else (self.shift + m - 1) % num_cols

    def _backprop_left(self, frame: FrameRange) -> None:
        a = self.input(0).value_slice(frame)
        b = self.input(1).value_slice(frame)
        out, grad = self.value_slice(frame), self.gradient_slice(frame)
        inv0, inv1 = self.scratch("inv_norm0"), self.scratch("inv_norm1")
        inv_sq, temp = self.scratch("inv_norm_square"), self.scratch("temp")
        left, right = self.scratch("left_term"), self.scratch("right_term")
        input_grad = self.input(0).gradient_slice(frame)

        inv_sq.assign_element_product_of(inv0, inv0)
        for m in range(self.neg_count + 1):
            c = self._pair_shift(m, a.cols)
            # out[m] * inv0^2 * A
            temp.assign_row_of(out, m)
            temp.element_multiply_with(inv_sq)
            right.set_value(a)
            right.row_element_multiply_with(temp)
            # inv0 * inv1[shifted] * B[shifted]
            temp.assign_element_product_of_with_shift(inv0, inv1, c)
            Matrix.conduct_row_element_multiply_with_shift(temp, b, left, c, True)

            left -= right
            temp.assign_row_of(grad, m)
            left.row_element_multiply_with(temp)
            input_grad += left

    def _backprop_right(self, frame: FrameRange) -> None:
        a = self.input(0).value_slice(frame)
        b = self.input(1).value_slice(frame)
        out, grad = self.value_slice(frame), self.gradient_slice(frame)
        inv0, inv1 = self.scratch("inv_norm0"), self.scratch("inv_norm1")
        inv_sq, temp = self.scratch("inv_norm_square"), self.scratch("temp")
        left, right = self.scratch("left_term"), self.scratch("right_term")
        input_grad = self.input(1).gradient_slice(frame)
        n = b.cols

        inv_sq.assign_element_product_of(inv1, inv1)
        for m in range(self.neg_count + 1):
            # column p of B was paired with column (p + reverse) mod n of A
            reverse = (n - self._pair_shift(m, n)) % n
            # out[m, shifted] * inv1^2 * B
            temp.assign_row_of(out, m)
            temp.assign_element_product_of_with_shift(inv_sq, temp, reverse)
            right.set_value(b)
            right.row_element_multiply_with(temp)
            # inv1 * inv0[shifted] * A[shifted]
            temp.assign_element_product_of_with_shift(inv1, inv0, reverse)
            Matrix.conduct_row_element_multiply_with_shift(temp, a, left, reverse, True)

            left -= right
            temp.assign_row_of(grad, m)
            Matrix.conduct_row_element_multiply_with_shift(temp, left, left, reverse, False)
            input_grad += left
