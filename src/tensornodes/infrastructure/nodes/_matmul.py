"""
Matrix-product nodes.

Implemented node kinds:

- Times             ``A @ B``
- TransposeTimes    ``A.T @ B``
- StrideTimes       batched product with one operand addressed at a stride
- KhatriRaoProduct  column-wise Kronecker product

In `Times` and `TransposeTimes` the left operand is a static matrix (usually
a learnable parameter) and must not carry a minibatch layout; the output
inherits the layout of the right operand. Unknown dimensions of an inferable
left or right operand are inferred from its peer.
"""

from __future__ import annotations

from ...domain._errors import InvalidArgumentError
from ...domain._frame_range import FrameRange
from ...domain._matrix import StorageFormat
from .._matrix import Matrix
from ._base import ComputationNode


def _switch_to_block_sparse_if_needed(
    input_grad: Matrix, output_grad: Matrix, right_value: Matrix
) -> None:
    """
    Products with a sparse right operand accumulate into block-sparse storage.

    Applies when the right operand's value is sparse and both the left
    gradient and the output gradient are dense.
    """
    if (
        right_value.storage.is_sparse
        and not input_grad.storage.is_sparse
        and not output_grad.storage.is_sparse
    ):
        input_grad.switch_to_storage(StorageFormat.SPARSE_BLOCK_COL)


class Times(ComputationNode):
    """
    Matrix product ``A @ B``.

    Input 0 (A, m x k) is static; input 1 (B, k x n) usually carries the
    minibatch layout, which the output keeps.

    Notes
    -----
    Validation infers the column count of A from the row count of B when A is
    an inferable parameter, and the row count of B from the column count of A
    when B is.
    """

    num_inputs = 2
    operation_name = "Times"

    def validate(self, is_final_pass: bool) -> None:
        self._check_arity()
        a, b = self.input(0), self.input(1)
        if is_final_pass and a.layout is not None:
            raise InvalidArgumentError(
                f"{self.name} {self.operation_name} operation: the left operand "
                f"({a.name}) must not carry a minibatch layout"
            )

        if a.cols == 0 and a.layout is None and b.rows != 0:
            a.infer_dims(a.rows, b.rows)
        if a.cols != 0 and b.rows == 0:
            b.infer_dims(a.cols, b.cols)

        if is_final_pass:
            if a.rows == 0 or (b.cols == 0 and b.layout is None):
                raise self.shape_error("operand dimensions are not resolved")
            if a.cols == 0 or a.cols != b.rows:
                raise self.shape_error(
                    "the column count of input 0 must match the row count of input 1"
                )

        self.value.resize(a.rows, b.cols)
        self.infer_layout_from_inputs(is_final_pass, [1])
        self.infer_output_descriptor()

    def infer_output_descriptor(self) -> None:
        self.infer_image_layouts_from_input(1, output_same_as_input=False)

    def evaluate(self, frame: FrameRange) -> None:
        self.value_slice(frame).assign_product_of(
            self.input(0).value, False, self.input(1).value_slice(frame), False
        )

    def compute_gradient(self, input_index: int, frame: FrameRange) -> None:
        self._check_input_index(input_index)
        a, b = self.input(0), self.input(1)
        if input_index == 0:
            # left gradient reduces over frames: mask both factors
            _switch_to_block_sparse_if_needed(a.gradient, self.gradient, b.value)
            grad = self.mask_gradient_gaps(frame)
            Matrix.multiply_and_add(
                grad, False, b.masked_value_slice(frame), True, a.gradient
            )
        else:
            Matrix.multiply_and_add(
                a.value, True, self.gradient_slice(frame), False, b.gradient_slice(frame)
            )


class TransposeTimes(ComputationNode):
    """
    Matrix product ``A.T @ B``; A (k x m) and B (k x n) share their row count.
    """

    num_inputs = 2
    operation_name = "TransposeTimes"

    def validate(self, is_final_pass: bool) -> None:
        self._check_arity()
        a, b = self.input(0), self.input(1)
        if is_final_pass and a.layout is not None:
            raise InvalidArgumentError(
                f"{self.name} {self.operation_name} operation: the left operand "
                f"({a.name}) must not carry a minibatch layout"
            )

        if a.rows == 0 and a.layout is None and b.rows != 0:
            a.infer_dims(b.rows, a.cols)
        if b.rows == 0 and a.rows != 0:
            b.infer_dims(a.rows, b.cols)

        if is_final_pass:
            if a.cols == 0 or (b.cols == 0 and b.layout is None):
                raise self.shape_error("operand dimensions are not resolved")
            if a.rows == 0 or a.rows != b.rows:
                raise self.shape_error("inputs 0 and 1 must have the same row count")

        self.value.resize(a.cols, b.cols)
        self.infer_layout_from_inputs(is_final_pass, [1])
        self.infer_output_descriptor()

    def infer_output_descriptor(self) -> None:
        self.infer_image_layouts_from_input(1, output_same_as_input=False)

    def evaluate(self, frame: FrameRange) -> None:
        self.value_slice(frame).assign_product_of(
            self.input(0).value, True, self.input(1).value_slice(frame), False
        )

    def compute_gradient(self, input_index: int, frame: FrameRange) -> None:
        self._check_input_index(input_index)
        a, b = self.input(0), self.input(1)
        if input_index == 0:
            _switch_to_block_sparse_if_needed(a.gradient, self.gradient, b.value)
            grad = self.mask_gradient_gaps(frame)
            Matrix.multiply_and_add(
                b.masked_value_slice(frame), False, grad, True, a.gradient
            )
        else:
            Matrix.multiply_and_add(
                a.value, False, self.gradient_slice(frame), False, b.gradient_slice(frame)
            )


class StrideTimes(ComputationNode):
    """
    Batched product with a strided operand.

    Inputs are A, B and a single-element stride selector (0: row stride,
    1: column stride). The stride ``s`` is the column count of B, and output
    column k pairs column k of B with the k-th strided sub-matrix of A:

    - column stride, A is d x (T * s), B is T x s:
      ``out[:, k] = A[:, k::s] @ B[:, k]`` (d x s result)
    - row stride, A is (T * s) x d, B is d x s:
      ``out[:, k] = A[k::s, :] @ B[:, k]`` (T x s result)

    The output keeps the minibatch layout of B. Because A is addressed by
    stride rather than by frame, the node only runs over all frames.
    """

    num_inputs = 3
    operation_name = "StrideTimes"
    eval_scratch_names = ("strided",)

    ROW_STRIDE = 0
    COLUMN_STRIDE = 1

    def __init__(self, *args, **kwargs) -> None:
        self.stride_dim = self.COLUMN_STRIDE
        super().__init__(*args, **kwargs)

    def _read_stride_dim(self) -> int:
        value = self._require_single_element(2, "the stride selector")
        if value not in (0.0, 1.0):
            raise InvalidArgumentError(
                f"{self.name} {self.operation_name} operation: the stride selector "
                f"must be 0 (rows) or 1 (columns), got {value}"
            )
        return int(value)

    def validate(self, is_final_pass: bool) -> None:
        self._check_arity()
        self.stride_dim = self._read_stride_dim()
        a, b = self.input(0), self.input(1)
        stride = b.cols

        if self.stride_dim == self.ROW_STRIDE:
            if b.rows != 0:
                a.infer_dims(a.rows, b.rows)
            if is_final_pass:
                self._validate_inputs_resolved(True, 0, 1)
                if a.cols != b.rows or a.rows % stride != 0:
                    raise self.shape_error(
                        "row stride requires A to have as many columns as B has rows "
                        "and a row count divisible by the column count of B"
                    )
            out_rows = a.rows // stride if stride else 0
        else:
            if b.rows != 0 and stride != 0:
                a.infer_dims(a.rows, b.rows * stride)
            if is_final_pass:
                self._validate_inputs_resolved(True, 0, 1)
                if a.cols != b.rows * stride:
                    raise self.shape_error(
                        "column stride requires A to have (rows of B) x (columns of B) "
                        "columns"
                    )
            out_rows = a.rows

        self.value.resize(out_rows, stride)
        self.infer_layout_from_inputs(is_final_pass, [1])
        self.infer_output_descriptor()

    def infer_output_descriptor(self) -> None:
        self.infer_image_layouts_from_input(1, output_same_as_input=False)

    def evaluate(self, frame: FrameRange) -> None:
        self._require_all_frames(frame)
        a, b = self.input(0).value, self.input(1).value
        strided = self.scratch("strided")
        stride = b.cols
        for k in range(stride):
            if self.stride_dim == self.ROW_STRIDE:
                strided.assign_row_stride_of(a, k, stride)
            else:
                strided.assign_column_stride_of(a, k, stride)
            self.value.column_slice(k, 1).assign_product_of(
                strided, False, b.column_slice(k, 1), False
            )

    def compute_gradient(self, input_index: int, frame: FrameRange) -> None:
        self._check_input_index(input_index)
        self._require_all_frames(frame)
        a, b = self.input(0), self.input(1)
        strided = self.scratch("strided")
        stride = b.cols
        if input_index == 0:
            grad = self.mask_gradient_gaps(frame)
            for k in range(stride):
                # outer product of the output gradient and the paired B column
                strided.assign_product_of(
                    grad.column_slice(k, 1), False, b.value.column_slice(k, 1), True
                )
                if self.stride_dim == self.ROW_STRIDE:
                    a.gradient.add_to_row_stride(strided, k, stride)
                else:
                    a.gradient.add_to_column_stride(strided, k, stride)
        elif input_index == 1:
            grad = self.gradient
            for k in range(stride):
                if self.stride_dim == self.ROW_STRIDE:
                    strided.assign_row_stride_of(a.value, k, stride)
                else:
                    strided.assign_column_stride_of(a.value, k, stride)
                Matrix.multiply_and_add(
                    strided,
                    True,
                    grad.column_slice(k, 1),
                    False,
                    b.gradient.column_slice(k, 1),
                )
        else:
            raise InvalidArgumentError(
                f"{self.name} {self.operation_name} operation: the stride selector "
                "(input 2) is not differentiable"
            )


class KhatriRaoProduct(ComputationNode):
    """
    Column-wise Kronecker product.

    For A (p x n) and B (q x n) the output is (p * q) x n with
    ``out[j * p + i, k] = A[i, k] * B[j, k]``.
    """

    num_inputs = 2
    operation_name = "KhatriRaoProduct"

    def validate(self, is_final_pass: bool) -> None:
        self._check_arity()
        a, b = self.input(0), self.input(1)
        if a.cols == 0 and b.cols != 0:
            a.infer_dims(a.rows, b.cols)
        if b.cols == 0 and a.cols != 0:
            b.infer_dims(b.rows, a.cols)

        if is_final_pass:
            self._validate_inputs_resolved(True)
            if a.cols != b.cols:
                raise self.shape_error("inputs 0 and 1 must have the same column count")

        self.value.resize(a.rows * b.rows, a.cols)
        self.infer_layout_from_inputs(is_final_pass)
        self.infer_output_descriptor()

    def infer_output_descriptor(self) -> None:
        self.infer_image_layouts_from_input(0, output_same_as_input=False)

    def evaluate(self, frame: FrameRange) -> None:
        self.value_slice(frame).assign_khatri_rao_product_of(
            self.input(0).value_slice(frame), self.input(1).value_slice(frame)
        )

    def compute_gradient(self, input_index: int, frame: FrameRange) -> None:
        self._check_input_index(input_index)
        grad = self.gradient_slice(frame)
        other = self.input(1 - input_index).value_slice(frame)
        self.input(input_index).gradient_slice(frame).add_column_reshape_product_of(
            grad, other, transpose_a_column=(input_index == 1)
        )
