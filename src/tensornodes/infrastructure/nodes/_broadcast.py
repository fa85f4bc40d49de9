"""
Broadcast algebra of binary arithmetic nodes.

Plus and Minus accept operands of different shapes when the smaller one can
be expanded to the larger under one of the recognized patterns. The output
has the larger row and column counts, and at least one operand must already
have that shape. The other operand is classified against the output shape,
in priority order:

1. EXACT         identical shape
2. SCALAR        1 x 1, broadcast to every element
3. COLUMN_VECTOR N x 1, broadcast across columns
4. ROW_VECTOR    1 x M, broadcast across rows
5. TILING        N x k with M a multiple of k; each column is repeated
                 M / k times in contiguous groups (``[a b] -> [a a a b b b]``)

Backward reduces the output gradient back onto each operand's shape. An
operand without a minibatch layout on a node that has one receives the sum
over every frame, whatever its pattern against a single frame slice, so the
padding columns of the output gradient are masked first. The scalar and
column-vector reductions always sum over columns (`REDUCES_OVER_FRAMES`).
Tiling is undefined for packed sequences and is rejected for nodes that carry
a minibatch layout.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional, TYPE_CHECKING

import numpy as np

from ...domain._errors import LogicError
from ...domain._frame_range import FrameRange
from .._matrix import Matrix, check_devices

if TYPE_CHECKING:
    from ._base import ComputationNode


class BroadcastPattern(Enum):
    EXACT = "exact"
    SCALAR = "scalar"
    COLUMN_VECTOR = "column_vector"
    ROW_VECTOR = "row_vector"
    TILING = "tiling"


REDUCES_OVER_FRAMES = frozenset(
    {BroadcastPattern.SCALAR, BroadcastPattern.COLUMN_VECTOR}
)


def reduces_over_frames(node: "ComputationNode", operand: "ComputationNode") -> bool:
    """Whether `operand` accumulates gradient from every frame of `node`."""
    return node.layout is not None and operand.layout is None


def classify_operand(
    operand: tuple[int, int], output: tuple[int, int]
) -> Optional[BroadcastPattern]:
    """
    Classify an operand shape against the output shape.

    Returns
    -------
    Optional[BroadcastPattern]
        The first matching pattern, or None if the operand cannot be expanded
        to `output`.
    """
    r, c = operand
    out_r, out_c = output
    if r == 0 or c == 0:
        return None
    if (r, c) == (out_r, out_c):
        return BroadcastPattern.EXACT
    if (r, c) == (1, 1):
        return BroadcastPattern.SCALAR
    if c == 1 and r == out_r:
        return BroadcastPattern.COLUMN_VECTOR
    if r == 1 and c == out_c:
        return BroadcastPattern.ROW_VECTOR
    if r == out_r and out_c % c == 0:
        return BroadcastPattern.TILING
    return None


def resolve_broadcast(
    shape0: tuple[int, int], shape1: tuple[int, int]
) -> Optional[tuple[tuple[int, int], BroadcastPattern, BroadcastPattern]]:
    """
    Output shape and operand patterns of a broadcast binary operation.

    Returns
    -------
    Optional[tuple]
        ``(output_shape, pattern0, pattern1)``, or None if the shapes are not
        compatible under any pattern.
    """
    output = (max(shape0[0], shape1[0]), max(shape0[1], shape1[1]))
    p0 = classify_operand(shape0, output)
    p1 = classify_operand(shape1, output)
    if p0 is None or p1 is None:
        return None
    if BroadcastPattern.EXACT not in (p0, p1):
        return None
    return output, p0, p1


def expand_operand(
    operand: Matrix, pattern: BroadcastPattern, output: tuple[int, int]
) -> np.ndarray:
    """Expand the operand's data to `output` following `pattern`."""
    data = operand.data
    if pattern is BroadcastPattern.EXACT:
        return data
    if pattern is BroadcastPattern.TILING:
        return np.repeat(data, output[1] // operand.cols, axis=1)
    return np.broadcast_to(data, output)


def broadcast_combine(
    out: Matrix, a: Matrix, b: Matrix, subtract: bool, allow_tiling: bool
) -> None:
    """
    ``out = a + b`` (or ``a - b``) under the broadcast patterns.

    Raises
    ------
    LogicError
        If the shapes are incompatible, if `out` does not have the output
        shape, or if tiling is needed but not allowed.
    """
    check_devices("broadcast_combine", out, a, b)
    resolved = resolve_broadcast(a.shape, b.shape)
    if resolved is None:
        raise LogicError(
            f"Broadcast operands of shape {a.shape} and {b.shape} are not compatible"
        )
    output, p0, p1 = resolved
    if not allow_tiling and BroadcastPattern.TILING in (p0, p1):
        raise LogicError("Column tiling is not allowed for nodes with a minibatch layout")
    if out.shape != output:
        raise LogicError(
            f"Broadcast result of shape {output} cannot be written into {out.shape}"
        )
    lhs = expand_operand(a, p0, output)
    rhs = expand_operand(b, p1, output)
    out.copy_from_numpy(np.subtract(lhs, rhs) if subtract else np.add(lhs, rhs))


def accumulate_broadcast_gradient(
    input_grad: Matrix, grad: Matrix, pattern: BroadcastPattern, sign: float
) -> None:
    """
    Reduce the output gradient `grad` onto an operand's gradient.

    ``input_grad += sign * reduce(grad)``, where the reduction undoes the
    expansion of `pattern`.
    """
    if pattern is BroadcastPattern.EXACT:
        input_grad.scale_and_add(sign, grad)
    elif pattern is BroadcastPattern.SCALAR:
        input_grad += sign * grad.sum_of_elements()
    elif pattern is BroadcastPattern.COLUMN_VECTOR:
        ones = Matrix.ones(grad.cols, 1, device=grad.device, dtype=grad.dtype)
        Matrix.multiply_and_weighted_add(sign, grad, False, ones, False, 1.0, input_grad)
    elif pattern is BroadcastPattern.ROW_VECTOR:
        ones = Matrix.ones(1, grad.rows, device=grad.device, dtype=grad.dtype)
        Matrix.multiply_and_weighted_add(sign, ones, False, grad, False, 1.0, input_grad)
    elif pattern is BroadcastPattern.TILING:
        ratio = grad.cols // input_grad.cols
        ones = Matrix.ones(ratio, 1, device=grad.device, dtype=grad.dtype)
        for i in range(input_grad.cols):
            Matrix.multiply_and_weighted_add(
                sign,
                grad.column_slice(i * ratio, ratio),
                False,
                ones,
                False,
                1.0,
                input_grad.column_slice(i, 1),
            )
    else:
        raise LogicError(f"Unknown broadcast pattern {pattern}")


def validate_broadcast_binary(
    node: "ComputationNode", is_final_pass: bool, allow_broadcast: bool = True
) -> None:
    """
    Shared validation of broadcast binary nodes.

    Inferable operands with unknown dimensions take them from their peer.
    The node is resized to the output shape; in the final pass, unresolved
    or incompatible shapes and tiling under a minibatch layout raise.

    Raises
    ------
    ShapeError
        In the final pass, for unresolved dimensions, incompatible shapes,
        or tiling on a node that carries a minibatch layout.
    """
    a, b = node.input(0), node.input(1)
    if 0 in a.shape and 0 not in b.shape:
        a.infer_dims(b.rows, b.cols)
    if 0 in b.shape and 0 not in a.shape:
        b.infer_dims(a.rows, a.cols)

    node.infer_layout_from_inputs(is_final_pass)
    node.value.resize(max(a.rows, b.rows), max(a.cols, b.cols))

    if not is_final_pass:
        return
    if 0 in a.shape or 0 in b.shape:
        raise node.shape_error("operand dimensions are not resolved")
    if not allow_broadcast:
        if a.shape != b.shape:
            raise node.shape_error("operands must have identical dimensions")
        return
    resolved = resolve_broadcast(a.shape, b.shape)
    if resolved is None:
        raise node.shape_error("operand dimensions are not compatible for broadcasting")
    if node.layout is not None and BroadcastPattern.TILING in resolved[1:]:
        raise node.shape_error(
            "column tiling is not supported for nodes with a minibatch layout"
        )


def backprop_broadcast(
    node: "ComputationNode", input_index: int, frame: FrameRange, sign: float
) -> None:
    """
    Accumulate the gradient of one operand of a broadcast binary node.

    Padding columns of the node's gradient are masked before any reduction
    over frames, including a frame-local EXACT match of a static operand.
    """
    operand = node.input(input_index)
    input_grad = operand.gradient_slice(frame)
    grad = node.gradient_slice(frame)
    pattern = classify_operand(input_grad.shape, grad.shape)
    if pattern is None:
        raise LogicError(
            f"{node.name}: gradient of shape {grad.shape} cannot be reduced onto "
            f"{input_grad.shape}"
        )
    if pattern is BroadcastPattern.TILING and node.layout is not None:
        raise LogicError("Column tiling is not allowed for nodes with a minibatch layout")
    if pattern in REDUCES_OVER_FRAMES or reduces_over_frames(node, operand):
        grad = node.mask_gradient_gaps(frame)
    accumulate_broadcast_gradient(input_grad, grad, pattern, sign)
