"""
Concrete Matrix implementation (NumPy backend).

This module provides `Matrix`, the two-dimensional tensor primitive the node
catalogue computes with. It satisfies the domain-level `IMatrix` protocol and
stores its elements in a column-major (Fortran-ordered) NumPy array so that
column slices, which is how frames of a minibatch are addressed, are
contiguous views on the parent storage.

Design notes
------------
- Arithmetic follows an "assign into self" style: `assign_*` methods overwrite
  the receiver (resizing it first when it owns its storage), `add_*` methods
  accumulate into it. Both return the receiver.
- Column slices are views: writing into a slice writes into the parent.
  Views cannot be resized.
- Reshapes are column-major, so a reshaped column keeps its element order.
- Numeric work is only implemented for CPU placements. A matrix may be moved
  to a CUDA descriptor, but any arithmetic on it raises
  `DeviceNotSupportedError`.
- The storage discriminator records whether a matrix is considered dense or
  sparse; the numeric contents are always kept losslessly.
"""

from __future__ import annotations

from typing import Any, Optional, Union

import numpy as np
from typing_extensions import Self

from ..domain._errors import (
    DeviceMismatchError,
    DeviceNotSupportedError,
    InvalidArgumentError,
    LogicError,
)
from ..domain._matrix import IMatrix, StorageFormat
from ..domain.device._device import Device
from ..domain.device._device_protocol import DeviceLike

Number = Union[int, float]

_SUPPORTED_DTYPES = (np.dtype(np.float32), np.dtype(np.float64))


def resolve_element_type(dtype: Any) -> np.dtype:
    """
    Normalize and validate an element type.

    Parameters
    ----------
    dtype : Any
        Anything accepted by `numpy.dtype`.

    Returns
    -------
    np.dtype
        `float32` or `float64`.

    Raises
    ------
    InvalidArgumentError
        If the element type is not float32 or float64.
    """
    try:
        dt = np.dtype(dtype)
    except TypeError as e:
        raise InvalidArgumentError(f"Unsupported element type {dtype!r}") from e
    if dt not in _SUPPORTED_DTYPES:
        raise InvalidArgumentError(
            f"Unsupported element type {dt}; expected float32 or float64"
        )
    return dt


def check_devices(op: str, *mats: "Matrix") -> None:
    """
    Ensure every operand lives on the same CPU placement.

    Raises
    ------
    DeviceMismatchError
        If two operands are placed on different devices.
    DeviceNotSupportedError
        If the common placement is not the CPU.
    """
    first = mats[0].device
    for m in mats[1:]:
        if m.device != first:
            raise DeviceMismatchError(str(first), str(m.device))
    if not first.is_cpu():
        raise DeviceNotSupportedError(op, str(first))


class Matrix(IMatrix):
    """
    Column-major 2-D NumPy matrix with device placement and storage format.

    Parameters
    ----------
    rows : int, optional
        Initial row count. Defaults to 0.
    cols : int, optional
        Initial column count. Defaults to 0.
    device : DeviceLike, optional
        Placement. Defaults to the CPU.
    dtype : Any, optional
        Element type, float32 (default) or float64.
    storage : StorageFormat, optional
        Storage discriminator. Defaults to dense.

    Notes
    -----
    A freshly constructed matrix is zero-filled.
    """

    def __init__(
        self,
        rows: int = 0,
        cols: int = 0,
        *,
        device: Optional[DeviceLike] = None,
        dtype: Any = np.float32,
        storage: StorageFormat = StorageFormat.DENSE,
    ) -> None:
        if rows < 0 or cols < 0:
            raise InvalidArgumentError(f"Negative matrix shape ({rows}, {cols})")
        self._dtype = resolve_element_type(dtype)
        self._device: DeviceLike = device if device is not None else Device("cpu")
        self._storage = storage
        self._data = np.zeros((rows, cols), dtype=self._dtype, order="F")
        self._is_view = False

    # ------------------------------------------------------------------
    # Construction helpers
    # ------------------------------------------------------------------
    @classmethod
    def from_numpy(
        cls,
        arr: Any,
        *,
        device: Optional[DeviceLike] = None,
        dtype: Any = None,
        storage: StorageFormat = StorageFormat.DENSE,
    ) -> "Matrix":
        """
        Build an owning matrix from array-like data.

        Scalars become 1x1 matrices and 1-D arrays become column vectors.

        Parameters
        ----------
        arr : Any
            Array-like source.
        device : DeviceLike, optional
            Placement. Defaults to the CPU.
        dtype : Any, optional
            Element type. Defaults to the source dtype when it is float32 or
            float64, float32 otherwise.
        storage : StorageFormat, optional
            Storage discriminator.
        """
        src = np.asarray(arr)
        if dtype is None:
            dtype = src.dtype if src.dtype in _SUPPORTED_DTYPES else np.float32
        if src.ndim == 0:
            src = src.reshape(1, 1)
        elif src.ndim == 1:
            src = src.reshape(-1, 1)
        elif src.ndim != 2:
            raise InvalidArgumentError(f"Matrix data must be 2-D, got {src.ndim}-D")
        m = cls(*src.shape, device=device, dtype=dtype, storage=storage)
        m._data[...] = src
        return m

    @classmethod
    def ones(
        cls,
        rows: int,
        cols: int,
        *,
        device: Optional[DeviceLike] = None,
        dtype: Any = np.float32,
    ) -> "Matrix":
        m = cls(rows, cols, device=device, dtype=dtype)
        m._data.fill(1)
        return m

    @classmethod
    def _wrap(
        cls, data: np.ndarray, device: DeviceLike, storage: StorageFormat
    ) -> "Matrix":
        """Wrap an existing ndarray as a non-owning view."""
        m = cls.__new__(cls)
        m._dtype = data.dtype
        m._device = device
        m._storage = storage
        m._data = data
        m._is_view = True
        return m

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------
    @property
    def rows(self) -> int:
        return int(self._data.shape[0])

    @property
    def cols(self) -> int:
        return int(self._data.shape[1])

    @property
    def shape(self) -> tuple[int, int]:
        return (self.rows, self.cols)

    @property
    def num_elements(self) -> int:
        return self.rows * self.cols

    @property
    def dtype(self) -> np.dtype:
        return self._dtype

    @property
    def device(self) -> DeviceLike:
        return self._device

    @property
    def storage(self) -> StorageFormat:
        return self._storage

    @property
    def is_view(self) -> bool:
        return self._is_view

    @property
    def data(self) -> np.ndarray:
        """
        Raw column-major storage.

        Returns
        -------
        np.ndarray
            The backing array (not a copy). Writes are visible to the matrix
            and to every view sharing its storage.
        """
        return self._data

    def shares_storage_with(self, other: "Matrix") -> bool:
        """True if both matrices may read or write the same memory."""
        return bool(np.shares_memory(self._data, other._data))

    def __repr__(self) -> str:
        kind = "view" if self._is_view else "owning"
        return (
            f"Matrix({self.rows} x {self.cols}, {self._dtype}, {self._device}, "
            f"{self._storage.value}, {kind})"
        )

    # ------------------------------------------------------------------
    # Shape management
    # ------------------------------------------------------------------
    def resize(self, rows: int, cols: int) -> Self:
        """
        Change the shape of this matrix.

        Contents are preserved only when the shape does not change; otherwise
        the storage is reallocated and zero-filled.

        Raises
        ------
        LogicError
            If this matrix is a view and the shape would change.
        """
        if rows < 0 or cols < 0:
            raise InvalidArgumentError(f"Negative matrix shape ({rows}, {cols})")
        if (rows, cols) == self.shape:
            return self
        if self._is_view:
            raise LogicError(
                f"Cannot resize a matrix view from {self.shape} to {(rows, cols)}"
            )
        self._data = np.zeros((rows, cols), dtype=self._dtype, order="F")
        return self

    def reshaped(self, rows: int, cols: int) -> "Matrix":
        """
        Column-major reinterpretation of the same elements.

        Returns a view when the storage is contiguous, a copy otherwise.

        Raises
        ------
        LogicError
            If the element count changes.
        """
        if rows * cols != self.num_elements:
            raise LogicError(
                f"Cannot reshape {self.shape} into {(rows, cols)}: element count differs"
            )
        return Matrix._wrap(
            self._data.reshape((rows, cols), order="F"), self._device, self._storage
        )

    def column_slice(self, start: int, num_cols: int) -> "Matrix":
        """
        Return a view on columns ``[start, start + num_cols)``.

        Sparse matrices are switched to dense first because column views are
        only defined for dense storage.

        Raises
        ------
        LogicError
            If the range exceeds the column count.
        """
        if start < 0 or num_cols < 0 or start + num_cols > self.cols:
            raise LogicError(
                f"Column slice [{start}, {start + num_cols}) out of range for "
                f"{self.cols} columns"
            )
        if self._storage.is_sparse:
            self._storage = StorageFormat.DENSE
        return Matrix._wrap(
            self._data[:, start : start + num_cols], self._device, self._storage
        )

    # ------------------------------------------------------------------
    # Host interop
    # ------------------------------------------------------------------
    def to_numpy(self) -> np.ndarray:
        return np.array(self._data, dtype=self._dtype, order="C")

    def copy_from_numpy(self, arr: Any) -> None:
        src = np.asarray(arr, dtype=self._dtype)
        if src.ndim == 0:
            src = src.reshape(1, 1)
        elif src.ndim == 1:
            src = src.reshape(-1, 1)
        self._assign(src)

    def _assign(self, result: np.ndarray) -> Self:
        """Write `result` into self, resizing owning matrices."""
        if result.shape != self.shape:
            if self._is_view:
                raise LogicError(
                    f"Cannot assign a {result.shape} result into a {self.shape} view"
                )
            self._data = np.zeros(result.shape, dtype=self._dtype, order="F")
        self._data[...] = result
        return self

    # ------------------------------------------------------------------
    # Placement / storage
    # ------------------------------------------------------------------
    def move_to(self, device: DeviceLike) -> None:
        """Record a new placement for this matrix."""
        self._device = device

    def switch_to_storage(self, storage: StorageFormat) -> None:
        """Change the storage discriminator; values are kept unchanged."""
        self._storage = storage

    # ------------------------------------------------------------------
    # Whole-matrix updates
    # ------------------------------------------------------------------
    def fill(self, value: float) -> None:
        check_devices("fill", self)
        self._data.fill(value)

    def set_value(self, other: Union["Matrix", Number]) -> Self:
        """Copy `other` (matrix or scalar) into self."""
        if isinstance(other, Matrix):
            check_devices("set_value", self, other)
            return self._assign(other._data)
        check_devices("set_value", self)
        self._data.fill(other)
        return self

    def _operand(self, op: str, other: Union["Matrix", Number]) -> Any:
        if isinstance(other, Matrix):
            check_devices(op, self, other)
            if other.shape != self.shape:
                raise LogicError(
                    f"{op}: shape mismatch {self.shape} vs {other.shape}"
                )
            return other._data
        check_devices(op, self)
        return other

    def __iadd__(self, other: Union["Matrix", Number]) -> Self:
        self._data += self._operand("add", other)
        return self

    def __isub__(self, other: Union["Matrix", Number]) -> Self:
        self._data -= self._operand("subtract", other)
        return self

    def scale_and_add(self, alpha: float, a: "Matrix") -> Self:
        """self += alpha * a"""
        self._data += alpha * self._operand("scale_and_add", a)
        return self

    def mask_columns(self, mask: np.ndarray, value: float = 0.0) -> Self:
        """
        Set every column flagged in `mask` to `value`.

        Parameters
        ----------
        mask : np.ndarray
            Boolean vector of length `cols`.
        """
        check_devices("mask_columns", self)
        mask = np.asarray(mask, dtype=bool)
        if mask.shape != (self.cols,):
            raise LogicError(
                f"Column mask of shape {mask.shape} does not match {self.cols} columns"
            )
        self._data[:, mask] = value
        return self

    # ------------------------------------------------------------------
    # Reductions and scalars
    # ------------------------------------------------------------------
    def get_00_element(self) -> float:
        if self.num_elements == 0:
            raise LogicError("get_00_element on an empty matrix")
        return float(self._data[0, 0])

    def sum_of_elements(self) -> float:
        check_devices("sum_of_elements", self)
        return float(self._data.sum())

    def assign_sum_of_elements(self, a: "Matrix") -> Self:
        check_devices("assign_sum_of_elements", self, a)
        return self._assign(np.array([[a._data.sum()]]))

    def assign_column_sums_of(self, a: "Matrix") -> Self:
        """self = 1 x n row of per-column sums of `a`."""
        check_devices("assign_column_sums_of", self, a)
        return self._assign(a._data.sum(axis=0, keepdims=True))

    @staticmethod
    def inner_product_of_matrices(a: "Matrix", b: "Matrix") -> float:
        """Sum of the elementwise product of `a` and `b`."""
        check_devices("inner_product_of_matrices", a, b)
        if a.shape != b.shape:
            raise LogicError(
                f"inner_product_of_matrices: shape mismatch {a.shape} vs {b.shape}"
            )
        return float((a._data * b._data).sum())

    # ------------------------------------------------------------------
    # Elementwise arithmetic
    # ------------------------------------------------------------------
    def _same_shape(self, op: str, a: "Matrix", b: "Matrix") -> None:
        check_devices(op, self, a, b)
        if a.shape != b.shape:
            raise LogicError(f"{op}: shape mismatch {a.shape} vs {b.shape}")

    def assign_sum_of(self, a: "Matrix", b: "Matrix") -> Self:
        self._same_shape("assign_sum_of", a, b)
        return self._assign(a._data + b._data)

    def assign_difference_of(self, a: "Matrix", b: "Matrix") -> Self:
        self._same_shape("assign_difference_of", a, b)
        return self._assign(a._data - b._data)

    def assign_element_product_of(self, a: "Matrix", b: "Matrix") -> Self:
        self._same_shape("assign_element_product_of", a, b)
        return self._assign(a._data * b._data)

    def add_element_product_of(self, a: "Matrix", b: "Matrix") -> Self:
        """self += a .* b"""
        self._same_shape("add_element_product_of", a, b)
        self._data += self._operand("add_element_product_of", a) * b._data
        return self

    def element_multiply_with(self, a: "Matrix") -> Self:
        """self .*= a"""
        self._data *= self._operand("element_multiply_with", a)
        return self

    def assign_element_inverse_of(self, a: "Matrix") -> Self:
        check_devices("assign_element_inverse_of", self, a)
        with np.errstate(divide="ignore"):
            return self._assign(1.0 / a._data)

    def assign_negation_of(self, a: "Matrix") -> Self:
        check_devices("assign_negation_of", self, a)
        return self._assign(0 - a._data)

    def assign_scaled_of(self, alpha: float, a: "Matrix") -> Self:
        check_devices("assign_scaled_of", self, a)
        return self._assign(alpha * a._data)

    def row_element_multiply_with(self, v: "Matrix") -> Self:
        """Scale column j of self by ``v[0, j]`` (`v` is a 1 x cols row vector)."""
        check_devices("row_element_multiply_with", self, v)
        if v.shape != (1, self.cols):
            raise LogicError(
                f"row_element_multiply_with expects a 1 x {self.cols} row vector, got {v.shape}"
            )
        self._data *= v._data
        return self

    def column_element_multiply_with(self, v: "Matrix") -> Self:
        """Scale row i of self by ``v[i, 0]`` (`v` is a rows x 1 column vector)."""
        check_devices("column_element_multiply_with", self, v)
        if v.shape != (self.rows, 1):
            raise LogicError(
                f"column_element_multiply_with expects a {self.rows} x 1 column vector, got {v.shape}"
            )
        self._data *= v._data
        return self

    def assign_inner_product_of(self, a: "Matrix", b: "Matrix", col_wise: bool) -> Self:
        """
        Column-wise (1 x n) or row-wise (m x 1) inner products of `a` and `b`.
        """
        self._same_shape("assign_inner_product_of", a, b)
        axis = 0 if col_wise else 1
        return self._assign((a._data * b._data).sum(axis=axis, keepdims=True))

    def assign_vector_norm2_of(self, a: "Matrix", col_wise: bool = True) -> Self:
        """Euclidean norm of every column (1 x n) or row (m x 1) of `a`."""
        check_devices("assign_vector_norm2_of", self, a)
        axis = 0 if col_wise else 1
        return self._assign(np.sqrt((a._data * a._data).sum(axis=axis, keepdims=True)))

    def assign_transpose_of(self, a: "Matrix") -> Self:
        check_devices("assign_transpose_of", self, a)
        return self._assign(a._data.T)

    def add_transpose_of(self, a: "Matrix") -> Self:
        """self += a.T"""
        check_devices("add_transpose_of", self, a)
        if a.shape[::-1] != self.shape:
            raise LogicError(
                f"add_transpose_of: transpose of {a.shape} does not match {self.shape}"
            )
        self._data += a._data.T
        return self

    def assign_row_of(self, a: "Matrix", row: int) -> Self:
        """self = row `row` of `a` as a 1 x n matrix."""
        check_devices("assign_row_of", self, a)
        return self._assign(a._data[row : row + 1, :])

    # ------------------------------------------------------------------
    # Strided gather / scatter
    # ------------------------------------------------------------------
    def assign_column_stride_of(self, a: "Matrix", offset: int, stride: int) -> Self:
        """self = columns ``offset, offset + stride, ...`` of `a`."""
        check_devices("assign_column_stride_of", self, a)
        return self._assign(a._data[:, offset::stride])

    def assign_row_stride_of(self, a: "Matrix", offset: int, stride: int) -> Self:
        """self = rows ``offset, offset + stride, ...`` of `a`."""
        check_devices("assign_row_stride_of", self, a)
        return self._assign(a._data[offset::stride, :])

    def add_to_column_stride(self, src: "Matrix", offset: int, stride: int) -> Self:
        """Add `src` into columns ``offset, offset + stride, ...`` of self."""
        check_devices("add_to_column_stride", self, src)
        target = self._data[:, offset::stride]
        if target.shape != src.shape:
            raise LogicError(
                f"add_to_column_stride: {src.shape} does not match strided {target.shape}"
            )
        self._data[:, offset::stride] += src._data
        return self

    def add_to_row_stride(self, src: "Matrix", offset: int, stride: int) -> Self:
        """Add `src` into rows ``offset, offset + stride, ...`` of self."""
        check_devices("add_to_row_stride", self, src)
        target = self._data[offset::stride, :]
        if target.shape != src.shape:
            raise LogicError(
                f"add_to_row_stride: {src.shape} does not match strided {target.shape}"
            )
        self._data[offset::stride, :] += src._data
        return self

    # ------------------------------------------------------------------
    # Matrix products
    # ------------------------------------------------------------------
    @staticmethod
    def multiply_and_weighted_add(
        alpha: float,
        a: "Matrix",
        transpose_a: bool,
        b: "Matrix",
        transpose_b: bool,
        beta: float,
        c: "Matrix",
    ) -> None:
        """
        c = alpha * op(a) @ op(b) + beta * c

        Raises
        ------
        LogicError
            If the inner dimensions or the shape of `c` do not match.
        """
        check_devices("multiply_and_weighted_add", a, b, c)
        ad = a._data.T if transpose_a else a._data
        bd = b._data.T if transpose_b else b._data
        if ad.shape[1] != bd.shape[0]:
            raise LogicError(
                f"Inner matrix dimensions do not match: {ad.shape} x {bd.shape}"
            )
        out_shape = (ad.shape[0], bd.shape[1])
        if c.shape != out_shape:
            raise LogicError(
                f"Product of shape {out_shape} cannot accumulate into {c.shape}"
            )
        product = ad @ bd
        if beta == 0:
            c._data[...] = alpha * product
        else:
            if beta != 1:
                c._data *= beta
            c._data += alpha * product if alpha != 1 else product

    @staticmethod
    def multiply_and_add(
        a: "Matrix", transpose_a: bool, b: "Matrix", transpose_b: bool, c: "Matrix"
    ) -> None:
        """c += op(a) @ op(b)"""
        Matrix.multiply_and_weighted_add(1.0, a, transpose_a, b, transpose_b, 1.0, c)

    def assign_product_of(
        self, a: "Matrix", transpose_a: bool, b: "Matrix", transpose_b: bool
    ) -> Self:
        check_devices("assign_product_of", self, a, b)
        ad = a._data.T if transpose_a else a._data
        bd = b._data.T if transpose_b else b._data
        if ad.shape[1] != bd.shape[0]:
            raise LogicError(
                f"Inner matrix dimensions do not match: {ad.shape} x {bd.shape}"
            )
        return self._assign(ad @ bd)

    def assign_khatri_rao_product_of(self, a: "Matrix", b: "Matrix") -> Self:
        """
        Column-wise Kronecker product.

        Column k of the result holds ``a[i, k] * b[j, k]`` at row
        ``j * a.rows + i``.
        """
        check_devices("assign_khatri_rao_product_of", self, a, b)
        if a.cols != b.cols:
            raise LogicError(
                f"Khatri-Rao product needs equal column counts, got {a.cols} and {b.cols}"
            )
        prod = np.einsum("jk,ik->jik", b._data, a._data)
        return self._assign(prod.reshape(a.rows * b.rows, a.cols))

    def add_column_reshape_product_of(
        self, a: "Matrix", b: "Matrix", transpose_a_column: bool
    ) -> Self:
        """
        Accumulate the reshape-and-multiply of each column pair.

        For every column k, ``a[:, k]`` is reshaped column-major to
        ``self.rows x b.rows`` (or ``b.rows x self.rows`` when
        `transpose_a_column` is set, then transposed) and multiplied with
        ``b[:, k]``; the result is added into ``self[:, k]``.
        """
        check_devices("add_column_reshape_product_of", self, a, b)
        n = self.cols
        if a.cols != n or b.cols != n or a.rows != self.rows * b.rows:
            raise LogicError(
                f"add_column_reshape_product_of: incompatible shapes "
                f"{self.shape}, {a.shape}, {b.shape}"
            )
        if transpose_a_column:
            blocks = a._data.reshape((b.rows, self.rows, n), order="F")
            self._data += np.einsum("ijk,ik->jk", blocks, b._data)
        else:
            blocks = a._data.reshape((self.rows, b.rows, n), order="F")
            self._data += np.einsum("ijk,jk->ik", blocks, b._data)
        return self

    # ------------------------------------------------------------------
    # Diagonal helpers
    # ------------------------------------------------------------------
    def assign_diagonal_of(self, a: "Matrix") -> Self:
        """self = 1 x n with ``self[0, j] = a[j mod rows, j]``."""
        check_devices("assign_diagonal_of", self, a)
        cols = np.arange(a.cols)
        return self._assign(a._data[cols % a.rows, cols].reshape(1, -1))

    def add_diagonal_values(self, d: "Matrix") -> Self:
        """``self[j mod rows, j] += d[0, j]`` for every column j."""
        check_devices("add_diagonal_values", self, d)
        if d.shape != (1, self.cols):
            raise LogicError(
                f"add_diagonal_values expects a 1 x {self.cols} row, got {d.shape}"
            )
        cols = np.arange(self.cols)
        contribution = np.zeros_like(self._data)
        contribution[cols % self.rows, cols] = d._data[0]
        self._data += contribution
        return self

    # ------------------------------------------------------------------
    # Shifted helpers for negative sampling
    # ------------------------------------------------------------------
    @staticmethod
    def _shifted_columns(data: np.ndarray, shift: int) -> np.ndarray:
        """Columns of `data` taken at ``(j + shift) mod n``."""
        n = data.shape[1]
        shift %= max(n, 1)
        if shift == 0:
            return data
        return data[:, (np.arange(n) + shift) % n]

    def assign_element_product_of_with_shift(
        self, a: "Matrix", b: "Matrix", shift: int
    ) -> Self:
        """``self[0, j] = a[0, j] * b[0, (j + shift) mod n]`` for row vectors."""
        self._same_shape("assign_element_product_of_with_shift", a, b)
        return self._assign(a._data * self._shifted_columns(b._data, shift))

    @staticmethod
    def conduct_row_element_multiply_with_shift(
        a: "Matrix", b: "Matrix", c: "Matrix", shift: int, first_fixed: bool
    ) -> None:
        """
        Row-vector scaling of the columns of `b` with a circular shift.

        With `first_fixed`: ``c[:, j] = a[0, j] * b[:, (j + shift) mod n]``.
        Otherwise: ``c[:, j] = a[0, (j + shift) mod n] * b[:, j]``.
        """
        check_devices("conduct_row_element_multiply_with_shift", a, b, c)
        if a.shape != (1, b.cols):
            raise LogicError(
                f"Expected a 1 x {b.cols} row vector, got {a.shape}"
            )
        if first_fixed:
            c._assign(a._data * Matrix._shifted_columns(b._data, shift))
        else:
            c._assign(Matrix._shifted_columns(a._data, shift) * b._data)

    def assign_inner_product_of_with_shift_neg(
        self, a: "Matrix", b: "Matrix", shift: int, neg_count: int
    ) -> Self:
        """
        (neg_count + 1) x n column-wise inner products against shifted columns.

        Row 0 pairs ``a[:, j]`` with ``b[:, j]``; row m >= 1 pairs it with
        ``b[:, (j + shift + m - 1) mod n]``.
        """
        self._same_shape("assign_inner_product_of_with_shift_neg", a, b)
        rows = [(a._data * b._data).sum(axis=0)]
        for m in range(1, neg_count + 1):
            shifted = self._shifted_columns(b._data, shift + m - 1)
            rows.append((a._data * shifted).sum(axis=0))
        return self._assign(np.stack(rows, axis=0))

    def assign_shift_neg_of(self, v: "Matrix", shift: int, neg_count: int) -> Self:
        """
        (neg_count + 1) x n stack of a row vector and its shifted copies.

        Row 0 is `v`; row m >= 1 is `v` taken at ``(j + shift + m - 1) mod n``.
        """
        check_devices("assign_shift_neg_of", self, v)
        if v.rows != 1:
            raise LogicError(f"assign_shift_neg_of expects a row vector, got {v.shape}")
        rows = [v._data[0]]
        for m in range(1, neg_count + 1):
            rows.append(self._shifted_columns(v._data, shift + m - 1)[0])
        return self._assign(np.stack(rows, axis=0))
