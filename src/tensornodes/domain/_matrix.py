"""
Matrix interface definitions.

This module defines the domain-level contract of the tensor primitive the
node catalogue computes with: a two-dimensional numeric array with a device
placement and a storage discriminator. Structural typing keeps the node
layer independent of the concrete backend; the NumPy implementation lives in
`tensornodes.infrastructure._matrix`.

Notes
-----
Only the surface the node catalogue relies on is captured here. Arithmetic
primitives follow the "assign / add into self" style: results are written
into the receiving matrix, which is resized first when it owns its storage.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Protocol, runtime_checkable

from .device._device_protocol import DeviceLike


class StorageFormat(Enum):
    """
    Storage discriminator of a matrix.

    Attributes
    ----------
    DENSE : StorageFormat
        Regular dense storage.
    SPARSE_CSC : StorageFormat
        Compressed sparse column data (typical for one-hot inputs).
    SPARSE_BLOCK_COL : StorageFormat
        Block-sparse-column gradients produced by products with sparse inputs.
    """

    DENSE = "dense"
    SPARSE_CSC = "sparse_csc"
    SPARSE_BLOCK_COL = "sparse_block_col"

    @property
    def is_sparse(self) -> bool:
        return self is not StorageFormat.DENSE


@runtime_checkable
class IMatrix(Protocol):
    """
    Two-dimensional tensor contract.

    Notes
    -----
    - Row and column counts are never negative.
    - Views returned by `column_slice` share storage with their parent and
      cannot be resized.
    """

    @property
    def rows(self) -> int:
        """Number of rows."""
        ...

    @property
    def cols(self) -> int:
        """Number of columns."""
        ...

    @property
    def shape(self) -> tuple[int, int]:
        """(rows, cols)."""
        ...

    @property
    def device(self) -> DeviceLike:
        """Placement of the matrix."""
        ...

    @property
    def storage(self) -> StorageFormat:
        """Storage discriminator."""
        ...

    @property
    def dtype(self) -> Any:
        """Element type."""
        ...

    def resize(self, rows: int, cols: int) -> Any:
        """
        Change the shape of an owning matrix, reallocating when needed.

        Raises
        ------
        LogicError
            If the matrix is a view.
        """
        ...

    def column_slice(self, start: int, num_cols: int) -> "IMatrix":
        """Return a view on `num_cols` columns starting at `start`."""
        ...

    def to_numpy(self) -> Any:
        """Return a host copy of the contents."""
        ...

    def copy_from_numpy(self, arr: Any) -> None:
        """Overwrite contents (and shape, for owning matrices) from an array."""
        ...

    def fill(self, value: float) -> None:
        """Set every element to `value`."""
        ...

    def sum_of_elements(self) -> float:
        """Sum of every element."""
        ...

    def move_to(self, device: DeviceLike) -> None:
        """Change the placement of the matrix."""
        ...

    def switch_to_storage(self, storage: StorageFormat) -> None:
        """Change the storage representation without changing values."""
        ...
