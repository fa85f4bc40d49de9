"""
Scratch-matrix pool.

Nodes need temporaries (inverse norms, reshaped operands, reduction
buffers) only for the duration of one forward or backward pass. Instead of
keeping them as permanent fields, nodes lease them from a `ScratchPool`
shared by every node of a graph and return them as soon as the pass is over.

Contract
--------
- A buffer is handed out to at most one lease at a time.
- Only a currently leased buffer may be released, and only once.
- Released buffers are reused by later requests; their previous contents
  are not cleared, so a lease must fully overwrite what it reads.

Violations raise `ScratchLeaseError`; they are programming errors and are
never recovered from.
"""

from __future__ import annotations

from typing import Any, Optional

import numpy as np

from ..domain._errors import ScratchLeaseError
from ..domain.device._device import Device
from ..domain.device._device_protocol import DeviceLike
from ._matrix import Matrix, resolve_element_type


class ScratchPool:
    """
    Per-graph registry of reusable scratch matrices.

    Parameters
    ----------
    device : DeviceLike, optional
        Placement of buffers created by this pool. Defaults to the CPU.
    dtype : Any, optional
        Default element type of created buffers. Defaults to float32.
    """

    def __init__(
        self, device: Optional[DeviceLike] = None, dtype: Any = np.float32
    ) -> None:
        self._device = device if device is not None else Device("cpu")
        self._dtype = resolve_element_type(dtype)
        self._free: list[Matrix] = []
        self._leased: dict[int, tuple[Matrix, Optional[str]]] = {}
        self._num_allocated = 0

    @property
    def num_leased(self) -> int:
        return len(self._leased)

    @property
    def num_free(self) -> int:
        return len(self._free)

    @property
    def num_allocated(self) -> int:
        """Total number of buffers ever created by this pool."""
        return self._num_allocated

    def is_leased(self, matrix: Matrix) -> bool:
        return id(matrix) in self._leased

    def request(
        self,
        owner: Optional[str] = None,
        *,
        dtype: Any = None,
        device: Optional[DeviceLike] = None,
    ) -> Matrix:
        """
        Lease a scratch matrix.

        A released buffer with the requested element type and placement is
        reused when available; otherwise a new empty matrix is created.

        Parameters
        ----------
        owner : Optional[str], optional
            Name of the leasing node, recorded for error messages.
        dtype : Any, optional
            Element type. Defaults to the pool's.
        device : DeviceLike, optional
            Placement. Defaults to the pool's.

        Returns
        -------
        Matrix
            An owning matrix of unspecified shape and contents.
        """
        dt = self._dtype if dtype is None else resolve_element_type(dtype)
        dev = self._device if device is None else device

        for i, candidate in enumerate(self._free):
            if candidate.dtype == dt and candidate.device == dev:
                matrix = self._free.pop(i)
                break
        else:
            matrix = Matrix(0, 0, device=dev, dtype=dt)
            self._num_allocated += 1

        for other, other_owner in self._leased.values():
            if matrix.num_elements and other.shares_storage_with(matrix):
                raise ScratchLeaseError(
                    f"pool buffer aliases a buffer leased by {other_owner}", owner
                )
        self._leased[id(matrix)] = (matrix, owner)
        return matrix

    def release(self, matrix: Matrix, owner: Optional[str] = None) -> None:
        """
        Return a leased matrix to the pool.

        Raises
        ------
        ScratchLeaseError
            If `matrix` is not currently leased from this pool, or was leased
            by a different owner.
        """
        entry = self._leased.get(id(matrix))
        if entry is None or entry[0] is not matrix:
            raise ScratchLeaseError(
                "released a matrix that is not currently leased from this pool", owner
            )
        if owner is not None and entry[1] is not None and entry[1] != owner:
            raise ScratchLeaseError(
                f"released a matrix leased by {entry[1]}", owner
            )
        del self._leased[id(matrix)]
        self._free.append(matrix)

    def assert_all_released(self) -> None:
        """Raise if any lease is still outstanding."""
        if self._leased:
            owners = sorted({str(o) for _, o in self._leased.values()})
            raise ScratchLeaseError(
                f"{len(self._leased)} scratch matrices still leased by {', '.join(owners)}"
            )
