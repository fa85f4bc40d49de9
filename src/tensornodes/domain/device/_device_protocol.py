"""
Structural contract for device descriptors.

Domain code types placements against `DeviceLike` instead of the concrete
`Device` class, so alternative descriptors can be passed to `move_to` and
compared by the tensor primitive without class-identity checks.
"""

from __future__ import annotations

from typing import Optional, Protocol, runtime_checkable


@runtime_checkable
class DeviceLike(Protocol):
    """
    Duck-typed device contract.

    Any object exposing these members can describe a placement.
    """

    type: object
    index: Optional[int]

    @property
    def device_id(self) -> int: ...
    def is_cpu(self) -> bool: ...
    def is_cuda(self) -> bool: ...
    def __str__(self) -> str: ...
