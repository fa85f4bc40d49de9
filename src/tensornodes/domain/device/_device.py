"""
Device placement descriptors.

A `Device` names where a matrix lives. Placement is a property of the tensor
primitive; the node catalogue only forwards `move_to` requests and compares
placements before issuing numeric work.

Accepted spellings
------------------
- ``"cpu"`` or the integer id ``-1`` (CPU)
- ``"cuda:<index>"`` or a non-negative integer id (GPU ``<index>``)
"""

from __future__ import annotations

from enum import Enum
from typing import Union
import re


class DeviceType(Enum):
    """
    Category of a computation device.

    Attributes
    ----------
    CPU : DeviceType
        Host memory.
    CUDA : DeviceType
        An NVIDIA GPU.
    """

    CPU = "cpu"
    CUDA = "cuda"


CPU_DEVICE_ID = -1


class Device:
    """
    Normalized device descriptor.

    Parameters
    ----------
    device : str | int
        ``"cpu"``, ``"cuda:<index>"``, ``-1`` (CPU) or a non-negative GPU id.

    Raises
    ------
    ValueError
        If the identifier is not one of the accepted spellings.
    """

    __slots__ = ("type", "index")

    _CUDA_PATTERN = re.compile(r"^cuda:(\d+)$")

    def __init__(self, device: Union[str, int] = "cpu") -> None:
        if isinstance(device, bool):
            raise ValueError(f"Invalid device {device!r}")
        if isinstance(device, int):
            if device == CPU_DEVICE_ID:
                self.type, self.index = DeviceType.CPU, None
            elif device >= 0:
                self.type, self.index = DeviceType.CUDA, device
            else:
                raise ValueError(f"Invalid device id {device}; expected -1 or >= 0")
            return

        if device == "cpu":
            self.type, self.index = DeviceType.CPU, None
            return
        m = self._CUDA_PATTERN.match(device)
        if not m:
            raise ValueError(
                f"Invalid device '{device}'. Expected 'cpu' or 'cuda:<index>'"
            )
        self.type, self.index = DeviceType.CUDA, int(m.group(1))

    @property
    def device_id(self) -> int:
        """Integer id of this device (-1 for the CPU)."""
        return CPU_DEVICE_ID if self.index is None else self.index

    def is_cpu(self) -> bool:
        return self.type is DeviceType.CPU

    def is_cuda(self) -> bool:
        return self.type is DeviceType.CUDA

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Device):
            return NotImplemented
        return self.type is other.type and self.index == other.index

    def __hash__(self) -> int:
        return hash((self.type, self.index))

    def __str__(self) -> str:
        return "cpu" if self.type is DeviceType.CPU else f"cuda:{self.index}"

    def __repr__(self) -> str:
        return f"Device({str(self)!r})"
