"""
Leaf nodes.

Leaves have no inputs and do no numeric work. They hold the matrices the
operation catalogue reads from and, for learnable parameters, receive
dimensions inferred by their consumers during validation.
"""

from __future__ import annotations

from typing import Any, Optional

import numpy as np

from ...domain._errors import InvalidArgumentError
from ...domain._frame_range import FrameRange
from ...domain._image_layout import ImageLayout
from ...domain._matrix import StorageFormat
from ...domain.device._device_protocol import DeviceLike
from .._layout import MBLayout
from ._base import ComputationNode


class LearnableParameter(ComputationNode):
    """
    Trainable matrix without a minibatch layout.

    Either dimension may be left at 0; consumers fill it in during the
    inference pass of validation.

    Parameters
    ----------
    name : str
        Node name.
    rows : int, optional
        Row count, 0 if unknown.
    cols : int, optional
        Column count, 0 if unknown.
    value : array-like, optional
        Initial contents; overrides `rows` and `cols`.
    """

    operation_name = "LearnableParameter"
    inferable = True

    def __init__(
        self,
        name: str,
        rows: int = 0,
        cols: int = 0,
        *,
        value: Any = None,
        device: Optional[DeviceLike] = None,
        dtype: Any = np.float32,
    ) -> None:
        super().__init__(name, device=device, dtype=dtype)
        if value is not None:
            self.set_value(value)
        else:
            self._value.resize(rows, cols)
        self.infer_output_descriptor()

    def set_value(self, value: Any) -> None:
        self._value.copy_from_numpy(value)
        self.infer_output_descriptor()

    def validate(self, is_final_pass: bool) -> None:
        if is_final_pass and (self.rows == 0 or self.cols == 0):
            raise self.shape_error(
                "dimensions were never inferred", self
            )
        self.infer_output_descriptor()

    def evaluate(self, frame: FrameRange) -> None:
        pass


class ConstantNode(LearnableParameter):
    """Fixed matrix that is never inferred into."""

    operation_name = "Constant"
    inferable = False

    def __init__(
        self,
        name: str,
        value: Any,
        *,
        device: Optional[DeviceLike] = None,
        dtype: Any = np.float32,
    ) -> None:
        super().__init__(name, value=value, device=device, dtype=dtype)


class InputValue(ComputationNode):
    """
    Minibatch data fed from outside the graph.

    Parameters
    ----------
    name : str
        Node name.
    rows : int
        Sample dimension.
    cols : int, optional
        Number of columns. Defaults to the layout's column count.
    layout : MBLayout, optional
        Packing of the columns. Without a layout the columns are static.
    sparse : bool, optional
        Mark the value as sparse (compressed sparse column) storage.
    image_layout : ImageLayout, optional
        Image interpretation of the rows. Must describe `rows` elements.
    """

    operation_name = "InputValue"

    def __init__(
        self,
        name: str,
        rows: int,
        cols: Optional[int] = None,
        *,
        layout: Optional[MBLayout] = None,
        sparse: bool = False,
        image_layout: Optional[ImageLayout] = None,
        device: Optional[DeviceLike] = None,
        dtype: Any = np.float32,
    ) -> None:
        super().__init__(name, device=device, dtype=dtype)
        if cols is None:
            if layout is None:
                raise InvalidArgumentError(
                    f"{name}: an input without a layout needs an explicit column count"
                )
            cols = layout.num_cols
        elif layout is not None and cols != layout.num_cols:
            raise InvalidArgumentError(
                f"{name}: {cols} columns do not match a layout of {layout.num_cols} columns"
            )
        if image_layout is not None and image_layout.num_elements != rows:
            raise InvalidArgumentError(
                f"{name}: image layout {image_layout} does not describe {rows} rows"
            )
        self._layout = layout
        self._image_layout = image_layout
        self._value.resize(rows, cols)
        if sparse:
            self._value.switch_to_storage(StorageFormat.SPARSE_CSC)
        self.infer_output_descriptor()

    def set_value(self, value: Any) -> None:
        """Overwrite the contents; the shape must not change."""
        arr = np.asarray(value)
        if arr.ndim != 2 or arr.shape != self.shape:
            raise InvalidArgumentError(
                f"{self.name}: expected data of shape {self.shape}, got {arr.shape}"
            )
        self._value.copy_from_numpy(arr)

    def infer_output_descriptor(self) -> None:
        if self._image_layout is None:
            super().infer_output_descriptor()
        else:
            self._input_image_layout = self._image_layout
            self._output_image_layout = self._image_layout

    def validate(self, is_final_pass: bool) -> None:
        if is_final_pass and (self.rows == 0 or self.cols == 0):
            raise self.shape_error("input has an empty shape", self)
        self.infer_output_descriptor()

    def evaluate(self, frame: FrameRange) -> None:
        pass
