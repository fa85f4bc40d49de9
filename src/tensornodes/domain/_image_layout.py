"""
Image-layout metadata carried alongside node values.

Columns of a node value are samples; rows may be the flattened pixels of an
image. `ImageLayout` records how to reinterpret the rows (width x height x
channels) so presentation-layer collaborators can recover image structure.
Nodes infer their input and output layouts from their inputs during
validation (`infer_output_descriptor`).
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class ImageLayout:
    """
    Width/height/channels interpretation of a column.

    Attributes
    ----------
    width : int
    height : int
    channels : int
    """

    width: int = 1
    height: int = 1
    channels: int = 1

    @classmethod
    def for_rows(cls, rows: int) -> "ImageLayout":
        """Layout of a plain vector: 1 x rows x 1."""
        return cls(1, rows, 1)

    @property
    def is_image(self) -> bool:
        """True when the layout describes more than a plain column vector."""
        return self.width != 1 or self.channels != 1

    @property
    def num_elements(self) -> int:
        return self.width * self.height * self.channels
