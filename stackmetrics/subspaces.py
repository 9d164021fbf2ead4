"""
Splitting an N-dimensional image into independent subspaces.

A hyperstack such as {X, Y, Z, Channel, Time} is split into {X, Y, Z}
subspaces, one for each (channel, time) combination. Subspaces don't copy
samples: each one holds a numpy view into the source image plus the
coordinates it was sliced at.
"""

import itertools
import re
from dataclasses import dataclass
from typing import Collection, Dict, List, Tuple

import numpy as np

from .axes import AxisType, CalibratedAxis, Image, SPATIAL_3D

# Axes printed starting from 1 instead of 0
_ONE_BASED = (AxisType.Z, AxisType.CHANNEL, AxisType.TIME)


def conventional_index(axis_type: AxisType, position: int) -> int:
    """Position as shown to users: Z, channel and time count from 1."""
    return position + 1 if axis_type in _ONE_BASED else position


@dataclass(frozen=True)
class HyperAxisMeta:
    """Location of a subspace along one of the axes that were split."""
    axis_index: int
    type: AxisType
    position: int
    subscript: int  # Tells apart repeated axes of the same type

    def __str__(self) -> str:
        type_index = f"({self.subscript})" if self.subscript > 1 else ""
        position = conventional_index(self.type, self.position)
        return f"{self.type.label}{type_index}: {position}"


class Subspace:
    """
    A view of an image restricted to the kept axes.

    Attributes:
        image: Source image
        meta: Fixed coordinates on the split axes, in image axis order
        axes: Calibrated axes of the subspace (the kept ones)
    """

    def __init__(self, image: Image, meta: Tuple[HyperAxisMeta, ...],
                 axes: Tuple[CalibratedAxis, ...]):
        self.image = image
        self.meta = meta
        self.axes = axes

    @property
    def data(self) -> np.ndarray:
        """Samples of the subspace as a view into the source image."""
        index = [slice(None)] * self.image.ndim
        for m in self.meta:
            index[m.axis_index] = m.position
        return self.image.data[tuple(index)]

    @property
    def shape(self) -> Tuple[int, ...]:
        return self.data.shape

    @property
    def size(self) -> int:
        return int(np.prod(self.shape, dtype=np.int64))

    @property
    def positions(self) -> Tuple[int, ...]:
        return tuple(m.position for m in self.meta)

    @property
    def axis_types(self) -> Tuple[AxisType, ...]:
        return tuple(m.type for m in self.meta)

    @property
    def subscripts(self) -> Tuple[int, ...]:
        return tuple(m.subscript for m in self.meta)

    @property
    def label(self) -> str:
        """E.g. "Channel: 1, Time: 3"; empty if nothing was split."""
        return ", ".join(str(m) for m in self.meta)

    def __iter__(self):
        return iter(self.data.flat)

    def __str__(self) -> str:
        return self.label

    def __repr__(self) -> str:
        return f"Subspace(label={self.label!r}, shape={self.shape})"


def _type_subscripts(axes: Tuple[CalibratedAxis, ...],
                     split_indices: List[int]) -> List[int]:
    counts: Dict[AxisType, int] = {}
    subscripts = []
    for i in split_indices:
        axis_type = axes[i].type
        counts[axis_type] = counts.get(axis_type, 0) + 1
        subscripts.append(counts[axis_type])
    return subscripts


def decompose(image: Image, keep_axes: Collection[AxisType]) -> List[Subspace]:
    """
    Split an image into subspaces of the kept axis types.

    Subspaces are ordered like C-order iteration over the split axes: the
    first split axis varies slowest. If all axes are kept, returns one
    subspace with an empty label. Zero-sized axes yield no subspaces.

    Args:
        image: Image to split
        keep_axes: Axis types that span each subspace

    Returns:
        List of Subspace objects
    """
    keep = set(keep_axes)
    kept_axes = tuple(a for a in image.axes if a.type in keep)
    split_indices = [i for i, a in enumerate(image.axes) if a.type not in keep]
    subscripts = _type_subscripts(image.axes, split_indices)

    kept_dims = [image.shape[i] for i, a in enumerate(image.axes) if a.type in keep]
    if any(d == 0 for d in kept_dims):
        return []

    ranges = [range(image.shape[i]) for i in split_indices]
    subspaces = []
    for coordinates in itertools.product(*ranges):
        meta = tuple(
            HyperAxisMeta(axis_index=i, type=image.axes[i].type,
                          position=position, subscript=subscript)
            for i, position, subscript in zip(split_indices, coordinates,
                                              subscripts)
        )
        subspaces.append(Subspace(image, meta, kept_axes))
    return subspaces


def split_3d_subspaces(image: Image) -> List[Subspace]:
    """Split into {X, Y, Z} subspaces (or {X, Y} if the image has no Z)."""
    return decompose(image, SPATIAL_3D)


def row_label(image_name: str, subspace: Subspace) -> str:
    """Results row label: image name, plus the subspace label if any."""
    suffix = subspace.label
    if not suffix:
        return image_name or "-"
    return f"{image_name} {suffix}" if image_name else suffix


def sanitise_label(label: str) -> str:
    """Make a subspace label safe for file names: "Time: 2, Channel: 1" -> "Time_2_Channel_1"."""
    label = label.replace(",", "").replace(":", "")
    return re.sub(r"[^0-9A-Za-z]+", "_", label).strip("_")
