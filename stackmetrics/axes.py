"""
Image axes, calibration and validation.

An Image is an N-dimensional sample array with one CalibratedAxis per
dimension. The helpers here classify axes as spatial or not, work out the
calibrated size of one element, and build the unit headers used in result
columns.
"""

import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional, Sequence, Tuple

import numpy as np

logger = logging.getLogger(__name__)

NO_IMAGE_OPEN = "No image open"
NOT_BINARY = "Need a binary image"
WEIRD_SPATIAL = "Need a 2D or 3D image"
NOT_3D_IMAGE = "Need a 3D image"
BAD_CALIBRATION = "Calibration cannot be determined"

# Length units in metres
_LENGTH_UNITS = {
    "m": 1.0,
    "dm": 1e-1,
    "cm": 1e-2,
    "mm": 1e-3,
    "um": 1e-6,
    "nm": 1e-9,
    "pm": 1e-12,
    "angstrom": 1e-10,
    "inch": 0.0254,
    "in": 0.0254,
}

# Units that mean "not calibrated"
_DEFAULT_UNITS = ("", "pixel", "pixels", "unit", "units")

_EXPONENTS = {2: "²", 3: "³", 4: "⁴", 5: "⁵",
              6: "⁶", 7: "⁷", 8: "⁸", 9: "⁹"}


class AxisType(Enum):
    """Type tag of an image axis."""
    X = "X"
    Y = "Y"
    Z = "Z"
    TIME = "Time"
    CHANNEL = "Channel"

    @property
    def is_spatial(self) -> bool:
        return self in (AxisType.X, AxisType.Y, AxisType.Z)

    @property
    def label(self) -> str:
        return self.value


SPATIAL_3D = (AxisType.X, AxisType.Y, AxisType.Z)


class ValidationError(Exception):
    """Raised (or carried) when an image cannot be measured."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


@dataclass(frozen=True)
class CalibratedAxis:
    """One image axis with its calibration."""
    type: AxisType
    scale: float = 1.0  # Calibrated size of one sample step
    unit: str = ""

    @property
    def normalised_unit(self) -> str:
        return normalise_unit(self.unit)


class Image:
    """
    N-dimensional image with typed, calibrated axes.

    Attributes:
        data: Read-only numpy array of samples
        axes: One CalibratedAxis per dimension of data, in array order
        name: Image title used as the row label of results
    """

    def __init__(self, data, axes: Sequence[CalibratedAxis], name: str = ""):
        data = np.asarray(data)
        axes = tuple(axes)
        if data.ndim != len(axes):
            raise ValueError(f"Image has {data.ndim} dimensions but "
                             f"{len(axes)} axes")
        data = data.view()
        data.flags.writeable = False
        self._data = data
        self._axes = axes
        self.name = name

    @property
    def data(self) -> np.ndarray:
        return self._data

    @property
    def axes(self) -> Tuple[CalibratedAxis, ...]:
        return self._axes

    @property
    def shape(self) -> Tuple[int, ...]:
        return self._data.shape

    @property
    def ndim(self) -> int:
        return self._data.ndim

    def axis_index(self, axis_type: AxisType) -> Optional[int]:
        """Index of the first axis of the given type, None if missing."""
        for i, axis in enumerate(self._axes):
            if axis.type == axis_type:
                return i
        return None

    def __repr__(self) -> str:
        axes = "".join(a.type.value[0] for a in self._axes)
        return f"Image(name={self.name!r}, shape={self.shape}, axes={axes})"


@dataclass(frozen=True)
class AxisSummary:
    """Result of classifying the axes of an image."""
    spatial: int
    has_time: bool
    has_channel: bool

    @property
    def supported(self) -> bool:
        """True if the image has 2 or 3 spatial dimensions."""
        return 2 <= self.spatial <= 3


@dataclass
class ImageCheck:
    """Tagged result of validating an image: either ok with an image, or an error."""
    image: Optional[Image] = None
    error: Optional[ValidationError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def fail(cls, reason: str) -> "ImageCheck":
        return cls(error=ValidationError(reason))


def classify_axes(axes: Iterable[CalibratedAxis]) -> AxisSummary:
    """Count the spatial axes and flag time and channel axes."""
    axes = list(axes)
    summary = AxisSummary(
        spatial=sum(1 for a in axes if a.type.is_spatial),
        has_time=any(a.type == AxisType.TIME for a in axes),
        has_channel=any(a.type == AxisType.CHANNEL for a in axes),
    )
    if not summary.supported:
        logger.info("Unsupported number of spatial axes: %d", summary.spatial)
    return summary


def spatial_axes(axes: Iterable[CalibratedAxis]) -> Tuple[CalibratedAxis, ...]:
    return tuple(a for a in axes if a.type.is_spatial)


def xyz_indices(axes: Sequence[CalibratedAxis]) -> Optional[Tuple[int, int, int]]:
    """
    Positions of the X, Y and Z axes in the given axis order.

    Returns None unless each of X, Y and Z appears exactly once.
    """
    types = [a.type for a in axes]
    if any(types.count(t) != 1 for t in SPATIAL_3D):
        return None
    return tuple(types.index(t) for t in SPATIAL_3D)


def normalise_unit(unit: Optional[str]) -> str:
    if unit is None:
        return ""
    unit = unit.strip()
    if unit in ("µm", "μm", "µM", "μM", "micron", "microns"):
        return "um"
    return unit


def _is_default_unit(unit: str) -> bool:
    return unit.lower() in _DEFAULT_UNITS


def convert_length(value: float, from_unit: str, to_unit: str) -> float:
    """
    Convert a length between units.

    Raises:
        ValueError: If either unit is unknown
    """
    from_unit = normalise_unit(from_unit)
    to_unit = normalise_unit(to_unit)
    if from_unit == to_unit:
        return value
    try:
        return value * _LENGTH_UNITS[from_unit] / _LENGTH_UNITS[to_unit]
    except KeyError as e:
        raise ValueError(f"Cannot convert {from_unit!r} to {to_unit!r}") from e


def spatial_unit(axes: Iterable[CalibratedAxis]) -> Optional[str]:
    """
    Common unit of the spatial calibration.

    Returns:
        The unit of the first spatial axis, "" if none of the spatial axes
        are calibrated, or None if there are no spatial axes or the units
        can't be converted to each other.
    """
    spatial = spatial_axes(axes)
    if not spatial:
        return None
    units = [a.normalised_unit for a in spatial]
    uncalibrated = sum(1 for u in units if _is_default_unit(u))
    if uncalibrated == len(units):
        return ""
    if uncalibrated > 0:
        return None
    first = units[0]
    for unit in set(units):
        try:
            convert_length(1.0, unit, first)
        except ValueError:
            return None
    return first


def calibrated_element_size(axes: Iterable[CalibratedAxis]) -> float:
    """
    Calibrated size (area or volume) of one spatial element.

    Scales of all spatial axes are converted to the unit of the first one
    and multiplied. Returns NaN if the unit can't be determined.
    """
    spatial = spatial_axes(axes)
    unit = spatial_unit(spatial)
    if unit is None:
        return math.nan
    size = 1.0
    for axis in spatial:
        if unit:
            size *= convert_length(axis.scale, axis.normalised_unit, unit)
        else:
            size *= axis.scale
    return size


def exponent(axes: Iterable[CalibratedAxis]) -> str:
    """Superscript matching the number of spatial dimensions."""
    return _EXPONENTS.get(len(spatial_axes(axes)), "")


def size_description(axes: Iterable[CalibratedAxis]) -> str:
    n = len(spatial_axes(axes))
    if n == 2:
        return "Area"
    if n == 3:
        return "Volume"
    return "Size"


def unit_header(axes: Iterable[CalibratedAxis], exp: str = "") -> str:
    """Column header suffix such as "(mm³)"; empty for default units."""
    unit = spatial_unit(axes)
    if unit is None or _is_default_unit(unit):
        return ""
    return f"({unit}{exp})"


def has_matching_spatial_calibration(axes: Iterable[CalibratedAxis]) -> bool:
    """True if every spatial axis has the same scale and unit."""
    spatial = spatial_axes(axes)
    if not spatial:
        return False
    first = spatial[0]
    return all(a.scale == first.scale and
               a.normalised_unit == first.normalised_unit for a in spatial)


def is_binary(data) -> bool:
    """True if the array is non-empty and has at most two distinct values."""
    data = np.asarray(data)
    if data.size == 0:
        return False
    if data.dtype == bool:
        return True
    return len(np.unique(data)) <= 2


def check_image(image: Optional[Image], binary: bool = True,
                spatial_range: Tuple[int, int] = (2, 3)) -> ImageCheck:
    """
    Validate an image before measuring it.

    Args:
        image: Image to check, may be None
        binary: Require at most two distinct sample values
        spatial_range: Allowed (min, max) number of spatial axes

    Returns:
        ImageCheck holding the image, or the reason it was rejected
    """
    if image is None:
        return ImageCheck.fail(NO_IMAGE_OPEN)
    summary = classify_axes(image.axes)
    low, high = spatial_range
    if not low <= summary.spatial <= high:
        reason = NOT_3D_IMAGE if low == high == 3 else WEIRD_SPATIAL
        return ImageCheck.fail(reason)
    if binary and not is_binary(image.data):
        return ImageCheck.fail(NOT_BINARY)
    return ImageCheck(image=image)
