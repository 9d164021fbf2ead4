"""
Area/volume fraction of binary images.

The foreground size is the number of foreground elements times the
calibrated size of one element; the ratio to the total size is independent
of the calibration unit.
"""

import logging
import math
from dataclasses import dataclass
from typing import Callable, Optional

import numpy as np

from .axes import (
    BAD_CALIBRATION,
    Image,
    calibrated_element_size,
    check_image,
    exponent,
    size_description,
    unit_header,
)
from .results import CommandResult, ResultsTable
from .subspaces import decompose, row_label

logger = logging.getLogger(__name__)


@dataclass
class ElementFractionResult:
    """Foreground and total size of one subspace."""
    foreground: float
    total: float
    ratio: float  # NaN if total is zero


def compute_element_fraction(mask: np.ndarray,
                             element_size: float) -> ElementFractionResult:
    """
    Compute foreground size, total size and their ratio.

    Args:
        mask: Binary array, nonzero elements are foreground
        element_size: Calibrated area/volume of one element

    Returns:
        ElementFractionResult
    """
    mask = np.asarray(mask)
    foreground = float(np.count_nonzero(mask)) * element_size
    total = float(mask.size) * element_size
    if total == 0 or math.isnan(total):
        logger.warning("Total size is %s, ratio is undefined", total)
        ratio = math.nan
    else:
        ratio = foreground / total
    return ElementFractionResult(foreground=foreground, total=total, ratio=ratio)


def measure_element_fraction(image: Optional[Image],
                             table: Optional[ResultsTable] = None,
                             status: Optional[Callable[[str], None]] = None
                             ) -> CommandResult:
    """
    Measure the element fraction of each spatial subspace of an image.

    Adds "Bone Volume", "Total Volume" and "Volume Ratio" columns ("Area"
    for 2D images) to the table, one row per subspace.

    Args:
        image: Binary image with 2 or 3 spatial axes
        table: Table to add to; a new one is made if None
        status: Optional progress callback

    Returns:
        CommandResult with the table snapshot, or a cancel reason
    """
    check = check_image(image)
    if not check.ok:
        return CommandResult.cancel(check.error.reason)

    if table is None:
        table = ResultsTable()
    result = CommandResult()

    spatial_types = [a.type for a in image.axes if a.type.is_spatial]
    units = unit_header(image.axes, exponent(image.axes))
    if not units:
        result.warnings.append(BAD_CALIBRATION)
    description = size_description(image.axes)
    bone_header = f"Bone {description} {units}".rstrip()
    total_header = f"Total {description} {units}".rstrip()
    ratio_header = f"{description} Ratio"
    element_size = calibrated_element_size(image.axes)

    if status is not None:
        status("Element fraction: measuring")
    for subspace in decompose(image, spatial_types):
        fraction = compute_element_fraction(subspace.data, element_size)
        label = row_label(image.name, subspace)
        table.add(label, bone_header, fraction.foreground)
        table.add(label, total_header, fraction.total)
        table.add(label, ratio_header, fraction.ratio)

    result.table = table.get_table()
    return result
