"""
Box Counting Algorithm for the Fractal Dimension of Binary Images.

The foreground of each subspace is first hollowed to its outline. The
outline is then covered with grids of boxes of decreasing size δ, and the
number of boxes N(δ) containing foreground is counted. The fractal
dimension D satisfies N(δ) ~ δ^(-D), so it is the slope of log(N) against
-log(δ).

For a smooth surface in 3D: D = 2.0
For a smooth outline in 2D: D = 1.0
"""

import itertools
import logging
import math
from dataclasses import dataclass, field, replace
from typing import Callable, List, Optional, Sequence, Tuple

import numpy as np
from scipy import ndimage, stats

from .axes import Image, check_image
from .results import CommandResult, ResultsTable
from .subspaces import row_label, split_3d_subspaces

logger = logging.getLogger(__name__)

AUTO_SMALLEST_BOX_SIZE = 6
AUTO_SCALE_FACTOR = 1.2
MIN_SCALE_FACTOR = 1.001

DIMENSION_HEADER = "Fractal dimension"
R_SQUARED_HEADER = "R²"


@dataclass
class BoxCountSettings:
    """
    Parameters of the box counting.

    Attributes:
        start_box_size: Size of the boxes in the first iteration (px)
        smallest_box_size: Box size where counting stops (px)
        scale_factor: Box size is divided by this after each iteration
        translations: How many times the grid is moved to find the best fit
        auto_parameters: Derive the other values from the image size
        show_points: Report the (-log(size), log(count)) points per subspace
    """
    start_box_size: int = 48
    smallest_box_size: int = 6
    scale_factor: float = 1.2
    translations: int = 0
    auto_parameters: bool = False
    show_points: bool = False
    auto_max: int = field(default=0, repr=False)

    def __post_init__(self):
        if self.start_box_size < 1:
            raise ValueError(f"start_box_size must be >= 1, got {self.start_box_size}")
        if self.smallest_box_size < 1:
            raise ValueError(f"smallest_box_size must be >= 1, got {self.smallest_box_size}")
        if self.scale_factor < MIN_SCALE_FACTOR:
            raise ValueError(f"scale_factor must be >= {MIN_SCALE_FACTOR}, "
                             f"got {self.scale_factor}")
        if self.translations < 0:
            raise ValueError(f"translations must be >= 0, got {self.translations}")

    def with_auto_parameters(self, image: Image) -> 'BoxCountSettings':
        """
        Settings with automatic parameters derived from the image.

        The start size is a quarter of the largest image dimension, and the
        smallest size is capped by it. If automatic mode is off, only the
        remembered auto_max changes.
        """
        auto_max = max(1, max(image.shape, default=0) // 4)
        return replace(self, auto_max=auto_max).enforce_auto_parameters()

    def enforce_auto_parameters(self) -> 'BoxCountSettings':
        if not self.auto_parameters or self.auto_max < 1:
            return self
        return replace(
            self,
            start_box_size=self.auto_max,
            smallest_box_size=min(self.auto_max, AUTO_SMALLEST_BOX_SIZE),
            scale_factor=AUTO_SCALE_FACTOR,
            translations=0,
        )

    def enforce_valid_sizes(self) -> 'BoxCountSettings':
        """Call after editing a size: smallest size never exceeds start size."""
        settings = self
        if settings.smallest_box_size > settings.start_box_size:
            settings = replace(settings, smallest_box_size=settings.start_box_size)
        return settings.enforce_auto_parameters()


@dataclass
class BoxCountResult:
    """Result of a single box count at a specific scale."""
    size: int  # Box side length in elements
    n_boxes: int  # Fewest boxes containing foreground over all grid offsets
    offset: Tuple[int, ...]  # Grid offset that gave the fewest boxes


@dataclass
class FractalDimensionResult:
    """Result of fractal dimension calculation."""
    dimension: float  # Estimated fractal dimension, 0 if the fit was skipped
    r_squared: float  # R² of log-log regression
    std_error: float  # Standard error of dimension estimate
    intercept: float  # Intercept of log-log regression
    points: List[Tuple[float, float]]  # (-log(size), log(count)) pairs

    @property
    def fitted(self) -> bool:
        return bool(self.points) and all_finite(self.points)


def hollow(mask: np.ndarray) -> np.ndarray:
    """
    Outline of the foreground.

    Keeps foreground elements that have at least one background neighbour
    in the full (3^n - 1) neighbourhood. Elements outside the image count
    as background, so foreground on the image edges is kept.
    """
    mask = np.asarray(mask).astype(bool)
    if mask.ndim == 0 or mask.size == 0:
        return mask
    structure = np.ones((3,) * mask.ndim, dtype=bool)
    interior = ndimage.binary_erosion(mask, structure=structure, border_value=0)
    return mask & ~interior


def box_sizes(start_box_size: int, smallest_box_size: int,
              scale_factor: float) -> List[int]:
    """Geometric sequence of box sizes from start down to smallest."""
    sizes = []
    size = int(start_box_size)
    while size >= smallest_box_size and size >= 1:
        sizes.append(size)
        size = int(math.floor(size / scale_factor))
    return sizes


def grid_offsets(size: int, translations: int) -> List[int]:
    """Grid offsets along one axis for the given number of translations."""
    step = max(1, size // (translations + 1))
    return sorted({(t * step) % size for t in range(translations + 1)})


def count_boxes(mask: np.ndarray, size: int,
                offset: Optional[Sequence[int]] = None) -> int:
    """
    Count boxes of the given size that contain foreground.

    Args:
        mask: Boolean array of any dimensionality
        size: Box side length in elements
        offset: Per-axis shift of the grid origin (default: no shift)

    Returns:
        Number of occupied boxes
    """
    mask = np.asarray(mask, dtype=bool)
    if offset is None:
        offset = (0,) * mask.ndim

    # Pad so that the grid starts at -offset and every box is whole
    pad = [(o, (-(n + o)) % size) for n, o in zip(mask.shape, offset)]
    padded = np.pad(mask, pad, mode='constant', constant_values=False)

    blocks_shape = []
    for n in padded.shape:
        blocks_shape.extend([n // size, size])
    blocks = padded.reshape(blocks_shape)
    box_axes = tuple(range(1, 2 * mask.ndim, 2))
    return int(np.count_nonzero(blocks.any(axis=box_axes)))


def count_boxes_translated(mask: np.ndarray, size: int,
                           translations: int = 0) -> BoxCountResult:
    """Fewest occupied boxes of one size over all grid translations."""
    mask = np.asarray(mask, dtype=bool)
    offsets = grid_offsets(size, translations)
    best = None
    for offset in itertools.product(offsets, repeat=mask.ndim):
        n_boxes = count_boxes(mask, size, offset)
        if best is None or n_boxes < best.n_boxes:
            best = BoxCountResult(size=size, n_boxes=n_boxes, offset=offset)
    return best


def box_count(mask: np.ndarray,
              settings: BoxCountSettings) -> List[Tuple[float, float]]:
    """
    Run box counting over the geometric sequence of box sizes.

    Returns:
        List of (-log(size), log(count)) pairs. An empty count gives
        log(count) = -inf.
    """
    pairs = []
    sizes = box_sizes(settings.start_box_size, settings.smallest_box_size,
                      settings.scale_factor)
    for size in sizes:
        result = count_boxes_translated(mask, size, settings.translations)
        log_count = math.log(result.n_boxes) if result.n_boxes > 0 else -math.inf
        pairs.append((-math.log(size), log_count))
        logger.debug("  size = %d: %d boxes (offset %s)",
                     size, result.n_boxes, result.offset)
    return pairs


def all_finite(pairs: Sequence[Tuple[float, float]]) -> bool:
    return all(math.isfinite(x) and math.isfinite(y) for x, y in pairs)


def fit_dimension(pairs: Sequence[Tuple[float, float]]) -> FractalDimensionResult:
    """
    Fit a line to the box counting points.

    The slope of a degree-1 least squares polynomial is the fractal
    dimension. If any point is non-finite (e.g. an empty subspace) or there
    are fewer than two points, the fit is skipped and the dimension is 0.

    Returns:
        FractalDimensionResult
    """
    pairs = [(float(x), float(y)) for x, y in pairs]
    if len(pairs) < 2 or not all_finite(pairs):
        logger.warning("Skipping curve fit: %d points, all finite: %s",
                       len(pairs), all_finite(pairs))
        return FractalDimensionResult(
            dimension=0.0,
            r_squared=math.nan,
            std_error=math.nan,
            intercept=0.0,
            points=pairs,
        )

    x = np.array([p[0] for p in pairs])
    y = np.array([p[1] for p in pairs])
    slope, intercept = np.polyfit(x, y, 1)
    regression = stats.linregress(x, y)

    return FractalDimensionResult(
        dimension=float(slope),
        r_squared=float(regression.rvalue ** 2),
        std_error=float(regression.stderr),
        intercept=float(intercept),
        points=pairs,
    )


def compute_fractal_dimension(mask: np.ndarray,
                              settings: Optional[BoxCountSettings] = None
                              ) -> FractalDimensionResult:
    """
    Compute the fractal dimension of the foreground of a binary array.

    Args:
        mask: Binary array (nonzero = foreground)
        settings: Box counting parameters (defaults if None)

    Returns:
        FractalDimensionResult
    """
    if settings is None:
        settings = BoxCountSettings()
    outline = hollow(mask)
    pairs = box_count(outline, settings)
    return fit_dimension(pairs)


def measure_fractal_dimension(image: Optional[Image],
                              settings: Optional[BoxCountSettings] = None,
                              table: Optional[ResultsTable] = None,
                              status: Optional[Callable[[str], None]] = None
                              ) -> CommandResult:
    """
    Measure the fractal dimension of each 3D subspace of a binary image.

    Adds "Fractal dimension" and "R²" columns to the table, one row per
    subspace. In automatic mode the box parameters are derived from the
    image before counting.

    Args:
        image: Binary image with 2 or 3 spatial axes
        settings: Box counting parameters
        table: Table to add to; a new one is made if None
        status: Optional progress callback

    Returns:
        CommandResult with the table snapshot and, if settings.show_points,
        the box counting points of each subspace
    """
    check = check_image(image)
    if not check.ok:
        return CommandResult.cancel(check.error.reason)

    if settings is None:
        settings = BoxCountSettings()
    if settings.auto_parameters:
        settings = settings.with_auto_parameters(image)
    if table is None:
        table = ResultsTable()

    def show_status(message: str) -> None:
        logger.debug(message)
        if status is not None:
            status(message)

    show_status("Fractal dimension: initialising")
    subspaces = split_3d_subspaces(image)
    results = []
    for subspace in subspaces:
        show_status("Fractal dimension: hollowing bone")
        outline = hollow(subspace.data)
        show_status("Fractal dimension: counting boxes")
        pairs = box_count(outline, settings)
        show_status("Fractal dimension: fitting curve")
        results.append(fit_dimension(pairs))

    command_result = CommandResult()
    for i, result in enumerate(results):
        label = row_label(image.name, subspaces[i])
        table.add(label, DIMENSION_HEADER, result.dimension)
        table.add(label, R_SQUARED_HEADER, result.r_squared)
        if settings.show_points:
            command_result.subspace_points[label] = list(result.points)

    command_result.table = table.get_table()
    return command_result
