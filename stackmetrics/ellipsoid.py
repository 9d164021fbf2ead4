"""
Ellipsoid fitting to sparse 3D point sets.

A general quadric Ax² + By² + Cz² + 2Dxy + 2Exz + 2Fyz + 2Gx + 2Hy + 2Iz = 1
is fitted to the points by least squares. If the quadric is a real
ellipsoid, its centre, semi-axes and orientation are recovered from the
quadric matrix.
"""

import logging
import math
from dataclasses import dataclass
from typing import Callable, Iterable, Optional, Sequence, Tuple

import numpy as np
from scipy import linalg

from .axes import (
    Image,
    NO_IMAGE_OPEN,
    NOT_3D_IMAGE,
    classify_axes,
    unit_header,
    xyz_indices,
)
from .results import CommandResult, ResultsTable

logger = logging.getLogger(__name__)

# Terms in the quadric equation, also the minimum number of points
QUADRIC_TERMS = 9

NOT_ENOUGH_POINTS = (f"Please add at least {QUADRIC_TERMS} points "
                     "that are not active on all slices")
CANNOT_FIT_ELLIPSOID = ("Can't fit ellipsoid to points.\n"
                        "Add more points and try again.")


@dataclass
class Ellipsoid:
    """
    Ellipsoid with semi-axes sorted a >= b >= c.

    Attributes:
        centroid: Centre point (x, y, z)
        radii: Semi-axis lengths, largest first
        orientation: 3x3 matrix whose columns are the unit semi-axis
            directions, in the same order as radii
    """
    centroid: np.ndarray
    radii: np.ndarray
    orientation: np.ndarray

    @property
    def a(self) -> float:
        return float(self.radii[0])

    @property
    def b(self) -> float:
        return float(self.radii[1])

    @property
    def c(self) -> float:
        return float(self.radii[2])

    @property
    def volume(self) -> float:
        return 4.0 / 3.0 * math.pi * self.a * self.b * self.c


@dataclass
class EllipsoidFitResult:
    """Fitted ellipsoid, or None and the reason it couldn't be fitted."""
    ellipsoid: Optional[Ellipsoid]
    reason: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.ellipsoid is not None


def _design_matrix(points: np.ndarray) -> np.ndarray:
    x, y, z = points[:, 0], points[:, 1], points[:, 2]
    return np.column_stack([
        x * x, y * y, z * z,
        2 * x * y, 2 * x * z, 2 * y * z,
        2 * x, 2 * y, 2 * z,
    ])


def solve_quadric(points) -> np.ndarray:
    """
    Solve the quadric that best fits the points.

    Args:
        points: At least QUADRIC_TERMS points, shape (N, 3)

    Returns:
        4x4 symmetric quadric matrix
        [[a, d, e, g], [d, b, f, h], [e, f, c, i], [g, h, i, -1]]

    Raises:
        ValueError: If there are too few points or they aren't 3D
    """
    points = np.asarray(points, dtype=np.float64)
    if points.ndim != 2 or points.shape[1] != 3:
        raise ValueError(f"Points must have shape (N, 3), got {points.shape}")
    if len(points) < QUADRIC_TERMS:
        raise ValueError(f"Need at least {QUADRIC_TERMS} points, got {len(points)}")

    d = _design_matrix(points)
    # (DᵀD)⁺ Dᵀ 1, pseudo-inverse in case DᵀD is singular
    dtd_inv = linalg.pinv(d.T @ d)
    solution = dtd_inv @ (d.T @ np.ones(len(points)))

    a, b, c, dd, e, f, g, h, i = solution
    return np.array([
        [a, dd, e, g],
        [dd, b, f, h],
        [e, f, c, i],
        [g, h, i, -1.0],
    ])


def is_ellipsoid(quadric: np.ndarray) -> bool:
    """True if the leading principal minors of the quadric are positive."""
    quadric = np.asarray(quadric)
    det2d = quadric[0, 0] * quadric[1, 1] - quadric[1, 0] * quadric[0, 1]
    return bool(quadric[0, 0] > 0 and det2d > 0 and
                linalg.det(quadric[:3, :3]) > 0)


def quadric_to_ellipsoid(quadric: np.ndarray) -> Optional[Ellipsoid]:
    """
    Convert a quadric matrix into an ellipsoid.

    Returns:
        Ellipsoid, or None if the quadric isn't a real ellipsoid (e.g. a
        hyperboloid, or degenerate)
    """
    quadric = np.asarray(quadric, dtype=np.float64)
    if quadric.shape != (4, 4):
        raise ValueError(f"Quadric must be a 4x4 matrix, got {quadric.shape}")
    # Q and -Q describe the same surface; the sign flips when the origin
    # lies outside the ellipsoid
    if quadric[0, 0] < 0:
        quadric = -quadric
    if not is_ellipsoid(quadric):
        return None

    sub = quadric[:3, :3]
    translation = quadric[:3, 3]
    try:
        center = linalg.solve(-sub, translation, assume_a='sym')
    except linalg.LinAlgError:
        return None

    # Translate the quadric to its centre
    t = np.eye(4)
    t[3, :3] = center
    translated = t @ quadric @ t.T
    constant = translated[3, 3]
    if not np.isfinite(constant) or constant >= 0:
        return None

    eigenvalues, eigenvectors = linalg.eigh(translated[:3, :3] / -constant)
    if np.any(eigenvalues <= 0) or not np.all(np.isfinite(eigenvalues)):
        return None

    radii = np.sqrt(1.0 / eigenvalues)
    order = np.argsort(radii)[::-1]
    return Ellipsoid(
        centroid=center,
        radii=radii[order],
        orientation=eigenvectors[:, order],
    )


def calibrate_points(roi_points: Iterable[Sequence[float]],
                     scales: Tuple[float, float, float] = (1.0, 1.0, 1.0)
                     ) -> np.ndarray:
    """
    Calibrated 3D coordinates of point ROIs.

    Points with slice number <= 0 are active on all slices and have no real
    z-coordinate, so they are dropped.

    Args:
        roi_points: (x, y, slice) triplets, slices numbered from 1
        scales: Pixel width, height and depth

    Returns:
        Array of shape (N, 3)
    """
    kept = [p for p in roi_points if p[2] > 0]
    if not kept:
        return np.empty((0, 3))
    return np.asarray(kept, dtype=np.float64) * np.asarray(scales, dtype=np.float64)


def fit_ellipsoid(points) -> EllipsoidFitResult:
    """
    Fit an ellipsoid to calibrated 3D points.

    Returns:
        EllipsoidFitResult; ellipsoid is None if there are fewer than
        QUADRIC_TERMS points or the points don't describe an ellipsoid
    """
    points = np.asarray(points, dtype=np.float64).reshape(-1, 3)
    if len(points) < QUADRIC_TERMS:
        logger.info("Too few points for an ellipsoid: %d", len(points))
        return EllipsoidFitResult(ellipsoid=None, reason=NOT_ENOUGH_POINTS)

    quadric = solve_quadric(points)
    ellipsoid = quadric_to_ellipsoid(quadric)
    if ellipsoid is None:
        logger.info("Quadric is not an ellipsoid")
        return EllipsoidFitResult(ellipsoid=None, reason=CANNOT_FIT_ELLIPSOID)
    return EllipsoidFitResult(ellipsoid=ellipsoid)


def measure_ellipsoid(image: Optional[Image],
                      roi_points: Iterable[Sequence[float]],
                      table: Optional[ResultsTable] = None,
                      status: Optional[Callable[[str], None]] = None
                      ) -> CommandResult:
    """
    Fit an ellipsoid to point ROIs placed on a 3D image.

    Adds centroid and radius columns to the table, one row for the image.

    Args:
        image: 3D image whose calibration scales the points
        roi_points: (x, y, slice) point ROIs
        table: Table to add to; a new one is made if None
        status: Optional progress callback

    Returns:
        CommandResult with the table snapshot, or a cancel reason
    """
    if image is None:
        return CommandResult.cancel(NO_IMAGE_OPEN)
    indices = xyz_indices(image.axes)
    if classify_axes(image.axes).spatial != 3 or indices is None:
        return CommandResult.cancel(NOT_3D_IMAGE)

    scales = tuple(image.axes[i].scale for i in indices)
    points = calibrate_points(roi_points, scales)

    if status is not None:
        status("Fit ellipsoid: solving ellipsoid equation")
    fit = fit_ellipsoid(points)
    if not fit.ok:
        return CommandResult.cancel(fit.reason)

    if table is None:
        table = ResultsTable()
    units = unit_header(image.axes)
    label = image.name or "-"
    ellipsoid = fit.ellipsoid
    for name, value in zip("xyz", ellipsoid.centroid):
        table.add(label, f"Centroid {name} {units}".rstrip(), float(value))
    table.add(label, f"Radius a {units}".rstrip(), ellipsoid.a)
    table.add(label, f"Radius b {units}".rstrip(), ellipsoid.b)
    table.add(label, f"Radius c {units}".rstrip(), ellipsoid.c)
    return CommandResult(table=table.get_table())
