"""
Surface area of binary images, with optional STL export.

Meshes are generated by an external marching cubes implementation; this
module only measures them and writes them out.
"""

import logging
from typing import Callable, Dict, Optional

import numpy as np

from .axes import (
    BAD_CALIBRATION,
    NOT_3D_IMAGE,
    Image,
    check_image,
    has_matching_spatial_calibration,
    spatial_axes,
    unit_header,
    xyz_indices,
)
from .mesh_io import (
    DEFAULT_EXTENSION,
    TriangleMesh,
    export_meshes,
    format_export_errors,
)
from .results import CommandResult, ResultsTable
from .subspaces import row_label, split_3d_subspaces

logger = logging.getLogger(__name__)

BAD_SCALING = "Cannot scale result because axis calibrations don't match"
SURFACE_AREA_HEADER = "Surface area"


def marching_cubes_mesh(mask: np.ndarray) -> TriangleMesh:
    """
    Surface mesh of the foreground of a 3D binary array.

    The array is padded with background so surfaces touching the edges
    are closed. Vertices are in element coordinates of the input, in its
    axis order. Triangles are wound counter-clockwise seen from outside,
    so their normals point out of the foreground.
    """
    from skimage import measure

    mask = np.asarray(mask, dtype=bool)
    if not mask.any():
        return TriangleMesh.empty()
    padded = np.pad(mask, 1, mode='constant', constant_values=False)
    vertices, faces, _normals, _values = measure.marching_cubes(
        padded.astype(np.float32), level=0.5, allow_degenerate=False)
    # marching_cubes winds faces the other way round
    return TriangleMesh.from_vertices_and_faces(vertices - 1.0, faces[:, ::-1])


def measure_surface_area(image: Optional[Image],
                         table: Optional[ResultsTable] = None,
                         export_path: Optional[str] = None,
                         extension: str = DEFAULT_EXTENSION,
                         mesh_generator: Callable[[np.ndarray], TriangleMesh] = marching_cubes_mesh,
                         status: Optional[Callable[[str], None]] = None
                         ) -> CommandResult:
    """
    Measure the surface area of each 3D subspace of a binary image.

    Args:
        image: Binary image with 3 spatial axes
        table: Table to add to; a new one is made if None
        export_path: Base path (no extension) for STL files, None to skip
        extension: Extension of the STL files
        mesh_generator: Makes a mesh from a 3D binary array indexed [x, y, z]
        status: Optional progress callback

    Returns:
        CommandResult with the table snapshot and any export errors
    """
    check = check_image(image, spatial_range=(3, 3))
    if not check.ok:
        return CommandResult.cancel(check.error.reason)
    order = xyz_indices(spatial_axes(image.axes))
    if order is None:
        return CommandResult.cancel(NOT_3D_IMAGE)

    if table is None:
        table = ResultsTable()
    result = CommandResult()

    units = unit_header(image.axes, "²")
    if not units:
        result.warnings.append(BAD_CALIBRATION)
    if has_matching_spatial_calibration(image.axes):
        scale = spatial_axes(image.axes)[0].scale
        area_scale = scale * scale
    else:
        result.warnings.append(BAD_SCALING)
        area_scale = 1.0
    header = f"{SURFACE_AREA_HEADER} {units}".rstrip()

    if status is not None:
        status("Surface area: creating meshes")
    meshes: Dict[str, TriangleMesh] = {}
    for subspace in split_3d_subspaces(image):
        # Mesh in X, Y, Z order whatever the storage order
        mesh = mesh_generator(np.transpose(subspace.data, order))
        table.add(row_label(image.name, subspace), header,
                  mesh.surface_area * area_scale)
        meshes[subspace.label] = mesh

    if export_path:
        if status is not None:
            status("Surface area: saving files")
        result.export_errors = export_meshes(meshes, export_path, extension)
        if result.export_errors:
            logger.error(format_export_errors(result.export_errors))

    result.table = table.get_table()
    return result
