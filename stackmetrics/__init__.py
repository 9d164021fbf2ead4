"""
stackmetrics - Batch measurements of N-dimensional binary image stacks.

This package splits hyperstacks into independent 2D/3D subspaces, measures
each one (element fraction, box counting fractal dimension, surface area),
fits ellipsoids to point sets, collects the results into a single table
and writes surface meshes as binary STL.
"""

from .axes import (
    AxisType,
    CalibratedAxis,
    Image,
    ImageCheck,
    ValidationError,
    classify_axes,
    check_image,
    calibrated_element_size,
)
from .subspaces import (
    Subspace,
    decompose,
    split_3d_subspaces,
    row_label,
    sanitise_label,
)
from .element_fraction import (
    compute_element_fraction,
    measure_element_fraction,
    ElementFractionResult,
)
from .box_counting import (
    BoxCountSettings,
    FractalDimensionResult,
    box_count,
    compute_fractal_dimension,
    fit_dimension,
    hollow,
    measure_fractal_dimension,
)
from .ellipsoid import (
    QUADRIC_TERMS,
    Ellipsoid,
    EllipsoidFitResult,
    fit_ellipsoid,
    measure_ellipsoid,
)
from .results import (
    CommandResult,
    DuplicateCellError,
    ResultsTable,
    TableSnapshot,
)
from .mesh_io import (
    TriangleMesh,
    export_meshes,
    load_stl,
    write_binary_stl,
)
from .surface import (
    marching_cubes_mesh,
    measure_surface_area,
)

__version__ = "0.1.0"
__all__ = [
    # Axes and images
    "AxisType",
    "CalibratedAxis",
    "Image",
    "ImageCheck",
    "ValidationError",
    "classify_axes",
    "check_image",
    "calibrated_element_size",
    # Subspaces
    "Subspace",
    "decompose",
    "split_3d_subspaces",
    "row_label",
    "sanitise_label",
    # Element fraction
    "compute_element_fraction",
    "measure_element_fraction",
    "ElementFractionResult",
    # Fractal dimension
    "BoxCountSettings",
    "FractalDimensionResult",
    "box_count",
    "compute_fractal_dimension",
    "fit_dimension",
    "hollow",
    "measure_fractal_dimension",
    # Ellipsoid fitting
    "QUADRIC_TERMS",
    "Ellipsoid",
    "EllipsoidFitResult",
    "fit_ellipsoid",
    "measure_ellipsoid",
    # Results
    "CommandResult",
    "DuplicateCellError",
    "ResultsTable",
    "TableSnapshot",
    # Mesh I/O
    "TriangleMesh",
    "export_meshes",
    "load_stl",
    "write_binary_stl",
    # Surface area
    "marching_cubes_mesh",
    "measure_surface_area",
]
