"""
Mesh data structures and binary STL I/O.

Meshes are written as little-endian binary STL: an 80-byte header, a
uint32 triangle count, then 50 bytes per triangle (normal and three
vertices as float32, plus a zero uint16 attribute). Reading supports both
binary and ASCII STL.
"""

import logging
import os
from dataclasses import dataclass
from typing import Callable, Dict, Mapping, Optional

import numpy as np

from .subspaces import sanitise_label

logger = logging.getLogger(__name__)

STL_HEADER = "Binary STL created by stackmetrics".ljust(80, ".")
STL_WRITE_ERROR = "Failed to write the following STL files:\n\n"
DEFAULT_EXTENSION = ".stl"

# One triangle record of a binary STL file, 50 bytes
STL_TRIANGLE = np.dtype([
    ("normal", "<f4", (3,)),
    ("v0", "<f4", (3,)),
    ("v1", "<f4", (3,)),
    ("v2", "<f4", (3,)),
    ("attribute", "<u2"),
])


@dataclass
class TriangleMesh:
    """
    Triangulated surface mesh.

    Attributes:
        vertices: Nx3 array of vertex coordinates
        triangles: Mx3 array of vertex indices (0-based)
    """
    vertices: np.ndarray  # Shape: (N, 3)
    triangles: np.ndarray  # Shape: (M, 3), dtype: int

    @property
    def n_vertices(self) -> int:
        """Number of vertices."""
        return len(self.vertices)

    @property
    def n_triangles(self) -> int:
        """Number of triangles."""
        return len(self.triangles)

    @property
    def surface_area(self) -> float:
        """Total surface area of mesh."""
        if self.n_triangles == 0:
            return 0.0
        return float(np.sum(self.triangle_areas()))

    def _cross_products(self) -> np.ndarray:
        tris = self.get_all_triangle_vertices()
        return np.cross(tris[:, 1] - tris[:, 0], tris[:, 2] - tris[:, 0])

    def triangle_areas(self) -> np.ndarray:
        """Compute area of each triangle."""
        # Cross product gives area * 2
        return 0.5 * np.linalg.norm(self._cross_products(), axis=1)

    def normals(self) -> np.ndarray:
        """
        Unit normal of each triangle, following the vertex winding.

        Degenerate triangles get a zero normal.
        """
        cross = self._cross_products()
        lengths = np.linalg.norm(cross, axis=1)
        normals = np.zeros_like(cross)
        nonzero = lengths > 0
        normals[nonzero] = cross[nonzero] / lengths[nonzero, np.newaxis]
        return normals

    def get_all_triangle_vertices(self) -> np.ndarray:
        """
        Get all triangle vertices as Mx3x3 array.

        Returns:
            Array of shape (M, 3, 3) where result[i] gives the 3 vertices
            of triangle i, each vertex being (x, y, z).
        """
        if self.n_triangles == 0:
            return np.empty((0, 3, 3), dtype=np.float64)
        return self.vertices[self.triangles]

    @classmethod
    def from_vertices_and_faces(cls, vertices: np.ndarray,
                                faces: np.ndarray) -> 'TriangleMesh':
        """Create mesh from vertex and face arrays."""
        vertices = np.asarray(vertices, dtype=np.float64).reshape(-1, 3)
        faces = np.asarray(faces, dtype=np.int64).reshape(-1, 3)
        if len(faces) and (faces.min() < 0 or faces.max() >= len(vertices)):
            raise ValueError("Face indices out of range")
        return cls(vertices=vertices, triangles=faces)

    @classmethod
    def empty(cls) -> 'TriangleMesh':
        return cls.from_vertices_and_faces(np.empty((0, 3)), np.empty((0, 3)))


def write_binary_stl(path: str, mesh: Optional[TriangleMesh]) -> None:
    """
    Write a mesh to a binary STL file.

    Triangles are written in the order of the mesh.

    Args:
        path: Output file path
        mesh: Mesh to write

    Raises:
        ValueError: If the mesh is None or the path is empty
        OSError: If the file can't be created or written
    """
    if mesh is None:
        raise ValueError("Mesh cannot be None")
    if not path:
        raise ValueError("Filename cannot be None or empty")

    records = np.zeros(mesh.n_triangles, dtype=STL_TRIANGLE)
    if mesh.n_triangles:
        tris = mesh.get_all_triangle_vertices()
        records["normal"] = mesh.normals()
        records["v0"] = tris[:, 0]
        records["v1"] = tris[:, 1]
        records["v2"] = tris[:, 2]

    with open(path, 'wb') as f:
        f.write(STL_HEADER.encode('ascii'))
        f.write(np.array([mesh.n_triangles], dtype='<u4').tobytes())
        f.write(records.tobytes())

    logger.debug("Wrote %d triangles to %s", mesh.n_triangles, path)


def load_stl(filename: str) -> TriangleMesh:
    """
    Load mesh from STL file (ASCII or binary).
    """
    # Try to detect if ASCII or binary
    with open(filename, 'rb') as f:
        header = f.read(80)

    # ASCII STL starts with "solid"
    is_ascii = header.startswith(b'solid') and b'\x00' not in header

    if is_ascii:
        return _load_stl_ascii(filename)
    else:
        return _load_stl_binary(filename)


def _load_stl_ascii(filename: str) -> TriangleMesh:
    """Load ASCII STL file."""
    vertices = []

    with open(filename, 'r') as f:
        for line in f:
            line = line.strip().lower()

            if line.startswith('vertex'):
                parts = line.split()
                vertices.append([float(parts[1]), float(parts[2]), float(parts[3])])

    vertices = np.array(vertices, dtype=np.float64).reshape(-1, 3)
    n_triangles = len(vertices) // 3
    triangles = np.arange(n_triangles * 3, dtype=np.int64).reshape(-1, 3)

    return TriangleMesh.from_vertices_and_faces(vertices[:n_triangles * 3], triangles)


def _load_stl_binary(filename: str) -> TriangleMesh:
    """Load binary STL file."""
    with open(filename, 'rb') as f:
        # Skip 80-byte header
        f.read(80)

        # Read number of triangles
        n_triangles = int(np.frombuffer(f.read(4), dtype='<u4')[0])
        data = f.read(n_triangles * STL_TRIANGLE.itemsize)

    if len(data) != n_triangles * STL_TRIANGLE.itemsize:
        raise ValueError(f"Truncated STL file: expected {n_triangles} triangles")

    records = np.frombuffer(data, dtype=STL_TRIANGLE)
    vertices = np.stack([records["v0"], records["v1"], records["v2"]], axis=1)
    vertices = vertices.reshape(-1, 3).astype(np.float64)
    triangles = np.arange(n_triangles * 3, dtype=np.int64).reshape(-1, 3)

    return TriangleMesh.from_vertices_and_faces(vertices, triangles)


def strip_extension(path: str) -> str:
    return os.path.splitext(path)[0]


def split_export_path(path: str):
    """
    Split a chosen output path into (base, extension).

    The extension defaults to ".stl" when the file name has none.
    """
    base, extension = os.path.splitext(path)
    if not extension:
        extension = DEFAULT_EXTENSION
    return base, extension


def mesh_file_path(base: str, label: str, extension: str = DEFAULT_EXTENSION) -> str:
    """File path of a subspace mesh: base + "_" + sanitised label + extension."""
    suffix = sanitise_label(label)
    if not suffix:
        return base + extension
    return f"{base}_{suffix}{extension}"


def export_meshes(meshes: Mapping[str, TriangleMesh], base: str,
                  extension: str = DEFAULT_EXTENSION,
                  writer: Callable[[str, TriangleMesh], None] = write_binary_stl
                  ) -> Dict[str, str]:
    """
    Write each subspace mesh to its own STL file.

    Every export is attempted; failures don't stop the remaining ones.

    Args:
        meshes: {subspace label: mesh}
        base: Path without extension, usually from the image name
        extension: File extension including the dot
        writer: Function that writes one mesh

    Returns:
        {file path: error message} of the exports that failed
    """
    errors = {}
    for label, mesh in meshes.items():
        path = mesh_file_path(base, label, extension)
        try:
            writer(path, mesh)
        except OSError as e:
            logger.warning("Failed to write %s: %s", path, e)
            errors[path] = str(e)
    return errors


def format_export_errors(errors: Mapping[str, str]) -> str:
    """One report naming every failed export."""
    lines = [f"{path}: {message}" for path, message in errors.items()]
    return STL_WRITE_ERROR + "\n".join(lines)
