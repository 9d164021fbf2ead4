"""
Tests for triangle meshes and binary STL export.
"""

import os
import sys

import numpy as np
import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from stackmetrics.mesh_io import (
    STL_HEADER,
    STL_TRIANGLE,
    STL_WRITE_ERROR,
    TriangleMesh,
    export_meshes,
    format_export_errors,
    load_stl,
    mesh_file_path,
    split_export_path,
    write_binary_stl,
)


def create_unit_cube() -> TriangleMesh:
    """Closed unit cube, 12 triangles wound counter-clockwise from outside."""
    vertices = np.array([
        [0, 0, 0], [1, 0, 0], [1, 1, 0], [0, 1, 0],
        [0, 0, 1], [1, 0, 1], [1, 1, 1], [0, 1, 1],
    ], dtype=np.float64)
    faces = np.array([
        [0, 2, 1], [0, 3, 2],  # z = 0
        [4, 5, 6], [4, 6, 7],  # z = 1
        [0, 1, 5], [0, 5, 4],  # y = 0
        [2, 3, 7], [2, 7, 6],  # y = 1
        [0, 4, 7], [0, 7, 3],  # x = 0
        [1, 2, 6], [1, 6, 5],  # x = 1
    ])
    return TriangleMesh.from_vertices_and_faces(vertices, faces)


def test_cube_geometry():
    mesh = create_unit_cube()

    assert mesh.n_vertices == 8
    assert mesh.n_triangles == 12
    assert np.isclose(mesh.surface_area, 6.0)

    normals = mesh.normals()
    np.testing.assert_allclose(np.linalg.norm(normals, axis=1), 1.0)
    np.testing.assert_allclose(normals[0], [0, 0, -1])
    np.testing.assert_allclose(normals[11], [1, 0, 0])


def test_degenerate_triangle_normal():
    mesh = TriangleMesh.from_vertices_and_faces(
        [[0, 0, 0], [1, 1, 1], [2, 2, 2]], [[0, 1, 2]])

    assert mesh.surface_area == 0.0
    np.testing.assert_array_equal(mesh.normals(), [[0, 0, 0]])


def test_face_indices_checked():
    with pytest.raises(ValueError):
        TriangleMesh.from_vertices_and_faces([[0, 0, 0], [1, 0, 0]], [[0, 1, 2]])


def test_write_binary_stl(tmp_path):
    mesh = create_unit_cube()
    path = tmp_path / "cube.stl"

    write_binary_stl(str(path), mesh)

    raw = path.read_bytes()
    assert len(raw) == 80 + 4 + 50 * 12
    assert raw[:80] == STL_HEADER.encode("ascii")
    assert np.frombuffer(raw[80:84], dtype="<u4")[0] == 12

    records = np.frombuffer(raw[84:], dtype=STL_TRIANGLE)
    assert np.all(records["attribute"] == 0)
    np.testing.assert_allclose(records["normal"], mesh.normals(), atol=1e-7)
    # Triangles keep their order
    np.testing.assert_allclose(records["v0"], mesh.get_all_triangle_vertices()[:, 0])
    np.testing.assert_allclose(records["v2"][3], [0, 1, 1])


def test_write_empty_mesh(tmp_path):
    path = tmp_path / "empty.stl"
    write_binary_stl(str(path), TriangleMesh.empty())

    raw = path.read_bytes()
    assert len(raw) == 84
    assert np.frombuffer(raw[80:84], dtype="<u4")[0] == 0


def test_round_trip(tmp_path):
    mesh = create_unit_cube()
    path = str(tmp_path / "cube.stl")
    write_binary_stl(path, mesh)

    loaded = load_stl(path)

    assert loaded.n_triangles == 12
    np.testing.assert_allclose(loaded.get_all_triangle_vertices(),
                               mesh.get_all_triangle_vertices())
    assert np.isclose(loaded.surface_area, 6.0)


def test_load_ascii(tmp_path):
    path = tmp_path / "triangle.stl"
    path.write_text(
        "solid triangle\n"
        "  facet normal 0 0 1\n"
        "    outer loop\n"
        "      vertex 0 0 0\n"
        "      vertex 2 0 0\n"
        "      vertex 0 2 0\n"
        "    endloop\n"
        "  endfacet\n"
        "endsolid triangle\n"
    )

    mesh = load_stl(str(path))
    assert mesh.n_triangles == 1
    assert np.isclose(mesh.surface_area, 2.0)


def test_load_truncated(tmp_path):
    path = tmp_path / "short.stl"
    path.write_bytes(STL_HEADER.encode("ascii") + np.array([5], dtype="<u4").tobytes() +
                     bytes(50))
    with pytest.raises(ValueError):
        load_stl(str(path))


def test_write_errors(tmp_path):
    with pytest.raises(ValueError):
        write_binary_stl(str(tmp_path / "none.stl"), None)
    with pytest.raises(ValueError):
        write_binary_stl("", create_unit_cube())
    with pytest.raises(OSError):
        write_binary_stl(str(tmp_path / "missing" / "cube.stl"), create_unit_cube())


def test_mesh_file_path():
    assert mesh_file_path("out/bone", "Time: 2, Channel: 1") == \
        "out/bone_Time_2_Channel_1.stl"
    assert mesh_file_path("out/bone", "", ".STL") == "out/bone.STL"


def test_split_export_path():
    assert split_export_path("meshes/bone") == ("meshes/bone", ".stl")
    assert split_export_path("meshes/bone.STL") == ("meshes/bone", ".STL")


def test_export_meshes_collects_errors():
    written = []

    def writer(path, mesh):
        if "Time_2" in path:
            raise PermissionError("Permission denied")
        written.append(path)

    meshes = {"Time: 1": create_unit_cube(), "Time: 2": create_unit_cube(),
              "Time: 3": create_unit_cube()}
    errors = export_meshes(meshes, "bone", writer=writer)

    assert written == ["bone_Time_1.stl", "bone_Time_3.stl"]
    assert errors == {"bone_Time_2.stl": "Permission denied"}

    report = format_export_errors(errors)
    assert report.startswith(STL_WRITE_ERROR)
    assert "bone_Time_2.stl: Permission denied" in report


def test_export_meshes_to_disk(tmp_path):
    base = str(tmp_path / "bone")
    errors = export_meshes({"Time: 1": create_unit_cube()}, base)

    assert errors == {}
    assert os.path.getsize(base + "_Time_1.stl") == 684
