"""Shared meshes and spectral bases for the test suite.

Meshes are generated in code so the suite needs no data files:
- an icosphere (closed, genus 0, nearly uniform triangles)
- a flat triangulated disk (planar, with boundary)
"""

from __future__ import annotations

import numpy as np
import pytest
from scipy.spatial import Delaunay

from echo_descriptor import EchoConfig, SurfaceMesh, compute_spectral_basis, prepare_surface


TEST_EIGENPAIRS = 60


def make_icosphere(subdivisions: int = 3) -> SurfaceMesh:
    """Unit icosphere built by midpoint subdivision of an icosahedron."""
    t = (1.0 + np.sqrt(5.0)) / 2.0
    verts = [
        [-1, t, 0], [1, t, 0], [-1, -t, 0], [1, -t, 0],
        [0, -1, t], [0, 1, t], [0, -1, -t], [0, 1, -t],
        [t, 0, -1], [t, 0, 1], [-t, 0, -1], [-t, 0, 1],
    ]
    faces = [
        [0, 11, 5], [0, 5, 1], [0, 1, 7], [0, 7, 10], [0, 10, 11],
        [1, 5, 9], [5, 11, 4], [11, 10, 2], [10, 7, 6], [7, 1, 8],
        [3, 9, 4], [3, 4, 2], [3, 2, 6], [3, 6, 8], [3, 8, 9],
        [4, 9, 5], [2, 4, 11], [6, 2, 10], [8, 6, 7], [9, 8, 1],
    ]
    verts = [np.array(v, dtype=np.float64) / np.linalg.norm(v) for v in verts]

    for _ in range(subdivisions):
        midpoints: dict[tuple[int, int], int] = {}

        def midpoint(a: int, b: int) -> int:
            key = (min(a, b), max(a, b))
            if key not in midpoints:
                m = (verts[a] + verts[b]) / 2.0
                verts.append(m / np.linalg.norm(m))
                midpoints[key] = len(verts) - 1
            return midpoints[key]

        refined = []
        for a, b, c in faces:
            ab, bc, ca = midpoint(a, b), midpoint(b, c), midpoint(c, a)
            refined += [[a, ab, ca], [b, bc, ab], [c, ca, bc], [ab, bc, ca]]
        faces = refined

    return SurfaceMesh.from_arrays(np.array(verts), np.array(faces))


def make_flat_disk(radius: float = 1.0, rings: int = 10) -> SurfaceMesh:
    """Planar disk in z=0; vertex 0 is the center, the last ring is the boundary."""
    points = [np.zeros(2)]
    for k in range(1, rings + 1):
        angles = np.linspace(0.0, 2.0 * np.pi, 6 * k, endpoint=False)
        r = radius * k / rings
        points += [np.array([r * np.cos(a), r * np.sin(a)]) for a in angles]
    points = np.array(points)

    faces = Delaunay(points).simplices.astype(np.int64)

    # Orient every face counter-clockwise
    p0, p1, p2 = points[faces[:, 0]], points[faces[:, 1]], points[faces[:, 2]]
    signed = (p1[:, 0] - p0[:, 0]) * (p2[:, 1] - p0[:, 1]) - \
             (p1[:, 1] - p0[:, 1]) * (p2[:, 0] - p0[:, 0])
    faces[signed < 0] = faces[signed < 0][:, [0, 2, 1]]

    verts = np.column_stack([points, np.zeros(len(points))])
    return SurfaceMesh.from_arrays(verts, faces)


@pytest.fixture(scope="session")
def icosphere() -> SurfaceMesh:
    return make_icosphere(3)


@pytest.fixture(scope="session")
def small_icosphere() -> SurfaceMesh:
    return make_icosphere(2)


@pytest.fixture(scope="session")
def flat_disk() -> SurfaceMesh:
    return make_flat_disk()


@pytest.fixture(scope="session")
def icosphere_basis(icosphere):
    return compute_spectral_basis(icosphere, TEST_EIGENPAIRS)


@pytest.fixture(scope="session")
def disk_basis(flat_disk):
    return compute_spectral_basis(flat_disk, TEST_EIGENPAIRS)


@pytest.fixture(scope="session")
def test_config() -> EchoConfig:
    return EchoConfig(num_eigenpairs=TEST_EIGENPAIRS)


@pytest.fixture(scope="session")
def prepared_icosphere(icosphere, icosphere_basis, test_config):
    return prepare_surface(icosphere, test_config, icosphere_basis)


@pytest.fixture(scope="session")
def prepared_disk(flat_disk, disk_basis, test_config):
    return prepare_surface(flat_disk, test_config, disk_basis)
