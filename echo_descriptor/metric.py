# echo_descriptor/metric.py
from __future__ import annotations

import numpy as np
from numpy.typing import NDArray

from .distance import DEFAULT_DISTANCE_TIME, DistanceType, spectral_embedding
from .dtypes import FaceVectors, MetricField, ScalarField, SpectralBasis
from .mesh import SurfaceMesh


# Constants

# Relative tolerance for degenerate triangle detection
# Triangles with area < DEGENERATE_AREA_REL_TOL * max_area are considered degenerate
_DEGENERATE_AREA_REL_TOL: float = 1e-12

# Minimum absolute area threshold (fallback when max_area is very small)
_DEGENERATE_AREA_ABS_TOL: float = 1e-30


def _valid_faces(double_area: NDArray[np.float64]) -> NDArray[np.bool_]:
    abs_double_area = np.abs(double_area)
    max_area = np.max(abs_double_area) if len(abs_double_area) else 0.0
    area_threshold = max(
        _DEGENERATE_AREA_REL_TOL * max_area,
        _DEGENERATE_AREA_ABS_TOL
    )
    return abs_double_area > area_threshold


def _euclidean_frames(mesh: SurfaceMesh) -> NDArray[np.float64]:
    """Edge vectors (v1-v0, v2-v0) in an orthonormal frame of each face.

    Returns E with E[f] = [[a, b], [0, c]] so that its columns are the two
    edge vectors. Shape: (F, 2, 2).
    """
    V, F = mesh.vertices, mesh.faces
    d1 = V[F[:, 1]] - V[F[:, 0]]
    d2 = V[F[:, 2]] - V[F[:, 0]]

    a = np.linalg.norm(d1, axis=1)
    e1 = d1 / np.where(a > 0, a, 1.0)[:, None]
    b = np.sum(d2 * e1, axis=1)
    c = np.linalg.norm(d2 - b[:, None] * e1, axis=1)

    E = np.zeros((len(F), 2, 2))
    E[:, 0, 0] = a
    E[:, 0, 1] = b
    E[:, 1, 1] = c
    return E


def metric_from_embedding(
    mesh: SurfaceMesh,
    embedding: NDArray[np.float64],
) -> MetricField:
    """Pull the Euclidean metric of a vertex embedding back onto each face.

    The embedding is extended linearly over every triangle, so the induced
    metric is constant per face and each face has an exact isometric 2-D
    layout: corner 0 at the origin, corner 1 on +x, corner 2 above the x-axis.
    """
    F = mesh.faces
    P0 = embedding[F[:, 0]]
    d1 = embedding[F[:, 1]] - P0
    d2 = embedding[F[:, 2]] - P0

    # Gram matrix of the embedded edge vectors
    g11 = np.sum(d1 * d1, axis=1)
    g12 = np.sum(d1 * d2, axis=1)
    g22 = np.sum(d2 * d2, axis=1)

    # === Canonical isometric layout
    l01 = np.sqrt(g11)
    l01_safe = np.where(l01 > 0, l01, 1.0)
    x2 = np.where(l01 > 0, g12 / l01_safe, 0.0)
    y2 = np.sqrt(np.clip(g22 - x2 * x2, 0.0, None))

    layouts = np.zeros((len(F), 3, 2))
    layouts[:, 1, 0] = l01
    layouts[:, 2, 0] = x2
    layouts[:, 2, 1] = y2
    areas = 0.5 * l01 * y2

    # === Tensor in the Euclidean face frame: g = E^-T G E^-1
    E = _euclidean_frames(mesh)
    valid = _valid_faces(E[:, 0, 0] * E[:, 1, 1])
    E_safe = np.where(valid[:, None, None], E, np.eye(2)[None])
    E_inv = np.linalg.inv(E_safe)

    G = np.empty((len(F), 2, 2))
    G[:, 0, 0] = g11
    G[:, 0, 1] = G[:, 1, 0] = g12
    G[:, 1, 1] = g22
    tensors = np.einsum("fji,fjk,fkl->fil", E_inv, G, E_inv)
    tensors[~valid] = 0.0

    return MetricField(tensors=tensors, layouts=layouts, areas=areas)


def build_metric(
    mesh: SurfaceMesh,
    basis: SpectralBasis,
    distance_type: DistanceType = DistanceType.BIHARMONIC,
    diffusion_time: float = DEFAULT_DISTANCE_TIME,
) -> MetricField:
    """Per-face metric consistent with ``distance_type``."""
    embedding = spectral_embedding(basis, distance_type, diffusion_time)
    return metric_from_embedding(mesh, embedding)


def metric_gradient(
    mesh: SurfaceMesh,
    field: ScalarField,
    metric: MetricField,
) -> FaceVectors:
    """Gradient of a per-vertex field on every face, in the face's metric layout."""
    F = mesh.faces
    L = metric.layouts
    c0, c1, c2 = L[:, 0], L[:, 1], L[:, 2]

    # Scalar values at face vertices
    u0 = field[F[:, 0]]
    u1 = field[F[:, 1]]
    u2 = field[F[:, 2]]

    # Edge vectors (opposite to each vertex)
    e0 = c2 - c1
    e1 = c0 - c2
    e2 = c1 - c0

    # Layouts are counter-clockwise, so this is twice the unsigned area
    double_area = (c1[:, 0] - c0[:, 0]) * (c2[:, 1] - c0[:, 1]) - \
                  (c1[:, 1] - c0[:, 1]) * (c2[:, 0] - c0[:, 0])
    valid = _valid_faces(double_area)
    double_area_safe = np.where(valid, double_area, 1.0)

    # Weighted sum: grad u = sum_i u_i rot90(e_i) / 2A
    grad_x = (u0 * -e0[:, 1] + u1 * -e1[:, 1] + u2 * -e2[:, 1]) / double_area_safe
    grad_y = (u0 * e0[:, 0] + u1 * e1[:, 0] + u2 * e2[:, 0]) / double_area_safe

    # Zero out degenerate faces
    grad_x = np.where(valid, grad_x, 0.0)
    grad_y = np.where(valid, grad_y, 0.0)

    return np.column_stack([grad_x, grad_y])
