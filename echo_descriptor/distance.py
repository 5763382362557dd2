# echo_descriptor/distance.py
from __future__ import annotations

from enum import Enum
from typing import Sequence, Tuple, Union

import numpy as np
from numpy.typing import NDArray

from .dtypes import ScalarField, SpectralBasis, SurfacePoint
from .errors import ConfigurationError, InvalidQuery
from .mesh import SurfaceMesh


# Constants

# Modes with lambda <= _ZERO_MODE_REL_TOL * lambda_max are treated as constant
_ZERO_MODE_REL_TOL: float = 1e-8

# Tolerance on barycentric coordinates (negativity and sum-to-one)
_BARY_TOL: float = 1e-6

DEFAULT_DISTANCE_TIME: float = 0.1

Query = Union[int, SurfacePoint, Tuple[int, Sequence[float]]]


class DistanceType(Enum):
    """Spectral pseudo-distances d(p,q)^2 = sum_k w(lambda_k) (phi_k(p) - phi_k(q))^2."""
    BIHARMONIC = "biharmonic"
    DIFFUSION = "diffusion"
    COMMUTE_TIME = "commute_time"

    def weights(
        self,
        evals: NDArray[np.float64],
        diffusion_time: float = DEFAULT_DISTANCE_TIME,
    ) -> NDArray[np.float64]:
        """Per-mode weights w(lambda); only call on non-zero eigenvalues."""
        if self is DistanceType.BIHARMONIC:
            return 1.0 / (evals * evals)
        if self is DistanceType.DIFFUSION:
            return np.exp(-2.0 * evals * diffusion_time)
        return 1.0 / evals

    @classmethod
    def parse(cls, value: Union["DistanceType", str, int]) -> "DistanceType":
        """Accept a member, its name/value (any case, '-' or '_') or its index."""
        if isinstance(value, cls):
            return value
        members = list(cls)
        if isinstance(value, (int, np.integer)) and not isinstance(value, bool):
            if 0 <= value < len(members):
                return members[int(value)]
            raise ConfigurationError(
                f"Distance index {value} out of range [0, {len(members) - 1}]"
            )
        if isinstance(value, str):
            key = value.strip().lower().replace("-", "_").replace(" ", "_")
            if key.isdigit():
                return cls.parse(int(key))
            for member in members:
                if key in (member.value, member.name.lower()):
                    return member
        raise ConfigurationError(
            f"Unknown distance type {value!r}; choose from "
            f"{[m.value for m in members]}"
        )


def nonzero_modes(evals: NDArray[np.float64]) -> NDArray[np.bool_]:
    """Mask of the modes that enter the distance sums."""
    scale = max(float(np.max(evals)) if len(evals) else 0.0, 1e-300)
    return evals > _ZERO_MODE_REL_TOL * scale


def spectral_embedding(
    basis: SpectralBasis,
    distance_type: DistanceType = DistanceType.BIHARMONIC,
    diffusion_time: float = DEFAULT_DISTANCE_TIME,
) -> NDArray[np.float64]:
    """Vertex embedding whose Euclidean distances are the chosen pseudo-distance.

    Returns Phi with Phi[v, k] = sqrt(w(lambda_k)) phi_k(v), zero modes
    dropped. Shape: (V, K').
    """
    mask = nonzero_modes(basis.evals)
    w = distance_type.weights(basis.evals[mask], diffusion_time)
    return basis.evecs[:, mask] * np.sqrt(w)[None, :]


def resolve_surface_point(mesh: SurfaceMesh, query: Query) -> SurfacePoint:
    """Validate a query and return it as a face + barycentric point.

    A vertex resolves to its lowest-indexed incident face with a one-hot
    barycentric. Barycentrics off by less than the tolerance are
    renormalized; anything else raises :class:`InvalidQuery`.
    """
    if isinstance(query, (int, np.integer)) and not isinstance(query, bool):
        vertex = int(query)
        if not 0 <= vertex < mesh.num_vertices:
            raise InvalidQuery(
                f"Vertex {vertex} out of range [0, {mesh.num_vertices - 1}]"
            )
        face, corner = mesh.incident_face(vertex)
        if face < 0:
            raise InvalidQuery(f"Vertex {vertex} is not referenced by any face")
        bary = np.zeros(3, dtype=np.float64)
        bary[corner] = 1.0
        return SurfacePoint(face, bary)

    try:
        face, bary = query
    except (TypeError, ValueError) as e:
        raise InvalidQuery(f"Cannot interpret query {query!r}") from e

    if isinstance(face, bool) or not isinstance(face, (int, np.integer)):
        raise InvalidQuery(f"Face index must be an integer, got {face!r}")
    face = int(face)
    if not 0 <= face < mesh.num_faces:
        raise InvalidQuery(f"Face {face} out of range [0, {mesh.num_faces - 1}]")

    bary = np.asarray(bary, dtype=np.float64)
    if bary.shape != (3,) or not np.all(np.isfinite(bary)):
        raise InvalidQuery(f"Barycentric coordinates must be 3 finite values, got {bary}")
    if np.any(bary < -_BARY_TOL):
        raise InvalidQuery(f"Barycentric coordinates must be non-negative, got {bary}")
    if abs(float(np.sum(bary)) - 1.0) > _BARY_TOL:
        raise InvalidQuery(f"Barycentric coordinates must sum to 1, got {bary}")

    bary = np.clip(bary, 0.0, None)
    return SurfacePoint(face, bary / np.sum(bary))


def point_embedding(
    mesh: SurfaceMesh,
    embedding: NDArray[np.float64],
    point: SurfacePoint,
) -> NDArray[np.float64]:
    """Barycentric interpolation of the vertex embedding. Shape: (K',)."""
    return point.bary @ embedding[mesh.faces[point.face]]


def embedding_distances(
    embedding: NDArray[np.float64],
    source: NDArray[np.float64],
) -> ScalarField:
    """Distance from an embedded point to every embedded vertex."""
    return np.linalg.norm(embedding - source[None, :], axis=1)


def distance_field(
    mesh: SurfaceMesh,
    basis: SpectralBasis,
    source: Query,
    distance_type: DistanceType = DistanceType.BIHARMONIC,
    diffusion_time: float = DEFAULT_DISTANCE_TIME,
) -> ScalarField:
    """Pseudo-distance from ``source`` to every vertex of ``mesh``."""
    point = resolve_surface_point(mesh, source)
    embedding = spectral_embedding(basis, distance_type, diffusion_time)
    return embedding_distances(embedding, point_embedding(mesh, embedding, point))


def surface_distance(
    mesh: SurfaceMesh,
    embedding: NDArray[np.float64],
    p: Query,
    q: Query,
) -> float:
    """Pseudo-distance between two surface points."""
    phi_p = point_embedding(mesh, embedding, resolve_surface_point(mesh, p))
    phi_q = point_embedding(mesh, embedding, resolve_surface_point(mesh, q))
    return float(np.linalg.norm(phi_p - phi_q))
