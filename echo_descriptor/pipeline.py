# echo_descriptor/pipeline.py
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import List, NamedTuple, Optional, Union

import numpy as np
from numpy.typing import NDArray

from .descriptor import (
    DEFAULT_RADIAL_BINS,
    DEFAULT_SUPPORT_FACTOR,
    DescriptorStatistic,
    EchoDescriptorBuilder,
    support_radius,
)
from .distance import (
    DEFAULT_DISTANCE_TIME,
    DistanceType,
    Query,
    resolve_surface_point,
    spectral_embedding,
)
from .dtypes import Descriptor, FaceVectors, MetricField, ScalarField, SpectralBasis
from .errors import ConfigurationError, NumericalError
from .mesh import SurfaceMesh
from .metric import metric_from_embedding, metric_gradient
from .signals import DEFAULT_HKS_TIME, DEFAULT_SMOOTHING_TIME, heat_kernel_signature, smooth_vertex_signal
from .spectral import DEFAULT_NUM_EIGENPAIRS, MIN_TOTAL_AREA, compute_spectral_basis

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EchoConfig:
    """Numeric configuration of the descriptor pipeline."""

    support_factor: float = DEFAULT_SUPPORT_FACTOR
    radial_bins: int = DEFAULT_RADIAL_BINS
    resolution: Optional[int] = None
    distance_type: Union[DistanceType, str, int] = DistanceType.BIHARMONIC
    statistic: Union[DescriptorStatistic, str] = DescriptorStatistic.VALUE
    hks_time: float = DEFAULT_HKS_TIME
    smoothing_time: float = DEFAULT_SMOOTHING_TIME
    distance_time: float = DEFAULT_DISTANCE_TIME
    num_eigenpairs: int = DEFAULT_NUM_EIGENPAIRS
    disk_support: bool = False
    deviation: float = -1.0

    def __post_init__(self) -> None:
        # Normalize enum-like fields so that equal configs compare equal
        object.__setattr__(self, "distance_type", DistanceType.parse(self.distance_type))
        object.__setattr__(self, "statistic", DescriptorStatistic.parse(self.statistic))
        self.validate()

    @property
    def output_resolution(self) -> int:
        return self.resolution if self.resolution is not None else 2 * self.radial_bins + 1

    def validate(self) -> None:
        """Raise :class:`ConfigurationError` on inconsistent values."""
        if not isinstance(self.radial_bins, (int, np.integer)) or self.radial_bins < 1:
            raise ConfigurationError(f"radial_bins must be a positive integer, got {self.radial_bins}")
        if self.resolution is not None and (
            not isinstance(self.resolution, (int, np.integer)) or self.resolution < 2
        ):
            raise ConfigurationError(f"resolution must be an integer >= 2, got {self.resolution}")
        if not isinstance(self.num_eigenpairs, (int, np.integer)) or self.num_eigenpairs < 1:
            raise ConfigurationError(f"num_eigenpairs must be a positive integer, got {self.num_eigenpairs}")
        for name in ("support_factor", "hks_time", "smoothing_time", "distance_time"):
            value = getattr(self, name)
            if not (np.isfinite(value) and value > 0):
                raise ConfigurationError(f"{name} must be positive and finite, got {value}")


class PreparedSurface(NamedTuple):
    """Per-mesh quantities shared read-only by every descriptor query."""
    mesh: SurfaceMesh
    basis: SpectralBasis
    hks: ScalarField                    # smoothed heat kernel signature
    embedding: NDArray[np.float64]      # (V, K') distance embedding
    metric: MetricField
    gradients: FaceVectors
    adjacency: NDArray[np.int64]
    rho: float


def prepare_surface(
    mesh: SurfaceMesh,
    config: EchoConfig = EchoConfig(),
    basis: Optional[SpectralBasis] = None,
) -> PreparedSurface:
    """Run every per-mesh stage: spectrum, HKS, smoothing, metric, gradients."""
    if mesh.num_faces == 0 or mesh.total_area() <= MIN_TOTAL_AREA:
        raise NumericalError("Mesh has zero total area")

    if basis is None:
        start = time.perf_counter()
        basis = compute_spectral_basis(mesh, config.num_eigenpairs)
        logger.debug("Got spectrum: %.3fs", time.perf_counter() - start)
    elif basis.num_vertices != mesh.num_vertices:
        raise ConfigurationError(
            f"Spectral basis has {basis.num_vertices} vertices, mesh has {mesh.num_vertices}"
        )

    start = time.perf_counter()
    hks = heat_kernel_signature(basis, config.hks_time)
    logger.debug("Got HKS: %.3fs", time.perf_counter() - start)

    start = time.perf_counter()
    hks = smooth_vertex_signal(hks, basis, config.smoothing_time)
    logger.debug("Smoothed HKS: %.3fs", time.perf_counter() - start)

    start = time.perf_counter()
    embedding = spectral_embedding(basis, config.distance_type, config.distance_time)
    metric = metric_from_embedding(mesh, embedding)
    gradients = metric_gradient(mesh, hks, metric)
    logger.debug("Got HKS gradients: %.3fs", time.perf_counter() - start)

    rho = support_radius(metric.total_area(), config.support_factor)
    logger.debug("Support radius: %.6g (metric area %.6g)", rho, metric.total_area())

    return PreparedSurface(
        mesh=mesh,
        basis=basis,
        hks=hks,
        embedding=embedding,
        metric=metric,
        gradients=gradients,
        adjacency=mesh.face_adjacency(),
        rho=rho,
    )


def compute_echo(
    prepared: PreparedSurface,
    query: Query,
    config: EchoConfig = EchoConfig(),
) -> Descriptor:
    """ECHO descriptor at a vertex index or a (face, barycentric) point."""
    source = resolve_surface_point(prepared.mesh, query)
    return EchoDescriptorBuilder.compute_descriptor(
        prepared.mesh,
        prepared.metric,
        prepared.embedding,
        prepared.gradients,
        prepared.hks,
        source,
        prepared.rho,
        radial_bins=config.radial_bins,
        statistic=config.statistic,
        adjacency=prepared.adjacency,
    )


def compute_random_echoes(
    prepared: PreparedSurface,
    count: int,
    config: EchoConfig = EchoConfig(),
    seed: Optional[int] = None,
    progress: bool = False,
) -> List[Descriptor]:
    """Descriptors at ``count`` vertices drawn uniformly among those used by a face."""
    if count < 0:
        raise ConfigurationError(f"count must be non-negative, got {count}")
    rng = np.random.default_rng(seed)
    vertices = rng.choice(np.unique(prepared.mesh.faces), size=count)

    iterator = vertices
    if progress:
        from tqdm import tqdm
        iterator = tqdm(vertices, desc="ECHO")

    return [compute_echo(prepared, int(v), config) for v in iterator]
