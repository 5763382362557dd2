# echo_descriptor/dtypes.py
from __future__ import annotations

from typing import NamedTuple, TypeAlias

import numpy as np
from numpy.typing import NDArray


# Type Aliases
ScalarField: TypeAlias = NDArray[np.float64]
"""Per-vertex scalar signal. Shape: (V,)."""

FaceVectors: TypeAlias = NDArray[np.float64]
"""Per-face tangent vectors in each face's metric layout. Shape: (F, 2)."""

MetricTensors: TypeAlias = NDArray[np.float64]
"""Per-face symmetric positive semi-definite 2x2 tensors. Shape: (F, 2, 2)."""

Descriptor: TypeAlias = NDArray[np.float32]
"""ECHO histogram. Shape: (2n+1, 2n+1). Values: finite or +inf (no support)."""


# Data Containers
class SurfacePoint(NamedTuple):
    """A point on the surface given by a face and barycentric coordinates."""
    face: int
    bary: NDArray[np.float64]           # (3,) float64, non-negative, sums to 1


class SpectralBasis(NamedTuple):
    """Truncated Laplace-Beltrami eigen decomposition."""
    evals: NDArray[np.float64]          # (K,) non-decreasing
    evecs: NDArray[np.float64]          # (V, K) M-orthonormal columns
    massvec: NDArray[np.float64]        # (V,) lumped vertex areas

    @property
    def num_vertices(self) -> int:
        return int(self.evecs.shape[0])

    @property
    def num_eigenpairs(self) -> int:
        return int(self.evals.shape[0])


class MetricField(NamedTuple):
    """Per-face metric induced by a spectral distance."""
    tensors: MetricTensors              # (F, 2, 2) in an orthonormal face frame
    layouts: NDArray[np.float64]        # (F, 3, 2) isometric corner layout under the metric
    areas: NDArray[np.float64]          # (F,) metric areas

    def total_area(self) -> float:
        return float(np.sum(self.areas))

    def edge_lengths(self) -> NDArray[np.float64]:
        """Metric length of the edge opposite each corner. Shape: (F, 3)."""
        L = self.layouts
        return np.stack([
            np.linalg.norm(L[:, 2] - L[:, 1], axis=1),
            np.linalg.norm(L[:, 0] - L[:, 2], axis=1),
            np.linalg.norm(L[:, 1] - L[:, 0], axis=1),
        ], axis=1)
