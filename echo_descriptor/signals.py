# echo_descriptor/signals.py
from __future__ import annotations

from typing import Union

import numpy as np
import scipy.sparse
import scipy.sparse.linalg as sla
from numpy.typing import ArrayLike, NDArray

from .dtypes import ScalarField, SpectralBasis
from .errors import NumericalError


DEFAULT_HKS_TIME: float = 0.1
DEFAULT_SMOOTHING_TIME: float = 1.0e7


def heat_kernel_signature(
    basis: SpectralBasis,
    t: Union[float, ArrayLike] = DEFAULT_HKS_TIME,
) -> NDArray[np.float64]:
    """HKS(v, t) = sum_k exp(-lambda_k t) phi_k(v)^2 over every retained mode.

    A scalar ``t`` gives a (V,) field, an array of times gives (V, T).
    """
    times = np.asarray(t, dtype=np.float64)
    squared = basis.evecs * basis.evecs                     # (V, K)
    if times.ndim == 0:
        return squared @ np.exp(-basis.evals * times)
    coefs = np.exp(-basis.evals[:, None] * times[None, :])  # (K, T)
    return squared @ coefs


def smooth_vertex_signal(
    field: ScalarField,
    basis: SpectralBasis,
    diffusion_time: float = DEFAULT_SMOOTHING_TIME,
) -> ScalarField:
    """One backward-Euler heat step applied in the spectral domain.

    x = sum_k phi_k <field, phi_k>_M / (1 + t lambda_k). Components outside
    the truncated basis are discarded.
    """
    field = np.asarray(field, dtype=np.float64)
    coeffs = basis.evecs.T @ (basis.massvec * field)
    filt = 1.0 / (1.0 + diffusion_time * basis.evals)
    return basis.evecs @ (filt * coeffs)


def smooth_vertex_signal_implicit(
    field: ScalarField,
    laplacian: scipy.sparse.spmatrix,
    massvec: NDArray[np.float64],
    diffusion_time: float = DEFAULT_SMOOTHING_TIME,
) -> ScalarField:
    """Solve (M + t L) x = M field with a sparse LU factorization."""
    field = np.asarray(field, dtype=np.float64)
    A = (scipy.sparse.diags(massvec) + diffusion_time * laplacian).tocsc()
    try:
        solver = sla.splu(A)
    except RuntimeError as e:
        raise NumericalError(f"Smoothing system is singular: {e}") from e

    x = solver.solve(massvec * field)
    if not np.all(np.isfinite(x)):
        raise NumericalError("Smoothing produced non-finite values")
    return x
