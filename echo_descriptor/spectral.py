# echo_descriptor/spectral.py
from __future__ import annotations

import logging
import warnings
from typing import Optional, Tuple

import numpy as np
import potpourri3d as pp3d
import scipy.sparse
import scipy.sparse.linalg as sla
from numpy.typing import NDArray

from .dtypes import SpectralBasis
from .errors import ConfigurationError, NumericalError
from .mesh import SurfaceMesh

logger = logging.getLogger(__name__)


# Constants

# Regularization added to the Laplacian diagonal and to the mass vector
_OPERATOR_EPS: float = 1e-12

# Shift for shift-invert mode (eigenvalues closest to zero)
_EIGSH_SIGMA: float = 1e-12

# Number of regularization retries before the eigensolve is declared failed
_MAX_EIGSH_RETRIES: int = 4

# Meshes with less total area than this are treated as degenerate
MIN_TOTAL_AREA: float = 1e-20

DEFAULT_NUM_EIGENPAIRS: int = 200


def build_operators(
    mesh: SurfaceMesh,
) -> Tuple[scipy.sparse.csr_matrix, NDArray[np.float64]]:
    """Cotangent Laplacian (positive semi-definite) and lumped mass vector."""
    L = pp3d.cotan_laplacian(mesh.vertices, mesh.faces, denom_eps=_OPERATOR_EPS)
    massvec = np.asarray(pp3d.vertex_areas(mesh.vertices, mesh.faces), dtype=np.float64)
    massvec = massvec + _OPERATOR_EPS * np.mean(massvec)

    if np.isnan(L.data).any():
        raise NumericalError("NaN entries in the cotangent Laplacian")
    if np.isnan(massvec).any():
        raise NumericalError("NaN entries in the mass matrix")

    return scipy.sparse.csr_matrix(L), massvec


def _normalize_eigenvectors(
    evecs: NDArray[np.float64],
    massvec: NDArray[np.float64],
) -> NDArray[np.float64]:
    """Rescale columns to unit M-norm and make the largest entry positive."""
    norms = np.sqrt(np.sum(massvec[:, None] * evecs * evecs, axis=0))
    evecs = evecs / np.where(norms > 0, norms, 1.0)

    # Sign convention keeps repeated runs comparable
    max_idx = np.argmax(np.abs(evecs), axis=0)
    signs = np.sign(evecs[max_idx, np.arange(evecs.shape[1])])
    signs[signs == 0] = 1.0
    return evecs * signs


def compute_spectral_basis(
    mesh: SurfaceMesh,
    num_eigenpairs: int = DEFAULT_NUM_EIGENPAIRS,
) -> SpectralBasis:
    """Solve ``L phi = lambda M phi`` for the smallest eigenpairs.

    The constant mode is kept as the first pair. Eigenvalues come back
    clipped at zero and sorted non-decreasingly, eigenvectors satisfy
    ``phi_k^T M phi_k = 1``.
    """
    if num_eigenpairs < 1:
        raise ConfigurationError(f"num_eigenpairs must be positive, got {num_eigenpairs}")
    if mesh.num_faces == 0 or mesh.total_area() <= MIN_TOTAL_AREA:
        raise NumericalError("Mesh has zero total area")

    n = mesh.num_vertices
    k = num_eigenpairs
    if k >= n:
        k = n - 1
        warnings.warn(
            f"[compute_spectral_basis] Requested {num_eigenpairs} eigenpairs "
            f"on a mesh with {n} vertices, using {k}"
        )
    if k < 1:
        raise NumericalError(f"Mesh with {n} vertices has no spectrum to compute")

    L, massvec = build_operators(mesh)

    L_eigsh = (L + scipy.sparse.identity(n) * _OPERATOR_EPS).tocsc()
    Mmat = scipy.sparse.diags(massvec)

    failcount = 0
    while True:
        try:
            evals, evecs = sla.eigsh(L_eigsh, k=k, M=Mmat, sigma=_EIGSH_SIGMA)
            break
        except (sla.ArpackError, RuntimeError) as e:
            if failcount >= _MAX_EIGSH_RETRIES:
                raise NumericalError(f"Eigensolve did not converge: {e}") from e
            failcount += 1
            logger.warning("Eigensolve failed (%s), retry %d with larger shift", e, failcount)
            L_eigsh = L_eigsh + scipy.sparse.identity(n) * (_OPERATOR_EPS * 10 ** failcount)

    if not (np.all(np.isfinite(evals)) and np.all(np.isfinite(evecs))):
        raise NumericalError("Eigensolve returned non-finite values")

    # Rayleigh quotients of the unshifted Laplacian, so the constant mode is ~0
    evecs = _normalize_eigenvectors(evecs, massvec)
    evals = np.einsum("vk,vk->k", evecs, L @ evecs)

    order = np.argsort(evals)
    evals = np.clip(evals[order], 0.0, None)
    evecs = evecs[:, order]

    logger.debug("Spectrum: %d pairs, lambda in [%.3e, %.3e]", k, evals[0], evals[-1])
    return SpectralBasis(evals=evals, evecs=evecs, massvec=massvec)


def save_spectral_basis(path: str, basis: SpectralBasis) -> None:
    """Write a basis as an ``.npz`` archive."""
    np.savez_compressed(
        path,
        evals=basis.evals,
        evecs=basis.evecs,
        massvec=basis.massvec,
    )


def load_spectral_basis(
    path: str,
    mesh: Optional[SurfaceMesh] = None,
) -> SpectralBasis:
    """Read a basis written by :func:`save_spectral_basis`.

    With ``mesh`` given, the vertex count is checked and archives without a
    ``massvec`` entry get the mesh's lumped mass. Without it such archives
    are rejected. Pairs are re-sorted so that eigenvalues are non-decreasing.
    """
    with np.load(path) as data:
        if "evals" not in data or "evecs" not in data:
            raise ConfigurationError(f"{path} is missing 'evals' or 'evecs'")
        evals = np.asarray(data["evals"], dtype=np.float64).ravel()
        evecs = np.asarray(data["evecs"], dtype=np.float64)
        massvec = (
            np.asarray(data["massvec"], dtype=np.float64).ravel()
            if "massvec" in data else None
        )

    if evecs.ndim != 2 or evecs.shape[1] != len(evals):
        raise ConfigurationError(
            f"evecs shape {evecs.shape} does not match {len(evals)} eigenvalues"
        )
    if mesh is not None and evecs.shape[0] != mesh.num_vertices:
        raise ConfigurationError(
            f"Spectral basis has {evecs.shape[0]} vertices, mesh has {mesh.num_vertices}"
        )
    if massvec is None:
        if mesh is None:
            raise ConfigurationError(
                f"{path} has no 'massvec'; pass the mesh to rebuild it"
            )
        _, massvec = build_operators(mesh)
    elif len(massvec) != evecs.shape[0]:
        raise ConfigurationError("massvec length does not match evecs")

    if not (np.all(np.isfinite(evals)) and np.all(np.isfinite(evecs))):
        raise NumericalError(f"{path} contains non-finite spectral data")

    order = np.argsort(evals, kind="stable")
    return SpectralBasis(
        evals=np.clip(evals[order], 0.0, None),
        evecs=evecs[:, order],
        massvec=massvec,
    )
