# echo_descriptor/descriptor.py
from __future__ import annotations

import heapq
import math
import warnings
from enum import Enum
from functools import lru_cache
from typing import Dict, Optional, Tuple, Union

import numpy as np
from numpy.typing import NDArray

from .distance import embedding_distances, point_embedding
from .dtypes import Descriptor, FaceVectors, MetricField, ScalarField, SurfacePoint
from .errors import ConfigurationError
from .mesh import SurfaceMesh


# Constants

# Tolerance for vector magnitude during normalization
_VECTOR_NORM_TOL: float = 1e-12

# Gradients shorter than _GRADIENT_REL_TOL * (longest gradient) count as zero
_GRADIENT_REL_TOL: float = 1e-12

# Minimum absolute gradient magnitude (fallback when every gradient is tiny)
_GRADIENT_ABS_TOL: float = 1e-300

# Target number of samples per histogram cell along a face edge
_SAMPLES_PER_CELL: float = 2.0

# Upper bound on the per-face barycentric subdivision level
_MAX_FACE_SUBDIVISION: int = 32

DEFAULT_SUPPORT_FACTOR: float = 0.08
DEFAULT_RADIAL_BINS: int = 5

NO_SUPPORT: float = float("inf")


class DescriptorStatistic(Enum):
    """Quantity accumulated into each histogram cell."""
    VALUE = "value"              # area-weighted mean of the value field
    DENSITY = "density"          # covered area per unit cell area
    ORIENTATION = "orientation"  # area-weighted mean cosine to the source axis

    @classmethod
    def parse(cls, value: Union["DescriptorStatistic", str]) -> "DescriptorStatistic":
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            key = value.strip().lower()
            for member in cls:
                if key in (member.value, member.name.lower()):
                    return member
        raise ConfigurationError(
            f"Unknown descriptor statistic {value!r}; choose from "
            f"{[m.value for m in cls]}"
        )


def _gradient_threshold(gradients: FaceVectors) -> float:
    longest = float(np.max(np.hypot(gradients[:, 0], gradients[:, 1]), initial=0.0))
    return max(_GRADIENT_REL_TOL * longest, _GRADIENT_ABS_TOL)


def support_radius(total_area: float, tau: float = DEFAULT_SUPPORT_FACTOR) -> float:
    """Radius of a disk covering ``tau**2`` of the total area."""
    return tau * math.sqrt(total_area / math.pi)


@lru_cache(maxsize=None)
def _subdivision_barycentrics(level: int) -> NDArray[np.float64]:
    """Centroids of the level^2 congruent sub-triangles of a triangle."""
    ups = [(i + 1.0 / 3.0, j + 1.0 / 3.0) for i in range(level) for j in range(level - i)]
    downs = [(i + 2.0 / 3.0, j + 2.0 / 3.0) for i in range(level - 1) for j in range(level - 1 - i)]
    ab = np.array(ups + downs, dtype=np.float64) / level
    bary = np.column_stack([1.0 - ab[:, 0] - ab[:, 1], ab[:, 0], ab[:, 1]])
    bary.setflags(write=False)
    return bary


class EchoDescriptorBuilder:
    """Polar histogram of a surface neighborhood, oriented by a gradient field."""

    @staticmethod
    def _source_frame(
        gradients: FaceVectors,
        metric: MetricField,
        source: SurfacePoint,
    ) -> Tuple[NDArray[np.float64], NDArray[np.float64]]:
        """Origin and rotation taking the source face layout to the polar frame."""
        origin = source.bary @ metric.layouts[source.face]
        g = gradients[source.face]
        magnitude = float(np.hypot(g[0], g[1]))

        if magnitude > _gradient_threshold(gradients):
            ax, ay = g / magnitude
        else:
            warnings.warn(
                f"[EchoDescriptorBuilder] Zero gradient on source face {source.face}, "
                f"orienting along its first edge"
            )
            ax, ay = 1.0, 0.0

        # Rows map the axis onto +x
        rotation = np.array([[ax, ay], [-ay, ax]])
        return origin, rotation

    @staticmethod
    def _unfold_across(
        faces: NDArray[np.int64],
        parent: int,
        parent_coords: NDArray[np.float64],
        corner: int,
        child: int,
        child_layout: NDArray[np.float64],
    ) -> NDArray[np.float64]:
        """Lay ``child`` flat on the far side of the edge it shares with ``parent``."""
        a = faces[parent, (corner + 1) % 3]
        b = faces[parent, (corner + 2) % 3]
        P_a = parent_coords[(corner + 1) % 3]
        P_b = parent_coords[(corner + 2) % 3]
        P_o = parent_coords[corner]

        child_face = faces[child]
        ia = int(np.nonzero(child_face == a)[0][0])
        ib = int(np.nonzero(child_face == b)[0][0])
        ic = 3 - ia - ib

        # Position of the free corner relative to the shared edge, in the child's own layout
        q_a, q_b, q_c = child_layout[ia], child_layout[ib], child_layout[ic]
        edge = q_b - q_a
        edge_len = np.hypot(edge[0], edge[1])
        u = edge / edge_len if edge_len > _VECTOR_NORM_TOL else np.array([1.0, 0.0])
        along = float(np.dot(q_c - q_a, u))
        across = abs(float(u[0] * (q_c - q_a)[1] - u[1] * (q_c - q_a)[0]))

        # Same frame on the parent's copy of the edge
        target = P_b - P_a
        target_len = np.hypot(target[0], target[1])
        U = target / target_len if target_len > _VECTOR_NORM_TOL else np.array([1.0, 0.0])
        perp = np.array([-U[1], U[0]])
        side = U[0] * (P_o - P_a)[1] - U[1] * (P_o - P_a)[0]
        sign = -1.0 if side > 0 else 1.0

        coords = np.empty((3, 2))
        coords[ia] = P_a
        coords[ib] = P_b
        coords[ic] = P_a + along * U + sign * across * perp
        return coords

    @classmethod
    def _unfold_support(
        cls,
        mesh: SurfaceMesh,
        metric: MetricField,
        adjacency: NDArray[np.int64],
        vertex_dists: ScalarField,
        source_face: int,
        rho: float,
    ) -> Dict[int, NDArray[np.float64]]:
        """Develop the faces that can reach within ``rho`` into the plane.

        Faces are visited in order of their nearest corner; each one is laid
        out from the first visited neighbor that reaches it, so the layout is
        continuous along that spanning tree and seams only open up around
        cone points and holes.
        """
        faces = mesh.faces
        layouts = metric.layouts

        def reaches_support(f: int) -> bool:
            L = layouts[f]
            longest = max(
                np.hypot(*(L[1] - L[0])),
                np.hypot(*(L[2] - L[1])),
                np.hypot(*(L[0] - L[2])),
            )
            return float(np.min(vertex_dists[faces[f]])) - longest < rho

        unfolded = {source_face: layouts[source_face].copy()}
        heap = [(0.0, source_face)]
        while heap:
            _, f = heapq.heappop(heap)
            coords = unfolded[f]
            for corner in range(3):
                g = int(adjacency[f, corner])
                if g < 0 or g in unfolded or not reaches_support(g):
                    continue
                unfolded[g] = cls._unfold_across(faces, f, coords, corner, g, layouts[g])
                heapq.heappush(heap, (float(np.min(vertex_dists[faces[g]])), g))
        return unfolded

    @staticmethod
    def _splat(
        coords: NDArray[np.float64],
        weights: NDArray[np.float64],
        values: NDArray[np.float64],
        resolution: int,
    ) -> Tuple[NDArray[np.float64], NDArray[np.float64]]:
        """Bilinear scatter of weighted samples onto the cell centers."""
        weight_sum = np.zeros((resolution, resolution), dtype=np.float64)
        value_sum = np.zeros((resolution, resolution), dtype=np.float64)

        base = np.floor(coords).astype(np.int64)
        frac = coords - base
        for di, dj in ((0, 0), (1, 0), (0, 1), (1, 1)):
            wx = frac[:, 0] if di else 1.0 - frac[:, 0]
            wy = frac[:, 1] if dj else 1.0 - frac[:, 1]
            w = wx * wy * weights
            ii = base[:, 0] + di
            jj = base[:, 1] + dj
            ok = (w > 0) & (ii >= 0) & (ii < resolution) & (jj >= 0) & (jj < resolution)
            np.add.at(weight_sum, (ii[ok], jj[ok]), w[ok])
            np.add.at(value_sum, (ii[ok], jj[ok]), w[ok] * values[ok])
        return weight_sum, value_sum

    @classmethod
    def compute_descriptor(
        cls,
        mesh: SurfaceMesh,
        metric: MetricField,
        embedding: NDArray[np.float64],
        gradients: FaceVectors,
        values: ScalarField,
        source: SurfacePoint,
        rho: float,
        radial_bins: int = DEFAULT_RADIAL_BINS,
        statistic: DescriptorStatistic = DescriptorStatistic.VALUE,
        adjacency: Optional[NDArray[np.int64]] = None,
    ) -> Descriptor:
        """Compute the (2n+1) x (2n+1) ECHO histogram around ``source``.

        Cell (i, j) is centered at ((i - n) h, (j - n) h) in the polar frame
        whose +x axis is the gradient direction at the source, with
        h = rho / n. Every sample within ``rho`` lands at radius equal to its
        pseudo-distance from the source and at the angle it makes in the
        unfolded neighborhood. Cells outside the disk of radius ``rho`` or
        without coverage hold +inf.
        """
        if radial_bins < 1:
            raise ConfigurationError(f"radial_bins must be positive, got {radial_bins}")
        if not (np.isfinite(rho) and rho > 0):
            raise ConfigurationError(f"Support radius must be positive and finite, got {rho}")
        statistic = DescriptorStatistic.parse(statistic)

        n = radial_bins
        res = 2 * n + 1
        h = rho / n
        if adjacency is None:
            adjacency = mesh.face_adjacency()

        # 1. Polar frame at the source
        origin, rotation = cls._source_frame(gradients, metric, source)
        phi_src = point_embedding(mesh, embedding, source)
        vertex_dists = embedding_distances(embedding, phi_src)

        # 2. Unfold the neighborhood
        unfolded = cls._unfold_support(
            mesh, metric, adjacency, vertex_dists, source.face, rho
        )
        face_ids = np.fromiter(unfolded.keys(), dtype=np.int64, count=len(unfolded))
        corners = np.stack([unfolded[f] for f in face_ids.tolist()])    # (S, 3, 2)
        corners = (corners - origin) @ rotation.T

        # Transported gradient direction per face (for ORIENTATION)
        if statistic is DescriptorStatistic.ORIENTATION:
            canon = metric.layouts[face_ids]
            C = np.stack([canon[:, 1] - canon[:, 0], canon[:, 2] - canon[:, 0]], axis=2)
            U = np.stack([corners[:, 1] - corners[:, 0], corners[:, 2] - corners[:, 0]], axis=2)
            det = C[:, 0, 0] * C[:, 1, 1] - C[:, 0, 1] * C[:, 1, 0]
            ok = np.abs(det) > _VECTOR_NORM_TOL * np.max(np.abs(det), initial=0.0)
            C_inv = np.linalg.inv(np.where(ok[:, None, None], C, np.eye(2)[None]))
            A = U @ C_inv
            g = np.einsum("fij,fj->fi", A, gradients[face_ids])
            g_norm = np.linalg.norm(g, axis=1)
            g_tol = _gradient_threshold(gradients)
            face_cos = np.where(
                ok & (g_norm > g_tol),
                g[:, 0] / np.maximum(g_norm, g_tol),
                0.0,
            )

        # 3. Sample every unfolded face and place the samples in the polar frame
        layouts = metric.layouts[face_ids]
        longest = np.max(np.linalg.norm(layouts - np.roll(layouts, 1, axis=1), axis=2), axis=1)
        levels = np.clip(np.ceil(_SAMPLES_PER_CELL * longest / h), 1, _MAX_FACE_SUBDIVISION).astype(int)

        all_coords, all_weights, all_values = [], [], []
        for level in np.unique(levels):
            sel = np.nonzero(levels == level)[0]
            B = _subdivision_barycentrics(int(level))                      # (s, 3)
            fids = face_ids[sel]
            tri = mesh.faces[fids]                                          # (m, 3)

            # Pseudo-distance of samples: |sum_i b_i (Phi(v_i) - Phi(src))|
            D = embedding[tri] - phi_src                                    # (m, 3, K)
            gram = np.einsum("fik,fjk->fij", D, D)
            r = np.sqrt(np.clip(np.einsum("si,fij,sj->fs", B, gram, B), 0.0, None))

            pos = np.einsum("si,fid->fsd", B, corners[sel])                 # (m, s, 2)
            pos_norm = np.linalg.norm(pos, axis=2)
            direction = np.where(
                pos_norm[..., None] > _VECTOR_NORM_TOL,
                pos / np.maximum(pos_norm, _VECTOR_NORM_TOL)[..., None],
                np.array([1.0, 0.0]),
            )

            if statistic is DescriptorStatistic.VALUE:
                vals = B @ values[tri].T                                    # (s, m)
                vals = vals.T
            elif statistic is DescriptorStatistic.ORIENTATION:
                vals = np.broadcast_to(face_cos[sel][:, None], r.shape)
            else:
                vals = np.zeros_like(r)

            weights = np.broadcast_to((metric.areas[fids] / len(B))[:, None], r.shape)
            inside = r < rho
            all_coords.append(direction[inside] * r[inside][:, None] / h + n)
            all_weights.append(weights[inside])
            all_values.append(vals[inside])

        coords = np.concatenate(all_coords) if all_coords else np.zeros((0, 2))
        weights = np.concatenate(all_weights) if all_weights else np.zeros(0)
        vals = np.concatenate(all_values) if all_values else np.zeros(0)

        # 4. Accumulate and mark cells without support
        weight_sum, value_sum = cls._splat(coords, weights, vals, res)

        offsets = np.arange(res) - n
        in_disk = offsets[:, None] ** 2 + offsets[None, :] ** 2 <= n * n
        covered = in_disk & (weight_sum > 0)

        descriptor = np.full((res, res), NO_SUPPORT, dtype=np.float32)
        if statistic is DescriptorStatistic.DENSITY:
            descriptor[covered] = weight_sum[covered] / (h * h)
        else:
            descriptor[covered] = value_sum[covered] / weight_sum[covered]
        return descriptor
