# echo_descriptor/mesh.py
from __future__ import annotations

from typing import NamedTuple

import numpy as np
import potpourri3d as pp3d
from numpy.typing import NDArray

from .errors import InvalidMesh


class SurfaceMesh(NamedTuple):
    """Triangle mesh: vertex positions and faces indexing into them."""
    vertices: NDArray[np.float64]       # (V, 3) float64
    faces: NDArray[np.int64]            # (F, 3) int64

    @classmethod
    def from_arrays(cls, vertices, faces) -> "SurfaceMesh":
        """Build a mesh after checking shapes and index range."""
        V = np.ascontiguousarray(vertices, dtype=np.float64)
        F = np.ascontiguousarray(faces, dtype=np.int64)

        if V.ndim != 2 or V.shape[1] != 3:
            raise InvalidMesh(f"vertices must have shape (V, 3), got {V.shape}")
        if F.ndim != 2 or F.shape[1] != 3:
            raise InvalidMesh(f"faces must have shape (F, 3), got {F.shape}")
        if not np.all(np.isfinite(V)):
            raise InvalidMesh("vertices contain non-finite coordinates")
        if F.size and (F.min() < 0 or F.max() >= len(V)):
            raise InvalidMesh(
                f"face indices must lie in [0, {len(V) - 1}], "
                f"got [{F.min()}, {F.max()}]"
            )
        return cls(V, F)

    @classmethod
    def from_file(cls, path: str) -> "SurfaceMesh":
        """Read a triangle mesh (ply, obj, off, stl) from disk."""
        V, F = pp3d.read_mesh(path)
        return cls.from_arrays(V, F)

    @property
    def num_vertices(self) -> int:
        return int(self.vertices.shape[0])

    @property
    def num_faces(self) -> int:
        return int(self.faces.shape[0])

    def face_normals(self) -> NDArray[np.float64]:
        """Unnormalized face normals; length equals twice the face area."""
        v0 = self.vertices[self.faces[:, 0]]
        v1 = self.vertices[self.faces[:, 1]]
        v2 = self.vertices[self.faces[:, 2]]
        return np.cross(v1 - v0, v2 - v0)

    def face_areas(self) -> NDArray[np.float64]:
        return 0.5 * np.linalg.norm(self.face_normals(), axis=1)

    def total_area(self) -> float:
        return float(np.sum(self.face_areas()))

    def face_adjacency(self) -> NDArray[np.int64]:
        """Face across the edge opposite each corner, -1 on the boundary.

        Edge ``i`` of a face joins corners ``i+1`` and ``i+2``. On
        non-manifold edges shared by more than two faces the pairing is
        arbitrary but deterministic.
        """
        F = self.faces
        M = len(F)
        corners = np.arange(3)
        a = F[:, (corners + 1) % 3].ravel()
        b = F[:, (corners + 2) % 3].ravel()
        keys = np.minimum(a, b) * self.num_vertices + np.maximum(a, b)

        order = np.argsort(keys, kind="stable")
        sorted_keys = keys[order]
        shared = np.nonzero(sorted_keys[1:] == sorted_keys[:-1])[0]
        first = order[shared]
        second = order[shared + 1]

        adjacency = np.full(M * 3, -1, dtype=np.int64)
        adjacency[first] = second // 3
        adjacency[second] = first // 3
        return adjacency.reshape(M, 3)

    def incident_face(self, vertex: int) -> tuple[int, int]:
        """Lowest-indexed face containing ``vertex`` and the vertex's corner in it."""
        hits = np.argwhere(self.faces == vertex)
        if len(hits) == 0:
            return -1, -1
        face, corner = hits[0]
        return int(face), int(corner)
