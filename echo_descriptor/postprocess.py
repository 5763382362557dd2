# echo_descriptor/postprocess.py
from __future__ import annotations

import numpy as np
from numpy.typing import NDArray

from .dtypes import Descriptor
from .errors import ConfigurationError


def _sample_bilinear(
    grid: NDArray[np.float32],
    x: NDArray[np.float64],
    y: NDArray[np.float64],
) -> NDArray[np.float32]:
    """Sample a grid with bilinear interpolation.

    Neighbors with zero weight are ignored; an infinite neighbor with
    non-zero weight makes the sample infinite.
    """
    H, W = grid.shape

    # Clamp to valid range
    x = np.clip(x, 0, H - 1)
    y = np.clip(y, 0, W - 1)

    # Get integer and fractional parts
    x0 = np.floor(x).astype(np.int64)
    y0 = np.floor(y).astype(np.int64)
    x1 = np.minimum(x0 + 1, H - 1)
    y1 = np.minimum(y0 + 1, W - 1)

    fx = x - x0
    fy = y - y0

    out = np.zeros(np.broadcast(x, y).shape, dtype=np.float64)
    for xi, yi, w in (
        (x0, y0, (1 - fx) * (1 - fy)),
        (x0, y1, (1 - fx) * fy),
        (x1, y0, fx * (1 - fy)),
        (x1, y1, fx * fy),
    ):
        values = grid[xi, yi].astype(np.float64)
        out += w * np.where(w > 0, values, 0.0)
    return out.astype(np.float32)


def _resample_coordinates(
    in_shape: tuple[int, int],
    res_x: int,
    res_y: int,
) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
    if res_x < 2 or res_y < 2:
        raise ConfigurationError(f"Output resolution must be at least 2, got {res_x}x{res_y}")
    x = np.arange(res_x, dtype=np.float64) / (res_x - 1) * (in_shape[0] - 1)
    y = np.arange(res_y, dtype=np.float64) / (res_y - 1) * (in_shape[1] - 1)
    return np.meshgrid(x, y, indexing="ij")


def resample_signal(grid: Descriptor, res_x: int, res_y: int) -> Descriptor:
    """Corner-aligned bilinear resampling to ``res_x`` x ``res_y``."""
    X, Y = _resample_coordinates(grid.shape, res_x, res_y)
    return _sample_bilinear(grid, X, Y)


def resample_signal_disk(grid: Descriptor, res_x: int, res_y: int) -> Descriptor:
    """Resample, keeping only samples inside the disk inscribed in ``grid``."""
    X, Y = _resample_coordinates(grid.shape, res_x, res_y)
    out = _sample_bilinear(grid, X, Y)

    center = (grid.shape[0] - 1) // 2
    outside = (X - center) ** 2 + (Y - center) ** 2 > center * center
    out[outside] = np.inf
    return out


def transpose_signal(grid: Descriptor) -> Descriptor:
    return np.ascontiguousarray(grid.T)
