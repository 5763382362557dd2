# echo_descriptor/visualization.py
from __future__ import annotations

import logging
import math
import os

import numpy as np
from numpy.typing import NDArray

from .dtypes import Descriptor

logger = logging.getLogger(__name__)


def descriptor_deviation(grid: Descriptor) -> float:
    """Root mean square of the finite cells (0 when there are none)."""
    finite = grid[np.isfinite(grid)].astype(np.float64)
    if finite.size == 0:
        return 0.0
    return float(np.sqrt(np.mean(finite * finite)))


def descriptor_to_rgb(grid: Descriptor, deviation: float = -1.0) -> NDArray[np.uint8]:
    """Map a descriptor to an RGB image.

    Brightness is the cell value over three times the RMS of the finite
    cells. With ``deviation > 0`` the hue encodes the RMS relative to
    ``deviation``; otherwise the image is grey scale. Cells without
    support are white.
    """
    from matplotlib.colors import hsv_to_rgb

    dev = descriptor_deviation(grid)
    finite = np.isfinite(grid)

    if deviation <= 0:
        hue, saturation = 0.0, 0.0
        logger.info("Deviation: %g", dev)
        logger.info("Sum: %g", float(np.sum(grid[finite], dtype=np.float64)))
    else:
        hue = (4.0 * math.pi / 3.0 * dev / deviation) / (2.0 * math.pi) % 1.0
        saturation = 1.0

    value = np.zeros(grid.shape, dtype=np.float64)
    if dev > 0:
        value[finite] = np.clip(grid[finite] / (3.0 * dev), 0.0, 1.0)

    hsv = np.stack([
        np.full(grid.shape, hue),
        np.full(grid.shape, saturation),
        value,
    ], axis=-1)
    rgb = np.floor(hsv_to_rgb(hsv) * 255).astype(np.uint8)
    rgb[~finite] = 255
    return rgb


def save_descriptor(path: str, grid: Descriptor, deviation: float = -1.0) -> None:
    """Write ``grid`` as one line of text (``.txt``) or as an RGB image."""
    from matplotlib import image as mpimg

    output_dir = os.path.dirname(path)
    if output_dir:
        os.makedirs(output_dir, exist_ok=True)

    ext = os.path.splitext(path)[1].lower()
    if ext == ".txt":
        np.savetxt(path, grid.reshape(1, -1), fmt="%g")
    else:
        mpimg.imsave(path, descriptor_to_rgb(grid, deviation))
    logger.info("Descriptor saved to: %s", path)
