from __future__ import annotations

import numpy as np
import pytest

from echo_descriptor import ConfigurationError
from echo_descriptor.postprocess import resample_signal, resample_signal_disk, transpose_signal
from echo_descriptor.visualization import descriptor_deviation, descriptor_to_rgb, save_descriptor


def _ramp(size: int) -> np.ndarray:
    i, j = np.meshgrid(np.arange(size), np.arange(size), indexing="ij")
    return (i + 2.0 * j).astype(np.float32)


def test_resample_same_size_is_identity() -> None:
    grid = np.random.default_rng(0).random((11, 11)).astype(np.float32)
    out = resample_signal(grid, 11, 11)
    assert out.shape == (11, 11)
    assert np.allclose(out, grid, rtol=1e-6)


def test_resample_interpolates_linear_ramp() -> None:
    out = resample_signal(_ramp(5), 9, 9)
    a, b = np.meshgrid(np.arange(9), np.arange(9), indexing="ij")
    assert np.allclose(out, a / 2.0 + b, atol=1e-5)
    # Corners stay aligned
    assert out[0, 0] == 0.0
    assert np.isclose(out[-1, -1], 12.0)


def test_resample_non_square_output() -> None:
    out = resample_signal(_ramp(5), 3, 7)
    assert out.shape == (3, 7)
    assert np.isclose(out[2, 6], 12.0)


def test_resample_propagates_missing_cells() -> None:
    grid = np.ones((5, 5), dtype=np.float32)
    grid[2, 2] = np.inf
    out = resample_signal(grid, 9, 9)
    assert np.isposinf(out[4, 4])
    assert np.isposinf(out[3, 3])
    assert out[0, 0] == 1.0
    assert out[8, 8] == 1.0
    assert not np.any(np.isnan(out))


def test_resample_disk_masks_corners() -> None:
    grid = np.ones((11, 11), dtype=np.float32)
    out = resample_signal_disk(grid, 21, 21)
    assert np.isposinf(out[0, 0])
    assert np.isposinf(out[20, 20])
    assert out[10, 10] == 1.0
    assert out[0, 10] == 1.0


@pytest.mark.parametrize("res", [0, 1])
def test_resample_rejects_tiny_output(res) -> None:
    with pytest.raises(ConfigurationError):
        resample_signal(_ramp(5), res, 5)


def test_transpose_signal() -> None:
    grid = _ramp(4)
    out = transpose_signal(grid)
    assert np.array_equal(out, grid.T)
    assert out.flags["C_CONTIGUOUS"]


def test_descriptor_deviation_ignores_missing_cells() -> None:
    grid = np.array([[3.0, 4.0], [np.inf, np.inf]], dtype=np.float32)
    assert np.isclose(descriptor_deviation(grid), np.sqrt(12.5))
    assert descriptor_deviation(np.full((2, 2), np.inf, dtype=np.float32)) == 0.0


def test_rgb_grey_scale_and_white_background() -> None:
    grid = np.array([[1.0, 2.0], [0.0, np.inf]], dtype=np.float32)
    rgb = descriptor_to_rgb(grid)
    assert rgb.shape == (2, 2, 3)
    assert rgb.dtype == np.uint8
    assert np.all(rgb[1, 1] == 255)
    assert np.all(rgb[1, 0] == 0)
    # Grey scale: all channels agree
    assert np.all(rgb[..., 0] == rgb[..., 1])
    assert np.all(rgb[..., 1] == rgb[..., 2])
    assert rgb[0, 1, 0] > rgb[0, 0, 0]


def test_rgb_colored_with_deviation() -> None:
    grid = np.array([[1.0, 2.0], [3.0, np.inf]], dtype=np.float32)
    rgb = descriptor_to_rgb(grid, deviation=1.0)
    assert np.all(rgb[1, 1] == 255)
    assert not np.all(rgb[0, 1, 0] == rgb[0, 1, 1:])


def test_save_descriptor_text(tmp_path) -> None:
    grid = np.array([[0.5, np.inf], [1.25, 2.0]], dtype=np.float32)
    path = tmp_path / "out" / "descriptor.txt"
    save_descriptor(str(path), grid)

    text = path.read_text().strip()
    assert "\n" not in text
    values = np.loadtxt(str(path))
    assert values.shape == (4,)
    assert np.array_equal(values, grid.ravel().astype(np.float64))


def test_save_descriptor_image(tmp_path) -> None:
    grid = np.random.default_rng(1).random((11, 11)).astype(np.float32)
    grid[0, 0] = np.inf
    path = tmp_path / "descriptor.png"
    save_descriptor(str(path), grid, deviation=0.5)
    assert path.exists()
    assert path.stat().st_size > 0
