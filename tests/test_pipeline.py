from __future__ import annotations

import dataclasses

import numpy as np
import potpourri3d as pp3d
import pytest

from echo_descriptor import (
    ConfigurationError,
    DescriptorStatistic,
    DistanceType,
    EchoConfig,
    InvalidQuery,
    NumericalError,
    SurfaceMesh,
    compute_echo,
    compute_spectral_basis,
    prepare_surface,
    save_spectral_basis,
)
from echo_descriptor.get_descriptor import main

pytestmark = pytest.mark.filterwarnings("ignore:\\[EchoDescriptorBuilder\\]")


class TestEchoConfig:

    def test_defaults(self) -> None:
        config = EchoConfig()
        assert config.radial_bins == 5
        assert config.output_resolution == 11
        assert config.support_factor == pytest.approx(0.08)
        assert config.hks_time == pytest.approx(0.1)
        assert config.smoothing_time == pytest.approx(1e7)
        assert config.distance_type is DistanceType.BIHARMONIC
        assert config.statistic is DescriptorStatistic.VALUE

    def test_parses_names(self) -> None:
        config = EchoConfig(distance_type="diffusion", statistic="density", resolution=64)
        assert config.distance_type is DistanceType.DIFFUSION
        assert config.statistic is DescriptorStatistic.DENSITY
        assert config.output_resolution == 64
        assert config == EchoConfig(
            distance_type=DistanceType.DIFFUSION,
            statistic=DescriptorStatistic.DENSITY,
            resolution=64,
        )

    @pytest.mark.parametrize("kwargs", [
        {"radial_bins": 0},
        {"resolution": 1},
        {"num_eigenpairs": 0},
        {"support_factor": 0.0},
        {"hks_time": -1.0},
        {"smoothing_time": float("inf")},
        {"distance_type": "geodesic"},
        {"statistic": "median"},
    ])
    def test_rejects_invalid_values(self, kwargs) -> None:
        with pytest.raises(ConfigurationError):
            EchoConfig(**kwargs)

    def test_is_immutable(self) -> None:
        with pytest.raises(dataclasses.FrozenInstanceError):
            EchoConfig().radial_bins = 3


def test_prepare_surface_fields(prepared_icosphere, icosphere) -> None:
    p = prepared_icosphere
    assert p.hks.shape == (icosphere.num_vertices,)
    assert p.gradients.shape == (icosphere.num_faces, 2)
    assert p.adjacency.shape == (icosphere.num_faces, 3)
    assert np.all(p.adjacency >= 0)
    assert p.rho > 0
    assert np.isclose(p.rho, 0.08 * np.sqrt(p.metric.total_area() / np.pi))


def test_prepare_surface_rejects_mismatched_basis(small_icosphere, icosphere_basis, test_config) -> None:
    with pytest.raises(ConfigurationError):
        prepare_surface(small_icosphere, test_config, icosphere_basis)


def test_prepare_surface_rejects_zero_area_mesh(icosphere, icosphere_basis, test_config) -> None:
    collapsed = SurfaceMesh.from_arrays(np.zeros_like(icosphere.vertices), icosphere.faces)
    with pytest.raises(NumericalError):
        prepare_surface(collapsed, test_config, icosphere_basis)
    with pytest.raises(NumericalError):
        prepare_surface(collapsed, test_config)


def test_prepare_surface_computes_basis(small_icosphere) -> None:
    config = EchoConfig(num_eigenpairs=20)
    p = prepare_surface(small_icosphere, config)
    assert p.basis.num_eigenpairs == 20
    d = compute_echo(p, 3, config)
    assert d.shape == (11, 11)


@pytest.mark.parametrize("distance_type", list(DistanceType))
def test_every_distance_type(prepared_icosphere, icosphere, icosphere_basis, test_config, distance_type) -> None:
    config = dataclasses.replace(test_config, distance_type=distance_type)
    p = prepare_surface(icosphere, config, icosphere_basis)
    d = compute_echo(p, 0, config)
    assert np.isfinite(d[5, 5])


@pytest.mark.parametrize("query", [-1, 10 ** 6, (10 ** 6, [1.0, 0.0, 0.0]), (0, [0.5, 0.6, 0.2])])
def test_compute_echo_rejects_bad_queries(prepared_icosphere, test_config, query) -> None:
    with pytest.raises(InvalidQuery):
        compute_echo(prepared_icosphere, query, test_config)


@pytest.fixture(scope="module")
def mesh_path(small_icosphere, tmp_path_factory) -> str:
    path = tmp_path_factory.mktemp("mesh") / "sphere.obj"
    pp3d.write_mesh(small_icosphere.vertices, small_icosphere.faces, str(path))
    return str(path)


class TestCommandLine:

    def test_vertex_to_text(self, mesh_path, tmp_path) -> None:
        out = tmp_path / "echo.txt"
        code = main(["--in", mesh_path, "--vertex", "0", "--eigenpairs", "30",
                     "--out", str(out)])
        assert code == 0
        values = np.loadtxt(str(out))
        assert values.shape == (121,)
        assert np.isfinite(values[60])

    def test_point_with_spectrum_and_resolution(self, mesh_path, small_icosphere, tmp_path) -> None:
        spec = tmp_path / "sphere_spec.npz"
        save_spectral_basis(str(spec), compute_spectral_basis(small_icosphere, 30))

        out = tmp_path / "echo.txt"
        code = main(["--in", mesh_path, "--tri", "7", "--bc", "0.2", "0.3", "0.5",
                     "--spec", str(spec), "--resolution", "32", "--disk",
                     "--out", str(out)])
        assert code == 0
        values = np.loadtxt(str(out))
        assert values.shape == (32 * 32,)
        assert np.isposinf(values[0])

    def test_image_output(self, mesh_path, tmp_path) -> None:
        out = tmp_path / "echo.png"
        code = main(["--in", mesh_path, "--vertex", "4", "--eigenpairs", "30",
                     "--dev", "0.01", "--out", str(out)])
        assert code == 0
        assert out.exists()

    def test_random_batch(self, mesh_path) -> None:
        code = main(["--in", mesh_path, "--vertex", "-3", "--eigenpairs", "30",
                     "--seed", "0", "--verbose"])
        assert code == 0

    def test_missing_source_is_usage_error(self, mesh_path) -> None:
        with pytest.raises(SystemExit) as exc:
            main(["--in", mesh_path])
        assert exc.value.code == 2

    def test_tri_without_bc_is_usage_error(self, mesh_path) -> None:
        with pytest.raises(SystemExit) as exc:
            main(["--in", mesh_path, "--tri", "0"])
        assert exc.value.code == 2

    def test_invalid_vertex_fails(self, mesh_path, small_icosphere) -> None:
        code = main(["--in", mesh_path, "--vertex", str(small_icosphere.num_vertices),
                     "--eigenpairs", "30"])
        assert code == 1

    def test_mismatched_spectrum_fails(self, mesh_path, icosphere_basis, tmp_path) -> None:
        spec = tmp_path / "wrong_spec.npz"
        save_spectral_basis(str(spec), icosphere_basis)
        code = main(["--in", mesh_path, "--vertex", "0", "--spec", str(spec)])
        assert code == 1

    def test_unknown_distance_fails(self, mesh_path) -> None:
        code = main(["--in", mesh_path, "--vertex", "0", "--distance", "7"])
        assert code == 1
