# echo_descriptor/get_descriptor.py
from __future__ import annotations

import argparse
import logging
import sys
import time
from typing import List, Optional

from .distance import DistanceType
from .descriptor import DEFAULT_RADIAL_BINS, DEFAULT_SUPPORT_FACTOR, DescriptorStatistic
from .dtypes import Descriptor
from .errors import EchoError
from .mesh import SurfaceMesh
from .pipeline import EchoConfig, compute_echo, compute_random_echoes, prepare_surface
from .postprocess import resample_signal, resample_signal_disk, transpose_signal
from .spectral import DEFAULT_NUM_EIGENPAIRS, load_spectral_basis
from .visualization import save_descriptor

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    distance_help = ", ".join(f"{i}={m.value}" for i, m in enumerate(DistanceType))
    parser = argparse.ArgumentParser(
        description="ECHO descriptor - polar histogram of a surface neighborhood",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
        Examples:
        python -m echo_descriptor.get_descriptor \\
            --in data/bunny.ply --vertex 0 --out bunny_0.png

        python -m echo_descriptor.get_descriptor \\
            --in data/bunny.ply --tri 12 --bc 0.2 0.3 0.5 \\
            --spec data/bunny_spec.npz --resolution 64 --disk --out bunny.txt

        python -m echo_descriptor.get_descriptor \\
            --in data/bunny.ply --vertex -100 --verbose
                """,
    )
    parser.add_argument(
        "--in",
        dest="in_path",
        type=str,
        required=True,
        help="Input triangle mesh",
    )
    parser.add_argument(
        "--vertex",
        type=int,
        default=None,
        help="Source vertex index (negative -N: N random vertices, timing only)",
    )
    parser.add_argument(
        "--tri",
        type=int,
        default=None,
        help="Source face index (requires --bc)",
    )
    parser.add_argument(
        "--bc",
        type=float,
        nargs=3,
        default=None,
        metavar=("B0", "B1", "B2"),
        help="Barycentric coordinates of the source inside --tri",
    )
    parser.add_argument(
        "--spec",
        type=str,
        default=None,
        help="Precomputed spectral decomposition (.npz)",
    )
    parser.add_argument(
        "--out",
        type=str,
        default=None,
        help="Output ECHO descriptor (.txt or an image format)",
    )
    parser.add_argument(
        "--tau",
        type=float,
        default=DEFAULT_SUPPORT_FACTOR,
        help=f"Mesh area to support radius scale (default: {DEFAULT_SUPPORT_FACTOR})",
    )
    parser.add_argument(
        "--rBins",
        dest="radial_bins",
        type=int,
        default=DEFAULT_RADIAL_BINS,
        help=f"Histogram radius in bins, grid is (2n+1)^2 (default: {DEFAULT_RADIAL_BINS})",
    )
    parser.add_argument(
        "--dev",
        type=float,
        default=-1.0,
        help="Target deviation for color output (default: grey scale)",
    )
    parser.add_argument(
        "--resolution",
        type=int,
        default=None,
        help="Resampled output resolution (default: 2 * rBins + 1)",
    )
    parser.add_argument(
        "--distance",
        type=str,
        default=DistanceType.BIHARMONIC.value,
        help=f"Distance type, by name or index ({distance_help})",
    )
    parser.add_argument(
        "--statistic",
        type=str,
        default=DescriptorStatistic.VALUE.value,
        choices=[m.value for m in DescriptorStatistic],
        help="Per-cell statistic (default: value)",
    )
    parser.add_argument(
        "--eigenpairs",
        type=int,
        default=DEFAULT_NUM_EIGENPAIRS,
        help=f"Spectral truncation when no --spec is given (default: {DEFAULT_NUM_EIGENPAIRS})",
    )
    parser.add_argument(
        "--seed",
        type=int,
        default=None,
        help="Seed for random source vertices",
    )
    parser.add_argument(
        "--disk",
        action="store_true",
        help="Mask the resampled output to its inscribed disk",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Report per-stage timings",
    )
    return parser


def run(args: argparse.Namespace) -> Optional[Descriptor]:
    """Compute (and optionally write) the descriptor described by ``args``."""
    config = EchoConfig(
        support_factor=args.tau,
        radial_bins=args.radial_bins,
        resolution=args.resolution,
        distance_type=args.distance,
        statistic=args.statistic,
        num_eigenpairs=args.eigenpairs,
        disk_support=args.disk,
        deviation=args.dev,
    )

    start = time.perf_counter()
    mesh = SurfaceMesh.from_file(args.in_path)
    logger.debug("Got mesh: %.3fs (%d vertices, %d faces)",
                 time.perf_counter() - start, mesh.num_vertices, mesh.num_faces)

    basis = None
    if args.spec is not None:
        basis = load_spectral_basis(args.spec, mesh)

    prepared = prepare_surface(mesh, config, basis)

    if args.vertex is not None and args.vertex < 0:
        count = -args.vertex
        start = time.perf_counter()
        compute_random_echoes(prepared, count, config, seed=args.seed, progress=True)
        logger.info("Got %d ECHO descriptors: %.3fs", count, time.perf_counter() - start)
        return None

    query = args.vertex if args.vertex is not None else (args.tri, args.bc)
    start = time.perf_counter()
    descriptor = compute_echo(prepared, query, config)
    logger.debug("Got ECHO descriptor: %.3fs", time.perf_counter() - start)

    res = config.output_resolution
    if config.disk_support:
        descriptor = resample_signal_disk(descriptor, res, res)
    else:
        descriptor = resample_signal(descriptor, res, res)
    descriptor = transpose_signal(descriptor)

    if args.out is not None:
        save_descriptor(args.out, descriptor, config.deviation)
    return descriptor


def main(argv: Optional[List[str]] = None) -> int:
    """Command-line interface for descriptor computation."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.vertex is None and args.tri is None:
        parser.error("one of --vertex or --tri is required")
    if args.tri is not None and args.bc is None:
        parser.error("--tri requires --bc")

    logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")
    if args.verbose:
        logging.getLogger("echo_descriptor").setLevel(logging.DEBUG)
        logger.setLevel(logging.DEBUG)

    start = time.perf_counter()
    try:
        run(args)
    except EchoError as e:
        logger.error("%s: %s", type(e).__name__, e)
        return 1
    logger.debug("Got descriptor(s) in: %.3fs", time.perf_counter() - start)
    return 0


if __name__ == "__main__":
    sys.exit(main())
