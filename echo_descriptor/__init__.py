# echo_descriptor/__init__.py

from echo_descriptor.dtypes import (
    ScalarField,
    FaceVectors,
    MetricTensors,
    Descriptor,
    SurfacePoint,
    SpectralBasis,
    MetricField,
)
from echo_descriptor.errors import (
    EchoError,
    NumericalError,
    InvalidQuery,
    ConfigurationError,
    InvalidMesh,
)
from echo_descriptor.mesh import SurfaceMesh
from echo_descriptor.spectral import (
    build_operators,
    compute_spectral_basis,
    load_spectral_basis,
    save_spectral_basis,
)
from echo_descriptor.signals import (
    heat_kernel_signature,
    smooth_vertex_signal,
    smooth_vertex_signal_implicit,
)
from echo_descriptor.distance import (
    DistanceType,
    distance_field,
    resolve_surface_point,
    spectral_embedding,
    surface_distance,
)
from echo_descriptor.metric import build_metric, metric_gradient
from echo_descriptor.descriptor import (
    DescriptorStatistic,
    EchoDescriptorBuilder,
    support_radius,
)
from echo_descriptor.pipeline import (
    EchoConfig,
    PreparedSurface,
    compute_echo,
    compute_random_echoes,
    prepare_surface,
)


__version__ = "1.0.0"

__all__ = [
    # Type aliases
    "ScalarField",
    "FaceVectors",
    "MetricTensors",
    "Descriptor",
    # Data containers
    "SurfacePoint",
    "SpectralBasis",
    "MetricField",
    "SurfaceMesh",
    "PreparedSurface",
    # Errors
    "EchoError",
    "NumericalError",
    "InvalidQuery",
    "ConfigurationError",
    "InvalidMesh",
    # Spectral basis
    "build_operators",
    "compute_spectral_basis",
    "load_spectral_basis",
    "save_spectral_basis",
    # Scalar fields
    "heat_kernel_signature",
    "smooth_vertex_signal",
    "smooth_vertex_signal_implicit",
    # Distances and metric
    "DistanceType",
    "distance_field",
    "resolve_surface_point",
    "spectral_embedding",
    "surface_distance",
    "build_metric",
    "metric_gradient",
    # Descriptor
    "DescriptorStatistic",
    "EchoDescriptorBuilder",
    "support_radius",
    "EchoConfig",
    "compute_echo",
    "compute_random_echoes",
    "prepare_surface",
]
