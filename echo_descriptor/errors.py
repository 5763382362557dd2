# echo_descriptor/errors.py
from __future__ import annotations


class EchoError(Exception):
    """Base class for every error raised by echo_descriptor."""


class NumericalError(EchoError, ArithmeticError):
    """Eigensolve non-convergence, singular systems or a degenerate mesh."""


class InvalidQuery(EchoError, ValueError):
    """Out-of-range vertex/face index or malformed barycentric coordinates."""


class ConfigurationError(EchoError, ValueError):
    """Inconsistent or non-positive numeric configuration."""


class InvalidMesh(EchoError, ValueError):
    """Malformed vertex/face arrays."""
