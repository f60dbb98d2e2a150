"""Krylov linear solvers and their orthogonalization core."""

from .orthogonalize import (
    Orthogonalization,
    OrthogonalizationStrategy,
    orthogonalize,
)
from .gmres import GMRESConfig, GMRESResult, KrylovWorkspace, gmres_solve

__all__ = [
    "Orthogonalization",
    "OrthogonalizationStrategy",
    "orthogonalize",
    "GMRESConfig",
    "GMRESResult",
    "KrylovWorkspace",
    "gmres_solve",
]
