"""Newton-Krylov and pseudo-transient continuation drivers."""

from .return_codes import NewtonErrorCodes, PTCErrorCodes
from .derivatives import diffjac, dirder, scalar_derivative
from .rules import ForcingParameters, IterationRules, NewtonKrylovConfig
from .forcing import forcing
from .line_search import LineSearchResult, armijo, parab3p
from .newton_krylov import (
    NewtonKrylov,
    NewtonKrylovResult,
    NewtonStats,
    nsoli,
)
from .ptc import PTCConfig, PTCResult, ptcsc, ptcsol, ptcsoli

__all__ = [
    "NewtonErrorCodes",
    "PTCErrorCodes",
    "diffjac",
    "dirder",
    "scalar_derivative",
    "ForcingParameters",
    "IterationRules",
    "NewtonKrylovConfig",
    "forcing",
    "LineSearchResult",
    "armijo",
    "parab3p",
    "NewtonKrylov",
    "NewtonKrylovResult",
    "NewtonStats",
    "nsoli",
    "PTCConfig",
    "PTCResult",
    "ptcsc",
    "ptcsol",
    "ptcsoli",
]
