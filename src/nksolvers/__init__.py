"""
nksolvers: Newton-Krylov and pseudo-transient continuation solvers
"""

from importlib.metadata import PackageNotFoundError, version

from nksolvers.linear_solvers import *        # noqa
from nksolvers.nonlinear_solvers import *     # noqa
from nksolvers.solver_logger import SolverLogger  # noqa

__all__ = [
    "gmres_solve",
    "orthogonalize",
    "Orthogonalization",
    "OrthogonalizationStrategy",
    "nsoli",
    "NewtonKrylov",
    "NewtonKrylovConfig",
    "NewtonErrorCodes",
    "ptcsc",
    "ptcsol",
    "ptcsoli",
    "PTCConfig",
    "PTCErrorCodes",
    "SolverLogger",
]

try:
    __version__ = version("nksolvers")
except PackageNotFoundError:
    # Package is not installed
    __version__ = "unknown"
