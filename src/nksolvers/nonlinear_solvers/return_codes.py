"""Integer status codes reported by the nonlinear drivers."""

from enum import IntEnum


class NewtonErrorCodes(IntEnum):
    SUCCESS = 0
    INITIAL_ITERATE_CONVERGED = -1   # no iterations needed, still a success
    LINE_SEARCH_FAILED = 1           # Armijo reductions exhausted
    MAX_ITERATIONS_EXCEEDED = 10     # outer loop hit maxit


class PTCErrorCodes(IntEnum):
    SUCCESS = 0
    INITIAL_ITERATE_CONVERGED = -1   # no steps taken, reported as failure
    MAX_ITERATIONS_EXCEEDED = 10
