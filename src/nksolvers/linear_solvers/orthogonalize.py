"""Gram-Schmidt orthogonalization for the Arnoldi process.

Each call performs one Arnoldi orthogonalization step: the candidate vector
is orthogonalized against the existing Krylov basis, the projections are
written into the current Hessenberg column, and the candidate is normalized
in place.

Two interchangeable strategies carry out the arithmetic. The batched
strategy uses numpy matrix-vector products, which dispatch to BLAS gemv for
float32 and float64 bases. The elementwise strategy uses explicit loops
compiled with numba; for bases stored in float16, which neither BLAS nor
numba support, the same loops run as plain Python through the dispatcher's
``py_func``.
"""

from enum import Enum
from typing import Optional, Union

import numpy as np
from numba import njit

from nksolvers._utils import Array, BLAS_PRECISIONS

# Relative change test for catastrophic cancellation in MGS
_REORTH_FACTOR = 0.001


class Orthogonalization(Enum):
    """Closed set of Gram-Schmidt variants."""

    MGS1 = "mgs1"
    MGS2 = "mgs2"
    CGS1 = "cgs1"
    CGS2 = "cgs2"

    @property
    def is_classical(self) -> bool:
        return self in (Orthogonalization.CGS1, Orthogonalization.CGS2)

    @property
    def twice(self) -> bool:
        return self in (Orthogonalization.MGS2, Orthogonalization.CGS2)


class OrthogonalizationStrategy(Enum):
    """Arithmetic backend used for projections and updates."""

    BATCHED = "batched"
    ELEMENTWISE = "elementwise"


def to_orthogonalization(
    value: Union[str, Orthogonalization],
) -> Orthogonalization:
    """Convert a selector string to :class:`Orthogonalization`.

    Raises
    ------
    ValueError
        If ``value`` does not name a known variant.
    """
    if isinstance(value, Orthogonalization):
        return value
    try:
        return Orthogonalization(value)
    except ValueError:
        options = [member.value for member in Orthogonalization]
        raise ValueError(
            f"Unknown orthogonalization '{value}'. Options are: {options}."
        ) from None


def to_strategy(
    value: Union[None, str, OrthogonalizationStrategy],
) -> Optional[OrthogonalizationStrategy]:
    """Convert a strategy selector, passing ``None`` through."""
    if value is None or isinstance(value, OrthogonalizationStrategy):
        return value
    try:
        return OrthogonalizationStrategy(value)
    except ValueError:
        options = [member.value for member in OrthogonalizationStrategy]
        raise ValueError(
            f"Unknown orthogonalization strategy '{value}'. "
            f"Options are: {options}."
        ) from None


def default_strategy(dtype) -> OrthogonalizationStrategy:
    """Return the strategy used for a basis stored as ``dtype``."""
    if np.dtype(dtype) in BLAS_PRECISIONS:
        return OrthogonalizationStrategy.BATCHED
    return OrthogonalizationStrategy.ELEMENTWISE


def resolve_strategy(
    strategy: Union[None, str, OrthogonalizationStrategy],
    dtype,
) -> OrthogonalizationStrategy:
    """Pick a strategy for ``dtype``, validating an explicit request."""
    strategy = to_strategy(strategy)
    if strategy is None:
        return default_strategy(dtype)
    if (strategy is OrthogonalizationStrategy.BATCHED
            and np.dtype(dtype) not in BLAS_PRECISIONS):
        raise ValueError(
            f"The batched strategy needs a float32 or float64 basis, "
            f"got {np.dtype(dtype)}."
        )
    return strategy


# --------------------------------------------------------------------------- #
#                           Elementwise kernels                               #
# --------------------------------------------------------------------------- #
@njit(cache=True)
def _mgs_sweep(V, hv, vv, accumulate):
    """Project each column of ``V`` out of ``vv`` in order."""
    n = V.shape[0]
    k = V.shape[1]
    for j in range(k):
        proj = 0.0
        for i in range(n):
            proj += V[i, j] * vv[i]
        if accumulate:
            hv[j] += proj
        else:
            hv[j] = proj
        for i in range(n):
            vv[i] -= proj * V[i, j]


@njit(cache=True)
def _project(V, vv, out):
    """Store ``V.T @ vv`` into ``out``."""
    n = V.shape[0]
    k = V.shape[1]
    for j in range(k):
        total = 0.0
        for i in range(n):
            total += V[i, j] * vv[i]
        out[j] = total


@njit(cache=True)
def _subtract_combination(V, coefficients, vv):
    """Subtract ``V @ coefficients`` from ``vv`` in place."""
    n = V.shape[0]
    k = V.shape[1]
    for i in range(n):
        total = 0.0
        for j in range(k):
            total += V[i, j] * coefficients[j]
        vv[i] -= total


def _kernel(function, dtype):
    if np.dtype(dtype) in BLAS_PRECISIONS:
        return function
    return function.py_func


# --------------------------------------------------------------------------- #
#                               Variants                                      #
# --------------------------------------------------------------------------- #
def _mgs(V, hv, vv, twice, strategy):
    k = V.shape[1]
    normin = np.linalg.norm(vv)
    if strategy is OrthogonalizationStrategy.BATCHED:
        sweep = _mgs_sweep_batched
    else:
        sweep = _kernel(_mgs_sweep, V.dtype)
    sweep(V, hv, vv, False)
    hv[k] = np.linalg.norm(vv)
    if twice and (normin + _REORTH_FACTOR * hv[k] == normin):
        sweep(V, hv, vv, True)
        hv[k] = np.linalg.norm(vv)


def _mgs_sweep_batched(V, hv, vv, accumulate):
    for j in range(V.shape[1]):
        column = V[:, j]
        proj = column @ vv
        if accumulate:
            hv[j] += proj
        else:
            hv[j] = proj
        vv -= proj * column


def _cgs(V, hv, vv, twice, strategy):
    k = V.shape[1]
    rk = hv[:k]
    if strategy is OrthogonalizationStrategy.BATCHED:
        # gemv in the basis precision; mixing in float64 would copy V
        coefficients = V.T @ vv
        vv -= V @ coefficients
        rk += coefficients
        if twice:
            pk = V.T @ vv
            vv -= V @ pk
            rk += pk
    else:
        project = _kernel(_project, V.dtype)
        subtract = _kernel(_subtract_combination, V.dtype)
        pk = np.zeros(k, dtype=hv.dtype)
        project(V, vv, pk)
        subtract(V, pk, vv)
        rk += pk
        if twice:
            project(V, vv, pk)
            subtract(V, pk, vv)
            rk += pk
    hv[k] = np.linalg.norm(vv)


def orthogonalize(
    V: Array,
    hv: Array,
    vv: Array,
    orth: Union[str, Orthogonalization] = Orthogonalization.CGS2,
    strategy: Union[None, str, OrthogonalizationStrategy] = None,
) -> float:
    """Orthogonalize ``vv`` against the columns of ``V``.

    Parameters
    ----------
    V
        ``n x k`` array holding the existing orthonormal basis vectors.
    hv
        Hessenberg column of length ``k + 1``. On return ``hv[:k]`` holds the
        projections and ``hv[k]`` the norm of the orthogonalized vector. The
        classical variants add the projections to the existing contents of
        ``hv[:k]``; the modified variants overwrite them.
    vv
        Candidate vector of length ``n``; overwritten with the new unit basis
        vector.
    orth
        Gram-Schmidt variant, see :class:`Orthogonalization`.
    strategy
        Arithmetic backend. ``None`` selects batched BLAS products for float32
        and float64 bases and elementwise arithmetic otherwise.

    Returns
    -------
    float
        The norm stored in ``hv[k]``. Zero signals a happy breakdown: the
        candidate lies in the span of ``V`` and is left unnormalized.
    """
    orth = to_orthogonalization(orth)
    strategy = resolve_strategy(strategy, V.dtype)
    k = V.shape[1]
    if hv.shape[0] != k + 1:
        raise ValueError(
            f"Hessenberg column must have length {k + 1}, got {hv.shape[0]}."
        )

    if k == 0:
        hv[0] = np.linalg.norm(vv)
    elif orth.is_classical:
        _cgs(V, hv, vv, orth.twice, strategy)
    else:
        _mgs(V, hv, vv, orth.twice, strategy)

    nv = hv[k]
    if nv != 0:
        vv /= vv.dtype.type(nv)
    return float(nv)
