"""Forward-difference derivatives used when no analytic Jacobian is given."""

from typing import Any, Callable, Optional

import numpy as np

from nksolvers._utils import Array, call_with_pdata, evaluate_residual

# Absolute floor on the difference increment so that x = 0 still moves
_INCREMENT_FLOOR = 1.0e-8


def difference_increment(x: Array, dx: float) -> float:
    """Return ``dx * ||x||_inf + 1e-8``."""
    return dx * float(np.linalg.norm(x, np.inf)) + _INCREMENT_FLOOR


def dirder(
    v: Array,
    FS: Array,
    x: Array,
    F: Callable,
    pdata: Optional[Any] = None,
    dx: float = 1e-7,
    FT: Optional[Array] = None,
) -> Array:
    """Approximate ``F'(x) v`` with a forward difference.

    Parameters
    ----------
    v
        Direction.
    FS
        ``F(x)``, already evaluated.
    x
        Base point.
    F
        Residual ``F(FS, x[, pdata])``.
    pdata
        Problem data forwarded to ``F``.
    dx
        Relative increment scale.
    FT
        Scratch storage for ``F(x + h v)``; allocated when omitted.

    Returns
    -------
    ndarray
        ``(F(x + h v) - F(x)) / h``. A zero direction returns zeros without
        evaluating ``F``.
    """
    if not np.any(v):
        return np.zeros(FS.shape, dtype=np.float64)
    h = difference_increment(x, dx)
    if FT is None:
        FT = np.empty_like(FS)
    evaluate_residual(F, FT, x + h * v, pdata)
    return (FT - FS) / h


def diffjac(
    FPS: Array,
    FS: Array,
    x: Array,
    F: Callable,
    pdata: Optional[Any] = None,
    dx: float = 1e-7,
) -> Array:
    """Fill ``FPS`` with a forward-difference Jacobian, one column per
    unit direction."""
    n = x.shape[0]
    unit = np.zeros(n)
    FT = np.empty_like(FS)
    for j in range(n):
        unit[j] = 1.0
        FPS[:, j] = dirder(unit, FS, x, F, pdata=pdata, dx=dx, FT=FT)
        unit[j] = 0.0
    return FPS


def scalar_derivative(
    f: Callable,
    x: float,
    fval: float,
    fp: Optional[Callable] = None,
    dx: float = 1e-7,
    pdata: Optional[Any] = None,
) -> float:
    """Return ``fp(x)``, or ``(f(x + dx) - f(x)) / dx`` without ``fp``."""
    if fp is not None:
        return float(call_with_pdata(fp, x, pdata=pdata))
    return (float(call_with_pdata(f, x + dx, pdata=pdata)) - fval) / dx
