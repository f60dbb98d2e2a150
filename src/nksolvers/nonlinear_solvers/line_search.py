"""Armijo backtracking along a Newton direction."""

import attrs
import numpy as np

from nksolvers._utils import Array

ARMIJO_ALPHA = 1.0e-4
# Safeguard interval for the parabolic step, as fractions of the current step
SIGMA0 = 0.1
SIGMA1 = 0.5


@attrs.define(frozen=True)
class LineSearchResult:
    """Outcome of one line search.

    Attributes
    ----------
    resnorm : float
        Residual norm at the last trial point.
    steplength : float
        Last trial step length.
    iarm : int
        Number of step length reductions.
    idid : bool
        True when the sufficient decrease condition holds at the last trial
        point.
    """

    resnorm: float
    steplength: float
    iarm: int
    idid: bool


def parab3p(lambdac: float, lambdam: float, ff0: float, ffc: float,
            ffm: float) -> float:
    """Minimize the parabola through three squared residual norms.

    The model interpolates ``ff0`` at step 0, ``ffc`` at ``lambdac`` and
    ``ffm`` at ``lambdam``. The result is clamped to
    ``[0.1 * lambdac, 0.5 * lambdac]``; a model with non-positive curvature
    returns ``0.5 * lambdac``.
    """
    c2 = lambdam * (ffc - ff0) - lambdac * (ffm - ff0)
    if c2 >= 0:
        return SIGMA1 * lambdac
    c1 = lambdac * lambdac * (ffm - ff0) - lambdam * lambdam * (ffc - ff0)
    lambdap = -c1 * 0.5 / c2
    lambdap = max(lambdap, SIGMA0 * lambdac)
    return min(lambdap, SIGMA1 * lambdac)


def armijo(xt: Array, x: Array, FT: Array, step: Array, residm: float,
           rules) -> LineSearchResult:
    """Backtrack from the full step until the residual drops enough.

    Parameters
    ----------
    xt
        Trial point storage; holds ``x + lambda * step`` on return.
    x
        Current iterate, unchanged.
    FT
        Trial residual storage; holds ``F(xt)`` on return.
    step
        Newton direction.
    residm
        ``||F(x)||``.
    rules
        :class:`~nksolvers.nonlinear_solvers.rules.IterationRules` supplying
        the residual, ``armmax`` and ``armfix``.

    Returns
    -------
    LineSearchResult
        The last trial point is kept in ``xt``/``FT`` whether or not the
        decrease condition was met.
    """
    armmax = rules.config.armmax
    armfix = rules.config.armfix

    lam = 1.0
    lamc = lam
    lamm = lam
    xt[:] = x + lam * step
    rules.residual(FT, xt)
    resnorm = float(np.linalg.norm(FT))
    ff0 = residm * residm
    ffc = resnorm * resnorm
    ffm = ffc
    iarm = 0
    armfail = not resnorm <= (1.0 - ARMIJO_ALPHA * lam) * residm
    while armfail and iarm < armmax:
        if iarm == 0 or armfix:
            lam = 0.5 * lam
        else:
            lam = parab3p(lamc, lamm, ff0, ffc, ffm)
        xt[:] = x + lam * step
        lamm = lamc
        lamc = lam
        rules.residual(FT, xt)
        resnorm = float(np.linalg.norm(FT))
        ffm = ffc
        ffc = resnorm * resnorm
        iarm += 1
        armfail = not resnorm <= (1.0 - ARMIJO_ALPHA * lam) * residm

    return LineSearchResult(resnorm=resnorm, steplength=lam, iarm=iarm,
                            idid=not armfail)
