"""Configuration records for the Newton-Krylov driver.

:class:`NewtonKrylovConfig` holds the numeric options with their defaults and
validates them once, before the solve begins. :class:`IterationRules` bundles
a validated config with the caller's callables and problem data; it is built
once per solve and passed by reference to the forcing term, the linear solve
and the line search.
"""

from typing import Any, Callable, Optional

import attrs
import numpy as np
from attrs import validators

from nksolvers._utils import (
    Array,
    call_with_pdata,
    callable_validator,
    evaluate_residual,
    getype_validator,
    gttype_validator,
    inrangetype_validator,
    opt_callable_validator,
)
from nksolvers.linear_solvers.orthogonalize import (
    Orthogonalization,
    to_orthogonalization,
)
from nksolvers.nonlinear_solvers.derivatives import dirder

GOLDEN_RATIO = (1.0 + np.sqrt(5.0)) / 2.0


def _open_unit_interval(instance, attribute, value):
    getype_validator(float, 0)(instance, attribute, value)
    if not 0.0 < value < 1.0:
        raise ValueError(
            f"{attribute.name} must lie in (0, 1), got {value}"
        )


@attrs.define(frozen=True)
class ForcingParameters:
    """Constants of the Eisenstat-Walker forcing term.

    Attributes
    ----------
    gamma : float
        Scale applied to the residual ratio and safeguard terms.
    residual_power : float
        Exponent on the ratio of consecutive residual norms.
    safeguard_power : float
        Exponent on the previous forcing term in the safeguard.
    safeguard_threshold : float
        The safeguard only applies while it exceeds this value.
    """

    gamma: float = attrs.field(
        default=0.9,
        validator=_open_unit_interval
    )
    residual_power: float = attrs.field(
        default=2.0,
        validator=gttype_validator(float, 1)
    )
    safeguard_power: float = attrs.field(
        default=GOLDEN_RATIO,
        validator=gttype_validator(float, 1)
    )
    safeguard_threshold: float = attrs.field(
        default=0.1,
        validator=_open_unit_interval
    )


@attrs.define
class NewtonKrylovConfig:
    """Options for :func:`~nksolvers.nonlinear_solvers.newton_krylov.nsoli`.

    Attributes
    ----------
    rtol, atol : float
        Convergence when ``||F(x)|| <= rtol * ||F(x0)|| + atol``.
    maxit : int
        Limit on nonlinear iterations.
    lmaxit : int
        Limit on Krylov iterations per linear solve; ``-1`` uses the basis
        capacity ``m - 1``.
    eta : float
        Forcing term (fixed mode) or its upper bound (adaptive mode). Must
        lie in (0, 1).
    fixedeta : bool
        Constant forcing term when True, Eisenstat-Walker otherwise.
    forcing : ForcingParameters
        Eisenstat-Walker constants.
    pside : str
        Preconditioner side, 'left' or 'right'.
    armmax : int
        Upper bound on step length reductions per line search.
    armfix : bool
        Halve the step every reduction instead of the parabolic model.
    dx : float
        Finite-difference increment scale, ``h = dx * ||x||_inf + 1e-8``.
    orth : Orthogonalization
        Gram-Schmidt variant for GMRES.
    printerr : bool
        Warn with a summary when the solve fails.
    keepsolhist : bool
        Keep every iterate; costs ``n * (maxit + 1)`` floats.
    stagnationok : bool
        Keep iterating after line search failures. With ``armmax == 0``
        the raw Newton step is always taken.
    """

    rtol: float = attrs.field(default=1e-6, validator=getype_validator(float, 0))
    atol: float = attrs.field(default=1e-12, validator=getype_validator(float, 0))
    maxit: int = attrs.field(default=20, validator=getype_validator(int, 0))
    lmaxit: int = attrs.field(default=-1, validator=getype_validator(int, -1))
    eta: float = attrs.field(default=0.1, validator=_open_unit_interval)
    fixedeta: bool = attrs.field(
        default=True,
        validator=validators.instance_of(bool)
    )
    forcing: ForcingParameters = attrs.field(
        factory=ForcingParameters,
        validator=validators.instance_of(ForcingParameters)
    )
    pside: str = attrs.field(
        default='left',
        validator=validators.in_(["left", "right"])
    )
    armmax: int = attrs.field(
        default=10,
        validator=inrangetype_validator(int, 0, 32767)
    )
    armfix: bool = attrs.field(
        default=False,
        validator=validators.instance_of(bool)
    )
    dx: float = attrs.field(default=1e-7, validator=gttype_validator(float, 0))
    orth: Orthogonalization = attrs.field(
        default=Orthogonalization.CGS2,
        converter=to_orthogonalization,
    )
    printerr: bool = attrs.field(
        default=True,
        validator=validators.instance_of(bool)
    )
    keepsolhist: bool = attrs.field(
        default=False,
        validator=validators.instance_of(bool)
    )
    stagnationok: bool = attrs.field(
        default=False,
        validator=validators.instance_of(bool)
    )

    @property
    def stagflag(self) -> bool:
        """True when the line search is disabled and cannot fail."""
        return self.stagnationok and self.armmax == 0


@attrs.define(frozen=True)
class IterationRules:
    """Read-only bundle shared by every stage of one nonlinear solve.

    Attributes
    ----------
    f : Callable
        Residual ``f(FS, x[, pdata])``.
    jvec : Callable or None
        Jacobian-vector product ``jvec(v, FS, x[, pdata])``; ``None`` uses
        the forward-difference :func:`dirder`.
    pvec : Callable or None
        Preconditioner-vector product ``pvec(v, x[, pdata])``.
    config : NewtonKrylovConfig
        Validated numeric options.
    pdata : Any
        Caller-owned problem data, threaded through unmodified.
    """

    f: Callable = attrs.field(validator=callable_validator)
    jvec: Optional[Callable] = attrs.field(
        default=None,
        validator=opt_callable_validator
    )
    pvec: Optional[Callable] = attrs.field(
        default=None,
        validator=opt_callable_validator
    )
    config: NewtonKrylovConfig = attrs.field(
        factory=NewtonKrylovConfig,
        validator=validators.instance_of(NewtonKrylovConfig)
    )
    pdata: Any = attrs.field(default=None)

    def residual(self, FS: Array, x: Array) -> Array:
        """Evaluate the residual at ``x`` into ``FS``."""
        return evaluate_residual(self.f, FS, x, self.pdata)

    def jacobian_vector(self, v: Array, FS: Array, x: Array,
                        scratch: Optional[Array] = None) -> Array:
        """Return ``F'(x) v``, analytic when available."""
        if self.jvec is None:
            return dirder(v, FS, x, self.f, pdata=self.pdata,
                          dx=self.config.dx, FT=scratch)
        return call_with_pdata(self.jvec, v, FS, x, pdata=self.pdata)

    def preconditioner(self, v: Array, x: Array) -> Array:
        """Return ``P(x) v``."""
        return call_with_pdata(self.pvec, v, x, pdata=self.pdata)
