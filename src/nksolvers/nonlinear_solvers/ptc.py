"""Pseudo-transient continuation for stable steady states.

PTC integrates ``dx/dt = -F(x)`` with implicit Euler steps whose pseudo time
step grows as the residual falls, following switched evolution relaxation
(SER): ``dt <- dt * ||F(x_prev)|| / ||F(x)||``. Each step solves
``(F'(x) + I/dt) s = -F(x)``. Far from a steady state the small ``dt`` keeps
the iteration on the trajectory; near it the shift vanishes and the
iteration becomes Newton's method.

PTC only finds steady states that are stable for the dynamics. It is not a
general purpose nonlinear solver.
"""

from typing import Any, Callable, Optional, Union
from warnings import warn

import attrs
import numpy as np
from attrs import validators

from nksolvers._utils import (
    BLAS_PRECISIONS,
    Array,
    call_with_pdata,
    evaluate_residual,
    get_readonly_view,
    getype_validator,
    gttype_validator,
    solution_history,
)
from nksolvers.linear_solvers.gmres import (
    KrylovWorkspace,
    check_krylov_basis,
    gmres_solve,
)
from nksolvers.linear_solvers.orthogonalize import (
    Orthogonalization,
    to_orthogonalization,
)
from nksolvers.nonlinear_solvers.derivatives import (
    diffjac,
    dirder,
    scalar_derivative,
)
from nksolvers.nonlinear_solvers.return_codes import PTCErrorCodes
from nksolvers.solver_logger import SolverLogger, resolve_logger


@attrs.define
class PTCConfig:
    """Options shared by the PTC drivers.

    Attributes
    ----------
    rtol, atol : float
        Termination when ``||F(x)|| <= atol + rtol * ||F(x0)||``.
    maxit : int
        Limit on pseudo time steps.
    dt0 : float
        Initial pseudo time step.
    dx : float
        Finite-difference increment.
    eta : float
        GMRES relative tolerance (Krylov variant only).
    lmaxit : int
        GMRES iteration cap, ``-1`` for the basis capacity (Krylov variant).
    pside : str
        Preconditioner side (Krylov variant).
    orth : Orthogonalization
        Gram-Schmidt variant (Krylov variant).
    printerr : bool
        Warn on failure.
    keepsolhist : bool
        Return every iterate.
    """

    rtol: float = attrs.field(default=1e-6, validator=getype_validator(float, 0))
    atol: float = attrs.field(default=1e-12, validator=getype_validator(float, 0))
    maxit: int = attrs.field(default=20, validator=getype_validator(int, 0))
    dt0: float = attrs.field(default=1e-6, validator=gttype_validator(float, 0))
    dx: float = attrs.field(default=1e-7, validator=gttype_validator(float, 0))
    eta: float = attrs.field(default=0.01, validator=gttype_validator(float, 0))
    lmaxit: int = attrs.field(default=-1, validator=getype_validator(int, -1))
    pside: str = attrs.field(
        default='right',
        validator=validators.in_(["left", "right"])
    )
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


@attrs.define(frozen=True)
class PTCResult:
    """Outcome of a PTC solve.

    Attributes
    ----------
    solution
        Final iterate (float for the scalar driver).
    functionval
        Residual at ``solution``.
    history : ndarray
        Residual norms, starting with ``||F(x0)||``.
    idid : bool
        True on success. An initial iterate that already met the tolerance
        is reported as ``False`` with ``INITIAL_ITERATE_CONVERGED``.
    errcode : PTCErrorCodes
    solhist : ndarray or None
        Iterates, when requested. Vector drivers store them as columns.
    dt_history : ndarray
        Pseudo time step in force after each iteration, starting with
        ``dt0``.
    """

    solution: Any
    functionval: Any
    history: Array
    idid: bool
    errcode: PTCErrorCodes
    solhist: Optional[Array] = None
    dt_history: Optional[Array] = None

    @property
    def iterations(self) -> int:
        return len(self.history) - 1


def ser_update(dt: float, residm: float, resnorm: float) -> float:
    """Grow ``dt`` by the residual reduction of the last step."""
    if resnorm == 0.0:
        return dt
    return dt * residm / resnorm


def ptc_status(resnorm: float, tol: float, toosoon: bool,
               config: PTCConfig):
    """Return ``(idid, errcode)``, warning on failure if requested."""
    if toosoon:
        if config.printerr:
            warn(
                f"PTC: the initial iterate already meets the termination "
                f"criterion (||F|| = {resnorm:.3e}, tol = {tol:.3e}); no "
                f"pseudo time steps were taken.",
                UserWarning,
                stacklevel=3,
            )
        return False, PTCErrorCodes.INITIAL_ITERATE_CONVERGED
    if resnorm <= tol:
        return True, PTCErrorCodes.SUCCESS
    if config.printerr:
        warn(
            f"PTC failure; increase maxit and/or dt0. Current values: "
            f"maxit = {config.maxit}, dt0 = {config.dt0}. "
            f"||F|| = {resnorm:.3e}, tol = {tol:.3e}.",
            UserWarning,
            stacklevel=3,
        )
    return False, PTCErrorCodes.MAX_ITERATIONS_EXCEEDED


def _readonly(values) -> Array:
    return get_readonly_view(np.asarray(values, dtype=np.float64))


def ptcsc(
    f: Callable,
    x: float,
    *,
    rtol: float = 1e-6,
    atol: float = 1e-12,
    fp: Optional[Callable] = None,
    dt0: float = 1e-3,
    maxit: int = 100,
    dx: float = 1e-7,
    pdata: Optional[Any] = None,
    printerr: bool = True,
    keepsolhist: bool = True,
    verbosity: Union[None, str, SolverLogger] = None,
) -> PTCResult:
    """Scalar pseudo-transient continuation.

    Parameters
    ----------
    f
        Scalar function ``f(x[, pdata])``.
    x
        Initial iterate.
    rtol, atol
        Termination when ``|f(x)| <= atol + rtol * |f(x0)|``.
    fp
        Derivative ``fp(x[, pdata])``; a forward difference with increment
        ``dx`` when omitted.
    dt0
        Initial pseudo time step. The conservative default often needs a
        large ``maxit``.
    maxit
        Limit on pseudo time steps.
    dx
        Forward-difference increment.
    pdata
        Problem data appended to every callback when not None.
    printerr
        Warn on failure.
    keepsolhist
        Return every iterate.
    verbosity
        Iteration logging.

    Returns
    -------
    PTCResult
        ``history`` holds ``|f(x)|`` per iteration and ``dt_history`` the
        pseudo time steps; unless something has gone badly wrong,
        ``dt ~ |f(x0)| / |f(x)|``.
    """
    config = PTCConfig(rtol=rtol, atol=atol, maxit=maxit, dt0=dt0, dx=dx,
                       printerr=printerr, keepsolhist=keepsolhist)
    logger = resolve_logger(verbosity)
    x = float(x)
    fval = float(call_with_pdata(f, x, pdata=pdata))
    resnorm = abs(fval)
    tol = config.atol + config.rtol * resnorm
    toosoon = resnorm <= tol
    dt = config.dt0
    history = [resnorm]
    dt_history = [dt]
    solhist = [x]
    if logger is not None:
        logger.record('ptcsc', 0, resnorm, dt=dt)

    itc = 0
    while resnorm > tol and itc < config.maxit:
        df = scalar_derivative(f, x, fval, fp=fp, dx=config.dx, pdata=pdata)
        step = -fval / (1.0 / dt + df)
        x = x + step
        fval = float(call_with_pdata(f, x, pdata=pdata))
        residm = resnorm
        resnorm = abs(fval)
        dt = ser_update(dt, residm, resnorm)
        itc += 1
        history.append(resnorm)
        dt_history.append(dt)
        solhist.append(x)
        if logger is not None:
            logger.record('ptcsc', itc, resnorm, dt=dt)

    idid, errcode = ptc_status(resnorm, tol, toosoon, config)
    if logger is not None:
        logger.print_summary()
    return PTCResult(
        solution=x,
        functionval=fval,
        history=_readonly(history),
        idid=idid,
        errcode=errcode,
        solhist=_readonly(solhist) if config.keepsolhist else None,
        dt_history=_readonly(dt_history),
    )


def _ptc_loop(name, F, x, FS, shifted_step, config, pdata, logger):
    """Run the SER-controlled PTC loop for the vector drivers.

    ``shifted_step(x, FS, dt)`` returns the solution of
    ``(F'(x) + I/dt) s = -F(x)``.
    """
    solhist = solution_history(x, config.maxit) if config.keepsolhist \
        else None
    evaluate_residual(F, FS, x, pdata)
    resnorm = float(np.linalg.norm(FS))
    tol = config.atol + config.rtol * resnorm
    toosoon = resnorm <= tol
    dt = config.dt0
    history = [resnorm]
    dt_history = [dt]
    if logger is not None:
        logger.record(name, 0, resnorm, dt=dt)

    itc = 0
    while resnorm > tol and itc < config.maxit:
        x += shifted_step(x, FS, dt)
        evaluate_residual(F, FS, x, pdata)
        residm = resnorm
        resnorm = float(np.linalg.norm(FS))
        dt = ser_update(dt, residm, resnorm)
        itc += 1
        history.append(resnorm)
        dt_history.append(dt)
        if solhist is not None:
            solhist[:, itc] = x
        if logger is not None:
            logger.record(name, itc, resnorm, dt=dt)

    idid, errcode = ptc_status(resnorm, tol, toosoon, config)
    if logger is not None:
        logger.print_summary()
    return PTCResult(
        solution=x,
        functionval=FS,
        history=_readonly(history),
        idid=idid,
        errcode=errcode,
        solhist=None if solhist is None else solhist[:, :itc + 1],
        dt_history=_readonly(dt_history),
    )


def _initial_vector(x0: Array, FS: Array) -> Array:
    x = np.array(x0, dtype=np.float64)
    if x.ndim != 1:
        raise ValueError("The initial iterate must be a vector.")
    if FS.shape != x.shape:
        raise ValueError(
            f"FS has shape {FS.shape}; expected {x.shape}."
        )
    return x


def ptcsol(
    F: Callable,
    x0: Array,
    FS: Array,
    FPS: Array,
    J: Optional[Callable] = None,
    *,
    rtol: float = 1e-6,
    atol: float = 1e-12,
    maxit: int = 20,
    delta0: float = 1e-6,
    dx: float = 1e-7,
    pdata: Optional[Any] = None,
    printerr: bool = True,
    keepsolhist: bool = False,
    verbosity: Union[None, str, SolverLogger] = None,
) -> PTCResult:
    """Vector PTC with a dense Jacobian and a direct solve per step.

    Parameters
    ----------
    F
        Residual ``F(FS, x[, pdata])``.
    x0
        Initial iterate; not modified.
    FS
        Residual storage.
    FPS
        ``n x n`` Jacobian storage, float64 or float32. The shifted system
        is solved in this precision.
    J
        Jacobian ``J(FPS, FS, x[, pdata])`` filling ``FPS``. Forward
        differences when omitted.
    delta0
        Initial pseudo time step.

    Other parameters are as in :func:`ptcsc`.
    """
    config = PTCConfig(rtol=rtol, atol=atol, maxit=maxit, dt0=delta0, dx=dx,
                       printerr=printerr, keepsolhist=keepsolhist)
    x = _initial_vector(x0, FS)
    n = x.shape[0]
    if FPS.shape != (n, n):
        raise ValueError(f"FPS has shape {FPS.shape}; expected ({n}, {n}).")
    if FPS.dtype not in BLAS_PRECISIONS:
        raise ValueError(
            f"Unsupported Jacobian precision {FPS.dtype}; use float32 or "
            f"float64."
        )
    identity = np.eye(n, dtype=FPS.dtype)

    def shifted_step(x, FS, dt):
        if J is None:
            diffjac(FPS, FS, x, F, pdata=pdata, dx=config.dx)
        else:
            out = call_with_pdata(J, FPS, FS, x, pdata=pdata)
            if out is not None and out is not FPS:
                FPS[...] = out
        shifted = FPS + identity * FPS.dtype.type(1.0 / dt)
        return np.linalg.solve(shifted, -FS.astype(FPS.dtype))

    return _ptc_loop('ptcsol', F, x, FS, shifted_step, config, pdata,
                     resolve_logger(verbosity))


def ptcsoli(
    F: Callable,
    x0: Array,
    FS: Array,
    FPS: Array,
    Jvec: Optional[Callable] = None,
    *,
    rtol: float = 1e-6,
    atol: float = 1e-12,
    maxit: int = 20,
    lmaxit: int = -1,
    delta0: float = 1e-6,
    dx: float = 1e-7,
    eta: float = 0.01,
    Pvec: Optional[Callable] = None,
    pside: str = "right",
    pdata: Optional[Any] = None,
    printerr: bool = True,
    keepsolhist: bool = False,
    orth: str = "cgs2",
    verbosity: Union[None, str, SolverLogger] = None,
) -> PTCResult:
    """Vector PTC with GMRES solves of the shifted system.

    The operator ``v -> F'(x) v + v / dt`` is applied matrix free with
    ``Jvec(v, FS, x[, pdata])`` or forward differences. ``FPS`` is the
    ``n x m`` Krylov basis storage, ``eta`` the fixed GMRES relative
    tolerance, and ``Pvec(v, x[, pdata])`` an optional preconditioner
    applied on ``pside``. Other parameters are as in :func:`ptcsol`.
    """
    config = PTCConfig(rtol=rtol, atol=atol, maxit=maxit, dt0=delta0, dx=dx,
                       eta=eta, lmaxit=lmaxit, pside=pside, orth=orth,
                       printerr=printerr, keepsolhist=keepsolhist)
    x = _initial_vector(x0, FS)
    n = x.shape[0]
    check_krylov_basis(FPS, n)
    workspace = KrylovWorkspace.allocate(FPS.shape[1])
    scratch = np.empty_like(FS)
    logger = resolve_logger(verbosity)

    def shifted_step(x, FS, dt):
        def atv(v):
            if Jvec is None:
                jv = dirder(v, FS, x, F, pdata=pdata, dx=config.dx,
                            FT=scratch)
            else:
                jv = call_with_pdata(Jvec, v, FS, x, pdata=pdata)
            return jv + v / dt

        def ptv(v):
            return call_with_pdata(Pvec, v, x, pdata=pdata)

        kout = gmres_solve(
            np.zeros(n),
            -FS,
            atv,
            FPS,
            config.eta,
            ptv if Pvec is not None else None,
            orth=config.orth,
            side=config.pside,
            lmaxit=config.lmaxit,
            workspace=workspace,
            logger=logger,
        )
        return kout.solution

    return _ptc_loop('ptcsoli', F, x, FS, shifted_step, config, pdata,
                     logger)
