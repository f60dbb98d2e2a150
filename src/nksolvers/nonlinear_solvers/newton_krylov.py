"""Newton-Krylov iteration with GMRES inner solves and an Armijo line search.

Each outer iteration picks a forcing term, solves ``F'(x) s = -F(x)`` to that
relative accuracy with GMRES from a zero initial step, and backtracks along
``s`` until the residual norm drops sufficiently. Jacobian-vector products are
analytic when the caller supplies them and forward differences otherwise; the
Jacobian itself is never formed.
"""

from typing import Any, Callable, Optional, Union
from warnings import warn

import attrs
import numpy as np

from nksolvers._utils import Array, get_readonly_view, solution_history
from nksolvers.linear_solvers.gmres import (
    KrylovWorkspace,
    check_krylov_basis,
    gmres_solve,
)
from nksolvers.nonlinear_solvers.forcing import forcing
from nksolvers.nonlinear_solvers.line_search import armijo
from nksolvers.nonlinear_solvers.return_codes import NewtonErrorCodes
from nksolvers.nonlinear_solvers.rules import (
    IterationRules,
    NewtonKrylovConfig,
)
from nksolvers.solver_logger import SolverLogger, resolve_logger


@attrs.define
class NewtonBuffers:
    """Working vectors reused by every iteration of one solve."""

    trial_point: Array = attrs.field()
    trial_residual: Array = attrs.field()
    step: Array = attrs.field()
    scratch: Array = attrs.field()

    @classmethod
    def allocate(cls, x: Array, FS: Array) -> "NewtonBuffers":
        return cls(
            trial_point=np.empty_like(x),
            trial_residual=np.empty_like(FS),
            step=np.zeros_like(x),
            scratch=np.empty_like(FS),
        )


@attrs.define(frozen=True)
class NewtonStats:
    """Per-iteration work counts; entry 0 is the initial evaluation.

    Attributes
    ----------
    ifun : ndarray
        Residual evaluations, one plus the step reductions.
    ijac : ndarray
        Jacobian-vector products, one per Krylov iteration.
    iarm : ndarray
        Step length reductions in the line search.
    """

    ifun: Array
    ijac: Array
    iarm: Array


class IterationStats:
    """Accumulates the residual history and work counts during a solve."""

    def __init__(self, resnorm: float) -> None:
        self.history = [float(resnorm)]
        self.ifun = [1]
        self.ijac = [0]
        self.iarm = [0]

    def update(self, resnorm: float, newjac: int, iarm: int,
               newfun: int = 0) -> None:
        self.history.append(float(resnorm))
        self.ifun.append(newfun + iarm + 1)
        self.ijac.append(newjac)
        self.iarm.append(iarm)

    def freeze(self) -> NewtonStats:
        return NewtonStats(
            ifun=get_readonly_view(np.asarray(self.ifun, dtype=np.int64)),
            ijac=get_readonly_view(np.asarray(self.ijac, dtype=np.int64)),
            iarm=get_readonly_view(np.asarray(self.iarm, dtype=np.int64)),
        )


@attrs.define(frozen=True)
class NewtonKrylovResult:
    """Outcome of :func:`nsoli`.

    Attributes
    ----------
    solution : ndarray
        Final iterate.
    functionval : ndarray
        Residual at ``solution``; the caller's ``FS`` buffer.
    history : ndarray
        Residual norms, starting with ``||F(x0)||``.
    stats : NewtonStats
        Work counts per iteration.
    idid : bool
        True on success, including an initial iterate that already met the
        tolerance.
    errcode : NewtonErrorCodes
        Detailed status.
    solhist : ndarray or None
        ``n x (iterations + 1)`` iterates when requested.
    """

    solution: Array
    functionval: Array
    history: Array
    stats: NewtonStats
    idid: bool
    errcode: NewtonErrorCodes
    solhist: Optional[Array] = None

    @property
    def iterations(self) -> int:
        return len(self.history) - 1


def newton_status(resnorm: float, tol: float, iline: bool, toosoon: bool,
                  itc: int, config: NewtonKrylovConfig):
    """Return ``(idid, errcode)`` for a finished iteration, warning on
    failure when ``config.printerr`` is set."""
    if toosoon:
        return True, NewtonErrorCodes.INITIAL_ITERATE_CONVERGED
    if resnorm <= tol:
        return True, NewtonErrorCodes.SUCCESS
    if iline:
        errcode = NewtonErrorCodes.LINE_SEARCH_FAILED
        message = (
            f"Newton-Krylov: the line search failed at iteration {itc} "
            f"after armmax = {config.armmax} step reductions; "
            f"||F|| = {resnorm:.3e}, tol = {tol:.3e}. Consider a better "
            f"initial iterate, or stagnationok=True."
        )
    else:
        errcode = NewtonErrorCodes.MAX_ITERATIONS_EXCEEDED
        message = (
            f"Newton-Krylov: no convergence after maxit = {config.maxit} "
            f"iterations; ||F|| = {resnorm:.3e}, tol = {tol:.3e}."
        )
    if config.printerr:
        warn(message, UserWarning, stacklevel=3)
    return False, errcode


class NewtonKrylov:
    """Reusable Newton-Krylov solver for one residual function.

    Parameters
    ----------
    F
        Residual ``F(FS, x[, pdata])``; fills ``FS`` in place or returns it.
    config
        Validated options; defaults when omitted.
    Jvec
        Jacobian-vector product ``Jvec(v, FS, x[, pdata])``. Forward
        differences are used when omitted.
    Pvec
        Preconditioner-vector product ``Pvec(v, x[, pdata])``.
    pdata
        Problem data appended to every callback.
    verbosity
        ``None``, a verbosity string, or an existing
        :class:`~nksolvers.solver_logger.SolverLogger`.
    """

    def __init__(
        self,
        F: Callable,
        config: Optional[NewtonKrylovConfig] = None,
        Jvec: Optional[Callable] = None,
        Pvec: Optional[Callable] = None,
        pdata: Optional[Any] = None,
        verbosity: Union[None, str, SolverLogger] = None,
    ) -> None:
        if config is None:
            config = NewtonKrylovConfig()
        self.rules = IterationRules(f=F, jvec=Jvec, pvec=Pvec, config=config,
                                    pdata=pdata)
        self.logger = resolve_logger(verbosity)

    @property
    def config(self) -> NewtonKrylovConfig:
        return self.rules.config

    def solve(self, x0: Array, FS: Array, FPS: Array) -> NewtonKrylovResult:
        """Run the iteration from ``x0``.

        ``FS`` receives the residual and ``FPS`` is the ``n x m`` Krylov
        basis storage; both are overwritten.
        """
        rules = self.rules
        config = rules.config
        logger = self.logger
        x = np.array(x0, dtype=np.float64)
        if x.ndim != 1:
            raise ValueError("The initial iterate must be a vector.")
        n = x.shape[0]
        if FS.shape != (n,):
            raise ValueError(
                f"FS has shape {FS.shape}; expected ({n},)."
            )
        check_krylov_basis(FPS, n)
        if config.lmaxit > FPS.shape[1] - 1:
            warn(
                f"lmaxit = {config.lmaxit} exceeds the Krylov basis capacity "
                f"of {FPS.shape[1] - 1} directions; GMRES will stop at "
                f"{FPS.shape[1] - 1} iterations. Allocate FPS with "
                f"lmaxit + 1 columns to remove this limit.",
                UserWarning,
                stacklevel=2,
            )

        stagflag = config.stagflag
        buffers = NewtonBuffers.allocate(x, FS)
        workspace = KrylovWorkspace.allocate(FPS.shape[1])
        solhist = solution_history(x, config.maxit) if config.keepsolhist \
            else None

        rules.residual(FS, x)
        resnorm = float(np.linalg.norm(FS))
        tol = config.rtol * resnorm + config.atol
        stats = IterationStats(resnorm)
        if logger is not None:
            logger.record('nsoli', 0, resnorm)
        toosoon = resnorm <= tol

        def atv(v):
            return rules.jacobian_vector(v, FS, x, buffers.scratch)

        def ptv(v):
            return rules.preconditioner(v, x)

        itc = 0
        residratio = 1.0
        etag = config.eta
        armstop = True
        iline = False
        while (resnorm > tol and itc < config.maxit
               and (armstop or config.stagnationok)):
            etag = forcing(itc, residratio, etag, rules, tol, resnorm)
            kout = gmres_solve(
                np.zeros(n),
                -FS,
                atv,
                FPS,
                etag,
                ptv if rules.pvec is not None else None,
                orth=config.orth,
                side=config.pside,
                lmaxit=config.lmaxit,
                workspace=workspace,
                logger=logger,
            )
            buffers.step[:] = kout.solution
            if not kout.idid and logger is not None:
                logger.note(
                    'nsoli',
                    f"GMRES did not meet its termination criterion at "
                    f"iteration {itc}; the nonlinear iteration continues."
                )

            aout = armijo(buffers.trial_point, x, buffers.trial_residual,
                          buffers.step, resnorm, rules)
            x[:] = buffers.trial_point
            FS[:] = buffers.trial_residual
            armstop = aout.idid
            iline = not armstop and not stagflag

            residm = resnorm
            resnorm = aout.resnorm
            residratio = resnorm / residm
            stats.update(resnorm, kout.lits, aout.iarm)
            itc += 1
            if solhist is not None:
                solhist[:, itc] = x
            if logger is not None:
                logger.record('nsoli', itc, resnorm, eta=etag,
                              krylov_iterations=kout.lits,
                              step_reductions=aout.iarm,
                              linear_converged=kout.idid)

        idid, errcode = newton_status(resnorm, tol, iline, toosoon, itc,
                                      config)
        if logger is not None:
            logger.print_summary()
        return NewtonKrylovResult(
            solution=x,
            functionval=FS,
            history=get_readonly_view(np.asarray(stats.history)),
            stats=stats.freeze(),
            idid=idid,
            errcode=errcode,
            solhist=None if solhist is None else solhist[:, :itc + 1],
        )


def nsoli(
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
    eta: float = 0.1,
    fixedeta: bool = True,
    Pvec: Optional[Callable] = None,
    pside: str = "left",
    armmax: int = 10,
    dx: float = 1e-7,
    armfix: bool = False,
    pdata: Optional[Any] = None,
    printerr: bool = True,
    keepsolhist: bool = False,
    stagnationok: bool = False,
    orth: str = "cgs2",
    verbosity: Union[None, str, SolverLogger] = None,
) -> NewtonKrylovResult:
    """Solve ``F(x) = 0`` with the Newton-GMRES method.

    Parameters
    ----------
    F
        Residual ``F(FS, x[, pdata])``.
    x0
        Initial iterate; not modified.
    FS
        Residual storage of length ``n``.
    FPS
        ``n x m`` Krylov basis storage. Its dtype (float64, float32 or
        float16) is the precision of the basis; GMRES takes at most
        ``m - 1`` iterations per step.
    Jvec
        Jacobian-vector product ``Jvec(v, FS, x[, pdata])``. Forward
        differences with increment ``dx * ||x||_inf + 1e-8`` are used when
        omitted.
    rtol, atol
        Termination when ``||F(x)|| <= rtol * ||F(x0)|| + atol``.
    maxit
        Limit on nonlinear iterations.
    lmaxit
        Limit on GMRES iterations per step; ``-1`` uses ``m - 1``.
    eta, fixedeta
        Constant forcing term, or the Eisenstat-Walker upper bound when
        ``fixedeta`` is False.
    Pvec, pside
        Preconditioner ``Pvec(v, x[, pdata])`` and its side.
    armmax, armfix
        Line search limit and pure halving switch.
    dx
        Finite-difference increment scale.
    pdata
        Problem data appended to every callback when not None.
    printerr
        Warn on failure.
    keepsolhist
        Return every iterate.
    stagnationok
        Continue after line search failures.
    orth
        Gram-Schmidt variant for GMRES.
    verbosity
        Iteration logging, see :class:`~nksolvers.solver_logger.SolverLogger`.

    Returns
    -------
    NewtonKrylovResult
    """
    config = NewtonKrylovConfig(
        rtol=rtol,
        atol=atol,
        maxit=maxit,
        lmaxit=lmaxit,
        eta=eta,
        fixedeta=fixedeta,
        pside=pside,
        armmax=armmax,
        armfix=armfix,
        dx=dx,
        orth=orth,
        printerr=printerr,
        keepsolhist=keepsolhist,
        stagnationok=stagnationok,
    )
    solver = NewtonKrylov(F, config, Jvec=Jvec, Pvec=Pvec, pdata=pdata,
                          verbosity=verbosity)
    return solver.solve(x0, FS, FPS)
