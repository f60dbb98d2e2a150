"""Preconditioned GMRES without restarts.

The solver builds the Krylov basis in caller-provided storage ``V`` whose
``m`` columns bound the subspace dimension to ``m - 1``. The projected least
squares problem is reduced to triangular form with Givens rotations as the
basis grows, so the residual estimate is available after every Arnoldi step
without forming the iterate.
"""

from typing import Any, Callable, Optional, Union

import attrs
import numpy as np
from attrs import validators

from nksolvers._utils import (
    ALLOWED_BASIS_PRECISIONS,
    Array,
    call_with_pdata,
    get_readonly_view,
    getype_validator,
    gttype_validator,
)
from nksolvers.linear_solvers.orthogonalize import (
    Orthogonalization,
    OrthogonalizationStrategy,
    orthogonalize,
    resolve_strategy,
    to_orthogonalization,
    to_strategy,
)
from nksolvers.solver_logger import SolverLogger


@attrs.define
class GMRESConfig:
    """Validated settings for one GMRES solve.

    Attributes
    ----------
    eta : float
        Relative residual reduction required for convergence.
    orth : Orthogonalization
        Gram-Schmidt variant used by the Arnoldi process.
    side : str
        Preconditioner side, 'left' or 'right'.
    lmaxit : int
        Cap on Krylov iterations. ``-1`` uses the basis capacity.
    strategy : OrthogonalizationStrategy or None
        Arithmetic backend for the orthogonalization; ``None`` picks one
        from the basis precision.
    """

    eta: float = attrs.field(
        default=1e-6,
        validator=gttype_validator(float, 0)
    )
    orth: Orthogonalization = attrs.field(
        default=Orthogonalization.CGS2,
        converter=to_orthogonalization,
    )
    side: str = attrs.field(
        default='right',
        validator=validators.in_(["left", "right"])
    )
    lmaxit: int = attrs.field(
        default=-1,
        validator=getype_validator(int, -1)
    )
    strategy: Optional[OrthogonalizationStrategy] = attrs.field(
        default=None,
        converter=to_strategy,
    )

    def max_iterations(self, capacity: int) -> int:
        """Return the Krylov iteration cap for a basis with ``capacity``
        columns."""
        if self.lmaxit < 0:
            return capacity - 1
        return min(self.lmaxit, capacity - 1)


@attrs.define
class KrylovWorkspace:
    """Hessenberg and Givens storage reused across linear solves.

    Attributes
    ----------
    hessenberg : ndarray
        ``m x (m - 1)`` upper Hessenberg matrix, triangularized in place.
    cosines, sines : ndarray
        Givens rotation coefficients, one per Arnoldi step.
    g : ndarray
        Rotated right-hand side of the projected least squares problem.
    """

    hessenberg: Array = attrs.field()
    cosines: Array = attrs.field()
    sines: Array = attrs.field()
    g: Array = attrs.field()

    @classmethod
    def allocate(cls, capacity: int) -> "KrylovWorkspace":
        """Allocate storage for a basis with ``capacity`` columns."""
        return cls(
            hessenberg=np.zeros((capacity, capacity - 1)),
            cosines=np.zeros(capacity - 1),
            sines=np.zeros(capacity - 1),
            g=np.zeros(capacity),
        )

    @property
    def capacity(self) -> int:
        return self.g.shape[0]

    def reset(self) -> None:
        """Clear the workspace at the start of a linear solve."""
        self.hessenberg.fill(0.0)
        self.cosines.fill(0.0)
        self.sines.fill(0.0)
        self.g.fill(0.0)


@attrs.define(frozen=True)
class GMRESResult:
    """Outcome of a GMRES solve.

    Attributes
    ----------
    solution : ndarray
        Approximate solution in the original variables.
    reshist : ndarray
        Residual norm estimates, starting with the initial residual.
    lits : int
        Number of Krylov iterations (operator applications) performed.
    idid : bool
        True when the residual met ``eta * ||b||``.
    breakdown : bool
        True when the Arnoldi process hit a happy breakdown.
    """

    solution: Array
    reshist: Array
    lits: int
    idid: bool
    breakdown: bool = False

    @property
    def relative_history(self) -> Array:
        """Residual history scaled by the initial residual norm."""
        if self.reshist[0] == 0:
            return np.zeros_like(self.reshist)
        return self.reshist / self.reshist[0]


def check_krylov_basis(V: Array, n: int) -> None:
    """Raise ValueError unless ``V`` can hold a Krylov basis for ``n``
    unknowns."""
    if V.ndim != 2:
        raise ValueError("The Krylov basis storage must be two dimensional.")
    if V.shape[0] != n:
        raise ValueError(
            f"The Krylov basis has {V.shape[0]} rows but the system has "
            f"{n} unknowns."
        )
    if V.shape[1] < 2:
        raise ValueError(
            "The Krylov basis needs at least two columns for one iteration."
        )
    if V.dtype not in ALLOWED_BASIS_PRECISIONS:
        raise ValueError(
            f"Unsupported Krylov basis precision {V.dtype}; use float16, "
            f"float32 or float64."
        )


def _apply_rotations(column: Array, cosines: Array, sines: Array,
                     k: int) -> None:
    """Apply the first ``k`` stored rotations to Hessenberg ``column``."""
    for i in range(k):
        c = cosines[i]
        s = sines[i]
        temp = c * column[i] + s * column[i + 1]
        column[i + 1] = -s * column[i] + c * column[i + 1]
        column[i] = temp


def _back_substitute(R: Array, g: Array, k: int) -> Array:
    """Solve the leading ``k x k`` upper triangular system ``R y = g``."""
    y = np.zeros(k)
    for row in range(k - 1, -1, -1):
        val = g[row] - R[row, row + 1:k] @ y[row + 1:k]
        y[row] = val / R[row, row]
    return y


def gmres_solve(
    x0: Array,
    b: Array,
    atv: Callable,
    V: Array,
    eta: float,
    ptv: Optional[Callable] = None,
    *,
    orth: Union[str, Orthogonalization] = "cgs2",
    side: str = "right",
    lmaxit: int = -1,
    pdata: Optional[Any] = None,
    strategy: Union[None, str, OrthogonalizationStrategy] = None,
    workspace: Optional[KrylovWorkspace] = None,
    logger: Optional[SolverLogger] = None,
) -> GMRESResult:
    """Solve ``A x = b`` with preconditioned GMRES.

    Parameters
    ----------
    x0
        Initial iterate.
    b
        Right-hand side.
    atv
        Operator application ``atv(v[, pdata]) -> A v``.
    V
        ``n x m`` preallocated Krylov basis. Its dtype sets the storage
        precision of the basis; at most ``m - 1`` iterations are taken.
    eta
        Termination when ``||r|| <= eta * ||b||``, with ``r`` and ``b``
        preconditioned for left preconditioning.
    ptv
        Preconditioner application ``ptv(v[, pdata]) -> P v``.
    orth
        Gram-Schmidt variant ('mgs1', 'mgs2', 'cgs1', 'cgs2').
    side
        'left' applies ``P`` to the operator output and the right-hand side;
        'right' applies ``P`` before the operator and maps the correction back
        with ``P``.
    lmaxit
        Cap on iterations, ``-1`` for the basis capacity. Larger values are
        clipped; restarts are not performed.
    pdata
        Problem data forwarded to ``atv`` and ``ptv``.
    strategy
        Orthogonalization arithmetic backend, see
        :func:`~nksolvers.linear_solvers.orthogonalize.orthogonalize`.
    workspace
        Reusable Hessenberg/Givens storage; allocated when omitted.
    logger
        Receives one 'gmres' event per iteration.

    Returns
    -------
    GMRESResult
        Solution, residual history, iteration count and status. When the
        capacity runs out before convergence the best available solution is
        still returned with ``idid=False``.
    """
    config = GMRESConfig(eta=eta, orth=orth, side=side, lmaxit=lmaxit,
                         strategy=strategy)
    b = np.asarray(b, dtype=np.float64)
    n = b.shape[0]
    check_krylov_basis(V, n)
    resolved_strategy = resolve_strategy(config.strategy, V.dtype)
    capacity = V.shape[1]
    kmax = config.max_iterations(capacity)
    left = ptv is not None and config.side == 'left'
    right = ptv is not None and config.side == 'right'

    if workspace is None or workspace.capacity != capacity:
        workspace = KrylovWorkspace.allocate(capacity)
    workspace.reset()
    H = workspace.hessenberg
    cosines = workspace.cosines
    sines = workspace.sines
    g = workspace.g

    def apply_operator(v):
        if right:
            v = call_with_pdata(ptv, v, pdata=pdata)
        av = call_with_pdata(atv, v, pdata=pdata)
        if left:
            av = call_with_pdata(ptv, av, pdata=pdata)
        return av

    x = np.array(x0, dtype=np.float64)
    rhs = call_with_pdata(ptv, b, pdata=pdata) if left else b
    if np.any(x):
        r = b - call_with_pdata(atv, x, pdata=pdata)
        if left:
            r = call_with_pdata(ptv, r, pdata=pdata)
    else:
        r = np.array(rhs, dtype=np.float64)
    rho = float(np.linalg.norm(r))
    errtol = config.eta * float(np.linalg.norm(rhs))
    reshist = [rho]
    if logger is not None:
        logger.record('gmres', 0, rho)

    if rho == 0.0:
        return GMRESResult(solution=x,
                           reshist=get_readonly_view(np.asarray(reshist)),
                           lits=0, idid=True)

    g[0] = rho
    V[:, 0] = r / rho
    k = 0
    breakdown = False
    while rho > errtol and k < kmax:
        V[:, k + 1] = apply_operator(V[:, k])
        column = H[:k + 2, k]
        nv = orthogonalize(V[:, :k + 1], column, V[:, k + 1],
                           config.orth, resolved_strategy)

        _apply_rotations(column, cosines, sines, k)
        nu = np.hypot(column[k], column[k + 1])
        if nu == 0.0:
            # singular projected system; column k cannot enter the solve
            breakdown = True
            break
        cosines[k] = column[k] / nu
        sines[k] = column[k + 1] / nu
        column[k] = cosines[k] * column[k] + sines[k] * column[k + 1]
        column[k + 1] = 0.0
        g[k + 1] = -sines[k] * g[k]
        g[k] = cosines[k] * g[k]

        rho = abs(g[k + 1])
        k += 1
        reshist.append(rho)
        if logger is not None:
            logger.record('gmres', k, rho, eta=config.eta)
        if nv == 0.0:
            breakdown = True
            break

    y = _back_substitute(H, g, k)
    step = V[:, :k] @ y
    if right:
        step = call_with_pdata(ptv, step, pdata=pdata)
    x = x + step
    idid = bool(rho <= errtol)
    return GMRESResult(
        solution=x,
        reshist=get_readonly_view(np.asarray(reshist)),
        lits=k,
        idid=idid,
        breakdown=breakdown,
    )
