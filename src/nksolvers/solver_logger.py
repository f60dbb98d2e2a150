"""Iteration logging infrastructure for the nonlinear and linear solvers."""

from typing import Any, Optional

import attrs
import numpy as np

_VERBOSITIES = {'default', 'verbose', 'debug'}
# Solvers whose events are only echoed in debug mode
_INNER_SOLVERS = {'gmres'}


@attrs.define(frozen=True)
class IterationEvent:
    """Record of a single solver iteration.

    Attributes
    ----------
    solver : str
        Identifier for the solver emitting the event (e.g. 'nsoli').
    iteration : int
        Iteration counter within the solve; 0 is the initial state.
    residual_norm : float
        Residual norm after the iteration.
    metadata : dict
        Optional per-iteration data (forcing term, Krylov iterations,
        step reductions, pseudo-time step, ...).
    """
    solver: str = attrs.field(validator=attrs.validators.instance_of(str))
    iteration: int = attrs.field(validator=attrs.validators.instance_of(int))
    residual_norm: float = attrs.field(converter=float)
    metadata: dict = attrs.field(factory=dict)


class SolverLogger:
    """Callback-based iteration log shared by the solver drivers.

    Parameters
    ----------
    verbosity : str, default='default'
        Output verbosity level. Options:
        - 'default': nothing while iterating, one line per solver from
          :meth:`print_summary`
        - 'verbose': one line per outer iteration
        - 'debug': outer and inner (GMRES) iterations, plus notes

    Attributes
    ----------
    verbosity : str
        Current verbosity level
    events : list[IterationEvent]
        Chronological list of all recorded events

    Notes
    -----
    Create one instance per solve, or share one across solves to keep a
    combined record.
    """

    def __init__(self, verbosity: str = 'default') -> None:
        if verbosity not in _VERBOSITIES:
            raise ValueError(
                f"verbosity must be 'default', 'verbose', or 'debug', "
                f"got '{verbosity}'"
            )
        self.verbosity = verbosity
        self.events: list[IterationEvent] = []

    def record(
        self,
        solver: str,
        iteration: int,
        residual_norm: float,
        **metadata: Any,
    ) -> None:
        """Record one iteration.

        Parameters
        ----------
        solver : str
            Identifier for the solver
        iteration : int
            Iteration counter within the solve
        residual_norm : float
            Residual norm after the iteration
        **metadata : Any
            Optional metadata to store with event
        """
        if not solver:
            raise ValueError("solver cannot be empty")

        event = IterationEvent(
            solver=solver,
            iteration=int(iteration),
            residual_norm=residual_norm,
            metadata=metadata,
        )
        self.events.append(event)

        if self._echo(solver):
            extras = "".join(
                f", {key}={_format_value(value)}"
                for key, value in metadata.items()
            )
            prefix = "[DEBUG] " if self.verbosity == 'debug' else ""
            print(
                f"{prefix}{solver} it {event.iteration}: "
                f"||F|| = {event.residual_norm:.6e}{extras}"
            )

    def note(self, solver: str, message: str) -> None:
        """Print a free-form diagnostic in verbose and debug modes."""
        if self.verbosity == 'debug':
            print(f"[DEBUG] {solver}: {message}")
        elif self.verbosity == 'verbose':
            print(f"{solver}: {message}")

    def get_events(self, solver: Optional[str] = None) -> list[IterationEvent]:
        """Return recorded events, optionally filtered by solver."""
        if solver is None:
            return list(self.events)
        return [event for event in self.events if event.solver == solver]

    def get_residual_history(self, solver: str) -> np.ndarray:
        """Return the residual norms recorded for ``solver`` in order."""
        return np.asarray(
            [event.residual_norm for event in self.get_events(solver)],
            dtype=np.float64,
        )

    def print_summary(self) -> None:
        """Print one line per solver with its final residual.

        Notes
        -----
        Only performs new printing in 'default' mode; the other modes have
        already echoed every iteration.
        """
        if self.verbosity != 'default':
            return
        last: dict[str, IterationEvent] = {}
        counts: dict[str, int] = {}
        for event in self.events:
            last[event.solver] = event
            counts[event.solver] = counts.get(event.solver, 0) + 1
        if last:
            print("\nIteration Summary:")
            for name in sorted(last):
                print(
                    f"  {name}: {counts[name]} records, final ||F|| = "
                    f"{last[name].residual_norm:.6e}"
                )

    def _echo(self, solver: str) -> bool:
        if self.verbosity == 'debug':
            return True
        if self.verbosity == 'verbose':
            return solver not in _INNER_SOLVERS
        return False


def _format_value(value: Any) -> str:
    if isinstance(value, (float, np.floating)):
        return f"{value:.3e}"
    return str(value)


def resolve_logger(verbosity) -> Optional[SolverLogger]:
    """Return a logger for ``verbosity``.

    ``None`` disables logging, a string builds a new :class:`SolverLogger`
    and an existing logger is passed through.
    """
    if verbosity is None or isinstance(verbosity, SolverLogger):
        return verbosity
    return SolverLogger(verbosity)
