"""Shared validators and helpers for solver configuration records."""

from typing import Any, Callable, Optional

import numpy as np
from numpy.typing import NDArray

Array = NDArray[np.floating]

ALLOWED_BASIS_PRECISIONS = {
    np.dtype(np.float16),
    np.dtype(np.float32),
    np.dtype(np.float64),
}
BLAS_PRECISIONS = {np.dtype(np.float32), np.dtype(np.float64)}


_ACCEPTED_TYPES = {
    float: (float, int, np.floating, np.integer),
    int: (int, np.integer),
}


def get_readonly_view(array):
    view = array.view()
    view.flags.writeable = False
    return view


def _check_type(attribute, value, dtype):
    # bool is an int subclass; never accept it for a numeric setting
    accepted = _ACCEPTED_TYPES.get(dtype, dtype)
    if isinstance(value, bool) or not isinstance(value, accepted):
        raise TypeError(
            f"{attribute.name} must be of type {dtype.__name__}, "
            f"got {type(value).__name__}"
        )


def getype_validator(dtype, min_):
    """Return a validator requiring ``value >= min_`` of type ``dtype``."""

    def _validator(instance, attribute, value):
        _check_type(attribute, value, dtype)
        if value < min_:
            raise ValueError(
                f"{attribute.name} must be >= {min_}, got {value}"
            )

    return _validator


def gttype_validator(dtype, min_):
    """Return a validator requiring ``value > min_`` of type ``dtype``."""

    def _validator(instance, attribute, value):
        _check_type(attribute, value, dtype)
        if value <= min_:
            raise ValueError(
                f"{attribute.name} must be > {min_}, got {value}"
            )

    return _validator


def inrangetype_validator(dtype, min_, max_):
    """Return a validator requiring ``min_ <= value <= max_``."""

    def _validator(instance, attribute, value):
        _check_type(attribute, value, dtype)
        if value < min_ or value > max_:
            raise ValueError(
                f"{attribute.name} must be in [{min_}, {max_}], got {value}"
            )

    return _validator


def opt_callable_validator(instance, attribute, value):
    """Accept ``None`` or any callable."""
    if value is not None and not callable(value):
        raise TypeError(
            f"{attribute.name} must be callable or None, "
            f"got {type(value).__name__}"
        )


def callable_validator(instance, attribute, value):
    """Require a callable."""
    if not callable(value):
        raise TypeError(
            f"{attribute.name} must be callable, got {type(value).__name__}"
        )


def call_with_pdata(function: Callable, *args: Any,
                    pdata: Optional[Any] = None) -> Any:
    """Call ``function`` with ``pdata`` appended when it is not ``None``.

    Problem data is passed through unmodified; the solvers never look
    inside it.
    """
    if pdata is None:
        return function(*args)
    return function(*args, pdata)


def evaluate_residual(F: Callable, FS: Array, x: Array,
                      pdata: Optional[Any] = None) -> Array:
    """Evaluate ``F`` at ``x`` into the preallocated storage ``FS``.

    ``F`` may either fill ``FS`` in place or return a fresh array; both
    end up in ``FS``.
    """
    out = call_with_pdata(F, FS, x, pdata=pdata)
    if out is not None and out is not FS:
        FS[...] = out
    return FS


def solution_history(x: Array, maxit: int) -> Array:
    """Allocate ``n x (maxit + 1)`` storage with ``x`` in the first column."""
    solhist = np.zeros((x.shape[0], maxit + 1))
    solhist[:, 0] = x
    return solhist
