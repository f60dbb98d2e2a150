"""Forcing term selection for the inexact Newton iteration."""


def forcing(itc: int, residratio: float, etaold: float, rules, tol: float,
            resnorm: float) -> float:
    """Return the relative tolerance for the next linear solve.

    Parameters
    ----------
    itc
        Nonlinear iteration counter; 0 before the first step.
    residratio
        ``||F(x_k)|| / ||F(x_{k-1})||``.
    etaold
        Forcing term used for the previous linear solve.
    rules
        :class:`~nksolvers.nonlinear_solvers.rules.IterationRules` for the
        solve; supplies ``eta``, ``fixedeta`` and the Eisenstat-Walker
        constants.
    tol
        Nonlinear termination tolerance.
    resnorm
        Current residual norm.

    Returns
    -------
    float
        ``eta`` in fixed mode and on the first iteration, otherwise the
        Eisenstat-Walker choice bounded above by ``eta`` and below by
        ``0.5 * tol / resnorm``.
    """
    config = rules.config
    etamax = config.eta
    if config.fixedeta or itc == 0:
        return etamax

    params = config.forcing
    eta_res = params.gamma * residratio ** params.residual_power
    eta_safe = params.gamma * etaold ** params.safeguard_power
    if eta_safe > params.safeguard_threshold:
        eta_res = max(eta_res, eta_safe)
    eta_new = min(etamax, eta_res)
    # do not oversolve the last linear system
    return min(etamax, max(eta_new, 0.5 * tol / resnorm))
