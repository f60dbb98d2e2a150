import warnings

import numpy as np
import pytest
from numpy.testing import assert_allclose, assert_array_equal

from nksolvers.nonlinear_solvers import PTCErrorCodes
from nksolvers.nonlinear_solvers.newton_krylov import nsoli
from nksolvers.nonlinear_solvers.ptc import (
    PTCConfig,
    ptcsc,
    ptcsol,
    ptcsoli,
    ser_update,
)
from nksolvers.solver_logger import SolverLogger
from tests.problems import (
    steady_jacobian,
    steady_jvec,
    steady_residual,
)


def quadratic(x):
    return x * x - 4.0


class TestScalar:

    def test_quadratic_monotone(self):
        out = ptcsc(quadratic, 10.0, dt0=0.01)
        assert out.idid
        assert out.errcode == PTCErrorCodes.SUCCESS
        assert out.solution == pytest.approx(2.0, rel=1e-4)
        assert np.all(np.diff(out.history) < 0)
        assert np.all(np.diff(out.dt_history) > 0)
        assert out.dt_history[0] == 0.01
        assert len(out.dt_history) == len(out.history)

    def test_ser_relation(self):
        out = ptcsc(quadratic, 10.0, dt0=0.01)
        # dt_k = dt0 * |f(x0)| / |f(x_k)| under SER
        expected = 0.01 * out.history[0] / out.history
        assert_allclose(out.dt_history, expected, rtol=1e-10)

    @pytest.mark.parametrize("fp", [None, lambda x: 1.0 / (1.0 + x * x)])
    def test_arctan(self, fp):
        out = ptcsc(np.arctan, 10.0, fp=fp, dt0=1.0)
        assert out.idid
        assert abs(out.solution) < 1e-5

    def test_solution_history(self):
        out = ptcsc(quadratic, 10.0, dt0=0.01)
        assert out.solhist.shape == out.history.shape
        assert out.solhist[0] == 10.0
        assert out.solhist[-1] == out.solution
        silent = ptcsc(quadratic, 10.0, dt0=0.01, keepsolhist=False)
        assert silent.solhist is None

    def test_pdata(self):
        def f(x, pdata):
            return x * x - pdata

        out = ptcsc(f, 10.0, dt0=0.01, pdata=9.0)
        assert out.solution == pytest.approx(3.0, rel=1e-4)

    def test_maxit_failure(self):
        with pytest.warns(UserWarning, match="increase maxit and/or dt0"):
            out = ptcsc(quadratic, 10.0, dt0=0.01, maxit=2)
        assert not out.idid
        assert out.errcode == PTCErrorCodes.MAX_ITERATIONS_EXCEEDED
        assert len(out.history) == 3

    def test_initial_iterate_converged(self):
        with pytest.warns(UserWarning, match="initial iterate"):
            out = ptcsc(quadratic, 2.0)
        assert not out.idid
        assert out.errcode == PTCErrorCodes.INITIAL_ITERATE_CONVERGED
        assert out.iterations == 0

    def test_initial_iterate_converged_silent(self):
        with warnings.catch_warnings():
            warnings.simplefilter("error")
            out = ptcsc(quadratic, 2.0, printerr=False)
        assert not out.idid
        assert out.errcode == PTCErrorCodes.INITIAL_ITERATE_CONVERGED


class TestDirect:

    def test_analytic_jacobian(self, steady_data):
        n = steady_data["b"].shape[0]
        out = ptcsol(steady_residual, np.zeros(n), np.zeros(n),
                     np.zeros((n, n)), steady_jacobian, delta0=1.0,
                     maxit=50, pdata=steady_data)
        assert out.idid
        assert out.history[-1] <= 1e-6 * out.history[0] + 1e-12
        assert out.dt_history[-1] > 1.0
        FS = steady_residual(np.zeros(n), out.solution, steady_data)
        assert np.linalg.norm(FS) < 1e-6

    def test_difference_jacobian_matches(self, steady_data):
        n = steady_data["b"].shape[0]
        kwargs = dict(delta0=1.0, maxit=50, pdata=steady_data)
        analytic = ptcsol(steady_residual, np.zeros(n), np.zeros(n),
                          np.zeros((n, n)), steady_jacobian, **kwargs)
        difference = ptcsol(steady_residual, np.zeros(n), np.zeros(n),
                            np.zeros((n, n)), **kwargs)
        assert difference.idid
        assert_allclose(difference.solution, analytic.solution, rtol=1e-4)

    def test_agrees_with_newton(self, steady_data):
        n = steady_data["b"].shape[0]
        ptc = ptcsol(steady_residual, np.zeros(n), np.zeros(n),
                     np.zeros((n, n)), steady_jacobian, delta0=1.0,
                     maxit=50, rtol=1e-10, pdata=steady_data)
        newton = nsoli(steady_residual, np.zeros(n), np.zeros(n),
                       np.zeros((n, n + 1)), steady_jvec, rtol=1e-10,
                       pdata=steady_data)
        assert_allclose(ptc.solution, newton.solution, rtol=1e-8)

    def test_float32_jacobian(self, steady_data):
        n = steady_data["b"].shape[0]
        out = ptcsol(steady_residual, np.zeros(n), np.zeros(n),
                     np.zeros((n, n), dtype=np.float32), steady_jacobian,
                     delta0=1.0, maxit=50, rtol=1e-5, pdata=steady_data)
        assert out.idid
        assert out.solution.dtype == np.float64

    def test_solution_history_trimmed(self, steady_data):
        n = steady_data["b"].shape[0]
        out = ptcsol(steady_residual, np.zeros(n), np.zeros(n),
                     np.zeros((n, n)), steady_jacobian, delta0=1.0,
                     maxit=50, keepsolhist=True, pdata=steady_data)
        assert out.solhist.shape == (n, len(out.history))
        assert_array_equal(out.solhist[:, 0], np.zeros(n))
        assert_array_equal(out.solhist[:, -1], out.solution)

    def test_maxit_failure(self, steady_data):
        n = steady_data["b"].shape[0]
        with pytest.warns(UserWarning, match="PTC failure"):
            out = ptcsol(steady_residual, np.zeros(n), np.zeros(n),
                         np.zeros((n, n)), steady_jacobian, maxit=3,
                         pdata=steady_data)
        assert not out.idid
        assert out.errcode == PTCErrorCodes.MAX_ITERATIONS_EXCEEDED
        assert len(out.history) == 4

    def test_unsupported_precision(self, steady_data):
        n = steady_data["b"].shape[0]
        with pytest.raises(ValueError, match="precision"):
            ptcsol(steady_residual, np.zeros(n), np.zeros(n),
                   np.zeros((n, n), dtype=np.float16), steady_jacobian,
                   pdata=steady_data)

    def test_shape_checks(self, steady_data):
        n = steady_data["b"].shape[0]
        with pytest.raises(ValueError, match="FPS"):
            ptcsol(steady_residual, np.zeros(n), np.zeros(n),
                   np.zeros((n, n + 1)), pdata=steady_data)
        with pytest.raises(ValueError, match="FS"):
            ptcsol(steady_residual, np.zeros(n), np.zeros(n + 1),
                   np.zeros((n, n)), pdata=steady_data)


class TestKrylov:

    def test_matches_direct(self, steady_data):
        n = steady_data["b"].shape[0]
        kwargs = dict(delta0=1.0, maxit=50, rtol=1e-10, pdata=steady_data)
        direct = ptcsol(steady_residual, np.zeros(n), np.zeros(n),
                        np.zeros((n, n)), steady_jacobian, **kwargs)
        krylov = ptcsoli(steady_residual, np.zeros(n), np.zeros(n),
                         np.zeros((n, n + 1)), steady_jvec, eta=1e-10,
                         **kwargs)
        assert krylov.idid
        assert_allclose(krylov.solution, direct.solution, rtol=1e-8)

    @pytest.mark.parametrize("pside", ["left", "right"])
    def test_preconditioned_finite_difference(self, steady_data, pside):
        n = steady_data["b"].shape[0]
        Ainv = np.linalg.inv(steady_data["A"])

        def Pvec(v, x, pdata):
            return Ainv @ v

        out = ptcsoli(steady_residual, np.zeros(n), np.zeros(n),
                      np.zeros((n, 6)), Pvec=Pvec, pside=pside,
                      delta0=1.0, maxit=50, pdata=steady_data)
        assert out.idid
        assert out.errcode == PTCErrorCodes.SUCCESS

    def test_logging(self, steady_data):
        n = steady_data["b"].shape[0]
        logger = SolverLogger()
        out = ptcsoli(steady_residual, np.zeros(n), np.zeros(n),
                      np.zeros((n, n + 1)), steady_jvec, delta0=1.0,
                      maxit=50, pdata=steady_data, verbosity=logger)
        assert_allclose(logger.get_residual_history('ptcsoli'), out.history)
        dts = [event.metadata["dt"] for event in logger.get_events('ptcsoli')]
        assert_allclose(dts, out.dt_history)


def test_ser_update_guards_zero_residual():
    assert ser_update(0.5, 1.0, 0.0) == 0.5
    assert ser_update(0.5, 1.0, 0.25) == 2.0


def test_config_validation():
    with pytest.raises(ValueError):
        PTCConfig(dt0=0.0)
    with pytest.raises(ValueError):
        PTCConfig(pside="up")
    with pytest.raises(TypeError):
        PTCConfig(maxit=1.5)
