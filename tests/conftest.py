from types import SimpleNamespace

import numpy as np
import pytest

from tests.problems import convection_diffusion_data, steady_state_data


@pytest.fixture(scope="session")
def precision_override(request):
    if hasattr(request, "param"):
        return request.param
    return None


@pytest.fixture(scope="session")
def precision(precision_override):
    """Return the Krylov basis precision, defaulting to float64.

    Usage:
    @pytest.mark.parametrize("precision_override", [np.float32],
        indirect=True)
    def test_something(precision):
        # precision will be np.float32 here
    """
    if precision_override is not None:
        return precision_override
    return np.float64


@pytest.fixture(scope="session")
def tolerance_override(request):
    if hasattr(request, "param"):
        return request.param
    return None


@pytest.fixture(scope="session")
def tolerance(tolerance_override, precision):
    if tolerance_override is not None:
        return tolerance_override

    if precision == np.float16:
        return SimpleNamespace(
            abs_loose=1e-2,
            abs_tight=5e-3,
            rel_loose=1e-2,
            rel_tight=5e-3,
        )

    if precision == np.float32:
        return SimpleNamespace(
            abs_loose=1e-5,
            abs_tight=1e-6,
            rel_loose=1e-5,
            rel_tight=1e-6,
        )

    if precision == np.float64:
        return SimpleNamespace(
            abs_loose=1e-9,
            abs_tight=1e-12,
            rel_loose=1e-9,
            rel_tight=1e-12,
        )

    raise ValueError("Unsupported precision for tolerance fixture")


@pytest.fixture(scope="session")
def pde_data():
    """Convection-diffusion operators on an 8 x 8 interior grid."""
    return convection_diffusion_data(8)


@pytest.fixture(scope="session")
def steady_data():
    return steady_state_data(10)


@pytest.fixture(scope="function")
def orthonormal_basis():
    """Random 20 x 5 orthonormal basis and a candidate vector."""
    rng = np.random.default_rng(1234)
    Q, _ = np.linalg.qr(rng.standard_normal((20, 5)))
    candidate = rng.standard_normal(20)
    return Q, candidate
