"""Residuals, Jacobians and operators shared by the solver tests."""

import numpy as np


# --------------------------------------------------------------------------- #
#                          Two-dimensional system                             #
# --------------------------------------------------------------------------- #
def simple_residual(FS, x):
    FS[0] = x[0] + np.sin(x[1])
    FS[1] = np.cos(x[0] + x[1])
    return FS


def simple_jvec(v, FS, x):
    p = -np.sin(x[0] + x[1])
    jvec = np.zeros(2)
    jvec[0] = v[0] + np.cos(x[1]) * v[1]
    jvec[1] = p * (v[0] + v[1])
    return jvec


def simple_jacobian(x):
    p = -np.sin(x[0] + x[1])
    return np.array([[1.0, np.cos(x[1])], [p, p]])


# Root with x1 + cos(x1) = 0 and x1 + x2 = pi / 2
DOTTIE = -0.7390851332151607
SIMPLE_ROOT = np.array([DOTTIE, np.pi / 2 - DOTTIE])

# Residual norms of Newton-GMRES from (1, 1) with eta = 0.1, two directions
SIMPLE_HISTORY = np.array([1.88791e+00, 2.43120e-01, 1.19231e-02, 1.03261e-05])


# --------------------------------------------------------------------------- #
#                     Convection-diffusion on the unit square                 #
# --------------------------------------------------------------------------- #
def laplacian_1d(n):
    """Tridiagonal second difference matrix with unit spacing scale."""
    return (2.0 * np.eye(n) - np.eye(n, k=1) - np.eye(n, k=-1))


def convection_diffusion_data(N, convection=5.0, nonlinearity=5.0):
    """Dense operators for an ``N x N`` interior grid on the unit square.

    Returns a dict usable as ``pdata`` with the negative Laplacian ``L``,
    its inverse ``Linv``, first difference operators ``Dx`` and ``Dy``, the
    linear convection-diffusion matrix ``A``, grid coordinates and a
    manufactured solution ``ustar`` with the matching right-hand side for
    the nonlinear problem ``L u + c u (Dx u + Dy u) = f``.
    """
    h = 1.0 / (N + 1)
    T = laplacian_1d(N) / (h * h)
    identity = np.eye(N)
    L = np.kron(identity, T) + np.kron(T, identity)
    D = (np.eye(N, k=1) - np.eye(N, k=-1)) / (2.0 * h)
    Dx = np.kron(identity, D)
    Dy = np.kron(D, identity)
    grid = np.arange(1, N + 1) * h
    X, Y = np.meshgrid(grid, grid)
    x = X.ravel()
    y = Y.ravel()
    ustar = 10.0 * x * (1.0 - x) * y * (1.0 - y)
    data = {
        "L": L,
        "Linv": np.linalg.inv(L),
        "Dx": Dx,
        "Dy": Dy,
        "A": L + convection * (Dx + Dy),
        "c": nonlinearity,
        "ustar": ustar,
    }
    data["rhs"] = pde_operator(ustar, data)
    return data


def pde_operator(u, pdata):
    return pdata["L"] @ u + pdata["c"] * u * (pdata["Dx"] @ u
                                             + pdata["Dy"] @ u)


def pde_residual(FS, u, pdata):
    FS[:] = pde_operator(u, pdata) - pdata["rhs"]
    return FS


def pde_jvec(v, FS, u, pdata):
    grad_u = pdata["Dx"] @ u + pdata["Dy"] @ u
    grad_v = pdata["Dx"] @ v + pdata["Dy"] @ v
    return pdata["L"] @ v + pdata["c"] * (v * grad_u + u * grad_v)


def pde_precondition(v, u, pdata):
    return pdata["Linv"] @ v


# --------------------------------------------------------------------------- #
#                   Monotone steady state for continuation                    #
# --------------------------------------------------------------------------- #
def steady_state_data(n=10):
    return {"A": laplacian_1d(n) + np.eye(n), "b": np.ones(n)}


def steady_residual(FS, x, pdata):
    FS[:] = pdata["A"] @ x + x ** 3 - pdata["b"]
    return FS


def steady_jacobian(FPS, FS, x, pdata):
    FPS[:, :] = pdata["A"] + np.diag(3.0 * x ** 2)
    return FPS


def steady_jvec(v, FS, x, pdata):
    return pdata["A"] @ v + 3.0 * x ** 2 * v
