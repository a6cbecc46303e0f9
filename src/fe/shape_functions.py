"""Q1 shape functions and tensor-product Gauss rules on the unit box [0, 1]^dim."""

import numpy as np


def local_offsets(dim: int) -> np.ndarray:
    """Vertex offsets (n_local, dim); local vertex k has bit d == offset along axis d."""
    k = np.arange(2 ** dim)
    return np.stack([(k >> d) & 1 for d in range(dim)], axis=1)


def shape_values(xi: np.ndarray) -> np.ndarray:
    """Values of all Q1 shape functions at reference points.

    Parameters
    ----------
    xi : np.ndarray
        Reference coordinates, shape (n_points, dim). Points outside the
        unit box give the polynomial extrapolation.

    Returns
    -------
    np.ndarray
        Shape (n_points, 2**dim).
    """
    xi = np.atleast_2d(xi)
    offsets = local_offsets(xi.shape[1])
    # 1D factors: xi where the vertex offset is 1, (1 - xi) where it is 0
    factors = np.where(offsets[None, :, :] == 1, xi[:, None, :], 1.0 - xi[:, None, :])
    return np.prod(factors, axis=2)


def shape_gradients(xi: np.ndarray) -> np.ndarray:
    """Reference gradients of all Q1 shape functions, shape (n_points, 2**dim, dim)."""
    xi = np.atleast_2d(xi)
    dim = xi.shape[1]
    offsets = local_offsets(dim)
    factors = np.where(offsets[None, :, :] == 1, xi[:, None, :], 1.0 - xi[:, None, :])
    dfactors = np.where(offsets == 1, 1.0, -1.0)[None, :, :].repeat(xi.shape[0], axis=0)
    grads = np.empty((xi.shape[0], 2 ** dim, dim))
    for d in range(dim):
        g = dfactors[:, :, d]
        for e in range(dim):
            if e != d:
                g = g * factors[:, :, e]
        grads[:, :, d] = g
    return grads


def gauss_rule(n_points: int, dim: int):
    """Tensor Gauss-Legendre rule on [0, 1]^dim (QGauss(n_points)).

    For dim == 0 a single point with unit weight is returned, which is the
    face rule of a 1D cell.
    """
    if dim == 0:
        return np.zeros((1, 0)), np.ones(1)
    x, w = np.polynomial.legendre.leggauss(n_points)
    x = 0.5 * (x + 1.0)
    w = 0.5 * w
    grids = np.meshgrid(*([x] * dim), indexing="ij")
    weights = np.meshgrid(*([w] * dim), indexing="ij")
    points = np.stack([g.ravel() for g in grids[::-1]], axis=1)
    return points, np.prod(np.stack([ww.ravel() for ww in weights]), axis=0)
