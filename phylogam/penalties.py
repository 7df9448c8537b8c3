from __future__ import annotations

import numpy as np
import pandas as pd


def diff_penalty(n: int, order: int = 2) -> np.ndarray:
    """P-spline penalty ``D'D`` on ``order``-th differences of ``n`` adjacent coefficients.

    Its null space holds the polynomials of degree below ``order``.
    """
    if not 0 <= order < n:
        raise ValueError(f"difference order must be in [0, {n}); got {order}")
    d = np.diff(np.eye(n), n=order, axis=0)
    return d.T @ d


def mrf_penalty(adjacency) -> np.ndarray:
    """Graph Laplacian of a symmetric 0/1 (or weighted) neighbourhood matrix."""
    a = np.asarray(adjacency, dtype=float)
    if a.ndim != 2 or a.shape[0] != a.shape[1]:
        raise ValueError(f"adjacency must be square; got shape {a.shape}")
    if not np.allclose(a, a.T):
        raise ValueError("adjacency must be symmetric")
    a = a.copy()
    np.fill_diagonal(a, 0.0)
    return np.diag(a.sum(axis=1)) - a


def random_walk_penalty(n: int) -> np.ndarray:
    # Each time level neighbours the levels immediately before and after it.
    adjacency = np.eye(n, k=1) + np.eye(n, k=-1)
    return mrf_penalty(adjacency)


def phylo_precision(vcv) -> pd.DataFrame | np.ndarray:
    """Inverse of a phylogenetic covariance matrix.

    Degenerate trees (e.g. zero-length terminal branches) give a singular
    covariance and raise ``numpy.linalg.LinAlgError``.
    """
    c = np.asarray(vcv, dtype=float)
    prec = np.linalg.inv(c)
    prec = 0.5 * (prec + prec.T)
    if isinstance(vcv, pd.DataFrame):
        return pd.DataFrame(prec, index=vcv.index, columns=vcv.columns)
    return prec


def scale_penalty(s: np.ndarray) -> np.ndarray:
    norm = float(np.linalg.norm(s, ord=2))
    if norm <= 0.0:
        raise ValueError("cannot scale an all-zero penalty")
    return s / norm


def penalty_rank(s: np.ndarray) -> int:
    return int(np.linalg.matrix_rank(0.5 * (s + s.T), hermitian=True))
