"""
Gaussian penalized least squares with REML smoothing-parameter selection.

Coefficients are grouped into penalty blocks (one per model term). Each
block owns one or more penalty matrices, each with its own smoothing
parameter; the total penalty is block diagonal.
"""

from __future__ import annotations

import warnings
from dataclasses import dataclass

import numpy as np
from scipy.linalg import cho_factor, cho_solve
from scipy.optimize import minimize

from .penalties import penalty_rank

RIDGE = 1e-8
FAILED = 1e30
LOG_LAMBDA_BOUNDS = (-12.0, 12.0)


@dataclass(frozen=True)
class PenaltyBlock:
    name: str
    cols: slice
    matrices: tuple[np.ndarray, ...]
    rank: int

    @classmethod
    def build(cls, name: str, start: int, matrices) -> "PenaltyBlock":
        matrices = tuple(np.asarray(m, dtype=float) for m in matrices)
        size = matrices[0].shape[0]
        for m in matrices:
            if m.shape != (size, size):
                raise ValueError(f"{name}: penalty shapes differ ({m.shape} vs {(size, size)})")
        rank = penalty_rank(sum(matrices))
        return cls(name=name, cols=slice(start, start + size), matrices=matrices, rank=rank)

    @property
    def size(self) -> int:
        return self.cols.stop - self.cols.start

    def combined(self, lambdas) -> np.ndarray:
        out = np.zeros((self.size, self.size))
        for lam, m in zip(lambdas, self.matrices):
            out += lam * m
        return out

    def log_pseudo_det(self, lambdas) -> float:
        if len(self.matrices) == 1:
            # log|lam * S|_+ = rank * log(lam) + const
            return self.rank * float(np.log(lambdas[0]))
        s = self.combined(lambdas)
        if self.rank == self.size:
            try:
                c, _ = cho_factor(s)
                return 2.0 * float(np.sum(np.log(np.diag(c))))
            except np.linalg.LinAlgError:
                pass
        ev = np.sort(np.linalg.eigvalsh(0.5 * (s + s.T)))[::-1][: self.rank]
        if np.any(ev <= 0.0):
            return -np.inf
        return float(np.sum(np.log(ev)))


@dataclass(frozen=True)
class REMLFit:
    beta: np.ndarray
    lambdas: np.ndarray
    lambda_names: tuple[str, ...]
    scale: float
    edf: float
    Vb: np.ndarray
    reml: float
    n_obs: int
    converged: bool
    n_iter: int
    message: str

    def predict(self, X) -> tuple[np.ndarray, np.ndarray]:
        """Mean and standard error of the linear predictor at ``X``."""
        X = np.asarray(X, dtype=float)
        mean = X @ self.beta
        var = np.sum((X @ self.Vb) * X, axis=1)
        return mean, np.sqrt(np.maximum(var, 0.0))


def _total_penalty(p, blocks, lambdas):
    S = np.zeros((p, p))
    k = 0
    for b in blocks:
        n_lam = len(b.matrices)
        S[b.cols, b.cols] += b.combined(lambdas[k : k + n_lam])
        k += n_lam
    return S


def _log_det_penalty(blocks, lambdas):
    total = 0.0
    k = 0
    for b in blocks:
        n_lam = len(b.matrices)
        total += b.log_pseudo_det(lambdas[k : k + n_lam])
        k += n_lam
    return total


def fit_gaussian_reml(X, y, blocks, weights=None, x0=None, maxiter=200):
    """Fit ``y ~ X`` with block penalties, choosing smoothing parameters by REML.

    Rows with zero weight are dropped before fitting; their responses may be
    NaN. The criterion is the Gaussian restricted likelihood with the scale
    profiled out::

        0.5 * ((n - M_p) * log(sigma2) + log|X'WX + S| - log|S|_+)

    where ``sigma2 = (RSS + b'Sb) / (n - M_p)`` and ``M_p`` is the dimension
    of the penalty null space.

    Args:
        X: Model matrix, shape ``(n, p)``.
        y: Response, shape ``(n,)``.
        blocks: ``PenaltyBlock`` list covering a subset of the columns.
        weights: Non-negative prior weights; defaults to ones.
        x0: Starting log smoothing parameters; defaults to zeros.
        maxiter: L-BFGS-B iteration cap.

    Returns:
        ``REMLFit``.
    """
    X = np.asarray(X, dtype=float)
    y = np.asarray(y, dtype=float)
    n_rows, p = X.shape
    if y.shape != (n_rows,):
        raise ValueError(f"y has shape {y.shape}; expected ({n_rows},)")
    w = np.ones(n_rows) if weights is None else np.asarray(weights, dtype=float)
    if w.shape != (n_rows,) or np.any(w < 0) or not np.all(np.isfinite(w)):
        raise ValueError("weights must be finite, non-negative and one per row")

    keep = w > 0
    X, y, w = X[keep], y[keep], w[keep]
    if not np.all(np.isfinite(y)):
        raise ValueError("response has non-finite values on rows with positive weight")
    n = int(keep.sum())

    lambda_names = tuple(
        f"{b.name}[{i}]" if len(b.matrices) > 1 else b.name
        for b in blocks
        for i in range(len(b.matrices))
    )
    n_lambda = len(lambda_names)
    n_null = p - sum(b.rank for b in blocks)
    df = n - n_null
    if df <= 0:
        raise ValueError(f"{n} weighted observations cannot support {n_null} unpenalized coefficients")

    XtWX = X.T @ (X * w[:, None])
    XtWy = X.T @ (w * y)
    ridge = RIDGE * np.eye(p)

    def solve(rho):
        lambdas = np.exp(rho)
        S = _total_penalty(p, blocks, lambdas)
        A = XtWX + S + ridge
        c = cho_factor(A)
        beta = cho_solve(c, XtWy)
        return lambdas, S, c, beta

    def objective(rho):
        try:
            lambdas, S, c, beta = solve(rho)
        except np.linalg.LinAlgError:
            return FAILED

        resid = y - X @ beta
        rss = float(resid @ (w * resid))
        pen = float(beta @ S @ beta)
        sigma2 = (rss + pen) / df
        if not np.isfinite(sigma2) or sigma2 <= 0:
            return FAILED

        logdetA = 2.0 * float(np.sum(np.log(np.diag(c[0]))))
        logdetS = _log_det_penalty(blocks, lambdas)
        val = 0.5 * (df * np.log(sigma2) + logdetA - logdetS)
        if not np.isfinite(val):
            return FAILED
        return val

    x0 = np.zeros(n_lambda) if x0 is None else np.asarray(x0, dtype=float)
    if x0.shape != (n_lambda,):
        raise ValueError(f"x0 must have {n_lambda} entries; got {x0.shape}")
    opt = minimize(
        objective,
        x0=x0,
        method="L-BFGS-B",
        bounds=[LOG_LAMBDA_BOUNDS] * n_lambda,
        options={"maxiter": maxiter},
    )
    if not np.all(np.isfinite(opt.x)) or opt.fun >= FAILED:
        raise RuntimeError(f"REML objective could not be evaluated at the optimum: {opt.message}")
    if not opt.success:
        warnings.warn(f"REML smoothing-parameter search did not converge: {opt.message}", RuntimeWarning)

    lambdas, S, c, beta = solve(opt.x)
    A_inv = cho_solve(c, np.eye(p))
    edf = float(np.sum(A_inv * XtWX))
    resid = y - X @ beta
    rss = float(resid @ (w * resid))
    scale = rss / max(n - edf, 1e-6)

    return REMLFit(
        beta=beta,
        lambdas=lambdas,
        lambda_names=lambda_names,
        scale=scale,
        edf=edf,
        Vb=scale * A_inv,
        reml=float(opt.fun),
        n_obs=n,
        converged=bool(opt.success),
        n_iter=int(opt.nit),
        message=str(opt.message),
    )
