from __future__ import annotations

import math

import numpy as np
import pandas as pd
from scipy.stats import norm

Z_95 = 1.96
SCORE_COLUMNS = ["model", "species", "n", "crps", "rmse", "coverage"]


def confidence_bounds(mean, se, z=Z_95):
    mean = np.asarray(mean, dtype=float)
    se = np.asarray(se, dtype=float)
    return mean - z * se, mean + z * se


def crps_gaussian(obs, mu, sigma):
    """Closed-form CRPS of ``Normal(mu, sigma)`` against ``obs``.

    Lower is better. ``sigma == 0`` reduces to the absolute error. Scalar
    inputs give a scalar back.
    """
    obs, mu, sigma = np.broadcast_arrays(
        np.asarray(obs, dtype=float), np.asarray(mu, dtype=float), np.asarray(sigma, dtype=float)
    )
    if np.any(sigma < 0):
        raise ValueError("sigma must be non-negative")
    out = np.array(np.abs(obs - mu), dtype=float)
    pos = sigma > 0
    z = (obs[pos] - mu[pos]) / sigma[pos]
    out[pos] = sigma[pos] * (z * (2.0 * norm.cdf(z) - 1.0) + 2.0 * norm.pdf(z) - 1.0 / math.sqrt(math.pi))
    return out[()]


def rmse_score(y: np.ndarray, mu: np.ndarray) -> float:
    return math.sqrt(float(np.mean((y - mu) ** 2)))


def coverage_score(y: np.ndarray, lower: np.ndarray, upper: np.ndarray) -> float:
    return float(np.mean((y >= lower) & (y <= upper)))


def _subset(pred: pd.DataFrame, species=None, times=None) -> pd.DataFrame:
    mask = np.ones(len(pred), dtype=bool)
    if species is not None:
        mask &= pred["species"].isin(list(species)).to_numpy()
    if times is not None:
        mask &= pred["time"].isin(list(times)).to_numpy()
    return pred.loc[mask]


def score_predictions(pred: pd.DataFrame, species=None, times=None, target: str = "truth") -> pd.DataFrame:
    """Per-species CRPS, RMSE and interval coverage of ``target``.

    ``pred`` is the output of ``SpeciesTrendGAM.predict``. ``species`` and
    ``times`` restrict the rows scored.
    """
    sub = _subset(pred, species, times)
    if sub.empty:
        raise ValueError("no prediction rows left to score")
    rows = []
    for label, grp in sub.groupby("species", observed=True, sort=True):
        obs = grp[target].to_numpy(dtype=float)
        mu = grp["mean"].to_numpy(dtype=float)
        rows.append(
            {
                "model": grp["model"].iloc[0] if "model" in grp else None,
                "species": str(label),
                "n": int(len(grp)),
                "crps": float(np.mean(crps_gaussian(obs, mu, grp["se"].to_numpy(dtype=float)))),
                "rmse": rmse_score(obs, mu),
                "coverage": coverage_score(obs, grp["lower"].to_numpy(), grp["upper"].to_numpy()),
            }
        )
    return pd.DataFrame(rows, columns=SCORE_COLUMNS)


def compare_models(preds: dict[str, pd.DataFrame], species=None, times=None, target: str = "truth") -> pd.DataFrame:
    frames = []
    for name, pred in preds.items():
        scores = score_predictions(pred, species=species, times=times, target=target)
        scores["model"] = name
        frames.append(scores)
    return pd.concat(frames, ignore_index=True)


def summarize_scores(scores: pd.DataFrame) -> pd.DataFrame:
    """Mean score per model, best (lowest) CRPS first."""
    out = scores.groupby("model", sort=False)[["crps", "rmse", "coverage"]].mean()
    return out.sort_values("crps").reset_index()
