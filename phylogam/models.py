"""
Species trend models: ``y ~ s(time) + te(time_factor, species)``.

The shared smooth is a cubic P-spline over time. The deviation surface has
one coefficient per (time level, species level) pair, penalized by a
first-order random walk along time and by a species penalty: the inverse of
the phylogenetic covariance for the phylogenetic model, the identity for the
baseline. Every level keeps its coefficient whether or not it has data, so
forecast times and unobserved species are predicted from the penalty
structure alone.
"""

from __future__ import annotations

import numpy as np
import pandas as pd
from sklearn.preprocessing import SplineTransformer

from .evaluate import Z_95, confidence_bounds
from .penalties import diff_penalty, phylo_precision, random_walk_penalty, scale_penalty
from .reml import PenaltyBlock, fit_gaussian_reml
from .tree import Tree

SMOOTH_TERM = "s(time)"
TENSOR_TERM = "te(time_factor,species)"


def _levels(col: pd.Series) -> list:
    if isinstance(col.dtype, pd.CategoricalDtype):
        return list(col.cat.categories)
    return sorted(col.dropna().unique().tolist())


def _codes(col: pd.Series, levels: list, what: str) -> np.ndarray:
    codes = pd.Categorical(col, categories=levels).codes
    if np.any(codes < 0):
        unknown = sorted({str(v) for v, c in zip(col, codes) if c < 0})
        raise ValueError(f"unknown {what} level(s): {', '.join(unknown)}")
    return codes.astype(int)


def time_spline(time_levels, n_knots=10, degree=3) -> SplineTransformer:
    t = np.asarray(time_levels, dtype=float).reshape(-1, 1)
    return SplineTransformer(degree=degree, n_knots=n_knots, include_bias=True).fit(t)


def build_design(data: pd.DataFrame, spline: SplineTransformer, time_levels: list, species_levels: list):
    """Model matrix ``[B(time) | indicator(time_factor x species)]``.

    Tensor columns are ordered time-major: column ``t * n_species + s``.
    """
    B = spline.transform(data["time"].to_numpy(dtype=float).reshape(-1, 1))
    t_idx = _codes(data["time_factor"], time_levels, "time_factor")
    s_idx = _codes(data["species"], species_levels, "species")
    n_species = len(species_levels)
    T = np.zeros((len(data), len(time_levels) * n_species))
    T[np.arange(len(data)), t_idx * n_species + s_idx] = 1.0
    return np.hstack([B, T])


def penalty_blocks(n_basis: int, n_time: int, species_penalty: np.ndarray) -> list[PenaltyBlock]:
    n_species = species_penalty.shape[0]
    p_time = scale_penalty(random_walk_penalty(n_time))
    p_species = scale_penalty(species_penalty)
    return [
        PenaltyBlock.build(SMOOTH_TERM, 0, [scale_penalty(diff_penalty(n_basis, order=2))]),
        PenaltyBlock.build(
            TENSOR_TERM,
            n_basis,
            [np.kron(p_time, np.eye(n_species)), np.kron(np.eye(n_time), p_species)],
        ),
    ]


class SpeciesTrendGAM:
    """Shared smooth of time plus a penalized time x species deviation surface.

    Args:
        species_penalty: Square penalty over species labelled on both axes,
            e.g. a phylogenetic precision matrix. ``None`` gives independent
            species (identity penalty).
        n_knots: Knots of the shared cubic spline.
        name: Label carried into predictions and reports.
    """

    def __init__(self, species_penalty: pd.DataFrame | None = None, n_knots: int = 10, name: str = "gam"):
        self.species_penalty = species_penalty
        self.n_knots = n_knots
        self.name = name

    def _species_penalty_matrix(self, levels: list) -> np.ndarray:
        if self.species_penalty is None:
            return np.eye(len(levels))
        missing = [s for s in levels if s not in self.species_penalty.index]
        if missing:
            raise ValueError(f"{self.name}: species penalty lacks species {', '.join(map(str, missing))}")
        return self.species_penalty.loc[levels, levels].to_numpy(dtype=float)

    def fit(self, data: pd.DataFrame) -> "SpeciesTrendGAM":
        self.species_levels_ = _levels(data["species"])
        self.time_levels_ = _levels(data["time_factor"])
        self.spline_ = time_spline(self.time_levels_, n_knots=self.n_knots)
        X = build_design(data, self.spline_, self.time_levels_, self.species_levels_)
        n_basis = X.shape[1] - len(self.time_levels_) * len(self.species_levels_)
        blocks = penalty_blocks(
            n_basis, len(self.time_levels_), self._species_penalty_matrix(self.species_levels_)
        )

        y = data["y"].to_numpy(dtype=float)
        w = data["weight"].to_numpy(dtype=float) if "weight" in data else np.ones(len(data))
        w = np.where(np.isfinite(y), w, 0.0)
        self.fit_ = fit_gaussian_reml(X, y, blocks, weights=w)
        return self

    @property
    def lambdas(self) -> dict[str, float]:
        return {k: float(v) for k, v in zip(self.fit_.lambda_names, self.fit_.lambdas)}

    def summary(self) -> dict:
        return {
            "model": self.name,
            "lambdas": self.lambdas,
            "edf": self.fit_.edf,
            "scale": self.fit_.scale,
            "reml": self.fit_.reml,
            "n_obs": self.fit_.n_obs,
            "converged": self.fit_.converged,
        }

    def predict(self, data: pd.DataFrame, z: float = Z_95) -> pd.DataFrame:
        if not hasattr(self, "fit_"):
            raise RuntimeError(f"{self.name}: call fit() before predict()")
        X = build_design(data, self.spline_, self.time_levels_, self.species_levels_)
        mean, se = self.fit_.predict(X)
        lower, upper = confidence_bounds(mean, se, z=z)
        out = data.copy()
        out["model"] = self.name
        out["mean"] = mean
        out["se"] = se
        out["lower"] = lower
        out["upper"] = upper
        return out


def phylo_gam(tree: Tree, n_knots: int = 10) -> SpeciesTrendGAM:
    return SpeciesTrendGAM(phylo_precision(tree.vcv()), n_knots=n_knots, name="phylogenetic")


def baseline_gam(n_knots: int = 10) -> SpeciesTrendGAM:
    return SpeciesTrendGAM(None, n_knots=n_knots, name="baseline")


def fit_models(data: pd.DataFrame, tree: Tree, n_knots: int = 10) -> dict[str, SpeciesTrendGAM]:
    models = [phylo_gam(tree, n_knots=n_knots), baseline_gam(n_knots=n_knots)]
    return {m.name: m.fit(data) for m in models}
