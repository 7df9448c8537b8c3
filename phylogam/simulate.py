"""
Simulate phylogenetically structured species time series.

Every species follows a shared baseline Gaussian-process trend plus two
"warp" trends whose per-species weights evolve along the tree by Brownian
motion, so close relatives end up with similar trajectories.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np
import pandas as pd

from .config import Scenario
from .tree import Tree, simulate_bm_trait, simulate_tree

DATA_COLUMNS = ["species", "weight", "time", "time_factor", "truth", "y"]


def squared_exponential_cov(n: int, alpha: float, rho: float) -> np.ndarray:
    if n < 1:
        raise ValueError(f"n must be at least 1; got {n}")
    if alpha < 0:
        raise ValueError(f"alpha must be non-negative; got {alpha}")
    if rho <= 0:
        raise ValueError(f"rho must be positive; got {rho}")
    t = np.arange(1, n + 1, dtype=float)
    d = (t[:, None] - t[None, :]) / rho
    return alpha**2 * np.exp(-0.5 * d**2)


def simulate_gp(n, alpha, rho, rng=None, jitter=1e-9):
    """Draw one zero-mean squared-exponential GP path at times 1..n.

    Args:
        n: Number of time points.
        alpha: Marginal standard deviation of the process.
        rho: Length-scale, in time steps.
        rng: Seed or ``numpy.random.Generator``.
        jitter: Added to the covariance diagonal before factorization.

    Returns:
        Array of shape ``(n,)``.
    """
    rng = np.random.default_rng(rng)
    cov = squared_exponential_cov(n, alpha, rho) + jitter * np.eye(n)
    chol = np.linalg.cholesky(cov)
    return chol @ rng.standard_normal(n)


def standardize(x) -> np.ndarray:
    x = np.asarray(x, dtype=float)
    sd = float(np.std(x, ddof=1)) if x.size > 1 else 0.0
    if not np.isfinite(sd) or sd <= 0.0:
        raise ValueError("cannot standardize a constant vector")
    return (x - np.mean(x)) / sd


def phylogenetic_weights(tree: Tree, rng=None) -> pd.Series:
    """Standardized Brownian-motion trait, one weight per tip."""
    trait = simulate_bm_trait(tree, rng)
    return pd.Series(standardize(trait.to_numpy()), index=trait.index, name="weight")


def simulate_species_trends(
    tree: Tree,
    n_time: int,
    rng=None,
    baseline_alpha: float = 1.0,
    baseline_rho: float = 8.0,
    warp_alpha: float = 1.0,
    warp_rho: float = 6.0,
) -> dict:
    rng = np.random.default_rng(rng)
    weights1 = phylogenetic_weights(tree, rng)
    weights2 = phylogenetic_weights(tree, rng)
    baseline = simulate_gp(n_time, baseline_alpha, baseline_rho, rng)
    warp1 = simulate_gp(n_time, warp_alpha, warp_rho, rng)
    warp2 = simulate_gp(n_time, warp_alpha, warp_rho, rng)

    truth = {}
    for label in tree.labels:
        raw = baseline + weights1[label] * warp1 + weights2[label] * warp2
        truth[label] = standardize(raw)
    truth = pd.DataFrame(truth, index=pd.RangeIndex(1, n_time + 1, name="time"))
    return {
        "truth": truth,
        "weights1": weights1,
        "weights2": weights2,
        "baseline": baseline,
        "warp1": warp1,
        "warp2": warp2,
    }


def simulate_observations(
    truth: pd.DataFrame,
    rng=None,
    noise_sd: float = 0.3,
    withheld=(),
    n_holdout: int = 5,
) -> pd.DataFrame:
    """Long observation table from a (time x species) truth frame.

    Species in ``withheld`` lose every observation and get weight 0; the
    last ``n_holdout`` time points of all species are also set to NaN.
    """
    rng = np.random.default_rng(rng)
    n_time, n_species = truth.shape
    if noise_sd < 0:
        raise ValueError(f"noise_sd must be non-negative; got {noise_sd}")
    if not 0 <= n_holdout < n_time:
        raise ValueError(f"n_holdout must be in [0, {n_time}); got {n_holdout}")
    species = list(truth.columns)
    missing = sorted(set(withheld) - set(species))
    if missing:
        raise ValueError(f"withheld species not in truth table: {', '.join(missing)}")

    times = np.arange(1, n_time + 1)
    frames = []
    for label in species:
        true_vals = truth[label].to_numpy(dtype=float)
        y = true_vals + rng.normal(0.0, noise_sd, size=n_time)
        weight = 0.0 if label in withheld else 1.0
        if weight == 0.0:
            y[:] = np.nan
        y[times > n_time - n_holdout] = np.nan
        frames.append(
            pd.DataFrame(
                {
                    "species": label,
                    "weight": weight,
                    "time": times,
                    "truth": true_vals,
                    "y": y,
                }
            )
        )
    data = pd.concat(frames, ignore_index=True)
    data["species"] = pd.Categorical(data["species"], categories=species)
    data["time_factor"] = pd.Categorical(data["time"], categories=times)
    return data[DATA_COLUMNS]


def choose_withheld(tree: Tree, n: int, rng=None) -> list[str]:
    """Pick ``n`` tips at random, avoiding two tips that share a parent.

    Sister tips sit symmetrically in the tree, so withholding both would
    leave them with the same relatives. Sisters are only used once no
    other tips remain.
    """
    if not 0 <= n <= tree.n_tips:
        raise ValueError(f"cannot withhold {n} of {tree.n_tips} species")
    rng = np.random.default_rng(rng)
    order = [int(i) for i in rng.permutation(tree.n_tips)]
    picks, parents = [], set()
    for tip in order:
        if len(picks) == n:
            break
        if tree.parent[tip] not in parents:
            picks.append(tip)
            parents.add(int(tree.parent[tip]))
    for tip in order:
        if len(picks) == n:
            break
        if tip not in picks:
            picks.append(tip)
    return [tree.labels[i] for i in sorted(picks)]


@dataclass(frozen=True)
class SimulatedData:
    scenario: Scenario
    tree: Tree
    data: pd.DataFrame
    withheld: tuple[str, ...]
    weights1: pd.Series
    weights2: pd.Series
    baseline: np.ndarray
    warp1: np.ndarray
    warp2: np.ndarray

    @property
    def species(self) -> list[str]:
        return list(self.tree.labels)


def simulate_dataset(scenario: Scenario | None = None, seed=None, withheld=None) -> SimulatedData:
    """Run the whole simulation for one scenario.

    ``seed`` overrides ``scenario.seed``; ``withheld`` overrides the random
    choice of information-free species.
    """
    scenario = (scenario or Scenario()).validate()
    if seed is not None:
        scenario = scenario.with_seed(seed)
    rng = np.random.default_rng(scenario.seed)
    tree = simulate_tree(scenario.n_species, rng, model=scenario.tree_model)
    parts = simulate_species_trends(
        tree,
        scenario.n_time,
        rng,
        baseline_alpha=scenario.baseline_alpha,
        baseline_rho=scenario.baseline_rho,
        warp_alpha=scenario.warp_alpha,
        warp_rho=scenario.warp_rho,
    )
    if withheld is None:
        withheld = choose_withheld(tree, scenario.n_withheld, rng)
    data = simulate_observations(
        parts["truth"],
        rng,
        noise_sd=scenario.noise_sd,
        withheld=withheld,
        n_holdout=scenario.n_holdout,
    )
    return SimulatedData(
        scenario=scenario,
        tree=tree,
        data=data,
        withheld=tuple(withheld),
        weights1=parts["weights1"],
        weights2=parts["weights2"],
        baseline=parts["baseline"],
        warp1=parts["warp1"],
        warp2=parts["warp2"],
    )
