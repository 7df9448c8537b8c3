from __future__ import annotations

import math

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd

from .tree import Tree

MODEL_COLORS = {
    "phylogenetic": "#1b9e77",
    "baseline": "#d95f02",
}
FALLBACK_COLORS = ["#7570b3", "#e7298a", "#66a61e", "#e6ab02"]


def _color(name: str, i: int) -> str:
    return MODEL_COLORS.get(name, FALLBACK_COLORS[i % len(FALLBACK_COLORS)])


def plot_species_fits(
    data: pd.DataFrame,
    preds: dict[str, pd.DataFrame],
    species=None,
    withheld=(),
    n_holdout: int = 5,
    ncols: int = 4,
):
    """One panel per species: truth, observations and each model's 95% band."""
    species = list(species) if species is not None else [str(s) for s in data["species"].cat.categories]
    nrows = max(1, math.ceil(len(species) / ncols))
    fig, axes = plt.subplots(nrows, ncols, figsize=(3.6 * ncols, 2.6 * nrows), sharex=True, squeeze=False)
    n_time = int(data["time"].max())
    cutoff = n_time - n_holdout + 0.5

    for ax, label in zip(axes.ravel(), species):
        obs = data[data["species"] == label].sort_values("time")
        for i, (name, pred) in enumerate(preds.items()):
            p = pred[pred["species"] == label].sort_values("time")
            color = _color(name, i)
            ax.fill_between(p["time"], p["lower"], p["upper"], color=color, alpha=0.18, linewidth=0)
            ax.plot(p["time"], p["mean"], color=color, linewidth=1.3, label=name)
        ax.plot(obs["time"], obs["truth"], color="black", linewidth=1.0, linestyle="--", label="truth")
        ax.scatter(obs["time"], obs["y"], s=7, color="black", alpha=0.55, zorder=3)
        if n_holdout > 0:
            ax.axvline(cutoff, color="grey", linewidth=0.8, linestyle=":")
        title = f"{label} (no data)" if label in withheld else label
        ax.set_title(title, fontsize=9.5, weight="bold" if label in withheld else "normal")

    for ax in axes.ravel()[len(species):]:
        ax.axis("off")
    for ax in axes[-1]:
        ax.set_xlabel("Time")
    handles, labels = axes[0, 0].get_legend_handles_labels()
    fig.legend(handles, labels, loc="upper center", ncol=len(labels), frameon=False)
    fig.tight_layout(rect=(0, 0, 1, 0.95))
    return fig


def plot_tree(tree: Tree, ax=None, highlight=()):
    """Rectangular phylogram drawn from the node arrays."""
    if ax is None:
        _, ax = plt.subplots(figsize=(5, 0.35 * tree.n_tips + 1.0))
    depth = tree.depths()
    y = np.zeros(tree.n_nodes)
    tips = [n for n in tree.preorder() if tree.is_tip(n)]
    for i, tip in enumerate(tips):
        y[tip] = i
    # children come after their parent in preorder
    for node in reversed(tree.preorder()):
        if not tree.is_tip(node):
            y[node] = np.mean([y[c] for c in tree.children(node)])

    for node in range(tree.n_nodes):
        if node != tree.root:
            ax.plot([depth[tree.parent[node]], depth[node]], [y[node], y[node]], color="black", linewidth=1.0)
        if not tree.is_tip(node):
            ys = [y[c] for c in tree.children(node)]
            ax.plot([depth[node], depth[node]], [min(ys), max(ys)], color="black", linewidth=1.0)

    pad = 0.02 * float(depth.max() or 1.0)
    for tip in tips:
        label = tree.labels[tip]
        ax.text(
            depth[tip] + pad,
            y[tip],
            label,
            va="center",
            fontsize=8.5,
            color="#c0392b" if label in highlight else "black",
            weight="bold" if label in highlight else "normal",
        )
    ax.set_yticks([])
    ax.set_xlabel("Distance from root")
    for side in ("left", "right", "top"):
        ax.spines[side].set_visible(False)
    return ax.figure


def plot_score_comparison(scores: pd.DataFrame, metric: str = "crps", ax=None):
    """Grouped bars of a per-species score, one bar per model."""
    if ax is None:
        _, ax = plt.subplots(figsize=(7, 3.5))
    wide = scores.pivot(index="species", columns="model", values=metric)
    x = np.arange(len(wide.index))
    width = 0.8 / max(1, len(wide.columns))
    for i, name in enumerate(wide.columns):
        ax.bar(x + i * width, wide[name].to_numpy(), width=width, color=_color(name, i), label=name)
    ax.set_xticks(x + 0.4 - width / 2)
    ax.set_xticklabels(wide.index, rotation=45, ha="right")
    ax.set_ylabel(metric.upper())
    ax.legend(frameon=False)
    ax.figure.tight_layout()
    return ax.figure
