"""
Bifurcating phylogenies stored as flat node arrays.

Tips occupy node indices ``0..n_tips-1``, internal nodes follow, and the
root is the last node. Every node stores its parent, its two children
(``-1`` for tips) and the length of the branch leading into it.
"""

from __future__ import annotations

from dataclasses import dataclass

import msprime
import numpy as np
import pandas as pd
import treeswift


@dataclass(frozen=True)
class Tree:
    parent: np.ndarray
    left: np.ndarray
    right: np.ndarray
    branch_length: np.ndarray
    labels: tuple[str, ...]

    @property
    def n_tips(self) -> int:
        return len(self.labels)

    @property
    def n_nodes(self) -> int:
        return int(self.parent.shape[0])

    @property
    def root(self) -> int:
        return self.n_nodes - 1

    def is_tip(self, node: int) -> bool:
        return node < self.n_tips

    def children(self, node: int) -> tuple[int, ...]:
        if self.is_tip(node):
            return ()
        return int(self.left[node]), int(self.right[node])

    def preorder(self) -> list[int]:
        order = []
        stack = [self.root]
        while stack:
            node = stack.pop()
            order.append(node)
            # right first so the left subtree is visited first
            stack.extend(reversed(self.children(node)))
        return order

    def depths(self) -> np.ndarray:
        """Path length from the root to every node."""
        depth = np.zeros(self.n_nodes, dtype=float)
        for node in self.preorder():
            if node != self.root:
                depth[node] = depth[self.parent[node]] + self.branch_length[node]
        return depth

    def ancestors(self, node: int) -> list[int]:
        path = [node]
        while path[-1] != self.root:
            path.append(int(self.parent[path[-1]]))
        return path

    def mrca(self, a: int, b: int) -> int:
        seen = set(self.ancestors(a))
        for node in self.ancestors(b):
            if node in seen:
                return node
        raise RuntimeError(f"nodes {a} and {b} share no ancestor")

    def vcv(self) -> pd.DataFrame:
        """Expected trait covariance among tips under unit-rate Brownian motion.

        Entry (i, j) is the shared path length from the root to the most
        recent common ancestor of tips i and j.
        """
        depth = self.depths()
        n = self.n_tips
        out = np.zeros((n, n), dtype=float)
        for i in range(n):
            out[i, i] = depth[i]
            for j in range(i + 1, n):
                out[i, j] = out[j, i] = depth[self.mrca(i, j)]
        return pd.DataFrame(out, index=list(self.labels), columns=list(self.labels))

    def cophenetic(self) -> pd.DataFrame:
        """Patristic distance between every pair of tips."""
        c = self.vcv().to_numpy()
        d = np.diag(c)
        dist = d[:, None] + d[None, :] - 2.0 * c
        np.maximum(dist, 0.0, out=dist)
        return pd.DataFrame(dist, index=list(self.labels), columns=list(self.labels))

    def to_treeswift(self, digits: int = 6) -> treeswift.Tree:
        """Copy into a ``treeswift.Tree``, branch lengths rounded to ``digits`` significant digits."""
        nodes = []
        for node in range(self.n_nodes):
            label = self.labels[node] if self.is_tip(node) else None
            length = None if node == self.root else float(f"{self.branch_length[node]:.{digits}g}")
            nodes.append(treeswift.Node(label=label, edge_length=length))
        for node in self.preorder():
            for child in self.children(node):
                nodes[node].add_child(nodes[child])
        out = treeswift.Tree()
        out.root = nodes[self.root]
        return out

    def to_newick(self, digits: int = 6) -> str:
        return self.to_treeswift(digits).newick()


def _tip_labels(n_tips: int) -> tuple[str, ...]:
    return tuple(f"sp{i + 1}" for i in range(n_tips))


def _from_tskit(ts_tree, n_tips: int) -> Tree:
    # msprime numbers the sample nodes 0..n-1; internal nodes are renumbered
    # by age so the root comes last
    internal = sorted((u for u in ts_tree.nodes() if not ts_tree.is_sample(u)), key=ts_tree.time)
    index = {u: u for u in range(n_tips)}
    index.update({u: n_tips + k for k, u in enumerate(internal)})

    n_nodes = 2 * n_tips - 1
    if len(index) != n_nodes:
        raise RuntimeError(f"expected a bifurcating tree with {n_nodes} nodes; got {len(index)}")
    parent = np.full(n_nodes, -1, dtype=int)
    left = np.full(n_nodes, -1, dtype=int)
    right = np.full(n_nodes, -1, dtype=int)
    length = np.zeros(n_nodes, dtype=float)
    for u, node in index.items():
        if u != ts_tree.root:
            parent[node] = index[ts_tree.parent(u)]
            length[node] = ts_tree.branch_length(u)
        children = ts_tree.children(u)
        if children:
            left[node], right[node] = (index[c] for c in children)
    return Tree(parent=parent, left=left, right=right, branch_length=length, labels=_tip_labels(n_tips))


def simulate_coalescent_tree(n_tips: int, rng: np.random.Generator | None = None) -> Tree:
    """Ultrametric tree from the Kingman coalescent, simulated with msprime."""
    if n_tips < 2:
        raise ValueError(f"a tree needs at least 2 tips; got {n_tips}")
    rng = np.random.default_rng(rng)
    ts = msprime.sim_ancestry(
        samples=n_tips,
        ploidy=1,
        population_size=1,
        sequence_length=1,
        recombination_rate=0,
        random_seed=int(rng.integers(1, 2**31 - 1)),
    )
    return _from_tskit(ts.first(), n_tips)


def simulate_random_tree(n_tips: int, rng: np.random.Generator | None = None) -> Tree:
    """Random topology with independent uniform(0, 1) branch lengths.

    Pairs of active lineages are joined at random until one remains.
    """
    if n_tips < 2:
        raise ValueError(f"a tree needs at least 2 tips; got {n_tips}")
    rng = np.random.default_rng(rng)
    n_nodes = 2 * n_tips - 1
    parent = np.full(n_nodes, -1, dtype=int)
    left = np.full(n_nodes, -1, dtype=int)
    right = np.full(n_nodes, -1, dtype=int)
    length = np.zeros(n_nodes, dtype=float)

    active = list(range(n_tips))
    for node in range(n_tips, n_nodes):
        i, j = rng.choice(len(active), size=2, replace=False)
        a, b = active[i], active[j]
        left[node], right[node] = a, b
        parent[a] = parent[b] = node
        length[a] = rng.uniform()
        length[b] = rng.uniform()
        active = [x for x in active if x not in (a, b)] + [node]

    return Tree(parent=parent, left=left, right=right, branch_length=length, labels=_tip_labels(n_tips))


TREE_MODELS = {
    "coalescent": simulate_coalescent_tree,
    "random": simulate_random_tree,
}


def simulate_tree(n_tips: int, rng: np.random.Generator | None = None, model: str = "coalescent") -> Tree:
    if model not in TREE_MODELS:
        raise ValueError(f"unknown tree model '{model}'; expected one of {sorted(TREE_MODELS)}")
    return TREE_MODELS[model](n_tips, rng)


def simulate_bm_trait(tree: Tree, rng: np.random.Generator | None = None, sigma: float = 1.0) -> pd.Series:
    """Brownian-motion trait values at the tips, starting from 0 at the root."""
    if sigma < 0:
        raise ValueError(f"sigma must be non-negative; got {sigma}")
    rng = np.random.default_rng(rng)
    values = np.zeros(tree.n_nodes, dtype=float)
    for node in tree.preorder():
        if node == tree.root:
            continue
        step = rng.normal(0.0, sigma * np.sqrt(tree.branch_length[node]))
        values[node] = values[tree.parent[node]] + step
    return pd.Series(values[: tree.n_tips], index=list(tree.labels), name="trait")
