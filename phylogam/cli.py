#!/usr/bin/env python3
import argparse
import json
import os
import sys
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path

# Configure matplotlib backend BEFORE importing pyplot
import matplotlib

if not os.environ.get("DISPLAY"):
    matplotlib.use("Agg")

import matplotlib.pyplot as plt  # noqa: E402
import pandas as pd  # noqa: E402
from tqdm import tqdm  # noqa: E402

from .config import DEFAULT_SCENARIOS, Scenario, load_scenarios  # noqa: E402
from .experiment import run_experiment  # noqa: E402
from .plotting import plot_score_comparison, plot_species_fits, plot_tree  # noqa: E402


def fmt(v):
    if v is None:
        return "-"
    if isinstance(v, float):
        return f"{v:.4f}"
    return str(v)


def log(msg):
    print(msg, file=sys.stderr, flush=True)


def select_scenario(path: Path, name: str | None) -> Scenario:
    if not path.exists():
        if name not in (None, "default"):
            raise SystemExit(f"Scenario file not found: {path}")
        return Scenario()
    scenarios = load_scenarios(path)
    if not scenarios:
        raise SystemExit(f"No scenarios found in {path}.")
    wanted = name or "default"
    for s in scenarios:
        if s.name == wanted:
            return s
    raise SystemExit(f"Unknown scenario name: {wanted} (have: {', '.join(s.name for s in scenarios)})")


def save_figures(result, figure: Path) -> list[Path]:
    sim = result.sim
    figure.parent.mkdir(parents=True, exist_ok=True)
    written = []

    fig = plot_species_fits(
        sim.data, result.preds, withheld=sim.withheld, n_holdout=sim.scenario.n_holdout
    )
    fig.savefig(figure, dpi=150, facecolor="white")
    plt.close(fig)
    written.append(figure)

    tree_path = figure.with_name(f"{figure.stem}_tree{figure.suffix}")
    fig = plot_tree(sim.tree, highlight=sim.withheld)
    fig.savefig(tree_path, dpi=150, facecolor="white")
    plt.close(fig)
    written.append(tree_path)

    key = "withheld" if "withheld" in result.scores else "all"
    scores_path = figure.with_name(f"{figure.stem}_crps{figure.suffix}")
    fig = plot_score_comparison(result.scores[key])
    fig.savefig(scores_path, dpi=150, facecolor="white")
    plt.close(fig)
    written.append(scores_path)
    return written


def main(argv=None):
    p = argparse.ArgumentParser(
        description="Compare phylogenetic and baseline smoothing models on simulated species trends."
    )
    p.add_argument("--scenarios", type=Path, default=DEFAULT_SCENARIOS)
    p.add_argument("--scenario-name", default=None, help="Scenario to run. Default: 'default'.")
    p.add_argument("--seed", type=int, default=None, help="Override the scenario seed.")
    p.add_argument("--n-species", type=int, default=None)
    p.add_argument("--n-time", type=int, default=None)
    p.add_argument(
        "--replicates",
        type=int,
        default=1,
        help="Repeat the experiment over consecutive seeds and aggregate scores.",
    )
    p.add_argument("--out", type=Path, default=None, help="Optional output JSON path.")
    p.add_argument("--figure", type=Path, default=Path("phylogam_fits.png"))
    p.add_argument("--no-plot", action="store_true")
    args = p.parse_args(argv)

    if args.replicates < 1:
        raise SystemExit("--replicates must be at least 1")

    scenario = select_scenario(args.scenarios, args.scenario_name)
    overrides = {
        k: v
        for k, v in {"seed": args.seed, "n_species": args.n_species, "n_time": args.n_time}.items()
        if v is not None
    }
    scenario = replace(scenario, **overrides).validate()
    log(
        f"Scenario '{scenario.name}': {scenario.n_species} species x {scenario.n_time} times, "
        f"{scenario.n_withheld} withheld, last {scenario.n_holdout} held out, seed {scenario.seed}"
    )

    records = []
    score_frames = []
    first = None
    for i in tqdm(range(args.replicates), desc="Replicates", disable=args.replicates < 2):
        result = run_experiment(scenario, seed=scenario.seed + i)
        if first is None:
            first = result
        records.append(result.to_record())
        for subset, scores in result.scores.items():
            score_frames.append(scores.assign(subset=subset, seed=scenario.seed + i))

    all_scores = pd.concat(score_frames, ignore_index=True)
    summary = (
        all_scores.groupby(["subset", "model"], sort=True)[["crps", "rmse", "coverage"]]
        .mean()
        .reset_index()
    )

    log(f"Withheld species (seed {scenario.seed}): {', '.join(first.sim.withheld) or '-'}")
    for m in first.models.values():
        lam = ", ".join(f"{k}={v:.3g}" for k, v in m.lambdas.items())
        log(f"{m.name}: edf={m.fit_.edf:.1f} scale={m.fit_.scale:.4f} lambdas[{lam}]")

    print("-" * 78)
    for row in summary.to_dict(orient="records"):
        print(
            f"{row['subset']} | {row['model']} | "
            f"crps={fmt(row['crps'])} | rmse={fmt(row['rmse'])} | coverage={fmt(row['coverage'])}"
        )

    if not args.no_plot:
        for path in save_figures(first, args.figure):
            print(f"Wrote {path}")

    if args.out is not None:
        payload = {
            "created_at_utc": datetime.now(timezone.utc).isoformat(),
            "scenario": scenario.to_dict(),
            "replicates": records,
            "summary": summary.to_dict(orient="records"),
        }
        args.out.parent.mkdir(parents=True, exist_ok=True)
        args.out.write_text(json.dumps(payload, indent=2, default=float))
        print(f"Wrote {args.out}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
