from __future__ import annotations

import json
from dataclasses import asdict, dataclass, fields, replace
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
BENCH_DIR = ROOT / "bench"
DEFAULT_SCENARIOS = BENCH_DIR / "scenarios.json"
DEFAULT_SEED = 42


@dataclass(frozen=True)
class Scenario:
    name: str = "default"
    n_species: int = 12
    n_time: int = 50
    n_withheld: int = 2
    n_holdout: int = 5
    noise_sd: float = 0.3
    baseline_alpha: float = 1.0
    baseline_rho: float = 8.0
    warp_alpha: float = 1.0
    warp_rho: float = 6.0
    tree_model: str = "coalescent"
    n_knots: int = 10
    seed: int = DEFAULT_SEED

    def validate(self) -> "Scenario":
        if self.n_time < 3:
            raise ValueError(f"{self.name}: need at least 3 time points; got {self.n_time}")
        if self.n_species < 3:
            raise ValueError(f"{self.name}: need at least 3 species; got {self.n_species}")
        if not 0 <= self.n_withheld < self.n_species:
            raise ValueError(
                f"{self.name}: n_withheld must be in [0, {self.n_species}); got {self.n_withheld}"
            )
        if not 0 <= self.n_holdout < self.n_time:
            raise ValueError(f"{self.name}: n_holdout must be in [0, {self.n_time}); got {self.n_holdout}")
        if self.noise_sd < 0:
            raise ValueError(f"{self.name}: noise_sd must be non-negative; got {self.noise_sd}")
        if self.baseline_rho <= 0 or self.warp_rho <= 0:
            raise ValueError(f"{self.name}: GP length-scales must be positive")
        if self.baseline_alpha < 0 or self.warp_alpha < 0:
            raise ValueError(f"{self.name}: GP amplitudes must be non-negative")
        if self.n_knots < 2:
            raise ValueError(f"{self.name}: n_knots must be at least 2; got {self.n_knots}")
        return self

    def with_seed(self, seed: int) -> "Scenario":
        return replace(self, seed=int(seed))

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, raw: dict) -> "Scenario":
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(raw) - known)
        if unknown:
            raise ValueError(f"unknown scenario key(s): {', '.join(unknown)}")
        return cls(**raw).validate()


def load_scenarios(path: Path = DEFAULT_SCENARIOS) -> list[Scenario]:
    cfg = json.loads(Path(path).read_text())
    scenarios = [Scenario.from_dict(s) for s in cfg.get("scenarios", [])]
    names = [s.name for s in scenarios]
    dupes = sorted({n for n in names if names.count(n) > 1})
    if dupes:
        raise ValueError(f"duplicate scenario name(s) in {path}: {', '.join(dupes)}")
    return scenarios
