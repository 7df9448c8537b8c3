import json

import pytest

from phylogam.config import DEFAULT_SCENARIOS, Scenario, load_scenarios


def test_defaults_are_valid():
    s = Scenario().validate()
    assert (s.n_species, s.n_time, s.n_withheld, s.n_holdout) == (12, 50, 2, 5)
    assert s.with_seed(5).seed == 5
    assert Scenario.from_dict(s.to_dict()) == s


@pytest.mark.parametrize(
    "overrides",
    [
        {"n_species": 2},
        {"n_time": 2},
        {"n_withheld": 12},
        {"n_holdout": 50},
        {"noise_sd": -0.1},
        {"warp_rho": 0.0},
        {"baseline_alpha": -1.0},
        {"n_knots": 1},
    ],
)
def test_invalid_scenarios(overrides):
    with pytest.raises(ValueError):
        Scenario(**overrides).validate()


def test_from_dict_rejects_unknown_keys():
    with pytest.raises(ValueError, match="unknown scenario key"):
        Scenario.from_dict({"name": "x", "n_specie": 4})


def test_repository_scenarios_load():
    scenarios = load_scenarios(DEFAULT_SCENARIOS)
    names = [s.name for s in scenarios]
    assert "default" in names
    default = scenarios[names.index("default")]
    assert default.n_species == 12
    assert default.n_time == 50


def test_duplicate_scenario_names(tmp_path):
    path = tmp_path / "scenarios.json"
    path.write_text(json.dumps({"scenarios": [{"name": "a"}, {"name": "a", "seed": 3}]}))
    with pytest.raises(ValueError, match="duplicate"):
        load_scenarios(path)
