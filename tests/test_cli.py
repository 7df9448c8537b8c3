import json

import pytest

from phylogam.cli import main


def test_cli_writes_payload(tmp_path, capsys):
    out = tmp_path / "results.json"
    code = main(["--scenario-name", "small", "--no-plot", "--out", str(out)])
    assert code == 0
    payload = json.loads(out.read_text())
    assert payload["scenario"]["name"] == "small"
    assert len(payload["replicates"]) == 1
    rep = payload["replicates"][0]
    assert rep["tree"].endswith(";")
    assert len(rep["withheld"]) == 2
    assert {m["model"] for m in rep["models"]} == {"phylogenetic", "baseline"}
    subsets = {row["subset"] for row in payload["summary"]}
    assert subsets == {"all", "withheld", "forecast"}
    stdout = capsys.readouterr().out
    assert "withheld | phylogenetic" in stdout


def test_cli_replicates_and_figures(tmp_path):
    fig = tmp_path / "figs" / "fits.png"
    out = tmp_path / "results.json"
    code = main(
        ["--scenario-name", "small", "--replicates", "2", "--figure", str(fig), "--out", str(out)]
    )
    assert code == 0
    assert fig.exists()
    assert (tmp_path / "figs" / "fits_tree.png").exists()
    assert (tmp_path / "figs" / "fits_crps.png").exists()
    payload = json.loads(out.read_text())
    seeds = [r["seed"] for r in payload["replicates"]]
    assert seeds == [7, 8]


def test_cli_unknown_scenario():
    with pytest.raises(SystemExit, match="Unknown scenario"):
        main(["--scenario-name", "nope", "--no-plot"])


def test_cli_rejects_bad_replicates():
    with pytest.raises(SystemExit):
        main(["--replicates", "0", "--no-plot"])


def test_cli_size_overrides(tmp_path):
    out = tmp_path / "results.json"
    code = main(
        ["--scenario-name", "small", "--n-species", "6", "--n-time", "20", "--no-plot", "--out", str(out)]
    )
    assert code == 0
    payload = json.loads(out.read_text())
    assert payload["scenario"]["n_species"] == 6
    assert payload["scenario"]["n_time"] == 20
    assert payload["replicates"][0]["tree"].count("sp") == 6


def test_cli_rejects_invalid_size_override():
    with pytest.raises(ValueError, match="species"):
        main(["--scenario-name", "small", "--n-species", "2", "--no-plot"])
