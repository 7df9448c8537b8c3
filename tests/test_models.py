import numpy as np
import pandas as pd
import pytest

from phylogam.evaluate import summarize_scores
from phylogam.models import (
    SMOOTH_TERM,
    TENSOR_TERM,
    SpeciesTrendGAM,
    baseline_gam,
    build_design,
    phylo_gam,
    time_spline,
)


def species_rows(pred, label):
    return pred[pred["species"] == label].sort_values("time")


def test_design_keeps_unobserved_levels(small_sim, small_scenario):
    data = small_sim.data
    time_levels = list(data["time_factor"].cat.categories)
    species_levels = list(data["species"].cat.categories)
    spline = time_spline(time_levels, n_knots=small_scenario.n_knots)
    X = build_design(data, spline, time_levels, species_levels)
    n_tensor = small_scenario.n_time * small_scenario.n_species
    n_basis = X.shape[1] - n_tensor
    assert n_basis == small_scenario.n_knots + 2
    T = X[:, n_basis:]
    np.testing.assert_array_equal(T.sum(axis=1), 1.0)
    np.testing.assert_array_equal(T.sum(axis=0), 1.0)
    # every row maps to its own (time, species) coefficient, time-major
    codes = (data["time"].to_numpy() - 1) * small_scenario.n_species + data["species"].cat.codes.to_numpy()
    np.testing.assert_array_equal(T.argmax(axis=1), codes)


def test_unknown_levels_rejected(small_sim):
    model = baseline_gam(n_knots=8).fit(small_sim.data)
    other = small_sim.data.head(3).copy()
    other["species"] = pd.Categorical(["sp99"] * 3)
    with pytest.raises(ValueError, match="species"):
        model.predict(other)


def test_predict_before_fit(small_sim):
    with pytest.raises(RuntimeError, match="fit"):
        baseline_gam().predict(small_sim.data)


def test_species_penalty_must_cover_species(small_sim):
    prec = pd.DataFrame(np.eye(2), index=["sp1", "sp2"], columns=["sp1", "sp2"])
    with pytest.raises(ValueError, match="lacks species"):
        SpeciesTrendGAM(prec, n_knots=8).fit(small_sim.data)


def test_predictions_cover_every_row(small_sim):
    model = phylo_gam(small_sim.tree, n_knots=8).fit(small_sim.data)
    pred = model.predict(small_sim.data)
    assert len(pred) == len(small_sim.data)
    assert (pred["model"] == "phylogenetic").all()
    assert np.all(np.isfinite(pred["mean"]))
    assert np.all(pred["se"] > 0)
    np.testing.assert_allclose(pred["lower"], pred["mean"] - 1.96 * pred["se"])
    np.testing.assert_allclose(pred["upper"], pred["mean"] + 1.96 * pred["se"])
    assert set(model.lambdas) == {SMOOTH_TERM, f"{TENSOR_TERM}[0]", f"{TENSOR_TERM}[1]"}
    summary = model.summary()
    assert summary["n_obs"] == int(small_sim.data["y"].notna().sum())


def test_refits_are_identical(small_sim):
    for make in (lambda: phylo_gam(small_sim.tree, n_knots=8), lambda: baseline_gam(n_knots=8)):
        a = make().fit(small_sim.data).predict(small_sim.data)
        b = make().fit(small_sim.data).predict(small_sim.data)
        np.testing.assert_array_equal(a["mean"].to_numpy(), b["mean"].to_numpy())
        np.testing.assert_array_equal(a["se"].to_numpy(), b["se"].to_numpy())


def test_zero_weight_excludes_observed_rows(small_sim):
    data = small_sim.data.copy()
    dropped = next(s for s in small_sim.species if s not in small_sim.withheld)
    data.loc[data["species"] == dropped, "weight"] = 0.0
    model = baseline_gam(n_knots=8).fit(data)
    pred = model.predict(data)
    # with no data the dropped species falls back to the shared smooth too
    np.testing.assert_allclose(
        species_rows(pred, dropped)["mean"].to_numpy(),
        species_rows(pred, small_sim.withheld[0])["mean"].to_numpy(),
        atol=1e-10,
    )


def test_baseline_collapses_information_free_species(default_result):
    pred = default_result.preds["baseline"]
    a, b = default_result.sim.withheld
    pa, pb = species_rows(pred, a), species_rows(pred, b)
    np.testing.assert_allclose(pa["mean"].to_numpy(), pb["mean"].to_numpy(), atol=1e-10)
    np.testing.assert_allclose(pa["se"].to_numpy(), pb["se"].to_numpy(), rtol=1e-8)


def test_phylogenetic_model_separates_information_free_species(default_result):
    pred = default_result.preds["phylogenetic"]
    a, b = default_result.sim.withheld
    diff = species_rows(pred, a)["mean"].to_numpy() - species_rows(pred, b)["mean"].to_numpy()
    assert np.max(np.abs(diff)) > 1e-3


def test_phylogenetic_model_scores_better_on_withheld_species(default_result):
    summary = summarize_scores(default_result.scores["withheld"]).set_index("model")
    assert summary.loc["phylogenetic", "crps"] < summary.loc["baseline", "crps"]


def test_default_scenario_fits_converge(default_result):
    for model in default_result.models.values():
        assert model.fit_.n_obs == 10 * 45
        assert np.all(np.isfinite(model.fit_.lambdas))
