import math

import numpy as np
import pandas as pd
import pytest

from phylogam.evaluate import (
    compare_models,
    confidence_bounds,
    coverage_score,
    crps_gaussian,
    rmse_score,
    score_predictions,
    summarize_scores,
)


def test_crps_standard_normal_at_mean():
    expected = 2.0 / math.sqrt(2.0 * math.pi) - 1.0 / math.sqrt(math.pi)
    assert abs(float(crps_gaussian(0.0, 0.0, 1.0)) - expected) < 1e-12


def test_crps_scalar_matches_array_entry():
    single = crps_gaussian(0.7, 0.2, 0.5)
    assert np.ndim(single) == 0
    batch = crps_gaussian([0.7, 0.0], [0.2, 0.0], [0.5, 1.0])
    assert batch.shape == (2,)
    assert float(single) == pytest.approx(float(batch[0]))
    assert float(crps_gaussian(-1.5, 0.0, 0.0)) == 1.5


def test_crps_zero_sigma_is_absolute_error():
    np.testing.assert_allclose(crps_gaussian([1.0, -2.0], [0.0, 0.5], 0.0), [1.0, 2.5])


def test_crps_grows_with_error_and_spread():
    errors = crps_gaussian([0.0, 0.5, 1.0, 2.0], 0.0, 1.0)
    assert np.all(np.diff(errors) > 0)
    # at zero error a wider distribution scores worse
    assert crps_gaussian(0.0, 0.0, 2.0) > crps_gaussian(0.0, 0.0, 1.0)
    # far from the mean the score approaches the absolute error
    assert abs(float(crps_gaussian(50.0, 0.0, 1.0)) - 50.0) < 1.0


def test_crps_rejects_negative_sigma():
    with pytest.raises(ValueError):
        crps_gaussian(0.0, 0.0, -1.0)


def test_confidence_bounds_and_simple_scores():
    lower, upper = confidence_bounds([0.0, 1.0], [1.0, 0.5])
    np.testing.assert_allclose(lower, [-1.96, 0.02])
    np.testing.assert_allclose(upper, [1.96, 1.98])
    assert rmse_score(np.array([0.0, 0.0]), np.array([3.0, 4.0])) == pytest.approx(math.sqrt(12.5))
    assert coverage_score(np.array([0.0, 5.0]), np.array([-1.0, -1.0]), np.array([1.0, 1.0])) == 0.5


def make_pred(name, offset, se):
    species = pd.Categorical(["a"] * 3 + ["b"] * 3, categories=["a", "b"])
    truth = np.array([0.0, 1.0, 2.0, 0.0, -1.0, -2.0])
    mean = truth + offset
    lower, upper = confidence_bounds(mean, se)
    return pd.DataFrame(
        {
            "species": species,
            "time": [1, 2, 3, 1, 2, 3],
            "truth": truth,
            "model": name,
            "mean": mean,
            "se": se,
            "lower": lower,
            "upper": upper,
        }
    )


def test_score_predictions_per_species():
    scores = score_predictions(make_pred("m", 0.1, 1.0))
    assert list(scores["species"]) == ["a", "b"]
    assert (scores["n"] == 3).all()
    np.testing.assert_allclose(scores["rmse"], 0.1)
    np.testing.assert_allclose(scores["coverage"], 1.0)
    sub = score_predictions(make_pred("m", 0.1, 1.0), species=["b"], times=[2, 3])
    assert list(sub["species"]) == ["b"]
    assert sub["n"].iloc[0] == 2
    with pytest.raises(ValueError):
        score_predictions(make_pred("m", 0.1, 1.0), species=["zz"])


def test_compare_and_summarize():
    preds = {"good": make_pred("good", 0.05, 0.2), "bad": make_pred("bad", 1.5, 0.2)}
    scores = compare_models(preds)
    assert set(scores["model"]) == {"good", "bad"}
    assert len(scores) == 4
    summary = summarize_scores(scores)
    assert list(summary["model"]) == ["good", "bad"]
    assert summary.loc[1, "coverage"] == 0.0
