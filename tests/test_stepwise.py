"""Tests for forward stepwise selection and fit evaluation."""
import numpy as np
import pandas as pd
import pytest

from gbv_methods.evaluation import evaluate_fit
from gbv_methods.stepwise import coefficient_table, forward_stepwise


@pytest.fixture
def school_frame():
    rng = np.random.default_rng(21)
    n = 60
    df = pd.DataFrame({
        "x1": rng.normal(size=n),
        "x2": rng.normal(size=n),
        "x3": rng.normal(size=n),
        "flat": np.ones(n),
        "n_valid": rng.integers(10, 50, size=n),
    })
    df["outcome_rate"] = 0.3 + 0.2 * df["x1"] - 0.1 * df["x2"] + rng.normal(0, 0.02, n)
    return df


def test_forward_selection_picks_true_predictors(school_frame):
    res = forward_stepwise(school_frame, "outcome_rate", ["x3", "x2", "x1", "flat"], criterion="bic")
    assert res.selected[0] == "x1"
    assert {"x1", "x2"} <= set(res.selected)
    assert "flat" not in res.selected
    assert res.params["x1"] == pytest.approx(0.2, abs=0.02)
    assert res.history["step"].tolist() == list(range(len(res.selected) + 1))
    assert res.history["bic"].is_monotonic_decreasing


def test_weighted_selection(school_frame):
    res = forward_stepwise(school_frame, "outcome_rate", ["x1", "x2", "x3"], weights="n_valid")
    assert "x1" in res.selected
    assert len(res.y_true) == len(res.y_fitted) == len(school_frame)


def test_max_steps(school_frame):
    res = forward_stepwise(school_frame, "outcome_rate", ["x1", "x2", "x3"], max_steps=1)
    assert res.selected == ["x1"]


def test_no_improvement_keeps_intercept_only():
    rng = np.random.default_rng(4)
    df = pd.DataFrame({"y": rng.normal(size=40), "noise": np.ones(40)})
    res = forward_stepwise(df, "y", ["noise"])
    assert res.selected == []
    assert list(res.params) == ["const"]


def test_invalid_arguments(school_frame):
    with pytest.raises(ValueError):
        forward_stepwise(school_frame, "outcome_rate", ["x1"], criterion="r2")
    with pytest.raises(ValueError):
        forward_stepwise(school_frame, "outcome_rate", ["missing"])


def test_coefficient_table(school_frame):
    res = forward_stepwise(school_frame, "outcome_rate", ["x1", "x2"])
    table = coefficient_table(res)
    assert table["term"].iloc[0] == "const"
    assert (table["ci_low"] <= table["coef"]).all()
    assert (table["coef"] <= table["ci_high"]).all()


def test_evaluate_fit():
    perfect = evaluate_fit(np.array([1.0, 2.0, 3.0]), np.array([1.0, 2.0, 3.0]))
    assert perfect.r2 == pytest.approx(1.0)
    assert perfect.mae == 0 and perfect.rmse == 0

    off = evaluate_fit(np.array([0.0, 0.0]), np.array([1.0, -1.0]))
    assert off.rmse == pytest.approx(1.0)
    assert off.predicted_vs_actual["residual"].tolist() == [-1.0, 1.0]

    with pytest.raises(ValueError):
        evaluate_fit(np.array([1.0, 2.0]), np.array([1.0]))
