"""End-to-end run of the command line driver on synthetic data."""
import json

import numpy as np
import pandas as pd
import pytest

import cli
from gbv_methods.constants import DEFAULT_RADIUS_KM, ITEMIZED_INCIDENT_COLUMNS, LIFETIME_COLUMNS
from generate_synthetic_dataset import (
    make_amenities,
    make_locations,
    make_respondent_dataset,
    make_safety_survey,
    make_school_dataset,
    make_treatment_mapping,
)


@pytest.fixture
def data_dir(tmp_path):
    make_respondent_dataset(n_schools=12, seed=3).to_csv(tmp_path / "respondents.csv", index=False)
    make_treatment_mapping(n_schools=12, seed=3).to_csv(tmp_path / "arms.csv", index=False)
    make_school_dataset(n_schools=12, seed=3).to_csv(tmp_path / "schools.csv", index=False)
    make_safety_survey(seed=3).to_csv(tmp_path / "survey.csv", index=False)
    make_locations(seed=3).to_csv(tmp_path / "locations.csv", index=False)
    make_amenities(seed=3).to_csv(tmp_path / "amenities.csv", index=False)
    return tmp_path


def test_full_run_writes_outputs(data_dir, capsys):
    out = data_dir / "out"
    status = cli.main([
        "--respondents", str(data_dir / "respondents.csv"),
        "--arms", str(data_dir / "arms.csv"),
        "--schools", str(data_dir / "schools.csv"),
        "--survey", str(data_dir / "survey.csv"),
        "--locations", str(data_dir / "locations.csv"),
        "--amenities", str(data_dir / "amenities.csv"),
        "--out", str(out),
        "--reps", "50",
        "--seed", "1",
    ])
    assert status == 0
    for name in [
        "respondents_reconciled.csv",
        "prevalence_by_arm.csv",
        "baseline_balance.csv",
        "covariate_scan.csv",
        "stepwise_coefficients.csv",
        "predicted_vs_actual.csv",
        "location_features.csv",
        "safety_mixed_model.csv",
        "results_summary.json",
    ]:
        assert (out / name).exists(), name

    summary = json.loads((out / "results_summary.json").read_text(encoding="utf-8"))
    prev = summary["prevalence"]
    assert prev["n_clusters"] == 12
    assert prev["lower"] <= prev["upper"]
    mixed_terms = summary["safety_mixed_model"]["fe_params"]
    assert any(k.startswith("dist_") for k in mixed_terms)
    assert "Prevalence:" in capsys.readouterr().out


def test_missing_input_is_a_startup_error(tmp_path):
    status = cli.main(["--respondents", str(tmp_path / "none.csv"), "--out", str(tmp_path / "out")])
    assert status == 2


def test_no_valid_answers_writes_valid_json(tmp_path, capsys):
    items = ITEMIZED_INCIDENT_COLUMNS + LIFETIME_COLUMNS
    respondents = pd.DataFrame({"respondent_id": [1, 2, 3], "school_id": ["S01", "S01", "S02"]})
    for col in items:
        respondents[col] = -99
    respondents.to_csv(tmp_path / "respondents.csv", index=False)
    pd.DataFrame({"school_id": ["S01", "S02"], "treatment": [0, 1]}).to_csv(tmp_path / "arms.csv", index=False)

    out = tmp_path / "out"
    status = cli.main([
        "--respondents", str(tmp_path / "respondents.csv"),
        "--arms", str(tmp_path / "arms.csv"),
        "--out", str(out),
        "--reps", "20",
        "--seed", "1",
    ])
    assert status == 0
    text = (out / "results_summary.json").read_text(encoding="utf-8")
    assert "NaN" not in text
    summary = json.loads(text)
    assert summary["prevalence"]["estimate"] is None
    assert all(row["estimate"] is None for row in summary["prevalence_by_arm"])
    assert "undefined" in capsys.readouterr().out


def test_json_safe_replaces_undefined_numbers():
    cleaned = cli.json_safe({"a": float("nan"), "b": [np.float64(0.5), np.int64(3)], "c": float("inf")})
    assert cleaned == {"a": None, "b": [0.5, 3], "c": None}
    assert isinstance(cleaned["b"][1], int)


def test_radius_default_comes_from_constants():
    args = cli.build_parser().parse_args([])
    assert args.radius_km == DEFAULT_RADIUS_KM
    assert args.mixed_formula is None
