"""Tests for configuration and the treatment mapping loader."""
import json

import pytest

from gbv_methods.config import AnalysisConfig, load_config, load_treatment_mapping


def test_from_dict_ignores_unknown_keys():
    cfg = AnalysisConfig.from_dict({"n_reps": 200, "seed": 7, "colour": "blue"})
    assert cfg.n_reps == 200
    assert cfg.seed == 7
    assert cfg.cluster_column == "school_id"


def test_from_empty_dict_gives_defaults():
    cfg = AnalysisConfig.from_dict(None)
    assert cfg.n_reps == 1000
    assert cfg.confidence == 0.95
    assert len(cfg.lifetime_columns) == 2


def test_load_config(tmp_path):
    path = tmp_path / "cfg.json"
    path.write_text(json.dumps({"n_jobs": 4}), encoding="utf-8")
    assert load_config(path).n_jobs == 4
    assert load_config(None) == AnalysisConfig()
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / "missing.json")


def test_load_treatment_mapping_csv_and_json(tmp_path):
    csv_path = tmp_path / "arms.csv"
    csv_path.write_text("school_id,treatment\n01,1\n02,0\n", encoding="utf-8")
    assert load_treatment_mapping(csv_path) == {"01": 1, "02": 0}

    json_path = tmp_path / "arms.json"
    json_path.write_text(json.dumps({"01": 1, "02": 0}), encoding="utf-8")
    assert load_treatment_mapping(json_path) == {"01": 1, "02": 0}


def test_load_treatment_mapping_rejects_duplicates(tmp_path):
    path = tmp_path / "arms.csv"
    path.write_text("school_id,treatment\nA,1\nA,0\n", encoding="utf-8")
    with pytest.raises(ValueError):
        load_treatment_mapping(path)


def test_load_treatment_mapping_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_treatment_mapping(tmp_path / "arms.csv")
