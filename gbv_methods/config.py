from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Dict, List, Optional

import pandas as pd

from .constants import (
    CLUSTER_COLUMN,
    DEFAULT_BOOTSTRAP_REPS,
    DEFAULT_CONFIDENCE,
    ITEMIZED_INCIDENT_COLUMNS,
    LIFETIME_COLUMNS,
    TREATMENT_COLUMN,
)

logger = logging.getLogger(__name__)


@dataclass
class AnalysisConfig:
    cluster_column: str = CLUSTER_COLUMN
    treatment_column: str = TREATMENT_COLUMN
    itemized_columns: List[str] = field(default_factory=lambda: list(ITEMIZED_INCIDENT_COLUMNS))
    lifetime_columns: List[str] = field(default_factory=lambda: list(LIFETIME_COLUMNS))
    n_reps: int = DEFAULT_BOOTSTRAP_REPS
    confidence: float = DEFAULT_CONFIDENCE
    seed: Optional[int] = 42
    n_jobs: int = 1

    @classmethod
    def from_dict(cls, raw: Dict | None) -> "AnalysisConfig":
        if not raw:
            return cls()
        valid = {f.name for f in fields(cls)}
        unknown = sorted(set(raw) - valid)
        if unknown:
            logger.warning("Ignoring unknown config keys: %s", ", ".join(unknown))
        filtered = {k: v for k, v in raw.items() if k in valid}
        return cls(**filtered)


def _require_file(path: str | Path, what: str) -> Path:
    path = Path(path)
    if not path.is_file():
        raise FileNotFoundError(f"{what} not found: {path}")
    return path


def load_config(path: str | Path | None) -> AnalysisConfig:
    """Load an AnalysisConfig from a JSON file; no path gives the defaults."""
    if path is None:
        return AnalysisConfig()
    path = _require_file(path, "Config file")
    with open(path, "r", encoding="utf-8") as f:
        raw = json.load(f)
    return AnalysisConfig.from_dict(raw)


def load_treatment_mapping(path: str | Path) -> Dict[str, int]:
    """Read the analyst's school -> arm mapping (CSV with school_id,treatment or a JSON object)."""
    path = _require_file(path, "Treatment mapping")
    if path.suffix.lower() == ".json":
        with open(path, "r", encoding="utf-8") as f:
            raw = json.load(f)
        return {str(k): int(v) for k, v in raw.items()}

    df = pd.read_csv(path, dtype={CLUSTER_COLUMN: str})
    missing = [c for c in (CLUSTER_COLUMN, TREATMENT_COLUMN) if c not in df.columns]
    if missing:
        raise ValueError(f"Treatment mapping {path} lacks columns: {', '.join(missing)}")
    if df[CLUSTER_COLUMN].duplicated().any():
        dups = df.loc[df[CLUSTER_COLUMN].duplicated(), CLUSTER_COLUMN].tolist()
        raise ValueError(f"Treatment mapping lists schools more than once: {dups}")
    return dict(zip(df[CLUSTER_COLUMN], df[TREATMENT_COLUMN].astype(int)))
