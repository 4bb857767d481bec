from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional

import numpy as np
import pandas as pd

from .constants import (
    CLUSTER_COLUMN,
    RAW_DONT_KNOW_CODES,
    RAW_MISSING_CODES,
    RAW_REFUSED_CODES,
    SCHOOL_RATIO_FEATURES,
    TREATMENT_COLUMN,
    Sentinel,
)

logger = logging.getLogger(__name__)


class UnknownResponseCodeError(ValueError):
    """A raw survey value is neither a valid count nor a declared non-answer code."""


class ClusterAssignmentError(ValueError):
    """Treatment assignment is missing for a school or varies within one."""


def _canonical(code):
    if isinstance(code, str):
        return code.strip().lower()
    return code


@dataclass(frozen=True)
class ItemCodes:
    """Raw codes meaning missing / refused / don't know for one survey item."""

    missing: FrozenSet = frozenset(RAW_MISSING_CODES)
    refused: FrozenSet = frozenset(RAW_REFUSED_CODES)
    dont_know: FrozenSet = frozenset(RAW_DONT_KNOW_CODES)
    max_valid: Optional[int] = None

    def __post_init__(self):
        for name in ("missing", "refused", "dont_know"):
            object.__setattr__(self, name, frozenset(_canonical(c) for c in getattr(self, name)))
        pairs = [("missing", "refused"), ("missing", "dont_know"), ("refused", "dont_know")]
        for a, b in pairs:
            shared = getattr(self, a) & getattr(self, b)
            if shared:
                raise ValueError(f"Codes {sorted(map(str, shared))} declared as both {a} and {b}")

    def classify(self, code) -> Optional[Sentinel]:
        code = _canonical(code)
        if code in self.missing:
            return Sentinel.MISSING
        if code in self.refused:
            return Sentinel.REFUSED
        if code in self.dont_know:
            return Sentinel.DONT_KNOW
        return None


DEFAULT_ITEM_CODES = ItemCodes()


def _is_absent(value) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    try:
        return bool(pd.isna(value))
    except (TypeError, ValueError):
        return False


def normalize_response(value, codes: ItemCodes = DEFAULT_ITEM_CODES) -> int:
    """Map one raw survey value to a valid count or a negative Sentinel.

    Declared non-answer codes take precedence over the valid range, so an item
    whose refusal code is 98 never reads as 98 incidents. Absent values read as
    MISSING. Anything else outside the valid range raises
    UnknownResponseCodeError instead of being coerced.
    """
    if _is_absent(value):
        return int(Sentinel.MISSING)

    sentinel = codes.classify(value)
    if sentinel is not None:
        return int(sentinel)

    number = value
    if isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            raise UnknownResponseCodeError(f"Unrecognized response code {value!r}") from None
        sentinel = codes.classify(number)
        if sentinel is not None:
            return int(sentinel)

    if isinstance(number, (bool, np.bool_)):
        raise UnknownResponseCodeError(f"Unrecognized response code {value!r}")
    try:
        number = float(number)
    except (TypeError, ValueError):
        raise UnknownResponseCodeError(f"Unrecognized response code {value!r}") from None

    if not math.isfinite(number) or number < 0 or number != int(number):
        raise UnknownResponseCodeError(f"Unrecognized response code {value!r}")
    if codes.max_valid is not None and number > codes.max_valid:
        raise UnknownResponseCodeError(
            f"Response {value!r} exceeds the maximum valid value {codes.max_valid}"
        )
    return int(number)


def normalize_responses(df: pd.DataFrame, item_codes: Mapping[str, ItemCodes]) -> pd.DataFrame:
    """Normalize every mapped item column of a respondent table (returns a copy)."""
    missing = [c for c in item_codes if c not in df.columns]
    if missing:
        raise ValueError(f"Respondent table lacks survey items: {', '.join(missing)}")

    normalized = df.copy()
    for col, codes in item_codes.items():
        values: List[int] = []
        for idx, raw in df[col].items():
            try:
                values.append(normalize_response(raw, codes))
            except UnknownResponseCodeError as exc:
                raise UnknownResponseCodeError(f"Column {col!r}, row {idx!r}: {exc}") from exc
        normalized[col] = np.asarray(values, dtype=np.int64)
    return normalized


def default_item_codes(columns: Iterable[str]) -> Dict[str, ItemCodes]:
    return {c: DEFAULT_ITEM_CODES for c in columns}


def read_table(path: str | Path, what: str = "Input table") -> pd.DataFrame:
    """Read a CSV input, failing loudly when the file does not exist."""
    path = Path(path)
    if not path.is_file():
        raise FileNotFoundError(f"{what} not found: {path}")
    df = pd.read_csv(path, dtype={CLUSTER_COLUMN: str})
    logger.info("Loaded %s: %d rows x %d columns from %s", what.lower(), len(df), df.shape[1], path)
    return df


def assign_treatment(
    df: pd.DataFrame,
    mapping: Mapping[str, int],
    cluster_column: str = CLUSTER_COLUMN,
    treatment_column: str = TREATMENT_COLUMN,
) -> pd.DataFrame:
    """Attach the cluster-level treatment flag from the analyst's school -> arm mapping.

    A treatment column already in the table is checked for within-school
    constancy before the mapping replaces it.
    """
    if treatment_column in df.columns:
        check_cluster_assignment(df, cluster_column, treatment_column)
        logger.info("Replacing existing %s column with the school mapping", treatment_column)
    out = df.copy()
    keys = out[cluster_column].astype(str)
    unmapped = sorted(set(keys) - set(map(str, mapping)))
    if unmapped:
        raise ClusterAssignmentError(f"No treatment arm given for schools: {unmapped}")
    out[treatment_column] = keys.map({str(k): int(v) for k, v in mapping.items()}).astype(int)
    return out


def check_cluster_assignment(
    df: pd.DataFrame,
    cluster_column: str = CLUSTER_COLUMN,
    treatment_column: str = TREATMENT_COLUMN,
) -> None:
    """Treatment is assigned at the school level, so it must be constant within a school."""
    if df[cluster_column].isna().any():
        raise ClusterAssignmentError("Every respondent needs a school id")
    arms_per_school = df.groupby(cluster_column)[treatment_column].nunique()
    mixed = arms_per_school[arms_per_school > 1].index.tolist()
    if mixed:
        raise ClusterAssignmentError(f"Treatment varies within schools: {mixed}")


def derive_school_features(schools: pd.DataFrame) -> pd.DataFrame:
    """Compute ratio features from raw school counts.

    A zero or missing denominator leaves the ratio undefined (NaN) and is
    logged; it never becomes inf.
    """
    out = schools.copy()
    for name, (num, den) in SCHOOL_RATIO_FEATURES.items():
        if num not in out.columns or den not in out.columns:
            logger.debug("Skipping %s: needs %s and %s", name, num, den)
            continue
        numerator = pd.to_numeric(out[num], errors="coerce").astype(float)
        denominator = pd.to_numeric(out[den], errors="coerce").astype(float)
        defined = denominator > 0
        out[name] = (numerator / denominator.where(defined)).where(defined)
        if (~defined).any():
            ids = out.loc[~defined, CLUSTER_COLUMN].tolist() if CLUSTER_COLUMN in out.columns else []
            logger.warning("%s undefined for %d school(s) with no %s: %s", name, int((~defined).sum()), den, ids)
    return out


def attach_outcome_rates(schools: pd.DataFrame, rates: pd.DataFrame, cluster_column: str = CLUSTER_COLUMN) -> pd.DataFrame:
    """Merge per-school outcome rates computed from respondents onto the school table."""
    left = schools.copy()
    left[cluster_column] = left[cluster_column].astype(str)
    right = rates.copy()
    right[cluster_column] = right[cluster_column].astype(str)
    overlap = [c for c in right.columns if c != cluster_column and c in left.columns]
    if overlap:
        logger.info("Replacing precomputed school columns with respondent aggregates: %s", overlap)
        left = left.drop(columns=overlap)
    merged = left.merge(right, on=cluster_column, how="left", validate="one_to_one")
    if "n_respondents" in merged.columns:
        no_respondents = merged.loc[merged["n_respondents"].isna(), cluster_column].tolist()
        if no_respondents:
            logger.warning("Schools without respondents: %s", no_respondents)
    return merged
