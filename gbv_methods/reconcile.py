"""Reconcile contradictory self-reports into one incident count per respondent.

Respondents answer both itemized questions (one per incident type) and
aggregate "how many times in total" questions. The two sources often disagree:
someone may describe an incident under an item and then answer 0 to the
lifetime question, reading it as "any other times". The reconciled count is the
maximum over the independent aggregates, so affirmative evidence given anywhere
is never under-counted and agreeing sources are not added together. This is a
counting policy, not a statistical estimator.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Sequence

import numpy as np
import pandas as pd

from .constants import (
    ANY_INCIDENT_COLUMN,
    INCIDENT_COUNT_COLUMN,
    ITEMIZED_INCIDENT_COLUMNS,
    LIFETIME_COLUMNS,
    Sentinel,
)

logger = logging.getLogger(__name__)


@dataclass
class ReconciliationPlan:
    """Which normalized columns feed the reconciled count.

    The itemized columns may include the lifetime columns; the cross-check
    total always leaves them out.
    """

    itemized_columns: List[str]
    lifetime_columns: List[str]

    def __post_init__(self):
        if len(self.lifetime_columns) != 2:
            raise ValueError(f"Expected two lifetime columns, got {self.lifetime_columns}")
        if not self.itemized_columns:
            raise ValueError("At least one itemized column is required")

    @property
    def cross_check_columns(self) -> List[str]:
        return [c for c in self.itemized_columns if c not in self.lifetime_columns]

    @property
    def relevant_columns(self) -> List[str]:
        return list(dict.fromkeys(self.itemized_columns + self.lifetime_columns))


DEFAULT_PLAN = ReconciliationPlan(list(ITEMIZED_INCIDENT_COLUMNS), list(LIFETIME_COLUMNS))


def _valid_sum(values: np.ndarray) -> np.ndarray:
    return np.where(values >= 0, values, 0).sum(axis=1)


def reconcile_counts(df: pd.DataFrame, plan: ReconciliationPlan = DEFAULT_PLAN) -> pd.Series:
    """Reconciled incident count per row of a normalized respondent table.

    count = max(cross_check_total, itemized_total, lifetime_1, lifetime_2), with
    sentinel lifetime answers contributing 0. Rows with no valid answer in any
    relevant column get Sentinel.NO_INFORMATION, so 0 always means a confirmed
    report of no incidents.
    """
    missing = [c for c in plan.relevant_columns if c not in df.columns]
    if missing:
        raise ValueError(f"Cannot reconcile counts, missing columns: {', '.join(missing)}")

    itemized = df[plan.itemized_columns].to_numpy(dtype=np.int64)
    cross_cols = plan.cross_check_columns
    if cross_cols:
        cross_check = df[cross_cols].to_numpy(dtype=np.int64)
    else:
        cross_check = np.zeros((len(df), 1), dtype=np.int64)
    lifetime = df[plan.lifetime_columns].to_numpy(dtype=np.int64)
    relevant = df[plan.relevant_columns].to_numpy(dtype=np.int64)

    itemized_total = _valid_sum(itemized)
    cross_check_total = _valid_sum(cross_check)
    lifetime_valid = np.where(lifetime >= 0, lifetime, 0)

    counts = np.column_stack([cross_check_total, itemized_total, lifetime_valid]).max(axis=1)
    has_information = (relevant >= 0).any(axis=1)
    counts = np.where(has_information, counts, int(Sentinel.NO_INFORMATION))
    return pd.Series(counts.astype(np.int64), index=df.index, name=INCIDENT_COUNT_COLUMN)


def reconcile_row(
    itemized: Sequence[int],
    lifetime: Sequence[int],
    itemized_includes_lifetime: bool = False,
) -> int:
    """Reconcile a single respondent given normalized values.

    With ``itemized_includes_lifetime`` the last two itemized values are the
    lifetime answers and are left out of the cross-check total.
    """
    if len(lifetime) != 2:
        raise ValueError(f"Expected two lifetime values, got {len(lifetime)}")
    items = [int(v) for v in itemized]
    cross = items[:-2] if itemized_includes_lifetime else items
    relevant = items + [int(v) for v in lifetime]
    if not any(v >= 0 for v in relevant):
        return int(Sentinel.NO_INFORMATION)
    itemized_total = sum(v for v in items if v >= 0)
    cross_check_total = sum(v for v in cross if v >= 0)
    return max(cross_check_total, itemized_total, *(max(int(v), 0) for v in lifetime))


def add_incident_columns(df: pd.DataFrame, plan: ReconciliationPlan = DEFAULT_PLAN) -> pd.DataFrame:
    """Return a copy with the reconciled count and a nullable any-incident flag."""
    out = df.copy()
    counts = reconcile_counts(out, plan)
    out[INCIDENT_COUNT_COLUMN] = counts
    flag = pd.Series((counts > 0).astype(int), index=out.index, dtype="Int64")
    out[ANY_INCIDENT_COLUMN] = flag.mask(counts < 0)
    n_no_info = int((counts < 0).sum())
    if n_no_info:
        logger.info("%d of %d respondents gave no usable incident answer", n_no_info, len(out))
    return out


def reconciliation_report(df: pd.DataFrame, plan: ReconciliationPlan = DEFAULT_PLAN) -> pd.DataFrame:
    """Tabulate which source determined each reconciled count.

    A respondent can be counted under several sources when they tie. Useful for
    auditing how often the lifetime questions disagree with the itemized ones.
    """
    counts = reconcile_counts(df, plan)
    itemized = df[plan.itemized_columns].clip(lower=0).sum(axis=1)
    cross_cols = plan.cross_check_columns
    cross = df[cross_cols].clip(lower=0).sum(axis=1) if cross_cols else pd.Series(0, index=df.index)
    sources = {
        "cross_check_total": cross,
        "itemized_total": itemized,
        plan.lifetime_columns[0]: df[plan.lifetime_columns[0]].clip(lower=0),
        plan.lifetime_columns[1]: df[plan.lifetime_columns[1]].clip(lower=0),
    }
    informative = counts >= 0
    positive = informative & (counts > 0)
    rows = []
    for name, values in sources.items():
        rows.append({
            "source": name,
            "determines_max": int((positive & (values == counts)).sum()),
            "below_max": int((positive & (values < counts)).sum()),
        })
    report = pd.DataFrame(rows)
    report.attrs["n_informative"] = int(informative.sum())
    report.attrs["n_no_information"] = int((~informative).sum())
    return report
