from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
import statsmodels.api as sm

logger = logging.getLogger(__name__)

CRITERIA = ("aic", "bic")


@dataclass
class StepwiseResult:
    outcome: str
    selected: List[str]
    history: pd.DataFrame
    params: Dict[str, float]
    pvalues: Dict[str, float]
    bse: Dict[str, float]
    conf_int: Dict[str, Tuple[float, float]]
    summary_text: str
    y_true: np.ndarray = field(repr=False)
    y_fitted: np.ndarray = field(repr=False)


def _fit(y: pd.Series, data: pd.DataFrame, terms: List[str], weights: Optional[pd.Series]):
    X = data[terms].astype(float).copy()
    X.insert(0, "const", 1.0)
    model = sm.WLS(y, X, weights=weights) if weights is not None else sm.OLS(y, X)
    return model.fit()


def forward_stepwise(
    df: pd.DataFrame,
    outcome: str,
    candidates: Sequence[str],
    weights: Optional[str] = None,
    criterion: str = "aic",
    max_steps: Optional[int] = None,
) -> StepwiseResult:
    """Greedy forward selection of numeric predictors by AIC or BIC.

    Starts from the intercept-only model and at each step adds the candidate
    that lowers the criterion most; stops when no candidate improves it.
    Rows with a missing outcome, weight or candidate value are dropped up front
    so every model in the path is fit on the same schools.
    """
    if criterion not in CRITERIA:
        raise ValueError(f"criterion must be one of {CRITERIA}, got {criterion!r}")

    cols = [outcome] + list(candidates) + ([weights] if weights else [])
    missing = [c for c in cols if c not in df.columns]
    if missing:
        raise ValueError(f"Columns not found: {', '.join(missing)}")
    data = df[cols].dropna()
    if weights:
        data = data[data[weights] > 0]
    if data.empty:
        raise ValueError("No complete rows for stepwise selection")

    y = data[outcome].astype(float)
    w = data[weights].astype(float) if weights else None
    # constant columns can never enter a model
    remaining = [c for c in candidates if data[c].nunique() > 1]

    selected: List[str] = []
    current = _fit(y, data, [], w)
    best_score = float(getattr(current, criterion))
    history = [{"step": 0, "added": None, criterion: best_score}]
    limit = len(remaining) if max_steps is None else max_steps

    # keep at least one residual degree of freedom
    while remaining and len(selected) < limit and len(selected) + 2 < len(data):
        scores = []
        for cand in remaining:
            try:
                res = _fit(y, data, selected + [cand], w)
            except (np.linalg.LinAlgError, ValueError):
                continue
            score = float(getattr(res, criterion))
            if np.isfinite(score):
                scores.append((score, cand, res))
        if not scores:
            break
        score, cand, res = min(scores, key=lambda t: t[0])
        if score >= best_score:
            break
        selected.append(cand)
        remaining.remove(cand)
        best_score, current = score, res
        history.append({"step": len(selected), "added": cand, criterion: score})
        logger.debug("Step %d: added %s (%s=%.3f)", len(selected), cand, criterion, score)

    logger.info("Forward selection kept %d of %d candidates: %s", len(selected), len(candidates), selected)

    ci_df = current.conf_int()
    return StepwiseResult(
        outcome=outcome,
        selected=selected,
        history=pd.DataFrame(history),
        params={k: float(v) for k, v in current.params.items()},
        pvalues={k: float(v) for k, v in current.pvalues.items()},
        bse={k: float(v) for k, v in current.bse.items()},
        conf_int={idx: (float(row[0]), float(row[1])) for idx, row in ci_df.iterrows()},
        summary_text=str(current.summary()),
        y_true=y.to_numpy(),
        y_fitted=np.asarray(current.fittedvalues),
    )


def coefficient_table(result: StepwiseResult) -> pd.DataFrame:
    keys = list(result.params.keys())
    return pd.DataFrame({
        "term": keys,
        "coef": [result.params[k] for k in keys],
        "std_err": [result.bse.get(k, float("nan")) for k in keys],
        "p_value": [result.pvalues.get(k, float("nan")) for k in keys],
        "ci_low": [result.conf_int.get(k, (float("nan"), float("nan")))[0] for k in keys],
        "ci_high": [result.conf_int.get(k, (float("nan"), float("nan")))[1] for k in keys],
    })
