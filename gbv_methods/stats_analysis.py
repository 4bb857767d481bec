from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional

import numpy as np
import pandas as pd
import statsmodels.api as sm

from .constants import (
    CLUSTER_COLUMN,
    ENGLISH_LABELS,
    INCIDENT_COUNT_COLUMN,
    MIN_SCHOOLS_FOR_REGRESSION,
    SIGNIFICANCE_LEVEL,
    TREATMENT_COLUMN,
)

logger = logging.getLogger(__name__)

NOT_APPLICABLE = "not applicable"
UNDEFINED = "undefined"


@dataclass
class AssociationResult:
    predictor: str
    predictor_english: str
    predictor_type: str
    test_method: str
    n_schools: int
    coef: Optional[float]
    direction: str
    p_value: Optional[float]
    significant: Optional[bool]
    status: str
    mean: Optional[float] = None
    min: Optional[float] = None
    max: Optional[float] = None
    std: Optional[float] = None


def _is_categorical(series: pd.Series) -> bool:
    return not pd.api.types.is_numeric_dtype(series) or pd.api.types.is_bool_dtype(series)


def _sort_by_p(df_res: pd.DataFrame) -> pd.DataFrame:
    if df_res.empty:
        return df_res
    return df_res.sort_values("p_value", na_position="last", kind="mergesort").reset_index(drop=True)


def scan_covariates(
    schools: pd.DataFrame,
    outcome: str,
    weight: str,
    predictors: Iterable[str],
) -> pd.DataFrame:
    """Screen school-level predictors of the outcome rate one at a time.

    Each predictor gets its own weighted simple regression (WLS, weights =
    respondents per school). This is a univariate screen: coefficients are not
    adjusted for the other predictors and carry no causal reading.

    Numeric predictors report the slope, its direction and p-value plus
    mean/min/max/std. Categorical predictors report the regression F-test
    p-value; their numeric summary and direction are not applicable. Degenerate
    regressions (constant predictor, too few schools) are reported as undefined.
    Rows are sorted by p-value with undefined rows last.
    """
    for col in (outcome, weight):
        if col not in schools.columns:
            raise ValueError(f"School table has no column {col!r}")

    results = []
    for predictor in predictors:
        if predictor not in schools.columns:
            logger.warning("Predictor %s not in school table, skipped", predictor)
            continue

        sub = schools[[outcome, weight, predictor]].dropna()
        sub = sub[sub[weight] > 0]
        y = sub[outcome].astype(float)
        w = sub[weight].astype(float)
        n = int(len(sub))
        label = ENGLISH_LABELS.get(predictor, predictor)

        if _is_categorical(schools[predictor]):
            x = sub[predictor].astype(str)
            result = AssociationResult(
                predictor=predictor,
                predictor_english=label,
                predictor_type="categorical",
                test_method="WLS F-test",
                n_schools=n,
                coef=None,
                direction=NOT_APPLICABLE,
                p_value=None,
                significant=None,
                status=UNDEFINED,
            )
            if n >= MIN_SCHOOLS_FOR_REGRESSION and x.nunique() >= 2:
                X = sm.add_constant(pd.get_dummies(x, drop_first=True, dtype=float), has_constant="add")
                try:
                    res = sm.WLS(y, X, weights=w).fit()
                    p = float(res.f_pvalue)
                except (np.linalg.LinAlgError, ValueError):
                    p = float("nan")
                if np.isfinite(p):
                    result.p_value = p
                    result.significant = bool(p < SIGNIFICANCE_LEVEL)
                    result.status = "ok"
        else:
            x = sub[predictor].astype(float)
            result = AssociationResult(
                predictor=predictor,
                predictor_english=label,
                predictor_type="numeric",
                test_method="WLS slope t-test",
                n_schools=n,
                coef=None,
                direction=UNDEFINED,
                p_value=None,
                significant=None,
                status=UNDEFINED,
                mean=float(x.mean()) if n else None,
                min=float(x.min()) if n else None,
                max=float(x.max()) if n else None,
                std=float(x.std()) if n > 1 else None,
            )
            if n >= MIN_SCHOOLS_FOR_REGRESSION and x.nunique() >= 2:
                X = sm.add_constant(x.to_frame(predictor), has_constant="add")
                try:
                    res = sm.WLS(y, X, weights=w).fit()
                    coef = float(res.params[predictor])
                    p = float(res.pvalues[predictor])
                except (np.linalg.LinAlgError, ValueError):
                    coef, p = float("nan"), float("nan")
                if np.isfinite(coef) and np.isfinite(p):
                    result.coef = coef
                    result.p_value = p
                    result.significant = bool(p < SIGNIFICANCE_LEVEL)
                    result.direction = "positive" if coef > 0 else "negative" if coef < 0 else "none"
                    result.status = "ok"

        if result.status == UNDEFINED:
            logger.info("Association with %s undefined (%d usable schools)", predictor, n)
        results.append(result.__dict__)

    return _sort_by_p(pd.DataFrame(results))


def school_outcome_rates(
    respondents: pd.DataFrame,
    cluster_column: str = CLUSTER_COLUMN,
    count_column: str = INCIDENT_COUNT_COLUMN,
) -> pd.DataFrame:
    """Per-school share of validly answering respondents who report any incident.

    A school where nobody gave a usable answer has an undefined rate (NaN with
    rate_status "undefined"), not 0.
    """
    counts = respondents[count_column]
    frame = pd.DataFrame({
        cluster_column: respondents[cluster_column].astype(str),
        "valid": (counts >= 0).astype(int),
        "positive": (counts > 0).astype(int),
    })
    agg = (
        frame.groupby(cluster_column)
        .agg(n_respondents=("valid", "size"), n_valid=("valid", "sum"), n_positive=("positive", "sum"))
        .reset_index()
    )
    defined = agg["n_valid"] > 0
    agg["outcome_rate"] = (agg["n_positive"] / agg["n_valid"].where(defined)).where(defined)
    agg["rate_status"] = np.where(defined, "ok", UNDEFINED)
    if (~defined).any():
        logger.warning("Outcome rate undefined for schools: %s", agg.loc[~defined, cluster_column].tolist())
    return agg


def baseline_balance(
    df: pd.DataFrame,
    covariates: Iterable[str],
    treatment_column: str = TREATMENT_COLUMN,
    cluster_column: str = CLUSTER_COLUMN,
    normalized_columns: Iterable[str] = (),
) -> pd.DataFrame:
    """Compare baseline covariates between arms of the cluster-randomized trial.

    The p-value is for the treatment coefficient of an OLS of the covariate on
    the arm indicator with standard errors clustered by school. Negative values
    in ``normalized_columns`` are non-answer sentinels and are dropped per
    covariate.
    """
    normalized = set(normalized_columns)
    rows: List[dict] = []
    for cov in covariates:
        if cov not in df.columns:
            logger.warning("Balance covariate %s not in respondent table, skipped", cov)
            continue
        sub = df[[cov, treatment_column, cluster_column]].dropna()
        if cov in normalized:
            sub = sub[sub[cov] >= 0]
        x = sub[cov].astype(float)
        arm = sub[treatment_column].astype(int)
        ctrl = x[arm == 0]
        trt = x[arm == 1]

        ctrl_mean = float(ctrl.mean()) if len(ctrl) else float("nan")
        trt_mean = float(trt.mean()) if len(trt) else float("nan")
        diff = trt_mean - ctrl_mean
        pooled_sd = float(np.sqrt((ctrl.var() + trt.var()) / 2)) if len(ctrl) > 1 and len(trt) > 1 else float("nan")
        std_diff = diff / pooled_sd if pooled_sd and np.isfinite(pooled_sd) else float("nan")

        p = float("nan")
        method = "OLS, school-clustered SE"
        if len(ctrl) and len(trt) and x.nunique() > 1:
            X = sm.add_constant(arm.astype(float).to_frame(treatment_column), has_constant="add")
            groups = pd.factorize(sub[cluster_column])[0]
            try:
                res = sm.OLS(x, X).fit(cov_type="cluster", cov_kwds={"groups": groups})
                p = float(res.pvalues[treatment_column])
            except (np.linalg.LinAlgError, ValueError):
                method = "test failed"
        else:
            method = "insufficient variation"

        rows.append({
            "covariate": cov,
            "covariate_english": ENGLISH_LABELS.get(cov, cov),
            "n_control": int(len(ctrl)),
            "n_treatment": int(len(trt)),
            "control_mean": ctrl_mean,
            "treatment_mean": trt_mean,
            "difference": diff,
            "std_difference": std_diff,
            "test_method": method,
            "p_value": p,
            "significant": bool(p < SIGNIFICANCE_LEVEL) if np.isfinite(p) else None,
        })

    return _sort_by_p(pd.DataFrame(rows))
