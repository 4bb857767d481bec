from __future__ import annotations

import argparse
import json
import logging
import math
import sys
from pathlib import Path

import numpy as np

from gbv_methods.bootstrap import bootstrap_by_arm, cluster_bootstrap
from gbv_methods.config import load_config, load_treatment_mapping
from gbv_methods.constants import (
    BALANCE_COVARIATES,
    DEFAULT_RADIUS_KM,
    INCIDENT_COUNT_COLUMN,
    OUTCOME_RATE_COLUMN,
    SAFETY_FORMULA,
    SCHOOL_CATEGORICAL_FEATURES,
    SCHOOL_RATIO_FEATURES,
    WEIGHT_COLUMN,
)
from gbv_methods.evaluation import evaluate_fit
from gbv_methods.preprocessing import (
    assign_treatment,
    attach_outcome_rates,
    default_item_codes,
    derive_school_features,
    normalize_responses,
    read_table,
)
from gbv_methods.reconcile import ReconciliationPlan, add_incident_columns, reconciliation_report
from gbv_methods.spatial import build_location_features, fit_safety_mixed_model, safety_formula
from gbv_methods.stats_analysis import baseline_balance, scan_covariates, school_outcome_rates
from gbv_methods.stepwise import coefficient_table, forward_stepwise

logger = logging.getLogger("gbv_methods.cli")


def run(args: argparse.Namespace) -> dict:
    cfg = load_config(args.config)
    if args.reps is not None:
        cfg.n_reps = args.reps
    if args.seed is not None:
        cfg.seed = args.seed
    if args.n_jobs is not None:
        cfg.n_jobs = args.n_jobs

    out_dir = Path(args.out)
    out_dir.mkdir(parents=True, exist_ok=True)
    results: dict = {}

    # Respondent-level baseline analysis
    respondents = read_table(args.respondents, "Respondent table")
    mapping = load_treatment_mapping(args.arms)
    respondents = assign_treatment(respondents, mapping, cfg.cluster_column, cfg.treatment_column)

    plan = ReconciliationPlan(cfg.itemized_columns, cfg.lifetime_columns)
    respondents = normalize_responses(respondents, default_item_codes(plan.relevant_columns))
    respondents = add_incident_columns(respondents, plan)
    respondents.to_csv(out_dir / "respondents_reconciled.csv", index=False)
    reconciliation_report(respondents, plan).to_csv(out_dir / "reconciliation_sources.csv", index=False)

    overall = cluster_bootstrap(
        respondents[INCIDENT_COUNT_COLUMN].to_numpy(),
        respondents[cfg.cluster_column].to_numpy(),
        n_reps=cfg.n_reps,
        seed=cfg.seed,
        confidence=cfg.confidence,
        n_jobs=cfg.n_jobs,
    )
    results["prevalence"] = overall.as_dict()
    by_arm = bootstrap_by_arm(
        respondents,
        cluster_column=cfg.cluster_column,
        treatment_column=cfg.treatment_column,
        n_reps=cfg.n_reps,
        seed=cfg.seed,
        confidence=cfg.confidence,
        n_jobs=cfg.n_jobs,
    )
    by_arm.to_csv(out_dir / "prevalence_by_arm.csv", index=False)
    results["prevalence_by_arm"] = by_arm.to_dict(orient="records")

    balance_covs = [c for c in BALANCE_COVARIATES if c in respondents.columns] + [INCIDENT_COUNT_COLUMN]
    balance = baseline_balance(
        respondents,
        balance_covs,
        treatment_column=cfg.treatment_column,
        cluster_column=cfg.cluster_column,
        normalized_columns=[INCIDENT_COUNT_COLUMN],
    )
    balance.to_csv(out_dir / "baseline_balance.csv", index=False)

    # School-level aggregation and screening
    rates = school_outcome_rates(respondents, cfg.cluster_column)
    if args.schools:
        schools = derive_school_features(read_table(args.schools, "School table"))
        schools = attach_outcome_rates(schools, rates, cfg.cluster_column)
    else:
        schools = rates
    schools.to_csv(out_dir / "schools_with_outcomes.csv", index=False)

    predictors = [c for c in list(SCHOOL_RATIO_FEATURES) + SCHOOL_CATEGORICAL_FEATURES if c in schools.columns]
    if predictors:
        scan = scan_covariates(schools, OUTCOME_RATE_COLUMN, WEIGHT_COLUMN, predictors)
        scan.to_csv(out_dir / "covariate_scan.csv", index=False)
        results["covariate_scan_top"] = scan.head(5).to_dict(orient="records")

        numeric = [c for c in predictors if c in SCHOOL_RATIO_FEATURES]
        if numeric:
            step = forward_stepwise(schools, OUTCOME_RATE_COLUMN, numeric, weights=WEIGHT_COLUMN)
            coefficient_table(step).to_csv(out_dir / "stepwise_coefficients.csv", index=False)
            step.history.to_csv(out_dir / "stepwise_history.csv", index=False)
            with open(out_dir / "stepwise_summary.txt", "w", encoding="utf-8") as f:
                f.write(step.summary_text)
            fit = evaluate_fit(step.y_true, step.y_fitted)
            fit.predicted_vs_actual.to_csv(out_dir / "predicted_vs_actual.csv", index=False)
            results["stepwise"] = {
                "selected": step.selected,
                "r2": fit.r2,
                "mae": fit.mae,
                "rmse": fit.rmse,
            }

    # Geospatial safety survey
    if args.survey:
        survey = read_table(args.survey, "Safety survey")
        formula = args.mixed_formula
        if args.locations and args.amenities:
            features = build_location_features(
                read_table(args.locations, "Location table"),
                read_table(args.amenities, "Amenity table"),
                radius_km=args.radius_km,
            )
            survey = survey.merge(features, on="location", how="left", validate="many_to_one")
            features.to_csv(out_dir / "location_features.csv", index=False)
            if formula is None:
                formula = safety_formula(features)
        mixed = fit_safety_mixed_model(survey, formula=formula or SAFETY_FORMULA)
        mixed.coefficient_table().to_csv(out_dir / "safety_mixed_model.csv", index=False)
        with open(out_dir / "safety_mixed_model.txt", "w", encoding="utf-8") as f:
            f.write(mixed.summary_text)
        results["safety_mixed_model"] = {
            "formula": mixed.formula,
            "fe_params": mixed.fe_params,
            "group_variance": mixed.group_variance,
            "converged": mixed.converged,
        }

    with open(out_dir / "results_summary.json", "w", encoding="utf-8") as f:
        json.dump(json_safe(results), f, ensure_ascii=False, indent=2, allow_nan=False, default=str)
    return results


def json_safe(obj):
    """Replace undefined floats (NaN, inf) with None and numpy scalars with Python ones."""
    if isinstance(obj, dict):
        return {k: json_safe(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [json_safe(v) for v in obj]
    if isinstance(obj, np.generic):
        obj = obj.item()
    if isinstance(obj, float) and not math.isfinite(obj):
        return None
    return obj


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="GBV prevention trial baseline and spatial analysis")
    parser.add_argument("--respondents", default="data/respondents.csv", help="Individual-level respondent CSV")
    parser.add_argument("--arms", default="data/treatment_arms.csv", help="School to treatment arm mapping (CSV or JSON)")
    parser.add_argument("--schools", default=None, help="School-level covariate CSV")
    parser.add_argument("--survey", default=None, help="Safety perception survey CSV")
    parser.add_argument("--locations", default=None, help="Survey location coordinates CSV")
    parser.add_argument("--amenities", default=None, help="Amenity coordinates CSV")
    parser.add_argument("--radius_km", type=float, default=DEFAULT_RADIUS_KM, help="Radius for amenity counts (km)")
    parser.add_argument(
        "--mixed_formula",
        default=None,
        help="Formula for the safety mixed model (default: circumstance plus the location features)",
    )
    parser.add_argument("--config", default=None, help="JSON file overriding analysis settings")
    parser.add_argument("--out", default="baseline_results", help="Output directory")
    parser.add_argument("--reps", type=int, default=None, help="Bootstrap repetitions")
    parser.add_argument("--seed", type=int, default=None, help="Random seed")
    parser.add_argument("--n_jobs", type=int, default=None, help="Parallel jobs for the bootstrap")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        results = run(args)
    except FileNotFoundError as exc:
        logger.error("%s", exc)
        return 2

    prev = results["prevalence"]
    if prev["lower"] is None:
        print("Prevalence: undefined (no valid answers in any bootstrap repetition)")
    else:
        print(
            f"Prevalence: {prev['estimate']:.3f} "
            f"({prev['confidence']:.0%} CI {prev['lower']:.3f}-{prev['upper']:.3f}, "
            f"{prev['n_clusters']} schools, {prev['n_reps']} repetitions)"
        )
    print("Done. Output directory:", str(Path(args.out)))
    return 0


if __name__ == "__main__":
    sys.exit(main())
