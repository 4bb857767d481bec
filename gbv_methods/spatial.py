from __future__ import annotations

import logging
import warnings
from dataclasses import dataclass
from typing import Dict, List

import numpy as np
import pandas as pd
import statsmodels.formula.api as smf
from sklearn.neighbors import BallTree
from statsmodels.tools.sm_exceptions import ConvergenceWarning

from .constants import (
    DEFAULT_RADIUS_KM,
    EARTH_RADIUS_KM,
    LATITUDE_COLUMN,
    LONGITUDE_COLUMN,
    SAFETY_FORMULA,
)

logger = logging.getLogger(__name__)


def haversine_km(lat1, lon1, lat2, lon2):
    """Vectorized great-circle distance in km."""
    lat1, lon1, lat2, lon2 = map(np.radians, [lat1, lon1, lat2, lon2])
    dlat = lat2 - lat1
    dlon = lon2 - lon1
    a = np.sin(dlat / 2) ** 2 + np.cos(lat1) * np.cos(lat2) * np.sin(dlon / 2) ** 2
    return EARTH_RADIUS_KM * 2 * np.arcsin(np.sqrt(np.clip(a, 0, 1)))


def _coords_rad(frame: pd.DataFrame) -> np.ndarray:
    coords = frame[[LATITUDE_COLUMN, LONGITUDE_COLUMN]].to_numpy(dtype=float)
    if not np.isfinite(coords).all():
        raise ValueError("Coordinates must be finite")
    return np.radians(coords)


def nearest_distance_km(points: pd.DataFrame, targets: pd.DataFrame) -> np.ndarray:
    """Distance from each point to its nearest target."""
    if targets.empty:
        raise ValueError("No target locations to measure distance to")
    tree = BallTree(_coords_rad(targets), metric="haversine")
    dists, _ = tree.query(_coords_rad(points), k=1)
    return dists.ravel() * EARTH_RADIUS_KM


def count_within_km(points: pd.DataFrame, targets: pd.DataFrame, radius_km: float) -> np.ndarray:
    """Number of targets within ``radius_km`` of each point."""
    if radius_km <= 0:
        raise ValueError("radius_km must be positive")
    if targets.empty:
        return np.zeros(len(points), dtype=int)
    tree = BallTree(_coords_rad(targets), metric="haversine")
    return tree.query_radius(_coords_rad(points), r=radius_km / EARTH_RADIUS_KM, count_only=True)


def build_location_features(
    locations: pd.DataFrame,
    amenities: pd.DataFrame,
    radius_km: float = DEFAULT_RADIUS_KM,
    location_column: str = "location",
    type_column: str = "amenity_type",
) -> pd.DataFrame:
    """Distance to the nearest amenity of each type and the count within a radius.

    Returns one row per location with ``dist_<type>_km`` and
    ``n_<type>_nearby`` columns.
    """
    features = locations[[location_column]].copy()
    for amenity_type, group in amenities.groupby(type_column, sort=True):
        key = str(amenity_type).strip().lower().replace(" ", "_")
        features[f"dist_{key}_km"] = nearest_distance_km(locations, group)
        features[f"n_{key}_nearby"] = count_within_km(locations, group, radius_km)
    logger.info(
        "Built %d spatial features for %d locations", features.shape[1] - 1, len(features)
    )
    return features


def safety_formula(
    features: pd.DataFrame,
    base: str = SAFETY_FORMULA,
    location_column: str = "location",
) -> str:
    """Extend the circumstance-only formula with location feature terms.

    Features vary only between locations, so at most ``n_locations - 1`` of
    them can be estimated next to the intercept. Distances are tried before
    counts and a term is kept only if it raises the rank of the location-level
    design; constant or collinear features are left out.
    """
    candidates = [c for c in features.columns if c.startswith("dist_")]
    candidates += [c for c in features.columns if c.startswith("n_") and c not in candidates]
    design = np.ones((len(features), 1))
    terms: List[str] = []
    for col in candidates:
        if col == location_column:
            continue
        trial = np.column_stack([design, features[col].to_numpy(dtype=float)])
        if np.linalg.matrix_rank(trial) > design.shape[1]:
            design = trial
            terms.append(col)
    skipped = len(candidates) - len(terms)
    if skipped:
        logger.info("Left %d constant or collinear location feature(s) out of the model", skipped)
    return " + ".join([base] + terms)


@dataclass
class MixedModelResult:
    formula: str
    group: str
    fe_params: Dict[str, float]
    pvalues: Dict[str, float]
    group_variance: float
    residual_variance: float
    llf: float
    converged: bool
    n_obs: int
    n_groups: int
    summary_text: str

    def coefficient_table(self) -> pd.DataFrame:
        keys: List[str] = list(self.fe_params)
        return pd.DataFrame({
            "term": keys,
            "coef": [self.fe_params[k] for k in keys],
            "p_value": [self.pvalues.get(k, float("nan")) for k in keys],
        })


def fit_safety_mixed_model(
    survey: pd.DataFrame,
    formula: str = SAFETY_FORMULA,
    group: str = "id",
    reml: bool = True,
) -> MixedModelResult:
    """Linear mixed model with a random intercept per respondent.

    Respondents rate several locations under several circumstances, so their
    answers share a personal baseline; the random intercept absorbs it.
    """
    if group not in survey.columns:
        raise ValueError(f"Survey has no grouping column {group!r}")
    data = survey.dropna()
    if data[group].nunique() < 2:
        raise ValueError("Need at least two respondents for a random intercept")

    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter("always", ConvergenceWarning)
        model = smf.mixedlm(formula, data=data, groups=data[group])
        res = model.fit(reml=reml)
    for w in caught:
        if issubclass(w.category, ConvergenceWarning):
            logger.warning("Mixed model: %s", w.message)
        else:
            warnings.warn(w.message, w.category, stacklevel=2)

    fe = {k: float(v) for k, v in res.fe_params.items()}
    return MixedModelResult(
        formula=formula,
        group=group,
        fe_params=fe,
        pvalues={k: float(res.pvalues[k]) for k in fe},
        group_variance=float(np.asarray(res.cov_re)[0, 0]),
        residual_variance=float(res.scale),
        llf=float(res.llf),
        converged=bool(res.converged),
        n_obs=int(res.nobs),
        n_groups=int(data[group].nunique()),
        summary_text=str(res.summary()),
    )
