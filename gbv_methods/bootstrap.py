from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from joblib import Parallel, delayed

from .constants import (
    CLUSTER_COLUMN,
    DEFAULT_BOOTSTRAP_REPS,
    DEFAULT_CONFIDENCE,
    INCIDENT_COUNT_COLUMN,
    TREATMENT_COLUMN,
)

logger = logging.getLogger(__name__)


class EmptyClusterError(ValueError):
    """A cluster has no respondents to resample from."""


@dataclass
class BootstrapResult:
    # None when no respondent gave a valid answer
    estimate: Optional[float]
    lower: Optional[float]
    upper: Optional[float]
    replicates: np.ndarray
    n_undefined: int
    n_clusters: int
    n_reps: int
    confidence: float

    def as_dict(self) -> Dict:
        return {
            "estimate": self.estimate,
            "lower": self.lower,
            "upper": self.upper,
            "n_undefined": self.n_undefined,
            "n_clusters": self.n_clusters,
            "n_reps": self.n_reps,
            "confidence": self.confidence,
        }


def prevalence_from_clusters(clusters: Sequence[np.ndarray]) -> Tuple[int, int, float]:
    """Pooled prevalence over clusters of reconciled counts.

    Negative (no information) entries leave both numerator and denominator.
    Numerators and denominators are summed across clusters before dividing, so
    a cluster with no valid answers contributes 0/0 without breaking the ratio.
    Returns NaN as the statistic when the pooled denominator is 0.
    """
    numerator = 0
    denominator = 0
    for values in clusters:
        values = np.asarray(values)
        valid = values >= 0
        numerator += int(np.count_nonzero(values[valid] > 0))
        denominator += int(np.count_nonzero(valid))
    statistic = numerator / denominator if denominator > 0 else float("nan")
    return numerator, denominator, statistic


def split_by_cluster(counts: Sequence[int], clusters: Sequence) -> List[np.ndarray]:
    counts = np.asarray(counts)
    clusters = np.asarray(clusters)
    if counts.shape[0] != clusters.shape[0]:
        raise ValueError(f"Got {counts.shape[0]} counts but {clusters.shape[0]} cluster labels")
    if counts.size == 0:
        raise EmptyClusterError("No respondents to resample")
    labels = pd.unique(clusters)
    groups = [counts[clusters == label] for label in labels]
    return groups


def _one_replicate(groups: Sequence[np.ndarray], seed_seq: np.random.SeedSequence) -> float:
    rng = np.random.default_rng(seed_seq)
    resampled = [g[rng.integers(0, g.shape[0], size=g.shape[0])] for g in groups]
    return prevalence_from_clusters(resampled)[2]


def cluster_bootstrap(
    counts: Sequence[int],
    clusters: Sequence,
    n_reps: int = DEFAULT_BOOTSTRAP_REPS,
    seed: Optional[int] = None,
    confidence: float = DEFAULT_CONFIDENCE,
    n_jobs: int = 1,
) -> BootstrapResult:
    """Percentile interval for prevalence from a within-cluster bootstrap.

    Each repetition resamples every cluster's respondents with replacement to
    the cluster's own size, keeping the design's clustering. Repetition i draws
    from the i-th child of ``SeedSequence(seed)``, so results are identical for
    a fixed seed whatever ``n_jobs`` is. Repetitions with an undefined
    statistic are counted and left out of the percentiles.
    """
    if n_reps < 1:
        raise ValueError("n_reps must be at least 1")
    if not 0 < confidence < 1:
        raise ValueError("confidence must be between 0 and 1")

    groups = split_by_cluster(counts, clusters)
    empty = [i for i, g in enumerate(groups) if g.shape[0] == 0]
    if empty:
        raise EmptyClusterError(f"Clusters at positions {empty} have no respondents")

    _, denominator, estimate = prevalence_from_clusters(groups)
    children = np.random.SeedSequence(seed).spawn(n_reps)

    if n_jobs == 1:
        stats = [_one_replicate(groups, child) for child in children]
    else:
        stats = Parallel(n_jobs=n_jobs)(delayed(_one_replicate)(groups, child) for child in children)
    replicates = np.asarray(stats, dtype=float)

    defined = replicates[np.isfinite(replicates)]
    n_undefined = int(replicates.size - defined.size)
    if n_undefined:
        logger.warning("%d of %d bootstrap repetitions had no valid answers", n_undefined, n_reps)

    alpha = (1 - confidence) / 2
    if defined.size:
        lower, upper = (float(v) for v in np.percentile(defined, [100 * alpha, 100 * (1 - alpha)]))
    else:
        lower = upper = None

    return BootstrapResult(
        estimate=float(estimate) if denominator > 0 else None,
        lower=lower,
        upper=upper,
        replicates=replicates,
        n_undefined=n_undefined,
        n_clusters=len(groups),
        n_reps=n_reps,
        confidence=confidence,
    )


def bootstrap_by_arm(
    df: pd.DataFrame,
    count_column: str = INCIDENT_COUNT_COLUMN,
    cluster_column: str = CLUSTER_COLUMN,
    treatment_column: str = TREATMENT_COLUMN,
    n_reps: int = DEFAULT_BOOTSTRAP_REPS,
    seed: Optional[int] = None,
    confidence: float = DEFAULT_CONFIDENCE,
    n_jobs: int = 1,
) -> pd.DataFrame:
    """Prevalence and cluster-bootstrap interval for each treatment arm."""
    rows = []
    for offset, (arm, arm_df) in enumerate(df.groupby(treatment_column, sort=True)):
        arm_seed = None if seed is None else seed + offset
        res = cluster_bootstrap(
            arm_df[count_column].to_numpy(),
            arm_df[cluster_column].to_numpy(),
            n_reps=n_reps,
            seed=arm_seed,
            confidence=confidence,
            n_jobs=n_jobs,
        )
        rows.append({treatment_column: arm, "n_respondents": len(arm_df), **res.as_dict()})
    return pd.DataFrame(rows)
