"""Tests for the within-cluster bootstrap of prevalence."""
import numpy as np
import pandas as pd
import pytest

from gbv_methods.bootstrap import (
    BootstrapResult,
    EmptyClusterError,
    bootstrap_by_arm,
    cluster_bootstrap,
    prevalence_from_clusters,
)
from gbv_methods.constants import Sentinel

NO_INFO = int(Sentinel.NO_INFORMATION)


@pytest.fixture
def trial_counts():
    """20 schools of 30 respondents with school-specific prevalence and some non-answers."""
    rng = np.random.default_rng(2024)
    counts, clusters = [], []
    for school in range(20):
        p = rng.uniform(0.1, 0.5)
        values = (rng.random(30) < p).astype(int) * rng.integers(1, 4, size=30)
        values[rng.random(30) < 0.05] = NO_INFO
        counts.extend(values.tolist())
        clusters.extend([f"S{school:02d}"] * 30)
    return np.array(counts), np.array(clusters)


def test_worked_example_single_repetition():
    cluster_a = np.array([1, 0, 0])
    cluster_b = np.array([0, 0])
    resampled = [cluster_a[[0, 0, 2]], cluster_b]
    assert prevalence_from_clusters(resampled) == (2, 5, pytest.approx(0.4))


def test_no_information_rows_leave_numerator_and_denominator():
    num, den, stat = prevalence_from_clusters([np.array([NO_INFO, NO_INFO]), np.array([1, 0])])
    assert (num, den) == (1, 2)
    assert stat == pytest.approx(0.5)


def test_zero_denominator_is_undefined_not_an_error():
    num, den, stat = prevalence_from_clusters([np.array([NO_INFO]), np.array([NO_INFO, NO_INFO])])
    assert (num, den) == (0, 0)
    assert np.isnan(stat)


def test_fixed_seed_is_reproducible(trial_counts):
    counts, clusters = trial_counts
    first = cluster_bootstrap(counts, clusters, n_reps=200, seed=99)
    second = cluster_bootstrap(counts, clusters, n_reps=200, seed=99)
    assert np.array_equal(first.replicates, second.replicates)
    assert (first.lower, first.upper) == (second.lower, second.upper)


def test_parallel_matches_serial(trial_counts):
    counts, clusters = trial_counts
    serial = cluster_bootstrap(counts, clusters, n_reps=60, seed=5, n_jobs=1)
    parallel = cluster_bootstrap(counts, clusters, n_reps=60, seed=5, n_jobs=2)
    assert np.array_equal(serial.replicates, parallel.replicates)


def test_result_shape_and_bounds(trial_counts):
    counts, clusters = trial_counts
    res = cluster_bootstrap(counts, clusters, n_reps=300, seed=1)
    assert isinstance(res, BootstrapResult)
    assert res.replicates.shape == (300,)
    assert res.n_clusters == 20
    assert res.n_undefined == 0
    assert 0 <= res.lower <= res.estimate <= res.upper <= 1
    valid = counts >= 0
    assert res.estimate == pytest.approx(np.mean(counts[valid] > 0))


def test_interval_is_stable_across_seeds_for_large_b(trial_counts):
    counts, clusters = trial_counts
    a = cluster_bootstrap(counts, clusters, n_reps=2000, seed=10)
    b = cluster_bootstrap(counts, clusters, n_reps=2000, seed=11)
    assert a.lower == pytest.approx(b.lower, abs=0.02)
    assert a.upper == pytest.approx(b.upper, abs=0.02)


def test_resampling_stays_within_clusters():
    # homogeneous clusters of equal size: every within-cluster resample keeps 50%
    counts = np.array([1, 1, 1, 0, 0, 0])
    clusters = np.array(["A", "A", "A", "B", "B", "B"])
    res = cluster_bootstrap(counts, clusters, n_reps=100, seed=3)
    assert np.allclose(res.replicates, 0.5)


def test_cluster_without_valid_answers_does_not_break_pooling():
    counts = np.array([NO_INFO, NO_INFO, NO_INFO, 1, 0])
    clusters = np.array(["A", "A", "A", "B", "B"])
    res = cluster_bootstrap(counts, clusters, n_reps=100, seed=4)
    assert res.n_undefined == 0
    assert np.isfinite(res.replicates).all()


def test_all_undefined_gives_no_interval():
    counts = np.array([NO_INFO, NO_INFO])
    res = cluster_bootstrap(counts, np.array(["A", "B"]), n_reps=20, seed=0)
    assert res.n_undefined == 20
    assert res.lower is None and res.upper is None
    assert res.estimate is None
    assert res.as_dict()["estimate"] is None


def test_empty_input_and_mismatched_lengths():
    with pytest.raises(EmptyClusterError):
        cluster_bootstrap(np.array([], dtype=int), np.array([]), n_reps=10)
    with pytest.raises(ValueError):
        cluster_bootstrap(np.array([1, 0]), np.array(["A"]), n_reps=10)
    with pytest.raises(ValueError):
        cluster_bootstrap(np.array([1, 0]), np.array(["A", "A"]), n_reps=0)


def test_bootstrap_by_arm(trial_counts):
    counts, clusters = trial_counts
    df = pd.DataFrame({"incident_count": counts, "school_id": clusters})
    df["treatment"] = df["school_id"].str[1:].astype(int) % 2
    table = bootstrap_by_arm(df, n_reps=100, seed=8)
    assert table["treatment"].tolist() == [0, 1]
    assert (table["n_clusters"] == 10).all()
    assert (table["lower"] <= table["upper"]).all()
