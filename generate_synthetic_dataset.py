from __future__ import annotations

from pathlib import Path

import numpy as np
import pandas as pd

from gbv_methods.constants import (
    CIRCUMSTANCES,
    ITEMIZED_INCIDENT_COLUMNS,
    LIFETIME_COLUMNS,
)

RAW_MISSING, RAW_REFUSED, RAW_DONT_KNOW = -99, -98, -97


def school_ids(n_schools: int) -> list:
    return [f"S{i:02d}" for i in range(1, n_schools + 1)]


def make_treatment_mapping(n_schools: int = 20, seed: int = 42) -> pd.DataFrame:
    """Assign half of the schools to the intervention arm."""
    rng = np.random.default_rng(seed)
    ids = school_ids(n_schools)
    arms = np.zeros(n_schools, dtype=int)
    arms[rng.permutation(n_schools)[: n_schools // 2]] = 1
    return pd.DataFrame({"school_id": ids, "treatment": arms})


def make_respondent_dataset(n_schools: int = 20, min_size: int = 15, max_size: int = 40, seed: int = 42) -> pd.DataFrame:
    rng = np.random.default_rng(seed)
    rows = []
    respondent_id = 1

    for school in school_ids(n_schools):
        size = int(rng.integers(min_size, max_size + 1))
        # school-level incident propensity gives within-cluster correlation
        school_rate = float(np.clip(rng.normal(0.25, 0.08), 0.02, 0.6))

        for _ in range(size):
            female = int(rng.random() < 0.5)
            age = int(rng.integers(12, 18))
            row = {
                "respondent_id": respondent_id,
                "school_id": school,
                "age": age,
                "female": female,
                "grade": int(np.clip(age - 6 + rng.integers(-1, 2), 5, 12)),
                "lives_with_both_parents": int(rng.random() < 0.6),
                "household_assets": round(float(rng.normal(0, 1)), 3),
                "attitude_score": round(float(rng.normal(20 + 2 * female, 4)), 1),
            }
            respondent_id += 1

            exposed = rng.random() < school_rate + 0.05 * female
            true_counts = rng.poisson(0.6, size=len(ITEMIZED_INCIDENT_COLUMNS)) if exposed else np.zeros(
                len(ITEMIZED_INCIDENT_COLUMNS), dtype=int
            )
            # rarer types are less likely
            true_counts[-2:] = true_counts[-2:] * (rng.random(2) < 0.3)
            total = int(true_counts.sum())

            for col, value in zip(ITEMIZED_INCIDENT_COLUMNS, true_counts):
                row[col] = int(value)

            u = rng.random()
            if u < 0.6:
                lifetime = total
            elif u < 0.8:
                # reads the aggregate question as "any other times"
                lifetime = 0
            elif u < 0.9:
                lifetime = total + int(rng.integers(1, 3))
            else:
                lifetime = RAW_DONT_KNOW
            row[LIFETIME_COLUMNS[0]] = lifetime
            row[LIFETIME_COLUMNS[1]] = int(rng.poisson(0.1)) if rng.random() < 0.9 else RAW_REFUSED

            # item non-response
            for col in ITEMIZED_INCIDENT_COLUMNS + LIFETIME_COLUMNS:
                v = rng.random()
                if v < 0.03:
                    row[col] = RAW_MISSING
                elif v < 0.05:
                    row[col] = RAW_REFUSED
                elif v < 0.06:
                    row[col] = RAW_DONT_KNOW

            # some respondents skip the whole module
            if rng.random() < 0.02:
                for col in ITEMIZED_INCIDENT_COLUMNS + LIFETIME_COLUMNS:
                    row[col] = RAW_MISSING

            rows.append(row)

    return pd.DataFrame(rows)


def make_school_dataset(n_schools: int = 20, seed: int = 42) -> pd.DataFrame:
    rng = np.random.default_rng(seed + 1)
    n_students = rng.integers(200, 1500, size=n_schools)
    n_teachers = np.maximum(rng.integers(5, 45, size=n_schools), 1)
    n_toilets = rng.integers(0, 20, size=n_schools)
    return pd.DataFrame({
        "school_id": school_ids(n_schools),
        "n_students": n_students,
        "n_female_students": np.round(n_students * rng.uniform(0.4, 0.6, size=n_schools)).astype(int),
        "n_teachers": n_teachers,
        "n_female_teachers": np.round(n_teachers * rng.uniform(0.2, 0.7, size=n_schools)).astype(int),
        "n_classrooms": rng.integers(6, 30, size=n_schools),
        "n_toilets": n_toilets,
        "n_female_toilets": np.round(n_toilets * rng.uniform(0.3, 0.6, size=n_schools)).astype(int),
        "setting": rng.choice(["urban", "rural"], size=n_schools, p=[0.4, 0.6]),
        "ownership": rng.choice(["public", "private", "faith-based"], size=n_schools, p=[0.6, 0.2, 0.2]),
        "lat": np.round(rng.uniform(-1.35, -1.20, size=n_schools), 5),
        "lon": np.round(rng.uniform(36.70, 36.95, size=n_schools), 5),
    })


def make_safety_survey(num_surveys: int = 30, num_locs: int = 5, seed: int = 42) -> pd.DataFrame:
    """Perceived safety (0-10) for each respondent, location and circumstance.

    Each respondent has an overall mean drawn from U(2, 8); being alone lowers
    it by 1 and being out at night by 2, plus N(0, 1) noise, floored at 0.
    """
    rng = np.random.default_rng(seed)
    overall_means = rng.uniform(2, 8, size=num_surveys)
    offsets = {"today": 0.0, "alone": -1.0, "night": -2.0}

    rows = []
    for circumstance in CIRCUMSTANCES:
        for i in range(num_surveys):
            noise = rng.normal(size=num_locs)
            for loc in range(num_locs):
                rows.append({
                    "id": i + 1,
                    "location": loc + 1,
                    "safety": max(overall_means[i] + offsets[circumstance] + noise[loc], 0.0),
                    "circumstance": circumstance,
                })
    return pd.DataFrame(rows)


def make_locations(num_locs: int = 5, seed: int = 42) -> pd.DataFrame:
    rng = np.random.default_rng(seed + 2)
    return pd.DataFrame({
        "location": np.arange(1, num_locs + 1),
        "lat": np.round(rng.uniform(-1.30, -1.26, size=num_locs), 5),
        "lon": np.round(rng.uniform(36.78, 36.84, size=num_locs), 5),
    })


def make_amenities(n_per_type: int = 8, seed: int = 42) -> pd.DataFrame:
    rng = np.random.default_rng(seed + 3)
    frames = []
    for amenity_type in ["police station", "street light", "bar"]:
        frames.append(pd.DataFrame({
            "amenity_type": amenity_type,
            "lat": np.round(rng.uniform(-1.31, -1.25, size=n_per_type), 5),
            "lon": np.round(rng.uniform(36.77, 36.85, size=n_per_type), 5),
        }))
    return pd.concat(frames, ignore_index=True)


if __name__ == "__main__":
    out = Path("data")
    out.mkdir(exist_ok=True)
    make_respondent_dataset().to_csv(out / "respondents.csv", index=False)
    make_treatment_mapping().to_csv(out / "treatment_arms.csv", index=False)
    make_school_dataset().to_csv(out / "schools.csv", index=False)
    make_safety_survey().to_csv(out / "survey_data.csv", index=False)
    make_locations().to_csv(out / "locations.csv", index=False)
    make_amenities().to_csv(out / "amenities.csv", index=False)
    print("Synthetic datasets written to", str(out.resolve()))
