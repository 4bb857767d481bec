from __future__ import annotations

from enum import IntEnum


class Sentinel(IntEnum):
    """Normalized codes for non-answers. Valid responses are always >= 0."""

    MISSING = -1
    REFUSED = -2
    DONT_KNOW = -3
    # Reconciled count only: no usable answer in any contributing column
    NO_INFORMATION = -4


# Raw codes used by the baseline questionnaire export
RAW_MISSING_CODES = (-99, "", "na", "n/a", ".")
RAW_REFUSED_CODES = (-98, "refused", "ref")
RAW_DONT_KNOW_CODES = (-97, "don't know", "dont know", "dk")


# Respondent table columns
RESPONDENT_ID_COLUMN = "respondent_id"
CLUSTER_COLUMN = "school_id"
TREATMENT_COLUMN = "treatment"
INCIDENT_COUNT_COLUMN = "incident_count"
ANY_INCIDENT_COLUMN = "any_incident"

# Itemized incident-type questions (number of times in lifetime)
ITEMIZED_INCIDENT_COLUMNS = [
    "touched_sexually",
    "forced_kiss",
    "verbal_sexual_harassment",
    "shown_sexual_images",
    "attempted_forced_sex",
    "forced_sex",
]

# Aggregate "how many times in total" questions
LIFETIME_COLUMNS = [
    "lifetime_incidents",
    "lifetime_incidents_other",
]

# Baseline covariates checked for balance between arms
BALANCE_COVARIATES = [
    "age",
    "female",
    "grade",
    "lives_with_both_parents",
    "household_assets",
    "attitude_score",
]


# School table columns
SCHOOL_COUNT_COLUMNS = [
    "n_students",
    "n_female_students",
    "n_teachers",
    "n_female_teachers",
    "n_classrooms",
    "n_toilets",
    "n_female_toilets",
]

# derived column -> (numerator, denominator)
SCHOOL_RATIO_FEATURES = {
    "students_per_teacher": ("n_students", "n_teachers"),
    "students_per_classroom": ("n_students", "n_classrooms"),
    "students_per_toilet": ("n_students", "n_toilets"),
    "female_student_share": ("n_female_students", "n_students"),
    "female_teacher_share": ("n_female_teachers", "n_teachers"),
    "female_toilet_share": ("n_female_toilets", "n_toilets"),
}

SCHOOL_CATEGORICAL_FEATURES = [
    "setting",
    "ownership",
]

OUTCOME_RATE_COLUMN = "outcome_rate"
WEIGHT_COLUMN = "n_valid"


# Inference defaults
DEFAULT_BOOTSTRAP_REPS = 1000
DEFAULT_CONFIDENCE = 0.95
SIGNIFICANCE_LEVEL = 0.05
MIN_SCHOOLS_FOR_REGRESSION = 3


# Geospatial
EARTH_RADIUS_KM = 6371.0
DEFAULT_RADIUS_KM = 0.5
LATITUDE_COLUMN = "lat"
LONGITUDE_COLUMN = "lon"


# Safety perception survey
SAFETY_COLUMN = "safety"
CIRCUMSTANCES = ["today", "alone", "night"]
SAFETY_FORMULA = "safety ~ C(circumstance, Treatment('today'))"


ENGLISH_LABELS = {
    "touched_sexually": "Touched sexually without consent",
    "forced_kiss": "Forced kiss",
    "verbal_sexual_harassment": "Verbal sexual harassment",
    "shown_sexual_images": "Shown sexual images",
    "attempted_forced_sex": "Attempted forced sex",
    "forced_sex": "Forced sex",
    "lifetime_incidents": "Lifetime incidents (total)",
    "lifetime_incidents_other": "Lifetime incidents (other perpetrators)",
    "age": "Age",
    "female": "Female",
    "grade": "Grade",
    "lives_with_both_parents": "Lives with both parents",
    "household_assets": "Household asset index",
    "attitude_score": "Gender attitudes score",
    "students_per_teacher": "Students per teacher",
    "students_per_classroom": "Students per classroom",
    "students_per_toilet": "Students per toilet",
    "female_student_share": "Share of female students",
    "female_teacher_share": "Share of female teachers",
    "female_toilet_share": "Share of female-only toilets",
    "setting": "Urban/rural setting",
    "ownership": "School ownership",
    "outcome_rate": "Share reporting any incident",
}
