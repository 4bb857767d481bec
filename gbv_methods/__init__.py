"""GBV prevention methods package.

Baseline analysis helpers for a school-based cluster-randomized trial and a
geospatial safety-survey pipeline, packaged from the teaching notebooks.
"""

__all__ = [
    "constants",
    "config",
    "preprocessing",
    "reconcile",
    "bootstrap",
    "stats_analysis",
    "stepwise",
    "evaluation",
    "spatial",
]

__version__ = "0.1.0"
