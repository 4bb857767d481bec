from __future__ import annotations

from dataclasses import dataclass

import numpy as np
import pandas as pd
from sklearn.metrics import mean_absolute_error, mean_squared_error, r2_score


@dataclass
class FitEvaluation:
    r2: float
    mae: float
    rmse: float
    n: int
    predicted_vs_actual: pd.DataFrame


def evaluate_fit(y_true: np.ndarray, y_pred: np.ndarray) -> FitEvaluation:
    """Goodness of fit plus the predicted-vs-actual frame a scatter plot is drawn from."""
    y_true = np.asarray(y_true, dtype=float)
    y_pred = np.asarray(y_pred, dtype=float)
    if y_true.shape != y_pred.shape:
        raise ValueError(f"Shape mismatch: {y_true.shape} vs {y_pred.shape}")
    if y_true.size < 2:
        raise ValueError("Need at least two observations to evaluate a fit")
    frame = pd.DataFrame({"actual": y_true, "predicted": y_pred})
    frame["residual"] = frame["actual"] - frame["predicted"]
    return FitEvaluation(
        r2=float(r2_score(y_true, y_pred)),
        mae=float(mean_absolute_error(y_true, y_pred)),
        rmse=float(np.sqrt(mean_squared_error(y_true, y_pred))),
        n=int(y_true.size),
        predicted_vs_actual=frame,
    )
