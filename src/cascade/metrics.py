from __future__ import annotations

from typing import Dict

import numpy as np
import pandas as pd

from src.utils.data_validation import validate_dataframe

REQUIRED_COLUMNS = ["rate_set_id", "direct_effect", "scm_mean", "abs_error"]


def compute_metrics(df: pd.DataFrame, n_excluded: int = 0, n_failed: int = 0) -> Dict[str, float]:
    # Expect one row per completed trial: rate_set_id, direct_effect, scm_mean, abs_error
    metrics: Dict[str, float] = {
        "n_trials": float(len(df)),
        "n_excluded": float(n_excluded),
        "n_failed": float(n_failed),
    }
    if len(df) == 0:
        return metrics

    validate_dataframe(df, required_columns=REQUIRED_COLUMNS)

    direct = df["direct_effect"].to_numpy(dtype=float)
    scm = df["scm_mean"].to_numpy(dtype=float)

    metrics.update({
        "n_rate_sets": float(df["rate_set_id"].nunique()),
        "mean_direct_effect": float(direct.mean()),
        "mean_scm_effect": float(scm.mean()),
        "mean_abs_error": float(df["abs_error"].mean()),
        "max_abs_error": float(df["abs_error"].max()),
        # Fraction of trials where both estimates move the target the same way
        "sign_agreement": float(np.mean(np.sign(direct) == np.sign(scm))),
    })

    # Relative error only where the direct effect is not negligible
    nonzero = np.abs(direct) > 1e-12
    if nonzero.any():
        metrics["mean_relative_error"] = float(np.mean(np.abs(scm[nonzero] - direct[nonzero]) / np.abs(direct[nonzero])))

    if "converged" in df.columns:
        metrics["converged_fraction"] = float(df["converged"].astype(bool).mean())

    return metrics
