"""Model comparison tables: AIC ranking plus deviance tests between consecutive models."""

from __future__ import annotations

from typing import List, Mapping

import numpy as np
import pandas as pd
from scipy import stats

from ..models.results import FittedGam


def deviance_test(smaller: FittedGam, larger: FittedGam) -> tuple[float, float, float]:
    """Return (df difference, deviance difference, p-value) for ``smaller`` nested in ``larger``."""
    df = larger.edf_total - smaller.edf_total
    dev = smaller.deviance - larger.deviance
    if df <= 0:
        return df, dev, float("nan")
    if larger.family_spec.scale_known:
        return df, dev, float(stats.chi2.sf(max(dev, 0.0), df))
    f_stat = (dev / df) / larger.scale
    return df, dev, float(stats.f.sf(max(f_stat, 0.0), df, max(larger.residual_df, 1.0)))


def compare_models(models: Mapping[str, FittedGam]) -> pd.DataFrame:
    """Summarize fitted models, sorted by AIC.

    Each model after the first is tested against the one listed before it
    (``vs``), treating the pair as nested in that order.
    """
    if len(models) == 0:
        raise ValueError("Pass at least one fitted model.")
    sizes = {name: fitted.n for name, fitted in models.items()}
    if len(set(sizes.values())) > 1:
        raise ValueError(f"Models were fitted to different numbers of rows: {sizes}")

    rows: List[dict] = []
    previous_name, previous = None, None
    for name, fitted in models.items():
        row = {
            "model": name,
            "edf": fitted.edf_total,
            "AIC": fitted.aic,
            "dev_explained": fitted.dev_explained,
            "criterion": fitted.criterion.upper(),
            "criterion_value": fitted.criterion_value,
            "vs": previous_name,
            "Df": np.nan,
            "Deviance": np.nan,
            "p_value": np.nan,
        }
        if previous is not None:
            row["Df"], row["Deviance"], row["p_value"] = deviance_test(previous, fitted)
        rows.append(row)
        previous_name, previous = name, fitted

    table = pd.DataFrame(rows).set_index("model")
    table.insert(2, "dAIC", table["AIC"] - table["AIC"].min())
    return table.sort_values("AIC", na_position="last")


__all__ = ["compare_models", "deviance_test"]
