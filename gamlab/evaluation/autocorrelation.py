"""Residual autocorrelation within time series."""

from __future__ import annotations

from typing import Optional, Sequence

import numpy as np
import pandas as pd


def residual_acf(
    residuals: Sequence[float],
    groups: Optional[Sequence[object]] = None,
    max_lag: int = 20,
) -> pd.DataFrame:
    """Autocorrelation pooled over series.

    Rows must be ordered in time within each series, and the rows of one
    series must be contiguous. Lag-``k`` products are only formed between rows
    of the same series. ``ci`` is the ±1.96/√n white-noise band.
    """
    values = np.asarray(residuals, dtype=float)
    if values.ndim != 1 or values.size < 2:
        raise ValueError("residual_acf needs a 1-D array with at least two residuals.")
    if max_lag < 1:
        raise ValueError("max_lag must be at least 1.")
    labels = np.zeros(values.size, dtype=int) if groups is None else pd.factorize(pd.Series(groups))[0]
    if labels.shape[0] != values.size:
        raise ValueError("groups must have one entry per residual.")

    centred = values - values.mean()
    denominator = float(np.sum(centred**2))
    if denominator == 0:
        raise ValueError("Residuals are constant; autocorrelation is undefined.")
    max_lag = min(max_lag, values.size - 1)

    acf = [1.0]
    for lag in range(1, max_lag + 1):
        same = labels[lag:] == labels[:-lag]
        acf.append(float(np.sum(centred[lag:][same] * centred[:-lag][same]) / denominator))
    ci = 1.96 / np.sqrt(values.size)
    return pd.DataFrame({"lag": np.arange(max_lag + 1), "acf": acf, "ci": ci})


def estimate_rho(residuals: Sequence[float], groups: Optional[Sequence[object]] = None) -> float:
    """Lag-1 autocorrelation, the usual starting value for an AR(1) refit."""
    acf = residual_acf(residuals, groups=groups, max_lag=1)
    return float(acf.loc[acf["lag"] == 1, "acf"].iloc[0])


__all__ = ["estimate_rho", "residual_acf"]
