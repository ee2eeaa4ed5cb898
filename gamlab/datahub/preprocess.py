from __future__ import annotations

from typing import Literal, Sequence, Tuple

import numpy as np
import pandas as pd

BaselineMethod = Literal["subtractive", "divisive"]


def _require(frame: pd.DataFrame, columns: Sequence[str]) -> None:
    missing = [column for column in columns if column not in frame.columns]
    if missing:
        raise KeyError(f"Columns not found: {missing}")


def baseline_correct(
    frame: pd.DataFrame,
    value: str,
    time: str,
    group: str,
    window: Tuple[float, float],
    method: BaselineMethod = "subtractive",
) -> pd.DataFrame:
    """Normalise every series by its mean value inside the baseline ``window`` (inclusive)."""
    _require(frame, [value, time, group])
    start, end = window
    if end < start:
        raise ValueError("Baseline window end must not precede its start.")
    if method not in ("subtractive", "divisive"):
        raise ValueError(f"Unknown baseline method '{method}'")

    in_window = frame[time].between(start, end)
    baselines = frame.loc[in_window].groupby(group, observed=True)[value].mean()
    series_ids = pd.unique(frame[group])
    lacking = [sid for sid in series_ids if sid not in baselines.index]
    if lacking:
        raise ValueError(f"{len(lacking)} series have no samples inside the baseline window {window}")

    result = frame.copy()
    reference = result[group].map(baselines).astype(float)
    if method == "subtractive":
        result[value] = result[value] - reference
    else:
        if np.any(reference == 0):
            raise ValueError("Divisive baseline correction hit a zero baseline.")
        result[value] = result[value] / reference - 1.0
    return result


def downsample(
    frame: pd.DataFrame,
    time: str,
    bin_size: float,
    by: Sequence[str],
    value: str,
) -> pd.DataFrame:
    """Average ``value`` into time bins of width ``bin_size``, keeping the ``by`` columns."""
    if bin_size <= 0:
        raise ValueError("bin_size must be positive.")
    _require(frame, [time, value, *by])

    binned = frame.copy()
    binned[time] = np.floor(binned[time] / bin_size) * bin_size
    keys = [*by, time]
    result = binned.groupby(keys, observed=True, sort=True)[value].mean().reset_index()
    for column in by:
        if isinstance(frame[column].dtype, pd.CategoricalDtype):
            result[column] = result[column].astype(frame[column].dtype)
    return result


def add_series_start(
    frame: pd.DataFrame,
    group: str,
    time: str,
    column: str = "start_event",
) -> pd.DataFrame:
    """Sort by series and time and flag the first row of each series."""
    _require(frame, [group, time])
    result = frame.sort_values([group, time], kind="mergesort").reset_index(drop=True)
    result[column] = ~result[group].duplicated()
    return result


def relative_frequency(
    frame: pd.DataFrame,
    count: str,
    exposure: str,
    per: float = 1000.0,
    column: str = "Rate",
) -> pd.DataFrame:
    """Add a ``count / exposure * per`` rate column for raw-data plots."""
    _require(frame, [count, exposure])
    if (frame[exposure] <= 0).any():
        raise ValueError(f"Exposure column '{exposure}' must be strictly positive.")
    result = frame.copy()
    result[column] = result[count] / result[exposure] * per
    return result


__all__ = ["BaselineMethod", "add_series_start", "baseline_correct", "downsample", "relative_frequency"]
