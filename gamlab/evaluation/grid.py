"""Prediction grids over the observed covariate space."""

from __future__ import annotations

import itertools
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

import numpy as np
import pandas as pd

VarySpec = Union[Sequence[str], Mapping[str, Optional[Sequence[Any]]]]


def _is_factor(series: pd.Series) -> bool:
    return (
        isinstance(series.dtype, pd.CategoricalDtype)
        or pd.api.types.is_bool_dtype(series)
        or not pd.api.types.is_numeric_dtype(series)
    )


def observed_levels(series: pd.Series) -> List[Any]:
    if isinstance(series.dtype, pd.CategoricalDtype):
        return list(series.cat.categories)
    return sorted(series.dropna().unique().tolist(), key=str)


def reference_value(series: pd.Series) -> Any:
    """Median for numeric covariates, reference (first) level for factors."""
    if _is_factor(series):
        levels = observed_levels(series)
        return levels[0] if levels else np.nan
    return float(series.median())


def _checked_values(series: pd.Series, values: Sequence[Any]) -> List[Any]:
    name = series.name
    if _is_factor(series):
        levels = observed_levels(series)
        unknown = [value for value in values if value not in levels]
        if unknown:
            raise ValueError(f"Values {unknown} are not levels of '{name}'. Levels: {levels}")
        return list(values)
    numeric = np.asarray(values, dtype=float)
    lower, upper = float(series.min()), float(series.max())
    tolerance = 1e-9 * max(upper - lower, 1.0)
    if np.any(numeric < lower - tolerance) or np.any(numeric > upper + tolerance):
        raise ValueError(f"Values for '{name}' must lie within the observed range [{lower:g}, {upper:g}].")
    return numeric.tolist()


def _axis(series: pd.Series, values: Optional[Sequence[Any]], n: int) -> List[Any]:
    if values is None:
        if _is_factor(series):
            return observed_levels(series)
        return np.linspace(float(series.min()), float(series.max()), n).tolist()
    if isinstance(values, (str, bytes)) or np.isscalar(values):
        values = [values]
    return _checked_values(series, list(values))


def expand_grid(
    frame: pd.DataFrame,
    vary: VarySpec,
    cond: Optional[Mapping[str, Any]] = None,
    n: int = 100,
    copies: Optional[Mapping[str, str]] = None,
    fixed: Optional[Mapping[str, Any]] = None,
) -> pd.DataFrame:
    """Cartesian grid over ``vary`` with every other column held at a reference value.

    ``vary`` lists columns to span (numeric: ``n`` points over the observed
    range; factors: all levels) or maps columns to explicit values. ``cond``
    fixes columns at a value or list of values. Columns in neither are set to
    their median or reference level. ``copies`` maps derived columns (such as
    the ordered copy of a factor) to their source so they follow its values.
    ``fixed`` sets columns verbatim after expansion without the range check,
    for exposures such as a word count held at 1000. Categorical dtypes are
    preserved.
    """
    if n < 2:
        raise ValueError("Grid size n must be at least 2.")
    if isinstance(vary, str):
        vary = [vary]
    cond = dict(cond or {})
    spans: Dict[str, Optional[Sequence[Any]]] = dict(vary) if isinstance(vary, Mapping) else {c: None for c in vary}
    if not spans:
        raise ValueError("Select at least one column to vary.")
    overlap = sorted(set(spans) & set(cond) | (set(spans) | set(cond)) & set(fixed or {}))
    if overlap:
        raise ValueError(f"Columns {overlap} appear more than once across vary, cond and fixed.")
    for column in fixed or {}:
        if column not in frame.columns:
            raise KeyError(f"Column '{column}' not found")

    axes: Dict[str, List[Any]] = {}
    for column in list(spans) + list(cond):
        if column not in frame.columns:
            raise KeyError(f"Column '{column}' not found")
        values = spans[column] if column in spans else cond[column]
        if column in cond and values is None:
            raise ValueError(f"Condition for '{column}' needs a value.")
        axes[column] = _axis(frame[column], values, n)

    rows = list(itertools.product(*axes.values()))
    grid = pd.DataFrame(rows, columns=list(axes))
    for derived, source in (copies or {}).items():
        if derived in axes:
            raise ValueError(f"Column '{derived}' is derived from '{source}'; vary or condition on the source.")
        if source in grid.columns and derived in frame.columns:
            grid[derived] = grid[source].astype(str)
    for column in frame.columns:
        if column not in grid.columns:
            grid[column] = reference_value(frame[column])
        if fixed and column in fixed:
            grid[column] = fixed[column]
        if isinstance(frame[column].dtype, pd.CategoricalDtype):
            grid[column] = pd.Categorical(grid[column], dtype=frame[column].dtype)
    return grid[list(frame.columns)]


__all__ = ["VarySpec", "expand_grid", "observed_levels", "reference_value"]
