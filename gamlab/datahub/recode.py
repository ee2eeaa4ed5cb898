"""Categorical recoding with explicit level orders and treatment contrasts.

Every factor used by a model is declared with a fixed level order. The first
level is always the reference: treatment coding leaves it implicit and estimates
every other level as a deviation from it. Ordered copies of a factor are what
smooth terms use to select difference smooths, so their coding must never fall
back to polynomial contrasts.
"""

from __future__ import annotations

from dataclasses import dataclass
from itertools import product
from typing import Iterable, Literal, Mapping, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

ContrastScheme = Literal["treatment", "sum"]
CONTRAST_SCHEMES: Tuple[ContrastScheme, ...] = ("treatment", "sum")


def _validate_levels(levels: Sequence[str]) -> list[str]:
    level_list = [str(level) for level in levels]
    if not level_list:
        raise ValueError("A factor needs at least one level.")
    if len(set(level_list)) != len(level_list):
        raise ValueError(f"Duplicate factor levels: {level_list}")
    return level_list


def as_factor(
    values: Iterable[object],
    levels: Sequence[str],
    ordered: bool = False,
    name: Optional[str] = None,
) -> pd.Series:
    """Convert ``values`` into a categorical Series with exactly ``levels`` in the given order."""
    level_list = _validate_levels(levels)
    series = values if isinstance(values, pd.Series) else pd.Series(list(values))
    base = series.astype(object)
    missing = base.isna()
    as_text = base.where(missing, base.astype(str))

    unknown = sorted(set(as_text[~missing]) - set(level_list))
    if unknown:
        label = f"'{name or series.name}'" if (name or series.name) else "factor"
        raise ValueError(f"Values {unknown} of {label} are not among the declared levels {level_list}")

    dtype = pd.CategoricalDtype(categories=level_list, ordered=ordered)
    result = pd.Series(pd.Categorical(as_text, dtype=dtype), index=series.index)
    result.name = name if name is not None else series.name
    return result


def as_ordered(
    values: pd.Series,
    levels: Optional[Sequence[str]] = None,
    name: Optional[str] = None,
) -> pd.Series:
    """Return an ordered copy of a factor, keeping its level order unless ``levels`` overrides it."""
    if levels is None:
        if not isinstance(values.dtype, pd.CategoricalDtype):
            raise ValueError("as_ordered() needs explicit levels for non-categorical input.")
        levels = [str(level) for level in values.cat.categories]
    return as_factor(values, levels, ordered=True, name=name)


def factor_levels(values: pd.Series) -> list[str]:
    """Return the declared levels of a categorical Series."""
    if not isinstance(values.dtype, pd.CategoricalDtype):
        raise ValueError(f"Column '{values.name}' is not categorical; recode it with as_factor() first.")
    return [str(level) for level in values.cat.categories]


def contrast_matrix(levels: Sequence[str], scheme: ContrastScheme = "treatment") -> pd.DataFrame:
    """Coding matrix for ``levels`` (rows) under the given contrast scheme (columns)."""
    level_list = _validate_levels(levels)
    if scheme not in CONTRAST_SCHEMES:
        raise ValueError(f"Unknown contrast scheme '{scheme}'. Available: {list(CONTRAST_SCHEMES)}")

    k = len(level_list)
    if scheme == "treatment":
        matrix = np.eye(k)[:, 1:]
        columns = level_list[1:]
    else:
        matrix = np.vstack([np.eye(k - 1), -np.ones((1, k - 1))]) if k > 1 else np.zeros((1, 0))
        columns = level_list[:-1]
    return pd.DataFrame(matrix, index=level_list, columns=columns)


def treatment_indicators(values: pd.Series) -> pd.DataFrame:
    """0/1 columns for every non-reference level of a categorical Series."""
    levels = factor_levels(values)
    coding = contrast_matrix(levels, "treatment")
    codes = values.cat.codes.to_numpy()
    rows = np.zeros((len(values), coding.shape[1]))
    present = codes >= 0
    rows[present] = coding.to_numpy()[codes[present]]
    return pd.DataFrame(rows, index=values.index, columns=coding.columns)


def interaction(
    frame: pd.DataFrame,
    columns: Sequence[str],
    sep: str = ".",
    levels: Optional[Sequence[str]] = None,
    name: Optional[str] = None,
) -> pd.Series:
    """Combine factors into one; levels follow the component orders with the first column slowest."""
    if not columns:
        raise ValueError("interaction() needs at least one column.")
    for column in columns:
        if column not in frame.columns:
            raise KeyError(f"Column '{column}' not found")

    component_levels = [factor_levels(frame[column]) for column in columns]
    if levels is None:
        levels = [sep.join(combo) for combo in product(*component_levels)]

    parts = [frame[column].astype(object) for column in columns]
    missing = np.zeros(len(frame), dtype=bool)
    for part in parts:
        missing |= part.isna().to_numpy()
    joined = parts[0].astype(str)
    for part in parts[1:]:
        joined = joined + sep + part.astype(str)
    joined = joined.where(~missing)
    return as_factor(joined, levels, name=name or sep.join(columns))


def binary_indicator(values: pd.Series, level: str) -> pd.Series:
    """Numeric 0/1 column marking rows equal to ``level``."""
    if isinstance(values.dtype, pd.CategoricalDtype) and level not in factor_levels(values):
        raise ValueError(f"Level '{level}' is not a level of '{values.name}'")
    indicator = (values.astype(object) == level).astype(float)
    indicator.name = f"Is{level}"
    return indicator


@dataclass(frozen=True)
class FactorSpec:
    """Declared recoding for one column.

    ``source`` names the column to read from when the recoded column is new
    (e.g. an ordered copy of an existing factor).
    """

    levels: Tuple[str, ...]
    ordered: bool = False
    source: Optional[str] = None

    def validate(self) -> None:
        _validate_levels(self.levels)


def recode_frame(frame: pd.DataFrame, specs: Mapping[str, FactorSpec]) -> pd.DataFrame:
    """Apply factor specs to a copy of ``frame``."""
    result = frame.copy()
    for column, spec in specs.items():
        spec.validate()
        source = spec.source or column
        if source not in result.columns:
            raise KeyError(f"Column '{source}' not found while recoding '{column}'")
        result[column] = as_factor(result[source], spec.levels, ordered=spec.ordered, name=column)
    return result


__all__ = [
    "CONTRAST_SCHEMES",
    "ContrastScheme",
    "FactorSpec",
    "as_factor",
    "as_ordered",
    "binary_indicator",
    "contrast_matrix",
    "factor_levels",
    "interaction",
    "recode_frame",
    "treatment_indicators",
]
