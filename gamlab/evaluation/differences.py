"""Difference curves between factor levels with pointwise confidence bands.

A difference curve compares two conditions on the link scale by contrasting
their model-matrix rows: ``d = (X_a - X_b) β`` with standard error
``sqrt(diag(D Vb Dᵀ))``. Regions where the band excludes zero are where the
conditions differ.
"""

from __future__ import annotations

import itertools
from typing import Any, List, Mapping, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from scipy import stats

from ..models.results import FittedGam
from .grid import VarySpec, expand_grid, observed_levels


def difference_curve(
    fitted: FittedGam,
    frame: pd.DataFrame,
    comparison: Mapping[str, Tuple[Any, Any]],
    vary: VarySpec,
    cond: Optional[Mapping[str, Any]] = None,
    level: float = 0.95,
    exclude_random: bool = True,
    n: int = 100,
    exclude: Sequence[str] = (),
    copies: Optional[Mapping[str, str]] = None,
    fixed: Optional[Mapping[str, Any]] = None,
) -> pd.DataFrame:
    """Difference ``a - b`` for every ``{column: (a, b)}`` in ``comparison``, over the ``vary`` grid."""
    if not comparison:
        raise ValueError("comparison must name at least one column, e.g. {'Group': ('a', 'b')}.")
    if not 0.0 < level < 1.0:
        raise ValueError("Interval level must lie in (0, 1).")
    base = dict(cond or {})
    clash = sorted(set(base) & set(comparison))
    if clash:
        raise ValueError(f"Columns {clash} appear in both cond and comparison.")

    cond_a = {**base, **{column: pair[0] for column, pair in comparison.items()}}
    cond_b = {**base, **{column: pair[1] for column, pair in comparison.items()}}
    grid_a = expand_grid(frame, vary, cond=cond_a, n=n, copies=copies, fixed=fixed)
    grid_b = expand_grid(frame, vary, cond=cond_b, n=n, copies=copies, fixed=fixed)

    design = fitted.design
    X_a = design.linear_predictor_matrix(grid_a, exclude=exclude, exclude_random=exclude_random)
    X_b = design.linear_predictor_matrix(grid_b, exclude=exclude, exclude_random=exclude_random)
    D = X_a - X_b
    offset = design.offset_for(grid_a) - design.offset_for(grid_b)

    difference = D @ fitted.params + offset
    se = np.sqrt(np.clip(np.einsum("ij,jk,ik->i", D, fitted.vb, D), 0.0, None))
    crit = stats.norm.ppf(0.5 + level / 2.0)
    lower, upper = difference - crit * se, difference + crit * se

    spans = list(vary) if not isinstance(vary, str) else [vary]
    out = grid_a[spans].copy()
    for column in base:
        out[column] = grid_a[column]
    out["difference"] = difference
    out["se"] = se
    out["lower"] = lower
    out["upper"] = upper
    out["significant"] = (lower > 0) | (upper < 0)
    return out


def pairwise_differences(
    fitted: FittedGam,
    frame: pd.DataFrame,
    factor: str,
    vary: VarySpec,
    cond: Optional[Mapping[str, Any]] = None,
    levels: Optional[Sequence[Any]] = None,
    **kwargs: Any,
) -> pd.DataFrame:
    """Difference curves for every pair of ``factor`` levels, later level minus earlier.

    Pairs follow level order: (l1, l2), (l1, l3), ..., (l2, l3), ... The
    ``pair`` column reads ``"l2 - l1"``.
    """
    if factor not in frame.columns:
        raise KeyError(f"Column '{factor}' not found")
    chosen = list(levels) if levels is not None else observed_levels(frame[factor])
    if len(chosen) < 2:
        raise ValueError(f"'{factor}' needs at least two levels for pairwise differences.")
    curves: List[pd.DataFrame] = []
    for first, second in itertools.combinations(chosen, 2):
        curve = difference_curve(fitted, frame, {factor: (second, first)}, vary, cond=cond, **kwargs)
        curve.insert(0, "pair", f"{second} - {first}")
        curves.append(curve)
    return pd.concat(curves, ignore_index=True)


def significant_windows(curve: pd.DataFrame, x: str) -> List[Tuple[float, float]]:
    """Contiguous ``x`` intervals where the difference band excludes zero."""
    if x not in curve.columns:
        raise KeyError(f"Column '{x}' not found")
    if "significant" in curve.columns:
        flags = curve["significant"].to_numpy(dtype=bool)
    else:
        flags = ((curve["lower"] > 0) | (curve["upper"] < 0)).to_numpy(dtype=bool)
    positions = curve[x].to_numpy(dtype=float)
    order = np.argsort(positions, kind="stable")
    positions, flags = positions[order], flags[order]

    windows: List[Tuple[float, float]] = []
    start: Optional[float] = None
    for idx, flag in enumerate(flags):
        if flag and start is None:
            start = positions[idx]
        if not flag and start is not None:
            windows.append((float(start), float(positions[idx - 1])))
            start = None
    if start is not None:
        windows.append((float(start), float(positions[-1])))
    return windows


__all__ = ["difference_curve", "pairwise_differences", "significant_windows"]
