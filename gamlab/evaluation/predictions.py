"""Model predictions over expanded grids."""

from __future__ import annotations

from typing import Any, Mapping, Optional, Sequence

import pandas as pd

from ..models.results import FittedGam, PredictionType
from .grid import VarySpec, expand_grid


def predict_grid(
    fitted: FittedGam,
    frame: pd.DataFrame,
    vary: VarySpec,
    cond: Optional[Mapping[str, Any]] = None,
    exclude_random: bool = True,
    type: PredictionType = "response",
    n: int = 100,
    exclude: Sequence[str] = (),
    copies: Optional[Mapping[str, str]] = None,
    fixed: Optional[Mapping[str, Any]] = None,
    level: float = 0.95,
) -> pd.DataFrame:
    """Grid from ``expand_grid`` joined with ``fit``/``se``/``lower``/``upper`` columns."""
    grid = expand_grid(frame, vary, cond=cond, n=n, copies=copies, fixed=fixed)
    predictions = fitted.predict(grid, type=type, exclude=exclude, exclude_random=exclude_random, level=level)
    return pd.concat([grid, predictions], axis=1)


__all__ = ["predict_grid"]
