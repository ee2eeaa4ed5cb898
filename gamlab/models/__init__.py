"""Factory helpers for fitting GAMs from formulas."""

from __future__ import annotations

from typing import Optional

import pandas as pd

from .design import ModelDesign, ar1_transform
from .formula import FormulaSpec, SmoothSpec, parse_formula
from .gam import GamConfig, GamModel, SmoothingConfig
from .registry import REGISTRY, FamilyKey, FamilySpec, get_family
from .results import FittedGam, GamSummary


def fit_gam(
    formula: str,
    frame: pd.DataFrame,
    family: FamilyKey = "gaussian",
    config: Optional[GamConfig] = None,
) -> FittedGam:
    """Fit ``formula`` to ``frame``; ``config`` overrides ``family`` when given."""
    return GamModel(formula, config or GamConfig(family=family)).fit(frame)


def list_available_families() -> tuple[str, ...]:
    """Return the registry keys for all configured families."""
    return tuple(sorted(REGISTRY))


__all__ = [
    "FamilyKey",
    "FamilySpec",
    "FittedGam",
    "FormulaSpec",
    "GamConfig",
    "GamModel",
    "GamSummary",
    "ModelDesign",
    "REGISTRY",
    "SmoothSpec",
    "SmoothingConfig",
    "ar1_transform",
    "fit_gam",
    "get_family",
    "list_available_families",
    "parse_formula",
]
