"""Smooth terms: model-matrix blocks and penalties built from a SmoothSpec and data.

Every term produces one or more penalized blocks. Each block carries its own
smoothing parameter, so a difference smooth per factor level can be as wiggly
as its data support. ``transform`` rebuilds the same blocks for new rows using
the knots, constraints and levels fixed at fit time.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Sequence

import numpy as np
import pandas as pd
from scipy.linalg import block_diag

from .bases import MarginalSpline, centering_transform, normalize_penalty, null_space_penalty, row_tensor
from .formula import SmoothSpec


@dataclass(frozen=True)
class PenaltyBlock:
    """One penalized column block of the model matrix."""

    label: str
    basis: np.ndarray
    penalty: np.ndarray
    sp: Optional[float] = None

    @property
    def width(self) -> int:
        return self.basis.shape[1]


def _numeric(frame: pd.DataFrame, column: str) -> np.ndarray:
    if column not in frame.columns:
        raise KeyError(f"Column '{column}' not found")
    series = frame[column]
    if not pd.api.types.is_numeric_dtype(series) or isinstance(series.dtype, pd.CategoricalDtype):
        raise ValueError(f"Smooth covariate '{column}' must be numeric.")
    return series.to_numpy(dtype=float)


def _is_factor(series: pd.Series) -> bool:
    return isinstance(series.dtype, pd.CategoricalDtype) or not pd.api.types.is_numeric_dtype(series)


def _levels_of(series: pd.Series) -> List[str]:
    if isinstance(series.dtype, pd.CategoricalDtype):
        return [str(level) for level in series.cat.categories]
    return sorted({str(value) for value in series.dropna()})


def _level_indicators(series: pd.Series, levels: Sequence[str], column: str) -> np.ndarray:
    """One 0/1 column per level; values outside ``levels`` raise."""
    values = series.astype(object)
    text = values.where(values.isna(), values.astype(str))
    unknown = sorted(set(text.dropna()) - set(levels))
    if unknown:
        raise ValueError(f"Levels {unknown} of '{column}' were not present when the model was fitted.")
    return np.column_stack([(text == level).to_numpy(dtype=float) for level in levels])


class SmoothTerm:
    """Base class for fitted smooth terms."""

    def __init__(self, spec: SmoothSpec) -> None:
        self.spec = spec
        self.blocks: List[PenaltyBlock] = []

    @property
    def label(self) -> str:
        return self.spec.label

    @property
    def random(self) -> bool:
        return self.spec.random

    @property
    def width(self) -> int:
        return sum(block.width for block in self.blocks)

    def transform(self, frame: pd.DataFrame) -> List[np.ndarray]:
        raise NotImplementedError


class SplineTerm(SmoothTerm):
    """``s(x)``: centred penalized spline."""

    def __init__(self, spec: SmoothSpec, frame: pd.DataFrame) -> None:
        super().__init__(spec)
        (self.variable,) = spec.variables
        x = _numeric(frame, self.variable)
        self.margin = MarginalSpline.fit(x, spec.basis_dim, order=spec.m)
        raw = self.margin.evaluate(x)
        self.constraint = centering_transform(raw)
        basis = raw @ self.constraint
        penalty = self.constraint.T @ self.margin.penalty @ self.constraint
        self.blocks = [PenaltyBlock(spec.label, basis, normalize_penalty(penalty, basis), spec.sp)]

    def transform(self, frame: pd.DataFrame) -> List[np.ndarray]:
        x = _numeric(frame, self.variable)
        return [self.margin.evaluate(x, transform=self.constraint)]


class ByNumericTerm(SmoothTerm):
    """``s(x, by=z)`` with numeric ``z``: uncentred spline scaled row-wise by ``z``.

    With a 0/1 ``z`` this is a binary difference smooth, which also absorbs the
    intercept difference between the two groups.
    """

    def __init__(self, spec: SmoothSpec, frame: pd.DataFrame) -> None:
        super().__init__(spec)
        (self.variable,) = spec.variables
        self.by = str(spec.by)
        x = _numeric(frame, self.variable)
        z = _numeric(frame, self.by)
        self.margin = MarginalSpline.fit(x, spec.basis_dim, order=spec.m)
        basis = self.margin.evaluate(x) * z[:, None]
        self.blocks = [PenaltyBlock(spec.label, basis, normalize_penalty(self.margin.penalty, basis), spec.sp)]

    def transform(self, frame: pd.DataFrame) -> List[np.ndarray]:
        x = _numeric(frame, self.variable)
        z = _numeric(frame, self.by)
        return [self.margin.evaluate(x) * z[:, None]]


class ByFactorTerm(SmoothTerm):
    """``s(x, by=f)`` with factor ``f``.

    An ordered factor yields one difference smooth per non-reference level, each
    estimated as a deviation from the reference smooth. An unordered factor
    yields a separate smooth for every level.
    """

    def __init__(self, spec: SmoothSpec, frame: pd.DataFrame) -> None:
        super().__init__(spec)
        (self.variable,) = spec.variables
        self.by = str(spec.by)
        series = frame[self.by]
        if not isinstance(series.dtype, pd.CategoricalDtype):
            raise ValueError(f"by-variable '{self.by}' must be recoded with as_factor()/as_ordered() first.")
        self.all_levels = _levels_of(series)
        self.ordered = bool(series.cat.ordered)
        self.levels = self.all_levels[1:] if self.ordered else list(self.all_levels)
        if not self.levels:
            raise ValueError(f"by-variable '{self.by}' needs at least two levels for difference smooths.")

        x = _numeric(frame, self.variable)
        self.margin = MarginalSpline.fit(x, spec.basis_dim, order=spec.m)
        raw = self.margin.evaluate(x)
        indicators = _level_indicators(series, self.all_levels, self.by)

        self.constraints: List[np.ndarray] = []
        blocks: List[PenaltyBlock] = []
        for level in self.levels:
            selector = indicators[:, self.all_levels.index(level)]
            if not selector.any():
                raise ValueError(f"Level '{level}' of '{self.by}' has no observations.")
            constraint = centering_transform(raw[selector > 0])
            basis = (raw @ constraint) * selector[:, None]
            penalty = constraint.T @ self.margin.penalty @ constraint
            self.constraints.append(constraint)
            blocks.append(PenaltyBlock(f"{spec.label}{level}", basis, normalize_penalty(penalty, basis), spec.sp))
        self.blocks = blocks

    def transform(self, frame: pd.DataFrame) -> List[np.ndarray]:
        x = _numeric(frame, self.variable)
        raw = self.margin.evaluate(x)
        indicators = _level_indicators(frame[self.by], self.all_levels, self.by)
        return [
            (raw @ constraint) * indicators[:, self.all_levels.index(level)][:, None]
            for level, constraint in zip(self.levels, self.constraints)
        ]


def _split_factor(spec: SmoothSpec, frame: pd.DataFrame) -> tuple[str, List[str]]:
    for column in spec.variables:
        if column not in frame.columns:
            raise KeyError(f"Column '{column}' not found")
    factors = [column for column in spec.variables if _is_factor(frame[column])]
    if len(factors) != 1:
        raise ValueError(f"{spec.label} with bs='{spec.bs}' needs exactly one grouping factor, found {factors}.")
    numeric = [column for column in spec.variables if column != factors[0]]
    return factors[0], numeric


class RandomEffectTerm(SmoothTerm):
    """``s(g, bs="re")`` random intercepts and ``s(x, g, bs="re")`` random slopes."""

    def __init__(self, spec: SmoothSpec, frame: pd.DataFrame) -> None:
        super().__init__(spec)
        self.factor, self.covariates = _split_factor(spec, frame)
        self.levels = _levels_of(frame[self.factor])
        basis = self._design(frame)
        self.blocks = [PenaltyBlock(spec.label, basis, np.eye(basis.shape[1]), spec.sp)]

    def _design(self, frame: pd.DataFrame) -> np.ndarray:
        design = _level_indicators(frame[self.factor], self.levels, self.factor)
        for column in self.covariates:
            design = design * _numeric(frame, column)[:, None]
        return design

    def transform(self, frame: pd.DataFrame) -> List[np.ndarray]:
        return [self._design(frame)]


class FactorSmoothTerm(SmoothTerm):
    """``s(x, g, bs="fs")``: one random smooth curve per level of ``g`` with a shared smoothing parameter."""

    def __init__(self, spec: SmoothSpec, frame: pd.DataFrame) -> None:
        super().__init__(spec)
        self.factor, covariates = _split_factor(spec, frame)
        (self.variable,) = covariates
        self.levels = _levels_of(frame[self.factor])
        x = _numeric(frame, self.variable)
        self.margin = MarginalSpline.fit(x, spec.basis_dim, order=spec.m)
        raw = self.margin.evaluate(x)
        single = normalize_penalty(self.margin.penalty, raw) + normalize_penalty(
            null_space_penalty(self.margin.penalty), raw
        )
        basis = self._design(raw, frame)
        self.blocks = [
            PenaltyBlock(spec.label, basis, block_diag(*([single] * len(self.levels))), spec.sp)
        ]

    def _design(self, raw: np.ndarray, frame: pd.DataFrame) -> np.ndarray:
        indicators = _level_indicators(frame[self.factor], self.levels, self.factor)
        return np.hstack([raw * indicators[:, [idx]] for idx in range(len(self.levels))])

    def transform(self, frame: pd.DataFrame) -> List[np.ndarray]:
        raw = self.margin.evaluate(_numeric(frame, self.variable))
        return [self._design(raw, frame)]


class TensorTerm(SmoothTerm):
    """``te(x, z)``: centred tensor product of two spline margins."""

    def __init__(self, spec: SmoothSpec, frame: pd.DataFrame) -> None:
        super().__init__(spec)
        if spec.by is not None:
            raise ValueError("te() terms do not support by-variables.")
        self.variables = spec.variables
        xs = [_numeric(frame, column) for column in self.variables]
        self.margins = [MarginalSpline.fit(x, spec.basis_dim, order=spec.m) for x in xs]
        raws = [margin.evaluate(x) for margin, x in zip(self.margins, xs)]

        left, right = (normalize_penalty(m.penalty, raw) for m, raw in zip(self.margins, raws))
        penalty = np.kron(left, np.eye(right.shape[0])) + np.kron(np.eye(left.shape[0]), right)
        tensor = row_tensor(*raws)
        self.constraint = centering_transform(tensor)
        basis = tensor @ self.constraint
        penalty = self.constraint.T @ penalty @ self.constraint
        self.blocks = [PenaltyBlock(spec.label, basis, normalize_penalty(penalty, basis), spec.sp)]

    def transform(self, frame: pd.DataFrame) -> List[np.ndarray]:
        raws = [margin.evaluate(_numeric(frame, column)) for margin, column in zip(self.margins, self.variables)]
        return [row_tensor(*raws) @ self.constraint]


def build_term(spec: SmoothSpec, frame: pd.DataFrame) -> SmoothTerm:
    """Instantiate the term class that matches ``spec``."""
    if spec.random and spec.by is not None:
        raise ValueError(f"{spec.label}: by-variables are not supported for bs='{spec.bs}'.")
    if spec.kind == "te":
        return TensorTerm(spec, frame)
    if spec.bs == "re":
        return RandomEffectTerm(spec, frame)
    if spec.bs == "fs":
        return FactorSmoothTerm(spec, frame)
    if spec.by is None:
        return SplineTerm(spec, frame)
    if spec.by not in frame.columns:
        raise KeyError(f"Column '{spec.by}' not found")
    if _is_factor(frame[spec.by]):
        return ByFactorTerm(spec, frame)
    return ByNumericTerm(spec, frame)


def build_terms(smooths: Sequence[SmoothSpec], frame: pd.DataFrame) -> List[SmoothTerm]:
    return [build_term(spec, frame) for spec in smooths]


__all__ = [
    "ByFactorTerm",
    "ByNumericTerm",
    "FactorSmoothTerm",
    "PenaltyBlock",
    "RandomEffectTerm",
    "SmoothTerm",
    "SplineTerm",
    "TensorTerm",
    "build_term",
    "build_terms",
]
