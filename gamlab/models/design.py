"""Model matrices for a parsed formula: patsy parametric part, smooth blocks and offset."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

import numpy as np
import pandas as pd
from patsy import DesignInfo, build_design_matrices, dmatrices
from scipy.linalg import block_diag

from .formula import FormulaSpec
from .terms import PenaltyBlock, SmoothTerm, build_terms


def ar1_transform(values: np.ndarray, rho: float, start: np.ndarray) -> np.ndarray:
    """Whiten rows under an AR(1) error model; rows flagged in ``start`` begin a new series."""
    if not -1.0 < rho < 1.0:
        raise ValueError(f"AR(1) coefficient must lie in (-1, 1), got {rho}.")
    array = np.asarray(values, dtype=float)
    flags = np.asarray(start, dtype=bool).copy()
    if flags.shape[0] != array.shape[0]:
        raise ValueError("Series-start flags must match the number of rows.")
    if flags.size:
        flags[0] = True
    out = array.copy()
    previous = np.roll(array, 1, axis=0)
    inner = ~flags
    out[inner] = (array[inner] - rho * previous[inner]) / np.sqrt(1.0 - rho**2)
    return out


def evaluate_offset(expression: Optional[str], frame: pd.DataFrame) -> np.ndarray:
    if not expression:
        return np.zeros(len(frame))
    values = frame.eval(expression, engine="python")
    return np.asarray(values, dtype=float).reshape(len(frame))


@dataclass
class ModelDesign:
    """Column layout of a GAM: parametric columns first, then one slice per penalty block."""

    formula: FormulaSpec
    design_info: DesignInfo
    linear_names: List[str]
    terms: List[SmoothTerm]

    @classmethod
    def build(cls, formula: FormulaSpec, frame: pd.DataFrame) -> tuple["ModelDesign", np.ndarray, np.ndarray, np.ndarray]:
        """Return the design plus response, full model matrix and offset for ``frame``."""
        for smooth in formula.smooths:
            for column in smooth.columns:
                if column not in frame.columns:
                    raise KeyError(f"Column '{column}' not found")
        response, linear = dmatrices(formula.patsy_formula, frame, return_type="dataframe", NA_action="raise")
        if response.shape[1] != 1:
            raise ValueError(f"Response '{formula.response}' must be a single numeric column.")
        terms = build_terms(formula.smooths, frame)
        design = cls(
            formula=formula,
            design_info=linear.design_info,
            linear_names=list(linear.columns),
            terms=terms,
        )
        matrix = np.hstack([linear.to_numpy(dtype=float)] + [block.basis for block in design.blocks])
        offset = evaluate_offset(formula.offset, frame)
        return design, response.iloc[:, 0].to_numpy(dtype=float), matrix, offset

    @property
    def n_linear(self) -> int:
        return len(self.linear_names)

    @property
    def blocks(self) -> List[PenaltyBlock]:
        return [block for term in self.terms for block in term.blocks]

    @property
    def n_coef(self) -> int:
        return self.n_linear + sum(block.width for block in self.blocks)

    def block_slices(self) -> List[slice]:
        slices: List[slice] = []
        start = self.n_linear
        for block in self.blocks:
            slices.append(slice(start, start + block.width))
            start += block.width
        return slices

    def term_slices(self) -> Dict[str, slice]:
        """Column span of every smooth term, keyed by term label."""
        spans: Dict[str, slice] = {}
        start = self.n_linear
        for term in self.terms:
            spans[term.label] = slice(start, start + term.width)
            start += term.width
        return spans

    def coef_names(self) -> List[str]:
        names = list(self.linear_names)
        for block in self.blocks:
            names.extend(f"{block.label}.{idx + 1}" for idx in range(block.width))
        return names

    def penalty(self, alphas: Sequence[float]) -> np.ndarray:
        """Block-diagonal ``alpha * S`` with zeros for the parametric columns.

        GLMGam penalizes by ``alpha * βᵀSβ``, so its PIRLS step solves with twice this matrix.
        """
        blocks = self.blocks
        if len(alphas) != len(blocks):
            raise ValueError(f"Expected {len(blocks)} smoothing parameters, got {len(alphas)}.")
        parts = [np.zeros((self.n_linear, self.n_linear))]
        parts.extend(alpha * block.penalty for alpha, block in zip(alphas, blocks))
        return block_diag(*parts)

    def resolve_labels(self, labels: Sequence[str]) -> List[str]:
        """Map user-facing labels to term labels; unknown labels raise."""
        known = [term.label for term in self.terms]
        unknown = [label for label in labels if label not in known]
        if unknown:
            raise ValueError(f"Unknown smooth term(s) {unknown}. Available: {known}")
        return list(labels)

    def linear_predictor_matrix(
        self,
        frame: pd.DataFrame,
        exclude: Sequence[str] = (),
        exclude_random: bool = False,
    ) -> np.ndarray:
        """Rebuild the model matrix for new rows using the fitted knots, constraints and levels."""
        excluded = set(self.resolve_labels(exclude))
        (linear,) = build_design_matrices([self.design_info], frame, return_type="dataframe", NA_action="raise")
        parts = [linear.to_numpy(dtype=float)]
        for term in self.terms:
            if term.label in excluded or (exclude_random and term.random):
                parts.extend(np.zeros((len(frame), block.width)) for block in term.blocks)
            else:
                parts.extend(term.transform(frame))
        return np.hstack(parts)

    def offset_for(self, frame: pd.DataFrame) -> np.ndarray:
        """Offset for new rows; zero when the offset columns are absent."""
        columns = self.formula.offset_columns
        if not columns or any(column not in frame.columns for column in columns):
            return np.zeros(len(frame))
        return evaluate_offset(self.formula.offset, frame)


__all__ = ["ModelDesign", "ar1_transform", "evaluate_offset"]
