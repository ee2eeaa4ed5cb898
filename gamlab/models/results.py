"""Fitted GAM objects: summaries, predictions, term effects and residuals."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Literal, Optional, Sequence

import numpy as np
import pandas as pd
from scipy import stats
from statsmodels.genmod.families import Family

from .design import ModelDesign, ar1_transform
from .inference import PenalizedInference, parametric_tests, smooth_test
from .registry import FamilySpec

PredictionType = Literal["link", "response"]
ResidualKind = Literal["response", "pearson", "deviance", "normalized"]
RESIDUAL_KINDS = ("response", "pearson", "deviance", "normalized")


def _format_p(value: float) -> str:
    if not np.isfinite(value):
        return "NA"
    return "<2e-16" if value < 2e-16 else f"{value:.3g}"


def _stars(value: float) -> str:
    if not np.isfinite(value):
        return ""
    for cutoff, mark in ((0.001, "***"), (0.01, "**"), (0.05, "*"), (0.1, ".")):
        if value < cutoff:
            return mark
    return ""


@dataclass
class GamSummary:
    formula: str
    family: str
    link: str
    parametric: pd.DataFrame
    smooth: pd.DataFrame
    r_sq_adj: float
    dev_explained: float
    scale: float
    n: int
    criterion: str
    criterion_value: float
    aic: float
    ar_rho: float = 0.0

    def __str__(self) -> str:
        lines = [
            f"Family: {self.family}",
            f"Link function: {self.link}",
            "",
            "Formula:",
            self.formula,
        ]
        if self.ar_rho:
            lines.append(f"AR(1) rho: {self.ar_rho:.3f}")
        lines += ["", "Parametric coefficients:"]
        parametric = self.parametric.copy()
        p_col = parametric.columns[-1]
        parametric[""] = [_stars(value) for value in parametric[p_col]]
        parametric[p_col] = [_format_p(value) for value in parametric[p_col]]
        lines.append(parametric.to_string(float_format=lambda value: f"{value:.4g}"))
        if not self.smooth.empty:
            lines += ["", "Approximate significance of smooth terms:"]
            smooth = self.smooth.copy()
            p_col = smooth.columns[-1]
            smooth[""] = [_stars(value) for value in smooth[p_col]]
            smooth[p_col] = [_format_p(value) for value in smooth[p_col]]
            lines.append(smooth.to_string(float_format=lambda value: f"{value:.3f}"))
        lines += [
            "---",
            "Signif. codes:  0 '***' 0.001 '**' 0.01 '*' 0.05 '.' 0.1 ' ' 1",
            "",
            f"R-sq.(adj) = {self.r_sq_adj:.3f}   Deviance explained = {100 * self.dev_explained:.1f}%",
            f"{self.criterion.upper()} = {self.criterion_value:.5g}  Scale est. = {self.scale:.5g}  n = {self.n}",
        ]
        if np.isfinite(self.aic):
            lines.append(f"AIC = {self.aic:.2f}")
        return "\n".join(lines)


@dataclass
class FittedGam:
    """A GAM fitted by penalized IRLS.

    Coefficients, covariance and model matrix are held on the original data
    scale; ``fit_*`` quantities reflect the AR(1)-whitened problem when
    ``ar_rho`` is non-zero.
    """

    formula: str
    design: ModelDesign
    family_spec: FamilySpec
    family: Family
    params: np.ndarray
    inference: PenalizedInference
    alphas: np.ndarray
    criterion: str
    criterion_value: float
    y: np.ndarray
    X: np.ndarray
    offset: np.ndarray
    deviance: float
    null_deviance: float
    llf: float
    ar_rho: float = 0.0
    ar_start: Optional[np.ndarray] = None
    data: Optional[pd.DataFrame] = field(default=None, repr=False)

    # ------------------------------------------------------------------ #
    # Fit statistics
    # ------------------------------------------------------------------ #
    @property
    def n(self) -> int:
        return int(self.y.shape[0])

    @property
    def scale(self) -> float:
        return self.inference.scale

    @property
    def vb(self) -> np.ndarray:
        return self.inference.vb

    @property
    def edf_total(self) -> float:
        return self.inference.edf_total

    @property
    def residual_df(self) -> float:
        return self.n - self.edf_total

    @property
    def eta(self) -> np.ndarray:
        return self.X @ self.params + self.offset

    @property
    def mu(self) -> np.ndarray:
        return np.asarray(self.family.link.inverse(self.eta), dtype=float)

    @property
    def aic(self) -> float:
        if self.family_spec.name == "quasipoisson":
            return float("nan")
        extra = 0.0 if self.family_spec.scale_known else 1.0
        return -2.0 * self.llf + 2.0 * (self.edf_total + extra)

    @property
    def dev_explained(self) -> float:
        if self.null_deviance <= 0:
            return float("nan")
        return 1.0 - self.deviance / self.null_deviance

    @property
    def r_sq_adj(self) -> float:
        residual = self.y - self.mu
        total = np.var(self.y)
        if total == 0 or self.residual_df <= 0:
            return float("nan")
        return 1.0 - np.var(residual) * (self.n - 1) / (total * self.residual_df)

    @property
    def smoothing_parameters(self) -> pd.Series:
        return pd.Series(self.alphas, index=[block.label for block in self.design.blocks], name="sp")

    # ------------------------------------------------------------------ #
    # Summary
    # ------------------------------------------------------------------ #
    def summary(self) -> GamSummary:
        known = self.family_spec.scale_known
        n_linear = self.design.n_linear
        beta = self.params[:n_linear]
        se = self.inference.se[:n_linear]
        statistic, p_values = parametric_tests(beta, se, known, self.residual_df)
        stat_name = "z value" if known else "t value"
        p_name = "Pr(>|z|)" if known else "Pr(>|t|)"
        parametric = pd.DataFrame(
            {"Estimate": beta, "Std. Error": se, stat_name: statistic, p_name: p_values},
            index=self.design.linear_names,
        )

        rows: List[dict] = []
        for block, span in zip(self.design.blocks, self.design.block_slices()):
            edf = float(self.inference.edf[span].sum())
            test = smooth_test(self.params[span], self.vb[span, span], edf, known, self.residual_df)
            rows.append(
                {
                    "term": block.label,
                    "edf": edf,
                    "Ref.df": test.ref_df,
                    ("Chi.sq" if known else "F"): test.statistic,
                    "p-value": test.p_value,
                }
            )
        smooth = pd.DataFrame(rows).set_index("term") if rows else pd.DataFrame()

        return GamSummary(
            formula=self.formula,
            family=self.family_spec.name,
            link=self.family_spec.link,
            parametric=parametric,
            smooth=smooth,
            r_sq_adj=float(self.r_sq_adj),
            dev_explained=float(self.dev_explained),
            scale=self.scale,
            n=self.n,
            criterion=self.criterion,
            criterion_value=self.criterion_value,
            aic=self.aic,
            ar_rho=self.ar_rho,
        )

    # ------------------------------------------------------------------ #
    # Prediction
    # ------------------------------------------------------------------ #
    def linear_predictor_matrix(
        self,
        frame: pd.DataFrame,
        exclude: Sequence[str] = (),
        exclude_random: bool = False,
    ) -> np.ndarray:
        return self.design.linear_predictor_matrix(frame, exclude=exclude, exclude_random=exclude_random)

    def predict(
        self,
        frame: pd.DataFrame,
        type: PredictionType = "link",
        se: bool = True,
        exclude: Sequence[str] = (),
        exclude_random: bool = False,
        level: float = 0.95,
    ) -> pd.DataFrame:
        """Predictions with pointwise intervals built on the link scale."""
        if type not in ("link", "response"):
            raise ValueError(f"Unknown prediction type '{type}'. Use 'link' or 'response'.")
        if not 0.0 < level < 1.0:
            raise ValueError("Interval level must lie in (0, 1).")
        X = self.linear_predictor_matrix(frame, exclude=exclude, exclude_random=exclude_random)
        eta = X @ self.params + self.design.offset_for(frame)
        out = pd.DataFrame(index=frame.index)
        if not se:
            out["fit"] = self._to_scale(eta, type)
            return out
        std = np.sqrt(np.clip(np.einsum("ij,jk,ik->i", X, self.vb, X), 0.0, None))
        crit = stats.norm.ppf(0.5 + level / 2.0)
        out["fit"] = self._to_scale(eta, type)
        out["se"] = std if type == "link" else std * np.abs(1.0 / self.family.link.deriv(self._to_scale(eta, type)))
        out["lower"] = self._to_scale(eta - crit * std, type)
        out["upper"] = self._to_scale(eta + crit * std, type)
        return out

    def _to_scale(self, eta: np.ndarray, type: PredictionType) -> np.ndarray:
        if type == "link":
            return eta
        return np.asarray(self.family.link.inverse(eta), dtype=float)

    def term_effect(self, label: str, frame: pd.DataFrame, level: float = 0.95) -> pd.DataFrame:
        """Partial effect of one smooth term on the link scale, with pointwise intervals."""
        spans = self.design.term_slices()
        if label not in spans:
            raise ValueError(f"Unknown smooth term '{label}'. Available: {list(spans)}")
        term = next(term for term in self.design.terms if term.label == label)
        span = spans[label]
        X = np.hstack(term.transform(frame))
        fit = X @ self.params[span]
        std = np.sqrt(np.clip(np.einsum("ij,jk,ik->i", X, self.vb[span, span], X), 0.0, None))
        crit = stats.norm.ppf(0.5 + level / 2.0)
        return pd.DataFrame(
            {"fit": fit, "se": std, "lower": fit - crit * std, "upper": fit + crit * std},
            index=frame.index,
        )

    # ------------------------------------------------------------------ #
    # Residuals
    # ------------------------------------------------------------------ #
    def residuals(self, kind: ResidualKind = "response") -> np.ndarray:
        if kind not in RESIDUAL_KINDS:
            raise ValueError(f"Unknown residual type '{kind}'. Available: {list(RESIDUAL_KINDS)}")
        mu = self.mu
        if kind == "response":
            return self.y - mu
        if kind == "pearson":
            return (self.y - mu) / np.sqrt(self.family.variance(mu))
        if kind == "deviance":
            return np.asarray(self.family.resid_dev(self.y, mu), dtype=float)
        if not self.ar_rho:
            return self.y - mu
        start = self.ar_start if self.ar_start is not None else np.zeros(self.n, dtype=bool)
        return ar1_transform(self.y - mu, self.ar_rho, start)


__all__ = ["FittedGam", "GamSummary", "PredictionType", "RESIDUAL_KINDS", "ResidualKind"]
