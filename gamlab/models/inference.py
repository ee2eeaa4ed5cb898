"""Bayesian covariance, effective degrees of freedom and Wald tests for penalized fits."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import numpy as np
from scipy import stats
from statsmodels.genmod.families import Family


@dataclass(frozen=True)
class PenalizedInference:
    """Posterior covariance and edf of a penalized IRLS fit.

    ``edf`` holds one value per coefficient (the diagonal of the influence
    matrix ``F = (XᵀWX + P)⁻¹ XᵀWX``); summing a slice gives the edf of a term.
    """

    vb: np.ndarray
    edf: np.ndarray
    scale: float
    pearson: float

    @property
    def edf_total(self) -> float:
        return float(self.edf.sum())

    @property
    def se(self) -> np.ndarray:
        return np.sqrt(np.clip(np.diag(self.vb), 0.0, None))


def penalized_inference(
    X: np.ndarray,
    y: np.ndarray,
    mu: np.ndarray,
    normalized_cov: np.ndarray,
    family: Family,
    scale: Optional[float] = None,
) -> PenalizedInference:
    """Covariance and edf from the solver's unscaled covariance ``(XᵀWX + P)⁻¹``.

    ``P`` is the penalty the fitting library applied, so the edf and intervals
    describe the fitted model. Without ``scale`` the dispersion is the Pearson
    estimate χ²/(n - edf), as for quasi families.
    """
    weights = np.asarray(family.weights(mu), dtype=float)
    xtwx = X.T @ (weights[:, None] * X)
    edf = np.einsum("ij,ji->i", normalized_cov, xtwx)

    residual = y - mu
    pearson = float(np.sum(residual**2 / family.variance(mu)))
    if scale is None:
        residual_df = y.shape[0] - float(edf.sum())
        if residual_df <= 0:
            raise ValueError("Model has at least as many effective parameters as observations.")
        scale = pearson / residual_df
    return PenalizedInference(vb=normalized_cov * scale, edf=edf, scale=float(scale), pearson=pearson)


@dataclass(frozen=True)
class WaldTest:
    statistic: float
    ref_df: float
    p_value: float


def smooth_test(
    beta: np.ndarray,
    vb: np.ndarray,
    edf: float,
    scale_known: bool,
    residual_df: float,
) -> WaldTest:
    """Rank-truncated Wald test that a smooth term is zero everywhere.

    The covariance is inverted on its leading ``r = round(edf)`` eigenvectors. With a
    known scale the statistic is chi-squared on ``r`` df; otherwise ``T / r`` is
    referred to F(r, residual_df).
    """
    width = beta.shape[0]
    rank = int(min(max(1, round(edf)), width))
    eigvals, eigvecs = np.linalg.eigh((vb + vb.T) / 2.0)
    order = np.argsort(eigvals)[::-1][:rank]
    kept_vals, kept_vecs = eigvals[order], eigvecs[:, order]
    kept_vals = np.where(kept_vals > 0, kept_vals, np.inf)
    projected = kept_vecs.T @ beta
    statistic = float(np.sum(projected**2 / kept_vals))
    if scale_known:
        return WaldTest(statistic, float(rank), float(stats.chi2.sf(statistic, rank)))
    f_stat = statistic / rank
    return WaldTest(f_stat, float(rank), float(stats.f.sf(f_stat, rank, max(residual_df, 1.0))))


def parametric_tests(
    beta: np.ndarray,
    se: np.ndarray,
    scale_known: bool,
    residual_df: float,
) -> tuple[np.ndarray, np.ndarray]:
    """z (known scale) or t statistics and two-sided p-values."""
    with np.errstate(divide="ignore", invalid="ignore"):
        statistic = np.where(se > 0, beta / se, np.nan)
    if scale_known:
        p_values = 2.0 * stats.norm.sf(np.abs(statistic))
    else:
        p_values = 2.0 * stats.t.sf(np.abs(statistic), max(residual_df, 1.0))
    return statistic, p_values


__all__ = ["PenalizedInference", "WaldTest", "parametric_tests", "penalized_inference", "smooth_test"]
