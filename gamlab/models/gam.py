"""GAM fitting on top of statsmodels' penalized GLM.

``GamModel`` parses an mgcv-style formula, builds the parametric design with
patsy and the smooth blocks from ``terms``, and fits with ``GLMGam`` (penalized
IRLS). Smoothing parameters are chosen by coordinate search over a log grid
minimizing GCV, UBRE or AIC; inference uses the Bayesian covariance of the
penalized fit.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Sequence

import numpy as np
import pandas as pd
import statsmodels.api as sm
from statsmodels.gam.api import GLMGam
from statsmodels.gam.smooth_basis import GenericSmoothers, UnivariateGenericSmoother

from .design import ModelDesign, ar1_transform
from .formula import FormulaSpec, parse_formula
from .inference import PenalizedInference, penalized_inference
from .registry import FamilyKey, FamilySpec, get_family
from .results import FittedGam, GamSummary
from .selection import CRITERIA, aic_score, gcv_score, resolve_criterion, select_smoothing, ubre_score

DEFAULT_SP_GRID = tuple(float(value) for value in np.logspace(-3, 5, 9))


@dataclass(frozen=True)
class SmoothingConfig:
    """Grid search settings for smoothing parameters."""

    grid: Sequence[float] = DEFAULT_SP_GRID
    sweeps: int = 2
    criterion: str = "auto"
    initial: float = 1.0

    def validate(self) -> None:
        if len(self.grid) == 0:
            raise ValueError("Smoothing grid must not be empty.")
        if any(value <= 0 for value in self.grid):
            raise ValueError("Smoothing grid values must be positive.")
        if self.sweeps < 1:
            raise ValueError("sweeps must be at least 1.")
        if self.criterion not in CRITERIA:
            raise ValueError(f"Unknown criterion '{self.criterion}'. Available: {list(CRITERIA)}")
        if self.initial <= 0:
            raise ValueError("initial smoothing parameter must be positive.")


@dataclass(frozen=True)
class GamConfig:
    family: FamilyKey = "gaussian"
    smoothing: SmoothingConfig = field(default_factory=SmoothingConfig)
    ar_rho: float = 0.0
    ar_start: Optional[str] = None
    maxiter: int = 200

    def validate(self) -> None:
        get_family(self.family)
        self.smoothing.validate()
        if not -1.0 < self.ar_rho < 1.0:
            raise ValueError("ar_rho must lie in (-1, 1).")
        if self.maxiter < 1:
            raise ValueError("maxiter must be at least 1.")


@dataclass
class _PenalizedFit:
    params: np.ndarray
    mu: np.ndarray
    deviance: float
    llf: float
    inference: PenalizedInference


@dataclass
class _FitData:
    """Response, linear exog, smooth bases and offset on the (possibly whitened) fitting scale."""

    y: np.ndarray
    linear: np.ndarray
    bases: list
    offset: np.ndarray

    @property
    def exog(self) -> np.ndarray:
        return np.hstack([self.linear] + self.bases)


class GamModel:
    """Declarative GAM: a formula plus a GamConfig."""

    def __init__(self, formula: str, config: Optional[GamConfig] = None) -> None:
        self.formula = formula
        self.config = config or GamConfig()
        self.fitted_: Optional[FittedGam] = None

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #
    def fit(self, frame: pd.DataFrame) -> FittedGam:
        self.config.validate()
        spec = parse_formula(self.formula)
        family_spec = get_family(self.config.family)
        data = self._complete_rows(spec, frame)

        design, y, X, offset = ModelDesign.build(spec, data)
        n_linear = design.n_linear
        fit_data = _FitData(
            y=y,
            linear=X[:, :n_linear],
            bases=[X[:, span] for span in design.block_slices()],
            offset=offset,
        )

        start: Optional[np.ndarray] = None
        rho = float(self.config.ar_rho)
        log_jacobian = 0.0
        if rho:
            if not family_spec.is_gaussian_identity:
                raise ValueError("AR(1) errors are only supported for the Gaussian family with identity link.")
            start = self._series_start(data)
            fit_data = _FitData(
                y=ar1_transform(y, rho, start),
                linear=ar1_transform(fit_data.linear, rho, start),
                bases=[ar1_transform(basis, rho, start) for basis in fit_data.bases],
                offset=ar1_transform(offset, rho, start),
            )
            log_jacobian = -0.5 * float(np.count_nonzero(~start)) * np.log(1.0 - rho**2)

        criterion = resolve_criterion(self.config.smoothing.criterion, family_spec.scale_known)
        blocks = design.blocks
        print(
            f"[gam] Fitting {self.formula} ({family_spec.name}, n={len(data)}, "
            f"{n_linear} parametric + {design.n_coef - n_linear} smooth coefficients)"
        )

        def evaluate(alphas: np.ndarray) -> float:
            result = self._fit_penalized(fit_data, design, family_spec, alphas)
            return self._criterion(criterion, result, family_spec, len(data))

        alphas = np.array(
            [block.sp if block.sp is not None else self.config.smoothing.initial for block in blocks], dtype=float
        )
        free = [block.sp is None for block in blocks]
        if any(free):
            selection = select_smoothing(
                evaluate,
                alphas,
                free,
                self.config.smoothing.grid,
                sweeps=self.config.smoothing.sweeps,
            )
            alphas = selection.alphas
            print(f"[gam] Selected smoothing parameters after {selection.evaluations} fits ({criterion.upper()}).")

        final = self._fit_penalized(fit_data, design, family_spec, alphas)
        # Intercept-only model on the fitting scale, so whitened fits compare like with like.
        intercept = np.ones((len(data), 1))
        if start is not None:
            intercept = ar1_transform(intercept, rho, start)
        null_deviance = self._null_deviance(fit_data, family_spec, intercept)

        self.fitted_ = FittedGam(
            formula=self.formula,
            design=design,
            family_spec=family_spec,
            family=family_spec.build(),
            params=final.params,
            inference=final.inference,
            alphas=alphas,
            criterion=criterion,
            criterion_value=self._criterion(criterion, final, family_spec, len(data)),
            y=y,
            X=X,
            offset=offset,
            deviance=final.deviance,
            null_deviance=null_deviance,
            llf=final.llf + log_jacobian,
            ar_rho=rho,
            ar_start=start,
            data=data,
        )
        return self.fitted_

    def summary(self) -> GamSummary:
        return self._require_fitted().summary()

    def predict(self, frame: pd.DataFrame, **kwargs) -> pd.DataFrame:
        return self._require_fitted().predict(frame, **kwargs)

    # ------------------------------------------------------------------ #
    # Helpers
    # ------------------------------------------------------------------ #
    def _require_fitted(self) -> FittedGam:
        if self.fitted_ is None:
            raise RuntimeError("Model has not been fitted; call fit() first.")
        return self.fitted_

    def _complete_rows(self, spec: FormulaSpec, frame: pd.DataFrame) -> pd.DataFrame:
        columns = spec.referenced_columns(frame)
        if self.config.ar_start:
            if self.config.ar_start not in frame.columns:
                raise KeyError(f"Column '{self.config.ar_start}' not found")
            columns.append(self.config.ar_start)
        complete = frame[columns].notna().all(axis=1)
        dropped = int((~complete).sum())
        if dropped:
            print(f"[gam] Dropped {dropped} rows with missing values.")
        data = frame.loc[complete].reset_index(drop=True)
        if data.empty:
            raise ValueError("No complete rows left to fit.")
        return data

    def _series_start(self, data: pd.DataFrame) -> np.ndarray:
        if self.config.ar_start is None:
            start = np.zeros(len(data), dtype=bool)
        else:
            start = data[self.config.ar_start].to_numpy(dtype=bool, copy=True)
        start[0] = True
        return start

    def _fit_penalized(
        self,
        data: _FitData,
        design: ModelDesign,
        family_spec: FamilySpec,
        alphas: np.ndarray,
    ) -> _PenalizedFit:
        family = family_spec.build()
        if data.bases:
            index = np.arange(data.y.shape[0], dtype=float)
            smoothers = [
                UnivariateGenericSmoother(index, basis, None, None, block.penalty, variable_name=block.label)
                for basis, block in zip(data.bases, design.blocks)
            ]
            generic = GenericSmoothers(np.column_stack([index] * len(smoothers)), smoothers)
            model = GLMGam(
                data.y,
                exog=data.linear,
                smoother=generic,
                alpha=[float(alpha) for alpha in alphas],
                family=family,
                offset=data.offset,
            )
            result = model.fit(maxiter=self.config.maxiter)
        else:
            result = sm.GLM(data.y, data.linear, family=family, offset=data.offset).fit(maxiter=self.config.maxiter)

        params = np.asarray(result.params, dtype=float)
        exog = data.exog
        mu = np.asarray(family.link.inverse(exog @ params + data.offset), dtype=float)
        if family_spec.scale_known:
            scale: Optional[float] = 1.0
        elif family_spec.quasi:
            scale = None
        else:
            scale = float(result.scale)
        # normalized_cov_params is the inverse of the penalized Hessian the solver used.
        inference = penalized_inference(
            exog, data.y, mu, np.asarray(result.normalized_cov_params, dtype=float), family, scale
        )
        return _PenalizedFit(
            params=params,
            mu=mu,
            deviance=float(result.deviance),
            llf=float(result.llf),
            inference=inference,
        )

    @staticmethod
    def _criterion(criterion: str, fit: _PenalizedFit, family_spec: FamilySpec, n: int) -> float:
        edf = fit.inference.edf_total
        if criterion == "gcv":
            return gcv_score(fit.deviance, edf, n)
        if criterion == "ubre":
            return ubre_score(fit.deviance, edf, n)
        return aic_score(fit.llf, edf + (0.0 if family_spec.scale_known else 1.0))

    @staticmethod
    def _null_deviance(data: _FitData, family_spec: FamilySpec, intercept: np.ndarray) -> float:
        family = family_spec.build()
        result = sm.GLM(data.y, intercept, family=family, offset=data.offset).fit()
        return float(result.deviance)


__all__ = ["DEFAULT_SP_GRID", "GamConfig", "GamModel", "SmoothingConfig"]
