"""Unit tests for formula parsing, spline bases, smooth terms and GAM fitting."""

from __future__ import annotations

from pathlib import Path

import sys

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

import numpy as np
import pandas as pd
import pytest
from statsmodels.gam.api import GLMGam
from statsmodels.gam.smooth_basis import GenericSmoothers, UnivariateGenericSmoother

from gamlab.datahub.preprocess import add_series_start
from gamlab.datahub.recode import as_factor, as_ordered
from gamlab.models import GamConfig, GamModel, SmoothingConfig, fit_gam, list_available_families
from gamlab.models.bases import (
    MarginalSpline,
    bspline_basis,
    centering_transform,
    derivative_penalty,
    equal_knots,
)
from gamlab.models.design import ar1_transform
from gamlab.models.formula import parse_formula, parse_smooth, split_terms
from gamlab.models.registry import get_family
from gamlab.models.terms import (
    ByFactorTerm,
    ByNumericTerm,
    FactorSmoothTerm,
    RandomEffectTerm,
    SplineTerm,
    TensorTerm,
    build_term,
)

FAST = SmoothingConfig(grid=(0.01, 1.0, 100.0, 10_000.0), sweeps=1)


# ---------------------------------------------------------------------------
# Fixtures


@pytest.fixture
def gaussian_frame() -> pd.DataFrame:
    rng = np.random.default_rng(0)
    n = 240
    x = rng.uniform(0.0, 1.0, n)
    group = np.repeat(["a", "b", "c"], n // 3)
    shift = np.select([group == "b", group == "c"], [0.5 * x, -0.5], 0.0)
    y = np.sin(2 * np.pi * x) + shift + rng.normal(0.0, 0.3, n)
    frame = pd.DataFrame({"x": x, "z": rng.uniform(0.0, 1.0, n), "y": y})
    frame["g"] = as_factor(pd.Series(group), ["a", "b", "c"])
    frame["gO"] = as_ordered(frame["g"], name="gO")
    frame["subject"] = np.tile([f"s{idx}" for idx in range(6)], n // 6)
    return frame


@pytest.fixture
def count_frame() -> pd.DataFrame:
    rng = np.random.default_rng(1)
    n = 300
    x = rng.uniform(0.0, 1.0, n)
    words = rng.integers(500, 1500, n)
    rate = 2.0 * np.exp(np.sin(2 * np.pi * x)) / 1000.0
    return pd.DataFrame({"x": x, "w": words, "y": rng.poisson(words * rate)})


# ---------------------------------------------------------------------------
# Formula parsing


def test_split_terms_respects_parentheses_and_quotes() -> None:
    assert split_terms("a + I(b + c) + s(x, bs='re+x')") == ["a", "I(b + c)", "s(x, bs='re+x')"]
    with pytest.raises(ValueError):
        split_terms("a + (b")
    with pytest.raises(ValueError):
        split_terms("a + + b")


def test_parse_formula_separates_parts() -> None:
    spec = parse_formula("y ~ g + s(x) + s(x, by=gO, k=5) + offset(log(w))")

    assert spec.response == "y"
    assert spec.parametric == "g"
    assert [smooth.label for smooth in spec.smooths] == ["s(x)", "s(x):gO"]
    assert spec.smooths[1].k == 5
    assert spec.offset == "(log(w))"
    assert spec.offset_columns == ["w"]


def test_parse_formula_defaults_to_intercept() -> None:
    spec = parse_formula("y ~ s(x)")
    assert spec.parametric == "1"
    assert spec.patsy_formula == "y ~ 1"


def test_referenced_columns_in_first_use_order(gaussian_frame: pd.DataFrame) -> None:
    spec = parse_formula("y ~ g + s(x, by=gO) + s(subject, bs='re')")
    assert spec.referenced_columns(gaussian_frame) == ["y", "g", "x", "gO", "subject"]


@pytest.mark.parametrize(
    "formula",
    [
        "y + s(x)",
        "y ~ s(x) + s(x)",
        "y ~ s(x, knots=3)",
        "y ~ s(x, z)",
        "y ~ te(x, z, g)",
        "y ~ s(x, k=2)",
        "~ s(x)",
    ],
)
def test_parse_formula_rejects_invalid(formula: str) -> None:
    with pytest.raises(ValueError):
        parse_formula(formula)


def test_parse_smooth_keywords() -> None:
    smooth = parse_smooth("s(Time, Subject, bs='fs', m=1)")

    assert smooth.variables == ("Time", "Subject")
    assert smooth.bs == "fs"
    assert smooth.m == 1
    assert smooth.random
    assert parse_smooth("te(x, z)").basis_dim == 5


# ---------------------------------------------------------------------------
# Bases


def test_bspline_basis_is_partition_of_unity() -> None:
    x = np.linspace(0.0, 10.0, 50)
    knots = equal_knots(x, 8)
    basis = bspline_basis(x, knots)

    assert basis.shape == (50, 8)
    np.testing.assert_allclose(basis.sum(axis=1), 1.0, atol=1e-10)
    with pytest.raises(ValueError, match="range"):
        bspline_basis(np.array([11.0]), knots)


def test_derivative_penalty_ignores_constants() -> None:
    knots = equal_knots(np.linspace(0.0, 1.0, 10), 10)
    penalty = derivative_penalty(knots, order=2)

    np.testing.assert_allclose(penalty, penalty.T, atol=1e-10)
    np.testing.assert_allclose(penalty @ np.ones(10), 0.0, atol=1e-8)
    eigvals = np.linalg.eigvalsh(penalty)
    assert eigvals.min() > -1e-8 * eigvals.max()


def test_centering_transform_gives_zero_mean_columns() -> None:
    x = np.linspace(0.0, 1.0, 40)
    basis = MarginalSpline.fit(x, 6).evaluate(x)
    constraint = centering_transform(basis)

    assert constraint.shape == (6, 5)
    np.testing.assert_allclose((basis @ constraint).mean(axis=0), 0.0, atol=1e-12)


def test_marginal_spline_lowers_degree_for_small_bases() -> None:
    margin = MarginalSpline.fit(np.linspace(0.0, 1.0, 20), 3)
    assert margin.degree == 2
    assert margin.n_basis == 3
    assert margin.bounds == (0.0, 1.0)


# ---------------------------------------------------------------------------
# Terms


def test_spline_term_transform_matches_fit_basis(gaussian_frame: pd.DataFrame) -> None:
    term = build_term(parse_smooth("s(x, k=8)"), gaussian_frame)

    assert isinstance(term, SplineTerm)
    assert term.width == 7
    np.testing.assert_allclose(term.transform(gaussian_frame)[0], term.blocks[0].basis)


def test_by_ordered_factor_builds_difference_blocks(gaussian_frame: pd.DataFrame) -> None:
    term = build_term(parse_smooth("s(x, by=gO, k=6)"), gaussian_frame)

    assert isinstance(term, ByFactorTerm)
    assert [block.label for block in term.blocks] == ["s(x):gOb", "s(x):gOc"]
    reference = (gaussian_frame["gO"] == "a").to_numpy()
    for block in term.transform(gaussian_frame):
        assert np.all(block[reference] == 0.0)


def test_by_unordered_factor_builds_one_block_per_level(gaussian_frame: pd.DataFrame) -> None:
    term = build_term(parse_smooth("s(x, by=g, k=6)"), gaussian_frame)
    assert len(term.blocks) == 3


def test_by_factor_rejects_unseen_levels(gaussian_frame: pd.DataFrame) -> None:
    term = build_term(parse_smooth("s(x, by=gO, k=6)"), gaussian_frame)
    new = gaussian_frame.head(3).copy()
    new["gO"] = ["a", "b", "d"]
    with pytest.raises(ValueError, match="not present"):
        term.transform(new)


def test_by_numeric_term_scales_rows(gaussian_frame: pd.DataFrame) -> None:
    term = build_term(parse_smooth("s(x, by=z, k=6)"), gaussian_frame)

    assert isinstance(term, ByNumericTerm)
    assert term.width == 6
    zeroed = gaussian_frame.assign(z=0.0)
    assert np.all(term.transform(zeroed)[0] == 0.0)


def test_random_and_factor_smooth_terms(gaussian_frame: pd.DataFrame) -> None:
    random = build_term(parse_smooth("s(subject, bs='re')"), gaussian_frame)
    assert isinstance(random, RandomEffectTerm)
    assert random.width == 6
    np.testing.assert_array_equal(random.blocks[0].penalty, np.eye(6))
    assert random.random

    slopes = build_term(parse_smooth("s(x, subject, bs='re')"), gaussian_frame)
    np.testing.assert_allclose(slopes.blocks[0].basis.sum(axis=1), gaussian_frame["x"].to_numpy())

    curves = build_term(parse_smooth("s(x, subject, bs='fs', k=5)"), gaussian_frame)
    assert isinstance(curves, FactorSmoothTerm)
    assert curves.width == 6 * 5
    assert np.linalg.matrix_rank(curves.blocks[0].penalty) == 6 * 5


def test_tensor_term_width(gaussian_frame: pd.DataFrame) -> None:
    term = build_term(parse_smooth("te(x, z)"), gaussian_frame)
    assert isinstance(term, TensorTerm)
    assert term.width == 5 * 5 - 1


def test_by_variable_on_random_effect_is_rejected(gaussian_frame: pd.DataFrame) -> None:
    with pytest.raises(ValueError, match="by-variables"):
        build_term(parse_smooth("s(subject, bs='re', by=gO)"), gaussian_frame)


def test_missing_smooth_column_raises_key_error(gaussian_frame: pd.DataFrame) -> None:
    with pytest.raises(KeyError):
        build_term(parse_smooth("s(missing)"), gaussian_frame)


# ---------------------------------------------------------------------------
# Registry and AR(1) helper


def test_family_registry() -> None:
    assert "quasipoisson" in list_available_families()
    assert not get_family("quasipoisson").scale_known
    assert get_family("quasipoisson").quasi
    assert get_family("poisson").scale_known
    assert get_family("gaussian").is_gaussian_identity
    with pytest.raises(ValueError, match="Available"):
        get_family("tweedie")  # type: ignore[arg-type]


def test_ar1_transform_leaves_series_starts() -> None:
    values = np.array([1.0, 2.0, 3.0, 10.0, 11.0])
    start = np.array([True, False, False, True, False])
    rho = 0.5
    out = ar1_transform(values, rho, start)
    scale = np.sqrt(1 - rho**2)

    assert out[0] == 1.0
    assert out[3] == 10.0
    assert out[1] == pytest.approx((2.0 - 0.5 * 1.0) / scale)
    assert out[4] == pytest.approx((11.0 - 0.5 * 10.0) / scale)
    with pytest.raises(ValueError):
        ar1_transform(values, 1.0, start)


# ---------------------------------------------------------------------------
# Fitting


def test_gaussian_fit_recovers_smooth(gaussian_frame: pd.DataFrame) -> None:
    fitted = fit_gam("y ~ g + s(x)", gaussian_frame)
    x = gaussian_frame["x"].to_numpy()
    group = gaussian_frame["g"].astype(str).to_numpy()
    truth = np.sin(2 * np.pi * x) + np.select([group == "b", group == "c"], [0.5 * x, -0.5], 0.0)

    assert np.corrcoef(fitted.mu, truth)[0, 1] > 0.9
    assert 2.0 < fitted.edf_total < 14.0
    assert fitted.criterion == "gcv"
    assert 0.0 < fitted.dev_explained < 1.0
    assert fitted.scale == pytest.approx(0.09, rel=0.5)


def test_summary_tables_and_text(gaussian_frame: pd.DataFrame) -> None:
    fitted = GamModel("y ~ g + s(x) + s(x, by=gO)", GamConfig(smoothing=FAST)).fit(gaussian_frame)
    summary = fitted.summary()

    assert list(summary.parametric.index) == ["Intercept", "g[T.b]", "g[T.c]"]
    assert list(summary.smooth.index) == ["s(x)", "s(x):gOb", "s(x):gOc"]
    assert set(summary.smooth.columns) == {"edf", "Ref.df", "F", "p-value"}
    assert summary.smooth.loc["s(x)", "p-value"] < 0.001
    text = str(summary)
    assert "Parametric coefficients:" in text
    assert "Approximate significance of smooth terms:" in text
    assert "R-sq.(adj)" in text


def test_predict_intervals_contain_fit(gaussian_frame: pd.DataFrame) -> None:
    fitted = fit_gam("y ~ s(x)", gaussian_frame)
    x = gaussian_frame["x"]
    new = pd.DataFrame({"x": np.linspace(x.min(), x.max(), 11)}, index=range(100, 111))
    predictions = fitted.predict(new)

    assert list(predictions.columns) == ["fit", "se", "lower", "upper"]
    assert list(predictions.index) == list(new.index)
    assert (predictions["lower"] <= predictions["fit"]).all()
    assert (predictions["fit"] <= predictions["upper"]).all()
    assert (predictions["se"] > 0).all()


def test_predict_outside_fitted_range_raises(gaussian_frame: pd.DataFrame) -> None:
    fitted = fit_gam("y ~ s(x)", gaussian_frame)
    with pytest.raises(ValueError, match="range"):
        fitted.predict(pd.DataFrame({"x": [gaussian_frame["x"].max() + 1.0]}))


def test_exclude_random_zeroes_random_terms(gaussian_frame: pd.DataFrame) -> None:
    shifts = {f"s{idx}": value for idx, value in enumerate(np.linspace(-1.0, 1.0, 6))}
    frame = gaussian_frame.assign(y=gaussian_frame["y"] + gaussian_frame["subject"].map(shifts))
    fitted = GamModel("y ~ s(x) + s(subject, bs='re')", GamConfig(smoothing=FAST)).fit(frame)
    new = frame.head(5)

    full = fitted.predict(new, se=False)["fit"]
    fixed_only = fitted.predict(new, se=False, exclude_random=True)["fit"]
    excluded = fitted.predict(new, se=False, exclude=["s(subject)"])["fit"]

    np.testing.assert_allclose(fixed_only, excluded)
    assert not np.allclose(full, fixed_only)
    with pytest.raises(ValueError, match="Unknown smooth"):
        fitted.predict(new, exclude=["s(nothing)"])


def test_term_effect_is_centred(gaussian_frame: pd.DataFrame) -> None:
    fitted = fit_gam("y ~ s(x)", gaussian_frame)
    effect = fitted.term_effect("s(x)", gaussian_frame)

    assert effect["fit"].mean() == pytest.approx(0.0, abs=1e-8)
    assert (effect["upper"] >= effect["lower"]).all()
    with pytest.raises(ValueError):
        fitted.term_effect("s(z)", gaussian_frame)


def test_poisson_fit_with_offset(count_frame: pd.DataFrame) -> None:
    fitted = fit_gam("y ~ s(x) + offset(log(w))", count_frame, family="poisson")
    summary = fitted.summary()

    assert fitted.criterion == "ubre"
    assert "Chi.sq" in summary.smooth.columns
    assert np.isfinite(fitted.aic)

    grid = pd.DataFrame({"x": np.linspace(0.05, 0.95, 10), "w": 1000})
    with_offset = fitted.predict(grid, type="link", se=False)["fit"]
    without_offset = fitted.predict(grid[["x"]], type="link", se=False)["fit"]
    np.testing.assert_allclose(with_offset - without_offset, np.log(1000.0))

    response = fitted.predict(grid, type="response")
    np.testing.assert_allclose(response["fit"], np.exp(with_offset))
    truth = 2.0 * np.exp(np.sin(2 * np.pi * grid["x"]))
    assert np.corrcoef(response["fit"], truth)[0, 1] > 0.8


def test_quasipoisson_estimates_scale(count_frame: pd.DataFrame) -> None:
    fitted = fit_gam("y ~ s(x) + offset(log(w))", count_frame, family="quasipoisson")

    assert fitted.criterion == "gcv"
    assert fitted.scale > 0
    assert fitted.scale == pytest.approx(fitted.inference.pearson / fitted.residual_df)
    assert np.isnan(fitted.aic)


def test_no_smooths_falls_back_to_glm(gaussian_frame: pd.DataFrame) -> None:
    fitted = fit_gam("y ~ x", gaussian_frame)
    design = np.column_stack([np.ones(len(gaussian_frame)), gaussian_frame["x"]])
    expected, *_ = np.linalg.lstsq(design, gaussian_frame["y"], rcond=None)

    np.testing.assert_allclose(fitted.params, expected, atol=1e-6)
    assert fitted.edf_total == pytest.approx(2.0)
    assert fitted.summary().smooth.empty


def test_fixed_smoothing_parameter_is_kept(gaussian_frame: pd.DataFrame) -> None:
    fitted = fit_gam("y ~ s(x, sp=1e6)", gaussian_frame)

    assert fitted.smoothing_parameters["s(x)"] == pytest.approx(1e6)
    assert fitted.edf_total < 3.0


def test_missing_rows_are_dropped(gaussian_frame: pd.DataFrame, capsys: pytest.CaptureFixture[str]) -> None:
    frame = gaussian_frame.copy()
    frame.loc[:4, "y"] = np.nan
    fitted = GamModel("y ~ s(x)", GamConfig(smoothing=FAST)).fit(frame)

    assert fitted.n == len(frame) - 5
    assert "Dropped 5 rows" in capsys.readouterr().out


def test_ar1_fit_whitens_residuals(gaussian_frame: pd.DataFrame) -> None:
    frame = gaussian_frame.sort_values("x").reset_index(drop=True)
    frame["start"] = False
    fitted = GamModel("y ~ s(x)", GamConfig(smoothing=FAST, ar_rho=0.4, ar_start="start")).fit(frame)

    assert fitted.ar_rho == pytest.approx(0.4)
    assert "AR(1) rho: 0.400" in str(fitted.summary())
    normalized = fitted.residuals("normalized")
    assert normalized.shape == (len(frame),)
    assert not np.allclose(normalized, fitted.residuals("response"))


def test_ar1_fit_with_series_start_flags(gaussian_frame: pd.DataFrame) -> None:
    frame = add_series_start(gaussian_frame, group="subject", time="x")
    fitted = GamModel("y ~ s(x)", GamConfig(smoothing=FAST, ar_rho=0.3, ar_start="start_event")).fit(frame)

    np.testing.assert_array_equal(fitted.ar_start, frame["start_event"].to_numpy())
    assert int(fitted.ar_start.sum()) == 6


def test_ar1_fit_leaves_start_column_untouched(gaussian_frame: pd.DataFrame) -> None:
    frame = gaussian_frame.sort_values("x").reset_index(drop=True)
    frame["start"] = False
    fitted = GamModel("y ~ s(x)", GamConfig(smoothing=FAST, ar_rho=0.4, ar_start="start")).fit(frame)

    assert fitted.ar_start[0]
    assert not frame["start"].any()


def test_inference_matches_penalized_least_squares(gaussian_frame: pd.DataFrame) -> None:
    fitted = GamModel("y ~ s(x, sp=1.0)").fit(gaussian_frame)
    X, y = fitted.X, fitted.y
    applied = 2.0 * fitted.design.penalty(fitted.alphas)
    inverse = np.linalg.inv(X.T @ X + applied)

    np.testing.assert_allclose(fitted.params, inverse @ X.T @ y, rtol=1e-6, atol=1e-8)
    assert fitted.edf_total == pytest.approx(np.trace(inverse @ X.T @ X), rel=1e-6)
    np.testing.assert_allclose(fitted.vb, inverse * fitted.scale, rtol=1e-6, atol=1e-12)


def test_inference_matches_statsmodels_gam(gaussian_frame: pd.DataFrame) -> None:
    fitted = GamModel("y ~ s(x, sp=1.0)").fit(gaussian_frame)
    X, y = fitted.X, fitted.y
    index = np.arange(y.shape[0], dtype=float)
    block = fitted.design.blocks[0]
    smoother = GenericSmoothers(
        index[:, None],
        [UnivariateGenericSmoother(index, X[:, 1:], None, None, block.penalty, variable_name=block.label)],
    )
    library = GLMGam(y, exog=X[:, :1], smoother=smoother, alpha=[1.0]).fit()

    np.testing.assert_allclose(fitted.params, library.params, rtol=1e-6, atol=1e-8)
    assert fitted.edf_total == pytest.approx(float(np.sum(library.edf)), rel=1e-4)
    assert fitted.scale == pytest.approx(float(library.scale), rel=1e-6)
    np.testing.assert_allclose(np.sqrt(np.diag(fitted.vb)), library.bse, rtol=1e-4)


def test_ar1_requires_gaussian_identity(count_frame: pd.DataFrame) -> None:
    model = GamModel("y ~ s(x)", GamConfig(family="poisson", ar_rho=0.3))
    with pytest.raises(ValueError, match="AR\\(1\\)"):
        model.fit(count_frame)


def test_unfitted_model_raises() -> None:
    model = GamModel("y ~ s(x)")
    with pytest.raises(RuntimeError):
        model.summary()
    with pytest.raises(RuntimeError):
        model.predict(pd.DataFrame({"x": [0.5]}))


def test_config_validation() -> None:
    with pytest.raises(ValueError):
        SmoothingConfig(grid=()).validate()
    with pytest.raises(ValueError):
        SmoothingConfig(grid=(1.0, -1.0)).validate()
    with pytest.raises(ValueError):
        SmoothingConfig(criterion="reml").validate()
    with pytest.raises(ValueError):
        GamConfig(ar_rho=1.0).validate()


def test_residual_kinds(count_frame: pd.DataFrame) -> None:
    fitted = GamModel("y ~ s(x) + offset(log(w))", GamConfig(family="poisson", smoothing=FAST)).fit(count_frame)

    np.testing.assert_allclose(fitted.residuals("response"), fitted.y - fitted.mu)
    np.testing.assert_allclose(fitted.residuals("pearson"), (fitted.y - fitted.mu) / np.sqrt(fitted.mu))
    deviance = fitted.residuals("deviance")
    assert np.sum(deviance**2) == pytest.approx(fitted.deviance)
    with pytest.raises(ValueError):
        fitted.residuals("studentized")  # type: ignore[arg-type]
