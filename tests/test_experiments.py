"""End-to-end tests for the tutorial workflows, plots and the command line."""

from __future__ import annotations

from pathlib import Path

import sys

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

import numpy as np
import pandas as pd
import pytest
from typer.testing import CliRunner

import main
from experiments.common import load_tutorial_frame
from experiments.historical import run_historical
from experiments.plots import PlotSaveConfig, plot_acf, plot_difference, plot_observed, plot_smooths
from experiments.pupillometry import START_COLUMN, run_pupillometry
from gamlab.datahub.simulate import (
    HistoricalSimulationConfig,
    PupilSimulationConfig,
    simulate_pupil_data,
)
from gamlab.models import SmoothingConfig

FAST = SmoothingConfig(grid=(0.1, 10.0, 1000.0), sweeps=1)
SMALL_PUPIL = PupilSimulationConfig(n_subjects=2, trials_per_condition=2, time_step=100.0)
SMALL_HISTORICAL = HistoricalSimulationConfig(n_periods=6, texts_per_cell=3)


# ---------------------------------------------------------------------------
# Fixtures


@pytest.fixture(scope="module")
def pupil_result():
    return run_pupillometry(simulate=True, simulation=SMALL_PUPIL, smoothing=FAST, k=5, n_grid=12)


@pytest.fixture(scope="module")
def historical_result():
    return run_historical(simulate=True, simulation=SMALL_HISTORICAL, smoothing=FAST, k=4, n_grid=8)


# ---------------------------------------------------------------------------
# Pupillometry workflow


def test_pupillometry_fits_every_model(pupil_result) -> None:
    assert list(pupil_result.models) == ["m_base", "m_diff", "m_rand", "m_ar1"]
    assert set(pupil_result.comparison.index) == set(pupil_result.models)
    assert pupil_result.final_model is pupil_result.models["m_ar1"]
    assert pupil_result.final_model.ar_rho == pytest.approx(pupil_result.rho)
    assert -0.95 <= pupil_result.rho <= 0.95
    assert START_COLUMN in pupil_result.data.columns


def test_pupillometry_predictions_cover_every_condition(pupil_result) -> None:
    predictions = pupil_result.predictions
    levels = list(pupil_result.data["AgeCond"].cat.categories)

    assert len(predictions) == 12 * len(levels)
    assert set(predictions["AgeCond"].astype(str)) == set(levels)
    assert (predictions["AgeCondO"].astype(str) == predictions["AgeCond"].astype(str)).all()
    assert np.isfinite(predictions[["fit", "se", "lower", "upper"]].to_numpy()).all()


def test_pupillometry_differences_cover_every_pair(pupil_result) -> None:
    n_levels = pupil_result.data["AgeCond"].cat.categories.size
    differences = pupil_result.differences

    assert differences["pair"].nunique() == n_levels * (n_levels - 1) // 2
    assert set(differences.columns) >= {"Time", "difference", "se", "lower", "upper", "significant"}


def test_pupillometry_acf_before_and_after_ar1(pupil_result) -> None:
    assert set(pupil_result.acf) == {"m_rand", "m_ar1"}
    before = pupil_result.acf["m_rand"]
    after = pupil_result.acf["m_ar1"]
    assert before["acf"].iloc[0] == 1.0
    assert abs(after["acf"].iloc[1]) < abs(before["acf"].iloc[1])


def test_pupillometry_rejects_path_and_simulate(tmp_path: Path) -> None:
    with pytest.raises(ValueError, match="either"):
        run_pupillometry(data_path=tmp_path / "pupil.csv", simulate=True)


def test_load_tutorial_frame_reads_raw_file(tmp_path: Path) -> None:
    simulate_pupil_data(SMALL_PUPIL).to_csv(tmp_path / "pupil.csv", index=False)
    frame = load_tutorial_frame("pupillometry", None, False, simulator=lambda: pd.DataFrame(), raw_root=tmp_path)

    assert "AgeCondO" in frame.columns
    assert frame["AgeCondO"].cat.ordered


# ---------------------------------------------------------------------------
# Historical workflow


def test_historical_fits_trend_and_genre_models(historical_result) -> None:
    assert list(historical_result.models) == ["m_trend", "m_genre"]
    assert "Rate" in historical_result.data.columns
    assert historical_result.comparison.loc["m_genre", "vs"] == "m_trend"
    assert historical_result.final_model.family_spec.name == "poisson"


def test_historical_predictions_use_fixed_word_count(historical_result) -> None:
    predictions = historical_result.predictions

    assert (predictions["WordCount"] == 1000.0).all()
    assert len(predictions) == 8 * 3
    assert (predictions["fit"] > 0).all()
    assert list(historical_result.differences["pair"].unique()) == [
        "letters - prose",
        "drama - prose",
        "drama - letters",
    ]


def test_historical_rejects_non_count_family() -> None:
    with pytest.raises(ValueError, match="count family"):
        run_historical(simulate=True, family="gaussian")


# ---------------------------------------------------------------------------
# Plots


def test_plots_write_html(pupil_result, tmp_path: Path) -> None:
    config = PlotSaveConfig(base_dir=tmp_path, run_tag="run")
    plot_observed(pupil_result.data, x="Time", y="Pupil", group="AgeCond", save_to=config.for_plot("observed"))
    plot_smooths(pupil_result.predictions, x="Time", group="AgeCond", save_to=config.for_plot("smooths"))
    plot_difference(pupil_result.differences, x="Time", save_to=config.for_plot("differences"))
    plot_acf(pupil_result.acf["m_rand"], save_to=config.for_plot("acf"))

    run_dir = tmp_path / "run"
    assert (run_dir / "observed.html").exists()
    assert (run_dir / "smooths.html").exists()
    assert (run_dir / "acf.html").exists()
    assert not list(run_dir.glob("*.png"))
    n_pairs = pupil_result.differences["pair"].nunique()
    assert len(list(run_dir.glob("differences-*.html"))) == n_pairs


# ---------------------------------------------------------------------------
# Command line


def _table(tmp_path: Path) -> Path:
    rng = np.random.default_rng(11)
    n = 150
    x = rng.uniform(0.0, 1.0, n)
    group = np.repeat(["a", "b", "c"], n // 3)
    y = np.sin(2 * np.pi * x) + np.where(group == "b", 0.5, 0.0) + rng.normal(0.0, 0.3, n)
    path = tmp_path / "table.csv"
    pd.DataFrame({"x": x, "g": group, "y": y}).to_csv(path, index=False)
    return path


def test_cli_fit_prints_summary(tmp_path: Path) -> None:
    runner = CliRunner()
    result = runner.invoke(
        main.app,
        [
            "fit",
            str(_table(tmp_path)),
            "--formula",
            "y ~ g + s(x) + s(x, by=gO)",
            "--factor",
            "g=a,b,c",
            "--ordered",
            "gO=g",
        ],
    )

    assert result.exit_code == 0, result.output
    assert "Approximate significance of smooth terms" in result.output
    assert "s(x):gOb" in result.output


def test_cli_fit_reports_bad_formula(tmp_path: Path) -> None:
    runner = CliRunner()
    result = runner.invoke(main.app, ["fit", str(_table(tmp_path)), "--formula", "y ~ s(missing)"])
    assert result.exit_code != 0

    malformed = runner.invoke(
        main.app, ["fit", str(_table(tmp_path)), "--formula", "y ~ s(x)", "--factor", "g"]
    )
    assert malformed.exit_code != 0


def test_cli_datahub_simulates_tables(tmp_path: Path) -> None:
    runner = CliRunner()
    result = runner.invoke(main.app, ["datahub", "--all", "--simulate", "--raw-root", str(tmp_path)])

    assert result.exit_code == 0, result.output
    assert len(list(tmp_path.glob("*.csv"))) == 2


@pytest.mark.parametrize("command", ["pupillometry", "historical"])
def test_cli_tutorials_report_missing_columns(command: str, tmp_path: Path) -> None:
    path = tmp_path / "partial.csv"
    pd.DataFrame({"Time": [0.0, 50.0], "Pupil": [1.0, 2.0]}).to_csv(path, index=False)
    result = CliRunner().invoke(main.app, [command, "--data", str(path)])

    assert result.exit_code == 2
