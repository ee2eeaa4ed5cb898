from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

import typer

from experiments.common import TutorialResult
from experiments.historical import run_historical
from experiments.plots import (
    PlotSaveConfig,
    plot_acf,
    plot_difference,
    plot_observed,
    plot_smooths,
    plot_term_effect,
)
from experiments.pupillometry import run_pupillometry
from gamlab.datahub import DataRequest, FactorSpec, as_ordered, load_table, prepare_datasets, recode_frame
from gamlab.evaluation import expand_grid
from gamlab.models import FamilyKey, GamConfig, GamModel, SmoothingConfig

app = typer.Typer()


def _save_config(plots_root: Optional[Path], name: str, tag: Optional[str], save_static: bool, save_html: bool):
    if not plots_root:
        return None
    run_tag = tag or datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
    base_dir = plots_root / name
    print(f"[plots] Saving figures under {base_dir / run_tag}")
    return PlotSaveConfig(base_dir=base_dir, run_tag=run_tag, save_static=save_static, save_html=save_html)


def _report(result: TutorialResult) -> None:
    for name, fitted in result.models.items():
        typer.echo(f"\n=== {name} ===")
        typer.echo(str(fitted.summary()))
    typer.echo("\n=== Model comparison ===")
    typer.echo(result.comparison.to_string(float_format=lambda value: f"{value:.3f}"))


def _parse_assignments(values: List[str], option: str) -> List[tuple[str, str]]:
    pairs: List[tuple[str, str]] = []
    for value in values:
        name, sep, rest = value.partition("=")
        if not sep or not name.strip() or not rest.strip():
            raise typer.BadParameter(f"Expected NAME=VALUE, got '{value}'.", param_hint=option)
        pairs.append((name.strip(), rest.strip()))
    return pairs


@app.command("datahub")
def datahub(
    all: bool = typer.Option(False, "--all", help="Prepare every dataset."),
    pupillometry: bool = typer.Option(False, "--pupillometry", help="Prepare the pupil dilation table."),
    historical: bool = typer.Option(False, "--historical", help="Prepare the historical counts table."),
    pupil_source: Optional[str] = typer.Option(None, "--pupil-source", help="URL or path of the pupil table."),
    historical_source: Optional[str] = typer.Option(
        None, "--historical-source", help="URL or path of the historical table."
    ),
    simulate: bool = typer.Option(False, "--simulate", help="Write simulated tables instead of fetching."),
    force: bool = typer.Option(False, "--force", help="Refetch or resimulate even if files exist."),
    raw_root: Path = typer.Option(
        Path("data/raw"),
        "--raw-root",
        exists=False,
        file_okay=False,
        dir_okay=True,
        writable=True,
        help="Directory to store raw tables.",
    ),
) -> None:
    """
    Fetch, copy or simulate the tutorial tables into the raw data directory.
    """
    try:
        request = DataRequest.from_flags(
            all=all,
            pupillometry=pupillometry,
            historical=historical,
            pupil_source=pupil_source,
            historical_source=historical_source,
            simulate=simulate,
        )
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc

    written = prepare_datasets(request, raw_root=raw_root, force=force)
    for dataset, path in written.items():
        typer.echo(f"{dataset}: {path}")


@app.command()
def pupillometry(
    data: Optional[Path] = typer.Option(None, "--data", help="Pupil table (defaults to data/raw/pupil.csv)."),
    simulate: bool = typer.Option(False, "--simulate", help="Use simulated data instead of a file."),
    k: int = typer.Option(10, "--k", help="Basis dimension of the time smooths."),
    n_grid: int = typer.Option(100, "--n-grid", help="Number of time points in prediction grids."),
    plots_root: Optional[Path] = typer.Option(
        None,
        "--plots-root",
        help="Directory where plots should be saved (subfolders are created automatically).",
    ),
    plots_tag: Optional[str] = typer.Option(None, "--plots-tag", help="Folder suffix for this run (defaults to timestamp)."),
    save_static: bool = typer.Option(False, help="Write static PNG snapshots when saving plots (needs kaleido)."),
    save_html: bool = typer.Option(True, help="Write interactive HTML plots when saving."),
) -> None:
    """
    Run the pupil dilation tutorial: difference smooths, random smooths and an AR(1) refit.
    """
    try:
        result = run_pupillometry(data_path=data, simulate=simulate, k=k, n_grid=n_grid)
    except (KeyError, ValueError) as exc:
        raise typer.BadParameter(str(exc)) from exc
    _report(result)
    typer.echo(f"\nAR(1) rho: {result.rho:.3f}")

    save_config = _save_config(plots_root, "pupillometry", plots_tag, save_static, save_html)
    plot_observed(
        result.data,
        x="Time",
        y="Pupil",
        group="AgeCond",
        title="Observed pupil size per condition",
        save_to=save_config.for_plot("observed") if save_config else None,
    )
    plot_smooths(
        result.predictions,
        x="Time",
        group="AgeCond",
        title="Predicted pupil size (random effects excluded)",
        y_label="Pupil size",
        save_to=save_config.for_plot("smooths") if save_config else None,
    )
    plot_difference(
        result.differences,
        x="Time",
        title="Condition difference",
        save_to=save_config.for_plot("differences") if save_config else None,
    )
    for name, acf in result.acf.items():
        plot_acf(
            acf,
            title=f"Residual autocorrelation ({name})",
            save_to=save_config.for_plot(f"acf-{name}") if save_config else None,
        )


@app.command()
def historical(
    data: Optional[Path] = typer.Option(None, "--data", help="Counts table (defaults to data/raw/historical.csv)."),
    simulate: bool = typer.Option(False, "--simulate", help="Use simulated data instead of a file."),
    family: FamilyKey = typer.Option("poisson", "--family", help="poisson, quasipoisson or negbin."),
    k: int = typer.Option(6, "--k", help="Basis dimension of the period smooths."),
    per: float = typer.Option(1000.0, "--per", help="Word count used for predicted rates."),
    plots_root: Optional[Path] = typer.Option(None, "--plots-root", help="Directory where plots should be saved."),
    plots_tag: Optional[str] = typer.Option(None, "--plots-tag", help="Folder suffix for this run (defaults to timestamp)."),
    save_static: bool = typer.Option(False, help="Write static PNG snapshots when saving plots (needs kaleido)."),
    save_html: bool = typer.Option(True, help="Write interactive HTML plots when saving."),
) -> None:
    """
    Run the historical corpus tutorial: a Poisson GAMM with genre difference smooths.
    """
    try:
        result = run_historical(data_path=data, simulate=simulate, family=family, k=k, per=per)
    except (KeyError, ValueError) as exc:
        raise typer.BadParameter(str(exc)) from exc
    _report(result)

    save_config = _save_config(plots_root, "historical", plots_tag, save_static, save_html)
    plot_observed(
        result.data,
        x="Period",
        y="Rate",
        group="Genre",
        title=f"Observed rate per {per:g} words",
        save_to=save_config.for_plot("observed") if save_config else None,
    )
    plot_smooths(
        result.predictions,
        x="Period",
        group="Genre",
        title=f"Predicted rate per {per:g} words (text effects excluded)",
        y_label="Rate",
        save_to=save_config.for_plot("rates") if save_config else None,
    )
    plot_difference(
        result.differences,
        x="Period",
        title="Genre difference (log rate)",
        save_to=save_config.for_plot("differences") if save_config else None,
    )
    grid = expand_grid(result.data, vary=["Period"], n=50)
    effect = result.final_model.term_effect("s(Period)", grid)
    plot_term_effect(
        grid[["Period"]].join(effect),
        x="Period",
        label="s(Period)",
        save_to=save_config.for_plot("trend") if save_config else None,
    )


@app.command()
def fit(
    table: Path = typer.Argument(..., exists=True, dir_okay=False, help="CSV/TSV/parquet/feather/json table."),
    formula: str = typer.Option(..., "--formula", "-f", help="mgcv-style formula, e.g. 'y ~ g + s(x, by=gO)'."),
    family: FamilyKey = typer.Option("gaussian", "--family", help="Response family."),
    factor: List[str] = typer.Option(
        [],
        "--factor",
        help="Declare a factor and its level order: COL=lev1,lev2,... (repeatable).",
    ),
    ordered: List[str] = typer.Option(
        [],
        "--ordered",
        help="Add an ordered copy of a declared factor: NEW=SRC (repeatable).",
    ),
    criterion: str = typer.Option("auto", "--criterion", help="auto, gcv, ubre or aic."),
    ar_rho: float = typer.Option(0.0, "--ar-rho", help="AR(1) coefficient for Gaussian models."),
    ar_start: Optional[str] = typer.Option(None, "--ar-start", help="Boolean column marking series starts."),
    sep: Optional[str] = typer.Option(None, "--sep", help="Column separator for text tables."),
) -> None:
    """
    Fit an arbitrary formula to a table and print the summary.
    """
    specs = {
        column: FactorSpec(levels=tuple(level.strip() for level in levels.split(",") if level.strip()))
        for column, levels in _parse_assignments(factor, "--factor")
    }
    copies = _parse_assignments(ordered, "--ordered")
    try:
        frame = recode_frame(load_table(table, sep=sep), specs)
        for new, source in copies:
            if source not in frame.columns:
                raise ValueError(f"--ordered source column '{source}' not found.")
            frame[new] = as_ordered(frame[source], name=new)
        config = GamConfig(
            family=family,
            smoothing=SmoothingConfig(criterion=criterion),
            ar_rho=ar_rho,
            ar_start=ar_start,
        )
        fitted = GamModel(formula, config).fit(frame)
    except (KeyError, ValueError) as exc:
        raise typer.BadParameter(str(exc)) from exc
    typer.echo(str(fitted.summary()))


if __name__ == "__main__":
    app()
