"""Raw-data and residual diagnostic plots."""

from __future__ import annotations

from typing import Optional

import numpy as np
import pandas as pd
import plotly.express as px
import plotly.graph_objects as go

from .save_config import PlotSaveDestinations, save_or_show

__all__ = ["plot_acf", "plot_observed"]


def plot_observed(
    frame: pd.DataFrame,
    x: str,
    y: str,
    group: Optional[str] = None,
    bin_size: Optional[float] = None,
    title: str = "Observed data",
    save_to: Optional[PlotSaveDestinations] = None,
) -> None:
    """Mean of ``y`` per ``x`` bin and ``group`` level, as lines with markers."""
    if frame.empty:
        return

    data = frame.copy()
    if bin_size:
        data[x] = np.floor(data[x] / bin_size) * bin_size
    keys = [group, x] if group else [x]
    means = data.groupby(keys, observed=True)[y].mean().reset_index()
    if group:
        means[group] = means[group].astype(str)

    fig = px.line(
        means,
        x=x,
        y=y,
        color=group,
        markers=True,
        title=title,
        labels={y: f"Mean {y}"},
    )
    save_or_show(fig, save_to)


def plot_acf(
    acf: pd.DataFrame,
    title: str = "Residual autocorrelation",
    save_to: Optional[PlotSaveDestinations] = None,
) -> None:
    """Bar chart of ``acf`` per ``lag`` with the white-noise band."""
    if acf.empty:
        return

    fig = go.Figure(go.Bar(x=acf["lag"], y=acf["acf"], name="ACF", marker_color="#636EFA"))
    band = float(acf["ci"].iloc[0])
    fig.add_hline(y=band, line_dash="dash", line_color="grey")
    fig.add_hline(y=-band, line_dash="dash", line_color="grey")
    fig.update_layout(title=title, xaxis_title="Lag", yaxis_title="Autocorrelation", yaxis=dict(range=[-1.0, 1.0]))
    save_or_show(fig, save_to)
