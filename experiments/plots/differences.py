"""Difference-curve plots with shaded significance windows."""

from __future__ import annotations

from typing import Optional

import pandas as pd
import plotly.graph_objects as go

from gamlab.evaluation import significant_windows
from .save_config import PlotSaveDestinations, save_or_show
from .smooths import add_ribbon

__all__ = ["plot_difference"]


def plot_difference(
    curve: pd.DataFrame,
    x: str,
    title: str = "Difference curve",
    save_to: Optional[PlotSaveDestinations] = None,
) -> None:
    """Plot ``difference`` with its band; one figure per ``pair`` when the column is present."""
    if curve.empty:
        return

    if "pair" in curve.columns:
        for pair, subset in curve.groupby("pair", sort=False):
            slug = str(pair).replace(" ", "").replace(".", "_")
            plot_difference(
                subset.drop(columns="pair"),
                x,
                title=f"{title}: {pair}",
                save_to=save_to.child(slug) if save_to else None,
            )
        return

    subset = curve.sort_values(x)
    fig = go.Figure()
    for start, end in significant_windows(subset, x):
        fig.add_vrect(x0=start, x1=end, fillcolor="red", opacity=0.12, line_width=0)
    add_ribbon(
        fig,
        subset[x],
        subset["difference"],
        subset["lower"],
        subset["upper"],
        name="difference",
        color="#000000",
    )
    fig.add_hline(y=0.0, line_dash="dot", line_color="grey")
    fig.update_layout(title=title, xaxis_title=x, yaxis_title="Estimated difference")
    save_or_show(fig, save_to)
