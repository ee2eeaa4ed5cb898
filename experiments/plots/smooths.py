"""Line-and-ribbon helpers for predicted smooths and partial effects."""

from __future__ import annotations

from typing import Optional

import pandas as pd
import plotly.express as px
import plotly.graph_objects as go

from .save_config import PlotSaveDestinations, save_or_show

__all__ = ["add_ribbon", "plot_smooths", "plot_term_effect"]


def _rgba(color: str, alpha: float) -> str:
    if color.startswith("#") and len(color) == 7:
        red, green, blue = (int(color[idx : idx + 2], 16) for idx in (1, 3, 5))
        return f"rgba({red},{green},{blue},{alpha})"
    return color


def add_ribbon(
    fig: go.Figure,
    x: pd.Series,
    fit: pd.Series,
    lower: pd.Series,
    upper: pd.Series,
    name: str,
    color: str,
) -> None:
    """Append a shaded interval and its centre line to ``fig``."""
    fig.add_trace(go.Scatter(x=x, y=lower, mode="lines", line=dict(width=0), showlegend=False, hoverinfo="skip"))
    fig.add_trace(
        go.Scatter(
            x=x,
            y=upper,
            mode="lines",
            line=dict(width=0),
            fill="tonexty",
            fillcolor=_rgba(color, 0.2),
            showlegend=False,
            hoverinfo="skip",
        )
    )
    fig.add_trace(go.Scatter(x=x, y=fit, mode="lines", name=name, line=dict(color=color, width=2)))


def plot_smooths(
    predictions: pd.DataFrame,
    x: str,
    group: Optional[str] = None,
    title: str = "Predicted smooths",
    y_label: str = "Prediction",
    save_to: Optional[PlotSaveDestinations] = None,
) -> None:
    """Plot ``fit`` against ``x`` with ``lower``/``upper`` ribbons, one curve per ``group`` level."""
    if predictions.empty:
        return

    palette = px.colors.qualitative.Plotly
    fig = go.Figure()
    groups = predictions.groupby(group, observed=True, sort=False) if group else [("fit", predictions)]
    for idx, (level, subset) in enumerate(groups):
        subset = subset.sort_values(x)
        add_ribbon(
            fig,
            subset[x],
            subset["fit"],
            subset["lower"],
            subset["upper"],
            name=str(level),
            color=palette[idx % len(palette)],
        )
    fig.update_layout(title=title, xaxis_title=x, yaxis_title=y_label, legend_title=group or "")
    save_or_show(fig, save_to)


def plot_term_effect(
    effect: pd.DataFrame,
    x: str,
    label: str,
    save_to: Optional[PlotSaveDestinations] = None,
) -> None:
    """Partial effect of a single smooth (link scale) with its interval and a zero line."""
    if effect.empty:
        return

    effect = effect.sort_values(x)
    fig = go.Figure()
    add_ribbon(fig, effect[x], effect["fit"], effect["lower"], effect["upper"], name=label, color="#636EFA")
    fig.add_hline(y=0.0, line_dash="dot", line_color="grey")
    fig.update_layout(title=f"Partial effect of {label}", xaxis_title=x, yaxis_title="Effect (link scale)")
    save_or_show(fig, save_to)
