"""Plotting utilities for tutorial results."""

from .diagnostics import plot_acf, plot_observed
from .differences import plot_difference
from .save_config import PlotSaveConfig, PlotSaveDestinations, save_or_show
from .smooths import plot_smooths, plot_term_effect

__all__ = [
    "plot_acf",
    "plot_difference",
    "plot_observed",
    "plot_smooths",
    "plot_term_effect",
    "PlotSaveConfig",
    "PlotSaveDestinations",
    "save_or_show",
]
