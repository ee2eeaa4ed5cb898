"""Synthetic versions of the tutorial datasets.

The simulators produce tables with the same columns as the published data so
that the workflows, tests and CLI can run without network access. Both are
deterministic for a given seed.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Tuple

import numpy as np
import pandas as pd


# ═══════════════════════════════════════════════════════════════════════════
# Pupillometry
# ═══════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class PupilSimulationConfig:
    """Parameters for simulated pupil dilation time courses."""

    n_subjects: int = 8
    trials_per_condition: int = 6
    time_max: float = 2000.0
    time_step: float = 50.0
    peak_time: float = 900.0
    # Peak dilation (arbitrary units) per (AgeGroup, Condition)
    amplitudes: Dict[Tuple[str, str], float] = field(
        default_factory=lambda: {
            ("young", "easy"): 100.0,
            ("young", "hard"): 160.0,
            ("old", "easy"): 80.0,
            ("old", "hard"): 105.0,
        }
    )
    subject_sd: float = 15.0
    noise_sd: float = 12.0
    rho: float = 0.8
    seed: int = 42

    def validate(self) -> None:
        if self.n_subjects < 2:
            raise ValueError("Simulate at least two subjects so both age groups are present.")
        if self.trials_per_condition < 1:
            raise ValueError("trials_per_condition must be at least 1.")
        if self.time_step <= 0 or self.time_max <= self.time_step:
            raise ValueError("time_max must exceed a positive time_step.")
        if not 0.0 <= self.rho < 1.0:
            raise ValueError("rho must fall within [0, 1).")


def pupil_response(time: np.ndarray, peak_time: float, shape: float = 10.1) -> np.ndarray:
    """Erlang-shaped pupil response normalised to a unit peak at ``peak_time``."""
    scaled = np.clip(time, 0.0, None) / peak_time
    return scaled**shape * np.exp(shape * (1.0 - scaled))


def _ar1_noise(rng: np.random.Generator, n: int, rho: float, sd: float) -> np.ndarray:
    innovations = rng.normal(0.0, sd * np.sqrt(1.0 - rho**2), size=n)
    noise = np.empty(n)
    noise[0] = rng.normal(0.0, sd)
    for idx in range(1, n):
        noise[idx] = rho * noise[idx - 1] + innovations[idx]
    return noise


def simulate_pupil_data(config: PupilSimulationConfig | None = None) -> pd.DataFrame:
    """Simulate trial-level pupil time courses for two age groups and two conditions."""
    cfg = config or PupilSimulationConfig()
    cfg.validate()
    rng = np.random.default_rng(cfg.seed)
    times = np.arange(0.0, cfg.time_max + cfg.time_step / 2, cfg.time_step)
    shape = pupil_response(times, cfg.peak_time)

    rows: list[pd.DataFrame] = []
    for subject_idx in range(cfg.n_subjects):
        subject = f"s{subject_idx + 1:02d}"
        age = "young" if subject_idx % 2 == 0 else "old"
        offset = rng.normal(0.0, cfg.subject_sd)
        gain = rng.normal(1.0, 0.1)
        trial = 0
        for condition in ("easy", "hard"):
            amplitude = cfg.amplitudes[(age, condition)]
            for _ in range(cfg.trials_per_condition):
                trial += 1
                signal = offset + gain * amplitude * shape
                pupil = signal + _ar1_noise(rng, times.size, cfg.rho, cfg.noise_sd)
                rows.append(
                    pd.DataFrame(
                        {
                            "Subject": subject,
                            "Trial": trial,
                            "Event": f"{subject}.{trial:03d}",
                            "AgeGroup": age,
                            "Condition": condition,
                            "Time": times,
                            "Pupil": pupil,
                        }
                    )
                )
    return pd.concat(rows, ignore_index=True)


# ═══════════════════════════════════════════════════════════════════════════
# Historical counts
# ═══════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class HistoricalSimulationConfig:
    """Parameters for simulated construction counts in historical texts."""

    n_periods: int = 12
    texts_per_cell: int = 4
    genres: Tuple[str, ...] = ("prose", "letters", "drama")
    base_rate: float = 2.0  # occurrences per 1000 words in the reference genre
    text_sd: float = 0.2
    word_count_range: Tuple[int, int] = (2_000, 20_000)
    seed: int = 7

    def validate(self) -> None:
        if self.n_periods < 4:
            raise ValueError("Simulate at least four periods so trends are estimable.")
        if self.texts_per_cell < 1:
            raise ValueError("texts_per_cell must be at least 1.")
        if self.base_rate <= 0:
            raise ValueError("base_rate must be positive.")
        low, high = self.word_count_range
        if low <= 0 or high <= low:
            raise ValueError("word_count_range must be a positive, increasing pair.")


def genre_trend(genre_index: int, period: np.ndarray, n_periods: int) -> np.ndarray:
    """Log-rate trajectory for a genre; the reference genre rises, the others bend away."""
    position = (period - 1) / max(n_periods - 1, 1)
    if genre_index == 0:
        return 1.2 * position
    if genre_index == 1:
        return 0.6 * np.sin(np.pi * position)
    return -0.8 * position + 0.3


def simulate_historical_counts(config: HistoricalSimulationConfig | None = None) -> pd.DataFrame:
    """Simulate one row per text: genre, period index, word count and construction count."""
    cfg = config or HistoricalSimulationConfig()
    cfg.validate()
    rng = np.random.default_rng(cfg.seed)
    low, high = cfg.word_count_range

    records: list[dict[str, object]] = []
    text_id = 0
    for genre_index, genre in enumerate(cfg.genres):
        for period in range(1, cfg.n_periods + 1):
            trend = genre_trend(genre_index, np.asarray([period], dtype=float), cfg.n_periods)[0]
            for _ in range(cfg.texts_per_cell):
                text_id += 1
                words = int(rng.integers(low, high + 1))
                log_rate = np.log(cfg.base_rate / 1000.0) + trend + rng.normal(0.0, cfg.text_sd)
                records.append(
                    {
                        "Text": f"t{text_id:04d}",
                        "Genre": genre,
                        "Period": period,
                        "WordCount": words,
                        "Count": int(rng.poisson(words * np.exp(log_rate))),
                    }
                )
    return pd.DataFrame.from_records(records)


__all__ = [
    "HistoricalSimulationConfig",
    "PupilSimulationConfig",
    "genre_trend",
    "pupil_response",
    "simulate_historical_counts",
    "simulate_pupil_data",
]
