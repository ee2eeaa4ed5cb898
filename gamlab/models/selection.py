"""Smoothing-parameter selection by coordinate search over log-spaced grids."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Dict, Literal, Sequence, Tuple

import numpy as np
from tqdm import tqdm

Criterion = Literal["auto", "gcv", "ubre", "aic"]
CRITERIA: Tuple[str, ...] = ("auto", "gcv", "ubre", "aic")


def gcv_score(deviance: float, edf: float, n: int) -> float:
    return n * deviance / (n - edf) ** 2


def ubre_score(deviance: float, edf: float, n: int, scale: float = 1.0) -> float:
    return deviance / n + 2.0 * scale * edf / n - scale


def aic_score(llf: float, edf: float) -> float:
    return -2.0 * llf + 2.0 * edf


def resolve_criterion(criterion: str, scale_known: bool) -> str:
    """``auto`` means UBRE for known-scale families and GCV otherwise."""
    if criterion not in CRITERIA:
        raise ValueError(f"Unknown criterion '{criterion}'. Available: {list(CRITERIA)}")
    if criterion == "auto":
        return "ubre" if scale_known else "gcv"
    return criterion


@dataclass(frozen=True)
class SelectionResult:
    alphas: np.ndarray
    score: float
    evaluations: int


def select_smoothing(
    evaluate: Callable[[np.ndarray], float],
    initial: Sequence[float],
    free: Sequence[bool],
    grid: Sequence[float],
    sweeps: int = 2,
    desc: str = "[gam] smoothing",
) -> SelectionResult:
    """Minimize ``evaluate`` one free block at a time.

    Each sweep visits every free block and tries every grid value for it while
    holding the others at their current best. A sweep that changes nothing ends
    the search early.
    """
    best = np.asarray(initial, dtype=float).copy()
    free_idx = [idx for idx, flag in enumerate(free) if flag]
    cache: Dict[Tuple[float, ...], float] = {}

    def score(alphas: np.ndarray) -> float:
        key = tuple(float(value) for value in alphas)
        if key not in cache:
            cache[key] = float(evaluate(alphas))
        return cache[key]

    best_score = score(best)
    total = sweeps * len(free_idx) * len(grid)
    with tqdm(total=total, desc=desc, leave=False) as progress:
        for _ in range(sweeps):
            improved = False
            for idx in free_idx:
                for value in grid:
                    candidate = best.copy()
                    candidate[idx] = value
                    candidate_score = score(candidate)
                    if np.isfinite(candidate_score) and candidate_score < best_score - 1e-12:
                        best, best_score = candidate, candidate_score
                        improved = True
                    progress.update(1)
            if not improved:
                break
    return SelectionResult(alphas=best, score=best_score, evaluations=len(cache))


__all__ = [
    "CRITERIA",
    "Criterion",
    "SelectionResult",
    "aic_score",
    "gcv_score",
    "resolve_criterion",
    "select_smoothing",
    "ubre_score",
]
