"""B-spline bases, derivative penalties and identifiability constraints."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import numpy as np
from scipy.interpolate import BSpline

DEFAULT_DEGREE = 3


def equal_knots(x: np.ndarray, n_basis: int, degree: int = DEFAULT_DEGREE) -> np.ndarray:
    """Clamped knot vector with equally spaced interior knots over the range of ``x``."""
    values = np.asarray(x, dtype=float)
    if values.size == 0 or not np.all(np.isfinite(values)):
        raise ValueError("Spline covariates must be finite and non-empty.")
    lower, upper = float(values.min()), float(values.max())
    if upper <= lower:
        raise ValueError("Spline covariates need at least two distinct values.")
    n_interior = n_basis - degree - 1
    if n_interior < 0:
        raise ValueError(f"Basis dimension {n_basis} is too small for degree {degree}.")
    interior = np.linspace(lower, upper, n_interior + 2)[1:-1]
    return np.concatenate([np.repeat(lower, degree + 1), interior, np.repeat(upper, degree + 1)])


def bspline_basis(x: np.ndarray, knots: np.ndarray, degree: int = DEFAULT_DEGREE, deriv: int = 0) -> np.ndarray:
    """Evaluate every B-spline (or its ``deriv``-th derivative) at ``x``; rows follow ``x``."""
    values = np.asarray(x, dtype=float).ravel()
    lower, upper = knots[degree], knots[-degree - 1]
    tolerance = 1e-9 * (upper - lower)
    if np.any(values < lower - tolerance) or np.any(values > upper + tolerance):
        raise ValueError(
            f"Values outside the fitted covariate range [{lower:g}, {upper:g}] cannot be evaluated."
        )
    n_basis = len(knots) - degree - 1
    spline = BSpline(knots, np.eye(n_basis), degree, extrapolate=True)
    return np.asarray(spline(np.clip(values, lower, upper), nu=deriv))


def derivative_penalty(
    knots: np.ndarray,
    degree: int = DEFAULT_DEGREE,
    order: int = 2,
    points_per_basis: int = 20,
) -> np.ndarray:
    """Integrated squared ``order``-th derivative penalty, ∫ B^(m)(x) B^(m)(x)ᵀ dx."""
    if order > degree:
        raise ValueError(f"Penalty order {order} exceeds spline degree {degree}.")
    n_basis = len(knots) - degree - 1
    lower, upper = knots[degree], knots[-degree - 1]
    grid = np.linspace(lower, upper, points_per_basis * n_basis + 1)
    derivs = bspline_basis(grid, knots, degree, deriv=order)
    weights = np.full(grid.size, grid[1] - grid[0])
    weights[[0, -1]] *= 0.5
    return derivs.T @ (weights[:, None] * derivs)


def centering_transform(basis: np.ndarray) -> np.ndarray:
    """Null-space matrix Z of the sum-to-zero constraint, so that ``basis @ Z`` has zero column means."""
    constraint = basis.mean(axis=0)[:, None]
    q, _ = np.linalg.qr(constraint, mode="complete")
    return q[:, 1:]


def normalize_penalty(penalty: np.ndarray, basis: np.ndarray) -> np.ndarray:
    """Rescale ``penalty`` so its Frobenius norm matches that of ``basisᵀ basis``."""
    penalty_norm = np.linalg.norm(penalty)
    if penalty_norm == 0:
        return penalty
    gram_norm = np.linalg.norm(basis.T @ basis)
    if gram_norm == 0:
        return penalty
    return penalty * (gram_norm / penalty_norm)


def null_space_penalty(penalty: np.ndarray, rtol: float = 1e-8) -> np.ndarray:
    """Projector onto the unpenalized directions of ``penalty``."""
    eigvals, eigvecs = np.linalg.eigh(penalty)
    cutoff = rtol * max(float(eigvals.max()), 1.0)
    null_vectors = eigvecs[:, eigvals < cutoff]
    return null_vectors @ null_vectors.T


def row_tensor(left: np.ndarray, right: np.ndarray) -> np.ndarray:
    """Row-wise Kronecker product of two bases evaluated on the same rows."""
    if left.shape[0] != right.shape[0]:
        raise ValueError("Tensor margins must have the same number of rows.")
    return (left[:, :, None] * right[:, None, :]).reshape(left.shape[0], -1)


@dataclass(frozen=True)
class MarginalSpline:
    """Cubic B-spline basis fitted to one covariate, with its derivative penalty."""

    knots: np.ndarray
    degree: int
    penalty: np.ndarray

    @classmethod
    def fit(cls, x: np.ndarray, n_basis: int, order: int = 2, degree: int = DEFAULT_DEGREE) -> "MarginalSpline":
        # Small bases fall back to lower-degree splines (k=3 gives quadratics).
        degree = max(min(degree, n_basis - 1), order)
        knots = equal_knots(x, n_basis, degree)
        return cls(knots=knots, degree=degree, penalty=derivative_penalty(knots, degree, order))

    @property
    def n_basis(self) -> int:
        return len(self.knots) - self.degree - 1

    @property
    def bounds(self) -> tuple[float, float]:
        return float(self.knots[self.degree]), float(self.knots[-self.degree - 1])

    def evaluate(self, x: np.ndarray, deriv: int = 0, transform: Optional[np.ndarray] = None) -> np.ndarray:
        basis = bspline_basis(x, self.knots, self.degree, deriv=deriv)
        return basis @ transform if transform is not None else basis


__all__ = [
    "DEFAULT_DEGREE",
    "MarginalSpline",
    "bspline_basis",
    "centering_transform",
    "derivative_penalty",
    "equal_knots",
    "normalize_penalty",
    "null_space_penalty",
    "row_tensor",
]
