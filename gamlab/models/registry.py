"""Family registry for GAM fitting.

Each entry names a statsmodels GLM family and records whether its dispersion is
fixed (Poisson, binomial) or estimated from the Pearson statistic (Gaussian,
Gamma, quasi-Poisson). Quasi families reuse a fixed-scale statsmodels family, so
their dispersion is estimated here rather than by the library. The scale flag drives the choice between UBRE and GCV
during smoothing selection and between chi-squared and F tests in summaries.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Literal

import statsmodels.api as sm
from statsmodels.genmod.families import Family

FamilyKey = Literal["gaussian", "poisson", "quasipoisson", "binomial", "gamma", "negbin"]


@dataclass(frozen=True)
class FamilySpec:
    """Metadata describing a response distribution and its default link."""

    name: str
    factory: Callable[[], Family]
    scale_known: bool
    link: str
    quasi: bool = False

    def build(self) -> Family:
        return self.factory()

    @property
    def is_gaussian_identity(self) -> bool:
        return self.name == "gaussian" and self.link == "identity"


REGISTRY: dict[FamilyKey, FamilySpec] = {
    "gaussian": FamilySpec(name="gaussian", factory=sm.families.Gaussian, scale_known=False, link="identity"),
    "poisson": FamilySpec(name="poisson", factory=sm.families.Poisson, scale_known=True, link="log"),
    "quasipoisson": FamilySpec(
        name="quasipoisson",
        factory=sm.families.Poisson,
        scale_known=False,
        link="log",
        quasi=True,
    ),
    "binomial": FamilySpec(name="binomial", factory=sm.families.Binomial, scale_known=True, link="logit"),
    "gamma": FamilySpec(
        name="gamma",
        factory=lambda: sm.families.Gamma(link=sm.families.links.Log()),
        scale_known=False,
        link="log",
    ),
    "negbin": FamilySpec(
        name="negbin",
        factory=lambda: sm.families.NegativeBinomial(alpha=1.0),
        scale_known=True,
        link="log",
    ),
}


def get_family(key: FamilyKey) -> FamilySpec:
    """Return the FamilySpec registered under ``key``."""
    try:
        return REGISTRY[key]
    except KeyError as exc:
        raise ValueError(f"Unknown family '{key}'. Available: {list(REGISTRY)}") from exc


__all__ = ["FamilyKey", "FamilySpec", "REGISTRY", "get_family"]
