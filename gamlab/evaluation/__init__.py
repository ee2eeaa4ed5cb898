from .autocorrelation import estimate_rho, residual_acf
from .comparison import compare_models, deviance_test
from .differences import difference_curve, pairwise_differences, significant_windows
from .grid import expand_grid, observed_levels, reference_value
from .predictions import predict_grid

__all__ = [
    "compare_models",
    "deviance_test",
    "difference_curve",
    "estimate_rho",
    "expand_grid",
    "observed_levels",
    "pairwise_differences",
    "predict_grid",
    "reference_value",
    "residual_acf",
    "significant_windows",
]
