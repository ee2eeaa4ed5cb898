from .config import DATASETS, DEFAULT_RAW_ROOT, DatasetConfig, DatasetId, get_dataset_config
from .loader import apply_recipe, load_dataset, load_table
from .pipeline import ALL_DATASETS, DataRequest, prepare_datasets
from .recode import (
    FactorSpec,
    as_factor,
    as_ordered,
    binary_indicator,
    contrast_matrix,
    interaction,
    recode_frame,
    treatment_indicators,
)

__all__ = [
    "ALL_DATASETS",
    "DATASETS",
    "DEFAULT_RAW_ROOT",
    "DataRequest",
    "DatasetConfig",
    "DatasetId",
    "FactorSpec",
    "apply_recipe",
    "as_factor",
    "as_ordered",
    "binary_indicator",
    "contrast_matrix",
    "get_dataset_config",
    "interaction",
    "load_dataset",
    "load_table",
    "prepare_datasets",
    "recode_frame",
    "treatment_indicators",
]
