from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, Optional

import pandas as pd

from gamlab.datahub import DEFAULT_RAW_ROOT, DatasetId, apply_recipe, get_dataset_config, load_dataset
from gamlab.models import FittedGam


@dataclass
class TutorialResult:
    """Everything a tutorial run produces, for printing and plotting."""

    data: pd.DataFrame
    models: Dict[str, FittedGam]
    comparison: pd.DataFrame
    predictions: pd.DataFrame
    differences: pd.DataFrame
    acf: Dict[str, pd.DataFrame] = field(default_factory=dict)
    rho: Optional[float] = None

    @property
    def final_model(self) -> FittedGam:
        return list(self.models.values())[-1]


def load_tutorial_frame(
    dataset_id: DatasetId,
    data_path: Optional[Path],
    simulate: bool,
    simulator: Callable[[], pd.DataFrame],
    raw_root: Path = DEFAULT_RAW_ROOT,
) -> pd.DataFrame:
    """Recoded tutorial table, either simulated in memory or read from disk."""
    if simulate and data_path is not None:
        raise ValueError("Pass either a data path or simulate=True, not both.")
    if simulate:
        frame = simulator()
        print(f"[datahub] Simulated {dataset_id} ({len(frame)} rows)")
        return apply_recipe(frame, get_dataset_config(dataset_id))
    return load_dataset(dataset_id, path=data_path, root=raw_root)


__all__ = ["TutorialResult", "load_tutorial_frame"]
