"""High-level orchestration for fetching or simulating the tutorial tables."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional, Tuple, cast

from .config import DATASETS, DatasetId, get_dataset_config
from .io import fetch
from .simulate import simulate_historical_counts, simulate_pupil_data

ALL_DATASETS: Tuple[DatasetId, ...] = cast(Tuple[DatasetId, ...], tuple(DATASETS))


@dataclass(frozen=True)
class DataRequest:
    """Describe which datasets to materialize and where they come from."""

    datasets: Tuple[DatasetId, ...]
    sources: Tuple[Tuple[DatasetId, str], ...] = ()
    simulate: bool = False

    @classmethod
    def from_flags(
        cls,
        all: bool,
        pupillometry: bool,
        historical: bool,
        pupil_source: Optional[str] = None,
        historical_source: Optional[str] = None,
        simulate: bool = False,
    ) -> "DataRequest":
        """Translate CLI flags into a normalized request."""
        if all:
            selected = list(ALL_DATASETS)
        else:
            selected = [dataset for dataset, flag in zip(ALL_DATASETS, (pupillometry, historical)) if flag]

        if not selected:
            raise ValueError("Select at least one dataset via --all or dataset flags.")

        given = {"pupillometry": pupil_source, "historical": historical_source}
        sources = tuple((dataset, given[dataset]) for dataset in selected if given[dataset])
        if simulate and sources:
            raise ValueError("Pass either --simulate or explicit sources, not both.")
        if not simulate:
            lacking = [dataset for dataset in selected if not given[dataset]]
            if lacking:
                raise ValueError(f"No source given for {', '.join(lacking)}; pass a path/URL or --simulate.")

        dataset_tuple = cast(Tuple[DatasetId, ...], tuple(selected))
        return cls(dataset_tuple, cast(Tuple[Tuple[DatasetId, str], ...], sources), simulate)

    def source_for(self, dataset: DatasetId) -> Optional[str]:
        return dict(self.sources).get(dataset)


def prepare_datasets(
    request: DataRequest,
    raw_root: Path,
    force: bool = False,
) -> Dict[DatasetId, Path]:
    """Materialize every requested table under ``raw_root`` and return their paths."""
    raw_root.mkdir(parents=True, exist_ok=True)
    written: Dict[DatasetId, Path] = {}

    for dataset in request.datasets:
        config = get_dataset_config(dataset)
        target = raw_root / config["filename"]
        if request.simulate:
            if target.exists() and not force:
                print(f"[datahub] {target.name} present; skipping simulation.")
            elif dataset == "pupillometry":
                simulate_pupil_data().to_csv(target, index=False)
                print(f"[datahub] Simulated pupillometry → {target}")
            elif dataset == "historical":
                simulate_historical_counts().to_csv(target, index=False)
                print(f"[datahub] Simulated historical counts → {target}")
            else:
                raise ValueError(f"Unknown dataset key '{dataset}'")
        else:
            source = request.source_for(dataset)
            if source is None:
                raise ValueError(f"No source configured for '{dataset}'")
            fetch(source, target, force=force)
        written[dataset] = target

    return written


__all__ = ["ALL_DATASETS", "DataRequest", "prepare_datasets"]
