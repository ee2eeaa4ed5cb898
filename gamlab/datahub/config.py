"""Static configuration for the tutorial datasets and their recoding recipes."""

from __future__ import annotations

from pathlib import Path
from typing import Dict, List, Literal, Optional, TypedDict


class DatasetConfig(TypedDict):
    name: str
    filename: str
    response: str
    time: str
    group: str
    identifiers: List[str]
    factors: Dict[str, List[str]]
    interactions: Dict[str, List[str]]
    ordered: Dict[str, str]
    count: Optional[str]
    exposure: Optional[str]


DatasetId = Literal["pupillometry", "historical"]

# Default directories used by the Typer CLI; callers may override these.
DEFAULT_RAW_ROOT = Path("data/raw")
DEFAULT_PROCESSED_ROOT = Path("data/processed")

# ---------------------------------------------------------------------------
# Dataset-specific configuration payloads.

PUPILLOMETRY: DatasetConfig = {
    "name": "pupillometry",
    "filename": "pupil.csv",
    "response": "Pupil",
    "time": "Time",
    "group": "Event",
    "identifiers": ["Subject", "Event"],
    "factors": {
        "AgeGroup": ["young", "old"],
        "Condition": ["easy", "hard"],
    },
    "interactions": {
        "AgeCond": ["AgeGroup", "Condition"],
    },
    "ordered": {
        "AgeCondO": "AgeCond",
    },
    "count": None,
    "exposure": None,
}

HISTORICAL: DatasetConfig = {
    "name": "historical",
    "filename": "historical.csv",
    "response": "Count",
    "time": "Period",
    "group": "Text",
    "identifiers": ["Text"],
    "factors": {
        "Genre": ["prose", "letters", "drama"],
    },
    "interactions": {},
    "ordered": {
        "GenreO": "Genre",
    },
    "count": "Count",
    "exposure": "WordCount",
}

DATASETS: Dict[DatasetId, DatasetConfig] = {
    "pupillometry": PUPILLOMETRY,
    "historical": HISTORICAL,
}


def get_dataset_config(dataset_id: str) -> DatasetConfig:
    """Return the configuration registered under ``dataset_id``."""
    try:
        return DATASETS[dataset_id]  # type: ignore[index]
    except KeyError as exc:
        raise ValueError(f"Unknown dataset '{dataset_id}'. Available: {list(DATASETS)}") from exc


__all__ = [
    "DEFAULT_RAW_ROOT",
    "DEFAULT_PROCESSED_ROOT",
    "DATASETS",
    "DatasetConfig",
    "DatasetId",
    "HISTORICAL",
    "PUPILLOMETRY",
    "get_dataset_config",
]
