from __future__ import annotations

from pathlib import Path
from typing import Dict, Optional

import pandas as pd

from .config import DEFAULT_RAW_ROOT, DatasetConfig, get_dataset_config
from .recode import FactorSpec, as_ordered, interaction, recode_frame

TABLE_READERS = {
    ".csv": "csv",
    ".tsv": "csv",
    ".txt": "csv",
    ".parquet": "parquet",
    ".feather": "feather",
    ".json": "json",
}


def load_table(path: Path, sep: Optional[str] = None) -> pd.DataFrame:
    """Read a serialized observation table; the format follows the file suffix."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"No table found at {path}")

    suffix = path.suffix.lower()
    kind = TABLE_READERS.get(suffix)
    if kind is None:
        raise ValueError(f"Unsupported table format '{suffix}'. Supported: {sorted(TABLE_READERS)}")

    if kind == "csv":
        if sep is None:
            sep = {".csv": ",", ".tsv": "\t"}.get(suffix)
        # sep=None lets the python engine sniff delimiters in .txt exports.
        engine = "python" if sep is None else "c"
        return pd.read_csv(path, sep=sep, engine=engine)
    if kind == "parquet":
        return pd.read_parquet(path)
    if kind == "feather":
        return pd.read_feather(path)
    return pd.read_json(path)


def required_columns(config: DatasetConfig) -> list[str]:
    columns = [config["response"], config["time"], config["group"]]
    columns.extend(config["identifiers"])
    columns.extend(config["factors"])
    for components in config["interactions"].values():
        columns.extend(components)
    if config["exposure"]:
        columns.append(config["exposure"])
    seen: Dict[str, None] = {}
    for column in columns:
        seen.setdefault(column, None)
    return list(seen)


def apply_recipe(frame: pd.DataFrame, config: DatasetConfig) -> pd.DataFrame:
    """Recode a raw table following the dataset's declared factor orders."""
    missing = [column for column in required_columns(config) if column not in frame.columns]
    if missing:
        raise KeyError(f"Dataset '{config['name']}' is missing columns: {missing}")

    specs = {column: FactorSpec(levels=tuple(levels)) for column, levels in config["factors"].items()}
    result = recode_frame(frame, specs)
    # re/fs smooths group on identifiers, so numeric ids become labels.
    for column in config["identifiers"]:
        result[column] = result[column].astype(str)

    for column, components in config["interactions"].items():
        result[column] = interaction(result, components, name=column)
    for column, source in config["ordered"].items():
        result[column] = as_ordered(result[source], name=column)
    return result


def load_dataset(
    dataset_id: str,
    path: Optional[Path] = None,
    root: Path = DEFAULT_RAW_ROOT,
) -> pd.DataFrame:
    """Load a tutorial dataset and apply its recoding recipe."""
    config = get_dataset_config(dataset_id)
    table_path = Path(path) if path is not None else root / config["filename"]
    frame = load_table(table_path)
    print(f"[datahub] Loaded {config['name']} ({len(frame)} rows) from {table_path}")
    return apply_recipe(frame, config)


__all__ = ["TABLE_READERS", "apply_recipe", "load_dataset", "load_table", "required_columns"]
