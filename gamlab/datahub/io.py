"""Helpers for fetching raw tables and tracking cache metadata."""

from __future__ import annotations

import hashlib
import json
import os
import shutil
import tempfile
from pathlib import Path
from typing import Any, Mapping, Optional

import requests

METADATA_SUFFIX = ".meta.json"
REMOTE_SCHEMES = ("http://", "https://")


def sha256sum(path: Path) -> str:
    """Compute the SHA256 checksum for a file."""
    digest = hashlib.sha256()
    with path.open("rb") as handle:
        for chunk in iter(lambda: handle.read(1024 * 1024), b""):
            digest.update(chunk)
    return digest.hexdigest()


def metadata_path(path: Path) -> Path:
    """Sidecar file storing the checksum of ``path``."""
    return path.with_name(path.name + METADATA_SUFFIX)


def read_metadata(path: Path) -> Mapping[str, Any]:
    """Load metadata JSON attached to a file, returning an empty mapping on failure."""
    if not path.exists():
        return {}
    try:
        return json.loads(path.read_text())
    except json.JSONDecodeError:
        return {}


def write_metadata(path: Path, payload: Mapping[str, Any]) -> None:
    """Persist metadata next to the file to skip redundant downloads."""
    path.write_text(json.dumps(payload, indent=2, sort_keys=True))


def needs_download(target: Path, expected_sha: Optional[str]) -> bool:
    """Determine whether the file must be fetched again."""
    if not target.exists():
        return True
    if not expected_sha:
        return False
    return sha256sum(target) != expected_sha


def is_remote(source: str) -> bool:
    return source.startswith(REMOTE_SCHEMES)


def download_stream(url: str, dest: Path) -> None:
    """Stream a remote file to disk atomically."""
    dest.parent.mkdir(parents=True, exist_ok=True)
    with requests.get(url, stream=True, timeout=60) as response:
        response.raise_for_status()
        with tempfile.NamedTemporaryFile(delete=False, dir=dest.parent) as tmp:
            for chunk in response.iter_content(chunk_size=8192):
                if chunk:
                    tmp.write(chunk)
    os.replace(tmp.name, dest)


def copy_local(source: Path, dest: Path) -> None:
    """Copy a local table into the raw cache atomically."""
    if not source.exists():
        raise FileNotFoundError(f"Source table {source} does not exist")
    dest.parent.mkdir(parents=True, exist_ok=True)
    with tempfile.NamedTemporaryFile(delete=False, dir=dest.parent) as tmp:
        with source.open("rb") as handle:
            shutil.copyfileobj(handle, tmp)
    os.replace(tmp.name, dest)


def fetch(source: str, dest: Path, force: bool = False) -> Path:
    """Download or copy ``source`` to ``dest`` unless a verified copy already exists."""
    meta_path = metadata_path(dest)
    meta = read_metadata(meta_path)
    expected_sha = meta.get("sha256")

    if not force and not needs_download(dest, expected_sha):
        print(f"[datahub] {dest.name} present; skipping fetch.")
        return dest

    if is_remote(source):
        print(f"[datahub] Downloading {source}")
        try:
            download_stream(source, dest)
        except requests.RequestException as exc:
            raise RuntimeError(
                f"Failed to download {source}. Check your network connection or pass a local path instead."
            ) from exc
    else:
        print(f"[datahub] Copying {source}")
        copy_local(Path(source), dest)

    updated = dict(meta)
    updated["sha256"] = sha256sum(dest)
    updated["source"] = source
    write_metadata(meta_path, updated)
    return dest


__all__ = [
    "METADATA_SUFFIX",
    "copy_local",
    "download_stream",
    "fetch",
    "is_remote",
    "metadata_path",
    "needs_download",
    "read_metadata",
    "sha256sum",
    "write_metadata",
]
