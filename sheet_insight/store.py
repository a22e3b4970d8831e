"""
Local persistence for imported datasets.

Values are JSON blobs kept one per file under a root directory. Datasets live
under ``dataset_<id>`` keys and the id of the dataset the user is looking at
under ``current_dataset_id``. There is no locking: the last write wins.
"""

from __future__ import annotations

import json
import logging
import os
import re
import tempfile
from pathlib import Path
from typing import Any, Optional

from sheet_insight.dataset import Dataset

log = logging.getLogger(__name__)

DATASET_PREFIX = "dataset_"
CURRENT_DATASET_KEY = "current_dataset_id"
KEY_RE = re.compile(r"^[A-Za-z0-9_.-]+$")
FILE_SUFFIX = ".json"


class DatasetStore:
    def __init__(self, root: "str | Path") -> None:
        self.root = Path(root)

    def _path(self, key: str) -> Path:
        if not KEY_RE.match(key) or key.startswith("."):
            raise ValueError(f"Invalid store key: {key!r}")
        return self.root / f"{key}{FILE_SUFFIX}"

    # ── key-value API ─────────────────────────────────────────────────────────

    def get(self, key: str) -> Any:
        path = self._path(key)
        if not path.exists():
            return None
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise ValueError(f"Stored value for '{key}' is not valid JSON: {exc}") from exc

    def set(self, key: str, value: Any) -> None:
        path = self._path(key)
        self.root.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{key}.", suffix=FILE_SUFFIX, dir=str(self.root))
        os.close(fd)
        temp_path = Path(tmp_name)
        try:
            temp_path.write_text(json.dumps(value, ensure_ascii=False), encoding="utf-8")
            os.replace(temp_path, path)
        finally:
            if temp_path.exists():
                temp_path.unlink()

    def delete(self, key: str) -> bool:
        path = self._path(key)
        if not path.exists():
            return False
        path.unlink()
        return True

    def keys(self) -> list[str]:
        if not self.root.exists():
            return []
        return sorted(
            path.name[: -len(FILE_SUFFIX)]
            for path in self.root.glob(f"*{FILE_SUFFIX}")
            if not path.name.startswith(".")
        )

    def clear(self) -> None:
        for key in self.keys():
            self.delete(key)

    # ── datasets ──────────────────────────────────────────────────────────────

    def save_dataset(self, dataset: Dataset) -> None:
        self.set(f"{DATASET_PREFIX}{dataset.id}", dataset.to_dict())
        log.debug("saved dataset %s", dataset.id)

    def get_dataset(self, dataset_id: str) -> Optional[Dataset]:
        payload = self.get(f"{DATASET_PREFIX}{dataset_id}")
        if payload is None:
            return None
        return Dataset.from_dict(payload)

    def delete_dataset(self, dataset_id: str) -> bool:
        removed = self.delete(f"{DATASET_PREFIX}{dataset_id}")
        if removed and self.get_current_dataset_id() == dataset_id:
            self.delete(CURRENT_DATASET_KEY)
        return removed

    def list_datasets(self) -> list[Dataset]:
        """All stored datasets, most recently updated first."""
        datasets = []
        for key in self.keys():
            if not key.startswith(DATASET_PREFIX):
                continue
            payload = self.get(key)
            if payload is not None:
                datasets.append(Dataset.from_dict(payload))
        return sorted(datasets, key=lambda item: item.updated_at, reverse=True)

    def set_current_dataset_id(self, dataset_id: Optional[str]) -> None:
        if dataset_id is None:
            self.delete(CURRENT_DATASET_KEY)
        else:
            self.set(CURRENT_DATASET_KEY, dataset_id)

    def get_current_dataset_id(self) -> Optional[str]:
        return self.get(CURRENT_DATASET_KEY)
