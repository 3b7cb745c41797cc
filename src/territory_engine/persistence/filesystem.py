"""File-based persistence: an append-only JSON journal under the data root."""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from ..config import settings
from ..models.domain import LayerDiff, VersionSnapshot
from .base import diff_to_dict, snapshot_to_dict

logger = logging.getLogger(__name__)


class FileStorage:
    """Thin wrapper around the data root for storing JSON outputs."""

    def __init__(self, root: Path | None = None) -> None:
        self.root = (root or settings.data_root).resolve()
        self.output_root = self.root / "outputs"
        self.output_root.mkdir(parents=True, exist_ok=True)

    def area_directory(self, area_id: int) -> Path:
        path = self.output_root / f"area_{area_id}"
        path.mkdir(parents=True, exist_ok=True)
        return path

    def write_json(self, path: Path, data: Any, *, indent: int = 2) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("w", encoding="utf-8") as handle:
            json.dump(data, handle, ensure_ascii=False, indent=indent)

    def append_json_line(self, path: Path, data: Any) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("a", encoding="utf-8") as handle:
            handle.write(json.dumps(data, ensure_ascii=False))
            handle.write("\n")

    def read_json_lines(self, path: Path) -> list[Any]:
        if not path.exists():
            return []
        with path.open("r", encoding="utf-8") as handle:
            return [json.loads(line) for line in handle if line.strip()]


class JournalPersistence:
    """Writes each diff as one journal line and each snapshot as its own file.

    Layout::

        outputs/area_<id>/changes.jsonl
        outputs/area_<id>/versions/v<number>.json
    """

    def __init__(self, storage: FileStorage | None = None) -> None:
        self.storage = storage or FileStorage()

    def journal_path(self, area_id: int) -> Path:
        return self.storage.area_directory(area_id) / "changes.jsonl"

    def snapshot_path(self, area_id: int, version_number: int) -> Path:
        return self.storage.area_directory(area_id) / "versions" / f"v{version_number}.json"

    async def write_diff(self, area_id: int, layer_id: int, diff: LayerDiff) -> None:
        entry = diff_to_dict(area_id, layer_id, diff)
        entry["written_at"] = datetime.now(timezone.utc).isoformat()
        await asyncio.to_thread(self.storage.append_json_line, self.journal_path(area_id), entry)
        logger.debug("Journaled diff for layer %s of area %s", layer_id, area_id)

    async def write_snapshot(self, area_id: int, snapshot: VersionSnapshot) -> None:
        path = self.snapshot_path(area_id, snapshot.version_number)
        await asyncio.to_thread(self.storage.write_json, path, snapshot_to_dict(snapshot))
        logger.debug("Wrote version %s of area %s to %s", snapshot.version_number, area_id, path)

    def replay(self, area_id: int) -> dict[int, set[str]]:
        """Rebuild layer assignments of an area from its journal."""

        assignments: dict[int, set[str]] = {}
        for entry in self.storage.read_json_lines(self.journal_path(area_id)):
            codes = assignments.setdefault(int(entry["layer_id"]), set())
            codes.difference_update(entry.get("removed", []))
            codes.update(entry.get("added", []))
        return assignments
