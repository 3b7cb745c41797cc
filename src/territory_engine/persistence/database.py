"""Supabase persistence for layer assignments and area versions."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from ..db.supabase import get_supabase_client
from ..models.domain import LayerDiff, VersionSnapshot
from .base import snapshot_to_dict

logger = logging.getLogger(__name__)

POSTAL_CODES_TABLE = "area_layer_postal_codes"
VERSIONS_TABLE = "area_versions"


class SupabasePersistence:
    """Writes diffs and snapshots through the synchronous Supabase client.

    Client calls run in a worker thread so the event loop stays free while a
    write is in flight.
    """

    def __init__(self, client: Any | None = None) -> None:
        self._client = client

    @property
    def client(self) -> Any:
        client = self._client or get_supabase_client()
        if client is None:
            raise ConnectionError("Supabase is not configured (set TERRITORY_SUPABASE_URL and TERRITORY_SUPABASE_KEY).")
        return client

    async def write_diff(self, area_id: int, layer_id: int, diff: LayerDiff) -> None:
        await asyncio.to_thread(self._write_diff_sync, layer_id, diff)

    async def write_snapshot(self, area_id: int, snapshot: VersionSnapshot) -> None:
        await asyncio.to_thread(self._write_snapshot_sync, area_id, snapshot)

    def _write_diff_sync(self, layer_id: int, diff: LayerDiff) -> None:
        table = self.client.table(POSTAL_CODES_TABLE)
        if diff.removed:
            table.delete().eq("layer_id", layer_id).in_("postal_code", list(diff.removed)).execute()
        if diff.added:
            rows = [{"layer_id": layer_id, "postal_code": code} for code in diff.added]
            table.upsert(rows, on_conflict="layer_id,postal_code").execute()
        logger.debug(
            "Wrote %d added / %d removed codes for layer %s to Supabase",
            len(diff.added),
            len(diff.removed),
            layer_id,
        )

    def _write_snapshot_sync(self, area_id: int, snapshot: VersionSnapshot) -> None:
        payload = snapshot_to_dict(snapshot)
        row = {
            "area_id": area_id,
            "version_number": snapshot.version_number,
            "name": snapshot.name,
            "description": snapshot.description,
            "snapshot": payload["snapshot"],
            "change_count": snapshot.change_count,
            "parent_version_number": snapshot.parent_version_number,
            "branch_name": snapshot.branch_name,
            "is_active": "true",
        }
        self.client.table(VERSIONS_TABLE).insert(row).execute()
        logger.debug("Wrote version %s of area %s to Supabase", snapshot.version_number, area_id)
