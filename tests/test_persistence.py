import asyncio
import json
from datetime import datetime, timezone
from pathlib import Path

import pytest

from territory_engine.models.domain import AreaState, LayerDiff, LayerState, VersionSnapshot
from territory_engine.persistence.base import TerritoryPersistence
from territory_engine.persistence.database import SupabasePersistence
from territory_engine.persistence.filesystem import FileStorage, JournalPersistence


def _snapshot() -> VersionSnapshot:
    layer = LayerState(id=3, name="North", color="#112233", opacity=70, visible=True, order_index=0, codes=("80331",))
    return VersionSnapshot(
        id=1,
        area_id=5,
        version_number=2,
        state=AreaState(area_id=5, name="Bavaria", granularity="5digit", description=None, layers=(layer,)),
        created_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
        name="Q1 plan",
    )


class FakeQuery:
    def __init__(self, table: "FakeTable", action: str, payload=None) -> None:
        self.table = table
        self.call = [action, payload]

    def eq(self, column, value):
        self.call.append(("eq", column, value))
        return self

    def in_(self, column, values):
        self.call.append(("in", column, list(values)))
        return self

    def execute(self):
        self.table.client.calls.append((self.table.name, *self.call))
        return self


class FakeTable:
    def __init__(self, client: "FakeSupabase", name: str) -> None:
        self.client = client
        self.name = name

    def delete(self):
        return FakeQuery(self, "delete")

    def upsert(self, rows, on_conflict=None):
        return FakeQuery(self, "upsert", rows)

    def insert(self, row):
        return FakeQuery(self, "insert", row)


class FakeSupabase:
    def __init__(self) -> None:
        self.calls = []

    def table(self, name):
        return FakeTable(self, name)


def test_file_storage_creates_area_directory(tmp_path: Path) -> None:
    storage = FileStorage(root=tmp_path)
    area_dir = storage.area_directory(5)

    assert area_dir.is_dir()
    assert area_dir.parent == tmp_path / "outputs"


def test_journal_appends_diffs_and_replays_them(tmp_path: Path) -> None:
    journal = JournalPersistence(FileStorage(root=tmp_path))
    assert isinstance(journal, TerritoryPersistence)

    async def scenario():
        await journal.write_diff(5, 3, LayerDiff(3, added=("80331", "80333")))
        await journal.write_diff(5, 3, LayerDiff(3, removed=("80331",)))
        await journal.write_diff(5, 4, LayerDiff(4, added=("81241",)))

    asyncio.run(scenario())

    lines = journal.journal_path(5).read_text(encoding="utf-8").splitlines()
    assert len(lines) == 3
    assert json.loads(lines[0])["added"] == ["80331", "80333"]
    assert journal.replay(5) == {3: {"80333"}, 4: {"81241"}}


def test_journal_writes_snapshot_files(tmp_path: Path) -> None:
    journal = JournalPersistence(FileStorage(root=tmp_path))

    asyncio.run(journal.write_snapshot(5, _snapshot()))

    payload = json.loads(journal.snapshot_path(5, 2).read_text(encoding="utf-8"))
    assert payload["name"] == "Q1 plan"
    assert payload["snapshot"]["layers"][0]["postal_codes"] == ["80331"]


def test_supabase_persistence_writes_rows() -> None:
    client = FakeSupabase()
    persistence = SupabasePersistence(client=client)

    asyncio.run(persistence.write_diff(5, 3, LayerDiff(3, added=("80333",), removed=("80331",))))
    asyncio.run(persistence.write_snapshot(5, _snapshot()))

    delete, upsert, insert = client.calls
    assert delete == ("area_layer_postal_codes", "delete", None, ("eq", "layer_id", 3), ("in", "postal_code", ["80331"]))
    assert upsert == ("area_layer_postal_codes", "upsert", [{"layer_id": 3, "postal_code": "80333"}])
    assert insert[0] == "area_versions"
    assert insert[2]["version_number"] == 2
    assert insert[2]["snapshot"]["layers"][0]["name"] == "North"


def test_supabase_persistence_without_configuration_raises(monkeypatch: pytest.MonkeyPatch) -> None:
    from territory_engine.persistence import database

    monkeypatch.setattr(database, "get_supabase_client", lambda: None)

    with pytest.raises(ConnectionError, match="not configured"):
        asyncio.run(SupabasePersistence().write_diff(1, 1, LayerDiff(1, added=("a",))))
