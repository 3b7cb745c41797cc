from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from territory_engine.main import create_app
from territory_engine.persistence.filesystem import FileStorage, JournalPersistence
from territory_engine.services.session import TerritoryEngine, get_engine


@pytest.fixture
def engine(tmp_path: Path) -> TerritoryEngine:
    return TerritoryEngine(persistence=JournalPersistence(FileStorage(root=tmp_path)))


@pytest.fixture
def api_client(boundaries_dir: Path, engine: TerritoryEngine) -> TestClient:
    app = create_app()
    app.dependency_overrides[get_engine] = lambda: engine
    return TestClient(app)


def _area_with_layers(client: TestClient, *names: str) -> tuple[int, list[int]]:
    response = client.post("/api/areas", json={"name": "Bavaria", "granularity": "5digit"})
    assert response.status_code == 201
    area_id = response.json()["id"]
    layer_ids = []
    for name in names:
        response = client.post(f"/api/areas/{area_id}/layers", json={"name": name})
        assert response.status_code == 201
        layer_ids.append(response.json()["id"])
    return area_id, layer_ids


def test_health(api_client: TestClient) -> None:
    assert api_client.get("/api/health").json() == {"status": "ok"}


def test_boundaries_summary(api_client: TestClient) -> None:
    assert api_client.get("/api/boundaries").json() == ["2digit", "5digit"]

    summary = api_client.get("/api/boundaries/5digit").json()
    assert summary["feature_count"] == 5
    assert api_client.get("/api/boundaries/3digit").status_code == 404


def test_selection_endpoints(api_client: TestClient) -> None:
    point = api_client.post("/api/selection/point", json={"granularity": "5digit", "point": [11.57, 48.15]})
    assert point.json()["code"] == "80331"

    codes = api_client.post("/api/selection/codes", json={"granularity": "5digit", "text": "8033 abc"}).json()
    assert codes["codes"] == ["80331", "80333", "80335"]
    assert codes["invalid"] == ["abc"]

    lasso = api_client.post(
        "/api/selection/polygon",
        json={"granularity": "5digit", "ring": [[11.52, 48.10], [11.60, 48.10], [11.60, 48.19]]},
    )
    assert lasso.status_code == 200

    degenerate = api_client.post("/api/selection/polygon", json={"granularity": "5digit", "ring": [[1, 1], [2, 2]]})
    assert degenerate.json()["codes"] == []


def test_assign_undo_redo_flow(api_client: TestClient) -> None:
    area_id, (_, _, layer_id) = _area_with_layers(api_client, "North", "South", "West")

    response = api_client.post(f"/api/areas/{area_id}/layers/{layer_id}/assign", json={"codes": ["80331", "80333"]})
    assert response.status_code == 200
    assert response.json()["changes"][0]["added"] == ["80331", "80333"]

    status = api_client.post(f"/api/areas/{area_id}/undo").json()
    assert status["can_redo"] is True
    assert status["redo_count"] == 1

    layers = api_client.get(f"/api/areas/{area_id}/layers").json()
    assert layers[2]["postal_codes"] == []

    api_client.post(f"/api/areas/{area_id}/redo")
    layers = api_client.get(f"/api/areas/{area_id}/layers").json()
    assert layers[2]["postal_codes"] == ["80331", "80333"]

    history = api_client.get(f"/api/areas/{area_id}/history").json()
    assert len(history) == 1


def test_conflicts_are_reported_not_blocked(api_client: TestClient) -> None:
    area_id, (north, south) = _area_with_layers(api_client, "North", "South")
    api_client.post(f"/api/areas/{area_id}/layers/{north}/assign", json={"codes": ["80331"]})

    response = api_client.post(f"/api/areas/{area_id}/layers/{south}/assign", json={"codes": ["80331"]}).json()

    assert response["conflict_codes"] == ["80331"]
    assert response["warning"]
    conflicts = api_client.get(f"/api/areas/{area_id}/conflicts").json()
    assert conflicts[0]["code"] == "80331"
    assert [owner["name"] for owner in conflicts[0]["layers"]] == ["North", "South"]


def test_error_mapping(api_client: TestClient) -> None:
    area_id, (layer_id,) = _area_with_layers(api_client, "North")

    assert api_client.get("/api/areas/999").status_code == 404
    assert api_client.post(f"/api/areas/{area_id}/undo").status_code == 409
    bad_color = api_client.patch(f"/api/areas/{area_id}/layers/{layer_id}", json={"color": "blue"})
    assert bad_color.status_code == 400
    bad_granularity = api_client.post("/api/areas", json={"name": "X", "granularity": "4digit"})
    assert bad_granularity.status_code == 400


def test_versions_snapshot_restore_and_compare(api_client: TestClient) -> None:
    area_id, (layer_id,) = _area_with_layers(api_client, "North")
    api_client.post(f"/api/areas/{area_id}/layers/{layer_id}/assign", json={"codes": ["80331"]})
    first = api_client.post(f"/api/areas/{area_id}/versions", json={"name": "Q1 plan"}).json()

    api_client.post(f"/api/areas/{area_id}/layers/{layer_id}/assign", json={"codes": ["81241"]})
    second = api_client.post(f"/api/areas/{area_id}/versions", json={}).json()
    assert second["version_number"] == 2

    comparison = api_client.get(
        f"/api/areas/{area_id}/versions/compare",
        params={"from_version": first["id"], "to_version": second["id"]},
    ).json()
    assert comparison["changed_layers"][0]["added_codes"] == ["81241"]

    restored = api_client.post(f"/api/areas/{area_id}/versions/{first['id']}/restore").json()
    assert restored["change"]["kind"] == "restore"
    assert restored["version"] is None
    assert api_client.get(f"/api/areas/{area_id}").json()["current_version_number"] == 2
    layers = api_client.get(f"/api/areas/{area_id}/layers").json()
    assert layers[0]["postal_codes"] == ["80331"]

    branched = api_client.post(
        f"/api/areas/{area_id}/versions/{second['id']}/restore",
        json={"create_branch": True, "branch_name": "Q2 retry"},
    ).json()
    assert branched["version"]["version_number"] == 3
    assert branched["version"]["parent_version_number"] == 2
    assert branched["version"]["name"] == "Q2 retry"
    assert api_client.get(f"/api/areas/{area_id}").json()["current_version_number"] == 3


def test_holes_and_granularity_change(api_client: TestClient) -> None:
    area_id, (layer_id,) = _area_with_layers(api_client, "North")
    api_client.post(f"/api/areas/{area_id}/layers/{layer_id}/assign", json={"codes": ["80331"]})

    holes = api_client.get(f"/api/areas/{area_id}/holes").json()
    assert holes["holes"] == []

    refused = api_client.post(f"/api/areas/{area_id}/granularity", json={"granularity": "2digit"})
    assert refused.status_code == 400

    forced = api_client.post(f"/api/areas/{area_id}/granularity", json={"granularity": "2digit", "force": True})
    assert forced.json()["removed_codes"] == 1
    assert api_client.get(f"/api/areas/{area_id}").json()["granularity"] == "2digit"


def test_autosave_flush_writes_journal(api_client: TestClient, tmp_path: Path) -> None:
    area_id, (layer_id,) = _area_with_layers(api_client, "North")
    api_client.post(f"/api/areas/{area_id}/layers/{layer_id}/assign", json={"codes": ["80331"]})

    status = api_client.post(f"/api/areas/{area_id}/autosave/flush").json()

    assert status["pending_layers"] == []
    assert status["failures"] == []
    journal = tmp_path / "outputs" / f"area_{area_id}" / "changes.jsonl"
    assert "80331" in journal.read_text(encoding="utf-8")
