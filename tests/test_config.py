from pathlib import Path

import pytest

from territory_engine.config import Settings


def test_settings_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("TERRITORY_AUTOSAVE_DEBOUNCE_SECONDS", raising=False)
    settings = Settings(_env_file=None)

    assert settings.autosave_debounce_seconds == 2.0
    assert settings.undo_stack_depth == 100
    assert settings.osrm_batch_size == 80
    assert settings.persistence_backend == "journal"
    assert settings.boundary_file("5digit").name == "plz-5digit.geojson"


def test_settings_read_prefixed_environment(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("TERRITORY_UNDO_STACK_DEPTH", "5")
    monkeypatch.setenv("TERRITORY_FRONTEND_ALLOWED_ORIGINS", '["http://a.test", "http://b.test"]')
    monkeypatch.setenv("TERRITORY_DATA_ROOT", str(tmp_path))

    settings = Settings(_env_file=None)

    assert settings.undo_stack_depth == 5
    assert settings.frontend_allowed_origins == ("http://a.test", "http://b.test")
    assert settings.data_root == tmp_path.resolve()
