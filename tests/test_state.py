"""Tests for the persisted server state."""

from __future__ import annotations

import json
from datetime import UTC, datetime
from pathlib import Path

import pytest

from conftest import TEST_PASSWORD
from mysql_operator.models import ServerSpec
from mysql_operator.state import (
    MAX_STATE_FILE_SIZE_BYTES,
    ResourcePhase,
    ServerState,
    StateFileError,
    StateStore,
)

DB1_ID = "/subscriptions/s/resourceGroups/rg1/providers/Microsoft.DBforMySQL/servers/db1"


class TestServerState:
    """Tests for ServerState."""

    def test_empty_state_is_absent(self) -> None:
        state = ServerState()

        assert state.phase == ResourcePhase.ABSENT

    def test_tracked_state_is_present(self) -> None:
        state = ServerState(id=DB1_ID)

        assert state.phase == ResourcePhase.PRESENT

    def test_empty_id_is_absent(self) -> None:
        assert ServerState(id="").phase == ResourcePhase.ABSENT

    def test_cleared_returns_new_empty_state(self, server_spec: ServerSpec) -> None:
        state = ServerState(id=DB1_ID, spec=server_spec, fully_qualified_domain_name="db1.x")

        cleared = state.cleared()

        assert cleared.id is None
        assert cleared.spec is None
        assert cleared.fully_qualified_domain_name is None
        assert cleared.updated_at is not None
        assert state.id == DB1_ID


class TestStateStore:
    """Tests for StateStore load/save."""

    def test_missing_file_loads_empty_state(self, tmp_path: Path) -> None:
        state = StateStore(tmp_path / "state.json").load()
        assert state.id is None

    def test_save_and_load(self, tmp_path: Path, server_spec: ServerSpec) -> None:
        store = StateStore(tmp_path / "state.json")
        saved = ServerState(
            id=DB1_ID,
            spec=server_spec,
            fully_qualified_domain_name="db1.mysql.example.net",
            updated_at=datetime(2026, 1, 1, tzinfo=UTC),
        )

        store.save(saved)
        loaded = store.load()

        assert loaded.id == DB1_ID
        assert loaded.fully_qualified_domain_name == "db1.mysql.example.net"
        assert loaded.updated_at == saved.updated_at
        assert loaded.spec is not None
        assert loaded.spec.name == "db1"
        assert loaded.spec.resource_group_name == "rg1"
        assert loaded.spec.sku == server_spec.sku
        assert loaded.spec.password_value() is None

    def test_password_never_persisted(self, tmp_path: Path, server_spec: ServerSpec) -> None:
        path = tmp_path / "state.json"
        StateStore(path).save(ServerState(id=DB1_ID, spec=server_spec))

        content = path.read_text(encoding="utf-8")
        assert TEST_PASSWORD not in content
        assert "password" not in content.lower()

    def test_written_with_camel_case_keys(self, tmp_path: Path) -> None:
        path = tmp_path / "state.json"
        StateStore(path).save(ServerState(id=DB1_ID, fully_qualified_domain_name="db1.x"))

        data = json.loads(path.read_text(encoding="utf-8"))
        assert data["fullyQualifiedDomainName"] == "db1.x"
        assert data["version"] == 1

    def test_save_leaves_no_temp_files(self, tmp_path: Path) -> None:
        store = StateStore(tmp_path / "state.json")
        store.save(ServerState(id=DB1_ID))
        store.save(ServerState())

        assert [p.name for p in tmp_path.iterdir()] == ["state.json"]
        assert store.load().id is None

    def test_invalid_json_rejected(self, tmp_path: Path) -> None:
        path = tmp_path / "state.json"
        path.write_text("{not json", encoding="utf-8")

        with pytest.raises(StateFileError) as exc_info:
            StateStore(path).load()
        assert "Invalid state file" in str(exc_info.value)

    def test_unsupported_version_rejected(self, tmp_path: Path) -> None:
        path = tmp_path / "state.json"
        path.write_text(json.dumps({"version": 99, "id": DB1_ID}), encoding="utf-8")

        with pytest.raises(StateFileError) as exc_info:
            StateStore(path).load()
        assert "version 99" in str(exc_info.value)

    def test_oversized_file_rejected(self, tmp_path: Path) -> None:
        path = tmp_path / "state.json"
        path.write_text(" " * (MAX_STATE_FILE_SIZE_BYTES + 1), encoding="utf-8")

        with pytest.raises(StateFileError) as exc_info:
            StateStore(path).load()
        assert "maximum size" in str(exc_info.value)

    def test_unwritable_directory(self, tmp_path: Path) -> None:
        store = StateStore(tmp_path / "missing" / "state.json")

        with pytest.raises(StateFileError):
            store.save(ServerState())


class TestRecordedSpec:
    """Loading read-back values that the desired-state models do not list."""

    @staticmethod
    def _record(**overrides: object) -> dict[str, object]:
        spec = {
            "name": "db1",
            "location": "westeurope",
            "resource_group_name": "rg1",
            "sku": {
                "name": "GP_Gen5_64",
                "tier": "GeneralPurpose",
                "family": "Gen5",
                "capacity": 64,
            },
            "administrator_login": "mysqladmin",
            "engine_version": "8.0",
            "storage_profile": {
                "storage_mb": 51200,
                "backup_retention_days": 7,
                "geo_redundant_backup": "Disabled",
            },
            "ssl_enforcement": "Enabled",
            "create_mode": "Default",
            "source_server_id": None,
            "restore_point_in_time": None,
            "tags": {"env": "test"},
        }
        spec.update(overrides)
        return {"version": 1, "id": DB1_ID, "spec": spec}

    def test_unlisted_values_load(self, tmp_path: Path) -> None:
        path = tmp_path / "state.json"
        path.write_text(json.dumps(self._record()), encoding="utf-8")

        state = StateStore(path).load()

        assert state.id == DB1_ID
        assert state.spec is not None
        assert state.spec.engine_version == "8.0"
        assert state.spec.sku is not None
        assert state.spec.sku.capacity == 64
        assert state.spec.storage_profile is not None
        assert state.spec.storage_profile.storage_mb == 51200
        assert state.spec.password_value() is None

    def test_restore_point_is_parsed(self, tmp_path: Path) -> None:
        path = tmp_path / "state.json"
        record = self._record(
            create_mode="PointInTimeRestore",
            source_server_id=DB1_ID,
            restore_point_in_time="2026-01-01T00:00:00Z",
        )
        path.write_text(json.dumps(record), encoding="utf-8")

        state = StateStore(path).load()

        assert state.spec is not None
        assert state.spec.restore_point_in_time == datetime(2026, 1, 1, tzinfo=UTC)

    def test_malformed_record_rejected(self, tmp_path: Path) -> None:
        path = tmp_path / "state.json"
        record = self._record()
        del record["spec"]["engine_version"]  # type: ignore[attr-defined]
        path.write_text(json.dumps(record), encoding="utf-8")

        with pytest.raises(StateFileError) as exc_info:
            StateStore(path).load()
        assert "Invalid state file" in str(exc_info.value)
