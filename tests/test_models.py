"""Tests for the desired-state models."""

from __future__ import annotations

from typing import Any

import pytest
from pydantic import ValidationError

from conftest import TEST_PASSWORD, server_spec_data
from mysql_operator.models import (
    CreateMode,
    ServerSpec,
    SkuSpec,
    StorageProfileSpec,
    canonical_choice,
    normalize_location,
)


class TestServerSpec:
    """Tests for ServerSpec validation."""

    def test_valid_spec(self, spec_data: dict[str, Any]) -> None:
        spec = ServerSpec.model_validate(spec_data)

        assert spec.name == "db1"
        assert spec.resource_group_name == "rg1"
        assert spec.sku is not None
        assert spec.sku.name == "GP_Gen5_2"
        assert spec.engine_version == "5.7"
        assert spec.create_mode == CreateMode.DEFAULT.value
        assert spec.tags == {"env": "test"}

    def test_location_normalized(self, server_spec: ServerSpec) -> None:
        assert server_spec.location == "westeurope"

    def test_enum_values_are_case_insensitive(self) -> None:
        spec = ServerSpec.model_validate(
            server_spec_data(
                sslEnforcement="enabled",
                sku={"name": "gp_gen5_4", "tier": "generalpurpose", "family": "gen5", "capacity": 4},
            )
        )

        assert spec.ssl_enforcement == "Enabled"
        assert spec.sku is not None
        assert spec.sku.name == "GP_Gen5_4"
        assert spec.sku.tier == "GeneralPurpose"
        assert spec.sku.family == "Gen5"

    def test_float_engine_version_accepted(self) -> None:
        """Test that an unquoted YAML 5.6 (a float) is accepted."""
        spec = ServerSpec.model_validate(server_spec_data(engineVersion=5.6))
        assert spec.engine_version == "5.6"

    def test_version_alias(self) -> None:
        data = server_spec_data()
        data["version"] = data.pop("engineVersion")

        assert ServerSpec.model_validate(data).engine_version == "5.7"

    def test_unknown_engine_version_rejected(self) -> None:
        with pytest.raises(ValidationError) as exc_info:
            ServerSpec.model_validate(server_spec_data(engineVersion="8.0"))
        assert "engineVersion" in str(exc_info.value)

    @pytest.mark.parametrize("name", ["DB1", "-db", "db-", "a", "db_1"])
    def test_invalid_server_name_rejected(self, name: str) -> None:
        with pytest.raises(ValidationError):
            ServerSpec.model_validate(server_spec_data(name=name))

    def test_single_block_list_unwrapped(self) -> None:
        data = server_spec_data()
        data["sku"] = [data["sku"]]
        data["storageProfile"] = [data["storageProfile"]]

        spec = ServerSpec.model_validate(data)

        assert isinstance(spec.sku, SkuSpec)
        assert isinstance(spec.storage_profile, StorageProfileSpec)

    def test_multiple_sku_blocks_rejected(self) -> None:
        data = server_spec_data()
        data["sku"] = [data["sku"], data["sku"]]

        with pytest.raises(ValidationError) as exc_info:
            ServerSpec.model_validate(data)
        assert "single block" in str(exc_info.value)

    def test_password_hidden(self, server_spec: ServerSpec) -> None:
        assert server_spec.password_value() == TEST_PASSWORD
        assert TEST_PASSWORD not in repr(server_spec)
        assert TEST_PASSWORD not in server_spec.model_dump_json()
        assert "administrator_login_password" not in server_spec.model_dump()

    def test_password_optional(self) -> None:
        data = server_spec_data()
        del data["administratorLoginPassword"]

        assert ServerSpec.model_validate(data).password_value() is None

    def test_restore_requires_source(self) -> None:
        with pytest.raises(ValidationError) as exc_info:
            ServerSpec.model_validate(server_spec_data(createMode="PointInTimeRestore"))

        message = str(exc_info.value)
        assert "sourceServerId" in message
        assert "restorePointInTime" in message

    def test_restore_spec(self) -> None:
        spec = ServerSpec.model_validate(
            server_spec_data(
                createMode="pointintimerestore",
                sourceServerId="/subscriptions/s/resourceGroups/rg1/providers/"
                "Microsoft.DBforMySQL/servers/src",
                restorePointInTime="2026-01-01T00:00:00Z",
            )
        )

        assert spec.create_mode == CreateMode.POINT_IN_TIME_RESTORE.value
        assert spec.restore_point_in_time is not None


class TestSkuSpec:
    """Tests for SkuSpec validation."""

    def test_capacity_units_alias(self) -> None:
        sku = SkuSpec.model_validate(
            {"name": "B_Gen5_1", "tier": "Basic", "family": "Gen5", "capacityUnits": 1}
        )
        assert sku.capacity == 1

    def test_invalid_capacity_rejected(self) -> None:
        with pytest.raises(ValidationError) as exc_info:
            SkuSpec.model_validate(
                {"name": "GP_Gen5_2", "tier": "GeneralPurpose", "family": "Gen5", "capacity": 3}
            )
        assert "capacity" in str(exc_info.value)

    def test_unknown_sku_name_rejected(self) -> None:
        with pytest.raises(ValidationError):
            SkuSpec.model_validate(
                {"name": "XL_Gen9_1", "tier": "Basic", "family": "Gen5", "capacity": 1}
            )


class TestStorageProfileSpec:
    """Tests for StorageProfileSpec validation."""

    def test_optional_fields_default_to_none(self) -> None:
        profile = StorageProfileSpec.model_validate({"storageMB": 5120})

        assert profile.backup_retention_days is None
        assert profile.geo_redundant_backup is None

    @pytest.mark.parametrize("days", [6, 36])
    def test_backup_retention_bounds(self, days: int) -> None:
        with pytest.raises(ValidationError):
            StorageProfileSpec.model_validate({"storageMB": 5120, "backupRetentionDays": days})

    def test_invalid_storage_size_rejected(self) -> None:
        with pytest.raises(ValidationError):
            StorageProfileSpec.model_validate({"storageMB": 6000})


class TestHelpers:
    """Tests for normalization helpers."""

    def test_canonical_choice(self) -> None:
        assert canonical_choice("disabled", ["Enabled", "Disabled"], "x") == "Disabled"
        assert canonical_choice(3, ["Enabled"], "x") == 3

    def test_canonical_choice_rejects_unknown(self) -> None:
        with pytest.raises(ValueError) as exc_info:
            canonical_choice("maybe", ["Enabled", "Disabled"], "sslEnforcement")
        assert "maybe" in str(exc_info.value)

    @pytest.mark.parametrize(
        ("location", "expected"),
        [("West Europe", "westeurope"), ("westeurope", "westeurope"), ("East US 2", "eastus2")],
    )
    def test_normalize_location(self, location: str, expected: str) -> None:
        assert normalize_location(location) == expected
