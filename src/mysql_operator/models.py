"""Pydantic models for the desired state of a MySQL server.

These models provide:
1. Type-safe YAML parsing
2. Validation at the boundary (fail fast, fail loudly)
3. A typed shape for the expand/flatten mapping in mapper.py

Enum-like values are accepted case-insensitively and normalized to the
spelling Azure documents, because the remote API normalizes them too.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from datetime import datetime
from enum import Enum
from typing import Annotated, Any

from pydantic import (
    AliasChoices,
    BaseModel,
    Field,
    SecretStr,
    field_validator,
    model_validator,
)

# =============================================================================
# Enumerations
# =============================================================================


class SkuTier(str, Enum):
    """Pricing tiers for Azure Database for MySQL."""

    BASIC = "Basic"
    GENERAL_PURPOSE = "GeneralPurpose"
    MEMORY_OPTIMIZED = "MemoryOptimized"


class ServerVersion(str, Enum):
    """Supported MySQL engine versions."""

    FIVE_SIX = "5.6"
    FIVE_SEVEN = "5.7"


class SslEnforcement(str, Enum):
    """SSL enforcement setting."""

    ENABLED = "Enabled"
    DISABLED = "Disabled"


class GeoRedundantBackup(str, Enum):
    """Geo-redundant backup setting."""

    ENABLED = "Enabled"
    DISABLED = "Disabled"


class CreateMode(str, Enum):
    """How a new server is created."""

    DEFAULT = "Default"
    POINT_IN_TIME_RESTORE = "PointInTimeRestore"


# =============================================================================
# Validation sets
# =============================================================================

VALID_SKU_NAMES: tuple[str, ...] = (
    "B_Gen4_1",
    "B_Gen4_2",
    "B_Gen5_1",
    "B_Gen5_2",
    "GP_Gen4_2",
    "GP_Gen4_4",
    "GP_Gen4_8",
    "GP_Gen4_16",
    "GP_Gen4_32",
    "GP_Gen5_2",
    "GP_Gen5_4",
    "GP_Gen5_8",
    "GP_Gen5_16",
    "GP_Gen5_32",
    "MO_Gen5_2",
    "MO_Gen5_4",
    "MO_Gen5_8",
    "MO_Gen5_16",
)

VALID_SKU_FAMILIES: tuple[str, ...] = ("Gen4", "Gen5")

VALID_CAPACITIES: frozenset[int] = frozenset({1, 2, 4, 8, 16, 32})

VALID_STORAGE_MB: frozenset[int] = frozenset(
    {
        5120,
        128000,
        179200,
        256000,
        307200,
        384000,
        435200,
        512000,
        563200,
        640000,
        691200,
        768000,
        819200,
        896000,
        947200,
        1048576,
    }
)

MIN_BACKUP_RETENTION_DAYS = 7
MAX_BACKUP_RETENTION_DAYS = 35

VALID_SERVER_NAME_PATTERN = r"^[a-z0-9][a-z0-9-]{1,61}[a-z0-9]$"


def canonical_choice(value: Any, choices: Iterable[str], field_name: str) -> Any:
    """Return the canonical spelling of a case-insensitive choice.

    Non-string values are passed through so the field's own type validation
    reports them.
    """
    if not isinstance(value, str):
        return value
    options = list(choices)
    for option in options:
        if option.lower() == value.lower():
            return option
    raise ValueError(f"{field_name} must be one of {options}: {value}")


def normalize_location(location: str) -> str:
    """Normalize an Azure region name ("West Europe" -> "westeurope")."""
    return location.replace(" ", "").lower()


def _unwrap_single_block(value: Any, block_name: str) -> Any:
    # YAML written against the list-shaped schema gives nested blocks as a
    # one-element list; anything longer is ambiguous.
    if isinstance(value, list):
        if len(value) != 1:
            raise ValueError(f"{block_name} must be a single block, got {len(value)}")
        return value[0]
    return value


# =============================================================================
# Nested blocks
# =============================================================================


class SkuSpec(BaseModel):
    """Pricing SKU of the server."""

    model_config = {"extra": "ignore", "populate_by_name": True, "use_enum_values": True}

    name: str
    tier: SkuTier
    family: str
    capacity: int = Field(validation_alias=AliasChoices("capacity", "capacityUnits"))

    @field_validator("name", mode="before")
    @classmethod
    def validate_name(cls, v: Any) -> Any:
        return canonical_choice(v, VALID_SKU_NAMES, "sku.name")

    @field_validator("tier", mode="before")
    @classmethod
    def validate_tier(cls, v: Any) -> Any:
        return canonical_choice(v, [t.value for t in SkuTier], "sku.tier")

    @field_validator("family", mode="before")
    @classmethod
    def validate_family(cls, v: Any) -> Any:
        return canonical_choice(v, VALID_SKU_FAMILIES, "sku.family")

    @field_validator("capacity")
    @classmethod
    def validate_capacity(cls, v: int) -> int:
        if v not in VALID_CAPACITIES:
            raise ValueError(f"sku.capacity must be one of {sorted(VALID_CAPACITIES)}")
        return v


class StorageProfileSpec(BaseModel):
    """Storage and backup settings.

    Omitted optional fields mean "no change requested" on update.
    """

    model_config = {"extra": "ignore", "populate_by_name": True, "use_enum_values": True}

    storage_mb: int = Field(validation_alias=AliasChoices("storageMB", "storageMb", "storage_mb"))
    backup_retention_days: (
        Annotated[int, Field(ge=MIN_BACKUP_RETENTION_DAYS, le=MAX_BACKUP_RETENTION_DAYS)] | None
    ) = Field(
        None,
        validation_alias=AliasChoices("backupRetentionDays", "backup_retention_days"),
    )
    geo_redundant_backup: GeoRedundantBackup | None = Field(
        None,
        validation_alias=AliasChoices("geoRedundantBackup", "geo_redundant_backup"),
    )

    @field_validator("storage_mb")
    @classmethod
    def validate_storage_mb(cls, v: int) -> int:
        if v not in VALID_STORAGE_MB:
            raise ValueError(f"storageMB must be one of {sorted(VALID_STORAGE_MB)}")
        return v

    @field_validator("geo_redundant_backup", mode="before")
    @classmethod
    def validate_geo_redundant_backup(cls, v: Any) -> Any:
        return canonical_choice(v, [g.value for g in GeoRedundantBackup], "geoRedundantBackup")


# =============================================================================
# Server
# =============================================================================


class ServerSpec(BaseModel):
    """Desired state of one Azure Database for MySQL server.

    Fields that Azure cannot change in place (see mapper.immutable_changes)
    force the server to be replaced when they change.
    """

    model_config = {"extra": "ignore", "populate_by_name": True, "use_enum_values": True}

    name: str
    location: str
    resource_group_name: str = Field(
        validation_alias=AliasChoices("resourceGroupName", "resourceGroup", "resource_group_name")
    )
    sku: SkuSpec | None = None

    administrator_login: str = Field(
        validation_alias=AliasChoices("administratorLogin", "administrator_login")
    )
    # Never serialized: Azure does not return it and it must not reach state files
    administrator_login_password: SecretStr | None = Field(
        None,
        exclude=True,
        validation_alias=AliasChoices(
            "administratorLoginPassword", "administrator_login_password"
        ),
    )
    engine_version: ServerVersion = Field(
        validation_alias=AliasChoices("engineVersion", "version", "engine_version")
    )
    storage_profile: StorageProfileSpec | None = Field(
        None, validation_alias=AliasChoices("storageProfile", "storage_profile")
    )
    ssl_enforcement: SslEnforcement = Field(
        validation_alias=AliasChoices("sslEnforcement", "ssl_enforcement")
    )

    create_mode: CreateMode = Field(
        CreateMode.DEFAULT, validation_alias=AliasChoices("createMode", "create_mode")
    )
    source_server_id: str | None = Field(
        None, validation_alias=AliasChoices("sourceServerId", "source_server_id")
    )
    restore_point_in_time: datetime | None = Field(
        None, validation_alias=AliasChoices("restorePointInTime", "restore_point_in_time")
    )

    tags: dict[str, str] = Field(default_factory=dict)

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        if not re.match(VALID_SERVER_NAME_PATTERN, v):
            raise ValueError(
                "name must be 3-63 characters of lowercase letters, digits and hyphens, "
                "and must not start or end with a hyphen"
            )
        return v

    @field_validator("location")
    @classmethod
    def validate_location(cls, v: str) -> str:
        normalized = normalize_location(v)
        if not normalized:
            raise ValueError("location must not be empty")
        return normalized

    @field_validator("sku", mode="before")
    @classmethod
    def unwrap_sku(cls, v: Any) -> Any:
        return _unwrap_single_block(v, "sku")

    @field_validator("storage_profile", mode="before")
    @classmethod
    def unwrap_storage_profile(cls, v: Any) -> Any:
        return _unwrap_single_block(v, "storageProfile")

    @field_validator("engine_version", mode="before")
    @classmethod
    def validate_engine_version(cls, v: Any) -> Any:
        if isinstance(v, float):
            # YAML reads an unquoted 5.7 as a float
            v = str(v)
        return canonical_choice(v, [s.value for s in ServerVersion], "engineVersion")

    @field_validator("ssl_enforcement", mode="before")
    @classmethod
    def validate_ssl_enforcement(cls, v: Any) -> Any:
        return canonical_choice(v, [s.value for s in SslEnforcement], "sslEnforcement")

    @field_validator("create_mode", mode="before")
    @classmethod
    def validate_create_mode(cls, v: Any) -> Any:
        return canonical_choice(v, [c.value for c in CreateMode], "createMode")

    @model_validator(mode="after")
    def validate_restore_source(self) -> ServerSpec:
        if self.create_mode == CreateMode.POINT_IN_TIME_RESTORE:
            missing = []
            if not self.source_server_id:
                missing.append("sourceServerId")
            if self.restore_point_in_time is None:
                missing.append("restorePointInTime")
            if missing:
                raise ValueError(f"createMode PointInTimeRestore requires {', '.join(missing)}")
        return self

    def password_value(self) -> str | None:
        """Return the plain administrator password, if one was declared."""
        if self.administrator_login_password is None:
            return None
        return self.administrator_login_password.get_secret_value()

    @classmethod
    def from_record(cls, data: Mapping[str, Any]) -> ServerSpec:
        """Rebuild a spec recorded from Azure's read-back.

        Recorded values are what Azure reported, so they are not checked
        against the local choice lists: a server on engine 8.0 or on a SKU
        larger than any listed here must still load. Only the shape is checked.

        Raises:
            ValueError: If a required field is missing or has the wrong type.
        """
        try:
            sku = data.get("sku")
            profile = data.get("storage_profile")
            restore_at = data.get("restore_point_in_time")
            return cls.model_construct(
                name=str(data["name"]),
                location=normalize_location(str(data["location"])),
                resource_group_name=str(data["resource_group_name"]),
                sku=_sku_from_record(sku) if sku is not None else None,
                administrator_login=str(data["administrator_login"]),
                administrator_login_password=None,
                engine_version=str(data["engine_version"]),
                storage_profile=(
                    _storage_profile_from_record(profile) if profile is not None else None
                ),
                ssl_enforcement=str(data["ssl_enforcement"]),
                create_mode=str(data.get("create_mode") or CreateMode.DEFAULT.value),
                source_server_id=data.get("source_server_id"),
                restore_point_in_time=(
                    datetime.fromisoformat(restore_at) if restore_at is not None else None
                ),
                tags={str(k): str(v) for k, v in (data.get("tags") or {}).items()},
            )
        except (KeyError, TypeError, AttributeError, ValueError) as e:
            raise ValueError(f"recorded server is malformed: {e!r}") from e


def _sku_from_record(data: Mapping[str, Any]) -> SkuSpec:
    return SkuSpec.model_construct(
        name=str(data["name"]),
        tier=str(data["tier"]),
        family=str(data["family"]),
        capacity=int(data["capacity"]),
    )


def _storage_profile_from_record(data: Mapping[str, Any]) -> StorageProfileSpec:
    backup_days = data.get("backup_retention_days")
    return StorageProfileSpec.model_construct(
        storage_mb=int(data["storage_mb"]),
        backup_retention_days=int(backup_days) if backup_days is not None else None,
        geo_redundant_backup=data.get("geo_redundant_backup"),
    )
