"""Mapping between the desired-state models and the Azure MySQL SDK models.

"Expand" turns a ServerSpec into request payloads; "flatten" turns a Server
returned by Azure back into a ServerSpec. All functions here are pure: they
make no Azure calls and know nothing of the reconciliation lifecycle.

Remote values are flattened without re-validating them against the local
choice lists; Azure is the authority on what it returns.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any, TypeVar

from azure.mgmt.rdbms.mysql.models import (
    Server,
    ServerForCreate,
    ServerPropertiesForDefaultCreate,
    ServerPropertiesForRestore,
    ServerUpdateParameters,
    Sku,
    StorageProfile,
)
from pydantic import BaseModel, ValidationError

from .errors import IncompleteRemoteDataError, MalformedInputError
from .models import (
    CreateMode,
    ServerSpec,
    SkuSpec,
    StorageProfileSpec,
    normalize_location,
)

INT32_MIN = -(2**31)
INT32_MAX = 2**31 - 1

REQUIRED_SKU_FIELDS: tuple[str, ...] = ("name", "capacity", "tier", "family")

BlockT = TypeVar("BlockT", bound=BaseModel)


def _enum_value(value: Any) -> Any:
    """Unwrap SDK or local enum members to their string value."""
    return getattr(value, "value", value)


def _to_int32(value: int, field_name: str) -> int:
    if not INT32_MIN <= value <= INT32_MAX:
        raise MalformedInputError(f"{field_name} does not fit a 32-bit integer: {value}")
    return int(value)


def _single_block(block: Any, block_name: str, block_type: type[BlockT]) -> BlockT:
    """Resolve a nested block that Azure accepts exactly once.

    Accepts the typed block, a mapping, or a sequence holding exactly one of
    either.
    """
    if block is None:
        raise MalformedInputError(f"exactly one {block_name} block is required, got none")

    if isinstance(block, Sequence) and not isinstance(block, (str, bytes)):
        if len(block) != 1:
            raise MalformedInputError(
                f"exactly one {block_name} block is required, got {len(block)}"
            )
        block = block[0]

    if isinstance(block, block_type):
        return block

    if isinstance(block, Mapping):
        try:
            return block_type.model_validate(dict(block))
        except ValidationError as e:
            fields = ", ".join(".".join(str(x) for x in err["loc"]) for err in e.errors())
            raise MalformedInputError(f"invalid {block_name} block: {fields}") from e

    raise MalformedInputError(f"{block_name} block has unsupported type {type(block).__name__}")


# =============================================================================
# Expand
# =============================================================================


def expand_sku(block: SkuSpec | Sequence[Any] | Mapping[str, Any] | None) -> Sku:
    """Build the SDK Sku from the desired sku block.

    Raises:
        MalformedInputError: If zero or several blocks are given, or the
            capacity does not fit a 32-bit integer.
    """
    sku = _single_block(block, "sku", SkuSpec)
    return Sku(
        name=sku.name,
        tier=_enum_value(sku.tier),
        capacity=_to_int32(sku.capacity, "sku.capacity"),
        family=sku.family,
    )


def expand_storage_profile(
    block: StorageProfileSpec | Sequence[Any] | Mapping[str, Any] | None,
    *,
    include_storage_mb: bool = True,
) -> StorageProfile:
    """Build the SDK StorageProfile from the desired storage block.

    Optional fields left unset stay None and are dropped by the SDK
    serializer, so Azure keeps its current value.

    Args:
        block: The storageProfile block.
        include_storage_mb: False for update payloads, where the storage size
            is immutable and must not be sent.

    Raises:
        MalformedInputError: If zero or several blocks are given.
    """
    profile = _single_block(block, "storageProfile", StorageProfileSpec)
    storage_mb = _to_int32(profile.storage_mb, "storageProfile.storageMB")
    backup_days = profile.backup_retention_days
    return StorageProfile(
        storage_mb=storage_mb if include_storage_mb else None,
        backup_retention_days=(
            _to_int32(backup_days, "storageProfile.backupRetentionDays")
            if backup_days is not None
            else None
        ),
        geo_redundant_backup=_enum_value(profile.geo_redundant_backup),
    )


def expand_create_parameters(spec: ServerSpec) -> ServerForCreate:
    """Build the create payload for a new server.

    Raises:
        MalformedInputError: If required blocks or the password are missing.
    """
    sku = expand_sku(spec.sku)
    storage_profile = expand_storage_profile(spec.storage_profile)

    properties: ServerPropertiesForDefaultCreate | ServerPropertiesForRestore
    if spec.create_mode == CreateMode.POINT_IN_TIME_RESTORE:
        if not spec.source_server_id or spec.restore_point_in_time is None:
            raise MalformedInputError(
                "createMode PointInTimeRestore requires sourceServerId and restorePointInTime"
            )
        # Login and password are inherited from the source server
        properties = ServerPropertiesForRestore(
            source_server_id=spec.source_server_id,
            restore_point_in_time=spec.restore_point_in_time,
            version=_enum_value(spec.engine_version),
            ssl_enforcement=_enum_value(spec.ssl_enforcement),
            storage_profile=storage_profile,
        )
    else:
        password = spec.password_value()
        if not password:
            raise MalformedInputError("administratorLoginPassword is required to create a server")
        properties = ServerPropertiesForDefaultCreate(
            administrator_login=spec.administrator_login,
            administrator_login_password=password,
            version=_enum_value(spec.engine_version),
            ssl_enforcement=_enum_value(spec.ssl_enforcement),
            storage_profile=storage_profile,
        )

    return ServerForCreate(
        location=spec.location,
        sku=sku,
        properties=properties,
        tags=dict(spec.tags),
    )


def expand_update_parameters(spec: ServerSpec) -> ServerUpdateParameters:
    """Build the in-place update payload.

    Immutable fields (engine version, administrator login, storage size) are
    never included; changing them requires replacing the server.
    """
    return ServerUpdateParameters(
        sku=expand_sku(spec.sku),
        storage_profile=expand_storage_profile(spec.storage_profile, include_storage_mb=False),
        administrator_login_password=spec.password_value(),
        ssl_enforcement=_enum_value(spec.ssl_enforcement),
        tags=dict(spec.tags),
    )


# =============================================================================
# Flatten
# =============================================================================


def flatten_sku(sku: Sku | None) -> SkuSpec:
    """Flatten the Sku of a server read from Azure.

    Raises:
        IncompleteRemoteDataError: If the sku or one of its required fields
            is missing.
    """
    if sku is None:
        raise IncompleteRemoteDataError("Azure returned a server without a sku")

    missing = [name for name in REQUIRED_SKU_FIELDS if getattr(sku, name, None) is None]
    if missing:
        raise IncompleteRemoteDataError(
            f"Azure returned a sku without required fields: {', '.join(missing)}"
        )

    return SkuSpec.model_construct(
        name=sku.name,
        tier=_enum_value(sku.tier),
        family=sku.family,
        capacity=int(sku.capacity),
    )


def flatten_storage_profile(profile: StorageProfile | None) -> StorageProfileSpec:
    """Flatten the StorageProfile of a server read from Azure.

    Raises:
        IncompleteRemoteDataError: If the profile or its storage size is missing.
    """
    if profile is None:
        raise IncompleteRemoteDataError("Azure returned a server without a storage profile")
    if profile.storage_mb is None:
        raise IncompleteRemoteDataError("Azure returned a storage profile without storage_mb")

    backup_days = profile.backup_retention_days
    return StorageProfileSpec.model_construct(
        storage_mb=int(profile.storage_mb),
        backup_retention_days=int(backup_days) if backup_days is not None else None,
        geo_redundant_backup=_enum_value(profile.geo_redundant_backup),
    )


def flatten_server(
    server: Server,
    *,
    resource_group: str,
    previous: ServerSpec | None = None,
) -> ServerSpec:
    """Flatten a server read from Azure into a ServerSpec.

    The password is never part of the result. Create-only settings that Azure
    does not echo back (create mode and restore source) are carried over from
    ``previous``.
    """
    location = server.location or (previous.location if previous else "")
    return ServerSpec.model_construct(
        name=server.name,
        location=normalize_location(location),
        resource_group_name=resource_group,
        sku=flatten_sku(server.sku),
        administrator_login=server.administrator_login,
        administrator_login_password=None,
        engine_version=_enum_value(server.version),
        storage_profile=flatten_storage_profile(server.storage_profile),
        ssl_enforcement=_enum_value(server.ssl_enforcement),
        create_mode=_enum_value(previous.create_mode) if previous else CreateMode.DEFAULT.value,
        source_server_id=previous.source_server_id if previous else None,
        restore_point_in_time=previous.restore_point_in_time if previous else None,
        tags=dict(server.tags or {}),
    )


# =============================================================================
# Diffing
# =============================================================================


def _same_text(left: Any, right: Any) -> bool:
    left, right = _enum_value(left), _enum_value(right)
    if isinstance(left, str) and isinstance(right, str):
        return left.lower() == right.lower()
    return left == right


def immutable_changes(current: ServerSpec, desired: ServerSpec) -> list[str]:
    """List the fields that differ and cannot be changed in place."""
    changes: list[str] = []

    if current.name != desired.name:
        changes.append("name")
    if not _same_text(current.resource_group_name, desired.resource_group_name):
        changes.append("resourceGroupName")
    if normalize_location(current.location) != normalize_location(desired.location):
        changes.append("location")
    if current.administrator_login != desired.administrator_login:
        changes.append("administratorLogin")
    if not _same_text(current.engine_version, desired.engine_version):
        changes.append("engineVersion")

    current_mb = current.storage_profile.storage_mb if current.storage_profile else None
    desired_mb = desired.storage_profile.storage_mb if desired.storage_profile else None
    if current_mb is not None and desired_mb is not None and current_mb != desired_mb:
        changes.append("storageProfile.storageMB")

    return changes


def mutable_changes(current: ServerSpec, desired: ServerSpec) -> list[str]:
    """List the in-place updatable fields where desired differs from current.

    Optional storage fields left unset in ``desired`` are not drift.
    """
    changes: list[str] = []

    if current.sku is None or desired.sku is None:
        if current.sku is not desired.sku:
            changes.append("sku")
    else:
        for field_name in REQUIRED_SKU_FIELDS:
            if not _same_text(getattr(current.sku, field_name), getattr(desired.sku, field_name)):
                changes.append(f"sku.{field_name}")

    if current.storage_profile is not None and desired.storage_profile is not None:
        if (
            desired.storage_profile.backup_retention_days is not None
            and desired.storage_profile.backup_retention_days
            != current.storage_profile.backup_retention_days
        ):
            changes.append("storageProfile.backupRetentionDays")
        if desired.storage_profile.geo_redundant_backup is not None and not _same_text(
            desired.storage_profile.geo_redundant_backup,
            current.storage_profile.geo_redundant_backup,
        ):
            changes.append("storageProfile.geoRedundantBackup")

    if not _same_text(current.ssl_enforcement, desired.ssl_enforcement):
        changes.append("sslEnforcement")
    if dict(current.tags) != dict(desired.tags):
        changes.append("tags")

    return changes
