"""Lifecycle reconciliation for one Azure Database for MySQL server.

This module implements the four-operation lifecycle of a declarative resource:
1. Create: submit, wait for the long-running operation, read back
2. Read: refresh local state from Azure, clearing it when the server is gone
3. Update: reject immutable changes, submit, wait, read back
4. Delete: submit, wait, clear local state

Create and Update always end with a fresh Read. The create/update response is
not trusted as the post-state; only a GET is.

Every operation takes the current ServerState and returns a new one. The
input state is never modified, so a failed operation leaves the caller's
state exactly as it was and re-running the operation is safe.

The Azure client is injected; a reconciler manages exactly one server and is
driven sequentially.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum

from azure.core.exceptions import ResourceNotFoundError
from azure.mgmt.rdbms.mysql import MySQLManagementClient
from azure.mgmt.rdbms.mysql.models import Server

from .errors import (
    ImmutableFieldChangeError,
    IncompleteRemoteDataError,
    OperationFailedError,
    ServerAlreadyExistsError,
    ServerNotFoundError,
    StateConflictError,
)
from .identity import ServerIdentity
from .mapper import (
    expand_create_parameters,
    expand_update_parameters,
    flatten_server,
    immutable_changes,
    mutable_changes,
)
from .models import ServerSpec
from .state import ResourcePhase, ServerState
from .waiter import OperationWaiter, run_cancellable

logger = logging.getLogger(__name__)


class PlanAction(str, Enum):
    """What converging the server to its desired state requires."""

    CREATE = "create"
    UPDATE = "update"
    REPLACE = "replace"
    NOOP = "noop"


@dataclass
class Plan:
    """Result of comparing the known state with the desired state."""

    action: PlanAction
    changes: list[str] = field(default_factory=list)
    immutable_changes: list[str] = field(default_factory=list)


@dataclass
class ReconcileResult:
    """Result of a single convergence run."""

    action: PlanAction
    state: ServerState
    changes: list[str] = field(default_factory=list)
    start_time: datetime = field(default_factory=lambda: datetime.now(UTC))
    end_time: datetime | None = None

    @property
    def duration_seconds(self) -> float:
        """Calculate duration in seconds."""
        if self.end_time is None:
            return 0.0
        return (self.end_time - self.start_time).total_seconds()


class ServerReconciler:
    """Drives one MySQL server through Create, Read, Update and Delete."""

    def __init__(
        self,
        client: MySQLManagementClient,
        *,
        waiter: OperationWaiter | None = None,
        require_import: bool = False,
    ) -> None:
        """Initialize the reconciler.

        Args:
            client: Shared MySQL management client, constructed once per process.
            waiter: Waiter for long-running operations.
            require_import: If True, Create refuses to proceed when a server
                with the same name already exists; it must be imported instead.
        """
        self._client = client
        self._waiter = waiter or OperationWaiter()
        self._require_import = require_import
        self._phase = ResourcePhase.ABSENT

    @property
    def phase(self) -> ResourcePhase:
        """Phase of the server during or after the last operation."""
        return self._phase

    # =========================================================================
    # Lifecycle operations
    # =========================================================================

    async def create(
        self,
        state: ServerState,
        desired: ServerSpec,
        cancel_event: asyncio.Event | None = None,
    ) -> ServerState:
        """Create the server and return the state holding its new identity.

        Raises:
            StateConflictError: If the state already tracks a server.
            MalformedInputError: If the desired state cannot be expanded.
            ServerAlreadyExistsError: If require_import is set and the server exists.
            OperationFailedError: If Azure fails the create operation.
            OperationCancelledError: If cancelled before completion.
            IncompleteRemoteDataError: If the server cannot be read back with an ID.
        """
        if state.id:
            raise StateConflictError(
                f"MySQL server is already tracked as {state.id!r}; read or update it instead"
            )

        resource_group = desired.resource_group_name
        name = desired.name
        # Expansion errors are raised before any Azure call
        parameters = expand_create_parameters(desired)

        logger.info(
            "Creating MySQL server",
            extra={
                "resource_group": resource_group,
                "server_name": name,
                "location": desired.location,
                "sku": desired.sku.name if desired.sku else None,
                "create_mode": str(getattr(desired.create_mode, "value", desired.create_mode)),
            },
        )

        self._phase = ResourcePhase.CREATING
        try:
            if self._require_import:
                existing = await self._get(resource_group, name, cancel_event)
                if existing is not None:
                    raise ServerAlreadyExistsError(
                        existing.id or f"resourceGroups/{resource_group}/servers/{name}"
                    )

            operation = f"Create MySQL server {name!r}"
            poller = await run_cancellable(
                self._client.servers.begin_create,
                resource_group,
                name,
                parameters,
                cancel_event=cancel_event,
                operation=operation,
            )
            await self._waiter.wait(poller, operation=operation, cancel_event=cancel_event)

            server = await self._get(resource_group, name, cancel_event)
            if server is None or not server.id:
                raise IncompleteRemoteDataError(
                    f"Cannot read MySQL server {name!r} (resource group {resource_group!r}) ID"
                )

            new_state = self._state_from_server(
                server,
                resource_id=server.id,
                resource_group=resource_group,
                previous=desired,
            )
        except Exception:
            self._phase = state.phase
            raise

        self._phase = new_state.phase
        logger.info(
            "MySQL server created",
            extra={
                "resource_id": new_state.id,
                "fqdn": new_state.fully_qualified_domain_name,
            },
        )
        return new_state

    async def read(
        self,
        state: ServerState,
        cancel_event: asyncio.Event | None = None,
    ) -> ServerState:
        """Refresh the state from Azure.

        A server that no longer exists is drift, not an error: the returned
        state has its identity cleared.

        Raises:
            InvalidIdentityError: If the stored ID is malformed.
            IncompleteRemoteDataError: If Azure returns an incomplete record.
        """
        if not state.id:
            logger.debug("No MySQL server tracked, nothing to read")
            self._phase = ResourcePhase.ABSENT
            return state

        identity = ServerIdentity.parse(state.id)
        server = await self._get(identity.resource_group, identity.name, cancel_event)

        if server is None:
            logger.warning(
                "MySQL server not found, removing it from state",
                extra={"resource_id": state.id},
            )
            self._phase = ResourcePhase.ABSENT
            return state.cleared()

        new_state = self._state_from_server(
            server,
            resource_id=state.id,
            resource_group=identity.resource_group,
            previous=state.spec,
        )
        self._phase = new_state.phase
        return new_state

    async def update(
        self,
        state: ServerState,
        desired: ServerSpec,
        cancel_event: asyncio.Event | None = None,
    ) -> ServerState:
        """Apply in-place changes and return the refreshed state.

        Raises:
            StateConflictError: If no server is tracked.
            ImmutableFieldChangeError: If a field that forces replacement
                changed. Raised before any Azure call.
            OperationFailedError: If Azure fails the update operation.
            OperationCancelledError: If cancelled before completion.
        """
        if not state.id:
            raise StateConflictError("No MySQL server is tracked; create or import it first")

        identity = ServerIdentity.parse(state.id)
        changed = self._immutable_changes(identity, state.spec, desired)
        if changed:
            logger.error(
                "Update rejected, immutable fields changed",
                extra={"resource_id": state.id, "fields": changed},
            )
            raise ImmutableFieldChangeError(changed)

        resource_group = desired.resource_group_name
        name = desired.name
        parameters = expand_update_parameters(desired)

        logger.info(
            "Updating MySQL server",
            extra={"resource_id": state.id, "sku": desired.sku.name if desired.sku else None},
        )

        self._phase = ResourcePhase.UPDATING
        try:
            operation = f"Update MySQL server {name!r}"
            poller = await run_cancellable(
                self._client.servers.begin_update,
                resource_group,
                name,
                parameters,
                cancel_event=cancel_event,
                operation=operation,
            )
            await self._waiter.wait(poller, operation=operation, cancel_event=cancel_event)

            server = await self._get(resource_group, name, cancel_event)
            if server is None:
                raise IncompleteRemoteDataError(
                    f"Cannot read MySQL server {name!r} (resource group {resource_group!r}) "
                    "after update"
                )

            new_state = self._state_from_server(
                server,
                resource_id=state.id,
                resource_group=resource_group,
                previous=desired,
            )
        except Exception:
            self._phase = state.phase
            raise

        self._phase = new_state.phase
        logger.info("MySQL server updated", extra={"resource_id": new_state.id})
        return new_state

    async def delete(
        self,
        state: ServerState,
        cancel_event: asyncio.Event | None = None,
    ) -> ServerState:
        """Delete the server and return a cleared state.

        On failure the caller keeps its state (the server may be partially
        deleted) and must retry the delete.

        Raises:
            InvalidIdentityError: If the stored ID is malformed.
            OperationFailedError: If Azure fails the delete operation.
            OperationCancelledError: If cancelled before completion.
        """
        if not state.id:
            logger.debug("No MySQL server tracked, nothing to delete")
            self._phase = ResourcePhase.ABSENT
            return state

        identity = ServerIdentity.parse(state.id)
        operation = f"Delete MySQL server {identity.name!r}"

        logger.info("Deleting MySQL server", extra={"resource_id": state.id})

        self._phase = ResourcePhase.DELETING
        try:
            poller = await run_cancellable(
                self._client.servers.begin_delete,
                identity.resource_group,
                identity.name,
                cancel_event=cancel_event,
                operation=operation,
            )
            await self._waiter.wait(poller, operation=operation, cancel_event=cancel_event)
        except ResourceNotFoundError:
            logger.info("MySQL server already gone", extra={"resource_id": state.id})
        except OperationFailedError as e:
            # A 404 reported by the poll means the server went away meanwhile
            if not isinstance(e.__cause__, ResourceNotFoundError):
                self._phase = state.phase
                raise
            logger.info("MySQL server already gone", extra={"resource_id": state.id})
        except Exception:
            self._phase = state.phase
            raise

        self._phase = ResourcePhase.ABSENT
        logger.info("MySQL server deleted", extra={"resource_id": state.id})
        return state.cleared()

    async def import_server(
        self,
        resource_id: str,
        cancel_event: asyncio.Event | None = None,
    ) -> ServerState:
        """Adopt an existing server into state from its resource ID.

        Raises:
            InvalidIdentityError: If the ID is not a MySQL server ID.
            ServerNotFoundError: If no such server exists.
        """
        identity = ServerIdentity.parse(resource_id)
        server = await self._get(identity.resource_group, identity.name, cancel_event)
        if server is None:
            raise ServerNotFoundError(resource_id)

        new_state = self._state_from_server(
            server,
            resource_id=server.id or identity.resource_id,
            resource_group=identity.resource_group,
            previous=None,
        )
        self._phase = new_state.phase
        logger.info("MySQL server imported", extra={"resource_id": new_state.id})
        return new_state

    # =========================================================================
    # Convergence
    # =========================================================================

    def plan(self, state: ServerState, desired: ServerSpec) -> Plan:
        """Decide what converging ``state`` to ``desired`` requires.

        The state should be freshly read; a tracked server without a read-back
        is planned as an update.
        """
        if not state.id:
            return Plan(action=PlanAction.CREATE)

        identity = ServerIdentity.parse(state.id)
        immutable = self._immutable_changes(identity, state.spec, desired)
        if immutable:
            return Plan(action=PlanAction.REPLACE, immutable_changes=immutable)

        if state.spec is None:
            return Plan(action=PlanAction.UPDATE)

        changes = mutable_changes(state.spec, desired)
        if changes:
            return Plan(action=PlanAction.UPDATE, changes=changes)
        return Plan(action=PlanAction.NOOP)

    async def converge(
        self,
        state: ServerState,
        desired: ServerSpec,
        *,
        allow_replace: bool = False,
        cancel_event: asyncio.Event | None = None,
    ) -> ReconcileResult:
        """Read, plan and apply in one run.

        Replacement (delete then create) only happens with ``allow_replace``.

        Raises:
            ImmutableFieldChangeError: If replacement is needed but not allowed.
        """
        refreshed = await self.read(state, cancel_event)
        plan = self.plan(refreshed, desired)
        result = ReconcileResult(
            action=plan.action,
            state=refreshed,
            changes=plan.changes or plan.immutable_changes,
        )

        logger.info(
            "Planned MySQL server changes",
            extra={
                "action": plan.action.value,
                "changes": plan.changes,
                "immutable_changes": plan.immutable_changes,
            },
        )

        match plan.action:
            case PlanAction.CREATE:
                result.state = await self.create(refreshed, desired, cancel_event)
            case PlanAction.UPDATE:
                result.state = await self.update(refreshed, desired, cancel_event)
            case PlanAction.REPLACE:
                if not allow_replace:
                    raise ImmutableFieldChangeError(plan.immutable_changes)
                deleted = await self.delete(refreshed, cancel_event)
                result.state = await self.create(deleted, desired, cancel_event)
            case PlanAction.NOOP:
                logger.info("No drift detected", extra={"resource_id": refreshed.id})

        result.end_time = datetime.now(UTC)
        return result

    # =========================================================================
    # Helpers
    # =========================================================================

    async def _get(
        self,
        resource_group: str,
        name: str,
        cancel_event: asyncio.Event | None,
    ) -> Server | None:
        """GET the server, returning None when Azure reports it missing."""
        try:
            return await run_cancellable(
                self._client.servers.get,
                resource_group,
                name,
                cancel_event=cancel_event,
                operation=f"Read MySQL server {name!r}",
            )
        except ResourceNotFoundError:
            return None

    def _state_from_server(
        self,
        server: Server,
        *,
        resource_id: str,
        resource_group: str,
        previous: ServerSpec | None,
    ) -> ServerState:
        spec = flatten_server(server, resource_group=resource_group, previous=previous)
        return ServerState(
            id=resource_id,
            spec=spec,
            fully_qualified_domain_name=server.fully_qualified_domain_name,
            updated_at=datetime.now(UTC),
        )

    @staticmethod
    def _immutable_changes(
        identity: ServerIdentity,
        current: ServerSpec | None,
        desired: ServerSpec,
    ) -> list[str]:
        if current is not None:
            return immutable_changes(current, desired)

        # Without a read-back only the identity can be compared
        changed: list[str] = []
        if identity.name != desired.name:
            changed.append("name")
        if identity.resource_group.lower() != desired.resource_group_name.lower():
            changed.append("resourceGroupName")
        return changed
