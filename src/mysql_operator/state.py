"""Persisted state for one managed MySQL server.

The state record holds the resource ID (the only key correlating the desired
state with the remote server), the flattened read-back of the server and
the computed FQDN. The administrator password is never persisted.

SECURITY: File reads enforce a size limit and writes are atomic (temp file +
rename) so an interrupted write never leaves a truncated state file.
"""

from __future__ import annotations

import logging
import os
import tempfile
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, ValidationError, field_validator

from .models import ServerSpec

logger = logging.getLogger(__name__)

MAX_STATE_FILE_SIZE_BYTES = 1024 * 1024  # 1MB max state file
STATE_FORMAT_VERSION = 1


class ResourcePhase(str, Enum):
    """Lifecycle phase of the managed server as seen by the reconciler."""

    ABSENT = "absent"
    CREATING = "creating"
    PRESENT = "present"
    UPDATING = "updating"
    DELETING = "deleting"


class StateFileError(Exception):
    """Raised when the state file cannot be read or written."""

    pass


class ServerState(BaseModel):
    """Locally known state of the managed server."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    version: int = STATE_FORMAT_VERSION
    id: str | None = None
    spec: ServerSpec | None = None
    fully_qualified_domain_name: str | None = Field(None, alias="fullyQualifiedDomainName")
    updated_at: datetime | None = Field(None, alias="updatedAt")

    @field_validator("spec", mode="before")
    @classmethod
    def load_recorded_spec(cls, v: Any) -> Any:
        # The spec holds Azure's read-back, which the desired-state choice
        # lists do not bound
        if isinstance(v, dict):
            return ServerSpec.from_record(v)
        return v

    @property
    def phase(self) -> ResourcePhase:
        """PRESENT when an ID is stored, ABSENT otherwise."""
        return ResourcePhase.PRESENT if self.id else ResourcePhase.ABSENT

    def cleared(self) -> ServerState:
        """Return an empty state, as after the server is gone."""
        return ServerState(updated_at=datetime.now(UTC))


class StateStore:
    """Loads and saves a ServerState as JSON on disk."""

    def __init__(self, path: Path) -> None:
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> ServerState:
        """Load the state, returning an empty (absent) state if none exists.

        Raises:
            StateFileError: If the file is too large, unreadable or invalid.
        """
        if not self._path.exists():
            logger.info("No state file, server is untracked", extra={"path": str(self._path)})
            return ServerState()

        try:
            file_size = self._path.stat().st_size
        except OSError as e:
            raise StateFileError(f"Failed to stat state file {self._path}: {e}") from e

        if file_size > MAX_STATE_FILE_SIZE_BYTES:
            raise StateFileError(
                f"State file exceeds maximum size of {MAX_STATE_FILE_SIZE_BYTES} bytes: "
                f"{self._path}"
            )

        try:
            content = self._path.read_text(encoding="utf-8")
        except OSError as e:
            raise StateFileError(f"Failed to read state file {self._path}: {e}") from e

        try:
            state = ServerState.model_validate_json(content)
        except ValidationError as e:
            raise StateFileError(f"Invalid state file {self._path}: {e}") from e

        if state.version != STATE_FORMAT_VERSION:
            raise StateFileError(
                f"Unsupported state format version {state.version} in {self._path}"
            )
        return state

    def save(self, state: ServerState) -> None:
        """Atomically write the state.

        Raises:
            StateFileError: If the file cannot be written.
        """
        content = state.model_dump_json(by_alias=True, indent=2)
        directory = self._path.parent

        try:
            fd, tmp_name = tempfile.mkstemp(
                dir=directory, prefix=f".{self._path.name}.", suffix=".tmp"
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as handle:
                    handle.write(content)
                    handle.flush()
                    os.fsync(handle.fileno())
                os.replace(tmp_name, self._path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as e:
            raise StateFileError(f"Failed to write state file {self._path}: {e}") from e

        logger.info(
            "State saved",
            extra={"path": str(self._path), "resource_id": state.id, "phase": state.phase.value},
        )
