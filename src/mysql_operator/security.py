"""Credential acquisition and secret handling.

Two concerns live here:
- Azure authentication is secretless: only managed identities are used, and
  service principal secrets in the environment block startup.
- The server's administrator password is a user secret that must never
  reach logs, error messages or persisted state. ``redact`` masks it (and
  any other sensitive key) in mappings before they are logged or printed.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from typing import Any

from azure.identity import ManagedIdentityCredential

logger = logging.getLogger(__name__)

# Environment variables that indicate credential leakage
FORBIDDEN_CREDENTIAL_ENV_VARS: tuple[str, ...] = (
    "AZURE_CLIENT_SECRET",
    "AZURE_CLIENT_CERTIFICATE_PATH",
    "AZURE_CLIENT_CERTIFICATE_PASSWORD",
    "AZURE_USERNAME",
    "AZURE_PASSWORD",
)

# Keys masked by redact(), compared case-insensitively
SENSITIVE_FIELDS: frozenset[str] = frozenset(
    {
        "administratorloginpassword",
        "administrator_login_password",
        "password",
    }
)

REDACTED = "***"


class SecretlessViolationError(Exception):
    """Raised when credential secrets are found in the environment.

    This is a fatal security error; the operator must not proceed.
    """

    pass


def enforce_secretless_architecture() -> None:
    """Enforce that no credential secrets are present in the environment.

    Raises:
        SecretlessViolationError: If any credential environment variable is set.
    """
    for env_var in FORBIDDEN_CREDENTIAL_ENV_VARS:
        if os.environ.get(env_var):
            logger.critical(
                "Secretless architecture violation",
                extra={
                    "security_event": "credential_detected",
                    "env_var": env_var,
                    "action": "startup_blocked",
                },
            )
            raise SecretlessViolationError(
                f"Detected {env_var} in the environment. Service principal and password "
                "authentication is not allowed; assign a managed identity instead."
            )


def get_managed_identity_credential(
    client_id: str | None = None,
) -> ManagedIdentityCredential:
    """Get a ManagedIdentityCredential after verifying secretless architecture.

    Args:
        client_id: Optional client ID for user-assigned managed identity.
                   If None, uses system-assigned managed identity.

    Raises:
        SecretlessViolationError: If credential environment variables detected.
    """
    enforce_secretless_architecture()

    if client_id:
        logger.info(
            "Using user-assigned managed identity",
            extra={"client_id": client_id[:8] + "..." if len(client_id) > 8 else client_id},
        )
        return ManagedIdentityCredential(client_id=client_id)

    logger.info("Using system-assigned managed identity")
    return ManagedIdentityCredential()


def redact(data: Any) -> Any:
    """Return a copy of ``data`` with sensitive mapping values masked.

    Nested mappings and lists are walked; other values are returned as-is.
    """
    if isinstance(data, Mapping):
        masked: dict[Any, Any] = {}
        for key, value in data.items():
            if isinstance(key, str) and key.lower() in SENSITIVE_FIELDS:
                masked[key] = REDACTED if value is not None else None
            else:
                masked[key] = redact(value)
        return masked
    if isinstance(data, list):
        return [redact(item) for item in data]
    return data
