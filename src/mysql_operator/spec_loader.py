"""Desired-state file loading with validation.

SECURITY: File reads enforce a size limit to prevent DoS via large files.
Validation errors never echo field values, so a malformed password cannot
leak through an error message.
"""

from __future__ import annotations

import logging
from pathlib import Path

import yaml
from pydantic import ValidationError

from .models import ServerSpec

logger = logging.getLogger(__name__)

MAX_SPEC_FILE_SIZE_BYTES = 1024 * 1024  # 1MB max spec file


class SpecLoadError(Exception):
    """Raised when spec loading or validation fails."""

    pass


def load_spec(spec_path: Path) -> ServerSpec:
    """Load and validate a MySQL server spec from YAML.

    Supports both a flat mapping and a Kubernetes-style wrapper with
    ``apiVersion``/``kind``/``spec``.

    Raises:
        SpecLoadError: If the spec cannot be loaded or fails validation.
    """
    if not spec_path.exists():
        raise SpecLoadError(f"Spec file not found: {spec_path}")

    try:
        file_size = spec_path.stat().st_size
    except OSError as e:
        raise SpecLoadError(f"Failed to stat spec file {spec_path}: {e}") from e

    if file_size > MAX_SPEC_FILE_SIZE_BYTES:
        raise SpecLoadError(
            f"Spec file exceeds maximum size of {MAX_SPEC_FILE_SIZE_BYTES} bytes: {spec_path}"
        )

    try:
        content = spec_path.read_text(encoding="utf-8")
    except OSError as e:
        raise SpecLoadError(f"Failed to read spec file {spec_path}: {e}") from e

    try:
        raw_data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise SpecLoadError(f"Invalid YAML in {spec_path}: {e}") from e

    if not isinstance(raw_data, dict):
        raise SpecLoadError(f"Spec file must contain a YAML mapping: {spec_path}")

    if "apiVersion" in raw_data and "spec" in raw_data:
        spec_data = raw_data.get("spec", {})
        if not isinstance(spec_data, dict):
            raise SpecLoadError(f"Spec section must be a mapping: {spec_path}")
    else:
        spec_data = raw_data

    try:
        spec = ServerSpec.model_validate(spec_data)
    except ValidationError as e:
        # Only locations and messages; input values may hold the password
        errors = []
        for error in e.errors(include_input=False):
            loc = ".".join(str(x) for x in error["loc"])
            errors.append(f"  - {loc}: {error['msg']}")

        error_list = "\n".join(errors)
        raise SpecLoadError(f"Validation failed for {spec_path}:\n{error_list}") from None

    logger.info(
        "Loaded MySQL server spec",
        extra={"spec_file": str(spec_path), "server_name": spec.name},
    )
    return spec
