"""Pytest configuration and fixtures."""

import logging
import sys
from collections.abc import Iterator
from pathlib import Path
from typing import Any

import pytest

# Add src to path for imports
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

# Add tests to path for azure_mock imports
tests_path = Path(__file__).parent
sys.path.insert(0, str(tests_path))

from azure_mock import MockMySQLClient  # noqa: E402
from mysql_operator.models import ServerSpec  # noqa: E402
from mysql_operator.waiter import OperationWaiter  # noqa: E402

SUBSCRIPTION_ID = "00000000-0000-0000-0000-000000000001"
TEST_PASSWORD = "H@Sh1CoR3!-never-logged"


def server_spec_data(**overrides: Any) -> dict[str, Any]:
    """Desired state of server db1 in rg1, as written in a spec file."""
    data: dict[str, Any] = {
        "name": "db1",
        "location": "West Europe",
        "resourceGroupName": "rg1",
        "sku": {
            "name": "GP_Gen5_2",
            "tier": "GeneralPurpose",
            "family": "Gen5",
            "capacity": 2,
        },
        "administratorLogin": "mysqladmin",
        "administratorLoginPassword": TEST_PASSWORD,
        "engineVersion": "5.7",
        "storageProfile": {
            "storageMB": 5120,
            "backupRetentionDays": 7,
            "geoRedundantBackup": "Disabled",
        },
        "sslEnforcement": "Enabled",
        "tags": {"env": "test"},
    }
    data.update(overrides)
    return data


@pytest.fixture
def spec_data() -> dict[str, Any]:
    return server_spec_data()


@pytest.fixture
def server_spec(spec_data: dict[str, Any]) -> ServerSpec:
    return ServerSpec.model_validate(spec_data)


@pytest.fixture
def mock_client() -> MockMySQLClient:
    return MockMySQLClient(subscription_id=SUBSCRIPTION_ID)


@pytest.fixture
def fast_waiter() -> OperationWaiter:
    """Waiter that does not sleep between polls."""
    return OperationWaiter(poll_interval_seconds=0)


@pytest.fixture
def restore_logging() -> Iterator[None]:
    """Undo setup_logging, which replaces the root handlers."""
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)
