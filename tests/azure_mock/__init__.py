"""Azure MySQL API mock for testing.

Provides an in-memory implementation of the parts of the Azure Database for
MySQL management API the operator uses, so lifecycle tests run without
Azure connectivity.

Key Features:
- In-memory server store with case-insensitive resource groups
- Long-running operation simulation (pending polls, then terminal status)
- Failure injection per operation (create, update, delete) and for reads
- Call recording for ordering assertions
- Managed Identity simulation

Usage:
    from azure_mock import MockMySQLClient

    client = MockMySQLClient()
    reconciler = ServerReconciler(client, waiter=OperationWaiter(0))
    state = await reconciler.create(ServerState(), spec)

    assert client.call_names == ["begin_create", "get"]
"""

from .context import MockAzureContext
from .credential import MockManagedIdentityCredential, create_mock_credential
from .servers import MockLROPoller, MockMySQLClient, MockMySQLState, MockServer

__all__ = [
    "MockAzureContext",
    "MockLROPoller",
    "MockManagedIdentityCredential",
    "MockMySQLClient",
    "MockMySQLState",
    "MockServer",
    "create_mock_credential",
]
