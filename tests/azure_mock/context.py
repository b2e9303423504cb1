"""Context manager that swaps the Azure SDK for in-memory mocks.

Patches the credential and the MySQL management client where the operator
looks them up, so the CLI and the operator entry point run end to end
without Azure connectivity.
"""

from __future__ import annotations

from typing import Any
from unittest import mock

from .credential import MockManagedIdentityCredential, create_mock_credential
from .servers import MockMySQLClient, MockMySQLState


class MockAzureContext:
    """Patches Azure SDK entry points for the duration of a ``with`` block.

    Patches:
    - mysql_operator.security.ManagedIdentityCredential -> MockManagedIdentityCredential
    - mysql_operator.client.MySQLManagementClient -> MockMySQLClient

    All clients created inside the block share one MockMySQLState.

    Usage:
        with MockAzureContext() as ctx:
            ctx.state.add_server("rg1", "db1")
            result = runner.invoke(cli, ["refresh"])
            assert ctx.clients[0].call_names == ["get"]
    """

    def __init__(
        self,
        *,
        subscription_id: str = "00000000-0000-0000-0000-000000000001",
        client_id: str | None = None,
        pending_polls: int = 0,
        fail_operations: set[str] | None = None,
        get_error: Exception | None = None,
    ) -> None:
        """Initialize mock context.

        Args:
            subscription_id: Subscription of the shared server state.
            client_id: User-assigned identity client ID to simulate.
            pending_polls: Polls each long-running operation stays in progress.
            fail_operations: Operations whose pollers end in failure.
            get_error: Exception raised by every servers.get call.
        """
        self._subscription_id = subscription_id
        self._client_id = client_id
        self._pending_polls = pending_polls
        self._fail_operations = set(fail_operations or ())
        self._get_error = get_error

        self._state: MockMySQLState | None = None
        self._credential: MockManagedIdentityCredential | None = None
        self.clients: list[MockMySQLClient] = []
        self._patches: list[Any] = []

    @property
    def state(self) -> MockMySQLState:
        """Get the shared server state.

        Raises:
            RuntimeError: If accessed outside of context.
        """
        if self._state is None:
            raise RuntimeError("MockAzureContext must be used as a context manager")
        return self._state

    @property
    def credential(self) -> MockManagedIdentityCredential:
        """Get the mock credential.

        Raises:
            RuntimeError: If accessed outside of context.
        """
        if self._credential is None:
            raise RuntimeError("MockAzureContext must be used as a context manager")
        return self._credential

    def __enter__(self) -> MockAzureContext:
        self._state = MockMySQLState(self._subscription_id)
        self._credential = create_mock_credential(client_id=self._client_id)
        self.clients = []

        def create_client(credential: Any, subscription_id: str) -> MockMySQLClient:
            client = MockMySQLClient(
                self.state,
                subscription_id,
                pending_polls=self._pending_polls,
                fail_operations=self._fail_operations,
                get_error=self._get_error,
            )
            self.clients.append(client)
            return client

        self._patches = [
            mock.patch(
                "mysql_operator.security.ManagedIdentityCredential",
                return_value=self._credential,
            ),
            mock.patch(
                "mysql_operator.client.MySQLManagementClient",
                side_effect=create_client,
            ),
        ]
        for patch in self._patches:
            patch.start()
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        for patch in reversed(self._patches):
            patch.stop()
        self._patches.clear()

