"""Exception types raised by the MySQL server operator.

Transport and authentication failures are not wrapped: they surface as the
Azure SDK's own ``azure.core.exceptions.AzureError`` subclasses so that retry
policy stays with the SDK pipeline.

None of these messages may contain the administrator password.
"""

from __future__ import annotations


class OperatorError(Exception):
    """Base class for operator errors."""

    pass


class MalformedInputError(OperatorError):
    """Raised when the desired state has an unusable shape.

    Not retried: the user must fix the configuration.
    """

    pass


class InvalidIdentityError(OperatorError):
    """Raised when a resource ID cannot be parsed as a MySQL server ID."""

    def __init__(self, resource_id: str, reason: str) -> None:
        self.resource_id = resource_id
        self.reason = reason
        super().__init__(f"Invalid MySQL server ID {resource_id!r}: {reason}")


class IncompleteRemoteDataError(OperatorError):
    """Raised when Azure returns a record missing a field it always populates.

    This indicates an API contract break and is treated as fatal.
    """

    pass


class OperationFailedError(OperatorError):
    """Raised when a long-running operation reaches a terminal failure."""

    def __init__(self, operation: str, detail: str) -> None:
        self.operation = operation
        self.detail = detail
        super().__init__(f"{operation} failed: {detail}")


class OperationCancelledError(OperatorError):
    """Raised when the caller's cancellation event fires during a call or wait."""

    def __init__(self, operation: str) -> None:
        self.operation = operation
        super().__init__(f"{operation} cancelled")


class ImmutableFieldChangeError(OperatorError):
    """Raised when an in-place update would change a field that forces recreation."""

    def __init__(self, fields: list[str]) -> None:
        self.fields = list(fields)
        super().__init__(
            "Immutable fields changed, the server must be replaced: " + ", ".join(self.fields)
        )


class StateConflictError(OperatorError):
    """Raised when an operation's precondition on the local state does not hold."""

    pass


class ServerAlreadyExistsError(OperatorError):
    """Raised when Create finds a server that is not tracked locally."""

    def __init__(self, resource_id: str) -> None:
        self.resource_id = resource_id
        super().__init__(
            f"A MySQL server with ID {resource_id!r} already exists. "
            "To be managed by this operator it needs to be imported."
        )


class ServerNotFoundError(OperatorError):
    """Raised when an import target does not exist."""

    def __init__(self, resource_id: str) -> None:
        self.resource_id = resource_id
        super().__init__(f"MySQL server {resource_id!r} was not found")
