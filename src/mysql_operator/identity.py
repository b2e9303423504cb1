"""ARM resource ID handling for MySQL servers.

Azure resource IDs are a sequence of ``key/value`` path segments:

    /subscriptions/{sub}/resourceGroups/{rg}/providers/{namespace}/servers/{name}

The ID is the only key correlating local state with the remote server, so it
must round-trip through parse and reconstruction without loss.
"""

from __future__ import annotations

from dataclasses import dataclass

from .errors import InvalidIdentityError

MYSQL_PROVIDER_NAMESPACE = "Microsoft.DBforMySQL"
SERVERS_SEGMENT = "servers"


@dataclass(frozen=True)
class ServerIdentity:
    """Structural components of a MySQL server resource ID."""

    subscription_id: str
    resource_group: str
    name: str
    provider: str = MYSQL_PROVIDER_NAMESPACE

    @classmethod
    def parse(cls, resource_id: str) -> ServerIdentity:
        """Parse a resource ID into its components.

        Raises:
            InvalidIdentityError: If the ID is not a well-formed server ID.
        """
        if not resource_id or not resource_id.startswith("/"):
            raise InvalidIdentityError(resource_id, "must be an absolute path")

        components = resource_id.strip("/").split("/")
        if len(components) % 2 != 0:
            raise InvalidIdentityError(resource_id, "number of path segments is not divisible by 2")

        subscription_id = ""
        resource_group = ""
        provider = ""
        path: dict[str, str] = {}

        for key, value in zip(components[0::2], components[1::2]):
            if not key or not value:
                raise InvalidIdentityError(resource_id, "contains an empty path segment")
            # Segment keys are case-insensitive in ARM
            lowered = key.lower()
            if lowered == "subscriptions" and not subscription_id:
                subscription_id = value
            elif lowered == "resourcegroups" and not resource_group:
                resource_group = value
            elif lowered == "providers" and not provider:
                provider = value
            else:
                path[key] = value

        if not subscription_id:
            raise InvalidIdentityError(resource_id, "no subscription ID found")
        if not resource_group:
            raise InvalidIdentityError(resource_id, "no resource group name found")
        if not provider:
            raise InvalidIdentityError(resource_id, "no provider namespace found")

        name = path.pop(SERVERS_SEGMENT, None)
        if name is None:
            raise InvalidIdentityError(resource_id, f"missing the '{SERVERS_SEGMENT}' segment")
        if path:
            raise InvalidIdentityError(
                resource_id, f"unexpected segments: {', '.join(sorted(path))}"
            )

        return cls(
            subscription_id=subscription_id,
            resource_group=resource_group,
            name=name,
            provider=provider,
        )

    @property
    def resource_id(self) -> str:
        """Reconstruct the full ARM resource ID."""
        return (
            f"/subscriptions/{self.subscription_id}"
            f"/resourceGroups/{self.resource_group}"
            f"/providers/{self.provider}"
            f"/{SERVERS_SEGMENT}/{self.name}"
        )

    def __str__(self) -> str:
        return self.resource_id
