"""Construction of the shared Azure MySQL management client.

The client is built once per process and passed to each reconciler.
"""

from __future__ import annotations

import logging

from azure.mgmt.rdbms.mysql import MySQLManagementClient

from .config import Config
from .security import get_managed_identity_credential

logger = logging.getLogger(__name__)


def create_mysql_client(config: Config) -> MySQLManagementClient:
    """Create a MySQL management client authenticated with managed identity.

    Raises:
        SecretlessViolationError: If credential secrets are in the environment.
    """
    credential = get_managed_identity_credential(config.client_id)
    logger.debug(
        "Creating MySQL management client",
        extra={"subscription_id": config.subscription_id},
    )
    return MySQLManagementClient(
        credential=credential,
        subscription_id=config.subscription_id,
    )
