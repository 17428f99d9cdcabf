"""Secretless credential policy.

The controller authenticates to Azure Resource Manager with a managed
identity only. Service principal secrets, certificates and passwords are
refused at start-up instead of being silently picked up by a credential
chain.

SECURITY INVARIANTS:
1. No credential secret may be present in the environment.
2. ManagedIdentityCredential is the only credential type handed out.
"""

from __future__ import annotations

import logging
import os

from azure.identity import ManagedIdentityCredential

logger = logging.getLogger(__name__)

# Environment variables that carry credential material
FORBIDDEN_CREDENTIAL_ENV_VARS: tuple[str, ...] = (
    "AZURE_CLIENT_SECRET",
    "AZURE_CLIENT_CERTIFICATE_PATH",
    "AZURE_CLIENT_CERTIFICATE_PASSWORD",
    "AZURE_USERNAME",
    "AZURE_PASSWORD",
)

SECRETLESS_VIOLATION_MESSAGE = (
    "Credential environment variable {env_var} is set. This controller only "
    "authenticates with a managed identity: remove the variable, assign a "
    "managed identity to the workload and grant it RBAC on the target "
    "resource group."
)


class SecretlessViolationError(Exception):
    """Raised when credential material is found in the environment.

    Fatal: the controller must not start.
    """

    pass


def enforce_secretless_architecture() -> None:
    """Refuse to continue when any credential variable is set.

    Raises:
        SecretlessViolationError: On the first forbidden variable found.
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
            raise SecretlessViolationError(SECRETLESS_VIOLATION_MESSAGE.format(env_var=env_var))

    logger.debug(
        "Secretless architecture verified",
        extra={"security_event": "secretless_verified", "credential_type": "ManagedIdentity"},
    )


def get_managed_identity_credential(client_id: str | None = None) -> ManagedIdentityCredential:
    """Return a managed identity credential after the secretless check.

    Args:
        client_id: Client ID of a user-assigned identity. None selects the
            system-assigned identity.

    Raises:
        SecretlessViolationError: If credential variables are present.
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
