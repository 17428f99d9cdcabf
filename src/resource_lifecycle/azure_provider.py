"""Azure Resource Manager implementation of the provider contracts.

Resources are addressed through ARM generic resources:

    /subscriptions/{sub}/resourceGroups/{rg}/providers/{typeName}/{name}

ASYNC OPERATIONS:
Mutations are submitted with ``polling=False`` so no SDK poller thread is
left running between steps. The operation token is an opaque, url-safe
base64 JSON envelope ``{operation, id, apiVersion}``; polling it reads the
resource's ``properties.provisioningState``.

SCHEMAS:
ARM does not publish per-property mutability, so AzureSchemaRegistry
returns the ARM envelope schema (server-assigned identity fields are
read-only, placement fields are create-only), merged with per-type
overrides loaded from YAML.

SECURITY: Credentials come from security.get_managed_identity_credential()
only. Every SDK call runs in the default executor with a timeout.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import json
import logging
from collections.abc import Callable, Mapping
from typing import Any

from azure.core.exceptions import (
    AzureError,
    DeserializationError,
    HttpResponseError,
    ResourceNotFoundError,
)
from azure.mgmt.resource import ResourceManagementClient
from azure.mgmt.resource.resources.models import GenericResource

from .config import Config
from .models import OperationKind, OperationStatus, ProgressEvent
from .patch import PatchOperation, apply_patch
from .provider import (
    PROPERTY_PATH_MARKER,
    MalformedStateError,
    ProviderError,
    ResourceApi,
    ResourceApiFactory,
    TypeSchema,
)
from .security import get_managed_identity_credential

logger = logging.getLogger(__name__)

# Timeout for a single ARM request
API_CALL_TIMEOUT_SECONDS = 60

# Top-level ARM envelope fields assigned by the service
ARM_READ_ONLY_PROPERTIES: tuple[str, ...] = ("id", "name", "type", "etag", "systemData")

# Top-level ARM envelope fields that cannot change after creation
ARM_CREATE_ONLY_PROPERTIES: tuple[str, ...] = ("location", "extendedLocation")

SUCCEEDED_STATES = frozenset({"succeeded"})
FAILED_STATES = frozenset({"failed", "canceled", "cancelled"})


def encode_operation_token(operation: OperationKind, resource_id: str, api_version: str) -> str:
    """Pack what is needed to poll an operation into an opaque token."""
    payload = json.dumps(
        {"operation": operation.value, "id": resource_id, "apiVersion": api_version},
        separators=(",", ":"),
    )
    return base64.urlsafe_b64encode(payload.encode("utf-8")).decode("ascii")


def decode_operation_token(token: str) -> tuple[OperationKind, str, str]:
    """Reverse encode_operation_token.

    Raises:
        ProviderError: If the token was not produced by this provider.
    """
    try:
        payload = json.loads(base64.urlsafe_b64decode(token.encode("ascii")))
        return OperationKind(payload["operation"]), payload["id"], payload["apiVersion"]
    except (binascii.Error, UnicodeError, ValueError, KeyError, TypeError) as e:
        raise ProviderError(f"Unrecognized operation token: {e}") from e


def split_type_name(type_name: str) -> tuple[str, str]:
    """Split "Microsoft.Storage/storageAccounts" into namespace and type path."""
    namespace, _, resource_type = type_name.partition("/")
    if not namespace or not resource_type:
        raise ProviderError(f"Invalid resource type name: {type_name}")
    return namespace, resource_type


async def call_sdk(operation: Callable[[], Any], operation_name: str) -> Any:
    """Run a blocking SDK call in the default executor with a timeout."""
    loop = asyncio.get_event_loop()
    try:
        return await asyncio.wait_for(
            loop.run_in_executor(None, operation),
            timeout=API_CALL_TIMEOUT_SECONDS,
        )
    except TimeoutError as e:
        logger.error(
            f"{operation_name} timed out",
            extra={"timeout_seconds": API_CALL_TIMEOUT_SECONDS},
        )
        raise ProviderError(f"{operation_name} timed out after {API_CALL_TIMEOUT_SECONDS}s") from e


class ProviderCatalog:
    """Resource provider metadata: registration and API versions.

    API versions are cached per type for the lifetime of the catalog.
    """

    def __init__(self, client: ResourceManagementClient) -> None:
        self._client = client
        self._api_versions: dict[str, str] = {}

    async def api_version(self, type_name: str) -> str:
        """Return the newest stable API version of a registered type.

        Raises:
            ProviderError: If the provider cannot be read or does not know
                the type.
        """
        cached = self._api_versions.get(type_name.lower())
        if cached is not None:
            return cached

        namespace, resource_type = split_type_name(type_name)
        try:
            provider = await call_sdk(
                lambda: self._client.providers.get(namespace),
                f"Provider lookup for {namespace}",
            )
        except AzureError as e:
            raise ProviderError(f"Failed to read resource provider {namespace}: {e}") from e

        versions: list[str] = []
        for entry in provider.resource_types or []:
            if (entry.resource_type or "").lower() == resource_type.lower():
                versions = list(entry.api_versions or [])
                break
        else:
            raise ProviderError(f"Resource type {type_name} is not offered by provider {namespace}")

        if not versions:
            raise ProviderError(f"No API versions published for {type_name}")

        # Providers list versions newest first
        stable = [v for v in versions if "preview" not in v.lower()]
        version = (stable or versions)[0]
        self._api_versions[type_name.lower()] = version

        logger.debug(
            "Resolved API version",
            extra={"type_name": type_name, "api_version": version},
        )
        return version


class AzureResourceApi:
    """ResourceApi over ARM generic resources in one resource group.

    ``region`` is used as the default ``location`` of created resources.
    """

    def __init__(
        self,
        config: Config,
        region: str,
        credential: Any | None = None,
        client: ResourceManagementClient | None = None,
        catalog: ProviderCatalog | None = None,
    ) -> None:
        self._config = config
        self._region = region
        if client is None:
            client = ResourceManagementClient(
                credential=credential
                or get_managed_identity_credential(config.managed_identity_client_id),
                subscription_id=config.subscription_id,
            )
        self._client = client
        self._catalog = catalog or ProviderCatalog(client)

    @property
    def region(self) -> str:
        return self._region

    def resource_id(self, type_name: str, name: str) -> str:
        """Build the ARM resource ID of a named resource in the configured group."""
        return (
            f"/subscriptions/{self._config.subscription_id}"
            f"/resourceGroups/{self._config.resource_group_name}"
            f"/providers/{type_name}/{name}"
        )

    async def create(self, type_name: str, state: dict[str, Any]) -> ProgressEvent:
        name = state.get("name")
        if not isinstance(name, str) or not name:
            raise ProviderError(f"Desired state of {type_name} must include a 'name'")

        resource_id = self.resource_id(type_name, name)
        api_version = await self._catalog.api_version(type_name)
        body = self._request_body(state)
        body.setdefault("location", self._region)

        return await self._submit(
            OperationKind.CREATE,
            resource_id,
            api_version,
            lambda: self._client.resources.begin_create_or_update_by_id(
                resource_id, api_version, GenericResource.from_dict(body), polling=False
            ),
        )

    async def update(
        self, type_name: str, identifier: str, patch: list[PatchOperation]
    ) -> ProgressEvent:
        api_version = await self._catalog.api_version(type_name)
        current = await self._read(identifier, api_version)

        # ARM generic resources only accept full PUTs
        body = self._request_body(apply_patch(current, patch))

        return await self._submit(
            OperationKind.UPDATE,
            identifier,
            api_version,
            lambda: self._client.resources.begin_create_or_update_by_id(
                identifier, api_version, GenericResource.from_dict(body), polling=False
            ),
        )

    async def delete(self, type_name: str, identifier: str) -> ProgressEvent:
        api_version = await self._catalog.api_version(type_name)
        return await self._submit(
            OperationKind.DELETE,
            identifier,
            api_version,
            lambda: self._client.resources.begin_delete_by_id(
                identifier, api_version, polling=False
            ),
        )

    async def get(self, type_name: str, identifier: str) -> dict[str, Any]:
        api_version = await self._catalog.api_version(type_name)
        return await self._read(identifier, api_version)

    async def poll_operation(self, token: str) -> ProgressEvent:
        operation, resource_id, api_version = decode_operation_token(token)

        try:
            resource = await call_sdk(
                lambda: self._client.resources.get_by_id(resource_id, api_version),
                f"Poll {operation.value.lower()}",
            )
        except ResourceNotFoundError:
            if operation == OperationKind.DELETE:
                return ProgressEvent(
                    status=OperationStatus.SUCCESS,
                    token=token,
                    identifier=resource_id,
                    operation=operation,
                )
            return ProgressEvent(
                status=OperationStatus.FAILED,
                token=token,
                identifier=resource_id,
                operation=operation,
                message="Resource not found",
            )
        except AzureError as e:
            raise ProviderError(f"Failed to poll {resource_id}: {e}") from e

        state = self._provisioning_state(resource)
        normalized = (state or "").lower()

        if normalized in FAILED_STATES:
            status = OperationStatus.FAILED
        elif operation == OperationKind.DELETE:
            # Deleted resources disappear; until then the delete is running
            status = OperationStatus.PENDING
        elif state is None or normalized in SUCCEEDED_STATES:
            status = OperationStatus.SUCCESS
        else:
            status = OperationStatus.PENDING

        return ProgressEvent(
            status=status,
            token=token,
            identifier=resource_id,
            operation=operation,
            message=f"Provisioning state: {state}" if status == OperationStatus.FAILED else None,
        )

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    async def _submit(
        self,
        operation: OperationKind,
        resource_id: str,
        api_version: str,
        begin: Callable[[], Any],
    ) -> ProgressEvent:
        """Submit a mutation without waiting for it to finish."""
        try:
            await call_sdk(begin, f"{operation.value.capitalize()} {resource_id}")
        except ResourceNotFoundError as e:
            if operation == OperationKind.DELETE:
                logger.info("Resource already deleted", extra={"resource_id": resource_id})
                return ProgressEvent(
                    status=OperationStatus.SUCCESS,
                    identifier=resource_id,
                    operation=operation,
                )
            return self._failed(operation, resource_id, e)
        except HttpResponseError as e:
            return self._failed(operation, resource_id, e)
        except AzureError as e:
            raise ProviderError(f"{operation.value.capitalize()} of {resource_id} failed: {e}") from e

        return ProgressEvent(
            status=OperationStatus.PENDING,
            token=encode_operation_token(operation, resource_id, api_version),
            identifier=resource_id,
            operation=operation,
        )

    @staticmethod
    def _failed(operation: OperationKind, resource_id: str, error: HttpResponseError) -> ProgressEvent:
        logger.error(
            "ARM rejected the request",
            extra={
                "operation": operation.value,
                "resource_id": resource_id,
                "status_code": error.status_code,
                "error": str(error),
            },
        )
        return ProgressEvent(
            status=OperationStatus.FAILED,
            identifier=resource_id,
            operation=operation,
            message=error.message or str(error),
        )

    async def _read(self, resource_id: str, api_version: str) -> dict[str, Any]:
        try:
            resource = await call_sdk(
                lambda: self._client.resources.get_by_id(resource_id, api_version),
                f"Get {resource_id}",
            )
        except AzureError as e:
            raise ProviderError(f"Failed to read {resource_id}: {e}") from e

        if resource is None:
            raise MalformedStateError(f"Empty response for {resource_id}")
        try:
            properties = resource.serialize(keep_readonly=True)
        except (DeserializationError, AttributeError, TypeError, ValueError) as e:
            raise MalformedStateError(f"Could not parse properties of {resource_id}: {e}") from e
        if not isinstance(properties, dict):
            raise MalformedStateError(f"Properties of {resource_id} are not an object")
        return properties

    @staticmethod
    def _request_body(state: Mapping[str, Any]) -> dict[str, Any]:
        return {k: v for k, v in state.items() if k not in ARM_READ_ONLY_PROPERTIES}

    @staticmethod
    def _provisioning_state(resource: Any) -> str | None:
        properties = getattr(resource, "properties", None)
        if isinstance(properties, Mapping):
            value = properties.get("provisioningState")
            return str(value) if value is not None else None
        return None


class AzureSchemaRegistry:
    """SchemaRegistry backed by ARM provider metadata and local overrides."""

    def __init__(
        self,
        catalog: ProviderCatalog,
        overrides: Mapping[str, Mapping[str, list[str]]] | None = None,
    ) -> None:
        self._catalog = catalog
        self._overrides = {k.lower(): v for k, v in (overrides or {}).items()}

    async def describe_type(self, type_name: str) -> TypeSchema:
        # Unregistered types raise ProviderError here
        await self._catalog.api_version(type_name)

        override = self._overrides.get(type_name.lower(), {})
        read_only = [PROPERTY_PATH_MARKER + p for p in ARM_READ_ONLY_PROPERTIES]
        create_only = [PROPERTY_PATH_MARKER + p for p in ARM_CREATE_ONLY_PROPERTIES]
        read_only += [p for p in override.get("readOnlyProperties", []) if p not in read_only]
        create_only += [p for p in override.get("createOnlyProperties", []) if p not in create_only]

        return TypeSchema(
            type_name=type_name,
            read_only_properties=read_only,
            create_only_properties=create_only,
        )


def azure_client_factory(
    config: Config,
    client: ResourceManagementClient | None = None,
) -> tuple[ResourceApiFactory, ProviderCatalog]:
    """Build a per-region ResourceApi factory sharing one ARM client.

    Returns:
        The factory and the provider catalog it uses, so a schema registry
        can share the API version cache.
    """
    if client is None:
        client = ResourceManagementClient(
            credential=get_managed_identity_credential(config.managed_identity_client_id),
            subscription_id=config.subscription_id,
        )
    catalog = ProviderCatalog(client)
    apis: dict[str, ResourceApi] = {}

    def client_for_region(region: str) -> ResourceApi:
        api = apis.get(region)
        if api is None:
            api = AzureResourceApi(config, region, client=client, catalog=catalog)
            apis[region] = api
        return api

    return client_for_region, catalog
