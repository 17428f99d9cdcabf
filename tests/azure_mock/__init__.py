"""Azure API Mock for Integration Testing.

Two layers of fakes:
- An in-memory ARM generic-resources client (MockAzureContext) for the
  Azure provider, controller and CLI tests.
- MockCloud, an in-memory ResourceApi and SchemaRegistry for driving the
  state machines directly.

Usage:
    with MockAzureContext() as ctx:
        controller = ResourceController(config, store=InMemoryKeyValueStore())
        await controller.sync_once(spec)
        assert ctx.state.resource_count == 1
"""

from .cloud import MockCall, MockCloud, MockOperation
from .context import MockAzureContext
from .credential import MockManagedIdentityCredential
from .resources import MockResourceClient, MockResourceState, ProvisioningState

__all__ = [
    "MockAzureContext",
    "MockCall",
    "MockCloud",
    "MockManagedIdentityCredential",
    "MockOperation",
    "MockResourceClient",
    "MockResourceState",
    "ProvisioningState",
]
