# ============================================================================
# INFRASTRUCTURE MODULE
# ============================================================================
# STATUS: Infrastructure - Broker transports and credential handling
# PURPOSE: Everything that talks to (or stands in for) the broker
# CREATED: 19 OCT 2026
# ============================================================================
"""
Infrastructure module for busbridge.

Provides:
- resolve_credential: Normalize credential variants for the Azure SDK
- run_with_retry: Apply a RetryPolicy to transient transport faults
- AzureTransportProvider: Azure Service Bus transport and administration
- InMemoryBroker: In-process transport for tests and local runs
"""

from busbridge.infrastructure.credentials import (
    ResolvedCredential,
    normalize_namespace,
    resolve_credential,
    validate_credential,
)
from busbridge.infrastructure.retry import run_with_retry
from busbridge.infrastructure.transport import (
    AdministrationClient,
    TransportHandle,
    TransportProvider,
)
from busbridge.infrastructure.azure_bus import (
    AzureAdministrationClient,
    AzureTransportHandle,
    AzureTransportProvider,
)
from busbridge.infrastructure.memory_bus import (
    InMemoryAdministrationClient,
    InMemoryBroker,
    InMemoryTransportHandle,
    ManualClock,
    SystemClock,
)

__all__ = [
    # Credentials
    "ResolvedCredential",
    "normalize_namespace",
    "resolve_credential",
    "validate_credential",
    # Retry
    "run_with_retry",
    # Protocols
    "AdministrationClient",
    "TransportHandle",
    "TransportProvider",
    # Azure
    "AzureAdministrationClient",
    "AzureTransportHandle",
    "AzureTransportProvider",
    # In-memory
    "InMemoryAdministrationClient",
    "InMemoryBroker",
    "InMemoryTransportHandle",
    "ManualClock",
    "SystemClock",
]
