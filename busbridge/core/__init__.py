# ============================================================================
# CORE MODULE
# ============================================================================
# STATUS: Core module initialization
# PURPOSE: Export errors, models, codec and configuration
# CREATED: 19 OCT 2026
# ============================================================================

from busbridge.core.errors import (
    BusError,
    ConfigurationError,
    ArgumentError,
    SerializationError,
    ProvisioningError,
    EntityAlreadyExistsError,
    TransportError,
    TransientTransportError,
    ProcessingError,
    HandleClosedError,
    ReceiverStateError,
)
from busbridge.core.models import (
    AckMode,
    ConnectionSecret,
    CredentialVariant,
    EntityKind,
    EntityReference,
    Envelope,
    InFlightMessage,
    NamespaceSas,
    NamespaceSharedKey,
    NamespaceToken,
    ProvisioningPolicy,
    ReceiverConfig,
    RetryMode,
    RetryPolicy,
    TransportType,
    SenderConfig,
)
from busbridge.core.serialization import JsonCodec
from busbridge.core.config import BusSettings

__all__ = [
    # Errors
    "BusError",
    "ConfigurationError",
    "ArgumentError",
    "SerializationError",
    "ProvisioningError",
    "EntityAlreadyExistsError",
    "TransportError",
    "TransientTransportError",
    "ProcessingError",
    "HandleClosedError",
    "ReceiverStateError",
    # Models
    "AckMode",
    "ConnectionSecret",
    "CredentialVariant",
    "EntityKind",
    "EntityReference",
    "Envelope",
    "InFlightMessage",
    "NamespaceSas",
    "NamespaceSharedKey",
    "NamespaceToken",
    "ProvisioningPolicy",
    "ReceiverConfig",
    "RetryMode",
    "TransportType",
    "RetryPolicy",
    "SenderConfig",
    # Codec
    "JsonCodec",
    # Config
    "BusSettings",
]
