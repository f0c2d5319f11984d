# ============================================================================
# BUSBRIDGE
# ============================================================================
# STATUS: Package root
# PURPOSE: Public API re-exports
# CREATED: 19 OCT 2026
# ============================================================================
"""
busbridge

Uniform JSON send/receive over Azure Service Bus queues and topic
subscriptions, independent of the credential form in use.

Usage:
    from busbridge import ConnectionSecret, EntityReference, get_factory

    factory = get_factory()
    receiver = await factory.create_receiver(
        ConnectionSecret(conn_str),
        EntityReference.topic("orders", "billing"),
        data_type=OrderPlaced,
    )
    subscription = receiver.subscribe(handle_order, on_error=report)
"""

from busbridge.__version__ import __version__
from busbridge.core import (
    AckMode,
    ArgumentError,
    BusError,
    BusSettings,
    ConfigurationError,
    ConnectionSecret,
    CredentialVariant,
    EntityKind,
    EntityReference,
    Envelope,
    NamespaceSas,
    NamespaceSharedKey,
    NamespaceToken,
    ProcessingError,
    ProvisioningError,
    ProvisioningPolicy,
    ReceiverConfig,
    RetryMode,
    RetryPolicy,
    SenderConfig,
    SerializationError,
    TransportError,
    TransportType,
)
from busbridge.messaging import (
    Receiver,
    ReceiverState,
    Sender,
    ServiceBusFactory,
    Subscription,
    get_factory,
)

__all__ = [
    "__version__",
    # Models
    "AckMode",
    "ConnectionSecret",
    "CredentialVariant",
    "EntityKind",
    "EntityReference",
    "Envelope",
    "NamespaceSas",
    "NamespaceSharedKey",
    "NamespaceToken",
    "ProvisioningPolicy",
    "ReceiverConfig",
    "RetryMode",
    "RetryPolicy",
    "SenderConfig",
    "TransportType",
    "BusSettings",
    # Errors
    "BusError",
    "ArgumentError",
    "ConfigurationError",
    "ProcessingError",
    "ProvisioningError",
    "SerializationError",
    "TransportError",
    # Messaging
    "Receiver",
    "ReceiverState",
    "Sender",
    "ServiceBusFactory",
    "Subscription",
    "get_factory",
]
