# ============================================================================
# BUS ERRORS
# ============================================================================
# STATUS: Core - Error taxonomy
# PURPOSE: Exceptions raised by provisioning, send and receive operations
# CREATED: 19 OCT 2026
# ============================================================================
"""
Bus Errors

Every exception raised by busbridge derives from BusError.

Propagation:
    - ConfigurationError / ArgumentError: fail fast, never retried
    - TransientTransportError: retried by the transport, surfaces as TransportError
    - ProvisioningError: aborts construction of the dependent Sender/Receiver
    - ProcessingError / SerializationError on receive: reported to on_error only
"""

from typing import Optional


class BusError(Exception):
    """Base exception for all bus operations."""
    pass


class ConfigurationError(BusError):
    """Required identifying argument missing or invalid."""

    def __init__(self, message: str, field: Optional[str] = None):
        self.field = field
        super().__init__(message)


class ArgumentError(BusError, ValueError):
    """Invalid call argument (e.g. empty batch)."""

    def __init__(self, message: str, argument: Optional[str] = None):
        self.argument = argument
        super().__init__(message)


class SerializationError(BusError):
    """Payload could not be encoded to or decoded from JSON."""
    pass


class ProvisioningError(BusError):
    """Entity existence check or creation failed."""

    def __init__(self, message: str, entity: Optional[str] = None):
        self.entity = entity
        super().__init__(message)


class EntityAlreadyExistsError(BusError):
    """Create was rejected because the entity already exists."""

    def __init__(self, entity: str):
        self.entity = entity
        super().__init__(f"Entity already exists: {entity}")


class TransportError(BusError):
    """Network or broker fault that the caller must handle."""
    pass


class TransientTransportError(TransportError):
    """Retryable fault (timeout, throttling, dropped link)."""
    pass


class ProcessingError(BusError):
    """Subscriber callback raised while handling a message."""

    def __init__(self, message: str, lock_token: Optional[str] = None, delivery_count: int = 0):
        self.lock_token = lock_token
        self.delivery_count = delivery_count
        super().__init__(message)


class HandleClosedError(BusError):
    """Operation attempted on a Sender/Receiver whose handle was released."""
    pass


class ReceiverStateError(BusError):
    """Receiver pump started twice or restarted after stopping."""
    pass


__all__ = [
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
]
