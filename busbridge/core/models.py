# ============================================================================
# BUS MODELS
# ============================================================================
# STATUS: Core - Entity, credential, config and envelope models
# PURPOSE: Immutable inputs to the factory and the wire envelope
# CREATED: 19 OCT 2026
# ============================================================================
"""
Bus Models

Programmatic configuration and data carried between the factory, the
Sender/Receiver wrappers and the transport.

Dataclasses are used for identity values (entities, credentials, envelopes);
pydantic models for tunable configuration so limits are validated on
construction.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, Optional, Union

from pydantic import BaseModel, Field, model_validator

JSON_CONTENT_TYPE = "application/json"


# ============================================================================
# ENUMS
# ============================================================================

class EntityKind(str, Enum):
    """Kind of broker-side addressable entity."""
    QUEUE = "queue"
    TOPIC = "topic"


class AckMode(str, Enum):
    """
    How received messages are settled.

    LOCK_AND_COMPLETE: message locked on receive, completed after delivery
    RECEIVE_AND_DELETE: message removed from the entity on receive
    """
    LOCK_AND_COMPLETE = "lock_and_complete"
    RECEIVE_AND_DELETE = "receive_and_delete"


class RetryMode(str, Enum):
    """Backoff shape applied to transient transport faults."""
    FIXED = "fixed"
    EXPONENTIAL = "exponential"


class TransportType(str, Enum):
    """
    Wire protocol for the messaging connection.

    AMQP_TCP: AMQP over TCP port 5671
    AMQP_WEBSOCKETS: AMQP over WebSockets on port 443 (for restrictive firewalls/proxies)
    """
    AMQP_TCP = "amqp_tcp"
    AMQP_WEBSOCKETS = "amqp_websockets"


# ============================================================================
# ENTITY REFERENCE
# ============================================================================

@dataclass(frozen=True)
class EntityReference:
    """
    Identifies a queue, a topic, or a topic subscription.

    subscription_name is required when receiving from a topic and must be
    absent for queues. The factory enforces this.
    """
    kind: EntityKind
    name: str
    subscription_name: Optional[str] = None

    @classmethod
    def queue(cls, name: str) -> "EntityReference":
        return cls(kind=EntityKind.QUEUE, name=name)

    @classmethod
    def topic(cls, name: str, subscription_name: Optional[str] = None) -> "EntityReference":
        return cls(kind=EntityKind.TOPIC, name=name, subscription_name=subscription_name)

    @property
    def is_topic(self) -> bool:
        return self.kind == EntityKind.TOPIC

    @property
    def path(self) -> str:
        """Display path, e.g. 'orders' or 'orders/subscriptions/billing'."""
        if self.subscription_name:
            return f"{self.name}/subscriptions/{self.subscription_name}"
        return self.name


# ============================================================================
# CREDENTIAL VARIANTS
# ============================================================================
# Closed union: resolve_credential() matches every member exhaustively.

@dataclass(frozen=True)
class ConnectionSecret:
    """Full connection string including endpoint and shared access key."""
    connection_string: str = field(repr=False)


@dataclass(frozen=True)
class NamespaceSharedKey:
    """Namespace plus shared access key name and value."""
    namespace: str
    key_name: str
    key: str = field(repr=False)


@dataclass(frozen=True)
class NamespaceToken:
    """Namespace plus an async token credential (e.g. DefaultAzureCredential)."""
    namespace: str
    token_provider: Any


@dataclass(frozen=True)
class NamespaceSas:
    """Namespace plus a pre-issued shared access signature."""
    namespace: str
    sas_token: str = field(repr=False)


CredentialVariant = Union[ConnectionSecret, NamespaceSharedKey, NamespaceToken, NamespaceSas]


# ============================================================================
# CONFIGURATION
# ============================================================================

class ProvisioningPolicy(BaseModel):
    """Whether the caller may create missing entities (needs Manage rights)."""
    can_create: bool = False


class RetryPolicy(BaseModel):
    """
    Backoff parameters for transient transport faults.

    Interpreted by the transport, never by the Sender/Receiver directly.
    max_retries counts retries after the first attempt.
    """
    mode: RetryMode = RetryMode.EXPONENTIAL
    initial_delay_seconds: float = Field(default=0.8, ge=0)
    max_delay_seconds: float = Field(default=60.0, ge=0)
    max_retries: int = Field(default=3, ge=0)

    @model_validator(mode="after")
    def check_delay_bounds(self) -> "RetryPolicy":
        if self.max_delay_seconds < self.initial_delay_seconds:
            raise ValueError("max_delay_seconds must be >= initial_delay_seconds")
        return self

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait before retry number `attempt` (0-based)."""
        if self.mode == RetryMode.FIXED:
            return self.initial_delay_seconds
        return min(self.initial_delay_seconds * (2 ** attempt), self.max_delay_seconds)

    def to_client_kwargs(self) -> Dict[str, Any]:
        """Retry options understood by azure.servicebus ServiceBusClient."""
        return {
            "retry_total": self.max_retries,
            "retry_backoff_factor": self.initial_delay_seconds,
            "retry_backoff_max": self.max_delay_seconds,
            "retry_mode": self.mode.value,
        }


class SenderConfig(BaseModel):
    """Options for a bound Sender."""
    provisioning: ProvisioningPolicy = Field(default_factory=ProvisioningPolicy)
    retry: RetryPolicy = Field(default_factory=lambda: RetryPolicy(max_retries=10))
    transport_type: TransportType = TransportType.AMQP_TCP


class ReceiverConfig(BaseModel):
    """Options for a bound Receiver pump."""
    max_concurrent_calls: int = Field(default=10, ge=1)
    ack_mode: AckMode = AckMode.LOCK_AND_COMPLETE
    provisioning: ProvisioningPolicy = Field(default_factory=ProvisioningPolicy)
    retry: RetryPolicy = Field(default_factory=RetryPolicy)
    transport_type: TransportType = TransportType.AMQP_TCP
    # Upper bound on a single pull; also bounds how long cancellation waits
    max_wait_time_seconds: float = Field(default=5.0, gt=0)
    # Pause after a failed pull before the worker pulls again
    error_backoff_seconds: float = Field(default=1.0, ge=0)


# ============================================================================
# ENVELOPES
# ============================================================================

@dataclass(frozen=True)
class Envelope:
    """Wire-level message: serialized payload plus scheduling/expiry metadata."""
    payload: bytes
    content_type: str = JSON_CONTENT_TYPE
    scheduled_enqueue_time_utc: Optional[datetime] = None
    time_to_live: Optional[timedelta] = None
    message_id: Optional[str] = None
    application_properties: Dict[str, Any] = field(default_factory=dict)


@dataclass
class InFlightMessage:
    """
    A pulled message owned by one pump worker until it is settled.

    raw is the transport-private delivery object needed to settle it.
    """
    envelope: Envelope
    lock_token: Optional[str]
    delivery_count: int = 1
    raw: Any = field(default=None, repr=False)


__all__ = [
    "JSON_CONTENT_TYPE",
    "EntityKind",
    "AckMode",
    "RetryMode",
    "TransportType",
    "EntityReference",
    "ConnectionSecret",
    "NamespaceSharedKey",
    "NamespaceToken",
    "NamespaceSas",
    "CredentialVariant",
    "ProvisioningPolicy",
    "RetryPolicy",
    "SenderConfig",
    "ReceiverConfig",
    "Envelope",
    "InFlightMessage",
]
