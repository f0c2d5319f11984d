# ============================================================================
# BUS CONFIGURATION
# ============================================================================
# STATUS: Core - Environment configuration
# PURPOSE: Build credential variants and sender/receiver configs from env
# CREATED: 19 OCT 2026
# ============================================================================
"""
Bus Configuration

Optional convenience for services that configure the bus from environment
variables. The factory itself only takes programmatic values.

Authentication (first match wins):
    SERVICEBUS_CONNECTION_STRING: Full connection string
    SERVICEBUS_NAMESPACE + SERVICEBUS_KEY_NAME + SERVICEBUS_KEY: Shared key
    SERVICEBUS_NAMESPACE + SERVICEBUS_SAS_TOKEN: Shared access signature
    SERVICEBUS_NAMESPACE + USE_MANAGED_IDENTITY=true: Token credential
        AZURE_CLIENT_ID: Optional user-assigned managed identity client ID

Behaviour:
    SERVICEBUS_CAN_CREATE: "true" to create missing queues/topics/subscriptions
    SERVICEBUS_MAX_CONCURRENT_CALLS: Receiver concurrency (default 10)
    SERVICEBUS_RECEIVE_MODE: lock_and_complete | receive_and_delete
    SERVICEBUS_TRANSPORT_TYPE: amqp_tcp | amqp_websockets (default amqp_tcp)
    SERVICEBUS_RETRY_MODE: exponential | fixed
    SERVICEBUS_RETRY_DELAY: Initial delay seconds (default 0.8)
    SERVICEBUS_RETRY_MAX_DELAY: Max delay seconds (default 60)
    SERVICEBUS_RETRY_COUNT: Max retries (receiver default 3, sender default 10)
"""

import os
from dataclasses import dataclass
from typing import Optional

from busbridge.core.errors import ConfigurationError
from busbridge.core.models import (
    AckMode,
    ConnectionSecret,
    CredentialVariant,
    NamespaceSas,
    NamespaceSharedKey,
    NamespaceToken,
    ProvisioningPolicy,
    ReceiverConfig,
    RetryMode,
    RetryPolicy,
    SenderConfig,
    TransportType,
)


def _env_bool(name: str) -> bool:
    return os.environ.get(name, "").lower() in ("1", "true", "yes")


@dataclass
class BusSettings:
    """Service Bus settings loaded from environment."""

    connection_string: Optional[str] = None
    namespace: Optional[str] = None
    key_name: Optional[str] = None
    key: Optional[str] = None
    sas_token: Optional[str] = None
    use_managed_identity: bool = False
    managed_identity_client_id: Optional[str] = None

    can_create: bool = False
    max_concurrent_calls: int = 10
    receive_mode: AckMode = AckMode.LOCK_AND_COMPLETE
    transport_type: TransportType = TransportType.AMQP_TCP

    retry_mode: RetryMode = RetryMode.EXPONENTIAL
    retry_delay_seconds: float = 0.8
    retry_max_delay_seconds: float = 60.0
    retry_count: Optional[int] = None

    @classmethod
    def from_env(cls) -> "BusSettings":
        """Load settings from environment variables."""
        try:
            retry_count = os.environ.get("SERVICEBUS_RETRY_COUNT")
            return cls(
                connection_string=os.environ.get("SERVICEBUS_CONNECTION_STRING") or None,
                namespace=os.environ.get("SERVICEBUS_NAMESPACE") or None,
                key_name=os.environ.get("SERVICEBUS_KEY_NAME") or None,
                key=os.environ.get("SERVICEBUS_KEY") or None,
                sas_token=os.environ.get("SERVICEBUS_SAS_TOKEN") or None,
                use_managed_identity=_env_bool("USE_MANAGED_IDENTITY"),
                managed_identity_client_id=os.environ.get("AZURE_CLIENT_ID") or None,
                can_create=_env_bool("SERVICEBUS_CAN_CREATE"),
                max_concurrent_calls=int(os.environ.get("SERVICEBUS_MAX_CONCURRENT_CALLS", "10")),
                receive_mode=AckMode(
                    os.environ.get("SERVICEBUS_RECEIVE_MODE", AckMode.LOCK_AND_COMPLETE.value).lower()
                ),
                transport_type=TransportType(
                    os.environ.get("SERVICEBUS_TRANSPORT_TYPE", TransportType.AMQP_TCP.value).lower()
                ),
                retry_mode=RetryMode(
                    os.environ.get("SERVICEBUS_RETRY_MODE", RetryMode.EXPONENTIAL.value).lower()
                ),
                retry_delay_seconds=float(os.environ.get("SERVICEBUS_RETRY_DELAY", "0.8")),
                retry_max_delay_seconds=float(os.environ.get("SERVICEBUS_RETRY_MAX_DELAY", "60")),
                retry_count=int(retry_count) if retry_count else None,
            )
        except ValueError as e:
            raise ConfigurationError(f"Invalid Service Bus environment setting: {e}") from e

    def credential(self) -> CredentialVariant:
        """Select the credential variant implied by the populated settings."""
        if self.connection_string:
            return ConnectionSecret(self.connection_string)

        if not self.namespace:
            raise ConfigurationError(
                "SERVICEBUS_CONNECTION_STRING or SERVICEBUS_NAMESPACE must be set",
                field="namespace",
            )

        if self.key_name and self.key:
            return NamespaceSharedKey(self.namespace, self.key_name, self.key)

        if self.sas_token:
            return NamespaceSas(self.namespace, self.sas_token)

        if self.use_managed_identity:
            if self.managed_identity_client_id:
                from azure.identity.aio import ManagedIdentityCredential

                provider = ManagedIdentityCredential(client_id=self.managed_identity_client_id)
            else:
                from azure.identity.aio import DefaultAzureCredential

                provider = DefaultAzureCredential()
            return NamespaceToken(self.namespace, provider)

        raise ConfigurationError(
            "SERVICEBUS_NAMESPACE requires SERVICEBUS_KEY_NAME/SERVICEBUS_KEY, "
            "SERVICEBUS_SAS_TOKEN, or USE_MANAGED_IDENTITY=true",
            field="credential",
        )

    def _retry(self, default_count: int) -> RetryPolicy:
        return RetryPolicy(
            mode=self.retry_mode,
            initial_delay_seconds=self.retry_delay_seconds,
            max_delay_seconds=self.retry_max_delay_seconds,
            max_retries=self.retry_count if self.retry_count is not None else default_count,
        )

    def sender_config(self) -> SenderConfig:
        return SenderConfig(
            provisioning=ProvisioningPolicy(can_create=self.can_create),
            retry=self._retry(default_count=10),
            transport_type=self.transport_type,
        )

    def receiver_config(self) -> ReceiverConfig:
        return ReceiverConfig(
            max_concurrent_calls=self.max_concurrent_calls,
            ack_mode=self.receive_mode,
            provisioning=ProvisioningPolicy(can_create=self.can_create),
            retry=self._retry(default_count=3),
            transport_type=self.transport_type,
        )


__all__ = ["BusSettings"]
