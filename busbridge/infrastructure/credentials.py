# ============================================================================
# CREDENTIAL RESOLUTION
# ============================================================================
# STATUS: Infrastructure - Credential variant resolver
# PURPOSE: Normalize the four supported identity forms for the Azure clients
# CREATED: 19 OCT 2026
# ============================================================================
"""
Credential Resolution

Each credential variant is validated synchronously and resolved into a
ResolvedCredential. Both ServiceBusClient and ServiceBusAdministrationClient
are built from the same resolved value:

    ConnectionSecret   -> from_connection_string(...)
    NamespaceSharedKey -> AzureNamedKeyCredential
    NamespaceToken     -> the caller's async token credential
    NamespaceSas       -> AzureSasCredential
"""

from dataclasses import dataclass, field
from typing import Any, Optional

from azure.core.credentials import AzureNamedKeyCredential, AzureSasCredential

from busbridge.core.errors import ConfigurationError
from busbridge.core.models import (
    ConnectionSecret,
    CredentialVariant,
    NamespaceSas,
    NamespaceSharedKey,
    NamespaceToken,
)

SERVICEBUS_DOMAIN = "servicebus.windows.net"


@dataclass(frozen=True)
class ResolvedCredential:
    """Exactly one of connection_string or (namespace, credential) is set."""
    fully_qualified_namespace: Optional[str] = None
    connection_string: Optional[str] = field(default=None, repr=False)
    credential: Any = field(default=None, repr=False)

    @property
    def use_connection_string(self) -> bool:
        return bool(self.connection_string)

    @property
    def display_name(self) -> str:
        return self.fully_qualified_namespace or "connection_string"


def normalize_namespace(namespace: str) -> str:
    """Expand a bare namespace ('mybus') to its fully qualified host name."""
    namespace = namespace.strip()
    if namespace.startswith("sb://"):
        namespace = namespace[len("sb://"):]
    namespace = namespace.rstrip("/")
    if "." not in namespace:
        namespace = f"{namespace}.{SERVICEBUS_DOMAIN}"
    return namespace


def _require(value: Any, field_name: str, variant: str) -> None:
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ConfigurationError(f"{variant}: '{field_name}' is required", field=field_name)


def validate_credential(variant: CredentialVariant) -> None:
    """Raise ConfigurationError if any identifying field is missing."""
    if variant is None:
        raise ConfigurationError("credential is required", field="credential")

    if isinstance(variant, ConnectionSecret):
        _require(variant.connection_string, "connection_string", "ConnectionSecret")
    elif isinstance(variant, NamespaceSharedKey):
        _require(variant.namespace, "namespace", "NamespaceSharedKey")
        _require(variant.key_name, "key_name", "NamespaceSharedKey")
        _require(variant.key, "key", "NamespaceSharedKey")
    elif isinstance(variant, NamespaceToken):
        _require(variant.namespace, "namespace", "NamespaceToken")
        _require(variant.token_provider, "token_provider", "NamespaceToken")
    elif isinstance(variant, NamespaceSas):
        _require(variant.namespace, "namespace", "NamespaceSas")
        _require(variant.sas_token, "sas_token", "NamespaceSas")
    else:
        raise ConfigurationError(
            f"Unsupported credential type: {type(variant).__name__}",
            field="credential",
        )


def resolve_credential(variant: CredentialVariant) -> ResolvedCredential:
    """Validate and resolve a credential variant."""
    validate_credential(variant)

    if isinstance(variant, ConnectionSecret):
        return ResolvedCredential(connection_string=variant.connection_string)

    if isinstance(variant, NamespaceSharedKey):
        return ResolvedCredential(
            fully_qualified_namespace=normalize_namespace(variant.namespace),
            credential=AzureNamedKeyCredential(variant.key_name, variant.key),
        )

    if isinstance(variant, NamespaceToken):
        return ResolvedCredential(
            fully_qualified_namespace=normalize_namespace(variant.namespace),
            credential=variant.token_provider,
        )

    # NamespaceSas; validate_credential rejected everything else
    return ResolvedCredential(
        fully_qualified_namespace=normalize_namespace(variant.namespace),
        credential=AzureSasCredential(variant.sas_token),
    )


__all__ = [
    "ResolvedCredential",
    "normalize_namespace",
    "validate_credential",
    "resolve_credential",
]
