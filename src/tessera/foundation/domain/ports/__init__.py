"""Domain port interfaces for hexagonal architecture.

Ports define abstract interfaces that the gate uses to interact with
external collaborators. Implementations (adapters) live in infrastructure.
"""

from tessera.foundation.domain.ports.credential_issuer import CredentialIssuer
from tessera.foundation.domain.ports.credential_verifier import CredentialVerifierPort
from tessera.foundation.domain.ports.gate_store import GateStore
from tessera.foundation.domain.ports.tenant_directory import TenantDirectory

__all__ = ["CredentialIssuer", "CredentialVerifierPort", "GateStore", "TenantDirectory"]
