"""Seal policy key server.

Policy-driven access control for sealed resources: every protected
resource gets a policy (time lock, address whitelist, multi-signature
threshold), a key derived from the server's master secret, and an
evaluator that decides who may decrypt.

Components
----------
1. Policy storage (:mod:`seal_policy.core.interfaces`)
2. Key derivation and custody (:mod:`seal_policy.crypto`)
3. Access evaluation (:mod:`seal_policy.access`)
4. Encryption gateway (:mod:`seal_policy.crypto.gateway`)
5. Key server and API surface (:mod:`seal_policy.server`, :mod:`seal_policy.wire`)
"""
from __future__ import annotations

__version__ = "0.3.0"

# ---------------------------------------------------------------------------
# Access evaluation
# ---------------------------------------------------------------------------
from seal_policy.access import (
    AccessEvaluator,
    ApprovalTally,
    JWTApprovalVerifier,
    MultiSigVerifier,
    RemoteApprovalVerifier,
    SignerRegistry,
)

# ---------------------------------------------------------------------------
# Core types, errors, config, interfaces
# ---------------------------------------------------------------------------
from seal_policy.core.config import KeyServerConfig
from seal_policy.core.errors import (
    AccessDenied,
    AccessError,
    CollaboratorError,
    ConfigurationError,
    CryptoError,
    DecryptionError,
    DerivationError,
    DuplicatePolicyId,
    EncryptionError,
    InternalError,
    InvalidRequest,
    PayloadTooLarge,
    PolicyError,
    PolicyNotFound,
    RequestError,
    SealPolicyError,
    SignerUnavailable,
)
from seal_policy.core.interfaces import InMemoryPolicyStore, PolicyStore
from seal_policy.core.types import (
    AccessDecision,
    CheckName,
    CheckResult,
    CheckStatus,
    MasterSecret,
    Policy,
    Requester,
    SealedPayload,
)

# ---------------------------------------------------------------------------
# Key material
# ---------------------------------------------------------------------------
from seal_policy.crypto import EncryptionGateway, KeyDerivation, KeyRing

# ---------------------------------------------------------------------------
# Orchestrator and wire
# ---------------------------------------------------------------------------
from seal_policy.metrics import KeyServerMetrics
from seal_policy.server import KeyServer
from seal_policy.wire import KeyServerClient, create_asgi_app, create_http_handler

__all__ = [
    "__version__",
    # Core
    "KeyServerConfig",
    "MasterSecret",
    "Policy",
    "Requester",
    "CheckName",
    "CheckStatus",
    "CheckResult",
    "AccessDecision",
    "SealedPayload",
    "PolicyStore",
    "InMemoryPolicyStore",
    # Errors
    "SealPolicyError",
    "RequestError",
    "PolicyError",
    "AccessError",
    "CryptoError",
    "CollaboratorError",
    "InvalidRequest",
    "PayloadTooLarge",
    "PolicyNotFound",
    "DuplicatePolicyId",
    "AccessDenied",
    "DerivationError",
    "EncryptionError",
    "DecryptionError",
    "SignerUnavailable",
    "ConfigurationError",
    "InternalError",
    # Access
    "AccessEvaluator",
    "ApprovalTally",
    "MultiSigVerifier",
    "SignerRegistry",
    "JWTApprovalVerifier",
    "RemoteApprovalVerifier",
    # Crypto
    "KeyDerivation",
    "KeyRing",
    "EncryptionGateway",
    # Server
    "KeyServer",
    "KeyServerMetrics",
    # Wire
    "create_http_handler",
    "create_asgi_app",
    "KeyServerClient",
]
