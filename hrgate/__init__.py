"""
hrgate: heart-rate gated tool actions

Every gated tool action of an autonomous coding agent requires a live,
signed statement that the user's heart rate is at or above their threshold:

    ALLOWED(action) = fresh(signal) AND signed(signal) AND signal.hr_ok

There is no third state. If the signal cannot be fetched, parsed or verified,
the action is blocked.

Roles:
- Signer: the only holder of the private key; issues short-lived Ed25519
  signed assertions and overwrites a per-user ref (``SignalPublisher``)
- Ref store: carries the latest assertion (``GitRefStore`` over a git
  remote, ``HttpRefStore`` over the signer service)
- Gate: runs before every action, fails closed (``HeartRateGate``)

Usage:
    from hrgate import HeartRateGate

    gate = HeartRateGate("/path/to/repo")
    decision = gate.check("Bash", tool_use_id)
    if not decision.allowed:
        print(decision.message())
"""

__version__ = "1.0.0"
__license__ = "Apache-2.0"

from .assertion import SignedAssertion, UnsignedAssertion
from .canonicalization import canonical_bytes, canonicalize
from .config import ScopeConfig, load_scope_config
from .decision_log import AttemptEntry, DecisionLog, OutcomeEntry
from .errors import ConfigError, HrGateError, MalformedPayloadError, SigningError, TransportError
from .gate import GateBlockedError, GateDecision, GateReason, HeartRateGate
from .publisher import PublishReport, PublishTarget, SignalPublisher
from .signing import KeyPair, generate_keypair, issue, sign
from .stats_sync import StatsSync, SyncResult, maybe_spawn_sync
from .transport import GitRefStore, HttpRefStore, InMemoryRefStore, RefStore
from .verifier import Reason, VerificationResult, verify_full, verify_signature

__all__ = [
    # Version
    "__version__",
    # Assertions
    "UnsignedAssertion",
    "SignedAssertion",
    "canonicalize",
    "canonical_bytes",
    # Keys and signing
    "KeyPair",
    "generate_keypair",
    "sign",
    "issue",
    # Verification
    "Reason",
    "VerificationResult",
    "verify_signature",
    "verify_full",
    # Gate
    "HeartRateGate",
    "GateDecision",
    "GateReason",
    "GateBlockedError",
    # Config
    "ScopeConfig",
    "load_scope_config",
    # Transport
    "RefStore",
    "GitRefStore",
    "InMemoryRefStore",
    "HttpRefStore",
    # Decision log and sync
    "DecisionLog",
    "AttemptEntry",
    "OutcomeEntry",
    "StatsSync",
    "SyncResult",
    "maybe_spawn_sync",
    # Publisher
    "SignalPublisher",
    "PublishTarget",
    "PublishReport",
    # Errors
    "HrGateError",
    "ConfigError",
    "TransportError",
    "MalformedPayloadError",
    "SigningError",
]
