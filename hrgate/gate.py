"""
hrgate Gate

The enforcement point that runs immediately before every gated tool action:

    NO GATED ACTION RUNS WITHOUT A FRESH, VALIDLY SIGNED hr_ok=true SIGNAL

Checks run in a fixed order and the first failure decides:

    1. disable override present     -> allow, ungated
    2. verification tooling missing -> dependency_missing
    3. config missing/invalid       -> config_missing
    4. signal fetch fails           -> signal_fetch_failed
    5. payload empty or not JSON    -> signal_fetch_failed
    6. required field bad           -> payload_malformed
    7. user_key differs             -> user_key_mismatch
    8. exp_unix <= now              -> signal_expired
    9. signature does not verify    -> invalid_signature
   10. hr_ok is false               -> hr_below_threshold
   11. allow

Anything unexpected blocks with gate_error. Every decision is appended to the
decision log. Config and key material are re-read on every call.
"""

import json
import logging
import shutil
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

from .assertion import SignedAssertion
from .config import ScopeConfig, disable_path, load_scope_config, stats_log_path
from .decision_log import DecisionLog
from .errors import ConfigError, MalformedPayloadError, TransportError
from .logging_config import audit_log
from .signing import NACL_AVAILABLE
from .stats_sync import maybe_spawn_sync
from .transport import GitRefStore, RefStore, fetch_signal_payload
from .util import now_epoch
from .verifier import check_expiry, check_threshold, verify_signature

logger = logging.getLogger(__name__)

EXIT_ALLOW = 0
EXIT_BLOCK = 2


class GateReason(str, Enum):
    """Reason code attached to a gate decision."""
    GATING_DISABLED = "gating_disabled"
    DEPENDENCY_MISSING = "dependency_missing"
    CONFIG_MISSING = "config_missing"
    SIGNAL_FETCH_FAILED = "signal_fetch_failed"
    PAYLOAD_MALFORMED = "payload_malformed"
    USER_KEY_MISMATCH = "user_key_mismatch"
    SIGNAL_EXPIRED = "signal_expired"
    INVALID_SIGNATURE = "invalid_signature"
    HR_BELOW_THRESHOLD = "hr_below_threshold"
    GATE_ERROR = "gate_error"


_SUMMARIES = {
    GateReason.DEPENDENCY_MISSING: "verification tooling unavailable",
    GateReason.CONFIG_MISSING: "scope config missing or invalid",
    GateReason.SIGNAL_FETCH_FAILED: "could not fetch HR signal",
    GateReason.PAYLOAD_MALFORMED: "HR signal is malformed",
    GateReason.USER_KEY_MISMATCH: "HR signal is for a different user",
    GateReason.SIGNAL_EXPIRED: "HR signal expired",
    GateReason.INVALID_SIGNATURE: "HR signal signature is invalid",
    GateReason.HR_BELOW_THRESHOLD: "heart rate below threshold",
    GateReason.GATE_ERROR: "gate error",
}


@dataclass
class GateDecision:
    """Decision from the gate."""
    allowed: bool
    reason: Optional[GateReason] = None
    gated: bool = True
    detail: Optional[str] = None
    session_id: Optional[str] = None
    bpm: Optional[int] = None

    @classmethod
    def allow(cls, signed: SignedAssertion) -> 'GateDecision':
        return cls(allowed=True, session_id=signed.session_id, bpm=signed.bpm)

    @classmethod
    def block(cls, reason: GateReason, detail: str = None,
              signed: SignedAssertion = None) -> 'GateDecision':
        return cls(
            allowed=False,
            reason=reason,
            detail=detail,
            session_id=signed.session_id if signed else None,
            bpm=signed.bpm if signed else None,
        )

    @property
    def exit_code(self) -> int:
        return EXIT_ALLOW if self.allowed else EXIT_BLOCK

    def message(self) -> str:
        """One-line diagnostic for the hook's stderr."""
        if self.allowed:
            return "hrgate: allowed" if self.gated else "hrgate: gating disabled"
        summary = _SUMMARIES.get(self.reason, "blocked")
        if self.detail:
            summary = f"{summary} ({self.detail})"
        return f"hrgate: {summary}; tools locked"


class GateBlockedError(Exception):
    """Raised by HeartRateGate.protect when the gate blocks."""

    def __init__(self, decision: GateDecision):
        self.decision = decision
        super().__init__(f"Action blocked: {decision.reason.value if decision.reason else 'unknown'}")


def default_dependency_check(needs_git: bool) -> List[str]:
    """Names of verification tools that are not available."""
    missing = []
    if not NACL_AVAILABLE:
        missing.append("pynacl")
    if needs_git and shutil.which("git") is None:
        missing.append("git")
    return missing


class HeartRateGate:
    """
    Gate for one scope (one repository working tree).

    Usage:
        gate = HeartRateGate(repo_root)

        decision = gate.check("Bash", tool_use_id)
        if not decision.allowed:
            ...

        # Or wrap a callable
        @gate.protect("deploy")
        def deploy():
            ...

    ``store`` defaults to a GitRefStore on ``scope_root``; ``clock`` returns
    Unix seconds; ``dependency_check`` receives whether git is required and
    returns the names of missing tools.
    """

    def __init__(
        self,
        scope_root: Union[str, Path],
        store: Optional[RefStore] = None,
        log: Optional[DecisionLog] = None,
        clock: Optional[Callable[[], int]] = None,
        dependency_check: Optional[Callable[[bool], List[str]]] = None,
        spawner: Optional[Callable[[Union[str, Path]], None]] = None
    ):
        self.scope_root = Path(scope_root)
        self.store = store
        self.log = log if log is not None else DecisionLog(stats_log_path(self.scope_root))
        self.clock = clock or now_epoch
        self.dependency_check = dependency_check or default_dependency_check
        self.spawner = spawner

    def check(self, tool_name: str = "unknown", tool_use_id: Optional[str] = None) -> GateDecision:
        """
        Decide whether ``tool_name`` may run now.

        Never raises.
        """
        try:
            decision = self._evaluate()
        except Exception as e:
            logger.debug("gate evaluation failed", exc_info=True)
            decision = GateDecision.block(GateReason.GATE_ERROR, f"{type(e).__name__}: {e}")
        self._record(tool_name, tool_use_id, decision)
        return decision

    def record_outcome(self, tool_name: str = "unknown", tool_use_id: Optional[str] = None,
                       succeeded: bool = True) -> bool:
        """
        Log that a gated action completed, then maybe start a stats sync.

        Returns:
            True if a background sync was started
        """
        self.log.record_outcome(tool_name, tool_use_id=tool_use_id, succeeded=succeeded)
        return maybe_spawn_sync(self.scope_root, self.log, spawner=self.spawner)

    def protect(self, tool_name: str):
        """
        Decorator gating a callable.

        Raises GateBlockedError instead of calling the function when blocked;
        records an outcome when the function returns.
        """
        def decorator(func: Callable):
            def wrapper(*args, **kwargs):
                decision = self.check(tool_name)
                if not decision.allowed:
                    raise GateBlockedError(decision)
                result = func(*args, **kwargs)
                self.record_outcome(tool_name)
                return result
            return wrapper
        return decorator

    def _evaluate(self) -> GateDecision:
        # 1. Disable override
        if disable_path(self.scope_root).exists():
            return GateDecision(allowed=True, reason=GateReason.GATING_DISABLED, gated=False)

        # 2. Tooling
        missing = self.dependency_check(self.store is None)
        if missing:
            return GateDecision.block(GateReason.DEPENDENCY_MISSING, ", ".join(missing))

        # 3. Config
        try:
            scope = load_scope_config(self.scope_root)
        except ConfigError as e:
            return GateDecision.block(GateReason.CONFIG_MISSING, str(e))

        # 4-5. Fetch
        store = self.store if self.store is not None else GitRefStore(self.scope_root)
        try:
            raw = fetch_signal_payload(store, scope)
        except TransportError as e:
            return GateDecision.block(GateReason.SIGNAL_FETCH_FAILED, str(e))
        data = _parse_payload(raw)
        if data is None:
            return GateDecision.block(GateReason.SIGNAL_FETCH_FAILED, "payload empty or unreadable")

        # 6. Shape
        try:
            signed = SignedAssertion.from_dict(data)
        except MalformedPayloadError as e:
            return GateDecision.block(GateReason.PAYLOAD_MALFORMED, str(e))

        return self._verify(scope, signed)

    def _verify(self, scope: ScopeConfig, signed: SignedAssertion) -> GateDecision:
        # 7. Subject
        if signed.subject_key != scope.user_key:
            return GateDecision.block(GateReason.USER_KEY_MISMATCH, signed=signed)

        # 8. Freshness
        now = self.clock()
        if check_expiry(signed, now) is not None:
            return GateDecision.block(
                GateReason.SIGNAL_EXPIRED,
                f"{now - signed.expires_at_unix}s ago",
                signed
            )

        # 9. Signature
        result = verify_signature(signed, scope.public_key)
        if not result.valid:
            return GateDecision.block(GateReason.INVALID_SIGNATURE, result.detail, signed)

        # 10. Threshold
        if not check_threshold(signed).valid:
            return GateDecision.block(
                GateReason.HR_BELOW_THRESHOLD,
                f"{signed.bpm} < {signed.threshold_bpm}",
                signed
            )

        return GateDecision.allow(signed)

    def _record(self, tool_name: str, tool_use_id: Optional[str], decision: GateDecision) -> None:
        reason = decision.reason.value if decision.reason else None
        try:
            self.log.record_attempt(
                tool_name,
                decision.allowed,
                reason=reason,
                gated=decision.gated,
                tool_use_id=tool_use_id,
                session_id=decision.session_id,
                bpm=decision.bpm,
            )
            audit_log.gate_decision(tool_name, decision.allowed, reason, decision.gated, decision.bpm)
        except Exception as e:
            logger.debug("decision logging failed: %s", e)


def _parse_payload(raw: bytes) -> Optional[Dict[str, Any]]:
    """Decoded JSON object, or None when the payload is empty or unreadable."""
    try:
        text = raw.decode("utf-8")
    except UnicodeDecodeError:
        return None
    if not text.strip():
        return None
    try:
        data = json.loads(text)
    except ValueError:
        return None
    return data if isinstance(data, dict) else None
