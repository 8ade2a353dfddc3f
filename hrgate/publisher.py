"""
hrgate Signal Publisher

Signer-side loop body: turns heart-rate samples into freshly signed
assertions and overwrites the signal ref of every gated repository belonging
to one user.

- Samples arriving within ``debounce_seconds`` of the last publish are
  dropped.
- A sample older than ``stale_after_seconds`` is published as ``bpm = 0`` so
  a stopped sensor locks tools instead of leaving the last good value live
  until expiry.
- A failing target is logged and reported; the other targets still get the
  signal.
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence

from .assertion import SignedAssertion
from .config import DEBOUNCE_SECONDS, STALE_SECONDS, TTL_SECONDS, ScopeConfig
from .errors import TransportError
from .logging_config import audit_log
from .signing import issue, public_key_for
from .transport import RefStore, publish_assertion
from .util import mask_sensitive

logger = logging.getLogger(__name__)


@dataclass
class PublishTarget:
    """One gated repository: where to publish and under which scope."""
    name: str
    store: RefStore
    scope: ScopeConfig


@dataclass
class PublishReport:
    """What one submit published."""
    assertion: SignedAssertion
    stale: bool = False
    published: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return bool(self.published)


class SignalPublisher:
    """
    Publishes signals for a single subject key.

    Every target must be configured for the same ``user_key`` and for the
    public key matching ``private_key_hex``; violations raise ValueError at
    construction.
    """

    def __init__(
        self,
        private_key_hex: str,
        targets: Sequence[PublishTarget],
        ttl_seconds: int = TTL_SECONDS,
        debounce_seconds: float = DEBOUNCE_SECONDS,
        stale_after_seconds: float = STALE_SECONDS,
        clock: Optional[Callable[[], float]] = None
    ):
        if not targets:
            raise ValueError("at least one publish target is required")
        subject_keys = {t.scope.user_key for t in targets}
        if len(subject_keys) != 1:
            raise ValueError(f"targets span {len(subject_keys)} user keys; one publisher serves one user")
        public_key = public_key_for(private_key_hex)
        for target in targets:
            if target.scope.public_key.lower() != public_key:
                raise ValueError(f"target {target.name} does not trust this signing key")

        self.private_key_hex = private_key_hex
        self.targets = list(targets)
        self.subject_key = subject_keys.pop()
        self.ttl_seconds = ttl_seconds
        self.debounce_seconds = debounce_seconds
        self.stale_after_seconds = stale_after_seconds
        self.clock = clock or time.time
        self._last_publish: Optional[float] = None
        self._lock = threading.Lock()

    def submit(
        self,
        session_id: str,
        bpm: int,
        threshold_bpm: int,
        sample_time: Optional[float] = None
    ) -> Optional[PublishReport]:
        """
        Publish a sample.

        Args:
            session_id: Workout session the sample belongs to
            bpm: Measured heart rate
            threshold_bpm: Threshold configured for the session
            sample_time: Unix time the sample was taken (defaults to now)

        Returns:
            PublishReport, or None when debounced
        """
        now = self.clock()
        with self._lock:
            if self._last_publish is not None and now - self._last_publish < self.debounce_seconds:
                logger.debug("sample for %s debounced", mask_sensitive(self.subject_key))
                return None
            self._last_publish = now

        stale = sample_time is not None and now - sample_time > self.stale_after_seconds
        signed = issue(
            self.subject_key,
            session_id,
            0 if stale else bpm,
            threshold_bpm,
            self.ttl_seconds,
            self.private_key_hex,
            now=int(now),
        )

        report = PublishReport(assertion=signed, stale=stale)
        for target in self.targets:
            ref = target.scope.signal_ref
            try:
                publish_assertion(target.store, target.scope, signed)
            except TransportError as e:
                report.failed[target.name] = str(e)
                audit_log.signal_publish_failed(target.name, ref, str(e))
            else:
                report.published.append(target.name)
                audit_log.signal_published(
                    target.name, ref, signed.threshold_met, signed.bpm, signed.expires_at_unix
                )
        return report
