"""
hrgate Decision Log

Append-only, line-oriented record of every gate attempt and every
post-action outcome, one JSON object per line, joined later on
``tool_use_id``. Lives inside the scope's ``.git`` directory so it is never
committed. Writing is best-effort: a failed append never changes a gate
decision.
"""

import json
import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

try:
    import fcntl
    FLOCK_AVAILABLE = True
except ImportError:
    FLOCK_AVAILABLE = False

from .util import utc_timestamp

logger = logging.getLogger(__name__)


@dataclass
class AttemptEntry:
    """One gate decision."""
    tool: str
    allowed: bool
    gated: bool = True
    tool_use_id: Optional[str] = None
    reason: Optional[str] = None
    session_id: Optional[str] = None
    bpm: Optional[int] = None
    ts: str = field(default_factory=utc_timestamp)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"ts": self.ts, "type": "attempt"}
        if self.tool_use_id:
            data["tool_use_id"] = self.tool_use_id
        data["tool"] = self.tool
        data["allowed"] = self.allowed
        data["gated"] = self.gated
        if self.reason:
            data["reason"] = self.reason
        if self.session_id:
            data["session_id"] = self.session_id
        if self.bpm:
            data["bpm"] = self.bpm
        return data


@dataclass
class OutcomeEntry:
    """A gated action that ran to completion."""
    tool: str
    succeeded: bool = True
    tool_use_id: Optional[str] = None
    ts: str = field(default_factory=utc_timestamp)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"ts": self.ts, "type": "outcome"}
        if self.tool_use_id:
            data["tool_use_id"] = self.tool_use_id
        data["tool"] = self.tool
        data["succeeded"] = self.succeeded
        return data


class DecisionLog:
    """
    JSONL decision log at ``path``.

    The parent directory is never created: outside a git checkout there is
    simply no log.
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self._lock = threading.Lock()

    def append(self, entry: Union[AttemptEntry, OutcomeEntry]) -> bool:
        """Append one entry. Returns False (and logs) instead of raising."""
        line = json.dumps(entry.to_dict(), separators=(',', ':'), ensure_ascii=False) + "\n"
        try:
            with self._lock, open(self.path, "a", encoding="utf-8") as f:
                _lock_file(f)
                f.write(line)
            return True
        except OSError as e:
            logger.debug("decision log append failed: %s", e)
            return False

    def record_attempt(
        self,
        tool: str,
        allowed: bool,
        reason: Optional[str] = None,
        gated: bool = True,
        tool_use_id: Optional[str] = None,
        session_id: Optional[str] = None,
        bpm: Optional[int] = None
    ) -> bool:
        return self.append(AttemptEntry(
            tool=tool,
            allowed=allowed,
            gated=gated,
            tool_use_id=tool_use_id,
            reason=reason,
            session_id=session_id,
            bpm=bpm,
        ))

    def record_outcome(self, tool: str, tool_use_id: Optional[str] = None,
                       succeeded: bool = True) -> bool:
        return self.append(OutcomeEntry(tool=tool, succeeded=succeeded, tool_use_id=tool_use_id))

    def read_bytes(self) -> bytes:
        try:
            return self.path.read_bytes()
        except FileNotFoundError:
            return b""

    def line_count(self) -> int:
        return self.read_bytes().count(b"\n")

    def entries(self) -> List[Dict[str, Any]]:
        """Parsed entries; unparseable lines are skipped."""
        result = []
        for raw in self.read_bytes().splitlines():
            try:
                result.append(json.loads(raw))
            except ValueError:
                continue
        return result

    def truncate(self, synced: bytes) -> None:
        """
        Remove a synced snapshot from the front of the log.

        Lines appended after the snapshot was taken are kept. Appends from
        other processes (the hooks) and this rewrite both hold an exclusive
        flock on the file, so no line lands between the read and the
        rewrite. If the log no longer starts with the snapshot (another
        process already cleared it) nothing is removed; duplicates are
        harmless, losses are not.
        """
        with self._lock:
            try:
                with open(self.path, "r+b") as f:
                    _lock_file(f)
                    current = f.read()
                    if not current.startswith(synced):
                        return
                    remainder = current[len(synced):]
                    f.seek(0)
                    f.write(remainder)
                    f.truncate()
            except FileNotFoundError:
                return


def _lock_file(f) -> None:
    """Exclusive advisory lock, released when ``f`` is closed."""
    if FLOCK_AVAILABLE:
        fcntl.flock(f.fileno(), fcntl.LOCK_EX)
