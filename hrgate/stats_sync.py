"""
hrgate Stats Sync

Uploads the local decision log to ``refs/hrgate/stats/{user_key}`` as a
single ``tool-stats.jsonl`` file in a parentless commit. Each upload fully
replaces the previous one; the local log is truncated only after the push
succeeds (at-least-once).

Sync runs out of band: the post-action hook calls ``maybe_spawn_sync`` which
starts a detached ``python -m hrgate --scope-root <root> sync`` once enough
lines have accumulated.
"""

import logging
import subprocess
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, Union

from .config import STATS_FILENAME, SYNC_THRESHOLD, ScopeConfig, load_scope_config, stats_log_path
from .decision_log import DecisionLog
from .errors import ConfigError, TransportError
from .logging_config import audit_log
from .transport import GitRefStore, RefStore

logger = logging.getLogger(__name__)

STATS_COMMIT_MESSAGE = "Update tool stats"


@dataclass
class SyncResult:
    """Outcome of one sync run."""
    synced: bool
    lines: int = 0
    object_id: Optional[str] = None
    error: Optional[str] = None


class StatsSync:
    """Publishes a DecisionLog to the scope's stats ref."""

    def __init__(self, store: RefStore, scope: ScopeConfig, log: DecisionLog):
        self.store = store
        self.scope = scope
        self.log = log

    def sync(self) -> SyncResult:
        snapshot = self.log.read_bytes()
        if not snapshot.strip():
            return SyncResult(synced=False)

        lines = snapshot.count(b"\n")
        ref = self.scope.stats_ref
        try:
            object_id = self.store.publish(ref, STATS_FILENAME, snapshot, STATS_COMMIT_MESSAGE)
        except TransportError as e:
            audit_log.stats_sync_failed(ref, str(e))
            return SyncResult(synced=False, lines=lines, error=str(e))

        self.log.truncate(snapshot)
        audit_log.stats_synced(ref, lines)
        return SyncResult(synced=True, lines=lines, object_id=object_id)


def run_sync(scope_root: Union[str, Path], store: Optional[RefStore] = None) -> SyncResult:
    """Sync the decision log of ``scope_root`` using its config."""
    log = DecisionLog(stats_log_path(scope_root))
    if not log.read_bytes().strip():
        return SyncResult(synced=False)
    try:
        scope = load_scope_config(scope_root)
    except ConfigError as e:
        return SyncResult(synced=False, error=str(e))
    if store is None:
        store = GitRefStore(scope_root)
    return StatsSync(store, scope, log).sync()


def spawn_detached_sync(scope_root: Union[str, Path]) -> None:
    """Start ``python -m hrgate --scope-root <root> sync`` in its own session; never waited on."""
    subprocess.Popen(
        [sys.executable, "-m", "hrgate", "--scope-root", str(scope_root), "sync"],
        cwd=str(scope_root),
        stdin=subprocess.DEVNULL,
        stdout=subprocess.DEVNULL,
        stderr=subprocess.DEVNULL,
        close_fds=True,
        start_new_session=True,
    )


def maybe_spawn_sync(
    scope_root: Union[str, Path],
    log: DecisionLog,
    threshold: int = SYNC_THRESHOLD,
    spawner: Optional[Callable[[Union[str, Path]], None]] = None
) -> bool:
    """
    Spawn a background sync when the log holds at least ``threshold`` lines.

    Returns:
        True if a sync process was started
    """
    if log.line_count() < threshold:
        return False
    spawner = spawner or spawn_detached_sync
    try:
        spawner(scope_root)
    except OSError as e:
        logger.debug("stats sync spawn failed: %s", e)
        return False
    return True
