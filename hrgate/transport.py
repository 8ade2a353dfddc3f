"""
hrgate Ref Store Transport

A ref store is a named, content-addressed, overwrite-by-name publish/fetch
channel. Each publish fully replaces the previous value of a ref; there is no
history, merge or ancestry.

Implementations:
- GitRefStore: a git remote. Each value is a parentless commit of a
  single-entry tree, force-pushed to the ref.
- InMemoryRefStore: process-local store (tests, service backing).
- HttpRefStore: a small authenticated key-value service (see hrgate.service).

Callers cannot tell "ref never published" from "network/auth failure": both
raise TransportError.
"""

import base64
import hashlib
import logging
import os
import subprocess
import threading
import uuid
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Optional, Tuple, Union

import requests

from .assertion import SignedAssertion
from .config import GIT_REMOTE, GIT_TIMEOUT_SECONDS, ScopeConfig
from .errors import TransportError

logger = logging.getLogger(__name__)

# Disposable local refs used while fetching; one per fetch call
FETCH_ALIAS_PREFIX = "refs/hrgate-check/"

SIGNAL_COMMIT_MESSAGE = "Update HR signal"


class RefStore(ABC):
    """Publish/fetch capability over named refs."""

    @abstractmethod
    def publish(self, ref: str, filename: str, content: bytes, message: str) -> str:
        """
        Replace the value of ``ref`` with a single file.

        Returns:
            Identifier of the published object
        Raises:
            TransportError: the value could not be published
        """
        pass

    @abstractmethod
    def fetch(self, ref: str, filename: str) -> bytes:
        """
        Read the current content of ``filename`` under ``ref``.

        Raises:
            TransportError: ref missing, file missing, or transport failure
        """
        pass


class GitRefStore(RefStore):
    """
    Ref store on top of a git remote.

    ``repo_path`` is any local repository (bare or not) with ``remote``
    configured. Fetches go through a per-call unique alias ref which is
    always deleted afterwards, so concurrent fetches in the same repository
    never clobber each other and no signal history is retained locally.
    """

    def __init__(
        self,
        repo_path: Union[str, Path],
        remote: str = GIT_REMOTE,
        timeout: float = GIT_TIMEOUT_SECONDS,
        git: str = "git"
    ):
        self.repo_path = Path(repo_path)
        self.remote = remote
        self.timeout = timeout
        self.git = git

    def publish(self, ref: str, filename: str, content: bytes, message: str) -> str:
        blob = self._git("hash-object", "-w", "--stdin", input=content).decode().strip()
        tree_entry = f"100644 blob {blob}\t{filename}\n".encode("utf-8")
        tree = self._git("mktree", input=tree_entry).decode().strip()
        # no -p: the commit is an orphan
        commit = self._git("commit-tree", tree, "-m", message).decode().strip()
        self._git("push", "--force", "--quiet", self.remote, f"{commit}:{ref}")
        return commit

    def fetch(self, ref: str, filename: str) -> bytes:
        alias = f"{FETCH_ALIAS_PREFIX}{uuid.uuid4().hex}"
        try:
            self._git("fetch", "--quiet", "--no-tags", self.remote, f"+{ref}:{alias}")
            return self._git("cat-file", "blob", f"{alias}:{filename}")
        finally:
            self._delete_alias(alias)

    def _delete_alias(self, alias: str) -> None:
        try:
            self._git("update-ref", "-d", alias)
        except TransportError as e:
            logger.debug("alias cleanup for %s: %s", alias, e)

    def _env(self) -> Dict[str, str]:
        env = dict(os.environ)
        # never block on a credential prompt; a failed fetch blocks the action instead
        env["GIT_TERMINAL_PROMPT"] = "0"
        env.setdefault("GIT_AUTHOR_NAME", "hrgate")
        env.setdefault("GIT_AUTHOR_EMAIL", "hrgate@localhost")
        env.setdefault("GIT_COMMITTER_NAME", "hrgate")
        env.setdefault("GIT_COMMITTER_EMAIL", "hrgate@localhost")
        return env

    def _git(self, *args: str, input: Optional[bytes] = None) -> bytes:
        cmd = [self.git, *args]
        try:
            completed = subprocess.run(
                cmd,
                cwd=self.repo_path,
                input=input,
                capture_output=True,
                timeout=self.timeout,
                env=self._env(),
                check=False,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            raise TransportError(f"git {args[0]} failed: {e}") from e
        if completed.returncode != 0:
            detail = completed.stderr.decode("utf-8", errors="replace").strip()
            raise TransportError(f"git {args[0]} failed: {detail[:240] or completed.returncode}")
        return completed.stdout


class InMemoryRefStore(RefStore):
    """
    In-memory ref store.

    Object ids are SHA-256 digests of filename and content. Thread-safe.
    """

    def __init__(self):
        self._refs: Dict[str, Tuple[str, str, bytes]] = {}
        self._lock = threading.Lock()

    def publish(self, ref: str, filename: str, content: bytes, message: str) -> str:
        object_id = hashlib.sha256(filename.encode("utf-8") + b"\0" + content).hexdigest()
        with self._lock:
            self._refs[ref] = (object_id, filename, bytes(content))
        return object_id

    def fetch(self, ref: str, filename: str) -> bytes:
        with self._lock:
            entry = self._refs.get(ref)
        if entry is None:
            raise TransportError(f"ref not found: {ref}")
        _, stored_name, content = entry
        if stored_name != filename:
            raise TransportError(f"{filename} not present under {ref}")
        return content

    def object_id(self, ref: str) -> Optional[str]:
        with self._lock:
            entry = self._refs.get(ref)
        return entry[0] if entry else None


class HttpRefStore(RefStore):
    """
    Ref store backed by the hrgate service's ``/refs`` endpoints.

    ``session`` may be any requests-compatible client (a ``requests.Session``
    in production).
    """

    def __init__(self, base_url: str, token: str, timeout: float = 5, session=None):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self.session = session or requests.Session()

    def _headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.token}"}

    def publish(self, ref: str, filename: str, content: bytes, message: str) -> str:
        body = {
            "ref": ref,
            "filename": filename,
            "content_b64": base64.b64encode(content).decode("ascii"),
            "message": message,
        }
        try:
            response = self.session.put(
                f"{self.base_url}/refs", json=body, headers=self._headers(), timeout=self.timeout
            )
        except requests.RequestException as e:
            raise TransportError(f"publish to {ref} failed: {e}") from e
        if response.status_code != 200:
            raise TransportError(f"publish to {ref} failed: HTTP {response.status_code}")
        try:
            return response.json()["object_id"]
        except (ValueError, KeyError, TypeError) as e:
            raise TransportError(f"publish to {ref}: bad response: {e}") from e

    def fetch(self, ref: str, filename: str) -> bytes:
        try:
            response = self.session.get(
                f"{self.base_url}/refs",
                params={"ref": ref, "filename": filename},
                headers=self._headers(),
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise TransportError(f"fetch of {ref} failed: {e}") from e
        if response.status_code != 200:
            raise TransportError(f"fetch of {ref} failed: HTTP {response.status_code}")
        try:
            return base64.b64decode(response.json()["content_b64"], validate=True)
        except (ValueError, KeyError, TypeError) as e:
            raise TransportError(f"fetch of {ref}: bad response: {e}") from e


# ============================================================
# Scope-level helpers
# ============================================================

def publish_assertion(store: RefStore, scope: ScopeConfig, signed: SignedAssertion) -> str:
    """Overwrite the scope's signal ref with ``signed``."""
    return store.publish(
        scope.signal_ref,
        scope.payload_filename,
        signed.to_json().encode("utf-8"),
        SIGNAL_COMMIT_MESSAGE,
    )


def fetch_signal_payload(store: RefStore, scope: ScopeConfig) -> bytes:
    """Raw bytes of the scope's current signal payload. Never cached."""
    return store.fetch(scope.signal_ref, scope.payload_filename)
