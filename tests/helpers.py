"""Shared fixtures for the hrgate test suite."""

import json
import shutil
import subprocess
from pathlib import Path

from hrgate.config import CONFIG_FILENAME, ScopeConfig
from hrgate.signing import KeyPair, issue

NOW = 1_700_000_000

# RFC 8032, section 7.1, test 1
RFC8032_SEED = "9d61b19deffd5a60ba844af492ec2cc44449c5697b326919703bac031cae7f60"
RFC8032_PUBLIC = "d75a980182b10ab7d54bfed3c964073a0ee172f3daa62325af021a68f707511a"

GIT_AVAILABLE = shutil.which("git") is not None


def fixed_key_pair() -> KeyPair:
    return KeyPair(private_key=RFC8032_SEED, public_key=RFC8032_PUBLIC)


def write_scope(root, public_key=RFC8032_PUBLIC, user_key="alice", **overrides) -> ScopeConfig:
    """Write a scope config into ``root`` and return it."""
    data = {
        "version": 1,
        "user_key": user_key,
        "signal_ref_pattern": "refs/hrgate/hr/{user_key}",
        "payload_filename": "hr-signal.json",
        "public_key": public_key,
        "public_key_version": 1,
        "ttl_seconds": 15,
    }
    data.update(overrides)
    Path(root, CONFIG_FILENAME).write_text(json.dumps(data), encoding="utf-8")
    return ScopeConfig.from_dict(data)


def make_signal(bpm=142, threshold_bpm=120, user_key="alice", session_id="sess-1",
                ttl_seconds=15, now=NOW):
    return issue(user_key, session_id, bpm, threshold_bpm, ttl_seconds, RFC8032_SEED, now=now)


def git(cwd, *args) -> str:
    completed = subprocess.run(
        ["git", *args], cwd=cwd, capture_output=True, check=True
    )
    return completed.stdout.decode("utf-8").strip()


def init_git_pair(base) -> Path:
    """
    Create a bare ``remote.git`` and a ``work`` repository whose origin
    points at it. Returns the work repository path.
    """
    base = Path(base)
    remote = base / "remote.git"
    work = base / "work"
    git(base, "init", "--quiet", "--bare", str(remote))
    git(base, "init", "--quiet", str(work))
    git(work, "remote", "add", "origin", str(remote))
    return work
