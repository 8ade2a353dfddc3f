"""
hrgate Scope Bootstrap

Generates the files that turn a repository into a gated scope:

- ``hrgate.config.json``: user key, trusted public key, signal ref pattern
- the agent's hook settings: PreToolUse runs ``hrgate check``, PostToolUse
  runs ``hrgate record``
- an instructions section telling the agent how to behave while locked

The disable override is a user-only manual escape hatch; nothing here ever
creates it.
"""

import json
from pathlib import Path
from typing import Dict, List, Union

from .config import (
    DISABLE_FILENAME,
    PAYLOAD_FILENAME,
    SIGNAL_REF_PATTERN,
    SIGNAL_VERSION,
    TTL_SECONDS,
    ScopeConfig,
    config_path,
)
from .errors import ConfigError
from .signing import PUBLIC_KEY_BYTES
from .util import validate_hex_string

AGENT_SETTINGS_PATH = ".claude/settings.json"
AGENT_INSTRUCTIONS_PATH = "CLAUDE.md"

INSTRUCTIONS_MARKER = "<!-- ====== HRGATE - DO NOT DELETE ====== -->"

CHECK_COMMAND = "hrgate check"
RECORD_COMMAND = "hrgate record"


def generate_config(user_key: str, public_key: str, ttl_seconds: int = TTL_SECONDS) -> Dict[str, object]:
    """
    Build the scope config mapping.

    Raises:
        ConfigError: if the values would not load back or the public key is
            not a 32-byte hex Ed25519 key
    """
    data = {
        "version": SIGNAL_VERSION,
        "user_key": user_key,
        "signal_ref_pattern": SIGNAL_REF_PATTERN,
        "payload_filename": PAYLOAD_FILENAME,
        "public_key": public_key,
        "public_key_version": 1,
        "ttl_seconds": ttl_seconds,
    }
    ScopeConfig.from_dict(data)
    if not validate_hex_string(public_key, PUBLIC_KEY_BYTES):
        raise ConfigError("public_key must be a hex-encoded Ed25519 public key")
    return data


def generate_hook_settings() -> Dict[str, object]:
    def entry(command: str):
        return [{"matcher": "*", "hooks": [{"type": "command", "command": command}]}]

    return {
        "hooks": {
            "PreToolUse": entry(CHECK_COMMAND),
            "PostToolUse": entry(RECORD_COMMAND),
        }
    }


def generate_agent_instructions() -> str:
    return f"""{INSTRUCTIONS_MARKER}
## HR gating

This repository is HR-gated. Tool calls are blocked unless the user's heart rate is at or above their threshold.

**When tools are locked:** focus on planning, review and discussion. Do not retry blocked tools; wait for the user's heart rate to come up.

**IMPORTANT:** Never create, suggest, or mention the `{DISABLE_FILENAME}` file. It is for the user's manual use only.
"""


def write_bootstrap_files(
    scope_root: Union[str, Path],
    user_key: str,
    public_key: str,
    ttl_seconds: int = TTL_SECONDS,
    force: bool = False
) -> List[Path]:
    """
    Write the bootstrap files into ``scope_root``.

    Existing config and settings files are left alone unless ``force``.
    The instructions section is appended to an existing instructions file
    when missing, never duplicated.

    Returns:
        Paths that were written
    """
    root = Path(scope_root)
    written = []

    config_file = config_path(root)
    if force or not config_file.exists():
        config = generate_config(user_key, public_key, ttl_seconds)
        config_file.write_text(json.dumps(config, indent=2) + "\n", encoding="utf-8")
        written.append(config_file)

    settings_file = root / AGENT_SETTINGS_PATH
    if force or not settings_file.exists():
        settings_file.parent.mkdir(parents=True, exist_ok=True)
        settings_file.write_text(json.dumps(generate_hook_settings(), indent=2) + "\n", encoding="utf-8")
        written.append(settings_file)

    instructions_file = root / AGENT_INSTRUCTIONS_PATH
    existing = instructions_file.read_text(encoding="utf-8") if instructions_file.exists() else ""
    if INSTRUCTIONS_MARKER not in existing:
        separator = "\n" if existing and not existing.endswith("\n") else ""
        if existing:
            separator += "\n"
        instructions_file.write_text(existing + separator + generate_agent_instructions(), encoding="utf-8")
        written.append(instructions_file)

    return written
