#!/usr/bin/env python3
"""
hrgate Command Line Interface

Usage:
    hrgate check                 (PreToolUse hook; hook JSON on stdin)
    hrgate record                (PostToolUse hook; hook JSON on stdin)
    hrgate sync
    hrgate keygen [--output <file>]
    hrgate issue --session-id <id> --bpm <n> --threshold <n> [--user-key <key>]
    hrgate publish --session-id <id> --bpm <n> --threshold <n>
    hrgate verify --payload <file> --public-key <hex>
    hrgate bootstrap --user-key <key> --public-key <hex>
    hrgate serve [--host <host>] [--port <port>]

Hook commands write nothing to stdout. ``check`` exits 0 to allow and 2 to
block, with a one-line reason on stderr.
"""

import argparse
import json
import logging
import sys
from typing import IO, Dict, Optional, Sequence

from .config import API_TOKEN, GIT_REMOTE, LOG_JSON, LOG_LEVEL, SIGNING_KEY_PATH, TTL_SECONDS, load_scope_config
from .errors import HrGateError
from .gate import EXIT_BLOCK, HeartRateGate
from .logging_config import configure_logging, set_call_id
from .util import generate_call_id

logger = logging.getLogger(__name__)


def read_hook_input(stream: IO[str]) -> Dict[str, str]:
    """
    Parse the hook's stdin JSON.

    Unreadable input yields ``tool_name="unknown"`` and no ``tool_use_id``.
    """
    try:
        data = json.loads(stream.read() or "{}")
    except (ValueError, OSError):
        data = {}
    if not isinstance(data, dict):
        data = {}
    tool_name = data.get("tool_name")
    tool_use_id = data.get("tool_use_id")
    return {
        "tool_name": tool_name if isinstance(tool_name, str) and tool_name else "unknown",
        "tool_use_id": tool_use_id if isinstance(tool_use_id, str) and tool_use_id else None,
    }


def cmd_check(args, stdin: IO[str]) -> int:
    """Gate one tool call."""
    try:
        hook = read_hook_input(stdin)
        set_call_id(hook["tool_use_id"] or generate_call_id())
        decision = HeartRateGate(args.scope_root).check(hook["tool_name"], hook["tool_use_id"])
    except Exception as e:
        # the gate itself never raises; this covers construction and input handling
        print(f"hrgate: gate error ({e}); tools locked", file=sys.stderr)
        return EXIT_BLOCK
    if not decision.allowed:
        print(decision.message(), file=sys.stderr)
    return decision.exit_code


def cmd_record(args, stdin: IO[str]) -> int:
    """Record a completed tool call. Always succeeds."""
    try:
        hook = read_hook_input(stdin)
        HeartRateGate(args.scope_root).record_outcome(hook["tool_name"], hook["tool_use_id"])
    except Exception as e:
        logger.debug("outcome recording failed: %s", e)
    return 0


def cmd_sync(args) -> int:
    """Push the decision log to the stats ref."""
    from .stats_sync import run_sync

    result = run_sync(args.scope_root)
    if result.error:
        print(f"hrgate: stats sync failed: {result.error}", file=sys.stderr)
        return 1
    if result.synced:
        print(f"Synced {result.lines} entries ({result.object_id})", file=sys.stderr)
    return 0


def cmd_keygen(args) -> int:
    """Generate an Ed25519 key pair."""
    from .signing import generate_keypair, save_private_key

    key_pair = generate_keypair()
    if args.output:
        save_private_key(args.output, key_pair)
        print(f"Key saved to: {args.output}", file=sys.stderr)
        print(key_pair.public_key)
    else:
        print(json.dumps(key_pair.to_dict(), indent=2))
    return 0


def _issue_from_args(args):
    from .signing import issue, load_private_key

    key_pair = load_private_key(args.key_file)
    user_key = args.user_key or load_scope_config(args.scope_root).user_key
    return issue(
        user_key,
        args.session_id,
        args.bpm,
        args.threshold,
        args.ttl,
        key_pair.private_key,
    )


def cmd_issue(args) -> int:
    """Print a freshly signed payload."""
    signed = _issue_from_args(args)
    print(signed.to_json())
    return 0


def cmd_publish(args) -> int:
    """Sign a sample and publish it to the scope's signal ref."""
    from .publisher import PublishTarget, SignalPublisher
    from .signing import load_private_key
    from .transport import GitRefStore

    key_pair = load_private_key(args.key_file)
    scope = load_scope_config(args.scope_root)
    target = PublishTarget(args.scope_root, GitRefStore(args.scope_root, remote=args.remote), scope)
    publisher = SignalPublisher(key_pair.private_key, [target], ttl_seconds=args.ttl)
    report = publisher.submit(args.session_id, args.bpm, args.threshold)
    for name, error in report.failed.items():
        print(f"✗ {name}: {error}", file=sys.stderr)
    if not report.ok:
        return 1
    print(f"✓ published hr_ok={str(report.assertion.threshold_met).lower()} "
          f"exp_unix={report.assertion.expires_at_unix}", file=sys.stderr)
    return 0


def cmd_verify(args) -> int:
    """Verify a payload file."""
    from .assertion import SignedAssertion
    from .verifier import verify_full

    with open(args.payload, 'r', encoding='utf-8') as f:
        signed = SignedAssertion.from_json(f.read())
    public_key = args.public_key or load_scope_config(args.scope_root).public_key
    result = verify_full(signed, public_key)
    if result.valid:
        print("✓ VALID")
        return 0
    print(f"✗ INVALID: {result.reason.value}")
    if result.detail:
        print(f"  {result.detail}")
    return 1


def cmd_bootstrap(args) -> int:
    """Write the scope files."""
    from .bootstrap import write_bootstrap_files

    written = write_bootstrap_files(
        args.scope_root, args.user_key, args.public_key, ttl_seconds=args.ttl, force=args.force
    )
    for path in written:
        print(f"wrote {path}", file=sys.stderr)
    if not written:
        print("nothing to do (use --force to overwrite)", file=sys.stderr)
    return 0


def cmd_serve(args) -> int:
    """Run the signer service."""
    import uvicorn

    from .publisher import PublishTarget, SignalPublisher
    from .service import create_app
    from .signing import load_private_key
    from .transport import GitRefStore

    key_pair = load_private_key(args.key_file)
    scope = load_scope_config(args.scope_root)
    target = PublishTarget(args.scope_root, GitRefStore(args.scope_root, remote=args.remote), scope)
    publisher = SignalPublisher(key_pair.private_key, [target], ttl_seconds=args.ttl)
    app = create_app(publisher, api_token=args.token)
    uvicorn.run(app, host=args.host, port=args.port)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="hrgate",
        description="Heart-rate gated tool actions",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  hrgate keygen -o secrets/hrgate_signing_key.json
  hrgate bootstrap --user-key alice --public-key <hex>
  hrgate publish --session-id run-1 --bpm 142 --threshold 120
  echo '{"tool_name":"Bash"}' | hrgate check
        """
    )
    parser.add_argument("--scope-root", default=".", help="Gated repository root (default: .)")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    subparsers.add_parser("check", help="PreToolUse hook: gate a tool call")
    subparsers.add_parser("record", help="PostToolUse hook: record an outcome")
    subparsers.add_parser("sync", help="Push the decision log to the stats ref")

    keygen_parser = subparsers.add_parser("keygen", help="Generate signing key pair")
    keygen_parser.add_argument("-o", "--output", help="Output file for the key pair")

    def add_sample_args(p):
        p.add_argument("-s", "--session-id", required=True, help="Workout session id")
        p.add_argument("-b", "--bpm", type=int, required=True, help="Current heart rate")
        p.add_argument("-t", "--threshold", type=int, required=True, help="Threshold bpm")
        p.add_argument("--ttl", type=int, default=TTL_SECONDS, help="Freshness window in seconds")
        p.add_argument("-k", "--key-file", default=SIGNING_KEY_PATH, help="Signing key file")

    issue_parser = subparsers.add_parser("issue", help="Print a signed payload")
    add_sample_args(issue_parser)
    issue_parser.add_argument("-u", "--user-key", help="Subject key (default: from scope config)")

    publish_parser = subparsers.add_parser("publish", help="Sign and publish a sample")
    add_sample_args(publish_parser)
    publish_parser.add_argument("-r", "--remote", default=GIT_REMOTE, help="Git remote")

    verify_parser = subparsers.add_parser("verify", help="Verify a payload file")
    verify_parser.add_argument("-p", "--payload", required=True, help="Payload JSON file")
    verify_parser.add_argument("--public-key", help="Hex public key (default: from scope config)")

    bootstrap_parser = subparsers.add_parser("bootstrap", help="Write scope files")
    bootstrap_parser.add_argument("-u", "--user-key", required=True, help="Subject key")
    bootstrap_parser.add_argument("--public-key", required=True, help="Hex public key")
    bootstrap_parser.add_argument("--ttl", type=int, default=TTL_SECONDS, help="Freshness window in seconds")
    bootstrap_parser.add_argument("-f", "--force", action="store_true", help="Overwrite existing files")

    serve_parser = subparsers.add_parser("serve", help="Run the signer service")
    serve_parser.add_argument("--host", default="127.0.0.1")
    serve_parser.add_argument("--port", type=int, default=8080)
    serve_parser.add_argument("--token", default=API_TOKEN, help="Bearer token (default: $HRGATE_API_TOKEN)")
    serve_parser.add_argument("--ttl", type=int, default=TTL_SECONDS, help="Freshness window in seconds")
    serve_parser.add_argument("-k", "--key-file", default=SIGNING_KEY_PATH, help="Signing key file")
    serve_parser.add_argument("-r", "--remote", default=GIT_REMOTE, help="Git remote")

    return parser


def main(argv: Optional[Sequence[str]] = None, stdin: Optional[IO[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(level=LOG_LEVEL, json_format=LOG_JSON)
    stdin = stdin if stdin is not None else sys.stdin

    if args.command == "check":
        return cmd_check(args, stdin)
    if args.command == "record":
        return cmd_record(args, stdin)

    commands = {
        "sync": cmd_sync,
        "keygen": cmd_keygen,
        "issue": cmd_issue,
        "publish": cmd_publish,
        "verify": cmd_verify,
        "bootstrap": cmd_bootstrap,
        "serve": cmd_serve,
    }
    command = commands.get(args.command)
    if command is None:
        parser.print_help()
        return 1
    try:
        return command(args)
    except (HrGateError, ValueError, OSError) as e:
        print(f"hrgate: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
