"""
hrgate CLI Test Suite

Hook commands are exercised the way the agent runs them: hook JSON on
stdin, decision in the exit code, diagnostics on stderr only.
"""

import io
import json
import shutil
import tempfile
import unittest
from contextlib import redirect_stderr, redirect_stdout
from pathlib import Path

from hrgate.cli import main, read_hook_input
from hrgate.config import DISABLE_FILENAME, STATS_LOG_RELPATH
from hrgate.decision_log import DecisionLog
from hrgate.signing import save_private_key

from helpers import GIT_AVAILABLE, RFC8032_PUBLIC, fixed_key_pair, init_git_pair, make_signal, write_scope


def run(argv, stdin_text=""):
    out, err = io.StringIO(), io.StringIO()
    with redirect_stdout(out), redirect_stderr(err):
        code = main(argv, stdin=io.StringIO(stdin_text))
    return code, out.getvalue(), err.getvalue()


class TestReadHookInput(unittest.TestCase):

    def test_parses_fields(self):
        hook = read_hook_input(io.StringIO('{"tool_name":"Bash","tool_use_id":"toolu_1","x":1}'))
        self.assertEqual(hook, {"tool_name": "Bash", "tool_use_id": "toolu_1"})

    def test_garbage(self):
        for text in ("", "not json", "[1]", '{"tool_name": 5}'):
            hook = read_hook_input(io.StringIO(text))
            self.assertEqual(hook, {"tool_name": "unknown", "tool_use_id": None}, msg=text)


class TestCli(unittest.TestCase):
    """Test the command line entry points."""

    def setUp(self):
        self.tmp = tempfile.mkdtemp()
        self.root = Path(self.tmp)
        self.key_file = self.root / "signing.json"
        save_private_key(self.key_file, fixed_key_pair())

    def tearDown(self):
        shutil.rmtree(self.tmp, ignore_errors=True)

    def test_check_disabled_allows_silently(self):
        (self.root / DISABLE_FILENAME).touch()
        code, out, err = run(["--scope-root", self.tmp, "check"], '{"tool_name":"Bash"}')
        self.assertEqual(code, 0)
        self.assertEqual(out, "")
        self.assertEqual(err, "")

    def test_check_blocks_without_config(self):
        code, out, err = run(["--scope-root", self.tmp, "check"], '{"tool_name":"Bash"}')
        self.assertEqual(code, 2)
        self.assertEqual(out, "")
        self.assertEqual(len(err.splitlines()), 1)
        self.assertTrue(err.startswith("hrgate: "))
        self.assertIn("tools locked", err)

    def test_check_logs_attempt(self):
        (self.root / ".git").mkdir()
        run(["--scope-root", self.tmp, "check"], '{"tool_name":"Bash","tool_use_id":"toolu_7"}')
        entry = DecisionLog(self.root / STATS_LOG_RELPATH).entries()[0]
        self.assertEqual(entry["tool_use_id"], "toolu_7")
        self.assertFalse(entry["allowed"])

    def test_record_always_succeeds(self):
        code, out, _ = run(["--scope-root", self.tmp, "record"], "garbage")
        self.assertEqual(code, 0)
        self.assertEqual(out, "")

    def test_record_logs_outcome(self):
        (self.root / ".git").mkdir()
        code, _, _ = run(["--scope-root", self.tmp, "record"], '{"tool_name":"Edit","tool_use_id":"t1"}')
        self.assertEqual(code, 0)
        entry = DecisionLog(self.root / STATS_LOG_RELPATH).entries()[0]
        self.assertEqual(entry, {**entry, "type": "outcome", "tool": "Edit", "tool_use_id": "t1"})

    def test_keygen(self):
        target = self.root / "new.json"
        code, out, _ = run(["keygen", "-o", str(target)])
        self.assertEqual(code, 0)
        stored = json.loads(target.read_text())
        self.assertEqual(out.strip(), stored["public_key"])

    def test_keygen_stdout(self):
        code, out, _ = run(["keygen"])
        self.assertEqual(code, 0)
        self.assertEqual(json.loads(out)["algorithm"], "Ed25519")

    def test_issue_and_verify(self):
        code, out, _ = run([
            "issue", "-u", "alice", "-s", "sess-1", "-b", "150", "-t", "120", "-k", str(self.key_file),
        ])
        self.assertEqual(code, 0)
        payload = self.root / "payload.json"
        payload.write_text(out)

        code, out, _ = run(["verify", "-p", str(payload), "--public-key", RFC8032_PUBLIC])
        self.assertEqual(code, 0)
        self.assertIn("VALID", out)

        tampered = json.loads(payload.read_text())
        tampered["bpm"] = 200
        payload.write_text(json.dumps(tampered))
        code, out, _ = run(["verify", "-p", str(payload), "--public-key", RFC8032_PUBLIC])
        self.assertEqual(code, 1)
        self.assertIn("invalid_signature", out)

    def test_issue_user_key_from_scope(self):
        write_scope(self.root, user_key="carol")
        code, out, _ = run([
            "--scope-root", self.tmp, "issue", "-s", "s", "-b", "1", "-t", "2", "-k", str(self.key_file),
        ])
        self.assertEqual(code, 0)
        self.assertEqual(json.loads(out)["user_key"], "carol")

    def test_verify_expired(self):
        payload = self.root / "payload.json"
        payload.write_text(make_signal().to_json())
        code, out, _ = run(["verify", "-p", str(payload), "--public-key", RFC8032_PUBLIC])
        self.assertEqual(code, 1)
        self.assertIn("signal_expired", out)

    def test_missing_key_file(self):
        code, _, err = run(["issue", "-u", "a", "-s", "s", "-b", "1", "-t", "1", "-k", str(self.root / "nope")])
        self.assertEqual(code, 1)
        self.assertIn("signing key", err)

    def test_bootstrap(self):
        code, _, err = run(["--scope-root", self.tmp, "bootstrap", "-u", "alice", "--public-key", RFC8032_PUBLIC])
        self.assertEqual(code, 0)
        self.assertTrue((self.root / "hrgate.config.json").exists())
        code, _, err = run(["--scope-root", self.tmp, "bootstrap", "-u", "alice", "--public-key", RFC8032_PUBLIC])
        self.assertIn("nothing to do", err)

    def test_bootstrap_invalid_user_key(self):
        code, _, err = run(["--scope-root", self.tmp, "bootstrap", "-u", "../x", "--public-key", RFC8032_PUBLIC])
        self.assertEqual(code, 1)

    def test_sync_with_empty_log(self):
        code, _, _ = run(["--scope-root", self.tmp, "sync"])
        self.assertEqual(code, 0)

    def test_no_command(self):
        code, out, _ = run([])
        self.assertEqual(code, 1)
        self.assertIn("usage", out)


@unittest.skipUnless(GIT_AVAILABLE, "git not installed")
class TestCliOverGit(unittest.TestCase):
    """Publish and check through a real git remote."""

    def setUp(self):
        self.tmp = tempfile.mkdtemp()
        self.work = init_git_pair(self.tmp)
        self.key_file = Path(self.tmp) / "signing.json"
        save_private_key(self.key_file, fixed_key_pair())
        run(["--scope-root", str(self.work), "bootstrap", "-u", "alice", "--public-key", RFC8032_PUBLIC])

    def tearDown(self):
        shutil.rmtree(self.tmp, ignore_errors=True)

    def _publish(self, bpm):
        return run([
            "--scope-root", str(self.work), "publish",
            "-s", "sess-1", "-b", str(bpm), "-t", "120", "-k", str(self.key_file),
        ])

    def _check(self):
        return run(["--scope-root", str(self.work), "check"], '{"tool_name":"Bash","tool_use_id":"t1"}')

    def test_no_signal_blocks(self):
        code, _, err = self._check()
        self.assertEqual(code, 2)
        self.assertIn("could not fetch", err)

    def test_publish_then_check(self):
        code, _, _ = self._publish(150)
        self.assertEqual(code, 0)
        code, out, err = self._check()
        self.assertEqual((code, out, err), (0, "", ""))

    def test_below_threshold_blocks(self):
        self._publish(100)
        code, _, err = self._check()
        self.assertEqual(code, 2)
        self.assertIn("heart rate below threshold", err)

    def test_sync_pushes_stats(self):
        self._publish(150)
        self._check()
        code, _, _ = run(["--scope-root", str(self.work), "sync"])
        self.assertEqual(code, 0)
        self.assertEqual(DecisionLog(self.work / STATS_LOG_RELPATH).read_bytes(), b"")


if __name__ == "__main__":
    unittest.main(verbosity=2)
