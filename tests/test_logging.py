"""
hrgate Logging Test Suite

A hook's stderr is read by the agent, so at the default level a gate call
may write nothing there except the CLI's one-line reason.
"""

import io
import json
import shutil
import tempfile
import unittest
from contextlib import redirect_stderr
from pathlib import Path

from hrgate.decision_log import DecisionLog
from hrgate.gate import GateReason, HeartRateGate
from hrgate.logging_config import audit_log, configure_logging
from hrgate.transport import InMemoryRefStore

from helpers import NOW, write_scope


class ExplodingStore(InMemoryRefStore):
    def fetch(self, ref, filename):
        raise RuntimeError("boom")


class TestAuditLevels(unittest.TestCase):
    """Test that audit events respect the configured level."""

    def tearDown(self):
        configure_logging(level="ERROR")

    def _emit(self, level):
        err = io.StringIO()
        with redirect_stderr(err):
            configure_logging(level=level)
            audit_log.gate_decision("Bash", False, "config_missing")
            audit_log.gate_decision("Bash", True)
        return err.getvalue()

    def test_suppressed_below_level(self):
        self.assertEqual(self._emit("ERROR"), "")

    def test_emitted_at_level(self):
        lines = self._emit("INFO").splitlines()
        self.assertEqual(len(lines), 2)
        first = json.loads(lines[0])
        self.assertEqual(first["event_type"], "GATE_DECISION")
        self.assertEqual(first["level"], "WARNING")
        self.assertEqual(first["reason"], "config_missing")

    def test_warning_level_drops_info(self):
        lines = self._emit("WARNING").splitlines()
        self.assertEqual(len(lines), 1)
        self.assertFalse(json.loads(lines[0])["allowed"])


class TestGateQuietAtDefaultLevel(unittest.TestCase):
    """Test that gate calls write nothing to stderr at ERROR."""

    def setUp(self):
        self.tmp = tempfile.mkdtemp()
        self.root = Path(self.tmp)
        write_scope(self.root)
        self.log = DecisionLog(self.root / "stats.jsonl")

    def tearDown(self):
        configure_logging(level="ERROR")
        shutil.rmtree(self.tmp, ignore_errors=True)

    def _check(self, store):
        gate = HeartRateGate(
            self.root, store=store, log=self.log,
            clock=lambda: NOW, dependency_check=lambda needs_git: [],
        )
        err = io.StringIO()
        with redirect_stderr(err):
            configure_logging(level="ERROR")
            decision = gate.check("Bash")
        return decision, err.getvalue()

    def test_block(self):
        decision, err = self._check(InMemoryRefStore())
        self.assertEqual(decision.reason, GateReason.SIGNAL_FETCH_FAILED)
        self.assertEqual(err, "")

    def test_gate_error_has_no_traceback(self):
        decision, err = self._check(ExplodingStore())
        self.assertEqual(decision.reason, GateReason.GATE_ERROR)
        self.assertEqual(err, "")


if __name__ == "__main__":
    unittest.main(verbosity=2)
