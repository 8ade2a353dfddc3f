"""
Logging configuration for hrgate.

Provides structured JSON logging for gate decisions, signal publishing and
stats synchronization. Log output always goes to stderr: when hrgate runs as
a tool hook, stdout belongs to the hosting agent.
"""

import json
import logging
import sys
import time
from contextvars import ContextVar
from typing import Optional

# Context variable for correlated call tracking (the host's tool_use_id)
call_id_var: ContextVar[str] = ContextVar('call_id', default='')


class StructuredFormatter(logging.Formatter):
    """
    JSON formatter for structured logging.

    One object per line, suitable for log aggregation or for grepping a
    hook's stderr after the fact.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": time.strftime('%Y-%m-%dT%H:%M:%SZ', time.gmtime(record.created)),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        call_id = call_id_var.get()
        if call_id:
            log_data["call_id"] = call_id

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        if hasattr(record, 'extra_fields'):
            log_data.update(record.extra_fields)

        return json.dumps(log_data)


class AuditLogger:
    """
    Specialized logger for protocol events.

    The decision log (hrgate.decision_log) is the durable record of gate
    attempts; these events are the operational trail for whoever runs the
    signer and the hooks.
    """

    def __init__(self, name: str = "hrgate.audit"):
        self._logger = logging.getLogger(name)

    def _log(self, level: int, event_type: str, **kwargs) -> None:
        """Internal logging method with extra fields."""
        if not self._logger.isEnabledFor(level):
            return

        extra = {
            "event_type": event_type,
            "call_id": call_id_var.get(),
            **kwargs
        }

        record = self._logger.makeRecord(
            self._logger.name,
            level,
            "",
            0,
            f"{event_type}: {kwargs.get('message', '')}",
            (),
            None
        )
        record.extra_fields = extra
        self._logger.handle(record)

    def gate_decision(
        self,
        tool: str,
        allowed: bool,
        reason: Optional[str] = None,
        gated: bool = True,
        bpm: Optional[int] = None
    ) -> None:
        """Log a gate allow/block decision."""
        level = logging.INFO if allowed else logging.WARNING
        self._log(
            level,
            "GATE_DECISION",
            tool=tool,
            allowed=allowed,
            reason=reason,
            gated=gated,
            bpm=bpm,
            message=f"{'allowed' if allowed else 'blocked'} {tool}"
        )

    def signal_published(
        self,
        target: str,
        ref: str,
        hr_ok: bool,
        bpm: int,
        exp_unix: int
    ) -> None:
        """Log a successful signal publish to one target."""
        self._log(
            logging.INFO,
            "SIGNAL_PUBLISHED",
            target=target,
            ref=ref,
            hr_ok=hr_ok,
            bpm=bpm,
            exp_unix=exp_unix,
            message=f"Published signal to {target}"
        )

    def signal_publish_failed(self, target: str, ref: str, error: str) -> None:
        """Log a failed signal publish to one target."""
        self._log(
            logging.ERROR,
            "SIGNAL_PUBLISH_FAILED",
            target=target,
            ref=ref,
            error=error,
            message=f"Publish to {target} failed"
        )

    def stats_synced(self, ref: str, lines: int) -> None:
        """Log a successful stats push."""
        self._log(
            logging.INFO,
            "STATS_SYNCED",
            ref=ref,
            lines=lines,
            message=f"Synced {lines} log lines"
        )

    def stats_sync_failed(self, ref: str, error: str) -> None:
        """Log a failed stats push; the local log is kept for the next trigger."""
        self._log(
            logging.WARNING,
            "STATS_SYNC_FAILED",
            ref=ref,
            error=error,
            message="Stats sync failed, log retained"
        )


def configure_logging(
    level: str = "INFO",
    json_format: bool = True
) -> None:
    """
    Configure logging for the application.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: Use JSON formatting
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    if json_format:
        formatter = StructuredFormatter()
    else:
        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )

    # stderr only: stdout is the hook's channel back to the host
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)


def set_call_id(call_id: str) -> str:
    """Set the correlated call id for the current context."""
    call_id_var.set(call_id)
    return call_id


# Global audit logger instance
audit_log = AuditLogger()
