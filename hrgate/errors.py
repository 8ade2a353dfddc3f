"""
hrgate exception hierarchy.

Protocol outcomes (expired, mismatched, below threshold) are reason codes,
not exceptions. These exceptions only travel between library layers; the
gate maps every one of them to a blocking decision.
"""


class HrGateError(Exception):
    """Base class for all hrgate errors."""


class ConfigError(HrGateError):
    """Scope configuration is missing, unreadable, or incomplete."""


class TransportError(HrGateError):
    """A ref store publish or fetch failed (including 'ref not found')."""


class MalformedPayloadError(HrGateError):
    """A signal payload is missing a field or carries a wrongly typed one."""

    def __init__(self, message: str, field: str = None):
        self.field = field
        super().__init__(message)


class SigningError(HrGateError):
    """Key material could not be used to produce a signature."""
