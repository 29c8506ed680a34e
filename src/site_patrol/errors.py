"""Error taxonomy for stable module boundaries."""


class PatrolError(Exception):
    """Base exception for site-patrol."""


class ConfigError(PatrolError):
    """Raised when configuration is invalid or missing."""


class StoreError(PatrolError):
    """Raised when a target or state document cannot be read or written."""


class BrowserError(PatrolError):
    """Raised for browser/session management failures."""


class SchedulerError(PatrolError):
    """Raised for wake loop and trigger coordination failures."""


class DiagnosticsError(PatrolError):
    """Raised for event log and redaction failures."""


class RunFailure(PatrolError):
    """Base for failures that end one target run and are recorded in its state."""


class ConfigInconsistency(RunFailure):
    """Raised when a scheduled target id is missing from the target config."""


class SessionTimeout(RunFailure):
    """Raised when a render session does not report load completion in time."""


class HandshakeFailure(RunFailure):
    """Raised when the collect command cannot be delivered to the page."""


class HandshakeTimeout(HandshakeFailure):
    """Raised when no collect response arrives before the handshake deadline."""


class ExtractionError(RunFailure):
    """Raised when the page collector replies with an explicit error."""


class SubmissionValidationError(RunFailure):
    """Raised when the submission endpoint fails the scheme allow-list."""


class SubmissionNetworkError(RunFailure):
    """Raised for transport errors and non-2xx submission responses."""
