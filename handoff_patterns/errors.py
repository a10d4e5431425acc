"""
Error types for the pattern analysis pipeline.

Request-level errors carry the HTTP status the trigger endpoint answers with.
The recoverable kinds (extraction, correlation, persistence, per-patient) are
raised and caught inside the pipeline so one bad record never aborts a run.
"""


class PatternAnalysisError(Exception):
    """Base class for all pipeline errors."""

    status_code: int = 500
    public_message: str = "Internal server error"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.public_message)
        self.message = message or self.public_message


class ConfigurationError(PatternAnalysisError):
    status_code = 500
    public_message = "Missing required configuration"


class AuthenticationError(PatternAnalysisError):
    status_code = 401
    public_message = "Authentication failed"


class AuthorizationError(PatternAnalysisError):
    status_code = 403
    public_message = "Unauthorized access to patient data"


class RequestValidationError(PatternAnalysisError):
    status_code = 400
    public_message = "Invalid request"


class ExtractionError(PatternAnalysisError):
    """A single note's concern extraction failed unrecoverably."""


class CorrelationReadError(PatternAnalysisError):
    """An event query backing the correlator failed."""


class PersistenceError(PatternAnalysisError):
    """A pattern or mention write failed."""


class PatientAnalysisError(PatternAnalysisError):
    """Analysis of one patient failed and was isolated from the run."""
