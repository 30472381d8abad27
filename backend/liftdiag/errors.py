"""Exception taxonomy for the diagnostic pipeline."""


class DiagnosticError(Exception):
    """Base class for every failure the pipeline surfaces to callers."""

    status_code = 500
    summary = "Diagnostic request failed"


class ConfigurationError(DiagnosticError):
    """A required credential or endpoint is missing. Never retried."""

    summary = "Service is not configured"


class UpstreamError(DiagnosticError):
    """The analytics backend could not be reached or answered with an error."""

    status_code = 502
    summary = "Analytics backend unavailable"


class FilterIntegrityError(DiagnosticError):
    """
    The analytics backend returned rows for other units, or a batch at the row
    cap. Always fatal: the data may look filtered while being incomplete.
    """

    status_code = 502
    summary = "Analytics backend returned unfiltered or truncated data"

    def __init__(self, message: str, *, kind: str = "", unit_id: str = "",
                 sampled: int = 0, mismatched: int = 0, row_count: int = 0):
        super().__init__(message)
        self.kind = kind
        self.unit_id = unit_id
        self.sampled = sampled
        self.mismatched = mismatched
        self.row_count = row_count


class GenerationError(DiagnosticError):
    """The text-generation backend failed."""

    status_code = 502
    summary = "Failed to generate diagnostic analysis"


class ModelUnavailableError(GenerationError):
    """The requested model does not exist or is not enabled for this key."""


class QuotaExhaustedError(GenerationError):
    """The credential has no quota left; other models share it."""

    status_code = 429
    summary = "Text-generation quota exceeded"


class MalformedResponseError(GenerationError):
    """The completion was not valid JSON."""

    def __init__(self, message: str, preview: str = ""):
        super().__init__(message)
        self.preview = preview
