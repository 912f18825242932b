"""
Error taxonomy for the structured inference pipeline.

Errors are grouped by what the caller can do about them:

- ``model_unreachable``: the inference endpoint could not be reached or
  answered with a failure status. Safe to retry with backoff.
- ``model_output_unusable``: the endpoint answered but nothing usable could
  be recovered from the answer. Retrying the same prompt rarely helps.
- ``unknown_patient``: the caller referenced a patient that does not exist.

The pipeline never retries internally; these errors propagate to the entry
point unchanged.
"""

from typing import Any


class PipelineError(Exception):
    """Base error for inference pipeline operations."""

    error_code = "PIPELINE_ERROR"
    category = "pipeline_error"
    retryable = False

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_details(self) -> dict[str, Any]:
        """Structured details safe to return to API callers."""
        return {"category": self.category, "retryable": self.retryable}


class TransportError(PipelineError):
    """Raised when the inference endpoint is unavailable, times out or returns a failure status."""

    error_code = "MODEL_UNREACHABLE"
    category = "model_unreachable"
    retryable = True

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code

    def to_details(self) -> dict[str, Any]:
        details = super().to_details()
        if self.status_code is not None:
            details["status_code"] = self.status_code
        return details


class UnusableOutputError(PipelineError):
    """The endpoint responded but its output could not be turned into a result."""

    error_code = "MODEL_OUTPUT_UNUSABLE"
    category = "model_output_unusable"


class MalformedResponseError(UnusableOutputError):
    """Raised when the response envelope has no candidate or content."""

    error_code = "MALFORMED_RESPONSE"


class ExtractionError(UnusableOutputError):
    """Raised when no JSON could be recovered from the model text."""

    error_code = "EXTRACTION_FAILED"

    def __init__(self, message: str, raw_text: str):
        super().__init__(message)
        self.raw_text = raw_text


class SchemaValidationError(UnusableOutputError):
    """Raised when recovered JSON does not have the structure of the target shape."""

    error_code = "SCHEMA_VALIDATION_FAILED"

    def __init__(self, message: str, parsed: Any, errors: list[dict[str, Any]] | None = None):
        super().__init__(message)
        self.parsed = parsed
        self.errors = errors or []

    def to_details(self) -> dict[str, Any]:
        details = super().to_details()
        details["fields"] = [".".join(str(p) for p in e.get("loc", ())) for e in self.errors]
        return details


class PatientReferenceError(PipelineError):
    """Raised when an artifact references a patient identifier that does not exist."""

    error_code = "UNKNOWN_PATIENT"
    category = "unknown_patient"

    def __init__(self, patient_id: str):
        super().__init__(f"Patient '{patient_id}' does not exist")
        self.patient_id = patient_id


class DuplicatePatientError(Exception):
    """Raised when creating a patient whose identifier is already taken."""

    def __init__(self, patient_id: str):
        super().__init__(f"Patient '{patient_id}' already exists")
        self.patient_id = patient_id


class InferenceConfigurationError(Exception):
    """Raised when the inference client cannot be built from configuration."""


class SessionBusyError(Exception):
    """Raised when a chat session already has a call in flight."""

    def __init__(self, session_id: str):
        super().__init__(f"Chat session '{session_id}' is awaiting a response")
        self.session_id = session_id


class SessionNotFoundError(Exception):
    """Raised when a chat session id is unknown."""

    def __init__(self, session_id: str):
        super().__init__(f"Chat session '{session_id}' not found")
        self.session_id = session_id
