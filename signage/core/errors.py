"""
Error taxonomy shared by the server plugins and the device agent.
Each error carries the HTTP status the API layer answers with, plus optional
details that are merged into the JSON error body.
"""
from typing import Any, Dict, Optional


class SignageError(Exception):
    """Base error; every failure in this package is reported to its caller, never fatal."""

    status_code = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        body = {"success": False, "message": self.message}
        body.update(self.details)
        return body


class ValidationError(SignageError):
    """Malformed or incomplete input. Not retried."""

    status_code = 400


class EmptyBatchError(ValidationError):
    """An upload parsed to zero usable schedule rows."""


class NotFoundError(SignageError):
    """No record matches. A normal outcome, not a failure."""

    status_code = 404


class TransientIOError(SignageError):
    """Storage or network hiccup. The device agent retries on its next poll."""

    status_code = 503


class InsertError(SignageError):
    """An insert batch failed part way through an ingestion.

    Batches committed before the failure stay committed unless the ingestion
    ran with compensation, so records_committed may be non-zero.
    """

    status_code = 500

    def __init__(self, label: str, records_committed: int, records_requested: int, cause: Exception):
        super().__init__(
            f"Failed to insert records for '{label}': {cause}",
            details={
                "label": label,
                "recordsInserted": records_committed,
                "recordsRequested": records_requested,
            },
        )
        self.label = label
        self.records_committed = records_committed
        self.records_requested = records_requested
        self.cause = cause


class LocalStoreError(SignageError):
    """The device's local store exists but cannot be read. Nothing is overwritten until an explicit reset."""

    def __init__(self, path: str, cause: Exception):
        super().__init__(f"Local store {path} is unreadable: {cause}", details={"path": path})
        self.path = path
        self.cause = cause
