from __future__ import annotations


class ChunkTransmissionError(RuntimeError):
    """A single chunk request failed in a way that is worth retrying."""


class StructuralUploadError(RuntimeError):
    """Retries for one request are exhausted."""

    def __init__(self, message: str, last_error: Exception | None = None) -> None:
        super().__init__(message)
        self.last_error = last_error


class UploadRejected(RuntimeError):
    """The server refused the upload; retrying will not help."""

    def __init__(self, status_code: int, detail: str) -> None:
        super().__init__(f"Upload rejected ({status_code}): {detail}")
        self.status_code = status_code
        self.detail = detail


class ResumeStateInvalid(ValueError):
    """Persisted resume state cannot be used for this file."""


class UploadInProgress(RuntimeError):
    """Another live client holds the lease for this upload slot."""


class InvalidSessionTransition(ValueError):
    pass


class StallTimeout(RuntimeError):
    """No progress was received for a processing upload within the timeout."""
