"""
Error taxonomy for the tabular import pipeline.

Validation and parse errors are raised at the file-select boundary, transport
errors by the collaborator gateway, and job failures once a backend job
reports a terminal ``failed`` status.
"""

from typing import Any, Optional


class ImportPipelineError(Exception):
    """Base class for all import pipeline errors."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(ImportPipelineError):
    """Uploaded file was rejected before any decode attempt."""


class ParseError(ImportPipelineError):
    """File is corrupt, or contains no rows after decoding and filtering."""


class ReadError(ParseError):
    """File could not be read at all."""


class TransportError(ImportPipelineError):
    """Network failure talking to a backend collaborator."""

    def __init__(self, message: str, status_code: Optional[int] = None,
                 payload: Optional[Any] = None):
        super().__init__(message)
        self.status_code = status_code
        self.payload = payload

    def __str__(self) -> str:
        if self.status_code:
            return f"{self.message} (HTTP {self.status_code})"
        return self.message


class JobFailure(ImportPipelineError):
    """Backend job finished with status ``failed``."""

    def __init__(self, results):
        super().__init__(results.error_message or 'The import process failed. Please try again.')
        self.results = results
