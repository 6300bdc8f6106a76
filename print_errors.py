"""
Exceptions raised while encoding print specs and running report jobs.

Exception Hierarchy:
    PrintEncoderError (base)
    ├── InvalidColorError            - Malformed colour (aborts one symbolizer)
    ├── UnsupportedGeometryError     - Geometry type has no print style category
    ├── MissingMatrixDescriptorError - Tiled source without a matrix set (skips layer)
    └── ReportError                  - Report job failed (surfaced to the caller)
        ├── SubmissionError          - POST of the spec was not accepted
        ├── ReportFailedError        - Print service reported an error for the job
        ├── ReportTimeoutError       - Job not done before the timeout
        └── ReportCancelledError     - Job cancelled while waiting

Usage:
    Encoding errors are isolated per feature or per layer by the encoders.
    Report errors are raised from ReportClient and never swallowed.
"""

from typing import Optional, Dict, Any


class PrintEncoderError(Exception):
    """
    Base exception for all print encoding and report errors.

    Callers can catch every error of this project with a single except
    clause.
    """

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        """
        Args:
            message: Human-readable error message
            details: Optional dictionary with additional context for debugging
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


# =============================================================================
# ENCODING ERRORS - one symbolizer, feature or layer is dropped
# =============================================================================

class InvalidColorError(PrintEncoderError, ValueError):
    """A colour could not be parsed or has components outside 0-255."""

    def __init__(self, color: Any):
        super().__init__(f'"{color}" is not a valid RGB color', {"color": color})
        self.color = color


class UnsupportedGeometryError(PrintEncoderError):
    """The geometry type has no polygon, line or point style category."""

    def __init__(self, geometry_type: str):
        super().__init__(
            f"Unsupported geometry type for print styles: {geometry_type}",
            {"geometry_type": geometry_type},
        )
        self.geometry_type = geometry_type


class MissingMatrixDescriptorError(PrintEncoderError):
    """A tiled source does not expose the tile matrix set description."""

    def __init__(self, message: str = "Tiled source has no matrix set description",
                 layer_name: Optional[str] = None):
        details = {"layer": layer_name} if layer_name else None
        super().__init__(message, details)
        self.layer_name = layer_name


# =============================================================================
# REPORT ERRORS - the current report job fails, caller decides what to do
# =============================================================================

class ReportError(PrintEncoderError):
    """Base class for report lifecycle failures."""

    def __init__(self, message: str, ref: Optional[str] = None,
                 details: Optional[Dict[str, Any]] = None):
        details = dict(details or {})
        if ref is not None:
            details.setdefault("ref", ref)
        super().__init__(message, details)
        self.ref = ref


class SubmissionError(ReportError):
    """The print service did not accept the spec."""

    def __init__(self, message: str, status_code: Optional[int] = None,
                 response_text: Optional[str] = None):
        details = {}
        if status_code is not None:
            details["status_code"] = status_code
        if response_text:
            details["response"] = response_text[:200]
        super().__init__(message, details=details)
        self.status_code = status_code
        self.response_text = response_text


class ReportFailedError(ReportError):
    """The status endpoint reported an application-level error."""

    def __init__(self, error: str, ref: Optional[str] = None):
        super().__init__(f"Print failed: {error}", ref=ref)
        self.error = error


class ReportTimeoutError(ReportError, TimeoutError):
    """The report was not done before the timeout elapsed."""

    def __init__(self, timeout_seconds: float, ref: Optional[str] = None):
        super().__init__(
            f"Print duration exceeded {timeout_seconds}s",
            ref=ref,
            details={"timeout_seconds": timeout_seconds},
        )
        self.timeout_seconds = timeout_seconds


class ReportCancelledError(ReportError):
    """The report was cancelled while waiting for it."""

    def __init__(self, ref: Optional[str] = None):
        super().__init__("Print cancelled", ref=ref)
