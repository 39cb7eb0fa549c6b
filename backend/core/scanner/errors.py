"""Scan pipeline exceptions."""

from typing import List, Optional


class ScanError(Exception):
    """Base class for scan pipeline errors."""


class ValidationError(ScanError):
    """A scan root was rejected before any directory enumeration."""

    def __init__(
        self,
        message: str,
        recommendation: Optional[str] = None,
        detected_collections: Optional[List[str]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.recommendation = recommendation
        self.detected_collections = detected_collections or []

    def to_dict(self) -> dict:
        data = {"message": self.message}
        if self.recommendation:
            data["recommendation"] = self.recommendation
        if self.detected_collections:
            data["detected_collections"] = self.detected_collections
        return data


class PathNotFoundError(ValidationError):
    """The scan root does not exist or is not a directory."""


class ProviderNotConfiguredError(ScanError):
    """Metadata enrichment was required but no provider is configured."""


class ScanJobNotFoundError(ScanError):
    def __init__(self, scan_job_id: int):
        super().__init__(f"Scan job {scan_job_id} not found")
        self.scan_job_id = scan_job_id


class ScanJobStateError(ScanError):
    """The requested operation is not valid for the job's current status."""


class FatalScanError(ScanError):
    """Persistence failed in a way that leaves no safe continuation."""


class ScanCancelled(ScanError):
    """Raised inside a running scan when cancellation was requested."""
