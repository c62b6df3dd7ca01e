"""
Excepciones del job.
"""
from results_sync.shared.exceptions.base import AppException
from results_sync.shared.exceptions.sync import (
    DestinationApiError,
    DuplicateNaturalKeyError,
    ExternalApiError,
    MalformedPayloadError,
    SnapshotReadError,
    SourceApiError,
    SyncConfigError,
    TruncatedListingError,
)

__all__ = [
    "AppException",
    "DestinationApiError",
    "DuplicateNaturalKeyError",
    "ExternalApiError",
    "MalformedPayloadError",
    "SnapshotReadError",
    "SourceApiError",
    "SyncConfigError",
    "TruncatedListingError",
]
