"""Domain layer: errors and schemas."""

from .errors import (
    ConfigurationError,
    ErrorCodes,
    ListingError,
    ManifestConsistencyError,
    MirrorLockError,
    PipelineError,
    RemoteDeleteError,
    RemoteDownloadError,
    RemoteQueryError,
    TransferError,
)
from .schemas import (
    CleanupMode,
    CleanupResult,
    ExportResult,
    ItemFailure,
    ManifestBuildResult,
    ManifestEntry,
    MetaSidecar,
    RunLog,
    RunMode,
    SourceRecord,
)

__all__ = [
    "PipelineError",
    "ConfigurationError",
    "ListingError",
    "RemoteQueryError",
    "MirrorLockError",
    "TransferError",
    "RemoteDownloadError",
    "RemoteDeleteError",
    "ManifestConsistencyError",
    "ErrorCodes",
    "SourceRecord",
    "MetaSidecar",
    "ManifestEntry",
    "ItemFailure",
    "ExportResult",
    "ManifestBuildResult",
    "CleanupResult",
    "CleanupMode",
    "RunMode",
    "RunLog",
]
