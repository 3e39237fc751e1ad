"""Flydrive - one async API over local, S3 and GCS blob storage."""

from flydrive.config import (
    DiskConfig,
    GCSDiskConfig,
    LocalDiskConfig,
    S3DiskConfig,
    StorageConfig,
)
from flydrive.exceptions import (
    BackendUnavailable,
    ConfigError,
    DecodeError,
    FileNotFound,
    FlydriveError,
    InvalidPath,
    PartialMoveError,
    SigningError,
    WriteError,
)
from flydrive.manager import StorageManager
from flydrive.observability import configure_logging, get_logger
from flydrive.protocols import (
    ContentResult,
    DeleteResult,
    ExistsResult,
    FileEntry,
    SignedUrlResult,
    StatResult,
    Storage,
)
from flydrive.streams import ByteStream, EntryStream

__version__ = "0.1.0"
__all__ = [
    # Core
    "StorageManager",
    "Storage",
    "ByteStream",
    "EntryStream",
    # Results
    "ContentResult",
    "DeleteResult",
    "ExistsResult",
    "FileEntry",
    "SignedUrlResult",
    "StatResult",
    # Configuration
    "DiskConfig",
    "GCSDiskConfig",
    "LocalDiskConfig",
    "S3DiskConfig",
    "StorageConfig",
    # Errors
    "BackendUnavailable",
    "ConfigError",
    "DecodeError",
    "FileNotFound",
    "FlydriveError",
    "InvalidPath",
    "PartialMoveError",
    "SigningError",
    "WriteError",
    # Observability
    "configure_logging",
    "get_logger",
]
