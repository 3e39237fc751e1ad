"""Protocol interfaces for pluggable storage drivers."""

from flydrive.protocols.storage import (
    Content,
    ContentResult,
    DeleteResult,
    ExistsResult,
    FileEntry,
    SignedUrlResult,
    StatResult,
    Storage,
)

__all__ = [
    "Content",
    "ContentResult",
    "DeleteResult",
    "ExistsResult",
    "FileEntry",
    "SignedUrlResult",
    "StatResult",
    "Storage",
]
