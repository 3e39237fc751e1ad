"""Flydrive exceptions.

Every driver translates its backend's native failures into one of the
kinds below. The native error is kept on ``original`` and chained as
``__cause__``.
"""


class FlydriveError(Exception):
    """Base exception for flydrive."""

    def __init__(
        self,
        message: str,
        path: str | None = None,
        original: BaseException | None = None,
    ) -> None:
        super().__init__(message)
        self.path = path
        self.original = original


class ConfigError(FlydriveError):
    """Configuration error, raised when a disk or driver is set up."""

    pass


class FileNotFound(FlydriveError):
    """The object does not exist."""

    def __init__(self, path: str, original: BaseException | None = None) -> None:
        super().__init__(f"File not found: {path}", path, original)


class WriteError(FlydriveError):
    """Backend failed while writing, copying or deleting."""

    pass


class DecodeError(FlydriveError):
    """Content could not be decoded with the requested encoding."""

    def __init__(
        self,
        path: str,
        encoding: str,
        original: BaseException | None = None,
    ) -> None:
        super().__init__(f"Cannot decode {path} as {encoding}", path, original)
        self.encoding = encoding


class InvalidPath(FlydriveError):
    """Path escapes the root or violates backend key constraints."""

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"Invalid path {path!r}: {reason}", path)
        self.reason = reason


class BackendUnavailable(FlydriveError):
    """Backend could not be reached or refused a read."""

    pass


class SigningError(FlydriveError):
    """Backend could not produce a signed URL."""

    pass


class PartialMoveError(FlydriveError):
    """Copy succeeded but deleting the source failed.

    The content now exists at both ``source`` and ``destination``.
    """

    def __init__(
        self,
        source: str,
        destination: str,
        original: BaseException | None = None,
    ) -> None:
        super().__init__(
            f"Moved {source} to {destination} but could not delete the source",
            source,
            original,
        )
        self.source = source
        self.destination = destination
        self.copied = True
