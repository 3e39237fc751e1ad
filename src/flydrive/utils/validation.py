"""Input validation utilities."""

import re

from flydrive.exceptions import ConfigError, InvalidPath

# Disk names: alphanumeric, underscores, hyphens
# Must start with letter or number
SAFE_IDENTIFIER_RE = re.compile(r"^[a-zA-Z0-9][a-zA-Z0-9_-]*$")

# S3 and GCS both cap object names at 1024 bytes of UTF-8
MAX_KEY_BYTES = 1024


def validate_identifier(value: str, name: str = "identifier", max_length: int = 64) -> str:
    """Validate a safe identifier (disk name, driver name).

    Args:
        value: The identifier to validate
        name: Name of the field for error messages
        max_length: Maximum allowed length

    Returns:
        The validated identifier

    Raises:
        ConfigError: If the identifier is invalid
    """
    if not value:
        raise ConfigError(f"{name} cannot be empty")

    if len(value) > max_length:
        raise ConfigError(f"{name} exceeds maximum length of {max_length}")

    if not SAFE_IDENTIFIER_RE.match(value):
        raise ConfigError(
            f"Invalid {name}: must start with alphanumeric and contain only "
            "alphanumeric characters, underscores, and hyphens"
        )

    return value


def _check_characters(path: str) -> None:
    if "\x00" in path:
        raise InvalidPath(path, "contains a NUL byte")
    if "\\" in path:
        raise InvalidPath(path, "only '/' may be used as a separator")
    try:
        path.encode("utf-8")
    except UnicodeEncodeError:
        raise InvalidPath(path, "is not valid UTF-8")


def normalize_path(path: str) -> str:
    """Normalize an object path to its canonical key.

    Strips one leading '/', collapses '.' and empty segments, and resolves
    '..' against earlier segments. A '..' that would climb above the root
    is rejected.

    Raises:
        InvalidPath: If the path is empty, escapes the root, or cannot be
            used as a key
    """
    if not isinstance(path, str):
        raise InvalidPath(repr(path), "must be a string")

    _check_characters(path)

    relative = path[1:] if path.startswith("/") else path
    segments: list[str] = []
    for segment in relative.split("/"):
        if segment in ("", "."):
            continue
        if segment == "..":
            if not segments:
                raise InvalidPath(path, "escapes the root")
            segments.pop()
            continue
        segments.append(segment)

    key = "/".join(segments)
    if not key:
        raise InvalidPath(path, "is empty")
    if len(key.encode("utf-8")) > MAX_KEY_BYTES:
        raise InvalidPath(path, f"exceeds {MAX_KEY_BYTES} bytes")
    return key


def normalize_prefix(prefix: str | None) -> str:
    """Normalize a listing prefix.

    One leading '/' is stripped and '.' and empty segments are collapsed
    the way normalize_path does for keys. The last segment is kept as
    written because listing matches on raw string prefixes, so "docs/te"
    must still match "docs/test.txt".
    """
    if not prefix:
        return ""

    _check_characters(prefix)

    relative = prefix[1:] if prefix.startswith("/") else prefix
    *folders, partial = relative.split("/")
    if ".." in folders or partial == "..":
        raise InvalidPath(prefix, "listing prefixes may not contain '..'")

    segments = [segment for segment in folders if segment not in ("", ".")]
    return "/".join([*segments, partial])
