"""Driver discovery via Python entry points."""

from importlib import import_module
from importlib.metadata import EntryPoint, entry_points
from typing import Any

from flydrive.exceptions import ConfigError
from flydrive.protocols import Storage

DRIVER_GROUP = "flydrive.drivers"

# Built-in drivers are imported on first use so that, for example, a
# local-only deployment never imports boto3
BUILTIN_DRIVERS = {
    "local": "flydrive.backends.local:LocalStorage",
    "s3": "flydrive.backends.s3:S3Storage",
    "gcs": "flydrive.backends.gcs:GCSStorage",
}


def discover_drivers() -> dict[str, EntryPoint]:
    """Discover third-party drivers registered under the flydrive.drivers group.

    Returns:
        Dictionary mapping driver names to their (unloaded) entry points
    """
    return {ep.name: ep for ep in entry_points(group=DRIVER_GROUP)}


def available_drivers() -> list[str]:
    """Names of every built-in and registered driver."""
    return sorted(set(BUILTIN_DRIVERS) | set(discover_drivers()))


def get_driver(name: str) -> Any:
    """Get a driver class by name.

    Args:
        name: The driver name (e.g., "local", "s3", "gcs")

    Returns:
        The driver class

    Raises:
        ConfigError: If the driver is not found
    """
    if name in BUILTIN_DRIVERS:
        module_name, _, attr = BUILTIN_DRIVERS[name].partition(":")
        return getattr(import_module(module_name), attr)

    drivers = discover_drivers()
    if name not in drivers:
        available = ", ".join(available_drivers())
        raise ConfigError(f"Driver '{name}' not found. Available: {available}")
    return drivers[name].load()


def create_storage(driver: str, **kwargs: Any) -> Storage:
    """Create a storage driver instance.

    Args:
        driver: The driver name (e.g., "local", "s3", "gcs")
        **kwargs: Driver-specific configuration

    Returns:
        A Storage implementation
    """
    cls = get_driver(driver)
    return cls(**kwargs)
