"""StorageManager: resolves disk names to driver instances."""

from collections.abc import Awaitable, Callable
from datetime import timedelta
from pathlib import Path
from typing import Any, TypeVar

from flydrive.config import StorageConfig
from flydrive.exceptions import ConfigError, FlydriveError
from flydrive.observability import (
    OperationContext,
    Timer,
    emit_counter,
    emit_timer,
    get_logger,
)
from flydrive.plugins import get_driver
from flydrive.protocols import (
    Content,
    ContentResult,
    DeleteResult,
    ExistsResult,
    SignedUrlResult,
    StatResult,
    Storage,
)
from flydrive.streams import ByteStream, EntryStream
from flydrive.utils.validation import validate_identifier

logger = get_logger(__name__)

T = TypeVar("T")

DriverFactory = Callable[..., Storage]


class StorageManager:
    """Entry point for applications using one or more disks.

    Each disk is instantiated on first use and reused afterwards. The
    operation methods on the manager act on the default disk.

    Example usage:
        manager = StorageManager.from_file("storage.yaml")

        await manager.put("avatars/1.png", data)
        url = manager.disk("public").get_url("avatars/1.png")
    """

    def __init__(self, config: StorageConfig | dict[str, Any]) -> None:
        """Initialize the manager.

        Args:
            config: Storage configuration, or a dict to validate into one
        """
        if isinstance(config, dict):
            config = StorageConfig.from_dict(config)
        self.config = config
        self._disks: dict[str, Storage] = {}
        self._factories: dict[str, DriverFactory] = {}

    @classmethod
    def from_file(cls, path: str | Path) -> "StorageManager":
        """Create a manager from a YAML or JSON configuration file."""
        return cls(StorageConfig.from_file(path))

    def extend(self, driver: str, factory: DriverFactory) -> None:
        """Register a custom driver.

        Args:
            driver: Driver name referenced by disk configurations
            factory: Callable receiving the disk's settings as keyword arguments
        """
        validate_identifier(driver, "driver name")
        self._factories[driver] = factory

    def disk(self, name: str | None = None) -> Storage:
        """Get a disk by name, or the default disk.

        Raises:
            ConfigError: If the disk is not configured
        """
        name = name or self.config.default
        instance = self._disks.get(name)
        if instance is not None:
            return instance

        disk_config = self.config.disks.get(name)
        if disk_config is None:
            raise ConfigError(f"Disk '{name}' is not configured")

        factory = self._factories.get(disk_config.driver) or get_driver(disk_config.driver)
        with Timer() as timer:
            instance = factory(**disk_config.options())
        logger.info(
            "Disk initialized",
            context={"disk": name, "driver": disk_config.driver},
            duration_ms=timer.duration_ms,
        )
        self._disks[name] = instance
        return instance

    def set_disk(self, name: str, instance: Storage) -> None:
        """Bind an already-built driver instance to a disk name."""
        validate_identifier(name, "disk name")
        self._disks[name] = instance

    async def _forward(
        self,
        operation: str,
        call: Callable[[Storage], Awaitable[T]],
    ) -> T:
        name = self.config.default
        disk = self.disk(name)
        with OperationContext(disk=name, operation=operation):
            try:
                with Timer() as timer:
                    result = await call(disk)
            except FlydriveError as e:
                emit_counter(
                    "flydrive.operation.failed",
                    {"operation": operation, "kind": type(e).__name__},
                )
                raise
            logger.debug("Storage operation completed", duration_ms=timer.duration_ms)
            emit_timer("flydrive.operation.duration", timer.duration_ms, {"operation": operation})
            return result

    async def put(self, path: str, content: Content, **options: Any) -> None:
        await self._forward("put", lambda disk: disk.put(path, content, **options))

    async def get(self, path: str, encoding: str | None = None) -> ContentResult:
        return await self._forward("get", lambda disk: disk.get(path, encoding))

    async def get_buffer(self, path: str) -> ContentResult:
        return await self._forward("get_buffer", lambda disk: disk.get_buffer(path))

    async def get_stream(self, path: str) -> ByteStream:
        return await self._forward("get_stream", lambda disk: disk.get_stream(path))

    async def get_stat(self, path: str) -> StatResult:
        return await self._forward("get_stat", lambda disk: disk.get_stat(path))

    async def exists(self, path: str) -> ExistsResult:
        return await self._forward("exists", lambda disk: disk.exists(path))

    async def delete(self, path: str) -> DeleteResult:
        return await self._forward("delete", lambda disk: disk.delete(path))

    async def copy(self, src: str, dest: str) -> None:
        await self._forward("copy", lambda disk: disk.copy(src, dest))

    async def move(self, src: str, dest: str) -> None:
        await self._forward("move", lambda disk: disk.move(src, dest))

    def get_url(self, path: str) -> str:
        return self.disk().get_url(path)

    async def get_signed_url(
        self,
        path: str,
        expiry: timedelta | int | None = None,
    ) -> SignedUrlResult:
        return await self._forward("get_signed_url", lambda disk: disk.get_signed_url(path, expiry))

    def flat_list(self, prefix: str = "") -> EntryStream:
        return self.disk().flat_list(prefix)
