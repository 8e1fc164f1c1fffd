"""Module with the public interface to a synchronized tree."""

from __future__ import annotations

from typing import Any, Callable, List, Optional

from cloudtree.config import Config
from cloudtree.coordination import CoordinationGate, EntryKind
from cloudtree.coordination.gate import Transform
from cloudtree.errors import InvalidPathError
from cloudtree.logger import log
from cloudtree.monitor import ChangeBatch, ChangeMonitor, MonitorFailure, MonitorState
from cloudtree.observers import ObserverHandle, ObserverRegistry
from cloudtree.path import RootRelativePath
from cloudtree.providers import MirrorProvider, StorageProvider


class CloudDrive:
    """
    Safe, asynchronous access to a directory tree that is synchronized by a sync agent.

    A drive is rooted at a directory within a container of the storage provider. All
    paths passed to its operations are relative to that root. Every operation is
    coordinated with the sync agent and may be called concurrently by multiple tasks.

    The drive observes the tree for changes from the moment it's started, and delivers
    batches of changed paths to its observers. Batches delivered while no observers are
    registered are dropped.

    Example:
    ```
    notes = RootRelativePath.from_string("Notes")

    async with CloudDrive(provider, subdirectory=notes) as drive:
        drive.add_observer(lambda paths: print(sorted(map(str, paths))))
        await drive.write_file(b"hello", RootRelativePath.from_string("hello.txt"))
    ```
    """

    def __init__(
        self,
        provider: StorageProvider,
        container: Optional[str] = None,
        subdirectory: RootRelativePath = RootRelativePath.root,
        config: Optional[Config] = None,
    ):
        """Instantiate a drive. It must be started before it can be used."""
        self._config = config or Config()
        self._provider = provider

        container_location = provider.container_location(container)
        self.root_location = subdirectory.absolute(container_location)

        self._running = False

        self._gate = CoordinationGate(provider)
        self._observers: ObserverRegistry[ChangeBatch] = ObserverRegistry()
        self._monitor = ChangeMonitor(
            provider,
            self.root_location,
            self._observers.deliver,
            restart_delay=self._config.monitor.restart_delay,
        )

    @classmethod
    async def open(cls, provider: StorageProvider, **kwargs: Any) -> CloudDrive:
        """Instantiate and start a drive."""
        drive = cls(provider, **kwargs)
        await drive.start()
        return drive

    @classmethod
    async def from_config(
        cls,
        config: Config,
        container: Optional[str] = None,
        subdirectory: Optional[RootRelativePath] = None,
    ) -> CloudDrive:
        """Instantiate and start a drive backed by a MirrorProvider from a config."""
        if subdirectory is None:
            subdirectory = RootRelativePath.from_string(config.drive.subdirectory)

        return await cls.open(
            MirrorProvider.from_config(config),
            container=container or config.drive.container,
            subdirectory=subdirectory,
            config=config,
        )

    async def start(self) -> None:
        """Ensure that the root directory exists and start observing changes."""
        await self._gate.create_directory(self.root_location)
        await self._monitor.start()

        if self._monitor.state is MonitorState.STOPPED:
            # Closed while starting
            return

        self._running = True

        log.info(f"started drive at {self.root_location}")

    async def close(self) -> None:
        """Stop observing changes. Closing a drive more than once has no effect."""
        self._running = False
        await self._monitor.stop()

    async def __aenter__(self) -> CloudDrive:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    def _location(self, path: RootRelativePath) -> str:
        """Resolve a path to an absolute location, if the drive is running."""
        if not self._running:
            raise RuntimeError("drive is not running")

        return path.absolute(self.root_location)

    def _new_location(self, path: RootRelativePath) -> str:
        """Resolve a path at which an entry may be created on behalf of the caller."""
        location = self._location(path)

        for component in path.components:
            if self._provider.is_reserved(component):
                raise InvalidPathError(f"name is reserved: {component!r} ({path})")

        return location

    @property
    def is_connected(self) -> bool:
        """Return whether the storage provider is currently available."""
        return self._provider.is_available()

    #
    # Queries
    #

    async def directory_exists(self, path: RootRelativePath) -> bool:
        return await self._gate.probe(self._location(path)) is EntryKind.DIRECTORY

    async def file_exists(self, path: RootRelativePath) -> bool:
        return await self._gate.probe(self._location(path)) is EntryKind.FILE

    async def contents_of_directory(
        self, path: RootRelativePath
    ) -> List[RootRelativePath]:
        """Return the paths of the entries in a directory, sorted by name."""
        names = await self._gate.list_directory(self._location(path))
        return [path.appending(name) for name in sorted(names)]

    #
    # Modification
    #

    async def create_directory(self, path: RootRelativePath) -> None:
        await self._gate.create_directory(self._new_location(path))

    async def write_file(
        self, data: bytes, path: RootRelativePath, overwrite: bool = True
    ) -> None:
        await self._gate.write(self._new_location(path), data, overwrite)

    async def read_file(self, path: RootRelativePath) -> bytes:
        """Read a file, waiting for it to be downloaded if necessary."""
        return await self._gate.read(self._location(path))

    async def update_file(self, path: RootRelativePath, transform: Transform) -> None:
        """
        Update a file in place.

        The transform is called with the location of a scratch copy of the file, which
        it may modify as it sees fit (it may also be a coroutine function). The copy
        replaces the file once the transform returns.
        """
        await self._gate.mutate(self._new_location(path), transform)

    async def remove_file(self, path: RootRelativePath) -> None:
        await self._gate.delete(self._location(path), EntryKind.FILE)

    async def remove_directory(self, path: RootRelativePath) -> None:
        await self._gate.delete(self._location(path), EntryKind.DIRECTORY)

    #
    # Transfer
    #

    async def upload(self, from_location: str, path: RootRelativePath) -> None:
        """
        Copy an external file into the drive.

        Unlike write_file, this never replaces an existing file. To replace one, remove
        it first.
        """
        await self._gate.copy_in(from_location, self._new_location(path))

    async def download(self, path: RootRelativePath, to_location: str) -> None:
        """Copy a file from the drive to an external location."""
        await self._gate.copy_out(self._location(path), to_location)

    #
    # Observation
    #

    def add_observer(self, observer: Callable[[ChangeBatch], Any]) -> ObserverHandle:
        """Register an observer for batches of changed paths."""
        return self._observers.add(observer)

    def remove_observer(self, handle: ObserverHandle) -> None:
        self._observers.remove(handle)

    def add_health_observer(
        self, observer: Callable[[MonitorFailure], Any]
    ) -> ObserverHandle:
        """Register an observer for failures of the change feed."""
        return self._monitor.health.add(observer)

    def remove_health_observer(self, handle: ObserverHandle) -> None:
        self._monitor.health.remove(handle)
