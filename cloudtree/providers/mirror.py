"""
Module with a storage provider for trees that are mirrored to a store directory.

The mirror provider models the common layout of desktop sync clients. Containers are
plain directories under a base path, and the sync agent replicates their contents to a
store that stands in for the remote side. Files that are only available remotely are
represented locally by placeholders (see the placeholder module) and are copied in from
the store when they're needed.

Other processes, most importantly the sync agent, are excluded from locations that are
being accessed by taking lock files in a shared lock directory. Any process that honors
the same lock directory is coordinated with, just like this process coordinates with
itself.
"""

from __future__ import annotations

import asyncio
import contextlib
from contextlib import asynccontextmanager
import hashlib
import os
import shutil
from typing import AsyncIterator, Dict, List, Optional

import fasteners
from watchfiles import awatch, Change

from cloudtree.config import Config
from cloudtree.constants import DEFAULT_CONTAINER
from cloudtree.coordination.common import (
    AccessKind,
    DownloadStatus,
    EntryKind,
    is_temporary,
    LockIndex,
    OuterLock,
    run_blocking,
    temporary_location,
)
from cloudtree.errors import CoordinationError, DownloadError
from cloudtree.logger import log
from cloudtree.providers.base import Enumeration, Fingerprint, StorageProvider
from cloudtree.providers.placeholder import (
    Placeholder,
    placeholder_location,
    placeholder_name,
    read_placeholder,
    write_placeholder,
)


class LockFiles(OuterLock):
    """
    Interprocess reader/writer locks, one lock file per location.

    Acquisition never blocks the event loop. The lock file is tried without blocking and
    the task sleeps between attempts with an exponential backoff, the same way that
    fasteners itself retries blocking acquisitions.

    Lock files are never removed. Another process may have opened a lock file and be
    about to lock it, and removing the file at that moment would leave the two processes
    locking different files. The lock directory therefore holds one small file for every
    location that was ever accessed, and may be cleared whenever no process uses it.
    """

    def __init__(self, lock_path: str, delay: float, max_delay: float) -> None:
        """Instantiate lock files that are stored in the specified directory."""
        self._lock_path = lock_path
        self._delay = delay
        self._max_delay = max_delay

        self._held: Dict[str, fasteners.InterProcessReaderWriterLock] = {}

    def lock_file(self, location: str) -> str:
        """Return the lock file that guards a location."""
        digest = hashlib.sha256(os.path.normpath(location).encode()).hexdigest()
        return os.path.join(self._lock_path, f"{digest}.lock")

    async def acquire(self, location: str, exclusive: bool) -> None:
        lock = fasteners.InterProcessReaderWriterLock(self.lock_file(location))

        if exclusive:
            try_acquire = lock.acquire_write_lock
        else:
            try_acquire = lock.acquire_read_lock

        delay = self._delay

        try:
            while not try_acquire(blocking=False):
                log.debug(f"waiting for lock on {location}")

                await asyncio.sleep(delay)
                delay = min(delay * 2, self._max_delay)
        except OSError as e:
            raise CoordinationError(f"failed to lock {location}: {e}") from e

        self._held[location] = lock

    def release(self, location: str, exclusive: bool) -> None:
        lock = self._held.pop(location)

        if exclusive:
            lock.release_write_lock()
        else:
            lock.release_read_lock()


class MirrorProvider(StorageProvider):
    """Storage provider for a tree that is mirrored to a store directory."""

    def __init__(
        self,
        base_path: str,
        store_path: str,
        lock_path: str,
        delay: float = 0.01,
        max_delay: float = 0.1,
        debounce_ms: int = 50,
        force_polling: bool = False,
    ):
        """Instantiate a provider for the containers in base_path."""
        self._base_path = os.path.abspath(base_path)
        self._store_path = os.path.abspath(store_path)

        self._debounce_ms = debounce_ms
        self._force_polling = force_polling

        self._lock_files = LockFiles(lock_path, delay, max_delay)
        self._locks = LockIndex(self._lock_files)

        os.makedirs(self._base_path, exist_ok=True)
        os.makedirs(self._store_path, exist_ok=True)

    @staticmethod
    def from_config(config: Config) -> MirrorProvider:
        """Instantiate a provider with the locations and settings from a config."""
        return MirrorProvider(
            base_path=config.drive.path,
            store_path=config.drive.store_path,
            lock_path=config.coordination.lock_path,
            delay=config.coordination.delay,
            max_delay=config.coordination.max_delay,
            debounce_ms=config.monitor.debounce_ms,
            force_polling=config.monitor.force_polling,
        )

    def container_location(self, identifier: Optional[str]) -> str:
        return os.path.join(self._base_path, identifier or DEFAULT_CONTAINER)

    def is_available(self) -> bool:
        return os.path.isdir(self._store_path)

    def is_reserved(self, name: str) -> bool:
        return super().is_reserved(name) or placeholder_name(name) is not None

    def store_location(self, location: str) -> str:
        """Return where the remote copy of the entry at a location is kept."""
        relative = os.path.relpath(os.path.normpath(location), self._base_path)

        if relative == os.pardir or relative.startswith(os.pardir + os.sep):
            raise CoordinationError(f"{location} is not managed by this provider")

        return os.path.join(self._store_path, relative)

    #
    # Coordination
    #

    def lock_file(self, location: str) -> str:
        """Return the lock file that other processes take to coordinate a location."""
        return self._lock_files.lock_file(location)

    @property
    def lock_count(self) -> int:
        """Return the number of locations with scopes held or waited upon."""
        return self._locks.lock_count

    @asynccontextmanager
    async def coordinate(
        self, location: str, access: AccessKind
    ) -> AsyncIterator[None]:
        exclusive = access is AccessKind.EXCLUSIVE

        async with self._locks.lock(os.path.normpath(location), exclusive):
            yield

    #
    # Metadata access
    #

    def entry_kind(self, location: str) -> Optional[EntryKind]:
        if os.path.isdir(location):
            return EntryKind.DIRECTORY
        elif os.path.lexists(location):
            return EntryKind.FILE
        elif os.path.isfile(placeholder_location(location)):
            return EntryKind.FILE
        else:
            return None

    def download_status(self, location: str) -> DownloadStatus:
        if os.path.lexists(location):
            return DownloadStatus.CURRENT
        elif os.path.isfile(placeholder_location(location)):
            return DownloadStatus.NOT_DOWNLOADED
        else:
            return DownloadStatus.MISSING

    def list_directory(self, location: str) -> List[str]:
        names = set()

        for name in os.listdir(location):
            if is_temporary(name):
                continue

            names.add(placeholder_name(name) or name)

        return sorted(names)

    def enumerate(self, root_location: str) -> Enumeration:
        entries: Enumeration = {}

        for directory, dirnames, filenames in os.walk(root_location):
            for name in dirnames:
                location = os.path.join(directory, name)
                entries[location] = Fingerprint(EntryKind.DIRECTORY)

            for name in filenames:
                if is_temporary(name):
                    continue

                location = os.path.join(directory, name)
                original = placeholder_name(name)

                try:
                    if original is None:
                        entries[location] = Fingerprint.from_stat(os.stat(location))
                    else:
                        placeholder = read_placeholder(location)
                        entries.setdefault(
                            os.path.join(directory, original),
                            Fingerprint(
                                EntryKind.FILE, placeholder.size, placeholder.mtime_ns
                            ),
                        )
                except FileNotFoundError:
                    # Removed while enumerating, the next enumeration will notice
                    continue
                except Exception as e:
                    log.warning(f"failed to fingerprint {location}: {e}")

        return entries

    async def changes(
        self, root_location: str, stop_event: asyncio.Event
    ) -> AsyncIterator[Enumeration]:
        loop = asyncio.get_running_loop()

        yield await loop.run_in_executor(None, self.enumerate, root_location)

        async for _ in awatch(
            root_location,
            watch_filter=self._watch_filter,
            debounce=self._debounce_ms,
            stop_event=stop_event,
            force_polling=self._force_polling,
        ):
            yield await loop.run_in_executor(None, self.enumerate, root_location)

    @staticmethod
    def _watch_filter(change: Change, path: str) -> bool:
        return not is_temporary(os.path.basename(path))

    #
    # Materialization
    #

    async def download(self, location: str) -> None:
        try:
            placeholder = read_placeholder(placeholder_location(location))
            source = self.store_location(location)

            data = await run_blocking(self._read_store, source)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            raise DownloadError(f"failed to download {location}: {e}") from e

        log.debug(f"downloaded {len(data)} bytes for {location}")

        try:
            await run_blocking(self._install, location, data, placeholder.mtime_ns)
        except OSError as e:
            raise DownloadError(f"failed to store download of {location}: {e}") from e

        self.did_write(location)

    @staticmethod
    def _read_store(source: str) -> bytes:
        with open(source, "rb") as f:
            return f.read()

    @staticmethod
    def _install(location: str, data: bytes, mtime_ns: int) -> None:
        temp = temporary_location(location)

        try:
            with open(temp, "wb") as f:
                f.write(data)

            os.utime(temp, ns=(mtime_ns, mtime_ns))
            os.replace(temp, location)
        except BaseException:
            with contextlib.suppress(FileNotFoundError):
                os.remove(temp)

            raise

    async def evict(self, location: str) -> None:
        """
        Replace a local file by a placeholder after mirroring it to the store.

        This is what the sync agent does to free up local space, and it coordinates the
        same way that any other access to the tree does.
        """
        async with self.coordinate(location, AccessKind.EXCLUSIVE):
            await run_blocking(self._evict, location, self.store_location(location))

        log.debug(f"evicted {location}")

    @staticmethod
    def _evict(location: str, destination: str) -> None:
        st = os.stat(location)

        os.makedirs(os.path.dirname(destination), exist_ok=True)
        shutil.copy2(location, destination)

        write_placeholder(
            placeholder_location(location),
            Placeholder(
                name=os.path.basename(location),
                size=st.st_size,
                mtime_ns=st.st_mtime_ns,
            ),
        )

        os.remove(location)

    #
    # Bookkeeping
    #

    def did_write(self, location: str) -> None:
        with contextlib.suppress(FileNotFoundError):
            os.remove(placeholder_location(location))

    def did_remove(self, location: str) -> None:
        with contextlib.suppress(FileNotFoundError):
            os.remove(placeholder_location(location))
