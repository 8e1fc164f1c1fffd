"""Module that wraps every file system operation on the tree in a coordination scope."""

from __future__ import annotations

import contextlib
from contextlib import asynccontextmanager
import inspect
import os
import shutil
from typing import AsyncIterator, Awaitable, Callable, List, Optional, Union

from cloudtree.coordination.common import (
    AccessKind,
    DownloadStatus,
    EntryKind,
    run_blocking,
    temporary_location,
)
from cloudtree.errors import (
    AlreadyExistsError,
    CloudDriveError,
    CoordinationError,
    MutationError,
    NotFoundError,
    TypeMismatchError,
)
from cloudtree.logger import log
from cloudtree.providers.base import StorageProvider

# Function that modifies the scratch copy of a file at the given location in place
Transform = Callable[[str], Union[None, Awaitable[None]]]


class CoordinationGate:
    """
    Class that performs file system operations within coordinated scopes.

    Every operation holds a scope for its entire duration, including any wait for a file
    to be downloaded. Materializing a file and then reading it in two separate scopes
    would allow the sync agent to evict or replace the file in between.

    Failures of the underlying file system that don't correspond to a more specific
    error are raised as CoordinationError. Cancellation of the calling task is never
    converted and always releases the scope.
    """

    def __init__(self, provider: StorageProvider):
        """Instantiate a gate for the tree managed by the specified provider."""
        self._provider = provider

    @asynccontextmanager
    async def _scope(self, location: str, access: AccessKind) -> AsyncIterator[None]:
        """Enter a coordinated scope and convert plain I/O errors raised within it."""
        async with self._provider.coordinate(location, access):
            try:
                yield
            except CloudDriveError:
                raise
            except OSError as e:
                raise CoordinationError(f"{e.strerror or e} ({location})") from e

    @asynccontextmanager
    async def _materialized(
        self, location: str, access: AccessKind = AccessKind.SHARED
    ) -> AsyncIterator[None]:
        """
        Enter a coordinated scope in which the file at a location is available locally.

        A shared scope is tried first since the file is usually already downloaded. If
        it isn't, the scope is re-entered as exclusive to download the file, and the
        operation then continues within that same exclusive scope.
        """
        while True:
            async with self._scope(location, access):
                status = self._provider.download_status(location)

                if status is DownloadStatus.MISSING:
                    raise NotFoundError(f"no such file: {location}")
                elif status is DownloadStatus.NOT_DOWNLOADED:
                    if access is AccessKind.SHARED:
                        access = AccessKind.EXCLUSIVE
                        continue

                    log.debug(f"downloading {location}")
                    await self._provider.download(location)

                if os.path.isdir(location):
                    raise TypeMismatchError(f"is a directory: {location}")

                yield
                return

    #
    # File contents
    #

    async def read(self, location: str) -> bytes:
        """Read the contents of a file, downloading it first if necessary."""
        async with self._materialized(location):
            return await run_blocking(_read_file, location)

    async def write(self, location: str, data: bytes, overwrite: bool) -> None:
        """Write the contents of a file atomically."""
        async with self._scope(location, AccessKind.EXCLUSIVE):
            kind = self._provider.entry_kind(location)

            if kind is EntryKind.DIRECTORY:
                raise TypeMismatchError(f"is a directory: {location}")
            elif kind is not None and not overwrite:
                raise AlreadyExistsError(f"file exists: {location}")

            await self._install(location, data)

    async def mutate(self, location: str, transform: Transform) -> None:
        """
        Modify a file by applying a transform to a scratch copy of it.

        The transform receives the location of a scratch file with the current contents
        of the file, or an empty file if there is none yet. Once the transform returns
        the scratch file replaces the original. If the transform fails then the scratch
        file is discarded, along with any parent directories that were created for it,
        and the error is raised unchanged.
        """
        failure: Optional[Exception] = None

        async with self._scope(location, AccessKind.EXCLUSIVE):
            kind = self._provider.entry_kind(location)

            if kind is EntryKind.DIRECTORY:
                raise TypeMismatchError(f"is a directory: {location}")

            status = self._provider.download_status(location)

            if status is DownloadStatus.NOT_DOWNLOADED:
                log.debug(f"downloading {location} for update")
                await self._provider.download(location)

            created = self._ensure_parent(location)
            scratch = temporary_location(location)

            def abandon() -> None:
                _discard(scratch)
                self._remove_directories(created)

            try:
                original = None if kind is None else location
                await run_blocking(_prepare_scratch, scratch, original)
            except BaseException:
                abandon()
                raise

            try:
                result = transform(scratch)

                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                # Raised after leaving the scope so that it isn't converted
                abandon()
                failure = e
            except BaseException:
                abandon()
                raise
            else:
                try:
                    os.replace(scratch, location)
                except OSError as e:
                    abandon()
                    raise MutationError(
                        f"failed to save update of {location}: {e}"
                    ) from e

                self._provider.did_write(location)

        if failure is not None:
            log.debug(f"update of {location} failed: {failure}")
            raise failure

    #
    # Structure
    #

    async def delete(self, location: str, expecting: EntryKind) -> None:
        """Remove the file or directory at a location."""
        async with self._scope(location, AccessKind.EXCLUSIVE):
            kind = self._provider.entry_kind(location)

            if kind is None:
                raise NotFoundError(f"no such {expecting.name.lower()}: {location}")
            elif kind is not expecting:
                raise TypeMismatchError(
                    f"expected {expecting.name.lower()}, found {kind.name.lower()}: "
                    f"{location}"
                )

            if kind is EntryKind.DIRECTORY:
                await run_blocking(shutil.rmtree, location)
            elif os.path.lexists(location):
                await run_blocking(os.remove, location)

            self._provider.did_remove(location)

    async def create_directory(self, location: str) -> None:
        """Create a directory along with any missing parent directories."""
        async with self._scope(location, AccessKind.EXCLUSIVE):
            kind = self._provider.entry_kind(location)

            if kind is EntryKind.DIRECTORY:
                return
            elif kind is EntryKind.FILE:
                raise TypeMismatchError(f"not a directory: {location}")

            try:
                os.makedirs(location, exist_ok=True)
            except (FileExistsError, NotADirectoryError) as e:
                raise TypeMismatchError(f"parent is not a directory: {location}") from e

    async def probe(self, location: str) -> Optional[EntryKind]:
        """Return the kind of entry at a location without downloading anything."""
        async with self._scope(location, AccessKind.SHARED):
            return self._provider.entry_kind(location)

    async def list_directory(self, location: str) -> List[str]:
        """Return the names of the entries in a directory."""
        async with self._scope(location, AccessKind.SHARED):
            kind = self._provider.entry_kind(location)

            if kind is None:
                raise NotFoundError(f"no such directory: {location}")
            elif kind is not EntryKind.DIRECTORY:
                raise TypeMismatchError(f"not a directory: {location}")

            return self._provider.list_directory(location)

    #
    # Transfer between the tree and the outside world
    #

    async def copy_in(self, source: str, location: str) -> None:
        """Copy an external file into the tree. Existing entries are never replaced."""
        async with self._scope(location, AccessKind.EXCLUSIVE):
            if self._provider.entry_kind(location) is not None:
                raise AlreadyExistsError(f"file exists: {location}")

            try:
                data = await run_blocking(_read_file, source)
            except FileNotFoundError as e:
                raise NotFoundError(f"no such file: {source}") from e

            await self._install(location, data)

    async def copy_out(self, location: str, destination: str) -> None:
        """Copy a file from the tree to an external location, downloading it first."""
        data = await self.read(location)

        try:
            await run_blocking(_write_atomically, destination, data)
        except OSError as e:
            raise CoordinationError(f"failed to write {destination}: {e}") from e

    #
    # Helpers
    #

    async def _install(self, location: str, data: bytes) -> None:
        """Atomically write a file, creating its parents only if that succeeds."""
        created = self._ensure_parent(location)

        try:
            await run_blocking(_write_atomically, location, data)
        except BaseException:
            self._remove_directories(created)
            raise

        self._provider.did_write(location)

    @staticmethod
    def _ensure_parent(location: str) -> List[str]:
        """Create the missing parents of a location and return them, deepest first."""
        parent = os.path.dirname(location)

        missing: List[str] = []
        directory = parent

        while directory and not os.path.lexists(directory):
            missing.append(directory)
            directory = os.path.dirname(directory)

        try:
            os.makedirs(parent, exist_ok=True)
        except (FileExistsError, NotADirectoryError) as e:
            raise TypeMismatchError(f"parent is not a directory: {location}") from e

        return missing

    @staticmethod
    def _remove_directories(directories: List[str]) -> None:
        """Remove directories created by _ensure_parent, as long as they're empty."""
        for directory in directories:
            try:
                os.rmdir(directory)
            except OSError as e:
                # Another entry was created in it in the meanwhile
                log.debug(f"keeping directory {directory}: {e}")
                return


def _read_file(location: str) -> bytes:
    with open(location, "rb") as f:
        return f.read()


def _write_atomically(location: str, data: bytes) -> None:
    """Write data to a temporary file and rename it over the location."""
    temp = temporary_location(location)

    try:
        with open(temp, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())

        os.replace(temp, location)
    except BaseException:
        _discard(temp)
        raise


def _prepare_scratch(scratch: str, original: Optional[str]) -> None:
    if original is None:
        open(scratch, "wb").close()
    else:
        shutil.copy2(original, scratch)


def _discard(location: str) -> None:
    with contextlib.suppress(FileNotFoundError):
        os.remove(location)
