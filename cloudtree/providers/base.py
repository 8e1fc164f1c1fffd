"""Interface between the synchronized tree logic and a concrete storage provider."""

from __future__ import annotations

from abc import ABC, abstractmethod
import asyncio
from dataclasses import dataclass
import os
import stat
from typing import AsyncContextManager, AsyncIterator, Dict, List, Optional

from cloudtree.coordination.common import (
    AccessKind,
    DownloadStatus,
    EntryKind,
    is_temporary,
)

# Mapping of absolute locations to the fingerprints of the entries found there
Enumeration = Dict[str, "Fingerprint"]


@dataclass(frozen=True)
class Fingerprint:
    """
    Cheap summary of an entry used to detect that it has changed.

    Directories are always fingerprinted with a zero size and timestamp. Their
    modification time changes whenever a child is added or removed, and those children
    are already reported by themselves.
    """

    kind: EntryKind
    size: int = 0
    mtime_ns: int = 0

    @staticmethod
    def from_stat(st: os.stat_result) -> Fingerprint:
        """Instantiate from the attributes contained within an os.stat_result object."""
        if stat.S_ISDIR(st.st_mode):
            return Fingerprint(kind=EntryKind.DIRECTORY)
        else:
            return Fingerprint(
                kind=EntryKind.FILE, size=st.st_size, mtime_ns=st.st_mtime_ns
            )


class StorageProvider(ABC):
    """
    Capabilities that a synchronized storage backend must offer.

    Locations passed to and returned by a provider are absolute. Everything that touches
    the tree does so within a scope obtained from coordinate(), which excludes the
    external sync agent (and other coordinators) from the same location.
    """

    @abstractmethod
    def container_location(self, identifier: Optional[str]) -> str:
        """Return the location of a container, or the default one if None."""

    def is_available(self) -> bool:
        """Return whether the provider is currently able to synchronize."""
        return True

    def is_reserved(self, name: str) -> bool:
        """
        Return whether a file name is reserved for bookkeeping within the tree.

        Entries with reserved names are never created on behalf of callers, since they
        would be mistaken for the provider's own files. Temporary files are reserved
        for every provider.
        """
        return is_temporary(name)

    @abstractmethod
    def coordinate(
        self, location: str, access: AccessKind
    ) -> AsyncContextManager[None]:
        """Return a scope that grants the specified access to a location."""

    @abstractmethod
    def entry_kind(self, location: str) -> Optional[EntryKind]:
        """Return the kind of entry at a location, including not downloaded files."""

    @abstractmethod
    def download_status(self, location: str) -> DownloadStatus:
        """Return whether the file at a location is available locally."""

    @abstractmethod
    async def download(self, location: str) -> None:
        """Materialize the file at a location, raising DownloadError on failure."""

    def did_write(self, location: str) -> None:
        """Inform the provider that a file was written to a location."""

    def did_remove(self, location: str) -> None:
        """Inform the provider that the entry at a location was removed."""

    @abstractmethod
    def list_directory(self, location: str) -> List[str]:
        """Return the names of the entries in a directory."""

    @abstractmethod
    def enumerate(self, root_location: str) -> Enumeration:
        """Return the fingerprints of all entries under a root (excluding the root)."""

    @abstractmethod
    def changes(
        self, root_location: str, stop_event: asyncio.Event
    ) -> AsyncIterator[Enumeration]:
        """
        Subscribe to the change feed of a root.

        The feed first yields the current enumeration of the root and then yields a new
        enumeration every time something may have changed, until stop_event is set.
        """
