"""
Module that turns the change feed of a provider into batches of changed paths.

The provider's change feed only says that the tree currently looks a certain way. It's
up to the monitor to figure out what that means for observers. It keeps a snapshot of
the fingerprints of all known entries, and every time the feed delivers a new
enumeration it compares the two:

* Entries that are new or have a different fingerprint have been added or updated.
* Entries in the snapshot that are missing from the enumeration have been removed.

The locations of these entries are translated to paths relative to the root and are
delivered as a single deduplicated batch. Observers have to probe the paths themselves
to find out what exactly happened to them.

Enumerations that arrive while the previous one is still being processed are not
queued. Only the most recent enumeration is kept, and since it's compared against the
snapshot of the last processed enumeration, the batch that results from it still
contains every path that changed in the meanwhile. Observers may miss intermediate
states this way, but never miss that a change happened.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import auto, Enum
from typing import AsyncIterator, Awaitable, Callable, FrozenSet, Optional, Set

from cloudtree.errors import CoordinationError, InvalidPathError
from cloudtree.logger import log, summarize
from cloudtree.observers import ObserverRegistry
from cloudtree.path import RootRelativePath
from cloudtree.providers.base import Enumeration, StorageProvider

# Batch of paths that have changed since the previous batch
ChangeBatch = FrozenSet[RootRelativePath]


class MonitorState(Enum):
    """States of a ChangeMonitor."""

    IDLE = auto()
    STARTING = auto()
    OBSERVING = auto()
    UPDATING = auto()
    STOPPED = auto()


@dataclass
class MonitorFailure:
    """Notification that the change feed failed and will be re-established."""

    error: Exception
    restart_delay: float


class ChangeMonitor:
    """Class that observes a root and delivers batches of changed paths."""

    def __init__(
        self,
        provider: StorageProvider,
        root_location: str,
        deliver: Callable[[ChangeBatch], Awaitable[None]],
        restart_delay: float = 5.0,
    ):
        """
        Instantiate a monitor for the entries under root_location.

        Batches are passed to the deliver coroutine, one at a time. Failures of the
        change feed are delivered to the observers in the health registry instead.
        """
        self._provider = provider
        self._root_location = root_location
        self._deliver = deliver
        self._restart_delay = restart_delay

        self.state = MonitorState.IDLE
        self.health: ObserverRegistry[MonitorFailure] = ObserverRegistry()
        self.last_error: Optional[Exception] = None

        self._snapshot: Enumeration = {}
        self._pending: Optional[Enumeration] = None

        self._stop_event = asyncio.Event()
        self._wakeup = asyncio.Event()

        self._reader: Optional[asyncio.Task] = None
        self._updater: Optional[asyncio.Task] = None

    @property
    def snapshot(self) -> Enumeration:
        """Return the fingerprints of the entries as of the last processed update."""
        return dict(self._snapshot)

    async def start(self) -> None:
        """
        Subscribe to the change feed and seed the snapshot.

        Returns once the initial enumeration has been processed, so any change after
        this call will be reported. The initial enumeration itself is not reported.
        """
        if self.state is not MonitorState.IDLE:
            raise RuntimeError(f"cannot start monitor in state {self.state.name}")

        self.state = MonitorState.STARTING

        feed = self._provider.changes(self._root_location, self._stop_event)

        try:
            self._snapshot = await feed.__anext__()
        except BaseException as e:
            self.state = MonitorState.STOPPED
            await self._close_feed(feed)

            if isinstance(e, StopAsyncIteration):
                raise CoordinationError(f"change feed of {self._root_location} ended")
            elif isinstance(e, Exception):
                raise CoordinationError(
                    f"failed to observe {self._root_location}: {e}"
                ) from e
            else:
                raise

        if self._stopped:
            # Stopped while waiting for the initial enumeration
            await self._close_feed(feed)
            return

        log.info(f"observing {len(self._snapshot)} entries in {self._root_location}")

        self.state = MonitorState.OBSERVING

        self._reader = asyncio.create_task(self._read(feed))
        self._updater = asyncio.create_task(self._update())

    async def stop(self) -> None:
        """Unsubscribe from the change feed. No batches are delivered afterwards."""
        if self.state is MonitorState.STOPPED:
            return

        self.state = MonitorState.STOPPED
        self._stop_event.set()

        # An observer may stop the monitor from within a delivery
        current = asyncio.current_task()
        tasks = [t for t in (self._reader, self._updater) if t and t is not current]

        for task in tasks:
            task.cancel()

        await asyncio.gather(*tasks, return_exceptions=True)

        log.info(f"stopped observing {self._root_location}")

    @property
    def _stopped(self) -> bool:
        return self.state is MonitorState.STOPPED

    async def _read(self, feed: AsyncIterator[Enumeration]) -> None:
        """Keep the latest enumeration from the feed, re-subscribing upon failure."""
        while not self._stopped:
            try:
                async for enumeration in feed:
                    self._pending = enumeration
                    self._wakeup.set()

                if self._stopped:
                    return

                raise CoordinationError("change feed ended unexpectedly")
            except asyncio.CancelledError:
                raise
            except Exception as e:
                if self._stopped:
                    return

                self.last_error = e

                log.error(
                    f"change feed of {self._root_location} failed, retrying in "
                    f"{self._restart_delay} seconds: {e}"
                )

                await self.health.deliver(MonitorFailure(e, self._restart_delay))
            finally:
                await self._close_feed(feed)

            await asyncio.sleep(self._restart_delay)

            # The first enumeration of the new feed is compared against the existing
            # snapshot, so changes made while the feed was down are still reported.
            feed = self._provider.changes(self._root_location, self._stop_event)

    async def _update(self) -> None:
        """Process enumerations one at a time, always taking the latest one."""
        while not self._stopped:
            await self._wakeup.wait()
            self._wakeup.clear()

            enumeration, self._pending = self._pending, None

            if self._stopped:
                return
            elif enumeration is None:
                continue

            self.state = MonitorState.UPDATING

            try:
                batch = self._diff(enumeration)
                self._snapshot = enumeration

                if batch and not self._stopped:
                    log.debug(f"changed in {self._root_location}: {summarize(batch)}")
                    await self._deliver(batch)
            finally:
                if self.state is MonitorState.UPDATING:
                    self.state = MonitorState.OBSERVING

    def _diff(self, enumeration: Enumeration) -> ChangeBatch:
        """Determine which paths have changed compared to the snapshot."""
        changed: Set[str] = {
            location
            for location, fingerprint in enumeration.items()
            if self._snapshot.get(location) != fingerprint
        }

        changed.update(
            location for location in self._snapshot if location not in enumeration
        )

        paths = set()

        for location in changed:
            try:
                paths.add(RootRelativePath.from_absolute(self._root_location, location))
            except InvalidPathError as e:
                log.warning(f"ignoring change outside of root: {e}")

        paths.discard(RootRelativePath.root)

        return frozenset(paths)

    @staticmethod
    async def _close_feed(feed: AsyncIterator[Enumeration]) -> None:
        aclose = getattr(feed, "aclose", None)

        if aclose is not None:
            try:
                await aclose()
            except Exception as e:
                log.warning(f"failed to close change feed: {e}")
