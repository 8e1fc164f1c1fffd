"""Data structures used by multiple coordination components."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from enum import auto, Enum
import functools
import os
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, TypeVar
import uuid

from cloudtree.constants import TEMP_SUFFIX

T = TypeVar("T")


class AccessKind(Enum):
    """Kind of access that a coordination scope grants."""

    SHARED = auto()
    EXCLUSIVE = auto()


class EntryKind(Enum):
    """Kind of entry found at a location in the tree."""

    FILE = auto()
    DIRECTORY = auto()


class DownloadStatus(Enum):
    """Whether the contents of a file are available locally."""

    MISSING = auto()
    NOT_DOWNLOADED = auto()
    CURRENT = auto()


class OuterLock:
    """
    Lock that extends a LockIndex beyond the current process.

    The LockIndex calls acquire() when the first holder enters the critical section for
    a key and release() when the last holder leaves it. At most one outer lock is held
    per key at any time.
    """

    async def acquire(self, key: Any, exclusive: bool) -> None:
        pass

    def release(self, key: Any, exclusive: bool) -> None:
        pass


class _LockState:
    def __init__(self) -> None:
        self.readers = 0
        self.writer = False
        self.busy = False
        self.users = 0
        self.waiters: List[asyncio.Future] = []


class LockIndex:
    """
    Collection of shared/exclusive locks to lock critical sections by arbitrary values.

    Its use case is to lock critical sections based on unpredictable input values, like
    arbitrary file locations. Locks are automatically garbage collected once unused
    (no tasks in the critical section and none waiting to enter).

    Waiting for a lock suspends the calling task rather than blocking the thread, so
    many tasks can wait on many keys from a single event loop. Because all state changes
    happen without suspension in between, releasing never has to wait and is therefore
    safe to do while a task is being cancelled.
    """

    def __init__(self, outer: Optional[OuterLock] = None) -> None:
        """Instantiate a LockIndex, optionally extended by an outer lock."""
        self._outer = outer or OuterLock()
        self._states: Dict[Any, _LockState] = {}

    @asynccontextmanager
    async def lock(self, key: Any, exclusive: bool = True) -> AsyncIterator[None]:
        """Lock a critical section based on the specified key."""
        # Retrieve lock state and increment user count
        state = self._states.get(key)

        if state is None:
            state = self._states[key] = _LockState()

        state.users += 1

        try:
            await self._acquire(key, state, exclusive)

            try:
                yield
            finally:
                self._release(key, state, exclusive)
        finally:
            # Decrement user count and delete lock if there are none left
            state.users -= 1

            if state.users == 0:
                del self._states[key]

    async def _acquire(self, key: Any, state: _LockState, exclusive: bool) -> None:
        if exclusive:
            await self._wait(state, lambda: not (state.writer or state.readers))
        else:
            await self._wait(state, lambda: not state.writer)

        # The first holder takes the outer lock on behalf of all holders, and others
        # wait for that to finish before they may enter.
        if exclusive or state.readers == 0:
            state.busy = True

            try:
                await self._outer.acquire(key, exclusive)
            finally:
                state.busy = False
                self._wake(state)

        if exclusive:
            state.writer = True
        else:
            state.readers += 1

    def _release(self, key: Any, state: _LockState, exclusive: bool) -> None:
        if exclusive:
            state.writer = False
            self._outer.release(key, exclusive)
        else:
            state.readers -= 1

            if state.readers == 0:
                self._outer.release(key, exclusive)

        self._wake(state)

    @staticmethod
    async def _wait(state: _LockState, available: Callable[[], bool]) -> None:
        loop = asyncio.get_running_loop()

        while state.busy or not available():
            waiter = loop.create_future()
            state.waiters.append(waiter)

            try:
                await waiter
            finally:
                state.waiters.remove(waiter)

    @staticmethod
    def _wake(state: _LockState) -> None:
        for waiter in state.waiters:
            if not waiter.done():
                waiter.set_result(None)

    @property
    def lock_count(self) -> int:
        """Return the number of locks currently in use."""
        return len(self._states)


def temporary_location(location: str) -> str:
    """
    Return a unique hidden location next to the specified one.

    Contents are written there first and then renamed over the final location, which
    is atomic as long as both are within the same directory.
    """
    directory, name = os.path.split(location)
    return os.path.join(directory, f".{name}.{uuid.uuid4().hex}{TEMP_SUFFIX}")


def is_temporary(name: str) -> bool:
    """Return whether a file name belongs to a temporary file."""
    return name.endswith(TEMP_SUFFIX)


async def run_blocking(func: Callable[..., T], *args: Any) -> T:
    """
    Run a blocking file system call in the default executor.

    If the calling task is cancelled, this still waits for the call to finish before
    raising CancelledError. Callers hold a coordination scope around the call, and that
    scope must not be released while a thread is still touching the tree.
    """
    loop = asyncio.get_running_loop()
    future = loop.run_in_executor(None, functools.partial(func, *args))

    try:
        return await asyncio.shield(future)
    except asyncio.CancelledError:
        await asyncio.wait([future])
        raise
