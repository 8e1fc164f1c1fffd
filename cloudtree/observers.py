"""Module with a registry that delivers notifications to a set of observers."""

from __future__ import annotations

from dataclasses import dataclass
import inspect
import itertools
from typing import Any, Callable, Dict, Generic, TypeVar

from cloudtree.logger import log, summarize

T = TypeVar("T")


@dataclass(frozen=True)
class ObserverHandle:
    """Token returned upon registration that is used to unregister an observer."""

    id: int


class ObserverRegistry(Generic[T]):
    """
    Collection of observers that each receive every delivered notification.

    Observers are plain callables. They are called one after another in the order in
    which they were registered. An observer may return an awaitable, which is awaited
    before the next observer is called, so observers should hand off heavy work to their
    own tasks to avoid stalling the ones after them.

    The registry only holds an observer while it is registered. Observers that are
    unregistered during a delivery, even by another observer, are skipped. Notifications
    are not stored, so an observer only receives notifications delivered after it was
    registered.
    """

    def __init__(self) -> None:
        """Instantiate an empty registry."""
        self._observers: Dict[ObserverHandle, Callable[[T], Any]] = {}
        self._ids = itertools.count()

    def add(self, observer: Callable[[T], Any]) -> ObserverHandle:
        """Register an observer and return the handle to unregister it with."""
        handle = ObserverHandle(next(self._ids))
        self._observers[handle] = observer
        return handle

    def remove(self, handle: ObserverHandle) -> None:
        """Unregister an observer. Unknown handles are ignored."""
        self._observers.pop(handle, None)

    async def deliver(self, notification: T) -> None:
        """Deliver a notification to all currently registered observers."""
        for handle, observer in list(self._observers.items()):
            if handle not in self._observers:
                continue

            try:
                result = observer(notification)

                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                log.error(f"observer failed to handle {summarize(notification)}: {e}")

    def __len__(self) -> int:
        return len(self._observers)
