"""
Modules that coordinate access to the synchronized tree with the sync agent.

The tree is shared with an external sync agent that moves, replaces, downloads and
evicts files whenever it sees fit. If this process were to read a file while the agent
is halfway through replacing it, it would observe a torn file. If it wrote a file while
the agent was downloading a newer version of it, one of the two writes would be lost
without anyone noticing.

Every operation on the tree is therefore performed inside a coordination scope that the
storage provider grants for a single location. A scope is either shared (reads and
metadata probes) or exclusive (anything that modifies the tree), and the provider
guarantees that no other coordinator, including the sync agent, holds a conflicting
scope for the same location at the same time. Operations on different locations don't
affect each other at all.

Waiting for a scope, or for a file to be downloaded within one, suspends the calling
task instead of blocking a thread. This keeps the "just await the call" ergonomics
without dedicating a thread to every operation that happens to wait on the network.
"""

from .common import AccessKind, DownloadStatus, EntryKind, LockIndex
from .gate import CoordinationGate

__all__ = [
    "AccessKind",
    "CoordinationGate",
    "DownloadStatus",
    "EntryKind",
    "LockIndex",
]
