"""
cloudtree: safe, asynchronous access to a directory tree kept in sync by a sync agent.

Desktop sync clients replicate a local directory to remote storage in the background.
They move, replace, download and evict files whenever they see fit, which makes the
directory a resource that is shared with a process that doesn't announce what it does.
cloudtree wraps every access to such a tree in a coordination scope that excludes the
sync agent from the same location, downloads files that are only available remotely
before they're read, and turns the provider's change feed into batches of changed
paths for observers.
"""

from .config import Config
from .constants import VERSION
from .coordination import EntryKind
from .drive import CloudDrive
from .errors import (
    AlreadyExistsError,
    CloudDriveError,
    CoordinationError,
    DownloadError,
    InvalidPathError,
    MutationError,
    NotFoundError,
    TypeMismatchError,
)
from .monitor import ChangeBatch, MonitorFailure
from .observers import ObserverHandle
from .path import RootRelativePath
from .providers import MirrorProvider, StorageProvider

__version__ = VERSION

__all__ = [
    "__version__",
    "AlreadyExistsError",
    "ChangeBatch",
    "CloudDrive",
    "CloudDriveError",
    "Config",
    "CoordinationError",
    "DownloadError",
    "EntryKind",
    "InvalidPathError",
    "MirrorProvider",
    "MonitorFailure",
    "MutationError",
    "NotFoundError",
    "ObserverHandle",
    "RootRelativePath",
    "StorageProvider",
    "TypeMismatchError",
]
