"""
Storage providers that the synchronized tree can be backed by.

A provider supplies the three capabilities that the rest of cloudtree builds upon:
coordinated access to a location, materialization of files that are only available
remotely, and a feed of the entries under a root. Everything else is implemented in
terms of these capabilities, so supporting another backend only requires another
provider.
"""

from .base import Enumeration, Fingerprint, StorageProvider
from .mirror import MirrorProvider

__all__ = [
    "Enumeration",
    "Fingerprint",
    "MirrorProvider",
    "StorageProvider",
]
