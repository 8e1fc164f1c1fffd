"""
Exceptions raised by the operations on a synchronized tree.

Where a failure corresponds to a builtin I/O error, the exception also derives from
that builtin type. Callers can therefore catch FileNotFoundError or FileExistsError
without knowing about this module, while code that does know about it can catch
CloudDriveError to handle every failure of the library at once.
"""


class CloudDriveError(Exception):
    """Base class of all errors raised by cloudtree."""


class NotFoundError(CloudDriveError, FileNotFoundError):
    """Exception raised when no entry exists at a path where one is required."""


class AlreadyExistsError(CloudDriveError, FileExistsError):
    """Exception raised when an entry exists at a path that must be vacant."""


class TypeMismatchError(CloudDriveError):
    """Exception raised when a file is found where a directory is expected or v.v."""


class InvalidPathError(CloudDriveError, ValueError):
    """Exception raised for malformed path components or paths outside the root."""


class DownloadError(CloudDriveError):
    """Exception raised when a file could not be materialized locally."""


class MutationError(CloudDriveError):
    """Exception raised when the result of a file transformation couldn't be saved."""


class CoordinationError(CloudDriveError, OSError):
    """Exception raised when the coordination primitive or provider I/O fails."""
