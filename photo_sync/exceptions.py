"""
Custom exception hierarchy for photo sync.

Remote failures are split by kind so callers can tell a missing path
apart from a broken transport.
"""


class PhotoSyncError(Exception):
    """Base exception for all photo sync errors."""
    pass


class ConfigError(PhotoSyncError):
    """Raised when settings are missing or invalid."""
    pass


class RemoteError(PhotoSyncError):
    """Base class for failures reported by the remote filesystem."""
    pass


class ConnectivityError(RemoteError):
    """Raised when the remote store is unreachable or rejects the credentials."""
    pass


class NotFoundError(RemoteError):
    """Raised when a remote path (file, directory, peer mapping) does not exist."""
    pass


class TransferError(RemoteError):
    """Raised when a single upload/download/delete call fails."""
    pass


class SerializationError(PhotoSyncError):
    """Raised when a mapping or state document cannot be decoded."""
    pass


class FileSystemError(PhotoSyncError):
    """Raised when a local file cannot be read during scanning or hashing."""
    pass


class SyncInProgressError(PhotoSyncError):
    """Raised when a sync or device operation is started while another is running."""
    pass


class SyncCancelledError(PhotoSyncError):
    """Raised at a phase boundary after a run has been cancelled."""
    pass
