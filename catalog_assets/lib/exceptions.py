"""Error taxonomy shared by storage backends, the asset manager and reconciler."""


class AssetStorageError(Exception):
    """Base class for every asset storage failure."""

    retryable = False

    def __init__(self, message: str, *, key: str | None = None) -> None:
        super().__init__(message)
        self.key = key

    @property
    def kind(self) -> str:
        return type(self).__name__


class AssetNotFound(AssetStorageError):
    """Raised when reading a key that does not exist."""

    def __init__(self, key: str) -> None:
        super().__init__(f"Asset not found: {key!r}", key=key)


class StorageUnavailable(AssetStorageError):
    """Transient transport, auth or IO failure talking to a backend.

    Callers may retry these with backoff.
    """

    retryable = True


class StorageQuotaExceeded(AssetStorageError):
    """The backend refused the write because it is out of space or quota."""


class InvalidKey(AssetStorageError):
    """A key could not be built from, or parsed back into, an asset identity."""


class UploadTooLargeError(AssetStorageError):
    """Raised when an upload exceeds the configured size limit."""
