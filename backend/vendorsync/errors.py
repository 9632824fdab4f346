"""Exception types raised by the vendor sync pipeline."""


class VendorSyncError(Exception):
    """Base class for sync pipeline failures."""


class ExtractionError(VendorSyncError):
    """A detail page did not yield the minimum required fields."""

    def __init__(self, url: str, reason: str):
        self.url = url
        self.reason = reason
        super().__init__(f"Could not extract vehicle from {url}: {reason}")


class DownloadError(VendorSyncError):
    """A vendor image could not be fetched or is not usable."""


class UploadError(VendorSyncError):
    """The image store rejected or failed an upload."""


class PersistenceError(VendorSyncError):
    """A single vehicle insert/update failed."""

    def __init__(self, key: str, cause: Exception):
        self.key = key
        self.cause = cause
        super().__init__(f"{key}: {cause}")


class RunFatalError(VendorSyncError):
    """The run failed before it could produce any results."""


class SyncInProgress(VendorSyncError):
    """Another sync for the same vendor holds the vendor lock."""
