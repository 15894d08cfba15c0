class BlobStoreError(Exception):
    """Base exception for all blob store operations."""

    def __init__(
        self, message: str, key: str | None = None, cause: Exception | None = None
    ):
        self.key = key
        self.cause = cause
        super().__init__(message)


class BlobNotFoundError(BlobStoreError):
    """Raised when a requested blob (or bucket) does not exist."""

    pass


class BucketNotFoundError(BlobStoreError):
    """Raised when the store's bucket does not exist at construction time."""

    pass


class StorageConnectionError(BlobStoreError):
    """Raised when the storage service is unreachable (network level fault)."""

    pass


class RemoteStatusError(BlobStoreError):
    """Raised when the storage service answers with a non 2xx, non 404 status."""

    def __init__(
        self,
        message: str,
        status_code: int | None,
        key: str | None = None,
        cause: Exception | None = None,
    ):
        self.status_code = status_code
        super().__init__(message, key=key, cause=cause)


class RetriesExhaustedError(BlobStoreError):
    """Raised when a retryable call kept failing until the attempt bound."""

    def __init__(
        self,
        message: str,
        attempts: int,
        last_error: Exception,
        key: str | None = None,
    ):
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(message, key=key, cause=last_error)


class BlobIntegrityError(BlobStoreError):
    """Raised when the storage service returns a response missing expected data."""

    pass


class DuplicateBlobNameError(BlobIntegrityError):
    """Raised when a listing yields the same blob name twice."""

    pass


class PartialBatchFailureError(BlobStoreError):
    """Raised when some deletions of a batch did not succeed."""

    def __init__(self, message: str, failed_count: int, batch_size: int):
        self.failed_count = failed_count
        self.batch_size = batch_size
        super().__init__(message)


class ListingError(BlobStoreError):
    """Raised when a page of a listing could not be fetched."""

    pass
