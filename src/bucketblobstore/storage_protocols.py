from dataclasses import dataclass, field
from typing import BinaryIO, Callable, Protocol, Sequence, TypeVar

T = TypeVar("T")

# Service ceiling for sub-requests in one batched request.
MAX_BATCH_SIZE = 999


@dataclass(frozen=True)
class RemoteBucket:
    """Bucket record returned by the storage service."""

    id: str | None
    name: str


@dataclass(frozen=True)
class RemoteObject:
    """Object descriptor returned by the storage service for a listed/fetched blob."""

    id: str | None
    name: str
    size: int | None


@dataclass(frozen=True)
class ListingPage:
    """One page of a listing and the token to request the next one."""

    items: list[RemoteObject] = field(default_factory=list)
    continuation_token: str | None = None


PrivilegedRunner = Callable[[Callable[[], T]], T]


def run_directly(operation: Callable[[], T]) -> T:
    """Default privileged runner: no sandbox, call straight through."""
    return operation()


class BucketClient(Protocol):
    """Protocol for a remote bucket storage client.

    Implementations translate their SDK errors: an absent bucket or object
    raises BlobNotFoundError, network faults raise StorageConnectionError and
    other failed responses raise RemoteStatusError.
    """

    max_batch_size: int

    def get_bucket(self, bucket_name: str) -> RemoteBucket:
        """Return the bucket record."""
        ...

    def get_object(self, bucket_name: str, blob_name: str) -> RemoteObject:
        """Return the metadata of a blob."""
        ...

    def open_object(self, bucket_name: str, blob_name: str) -> BinaryIO:
        """Return a readable stream with the blob contents."""
        ...

    def insert_object(
        self, bucket_name: str, blob_name: str, content: BinaryIO, length: int
    ) -> None:
        """Create or replace a blob with exactly `length` bytes read from `content`."""
        ...

    def delete_object(self, bucket_name: str, blob_name: str) -> None:
        """Delete a blob."""
        ...

    def delete_objects(
        self,
        bucket_name: str,
        blob_names: Sequence[str],
        on_success: Callable[[str], None],
        on_failure: Callable[[str, str], None],
    ) -> None:
        """Delete blobs in one batched round trip, reporting each outcome.

        Callbacks may be invoked from other threads.
        """
        ...

    def rewrite_object(self, bucket_name: str, source_name: str, target_name: str) -> None:
        """Copy a blob server side to a new name within the bucket."""
        ...

    def list_page(
        self,
        bucket_name: str,
        prefix: str | None,
        page_size: int,
        page_token: str | None = None,
    ) -> ListingPage:
        """Fetch one page of blob descriptors."""
        ...
