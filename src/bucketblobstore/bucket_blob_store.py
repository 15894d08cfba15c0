import logging
from typing import BinaryIO, Iterable

from .batch_delete import BatchDeleteCoordinator
from .errors import (
    BlobNotFoundError,
    BlobStoreError,
    BucketNotFoundError,
    DuplicateBlobNameError,
)
from .listing import iter_remote_objects
from .metadata import BlobMetadata, project_metadata
from .retry import (
    DEFAULT_MAX_ATTEMPTS,
    TransientCallExecutor,
    is_transient_read_error,
    is_transient_write_error,
)
from .storage_protocols import (
    MAX_BATCH_SIZE,
    BucketClient,
    PrivilegedRunner,
    run_directly,
)

log = logging.getLogger(__name__)


class BucketBlobStore:
    """
    Blob store bound to a single bucket of a remote storage service.

    Every call goes to the service: nothing is cached between calls. Single
    blob reads and writes are retried on transient failures, listings are
    paged lazily and multi blob deletes are batched.
    """

    def __init__(
        self,
        client: BucketClient,
        bucket_name: str,
        run_privileged: PrivilegedRunner = run_directly,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        retry_backoff_seconds: float = 0.0,
        list_page_size: int = MAX_BATCH_SIZE,
    ) -> None:
        self.client = client
        self.bucket_name = bucket_name
        self._run = run_privileged
        self.list_page_size = list_page_size
        self._read_executor = TransientCallExecutor(
            is_transient_read_error,
            max_attempts=max_attempts,
            backoff_seconds=retry_backoff_seconds,
        )
        self._write_executor = TransientCallExecutor(
            is_transient_write_error,
            max_attempts=max_attempts,
            backoff_seconds=retry_backoff_seconds,
        )
        self._batch_deleter = BatchDeleteCoordinator(
            client, bucket_name, self.delete_blob, run_privileged=run_privileged
        )

        if not self.bucket_exists(bucket_name):
            raise BucketNotFoundError(
                f"Bucket [{bucket_name}] does not exist", key=bucket_name
            )

    def __enter__(self) -> "BucketBlobStore":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def close(self) -> None:
        # The client handle is shared and owned by whoever built it.
        pass

    def blob_container(self, path: str) -> "BucketBlobContainer":
        return BucketBlobContainer(path, self)

    def delete(self, path: str) -> None:
        """Delete every blob under `path`."""
        self.delete_blobs_by_prefix(path)

    def bucket_exists(self, bucket_name: str) -> bool:
        log.debug("Checking existence of bucket called %s", bucket_name)
        try:
            bucket = self._run(lambda: self.client.get_bucket(bucket_name))
        except BlobNotFoundError:
            return False
        except Exception as e:
            raise BlobStoreError(
                f"Unable to check if bucket [{bucket_name}] exists",
                key=bucket_name,
                cause=e,
            ) from e
        return bool(bucket is not None and bucket.id)

    def blob_exists(self, blob_name: str) -> bool:
        log.debug("Checking existence of blob called %s", blob_name)
        try:
            blob = self._run(
                lambda: self.client.get_object(self.bucket_name, blob_name)
            )
        except BlobNotFoundError:
            return False
        return bool(blob is not None and blob.id)

    def read_blob(self, blob_name: str) -> BinaryIO:
        """
        Open the blob for reading.
        Raises BlobNotFoundError at once if absent, transient failures are
        retried before giving up with RetriesExhaustedError.
        """
        return self._read_executor.execute(
            lambda: self._run(
                lambda: self.client.open_object(self.bucket_name, blob_name)
            ),
            description=f"Reading blob [{blob_name}]",
        )

    def write_blob(self, blob_name: str, content: BinaryIO, length: int) -> None:
        """
        Upload exactly `length` bytes from `content` as `blob_name`, replacing
        any existing blob of that name.

        A seekable stream is rewound before each retry so that the upload
        restarts from scratch. A stream that cannot seek gets a single attempt.
        """
        start = _stream_position(content)

        def upload() -> None:
            if start is not None:
                content.seek(start)
            self._run(
                lambda: self.client.insert_object(
                    self.bucket_name, blob_name, content, length
                )
            )

        self._write_executor.execute(
            upload,
            description=f"Writing blob [{blob_name}]",
            max_attempts=None if start is not None else 1,
        )

    def delete_blob(self, blob_name: str) -> None:
        if not self.blob_exists(blob_name):
            raise BlobNotFoundError(
                f"Blob [{blob_name}] does not exist", key=blob_name
            )
        self._run(lambda: self.client.delete_object(self.bucket_name, blob_name))

    def delete_blobs(self, blob_names: Iterable[str]) -> None:
        self._batch_deleter.delete_all(blob_names)

    def delete_blobs_by_prefix(self, prefix: str) -> None:
        self.delete_blobs(self.list_blobs_by_path(prefix, None).keys())

    def list_blobs(self, path: str) -> dict[str, BlobMetadata]:
        """List the blobs under `path`, named relative to it."""
        return self.list_blobs_by_path(path, path)

    def list_blobs_by_prefix(self, path: str, prefix: str) -> dict[str, BlobMetadata]:
        """List the blobs under `path` whose relative name starts with `prefix`."""
        return self.list_blobs_by_path(path + prefix, path)

    def list_blobs_by_path(
        self, prefix: str, path_to_remove: str | None
    ) -> dict[str, BlobMetadata]:
        blobs: dict[str, BlobMetadata] = {}
        listing = iter_remote_objects(
            self.client,
            self.bucket_name,
            prefix,
            page_size=self.list_page_size,
            run_privileged=self._run,
        )
        for remote in listing:
            metadata = project_metadata(remote, path_to_remove)
            if metadata.name in blobs:
                raise DuplicateBlobNameError(
                    f"Duplicate blob name [{metadata.name}] while listing [{prefix}]",
                    key=metadata.name,
                )
            blobs[metadata.name] = metadata
        return blobs

    def move_blob(self, source_blob_name: str, target_blob_name: str) -> None:
        """
        Rename a blob by copying it server side, then deleting the source.

        This is not atomic: if the delete fails, both names exist afterwards.
        """
        log.debug("Moving blob from %s to %s", source_blob_name, target_blob_name)
        self._run(
            lambda: self.client.rewrite_object(
                self.bucket_name, source_blob_name, target_blob_name
            )
        )
        self._run(
            lambda: self.client.delete_object(self.bucket_name, source_blob_name)
        )


def _stream_position(content: BinaryIO) -> int | None:
    seekable = getattr(content, "seekable", None)
    if seekable is None or not seekable():
        return None
    return content.tell()


class BucketBlobContainer:
    """
    View of the blobs under one path of a BucketBlobStore.
    Blob names given to and returned by the container are relative to the path.
    """

    def __init__(self, path: str, store: BucketBlobStore) -> None:
        if path and not path.endswith("/"):
            path += "/"
        self.path = path
        self.store = store

    def build_key(self, blob_name: str) -> str:
        if blob_name is None:
            raise ValueError("blob_name must not be None")
        return self.path + blob_name

    def blob_exists(self, blob_name: str) -> bool:
        return self.store.blob_exists(self.build_key(blob_name))

    def read_blob(self, blob_name: str) -> BinaryIO:
        return self.store.read_blob(self.build_key(blob_name))

    def write_blob(self, blob_name: str, content: BinaryIO, length: int) -> None:
        self.store.write_blob(self.build_key(blob_name), content, length)

    def delete_blob(self, blob_name: str) -> None:
        self.store.delete_blob(self.build_key(blob_name))

    def delete_blobs(self, blob_names: Iterable[str]) -> None:
        self.store.delete_blobs(self.build_key(name) for name in blob_names)

    def list_blobs(self) -> dict[str, BlobMetadata]:
        return self.store.list_blobs(self.path)

    def list_blobs_by_prefix(self, prefix: str) -> dict[str, BlobMetadata]:
        return self.store.list_blobs_by_prefix(self.path, prefix)

    def move(self, source_blob_name: str, target_blob_name: str) -> None:
        self.store.move_blob(
            self.build_key(source_blob_name), self.build_key(target_blob_name)
        )

    def delete(self) -> None:
        self.store.delete(self.path)
