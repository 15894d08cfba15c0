import io
import logging
import time
from typing import BinaryIO, Callable, Iterator, Sequence

from azure.core.exceptions import (
    AzureError,
    HttpResponseError,
    ResourceNotFoundError,
    ServiceRequestError,
    ServiceResponseError,
)
from azure.storage.blob import BlobServiceClient

from .errors import (
    BlobNotFoundError,
    BlobStoreError,
    RemoteStatusError,
    StorageConnectionError,
)
from .storage_protocols import BucketClient, ListingPage, RemoteBucket, RemoteObject

log = logging.getLogger(__name__)

# Azure blob batches accept at most 256 sub-requests.
AZURE_MAX_BATCH_SIZE = 256


class AzureBlobAdapter(BucketClient):
    """Azure Blob Storage client. Containers play the role of buckets."""

    max_batch_size = AZURE_MAX_BATCH_SIZE

    def __init__(
        self, blob_service_client: BlobServiceClient, copy_poll_seconds: float = 1.0
    ):
        """
        Create an adapter from an existing BlobServiceClient.
        This allows custom authentication and configuration.
        """
        self._client = blob_service_client
        self._copy_poll_seconds = copy_poll_seconds

    @classmethod
    def from_connection_string(cls, connection_string: str) -> "AzureBlobAdapter":
        """
        Convenience builder: create adapter from a connection string.
        """
        client = BlobServiceClient.from_connection_string(connection_string)
        return cls(client)

    def close(self) -> None:
        self._client.close()

    def get_bucket(self, bucket_name: str) -> RemoteBucket:
        container = self._client.get_container_client(bucket_name)
        try:
            props = container.get_container_properties()
        except AzureError as e:
            raise _translate_error(e, bucket_name) from e
        return RemoteBucket(id=props.etag or props.name, name=props.name)

    def get_object(self, bucket_name: str, blob_name: str) -> RemoteObject:
        blob = self._client.get_blob_client(bucket_name, blob_name)
        try:
            props = blob.get_blob_properties()
        except AzureError as e:
            raise _translate_error(e, blob_name) from e
        return RemoteObject(id=props.etag, name=props.name, size=props.size)

    def open_object(self, bucket_name: str, blob_name: str) -> BinaryIO:
        blob = self._client.get_blob_client(bucket_name, blob_name)
        try:
            downloader = blob.download_blob()
        except AzureError as e:
            raise _translate_error(e, blob_name) from e
        return io.BufferedReader(_ChunkStream(iter(downloader.chunks())))

    def insert_object(
        self, bucket_name: str, blob_name: str, content: BinaryIO, length: int
    ) -> None:
        blob = self._client.get_blob_client(bucket_name, blob_name)
        try:
            blob.upload_blob(content, length=length, overwrite=True)
        except AzureError as e:
            raise _translate_error(e, blob_name) from e

    def delete_object(self, bucket_name: str, blob_name: str) -> None:
        blob = self._client.get_blob_client(bucket_name, blob_name)
        try:
            blob.delete_blob()
        except AzureError as e:
            raise _translate_error(e, blob_name) from e

    def delete_objects(
        self,
        bucket_name: str,
        blob_names: Sequence[str],
        on_success: Callable[[str], None],
        on_failure: Callable[[str, str], None],
    ) -> None:
        container = self._client.get_container_client(bucket_name)
        try:
            responses = list(
                container.delete_blobs(*blob_names, raise_on_any_failure=False)
            )
        except AzureError as e:
            raise _translate_error(e) from e

        for blob_name, response in zip(blob_names, responses):
            if 200 <= response.status_code < 300:
                on_success(blob_name)
            else:
                on_failure(blob_name, f"{response.status_code} {response.reason}")

    def rewrite_object(
        self, bucket_name: str, source_name: str, target_name: str
    ) -> None:
        source = self._client.get_blob_client(bucket_name, source_name)
        target = self._client.get_blob_client(bucket_name, target_name)
        try:
            copy = target.start_copy_from_url(source.url)
            status = copy.get("copy_status")
            while status == "pending":
                time.sleep(self._copy_poll_seconds)
                status = target.get_blob_properties().copy.status
        except AzureError as e:
            raise _translate_error(e, source_name) from e
        if status != "success":
            raise RemoteStatusError(
                f"Copy of blob '{source_name}' to '{target_name}' ended as {status}",
                status_code=None,
                key=source_name,
            )

    def list_page(
        self,
        bucket_name: str,
        prefix: str | None,
        page_size: int,
        page_token: str | None = None,
    ) -> ListingPage:
        container = self._client.get_container_client(bucket_name)
        try:
            pages = container.list_blobs(
                name_starts_with=prefix, results_per_page=page_size
            ).by_page(continuation_token=page_token)
            page = next(pages, None)
            items = (
                [RemoteObject(id=b.etag, name=b.name, size=b.size) for b in page]
                if page is not None
                else []
            )
        except AzureError as e:
            raise _translate_error(e, prefix) from e
        return ListingPage(items=items, continuation_token=pages.continuation_token)


def _translate_error(error: AzureError, key: str | None = None) -> BlobStoreError:
    if isinstance(error, ResourceNotFoundError):
        return BlobNotFoundError(f"'{key}' not found", key=key, cause=error)
    if isinstance(error, (ServiceRequestError, ServiceResponseError)):
        return StorageConnectionError(str(error), key=key, cause=error)
    if isinstance(error, HttpResponseError):
        status = getattr(error, "status_code", None)
        if status == 404:
            return BlobNotFoundError(f"'{key}' not found", key=key, cause=error)
        return RemoteStatusError(str(error), status_code=status, key=key, cause=error)
    return BlobStoreError(str(error), key=key, cause=error)


class _ChunkStream(io.RawIOBase):
    """Readable stream over the chunks of a blob download."""

    def __init__(self, chunks: Iterator[bytes]):
        self._chunks = chunks
        self._pending = b""

    def readable(self) -> bool:
        return True

    def readinto(self, buffer) -> int:
        while not self._pending:
            chunk = next(self._chunks, None)
            if chunk is None:
                return 0
            self._pending = chunk
        size = min(len(buffer), len(self._pending))
        buffer[:size] = self._pending[:size]
        self._pending = self._pending[size:]
        return size
