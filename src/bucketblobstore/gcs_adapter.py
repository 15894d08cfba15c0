"""Google Cloud Storage client adapter."""

import logging
from typing import BinaryIO, Callable, Sequence

import requests
from google.api_core import exceptions as api_exceptions
from google.auth import exceptions as auth_exceptions
from google.cloud import storage
from google.oauth2 import service_account

from .errors import (
    BlobNotFoundError,
    BlobStoreError,
    RemoteStatusError,
    StorageConnectionError,
)
from .storage_protocols import (
    MAX_BATCH_SIZE,
    BucketClient,
    ListingPage,
    RemoteBucket,
    RemoteObject,
)

log = logging.getLogger(__name__)

HTTP_NOT_FOUND = 404

# Setting a chunk size makes the library use resumable uploads.
# Must be a multiple of 256 KiB.
DEFAULT_UPLOAD_CHUNK_SIZE = 32 * 256 * 1024


class GcsAdapter(BucketClient):
    """
    Google Cloud Storage client.

    The library's own retries are turned off on every call: retrying is
    left to the blob store so that one policy applies.
    """

    max_batch_size = MAX_BATCH_SIZE

    def __init__(
        self,
        gcs_client: storage.Client,
        upload_chunk_size: int = DEFAULT_UPLOAD_CHUNK_SIZE,
    ):
        self._client = gcs_client
        self._upload_chunk_size = upload_chunk_size

    @classmethod
    def from_credentials_file(
        cls, project: str | None = None, credentials_path: str | None = None
    ) -> "GcsAdapter":
        kwargs: dict = {}
        if project:
            kwargs["project"] = project
        if credentials_path:
            kwargs["credentials"] = (
                service_account.Credentials.from_service_account_file(credentials_path)
            )
        return cls(storage.Client(**kwargs))

    def get_bucket(self, bucket_name: str) -> RemoteBucket:
        try:
            bucket = self._client.get_bucket(bucket_name, retry=None)
        except Exception as e:
            raise _translate_error(e, bucket_name) from e
        return RemoteBucket(id=bucket.id, name=bucket.name)

    def get_object(self, bucket_name: str, blob_name: str) -> RemoteObject:
        blob = self._get_blob(bucket_name, blob_name)
        return _to_remote_object(blob)

    def open_object(self, bucket_name: str, blob_name: str) -> BinaryIO:
        blob = self._get_blob(bucket_name, blob_name)
        try:
            return blob.open("rb", retry=None)
        except Exception as e:
            raise _translate_error(e, blob_name) from e

    def insert_object(
        self, bucket_name: str, blob_name: str, content: BinaryIO, length: int
    ) -> None:
        blob = self._client.bucket(bucket_name).blob(
            blob_name, chunk_size=self._upload_chunk_size
        )
        try:
            blob.upload_from_file(content, size=length, rewind=False, retry=None)
        except Exception as e:
            raise _translate_error(e, blob_name) from e

    def delete_object(self, bucket_name: str, blob_name: str) -> None:
        try:
            self._client.bucket(bucket_name).delete_blob(blob_name, retry=None)
        except Exception as e:
            raise _translate_error(e, blob_name) from e

    def delete_objects(
        self,
        bucket_name: str,
        blob_names: Sequence[str],
        on_success: Callable[[str], None],
        on_failure: Callable[[str, str], None],
    ) -> None:
        bucket = self._client.bucket(bucket_name)
        batch = self._client.batch(raise_exception=False)
        # Batch.__exit__ drops the per-request responses, so the batch is
        # pushed and finished by hand to read them back.
        self._client._push_batch(batch)
        try:
            for blob_name in blob_names:
                bucket.delete_blob(blob_name, retry=None)
            responses = batch.finish(raise_exception=False)
        except Exception as e:
            raise _translate_error(e) from e
        finally:
            self._client._pop_batch()

        for blob_name, response in zip(blob_names, responses):
            if 200 <= response.status_code < 300:
                on_success(blob_name)
            else:
                on_failure(blob_name, _batch_failure_reason(response))

    def rewrite_object(
        self, bucket_name: str, source_name: str, target_name: str
    ) -> None:
        bucket = self._client.bucket(bucket_name)
        source = bucket.blob(source_name)
        target = bucket.blob(target_name)
        try:
            token, _, _ = target.rewrite(source, retry=None)
            # Large objects are copied over several calls
            while token is not None:
                token, _, _ = target.rewrite(source, token=token, retry=None)
        except Exception as e:
            raise _translate_error(e, source_name) from e

    def list_page(
        self,
        bucket_name: str,
        prefix: str | None,
        page_size: int,
        page_token: str | None = None,
    ) -> ListingPage:
        try:
            iterator = self._client.list_blobs(
                bucket_name,
                prefix=prefix,
                page_size=page_size,
                page_token=page_token,
                retry=None,
            )
            page = next(iterator.pages, None)
            items = [_to_remote_object(blob) for blob in page] if page else []
        except Exception as e:
            raise _translate_error(e, prefix) from e
        return ListingPage(items=items, continuation_token=iterator.next_page_token)

    def _get_blob(self, bucket_name: str, blob_name: str) -> storage.Blob:
        try:
            blob = self._client.bucket(bucket_name).get_blob(blob_name, retry=None)
        except Exception as e:
            raise _translate_error(e, blob_name) from e
        if blob is None:
            raise BlobNotFoundError(f"Blob [{blob_name}] not found", key=blob_name)
        return blob


def _to_remote_object(blob: storage.Blob) -> RemoteObject:
    return RemoteObject(id=blob.id, name=blob.name, size=blob.size)


def _is_not_found(error: api_exceptions.GoogleAPICallError) -> bool:
    if isinstance(error, api_exceptions.NotFound) or error.code == HTTP_NOT_FOUND:
        return True
    # The status can also be embedded in the error details
    for detail in error.errors or []:
        if isinstance(detail, dict) and detail.get("code") == HTTP_NOT_FOUND:
            return True
    return False


def _translate_error(error: Exception, key: str | None = None) -> BlobStoreError:
    if isinstance(error, BlobStoreError):
        return error
    if isinstance(error, api_exceptions.GoogleAPICallError):
        if _is_not_found(error):
            return BlobNotFoundError(str(error), key=key, cause=error)
        return RemoteStatusError(str(error), status_code=error.code, key=key, cause=error)
    if isinstance(
        error,
        (
            requests.exceptions.ConnectionError,
            requests.exceptions.Timeout,
            auth_exceptions.TransportError,
            ConnectionError,
            TimeoutError,
        ),
    ):
        return StorageConnectionError(str(error), key=key, cause=error)
    return BlobStoreError(str(error), key=key, cause=error)


def _batch_failure_reason(response: requests.Response) -> str:
    try:
        return response.json()["error"]["message"]
    except (ValueError, KeyError, TypeError):
        return f"{response.status_code} {response.reason or ''}".strip()
