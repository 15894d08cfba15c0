import os
import tempfile
import threading
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import BinaryIO, Callable, Sequence

from .errors import BlobNotFoundError, BlobStoreError, RemoteStatusError
from .storage_protocols import (
    MAX_BATCH_SIZE,
    BucketClient,
    ListingPage,
    RemoteBucket,
    RemoteObject,
)

_COPY_BUFFER_SIZE = 1024 * 1024


def _ensure_within(base: Path, target: Path, strict: bool = True) -> Path:
    """
    Resolve target path and ensure it is inside base path.
    strict=True will fail if the target does not exist (good for read/delete).
    strict=False allows non-existing targets (good for upload).
    """
    base_resolved = base.resolve(strict=True)
    if strict:
        target_resolved = target.resolve(strict=True)
    else:
        target_resolved = target.resolve()
    if target_resolved != base_resolved and not target_resolved.is_relative_to(
        base_resolved
    ):
        raise ValueError(
            f"Path {target_resolved} escapes base directory {base_resolved}"
        )
    return target_resolved


# Global lock registry, one lock per blob path
_lock_registry: dict[str, threading.Lock] = {}
_registry_lock = threading.Lock()


def _get_global_lock(path: Path) -> threading.Lock:
    key = str(path)
    with _registry_lock:
        if key not in _lock_registry:
            _lock_registry[key] = threading.Lock()
        return _lock_registry[key]


class LocalFileAdapter(BucketClient):
    """
    Local filesystem storage client.

    Buckets are directories under `base_path` and blob names are paths
    relative to their bucket directory. Listing pages are ordered by name
    and the continuation token is the last name handed out.
    """

    max_batch_size = MAX_BATCH_SIZE

    def __init__(self, base_path: str, batch_workers: int = 8):
        self._base_path = Path(base_path).resolve()
        self._base_path.mkdir(parents=True, exist_ok=True)
        self._batch_workers = batch_workers

    def create_bucket(self, bucket_name: str) -> RemoteBucket:
        bucket_path = self._bucket_path(bucket_name, strict=False)
        bucket_path.mkdir(parents=True, exist_ok=True)
        return RemoteBucket(id=bucket_name, name=bucket_name)

    def get_bucket(self, bucket_name: str) -> RemoteBucket:
        self._existing_bucket_path(bucket_name)
        return RemoteBucket(id=bucket_name, name=bucket_name)

    def get_object(self, bucket_name: str, blob_name: str) -> RemoteObject:
        blob_path = self._existing_blob_path(bucket_name, blob_name)
        stat = blob_path.stat()
        return RemoteObject(
            id=f"{bucket_name}/{blob_name}/{stat.st_mtime_ns}",
            name=blob_name,
            size=stat.st_size,
        )

    def open_object(self, bucket_name: str, blob_name: str) -> BinaryIO:
        blob_path = self._existing_blob_path(bucket_name, blob_name)
        return open(blob_path, "rb")

    def insert_object(
        self, bucket_name: str, blob_name: str, content: BinaryIO, length: int
    ) -> None:
        blob_path = self._blob_path(bucket_name, blob_name, strict=False)
        blob_path.parent.mkdir(parents=True, exist_ok=True)
        # Stage next to the target so the final replace is atomic
        fd, tmp_name = tempfile.mkstemp(dir=blob_path.parent, prefix=".upload-")
        try:
            with os.fdopen(fd, "wb") as staged:
                remaining = length
                while remaining > 0:
                    chunk = content.read(min(remaining, _COPY_BUFFER_SIZE))
                    if not chunk:
                        break
                    staged.write(chunk)
                    remaining -= len(chunk)
            if remaining > 0 or content.read(1):
                raise RemoteStatusError(
                    f"Blob [{blob_name}] content does not match declared length {length}",
                    status_code=400,
                    key=blob_name,
                )
            with _get_global_lock(blob_path):
                os.replace(tmp_name, blob_path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

    def delete_object(self, bucket_name: str, blob_name: str) -> None:
        blob_path = self._existing_blob_path(bucket_name, blob_name)
        with _get_global_lock(blob_path):
            try:
                blob_path.unlink()
            except FileNotFoundError as e:
                raise BlobNotFoundError(
                    f"Blob [{blob_name}] not found", key=blob_name, cause=e
                ) from e

    def delete_objects(
        self,
        bucket_name: str,
        blob_names: Sequence[str],
        on_success: Callable[[str], None],
        on_failure: Callable[[str, str], None],
    ) -> None:
        if len(blob_names) > self.max_batch_size:
            raise RemoteStatusError(
                f"Batch of {len(blob_names)} requests exceeds {self.max_batch_size}",
                status_code=400,
            )
        self._existing_bucket_path(bucket_name)

        def delete_one(blob_name: str) -> None:
            try:
                self.delete_object(bucket_name, blob_name)
            except (BlobStoreError, ValueError, OSError) as e:
                on_failure(blob_name, str(e))
            else:
                on_success(blob_name)

        with ThreadPoolExecutor(max_workers=self._batch_workers) as pool:
            list(pool.map(delete_one, blob_names))

    def rewrite_object(
        self, bucket_name: str, source_name: str, target_name: str
    ) -> None:
        source_path = self._existing_blob_path(bucket_name, source_name)
        with open(source_path, "rb") as source:
            size = source_path.stat().st_size
            self.insert_object(bucket_name, target_name, source, size)

    def list_page(
        self,
        bucket_name: str,
        prefix: str | None,
        page_size: int,
        page_token: str | None = None,
    ) -> ListingPage:
        bucket_path = self._existing_bucket_path(bucket_name)
        # Each page rescans the bucket: a full listing is quadratic in the
        # number of pages, fine for test-sized buckets.
        names = sorted(
            path.relative_to(bucket_path).as_posix()
            for path in bucket_path.rglob("*")
            if path.is_file() and not path.name.startswith(".upload-")
        )
        names = [
            name
            for name in names
            if name.startswith(prefix or "") and (page_token is None or name > page_token)
        ]
        page_names = names[:page_size]
        items = [self.get_object(bucket_name, name) for name in page_names]
        token = page_names[-1] if len(names) > page_size else None
        return ListingPage(items=items, continuation_token=token)

    def _bucket_path(self, bucket_name: str, strict: bool) -> Path:
        return _ensure_within(
            self._base_path, self._base_path / bucket_name, strict=strict
        )

    def _existing_bucket_path(self, bucket_name: str) -> Path:
        try:
            bucket_path = self._bucket_path(bucket_name, strict=True)
        except FileNotFoundError as e:
            raise BlobNotFoundError(
                f"Bucket [{bucket_name}] not found", key=bucket_name, cause=e
            ) from e
        if not bucket_path.is_dir():
            raise BlobNotFoundError(f"Bucket [{bucket_name}] not found", key=bucket_name)
        return bucket_path

    def _blob_path(self, bucket_name: str, blob_name: str, strict: bool) -> Path:
        bucket_path = self._existing_bucket_path(bucket_name)
        return _ensure_within(bucket_path, bucket_path / blob_name, strict=strict)

    def _existing_blob_path(self, bucket_name: str, blob_name: str) -> Path:
        try:
            blob_path = self._blob_path(bucket_name, blob_name, strict=True)
        except FileNotFoundError as e:
            raise BlobNotFoundError(
                f"Blob [{blob_name}] not found", key=blob_name, cause=e
            ) from e
        if not blob_path.is_file():
            raise BlobNotFoundError(f"Blob [{blob_name}] not found", key=blob_name)
        return blob_path
