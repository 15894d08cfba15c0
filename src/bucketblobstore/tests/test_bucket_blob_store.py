import io
import os
import pickle
import sys

import pytest

from bucketblobstore import (
    BlobMetadata,
    BlobNotFoundError,
    BlobStoreError,
    BucketBlobStore,
    BucketNotFoundError,
    DuplicateBlobNameError,
    ListingPage,
    LocalFileAdapter,
    RemoteObject,
    StorageConnectionError,
)
from bucketblobstore.local_file_adapter import _ensure_within


def write_bytes(store, blob_name: str, data: bytes) -> None:
    store.write_blob(blob_name, io.BytesIO(data), len(data))


def read_bytes(store, blob_name: str) -> bytes:
    with store.read_blob(blob_name) as stream:
        return stream.read()


class FailingDeleteClient:
    """Wraps a client so that single deletes fail with a network fault."""

    def __init__(self, inner):
        self._inner = inner
        self.max_batch_size = inner.max_batch_size

    def __getattr__(self, name):
        return getattr(self._inner, name)

    def delete_object(self, bucket_name, blob_name):
        raise StorageConnectionError("connection reset", key=blob_name)


# ---------------------------
# Tests against every backend
# ---------------------------


def test_write_read_round_trip(backend):
    client, bucket, prefix = backend
    with BucketBlobStore(client, bucket) as store:
        data = pickle.dumps({"a": 1, "b": 2})
        write_bytes(store, prefix + "model", data)

        assert pickle.loads(read_bytes(store, prefix + "model")) == {"a": 1, "b": 2}
        listed = store.list_blobs(prefix)
        assert listed["model"] == BlobMetadata("model", len(data))


def test_write_replaces_existing_blob(backend):
    client, bucket, prefix = backend
    with BucketBlobStore(client, bucket) as store:
        write_bytes(store, prefix + "snap", b"first")
        write_bytes(store, prefix + "snap", b"second version")
        assert read_bytes(store, prefix + "snap") == b"second version"


def test_exists_after_write_and_delete(backend):
    client, bucket, prefix = backend
    with BucketBlobStore(client, bucket) as store:
        name = prefix + "index-0"
        assert not store.blob_exists(name)
        write_bytes(store, name, b"x")
        assert store.blob_exists(name)
        store.delete_blob(name)
        assert not store.blob_exists(name)


def test_missing_blob(backend):
    client, bucket, prefix = backend
    with BucketBlobStore(client, bucket) as store:
        with pytest.raises(BlobNotFoundError):
            store.read_blob(prefix + "nonexistent")
        with pytest.raises(BlobNotFoundError):
            store.delete_blob(prefix + "nonexistent")


def test_list_blobs_strips_base_path(backend):
    client, bucket, prefix = backend
    with BucketBlobStore(client, bucket) as store:
        write_bytes(store, prefix + "a1.txt", b"x")
        write_bytes(store, prefix + "a2.txt", b"xy")
        write_bytes(store, prefix + "b1.txt", b"xyz")
        write_bytes(store, "other_" + prefix + "a3.txt", b"x")
        try:
            everything = store.list_blobs(prefix)
            assert set(everything) == {"a1.txt", "a2.txt", "b1.txt"}
            assert everything["b1.txt"].size_in_bytes == 3

            only_a = store.list_blobs_by_prefix(prefix, "a")
            assert set(only_a) == {"a1.txt", "a2.txt"}

            full_names = store.list_blobs_by_path(prefix + "a", None)
            assert set(full_names) == {prefix + "a1.txt", prefix + "a2.txt"}
        finally:
            store.delete_blob("other_" + prefix + "a3.txt")


def test_move_blob(backend):
    client, bucket, prefix = backend
    with BucketBlobStore(client, bucket) as store:
        write_bytes(store, prefix + "pending-1", b"payload")
        store.move_blob(prefix + "pending-1", prefix + "final-1")

        assert not store.blob_exists(prefix + "pending-1")
        assert store.blob_exists(prefix + "final-1")
        assert read_bytes(store, prefix + "final-1") == b"payload"


def test_delete_blobs_by_prefix(backend):
    client, bucket, prefix = backend
    with BucketBlobStore(client, bucket) as store:
        for i in range(5):
            write_bytes(store, f"{prefix}old/{i}", b"x")
        write_bytes(store, prefix + "keep", b"x")

        store.delete_blobs_by_prefix(prefix + "old/")

        assert set(store.list_blobs(prefix)) == {"keep"}


def test_container_view(backend):
    client, bucket, prefix = backend
    with BucketBlobStore(client, bucket) as store:
        container = store.blob_container(prefix + "indices/0")
        assert container.path == prefix + "indices/0/"

        data = b"segment data"
        container.write_blob("__1", io.BytesIO(data), len(data))
        container.write_blob("__2", io.BytesIO(data), len(data))
        container.write_blob("snap-1", io.BytesIO(data), len(data))

        assert container.blob_exists("__1")
        assert store.blob_exists(prefix + "indices/0/__1")
        assert set(container.list_blobs()) == {"__1", "__2", "snap-1"}
        assert set(container.list_blobs_by_prefix("__")) == {"__1", "__2"}

        container.move("snap-1", "snap-2")
        with container.read_blob("snap-2") as stream:
            assert stream.read() == data

        container.delete_blobs(["__1", "__2"])
        assert set(container.list_blobs()) == {"snap-2"}

        container.delete()
        assert container.list_blobs() == {}


# ---------------------------
# Local backend only
# ---------------------------


@pytest.mark.local
def test_missing_bucket_fails_construction(local_client):
    with pytest.raises(BucketNotFoundError):
        BucketBlobStore(local_client, "no_such_bucket")


@pytest.mark.local
def test_bucket_exists(local_store):
    assert local_store.bucket_exists("test_bucket")
    assert not local_store.bucket_exists("no_such_bucket")


@pytest.mark.local
def test_bucket_check_failure_is_store_error(local_client):
    class BrokenBucketClient(LocalFileAdapter):
        def get_bucket(self, bucket_name):
            raise StorageConnectionError("connection refused")

    client = BrokenBucketClient(str(local_client._base_path))
    with pytest.raises(BlobStoreError) as excinfo:
        BucketBlobStore(client, "test_bucket")
    assert not isinstance(excinfo.value, BucketNotFoundError)
    assert isinstance(excinfo.value.__cause__, StorageConnectionError)


@pytest.mark.local
def test_no_caching_between_calls(local_client, local_store):
    write_bytes(local_store, "snap", b"v1")
    assert set(local_store.list_blobs("")) == {"snap"}

    # Change the bucket behind the store's back
    local_client.delete_object("test_bucket", "snap")
    assert not local_store.blob_exists("snap")
    assert local_store.list_blobs("") == {}


@pytest.mark.local
def test_move_is_not_atomic(local_client):
    write_through = BucketBlobStore(local_client, "test_bucket")
    write_bytes(write_through, "a", b"payload")

    store = BucketBlobStore(FailingDeleteClient(local_client), "test_bucket")
    with pytest.raises(StorageConnectionError):
        store.move_blob("a", "b")

    # Copy happened, delete did not: both names are present
    assert write_through.blob_exists("a")
    assert write_through.blob_exists("b")


@pytest.mark.local
def test_duplicate_listed_names_are_reported(local_client):
    class DuplicatingClient(LocalFileAdapter):
        def list_page(self, bucket_name, prefix, page_size, page_token=None):
            item = RemoteObject(id="1", name="base/dup", size=1)
            return ListingPage(items=[item, item])

    client = DuplicatingClient(str(local_client._base_path))
    store = BucketBlobStore(client, "test_bucket")
    with pytest.raises(DuplicateBlobNameError):
        store.list_blobs("base/")


@pytest.mark.local
def test_write_length_mismatch_is_rejected(local_store):
    with pytest.raises(BlobStoreError):
        local_store.write_blob("short", io.BytesIO(b"abc"), 10)
    assert not local_store.blob_exists("short")


@pytest.mark.local
def test_privileged_runner_wraps_every_call(local_client):
    calls = []

    def run_privileged(operation):
        calls.append(operation)
        return operation()

    store = BucketBlobStore(local_client, "test_bucket", run_privileged=run_privileged)
    assert len(calls) == 1  # bucket existence check

    write_bytes(store, "x", b"1")
    store.blob_exists("x")
    read_bytes(store, "x")
    store.list_blobs("")
    store.delete_blob("x")
    # write, exists, read, one listing page, exists + delete
    assert len(calls) == 1 + 1 + 1 + 1 + 1 + 2


@pytest.mark.local
def test_local_path_traversal_protection(local_client):
    with pytest.raises(ValueError) as excinfo:
        local_client.insert_object(
            "test_bucket", "../../etc/passwd", io.BytesIO(b"x"), 1
        )
    assert "escapes base directory" in str(excinfo.value)

    with pytest.raises((ValueError, BlobNotFoundError)):
        local_client.get_bucket("../outside_bucket")


@pytest.mark.local
def test_symlink_outside_protection(local_client, tmp_path):
    if not hasattr(os, "symlink"):
        pytest.skip("Symlinks not supported on this platform")
    if sys.platform == "win32":
        pytest.skip("Symlink creation needs extra privileges on Windows")

    outside_file = tmp_path.parent / "outside.txt"
    outside_file.write_text("secret")
    bucket_path = _ensure_within(local_client._base_path, tmp_path / "test_bucket")
    (bucket_path / "link.txt").symlink_to(outside_file)

    with pytest.raises(ValueError):
        local_client.open_object("test_bucket", "link.txt")
    with pytest.raises(ValueError):
        local_client.delete_object("test_bucket", "link.txt")
    assert outside_file.exists(), "Outside file should not be deleted"


@pytest.mark.local
def test_container_rejects_missing_name(local_store):
    container = local_store.blob_container("indices")
    with pytest.raises(ValueError):
        container.build_key(None)


@pytest.mark.local
def test_local_listing_spans_many_pages(local_client):
    store = BucketBlobStore(local_client, "test_bucket", list_page_size=2)
    for i in range(5):
        write_bytes(store, f"dir/blob-{i}", b"x" * i)
    write_bytes(store, "other/blob", b"y")

    listed = store.list_blobs("dir/")
    assert sorted(listed) == [f"blob-{i}" for i in range(5)]
    assert [listed[f"blob-{i}"].size_in_bytes for i in range(5)] == list(range(5))
