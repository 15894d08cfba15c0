"""
bucketblobstore
===============

Synchronous blob store over a bucket of a remote object storage service,
for snapshot and backup systems. Backed by Google Cloud Storage, Azure Blob
Storage or the local filesystem.

Main entry points:
- BucketBlobStore: the store bound to one bucket
- BucketBlobContainer: path-scoped view returned by store.blob_container()
- GcsAdapter, AzureBlobAdapter, LocalFileAdapter: storage clients
- BlobStoreSettings, open_blob_store: build a store from the environment
- BlobNotFoundError, RetriesExhaustedError, ...: exceptions

Example:
    from bucketblobstore import BucketBlobStore, GcsAdapter

    with BucketBlobStore(GcsAdapter.from_credentials_file(), "snapshots") as store:
        container = store.blob_container("indices/0/")
        blobs = container.list_blobs()
"""

from .bucket_blob_store import BucketBlobStore, BucketBlobContainer
from .batch_delete import BatchDeleteCoordinator, CountDown
from .listing import ObjectListing, iter_remote_objects
from .metadata import BlobMetadata, project_metadata
from .retry import (
    TransientCallExecutor,
    is_transient_read_error,
    is_transient_write_error,
)

from .errors import (
    BlobStoreError,
    BlobNotFoundError,
    BucketNotFoundError,
    StorageConnectionError,
    RemoteStatusError,
    RetriesExhaustedError,
    BlobIntegrityError,
    DuplicateBlobNameError,
    PartialBatchFailureError,
    ListingError,
)

from .storage_protocols import (
    MAX_BATCH_SIZE,
    BucketClient,
    ListingPage,
    PrivilegedRunner,
    RemoteBucket,
    RemoteObject,
    run_directly,
)
from .local_file_adapter import LocalFileAdapter
from .azure_blob_adapter import AzureBlobAdapter
from .gcs_adapter import GcsAdapter
from .settings import BlobStoreSettings, create_bucket_client, open_blob_store

import importlib.metadata

try:
    __version__ = importlib.metadata.version(__name__)
except importlib.metadata.PackageNotFoundError:
    __version__ = "0.0.0"

__all__ = [
    "BucketBlobStore",
    "BucketBlobContainer",
    "BatchDeleteCoordinator",
    "CountDown",
    "ObjectListing",
    "iter_remote_objects",
    "BlobMetadata",
    "project_metadata",
    "TransientCallExecutor",
    "is_transient_read_error",
    "is_transient_write_error",
    "BlobStoreError",
    "BlobNotFoundError",
    "BucketNotFoundError",
    "StorageConnectionError",
    "RemoteStatusError",
    "RetriesExhaustedError",
    "BlobIntegrityError",
    "DuplicateBlobNameError",
    "PartialBatchFailureError",
    "ListingError",
    "MAX_BATCH_SIZE",
    "BucketClient",
    "ListingPage",
    "PrivilegedRunner",
    "RemoteBucket",
    "RemoteObject",
    "run_directly",
    "LocalFileAdapter",
    "AzureBlobAdapter",
    "GcsAdapter",
    "BlobStoreSettings",
    "create_bucket_client",
    "open_blob_store",
]
