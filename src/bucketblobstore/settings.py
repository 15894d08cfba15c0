"""Settings for building a blob store from the environment."""

import logging
import os
from dataclasses import dataclass
from typing import Mapping

from dotenv import load_dotenv

from .bucket_blob_store import BucketBlobStore
from .retry import DEFAULT_MAX_ATTEMPTS
from .storage_protocols import (
    MAX_BATCH_SIZE,
    BucketClient,
    PrivilegedRunner,
    run_directly,
)

log = logging.getLogger(__name__)

SUPPORTED_BACKENDS = ("gcs", "azure", "local")


@dataclass(frozen=True)
class BlobStoreSettings:
    bucket_name: str
    backend: str = "gcs"
    gcs_project: str | None = None
    credentials_path: str | None = None
    azure_connection_string: str | None = None
    local_base_path: str | None = None
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    retry_backoff_seconds: float = 0.0
    list_page_size: int = MAX_BATCH_SIZE

    @classmethod
    def from_env(
        cls,
        environ: Mapping[str, str] | None = None,
        dotenv_path: str | None = None,
    ) -> "BlobStoreSettings":
        """
        Read settings from environment variables.
        Values from a .env file are loaded first unless `environ` is given.
        """
        if environ is None:
            load_dotenv(dotenv_path)
            environ = os.environ

        bucket_name = environ.get("BLOBSTORE_BUCKET")
        if not bucket_name:
            raise ValueError("Bucket name required: set BLOBSTORE_BUCKET")

        return cls(
            bucket_name=bucket_name,
            backend=environ.get("BLOBSTORE_BACKEND", "gcs").lower(),
            gcs_project=environ.get("GCS_PROJECT"),
            credentials_path=environ.get("GOOGLE_APPLICATION_CREDENTIALS"),
            azure_connection_string=environ.get("AZURE_CONN_STR"),
            local_base_path=environ.get("BLOBSTORE_LOCAL_PATH"),
            max_attempts=_int_setting(
                environ, "BLOBSTORE_MAX_ATTEMPTS", DEFAULT_MAX_ATTEMPTS
            ),
            retry_backoff_seconds=_float_setting(
                environ, "BLOBSTORE_RETRY_BACKOFF", 0.0
            ),
            list_page_size=_int_setting(
                environ, "BLOBSTORE_LIST_PAGE_SIZE", MAX_BATCH_SIZE
            ),
        )


def _int_setting(environ: Mapping[str, str], name: str, default: int) -> int:
    raw = environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except ValueError as e:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from e
    if value < 1:
        raise ValueError(f"{name} must be at least 1, got {value}")
    return value


def _float_setting(environ: Mapping[str, str], name: str, default: float) -> float:
    raw = environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        value = float(raw)
    except ValueError as e:
        raise ValueError(f"{name} must be a number, got {raw!r}") from e
    if value < 0:
        raise ValueError(f"{name} must not be negative, got {value}")
    return value


def create_bucket_client(settings: BlobStoreSettings) -> BucketClient:
    """Build the storage client for the configured backend."""
    backend = settings.backend
    log.debug("Creating %s storage client", backend)

    if backend == "gcs":
        from .gcs_adapter import GcsAdapter

        return GcsAdapter.from_credentials_file(
            project=settings.gcs_project, credentials_path=settings.credentials_path
        )
    if backend == "azure":
        from .azure_blob_adapter import AzureBlobAdapter

        if not settings.azure_connection_string:
            raise ValueError("Azure storage requires AZURE_CONN_STR")
        return AzureBlobAdapter.from_connection_string(settings.azure_connection_string)
    if backend == "local":
        from .local_file_adapter import LocalFileAdapter

        if not settings.local_base_path:
            raise ValueError("Local storage requires BLOBSTORE_LOCAL_PATH")
        return LocalFileAdapter(settings.local_base_path)

    raise ValueError(
        f"Unsupported storage backend: {backend!r}. "
        f"Supported: {', '.join(SUPPORTED_BACKENDS)}"
    )


def open_blob_store(
    settings: BlobStoreSettings,
    client: BucketClient | None = None,
    run_privileged: PrivilegedRunner = run_directly,
) -> BucketBlobStore:
    """Build a BucketBlobStore; fails if the configured bucket does not exist."""
    return BucketBlobStore(
        client or create_bucket_client(settings),
        settings.bucket_name,
        run_privileged=run_privileged,
        max_attempts=settings.max_attempts,
        retry_backoff_seconds=settings.retry_backoff_seconds,
        list_page_size=settings.list_page_size,
    )
