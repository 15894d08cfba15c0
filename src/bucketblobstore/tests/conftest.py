import os
import uuid

import pytest
from dotenv import load_dotenv

from bucketblobstore import (
    AzureBlobAdapter,
    BucketBlobStore,
    GcsAdapter,
    LocalFileAdapter,
)

load_dotenv()

# GCS config
GCS_BUCKET = os.environ.get("GCS_TEST_BUCKET")
GCS_PROJECT = os.environ.get("GCS_PROJECT")
GCS_CREDENTIALS = os.environ.get("GOOGLE_APPLICATION_CREDENTIALS")

# Azure config
CONN_STR = os.environ.get("AZURE_CONN_STR")
CONTAINER_NAME = os.environ.get("AZURE_CONTAINER")

# Local config
LOCAL_BUCKET = "test_bucket"


def unique_key(suffix: str) -> str:
    return f"test_{suffix}_{uuid.uuid4()}"


def _cleanup(client, bucket_name: str, prefix: str) -> None:
    store = BucketBlobStore(client, bucket_name)
    store.delete_blobs_by_prefix(prefix)


# ---------------------------
# Parametrize backends
# ---------------------------
@pytest.fixture(
    params=[
        pytest.param("gcs", marks=pytest.mark.gcs),
        pytest.param("azure", marks=pytest.mark.azure),
        pytest.param("local", marks=pytest.mark.local),
    ]
)
def backend(request, tmp_path):
    """Fixture that provides a (client, bucket_name, prefix) for each backend."""
    prefix = unique_key("run") + "/"
    if request.param == "gcs":
        if not GCS_BUCKET:
            pytest.skip("GCS backend not configured (GCS_TEST_BUCKET missing)")
        client = GcsAdapter.from_credentials_file(
            project=GCS_PROJECT, credentials_path=GCS_CREDENTIALS
        )
        yield client, GCS_BUCKET, prefix
        _cleanup(client, GCS_BUCKET, prefix)

    elif request.param == "azure":
        if not CONN_STR or not CONTAINER_NAME:
            pytest.skip(
                "Azure backend not configured (AZURE_CONN_STR / AZURE_CONTAINER missing)"
            )
        client = AzureBlobAdapter.from_connection_string(CONN_STR)
        yield client, CONTAINER_NAME, prefix
        _cleanup(client, CONTAINER_NAME, prefix)
        client.close()

    elif request.param == "local":
        # tmp_path is auto-cleaned by pytest
        client = LocalFileAdapter(str(tmp_path))
        client.create_bucket(LOCAL_BUCKET)
        yield client, LOCAL_BUCKET, prefix


@pytest.fixture
def local_client(tmp_path):
    client = LocalFileAdapter(str(tmp_path))
    client.create_bucket(LOCAL_BUCKET)
    return client


@pytest.fixture
def local_store(local_client):
    with BucketBlobStore(local_client, LOCAL_BUCKET) as store:
        yield store
