import logging
from collections import deque
from typing import Iterator

from .errors import ListingError
from .storage_protocols import (
    MAX_BATCH_SIZE,
    BucketClient,
    PrivilegedRunner,
    RemoteObject,
    run_directly,
)

log = logging.getLogger(__name__)


class ObjectListing(Iterator[RemoteObject]):
    """
    Lazy listing of the blobs under a prefix.

    Pages are fetched on demand, following continuation tokens. Every item
    of a page is handed out before the next page is requested. A listing
    owns its cursor and is consumed once; list again to start over.
    """

    def __init__(
        self,
        client: BucketClient,
        bucket_name: str,
        prefix: str | None,
        page_size: int = MAX_BATCH_SIZE,
        run_privileged: PrivilegedRunner = run_directly,
    ) -> None:
        self._client = client
        self._bucket_name = bucket_name
        self._prefix = prefix or None
        self._page_size = max(1, min(page_size, MAX_BATCH_SIZE))
        self._run = run_privileged
        self._buffer: deque[RemoteObject] = deque()
        self._page_token: str | None = None
        self._exhausted = False
        self.pages_fetched = 0

    def __iter__(self) -> "ObjectListing":
        return self

    def __next__(self) -> RemoteObject:
        while not self._buffer:
            if self._exhausted:
                raise StopIteration
            self._fetch_page()
        return self._buffer.popleft()

    def _fetch_page(self) -> None:
        token = self._page_token
        log.debug(
            "Listing bucket [%s] prefix [%s], page %d",
            self._bucket_name,
            self._prefix,
            self.pages_fetched + 1,
        )
        try:
            page = self._run(
                lambda: self._client.list_page(
                    self._bucket_name, self._prefix, self._page_size, token
                )
            )
        except Exception as e:
            self._exhausted = True
            raise ListingError(
                f"Exception while listing objects in bucket [{self._bucket_name}]",
                key=self._prefix,
                cause=e,
            ) from e
        self.pages_fetched += 1

        if not page.items:
            self._exhausted = True
            return
        self._buffer.extend(page.items)
        if page.continuation_token is None:
            self._exhausted = True
        else:
            self._page_token = page.continuation_token


def iter_remote_objects(
    client: BucketClient,
    bucket_name: str,
    prefix: str | None,
    page_size: int = MAX_BATCH_SIZE,
    run_privileged: PrivilegedRunner = run_directly,
) -> ObjectListing:
    return ObjectListing(client, bucket_name, prefix, page_size, run_privileged)
