import logging
import threading
from typing import Callable, Iterable, Iterator

from .errors import PartialBatchFailureError
from .storage_protocols import (
    MAX_BATCH_SIZE,
    BucketClient,
    PrivilegedRunner,
    run_directly,
)

log = logging.getLogger(__name__)


class CountDown:
    """Thread-safe counter tracking outstanding completions."""

    def __init__(self, count: int) -> None:
        if count < 0:
            raise ValueError(f"count must not be negative, got {count}")
        self._remaining = count
        self._lock = threading.Lock()

    def count_down(self) -> bool:
        """Decrement once; returns True when this call reached zero."""
        with self._lock:
            if self._remaining == 0:
                return False
            self._remaining -= 1
            return self._remaining == 0

    @property
    def remaining(self) -> int:
        with self._lock:
            return self._remaining

    @property
    def is_counted_down(self) -> bool:
        return self.remaining == 0


def chunked(names: list[str], size: int) -> Iterator[list[str]]:
    for start in range(0, len(names), size):
        yield names[start : start + size]


class BatchDeleteCoordinator:
    """
    Deletes many blobs through the service's batched delete requests.

    Names are split into chunks no larger than the batch ceiling, and
    chunks are sent one after the other. The first chunk with a failed
    deletion stops the run with PartialBatchFailureError; blobs deleted by
    earlier chunks stay deleted.
    """

    def __init__(
        self,
        client: BucketClient,
        bucket_name: str,
        delete_one: Callable[[str], None],
        run_privileged: PrivilegedRunner = run_directly,
        max_batch_size: int = MAX_BATCH_SIZE,
    ) -> None:
        self._client = client
        self._bucket_name = bucket_name
        self._delete_one = delete_one
        self._run = run_privileged
        client_limit = getattr(client, "max_batch_size", max_batch_size)
        self.batch_size = max(1, min(max_batch_size, client_limit))

    def delete_all(self, blob_names: Iterable[str]) -> None:
        # Collapse duplicates, keeping first-seen order
        names = list(dict.fromkeys(blob_names))
        if not names:
            return
        if len(names) == 1:
            self._delete_one(names[0])
            return

        for chunk in chunked(names, self.batch_size):
            self._delete_chunk(chunk)

    def _delete_chunk(self, chunk: list[str]) -> None:
        countdown = CountDown(len(chunk))

        def on_success(blob_name: str) -> None:
            countdown.count_down()

        def on_failure(blob_name: str, reason: str) -> None:
            log.error(
                "failed to delete blob [%s] in bucket [%s]: %s",
                blob_name,
                self._bucket_name,
                reason,
            )

        log.debug(
            "Deleting %d blobs from bucket [%s] in one batch",
            len(chunk),
            self._bucket_name,
        )
        self._run(
            lambda: self._client.delete_objects(
                self._bucket_name, chunk, on_success, on_failure
            )
        )

        if not countdown.is_counted_down:
            failed = countdown.remaining
            raise PartialBatchFailureError(
                f"Failed to delete {failed} of [{len(chunk)}] blobs "
                f"in bucket [{self._bucket_name}]",
                failed_count=failed,
                batch_size=len(chunk),
            )
