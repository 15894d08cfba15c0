import logging
import random
import time
from typing import Callable, TypeVar

from .errors import (
    BlobNotFoundError,
    RemoteStatusError,
    RetriesExhaustedError,
    StorageConnectionError,
)

log = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_ATTEMPTS = 3

# Throttling and server side failures worth another immediate attempt.
TRANSIENT_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})
# Resumable upload session expired, the upload can restart from scratch.
HTTP_GONE = 410


def is_transient_read_error(error: Exception) -> bool:
    if isinstance(error, StorageConnectionError):
        return True
    if isinstance(error, RemoteStatusError):
        return error.status_code in TRANSIENT_STATUS_CODES
    return False


def is_transient_write_error(error: Exception) -> bool:
    if isinstance(error, RemoteStatusError) and error.status_code == HTTP_GONE:
        return True
    return is_transient_read_error(error)


class TransientCallExecutor:
    """
    Runs a single remote call under a bounded retry policy.

    Failures accepted by `is_retryable` are retried until `max_attempts` is
    reached, then surfaced as RetriesExhaustedError. BlobNotFoundError and
    every non retryable failure propagate on the attempt that raised them.
    """

    def __init__(
        self,
        is_retryable: Callable[[Exception], bool] = is_transient_read_error,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        backoff_seconds: float = 0.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {max_attempts}")
        self.is_retryable = is_retryable
        self.max_attempts = max_attempts
        self.backoff_seconds = backoff_seconds
        self._sleep = sleep

    def execute(
        self,
        operation: Callable[[], T],
        description: str = "remote call",
        max_attempts: int | None = None,
    ) -> T:
        attempts = self.max_attempts if max_attempts is None else max_attempts
        if attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {attempts}")
        for attempt in range(1, attempts + 1):
            log.debug("%s: attempt %d of %d", description, attempt, attempts)
            try:
                return operation()
            except BlobNotFoundError:
                raise
            except Exception as e:
                if not self.is_retryable(e):
                    raise
                if attempt == attempts:
                    raise RetriesExhaustedError(
                        f"{description} failed after {attempts} attempts: {e}",
                        attempts=attempts,
                        last_error=e,
                        key=getattr(e, "key", None),
                    ) from e
                log.warning(
                    "%s: transient failure on try #%d: %s", description, attempt, e
                )
                self._backoff(attempt)
        # attempts >= 1, the loop always returns or raises
        raise AssertionError("unreachable")

    def _backoff(self, attempt: int) -> None:
        if self.backoff_seconds <= 0:
            return
        delay = random.uniform(0, self.backoff_seconds * 2 ** (attempt - 1))
        self._sleep(delay)
