"""Bounded-concurrency dispatcher for outbound API requests."""
import asyncio
import itertools
import logging
from collections import Counter
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar('T')
U = TypeVar('U')

STATUS_RUNNING = 'running'
STATUS_SUCCESS = 'success'
STATUS_FAILED = 'failed'


@dataclass
class RequestRecord:
    """Descriptor of one task admitted by the dispatcher."""
    request_id: int
    description: str
    status: str = STATUS_RUNNING
    attempt: int = 1
    error: Optional[str] = None


def _always(error: BaseException) -> bool:
    return True


class AsyncDispatcher:
    """
    Admission gate limiting how many tasks run at the same time.

    Callers beyond the concurrency limit wait in FIFO order until a running
    task finishes. Errors raised by tasks propagate to their callers.
    """

    MAX_RETRY_DELAY = 30.0
    HISTORY_LIMIT = 1000

    def __init__(self, concurrency: int = 10):
        """
        Initialize the dispatcher.

        Args:
            concurrency: Maximum number of tasks running at once (default: 10)
        """
        if concurrency < 1:
            raise ValueError(f"concurrency must be at least 1, got {concurrency}")
        self.concurrency = concurrency
        self._semaphore = asyncio.Semaphore(concurrency)
        self._ids = itertools.count(1)
        self._running = 0
        self.requests: Dict[int, RequestRecord] = {}
        self._finished: Counter = Counter()

    @property
    def running(self) -> int:
        """Number of tasks currently admitted."""
        return self._running

    async def run(
        self,
        task: Callable[..., Awaitable[T]],
        *args: Any,
        description: Optional[str] = None,
        attempt: int = 1
    ) -> T:
        """
        Run a task once a concurrency slot is free.

        Args:
            task: Coroutine function to run
            *args: Positional arguments for the task
            description: Label recorded for observability
            attempt: Attempt number recorded for observability

        Returns:
            The task's result
        """
        async with self._semaphore:
            record = RequestRecord(
                request_id=next(self._ids),
                description=description or getattr(task, '__name__', repr(task)),
                attempt=attempt
            )
            self.requests[record.request_id] = record
            self._running += 1
            logger.debug(f"Dispatching {record.description} (attempt {attempt})")
            try:
                result = await task(*args)
            except BaseException as e:
                record.status = STATUS_FAILED
                record.error = f"{type(e).__name__}: {e}"
                raise
            else:
                record.status = STATUS_SUCCESS
                return result
            finally:
                self._running -= 1
                self._finished[record.status] += 1
                self._prune()

    def _prune(self) -> None:
        # Oldest finished records go first; running ones are always kept
        excess = len(self.requests) - self.HISTORY_LIMIT
        if excess <= 0:
            return
        for request_id in [r.request_id for r in self.requests.values() if r.status != STATUS_RUNNING][:excess]:
            del self.requests[request_id]

    async def retry(
        self,
        limit: Optional[int],
        task: Callable[..., Awaitable[T]],
        *args: Any,
        retry_if: Callable[[BaseException], bool] = _always,
        delay: float = 0.0,
        description: Optional[str] = None
    ) -> T:
        """
        Run a task, repeating it when it fails.

        Args:
            limit: Maximum number of attempts; None retries forever
            task: Coroutine function to run
            *args: Positional arguments for the task
            retry_if: Predicate selecting which errors are retried
            delay: Base delay in seconds, doubled after each failed attempt
            description: Label recorded for observability

        Returns:
            The task's result

        Raises:
            Exception: The last error once the limit is exhausted, or the
                first error rejected by ``retry_if``
        """
        if limit is not None and limit < 1:
            raise ValueError(f"retry limit must be at least 1, got {limit}")

        attempt = 0
        while True:
            attempt += 1
            try:
                return await self.run(task, *args, description=description, attempt=attempt)
            except Exception as e:
                if not retry_if(e):
                    raise
                if limit is not None and attempt >= limit:
                    logger.error(
                        f"All {limit} attempts of {description or task} failed. "
                        f"Last error: {e}"
                    )
                    raise

                wait = min(delay * (2 ** (attempt - 1)), self.MAX_RETRY_DELAY) if delay else 0
                logger.warning(
                    f"Attempt {attempt}/{limit if limit is not None else 'unbounded'} "
                    f"of {description or task} failed: {e}. Retrying in {wait} seconds..."
                )
                await asyncio.sleep(wait)

    async def gather(self, coroutines: Iterable[Awaitable[T]]) -> List[T]:
        """
        Wait for every coroutine, then raise the first failure if any.

        Args:
            coroutines: Awaitables that perform their own admission

        Returns:
            Results in submission order
        """
        results = await asyncio.gather(*coroutines, return_exceptions=True)
        failures = [r for r in results if isinstance(r, BaseException)]
        if failures:
            if len(failures) > 1:
                logger.error(f"{len(failures)} of {len(results)} tasks failed")
            raise failures[0]
        return list(results)

    async def map(self, values: Iterable[U], task: Callable[[U], Awaitable[T]]) -> List[T]:
        """Run ``task`` for every value through the gate."""
        return await self.gather(self.run(task, value) for value in values)

    def in_flight(self) -> List[RequestRecord]:
        """Requests that have been admitted and not yet finished."""
        return [r for r in self.requests.values() if r.status == STATUS_RUNNING]

    def summary(self) -> Dict[str, int]:
        """Count of requests per status, including pruned ones."""
        return {
            STATUS_RUNNING: len(self.in_flight()),
            STATUS_SUCCESS: self._finished[STATUS_SUCCESS],
            STATUS_FAILED: self._finished[STATUS_FAILED],
        }
