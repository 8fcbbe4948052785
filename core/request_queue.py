"""
Rate-Limited Request Queue

One queue per exchange. Every outbound call to an exchange goes through its
queue, which:

- runs tasks strictly one at a time, in enqueue order
- waits a fixed delay between two dispatches (default 200 ms)
- retries transient failures with exponential backoff (base ** attempt seconds)
- resolves each caller's future with the result or the terminal error

RateLimitedRequestQueue additionally counts requests inside a rolling window
(default 20 requests / second) and sleeps out the rest of the window when
the budget is spent.

Queues are independent: a slow or failing exchange only delays its own queue.

Usage:
    queue = RequestQueue("binance")
    quote = await queue.submit(lambda: adapter.fetch_ticker("BTCUSDT", MarketType.SPOT))

    # Or fire many and gather later
    futures = [queue.enqueue(make_task(s)) for s in symbols]
    results = await asyncio.gather(*futures, return_exceptions=True)
"""

import asyncio
from collections import deque
from typing import Any, Awaitable, Callable, Deque, Optional, Tuple, Type, TypeVar

from core.exceptions import TransientExchangeError
from core.logging import get_logger


T = TypeVar("T")

Task = Callable[[], Awaitable[Any]]
Sleep = Callable[[float], Awaitable[Any]]

# enqueue() default: use the queue-wide per-attempt timeout
QUEUE_TIMEOUT: Any = object()


class RequestQueue:
    """
    Serial async work queue with inter-task delay and retry/backoff.

    Args:
        name: Queue name for logging (usually the exchange name)
        request_delay: Seconds to wait between two dispatches
        max_retries: Total attempts for a task failing transiently
        backoff_base: The n-th retry waits backoff_base ** n seconds
        timeout: Per-attempt timeout in seconds (None disables it)
        retry_on: Exception types considered transient
        sleep: Sleep coroutine; injectable for tests

    Example:
        >>> queue = RequestQueue("okx", request_delay=0.2, max_retries=3)
        >>> price = await queue.submit(lambda: client.get_ticker("BTC-USDT"))

    Notes:
        - Only one drain loop exists per queue, however many tasks are enqueued
        - A task's failure never stops the drain loop
        - Cancelling a caller's future skips the task if it has not started yet
    """

    def __init__(
        self,
        name: str,
        request_delay: float = 0.2,
        max_retries: int = 3,
        backoff_base: float = 2.0,
        timeout: Optional[float] = 10.0,
        retry_on: Tuple[Type[BaseException], ...] = (TransientExchangeError, asyncio.TimeoutError),
        sleep: Sleep = asyncio.sleep,
    ):
        if max_retries < 1:
            raise ValueError(f"max_retries must be at least 1, got {max_retries}")

        self.name = name
        self.request_delay = request_delay
        self.max_retries = max_retries
        self.backoff_base = backoff_base
        self.timeout = timeout
        self.retry_on = retry_on
        self._sleep = sleep
        self.logger = get_logger(__name__)

        self._pending: Deque[Tuple[Task, asyncio.Future, Optional[float]]] = deque()
        self._drain_task: Optional[asyncio.Task] = None
        self._last_finished: Optional[float] = None
        self._closed = False

    # ============================================
    # Public API
    # ============================================

    def enqueue(self, task: Callable[[], Awaitable[T]], timeout: Optional[float] = QUEUE_TIMEOUT) -> "asyncio.Future[T]":
        """
        Add a unit of work and return a future resolving to its outcome.

        Args:
            task: Zero-argument coroutine function
            timeout: Per-attempt timeout for this task only (None disables it);
                defaults to the queue timeout

        Raises:
            RuntimeError: If the queue has been closed
        """
        if self._closed:
            raise RuntimeError(f"Request queue '{self.name}' is closed")

        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._pending.append((task, future, self.timeout if timeout is QUEUE_TIMEOUT else timeout))
        self._ensure_draining()
        return future

    async def submit(self, task: Callable[[], Awaitable[T]], timeout: Optional[float] = QUEUE_TIMEOUT) -> T:
        """Enqueue a task and wait for its result."""
        return await self.enqueue(task, timeout=timeout)

    @property
    def pending(self) -> int:
        """Number of tasks waiting to be dispatched."""
        return len(self._pending)

    @property
    def is_draining(self) -> bool:
        return self._drain_task is not None and not self._drain_task.done()

    async def close(self) -> None:
        """
        Stop the queue.

        Tasks that have not started are abandoned (their futures are cancelled);
        the task currently running is cancelled as well.
        """
        self._closed = True
        while self._pending:
            _, future, _ = self._pending.popleft()
            if not future.done():
                future.cancel()

        if self._drain_task is not None and not self._drain_task.done():
            self._drain_task.cancel()
            try:
                await self._drain_task
            except asyncio.CancelledError:
                pass
        self._drain_task = None
        self.logger.debug(f"Request queue '{self.name}' closed")

    # ============================================
    # Drain Loop
    # ============================================

    def _ensure_draining(self) -> None:
        # Idempotent: a second enqueue while draining reuses the running loop
        if self.is_draining:
            return
        self._drain_task = asyncio.create_task(self._drain(), name=f"request_queue_{self.name}")

    async def _drain(self) -> None:
        loop = asyncio.get_running_loop()
        while self._pending:
            task, future, timeout = self._pending.popleft()
            if future.done():
                # Caller gave up before dispatch
                continue

            try:
                await self._wait_for_slot(loop)
            except asyncio.CancelledError:
                future.cancel()
                raise
            if future.done():
                # Cancelled while waiting for its slot
                continue

            try:
                result = await self._run_with_retry(task, timeout)
            except asyncio.CancelledError:
                if not future.done():
                    future.cancel()
                raise
            except Exception as e:
                if not future.done():
                    future.set_exception(e)
            else:
                if not future.done():
                    future.set_result(result)
            finally:
                self._last_finished = loop.time()

    async def _wait_for_slot(self, loop: asyncio.AbstractEventLoop) -> None:
        if self._last_finished is None or self.request_delay <= 0:
            return
        remaining = self.request_delay - (loop.time() - self._last_finished)
        if remaining > 0:
            await self._sleep(remaining)

    async def _run_with_retry(self, task: Task, timeout: Optional[float]) -> Any:
        for attempt in range(1, self.max_retries + 1):
            await self._before_attempt()
            try:
                if timeout is not None:
                    return await asyncio.wait_for(task(), timeout=timeout)
                return await task()

            except self.retry_on as e:
                if attempt == self.max_retries:
                    self.logger.error(
                        f"[{self.name}] Request failed after {self.max_retries} attempts: {e!r}"
                    )
                    raise

                wait_time = self.backoff_base ** attempt
                self.logger.warning(
                    f"[{self.name}] Request failed (attempt {attempt}/{self.max_retries}), "
                    f"retrying in {wait_time:.1f}s: {e!r}"
                )
                await self._sleep(wait_time)

    async def _before_attempt(self) -> None:
        """Hook run before every attempt (used by the rate-limited variant)."""
        return None


class RateLimitedRequestQueue(RequestQueue):
    """
    RequestQueue with a rolling request budget.

    At most `max_requests` attempts start inside one `time_window`. When the
    budget is spent the queue sleeps for the remainder of the window, then
    starts a new one.

    Args:
        max_requests: Budget per window (default 20)
        time_window: Window length in seconds (default 1.0)
        clock: Monotonic clock in seconds; injectable for tests
        **kwargs: Passed to RequestQueue
    """

    def __init__(
        self,
        name: str,
        max_requests: int = 20,
        time_window: float = 1.0,
        clock: Optional[Callable[[], float]] = None,
        **kwargs,
    ):
        super().__init__(name, **kwargs)
        if max_requests < 1:
            raise ValueError(f"max_requests must be at least 1, got {max_requests}")
        self.max_requests = max_requests
        self.time_window = time_window
        self._clock = clock
        self._request_count = 0
        self._window_start: Optional[float] = None

    def _now(self) -> float:
        if self._clock is not None:
            return self._clock()
        return asyncio.get_running_loop().time()

    async def _before_attempt(self) -> None:
        now = self._now()
        if self._window_start is None or now - self._window_start >= self.time_window:
            self._window_start = now
            self._request_count = 0

        if self._request_count >= self.max_requests:
            wait_time = self.time_window - (now - self._window_start)
            if wait_time > 0:
                self.logger.debug(f"[{self.name}] Rate limit reached, waiting {wait_time:.3f}s")
                await self._sleep(wait_time)
            self._window_start = self._now()
            self._request_count = 0

        self._request_count += 1
