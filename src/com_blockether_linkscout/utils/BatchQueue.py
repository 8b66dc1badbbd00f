"""
Generic batch queue consumed by gated workers.
"""

import logging
from collections import deque
from typing import Any, Awaitable, Callable, Coroutine, Deque, Dict, Generic, List, Optional, Sequence, Tuple, TypeVar

import anyio

from .Clock import Clock, SystemClock

logger = logging.getLogger(__name__)

# Type variables for generic input and output
TInput = TypeVar("TInput")
TOutput = TypeVar("TOutput")


class BatchQueueResult(Generic[TOutput]):
    """Outcome of draining a BatchQueue."""

    def __init__(self, total: int):
        self.total = total
        self.results: Dict[int, TOutput] = {}
        self.discarded: List[int] = []
        self.cancelled = False

    @property
    def pending(self) -> int:
        """Items never dequeued."""
        return self.total - len(self.results) - len(self.discarded)

    def ordered(self) -> List[TOutput]:
        """Collected results in input order."""
        return [self.results[i] for i in sorted(self.results)]


class BatchQueue(Generic[TInput, TOutput]):
    """
    Explicit queue of work items drained by one or more workers.

    Each worker awaits the gate (typically a rate limiter) before every dequeue
    and pauses for a fixed delay between consecutive items. Cancellation is
    checked between items: in-flight items are not aborted, but their results
    are discarded when cancellation was requested while they ran.

    GUARANTEES:
    - Order preservation: results are keyed by input index
    - Sequential by default; with several workers every worker shares the gate
    - Items are never dropped because of the gate, only deferred
    """

    DEFAULT_WORKERS = 1

    def __init__(
        self,
        workers: int = DEFAULT_WORKERS,
        gate: Optional[Callable[[], Awaitable[None]]] = None,
        delay_seconds: float = 0.0,
        clock: Optional[Clock] = None,
        cancel_event: Optional[anyio.Event] = None,
    ):
        """
        Initialize the batch queue.

        Args:
            workers: Number of concurrent workers
            gate: Awaited before every dequeue
            delay_seconds: Pause between consecutive items of one worker
            clock: Clock used for the delay
            cancel_event: When set, workers stop dequeuing
        """
        if workers < 1:
            raise ValueError(f"workers must be >= 1, got {workers}")
        self._workers = workers
        self._gate = gate
        self._delay = delay_seconds
        self._clock = clock or SystemClock()
        self._cancel_event = cancel_event

    def _is_cancelled(self) -> bool:
        return self._cancel_event is not None and self._cancel_event.is_set()

    async def run(
        self,
        items: Sequence[TInput],
        handler: Callable[[TInput], Coroutine[Any, Any, TOutput]],
        on_result: Optional[Callable[[int, TOutput], None]] = None,
    ) -> BatchQueueResult[TOutput]:
        """
        Drain all items through the handler.

        Args:
            items: Work items, enqueued in order
            handler: Async function processing one item
            on_result: Called for every result that is kept, as soon as it is available

        Returns:
            Collected results plus discarded and pending bookkeeping
        """
        outcome: BatchQueueResult[TOutput] = BatchQueueResult(len(items))
        if not items:
            return outcome

        queue: Deque[Tuple[int, TInput]] = deque(enumerate(items))

        async def worker(worker_id: int) -> None:
            handled = 0
            while queue and not self._is_cancelled():
                if handled and self._delay > 0:
                    await self._clock.sleep(self._delay)
                if self._gate is not None:
                    await self._gate()
                if not queue or self._is_cancelled():
                    break

                idx, item = queue.popleft()
                result = await handler(item)
                handled += 1

                if self._is_cancelled():
                    logger.debug(f"Worker {worker_id}: discarding result of item {idx} after cancellation")
                    outcome.discarded.append(idx)
                    continue

                outcome.results[idx] = result
                if on_result is not None:
                    on_result(idx, result)

        if self._workers == 1:
            await worker(0)
        else:
            async with anyio.create_task_group() as tg:
                for worker_id in range(min(self._workers, len(items))):
                    tg.start_soon(worker, worker_id)

        outcome.cancelled = self._is_cancelled()
        if outcome.cancelled:
            logger.info(
                f"Batch queue cancelled: {len(outcome.results)} kept, "
                f"{len(outcome.discarded)} discarded, {outcome.pending} pending"
            )
        return outcome
