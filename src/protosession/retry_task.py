"""
RetryTask: attempt-budgeted fixed-interval retry.

One immediate attempt, then up to max_attempts more, delay_ms apart. Each
attempt reports SUCCEEDED, PENDING (try again later) or ABANDONED (stop
quietly, e.g. the target went away). The task never raises: an attempt that
raises is logged and counted as PENDING.
"""

from enum import Enum
import logging
from typing import Callable, Generic, List, Optional, TypeVar

from protosession.config import RetryConfig
from protosession.scheduling import Scheduler, TimerHandle

logger = logging.getLogger(__name__)

T = TypeVar('T')


class AttemptResult(Enum):
    SUCCEEDED = 'succeeded'
    PENDING = 'pending'
    ABANDONED = 'abandoned'


class RetryState(Enum):
    CREATED = 'created'
    WAITING = 'waiting'
    SUCCEEDED = 'succeeded'
    EXHAUSTED = 'exhausted'
    ABANDONED = 'abandoned'
    CANCELLED = 'cancelled'


_FINAL_STATES = frozenset({RetryState.SUCCEEDED, RetryState.EXHAUSTED, RetryState.ABANDONED, RetryState.CANCELLED})


class RetryTask(Generic[T]):
    """Retry attempt(value) on a fixed interval until it resolves or the budget runs out.

    Example:
        task = RetryTask('label', 'Hello', write_label, scheduler, RetryConfig())
        task.start()
        if task.is_waiting:
            registry_entry = task   # caller keeps it cancellable
    """

    def __init__(
        self,
        name: str,
        value: T,
        attempt: Callable[[T], AttemptResult],
        scheduler: Scheduler,
        config: RetryConfig,
    ):
        self.name = name
        self.value = value
        self.attempts = 0
        self._attempt = attempt
        self._scheduler = scheduler
        self._config = config
        self._state = RetryState.CREATED
        self._handle: Optional[TimerHandle] = None
        self._on_finished_callbacks: List[Callable[['RetryTask[T]'], None]] = []

    @property
    def state(self) -> RetryState:
        return self._state

    @property
    def is_waiting(self) -> bool:
        return self._state is RetryState.WAITING

    @property
    def is_finished(self) -> bool:
        return self._state in _FINAL_STATES

    def on_finished(self, callback: Callable[['RetryTask[T]'], None]) -> None:
        """Register a callback fired once when the task reaches a final state."""
        if callback not in self._on_finished_callbacks:
            self._on_finished_callbacks.append(callback)

    def _finish(self, state: RetryState) -> None:
        self._state = state
        self._handle = None
        for callback in list(self._on_finished_callbacks):
            try:
                callback(self)
            except Exception as e:
                logger.warning(f"Error in retry finished callback: {e}")

    def _run_attempt(self) -> AttemptResult:
        try:
            return self._attempt(self.value)
        except Exception as e:
            logger.debug(f"SYNC: attempt for '{self.name}' raised {type(e).__name__}: {e}")
            return AttemptResult.PENDING

    def start(self) -> RetryState:
        """Attempt immediately; arm the retry interval if still pending."""
        if self._state is not RetryState.CREATED:
            return self._state
        result = self._run_attempt()
        if result is AttemptResult.SUCCEEDED:
            self._finish(RetryState.SUCCEEDED)
        elif result is AttemptResult.ABANDONED:
            self._finish(RetryState.ABANDONED)
        else:
            self._state = RetryState.WAITING
            self._schedule_next()
        return self._state

    def _schedule_next(self) -> None:
        self._handle = self._scheduler.call_later(self._config.delay_ms, self._tick)

    def _tick(self) -> None:
        if self._state is not RetryState.WAITING:
            return
        self.attempts += 1
        result = self._run_attempt()
        if result is AttemptResult.SUCCEEDED:
            self._finish(RetryState.SUCCEEDED)
        elif result is AttemptResult.ABANDONED:
            self._finish(RetryState.ABANDONED)
        elif self.attempts >= self._config.max_attempts:
            self._finish(RetryState.EXHAUSTED)
        else:
            self._schedule_next()

    def cancel(self) -> None:
        """Stop retrying. No-op once finished."""
        if self.is_finished:
            return
        if self._handle is not None:
            self._handle.cancel()
        self._finish(RetryState.CANCELLED)
