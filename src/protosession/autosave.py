"""
AutosaveCoordinator: decides when an edit becomes a persisted save.

Scheduling model:
- Every edit re-arms a debounce timer (debounce_ms after the LAST edit)
- The first edit of a batch arms a max-wait timer that is never re-armed by
  later edits, bounding staleness under continuous editing
- Either timer runs perform_save(), which consults the state machine guards

Overlapping saves:
Edits can arrive while a save is awaited. Each armed timer is tagged with the
save generation current when it was armed, and a settled save only cancels
timers from its own (or an older) generation, so a debounce armed during the
await survives. After settling, if edits arrived during the await, the
session is re-marked dirty and the debounce/max-wait pair is re-armed for the
new batch when missing. Edits made during the await are counted even while
paused or disabled, so a successful save never clears changes it did not
cover; timers for them are only armed while scheduling is active.

Failed saves:
A failed save leaves the edit owed. With AutosaveConfig.failure_retry_ms unset
(the default) nothing is retried until the next edit or resume(); setting it
arms a bounded retry after each failure.

After a failure the batch keeps its first_change_at but its max-wait timer is
gone, and later edits only re-arm the debounce. Under continuous editing
nothing bounds staleness again until a save succeeds and the next batch arms
a fresh max-wait.
"""

from dataclasses import dataclass
from enum import Enum
import logging
from typing import Any, Awaitable, Callable, List, Optional

from protosession.config import AutosaveConfig, get_default_autosave_config
from protosession.scheduling import Scheduler, TimerHandle, get_default_scheduler
from protosession.state_machine import SessionStateMachine

logger = logging.getLogger(__name__)

SaveFunction = Callable[[], Awaitable[Any]]


class AutosaveStatus(Enum):
    IDLE = 'idle'
    PENDING = 'pending'
    SAVING = 'saving'
    SAVED = 'saved'
    ERROR = 'error'


@dataclass
class ArmedTimer:
    """A scheduled save timer tagged with the save generation that armed it."""
    generation: int
    handle: Optional[TimerHandle] = None

    def cancel(self) -> None:
        if self.handle is not None:
            self.handle.cancel()


@dataclass
class AutosaveState:
    """Mutable scheduling state owned by one coordinator."""
    status: AutosaveStatus = AutosaveStatus.IDLE
    has_pending_changes: bool = False
    first_change_at: Optional[float] = None
    paused: bool = False
    debounce_handle: Optional[ArmedTimer] = None
    max_wait_handle: Optional[ArmedTimer] = None
    change_count: int = 0
    generation: int = 0
    last_saved_at: Optional[float] = None
    consecutive_failures: int = 0


class AutosaveCoordinator:
    """Debounced, max-wait-bounded, pausable autosave for one session.

    Args:
        state_machine: Session whose guards gate every save
        save: Zero-argument coroutine function; truthy result means saved,
              falsy or raising means failed
        config: Timing knobs (process default when omitted)
        scheduler: Timer source (process AsyncioScheduler when omitted)
        enabled: Initial enabled flag
    """

    def __init__(
        self,
        state_machine: SessionStateMachine,
        save: SaveFunction,
        config: Optional[AutosaveConfig] = None,
        scheduler: Optional[Scheduler] = None,
        enabled: bool = True,
    ):
        self._sm = state_machine
        self._save = save
        self._config = config or get_default_autosave_config()
        self._scheduler = scheduler or get_default_scheduler()
        self._enabled = enabled
        self._state = AutosaveState()
        self._status_reset_handle: Optional[TimerHandle] = None
        self._failure_retry_handle: Optional[TimerHandle] = None
        self._in_flight = False
        self._edits_during_save = 0
        self._overlap_first_change_at: Optional[float] = None
        self._closed = False
        self._on_status_changed_callbacks: List[Callable[[AutosaveStatus], None]] = []

    # ========== STATE ACCESS ==========

    @property
    def config(self) -> AutosaveConfig:
        return self._config

    @property
    def state(self) -> AutosaveState:
        return self._state

    @property
    def status(self) -> AutosaveStatus:
        return self._state.status

    @property
    def last_saved_at(self) -> Optional[float]:
        return self._state.last_saved_at

    @property
    def has_pending_changes(self) -> bool:
        return self._state.has_pending_changes

    @property
    def is_paused(self) -> bool:
        return self._state.paused

    @property
    def is_enabled(self) -> bool:
        return self._enabled

    @property
    def is_active(self) -> bool:
        """Enabled, not paused and not closed."""
        return self._enabled and not self._state.paused and not self._closed

    @property
    def is_saving(self) -> bool:
        return self._in_flight

    @property
    def closed(self) -> bool:
        return self._closed

    # ========== OBSERVERS ==========

    def on_status_changed(self, callback: Callable[[AutosaveStatus], None]) -> None:
        """Subscribe to UI status changes."""
        if callback not in self._on_status_changed_callbacks:
            self._on_status_changed_callbacks.append(callback)

    def off_status_changed(self, callback: Callable[[AutosaveStatus], None]) -> None:
        """Unsubscribe from UI status changes."""
        if callback in self._on_status_changed_callbacks:
            self._on_status_changed_callbacks.remove(callback)

    def _set_status(self, status: AutosaveStatus) -> None:
        if self._closed:
            return
        if self._status_reset_handle is not None:
            self._status_reset_handle.cancel()
            self._status_reset_handle = None
        if status is self._state.status:
            return
        self._state.status = status
        for callback in list(self._on_status_changed_callbacks):
            try:
                callback(status)
            except Exception as e:
                logger.warning(f"Error in status_changed callback: {e}")

    def _schedule_status_reset(self, delay_ms: int) -> None:
        def reset():
            self._status_reset_handle = None
            self._set_status(AutosaveStatus.IDLE)

        self._status_reset_handle = self._scheduler.call_later(delay_ms, reset)

    # ========== TIMERS ==========

    def _elapsed_ms(self, since: float) -> float:
        return (self._scheduler.now() - since) * 1000.0

    def _effective_debounce_ms(self) -> int:
        initial = self._config.initial_debounce_ms
        if initial is not None and self._state.last_saved_at is None and self._sm.last_saved_at is None:
            return initial
        return self._config.debounce_ms

    def _arm(self, slot: str, delay_ms: float, reason: str) -> None:
        current = getattr(self._state, slot)
        if current is not None:
            current.cancel()
        armed = ArmedTimer(generation=self._state.generation)

        def fire():
            if getattr(self._state, slot) is armed:
                setattr(self._state, slot, None)
            logger.debug(f"AUTOSAVE: {reason}")
            self._scheduler.spawn(self.perform_save())

        armed.handle = self._scheduler.call_later(delay_ms, fire)
        setattr(self._state, slot, armed)

    def _arm_debounce(self, delay_ms: float) -> None:
        self._arm('debounce_handle', delay_ms, 'debounce complete, triggering save')

    def _arm_max_wait(self, delay_ms: float) -> None:
        self._arm('max_wait_handle', delay_ms, 'max wait reached, forcing save')

    def _cancel_save_timers(self, up_to_generation: Optional[int] = None) -> None:
        """Cancel debounce and max-wait, optionally only those armed at or before a generation."""
        for slot in ('debounce_handle', 'max_wait_handle'):
            armed = getattr(self._state, slot)
            if armed is None:
                continue
            if up_to_generation is not None and armed.generation > up_to_generation:
                continue
            armed.cancel()
            setattr(self._state, slot, None)

    def _cancel_failure_retry(self) -> None:
        if self._failure_retry_handle is not None:
            self._failure_retry_handle.cancel()
            self._failure_retry_handle = None

    def _cancel_all(self) -> None:
        self._cancel_save_timers()
        self._cancel_failure_retry()

    # ========== PUBLIC API ==========

    def trigger_change(self) -> None:
        """Record a user edit and (re)schedule an autosave."""
        # Dirty tracking runs even with autosave off so save-on-navigate still sees it
        if self._sm.can_modify_content:
            self._sm.content_changed()

        if self._in_flight:
            # Owed by the settling save even when scheduling is off
            self._edits_during_save += 1
            if self._overlap_first_change_at is None:
                self._overlap_first_change_at = self._scheduler.now()

        if not self._enabled or self._state.paused or self._closed:
            logger.debug(f"AUTOSAVE: not scheduling (enabled={self._enabled}, "
                         f"paused={self._state.paused}, closed={self._closed})")
            return

        if self._sm.document is None:
            logger.debug("AUTOSAVE: not scheduling, no document loaded (change still tracked)")
            return

        st = self._state
        now = self._scheduler.now()
        st.has_pending_changes = True
        st.change_count += 1
        st.consecutive_failures = 0
        self._cancel_failure_retry()
        self._set_status(AutosaveStatus.PENDING)

        if st.first_change_at is None:
            st.first_change_at = now
            self._arm_max_wait(self._config.max_wait_ms)
            logger.debug("AUTOSAVE: first change recorded, max wait armed")

        delay = self._effective_debounce_ms()
        self._arm_debounce(delay)
        logger.debug(f"AUTOSAVE: change #{st.change_count}, debounce reset to {delay}ms")

    async def perform_save(self) -> bool:
        """Run one autosave if the session allows it.

        Returns:
            True if a save ran and succeeded
        """
        st = self._state
        if self._closed:
            return False
        if not self._sm.can_autosave:
            logger.debug(f"AUTOSAVE: skipped, session is {self._sm.status.value}")
            return False
        if st.paused:
            logger.debug("AUTOSAVE: skipped, paused")
            return False
        if not st.has_pending_changes:
            logger.debug("AUTOSAVE: skipped, no pending changes")
            return False
        if self._in_flight:
            # The settling save re-checks pending changes and re-arms timers
            logger.debug("AUTOSAVE: skipped, save already in flight")
            return False

        save_generation = st.generation
        st.generation += 1
        self._in_flight = True
        self._edits_during_save = 0
        self._overlap_first_change_at = None
        self._set_status(AutosaveStatus.SAVING)
        logger.debug(f"AUTOSAVE: starting save (generation {save_generation})")

        try:
            result = await self._save()
        except Exception as e:
            logger.warning(f"AUTOSAVE: save raised {type(e).__name__}: {e}")
            result = None
        finally:
            self._in_flight = False

        overlapped = self._edits_during_save > 0
        succeeded = bool(result)
        if succeeded:
            if overlapped:
                st.has_pending_changes = True
                st.first_change_at = self._overlap_first_change_at
            else:
                st.has_pending_changes = False
                st.first_change_at = None
            st.last_saved_at = self._scheduler.now()
            st.consecutive_failures = 0
            self._set_status(AutosaveStatus.SAVED)
            if not self._closed:
                self._schedule_status_reset(self._config.saved_display_ms)
            logger.info(f"AUTOSAVE: saved (generation {save_generation})")
        else:
            st.consecutive_failures += 1
            self._set_status(AutosaveStatus.ERROR)
            if not self._closed:
                self._schedule_status_reset(self._config.error_display_ms)
            logger.warning(f"AUTOSAVE: save failed (generation {save_generation}), changes still pending")

        self._cancel_save_timers(up_to_generation=save_generation)
        self._overlap_first_change_at = None

        if self._closed:
            return succeeded

        if overlapped:
            st.has_pending_changes = True
            # SAVING swallowed the content_changed events of those edits
            if self._sm.can_modify_content:
                self._sm.content_changed()
            if self._enabled and not st.paused:
                self._rearm_after_overlap(succeeded)
        elif not succeeded:
            self._schedule_failure_retry()

        return succeeded

    def _rearm_after_overlap(self, succeeded: bool) -> None:
        st = self._state
        if st.debounce_handle is None:
            self._arm_debounce(self._config.debounce_ms)
        if succeeded and st.max_wait_handle is None and st.first_change_at is not None:
            remaining = self._config.max_wait_ms - self._elapsed_ms(st.first_change_at)
            self._arm_max_wait(max(remaining, 0))
        logger.debug("AUTOSAVE: edits arrived during save, follow-up scheduled")

    def _schedule_failure_retry(self) -> None:
        delay = self._config.failure_retry_ms
        if delay is None or not self._state.has_pending_changes:
            logger.debug("AUTOSAVE: failed save left pending until the next edit")
            return
        if self._state.consecutive_failures > self._config.max_failure_retries:
            logger.warning(f"AUTOSAVE: giving up after {self._state.consecutive_failures} consecutive failures")
            return
        if not self._enabled or self._state.paused:
            return

        def retry():
            self._failure_retry_handle = None
            logger.debug("AUTOSAVE: retrying failed save")
            self._scheduler.spawn(self.perform_save())

        self._cancel_failure_retry()
        self._failure_retry_handle = self._scheduler.call_later(delay, retry)

    def pause(self) -> None:
        """Stop scheduling. Pending changes stay owed."""
        logger.debug("AUTOSAVE: paused")
        self._state.paused = True
        self._cancel_all()

    def resume(self) -> None:
        """Resume scheduling; re-arms the debounce (not max-wait) if changes are owed."""
        logger.debug("AUTOSAVE: resumed")
        self._state.paused = False
        if self._state.has_pending_changes and self._enabled and not self._closed:
            self._arm_debounce(self._config.debounce_ms)

    def mark_saved(self) -> None:
        """Record an out-of-band save (e.g., a manual save)."""
        st = self._state
        st.has_pending_changes = False
        st.first_change_at = None
        st.consecutive_failures = 0
        st.last_saved_at = self._scheduler.now()
        self._cancel_all()
        self._set_status(AutosaveStatus.SAVED)
        if not self._closed:
            self._schedule_status_reset(self._config.saved_display_ms)

    def set_enabled(self, enabled: bool) -> None:
        """Enable or disable autosave. Re-enabling does not reschedule owed changes."""
        if enabled == self._enabled:
            return
        self._enabled = enabled
        if not enabled:
            self._cancel_all()
            self._set_status(AutosaveStatus.IDLE)
        logger.debug(f"AUTOSAVE: enabled={enabled}")

    def close(self) -> None:
        """Cancel every timer and stop reacting. Used when the editor unmounts."""
        self._cancel_all()
        if self._status_reset_handle is not None:
            self._status_reset_handle.cancel()
            self._status_reset_handle = None
        self._closed = True
        logger.debug("AUTOSAVE: closed")
