"""
SessionStateMachine: authoritative lifecycle of one editing session.

The machine owns a single SessionState and replaces it on every event.
UI callbacks can arrive out of order (a stale editor_ready after a fast
reset, for instance), so no event is ever rejected: unexpected events are
applied as forced transitions and logged.

Observers subscribe with on_state_changed() and receive (old, new) after
each applied transition.
"""

from collections import deque
import logging
import time
from typing import Any, Callable, Deque, List, Optional

from protosession import session_state as guards
from protosession.session_state import (
    EventType,
    SessionEvent,
    SessionState,
    SessionStatus,
    TransitionRecord,
    apply_event,
)

logger = logging.getLogger(__name__)

StateCallback = Callable[[SessionState, SessionState], None]


class SessionStateMachine:
    """Finite state machine for a prototyping session.

    Thread safety: Not thread-safe (all events expected on the loop thread).
    """

    def __init__(self, clock: Optional[Callable[[], float]] = None, history_size: int = 50):
        self._clock = clock or time.time
        self._state = SessionState()
        self._history: Deque[TransitionRecord] = deque(maxlen=history_size)
        self._on_state_changed_callbacks: List[StateCallback] = []
        self._edit_count = 0

    # ========== STATE ACCESS ==========

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def status(self) -> SessionStatus:
        return self._state.status

    @property
    def document(self) -> Any:
        return self._state.document

    @property
    def dirty(self) -> bool:
        return self._state.dirty

    @property
    def error(self) -> Optional[str]:
        return self._state.error

    @property
    def last_saved_at(self) -> Optional[float]:
        return self._state.last_saved_at

    @property
    def edit_count(self) -> int:
        """Number of content_changed() calls, including ones ignored by the current status."""
        return self._edit_count

    @property
    def history(self) -> List[TransitionRecord]:
        """Most recent transitions, oldest first."""
        return list(self._history)

    # ========== GUARDS ==========

    @property
    def is_loading(self) -> bool:
        return guards.is_loading(self._state)

    @property
    def is_busy(self) -> bool:
        return guards.is_busy(self._state)

    @property
    def can_save(self) -> bool:
        return guards.can_save(self._state)

    @property
    def can_switch_page(self) -> bool:
        return guards.can_switch_page(self._state)

    @property
    def can_autosave(self) -> bool:
        return guards.can_autosave(self._state)

    @property
    def can_modify_content(self) -> bool:
        return guards.can_modify_content(self._state)

    # ========== OBSERVERS ==========

    def on_state_changed(self, callback: StateCallback) -> None:
        """Subscribe to state changes. Callback receives (old_state, new_state)."""
        if callback not in self._on_state_changed_callbacks:
            self._on_state_changed_callbacks.append(callback)

    def off_state_changed(self, callback: StateCallback) -> None:
        """Unsubscribe from state changes."""
        if callback in self._on_state_changed_callbacks:
            self._on_state_changed_callbacks.remove(callback)

    def _notify_state_changed(self, old: SessionState, new: SessionState) -> None:
        for callback in list(self._on_state_changed_callbacks):
            try:
                callback(old, new)
            except Exception as e:
                logger.warning(f"Error in state_changed callback: {e}")

    # ========== DISPATCH ==========

    def dispatch(self, event: SessionEvent) -> SessionState:
        """Apply event and notify observers if the state changed.

        Returns:
            The state after the event
        """
        old = self._state
        new, forced = apply_event(old, event, self._clock())

        if new is old:
            logger.debug(f"SESSION: {event.type.value} ignored in {old.status.value}")
            return old

        if forced:
            logger.warning(
                f"SESSION: forced transition {event.type.value} from {old.status.value} "
                f"-> {new.status.value}")
        elif new.status is not old.status:
            logger.debug(f"SESSION: {old.status.value} -> {new.status.value} ({event.type.value})")

        self._state = new
        self._history.append(TransitionRecord(
            event=event.type,
            from_status=old.status,
            to_status=new.status,
            forced=forced,
            timestamp=self._clock(),
        ))
        self._notify_state_changed(old, new)
        return new

    # ========== EVENTS ==========

    def load_prototype(self, slug: Optional[str] = None) -> SessionState:
        return self.dispatch(SessionEvent(EventType.LOAD_PROTOTYPE, slug=slug))

    def prototype_loaded(self, document: Any) -> SessionState:
        return self.dispatch(SessionEvent(EventType.PROTOTYPE_LOADED, document=document))

    def prototype_load_failed(self, message: str) -> SessionState:
        return self.dispatch(SessionEvent(EventType.PROTOTYPE_LOAD_FAILED, message=message))

    def create_prototype(self) -> SessionState:
        return self.dispatch(SessionEvent(EventType.CREATE_PROTOTYPE))

    def prototype_created(self, document: Any) -> SessionState:
        return self.dispatch(SessionEvent(EventType.PROTOTYPE_CREATED, document=document))

    def prototype_create_failed(self, message: str) -> SessionState:
        return self.dispatch(SessionEvent(EventType.PROTOTYPE_CREATE_FAILED, message=message))

    def editor_initializing(self) -> SessionState:
        """Canvas is (re)mounting."""
        return self.dispatch(SessionEvent(EventType.EDITOR_INITIALIZING))

    def editor_ready(self) -> SessionState:
        return self.dispatch(SessionEvent(EventType.EDITOR_READY))

    def content_changed(self) -> SessionState:
        """Mark the session dirty. No-op unless READY or SWITCHING_PAGE."""
        self._edit_count += 1
        return self.dispatch(SessionEvent(EventType.CONTENT_CHANGED))

    def mark_clean(self) -> SessionState:
        return self.dispatch(SessionEvent(EventType.MARK_CLEAN))

    def save_start(self, save_type: str = 'autosave') -> SessionState:
        return self.dispatch(SessionEvent(EventType.SAVE_START, save_type=save_type))

    def save_success(self, document: Any = None) -> SessionState:
        """Saved. document, when given, replaces the loaded one."""
        return self.dispatch(SessionEvent(EventType.SAVE_SUCCESS, document=document))

    def save_failed(self, message: str) -> SessionState:
        return self.dispatch(SessionEvent(EventType.SAVE_FAILED, message=message))

    def page_switch_start(self) -> SessionState:
        return self.dispatch(SessionEvent(EventType.PAGE_SWITCH_START))

    def page_switch_complete(self) -> SessionState:
        return self.dispatch(SessionEvent(EventType.PAGE_SWITCH_COMPLETE))

    def restore_version_start(self, version_number: int) -> SessionState:
        return self.dispatch(SessionEvent(EventType.RESTORE_VERSION_START, version_number=version_number))

    def restore_version_complete(self, document: Any) -> SessionState:
        return self.dispatch(SessionEvent(EventType.RESTORE_VERSION_COMPLETE, document=document))

    def restore_version_failed(self, message: str) -> SessionState:
        return self.dispatch(SessionEvent(EventType.RESTORE_VERSION_FAILED, message=message))

    def clear_error(self) -> SessionState:
        return self.dispatch(SessionEvent(EventType.CLEAR_ERROR))

    def reset(self) -> SessionState:
        return self.dispatch(SessionEvent(EventType.RESET))
