"""
Session state dataclasses and the pure transition function.

Design:
- SessionState is frozen; every transition builds a new instance
- apply_event() is pure: (state, event, now) -> (state, forced)
- Guards are plain functions of a state so callers can evaluate them on any
  snapshot, not only the machine's current one
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, FrozenSet, Optional, Tuple
import time


class SessionStatus(Enum):
    UNINITIALIZED = 'uninitialized'
    LOADING_PROTOTYPE = 'loading_prototype'
    CREATING_PROTOTYPE = 'creating_prototype'
    EDITOR_INITIALIZING = 'editor_initializing'
    READY = 'ready'
    SAVING = 'saving'
    SWITCHING_PAGE = 'switching_page'
    RESTORING_VERSION = 'restoring_version'
    ERROR = 'error'


class EventType(Enum):
    LOAD_PROTOTYPE = 'load_prototype'
    PROTOTYPE_LOADED = 'prototype_loaded'
    PROTOTYPE_LOAD_FAILED = 'prototype_load_failed'
    CREATE_PROTOTYPE = 'create_prototype'
    PROTOTYPE_CREATED = 'prototype_created'
    PROTOTYPE_CREATE_FAILED = 'prototype_create_failed'
    EDITOR_INITIALIZING = 'editor_initializing'
    EDITOR_READY = 'editor_ready'
    CONTENT_CHANGED = 'content_changed'
    MARK_CLEAN = 'mark_clean'
    SAVE_START = 'save_start'
    SAVE_SUCCESS = 'save_success'
    SAVE_FAILED = 'save_failed'
    PAGE_SWITCH_START = 'page_switch_start'
    PAGE_SWITCH_COMPLETE = 'page_switch_complete'
    RESTORE_VERSION_START = 'restore_version_start'
    RESTORE_VERSION_COMPLETE = 'restore_version_complete'
    RESTORE_VERSION_FAILED = 'restore_version_failed'
    CLEAR_ERROR = 'clear_error'
    RESET = 'reset'


S = SessionStatus
_ANY: FrozenSet[SessionStatus] = frozenset(SessionStatus)

# Statuses each event is expected from. Anything else is a forced transition.
EXPECTED_SOURCES: Dict[EventType, FrozenSet[SessionStatus]] = {
    EventType.LOAD_PROTOTYPE: _ANY,
    EventType.PROTOTYPE_LOADED: frozenset({S.LOADING_PROTOTYPE}),
    EventType.PROTOTYPE_LOAD_FAILED: frozenset({S.LOADING_PROTOTYPE}),
    EventType.CREATE_PROTOTYPE: _ANY,
    EventType.PROTOTYPE_CREATED: frozenset({S.CREATING_PROTOTYPE}),
    EventType.PROTOTYPE_CREATE_FAILED: frozenset({S.CREATING_PROTOTYPE}),
    EventType.EDITOR_INITIALIZING: _ANY,
    EventType.EDITOR_READY: frozenset({S.EDITOR_INITIALIZING}),
    EventType.CONTENT_CHANGED: frozenset({S.READY, S.SWITCHING_PAGE}),
    EventType.MARK_CLEAN: _ANY,
    EventType.SAVE_START: frozenset({S.READY}),
    EventType.SAVE_SUCCESS: frozenset({S.SAVING}),
    EventType.SAVE_FAILED: frozenset({S.SAVING}),
    EventType.PAGE_SWITCH_START: frozenset({S.READY}),
    EventType.PAGE_SWITCH_COMPLETE: frozenset({S.SWITCHING_PAGE}),
    EventType.RESTORE_VERSION_START: frozenset({S.READY}),
    EventType.RESTORE_VERSION_COMPLETE: frozenset({S.RESTORING_VERSION}),
    EventType.RESTORE_VERSION_FAILED: frozenset({S.RESTORING_VERSION}),
    EventType.CLEAR_ERROR: frozenset({S.ERROR}),
    EventType.RESET: _ANY,
}

DIRTY_CAPABLE: FrozenSet[SessionStatus] = frozenset({S.READY, S.SAVING, S.SWITCHING_PAGE})
LOADING_STATUSES: FrozenSet[SessionStatus] = frozenset(
    {S.LOADING_PROTOTYPE, S.CREATING_PROTOTYPE, S.EDITOR_INITIALIZING})
BUSY_STATUSES: FrozenSet[SessionStatus] = frozenset({S.SAVING, S.SWITCHING_PAGE, S.RESTORING_VERSION})
CONTENT_LOCKED: FrozenSet[SessionStatus] = frozenset(
    {S.LOADING_PROTOTYPE, S.CREATING_PROTOTYPE, S.RESTORING_VERSION})


@dataclass(frozen=True)
class SessionState:
    """Complete lifecycle state of one editing session.

    document is opaque: the session never inspects it.
    meta carries transition payloads (slug, save_type, version_number,
    error_message) and is never mutated after construction.
    """
    status: SessionStatus = SessionStatus.UNINITIALIZED
    previous_status: Optional[SessionStatus] = None
    document: Any = None
    dirty: bool = False
    error: Optional[str] = None
    last_saved_at: Optional[float] = None
    meta: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Export everything except the document to a JSON-serializable dict."""
        return {
            'status': self.status.value,
            'previous_status': self.previous_status.value if self.previous_status else None,
            'has_document': self.document is not None,
            'dirty': self.dirty,
            'error': self.error,
            'last_saved_at': self.last_saved_at,
            'meta': dict(self.meta),
        }


@dataclass(frozen=True)
class SessionEvent:
    """One lifecycle event plus its optional payload."""
    type: EventType
    document: Any = None
    message: Optional[str] = None
    version_number: Optional[int] = None
    slug: Optional[str] = None
    save_type: Optional[str] = None


@dataclass(frozen=True)
class TransitionRecord:
    """Diagnostic record of one applied event."""
    event: EventType
    from_status: SessionStatus
    to_status: SessionStatus
    forced: bool
    timestamp: float = field(default_factory=time.time)


# ========== GUARDS ==========

def is_loading(state: SessionState) -> bool:
    return state.status in LOADING_STATUSES


def is_busy(state: SessionState) -> bool:
    return state.status in BUSY_STATUSES


def can_save(state: SessionState) -> bool:
    return state.status is SessionStatus.READY and state.document is not None


def can_switch_page(state: SessionState) -> bool:
    return state.status is SessionStatus.READY


def can_autosave(state: SessionState) -> bool:
    return state.status is SessionStatus.READY


def can_modify_content(state: SessionState) -> bool:
    return state.status not in CONTENT_LOCKED


# ========== TRANSITIONS ==========

def _with_meta(state: SessionState, **updates: Any) -> Dict[str, Any]:
    meta = dict(state.meta)
    meta.update(updates)
    return meta


def _enter(state: SessionState, status: SessionStatus, **changes: Any) -> SessionState:
    """Move to status, recording previous_status when the status changes."""
    if status is not state.status:
        changes.setdefault('previous_status', state.status)
    return replace(state, status=status, **changes)


def apply_event(state: SessionState, event: SessionEvent, now: float) -> Tuple[SessionState, bool]:
    """Compute the state that follows event.

    Events are never rejected. An event arriving from a status outside
    EXPECTED_SOURCES is applied anyway and reported as forced; the only
    exception is CONTENT_CHANGED, which is a no-op outside READY and
    SWITCHING_PAGE.

    Returns:
        (next_state, forced). next_state is the same object when nothing changed.
    """
    kind = event.type
    forced = state.status not in EXPECTED_SOURCES[kind]

    if kind is EventType.LOAD_PROTOTYPE:
        nxt = _enter(state, S.LOADING_PROTOTYPE, document=None, dirty=False, error=None,
                     meta={'slug': event.slug} if event.slug is not None else {})
    elif kind is EventType.PROTOTYPE_LOADED:
        nxt = _enter(state, S.EDITOR_INITIALIZING, document=event.document, dirty=False, error=None,
                     meta=_with_meta(state, error_message=None))
    elif kind is EventType.PROTOTYPE_LOAD_FAILED:
        nxt = _enter(state, S.ERROR, error=event.message,
                     meta=_with_meta(state, error_message=event.message))
    elif kind is EventType.CREATE_PROTOTYPE:
        nxt = _enter(state, S.CREATING_PROTOTYPE, dirty=False, error=None, meta={})
    elif kind is EventType.PROTOTYPE_CREATED:
        nxt = _enter(state, S.EDITOR_INITIALIZING, document=event.document, dirty=False, error=None)
    elif kind is EventType.PROTOTYPE_CREATE_FAILED:
        nxt = _enter(state, S.ERROR, error=event.message,
                     meta=_with_meta(state, error_message=event.message))
    elif kind is EventType.EDITOR_INITIALIZING:
        nxt = _enter(state, S.EDITOR_INITIALIZING, error=None)
    elif kind is EventType.EDITOR_READY:
        nxt = _enter(state, S.READY, error=None)
    elif kind is EventType.CONTENT_CHANGED:
        if forced or state.dirty:
            return state, False
        nxt = replace(state, dirty=True)
    elif kind is EventType.MARK_CLEAN:
        if not state.dirty:
            return state, False
        nxt = replace(state, dirty=False)
    elif kind is EventType.SAVE_START:
        nxt = _enter(state, S.SAVING, meta=_with_meta(state, save_type=event.save_type or 'autosave'))
    elif kind is EventType.SAVE_SUCCESS:
        document = event.document if event.document is not None else state.document
        nxt = _enter(state, S.READY, document=document, dirty=False, error=None, last_saved_at=now,
                     meta=_with_meta(state, error_message=None))
    elif kind is EventType.SAVE_FAILED:
        # Soft failure: back to READY so editing continues, dirt preserved
        nxt = _enter(state, S.READY, error=event.message,
                     meta=_with_meta(state, error_message=event.message))
    elif kind is EventType.PAGE_SWITCH_START:
        nxt = _enter(state, S.SWITCHING_PAGE)
    elif kind is EventType.PAGE_SWITCH_COMPLETE:
        nxt = _enter(state, S.READY)
    elif kind is EventType.RESTORE_VERSION_START:
        nxt = _enter(state, S.RESTORING_VERSION, dirty=False,
                     meta=_with_meta(state, version_number=event.version_number))
    elif kind is EventType.RESTORE_VERSION_COMPLETE:
        nxt = _enter(state, S.READY, document=event.document, dirty=False, error=None, last_saved_at=now,
                     meta=_with_meta(state, error_message=None))
    elif kind is EventType.RESTORE_VERSION_FAILED:
        nxt = _enter(state, S.READY, error=event.message,
                     meta=_with_meta(state, error_message=event.message))
    elif kind is EventType.CLEAR_ERROR:
        if state.status is S.ERROR:
            nxt = _enter(state, state.previous_status or S.READY, error=None,
                         meta=_with_meta(state, error_message=None))
        else:
            nxt = replace(state, error=None, meta=_with_meta(state, error_message=None))
    elif kind is EventType.RESET:
        nxt = SessionState()
    else:
        raise ValueError(f"Unknown event type: {kind!r}")

    if nxt.dirty and nxt.status not in DIRTY_CAPABLE:
        nxt = replace(nxt, dirty=False)
    return nxt, forced
