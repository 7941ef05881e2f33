"""
Session lifecycle and autosave engine for a prototyping editor.

Key Features:
- Session state machine with forced (never rejected) transitions and guards
- Debounced, max-wait-bounded, pausable autosave with overlap protection
- Retry-with-interval attribute sync for nested elements that render late
- Scheduler abstraction with a virtual clock for deterministic tests

Quick Start:
    >>> from protosession import (
    ...     SessionStateMachine,
    ...     SessionPersistence,
    ...     AutosaveCoordinator,
    ... )
    >>>
    >>> session = SessionStateMachine()
    >>> persistence = SessionPersistence(session)
    >>> autosave = AutosaveCoordinator(session, persistence.autosave_callable(api.store))
    >>>
    >>> await persistence.load(api.fetch, 'landing-page')
    >>> session.editor_ready()
    >>> autosave.trigger_change()   # on every canvas edit

Modules:
    - session_state: SessionState, events, guards and the pure transition function
    - state_machine: SessionStateMachine (events, guards, observers, history)
    - autosave: AutosaveCoordinator
    - persistence: SessionPersistence (storage calls wrapped in events)
    - retry_task: RetryTask, the attempt-budgeted retry primitive
    - interval_registry: IntervalRegistry of pending retry tasks
    - attribute_sync: AttributeSynchronizer and InternalSyncTrait
    - scheduling: Scheduler, AsyncioScheduler, VirtualScheduler
    - config: AutosaveConfig, RetryConfig and process defaults
"""

# Configuration
from protosession.config import (
    AutosaveConfig,
    RetryConfig,
    set_default_autosave_config,
    get_default_autosave_config,
    set_default_retry_config,
    get_default_retry_config,
    reset_default_configs,
)

# Scheduling
from protosession.scheduling import (
    Scheduler,
    TimerHandle,
    AsyncioScheduler,
    VirtualScheduler,
    get_default_scheduler,
    set_default_scheduler,
)

# Session state
from protosession.session_state import (
    SessionStatus,
    SessionState,
    SessionEvent,
    EventType,
    TransitionRecord,
    apply_event,
    is_loading,
    is_busy,
    can_save,
    can_switch_page,
    can_autosave,
    can_modify_content,
)
from protosession.state_machine import SessionStateMachine

# Autosave
from protosession.autosave import AutosaveCoordinator, AutosaveState, AutosaveStatus, ArmedTimer

# Persistence
from protosession.persistence import SessionPersistence

# Attribute sync
from protosession.host import HostElement
from protosession.retry_task import RetryTask, RetryState, AttemptResult
from protosession.interval_registry import IntervalRegistry, IDENTITY_ATTRIBUTE
from protosession.attribute_sync import AttributeSynchronizer, InternalSyncTrait, SyncTarget

__all__ = [
    # Configuration
    'AutosaveConfig',
    'RetryConfig',
    'set_default_autosave_config',
    'get_default_autosave_config',
    'set_default_retry_config',
    'get_default_retry_config',
    'reset_default_configs',
    # Scheduling
    'Scheduler',
    'TimerHandle',
    'AsyncioScheduler',
    'VirtualScheduler',
    'get_default_scheduler',
    'set_default_scheduler',
    # Session state
    'SessionStatus',
    'SessionState',
    'SessionEvent',
    'EventType',
    'TransitionRecord',
    'apply_event',
    'is_loading',
    'is_busy',
    'can_save',
    'can_switch_page',
    'can_autosave',
    'can_modify_content',
    'SessionStateMachine',
    # Autosave
    'AutosaveCoordinator',
    'AutosaveState',
    'AutosaveStatus',
    'ArmedTimer',
    # Persistence
    'SessionPersistence',
    # Attribute sync
    'HostElement',
    'RetryTask',
    'RetryState',
    'AttemptResult',
    'IntervalRegistry',
    'IDENTITY_ATTRIBUTE',
    'AttributeSynchronizer',
    'InternalSyncTrait',
    'SyncTarget',
]

__version__ = '1.0.0'
__description__ = 'Session lifecycle and autosave coordination for a prototyping editor'
