"""
Attribute synchronization onto nested elements that render asynchronously.

Components often store a value as an attribute on the host (for
serialization) and also show it inside a nested element, for example a legend
inside a fieldset. The nested element may not exist yet when the value
changes, so the write is retried on a fixed interval through RetryTask and
tracked in IntervalRegistry so that removing the host cancels it.

Both failure modes are quiet: a detached host abandons the
write, and a nested element that never shows up is logged at DEBUG.
"""

from dataclasses import dataclass
import logging
from typing import Any, Dict, Optional

from protosession.config import RetryConfig, get_default_retry_config
from protosession.host import HostElement
from protosession.interval_registry import IntervalRegistry
from protosession.retry_task import AttemptResult, RetryState, RetryTask
from protosession.scheduling import Scheduler, get_default_scheduler

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SyncTarget:
    """Which nested element to update, and which of its properties to set."""
    selector: str
    property: str = 'text_content'


class AttributeSynchronizer:
    """Push values into a nested element of a host, retrying until it exists.

    Args:
        target: Nested element descriptor
        retry: Polling budget (process default when omitted)
        scheduler: Timer source (process AsyncioScheduler when omitted)
    """

    def __init__(
        self,
        target: SyncTarget,
        retry: Optional[RetryConfig] = None,
        scheduler: Optional[Scheduler] = None,
    ):
        self.target = target
        self._retry = retry or get_default_retry_config()
        self._scheduler = scheduler or get_default_scheduler()

    def _write(self, host: HostElement, value: str) -> AttemptResult:
        if not host.is_connected:
            return AttemptResult.ABANDONED
        nested = host.query_selector(self.target.selector)
        if nested is None:
            return AttemptResult.PENDING
        setattr(nested, self.target.property, value)
        return AttemptResult.SUCCEEDED

    def sync(self, host: HostElement, task_name: str, value: str) -> RetryTask:
        """Write value to the nested target now, or keep retrying in the background.

        Any earlier sync for (host, task_name) is cancelled first so a stale
        value can never land after a newer one.

        Returns:
            The RetryTask, already finished when the first attempt resolved it
        """
        IntervalRegistry.cancel(host, task_name)

        task: RetryTask[str] = RetryTask(
            task_name, value, lambda v: self._write(host, v), self._scheduler, self._retry)

        def report(finished: RetryTask) -> None:
            if finished.state is RetryState.EXHAUSTED and host.is_connected:
                logger.debug(
                    f"SYNC: could not sync '{task_name}' to '{self.target.selector}' "
                    f"after {self._retry.max_attempts} attempts")
            elif finished.state is RetryState.ABANDONED:
                logger.debug(f"SYNC: host detached, dropped '{task_name}'")

        task.on_finished(report)
        if task.start() is RetryState.WAITING:
            IntervalRegistry.register(host, task_name, task)
        return task

    @staticmethod
    def cleanup_for_host(host: HostElement) -> int:
        """Cancel every pending sync for host (host removed from the canvas)."""
        return IntervalRegistry.cancel_for_host(host)

    @staticmethod
    def cleanup_all() -> int:
        """Cancel every pending sync (editor teardown)."""
        return IntervalRegistry.cancel_all()


class InternalSyncTrait:
    """A trait whose value lives on the host attribute and in a nested element.

    on_change() writes the attribute and the live property immediately and
    syncs the nested element through an AttributeSynchronizer. get_value()
    prefers the live property, then the attribute, then the default.

    Example:
        legend = InternalSyncTrait('legend', label='Legend',
                                   target=SyncTarget('legend'),
                                   default='Fieldset legend')
        legend.on_change(fieldset_host, 'Contact details')
    """

    def __init__(
        self,
        name: str,
        label: str,
        target: SyncTarget,
        default: str = '',
        input_type: str = 'text',
        placeholder: Optional[str] = None,
        retry: Optional[RetryConfig] = None,
        scheduler: Optional[Scheduler] = None,
    ):
        if input_type not in ('text', 'textarea'):
            raise ValueError(f"input_type must be 'text' or 'textarea', got {input_type!r}")
        self.name = name
        self.label = label
        self.default = default
        self.input_type = input_type
        self.placeholder = placeholder
        self.synchronizer = AttributeSynchronizer(target, retry=retry, scheduler=scheduler)

    @property
    def definition(self) -> Dict[str, Any]:
        """Field description for a traits panel."""
        return {
            'name': self.name,
            'label': self.label,
            'type': self.input_type,
            'default': self.default,
            'placeholder': self.placeholder,
        }

    def on_change(self, host: HostElement, value: Any) -> RetryTask:
        text = '' if value is None else str(value)
        host.set_attribute(self.name, text)
        host.set_property(self.name, text)
        return self.synchronizer.sync(host, self.name, text)

    def get_value(self, host: HostElement) -> Any:
        """Live property first, then the attribute, then the default."""
        value = host.get_property(self.name)
        if value is not None:
            return value
        return host.get_attribute(self.name) or self.default
