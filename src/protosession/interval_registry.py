"""
IntervalRegistry: process-wide index of in-flight retry tasks.

Keys are (host identity, task name). The host identity is a stable tag
written lazily onto the host the first time it is needed, so a re-rendered
host object that carries the same tag maps to the same tasks.

Lifecycle ownership:
- AttributeSynchronizer: registers a task when a sync starts waiting
- RetryTask completion: unregisters itself
- Canvas component removal: cancel_for_host()
- Editor teardown: cancel_all()

Thread safety: Not thread-safe (all operations expected on the loop thread).
"""

import logging
from typing import Dict, List, Optional, Tuple
import uuid

from protosession.host import HostElement
from protosession.retry_task import RetryTask

logger = logging.getLogger(__name__)

IDENTITY_ATTRIBUTE = 'data-sync-id'

RegistryKey = Tuple[str, str]


class IntervalRegistry:
    """Singleton registry of pending RetryTasks keyed by (host identity, task name)."""
    _tasks: Dict[RegistryKey, RetryTask] = {}

    @classmethod
    def identity_for(cls, host: HostElement) -> str:
        """Return the host's identity tag, assigning one on first use."""
        identity = host.get_attribute(IDENTITY_ATTRIBUTE)
        if not identity:
            identity = f"sync-{uuid.uuid4().hex[:12]}"
            host.set_attribute(IDENTITY_ATTRIBUTE, identity)
        return identity

    @classmethod
    def existing_identity(cls, host: HostElement) -> Optional[str]:
        """Return the host's identity tag without assigning one."""
        return host.get_attribute(IDENTITY_ATTRIBUTE) or None

    @classmethod
    def register(cls, host: HostElement, name: str, task: RetryTask) -> RegistryKey:
        """Track task under (host, name), cancelling whatever was there.

        The task unregisters itself when it finishes.
        """
        key = (cls.identity_for(host), name)
        previous = cls._tasks.get(key)
        if previous is not None and previous is not task:
            previous.cancel()
        cls._tasks[key] = task
        task.on_finished(lambda finished: cls._unregister(key, finished))
        logger.debug(f"REGISTRY: registered {key}")
        return key

    @classmethod
    def _unregister(cls, key: RegistryKey, task: RetryTask) -> None:
        # A replacement task may already own the key
        if cls._tasks.get(key) is task:
            del cls._tasks[key]
            logger.debug(f"REGISTRY: unregistered {key} ({task.state.value})")

    @classmethod
    def cancel(cls, host: HostElement, name: str) -> bool:
        """Cancel the task for (host, name).

        Returns:
            True if a task was cancelled
        """
        identity = cls.existing_identity(host)
        if identity is None:
            return False
        task = cls._tasks.pop((identity, name), None)
        if task is None:
            return False
        task.cancel()
        return True

    @classmethod
    def cancel_for_host(cls, host: HostElement) -> int:
        """Cancel every task for host. Called when the host leaves the canvas."""
        identity = cls.existing_identity(host)
        if identity is None:
            return 0
        keys = [key for key in cls._tasks if key[0] == identity]
        for key in keys:
            cls._tasks.pop(key).cancel()
        if keys:
            logger.debug(f"REGISTRY: cancelled {len(keys)} task(s) for host {identity}")
        return len(keys)

    @classmethod
    def cancel_all(cls) -> int:
        """Cancel every task. Safety net for editor teardown."""
        tasks = list(cls._tasks.values())
        cls._tasks.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            logger.debug(f"REGISTRY: cancelled all {len(tasks)} task(s)")
        return len(tasks)

    @classmethod
    def get(cls, host: HostElement, name: str) -> Optional[RetryTask]:
        identity = cls.existing_identity(host)
        if identity is None:
            return None
        return cls._tasks.get((identity, name))

    @classmethod
    def is_active(cls, host: HostElement, name: str) -> bool:
        return cls.get(host, name) is not None

    @classmethod
    def active_keys(cls) -> List[RegistryKey]:
        return list(cls._tasks.keys())

    @classmethod
    def active_count(cls) -> int:
        return len(cls._tasks)
