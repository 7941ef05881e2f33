"""
Session persistence: storage calls wrapped in state machine events.

The storage backend (REST client, local draft store, ...) is injected as
coroutine functions. This module only sequences the lifecycle events around
them and turns every failure into a returned value, so callers such as the
autosave coordinator never see an exception.
"""

import logging
from typing import Any, Awaitable, Callable, Optional, TYPE_CHECKING

from protosession.state_machine import SessionStateMachine

if TYPE_CHECKING:
    from protosession.autosave import AutosaveCoordinator

logger = logging.getLogger(__name__)

StoreFunction = Callable[[Any], Awaitable[Any]]


def _describe(error: BaseException) -> str:
    return str(error) or type(error).__name__


class SessionPersistence:
    """Drives save/load/create/restore through a SessionStateMachine."""

    def __init__(self, state_machine: SessionStateMachine):
        self._sm = state_machine

    @property
    def state_machine(self) -> SessionStateMachine:
        return self._sm

    def _restore_dirty(self, edits_before: int) -> None:
        # SAVING ignores content_changed, so replay it for edits made during the await
        if self._sm.edit_count != edits_before:
            logger.debug(f"SESSION: {self._sm.edit_count - edits_before} edit(s) during save, still dirty")
            self._sm.content_changed()

    async def save(self, store: StoreFunction, save_type: str = 'autosave') -> Optional[Any]:
        """Store the current document.

        Args:
            store: Coroutine function receiving the current document and
                   returning the stored document (falsy on failure)
            save_type: 'autosave' or 'manual', recorded in state meta

        Returns:
            The stored document, or None when blocked or failed
        """
        if not self._sm.can_save:
            logger.debug(f"SESSION: {save_type} save blocked in {self._sm.status.value}")
            return None

        self._sm.save_start(save_type)
        edits_before = self._sm.edit_count
        try:
            stored = await store(self._sm.document)
        except Exception as e:
            logger.warning(f"SESSION: {save_type} save failed: {_describe(e)}")
            self._sm.save_failed(_describe(e))
            self._restore_dirty(edits_before)
            return None

        if not stored:
            self._sm.save_failed('Save returned no document')
            self._restore_dirty(edits_before)
            return None

        self._sm.save_success(stored)
        self._restore_dirty(edits_before)
        logger.info(f"SESSION: {save_type} save complete")
        return stored

    def autosave_callable(self, store: StoreFunction) -> Callable[[], Awaitable[Any]]:
        """Zero-argument save function for AutosaveCoordinator."""
        async def save() -> Optional[Any]:
            return await self.save(store, 'autosave')
        return save

    async def load(self, fetch: Callable[[str], Awaitable[Any]], slug: str) -> bool:
        """Load a document by slug into the session.

        Returns:
            True if the document was loaded
        """
        self._sm.load_prototype(slug)
        try:
            document = await fetch(slug)
        except Exception as e:
            logger.warning(f"SESSION: load '{slug}' failed: {_describe(e)}")
            self._sm.prototype_load_failed(_describe(e))
            return False
        if document is None:
            self._sm.prototype_load_failed(f"Prototype '{slug}' not found")
            return False
        self._sm.prototype_loaded(document)
        return True

    async def create(self, factory: Callable[[], Awaitable[Any]]) -> Optional[Any]:
        """Create a new document and load it into the session.

        Returns:
            The created document, or None on failure
        """
        self._sm.create_prototype()
        try:
            document = await factory()
        except Exception as e:
            logger.warning(f"SESSION: create failed: {_describe(e)}")
            self._sm.prototype_create_failed(_describe(e))
            return None
        if document is None:
            self._sm.prototype_create_failed('Create returned no document')
            return None
        self._sm.prototype_created(document)
        return document

    async def restore_version(
        self,
        fetch_version: Callable[[int], Awaitable[Any]],
        version_number: int,
        autosave: Optional['AutosaveCoordinator'] = None,
    ) -> bool:
        """Replace the document with a stored version.

        Autosave is paused for the duration; a successful restore also counts
        as a save, since the restored document is the persisted one.

        Returns:
            True if the version was restored
        """
        if not self._sm.can_save:
            logger.debug(f"SESSION: restore blocked in {self._sm.status.value}")
            return False

        if autosave is not None:
            autosave.pause()
        try:
            self._sm.restore_version_start(version_number)
            try:
                document = await fetch_version(version_number)
            except Exception as e:
                logger.warning(f"SESSION: restore v{version_number} failed: {_describe(e)}")
                self._sm.restore_version_failed(_describe(e))
                return False
            if document is None:
                self._sm.restore_version_failed(f"Version {version_number} not found")
                return False
            self._sm.restore_version_complete(document)
            if autosave is not None:
                autosave.mark_saved()
            logger.info(f"SESSION: restored version {version_number}")
            return True
        finally:
            if autosave is not None:
                autosave.resume()
