"""Pytest configuration and shared fixtures."""
import pytest
from typing import Any, Dict, Optional

from protosession import (
    HostElement,
    IntervalRegistry,
    SessionStateMachine,
    VirtualScheduler,
    reset_default_configs,
    set_default_scheduler,
)


class FakeElement:
    """Nested element rendered inside a FakeHost."""

    def __init__(self):
        self.text_content: Optional[str] = None
        self.inner_html: Optional[str] = None


class FakeHost(HostElement):
    """In-memory host: attributes and properties dicts, selector -> child map, toggleable liveness."""

    def __init__(self, connected: bool = True):
        self.attributes: Dict[str, str] = {}
        self.children: Dict[str, FakeElement] = {}
        self.properties: Dict[str, Any] = {}
        self.connected = connected
        self.queries = 0

    def get_attribute(self, name: str) -> Optional[str]:
        return self.attributes.get(name)

    def set_attribute(self, name: str, value: str) -> None:
        self.attributes[name] = value

    def get_property(self, name: str) -> Optional[Any]:
        return self.properties.get(name)

    def set_property(self, name: str, value: Any) -> None:
        self.properties[name] = value

    @property
    def is_connected(self) -> bool:
        return self.connected

    def query_selector(self, selector: str) -> Any:
        self.queries += 1
        return self.children.get(selector)

    def render(self, selector: str) -> FakeElement:
        """Simulate the component finishing its async render."""
        element = FakeElement()
        self.children[selector] = element
        return element


@pytest.fixture(autouse=True)
def reset_process_state():
    """Empty the interval registry and restore default configs around each test."""
    IntervalRegistry.cancel_all()
    reset_default_configs()
    set_default_scheduler(None)

    yield

    IntervalRegistry.cancel_all()
    reset_default_configs()
    set_default_scheduler(None)


@pytest.fixture
def scheduler():
    """Virtual clock starting at t=0."""
    return VirtualScheduler()


@pytest.fixture
def make_host():
    """Factory for FakeHost instances."""
    def factory(connected: bool = True) -> FakeHost:
        return FakeHost(connected=connected)
    return factory


@pytest.fixture
def document():
    """Opaque document as returned by the storage service."""
    return {'slug': 'landing-page', 'name': 'Landing page', 'html': '<main></main>'}


@pytest.fixture
def session(scheduler):
    """Fresh session using the virtual clock."""
    return SessionStateMachine(clock=scheduler.now)


@pytest.fixture
def ready_session(session, document):
    """Session with a document loaded and the editor ready."""
    session.load_prototype(document['slug'])
    session.prototype_loaded(document)
    session.editor_ready()
    return session
