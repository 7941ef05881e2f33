"""
Host element interface expected by the attribute synchronizer.

Adapters wrap whatever the canvas renders (a DOM proxy, a widget, a test
double) in this interface. The synchronizer only reads and writes attributes,
checks liveness and looks up nested elements. Hosts backed by a component
object can also expose live properties.
"""

from abc import ABC, abstractmethod
from typing import Any, Optional


class HostElement(ABC):
    """A rendered component that may contain nested elements."""

    @abstractmethod
    def get_attribute(self, name: str) -> Optional[str]:
        """Return the attribute value, or None when unset."""

    @abstractmethod
    def set_attribute(self, name: str, value: str) -> None:
        """Set an attribute on the host itself."""

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        """True while the host is attached to the visible surface."""

    def query_selector(self, selector: str) -> Optional[Any]:
        """Return the first nested element matching selector, or None.

        Hosts without nested content keep this default.
        """
        return None

    def get_property(self, name: str) -> Optional[Any]:
        """Return the live component property, or None when the host has none."""
        return None

    def set_property(self, name: str, value: Any) -> None:
        """Set a live component property. Hosts without properties ignore it."""
