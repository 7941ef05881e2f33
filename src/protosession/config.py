"""
Configuration for autosave scheduling and attribute sync retries.

Both configs are frozen dataclasses. Components take an explicit config or
fall back to the process defaults held here, which tests and applications
can override once at startup.
"""

from dataclasses import dataclass, fields, asdict
from typing import Any, Dict, Optional


def _require_positive(name: str, value: Optional[float], allow_none: bool = False) -> None:
    if value is None:
        if allow_none:
            return
        raise ValueError(f"{name} is required")
    if value <= 0:
        raise ValueError(f"{name} must be positive, got {value!r}")


@dataclass(frozen=True)
class AutosaveConfig:
    """Timing knobs for the autosave coordinator (milliseconds).

    failure_retry_ms=None keeps the edit owed after a failed save but does not
    retry until the next edit. Set it to retry on its own, at most
    max_failure_retries times in a row.
    """
    debounce_ms: int = 5000
    max_wait_ms: int = 30000
    initial_debounce_ms: Optional[int] = None
    saved_display_ms: int = 3000
    error_display_ms: int = 5000
    failure_retry_ms: Optional[int] = None
    max_failure_retries: int = 3

    def __post_init__(self):
        _require_positive('debounce_ms', self.debounce_ms)
        _require_positive('max_wait_ms', self.max_wait_ms)
        _require_positive('initial_debounce_ms', self.initial_debounce_ms, allow_none=True)
        _require_positive('saved_display_ms', self.saved_display_ms)
        _require_positive('error_display_ms', self.error_display_ms)
        _require_positive('failure_retry_ms', self.failure_retry_ms, allow_none=True)
        if self.max_failure_retries < 0:
            raise ValueError(f"max_failure_retries must be >= 0, got {self.max_failure_retries!r}")

    def to_dict(self) -> Dict[str, Any]:
        """Export to JSON-serializable dict."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AutosaveConfig':
        """Import from dict, ignoring unknown keys (e.g., settings files)."""
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})


@dataclass(frozen=True)
class RetryConfig:
    """Polling budget for syncing a value into a nested element.

    timeout_ms is informational; the effective bound is
    max_attempts * delay_ms.
    """
    max_attempts: int = 10
    delay_ms: int = 50
    timeout_ms: int = 500

    def __post_init__(self):
        _require_positive('max_attempts', self.max_attempts)
        _require_positive('delay_ms', self.delay_ms)
        _require_positive('timeout_ms', self.timeout_ms)

    def to_dict(self) -> Dict[str, Any]:
        """Export to JSON-serializable dict."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'RetryConfig':
        """Import from dict, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})


# Process defaults used when a component is built without an explicit config
_default_autosave_config: AutosaveConfig = AutosaveConfig()
_default_retry_config: RetryConfig = RetryConfig()


def set_default_autosave_config(config: AutosaveConfig) -> None:
    """Set the AutosaveConfig used by coordinators created without one."""
    global _default_autosave_config
    _default_autosave_config = config


def get_default_autosave_config() -> AutosaveConfig:
    """Get the process default AutosaveConfig."""
    return _default_autosave_config


def set_default_retry_config(config: RetryConfig) -> None:
    """Set the RetryConfig used by synchronizers created without one."""
    global _default_retry_config
    _default_retry_config = config


def get_default_retry_config() -> RetryConfig:
    """Get the process default RetryConfig."""
    return _default_retry_config


def reset_default_configs() -> None:
    """Restore built-in defaults for both configs."""
    global _default_autosave_config, _default_retry_config
    _default_autosave_config = AutosaveConfig()
    _default_retry_config = RetryConfig()
