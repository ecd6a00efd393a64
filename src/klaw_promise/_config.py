"""Process-wide configuration: debug switch, logging, and initialization."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, replace

from klaw_promise._logging import configure_logging

__all__ = [
    'PromiseConfig',
    'get_config',
    'init',
    'set_debug',
]

_TRUTHY = ('1', 'true', 'yes', 'on')
_FALSY = ('0', 'false', 'no', 'off')


@dataclass(frozen=True)
class PromiseConfig:
    """Configuration for klaw-promise.

    Attributes:
        debug: Log observer exceptions that are otherwise swallowed.
        log_level: Logging level (e.g., "DEBUG", "INFO"). None = leave logging alone.
        json_logs: Emit JSON logs when logging is configured, console output otherwise.
    """

    debug: bool = False
    log_level: str | None = None
    json_logs: bool = True


# Global configuration (set by init(), created lazily otherwise)
_config: PromiseConfig | None = None


def _detect_debug() -> bool:
    """Read the debug switch from KLAW_PROMISE_DEBUG."""
    env_debug = os.environ.get('KLAW_PROMISE_DEBUG', '').strip().lower()
    if env_debug in _TRUTHY:
        return True
    if env_debug and env_debug not in _FALSY:
        logging.warning("Unknown KLAW_PROMISE_DEBUG value '%s', debug stays off", env_debug)
    return False


def init(
    debug: bool | None = None,
    log_level: str | None = None,
    *,
    json_logs: bool = True,
) -> PromiseConfig:
    """Initialize klaw-promise with the given configuration.

    Args:
        debug: Log swallowed observer exceptions. Read from the
            KLAW_PROMISE_DEBUG environment variable if None.
        log_level: Logging level ("DEBUG", "INFO", etc.). None = leave logging alone.
        json_logs: JSON output when logging is configured here.

    Returns:
        The PromiseConfig that was set.

    Example:
        ```python
        from klaw_promise import init

        init(debug=True, log_level='DEBUG', json_logs=False)
        ```
    """
    global _config  # noqa: PLW0603

    _config = PromiseConfig(
        debug=_detect_debug() if debug is None else debug,
        log_level=log_level,
        json_logs=json_logs,
    )

    if log_level is not None:
        configure_logging(log_level, json_output=json_logs)

    return _config


def get_config() -> PromiseConfig:
    """Get the current configuration.

    Unlike the runtime config, primitives must work before anyone calls
    init(), so the first call falls back to the environment.
    """
    global _config  # noqa: PLW0603

    if _config is None:
        _config = PromiseConfig(debug=_detect_debug())
    return _config


def set_debug(enabled: bool) -> None:
    """Turn logging of swallowed observer exceptions on or off."""
    global _config  # noqa: PLW0603

    _config = replace(get_config(), debug=enabled)
