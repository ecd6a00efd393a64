"""Shared fixtures for klaw-promise tests."""

from __future__ import annotations

from collections.abc import Iterator
from typing import Any

import pytest
from hypothesis import HealthCheck, settings
from klaw_promise import add_log_hook, clear_log_hooks, configure_logging, init

# reset_config is autouse and cheap to share between generated examples
settings.register_profile('klaw', suppress_health_check=[HealthCheck.function_scoped_fixture])
settings.load_profile('klaw')


@pytest.fixture(autouse=True)
def reset_config() -> Iterator[None]:
    """Start every test with debug off and no log hooks."""
    init(debug=False)
    clear_log_hooks()
    yield
    clear_log_hooks()
    init(debug=False)


@pytest.fixture
def log_events() -> list[dict[str, Any]]:
    """Capture structlog event dicts emitted during the test."""
    events: list[dict[str, Any]] = []
    configure_logging(level='DEBUG', json_output=True)
    add_log_hook(events.append)
    return events
