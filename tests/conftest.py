"""Pytest configuration and fixtures."""

from __future__ import annotations

import logging
from typing import Callable

import httpx
import pytest

from skillgate.config import LoggingConfig, TransportMode
from skillgate.events import StructuredLogger


@pytest.fixture(autouse=True)
def cleanup_loggers():
    """Close skillgate and httpx log handlers after each test so debug files are released."""
    yield

    for name in list(logging.Logger.manager.loggerDict.keys()):
        if not name.startswith(("skillgate", "httpx")):
            continue
        logger = logging.getLogger(name)
        for handler in list(logger.handlers):
            handler.close()
        logger.handlers.clear()
    logging.getLogger("httpx").propagate = True


@pytest.fixture
def no_sleep() -> list[float]:
    """Collects requested sleep durations instead of sleeping."""
    return []


@pytest.fixture
def make_events(tmp_path, no_sleep) -> Callable[..., StructuredLogger]:
    def _make(mode: TransportMode = TransportMode.HYBRID, **overrides) -> StructuredLogger:
        config = LoggingConfig(
            mode=mode,
            log_file="logs/run.log",
            relay_file="logs/relay.jsonl",
            write_backoff_seconds=0,
            **overrides,
        )
        return StructuredLogger(
            config, base_dir=tmp_path, sleep=no_sleep.append, skill="crud-webapp"
        )

    return _make


@pytest.fixture
def events(make_events) -> StructuredLogger:
    return make_events()


@pytest.fixture
def mock_client() -> Callable[..., httpx.Client]:
    """Build an httpx client whose requests are answered by *handler*."""
    clients: list[httpx.Client] = []

    def _make(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.Client:
        client = httpx.Client(transport=httpx.MockTransport(handler))
        clients.append(client)
        return client

    yield _make

    for client in clients:
        client.close()
