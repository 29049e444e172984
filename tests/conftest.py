# conftest.py
from __future__ import annotations

import os
import uuid

import pytest
import pytest_asyncio

from queuekit.api.registry import JobRegistry
from queuekit.core.config import QueueConfig
from queuekit.core.log import (
    bind_context,
    configure_from_env,
    enable_stdout_logging,
    get_logger,
    log_context,
)
from queuekit.core.time import ManualClock
from queuekit.runtime.manager import QueueManager
from tests.helpers import RecordingPublisher, RecordingStore


def pytest_configure(config):
    config.addinivalue_line("markers", "unit: fast component-level tests")
    config.addinivalue_line("markers", "cfg(**overrides): per-test QueueConfig overrides")


def pytest_addoption(parser):
    parser.addoption(
        "--log-json",
        action="store_true",
        default=False,
        help="Emit queuekit logs in JSON format during tests",
    )


@pytest.fixture(scope="session", autouse=True)
def _configure_queuekit_logging(request):
    configure_from_env()
    prefer_json = request.config.getoption("--log-json")
    # human-readable by default unless enabled through env
    if os.getenv("QUEUEKIT_LOG_STDOUT", "").lower() not in ("1", "true", "yes", "on"):
        enable_stdout_logging(
            level="DEBUG",
            json_output=prefer_json,
            pretty=not prefer_json,
            route_errors_to_stderr=True,
        )
    bind_context(role="pytest")


@pytest.fixture(scope="session")
def session_run_id():
    return uuid.uuid4().hex[:8]


@pytest.fixture(autouse=True)
def _test_log_context(request, session_run_id):
    log = get_logger("test")
    with log_context(pytest_nodeid=request.node.nodeid, test=request.node.name, test_run=session_run_id):
        log.debug("pytest.test.start")
        yield


@pytest.hookimpl(hookwrapper=True)
def pytest_runtest_makereport(item, call):
    outcome = yield
    rep = outcome.get_result()
    if rep.when == "call":
        log = get_logger("test")
        with log_context(pytest_nodeid=item.nodeid, test=item.name):
            log.debug("pytest.test.finish", outcome=rep.outcome, duration=getattr(rep, "duration", None))


def _cfg_overrides_from_marker(request) -> dict:
    m = request.node.get_closest_marker("cfg")
    return dict(m.kwargs) if m else {}


@pytest.fixture
def tlog():
    return get_logger("test")


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def store() -> RecordingStore:
    return RecordingStore()


@pytest.fixture
def publisher() -> RecordingPublisher:
    return RecordingPublisher()


@pytest.fixture
def registry() -> JobRegistry:
    return JobRegistry()


@pytest.fixture
def queue_cfg(request) -> QueueConfig:
    return QueueConfig(**_cfg_overrides_from_marker(request))


@pytest_asyncio.fixture
async def qm(registry, store, publisher, clock, queue_cfg):
    """Manager driven manually through tick()/join(); the tick loop is not started."""
    m = QueueManager(registry, store, config=queue_cfg, publisher=publisher, clock=clock)
    try:
        yield m
    finally:
        await m.stop(cancel_running=True)
