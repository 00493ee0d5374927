"""
Shared fixtures.

The baseline version "v1" is captured from the golden document with a fixed
clock, so record timestamps are deterministic.
"""

import logging

import pytest

from snaptrack.config import Config
from snaptrack.snapshot import SnapshotCapture, SnapshotManager
from snaptrack.store import InMemorySnapshotStore

from .mocks import FIXED_NOW, PROJECT_ID, build_document


@pytest.fixture
def clock():
    return lambda: FIXED_NOW


@pytest.fixture
def document():
    return build_document()


@pytest.fixture
def capture(document, clock):
    return SnapshotCapture(document, PROJECT_ID, captured_by="alice", clock=clock)


@pytest.fixture
def v1_records(capture, document):
    return capture.capture(document.list_entities(), "v1")


@pytest.fixture
def store(v1_records):
    return InMemorySnapshotStore(v1_records)


@pytest.fixture
def config():
    config = Config()
    config.project.project_id = PROJECT_ID
    config.project.user = "alice"
    config.store.backend = "memory"
    return config


@pytest.fixture
def manager(store, document, config):
    return SnapshotManager(store, document, config)


@pytest.fixture(autouse=True)
def _snaptrack_logging(caplog):
    """Let caplog see snaptrack records even after setup_logging disabled propagation."""
    logger = logging.getLogger("snaptrack")
    logger.propagate = True
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    caplog.set_level(logging.DEBUG, logger="snaptrack")
    yield
