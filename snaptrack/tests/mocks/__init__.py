"""
Mock components for testing snaptrack.

The golden data describes a small building model (rooms, a door, a generic
object) and stored payloads in current and legacy shapes.
"""

from .golden_data import (
    PROJECT_ID,
    FIXED_NOW,
    LEVELS,
    PHASES,
    GOLDEN_ROOM_ROW,
    LEGACY_DOOR_ROW,
    CORRUPT_ROW,
    build_document,
    build_entities,
    make_room,
    make_door,
    make_generic,
)
from .mock_document import FailingDocument
from .mock_store import CountingStore, FailingStore, FakeConnection, FakeCursor

__all__ = [
    # Golden data
    'PROJECT_ID',
    'FIXED_NOW',
    'LEVELS',
    'PHASES',
    'GOLDEN_ROOM_ROW',
    'LEGACY_DOOR_ROW',
    'CORRUPT_ROW',
    'build_document',
    'build_entities',
    'make_room',
    'make_door',
    'make_generic',
    # Mocks
    'FailingDocument',
    'FailingStore',
    'CountingStore',
    'FakeConnection',
    'FakeCursor',
]
