"""
Host document abstraction - the live model snaptrack reads and writes.
"""

from .document import HostDocument, ParameterHandle, TrackedEntity
from .memory import InMemoryDocument

__all__ = [
    'HostDocument',
    'ParameterHandle',
    'TrackedEntity',
    'InMemoryDocument',
]
