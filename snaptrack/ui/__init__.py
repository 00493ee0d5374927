"""
Console output and logging setup.
"""

from .console import ConsoleUI, setup_logging

__all__ = [
    'ConsoleUI',
    'setup_logging',
]
