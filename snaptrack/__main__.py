"""
Entry point for running snaptrack as a module.

Usage:
    python -m snaptrack --model model.json compare v1
"""

import sys

from .cli import main

if __name__ == "__main__":
    sys.exit(main())
