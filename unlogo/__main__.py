"""Main entry point for unlogo package.

This module allows the package to be executed as:
    python -m unlogo [args...]
"""

from .cli import main

if __name__ == "__main__":
    main()
