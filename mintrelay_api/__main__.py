"""
Entry point for running the relay CLI as a module.

Usage:
    python -m mintrelay_api serve
"""

from mintrelay_api.cli import main

if __name__ == "__main__":
    main()
