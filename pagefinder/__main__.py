"""Entry point for running pagefinder as a module.

Usage:
    python -m pagefinder <command> [options]
"""
from .cli import main

if __name__ == "__main__":
    raise SystemExit(main())
