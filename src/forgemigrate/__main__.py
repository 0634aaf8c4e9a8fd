"""
Entry point for running forgemigrate as a module.

Usage:
    python -m forgemigrate [command] [options]
"""

from forgemigrate.cli import main

if __name__ == "__main__":
    main()
