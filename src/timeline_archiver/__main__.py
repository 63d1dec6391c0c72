"""
Entry point for the timeline-archiver CLI application.

This module provides the main entry point when running the package as a module:
    python -m timeline_archiver
"""

from .cli import main

if __name__ == "__main__":
    main()
