"""
CLI layer for healthscore.

Terminal transport only: argument parsing, coloured output and table
formatting over the same store, scoring and scheduling objects the engine
uses.

Entry point::

    healthscore --help
"""

from healthscore.cli.app import app

__all__ = ["app"]
