"""
IOWatcher: run an action whenever files in a directory change.

Provides both a CLI and a library API. Register a watch on a directory with a
single glob or regex rule and one trigger kind; every qualifying firing is
recorded and passed to the action.
"""

__version__ = "0.1.0"
