"""
tickr - terminal time tracker

Projects, tasks and timers backed by a local SQLite store.
"""

__version__ = "0.3.0"
