"""Discord runtime for weekly schedule ingestion and the board.

The pure scheduling logic lives in ``schedule_bot``; this package holds the
pieces that talk to Discord and run on timers.
"""

__all__ = ["board", "commands", "deferred", "poller", "transport", "unified"]
