"""Observability for telescope-preview: structured logging and capture stats.

Example:
    from telescope_preview.observability import LogContext, get_logger

    logger = get_logger(__name__)

    with LogContext(device_id=0):
        logger.info("Saved image", remaining=2)

Statistics Example:
    from telescope_preview.observability import CaptureStats

    stats = CaptureStats()
    loop = CaptureLoop(state, surface, writer, stats=stats)
    ...
    print(stats.get_summary().frames_saved)
"""

from telescope_preview.observability.logging import (
    LogContext,
    StructuredLogger,
    configure_logging,
    get_logger,
    reset_logging,
)
from telescope_preview.observability.stats import (
    CaptureStats,
    StatsSummary,
)

__all__ = [
    # Logging
    "LogContext",
    "StructuredLogger",
    "configure_logging",
    "get_logger",
    "reset_logging",
    # Statistics
    "CaptureStats",
    "StatsSummary",
]
