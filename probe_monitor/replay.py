# probe_monitor/replay.py
import logging
from pathlib import Path
from typing import Iterator, TextIO

from .notification import Notification, parse_notification
from .pipeline import ProbePipeline

logger = logging.getLogger(__name__)


def iter_notifications(stream: TextIO) -> Iterator[Notification]:
    """Yields notifications from a JSON-lines stream, skipping bad lines."""
    for line_number, line in enumerate(stream, start=1):
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        try:
            yield parse_notification(line)
        except ValueError as e:
            logger.warning(f"Skipping line {line_number}: {e}")


def replay_file(path: str | Path, pipeline: ProbePipeline) -> int:
    """Feeds a recorded notification log through the pipeline.

    Returns the number of samples recorded.
    """
    recorded = 0
    with open(path, "r") as f:
        for notification in iter_notifications(f):
            if pipeline.handle_notification(notification) is not None:
                recorded += 1
    logger.info(f"Replayed {path}: {recorded} sample(s) recorded")
    return recorded
