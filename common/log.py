from __future__ import annotations

import logging
import sys
from collections import deque

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def setup_logging(level: str = "info") -> None:
    log_level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=log_level,
        format=LOG_FORMAT,
        stream=sys.stdout,
    )


class LogBuffer(logging.Handler):
    """Keeps the most recent formatted records for the console log pane."""

    def __init__(self, maxlen: int = 500):
        super().__init__()
        self.lines: deque[str] = deque(maxlen=max(1, maxlen))
        self.setFormatter(logging.Formatter(LOG_FORMAT))

    def emit(self, record: logging.LogRecord) -> None:
        try:
            self.lines.append(self.format(record))
        except Exception:
            self.handleError(record)

    def snapshot(self) -> list[str]:
        return list(self.lines)


def attach_log_buffer(maxlen: int = 500, logger_name: str = "panel") -> LogBuffer:
    buf = LogBuffer(maxlen)
    logging.getLogger(logger_name).addHandler(buf)
    return buf
