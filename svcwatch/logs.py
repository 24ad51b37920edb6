from __future__ import annotations

import logging
import sys

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def setup_logging(log_file: str | None = None, level: str = "INFO") -> None:
    """Log to stderr and, when possible, append to ``log_file``.

    Safe to call more than once: handlers from a previous call are replaced.
    """
    root = logging.getLogger()
    root.setLevel(getattr(logging, str(level).upper(), logging.INFO))
    for h in [h for h in root.handlers if getattr(h, "_svcwatch", False)]:
        root.removeHandler(h)
        h.close()

    fmt = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_file:
        try:
            handlers.append(logging.FileHandler(log_file, mode="a", encoding="utf-8"))
        except OSError as e:
            logging.getLogger(__name__).warning("Cannot open log file %s (%s); logging to stderr only", log_file, e)

    for h in handlers:
        h.setFormatter(fmt)
        h._svcwatch = True  # type: ignore[attr-defined]
        root.addHandler(h)
