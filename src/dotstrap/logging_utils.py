from __future__ import annotations

import logging
from pathlib import Path

_HANDLERS_ATTR = "_dotstrap_handlers"


def configure_logging(level: int = logging.WARNING, log_file: Path | None = None) -> None:
    """Configure root logging for a CLI invocation.

    Console records go to stderr so they never interleave with the report
    tables. ``log_file`` adds a file handler that always records INFO and above.
    Calling this again replaces the handlers installed by the previous call.
    """

    logger = logging.getLogger()

    for handler in getattr(logger, _HANDLERS_ATTR, []):
        logger.removeHandler(handler)
        handler.close()

    fmt = logging.Formatter(
        fmt="%(asctime)s %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S%z",
    )

    handlers: list[logging.Handler] = []

    console = logging.StreamHandler()
    console.setFormatter(fmt)
    console.setLevel(level)
    handlers.append(console)

    file_level = min(level, logging.INFO)
    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(fmt)
        file_handler.setLevel(file_level)
        handlers.append(file_handler)

    for h in handlers:
        logger.addHandler(h)

    logger.setLevel(file_level if log_file is not None else level)
    setattr(logger, _HANDLERS_ATTR, handlers)

    logging.getLogger(__name__).info("Logging initialized (level=%s, file=%s)", logging.getLevelName(level), log_file)
