"""Logging configuration for the toolchat entry points.

Both console scripts log to a rotating file under the configured log
directory. The tool server also logs to stderr; the interactive CLI does not,
so log records never interleave with the conversation on screen.
"""

import logging
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path

LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"
BACKUP_DAYS = 7


def configure_logging(
    log_dir: Path,
    file_prefix: str,
    level: str = "INFO",
    console_output: bool = True,
) -> Path:
    """Install file (and optionally console) handlers on the root logger.

    Args:
        log_dir: Directory for log files, created if missing
        file_prefix: Log file name prefix (e.g. "toolchat")
        level: Logging level name
        console_output: Whether to also log to stderr

    Returns:
        Path: The log file being written
    """
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / f"{file_prefix}.log"

    root = logging.getLogger()
    root.setLevel(level.upper())

    # Re-running (tests, reload) must not stack handlers
    for handler in list(root.handlers):
        if getattr(handler, "_toolchat", False):
            root.removeHandler(handler)
            handler.close()

    formatter = logging.Formatter(LOG_FORMAT)

    file_handler = TimedRotatingFileHandler(
        log_file, when="midnight", backupCount=BACKUP_DAYS, encoding="utf-8"
    )
    file_handler.setFormatter(formatter)
    file_handler._toolchat = True  # type: ignore[attr-defined]
    root.addHandler(file_handler)

    if console_output:
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(formatter)
        console_handler._toolchat = True  # type: ignore[attr-defined]
        root.addHandler(console_handler)

    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)

    logging.getLogger(__name__).info(
        f"Logging initialized: file={log_file}, level={level.upper()}"
    )
    return log_file
