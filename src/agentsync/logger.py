import json
import logging
import os
import sys

DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class JsonFormatter(logging.Formatter):
    """One JSON object per line: ``ts``, ``level``, ``logger``, ``msg``.

    ``exc`` carries the formatted traceback when the record has one.
    """

    def format(self, record: logging.LogRecord) -> str:
        payload = dict(
            ts=self.formatTime(record, self.datefmt),
            level=record.levelname,
            logger=record.name,
            msg=record.getMessage(),
        )
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def _make_formatter(debug_format: str, with_name: bool) -> logging.Formatter:
    if debug_format == "json":
        return JsonFormatter(datefmt=DATE_FORMAT)
    name = "%(name)s " if with_name else ""
    return logging.Formatter(
        f"[%(asctime)s] [%(levelname)s] {name}%(message)s", datefmt=DATE_FORMAT
    )


def setup_logging(
    debug: bool = False,
    log_file: str | None = None,
    debug_format: str = "text",
    level: str | None = None,
) -> None:
    """
    Configure logging for the agentsync CLI.

    Log records always go to stderr so that stdout stays reserved for the
    sync summary (plain text or ``--json``).

    Args:
        debug: If True, overrides every other level source with DEBUG.
        log_file: Optional file that receives a copy of every record.
        debug_format: "text" (default) or "json" for structured output.
        level: Level name from the ``logging`` config section. Used when
            LOG_LEVEL is not set.

    Environment variables:
        LOG_LEVEL: Logging level (DEBUG, INFO, WARNING, ERROR).
                   Default: WARNING.
        LOG_FILE: Log file path used when ``log_file`` is not given.
    """
    if debug:
        log_level = logging.DEBUG
    else:
        name = os.getenv("LOG_LEVEL") or level or "WARNING"
        log_level = logging.getLevelName(name.upper())
        if not isinstance(log_level, int):
            log_level = logging.WARNING

    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(_make_formatter(debug_format, with_name=False))
    handlers: list[logging.Handler] = [console]

    path = log_file or os.getenv("LOG_FILE")
    if path:
        to_file = logging.FileHandler(path, mode="a")
        to_file.setFormatter(_make_formatter(debug_format, with_name=True))
        handlers.append(to_file)

    logging.basicConfig(level=log_level, handlers=handlers, force=True)
