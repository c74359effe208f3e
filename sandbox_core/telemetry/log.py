import sys
import logging
import structlog
from ..util.terminal_color import TerminalColorMarks

LOGGER_NAME = "sandbox-core"

bound_logging_vars = structlog.contextvars.bound_contextvars


def get_logging_contextvars():
    return structlog.contextvars.get_contextvars()


def _shared_processors() -> list:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.ExtraAdder(),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.CallsiteParameterAdder(
            [
                structlog.processors.CallsiteParameter.MODULE,
                structlog.processors.CallsiteParameter.LINENO,
            ]
        ),
    ]


def _json_formatter() -> logging.Formatter:
    shared = _shared_processors()
    structlog.configure(
        processors=shared
        + [
            structlog.processors.dict_tracebacks,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    return structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
    )


class ColoredFormatter(logging.Formatter):
    """Colors the level name and appends the bound sandbox/execution vars."""

    LEVEL_COLORS = {
        logging.DEBUG: TerminalColorMarks.CYAN,
        logging.INFO: TerminalColorMarks.GREEN,
        logging.WARNING: TerminalColorMarks.YELLOW,
        logging.ERROR: TerminalColorMarks.RED,
        logging.CRITICAL: TerminalColorMarks.BOLD + TerminalColorMarks.RED,
    }

    def format(self, record):
        color = self.LEVEL_COLORS.get(record.levelno, TerminalColorMarks.BLUE)
        plain_levelname = record.levelname
        record.levelname = f"{color}{plain_levelname}{TerminalColorMarks.END}"
        try:
            formatted = super().format(record)
        finally:
            record.levelname = plain_levelname

        context = get_logging_contextvars()
        if not context:
            return formatted
        pairs = " ".join(f"{k}={v}" for k, v in context.items())
        return f"{formatted} [{pairs}]"


def get_logger(format: str = "text", level: str = "INFO") -> logging.Logger:
    """Configure and return the service logger.

    `format` is "json" for structured lines on stdout or "text" for colored
    lines on stderr. Calling it again replaces the previous handler.
    """
    if format == "json":
        handler = logging.StreamHandler(stream=sys.stdout)
        handler.setFormatter(_json_formatter())
    else:
        handler = logging.StreamHandler()
        handler.setFormatter(
            ColoredFormatter("%(levelname)s - %(asctime)s - %(name)s - %(message)s")
        )

    logger = logging.getLogger(LOGGER_NAME)
    for h in list(logger.handlers):
        logger.removeHandler(h)
    logger.addHandler(handler)
    logger.propagate = False
    logger.setLevel(level)
    return logger
