"""Logging for the rollcall CLI and web server.

Both entry points write to one rotated ``rollcall.log`` in the rollcall
home.  Every record carries a ``caller`` attribute (``cli``, ``web``) read
from the ``log_caller`` context var, so the file shows which surface ran a
reconciliation pass.

Only the ``rollcall.*`` loggers follow the configured level; everything
else (uvicorn's access chatter, httpx, asyncio) stays at WARNING.  The level
comes from ``log_level`` in config.yaml, and ``rollcall -v`` forces DEBUG.

Usage::

    from rollcall.logging_setup import configure_logging, log_caller, parse_level

    configure_logging(rc_home, level=parse_level("debug"))
    log_caller.set("web")
"""

import contextvars
import logging
import logging.handlers
from pathlib import Path

log_caller: contextvars.ContextVar[str] = contextvars.ContextVar(
    "log_caller", default="rollcall",
)

LOG_FORMAT = "%(asctime)s [%(caller)s] %(levelname)s %(name)s: %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
PACKAGE_LOGGER = "rollcall"

_configured = False


class _CallerFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.caller = log_caller.get()  # type: ignore[attr-defined]
        return True


def parse_level(value, default: int = logging.INFO) -> int:
    """Turn a config value (``"debug"``, ``"WARNING"``, ``10``) into a level.

    Unknown names and ``None`` give *default*.
    """
    if isinstance(value, bool) or value is None:
        return default
    if isinstance(value, int):
        return value
    level = logging.getLevelName(str(value).strip().upper())
    return level if isinstance(level, int) else default


def log_file_path(rc_home: Path) -> Path:
    return rc_home / "rollcall.log"


def configure_logging(
    rc_home: Path | None = None,
    *,
    level: int = logging.INFO,
    console: bool = True,
    max_bytes: int = 5 * 1024 * 1024,
    backup_count: int = 3,
) -> None:
    """Attach the file and stderr handlers; later calls are no-ops.

    The file handler is skipped when *rc_home* is None, the stderr handler
    when *console* is false.
    """
    global _configured
    if _configured:
        return
    _configured = True

    handlers: list[logging.Handler] = []
    if rc_home is not None:
        rc_home.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.handlers.RotatingFileHandler(
            str(log_file_path(rc_home)),
            maxBytes=max_bytes,
            backupCount=backup_count,
        ))
    if console:
        handlers.append(logging.StreamHandler())

    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)
    caller_filter = _CallerFilter()
    root = logging.getLogger()
    for handler in handlers:
        handler.setFormatter(formatter)
        handler.addFilter(caller_filter)
        root.addHandler(handler)

    root.setLevel(logging.WARNING)
    logging.getLogger(PACKAGE_LOGGER).setLevel(level)
