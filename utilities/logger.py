"""
Structured logging for the page patrol.

structlog events and plain stdlib records (uvicorn, httpx, apscheduler) are
rendered by the same ProcessorFormatter, so every line on stdout has one
format. The optional log file always gets JSON, one event per line.
"""

import logging
import sys
from pathlib import Path
from typing import List, Optional, Union

import structlog

# handlers installed by setup_logging, replaced on every call
_installed_handlers: List[logging.Handler] = []


def _shared_processors(debug: bool) -> list:
    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
    ]
    if debug:
        processors.append(structlog.processors.CallsiteParameterAdder(
            {
                structlog.processors.CallsiteParameter.MODULE,
                structlog.processors.CallsiteParameter.FUNC_NAME,
                structlog.processors.CallsiteParameter.LINENO,
            }
        ))
    return processors


def _formatter(renderer, shared: list) -> structlog.stdlib.ProcessorFormatter:
    return structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.format_exc_info,
            renderer,
        ],
    )


def setup_logging(
    log_level: str = "INFO",
    log_format: str = "console",
    log_file: Optional[Union[str, Path]] = None,
    debug: bool = False
) -> None:
    """
    Configure structlog and the stdlib root logger.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: Stdout format (json or console)
        log_file: Optional path of a JSON log file
        debug: Add module, function and line number to every entry
    """
    level = getattr(logging, log_level.upper())
    shared = _shared_processors(debug)

    structlog.configure(
        processors=[structlog.stdlib.filter_by_level] + shared + [
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        context_class=dict,
        cache_logger_on_first_use=True,
    )

    if log_format == "json":
        stdout_renderer = structlog.processors.JSONRenderer()
    else:
        stdout_renderer = structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())

    root = logging.getLogger()
    for handler in _installed_handlers:
        root.removeHandler(handler)
        handler.close()
    _installed_handlers.clear()

    stream_handler = logging.StreamHandler(sys.stdout)
    stream_handler.setFormatter(_formatter(stdout_renderer, shared))
    _installed_handlers.append(stream_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path, encoding="utf-8")
        file_handler.setFormatter(_formatter(structlog.processors.JSONRenderer(), shared))
        _installed_handlers.append(file_handler)

    for handler in _installed_handlers:
        handler.setLevel(level)
        root.addHandler(handler)
    root.setLevel(level)

    # chatty third-party loggers stay at warning unless debugging
    for name in ("httpx", "httpcore", "apscheduler"):
        logging.getLogger(name).setLevel(logging.DEBUG if debug else logging.WARNING)

    structlog.get_logger(__name__).info(
        "Logging configured",
        level=log_level,
        format=log_format,
        file=str(log_file) if log_file else None,
        debug=debug
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Structured logger for a module (pass __name__)."""
    return structlog.get_logger(name)


class PatrolLogger:
    """
    Logger for patrol cycles. Every entry carries the target id so entries
    can be told apart by target and error kind.
    """

    def __init__(self, name: str = "patrol"):
        self.logger = structlog.get_logger(name)
        self.context = {}

    def bind_context(self, **kwargs) -> 'PatrolLogger':
        """Attach key/value pairs to every later entry from this logger."""
        self.context.update(kwargs)
        return self

    def clear_context(self) -> 'PatrolLogger':
        self.context = {}
        return self

    def log_cycle_start(self, target_id: str, url: str) -> None:
        self.logger.debug("Patrol cycle started", target_id=target_id, url=url, **self.context)

    def log_verdict(self, target_id: str, verdict: str, fingerprint: str, duration_seconds: float) -> None:
        """Log a successful cycle; changes are logged at info level, the rest at debug."""
        log = self.logger.info if verdict == "changed" else self.logger.debug
        log(
            "Patrol cycle succeeded",
            target_id=target_id,
            verdict=verdict,
            fingerprint=fingerprint[:16] + "...",
            duration_seconds=round(duration_seconds, 3),
            **self.context
        )

    def log_fetch_failure(self, target_id: str, error_kind: str, error: str, attempts: int) -> None:
        self.logger.warning(
            "Page fetch failed",
            target_id=target_id,
            error_kind=error_kind,
            error=error,
            attempts=attempts,
            **self.context
        )

    def log_retry(self, target_id: str, attempt: int, max_attempts: int, delay: float) -> None:
        self.logger.warning(
            "Retrying page fetch",
            target_id=target_id,
            attempt=attempt,
            retries=max_attempts,
            backoff_seconds=delay,
            **self.context
        )

    def log_store_failure(self, target_id: str, operation: str, error: str) -> None:
        """Always logged at error level."""
        self.logger.error(
            "Fingerprint store operation failed",
            target_id=target_id,
            store_operation=operation,
            error_kind="store",
            error=error,
            **self.context
        )
