import json
import logging
import logging.handlers
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

# Context variables for correlation tracking
correlation_id_var: ContextVar[str | None] = ContextVar("correlation_id", default=None)
job_id_var: ContextVar[str | None] = ContextVar("job_id", default=None)
estimate_id_var: ContextVar[str | None] = ContextVar("estimate_id", default=None)
import_session_id_var: ContextVar[str | None] = ContextVar("import_session_id", default=None)

_CONTEXT_VARS: dict[str, ContextVar[str | None]] = {
    "correlation_id": correlation_id_var,
    "job_id": job_id_var,
    "estimate_id": estimate_id_var,
    "import_session_id": import_session_id_var,
}

_STANDARD_ATTRS = frozenset(
    {
        "name",
        "msg",
        "args",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "exc_info",
        "exc_text",
        "thread",
        "threadName",
        "taskName",
        "extra_data",
        "message",
    }
)

_MAX_LOG_BYTES = 10 * 1024 * 1024  # 10MB


def generate_correlation_id() -> str:
    """Generate a unique correlation ID."""
    return f"corr-{uuid.uuid4().hex[:12]}"


def set_correlation_id(correlation_id: str | None = None) -> str:
    """Set correlation ID for current context. Generates one if not provided."""
    cid = correlation_id or generate_correlation_id()
    correlation_id_var.set(cid)
    return cid


def get_correlation_id() -> str | None:
    return correlation_id_var.get()


def set_job_context(
    job_id: str | None = None,
    estimate_id: str | None = None,
    import_session_id: str | None = None,
):
    """Set job-related context for logging."""
    if job_id:
        job_id_var.set(job_id)
    if estimate_id:
        estimate_id_var.set(estimate_id)
    if import_session_id:
        import_session_id_var.set(import_session_id)


def clear_context():
    for var in _CONTEXT_VARS.values():
        var.set(None)


class StructuredJSONFormatter(logging.Formatter):
    """
    JSON formatter with correlation ID and context support.

    Every record carries timestamp, level, logger, message and source location,
    plus whichever of correlation_id / job_id / estimate_id / import_session_id
    are set in the current context, the formatted exception and any extra
    attributes passed to the log call.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        for key, var in _CONTEXT_VARS.items():
            value = var.get()
            if value:
                log_data[key] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        if hasattr(record, "extra_data") and record.extra_data:
            log_data["extra"] = record.extra_data

        for key, value in record.__dict__.items():
            if key not in _STANDARD_ATTRS and not key.startswith("_"):
                try:
                    json.dumps(value)
                    log_data[key] = value
                except (TypeError, ValueError):
                    log_data[key] = str(value)

        return json.dumps(log_data, ensure_ascii=False)


class ConsoleFormatter(logging.Formatter):
    """Human-readable console formatter with color support."""

    COLORS = {
        "DEBUG": "\033[36m",  # Cyan
        "INFO": "\033[32m",  # Green
        "WARNING": "\033[33m",  # Yellow
        "ERROR": "\033[31m",  # Red
        "CRITICAL": "\033[35m",  # Magenta
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, self.RESET)

        context_parts = []
        correlation_id = correlation_id_var.get()
        if correlation_id:
            context_parts.append(f"cid={correlation_id}")
        job_id = job_id_var.get()
        if job_id:
            context_parts.append(f"job={job_id[:8]}")
        estimate_id = estimate_id_var.get()
        if estimate_id:
            context_parts.append(f"estimate={estimate_id}")

        context_str = f" [{', '.join(context_parts)}]" if context_parts else ""
        timestamp = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")

        formatted = (
            f"{color}{timestamp} {record.levelname:8}{self.RESET} "
            f"{record.name}{context_str} - {record.getMessage()}"
        )

        if record.exc_info:
            formatted += f"\n{self.formatException(record.exc_info)}"

        return formatted


def _rotating_handler(
    path: Path, level: int, formatter: logging.Formatter
) -> logging.handlers.RotatingFileHandler:
    handler = logging.handlers.RotatingFileHandler(
        path,
        maxBytes=_MAX_LOG_BYTES,
        backupCount=5,
        encoding="utf-8",
    )
    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler


def setup_logging(log_dir: str, enable_console: bool = True) -> None:
    """
    Set up structured logging with file and optional console output.

    Creates separate log files for:
    - api.log: API and application logs
    - worker.log: Worker process logs
    - errors.log: All error-level logs
    - jobs.log: Job-specific logs
    """
    log_path = Path(log_dir)
    log_path.mkdir(parents=True, exist_ok=True)

    json_formatter = StructuredJSONFormatter()

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)
    root_logger.handlers.clear()

    api_handler = _rotating_handler(log_path / "api.log", logging.INFO, json_formatter)
    api_handler.addFilter(lambda record: record.name.startswith(("app", "uvicorn")))

    worker_handler = _rotating_handler(log_path / "worker.log", logging.INFO, json_formatter)
    worker_handler.addFilter(lambda record: record.name.startswith("worker"))

    error_handler = _rotating_handler(log_path / "errors.log", logging.ERROR, json_formatter)

    jobs_handler = _rotating_handler(log_path / "jobs.log", logging.INFO, json_formatter)
    jobs_handler.addFilter(lambda record: "job" in record.name.lower())

    root_logger.addHandler(api_handler)
    root_logger.addHandler(worker_handler)
    root_logger.addHandler(error_handler)
    root_logger.addHandler(jobs_handler)

    if enable_console:
        console_handler = logging.StreamHandler()
        console_handler.setLevel(logging.INFO)
        console_handler.setFormatter(ConsoleFormatter())
        root_logger.addHandler(console_handler)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


class LogContext:
    """
    Context manager for setting logging context.

    Usage:
        with LogContext(job_id="123", estimate_id="42"):
            logger.info("This log will have job_id and estimate_id")
    """

    def __init__(
        self,
        correlation_id: str | None = None,
        job_id: str | None = None,
        estimate_id: str | None = None,
        import_session_id: str | None = None,
        auto_generate_correlation_id: bool = False,
    ):
        self._values = {
            "correlation_id": correlation_id,
            "job_id": job_id,
            "estimate_id": estimate_id,
            "import_session_id": import_session_id,
        }
        self.auto_generate_correlation_id = auto_generate_correlation_id
        self._previous: dict[str, str | None] = {}

    def __enter__(self):
        self._previous = {key: var.get() for key, var in _CONTEXT_VARS.items()}

        for key, value in self._values.items():
            if value:
                _CONTEXT_VARS[key].set(value)

        if (
            not self._values["correlation_id"]
            and self.auto_generate_correlation_id
            and not self._previous["correlation_id"]
        ):
            correlation_id_var.set(generate_correlation_id())

        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        for key, value in self._previous.items():
            _CONTEXT_VARS[key].set(value)
        return False
