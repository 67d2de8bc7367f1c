"""
Logging configuration using structlog.

Console output goes to stderr so it never interleaves with the transcript
printed on stdout. Every entry passes through a SecretRedactor built from the
configured API key variable, and each query or resume binds a run id that
all entries logged during the run carry.
"""

import os
import sys
import logging
import uuid
from contextlib import contextmanager
from typing import Any, Iterable, Iterator
from pathlib import Path

import structlog
from structlog.types import Processor


REDACTED = "[REDACTED]"

# Field names redacted regardless of configuration
KEY_FIELD_PATTERNS = ("api_key", "apikey")

# HTTP client loggers that log every Gemini request at INFO
NOISY_LOGGERS = ("httpx", "httpcore", "google_genai")


class SecretRedactor:
    """
    structlog processor that hides API keys.

    A field is redacted when its name looks like a key field or names one of
    the configured environment variables. Independently, the current value
    of each of those variables is scrubbed from every string field, since
    SDK error messages may echo the request URL with the key in it.
    """

    def __init__(self, secret_env: Iterable[str] = ("GEMINI_API_KEY",)):
        self.secret_env = tuple(secret_env)
        self.field_patterns = tuple(p.lower() for p in KEY_FIELD_PATTERNS + self.secret_env)

    def _secret_values(self) -> list[str]:
        return [v for v in (os.environ.get(name) for name in self.secret_env) if v]

    def __call__(
        self, logger: logging.Logger, method_name: str, event_dict: dict[str, Any]
    ) -> dict[str, Any]:
        secrets = self._secret_values()
        for key, value in list(event_dict.items()):
            if not isinstance(value, str):
                continue
            if any(pattern in key.lower() for pattern in self.field_patterns):
                event_dict[key] = REDACTED
                continue
            for secret in secrets:
                if secret in value:
                    value = value.replace(secret, REDACTED)
            event_dict[key] = value
        return event_dict


def setup_logging(
    level: str = "INFO",
    log_file: Path | None = None,
    secret_env: Iterable[str] = ("GEMINI_API_KEY",),
) -> None:
    """
    Configure structlog for the application.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        log_file: Optional path to a JSON log file
        secret_env: Environment variables whose values must never be logged
    """
    log_level = getattr(logging, level.upper())
    logging.basicConfig(format="%(message)s", stream=sys.stderr, level=log_level)

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
        SecretRedactor(secret_env),
    ]

    structlog.configure(
        processors=shared_processors + [
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processor=structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()),
            foreign_pre_chain=shared_processors,
        )
    )

    root_logger = logging.getLogger()
    root_logger.handlers = []
    root_logger.addHandler(console_handler)
    root_logger.setLevel(log_level)

    # SDK request chatter only in verbose mode
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(log_level if log_level <= logging.DEBUG else logging.WARNING)

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(
            structlog.stdlib.ProcessorFormatter(
                processor=structlog.processors.JSONRenderer(),
                foreign_pre_chain=shared_processors,
            )
        )
        root_logger.addHandler(file_handler)


@contextmanager
def bind_run(label: str) -> Iterator[str]:
    """Tag every entry logged inside the block with a fresh run id."""
    run_id = uuid.uuid4().hex[:8]
    with structlog.contextvars.bound_contextvars(run=label, run_id=run_id):
        yield run_id


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a logger instance."""
    return structlog.get_logger(name)
