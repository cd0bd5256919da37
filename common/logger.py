"""
Logging configuration for the BridgeRAG service.
Provides structured logging with file rotation and optional JSON formatting.
"""

import logging
import logging.handlers
import json
from contextvars import ContextVar, Token
from datetime import datetime
from pathlib import Path
from typing import Dict, Any, Optional

from common.config import Settings, settings as default_settings


class JSONFormatter(logging.Formatter):
    """Custom JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        # Add exception info if present
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        # Add extra fields
        if hasattr(record, "request_id"):
            log_data["request_id"] = record.request_id
        if hasattr(record, "source_doc_id"):
            log_data["source_doc_id"] = record.source_doc_id
        if hasattr(record, "provider_id"):
            log_data["provider_id"] = record.provider_id

        return json.dumps(log_data, ensure_ascii=False)


def setup_logging(config: Optional[Settings] = None):
    """
    Configure logging for the application.

    Sets up:
    - Console logging
    - File logging with rotation (optional)
    - JSON or standard formatting
    - Log levels based on configuration
    """
    config = config or default_settings

    # Avoid double-initializing when uvicorn --reload spawns extra processes
    root_logger = logging.getLogger()
    if getattr(root_logger, "_bridge_rag_configured", False):
        return root_logger

    log_level_str = config.log_level.upper()
    log_level = getattr(logging, log_level_str, logging.INFO)

    root_logger.setLevel(log_level)

    # Remove existing handlers
    root_logger.handlers.clear()

    # Choose formatter
    if config.enable_json_logging:
        formatter = JSONFormatter()
    else:
        formatter = logging.Formatter(
            config.log_format,
            datefmt='%Y-%m-%d %H:%M:%S'
        )

    # Console handler
    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    # File handler with rotation
    if config.enable_file_logging:
        log_path = Path(config.log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.handlers.RotatingFileHandler(
            filename=config.log_file,
            maxBytes=config.log_max_bytes,
            backupCount=config.log_backup_count,
            encoding='utf-8'
        )
        file_handler.setLevel(log_level)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    # Set levels for third-party loggers to reduce noise
    logging.getLogger("uvicorn").setLevel(logging.INFO)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("openai").setLevel(logging.WARNING)
    logging.getLogger("chromadb").setLevel(logging.WARNING)

    logger = logging.getLogger(__name__)
    logger.info("=" * 80)
    logger.info(f"Logging initialized - Level: {log_level_str}")
    logger.info(f"File logging: {'Enabled' if config.enable_file_logging else 'Disabled'}")
    if config.enable_file_logging:
        logger.info(f"Log file: {config.log_file}")
    logger.info(f"JSON logging: {'Enabled' if config.enable_json_logging else 'Disabled'}")
    logger.info("=" * 80)

    install_context_factory()
    root_logger._bridge_rag_configured = True
    return root_logger


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance with the given name.

    Args:
        name: Logger name (typically __name__ of the module)

    Returns:
        Configured logger instance
    """
    return logging.getLogger(name)


_log_context: ContextVar[Dict[str, Any]] = ContextVar("bridge_rag_log_context", default={})


def install_context_factory() -> None:
    """
    Install, once, a record factory that copies the current LogContext
    fields onto every record. The factory is never swapped back out.
    """
    base_factory = logging.getLogRecordFactory()
    if getattr(base_factory, "_bridge_rag_context", False):
        return

    def record_factory(*args, **kwargs):
        record = base_factory(*args, **kwargs)
        for key, value in _log_context.get().items():
            setattr(record, key, value)
        return record

    record_factory._bridge_rag_context = True
    logging.setLogRecordFactory(record_factory)


def current_log_context() -> Dict[str, Any]:
    return dict(_log_context.get())


class LogContext:
    """
    Context manager adding extra fields to log records emitted inside it.

    Scoped to the current thread / asyncio task through a ContextVar, so it
    is safe to hold across ``await``.

    Usage:
        with LogContext(source_doc_id="beam-doc"):
            logger.info("ingesting")
    """

    def __init__(self, **fields: Any):
        self.fields = fields
        self._token: Optional[Token] = None

    def __enter__(self):
        install_context_factory()
        self._token = _log_context.set({**_log_context.get(), **self.fields})
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self._token is not None:
            _log_context.reset(self._token)
            self._token = None
