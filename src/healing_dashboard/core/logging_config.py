"""
Logging configuration for execution tracking.

This module provides structured logging configuration with separate loggers
for the execution side and the healing side of the dashboard backend.
"""

import logging
import logging.handlers
import json
import sys
from datetime import datetime
from pathlib import Path
from typing import Dict, Any
from dataclasses import asdict, is_dataclass
from enum import Enum


class StructuredFormatter(logging.Formatter):
    """Custom formatter for structured JSON logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as structured JSON."""
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno
        }

        for attr in ('execution_id', 'test_key', 'operation', 'duration', 'success', 'error_code', 'metadata'):
            if hasattr(record, attr):
                log_data[attr] = getattr(record, attr)

        if record.exc_info:
            log_data['exception'] = {
                "type": record.exc_info[0].__name__ if record.exc_info[0] else None,
                "message": str(record.exc_info[1]) if record.exc_info[1] else None,
                "traceback": self.formatException(record.exc_info)
            }

        return json.dumps(log_data, default=self._json_serializer)

    def _json_serializer(self, obj):
        """Custom JSON serializer for complex objects."""
        if is_dataclass(obj):
            return asdict(obj)
        elif isinstance(obj, Enum):
            return obj.value
        elif hasattr(obj, 'isoformat'):
            return obj.isoformat()
        else:
            return str(obj)


class TrackingLoggerAdapter(logging.LoggerAdapter):
    """Logger adapter carrying execution context on every record."""

    def process(self, msg: str, kwargs: Dict[str, Any]) -> tuple:
        """Merge the adapter context into the record's extra fields."""
        if 'extra' not in kwargs:
            kwargs['extra'] = {}
        kwargs['extra'].update(self.extra)
        return msg, kwargs

    def log_operation_start(self, operation: str, **metadata):
        self.info(f"Starting {operation}", extra={
            'operation': operation,
            'metadata': metadata
        })

    def log_operation_success(self, operation: str, duration: float, **metadata):
        self.info(f"Completed {operation} successfully", extra={
            'operation': operation,
            'success': True,
            'duration': duration,
            'metadata': metadata
        })

    def log_operation_failure(self, operation: str, duration: float, error: str, error_code: str = None, **metadata):
        self.error(f"Failed {operation}: {error}", extra={
            'operation': operation,
            'success': False,
            'duration': duration,
            'error_code': error_code,
            'metadata': metadata
        })


def setup_tracking_logging(log_level: str = "INFO", log_dir: str = "logs") -> Dict[str, logging.Logger]:
    """
    Set up structured logging for the dashboard backend.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_dir: Directory to store log files

    Returns:
        Dictionary of configured loggers
    """
    log_path = Path(log_dir)
    log_path.mkdir(parents=True, exist_ok=True)

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, log_level.upper()))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    structured_formatter = StructuredFormatter()
    console_formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(console_formatter)
    console_handler.setLevel(getattr(logging, log_level.upper()))

    all_logs_handler = logging.handlers.RotatingFileHandler(
        log_path / "tracking_all.log",
        maxBytes=10 * 1024 * 1024,  # 10MB
        backupCount=5,
        encoding="utf-8"
    )
    all_logs_handler.setFormatter(structured_formatter)
    all_logs_handler.setLevel(logging.DEBUG)

    error_handler = logging.handlers.RotatingFileHandler(
        log_path / "tracking_errors.log",
        maxBytes=5 * 1024 * 1024,  # 5MB
        backupCount=10,
        encoding="utf-8"
    )
    error_handler.setFormatter(structured_formatter)
    error_handler.setLevel(logging.ERROR)

    root_logger.addHandler(console_handler)
    root_logger.addHandler(all_logs_handler)
    root_logger.addHandler(error_handler)

    loggers = {}

    for component, filename in (("executions", "tracking_executions.log"), ("healing", "tracking_healing.log")):
        component_logger = logging.getLogger(f"tracking.{component}")
        component_handler = logging.handlers.RotatingFileHandler(
            log_path / filename,
            maxBytes=10 * 1024 * 1024,  # 10MB
            backupCount=10,
            encoding="utf-8"
        )
        component_handler.setFormatter(structured_formatter)
        component_handler.setLevel(logging.INFO)
        component_logger.addHandler(component_handler)
        loggers[component] = component_logger

    # Proposer HTTP calls are noisy at DEBUG
    logging.getLogger("urllib3").setLevel(logging.WARNING)

    return loggers


def get_tracking_logger(component: str, execution_id: str = None, test_key: str = None) -> TrackingLoggerAdapter:
    """
    Get a tracking logger adapter with contextual information.

    Args:
        component: Component name (executions, healing)
        execution_id: Optional execution or healing attempt id
        test_key: Optional test key

    Returns:
        TrackingLoggerAdapter instance
    """
    logger = logging.getLogger(f"tracking.{component}")

    extra = {}
    if execution_id:
        extra['execution_id'] = execution_id
    if test_key:
        extra['test_key'] = test_key

    return TrackingLoggerAdapter(logger, extra)
