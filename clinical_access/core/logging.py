"""Structured logging configuration."""

import logging
import sys
from typing import Any

from clinical_access.core.config import settings


class StructuredFormatter(logging.Formatter):
    """Formatter emitting key=value pairs for log shipping."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for extra_field in ("request_id", "patient_ref", "professional_id", "action"):
            if hasattr(record, extra_field):
                log_data[extra_field] = getattr(record, extra_field)

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return " ".join(f"{k}={v}" for k, v in log_data.items())


def setup_logging() -> None:
    """Configure application logging."""
    log_level = getattr(logging, settings.log_level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)

    if settings.is_dev:
        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        )
    else:
        formatter = StructuredFormatter()

    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    # Reduce noise from third-party libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance with the given name."""
    return logging.getLogger(name)


def mask_ci(ci: str | None) -> str:
    """Mask a patient identity document number for log output."""
    if not ci or len(ci) < 5:
        return "***"
    return ci[:5] + "***"


class AuditLogger:
    """Logger dedicated to audit events."""

    def __init__(self) -> None:
        self.logger = get_logger("audit")

    def log(
        self,
        action: str,
        actor_type: str,
        actor_id: str,
        entity_type: str,
        entity_id: str,
        metadata: dict[str, Any] | None = None,
        level: int = logging.INFO,
    ) -> None:
        """Log an audit event."""
        self.logger.log(
            level,
            f"AUDIT: action={action} actor={actor_type}:{actor_id} "
            f"entity={entity_type}:{entity_id} metadata={metadata or {}}",
        )


audit_logger = AuditLogger()
