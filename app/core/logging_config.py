"""Structured logging configuration for the application."""

from datetime import UTC, datetime
import json
import logging
import sys

from app.core.config import settings


class JSONFormatter(logging.Formatter):
    """Format logs as JSON for structured logging in production."""

    def format(self, record: logging.LogRecord) -> str:
        """Format the log record as JSON."""
        log_data = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        if hasattr(record, "extra_fields"):
            log_data.update(record.extra_fields)

        return json.dumps(log_data, default=str)


class StandardFormatter(logging.Formatter):
    """Human-readable formatter for development."""

    def __init__(self) -> None:
        super().__init__(
            fmt="%(asctime)s - %(levelname)s - %(name)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )


def setup_logging() -> None:
    """Configure application logging based on environment."""
    log_level = logging.INFO
    if settings.ENVIRONMENT == "development":
        log_level = logging.DEBUG
    elif settings.ENVIRONMENT == "production":
        log_level = logging.WARNING

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)

    # Use JSON formatter in production, standard elsewhere
    if settings.ENVIRONMENT == "production":
        formatter: logging.Formatter = JSONFormatter()
    else:
        formatter = StandardFormatter()

    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    # Set specific log levels for noisy libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.error").setLevel(logging.INFO)
    logging.getLogger("fastapi").setLevel(logging.INFO)
    logging.getLogger("asyncio").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance with the given name."""
    return logging.getLogger(name)


class SecurityLogger:
    """Specialized logger for security events."""

    def __init__(self) -> None:
        self.logger = get_logger("security")

    def log_login_attempt(
        self,
        identifier: str,
        success: bool,
        ip_address: str | None = None,
        reason: str | None = None,
    ) -> None:
        """Log a login attempt."""
        extra_fields = {
            "event_type": "login_attempt",
            "identifier": identifier,
            "success": success,
            "ip_address": ip_address,
        }

        if not success and reason:
            extra_fields["failure_reason"] = reason

        message = f"Login {'succeeded' if success else 'failed'} for: {identifier}"

        if success:
            self.logger.info(message, extra={"extra_fields": extra_fields})
        else:
            self.logger.warning(message, extra={"extra_fields": extra_fields})

    def log_token_creation(self, user_id: str) -> None:
        """Log token creation."""
        self.logger.info(
            f"Token created for user: {user_id}",
            extra={
                "extra_fields": {
                    "event_type": "token_created",
                    "user_id": user_id,
                }
            },
        )

    def log_unauthorized_access(
        self,
        resource: str,
        user_id: str | None = None,
        reason: str | None = None,
    ) -> None:
        """Log unauthorized access attempt."""
        self.logger.warning(
            f"Unauthorized access attempt to: {resource}",
            extra={
                "extra_fields": {
                    "event_type": "unauthorized_access",
                    "resource": resource,
                    "user_id": user_id,
                    "reason": reason,
                }
            },
        )

    def log_user_registration(self, username: str, role: str) -> None:
        """Log new user registration."""
        self.logger.info(
            f"New user registered: {username}",
            extra={
                "extra_fields": {
                    "event_type": "user_registration",
                    "username": username,
                    "role": role,
                }
            },
        )

    def log_user_deletion(
        self, user_id: str, username: str, deleted_by: str, ballots_removed: int
    ) -> None:
        """Log an admin deleting a user account."""
        self.logger.warning(
            f"User deleted: {username}",
            extra={
                "extra_fields": {
                    "event_type": "user_deleted",
                    "user_id": user_id,
                    "username": username,
                    "deleted_by": deleted_by,
                    "ballots_removed": ballots_removed,
                }
            },
        )


# Global security logger instance
security_logger = SecurityLogger()
