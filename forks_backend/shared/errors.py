"""Error taxonomy and operation-failure logging for forks_backend."""

from __future__ import annotations

import logging
from typing import Any

logger = logging.getLogger(__name__)


class ForksError(Exception):
    """Base for every error whose message is safe to hand back to a caller verbatim."""


class RefValidationError(ForksError):
    pass


class NotFoundError(ForksError):
    pass


class GitOperationError(ForksError):
    pass


class StateConflictError(ForksError):
    pass


class ResourceError(ForksError):
    pass


class SocketBindError(ResourceError):
    pass


class WatchRegistrationError(ResourceError):
    pass


class ProtocolError(ForksError):
    pass


class RepoCacheLockError(ForksError):
    pass


class WatchNotFoundError(ForksError):
    pass


class ConfigError(ForksError):
    """Configuration validation or loading error."""


def log_operation_error(operation: str, target: str, error: BaseException, **context: Any) -> None:
    logger.error(
        "Operation %s failed for %s: %s",
        operation,
        target,
        error,
        extra={
            "operation": operation,
            "target": target,
            "error_type": type(error).__name__,
            "error_message": str(error),
            "context": context,
        },
    )


class ErrorContext:
    def __init__(self, operation: str, target: str = ""):
        self.operation = operation
        self.target = target

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if exc_type is not None:
            log_operation_error(self.operation, self.target, exc_val)
        return False  # Do not suppress exceptions
