import json
import logging
import sys
from typing import Any, Dict, Optional, Union

LogMessage = Union[str, Dict[str, Any]]

SECURITY_LOGGER_NAME = "app.security"


def setup_logging(level: Union[int, str] = logging.INFO, format_string: Optional[str] = None) -> None:
    """Configure root logging for the API process and the uvicorn loggers."""
    if format_string is None:
        format_string = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
    logging.basicConfig(
        level=level,
        format=format_string,
        stream=sys.stdout,
        force=True,
    )
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access", "app", SECURITY_LOGGER_NAME):
        logging.getLogger(name).setLevel(level)


class LoggerMixin:
    """
    Mixin to add structured logging to service classes.

    Messages may be plain strings or dictionaries; dictionaries are rendered
    as compact JSON so log shippers can parse them. The logger is named after
    the concrete class under the ``app`` namespace.

    Example:
        class IdentifierRateLimiter(LoggerMixin):
            async def check(self, identifier):
                self.log_info({"event_type": "rate_limit_check", "identifier": identifier})
    """

    _logger: Optional[logging.Logger] = None

    @property
    def logger(self) -> logging.Logger:
        """Lazy initialization of logger instance."""
        if self._logger is None:
            self._logger = logging.getLogger(f"app.{self.__class__.__name__}")
        return self._logger

    @staticmethod
    def _format_message(message: LogMessage) -> str:
        if isinstance(message, dict):
            return json.dumps(message, default=str, sort_keys=True)
        return message

    def log_info(self, message: LogMessage, **kwargs) -> None:
        self.logger.info(self._format_message(message), **kwargs)

    def log_warning(self, message: LogMessage, **kwargs) -> None:
        self.logger.warning(self._format_message(message), **kwargs)

    def log_error(self, message: LogMessage, exc_info: bool = False, **kwargs) -> None:
        """
        Log an error level message.

        Args:
            message: Message to log (string or dict)
            exc_info: Include exception information if True
        """
        self.logger.error(self._format_message(message), exc_info=exc_info, **kwargs)

    def log_debug(self, message: LogMessage, **kwargs) -> None:
        self.logger.debug(self._format_message(message), **kwargs)

    def log_security_event(self, message: LogMessage, **kwargs) -> None:
        """
        Log a security decision (lockout, ban, step-up) at warning level.

        Security events go to the dedicated ``app.security`` logger with a
        ``SECURITY EVENT:`` prefix so they can be routed and filtered.
        """
        logging.getLogger(SECURITY_LOGGER_NAME).warning(
            f"SECURITY EVENT: {self._format_message(message)}", **kwargs
        )


class _ModuleLevelLogger(LoggerMixin):
    """Module-level logger instance that uses a fixed name."""

    def __init__(self):
        self._logger = logging.getLogger("app.logger")


logger = _ModuleLevelLogger()
