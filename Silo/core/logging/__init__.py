"""
Logging setup for the Silo client core.

Usage:
    from Silo.core.logging import get_logger

    logger = get_logger(__name__)
    logger.info("Conversation %s opened", conversation_id)

Configuration:
    from Silo.core.logging import configure_logging, LogConfig

    configure_logging(LogConfig(level="DEBUG", log_file="silo.log"))

Log lines may carry entity ids, conversation ids and counts. They must never
carry author identities or message content.
"""

import json
import logging
import logging.handlers
import os
import sys
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Union

CONSOLE_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"
FILE_FORMAT = "%(asctime)s %(levelname)s %(name)s [%(funcName)s:%(lineno)d] %(message)s"

# Third-party loggers that are chatty at DEBUG
NOISY_LOGGERS = ("websockets", "aiohttp", "asyncio")

# Record attributes copied into JSON output when a call passes them via ``extra``
CONTEXT_FIELDS = ("conversation_id", "entity_id", "table", "operation", "duration")


def _level(value: Union[str, int]) -> int:
    if isinstance(value, int):
        return value
    level = logging.getLevelName(value.upper())
    if not isinstance(level, int):
        raise ValueError(f"Unknown log level: {value}")
    return level


@dataclass
class LogConfig:
    """
    Logging options.

    Attributes:
        level: Root level name
        console_output: Write human-readable lines to stderr
        log_file: Rotating log file path; no file output when None
        json_output: Write the log file as JSON lines
        error_file: Extra file receiving ERROR and above only
        max_bytes: Rotation size for file handlers
        backup_count: Rotated files kept
        component_levels: Per-logger level overrides
    """
    level: str = "INFO"
    console_output: bool = True
    log_file: Optional[str] = None
    json_output: bool = False
    error_file: Optional[str] = None
    max_bytes: int = 5 * 1024 * 1024
    backup_count: int = 3
    component_levels: Dict[str, str] = field(
        default_factory=lambda: {name: "WARNING" for name in NOISY_LOGGERS}
    )


class ColoredFormatter(logging.Formatter):
    """Console formatter; colours the level name on ANSI terminals."""

    COLORS = {
        logging.DEBUG: '\033[36m',
        logging.INFO: '\033[32m',
        logging.WARNING: '\033[33m',
        logging.ERROR: '\033[31m',
        logging.CRITICAL: '\033[35m',
    }
    RESET = '\033[0m'

    def __init__(self, fmt: str = CONSOLE_FORMAT, use_colors: Optional[bool] = None):
        super().__init__(fmt)
        if use_colors is None:
            use_colors = sys.platform != 'win32' and sys.stderr.isatty()
        self.use_colors = use_colors

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelno)
        if not self.use_colors or color is None:
            return super().format(record)
        levelname = record.levelname
        record.levelname = f"{color}{levelname}{self.RESET}"
        try:
            return super().format(record)
        finally:
            record.levelname = levelname


class JsonFormatter(logging.Formatter):
    """One JSON object per record, with any known context fields."""

    def format(self, record: logging.LogRecord) -> str:
        data = {
            'time': datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
        }
        for name in CONTEXT_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                data[name] = value
        if record.exc_info:
            data['exception'] = self.formatException(record.exc_info)
        return json.dumps(data, default=str)


def _rotating_handler(path: str, config: LogConfig) -> logging.Handler:
    Path(path).parent.mkdir(parents=True, exist_ok=True)
    return logging.handlers.RotatingFileHandler(
        path, maxBytes=config.max_bytes, backupCount=config.backup_count, encoding='utf-8'
    )


class LoggingManager:
    """
    Singleton owning the handlers Silo installs on the root logger.

    Reconfiguring removes only those handlers, so an embedding application
    keeps its own.
    """

    _instance: Optional['LoggingManager'] = None

    def __new__(cls):
        if cls._instance is None:
            instance = super().__new__(cls)
            instance._config = None
            instance._handlers = []
            cls._instance = instance
        return cls._instance

    @property
    def config(self) -> Optional[LogConfig]:
        return self._config

    @property
    def handlers(self) -> List[logging.Handler]:
        return list(self._handlers)

    def configure(self, config: LogConfig) -> None:
        level = _level(config.level)
        self.shutdown()
        self._config = config
        logging.getLogger().setLevel(level)

        if config.console_output:
            console = logging.StreamHandler(sys.stderr)
            console.setFormatter(ColoredFormatter())
            self._install(console)

        if config.log_file:
            file_handler = _rotating_handler(config.log_file, config)
            file_handler.setFormatter(
                JsonFormatter() if config.json_output else logging.Formatter(FILE_FORMAT)
            )
            self._install(file_handler)

        if config.error_file:
            error_handler = _rotating_handler(config.error_file, config)
            error_handler.setLevel(logging.ERROR)
            error_handler.setFormatter(logging.Formatter(FILE_FORMAT))
            self._install(error_handler)

        for name, name_level in config.component_levels.items():
            logging.getLogger(name).setLevel(_level(name_level))

        logging.getLogger(__name__).debug("Logging configured at %s", config.level)

    def _install(self, handler: logging.Handler) -> None:
        logging.getLogger().addHandler(handler)
        self._handlers.append(handler)

    def set_level(self, level: Union[str, int]) -> None:
        """Change the root level; the error file keeps its ERROR floor."""
        logging.getLogger().setLevel(_level(level))

    def shutdown(self) -> None:
        """Detach and close the installed handlers."""
        root = logging.getLogger()
        for handler in self._handlers:
            root.removeHandler(handler)
            handler.close()
        self._handlers = []


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def get_logging_manager() -> LoggingManager:
    return LoggingManager()


def configure_logging(config: LogConfig) -> None:
    LoggingManager().configure(config)


def create_development_config() -> LogConfig:
    return LogConfig(level="DEBUG")


def create_production_config(log_dir: str = "logs") -> LogConfig:
    """JSON lines to a rotating file plus an error-only file; no console."""
    return LogConfig(
        level="INFO",
        console_output=False,
        log_file=os.path.join(log_dir, "silo.log"),
        json_output=True,
        error_file=os.path.join(log_dir, "silo_errors.log"),
        max_bytes=20 * 1024 * 1024,
        backup_count=10,
        component_levels={name: "ERROR" for name in NOISY_LOGGERS},
    )


def create_testing_config() -> LogConfig:
    return LogConfig(level="DEBUG", console_output=False)


_PRESETS = {
    "development": create_development_config,
    "dev": create_development_config,
    "production": create_production_config,
    "prod": create_production_config,
    "testing": create_testing_config,
    "test": create_testing_config,
}


def auto_configure(env: Optional[str] = None) -> LogConfig:
    """
    Apply the preset for ``env`` (default: ``SILO_ENV``, then development).

    Returns:
        The configuration that was applied
    """
    env = (env or os.environ.get("SILO_ENV") or "development").lower()
    config = _PRESETS.get(env, create_development_config)()
    configure_logging(config)
    return config


__all__ = [
    'LogConfig',
    'LoggingManager',
    'ColoredFormatter',
    'JsonFormatter',
    'get_logger',
    'get_logging_manager',
    'configure_logging',
    'create_development_config',
    'create_production_config',
    'create_testing_config',
    'auto_configure',
]
