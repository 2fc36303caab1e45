"""Central logging configuration for speakermigrate.

The ``logging`` section of ``local.yml`` sets the log directory, file name and
level; ``--debug`` overrides the level. An unwritable directory falls back to
``./logs`` with a warning. Every record carries a ``device`` field (the
speaker address, ``-`` outside a speaker operation) and obvious secrets are
masked before they reach a handler.
"""

from __future__ import annotations

import logging
import re
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

DEFAULT_DIRECTORY = Path("/var/log/speakermigrate")
DEFAULT_FILENAME = "speakermigrate.log"
DEFAULT_LEVEL = logging.INFO
FALLBACK_DIRECTORY = Path("./logs")

LOG_FORMAT = "%(asctime)s | %(levelname)s | device=%(device)s | %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# SSH and HTTP transports log without device context.
TRANSPORT_LOGGERS = ("paramiko", "urllib3")


@dataclass(slots=True)
class LoggingConfig:
    directory: Path = DEFAULT_DIRECTORY
    filename: str = DEFAULT_FILENAME
    level: int = DEFAULT_LEVEL


class DeviceContextFilter(logging.Filter):
    """Ensure every record names the speaker it concerns."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not getattr(record, "device", None):
            record.device = "-"
        return True


class SecretScrubberFilter(logging.Filter):
    """Remove obvious secrets from log messages."""

    SECRET_PATTERN = re.compile(r"(password|secret|token)=([^\s]+)", re.IGNORECASE)

    def filter(self, record: logging.LogRecord) -> bool:
        try:
            message = record.getMessage()
        except (TypeError, ValueError):
            return True

        cleaned = self.SECRET_PATTERN.sub(r"\1=***", message)
        if cleaned != message:
            record.msg = cleaned
            record.args = ()
        return True


def _level_from_value(raw_level: Any) -> int:
    if isinstance(raw_level, str):
        level = logging.getLevelName(raw_level.upper())
        if isinstance(level, int):
            return level
    if isinstance(raw_level, int) and not isinstance(raw_level, bool):
        return raw_level
    return DEFAULT_LEVEL


def _logging_config(local_config: Mapping[str, Any] | None) -> LoggingConfig:
    section = local_config.get("logging") if isinstance(local_config, Mapping) else None
    if not isinstance(section, Mapping):
        return LoggingConfig()

    directory = section.get("directory")
    filename = section.get("filename")
    return LoggingConfig(
        directory=Path(str(directory)).expanduser() if directory else DEFAULT_DIRECTORY,
        filename=str(filename) if filename else DEFAULT_FILENAME,
        level=_level_from_value(section.get("level")),
    )


def _writable_directory(target: Path, fallback: Path) -> tuple[Path, bool]:
    """Return the first writable directory and whether it is the fallback."""

    for candidate in (target, fallback):
        try:
            candidate.mkdir(parents=True, exist_ok=True)
            marker = candidate / ".write-test"
            marker.touch()
            marker.unlink(missing_ok=True)
        except OSError:
            continue
        return candidate, candidate is fallback
    raise OSError(f"no writable log directory ({target}, {fallback})")


def _build_handlers(log_path: Path) -> list[logging.Handler]:
    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)
    handlers: list[logging.Handler] = [
        logging.FileHandler(log_path, encoding="utf-8"),
        logging.StreamHandler(sys.stdout),
    ]
    for handler in handlers:
        handler.setFormatter(formatter)
        handler.addFilter(DeviceContextFilter())
        handler.addFilter(SecretScrubberFilter())
    return handlers


def setup_logging(
    local_config: Mapping[str, Any] | None = None,
    cli_level: int | None = None,
    fallback_directory: Path = FALLBACK_DIRECTORY,
) -> logging.Logger:
    """Configure application-wide logging and return the ``speakermigrate`` logger.

    Parameters
    ----------
    local_config:
        Parsed ``local.yml``; ``None`` uses the defaults.
    cli_level:
        Level forced from the command line (``--debug``); wins over
        ``logging.level``.
    """

    config = _logging_config(local_config)
    if cli_level is not None:
        config.level = cli_level

    log_directory, used_fallback = _writable_directory(config.directory, fallback_directory)
    log_path = log_directory / config.filename

    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
        handler.close()
    for handler in _build_handlers(log_path):
        root_logger.addHandler(handler)
    root_logger.setLevel(config.level)

    for name in TRANSPORT_LOGGERS:
        logging.getLogger(name).setLevel(max(config.level, logging.WARNING))

    logger = logging.getLogger("speakermigrate")
    logger.setLevel(config.level)

    if local_config is None:
        logger.info(
            "local.yml not loaded. Using logging defaults (directory=%s, level=%s).",
            config.directory,
            logging.getLevelName(config.level),
        )
    if used_fallback:
        logger.warning(
            "Logging directory '%s' is not writable. Falling back to '%s'.",
            config.directory,
            log_directory,
        )

    logger.info("Logging initialized at %s", log_path)
    return logger
