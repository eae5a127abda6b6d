"""Logging configuration for abilitybot.

Every module logs through ``structlog.get_logger("abilitybot.<subsystem>")``.
setup_logging() attaches a console handler to the root logger, a
combined rotating file to ``abilitybot``, and one rotating file per
subsystem, so each event lands in its subsystem file, the combined
file and the console.

Subsystems and the modules that log under them:
    bot        bot.py, config.py
    commands   commands/base.py, commands/core.py
    pipeline   pipeline.py
    store      store/*
    backup     backup.py
    transport  sender.py
    security   security.py
"""

import logging
import logging.handlers
import re
import sys
from pathlib import Path
from typing import Any, Dict, NamedTuple

import structlog

LOGGER_PREFIX = "abilitybot"

SUBSYSTEMS = ("bot", "commands", "pipeline", "store", "backup", "transport", "security")

_REDACTED = "***REDACTED***"

# Bot API tokens appear in request URLs (/bot<id>:<secret>/method)
_TOKEN_PATTERNS = (
    re.compile(r"\d{6,12}:[A-Za-z0-9_-]{30,}"),
    re.compile(r"Bearer\s+[a-zA-Z0-9_./-]{20,}"),
)


def _scrub(value: Any) -> Any:
    if isinstance(value, str):
        for pattern in _TOKEN_PATTERNS:
            value = pattern.sub(_REDACTED, value)
        return value
    if isinstance(value, (list, tuple)):
        return type(value)(_scrub(v) for v in value)
    if isinstance(value, dict):
        return {k: _scrub(v) for k, v in value.items()}
    return value


def sanitize_secrets(
    logger: Any, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """structlog processor that redacts bot tokens in event values.

    Transport errors carry the request URL, and the URL carries the
    token, so every string value is scrubbed, including those nested
    in lists and dicts.
    """
    for key, value in event_dict.items():
        event_dict[key] = _scrub(value)
    return event_dict


class _LogSettings(NamedTuple):
    log_dir: Path
    level: int
    subsystem_levels: Dict[str, int]
    max_bytes: int
    backup_count: int
    cache_loggers: bool


def _level(name: str, default: int) -> int:
    level = logging.getLevelName(str(name).upper()) if name else default
    return level if isinstance(level, int) else default


def _resolve_settings(config) -> _LogSettings:
    if config is None:
        # Startup defaults, used until the config has been loaded
        return _LogSettings(
            log_dir=Path(__file__).parent.parent / "logs",
            level=logging.INFO,
            subsystem_levels={},
            max_bytes=10 * 1024 * 1024,
            backup_count=5,
            cache_loggers=False,
        )
    level = _level(config.logging_level, logging.INFO)
    return _LogSettings(
        log_dir=Path(config.log_dir),
        level=level,
        subsystem_levels={
            name: _level(value, level)
            for name, value in config.logging_subsystem_levels.items()
        },
        max_bytes=config.logging_max_file_size_mb * 1024 * 1024,
        backup_count=config.logging_backup_count,
        cache_loggers=True,
    )


def _file_handler(path: Path, level: int, settings: _LogSettings,
                  formatter: logging.Formatter) -> logging.Handler:
    handler = logging.handlers.RotatingFileHandler(
        path,
        maxBytes=settings.max_bytes,
        backupCount=settings.backup_count,
        encoding="utf-8",
    )
    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler


def _reset(logger: logging.Logger, level: int, close: bool = True) -> logging.Logger:
    for handler in list(logger.handlers):
        if close:
            handler.close()
        logger.removeHandler(handler)
    logger.setLevel(level)
    logger.propagate = True
    return logger


def setup_logging(config=None) -> None:
    """Configure structlog and the abilitybot logger tree.

    Called twice by main(): once with no config so startup messages
    are visible, then again with the loaded Config. Only the second
    call caches loggers on first use.

    Args:
        config: Config instance, or None for startup defaults.
    """
    settings = _resolve_settings(config)

    # Root handlers may belong to the host application; detach without closing
    root = _reset(logging.getLogger(), logging.DEBUG, close=False)
    console = logging.StreamHandler(sys.stdout)
    console.setLevel(settings.level)
    console.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(message)s"))
    root.addHandler(console)

    try:
        settings.log_dir.mkdir(parents=True, exist_ok=True)
        log_dir_error = None
    except OSError as e:
        log_dir_error = e

    file_formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer(colors=False),
        ],
    )

    combined = _reset(logging.getLogger(LOGGER_PREFIX), logging.DEBUG)
    if log_dir_error is None:
        combined.addHandler(_file_handler(
            settings.log_dir / f"{LOGGER_PREFIX}.log", settings.level, settings, file_formatter
        ))

    for subsystem in SUBSYSTEMS:
        level = settings.subsystem_levels.get(subsystem, settings.level)
        sub_logger = _reset(logging.getLogger(f"{LOGGER_PREFIX}.{subsystem}"), level)
        if log_dir_error is None:
            sub_logger.addHandler(_file_handler(
                settings.log_dir / f"{subsystem}.log", level, settings, file_formatter
            ))

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            sanitize_secrets,
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=settings.cache_loggers,
    )

    if log_dir_error is not None:
        structlog.get_logger(f"{LOGGER_PREFIX}.bot").warning(
            "log_dir_unavailable", log_dir=str(settings.log_dir), error=str(log_dir_error)
        )
