from __future__ import annotations

import logging
import sys
from typing import Any, Mapping, Optional, Tuple

DEFAULT_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

# Third-party loggers that are noisy at INFO during polling.
_QUIET_LOGGERS = {"urllib3": "WARNING"}


def _level(value: Any, fallback: int = logging.INFO) -> int:
    return getattr(logging, str(value).upper(), fallback)


def configure_logging_from_dict(cfg: Mapping[str, Any]) -> Tuple[str, Optional[str]]:
    """Install root handlers from the ``logging`` section of the config.

    Returns the configured level name and log file (if any).
    """
    logging_config = {}
    if isinstance(cfg, Mapping):
        logging_config = cfg.get("logging", {}) or {}

    level = logging_config.get("level", "INFO")
    format_str = logging_config.get("format", DEFAULT_FORMAT)
    log_file = logging_config.get("file")
    logger_levels = dict(_QUIET_LOGGERS)
    logger_levels.update(logging_config.get("loggers", {}) or {})

    handlers = []

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(logging.Formatter(format_str))
    handlers.append(console_handler)

    if log_file:
        try:
            file_handler = logging.FileHandler(log_file)
            file_handler.setFormatter(logging.Formatter(format_str))
            handlers.append(file_handler)
        except OSError as e:
            print(f"Warning: Could not create log file handler: {e}", file=sys.stderr)

    logging.basicConfig(
        level=_level(level),
        handlers=handlers,
        format=format_str,
        force=True,
    )

    for logger_name, logger_level in logger_levels.items():
        logging.getLogger(str(logger_name)).setLevel(_level(logger_level))

    return str(level), str(log_file) if log_file else None
