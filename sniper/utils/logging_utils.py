"""
Logging setup built from a declarative dictConfig.

Noisy transport errors (websocket drops, connection resets, upstream 429s)
are dropped by a filter attached to the handlers instead of patching any
logging function at runtime.
"""

import logging
import logging.config
import os
from typing import Any, Dict, Iterable, Optional


class TransportNoiseFilter(logging.Filter):
    """Drop records below ERROR whose message matches a known-noisy pattern."""

    def __init__(self, patterns: Optional[Iterable[str]] = None, max_level: str = "WARNING"):
        super().__init__()
        self.patterns = [p.lower() for p in (patterns or [])]
        self.max_level = logging.getLevelName(max_level) if isinstance(max_level, str) else max_level
        self.suppressed = 0

    def filter(self, record: logging.LogRecord) -> bool:
        if record.levelno > self.max_level or not self.patterns:
            return True
        message = record.getMessage().lower()
        if any(pattern in message for pattern in self.patterns):
            self.suppressed += 1
            return False
        return True


class CategoryFilter(logging.Filter):
    """Keep only records from the given logger name prefixes."""

    def __init__(self, categories: Optional[Iterable[str]] = None):
        super().__init__()
        self.categories = tuple(categories or ())

    def filter(self, record: logging.LogRecord) -> bool:
        if not self.categories:
            return True
        return record.name.startswith(self.categories)


def build_logging_config(logging_settings: Dict[str, Any], level: str = "INFO",
                         verbose: bool = False) -> Dict[str, Any]:
    """Translate the `logging` section of the config into a dictConfig."""
    level = "DEBUG" if verbose else (level or logging_settings.get("level", "INFO"))
    fmt = logging_settings.get("format", "%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    files = logging_settings.get("files", {}) or {}
    rotation = logging_settings.get("rotation", {}) or {}
    max_bytes = int(rotation.get("max_size_mb", 100)) * 1024 * 1024
    backup_count = int(rotation.get("backup_count", 10))

    config: Dict[str, Any] = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "standard": {"format": fmt},
            "console": {"format": "%(name)s - %(message)s"},
        },
        "filters": {
            "transport_noise": {
                "()": TransportNoiseFilter,
                "patterns": logging_settings.get("noise_patterns", []),
            },
            "trading_only": {
                "()": CategoryFilter,
                "categories": ["sniper.bot"],
            },
        },
        "handlers": {},
        "loggers": {
            "sniper": {"level": level, "handlers": [], "propagate": False},
            "aiohttp": {"level": "WARNING"},
            "asyncio": {"level": "WARNING"},
        },
        "root": {"level": level, "handlers": []},
    }

    handler_names = []
    if logging_settings.get("console", True):
        config["handlers"]["console"] = {
            "class": "rich.logging.RichHandler",
            "level": level,
            "formatter": "console",
            "filters": ["transport_noise"],
            "rich_tracebacks": True,
            "show_path": False,
        }
        handler_names.append("console")

    file_handlers = {
        "main_log": ("main_file", level, ["transport_noise"]),
        "error_log": ("error_file", "ERROR", []),
        "trading_log": ("trading_file", level, ["trading_only"]),
    }
    for key, (name, handler_level, filters) in file_handlers.items():
        path = files.get(key)
        if not path:
            continue
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
        config["handlers"][name] = {
            "class": "logging.handlers.RotatingFileHandler",
            "level": handler_level,
            "formatter": "standard",
            "filters": filters,
            "filename": path,
            "maxBytes": max_bytes,
            "backupCount": backup_count,
            "encoding": "utf-8",
        }
        handler_names.append(name)

    config["loggers"]["sniper"]["handlers"] = handler_names
    config["root"]["handlers"] = [h for h in handler_names if h != "trading_file"]
    return config


def setup_logging(logging_settings: Dict[str, Any], level: str = "INFO", verbose: bool = False) -> None:
    """Apply the logging configuration for the whole process."""
    logging.config.dictConfig(build_logging_config(logging_settings, level, verbose))
