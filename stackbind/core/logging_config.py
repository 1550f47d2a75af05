"""
Logging Configuration
JSON logging for deploy runs.

Provides:
- CustomJsonFormatter: one JSON object per record, tagged with the active deploy
- SecretMaskingFilter: hides resolved secret values from every record
- MaskingFormatter: text output with masked tracebacks
- setup_logging / configure_logging: YAML dictConfig or programmatic setup
"""

import json
import logging
import logging.config
import os
import string
import threading
from datetime import datetime, timezone
from typing import Dict, Iterable, Optional, Set

import yaml

from .deploy_context import get_deploy_id, get_environment, get_stack

MASK = "***"
MIN_MASKED_LENGTH = 4

# Attributes every LogRecord has; anything else came in through `extra=`.
_RECORD_ATTRS = frozenset(
    logging.LogRecord("", logging.INFO, "", 0, "", None, None).__dict__
) | {"message", "asctime"}

_DEPLOY_FIELDS = (
    ("stack", get_stack),
    ("environment", get_environment),
    ("deploy_id", get_deploy_id),
)


class CustomJsonFormatter(logging.Formatter):
    """
    JSON Formatter.

    Fields:
      - _time: ISO8601 timestamp (millisecond precision)
      - level / logger / message
      - stack, environment, deploy_id: identity of the deploy being run,
        unless the record already carries them
      - extra fields and the formatted exception, when present
    """

    def format(self, record: logging.LogRecord) -> str:
        created = datetime.fromtimestamp(record.created, tz=timezone.utc)
        log_data = {
            "_time": created.isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for name, getter in _DEPLOY_FIELDS:
            value = getattr(record, name, None) or getter()
            if value:
                log_data[name] = value

        extras = {
            key: value
            for key, value in vars(record).items()
            if key not in _RECORD_ATTRS and not key.startswith("_") and key not in log_data
        }
        log_data.update(extras)

        if record.exc_info:
            log_data["exception"] = secret_masking_filter.mask(self.formatException(record.exc_info))

        return json.dumps(log_data, ensure_ascii=False, default=str)


class SecretMaskingFilter(logging.Filter):
    """
    Replace registered secret values with a mask.
    The secrets store and the collector register values as they get resolved.
    A value registered during a deploy is forgotten once every deploy that
    registered it has been released.
    """

    def __init__(self, name: str = ""):
        super().__init__(name)
        self._owners: Dict[str, Set[Optional[str]]] = {}
        self._lock = threading.Lock()

    def register(self, values: Iterable[str]) -> None:
        # Very short values would mask ordinary words.
        fresh = [v for v in values if v and len(v) >= MIN_MASKED_LENGTH]
        owner = get_deploy_id()
        with self._lock:
            for value in fresh:
                self._owners.setdefault(value, set()).add(owner)

    def release(self, deploy_id: str) -> None:
        """Forget values that only this deploy registered."""
        with self._lock:
            for value in list(self._owners):
                owners = self._owners[value]
                owners.discard(deploy_id)
                if not owners:
                    del self._owners[value]

    def mask(self, text: str) -> str:
        with self._lock:
            # Longest first, so a secret containing another one is masked whole.
            values = sorted(self._owners, key=len, reverse=True)
        for value in values:
            if value in text:
                text = text.replace(value, MASK)
        return text

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        masked = self.mask(message)
        if masked != message:
            record.msg = masked
            record.args = None
        return True


# One instance shared by every handler, so registrations apply everywhere.
secret_masking_filter = SecretMaskingFilter()


class MaskingFormatter(logging.Formatter):
    """Plain text formatter that also masks secrets in tracebacks."""

    def format(self, record: logging.LogRecord) -> str:
        return secret_masking_filter.mask(super().format(record))


def configure_logging(level: str = "INFO", fmt: str = "json") -> None:
    """Install a single stderr handler on the stackbind logger."""
    handler = logging.StreamHandler()
    if fmt == "json":
        handler.setFormatter(CustomJsonFormatter())
    else:
        handler.setFormatter(
            MaskingFormatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
        )
    handler.addFilter(secret_masking_filter)

    root = logging.getLogger("stackbind")
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level.upper())


def setup_logging(config_path: str = "logging.yml", level: str = "INFO", fmt: str = "json"):
    """
    Apply a YAML logging config after ${VAR} substitution from the environment.
    Without a config file, fall back to configure_logging(level, fmt).
    """
    if not os.path.exists(config_path):
        configure_logging(level, fmt)
        return

    with open(config_path, "r", encoding="utf-8") as f:
        template = string.Template(f.read())

    mapping = {"LOG_LEVEL": level, **os.environ}
    config = yaml.safe_load(template.safe_substitute(mapping))
    logging.config.dictConfig(config)

    # Handlers declared in YAML still hide secrets.
    for handler in logging.getLogger("stackbind").handlers:
        if secret_masking_filter not in handler.filters:
            handler.addFilter(secret_masking_filter)
