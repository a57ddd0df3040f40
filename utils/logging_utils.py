"""
Logging setup shared by the API server and its modules.

Call ``setup_logging(job_name="ridefare")`` once per process, then create module
loggers with ``get_tagged_logger(__name__, tag="...")``:

    logger = get_tagged_logger(__name__, tag="osrm_client")
    logger.info("Route fetched", extra={"distance_km": 12.3})

renders as

    2024-01-10 14:15:00 INFO     ridefare/osrm_client  Route fetched  distance_km=12.3

Call-site ``extra`` fields are appended as key=value pairs. DEBUG and INFO go
to stdout; WARNING and above go to stderr.
"""

from __future__ import annotations

import logging
import logging.config
from typing import Any, Dict, List, MutableMapping, Optional, Tuple
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

LOG_FORMAT = "%(asctime)s %(levelname)-8s %(job_name)s/%(tag)s  %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Modules may log before the entrypoint installs the real handlers.
logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)-8s %(message)s", datefmt=DATE_FORMAT)

SENSITIVE_QUERY_KEYS = ("pass", "pwd", "secret", "token", "key")

# Attributes every LogRecord has; anything else on a record came from `extra`.
_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", logging.INFO, "", 0, "", None, None)))
_NOT_EXTRAS = _RECORD_ATTRS | {"message", "asctime", "tag", "job_name"}

_configured = False


class RecordDefaults(logging.Filter):
    """Fill in `tag` and `job_name` for records that did not come through a tagged adapter.

    The tag falls back to the last segment of the logger name
    ("ridefare.data_sources.osrm_client" -> "osrm_client").
    """

    def __init__(self, job_name: Optional[str] = None) -> None:
        super().__init__()
        self.job_name = job_name or "-"

    def filter(self, record: logging.LogRecord) -> bool:  # type: ignore[override]
        if getattr(record, "tag", None) is None:
            record.tag = record.name.rsplit(".", 1)[-1] or "-"
        if getattr(record, "job_name", None) is None:
            record.job_name = self.job_name
        return True


class LevelCeiling(logging.Filter):
    """Reject records above `level`; keeps warnings off the stdout handler."""

    def __init__(self, level: int) -> None:
        super().__init__()
        self.level = level

    def filter(self, record: logging.LogRecord) -> bool:  # type: ignore[override]
        return record.levelno <= self.level


class ExtrasFormatter(logging.Formatter):
    """Formatter that appends call-site `extra` fields after the message."""

    def formatMessage(self, record: logging.LogRecord) -> str:
        line = super().formatMessage(record)
        extras = {k: v for k, v in vars(record).items() if k not in _NOT_EXTRAS}
        if not extras:
            return line
        return line + "  " + " ".join(f"{k}={v!r}" for k, v in sorted(extras.items()))


class TaggedLoggerAdapter(logging.LoggerAdapter):
    """Adds the adapter's tag to call-site `extra` rather than replacing it."""

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> Tuple[Any, MutableMapping[str, Any]]:
        kwargs["extra"] = {**(kwargs.get("extra") or {}), **(self.extra or {})}
        return msg, kwargs


def _stream_handler(stream: str, level: str, filters: List[str]) -> Dict[str, Any]:
    return {
        "class": "logging.StreamHandler",
        "stream": f"ext://sys.{stream}",
        "level": level,
        "formatter": "extras",
        "filters": filters,
    }


def build_logging_config(
    level: str | int = "INFO",
    *,
    job_name: Optional[str] = None,
    fmt: str = LOG_FORMAT,
    datefmt: str = DATE_FORMAT,
) -> Dict[str, Any]:
    """Return a dictConfig mapping with a stdout handler (up to INFO) and a stderr handler (WARNING+)."""
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "filters": {
            "defaults": {"()": RecordDefaults, "job_name": job_name},
            "info_and_below": {"()": LevelCeiling, "level": logging.INFO},
        },
        "formatters": {
            "extras": {"()": ExtrasFormatter, "fmt": fmt, "datefmt": datefmt},
        },
        "handlers": {
            "stdout": _stream_handler("stdout", "DEBUG", ["defaults", "info_and_below"]),
            "stderr": _stream_handler("stderr", "WARNING", ["defaults"]),
        },
        "root": {"level": level, "handlers": ["stdout", "stderr"]},
    }


def setup_logging(level: str | int = "INFO", *, job_name: Optional[str] = None, force: bool = False) -> None:
    """
    Install the process-wide handlers.

    Only the first call takes effect unless `force` is set, so both
    `run_server.py` and the app factory may call it.
    """
    global _configured
    if _configured and not force:
        return
    logging.config.dictConfig(build_logging_config(level, job_name=job_name))
    _configured = True


def get_tagged_logger(name: str, *, tag: Optional[str] = None) -> TaggedLoggerAdapter:
    """Logger adapter for `name` whose records carry `tag` (default: last segment of `name`)."""
    return TaggedLoggerAdapter(logging.getLogger(name), {"tag": tag or name.rsplit(".", 1)[-1]})


def _is_sensitive(query_key: str) -> bool:
    lowered = query_key.lower()
    return any(token in lowered for token in SENSITIVE_QUERY_KEYS)


def mask_url(url: str) -> str:
    """Hide credentials and secret-looking query values before a URL is logged.

    "redis://:hunter2@cache:6379/0" becomes "redis://:***@cache:6379/0".
    Strings that do not parse are returned unchanged.
    """
    try:
        parts = urlparse(url)
        port = parts.port
    except ValueError:
        return url
    has_userinfo = parts.username is not None or parts.password is not None
    if not has_userinfo and not parts.query:
        return url

    userinfo = ""
    if has_userinfo:
        userinfo = ("***" if parts.username else "") + (":***" if parts.password is not None else "") + "@"
    host = (parts.hostname or "") + (f":{port}" if port else "")
    query = urlencode([
        (key, "***" if _is_sensitive(key) else value)
        for key, value in parse_qsl(parts.query, keep_blank_values=True)
    ])
    return urlunparse(parts._replace(netloc=userinfo + host, query=query))
