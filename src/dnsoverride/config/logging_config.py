from __future__ import annotations

import logging
import logging.handlers
import os
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

_LEVELS = {
    "trace": logging.DEBUG,
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "crit": logging.CRITICAL,
    "critical": logging.CRITICAL,
    "off": logging.CRITICAL + 10,
}

_TAGS = {
    logging.DEBUG: "[debug]",
    logging.INFO: "[info]",
    logging.WARNING: "[warn]",
    logging.ERROR: "[error]",
    logging.CRITICAL: "[crit]",
}


class SyslogFormatter(logging.Formatter):
    """Syslog line format: optional tag, bracketed level, logger name, message."""

    def __init__(self, tag: str = "dnsoverride") -> None:
        super().__init__()
        self.tag = tag

    def format(self, record):
        """Render one record; syslog stamps the time itself."""
        record.level_tag = _TAGS.get(record.levelno, f"[lvl{record.levelno}]")
        prefix = f"{self.tag}: " if self.tag else ""
        return f"{prefix}{record.level_tag} {record.name}: {record.getMessage()}"


class BracketLevelFormatter(logging.Formatter):
    """Formatter for stderr/file output: ``<UTC time>Z [level] logger: message``."""

    def formatTime(self, record, datefmt=None):
        """Format the record's creation time as UTC ISO-8601 with Z suffix."""
        return datetime.fromtimestamp(record.created, timezone.utc).strftime(
            "%Y-%m-%dT%H:%M:%SZ"
        )

    def format(self, record):
        """Attach the bracketed level tag before the standard formatting."""
        record.level_tag = _TAGS.get(record.levelno, f"[lvl{record.levelno}]")
        return super().format(record)


def parse_level_filter(text: object) -> Tuple[int, Dict[str, int]]:
    """Brief: Parse a level or filter string into root and per-logger levels.

    Inputs:
      - text: "info", or a comma-separated filter list such as
        "warn,dnsoverride.overrides=debug". Unknown levels fall back to INFO.

    Outputs:
      - (root_level, {logger_name: level})

    Example:
      >>> parse_level_filter("warn,dnsoverride.server=debug")
      (30, {'dnsoverride.server': 10})
    """
    root_level = logging.INFO
    per_logger: Dict[str, int] = {}
    for part in str(text or "info").split(","):
        part = part.strip()
        if not part:
            continue
        if "=" in part:
            name, _, level_text = part.partition("=")
            per_logger[name.strip()] = _LEVELS.get(
                level_text.strip().lower(), logging.INFO
            )
        else:
            root_level = _LEVELS.get(part.lower(), logging.INFO)
    return root_level, per_logger


def _syslog_handler(syslog_cfg: Any) -> logging.Handler:
    if isinstance(syslog_cfg, dict):
        address = syslog_cfg.get("address", "/dev/log")
        if isinstance(address, list):
            address = tuple(address)
        facility = getattr(
            logging.handlers.SysLogHandler,
            f"LOG_{str(syslog_cfg.get('facility', 'USER')).upper()}",
            logging.handlers.SysLogHandler.LOG_USER,
        )
        tag = str(syslog_cfg.get("tag", "dnsoverride"))
    else:
        address = "/dev/log"
        facility = logging.handlers.SysLogHandler.LOG_USER
        tag = "dnsoverride"

    handler = logging.handlers.SysLogHandler(address=address, facility=facility)
    handler.setFormatter(SyslogFormatter(tag=tag))
    return handler


def init_logging(cfg: Optional[Dict[str, Any]]) -> None:
    """
    Replace the root logger's handlers according to the `logging` config section.

    Args:
        cfg: The `logging` mapping, or None for defaults. Keys:
            - level: a level name (trace, debug, info, warn, error, crit, off)
              or a filter list such as "info,dnsoverride.overrides=debug"
            - stderr: write to stderr (default True)
            - file: append to this path; parent directories are created
            - syslog: True for /dev/log, or a mapping with address, facility, tag

    Example config:
        {
            "level": "info",
            "stderr": True,
            "file": "./dnsoverride.log",
            "syslog": {"address": "/dev/log", "tag": "dnsoverride"}
        }
    """
    cfg = cfg or {}

    level, per_logger = parse_level_filter(cfg.get("level", "info"))
    formatter = BracketLevelFormatter(
        fmt="%(asctime)s %(level_tag)s %(name)s: %(message)s"
    )

    root = logging.getLogger()
    root.setLevel(level)
    for h in list(root.handlers):
        root.removeHandler(h)

    for name, logger_level in per_logger.items():
        logging.getLogger(name).setLevel(logger_level)

    if cfg.get("stderr", True):
        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setFormatter(formatter)
        root.addHandler(stderr_handler)

    file_path = cfg.get("file")
    if isinstance(file_path, str) and file_path.strip():
        path = os.path.abspath(os.path.expanduser(file_path.strip()))
        os.makedirs(os.path.dirname(path), exist_ok=True)
        file_handler = logging.FileHandler(path, mode="a", encoding="utf-8")
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    syslog_cfg = cfg.get("syslog")
    if syslog_cfg:
        try:
            root.addHandler(_syslog_handler(syslog_cfg))
        except (OSError, ValueError) as e:
            root.warning(f"Failed to configure syslog: {e}")

    logging.captureWarnings(True)
