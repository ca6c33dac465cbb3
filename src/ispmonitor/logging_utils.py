"""Unified logging utilities for ispmonitor.

This module centralizes logging setup and timing helpers so the import
pipeline and the analytics layer can emit:
  - system-readable logs (console and, when configured, system.log)
  - user-readable logs (the import log shown to operators)
  - timing breakdowns per processed file

Library modules only call ``logging.getLogger("ispmonitor.<area>")``; handlers
are attached here by the caller that owns the run.
"""
from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Dict, Optional

from .common.config_validator import AppConfig


SYSTEM_FMT = "[%(asctime)s] [%(levelname)s] %(name)s | %(message)s"
HUMAN_FMT = "[%(asctime)s] %(message)s"
HUMAN_DATEFMT = "%H:%M:%S"


def _ensure_logs_dir(config: Optional[AppConfig]) -> Optional[Path]:
    logs_dir = config.logging.logs_dir if config is not None else None
    if not logs_dir:
        return None
    path = Path(logs_dir).expanduser().resolve()
    path.mkdir(parents=True, exist_ok=True)
    return path


def _safe_add_file_handler(logger: logging.Logger, path: Path, fmt: str, level: int) -> None:
    try:
        fh = logging.FileHandler(path, encoding="utf-8")
        fh.setLevel(level)
        fh.setFormatter(logging.Formatter(fmt))
        logger.addHandler(fh)
    except OSError as exc:  # pragma: no cover - depends on the filesystem
        # Keep console logging only
        logger.warning("[WARNING] Failed to attach file handler %s (%s)", str(path), exc)


def _level(config: Optional[AppConfig]) -> int:
    name = config.logging.level if config is not None else "INFO"
    return getattr(logging, name, logging.INFO)


def get_logger(name: str = "ispmonitor", config: Optional[AppConfig] = None) -> logging.Logger:
    """Return a system logger with console + optional file handlers.

    - File: system.log inside ``logging.logs_dir`` when configured
    - Console: same format
    - Level: from configuration, INFO by default
    """
    logger = logging.getLogger(name)
    level = _level(config)
    logger.setLevel(level)
    # Reset handlers to avoid duplication across repeated initializations
    logger.handlers = []

    sh = logging.StreamHandler()
    sh.setLevel(level)
    sh.setFormatter(logging.Formatter(SYSTEM_FMT))
    logger.addHandler(sh)

    logs_dir = _ensure_logs_dir(config)
    if logs_dir is not None:
        _safe_add_file_handler(logger, logs_dir / "system.log", SYSTEM_FMT, level)
    return logger


def get_user_logger(config: Optional[AppConfig] = None) -> logging.Logger:
    """Return the operator-facing import logger.

    Lines are short and timestamped; no stack traces.
    """
    logger = logging.getLogger("ispmonitor.user")
    logger.setLevel(logging.INFO)
    logger.handlers = []
    logger.propagate = False

    sh = logging.StreamHandler()
    sh.setLevel(logging.INFO)
    sh.setFormatter(logging.Formatter(HUMAN_FMT, datefmt=HUMAN_DATEFMT))
    logger.addHandler(sh)

    logs_dir = _ensure_logs_dir(config)
    if logs_dir is not None:
        _safe_add_file_handler(logger, logs_dir / "import.log", HUMAN_FMT, logging.INFO)
    return logger


def start_phase_timer(phase_name: str) -> float:
    """Start a timer for a given file or phase and return the perf counter."""
    return time.perf_counter()


def end_phase_timer(phase_name: str, start_time: float, timing_dict: Dict[str, float], logger: logging.Logger) -> float:
    """End timer, record to ``timing_dict`` and log the elapsed time."""
    elapsed = time.perf_counter() - float(start_time)
    timing_dict[phase_name] = timing_dict.get(phase_name, 0.0) + elapsed
    logger.debug("%s completed in %.2f seconds", phase_name, elapsed)
    return elapsed


def log_system_event(logger: logging.Logger, message: str, *args) -> None:
    logger.info("[SYSTEM] " + message, *args)


def log_warning(logger: logging.Logger, message: str, *args) -> None:
    logger.warning("[WARNING] " + message, *args)


def log_error(logger: logging.Logger, message: str, *args) -> None:
    logger.error("[ERROR] " + message, *args)
