#!/usr/bin/env python3
"""Configuration defaults, JSON loading and logging setup for the capture app."""

from __future__ import annotations

import copy
import json
import logging
import logging.handlers
import sys
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"

DEFAULT_CONFIG: dict[str, Any] = {
    "app": {
        "name": "VitalSignExtractor",
        "version": "1.0.0",
        "debug_mode": False,
    },
    "video": {
        "source_type": "file",
        "source_path": "",
        "camera_index": 0,
        "screen_monitor_index": 1,
        "frame_width": 640,
        "frame_height": 480,
        "processing_interval": 300,
        "replay_file": False,
        "reconnect_attempts": 5,
        "reconnect_delay_ms": 2000,
    },
    "ocr": {
        "languages": ["en"],
        "gpu": False,
        "confidence_threshold": 50,
        "plain_numbers_as_candidates": True,
    },
    "vital_signs": {
        "labels": ["HR", "SpO2", "ABP"],
        "default_spo2": "81",
        "spo2_history_size": 10,
        "hr_min": 30,
        "hr_max": 200,
        "spo2_min": 70,
        "spo2_max": 100,
        "abp_systolic_min": 70,
        "abp_systolic_max": 200,
        "abp_diastolic_min": 40,
        "abp_diastolic_max": 130,
    },
    "ml_model": {
        "enabled": True,
        "model_path": "models/ecg_classifier.pt",
        "labels": ["normal", "abnormal"],
        "apply_softmax": True,
        "input_width": 96,
        "input_height": 96,
        "confidence_threshold": 0.7,
    },
    "database": {
        "enabled": False,
        "path": "data/vital_signs.sqlite",
        "connection_timeout": 30,
        "retry_attempts": 3,
        "retry_delay_ms": 1000,
    },
    "output": {
        "csv_enabled": True,
        "csv_file": "live_vital_signs_output.csv",
        "console_output": True,
    },
    "logging": {
        "level": "info",
        "console_enabled": True,
        "file_enabled": True,
        "file_path": "logs/vitalsign.log",
        "max_file_size_mb": 10,
        "max_files": 5,
    },
    "monitoring": {
        "health_check_interval_sec": 60,
        "metrics_enabled": True,
    },
}

LEVEL_ALIASES = {"warn": "WARNING", "crit": "CRITICAL"}


def parse_bool(value: str) -> bool:
    return value.strip().lower() in {"1", "true", "yes", "y", "on"}


def coerce_value(value: Any, default: Any) -> Any:
    """Convert ``value`` to the type of ``default``; raises ValueError/TypeError when it cannot."""
    if isinstance(default, bool):
        if isinstance(value, bool):
            return value
        if isinstance(value, str):
            return parse_bool(value)
        if isinstance(value, (int, float)):
            return bool(value)
        raise TypeError(f"expected a boolean, got {type(value).__name__}")
    if isinstance(default, (int, float)):
        if isinstance(value, bool):
            raise TypeError("expected a number, got a boolean")
        if isinstance(value, (int, float)):
            return value
        if not isinstance(value, str):
            raise TypeError(f"expected a number, got {type(value).__name__}")
        text = value.strip()
        try:
            return int(text)
        except ValueError:
            return float(text)
    if isinstance(default, str):
        if value is None or isinstance(value, (dict, list)):
            raise TypeError(f"expected a string, got {type(value).__name__}")
        return str(value)
    if isinstance(default, list) and not isinstance(value, list):
        raise TypeError(f"expected a list, got {type(value).__name__}")
    return value


def merge_config(loaded: dict[str, Any]) -> dict[str, Any]:
    """Overlay ``loaded`` on the defaults; sections merge key by key.

    A section that is not an object, or a value that cannot take its
    default's type, is reported and replaced by the default.
    """
    config = copy.deepcopy(DEFAULT_CONFIG)
    for key, value in loaded.items():
        defaults = config.get(key)
        if not isinstance(defaults, dict):
            config[key] = value
            continue
        if not isinstance(value, dict):
            logger.warning("config section %r is not an object, using defaults", key)
            continue
        merged = dict(defaults)
        for name, item in value.items():
            if name not in defaults:
                merged[name] = item
                continue
            try:
                merged[name] = coerce_value(item, defaults[name])
            except (TypeError, ValueError) as exc:
                logger.warning("config %s.%s=%r ignored (%s), using %r", key, name, item, exc, defaults[name])
        config[key] = merged
    return config


def ensure_config(path: Path) -> dict[str, Any]:
    """Load ``path``; a missing file is created with the defaults, a broken one is ignored."""
    if not path.exists():
        try:
            save_config(path, DEFAULT_CONFIG)
            logger.info("default config written: %s", path)
        except OSError as exc:
            logger.warning("could not write default config %s: %s", path, exc)
        return copy.deepcopy(DEFAULT_CONFIG)

    try:
        with path.open("r", encoding="utf-8") as fh:
            loaded = json.load(fh)
    except (OSError, json.JSONDecodeError) as exc:
        logger.warning("config %s unreadable, using defaults: %s", path, exc)
        return copy.deepcopy(DEFAULT_CONFIG)
    if not isinstance(loaded, dict):
        logger.warning("config %s is not an object, using defaults", path)
        return copy.deepcopy(DEFAULT_CONFIG)
    return merge_config(loaded)


def save_config(path: Path, config: dict[str, Any]) -> None:
    if str(path.parent) not in {".", ""}:
        path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(config, ensure_ascii=False, indent=2), encoding="utf-8")


def validation_ranges(vital_cfg: dict[str, Any]) -> dict[str, tuple[int, int]]:
    return {
        "HR": (int(vital_cfg.get("hr_min", 30)), int(vital_cfg.get("hr_max", 200))),
        "SpO2": (int(vital_cfg.get("spo2_min", 70)), int(vital_cfg.get("spo2_max", 100))),
        "ABP_SYS": (int(vital_cfg.get("abp_systolic_min", 70)), int(vital_cfg.get("abp_systolic_max", 200))),
        "ABP_DIA": (int(vital_cfg.get("abp_diastolic_min", 40)), int(vital_cfg.get("abp_diastolic_max", 130))),
    }


def resolve_level(name: str) -> int:
    level_name = str(name or "info").strip().lower()
    level_name = LEVEL_ALIASES.get(level_name, level_name.upper())
    return getattr(logging, level_name, logging.INFO)


def configure_logging(log_cfg: dict[str, Any]) -> None:
    handlers: list[logging.Handler] = []
    if bool(log_cfg.get("file_enabled", True)):
        file_path = Path(str(log_cfg.get("file_path", "logs/vitalsign.log")))
        try:
            file_path.parent.mkdir(parents=True, exist_ok=True)
            handlers.append(
                logging.handlers.RotatingFileHandler(
                    str(file_path),
                    maxBytes=int(float(log_cfg.get("max_file_size_mb", 10)) * 1024 * 1024),
                    backupCount=max(0, int(log_cfg.get("max_files", 5))),
                    encoding="utf-8",
                )
            )
        except OSError as exc:
            print(f"[WARN] could not open log file {file_path}: {exc}", file=sys.stderr)
    if bool(log_cfg.get("console_enabled", True)) or not handlers:
        handlers.append(logging.StreamHandler())

    formatter = logging.Formatter(LOG_FORMAT)
    root = logging.getLogger()
    root.setLevel(resolve_level(str(log_cfg.get("level", "info"))))
    root.handlers.clear()
    for handler in handlers:
        handler.setFormatter(formatter)
        root.addHandler(handler)
