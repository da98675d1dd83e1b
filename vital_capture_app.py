#!/usr/bin/env python3
"""
Vital-sign capture application.

Usage examples:
  # 1) Replay a recorded monitor video, sampling every 300th frame
  python vital_capture_app.py --config vital_capture_config.json --source /data/monitor.mp4

  # 2) Live camera with the classifier input window (press q to stop)
  python vital_capture_app.py --camera-index 0 --interval 150 --debug true
"""

from __future__ import annotations

import argparse
import logging
import threading
from pathlib import Path
from typing import Any

import cv2
import torch

from capture_config import configure_logging, ensure_config, parse_bool, validation_ranges
from capture_loop import EXIT_FATAL, CaptureLoop, install_signal_handlers
from ecg_classifier import build_classification
from ocr_engine import EasyOcrEngine, OcrInitError
from resilience import ReconnectState
from video_source import ResilientSource, build_source
from vital_parser import FallbackState, VitalValidator
from vital_pipeline import VitalPipeline
from vital_sinks import ConsoleSink, CsvSink, CsvSinkError, DatabaseSink, VitalFanout
from vital_store import VitalSignStore

logger = logging.getLogger("vital_capture_app")


def apply_overrides(config: dict[str, Any], args: argparse.Namespace) -> dict[str, Any]:
    video = config["video"]
    if args.source is not None:
        video["source_type"] = "file"
        video["source_path"] = args.source
    if args.camera_index is not None:
        video["source_type"] = "camera"
        video["camera_index"] = args.camera_index
    if args.screen:
        video["source_type"] = "screen"
    if args.interval is not None:
        video["processing_interval"] = args.interval
    if args.debug is not None:
        config["app"]["debug_mode"] = args.debug
    if args.gpu is not None:
        config["ocr"]["gpu"] = args.gpu
    return config


def resolve_gpu(requested: bool) -> bool:
    cuda_available = torch.cuda.is_available()
    logger.info("torch.__version__=%s torch.cuda.is_available()=%s", torch.__version__, cuda_available)
    if requested and not cuda_available:
        logger.warning("GPU requested but CUDA is unavailable. Falling back to gpu=False.")
        return False
    return requested


def build_sinks(config: dict[str, Any]) -> list[Any]:
    """Only a CSV open failure raises (CsvSinkError).

    A database that cannot connect at startup keeps its sink; every insert
    then runs the reconnect-and-retry path.
    """
    output = config["output"]
    sinks: list[Any] = []
    if bool(output.get("console_output", True)):
        sinks.append(ConsoleSink())
    if bool(output.get("csv_enabled", True)):
        sinks.append(CsvSink(str(output.get("csv_file", "live_vital_signs_output.csv"))))

    db_cfg = config["database"]
    if bool(db_cfg.get("enabled", False)):
        store = VitalSignStore(
            db_path=str(db_cfg.get("path", "data/vital_signs.sqlite")),
            retry_attempts=int(db_cfg.get("retry_attempts", 3)),
            retry_delay_ms=int(db_cfg.get("retry_delay_ms", 1000)),
            timeout=float(db_cfg.get("connection_timeout", 30)),
        )
        if not (store.connect() or store.reconnect()):
            logger.error("database unavailable at startup; inserts will keep retrying the connection")
        sinks.append(DatabaseSink(store, float(config["monitoring"].get("health_check_interval_sec", 60))))
    return sinks


def run(config: dict[str, Any]) -> int:
    app_cfg = config["app"]
    video_cfg = config["video"]
    ocr_cfg = config["ocr"]
    vital_cfg = config["vital_signs"]
    debug = bool(app_cfg.get("debug_mode", False))
    logger.info("%s %s starting", app_cfg.get("name"), app_cfg.get("version"))

    use_gpu = resolve_gpu(bool(ocr_cfg.get("gpu", False)))
    try:
        ocr = EasyOcrEngine(languages=list(ocr_cfg.get("languages", ["en"])), gpu=use_gpu)
    except OcrInitError as exc:
        logger.critical("%s", exc)
        return EXIT_FATAL

    try:
        sinks = build_sinks(config)
    except CsvSinkError as exc:
        logger.critical("%s", exc)
        return EXIT_FATAL
    fanout = VitalFanout(sinks)

    fallback = FallbackState(
        last_valid_spo2=str(vital_cfg.get("default_spo2", "81")),
        history_size=int(vital_cfg.get("spo2_history_size", 10)),
    )
    pipeline = VitalPipeline(
        ocr=ocr,
        validator=VitalValidator(fallback, validation_ranges(vital_cfg)),
        classification=build_classification(config["ml_model"], use_gpu=use_gpu, debug=debug),
        labels=[str(v) for v in vital_cfg.get("labels", ["HR", "SpO2", "ABP"])],
        confidence_threshold=float(ocr_cfg.get("confidence_threshold", 50)),
        plain_numbers=bool(ocr_cfg.get("plain_numbers_as_candidates", True)),
    )

    source = ResilientSource(
        build_source(video_cfg),
        ReconnectState(
            "video source",
            max_attempts=int(video_cfg.get("reconnect_attempts", 5)),
            delay_ms=int(video_cfg.get("reconnect_delay_ms", 2000)),
        ),
    )

    stop_event = threading.Event()
    install_signal_handlers(stop_event)
    loop = CaptureLoop(
        source=source,
        pipeline=pipeline,
        fanout=fanout,
        interval=int(video_cfg.get("processing_interval", 300)),
        stop_event=stop_event,
        poll_key=(lambda: cv2.waitKey(1) & 0xFF) if debug else None,
        metrics_enabled=bool(config["monitoring"].get("metrics_enabled", True)),
    )
    try:
        exit_code = loop.run()
    finally:
        if debug:
            cv2.destroyAllWindows()

    output = config["output"]
    if bool(output.get("csv_enabled", True)):
        logger.info("data saved to %s", output.get("csv_file"))
    return exit_code


def main() -> int:
    parser = argparse.ArgumentParser(description="Extract vital signs from a patient-monitor video feed")
    parser.add_argument("--config", default="vital_capture_config.json")
    parser.add_argument("--source", default=None, help="video file path (overrides config)")
    parser.add_argument("--camera-index", type=int, default=None)
    parser.add_argument("--screen", action="store_true", help="grab the screen monitor instead of a video")
    parser.add_argument("--interval", type=int, default=None, help="process every Nth frame")
    parser.add_argument("--debug", type=parse_bool, default=None)
    parser.add_argument("--gpu", type=parse_bool, default=None)
    args = parser.parse_args()

    config = apply_overrides(ensure_config(Path(args.config)), args)
    configure_logging(config["logging"])
    return run(config)


if __name__ == "__main__":
    raise SystemExit(main())
