#!/usr/bin/env python3
"""Sampling loop: pull frames, run the pipeline every Nth frame, stop cleanly."""

from __future__ import annotations

import logging
import signal
import threading
from dataclasses import asdict, dataclass
from typing import Any, Callable

from video_source import is_empty_frame

logger = logging.getLogger(__name__)

RUNNING = "RUNNING"
STOPPED = "STOPPED"

EXIT_OK = 0
EXIT_FATAL = 1

QUIT_KEYS = {ord("q"), ord("Q")}


@dataclass
class LoopStats:
    frames_read: int = 0
    frames_sampled: int = 0
    empty_frames: int = 0
    reconnects: int = 0
    pipeline_errors: int = 0


def install_signal_handlers(stop_event: threading.Event) -> None:
    """SIGINT/SIGTERM only set the event; the loop notices it on its next iteration."""

    def _handle_signal(signum, _frame) -> None:
        stop_event.set()
        logger.info("received signal %s, stopping after current frame", signum)

    for signum in (signal.SIGINT, signal.SIGTERM):
        try:
            signal.signal(signum, _handle_signal)
        except (ValueError, OSError) as exc:
            logger.warning("could not install handler for signal %s: %s", signum, exc)


class CaptureLoop:
    def __init__(
        self,
        source: Any,
        pipeline: Callable[[Any], Any],
        fanout: Any,
        interval: int = 300,
        stop_event: threading.Event | None = None,
        poll_key: Callable[[], int] | None = None,
        metrics_enabled: bool = True,
    ):
        self.source = source
        self.pipeline = pipeline
        self.fanout = fanout
        self.interval = max(int(interval), 1)
        self.stop_event = stop_event or threading.Event()
        self.poll_key = poll_key
        self.metrics_enabled = metrics_enabled
        self.state = STOPPED
        self.stop_cause = ""
        self.stats = LoopStats()

    def stop(self, cause: str) -> None:
        if self.state == RUNNING:
            self.state = STOPPED
            self.stop_cause = cause

    def run(self) -> int:
        exit_code = EXIT_OK
        self.state = RUNNING
        frame_count = 0
        try:
            if not self.source.open():
                logger.critical("video source unavailable at startup")
                self.stop("video source unavailable")
                return EXIT_FATAL

            while self.state == RUNNING:
                if self.stop_event.is_set():
                    self.stop("shutdown signal")
                    break

                frame = self.source.read()
                if is_empty_frame(frame):
                    if getattr(self.source, "end_of_stream", False):
                        logger.info("video stream finished")
                        self.stop("end of stream")
                        break
                    self.stats.empty_frames += 1
                    logger.warning("empty frame received; reconnecting video source")
                    if not self.source.recover():
                        logger.critical("video source exhausted its reconnect attempts")
                        self.stop("video source exhausted")
                        exit_code = EXIT_FATAL
                        break
                    self.stats.reconnects += 1
                    continue

                self.stats.frames_read += 1
                if frame_count % self.interval == 0:
                    self._sample(frame)

                self.fanout.maintain()

                if self.poll_key is not None and self.poll_key() in QUIT_KEYS:
                    logger.info("quit key pressed")
                    self.stop("user quit")
                    break

                frame_count += 1
        finally:
            self.stop(self.stop_cause or "loop exited")
            self._shutdown()
        return exit_code

    def _sample(self, frame: Any) -> None:
        self.stats.frames_sampled += 1
        try:
            record = self.pipeline(frame)
        except Exception as exc:  # noqa: BLE001
            self.stats.pipeline_errors += 1
            logger.exception("frame skipped due to error: %s", exc)
            return
        self.fanout.dispatch(record)

    def _shutdown(self) -> None:
        logger.info("capture loop stopped: %s", self.stop_cause)
        self.fanout.close()
        try:
            self.source.release()
        except Exception as exc:  # noqa: BLE001
            logger.warning("video source release failed: %s", exc)
        if self.metrics_enabled:
            logger.info("loop stats %s", asdict(self.stats))
