#!/usr/bin/env python3
"""Frame sources: video file, camera device, or a screen monitor grabbed with mss."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable

import cv2
import mss
import numpy as np

from resilience import ReconnectState, reconnect

logger = logging.getLogger(__name__)

SOURCE_TYPES = ("file", "camera", "screen")


@dataclass
class CaptureRegion:
    left: int
    top: int
    width: int
    height: int


def is_empty_frame(frame: np.ndarray | None) -> bool:
    return frame is None or getattr(frame, "size", 0) == 0


def grab_frame(sct: mss.mss, region: CaptureRegion) -> np.ndarray:
    raw = sct.grab({"left": region.left, "top": region.top, "width": region.width, "height": region.height})
    return cv2.cvtColor(np.array(raw), cv2.COLOR_BGRA2BGR)


class VideoSource:
    """OpenCV capture handle for a video file or a camera index."""

    def __init__(
        self,
        source_type: str = "file",
        source_path: str = "",
        camera_index: int = 0,
        frame_width: int = 640,
        frame_height: int = 480,
        replay: bool = False,
        opener: Callable[[Any], Any] | None = None,
    ):
        if source_type not in ("file", "camera"):
            raise ValueError(f"Unsupported video source type: {source_type}")
        self.source_type = source_type
        self.source_path = source_path
        self.camera_index = int(camera_index)
        self.frame_width = int(frame_width)
        self.frame_height = int(frame_height)
        self.replay = bool(replay)
        self.opener = opener or cv2.VideoCapture
        self.cap: Any = None
        self.end_of_stream = False

    @property
    def target(self) -> str | int:
        return self.source_path if self.source_type == "file" else self.camera_index

    def open(self) -> bool:
        self.end_of_stream = False
        self.cap = self.opener(self.target)
        if self.cap is None or not self.cap.isOpened():
            logger.error("could not open video source %r", self.target)
            if self.cap is not None:
                self.cap.release()
            self.cap = None
            return False
        if self.source_type == "camera":
            self.cap.set(cv2.CAP_PROP_FRAME_WIDTH, self.frame_width)
            self.cap.set(cv2.CAP_PROP_FRAME_HEIGHT, self.frame_height)
        logger.info("video source opened: %s=%r", self.source_type, self.target)
        return True

    def read(self) -> np.ndarray | None:
        if self.cap is None:
            return None
        ok, frame = self.cap.read()
        if not ok or is_empty_frame(frame):
            if self.source_type == "file" and not self.replay and self._at_end():
                logger.info("end of video file %r", self.source_path)
                self.end_of_stream = True
            return None
        return frame

    def _at_end(self) -> bool:
        # containers that do not report a frame count are treated as finished
        total = self.cap.get(cv2.CAP_PROP_FRAME_COUNT)
        position = self.cap.get(cv2.CAP_PROP_POS_FRAMES)
        return total <= 0 or position >= total

    def release(self) -> None:
        if self.cap is not None:
            self.cap.release()
            self.cap = None


class ScreenSource:
    """Grab one mss monitor per read; index 1 is the first physical monitor."""

    end_of_stream = False

    def __init__(self, monitor_index: int = 1, factory: Callable[[], Any] | None = None):
        self.monitor_index = int(monitor_index)
        self.factory = factory or mss.mss
        self.sct: Any = None
        self.region: CaptureRegion | None = None

    def open(self) -> bool:
        try:
            self.sct = self.factory()
        except Exception as exc:  # noqa: BLE001
            logger.error("screen capture unavailable: %s", exc)
            self.sct = None
            return False
        monitor_count = len(self.sct.monitors) - 1
        if monitor_count <= 0:
            logger.error("no mss monitors available")
            self.release()
            return False
        selected = self.monitor_index
        if selected < 1 or selected > monitor_count:
            logger.warning("invalid screen monitor index=%s; fallback to 1", selected)
            selected = 1
        monitor = self.sct.monitors[selected]
        self.region = CaptureRegion(int(monitor["left"]), int(monitor["top"]), int(monitor["width"]), int(monitor["height"]))
        logger.info(
            "screen source opened: monitor=%s rect=(%s,%s,%s,%s)",
            selected,
            self.region.left,
            self.region.top,
            self.region.width,
            self.region.height,
        )
        return True

    def read(self) -> np.ndarray | None:
        if self.sct is None or self.region is None:
            return None
        try:
            frame = grab_frame(self.sct, self.region)
        except Exception as exc:  # noqa: BLE001
            logger.warning("screen grab failed: %s", exc)
            return None
        return None if is_empty_frame(frame) else frame

    def release(self) -> None:
        if self.sct is not None:
            self.sct.close()
            self.sct = None
        self.region = None


def build_source(video_cfg: dict[str, Any]) -> VideoSource | ScreenSource:
    source_type = str(video_cfg.get("source_type", "file")).strip().lower()
    if source_type == "screen":
        return ScreenSource(monitor_index=int(video_cfg.get("screen_monitor_index", 1)))
    return VideoSource(
        source_type=source_type,
        source_path=str(video_cfg.get("source_path", "")),
        camera_index=int(video_cfg.get("camera_index", 0)),
        frame_width=int(video_cfg.get("frame_width", 640)),
        frame_height=int(video_cfg.get("frame_height", 480)),
        replay=bool(video_cfg.get("replay_file", False)),
    )


class ResilientSource:
    """Wrap a source so that open failures and empty frames trigger a bounded reopen."""

    def __init__(self, source: Any, state: ReconnectState, sleep: Callable[[float], None] = time.sleep):
        self.source = source
        self.state = state
        self.sleep = sleep

    def open(self) -> bool:
        if self.source.open():
            return True
        return self.recover()

    @property
    def end_of_stream(self) -> bool:
        return bool(getattr(self.source, "end_of_stream", False))

    def recover(self) -> bool:
        return reconnect(self.state, self.source.open, self.source.release, sleep=self.sleep)

    def read(self) -> np.ndarray | None:
        return self.source.read()

    def release(self) -> None:
        self.source.release()
