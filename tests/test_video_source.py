"""Bounded reconnect and the OpenCV/mss source wrappers, driven by fake handles."""

from __future__ import annotations

import sys
import threading
import unittest
from pathlib import Path

import cv2
import numpy as np

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from capture_loop import EXIT_OK, CaptureLoop  # noqa: E402
from resilience import ReconnectState, reconnect  # noqa: E402
from video_source import ResilientSource, ScreenSource, VideoSource, build_source, is_empty_frame  # noqa: E402

FRAME = np.zeros((4, 4, 3), dtype=np.uint8)


class FakeCapture:
    def __init__(self, opened: bool = True, frames: list | None = None, frame_count: int | None = None):
        self.opened = opened
        self.frames = list(frames or [])
        self.frame_count = len(self.frames) if frame_count is None else frame_count
        self.position = 0
        self.props: list[tuple] = []
        self.released = False

    def isOpened(self) -> bool:
        return self.opened

    def read(self):
        if not self.frames:
            return False, None
        frame = self.frames.pop(0)
        if frame is not None:
            self.position += 1
        return frame is not None, frame

    def get(self, prop) -> float:
        if prop == cv2.CAP_PROP_FRAME_COUNT:
            return float(self.frame_count)
        if prop == cv2.CAP_PROP_POS_FRAMES:
            return float(self.position)
        return 0.0

    def set(self, prop, value) -> bool:
        self.props.append((prop, value))
        return True

    def release(self) -> None:
        self.released = True


class FakeOpener:
    def __init__(self, captures: list[FakeCapture]):
        self.captures = list(captures)
        self.targets: list = []

    def __call__(self, target):
        self.targets.append(target)
        return self.captures.pop(0)


class ReconnectTests(unittest.TestCase):
    def test_succeeds_after_failed_attempts(self) -> None:
        outcomes = [False, False, True]
        sleeps: list[float] = []
        releases: list[int] = []
        state = ReconnectState("video source", max_attempts=5, delay_ms=2000)

        ok = reconnect(state, lambda: outcomes.pop(0), lambda: releases.append(1), sleep=sleeps.append)

        self.assertTrue(ok)
        self.assertEqual(sleeps, [2.0, 2.0])
        self.assertEqual(len(releases), 3)
        self.assertEqual(state.attempt, 0)

    def test_exhaustion_reports_failure(self) -> None:
        sleeps: list[float] = []
        state = ReconnectState("database", max_attempts=3, delay_ms=1000)
        with self.assertLogs("resilience", level="ERROR"):
            ok = reconnect(state, lambda: False, sleep=sleeps.append)
        self.assertFalse(ok)
        self.assertEqual(state.attempt, 3)
        self.assertEqual(sleeps, [1.0, 1.0])

    def test_reopen_exception_counts_as_failed_attempt(self) -> None:
        calls = {"n": 0}

        def reopen() -> bool:
            calls["n"] += 1
            if calls["n"] == 1:
                raise RuntimeError("device busy")
            return True

        state = ReconnectState("camera", max_attempts=2, delay_ms=0)
        self.assertTrue(reconnect(state, reopen, sleep=lambda _s: None))
        self.assertEqual(calls["n"], 2)


class VideoSourceTests(unittest.TestCase):
    def test_file_source_reads_frames_until_eof(self) -> None:
        opener = FakeOpener([FakeCapture(frames=[FRAME])])
        source = VideoSource("file", "/data/monitor.mp4", opener=opener)
        self.assertTrue(source.open())
        self.assertEqual(opener.targets, ["/data/monitor.mp4"])
        self.assertIs(source.read(), FRAME)
        self.assertIsNone(source.read())

    def test_camera_source_sets_frame_size(self) -> None:
        capture = FakeCapture()
        source = VideoSource("camera", camera_index=2, frame_width=320, frame_height=240, opener=FakeOpener([capture]))
        self.assertTrue(source.open())
        self.assertEqual([value for _prop, value in capture.props], [320, 240])

    def test_unopened_capture_is_released(self) -> None:
        capture = FakeCapture(opened=False)
        source = VideoSource("file", "missing.mp4", opener=FakeOpener([capture]))
        self.assertFalse(source.open())
        self.assertTrue(capture.released)
        self.assertIsNone(source.read())

    def test_unknown_source_type_rejected(self) -> None:
        with self.assertRaises(ValueError):
            VideoSource("rtsp")

    def test_build_source_selects_screen(self) -> None:
        self.assertIsInstance(build_source({"source_type": "screen"}), ScreenSource)
        self.assertIsInstance(build_source({"source_type": "camera", "camera_index": 1}), VideoSource)

    def test_end_of_file_marks_stream_finished(self) -> None:
        source = VideoSource("file", "clip.mp4", opener=FakeOpener([FakeCapture(frames=[FRAME, FRAME])]))
        source.open()
        source.read()
        source.read()
        self.assertFalse(source.end_of_stream)
        self.assertIsNone(source.read())
        self.assertTrue(source.end_of_stream)

    def test_mid_file_read_failure_is_not_end(self) -> None:
        capture = FakeCapture(frames=[FRAME, None], frame_count=100)
        source = VideoSource("file", "clip.mp4", opener=FakeOpener([capture]))
        source.open()
        source.read()
        self.assertIsNone(source.read())
        self.assertFalse(source.end_of_stream)

    def test_replay_and_camera_never_finish(self) -> None:
        replay = VideoSource("file", "clip.mp4", replay=True, opener=FakeOpener([FakeCapture()]))
        camera = VideoSource("camera", opener=FakeOpener([FakeCapture()]))
        for source in (replay, camera):
            source.open()
            self.assertIsNone(source.read())
            self.assertFalse(source.end_of_stream)

    def test_empty_frame_detection(self) -> None:
        self.assertTrue(is_empty_frame(None))
        self.assertTrue(is_empty_frame(np.zeros((0, 0, 3), dtype=np.uint8)))
        self.assertFalse(is_empty_frame(FRAME))


class ResilientSourceTests(unittest.TestCase):
    def test_reopens_after_empty_frames(self) -> None:
        first = FakeCapture(frames=[FRAME, None, None, None])
        failed = [FakeCapture(opened=False), FakeCapture(opened=False)]
        second = FakeCapture(frames=[FRAME])
        opener = FakeOpener([first, *failed, second])
        sleeps: list[float] = []
        source = ResilientSource(
            VideoSource("file", "clip.mp4", opener=opener),
            ReconnectState("video source", max_attempts=5, delay_ms=10),
            sleep=sleeps.append,
        )

        self.assertTrue(source.open())
        self.assertIs(source.read(), FRAME)
        self.assertIsNone(source.read())
        self.assertTrue(source.recover())
        self.assertTrue(first.released)
        self.assertEqual(len(sleeps), 2)
        self.assertIs(source.read(), FRAME)

    def test_open_falls_back_to_reconnect(self) -> None:
        opener = FakeOpener([FakeCapture(opened=False)] * 3)
        source = ResilientSource(
            VideoSource("file", "gone.mp4", opener=opener),
            ReconnectState("video source", max_attempts=2, delay_ms=0),
            sleep=lambda _s: None,
        )
        self.assertFalse(source.open())
        self.assertEqual(len(opener.targets), 3)


class ScreenSourceTests(unittest.TestCase):
    def test_invalid_monitor_index_falls_back_to_first(self) -> None:
        class FakeMss:
            monitors = [
                {"left": 0, "top": 0, "width": 3840, "height": 1080},
                {"left": 0, "top": 0, "width": 1920, "height": 1080},
            ]

            def close(self) -> None:
                pass

        source = ScreenSource(monitor_index=4, factory=FakeMss)
        self.assertTrue(source.open())
        self.assertEqual((source.region.width, source.region.height), (1920, 1080))
        source.release()
        self.assertIsNone(source.read())


class FileLoopTests(unittest.TestCase):
    def run_loop(self, source: ResilientSource, stop: threading.Event, limit: int) -> tuple[int, list[int]]:
        records: list[int] = []

        def pipeline(img: np.ndarray) -> int:
            records.append(int(img[0, 0, 0]))
            if len(records) >= limit:
                stop.set()
            return records[-1]

        loop = CaptureLoop(source, pipeline, RecordingFanout(), interval=1, stop_event=stop)
        return loop.run(), records

    def test_recorded_file_is_processed_once(self) -> None:
        frames = [np.full((2, 2, 3), tag, dtype=np.uint8) for tag in (1, 3, 5)]
        opener = FakeOpener([FakeCapture(frames=frames), FakeCapture(frames=frames)])
        source = ResilientSource(
            VideoSource("file", "clip.avi", opener=opener),
            ReconnectState("video source", max_attempts=5, delay_ms=0),
            sleep=lambda _s: None,
        )
        code, records = self.run_loop(source, threading.Event(), limit=100)
        self.assertEqual(code, EXIT_OK)
        self.assertEqual(records, [1, 3, 5])
        self.assertEqual(len(opener.targets), 1)

    def test_replay_reopens_file(self) -> None:
        frames = [np.full((2, 2, 3), tag, dtype=np.uint8) for tag in (1, 3)]
        opener = FakeOpener([FakeCapture(frames=list(frames)), FakeCapture(frames=list(frames))])
        source = ResilientSource(
            VideoSource("file", "clip.avi", replay=True, opener=opener),
            ReconnectState("video source", max_attempts=5, delay_ms=0),
            sleep=lambda _s: None,
        )
        code, records = self.run_loop(source, threading.Event(), limit=4)
        self.assertEqual(code, EXIT_OK)
        self.assertEqual(records, [1, 3, 1, 3])
        self.assertEqual(len(opener.targets), 2)


class RecordingFanout:
    def dispatch(self, record) -> list[str]:
        return []

    def maintain(self) -> None:
        pass

    def close(self) -> None:
        pass


if __name__ == "__main__":
    unittest.main()
