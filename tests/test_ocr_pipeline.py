"""easyocr adapter and the per-frame pipeline, using a fake reader."""

from __future__ import annotations

import sys
import unittest
from datetime import datetime
from pathlib import Path

import numpy as np

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from ecg_classifier import EcgClassification, Prediction  # noqa: E402
from ocr_engine import EasyOcrEngine, box_from_points, tokens_from_results  # noqa: E402
from vital_parser import Box, FallbackState, VitalValidator  # noqa: E402
from vital_pipeline import VitalPipeline  # noqa: E402


def quad(x: int, y: int, w: int = 20, h: int = 10) -> list[list[int]]:
    return [[x, y], [x + w, y], [x + w, y + h], [x, y + h]]


MONITOR_RESULTS = [
    (quad(0, 0), "HR", 0.95),
    (quad(2, 1), "72", 0.90),
    (quad(50, 0), "SpO2", 0.88),
    (quad(52, 2), "97", 0.91),
    (quad(100, 0), "ABP", 0.93),
    (quad(101, 1), "120/80", 0.87),
    (quad(300, 300), "", 0.99),
]


class FakeReader:
    def __init__(self, results):
        self.results = results
        self.calls: list[dict] = []

    def readtext(self, frame, **kwargs):
        self.calls.append(kwargs)
        return self.results


class OcrEngineTests(unittest.TestCase):
    def test_box_from_points(self) -> None:
        self.assertEqual(box_from_points([[10.4, 5], [30, 5.2], [30.6, 15], [10, 14.8]]), Box(10, 5, 21, 10))

    def test_confidence_scaled_and_empty_text_skipped(self) -> None:
        tokens = tokens_from_results(MONITOR_RESULTS)
        self.assertEqual(len(tokens), 6)
        self.assertAlmostEqual(tokens[0].confidence, 95.0)
        self.assertEqual(tokens[5].position, (101, 1))

    def test_recognize_uses_detailed_readtext(self) -> None:
        reader = FakeReader(MONITOR_RESULTS[:1])
        engine = EasyOcrEngine(reader=reader)
        tokens = engine.recognize(np.zeros((8, 8, 3), dtype=np.uint8))
        self.assertEqual([t.text for t in tokens], ["HR"])
        self.assertEqual(reader.calls, [{"detail": 1, "paragraph": False}])


class FakeModel:
    def infer(self, features):
        return [Prediction("normal", 0.8), Prediction("abnormal", 0.2)], 0.4


class VitalPipelineTests(unittest.TestCase):
    def make_pipeline(self, results, model=None) -> VitalPipeline:
        return VitalPipeline(
            ocr=EasyOcrEngine(reader=FakeReader(results)),
            validator=VitalValidator(FallbackState(last_valid_spo2="81")),
            classification=EcgClassification(model, 16, 16),
            clock=lambda: datetime(2026, 3, 4, 5, 6, 7),
        )

    def test_monitor_frame_produces_classified_record(self) -> None:
        pipeline = self.make_pipeline(MONITOR_RESULTS, FakeModel())
        record = pipeline(np.zeros((64, 128, 3), dtype=np.uint8))
        self.assertEqual(
            record.to_dict(),
            {
                "timestamp": "2026-03-04 05:06:07",
                "HR": "72",
                "SpO2": "97",
                "ABP": "120/80",
                "classification": "normal",
                "confidence": 0.8,
            },
        )

    def test_low_confidence_bp_zeroes_record(self) -> None:
        results = [r if r[1] != "120/80" else (r[0], r[1], 0.3) for r in MONITOR_RESULTS]
        record = self.make_pipeline(results)(np.zeros((64, 128, 3), dtype=np.uint8))
        self.assertEqual((record.hr, record.spo2, record.abp), ("0", "0", "0"))
        self.assertEqual((record.classification, record.confidence), ("unknown", 0.0))


if __name__ == "__main__":
    unittest.main()
