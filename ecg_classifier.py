#!/usr/bin/env python3
"""
ECG waveform classification attached to each sampled record.

The frame is cover-scaled and centre-cropped to the model input size, each
pixel is packed as a single ``0xRRGGBB`` value, and a TorchScript model
scores the vector. Classification can never block a record: any failure
yields the ``unknown`` placeholder.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Sequence

import cv2
import numpy as np

from vital_parser import UNKNOWN_CLASSIFICATION, VitalRecord

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Prediction:
    label: str
    confidence: float


@dataclass(frozen=True)
class ClassificationResult:
    label: str
    confidence: float
    timing_ms: float = 0.0


PLACEHOLDER = ClassificationResult(UNKNOWN_CLASSIFICATION, 0.0)


class ClassifierError(RuntimeError):
    pass


def resize_and_crop(frame: np.ndarray, width: int, height: int) -> np.ndarray:
    """Scale so the target box is fully covered, then crop the centre."""
    in_h, in_w = frame.shape[:2]
    factor = max(width / float(in_w), height / float(in_h))
    resized_w = max(int(factor * in_w), width)
    resized_h = max(int(factor * in_h), height)
    resized = cv2.resize(frame, (resized_w, resized_h))
    crop_x = (resized_w - width) // 2
    crop_y = (resized_h - height) // 2
    return resized[crop_y : crop_y + height, crop_x : crop_x + width]


def pack_features(image: np.ndarray) -> np.ndarray:
    """Pack a BGR image into one float per pixel, row-major."""
    pixels = image.reshape(-1, 3).astype(np.uint32)
    b, g, r = pixels[:, 0], pixels[:, 1], pixels[:, 2]
    return ((r << 16) + (g << 8) + b).astype(np.float32)


def select_best(predictions: Sequence[Prediction]) -> Prediction | None:
    best: Prediction | None = None
    for prediction in predictions:
        # ties keep the earliest maximum
        if best is None or prediction.confidence > best.confidence:
            best = prediction
    return best


class TorchScriptClassifier:
    def __init__(self, model_path: str, labels: list[str], apply_softmax: bool = True, use_gpu: bool = False):
        path = Path(model_path)
        if not model_path or not path.is_file():
            raise ClassifierError(f"Model file not found: {model_path}")

        import torch

        self._torch = torch
        self.device = torch.device("cuda" if use_gpu and torch.cuda.is_available() else "cpu")
        self.model = torch.jit.load(str(path), map_location=self.device)
        self.model.eval()
        self.labels = list(labels)
        self.apply_softmax = bool(apply_softmax)
        logger.info("classifier loaded: %s device=%s labels=%s", path, self.device, self.labels)

    def infer(self, features: np.ndarray) -> tuple[list[Prediction], float]:
        torch = self._torch
        start = time.perf_counter()
        with torch.no_grad():
            tensor = torch.from_numpy(np.ascontiguousarray(features, dtype=np.float32)).unsqueeze(0).to(self.device)
            output = self.model(tensor)
            if self.apply_softmax:
                output = torch.softmax(output, dim=-1)
            scores = output.reshape(-1).cpu().tolist()
        timing_ms = (time.perf_counter() - start) * 1000.0
        if len(scores) != len(self.labels):
            raise ClassifierError(f"model returned {len(scores)} scores for {len(self.labels)} labels")
        return [Prediction(label, float(score)) for label, score in zip(self.labels, scores)], timing_ms


class EcgClassification:
    """Classification step of the pipeline. ``model`` may be None when disabled."""

    def __init__(
        self,
        model: Any = None,
        input_width: int = 96,
        input_height: int = 96,
        confidence_threshold: float = 0.7,
        debug_window: str | None = None,
    ):
        self.model = model
        self.input_width = int(input_width)
        self.input_height = int(input_height)
        self.confidence_threshold = float(confidence_threshold)
        self.debug_window = debug_window

    @property
    def enabled(self) -> bool:
        return self.model is not None

    def classify(self, frame: np.ndarray) -> ClassificationResult:
        if self.model is None:
            return PLACEHOLDER
        try:
            cropped = resize_and_crop(frame, self.input_width, self.input_height)
            if self.debug_window:
                cv2.imshow(self.debug_window, cropped)
            predictions, timing_ms = self.model.infer(pack_features(cropped))
        except Exception as exc:  # noqa: BLE001
            logger.error("classifier failed: %s", exc)
            return PLACEHOLDER

        best = select_best(predictions)
        if best is None:
            logger.error("classifier returned no predictions")
            return PLACEHOLDER
        logger.debug(
            "predictions (%.1f ms): %s",
            timing_ms,
            ", ".join(f"{p.label}={p.confidence:.5f}" for p in predictions),
        )
        if best.confidence < self.confidence_threshold:
            logger.debug("best label %s below threshold %.2f", best.label, self.confidence_threshold)
        return ClassificationResult(best.label, best.confidence, timing_ms)

    def augment(self, record: VitalRecord, frame: np.ndarray) -> VitalRecord:
        result = self.classify(frame)
        return record.with_classification(result.label, result.confidence)


def build_classification(ml_cfg: dict[str, Any], use_gpu: bool = False, debug: bool = False) -> EcgClassification:
    width = int(ml_cfg.get("input_width", 96))
    height = int(ml_cfg.get("input_height", 96))
    threshold = float(ml_cfg.get("confidence_threshold", 0.7))
    debug_window = "Classifier input" if debug else None
    if not bool(ml_cfg.get("enabled", True)):
        logger.info("ECG classification disabled")
        return EcgClassification(None, width, height, threshold)
    try:
        model = TorchScriptClassifier(
            model_path=str(ml_cfg.get("model_path", "")),
            labels=[str(v) for v in ml_cfg.get("labels", [])],
            apply_softmax=bool(ml_cfg.get("apply_softmax", True)),
            use_gpu=use_gpu,
        )
    except Exception as exc:  # noqa: BLE001
        logger.error("classifier unavailable, records will carry '%s': %s", UNKNOWN_CLASSIFICATION, exc)
        model = None
    return EcgClassification(model, width, height, threshold, debug_window)
