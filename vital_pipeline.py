#!/usr/bin/env python3
"""One-frame pipeline: OCR tokens -> validated record -> ECG classification."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable

import numpy as np

from ecg_classifier import EcgClassification
from vital_parser import VITAL_LABELS, VitalRecord, VitalValidator, extract_vitals

logger = logging.getLogger(__name__)


class VitalPipeline:
    def __init__(
        self,
        ocr: Any,
        validator: VitalValidator,
        classification: EcgClassification,
        labels: list[str] | None = None,
        confidence_threshold: float = 50.0,
        plain_numbers: bool = True,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.ocr = ocr
        self.validator = validator
        self.classification = classification
        self.labels = list(labels or VITAL_LABELS)
        self.confidence_threshold = float(confidence_threshold)
        self.plain_numbers = bool(plain_numbers)
        self.clock = clock

    def __call__(self, frame: np.ndarray) -> VitalRecord:
        timestamp = self.clock()
        tokens = self.ocr.recognize(frame)
        logger.debug("ocr tokens=%s", len(tokens))
        record = extract_vitals(
            tokens,
            self.validator,
            labels=self.labels,
            confidence_threshold=self.confidence_threshold,
            plain_numbers=self.plain_numbers,
            timestamp=timestamp,
        )
        return self.classification.augment(record, frame)
