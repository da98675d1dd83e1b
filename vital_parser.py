#!/usr/bin/env python3
"""
Vital-sign extraction from OCR tokens.

Token roles are assigned per frame, each label is paired with its nearest
numeric token, and the resulting HR/SpO2/ABP triple is gated on the ABP
format with a persistent SpO2 fallback.
"""

from __future__ import annotations

import logging
import math
import re
from collections import deque
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Iterable

logger = logging.getLogger(__name__)

ROLE_UNASSIGNED = "unassigned"
ROLE_LABEL = "label"
ROLE_NUMBER = "number"
ROLE_IGNORED = "ignored"

VITAL_LABELS = ["HR", "SpO2", "ABP"]
SPO2_PATTERN = re.compile(r"\bsp[o0]2\b", re.IGNORECASE)
BP_PATTERN = re.compile(r"[0-9]{2,3}/[0-9]{2,3}")
PLAIN_NUMBER_PATTERN = re.compile(r"[0-9]{1,3}")
MISSING_VALUE = "0"
UNKNOWN_CLASSIFICATION = "unknown"


@dataclass(frozen=True)
class Box:
    x: int
    y: int
    w: int = 0
    h: int = 0


EMPTY_BOX = Box(-1, -1, -1, -1)


@dataclass(frozen=True)
class Token:
    """One OCR fragment. Confidence is on the 0..100 scale."""

    text: str
    box: Box
    confidence: float
    role: str = ROLE_UNASSIGNED

    @property
    def position(self) -> tuple[int, int]:
        return self.box.x, self.box.y


EMPTY_SLOT = Token(text="", box=EMPTY_BOX, confidence=0.0)


@dataclass
class ClassifiedTokens:
    slots: dict[str, Token]
    numbers: list[Token]


@dataclass(frozen=True)
class VitalRecord:
    timestamp: datetime
    hr: str
    spo2: str
    abp: str
    classification: str | None = None
    confidence: float | None = None

    def with_classification(self, label: str, confidence: float) -> "VitalRecord":
        return replace(self, classification=label, confidence=float(confidence))

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp.strftime("%Y-%m-%d %H:%M:%S"),
            "HR": self.hr,
            "SpO2": self.spo2,
            "ABP": self.abp,
            "classification": self.classification or UNKNOWN_CLASSIFICATION,
            "confidence": 0.0 if self.confidence is None else float(self.confidence),
        }


def _role_for(text: str, labels: list[str], plain_numbers: bool) -> tuple[str, str | None]:
    if SPO2_PATTERN.search(text):
        return ROLE_LABEL, "SpO2"
    if text in labels:
        return ROLE_LABEL, text
    if BP_PATTERN.fullmatch(text) or "/" in text:
        return ROLE_NUMBER, None
    if plain_numbers and PLAIN_NUMBER_PATTERN.fullmatch(text):
        return ROLE_NUMBER, None
    return ROLE_IGNORED, None


def classify_tokens(
    tokens: Iterable[Token],
    labels: list[str] | None = None,
    confidence_threshold: float = 50.0,
    plain_numbers: bool = True,
) -> ClassifiedTokens:
    """Assign a role to every token above the confidence threshold.

    Returns one slot per label (``EMPTY_SLOT`` when the label was not seen)
    and the number candidates in scan order. A label seen twice keeps the
    last occurrence.
    """
    labels = list(labels or VITAL_LABELS)
    slots: dict[str, Token] = {label: EMPTY_SLOT for label in labels}
    numbers: list[Token] = []

    for token in tokens:
        if not token.confidence > confidence_threshold:
            continue
        text = token.text.strip()
        role, label = _role_for(text, labels, plain_numbers)
        classified = replace(token, text=text, role=role)
        if role == ROLE_LABEL and label is not None:
            if label not in slots:
                continue
            slots[label] = classified
        elif role == ROLE_NUMBER:
            numbers.append(classified)

    return ClassifiedTokens(slots=slots, numbers=numbers)


def distance(a: tuple[int, int], b: tuple[int, int]) -> float:
    return math.hypot(a[0] - b[0], a[1] - b[1])


def find_closest_number(label: Token, numbers: list[Token]) -> str:
    if not numbers:
        return MISSING_VALUE

    closest = MISSING_VALUE
    best = math.inf
    for number in numbers:
        d = distance(label.position, number.position)
        # strict '<': the first candidate in scan order wins a tie
        if d < best:
            best = d
            closest = number.text
    return closest


def associate_labels(classified: ClassifiedTokens, labels: list[str] | None = None) -> dict[str, str]:
    """Pair every label with its nearest number candidate.

    Labels are matched independently, so one candidate may be claimed by
    more than one label.
    """
    labels = list(labels or classified.slots.keys())
    return {
        label: find_closest_number(classified.slots.get(label, EMPTY_SLOT), classified.numbers)
        for label in labels
    }


@dataclass
class FallbackState:
    last_valid_spo2: str = "81"
    history_size: int = 10
    history: deque[str] = field(default_factory=deque)

    def __post_init__(self) -> None:
        self.history = deque(self.history, maxlen=max(int(self.history_size), 1))

    def remember(self, spo2: str) -> None:
        self.last_valid_spo2 = spo2
        self.history.append(spo2)


DEFAULT_RANGES: dict[str, tuple[int, int]] = {
    "HR": (30, 200),
    "SpO2": (70, 100),
    "ABP_SYS": (70, 200),
    "ABP_DIA": (40, 130),
}


class VitalValidator:
    """ABP gate plus SpO2 fallback.

    ``ranges`` are only reported, never enforced: an out-of-range value is
    logged and left in the record.
    """

    def __init__(self, fallback: FallbackState | None = None, ranges: dict[str, tuple[int, int]] | None = None):
        self.fallback = fallback or FallbackState()
        self.ranges = dict(DEFAULT_RANGES)
        if ranges:
            self.ranges.update(ranges)

    def validate(self, values: dict[str, str], timestamp: datetime | None = None) -> VitalRecord:
        timestamp = timestamp or datetime.now()
        hr = values.get("HR", MISSING_VALUE)
        spo2 = values.get("SpO2", MISSING_VALUE)
        abp = values.get("ABP", MISSING_VALUE)

        if not BP_PATTERN.fullmatch(abp):
            logger.debug("ABP %r is malformed; zeroing record", abp)
            return VitalRecord(timestamp=timestamp, hr=MISSING_VALUE, spo2=MISSING_VALUE, abp=MISSING_VALUE)

        if spo2 == MISSING_VALUE or not spo2:
            spo2 = self.fallback.last_valid_spo2
            logger.debug("SpO2 missing; using fallback %s", spo2)
        else:
            self.fallback.remember(spo2)

        self._report_ranges(hr, spo2, abp)
        return VitalRecord(timestamp=timestamp, hr=hr, spo2=spo2, abp=abp)

    def _report_ranges(self, hr: str, spo2: str, abp: str) -> None:
        systolic, diastolic = abp.split("/")
        checks = [("HR", hr), ("SpO2", spo2), ("ABP_SYS", systolic), ("ABP_DIA", diastolic)]
        for name, raw in checks:
            bounds = self.ranges.get(name)
            if not bounds:
                continue
            try:
                value = int(raw)
            except ValueError:
                continue
            low, high = bounds
            if not low <= value <= high:
                logger.warning("%s=%s outside configured range %s-%s", name, raw, low, high)


def extract_vitals(
    tokens: Iterable[Token],
    validator: VitalValidator,
    labels: list[str] | None = None,
    confidence_threshold: float = 50.0,
    plain_numbers: bool = True,
    timestamp: datetime | None = None,
) -> VitalRecord:
    labels = list(labels or VITAL_LABELS)
    classified = classify_tokens(tokens, labels, confidence_threshold, plain_numbers)
    values = associate_labels(classified, labels)
    return validator.validate(values, timestamp=timestamp)
