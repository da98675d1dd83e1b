#!/usr/bin/env python3
"""easyocr adapter producing position-tagged tokens for one frame."""

from __future__ import annotations

import logging
from typing import Any, Sequence

import numpy as np

from vital_parser import Box, Token

logger = logging.getLogger(__name__)


class OcrInitError(RuntimeError):
    pass


def box_from_points(points: Sequence[Sequence[float]]) -> Box:
    xs = [float(p[0]) for p in points]
    ys = [float(p[1]) for p in points]
    x1, y1 = int(round(min(xs))), int(round(min(ys)))
    x2, y2 = int(round(max(xs))), int(round(max(ys)))
    return Box(x=x1, y=y1, w=max(x2 - x1, 0), h=max(y2 - y1, 0))


def tokens_from_results(results: Sequence[Any]) -> list[Token]:
    """Convert ``readtext(detail=1)`` triples; easyocr scores 0..1, tokens carry 0..100."""
    tokens: list[Token] = []
    for points, text, conf in results:
        if not text:
            continue
        tokens.append(Token(text=str(text), box=box_from_points(points), confidence=float(conf) * 100.0))
    return tokens


class EasyOcrEngine:
    def __init__(self, languages: list[str] | None = None, gpu: bool = False, reader: Any = None):
        if reader is None:
            try:
                import easyocr

                reader = easyocr.Reader(list(languages or ["en"]), gpu=gpu)
            except Exception as exc:  # noqa: BLE001
                raise OcrInitError(f"could not initialize easyocr: {exc}") from exc
        self.reader = reader
        logger.info("OCR ready languages=%s gpu=%s", languages or ["en"], gpu)

    def recognize(self, frame: np.ndarray) -> list[Token]:
        results = self.reader.readtext(frame, detail=1, paragraph=False)
        return tokens_from_results(results)
