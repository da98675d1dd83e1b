#!/usr/bin/env python3
"""Output sinks for validated records and the fan-out that isolates them."""

from __future__ import annotations

import csv
import logging
import sys
import time
from pathlib import Path
from typing import Any, Callable, TextIO

from vital_parser import VitalRecord
from vital_store import VitalSignStore

logger = logging.getLogger(__name__)

CSV_HEADER = ["Time", "HR", "SpO2", "ABP", "ECG_Classification", "ECG_Confidence"]


def format_console_line(record: VitalRecord) -> str:
    row = record.to_dict()
    return (
        f"Time: {row['timestamp']} | HR: {row['HR']} | SpO₂: {row['SpO2']} | ABP: {row['ABP']}"
        f" | ECG: {row['classification']} ({row['confidence']:.3f})"
    )


class ConsoleSink:
    name = "console"

    def __init__(self, stream: TextIO | None = None):
        self.stream = stream

    def write(self, record: VitalRecord) -> None:
        print(format_console_line(record), file=self.stream or sys.stdout, flush=True)

    def close(self) -> None:
        pass


class CsvSinkError(OSError):
    pass


class CsvSink:
    """Append one row per record. The header is written once, when the file is new or empty."""

    name = "csv"

    def __init__(self, path: str | Path):
        self.path = Path(path)
        try:
            if str(self.path.parent) not in {".", ""}:
                self.path.parent.mkdir(parents=True, exist_ok=True)
            new_file = not self.path.exists() or self.path.stat().st_size == 0
            self._fh = self.path.open("a", encoding="utf-8", newline="")
            self._writer = csv.writer(self._fh)
            if new_file:
                self._writer.writerow(CSV_HEADER)
                self._fh.flush()
        except OSError as exc:
            raise CsvSinkError(f"unable to open CSV output {self.path}: {exc}") from exc
        logger.info("csv output: %s", self.path)

    def write(self, record: VitalRecord) -> None:
        row = record.to_dict()
        self._writer.writerow(
            [row["timestamp"], row["HR"], row["SpO2"], row["ABP"], row["classification"], f"{row['confidence']:.5f}"]
        )
        self._fh.flush()

    def close(self) -> None:
        if not self._fh.closed:
            self._fh.flush()
            self._fh.close()


class DatabaseSinkError(RuntimeError):
    pass


class DatabaseSink:
    """Insert with one reconnect sequence and a single retry on failure."""

    name = "database"

    def __init__(
        self,
        store: VitalSignStore,
        health_check_interval_sec: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.store = store
        self.health_check_interval_sec = float(health_check_interval_sec)
        self.clock = clock
        self._last_health_check = clock()

    def write(self, record: VitalRecord) -> None:
        if self.store.insert_vital_sign(record):
            return
        logger.warning("database insert failed; reconnecting before one retry")
        if not self.store.reconnect():
            raise DatabaseSinkError("database reconnect failed; record dropped from database")
        if not self.store.insert_vital_sign(record):
            raise DatabaseSinkError("database insert retry failed; record dropped from database")
        logger.info("database insert succeeded on retry")

    def maintain(self) -> None:
        if self.health_check_interval_sec <= 0:
            return
        now = self.clock()
        if now - self._last_health_check < self.health_check_interval_sec:
            return
        self._last_health_check = now
        if self.store.health_check():
            logger.debug("database health check ok")
            return
        logger.warning("database health check failed; reconnecting")
        self.store.reconnect()

    def close(self) -> None:
        self.store.disconnect()


class VitalFanout:
    """Deliver each record to every sink; one sink failing never affects another."""

    def __init__(self, sinks: list[Any]):
        self.sinks = list(sinks)

    def dispatch(self, record: VitalRecord) -> list[str]:
        failed: list[str] = []
        for sink in self.sinks:
            try:
                sink.write(record)
            except Exception as exc:  # noqa: BLE001
                logger.error("%s sink failed: %s", sink.name, exc)
                failed.append(sink.name)
        return failed

    def maintain(self) -> None:
        for sink in self.sinks:
            hook = getattr(sink, "maintain", None)
            if hook is None:
                continue
            try:
                hook()
            except Exception as exc:  # noqa: BLE001
                logger.warning("%s sink maintenance failed: %s", sink.name, exc)

    def close(self) -> None:
        for sink in self.sinks:
            try:
                sink.close()
            except Exception as exc:  # noqa: BLE001
                logger.warning("%s sink close failed: %s", sink.name, exc)
        logger.info("all sinks closed")
