#!/usr/bin/env python3
"""sqlite storage for validated vital-sign records."""

from __future__ import annotations

import logging
import sqlite3
import time
from pathlib import Path
from typing import Any, Callable

from resilience import ReconnectState, reconnect
from vital_parser import VitalRecord

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS vital_signs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    timestamp TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
    hr TEXT,
    spo2 TEXT,
    abp TEXT,
    ecg_classification TEXT,
    ecg_confidence REAL,
    created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
);
CREATE INDEX IF NOT EXISTS idx_vital_signs_timestamp ON vital_signs(timestamp);
CREATE INDEX IF NOT EXISTS idx_vital_signs_created_at ON vital_signs(created_at);
"""

INSERT_SQL = (
    "INSERT INTO vital_signs (timestamp, hr, spo2, abp, ecg_classification, ecg_confidence) "
    "VALUES (?, ?, ?, ?, ?, ?)"
)


class VitalSignStore:
    def __init__(
        self,
        db_path: str,
        retry_attempts: int = 3,
        retry_delay_ms: int = 1000,
        timeout: float = 30.0,
        connect: Callable[..., Any] | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.db_path = str(db_path)
        self.timeout = float(timeout)
        self.state = ReconnectState("database", max_attempts=int(retry_attempts), delay_ms=int(retry_delay_ms))
        self._connect = connect or sqlite3.connect
        self._sleep = sleep
        self._conn: Any = None

    def connect(self) -> bool:
        if self._conn is not None:
            return True
        try:
            if self.db_path != ":memory:":
                parent = Path(self.db_path).parent
                if str(parent) not in {".", ""}:
                    parent.mkdir(parents=True, exist_ok=True)
            self._conn = self._connect(self.db_path, timeout=self.timeout)
            self.create_tables()
        except (sqlite3.Error, OSError) as exc:
            logger.error("database connection failed: %s", exc)
            self.disconnect()
            return False
        logger.info("database connected: %s", self.db_path)
        return True

    def disconnect(self) -> None:
        if self._conn is None:
            return
        try:
            self._conn.close()
        except sqlite3.Error as exc:
            logger.warning("database close failed: %s", exc)
        self._conn = None
        logger.info("database disconnected")

    def is_connected(self) -> bool:
        return self._conn is not None

    def create_tables(self) -> None:
        self._conn.executescript(SCHEMA)
        self._conn.commit()

    def insert_vital_sign(self, record: VitalRecord) -> bool:
        if not self.is_connected():
            logger.error("cannot insert: database not connected")
            return False
        row = record.to_dict()
        try:
            self._conn.execute(
                INSERT_SQL,
                (row["timestamp"], row["HR"], row["SpO2"], row["ABP"], row["classification"], row["confidence"]),
            )
            self._conn.commit()
        except sqlite3.Error as exc:
            logger.error("insert failed: %s", exc)
            return False
        logger.debug("vital sign row inserted ts=%s", row["timestamp"])
        return True

    def get_recent_vital_signs(self, limit: int = 10) -> list[dict[str, Any]]:
        if not self.is_connected():
            return []
        try:
            cursor = self._conn.execute(
                "SELECT timestamp, hr, spo2, abp, ecg_classification, ecg_confidence "
                "FROM vital_signs ORDER BY timestamp DESC, id DESC LIMIT ?",
                (int(limit),),
            )
            rows = cursor.fetchall()
        except sqlite3.Error as exc:
            logger.error("query failed: %s", exc)
            return []
        keys = ("timestamp", "hr", "spo2", "abp", "ecg_classification", "ecg_confidence")
        return [dict(zip(keys, row)) for row in rows]

    def health_check(self) -> bool:
        if not self.is_connected():
            return False
        try:
            self._conn.execute("SELECT 1").fetchone()
        except sqlite3.Error as exc:
            logger.warning("database health check failed: %s", exc)
            return False
        return True

    def reconnect(self) -> bool:
        return reconnect(self.state, self.connect, self.disconnect, sleep=self._sleep)
