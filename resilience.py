#!/usr/bin/env python3
"""Bounded reconnect shared by the video source and the database."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable

logger = logging.getLogger(__name__)


@dataclass
class ReconnectState:
    resource: str
    max_attempts: int = 5
    delay_ms: int = 2000
    attempt: int = 0

    def reset(self) -> None:
        self.attempt = 0


def reconnect(
    state: ReconnectState,
    reopen: Callable[[], bool],
    release: Callable[[], None] | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> bool:
    """Release and reopen a resource up to ``state.max_attempts`` times.

    The delay is only slept between attempts. Returns False once every
    attempt failed; ``state.attempt`` then holds the number of tries made.
    """
    state.reset()
    logger.info("reconnecting %s (max_attempts=%s)", state.resource, state.max_attempts)
    while state.attempt < state.max_attempts:
        state.attempt += 1
        logger.info("%s reconnection attempt %s/%s", state.resource, state.attempt, state.max_attempts)
        if release is not None:
            try:
                release()
            except Exception as exc:  # noqa: BLE001
                logger.warning("%s release failed: %s", state.resource, exc)
        try:
            ok = bool(reopen())
        except Exception as exc:  # noqa: BLE001
            logger.warning("%s reopen raised: %s", state.resource, exc)
            ok = False
        if ok:
            logger.info("%s reconnected after %s attempt(s)", state.resource, state.attempt)
            state.reset()
            return True
        if state.attempt < state.max_attempts:
            logger.warning("%s reconnection failed, waiting %s ms", state.resource, state.delay_ms)
            sleep(state.delay_ms / 1000.0)

    logger.error("%s could not be reconnected after %s attempts", state.resource, state.max_attempts)
    return False
