# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.

import threading
import time
from collections import defaultdict, deque
from typing import Callable, Deque, Dict, Optional

from framesense_pipeline.models import ServiceKind
from framesense_pipeline.utils.logger import logger

FAILURE_THRESHOLD = 3
FAILURE_WINDOW_SECONDS = 60
COOLDOWN_PERIOD_SECONDS = 300


class ServiceHealthMonitor:
    """
    Circuit breaker over analysis services.

    More than FAILURE_THRESHOLD failures inside the rolling window open the
    circuit for COOLDOWN_PERIOD_SECONDS. A success closes it and clears the window.
    """

    def __init__(
        self,
        failure_threshold: int = FAILURE_THRESHOLD,
        window_seconds: float = FAILURE_WINDOW_SECONDS,
        cooldown_seconds: float = COOLDOWN_PERIOD_SECONDS,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        self.failure_threshold = failure_threshold
        self.window_seconds = window_seconds
        self.cooldown_seconds = cooldown_seconds
        self._clock = clock or time.monotonic
        self._lock = threading.Lock()
        self._failures: Dict[ServiceKind, Deque[float]] = defaultdict(deque)
        self._open_until: Dict[ServiceKind, float] = {}

    def record_failure(self, service: ServiceKind) -> None:
        with self._lock:
            now = self._clock()
            window = self._failures[service]
            while window and now - window[0] > self.window_seconds:
                window.popleft()
            window.append(now)

            if len(window) > self.failure_threshold and service not in self._open_until:
                self._open_until[service] = now + self.cooldown_seconds
                logger.warning(
                    f"Circuit opened for {service.value}: {len(window)} failures in {self.window_seconds}s"
                )

    def record_success(self, service: ServiceKind) -> None:
        with self._lock:
            self._failures.pop(service, None)
            if self._open_until.pop(service, None) is not None:
                logger.info(f"Circuit closed for {service.value}")

    def is_available(self, service: ServiceKind) -> bool:
        with self._lock:
            until = self._open_until.get(service)
            if until is None:
                return True
            if self._clock() < until:
                return False
            # Half-open: let the next call through, it decides the state
            del self._open_until[service]
            self._failures.pop(service, None)
            return True

    def snapshot(self) -> Dict[str, str]:
        with self._lock:
            now = self._clock()
            return {
                service.value: ("open" if until > now else "half-open")
                for service, until in self._open_until.items()
            }
