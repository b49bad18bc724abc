# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.

import hashlib
import threading
from contextlib import contextmanager
from typing import Iterator, Set

from framesense_pipeline.exceptions import DuplicateInFlightError
from framesense_pipeline.utils.logger import logger


def request_fingerprint(user_id: str, question: str, has_image: bool) -> str:
    material = f"{user_id}\x1f{question.strip()}\x1f{int(has_image)}"
    return hashlib.sha256(material.encode("utf-8")).hexdigest()


class InFlightRegistry:
    """
    Set of request fingerprints currently being processed.

    A second request with the same fingerprint is rejected, not queued.
    Insert and remove happen under one lock, and `acquire` never awaits, so
    two interleaved coroutines cannot both acquire the same key.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._keys: Set[str] = set()

    def acquire(self, key: str) -> None:
        with self._lock:
            if key in self._keys:
                logger.warning(f"Duplicate request in flight: {key[:12]}")
                raise DuplicateInFlightError("An identical request is already being processed")
            self._keys.add(key)

    def release(self, key: str) -> None:
        with self._lock:
            self._keys.discard(key)

    @contextmanager
    def track(self, key: str) -> Iterator[str]:
        self.acquire(key)
        try:
            yield key
        finally:
            self.release(key)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._keys

    def __len__(self) -> int:
        with self._lock:
            return len(self._keys)
