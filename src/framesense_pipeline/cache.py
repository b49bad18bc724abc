# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.

import base64
import copy
import gzip
import hashlib
import json
import re
import threading
import time
from collections import OrderedDict
from typing import Any, Callable, Dict, List, Optional

from pydantic import BaseModel

from framesense_pipeline.interfaces import CacheStore
from framesense_pipeline.models import CacheEntry, QuestionType, Tier
from framesense_pipeline.utils.logger import logger

KEY_PREFIX = "fs:v1"
NO_IMAGE_FINGERPRINT = "no-image"
_WHITESPACE = re.compile(r"\s+")


def content_fingerprint(image: Optional[bytes]) -> str:
    """SHA-256 of the image bytes, or a fixed sentinel for text-only requests."""
    if image is None:
        return NO_IMAGE_FINGERPRINT
    return hashlib.sha256(image).hexdigest()


def normalize_question(question: str) -> str:
    return _WHITESPACE.sub(" ", question.strip().lower())


def _canonical_json(payload: Any) -> str:
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)


class InMemoryCacheStore:
    """
    Process-local CacheStore with a bounded number of entries.
    When full, the least recently written key is evicted.
    """

    def __init__(self, max_entries: int = 10_000) -> None:
        self.max_entries = max_entries
        self._lock = threading.Lock()
        self._data: "OrderedDict[str, Any]" = OrderedDict()

    async def get(self, key: str) -> Optional[Any]:
        with self._lock:
            return self._data.get(key)

    async def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._data[key] = value
            self._data.move_to_end(key)
            while len(self._data) > self.max_entries:
                evicted, _ = self._data.popitem(last=False)
                logger.debug(f"Cache store full, evicted {evicted}")

    async def delete(self, key: str) -> bool:
        with self._lock:
            return self._data.pop(key, None) is not None

    async def keys(self) -> List[str]:
        with self._lock:
            return list(self._data)


class CacheHit(BaseModel):
    key: str
    payload: Any
    stored_at: float
    cost_saved: float = 0.0
    compressed: bool = False


class CacheStats(BaseModel):
    hits: int = 0
    misses: int = 0
    sets: int = 0
    expired: int = 0
    errors: int = 0
    bytes_saved_by_compression: int = 0
    cost_saved: float = 0.0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total else 0.0


class CacheManager:
    """
    Content-addressed, cache-first result store.

    Keys are derived from the image bytes, the normalized question text, the
    question type and the tier, so identical requests always collide and
    different images never do. Entries expire passively on read once their TTL
    has elapsed. Payloads are stored as canonical JSON, gzip-compressed when the
    caller asks for it and the JSON is larger than `compression_min_bytes`.
    """

    def __init__(
        self,
        store: Optional[CacheStore] = None,
        compression_min_bytes: int = 1024,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        self.store: CacheStore = store if store is not None else InMemoryCacheStore()
        self.compression_min_bytes = compression_min_bytes
        self._clock = clock or time.time
        self.stats = CacheStats()

    def generate_key(
        self,
        image: Optional[bytes],
        question: str,
        question_type: QuestionType,
        tier: Tier,
    ) -> str:
        material = "\x1f".join(
            (content_fingerprint(image), normalize_question(question), question_type.value, tier.value)
        )
        digest = hashlib.sha256(material.encode("utf-8")).hexdigest()
        return f"{KEY_PREFIX}:{tier.value}:{question_type.value}:{digest}"

    async def get(self, key: str) -> Optional[CacheHit]:
        try:
            raw = await self.store.get(key)
        except Exception as e:
            self.stats.errors += 1
            logger.error(f"Cache GET failed for {key}: {e}")
            return None

        if raw is None:
            self.stats.misses += 1
            logger.debug(f"Cache MISS: {key}")
            return None

        entry = CacheEntry.model_validate(raw)
        if entry.key != key:
            # Never serve an entry stored under a different key
            self.stats.errors += 1
            logger.error(f"Cache entry key mismatch: requested {key}, found {entry.key}")
            return None

        if entry.expired(self._clock()):
            self.stats.expired += 1
            self.stats.misses += 1
            await self._delete_quietly(key)
            logger.debug(f"Cache EXPIRED: {key}")
            return None

        try:
            payload = self._decode(entry)
        except (OSError, ValueError) as e:
            self.stats.errors += 1
            self.stats.misses += 1
            logger.error(f"Cache entry {key} could not be decoded, dropping it: {e}")
            await self._delete_quietly(key)
            return None

        self.stats.hits += 1
        self.stats.cost_saved += entry.cost_estimate
        logger.info(f"Cache HIT: {key} (saved ${entry.cost_estimate:.4f})")
        return CacheHit(
            key=key,
            payload=payload,
            stored_at=entry.stored_at,
            cost_saved=entry.cost_estimate,
            compressed=entry.compressed,
        )

    async def set(
        self,
        key: str,
        payload: Any,
        ttl_seconds: int,
        cost_estimate: float = 0.0,
        compress: bool = True,
    ) -> Optional[CacheEntry]:
        serialized = _canonical_json(payload)
        original_size = len(serialized.encode("utf-8"))

        stored: Any = json.loads(serialized)
        compressed = False
        size = original_size
        if compress and original_size > self.compression_min_bytes:
            blob = gzip.compress(serialized.encode("utf-8"))
            stored = base64.b64encode(blob).decode("ascii")
            compressed = True
            size = len(blob)
            self.stats.bytes_saved_by_compression += max(0, original_size - size)
            logger.debug(f"Cache compressed {key}: {original_size} -> {size} bytes")

        entry = CacheEntry(
            key=key,
            payload=stored,
            ttl_seconds=ttl_seconds,
            stored_at=self._clock(),
            size_bytes=size,
            compressed=compressed,
            cost_estimate=cost_estimate,
        )
        try:
            await self.store.set(key, entry.model_dump())
        except Exception as e:
            self.stats.errors += 1
            logger.error(f"Cache SET failed for {key}: {e}")
            return None

        self.stats.sets += 1
        logger.debug(f"Cache SET: {key} (TTL {ttl_seconds}s, {size} bytes, compressed={compressed})")
        return entry

    async def invalidate(self, pattern: str) -> int:
        """
        Deletes every key starting with `pattern`; returns the number removed.
        """
        removed = 0
        for key in await self.store.keys():
            if key.startswith(pattern) and await self.store.delete(key):
                removed += 1
        logger.info(f"Cache invalidated {removed} entries matching {pattern}*")
        return removed

    async def purge_expired(self) -> int:
        """Optional sweep; reads already expire entries lazily."""
        now = self._clock()
        removed = 0
        for key in await self.store.keys():
            raw = await self.store.get(key)
            if raw is not None and CacheEntry.model_validate(raw).expired(now):
                await self.store.delete(key)
                removed += 1
        return removed

    def health(self) -> Dict[str, Any]:
        data = self.stats.model_dump()
        data["hit_rate"] = round(self.stats.hit_rate, 4)
        return data

    @staticmethod
    def _decode(entry: CacheEntry) -> Any:
        if entry.compressed:
            blob = gzip.decompress(base64.b64decode(entry.payload))
            return json.loads(blob.decode("utf-8"))
        return copy.deepcopy(entry.payload)

    async def _delete_quietly(self, key: str) -> None:
        try:
            await self.store.delete(key)
        except Exception as e:
            logger.warning(f"Cache delete failed for {key}: {e}")
