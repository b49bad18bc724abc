# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.

import threading
from collections import defaultdict
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Tuple

from framesense_pipeline.models import UsageRecord
from framesense_pipeline.utils.logger import logger


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryUsageLedger:
    """
    Append/query store of per-user request counts and spend.

    Counters are bucketed by UTC day ("YYYY-MM-DD") and month ("YYYY-MM").
    Only successful requests (cached ones included) count toward quotas;
    every record, failed ones too, is kept in the append log.
    """

    def __init__(self, clock: Optional[Callable[[], datetime]] = None) -> None:
        self._clock = clock or _utcnow
        self._lock = threading.Lock()
        self._records: List[UsageRecord] = []
        self._requests: Dict[Tuple[str, str], int] = defaultdict(int)
        self._spend: Dict[Tuple[str, str], float] = defaultdict(float)
        self._active: Dict[str, int] = defaultdict(int)
        self._cache_hits = 0

    def _buckets(self) -> Tuple[str, str]:
        now = self._clock()
        return now.strftime("%Y-%m-%d"), now.strftime("%Y-%m")

    async def record_request(self, record: UsageRecord) -> None:
        day, month = self._buckets()
        with self._lock:
            self._records.append(record)
            if not record.success:
                return
            for bucket in (day, month):
                self._requests[(record.user_id, bucket)] += 1
                self._spend[(record.user_id, bucket)] += record.cost
            if record.cached:
                self._cache_hits += 1
        logger.debug(
            f"Ledger: {record.user_id} {record.service} cost=${record.cost:.4f} "
            f"cached={record.cached} success={record.success}"
        )

    async def get_daily_usage(self, user_id: str) -> int:
        day, _ = self._buckets()
        with self._lock:
            return self._requests.get((user_id, day), 0)

    async def get_monthly_usage(self, user_id: str) -> int:
        _, month = self._buckets()
        with self._lock:
            return self._requests.get((user_id, month), 0)

    async def get_daily_cost(self, user_id: str) -> float:
        day, _ = self._buckets()
        with self._lock:
            return self._spend.get((user_id, day), 0.0)

    async def get_monthly_cost(self, user_id: str) -> float:
        _, month = self._buckets()
        with self._lock:
            return self._spend.get((user_id, month), 0.0)

    async def get_active_request_count(self, user_id: str) -> int:
        with self._lock:
            return self._active.get(user_id, 0)

    async def begin_request(self, user_id: str) -> None:
        with self._lock:
            self._active[user_id] += 1

    async def end_request(self, user_id: str) -> None:
        with self._lock:
            remaining = self._active.get(user_id, 0) - 1
            if remaining > 0:
                self._active[user_id] = remaining
            else:
                self._active.pop(user_id, None)

    def records(self, user_id: Optional[str] = None) -> List[UsageRecord]:
        with self._lock:
            if user_id is None:
                return list(self._records)
            return [r for r in self._records if r.user_id == user_id]

    def summary(self) -> Dict[str, float]:
        with self._lock:
            successful = [r for r in self._records if r.success]
            return {
                "total_requests": len(self._records),
                "successful_requests": len(successful),
                "failed_requests": len(self._records) - len(successful),
                "cache_hits": self._cache_hits,
                "total_cost": round(sum(r.cost for r in successful), 6),
            }
