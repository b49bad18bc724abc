# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.

import threading
from typing import Dict, Iterable, Optional

from framesense_pipeline.models import UserProfile


class InMemoryUserStore:
    """UserStore backed by a dict of profiles keyed by user id."""

    def __init__(self, profiles: Optional[Iterable[UserProfile]] = None) -> None:
        self._lock = threading.Lock()
        self._profiles: Dict[str, UserProfile] = {p.id: p for p in profiles or ()}

    async def get_user_by_id(self, user_id: str) -> Optional[UserProfile]:
        with self._lock:
            return self._profiles.get(user_id)

    def upsert(self, profile: UserProfile) -> None:
        with self._lock:
            self._profiles[profile.id] = profile
