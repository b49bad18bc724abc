# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.

from typing import Any, List, Optional, Protocol, runtime_checkable

from framesense_pipeline.models import QuestionClassification, UsageRecord, UserProfile


@runtime_checkable
class Classifier(Protocol):
    """
    Protocol for the question classifier (stateless text-pattern matcher).
    """

    def classify(self, question_text: str) -> QuestionClassification:
        """
        Returns the classification for the question. Called once per request.
        """
        ...


@runtime_checkable
class UserStore(Protocol):
    """
    Protocol for the user/profile store.
    """

    async def get_user_by_id(self, user_id: str) -> Optional[UserProfile]:
        """
        Returns the user's profile, or None if the user is unknown.
        """
        ...


@runtime_checkable
class UsageLedger(Protocol):
    """
    Protocol for the per-user usage ledger (request counts and spend by day/month).
    """

    async def record_request(self, record: UsageRecord) -> None:
        """
        Appends a completed (or failed) request to the ledger.
        """
        ...

    async def get_daily_usage(self, user_id: str) -> int: ...

    async def get_monthly_usage(self, user_id: str) -> int: ...

    async def get_daily_cost(self, user_id: str) -> float: ...

    async def get_monthly_cost(self, user_id: str) -> float: ...

    async def get_active_request_count(self, user_id: str) -> int:
        """
        Returns the number of requests for this user currently in the pipeline.
        """
        ...

    async def begin_request(self, user_id: str) -> None: ...

    async def end_request(self, user_id: str) -> None: ...


@runtime_checkable
class CacheStore(Protocol):
    """
    Protocol for the key/value backend behind the CacheManager.
    Entries are opaque to the store; expiry is the manager's concern.
    """

    async def get(self, key: str) -> Optional[Any]: ...

    async def set(self, key: str, value: Any) -> None: ...

    async def delete(self, key: str) -> bool: ...

    async def keys(self) -> List[str]: ...
