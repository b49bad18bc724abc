# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.

from typing import Awaitable, Callable, Optional, Union

from framesense_pipeline.interfaces import UsageLedger
from framesense_pipeline.models import AccessDecision, QuestionClassification, Tier, UserProfile
from framesense_pipeline.policy import get_tier_policy, required_tier_for, upgrade_tier_for
from framesense_pipeline.utils.logger import logger


TIER_INSUFFICIENT = "tier_insufficient"
INVALID_TIER = "invalid_tier"
DAILY_LIMIT_EXCEEDED = "daily_limit_exceeded"
MONTHLY_LIMIT_EXCEEDED = "monthly_limit_exceeded"
CONCURRENT_LIMIT_EXCEEDED = "concurrent_limit_exceeded"
COST_LIMIT_EXCEEDED = "cost_limit_exceeded"


class TierGate:
    """
    Validates a request against the tier policy table and the usage ledger.

    Checks run in order and stop at the first failure:
    1. The user's tier exists in the policy table.
    2. The question type's required tier is at or below the user's tier.
    3. Daily request count is below the daily limit.
    4. Monthly request count is below the monthly limit.
    5. Active requests for the user do not exceed the concurrency cap.
    6. Current monthly spend plus the estimated cost stays within the tier's cost ceiling.

    The ceiling check reads current spend only; concurrent requests are not
    reserved against each other.
    """

    def __init__(self, ledger: UsageLedger) -> None:
        self.ledger = ledger

    async def validate_access(self, classification: QuestionClassification, profile: UserProfile) -> AccessDecision:
        tier = profile.tier
        policy = get_tier_policy(tier)
        if policy is None:
            logger.warning(f"Tier gate: unknown tier {tier!r} for user {profile.id}")
            return self._deny(Tier.FREE, INVALID_TIER, Tier.PREMIUM, f"Unknown tier: {tier}")

        limits = {
            "daily": policy.daily_limit,
            "monthly": policy.monthly_limit,
            "concurrent": policy.max_concurrent_requests,
            "cost_ceiling": policy.cost_ceiling,
            "max_image_bytes": policy.max_image_bytes,
        }

        required = required_tier_for(classification.id)
        if not tier.covers(required):
            return self._deny(
                tier,
                TIER_INSUFFICIENT,
                required,
                f"{classification.id.value} requires {required.value} tier or higher",
                limits,
            )

        daily = await self._read(self.ledger.get_daily_usage, profile.id, 0)
        if daily >= policy.daily_limit:
            return self._deny(
                tier,
                DAILY_LIMIT_EXCEEDED,
                upgrade_tier_for(tier),
                f"Daily limit of {policy.daily_limit} requests exceeded",
                limits,
            )

        monthly = await self._read(self.ledger.get_monthly_usage, profile.id, 0)
        if monthly >= policy.monthly_limit:
            return self._deny(
                tier,
                MONTHLY_LIMIT_EXCEEDED,
                upgrade_tier_for(tier),
                f"Monthly limit of {policy.monthly_limit} requests exceeded",
                limits,
            )

        active = await self._read(self.ledger.get_active_request_count, profile.id, 0)
        if active > policy.max_concurrent_requests:
            return self._deny(
                tier,
                CONCURRENT_LIMIT_EXCEEDED,
                upgrade_tier_for(tier),
                f"Maximum {policy.max_concurrent_requests} concurrent requests allowed",
                limits,
            )

        monthly_cost = 0.0
        if policy.cost_ceiling is not None:
            monthly_cost = await self._read(self.ledger.get_monthly_cost, profile.id, 0.0)
            projected = monthly_cost + classification.estimated_cost
            if projected > policy.cost_ceiling:
                return self._deny(
                    tier,
                    COST_LIMIT_EXCEEDED,
                    Tier.PREMIUM,
                    f"Monthly cost limit of ${policy.cost_ceiling:.2f} would be exceeded",
                    limits,
                )

        logger.debug(f"Tier gate: approved {classification.id.value} for {profile.id} ({tier.value})")
        return AccessDecision(
            allowed=True,
            tier=tier,
            limits=limits,
            usage={"daily": daily, "monthly": monthly, "concurrent": active, "monthly_cost": monthly_cost},
        )

    @staticmethod
    async def _read(
        getter: Callable[[str], Awaitable[Union[int, float]]],
        user_id: str,
        default: Union[int, float],
    ) -> Union[int, float]:
        try:
            return await getter(user_id)
        except Exception as e:
            # Fail open on ledger reads: count the value as zero
            logger.warning(f"Tier gate: ledger read {getattr(getter, '__name__', getter)} failed for {user_id}: {e}")
            return default

    @staticmethod
    def _deny(
        tier: Tier,
        reason: str,
        suggested_tier: Optional[Tier],
        message: str,
        limits: Optional[dict] = None,
    ) -> AccessDecision:
        logger.warning(f"Tier gate: denied ({reason}) - {message}")
        return AccessDecision(
            allowed=False,
            tier=tier,
            reason=reason,
            suggested_tier=suggested_tier,
            message=message,
            limits=limits or {},
        )
