# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.

from typing import Awaitable, Callable, List, Tuple

from pydantic import BaseModel

from framesense_pipeline.interfaces import UsageLedger
from framesense_pipeline.models import OptimizationSummary, QuestionType, ServiceKind, Tier, UserProfile
from framesense_pipeline.policy import COST_ALTERNATIVES, SERVICE_QUALITY, estimate_service_cost, is_service_allowed
from framesense_pipeline.registry import ModelRegistry
from framesense_pipeline.utils.logger import logger

# A single request may use at most this share of the remaining daily / monthly budget
# before cheaper candidates are preferred.
DAILY_SHARE = 0.10
MONTHLY_SHARE = 0.01


class RouteCandidate(BaseModel):
    service: ServiceKind
    model: str
    estimated_cost: float


class ScoredCandidate(BaseModel):
    candidate: RouteCandidate
    quality: float
    cost_score: float
    speed: float
    budget_fit: float
    effectiveness: float


class CostOptimizer:
    """
    Replaces a routed (service, model) with a cheaper equivalent that fits the
    user's remaining budget, or reports a denial when nothing relevant fits.

    Candidates come from COST_ALTERNATIVES for the question type, filtered to the
    services and models the user's tier may use, and never cost more than the
    original route.
    """

    def __init__(self, registry: ModelRegistry, ledger: UsageLedger) -> None:
        self.registry = registry
        self.ledger = ledger

    async def optimize_route(
        self,
        original: RouteCandidate,
        question_type: QuestionType,
        profile: UserProfile,
    ) -> Tuple[RouteCandidate, OptimizationSummary]:
        candidates = self._candidates(original, question_type, profile.tier)

        daily_spend = await self._spend(self.ledger.get_daily_cost, profile.id)
        monthly_spend = await self._spend(self.ledger.get_monthly_cost, profile.id)
        remaining_daily = profile.daily_budget - daily_spend
        remaining_monthly = profile.monthly_budget - monthly_spend

        affordable = [
            c for c in candidates if c.estimated_cost <= remaining_daily and c.estimated_cost <= remaining_monthly
        ]
        if not affordable:
            logger.warning(
                f"Cost optimizer: no candidate fits remaining budget for {profile.id} "
                f"(daily ${remaining_daily:.4f}, monthly ${remaining_monthly:.4f})"
            )
            return original, OptimizationSummary(
                original_service=original.service,
                original_cost=original.estimated_cost,
                optimized_cost=original.estimated_cost,
                savings=0.0,
                alternatives_considered=len(candidates),
                denied=True,
            )

        preferred = [
            c
            for c in affordable
            if c.estimated_cost <= profile.daily_budget * DAILY_SHARE
            and c.estimated_cost <= profile.monthly_budget * MONTHLY_SHARE
        ]
        pool = preferred or affordable

        cost_sensitive = (
            profile.tier == Tier.FREE or profile.daily_budget < 1.0 or profile.monthly_budget < 10.0
        )
        scored = [self._score(c, remaining_daily, remaining_monthly, cost_sensitive) for c in pool]
        # Stable sort keeps the original route first among equal scores
        scored.sort(key=lambda s: s.effectiveness, reverse=True)
        chosen = scored[0].candidate

        original_quality = SERVICE_QUALITY.get(original.service, (0.5, 0.5))[0]
        chosen_quality = SERVICE_QUALITY.get(chosen.service, (0.5, 0.5))[0]
        summary = OptimizationSummary(
            original_service=original.service,
            original_cost=original.estimated_cost,
            optimized_cost=chosen.estimated_cost,
            savings=round(original.estimated_cost - chosen.estimated_cost, 6),
            quality_delta=round(chosen_quality - original_quality, 4),
            alternatives_considered=len(candidates),
            budget_headroom=round(min(remaining_daily, remaining_monthly), 6),
        )
        if chosen != original:
            logger.info(
                f"Cost optimizer: {original.service.value}/{original.model} -> {chosen.service.value}/{chosen.model} "
                f"(saves ${summary.savings:.4f})"
            )
        return chosen, summary

    def _candidates(self, original: RouteCandidate, question_type: QuestionType, tier: Tier) -> List[RouteCandidate]:
        available = {m.id: m for m in self.registry.available_for_tier(tier)}
        candidates = [original]
        seen = {(original.service, original.model)}
        for service, model_id in COST_ALTERNATIVES.get(question_type, []):
            if (service, model_id) in seen or model_id not in available:
                continue
            if not is_service_allowed(service, tier):
                continue
            cost = estimate_service_cost(service, available[model_id].cost_per_request)
            if cost > original.estimated_cost:
                continue
            seen.add((service, model_id))
            candidates.append(RouteCandidate(service=service, model=model_id, estimated_cost=cost))
        return candidates

    @staticmethod
    def _score(
        candidate: RouteCandidate,
        remaining_daily: float,
        remaining_monthly: float,
        cost_sensitive: bool,
    ) -> ScoredCandidate:
        quality, speed = SERVICE_QUALITY.get(candidate.service, (0.5, 0.5))
        cost = candidate.estimated_cost
        cost_score = 1.0 if cost == 0 else max(0.0, 1 - cost / 0.1)

        budget_fit = max(0.0, 1 - cost / max(remaining_daily, 0.01))
        budget_fit *= max(0.0, 1 - cost / max(remaining_monthly, 0.01))
        budget_fit = min(1.0, budget_fit)

        if cost_sensitive:
            effectiveness = quality * 0.2 + cost_score * 0.7 + speed * 0.1
            effectiveness += 0.5 if cost == 0 else -0.3
        else:
            effectiveness = quality * 0.4 + cost_score * 0.3 + speed * 0.2 + budget_fit * 0.1

        return ScoredCandidate(
            candidate=candidate,
            quality=quality,
            cost_score=cost_score,
            speed=speed,
            budget_fit=budget_fit,
            effectiveness=effectiveness,
        )

    @staticmethod
    async def _spend(getter: Callable[[str], Awaitable[float]], user_id: str) -> float:
        try:
            return await getter(user_id)
        except Exception as e:
            logger.warning(f"Cost optimizer: failed to read spend for {user_id}: {e}")
            return 0.0
