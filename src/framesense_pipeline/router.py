# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.

import time
from typing import Any, Dict, List, Optional, Tuple

from framesense_pipeline.cost_optimizer import CostOptimizer, RouteCandidate
from framesense_pipeline.fallback import FallbackChainBuilder
from framesense_pipeline.models import (
    Complexity,
    ModelDefinition,
    OptimizationSummary,
    ProviderKind,
    QuestionClassification,
    QuestionType,
    Quality,
    RouteDecision,
    RoutingMetadata,
    ServiceKind,
    Speed,
    Tier,
    UserProfile,
)
from framesense_pipeline.policy import (
    BASELINE_MODEL,
    BASELINE_SERVICE,
    DENIED_CACHE_OPTIONS,
    ERROR_CACHE_OPTIONS,
    FALLBACK_CHAINS,
    PROVIDER_DISPATCH,
    cache_options_for,
    estimate_service_cost,
    get_tier_policy,
    is_service_allowed,
)
from framesense_pipeline.registry import ModelRegistry
from framesense_pipeline.tier_gate import COST_LIMIT_EXCEEDED, TierGate
from framesense_pipeline.utils.logger import logger

QUALITY_WEIGHTS = {Quality.HIGH: 3, Quality.MEDIUM: 2, Quality.LOW: 1}
CAPABILITY_WEIGHT = 10
SPEED_BONUS = 2


class Router:
    """
    The Router turns a classified question and a user profile into a RouteDecision.

    It combines the tier gate, the user's model preference, the model registry,
    the cost optimizer and the fallback chain builder. Routing never raises:
    denials and unexpected errors both resolve to the zero-cost baseline route.
    """

    def __init__(
        self,
        registry: ModelRegistry,
        tier_gate: TierGate,
        fallback_builder: FallbackChainBuilder,
        cost_optimizer: Optional[CostOptimizer] = None,
    ) -> None:
        self.registry = registry
        self.tier_gate = tier_gate
        self.fallback_builder = fallback_builder
        self.cost_optimizer = cost_optimizer

    async def route_request(
        self,
        classification: QuestionClassification,
        user_model_choice: Optional[str],
        profile: UserProfile,
        options: Optional[Dict[str, Any]] = None,
    ) -> RouteDecision:
        """
        Selects service, model, parameters, fallback chain and cache options.

        Logic:
        1. Tier gate. A denial returns the degraded baseline route immediately.
        2. Model: the user's choice if their tier offers it, else the question
           type's default model if offered, else the best-scoring offered model
           (capability overlap x 10 + quality weight + speed bonus).
        3. Provider dispatch: (provider kind, question type) -> concrete service.
        4. Cost optimization when the profile enables it; the result must still
           fit the tier's cost ceiling. What is left under the ceiling (and the
           user's budget, when optimizing) becomes the route's cost headroom,
           which bounds every fallback as well.
        5. Fallback chain.
        6. Cache options from the per-service table.
        7. Routing metadata.
        """
        started = time.perf_counter()
        options = options or {}
        tier = profile.tier

        try:
            # 1. Tier gate
            access = await self.tier_gate.validate_access(classification, profile)
            if not access.allowed:
                logger.warning(
                    f"Router: access denied for {profile.id} ({access.reason}); routing to {BASELINE_SERVICE.value}"
                )
                return self._denied_route(
                    classification, profile, access.reason, access.suggested_tier, access.message, started
                )

            # 2. Model selection
            available = self.registry.available_for_tier(tier)
            model_id, honored = self.select_model(classification, user_model_choice, available)
            model_def = self.registry.get_model(model_id)
            if model_def is None:
                raise RuntimeError(f"Selected model {model_id} is not registered")

            # 3. Provider dispatch
            service = self.resolve_service(model_def, classification.id, tier)
            candidate = RouteCandidate(
                service=service,
                model=model_def.id,
                estimated_cost=estimate_service_cost(service, model_def.cost_per_request),
            )

            # 4. Cost optimization
            optimization: Optional[OptimizationSummary] = None
            if profile.cost_optimization_enabled and self.cost_optimizer is not None:
                try:
                    candidate, optimization = await self.cost_optimizer.optimize_route(
                        candidate, classification.id, profile
                    )
                except Exception as e:
                    logger.error(f"Router: cost optimization failed, keeping original route: {e}")
                    optimization = OptimizationSummary(
                        original_service=candidate.service,
                        original_cost=candidate.estimated_cost,
                        optimized_cost=candidate.estimated_cost,
                        savings=0.0,
                        error=str(e),
                    )
                if optimization.denied:
                    return self._denied_route(
                        classification,
                        profile,
                        COST_LIMIT_EXCEEDED,
                        Tier.PREMIUM if tier != Tier.PREMIUM else None,
                        "Remaining budget does not cover this request",
                        started,
                    )

            policy = get_tier_policy(tier)
            monthly_cost = float(access.usage.get("monthly_cost", 0.0))
            cost_headroom: Optional[float] = None
            if policy is not None and policy.cost_ceiling is not None:
                if monthly_cost + candidate.estimated_cost > policy.cost_ceiling:
                    return self._denied_route(
                        classification,
                        profile,
                        COST_LIMIT_EXCEEDED,
                        Tier.PREMIUM,
                        f"Monthly cost limit of ${policy.cost_ceiling:.2f} would be exceeded",
                        started,
                    )
                cost_headroom = round(policy.cost_ceiling - monthly_cost, 6)
            if optimization is not None and optimization.budget_headroom is not None:
                cost_headroom = (
                    optimization.budget_headroom
                    if cost_headroom is None
                    else min(cost_headroom, optimization.budget_headroom)
                )

            chosen_model = self.registry.get_model(candidate.model) or model_def

            # 5. Fallback chain
            fallback_chain = self.fallback_builder.build_chain(candidate.service, classification.id, tier)

            # 6. Cache options and parameters
            decision = RouteDecision(
                service=candidate.service,
                model=candidate.model,
                question_type=classification.id,
                parameters=self.build_parameters(classification, chosen_model, profile, options),
                fallback_chain=fallback_chain,
                estimated_cost=candidate.estimated_cost,
                cost_headroom=cost_headroom,
                estimated_time_ms=chosen_model.avg_response_time_ms,
                cache_options=cache_options_for(candidate.service),
                optimization=optimization,
                # 7. Metadata
                metadata=RoutingMetadata(
                    routing_time_ms=(time.perf_counter() - started) * 1000,
                    access_tier=tier,
                    user_choice_honored=honored,
                    optimization_applied=optimization is not None and optimization.savings > 0,
                ),
            )
            logger.info(
                f"Router: {classification.id.value} -> {decision.service.value} ({decision.model}), "
                f"cost ${decision.estimated_cost:.4f}, chain {[s.value for s in decision.fallback_chain]}"
            )
            return decision

        except Exception as e:
            logger.exception(f"Router: routing failed for {profile.id}: {e}")
            return self._error_route(classification, profile, e, started)

    def select_model(
        self,
        classification: QuestionClassification,
        user_model_choice: Optional[str],
        available: List[ModelDefinition],
    ) -> Tuple[str, bool]:
        """
        Returns (model id, whether the user's choice was honored).
        """
        available_ids = [m.id for m in available]

        if user_model_choice and user_model_choice in available_ids:
            logger.debug(f"Router: honoring user model choice {user_model_choice}")
            return user_model_choice, True
        if user_model_choice:
            logger.info(f"Router: user model choice {user_model_choice} not available, ignoring")

        if classification.default_model and classification.default_model in available_ids:
            return classification.default_model, False

        if not available:
            return BASELINE_MODEL, False

        required = classification.required_capabilities
        best_index, best_score = 0, None
        for index, model in enumerate(available):
            score = len(required & model.capabilities) * CAPABILITY_WEIGHT
            score += QUALITY_WEIGHTS.get(model.quality, 1)
            if classification.prefer_fast and model.speed == Speed.FAST:
                score += SPEED_BONUS
            # Strictly greater keeps the earliest declared model on ties
            if best_score is None or score > best_score:
                best_index, best_score = index, score

        selected = available[best_index].id
        logger.debug(f"Router: best available model {selected} (score {best_score})")
        return selected, False

    @staticmethod
    def resolve_service(model: ModelDefinition, question_type: QuestionType, tier: Tier) -> ServiceKind:
        """
        Maps a model to the concrete service for this question type, staying
        inside the services the tier may use.
        """
        service = PROVIDER_DISPATCH.get((model.provider, question_type), BASELINE_SERVICE)
        if is_service_allowed(service, tier):
            return service

        for substitute in FALLBACK_CHAINS.get(question_type, []):
            if is_service_allowed(substitute, tier):
                logger.warning(
                    f"Router: {service.value} not available at {tier.value}, substituting {substitute.value}"
                )
                return substitute
        return BASELINE_SERVICE

    @staticmethod
    def build_parameters(
        classification: QuestionClassification,
        model: ModelDefinition,
        profile: UserProfile,
        options: Dict[str, Any],
    ) -> Dict[str, Any]:
        parameters: Dict[str, Any] = {
            "language": options.get("language", profile.language),
            "include_regions": bool(options.get("include_regions", False)),
            "max_results": int(options.get("max_results", 10)),
        }
        if model.provider == ProviderKind.GOOGLE:
            parameters["confidence_threshold"] = 0.8
            if classification.id == QuestionType.COUNT_OBJECTS:
                parameters["max_results"] = 50
        elif model.provider in (ProviderKind.OPENAI, ProviderKind.PLUGIN):
            parameters["max_tokens"] = 500 if classification.complexity == Complexity.HIGH else 150
            parameters["temperature"] = 0.1
        return parameters

    def _denied_route(
        self,
        classification: QuestionClassification,
        profile: UserProfile,
        reason: Optional[str],
        suggested_tier: Optional[Tier],
        message: Optional[str],
        started: float,
    ) -> RouteDecision:
        return RouteDecision(
            service=BASELINE_SERVICE,
            model=BASELINE_MODEL,
            question_type=classification.id,
            parameters={"language": profile.language},
            fallback_chain=[BASELINE_SERVICE],
            estimated_cost=0.0,
            estimated_time_ms=3000,
            cache_options=DENIED_CACHE_OPTIONS,
            access_denied=True,
            suggested_tier=suggested_tier,
            denial_reason=reason,
            message=f"{message or 'Access denied'}. Falling back to basic OCR.",
            metadata=RoutingMetadata(
                routing_time_ms=(time.perf_counter() - started) * 1000,
                access_tier=profile.tier,
            ),
        )

    def _error_route(
        self,
        classification: QuestionClassification,
        profile: UserProfile,
        error: Exception,
        started: float,
    ) -> RouteDecision:
        return RouteDecision(
            service=BASELINE_SERVICE,
            model=BASELINE_MODEL,
            question_type=classification.id,
            parameters={"language": profile.language},
            fallback_chain=[BASELINE_SERVICE],
            estimated_cost=0.0,
            estimated_time_ms=3000,
            cache_options=ERROR_CACHE_OPTIONS,
            error=True,
            error_message=str(error),
            metadata=RoutingMetadata(
                routing_time_ms=(time.perf_counter() - started) * 1000,
                access_tier=profile.tier,
            ),
        )
