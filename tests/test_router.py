# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.

from unittest.mock import Mock, patch

import pytest

from framesense_pipeline.classifier import build_classification
from framesense_pipeline.cost_optimizer import CostOptimizer
from framesense_pipeline.fallback import FallbackChainBuilder
from framesense_pipeline.ledger import InMemoryUsageLedger
from framesense_pipeline.models import (
    Complexity,
    QuestionClassification,
    QuestionType,
    ServiceKind,
    Tier,
    UserProfile,
)
from framesense_pipeline.policy import TIER_POLICIES
from framesense_pipeline.registry import ModelRegistry
from framesense_pipeline.router import Router
from framesense_pipeline.tier_gate import COST_LIMIT_EXCEEDED, TIER_INSUFFICIENT, TierGate

# --- Fixtures ---


@pytest.fixture
def mock_ledger() -> Mock:
    ledger = Mock(spec=InMemoryUsageLedger)
    ledger.get_daily_usage.return_value = 0
    ledger.get_monthly_usage.return_value = 0
    ledger.get_active_request_count.return_value = 0
    ledger.get_daily_cost.return_value = 0.0
    ledger.get_monthly_cost.return_value = 0.0
    return ledger


@pytest.fixture
def registry() -> ModelRegistry:
    return ModelRegistry()


@pytest.fixture
def router(registry: ModelRegistry, mock_ledger: Mock) -> Router:
    return Router(registry, TierGate(mock_ledger), FallbackChainBuilder(), CostOptimizer(registry, mock_ledger))


FREE = UserProfile(id="free-user", tier=Tier.FREE)
PRO = UserProfile(id="pro-user", tier=Tier.PRO, daily_budget=5.0, monthly_budget=100.0)
PREMIUM = UserProfile(id="premium-user", tier=Tier.PREMIUM, daily_budget=50.0, monthly_budget=1000.0)


# --- Routing ---


@pytest.mark.asyncio
async def test_free_text_question_routes_to_baseline_ocr(router: Router) -> None:
    route = await router.route_request(build_classification(QuestionType.PURE_TEXT), None, FREE)
    assert route.service == ServiceKind.ENHANCED_OCR
    assert route.model == "tesseract"
    assert route.fallback_chain == [ServiceKind.ENHANCED_OCR, ServiceKind.VISION_TEXT]
    assert route.estimated_cost == 0.0
    assert route.cache_options.ttl_seconds == 3600
    assert route.degraded is False
    assert route.metadata is not None and route.metadata.access_tier == Tier.FREE


@pytest.mark.asyncio
async def test_every_route_stays_within_tier_services(router: Router) -> None:
    for profile in (FREE, PRO, PREMIUM):
        allowed = TIER_POLICIES[profile.tier].services
        for question_type in QuestionType:
            route = await router.route_request(build_classification(question_type), None, profile)
            assert route.service in allowed
            assert set(route.fallback_chain) <= allowed


@pytest.mark.asyncio
async def test_tier_denial_routes_to_zero_cost_baseline(router: Router) -> None:
    route = await router.route_request(build_classification(QuestionType.IDENTIFY_CELEBRITY), None, FREE)
    assert route.access_denied is True
    assert route.denial_reason == TIER_INSUFFICIENT
    assert route.suggested_tier == Tier.PREMIUM
    assert route.service == ServiceKind.ENHANCED_OCR
    assert route.estimated_cost == 0.0
    assert route.fallback_chain == [ServiceKind.ENHANCED_OCR]
    assert route.message is not None and route.message.endswith("Falling back to basic OCR.")


@pytest.mark.asyncio
async def test_user_choice_honored_when_tier_offers_it(router: Router) -> None:
    route = await router.route_request(build_classification(QuestionType.PURE_TEXT), "enhanced-ocr", FREE)
    assert route.model == "enhanced-ocr"
    assert route.metadata is not None and route.metadata.user_choice_honored is True


@pytest.mark.asyncio
async def test_user_choice_ignored_when_not_offered(router: Router) -> None:
    route = await router.route_request(build_classification(QuestionType.PURE_TEXT), "gpt-4-vision", FREE)
    assert route.model == "tesseract"
    assert route.metadata is not None and route.metadata.user_choice_honored is False


@pytest.mark.asyncio
async def test_scored_model_when_default_unavailable(router: Router) -> None:
    """gpt-4-vision is premium, so a pro scene question scores the pro catalog."""
    route = await router.route_request(build_classification(QuestionType.DESCRIBE_SCENE), None, PRO)
    assert route.model == "gpt-3.5-vision"
    assert route.service == ServiceKind.REASONING
    assert route.estimated_cost == 0.02
    assert route.parameters["max_tokens"] == 500
    assert route.parameters["temperature"] == 0.1
    assert route.fallback_chain == [ServiceKind.REASONING, ServiceKind.VISION_OBJECTS]


@pytest.mark.asyncio
async def test_cloud_vision_dispatch_and_parameters(router: Router) -> None:
    route = await router.route_request(build_classification(QuestionType.COUNT_OBJECTS), None, PRO)
    assert route.service == ServiceKind.VISION_OBJECTS
    assert route.parameters["max_results"] == 50
    assert route.parameters["confidence_threshold"] == 0.8
    assert route.fallback_chain == [ServiceKind.VISION_OBJECTS, ServiceKind.REASONING, ServiceKind.VISION_TEXT]
    assert route.cache_options.ttl_seconds == 21600


def test_select_model_tie_keeps_declaration_order(router: Router, registry: ModelRegistry) -> None:
    classification = QuestionClassification(
        id=QuestionType.CUSTOM_ANALYSIS, required_capabilities=frozenset(), complexity=Complexity.LOW
    )
    models = [registry.get_model("google-vision"), registry.get_model("gpt-4-vision")]
    # Both score 3 (HIGH quality, no overlap, no speed preference)
    assert router.select_model(classification, None, models) == ("google-vision", False)


def test_select_model_with_empty_catalog(router: Router) -> None:
    classification = build_classification(QuestionType.CUSTOM_ANALYSIS)
    assert router.select_model(classification, None, []) == ("tesseract", False)


def test_resolve_service_substitutes_within_tier(registry: ModelRegistry) -> None:
    google = registry.get_model("google-vision")
    assert google is not None
    # Web detection is premium-only; the celebrity chain's next allowed entry is reasoning
    assert Router.resolve_service(google, QuestionType.IDENTIFY_CELEBRITY, Tier.PRO) == ServiceKind.REASONING
    assert Router.resolve_service(google, QuestionType.IDENTIFY_CELEBRITY, Tier.PREMIUM) == ServiceKind.VISION_WEB


# --- Cost ---


@pytest.mark.asyncio
async def test_route_cost_rechecked_against_ceiling(router: Router, mock_ledger: Mock) -> None:
    """The gate passes on the classification estimate, the actual route cost does not fit."""
    mock_ledger.get_monthly_cost.return_value = 49.99
    classification = build_classification(QuestionType.DESCRIBE_SCENE).model_copy(update={"estimated_cost": 0.0})

    route = await router.route_request(classification, None, PRO)
    assert route.access_denied is True
    assert route.denial_reason == COST_LIMIT_EXCEEDED
    assert route.estimated_cost == 0.0


@pytest.mark.asyncio
async def test_route_carries_headroom_under_ceiling(router: Router, mock_ledger: Mock) -> None:
    mock_ledger.get_monthly_cost.return_value = 49.975
    route = await router.route_request(build_classification(QuestionType.COUNT_OBJECTS), None, PRO)

    assert route.access_denied is False
    assert route.service == ServiceKind.VISION_OBJECTS
    assert route.cost_headroom == pytest.approx(0.025)
    # The chain still lists costlier services; the executor skips them
    assert ServiceKind.REASONING in route.fallback_chain


@pytest.mark.asyncio
async def test_headroom_is_capped_by_remaining_budget_when_optimizing(router: Router, mock_ledger: Mock) -> None:
    mock_ledger.get_daily_cost.return_value = 4.5
    profile = PRO.model_copy(update={"cost_optimization_enabled": True})
    route = await router.route_request(build_classification(QuestionType.COUNT_OBJECTS), None, profile)

    assert route.optimization is not None
    assert route.optimization.budget_headroom == pytest.approx(0.5)
    assert route.cost_headroom == pytest.approx(0.5)


@pytest.mark.asyncio
async def test_cost_optimization_downgrades_to_cheaper_service(router: Router) -> None:
    profile = PRO.model_copy(update={"cost_optimization_enabled": True})
    route = await router.route_request(build_classification(QuestionType.DESCRIBE_SCENE), None, profile)

    assert route.service == ServiceKind.VISION_OBJECTS
    assert route.model == "google-vision"
    assert route.estimated_cost == 0.006
    assert route.optimization is not None
    assert route.optimization.original_service == ServiceKind.REASONING
    assert route.optimization.savings == pytest.approx(0.014)
    assert route.metadata is not None and route.metadata.optimization_applied is True
    assert route.fallback_chain[0] == ServiceKind.VISION_OBJECTS


@pytest.mark.asyncio
async def test_cost_optimizer_denial_degrades_route(router: Router) -> None:
    profile = PRO.model_copy(update={"cost_optimization_enabled": True, "daily_budget": 0.001})
    route = await router.route_request(build_classification(QuestionType.DESCRIBE_SCENE), None, profile)
    assert route.access_denied is True
    assert route.denial_reason == COST_LIMIT_EXCEEDED
    assert route.service == ServiceKind.ENHANCED_OCR


@pytest.mark.asyncio
async def test_cost_optimizer_failure_keeps_original(registry: ModelRegistry, mock_ledger: Mock) -> None:
    optimizer = Mock(spec=CostOptimizer)
    optimizer.optimize_route.side_effect = RuntimeError("optimizer crashed")
    router = Router(registry, TierGate(mock_ledger), FallbackChainBuilder(), optimizer)
    profile = PRO.model_copy(update={"cost_optimization_enabled": True})

    route = await router.route_request(build_classification(QuestionType.DESCRIBE_SCENE), None, profile)
    assert route.service == ServiceKind.REASONING
    assert route.optimization is not None
    assert route.optimization.error == "optimizer crashed"
    assert route.degraded is False


# --- Failure ---


@pytest.mark.asyncio
async def test_router_never_raises(registry: ModelRegistry) -> None:
    gate = Mock(spec=TierGate)
    gate.validate_access.side_effect = RuntimeError("gate exploded")
    router = Router(registry, gate, FallbackChainBuilder())

    with patch("framesense_pipeline.router.logger") as mock_logger:
        route = await router.route_request(build_classification(QuestionType.PURE_TEXT), None, FREE)

    assert route.error is True
    assert route.error_message == "gate exploded"
    assert route.service == ServiceKind.ENHANCED_OCR
    assert route.cache_options.ttl_seconds == 300
    assert route.degraded is True
    mock_logger.exception.assert_called_once()
