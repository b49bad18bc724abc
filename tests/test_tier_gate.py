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
from framesense_pipeline.ledger import InMemoryUsageLedger
from framesense_pipeline.models import QuestionType, Tier, UsageRecord, UserProfile
from framesense_pipeline.tier_gate import (
    CONCURRENT_LIMIT_EXCEEDED,
    COST_LIMIT_EXCEEDED,
    DAILY_LIMIT_EXCEEDED,
    INVALID_TIER,
    MONTHLY_LIMIT_EXCEEDED,
    TIER_INSUFFICIENT,
    TierGate,
)

# --- Fixtures ---


@pytest.fixture
def mock_ledger() -> Mock:
    ledger = Mock(spec=InMemoryUsageLedger)
    ledger.get_daily_usage.return_value = 0
    ledger.get_monthly_usage.return_value = 0
    ledger.get_active_request_count.return_value = 0
    ledger.get_monthly_cost.return_value = 0.0
    return ledger


@pytest.fixture
def gate(mock_ledger: Mock) -> TierGate:
    return TierGate(mock_ledger)


def profile(tier: Tier) -> UserProfile:
    return UserProfile(id=f"{tier.value}-user", tier=tier)


# --- Tests ---


@pytest.mark.asyncio
async def test_allows_request_within_limits(gate: TierGate) -> None:
    decision = await gate.validate_access(build_classification(QuestionType.PURE_TEXT), profile(Tier.FREE))
    assert decision.allowed is True
    assert decision.limits["daily"] == 10
    assert decision.usage == {"daily": 0, "monthly": 0, "concurrent": 0, "monthly_cost": 0.0}


@pytest.mark.asyncio
async def test_free_user_denied_premium_question(gate: TierGate) -> None:
    decision = await gate.validate_access(build_classification(QuestionType.IDENTIFY_CELEBRITY), profile(Tier.FREE))
    assert decision.allowed is False
    assert decision.reason == TIER_INSUFFICIENT
    assert decision.suggested_tier == Tier.PREMIUM


@pytest.mark.asyncio
async def test_tier_monotonicity(gate: TierGate) -> None:
    """If a tier is denied a question type, every lower tier is denied it too."""
    tiers = [Tier.FREE, Tier.PRO, Tier.PREMIUM]
    for question_type in QuestionType:
        classification = build_classification(question_type)
        allowed = [(await gate.validate_access(classification, profile(t))).allowed for t in tiers]
        for lower, higher in zip(allowed, allowed[1:]):
            assert not (lower and not higher), f"{question_type} allowed at a lower tier only"
    # Premium is denied nothing on tier grounds
    assert all(
        [(await gate.validate_access(build_classification(q), profile(Tier.PREMIUM))).allowed for q in QuestionType]
    )


@pytest.mark.asyncio
async def test_daily_limit(gate: TierGate, mock_ledger: Mock) -> None:
    mock_ledger.get_daily_usage.return_value = 10
    decision = await gate.validate_access(build_classification(QuestionType.PURE_TEXT), profile(Tier.FREE))
    assert decision.allowed is False
    assert decision.reason == DAILY_LIMIT_EXCEEDED
    assert decision.suggested_tier == Tier.PRO


@pytest.mark.asyncio
async def test_daily_limit_from_real_ledger() -> None:
    ledger = InMemoryUsageLedger()
    for _ in range(10):
        await ledger.record_request(UsageRecord(user_id="free-user", service="enhanced-ocr"))
    # Failed requests do not count toward the quota
    await ledger.record_request(UsageRecord(user_id="free-user", service="error", success=False))

    decision = await TierGate(ledger).validate_access(
        build_classification(QuestionType.PURE_TEXT), profile(Tier.FREE)
    )
    assert decision.reason == DAILY_LIMIT_EXCEEDED


@pytest.mark.asyncio
async def test_monthly_limit(gate: TierGate, mock_ledger: Mock) -> None:
    mock_ledger.get_monthly_usage.return_value = 2000
    decision = await gate.validate_access(build_classification(QuestionType.COUNT_OBJECTS), profile(Tier.PRO))
    assert decision.reason == MONTHLY_LIMIT_EXCEEDED
    assert decision.suggested_tier == Tier.PREMIUM


@pytest.mark.asyncio
async def test_concurrency_cap_counts_current_request(gate: TierGate, mock_ledger: Mock) -> None:
    """The active count includes the request being checked, so the cap itself is allowed."""
    mock_ledger.get_active_request_count.return_value = 1
    decision = await gate.validate_access(build_classification(QuestionType.PURE_TEXT), profile(Tier.FREE))
    assert decision.allowed is True

    mock_ledger.get_active_request_count.return_value = 2
    decision = await gate.validate_access(build_classification(QuestionType.PURE_TEXT), profile(Tier.FREE))
    assert decision.reason == CONCURRENT_LIMIT_EXCEEDED


@pytest.mark.asyncio
async def test_cost_ceiling(gate: TierGate, mock_ledger: Mock) -> None:
    mock_ledger.get_monthly_cost.return_value = 0.9995
    decision = await gate.validate_access(build_classification(QuestionType.PURE_TEXT), profile(Tier.FREE))
    assert decision.allowed is False
    assert decision.reason == COST_LIMIT_EXCEEDED
    assert decision.suggested_tier == Tier.PREMIUM


@pytest.mark.asyncio
async def test_checks_stop_at_first_failure(gate: TierGate, mock_ledger: Mock) -> None:
    mock_ledger.get_daily_usage.return_value = 100
    decision = await gate.validate_access(build_classification(QuestionType.IDENTIFY_CELEBRITY), profile(Tier.FREE))
    assert decision.reason == TIER_INSUFFICIENT
    mock_ledger.get_daily_usage.assert_not_called()


@pytest.mark.asyncio
async def test_ledger_failure_fails_open(gate: TierGate, mock_ledger: Mock) -> None:
    mock_ledger.get_daily_usage.side_effect = ConnectionError("ledger down")
    with patch("framesense_pipeline.tier_gate.logger") as mock_logger:
        decision = await gate.validate_access(build_classification(QuestionType.PURE_TEXT), profile(Tier.FREE))
    assert decision.allowed is True
    mock_logger.warning.assert_called_once()


@pytest.mark.asyncio
async def test_unknown_tier_denied(gate: TierGate) -> None:
    odd = UserProfile.model_construct(id="odd-user", tier="gold")
    decision = await gate.validate_access(build_classification(QuestionType.PURE_TEXT), odd)
    assert decision.allowed is False
    assert decision.reason == INVALID_TIER
