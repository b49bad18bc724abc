# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.

import pytest
from pydantic import ValidationError

from framesense_pipeline.models import (
    CacheEntry,
    CacheOptions,
    ModelDefinition,
    ProviderKind,
    QuestionType,
    RouteDecision,
    ServiceKind,
    Tier,
    UserProfile,
)


def test_tier_ordering() -> None:
    assert Tier.PREMIUM.covers(Tier.PRO)
    assert Tier.PRO.covers(Tier.PRO)
    assert not Tier.FREE.covers(Tier.PRO)
    assert [t.rank for t in Tier] == [0, 1, 2]


def test_service_values() -> None:
    assert ServiceKind.REASONING.value == "openai-vision"
    assert ServiceKind.PLUGIN.value == "open-source-api"


def test_model_definition_invalid() -> None:
    with pytest.raises(ValidationError):
        ModelDefinition(id="m", provider=ProviderKind.OPENAI, tier=Tier.PRO, cost_per_request=-1.0)


def test_default_profile() -> None:
    profile = UserProfile.default_for("someone")
    assert profile.tier == Tier.FREE
    assert profile.cost_optimization_enabled is True


def test_route_decision_degraded() -> None:
    base = RouteDecision(
        service=ServiceKind.ENHANCED_OCR,
        model="tesseract",
        question_type=QuestionType.PURE_TEXT,
        cache_options=CacheOptions(ttl_seconds=60, compress=True),
    )
    assert base.degraded is False
    assert base.model_copy(update={"access_denied": True}).degraded is True
    assert base.model_copy(update={"error": True}).degraded is True

    with pytest.raises(ValidationError):
        base.service = ServiceKind.REASONING  # type: ignore[misc]


def test_cache_entry_expiry_boundary() -> None:
    entry = CacheEntry(key="k", payload={}, ttl_seconds=10, stored_at=100.0, size_bytes=2)
    assert not entry.expired(109.999)
    assert entry.expired(110.0)
