# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.

"""
Static tier, service and routing tables.

Pure data: nothing in this module holds state or performs I/O. Every service a
tier may be routed to is listed explicitly; `BASELINE_SERVICE` is allowed at every
tier and costs nothing.
"""

from typing import Dict, FrozenSet, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict

from framesense_pipeline.models import (
    CacheOptions,
    DetailLevel,
    ProviderKind,
    QuestionType,
    ServiceKind,
    Tier,
)


class TierPolicy(BaseModel):
    model_config = ConfigDict(frozen=True)

    tier: Tier
    services: FrozenSet[ServiceKind]
    daily_limit: int
    monthly_limit: int
    max_image_bytes: int
    max_concurrent_requests: int
    cost_ceiling: Optional[float] = None  # monthly, USD
    detail_level: DetailLevel
    max_response_bytes: int
    strip_sensitive: bool
    compress_response: bool


TIER_POLICIES: Dict[Tier, TierPolicy] = {
    Tier.FREE: TierPolicy(
        tier=Tier.FREE,
        services=frozenset({ServiceKind.ENHANCED_OCR, ServiceKind.VISION_TEXT}),
        daily_limit=10,
        monthly_limit=200,
        max_image_bytes=2 * 1024 * 1024,
        max_concurrent_requests=1,
        cost_ceiling=1.0,
        detail_level=DetailLevel.BASIC,
        max_response_bytes=1024,
        strip_sensitive=True,
        compress_response=True,
    ),
    Tier.PRO: TierPolicy(
        tier=Tier.PRO,
        services=frozenset(
            {
                ServiceKind.ENHANCED_OCR,
                ServiceKind.VISION_TEXT,
                ServiceKind.VISION_OBJECTS,
                ServiceKind.VISION_LOGOS,
                ServiceKind.REASONING,
                ServiceKind.PLUGIN,
            }
        ),
        daily_limit=100,
        monthly_limit=2000,
        max_image_bytes=10 * 1024 * 1024,
        max_concurrent_requests=3,
        cost_ceiling=50.0,
        detail_level=DetailLevel.STANDARD,
        max_response_bytes=10 * 1024,
        strip_sensitive=False,
        compress_response=True,
    ),
    Tier.PREMIUM: TierPolicy(
        tier=Tier.PREMIUM,
        services=frozenset(ServiceKind),
        daily_limit=1000,
        monthly_limit=20000,
        max_image_bytes=50 * 1024 * 1024,
        max_concurrent_requests=10,
        cost_ceiling=500.0,
        detail_level=DetailLevel.FULL,
        max_response_bytes=100 * 1024,
        strip_sensitive=False,
        compress_response=False,
    ),
}

QUESTION_TYPE_TIERS: Dict[QuestionType, Tier] = {
    QuestionType.PURE_TEXT: Tier.FREE,
    QuestionType.COUNT_OBJECTS: Tier.PRO,
    QuestionType.DETECT_OBJECTS: Tier.PRO,
    QuestionType.DESCRIBE_SCENE: Tier.PRO,
    QuestionType.DETECT_LOGOS: Tier.PRO,
    QuestionType.ANALYZE_DOCUMENT: Tier.PRO,
    QuestionType.IDENTIFY_CELEBRITY: Tier.PREMIUM,
    QuestionType.CUSTOM_ANALYSIS: Tier.PREMIUM,
}

# Per-request estimates in USD. Reasoning and plugin services are priced by model.
SERVICE_COSTS: Dict[ServiceKind, float] = {
    ServiceKind.ENHANCED_OCR: 0.0,
    ServiceKind.VISION_TEXT: 0.0015,
    ServiceKind.VISION_OBJECTS: 0.006,
    ServiceKind.VISION_WEB: 0.0035,
    ServiceKind.VISION_LOGOS: 0.0015,
    ServiceKind.REASONING: 0.03,
    ServiceKind.PLUGIN: 0.005,
}

# Relative quality and speed (0..1) used by the cost optimizer
SERVICE_QUALITY: Dict[ServiceKind, Tuple[float, float]] = {
    ServiceKind.ENHANCED_OCR: (0.7, 0.8),
    ServiceKind.VISION_TEXT: (0.95, 0.9),
    ServiceKind.VISION_OBJECTS: (0.9, 0.85),
    ServiceKind.VISION_WEB: (0.95, 0.8),
    ServiceKind.VISION_LOGOS: (0.9, 0.85),
    ServiceKind.REASONING: (0.98, 0.6),
    ServiceKind.PLUGIN: (0.7, 0.7),
}

CACHE_OPTIONS: Dict[ServiceKind, CacheOptions] = {
    ServiceKind.ENHANCED_OCR: CacheOptions(ttl_seconds=3600, compress=True),
    ServiceKind.VISION_TEXT: CacheOptions(ttl_seconds=3600, compress=True),
    ServiceKind.VISION_OBJECTS: CacheOptions(ttl_seconds=21600, compress=True),
    ServiceKind.VISION_LOGOS: CacheOptions(ttl_seconds=86400, compress=True),
    ServiceKind.VISION_WEB: CacheOptions(ttl_seconds=604800, compress=False),
    ServiceKind.REASONING: CacheOptions(ttl_seconds=3600, compress=True),
    ServiceKind.PLUGIN: CacheOptions(ttl_seconds=1800, compress=True),
}
DEFAULT_CACHE_OPTIONS = CacheOptions(ttl_seconds=3600, compress=True)
DENIED_CACHE_OPTIONS = CacheOptions(ttl_seconds=1800, compress=True)
ERROR_CACHE_OPTIONS = CacheOptions(ttl_seconds=300, compress=True)

BASELINE_SERVICE = ServiceKind.ENHANCED_OCR
BASELINE_MODEL = "tesseract"

# Cloud vision resolves to the sub-service matching the question type
_GOOGLE_SERVICES: Dict[QuestionType, ServiceKind] = {
    QuestionType.PURE_TEXT: ServiceKind.VISION_TEXT,
    QuestionType.ANALYZE_DOCUMENT: ServiceKind.VISION_TEXT,
    QuestionType.COUNT_OBJECTS: ServiceKind.VISION_OBJECTS,
    QuestionType.DETECT_OBJECTS: ServiceKind.VISION_OBJECTS,
    QuestionType.DESCRIBE_SCENE: ServiceKind.VISION_OBJECTS,
    QuestionType.DETECT_LOGOS: ServiceKind.VISION_LOGOS,
    QuestionType.IDENTIFY_CELEBRITY: ServiceKind.VISION_WEB,
    QuestionType.CUSTOM_ANALYSIS: ServiceKind.VISION_WEB,
}

PROVIDER_DISPATCH: Dict[Tuple[ProviderKind, QuestionType], ServiceKind] = {}
for _question_type in QuestionType:
    PROVIDER_DISPATCH[(ProviderKind.GOOGLE, _question_type)] = _GOOGLE_SERVICES[_question_type]
    PROVIDER_DISPATCH[(ProviderKind.OPENAI, _question_type)] = ServiceKind.REASONING
    PROVIDER_DISPATCH[(ProviderKind.HYBRID, _question_type)] = ServiceKind.ENHANCED_OCR
    PROVIDER_DISPATCH[(ProviderKind.TESSERACT, _question_type)] = ServiceKind.ENHANCED_OCR
    PROVIDER_DISPATCH[(ProviderKind.PLUGIN, _question_type)] = ServiceKind.PLUGIN
del _question_type

FALLBACK_CHAINS: Dict[QuestionType, List[ServiceKind]] = {
    QuestionType.PURE_TEXT: [ServiceKind.ENHANCED_OCR, ServiceKind.VISION_TEXT],
    QuestionType.ANALYZE_DOCUMENT: [ServiceKind.VISION_TEXT, ServiceKind.ENHANCED_OCR, ServiceKind.REASONING],
    QuestionType.COUNT_OBJECTS: [ServiceKind.VISION_OBJECTS, ServiceKind.REASONING, ServiceKind.VISION_TEXT],
    QuestionType.DETECT_OBJECTS: [ServiceKind.VISION_OBJECTS, ServiceKind.REASONING],
    QuestionType.DESCRIBE_SCENE: [ServiceKind.REASONING, ServiceKind.VISION_OBJECTS],
    QuestionType.DETECT_LOGOS: [ServiceKind.VISION_LOGOS, ServiceKind.VISION_OBJECTS, ServiceKind.REASONING],
    QuestionType.IDENTIFY_CELEBRITY: [ServiceKind.VISION_WEB, ServiceKind.REASONING],
    QuestionType.CUSTOM_ANALYSIS: [ServiceKind.REASONING, ServiceKind.PLUGIN, ServiceKind.VISION_WEB],
}

# Candidate (service, model) pairs the cost optimizer may substitute per question type
COST_ALTERNATIVES: Dict[QuestionType, List[Tuple[ServiceKind, str]]] = {
    QuestionType.PURE_TEXT: [(ServiceKind.ENHANCED_OCR, "tesseract"), (ServiceKind.VISION_TEXT, "google-vision")],
    QuestionType.ANALYZE_DOCUMENT: [
        (ServiceKind.ENHANCED_OCR, "enhanced-ocr"),
        (ServiceKind.VISION_TEXT, "google-vision"),
    ],
    QuestionType.COUNT_OBJECTS: [
        (ServiceKind.VISION_OBJECTS, "google-vision"),
        (ServiceKind.REASONING, "gpt-3.5-vision"),
    ],
    QuestionType.DETECT_OBJECTS: [
        (ServiceKind.VISION_OBJECTS, "google-vision"),
        (ServiceKind.REASONING, "gpt-3.5-vision"),
    ],
    QuestionType.DESCRIBE_SCENE: [
        (ServiceKind.REASONING, "gpt-3.5-vision"),
        (ServiceKind.REASONING, "gpt-4-vision"),
        (ServiceKind.VISION_OBJECTS, "google-vision"),
    ],
    QuestionType.DETECT_LOGOS: [
        (ServiceKind.VISION_LOGOS, "google-vision"),
        (ServiceKind.REASONING, "gpt-3.5-vision"),
    ],
    QuestionType.IDENTIFY_CELEBRITY: [
        (ServiceKind.VISION_WEB, "google-vision-web"),
        (ServiceKind.REASONING, "gpt-4-vision"),
    ],
    QuestionType.CUSTOM_ANALYSIS: [
        (ServiceKind.REASONING, "gpt-3.5-vision"),
        (ServiceKind.VISION_WEB, "google-vision-web"),
    ],
}


def get_tier_policy(tier: Tier) -> Optional[TierPolicy]:
    return TIER_POLICIES.get(tier)


def required_tier_for(question_type: QuestionType) -> Tier:
    return QUESTION_TYPE_TIERS.get(question_type, Tier.PREMIUM)


def is_service_allowed(service: ServiceKind, tier: Tier) -> bool:
    policy = TIER_POLICIES.get(tier)
    return policy is not None and service in policy.services


def cache_options_for(service: ServiceKind) -> CacheOptions:
    return CACHE_OPTIONS.get(service, DEFAULT_CACHE_OPTIONS)


def upgrade_tier_for(tier: Tier) -> Tier:
    """Next tier up; premium users are pointed at premium."""
    return Tier.PRO if tier == Tier.FREE else Tier.PREMIUM


def estimate_service_cost(service: ServiceKind, model_cost: Optional[float] = None) -> float:
    """
    Per-request estimate for a service. Reasoning and plugin services are billed
    by model, so the model's price wins when known.
    """
    if service in (ServiceKind.REASONING, ServiceKind.PLUGIN) and model_cost is not None:
        return model_cost
    return SERVICE_COSTS.get(service, 0.01)
