# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.

import time
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class Tier(str, Enum):
    FREE = "free"
    PRO = "pro"
    PREMIUM = "premium"

    @property
    def rank(self) -> int:
        return _TIER_RANKS[self]

    def covers(self, required: "Tier") -> bool:
        """True when this tier is at least as high as `required`."""
        return self.rank >= required.rank


_TIER_RANKS = {Tier.FREE: 0, Tier.PRO: 1, Tier.PREMIUM: 2}


class QuestionType(str, Enum):
    PURE_TEXT = "PURE_TEXT"
    COUNT_OBJECTS = "COUNT_OBJECTS"
    DETECT_OBJECTS = "DETECT_OBJECTS"
    DESCRIBE_SCENE = "DESCRIBE_SCENE"
    DETECT_LOGOS = "DETECT_LOGOS"
    ANALYZE_DOCUMENT = "ANALYZE_DOCUMENT"
    IDENTIFY_CELEBRITY = "IDENTIFY_CELEBRITY"
    CUSTOM_ANALYSIS = "CUSTOM_ANALYSIS"


class ServiceKind(str, Enum):
    ENHANCED_OCR = "enhanced-ocr"
    VISION_TEXT = "google-vision-text"
    VISION_OBJECTS = "google-vision-objects"
    VISION_WEB = "google-vision-web"
    VISION_LOGOS = "google-vision-logo"
    REASONING = "openai-vision"
    PLUGIN = "open-source-api"


class ProviderKind(str, Enum):
    TESSERACT = "tesseract"
    HYBRID = "hybrid"
    GOOGLE = "google"
    OPENAI = "openai"
    PLUGIN = "plugin"


class Complexity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Quality(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Speed(str, Enum):
    FAST = "fast"
    MEDIUM = "medium"
    SLOW = "slow"


class DetailLevel(str, Enum):
    BASIC = "basic"
    STANDARD = "standard"
    FULL = "full"


class StripLevel(str, Enum):
    NONE = "none"
    LIGHT = "light"
    MODERATE = "moderate"
    AGGRESSIVE = "aggressive"


class QuestionClassification(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: QuestionType
    required_capabilities: FrozenSet[str] = frozenset()
    estimated_cost: float = Field(default=0.01, ge=0.0)
    complexity: Complexity = Complexity.MEDIUM
    prefer_fast: bool = False
    default_model: Optional[str] = None
    confidence: float = Field(default=1.0, ge=0.0, le=1.0)


class UserProfile(BaseModel):
    id: str
    tier: Tier = Tier.FREE
    daily_usage: int = 0
    monthly_usage: int = 0
    daily_budget: float = 1.0
    monthly_budget: float = 25.0
    cost_optimization_enabled: bool = False
    language: str = "en"

    @classmethod
    def default_for(cls, user_id: str) -> "UserProfile":
        """Conservative profile used when the user cannot be resolved."""
        return cls(id=user_id, tier=Tier.FREE, daily_budget=1.0, monthly_budget=25.0, cost_optimization_enabled=True)


class ModelDefinition(BaseModel):
    id: str  # e.g. "gpt-4-vision"
    provider: ProviderKind
    tier: Tier
    capabilities: FrozenSet[str] = frozenset()
    quality: Quality = Quality.MEDIUM
    speed: Speed = Speed.MEDIUM
    cost_per_request: float = Field(default=0.0, ge=0.0)
    avg_response_time_ms: int = Field(default=5000, ge=0)
    enabled: bool = True


class CacheOptions(BaseModel):
    model_config = ConfigDict(frozen=True)

    ttl_seconds: int = Field(..., gt=0)
    compress: bool = True


class OptimizationSummary(BaseModel):
    original_service: ServiceKind
    original_cost: float
    optimized_cost: float
    savings: float
    quality_delta: float = 0.0
    alternatives_considered: int = 0
    # Smaller of the remaining daily and monthly budget when the route was chosen
    budget_headroom: Optional[float] = None
    denied: bool = False
    error: Optional[str] = None


class RoutingMetadata(BaseModel):
    routing_time_ms: float = 0.0
    access_tier: Tier
    user_choice_honored: bool = False
    optimization_applied: bool = False
    timestamp: float = Field(default_factory=time.time)


class RouteDecision(BaseModel):
    model_config = ConfigDict(frozen=True)

    service: ServiceKind
    model: str
    question_type: QuestionType
    parameters: Dict[str, Any] = Field(default_factory=dict)
    fallback_chain: List[ServiceKind] = Field(default_factory=list)
    estimated_cost: float = Field(default=0.0, ge=0.0)
    estimated_time_ms: int = 0
    # Most a single attempt may cost, fallbacks included; None means unbounded
    cost_headroom: Optional[float] = None
    cache_options: CacheOptions
    access_denied: bool = False
    suggested_tier: Optional[Tier] = None
    denial_reason: Optional[str] = None
    message: Optional[str] = None
    error: bool = False
    error_message: Optional[str] = None
    optimization: Optional[OptimizationSummary] = None
    metadata: Optional[RoutingMetadata] = None

    @property
    def degraded(self) -> bool:
        return self.access_denied or self.error


class AccessDecision(BaseModel):
    allowed: bool
    tier: Tier
    reason: Optional[str] = None
    suggested_tier: Optional[Tier] = None
    message: Optional[str] = None
    limits: Dict[str, Any] = Field(default_factory=dict)
    usage: Dict[str, Any] = Field(default_factory=dict)


class ProviderResult(BaseModel):
    data: Dict[str, Any]
    confidence: float = Field(default=0.9, ge=0.0, le=1.0)


class CacheEntry(BaseModel):
    key: str
    payload: Any
    ttl_seconds: int
    stored_at: float
    size_bytes: int
    compressed: bool = False
    cost_estimate: float = 0.0

    def expired(self, now: float) -> bool:
        return now >= self.stored_at + self.ttl_seconds


class UsageRecord(BaseModel):
    user_id: str
    tier: Optional[Tier] = None
    service: str
    cost: float = 0.0
    response_time_ms: float = 0.0
    success: bool = True
    cached: bool = False
    question_type: Optional[QuestionType] = None
    error: Optional[str] = None
    timestamp: float = Field(default_factory=time.time)


class ResponseMetadata(BaseModel):
    request_id: str
    response_time_ms: float
    service_response_time_ms: Optional[float] = None
    cost: float = 0.0
    cost_saved: float = 0.0
    cached: bool = False
    model: Optional[str] = None
    confidence: float = 0.9
    optimization_stats: Optional[Dict[str, Any]] = None
    fallback_used: bool = False


class AnalysisResponse(BaseModel):
    success: bool = True
    source: str
    result: Any
    access_denied: bool = False
    suggested_tier: Optional[Tier] = None
    message: Optional[str] = None
    compressed_result: Optional[Dict[str, Any]] = None
    metadata: ResponseMetadata


class FailureMetadata(BaseModel):
    request_id: str
    response_time_ms: float
    suggestion: str


class AnalysisFailure(BaseModel):
    success: bool = False
    error: str
    error_type: str
    metadata: FailureMetadata
