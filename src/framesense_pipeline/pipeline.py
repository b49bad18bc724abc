# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.

import time
import uuid
from typing import Any, Dict, Mapping, Optional, Tuple, Union

from framesense_pipeline.cache import CacheHit, CacheManager, InMemoryCacheStore
from framesense_pipeline.classifier import QuestionClassifier
from framesense_pipeline.config import PipelineSettings
from framesense_pipeline.cost_optimizer import CostOptimizer
from framesense_pipeline.exceptions import (
    AccessDeniedError,
    InternalError,
    PipelineError,
    ValidationError,
)
from framesense_pipeline.executor import ServiceExecutor
from framesense_pipeline.fallback import FallbackChainBuilder
from framesense_pipeline.health import ServiceHealthMonitor
from framesense_pipeline.imaging import decode_image
from framesense_pipeline.inflight import InFlightRegistry, request_fingerprint
from framesense_pipeline.interfaces import CacheStore, Classifier, UsageLedger, UserStore
from framesense_pipeline.ledger import InMemoryUsageLedger
from framesense_pipeline.models import (
    AnalysisFailure,
    AnalysisResponse,
    FailureMetadata,
    QuestionClassification,
    ResponseMetadata,
    ServiceKind,
    UsageRecord,
    UserProfile,
)
from framesense_pipeline.policy import BASELINE_SERVICE, get_tier_policy
from framesense_pipeline.providers.base import AnalysisProvider
from framesense_pipeline.providers.ocr import TesseractOCRProvider
from framesense_pipeline.providers.reasoning import LiteLLMVisionProvider
from framesense_pipeline.providers.registry import ProviderRegistry
from framesense_pipeline.registry import ModelRegistry
from framesense_pipeline.router import Router
from framesense_pipeline.shaper import ResponseShaper
from framesense_pipeline.tier_gate import TierGate
from framesense_pipeline.users import InMemoryUserStore
from framesense_pipeline.utils.logger import logger

ImageInput = Union[bytes, bytearray, str, None]
PipelineResult = Union[AnalysisResponse, AnalysisFailure]

CACHE_SOURCE = "cache"
ERROR_SERVICE = "error"


def new_request_id() -> str:
    return f"req_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


def error_suggestion(message: str, max_image_bytes: int) -> str:
    lowered = message.lower()
    if "premium" in lowered:
        return "This feature requires a premium subscription. Please upgrade your plan."
    if "rate limit" in lowered:
        return "You have reached your rate limit. Please try again later or upgrade your plan."
    if "image" in lowered:
        return (
            "Please check your image format and size. Supported formats: JPG, PNG, GIF, WebP, BMP. "
            f"Max size: {max_image_bytes // (1024 * 1024)}MB."
        )
    return "Please try again or contact support if the issue persists."


class AnalysisPipeline:
    """
    Answers a question about an image, end to end.

    Stages run strictly in order for one request:
    validate, classify, duplicate check, profile, cache lookup, route, execute,
    shape for cache, store, record usage, respond. A cache hit skips routing and
    execution. Any exception becomes an AnalysisFailure; nothing escapes.
    """

    def __init__(
        self,
        settings: PipelineSettings,
        classifier: Classifier,
        user_store: UserStore,
        ledger: UsageLedger,
        cache: CacheManager,
        router: Router,
        executor: ServiceExecutor,
        shaper: ResponseShaper,
        providers: ProviderRegistry,
        inflight: Optional[InFlightRegistry] = None,
    ) -> None:
        self.settings = settings
        self.classifier = classifier
        self.user_store = user_store
        self.ledger = ledger
        self.cache = cache
        self.router = router
        self.executor = executor
        self.shaper = shaper
        self.providers = providers
        self.inflight = inflight or InFlightRegistry()
        self._metrics: Dict[str, Any] = {
            "total_requests": 0,
            "successful_requests": 0,
            "failed_requests": 0,
            "cache_hits": 0,
            "access_denied": 0,
            "fallbacks": 0,
            "total_cost": 0.0,
            "total_cost_saved": 0.0,
            "total_response_time_ms": 0.0,
            "errors_by_type": {},
        }

    async def process_analysis_request(
        self,
        image: ImageInput,
        question_text: str,
        user_id: str,
        options: Optional[Mapping[str, Any]] = None,
    ) -> PipelineResult:
        """
        Processes one analysis request.

        Args:
            image: Raw image bytes, a `data:image/...;base64,` URL, or None.
            question_text: The user's question (3 to 1000 characters after trimming).
            user_id: Id used to load the profile and account usage.
            options: Optional `model_preference`, `language`, `include_regions`,
                `max_results`, and `allow_degraded` (default True; False turns an
                access denial into an `access_denied` failure instead of the
                baseline route).

        Returns:
            AnalysisResponse on success (including degraded baseline answers),
            AnalysisFailure otherwise.
        """
        request_id = new_request_id()
        started = time.perf_counter()
        options = dict(options or {})
        self._metrics["total_requests"] += 1

        dedup_key: Optional[str] = None
        began = False
        profile: Optional[UserProfile] = None
        classification: Optional[QuestionClassification] = None

        logger.info(f"[{request_id}] Analysis request from {user_id}")
        try:
            question, image_bytes = self._validate(image, question_text, user_id)

            classification = self.classifier.classify(question)
            logger.debug(f"[{request_id}] Classified as {classification.id.value} ({classification.confidence:.2f})")

            # No await between the duplicate check and the insert
            key = request_fingerprint(user_id, question, image_bytes is not None)
            self.inflight.acquire(key)
            dedup_key = key

            profile = await self._load_profile(user_id, request_id)
            self._check_tier_image_limit(image_bytes, profile)

            await self.ledger.begin_request(user_id)
            began = True

            cache_key = self.cache.generate_key(image_bytes, question, classification.id, profile.tier)
            hit = await self.cache.get(cache_key)
            if hit is not None:
                return await self._respond_from_cache(hit, request_id, profile, classification, started)

            route = await self.router.route_request(
                classification, options.get("model_preference"), profile, options
            )
            if route.access_denied:
                self._metrics["access_denied"] += 1
                if options.get("allow_degraded", True) is False:
                    suggested = route.suggested_tier.value if route.suggested_tier else None
                    message = f"Access denied ({route.denial_reason})"
                    if suggested:
                        message += f", requires the {suggested} tier"
                    raise AccessDeniedError(message, route.denial_reason or "access_denied", suggested)

            parameters = {**route.parameters, "question": question}
            execution = await self.executor.execute(route, image_bytes, parameters, request_id)

            shaped = self.shaper.shape_for_cache(execution.data, execution.service)
            if route.degraded:
                logger.debug(f"[{request_id}] Degraded route, result not cached")
            else:
                await self.cache.set(
                    cache_key,
                    {"envelope": shaped.payload, "model": execution.model, "confidence": execution.confidence},
                    ttl_seconds=route.cache_options.ttl_seconds,
                    cost_estimate=execution.cost,
                    compress=route.cache_options.compress,
                )

            await self._record(
                UsageRecord(
                    user_id=user_id,
                    tier=profile.tier,
                    service=execution.service.value,
                    cost=execution.cost,
                    response_time_ms=execution.response_time_ms,
                    success=True,
                    cached=False,
                    question_type=classification.id,
                )
            )

            transmission = self.shaper.shape_for_transmission(shaped.payload, profile.tier, execution.service)
            response_time_ms = (time.perf_counter() - started) * 1000
            self._count_success(execution.cost, 0.0, response_time_ms)
            if execution.fallback_used:
                self._metrics["fallbacks"] += 1

            logger.info(
                f"[{request_id}] Completed via {execution.service.value} in {response_time_ms:.0f}ms "
                f"(cost ${execution.cost:.4f})"
            )
            return AnalysisResponse(
                source=execution.service.value,
                result=transmission.payload,
                access_denied=route.access_denied,
                suggested_tier=route.suggested_tier,
                message=route.message,
                compressed_result=transmission.compressed.model_dump() if transmission.compressed else None,
                metadata=ResponseMetadata(
                    request_id=request_id,
                    response_time_ms=response_time_ms,
                    service_response_time_ms=execution.response_time_ms,
                    cost=execution.cost,
                    cached=False,
                    model=execution.model,
                    confidence=execution.confidence,
                    optimization_stats=route.optimization.model_dump(mode="json") if route.optimization else None,
                    fallback_used=execution.fallback_used,
                ),
            )

        except PipelineError as e:
            return await self._handle_error(e, request_id, user_id, profile, classification, started)
        except Exception as e:
            logger.exception(f"[{request_id}] Unexpected error: {e}")
            error = InternalError(f"Internal error while processing the request: {e}")
            return await self._handle_error(error, request_id, user_id, profile, classification, started)
        finally:
            if dedup_key is not None:
                self.inflight.release(dedup_key)
            if began:
                try:
                    await self.ledger.end_request(user_id)
                except Exception as e:
                    logger.error(f"[{request_id}] Failed to close active request for {user_id}: {e}")

    def _validate(self, image: ImageInput, question_text: str, user_id: str) -> Tuple[str, Optional[bytes]]:
        if not isinstance(user_id, str) or not user_id.strip():
            raise ValidationError("user_id is required")
        if not isinstance(question_text, str):
            raise ValidationError("Question must be a string")

        question = question_text.strip()
        if len(question) < self.settings.min_question_length:
            raise ValidationError(f"Question must be at least {self.settings.min_question_length} characters long")
        if len(question) > self.settings.max_question_length:
            raise ValidationError(f"Question must be at most {self.settings.max_question_length} characters long")

        image_bytes = decode_image(image)
        if image_bytes is not None and len(image_bytes) > self.settings.max_image_bytes:
            raise ValidationError(
                f"Image too large: {len(image_bytes)} bytes (max {self.settings.max_image_bytes} bytes)"
            )
        return question, image_bytes

    async def _load_profile(self, user_id: str, request_id: str) -> UserProfile:
        try:
            profile = await self.user_store.get_user_by_id(user_id)
        except Exception as e:
            logger.warning(f"[{request_id}] Failed to load profile for {user_id}, using defaults: {e}")
            return UserProfile.default_for(user_id)
        if profile is None:
            logger.warning(f"[{request_id}] Unknown user {user_id}, using default profile")
            return UserProfile.default_for(user_id)
        return profile

    @staticmethod
    def _check_tier_image_limit(image: Optional[bytes], profile: UserProfile) -> None:
        policy = get_tier_policy(profile.tier)
        if image is None or policy is None:
            return
        if len(image) > policy.max_image_bytes:
            raise ValidationError(
                f"Image of {len(image)} bytes exceeds the {profile.tier.value} tier limit of "
                f"{policy.max_image_bytes} bytes"
            )

    async def _respond_from_cache(
        self,
        hit: CacheHit,
        request_id: str,
        profile: UserProfile,
        classification: QuestionClassification,
        started: float,
    ) -> AnalysisResponse:
        envelope = hit.payload["envelope"]
        service = ServiceKind(envelope["service"])
        transmission = self.shaper.shape_for_transmission(envelope, profile.tier, service)
        response_time_ms = (time.perf_counter() - started) * 1000

        await self._record(
            UsageRecord(
                user_id=profile.id,
                tier=profile.tier,
                service=CACHE_SOURCE,
                cost=0.0,
                response_time_ms=response_time_ms,
                success=True,
                cached=True,
                question_type=classification.id,
            )
        )
        self._metrics["cache_hits"] += 1
        self._count_success(0.0, hit.cost_saved, response_time_ms)

        logger.info(f"[{request_id}] Served from cache in {response_time_ms:.0f}ms (saved ${hit.cost_saved:.4f})")
        return AnalysisResponse(
            source=CACHE_SOURCE,
            result=transmission.payload,
            compressed_result=transmission.compressed.model_dump() if transmission.compressed else None,
            metadata=ResponseMetadata(
                request_id=request_id,
                response_time_ms=response_time_ms,
                cost=0.0,
                cost_saved=hit.cost_saved,
                cached=True,
                model=hit.payload.get("model"),
                confidence=hit.payload.get("confidence", 0.9),
            ),
        )

    async def _handle_error(
        self,
        error: PipelineError,
        request_id: str,
        user_id: str,
        profile: Optional[UserProfile],
        classification: Optional[QuestionClassification],
        started: float,
    ) -> AnalysisFailure:
        response_time_ms = (time.perf_counter() - started) * 1000
        if isinstance(error, (ValidationError, AccessDeniedError)):
            logger.warning(f"[{request_id}] Request rejected ({error.code}): {error.message}")
        else:
            logger.error(f"[{request_id}] Request failed ({error.code}): {error.message}")

        await self._record(
            UsageRecord(
                user_id=user_id if isinstance(user_id, str) and user_id else "anonymous",
                tier=profile.tier if profile else None,
                service=ERROR_SERVICE,
                cost=0.0,
                response_time_ms=response_time_ms,
                success=False,
                cached=False,
                question_type=classification.id if classification else None,
                error=error.message,
            )
        )
        self._metrics["failed_requests"] += 1
        by_type = self._metrics["errors_by_type"]
        by_type[error.code] = by_type.get(error.code, 0) + 1

        return AnalysisFailure(
            error=error.message,
            error_type=error.code,
            metadata=FailureMetadata(
                request_id=request_id,
                response_time_ms=response_time_ms,
                suggestion=error_suggestion(error.message, self.settings.max_image_bytes),
            ),
        )

    async def _record(self, record: UsageRecord) -> None:
        try:
            await self.ledger.record_request(record)
        except Exception as e:
            logger.error(f"Failed to record usage for {record.user_id}: {e}")

    def _count_success(self, cost: float, cost_saved: float, response_time_ms: float) -> None:
        self._metrics["successful_requests"] += 1
        self._metrics["total_cost"] += cost
        self._metrics["total_cost_saved"] += cost_saved
        self._metrics["total_response_time_ms"] += response_time_ms

    async def usage_report(self, user_id: str) -> Dict[str, Any]:
        profile = await self._load_profile(user_id, "usage")
        policy = get_tier_policy(profile.tier)
        return {
            "user_id": user_id,
            "tier": profile.tier.value,
            "daily_requests": await self.ledger.get_daily_usage(user_id),
            "monthly_requests": await self.ledger.get_monthly_usage(user_id),
            "daily_cost": await self.ledger.get_daily_cost(user_id),
            "monthly_cost": await self.ledger.get_monthly_cost(user_id),
            "active_requests": await self.ledger.get_active_request_count(user_id),
            "limits": {
                "daily": policy.daily_limit if policy else None,
                "monthly": policy.monthly_limit if policy else None,
                "cost_ceiling": policy.cost_ceiling if policy else None,
            },
        }

    def metrics(self) -> Dict[str, Any]:
        data = dict(self._metrics)
        data["errors_by_type"] = dict(self._metrics["errors_by_type"])
        total = data["total_requests"]
        successful = data["successful_requests"]
        elapsed = data.pop("total_response_time_ms")
        data["average_response_time_ms"] = round(elapsed / successful, 2) if successful else 0.0
        data["cache_hit_rate"] = round(data["cache_hits"] / total, 4) if total else 0.0
        data["in_flight"] = len(self.inflight)
        data["shaper"] = dict(self.shaper.metrics)
        return data

    async def health_check(self) -> Dict[str, Any]:
        providers = await self.providers.health_report()
        if not providers:
            status = "unhealthy"
        elif all(providers.values()):
            status = "healthy"
        else:
            status = "degraded"

        report: Dict[str, Any] = {
            "status": status,
            "providers": providers,
            "circuits": self.executor.health.snapshot(),
            "cache": self.cache.health(),
            "in_flight": len(self.inflight),
        }
        summary = getattr(self.ledger, "summary", None)
        if callable(summary):
            report["ledger"] = summary()
        return report


def create_pipeline(
    settings: Optional[PipelineSettings] = None,
    providers: Optional[Mapping[ServiceKind, AnalysisProvider]] = None,
    user_store: Optional[UserStore] = None,
    ledger: Optional[UsageLedger] = None,
    cache_store: Optional[CacheStore] = None,
    model_registry: Optional[ModelRegistry] = None,
    classifier: Optional[Classifier] = None,
    health: Optional[ServiceHealthMonitor] = None,
) -> AnalysisPipeline:
    """
    Wires a pipeline from its collaborators; anything omitted gets the
    in-memory default. Without `providers`, the zero-cost baseline OCR service
    (local Tesseract) and the reasoning service (litellm with
    `settings.reasoning_model`) are registered.
    """
    settings = settings or PipelineSettings()
    ledger = ledger if ledger is not None else InMemoryUsageLedger()
    model_registry = model_registry if model_registry is not None else ModelRegistry()

    provider_registry = ProviderRegistry(model_registry)
    if providers is None:
        providers = {
            BASELINE_SERVICE: TesseractOCRProvider(default_language=settings.ocr_language),
            ServiceKind.REASONING: LiteLLMVisionProvider(model=settings.reasoning_model),
        }
    for service, provider in providers.items():
        provider_registry.register(service, provider)
    if not provider_registry.has_provider(BASELINE_SERVICE):
        logger.warning(f"No provider for baseline service {BASELINE_SERVICE.value}; degraded routes will fail")

    router = Router(
        model_registry,
        TierGate(ledger),
        FallbackChainBuilder(),
        CostOptimizer(model_registry, ledger),
    )
    cache = CacheManager(
        store=cache_store if cache_store is not None else InMemoryCacheStore(settings.cache_max_entries),
        compression_min_bytes=settings.compression_min_bytes,
    )
    pipeline = AnalysisPipeline(
        settings=settings,
        classifier=classifier if classifier is not None else QuestionClassifier(),
        user_store=user_store if user_store is not None else InMemoryUserStore(),
        ledger=ledger,
        cache=cache,
        router=router,
        executor=ServiceExecutor(provider_registry, settings, health),
        shaper=ResponseShaper(token_model=settings.reasoning_model),
        providers=provider_registry,
    )
    logger.info(f"Analysis pipeline ready with services: {[s.value for s in providers]}")
    return pipeline
