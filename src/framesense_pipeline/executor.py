# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.

import asyncio
import time
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from framesense_pipeline.config import PipelineSettings
from framesense_pipeline.exceptions import ProviderError
from framesense_pipeline.health import ServiceHealthMonitor
from framesense_pipeline.models import ProviderResult, RouteDecision, ServiceKind
from framesense_pipeline.policy import estimate_service_cost
from framesense_pipeline.providers.registry import ProviderRegistry
from framesense_pipeline.utils.logger import logger


class ExecutionResult(BaseModel):
    service: ServiceKind
    model: str
    data: Dict[str, Any]
    confidence: float
    cost: float
    response_time_ms: float
    attempts: int
    fallback_used: bool = False
    errors: List[str] = Field(default_factory=list)


class ServiceExecutor:
    """
    Runs a RouteDecision against the provider registry.

    The fallback chain is walked in order (its first entry is the primary
    service). Every provider call carries the service's timeout; a failure is
    logged once and the next service is tried. Services whose circuit is open
    are skipped without a call, so a request makes at most len(chain) calls.
    Services that would cost more than the route's cost headroom are skipped
    the same way.
    """

    def __init__(
        self,
        providers: ProviderRegistry,
        settings: PipelineSettings,
        health: Optional[ServiceHealthMonitor] = None,
    ) -> None:
        self.providers = providers
        self.settings = settings
        self.health = health or ServiceHealthMonitor()

    async def execute(
        self,
        route: RouteDecision,
        image: Optional[bytes],
        parameters: Dict[str, Any],
        request_id: str = "",
    ) -> ExecutionResult:
        chain = list(route.fallback_chain) or [route.service]
        errors: List[str] = []
        attempts = 0
        last_error: Optional[ProviderError] = None

        for position, service in enumerate(chain):
            if not self.health.is_available(service):
                logger.info(f"[{request_id}] Skipping {service.value}: circuit open")
                errors.append(f"{service.value}: circuit open")
                continue

            model = route.model if service == route.service else None
            try:
                provider = self.providers.resolve(service, model)
            except ProviderError as e:
                logger.warning(f"[{request_id}] ProviderError on {service.value}: {e.message}")
                errors.append(f"{service.value}: {e.message}")
                last_error = e
                continue

            if service == route.service:
                served_model, cost = route.model, route.estimated_cost
            else:
                served_model = provider.name
                cost = estimate_service_cost(service, provider.cost_per_request)
            if route.cost_headroom is not None and cost > route.cost_headroom:
                logger.info(
                    f"[{request_id}] Skipping {service.value}: ${cost:.4f} exceeds "
                    f"cost headroom ${route.cost_headroom:.4f}"
                )
                errors.append(f"{service.value}: exceeds cost headroom")
                continue

            attempts += 1
            timeout = self.settings.timeout_for(service.value)
            start = time.perf_counter()
            try:
                result = await asyncio.wait_for(provider.analyze(image, parameters), timeout=timeout)
                if not isinstance(result, ProviderResult):
                    result = ProviderResult.model_validate(result)
            except asyncio.TimeoutError:
                last_error = ProviderError(f"{service.value} timed out after {timeout}s", service=service.value)
            except ProviderError as e:
                last_error = e
            except Exception as e:
                last_error = ProviderError(f"{service.value} failed: {e}", service=service.value)
            else:
                elapsed_ms = (time.perf_counter() - start) * 1000
                self.health.record_success(service)
                logger.info(
                    f"[{request_id}] {service.value} answered in {elapsed_ms:.0f}ms"
                    + (f" (fallback #{position})" if position else "")
                )
                return ExecutionResult(
                    service=service,
                    model=served_model,
                    data=result.data,
                    confidence=result.confidence,
                    cost=cost,
                    response_time_ms=elapsed_ms,
                    attempts=attempts,
                    fallback_used=position > 0,
                    errors=errors,
                )

            self.health.record_failure(service)
            errors.append(f"{service.value}: {last_error.message}")
            logger.warning(f"[{request_id}] ProviderError on {service.value}: {last_error.message}")

        logger.error(f"[{request_id}] Fallback chain exhausted after {attempts} provider calls: {errors}")
        raise ProviderError(
            f"All analysis services failed. Last error: {last_error.message if last_error else 'no service available'}",
            service=last_error.service if last_error else None,
        )
