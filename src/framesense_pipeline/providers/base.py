# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.

import inspect
from typing import Any, Dict, FrozenSet, Optional, Protocol, runtime_checkable

from framesense_pipeline.exceptions import ValidationError
from framesense_pipeline.models import ProviderResult


@runtime_checkable
class AnalysisProvider(Protocol):
    """
    Protocol every analysis backend implements (OCR engine, cloud vision,
    multimodal reasoning service, third-party plugins).
    """

    name: str
    capabilities: FrozenSet[str]
    cost_per_request: float
    average_response_time_ms: int

    async def analyze(self, image: Optional[bytes], parameters: Dict[str, Any]) -> ProviderResult:
        """
        Analyzes the image. Raises on failure; the executor converts the
        exception into a ProviderError and moves to the next service.
        """
        ...

    async def health_check(self) -> bool: ...


def check_conformance(provider: Any) -> None:
    """
    Asserts that `provider` implements AnalysisProvider.

    Beyond the Protocol's attribute check, the two methods must be coroutine
    functions, capabilities a non-empty collection of strings, and the declared
    cost and response time non-negative numbers. Raises ValidationError naming
    the first violation.
    """
    if not isinstance(provider, AnalysisProvider):
        missing = [
            attr
            for attr in (
                "name",
                "capabilities",
                "cost_per_request",
                "average_response_time_ms",
                "analyze",
                "health_check",
            )
            if not hasattr(provider, attr)
        ]
        raise ValidationError(f"Provider {provider!r} does not implement AnalysisProvider (missing: {missing})")

    for method in ("analyze", "health_check"):
        if not inspect.iscoroutinefunction(getattr(provider, method)):
            raise ValidationError(f"Provider {provider.name!r}: {method}() must be async")

    capabilities = provider.capabilities
    if isinstance(capabilities, str) or not capabilities:
        raise ValidationError(f"Provider {provider.name!r}: capabilities must be a non-empty collection")
    if not all(isinstance(c, str) and c for c in capabilities):
        raise ValidationError(f"Provider {provider.name!r}: capabilities must be non-empty strings")

    for attr in ("cost_per_request", "average_response_time_ms"):
        value = getattr(provider, attr)
        if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
            raise ValidationError(f"Provider {provider.name!r}: {attr} must be a non-negative number")
