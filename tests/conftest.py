# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.

import asyncio
import copy
import io
from typing import Any, Callable, Dict, Optional

import pytest
from PIL import Image

from framesense_pipeline.config import PipelineSettings
from framesense_pipeline.ledger import InMemoryUsageLedger
from framesense_pipeline.models import ProviderResult, ServiceKind, Tier, UserProfile
from framesense_pipeline.pipeline import AnalysisPipeline, create_pipeline
from framesense_pipeline.users import InMemoryUserStore

# Smallest byte strings the image sniffer accepts
PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00\x00\x00\rIHDR" + bytes(range(32))
JPEG_BYTES = b"\xff\xd8\xff\xe0" + bytes(range(64))


class FakeProvider:
    """In-memory AnalysisProvider that records its calls."""

    def __init__(
        self,
        name: str = "fake",
        data: Optional[Dict[str, Any]] = None,
        confidence: float = 0.9,
        fail: bool = False,
        healthy: bool = True,
        capabilities: frozenset = frozenset({"text-extraction"}),
        cost_per_request: float = 0.0,
        average_response_time_ms: int = 100,
        gate: Optional[asyncio.Event] = None,
    ) -> None:
        self.name = name
        self.data = data if data is not None else {"text": f"answer from {name}"}
        self.confidence = confidence
        self.fail = fail
        self.healthy = healthy
        self.capabilities = capabilities
        self.cost_per_request = cost_per_request
        self.average_response_time_ms = average_response_time_ms
        self.gate = gate
        self.calls = 0
        self.last_parameters: Optional[Dict[str, Any]] = None

    async def analyze(self, image: Optional[bytes], parameters: Dict[str, Any]) -> ProviderResult:
        self.calls += 1
        self.last_parameters = parameters
        if self.gate is not None:
            await self.gate.wait()
        if self.fail:
            raise RuntimeError(f"{self.name} is down")
        return ProviderResult(data=copy.deepcopy(self.data), confidence=self.confidence)

    async def health_check(self) -> bool:
        return self.healthy


@pytest.fixture
def make_provider() -> Callable[..., FakeProvider]:
    return FakeProvider


@pytest.fixture
def png_image() -> bytes:
    return PNG_BYTES


@pytest.fixture
def jpeg_image() -> bytes:
    return JPEG_BYTES


@pytest.fixture
def decodable_png() -> bytes:
    """A PNG that Pillow can open, for code that reads pixels."""
    buffer = io.BytesIO()
    Image.new("RGB", (32, 16), "white").save(buffer, format="PNG")
    return buffer.getvalue()


@pytest.fixture
def ledger() -> InMemoryUsageLedger:
    return InMemoryUsageLedger()


@pytest.fixture
def user_store() -> InMemoryUserStore:
    return InMemoryUserStore(
        [
            UserProfile(id="free-user", tier=Tier.FREE),
            UserProfile(id="pro-user", tier=Tier.PRO, daily_budget=5.0, monthly_budget=100.0),
            UserProfile(id="premium-user", tier=Tier.PREMIUM, daily_budget=50.0, monthly_budget=1000.0),
        ]
    )


@pytest.fixture
def providers(make_provider: Callable[..., FakeProvider]) -> Dict[ServiceKind, FakeProvider]:
    return {
        ServiceKind.ENHANCED_OCR: make_provider("ocr", {"text": "HELLO WORLD", "confidence": 0.95}),
        ServiceKind.VISION_TEXT: make_provider("vision-text", {"text": "HELLO WORLD", "locale": "en"}),
        ServiceKind.VISION_OBJECTS: make_provider(
            "vision-objects", {"objects": [{"name": "dog"}, {"name": "ball"}], "total_objects": 2}
        ),
        ServiceKind.VISION_LOGOS: make_provider("vision-logos", {"logos": [{"description": "Acme"}]}),
        ServiceKind.VISION_WEB: make_provider("vision-web", {"web_entities": [{"description": "Famous Person"}]}),
        ServiceKind.REASONING: make_provider(
            "reasoning",
            {"content": "It appears that a dog is playing on a beach.", "model": "gpt-4o", "id": "chatcmpl-1"},
            capabilities=frozenset({"reasoning", "description"}),
            cost_per_request=0.03,
        ),
    }


@pytest.fixture
def settings() -> PipelineSettings:
    return PipelineSettings()


@pytest.fixture
def pipeline(
    settings: PipelineSettings,
    providers: Dict[ServiceKind, FakeProvider],
    user_store: InMemoryUserStore,
    ledger: InMemoryUsageLedger,
) -> AnalysisPipeline:
    return create_pipeline(settings=settings, providers=providers, user_store=user_store, ledger=ledger)
