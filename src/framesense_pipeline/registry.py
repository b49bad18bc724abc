# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.

import threading
from typing import Dict, Iterable, List, Optional

from framesense_pipeline.models import ModelDefinition, ProviderKind, Quality, Speed, Tier
from framesense_pipeline.utils.logger import logger

DEFAULT_MODELS: List[ModelDefinition] = [
    ModelDefinition(
        id="tesseract",
        provider=ProviderKind.TESSERACT,
        tier=Tier.FREE,
        capabilities=frozenset({"text-extraction", "ocr"}),
        quality=Quality.LOW,
        speed=Speed.FAST,
        cost_per_request=0.0,
        avg_response_time_ms=2000,
    ),
    ModelDefinition(
        id="enhanced-ocr",
        provider=ProviderKind.HYBRID,
        tier=Tier.FREE,
        capabilities=frozenset({"text-extraction", "ocr", "multilingual", "document-analysis"}),
        quality=Quality.MEDIUM,
        speed=Speed.FAST,
        cost_per_request=0.0,
        avg_response_time_ms=3000,
    ),
    ModelDefinition(
        id="google-vision",
        provider=ProviderKind.GOOGLE,
        tier=Tier.PRO,
        capabilities=frozenset(
            {"text-extraction", "object-detection", "counting", "localization", "logo-detection", "brand-recognition"}
        ),
        quality=Quality.HIGH,
        speed=Speed.FAST,
        cost_per_request=0.006,
        avg_response_time_ms=6000,
    ),
    ModelDefinition(
        id="google-vision-web",
        provider=ProviderKind.GOOGLE,
        tier=Tier.PREMIUM,
        capabilities=frozenset({"celebrity-id", "web-search", "face-recognition"}),
        quality=Quality.HIGH,
        speed=Speed.MEDIUM,
        cost_per_request=0.0035,
        avg_response_time_ms=10000,
    ),
    ModelDefinition(
        id="gpt-3.5-vision",
        provider=ProviderKind.OPENAI,
        tier=Tier.PRO,
        capabilities=frozenset({"text-extraction", "object-detection", "scene-understanding", "description"}),
        quality=Quality.MEDIUM,
        speed=Speed.FAST,
        cost_per_request=0.02,
        avg_response_time_ms=8000,
    ),
    ModelDefinition(
        id="gpt-4-vision",
        provider=ProviderKind.OPENAI,
        tier=Tier.PREMIUM,
        capabilities=frozenset(
            {"text-extraction", "object-detection", "scene-understanding", "reasoning", "description", "custom-models"}
        ),
        quality=Quality.HIGH,
        speed=Speed.SLOW,
        cost_per_request=0.04,
        avg_response_time_ms=12000,
    ),
]


class ModelRegistry:
    """
    Catalog of models the router may select, in declaration order.
    Instances are independent; the pipeline owns one.
    """

    def __init__(self, models: Optional[Iterable[ModelDefinition]] = None) -> None:
        self._lock = threading.Lock()
        self._models: Dict[str, ModelDefinition] = {}
        for model in DEFAULT_MODELS if models is None else models:
            self._models[model.id] = model
        logger.debug(f"ModelRegistry initialized with {len(self._models)} models")

    def register_model(self, model: ModelDefinition) -> None:
        """
        Registers a model. A model with the same id is replaced in place,
        keeping its original position.
        """
        with self._lock:
            self._models[model.id] = model
            logger.debug(f"Registered model: {model.id} (Tier: {model.tier.value}, Provider: {model.provider.value})")

    def unregister_model(self, model_id: str) -> None:
        with self._lock:
            self._models.pop(model_id, None)

    def get_model(self, model_id: str) -> Optional[ModelDefinition]:
        with self._lock:
            return self._models.get(model_id)

    def list_models(self, tier: Optional[Tier] = None) -> List[ModelDefinition]:
        """
        Lists all models, optionally only those declared at exactly `tier`.
        """
        with self._lock:
            all_models = list(self._models.values())

        if tier:
            return [m for m in all_models if m.tier == tier]
        return all_models

    def available_for_tier(self, tier: Tier) -> List[ModelDefinition]:
        """
        Enabled models a user of `tier` may choose (model tier at or below the user's).
        """
        return [m for m in self.list_models() if m.enabled and tier.covers(m.tier)]

    def clear(self) -> None:
        with self._lock:
            self._models.clear()
            logger.debug("ModelRegistry cleared")
