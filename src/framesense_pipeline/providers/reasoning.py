# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.

from typing import Any, Dict, FrozenSet, Optional

import litellm
from litellm import acompletion
from litellm.exceptions import (
    APIConnectionError,
    APIError,
    AuthenticationError,
    BadRequestError,
    RateLimitError,
    ServiceUnavailableError,
    Timeout,
)

from framesense_pipeline.exceptions import ProviderError
from framesense_pipeline.imaging import to_data_url
from framesense_pipeline.models import ProviderResult, ServiceKind
from framesense_pipeline.utils.logger import logger

LITELLM_ERRORS = (
    APIConnectionError,
    APIError,
    AuthenticationError,
    BadRequestError,
    RateLimitError,
    ServiceUnavailableError,
    Timeout,
)

SYSTEM_PROMPT = (
    "You answer questions about images. Reply with the answer only, in plain prose, "
    "without restating the question."
)
DEFAULT_CAPABILITIES = frozenset(
    {"text-extraction", "object-detection", "scene-understanding", "reasoning", "description"}
)


class LiteLLMVisionProvider:
    """
    Multimodal reasoning service backed by `litellm.acompletion`.

    The image travels as a data URL inside an OpenAI-style message, so any
    vision-capable model litellm can reach works here.
    """

    name = "litellm-vision"

    def __init__(
        self,
        model: str = "gpt-4o",
        capabilities: FrozenSet[str] = DEFAULT_CAPABILITIES,
        cost_per_request: float = 0.03,
        average_response_time_ms: int = 8000,
        **completion_kwargs: Any,
    ) -> None:
        self.model = model
        self.capabilities = capabilities
        self.cost_per_request = cost_per_request
        self.average_response_time_ms = average_response_time_ms
        self.completion_kwargs = completion_kwargs

    def build_messages(self, image: Optional[bytes], parameters: Dict[str, Any]) -> list:
        question = parameters.get("question") or "Describe this image."
        language = parameters.get("language", "en")
        text = question if language == "en" else f"{question}\n\nAnswer in language: {language}"

        content: list = [{"type": "text", "text": text}]
        if image:
            content.append({"type": "image_url", "image_url": {"url": to_data_url(image)}})
        return [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": content},
        ]

    async def analyze(self, image: Optional[bytes], parameters: Dict[str, Any]) -> ProviderResult:
        try:
            response = await acompletion(
                model=self.model,
                messages=self.build_messages(image, parameters),
                max_tokens=parameters.get("max_tokens", 500),
                temperature=parameters.get("temperature", 0.1),
                **self.completion_kwargs,
            )
        except LITELLM_ERRORS as e:
            raise ProviderError(f"{self.model} request failed: {e}", service=ServiceKind.REASONING.value) from e

        if not response.choices:
            raise ProviderError(f"{self.model} returned no choices", service=ServiceKind.REASONING.value)

        choice = response.choices[0]
        usage = getattr(response, "usage", None)
        data: Dict[str, Any] = {
            "content": choice.message.content or "",
            "role": choice.message.role or "assistant",
            "finish_reason": choice.finish_reason,
            "id": response.id,
            "created": response.created,
            "model": response.model,
        }
        if usage is not None:
            data["usage"] = {
                "prompt_tokens": usage.prompt_tokens,
                "completion_tokens": usage.completion_tokens,
                "total_tokens": usage.total_tokens,
            }
        logger.debug(f"{self.model} answered ({choice.finish_reason}), {len(data['content'])} chars")
        # Truncated answers are less trustworthy
        return ProviderResult(data=data, confidence=0.9 if choice.finish_reason == "stop" else 0.7)

    async def health_check(self) -> bool:
        """Healthy when litellm finds the credentials the model needs."""
        try:
            report = litellm.validate_environment(model=self.model)
        except Exception as e:
            logger.warning(f"Health check for {self.model} failed: {e}")
            return False
        if not report.get("keys_in_environment", False):
            logger.warning(f"Health check for {self.model}: missing keys {report.get('missing_keys')}")
            return False
        return True
