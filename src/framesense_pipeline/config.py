# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.

import os
from typing import Dict

from pydantic import BaseModel, Field

ENV_PREFIX = "FRAMESENSE_"


class PipelineSettings(BaseModel):
    """
    Runtime configuration for the analysis pipeline.

    Values default to the constants below and can be overridden through
    `FRAMESENSE_*` environment variables with `PipelineSettings.from_env()`.
    """

    max_image_bytes: int = Field(default=50 * 1024 * 1024, gt=0)
    min_question_length: int = Field(default=3, ge=1)
    max_question_length: int = Field(default=1000, ge=1)
    provider_timeout_seconds: float = Field(default=30.0, gt=0)
    # Per-service overrides keyed by service value, e.g. {"openai-vision": 60.0}
    service_timeouts: Dict[str, float] = Field(
        default_factory=lambda: {"enhanced-ocr": 15.0, "openai-vision": 45.0, "open-source-api": 20.0}
    )
    cache_max_entries: int = Field(default=10_000, gt=0)
    compression_min_bytes: int = Field(default=1024, ge=0)
    reasoning_model: str = "gpt-4o"
    # Tesseract traineddata used when the request language has no mapping
    ocr_language: str = "eng"
    host: str = "127.0.0.1"
    port: int = Field(default=8000, gt=0, lt=65536)

    def timeout_for(self, service: str) -> float:
        return self.service_timeouts.get(service, self.provider_timeout_seconds)

    @classmethod
    def from_env(cls) -> "PipelineSettings":
        """
        Builds settings from the process environment.
        Unset variables keep their defaults; malformed values raise pydantic's ValidationError.
        """
        overrides = {}
        for field_name in (
            "max_image_bytes",
            "min_question_length",
            "max_question_length",
            "provider_timeout_seconds",
            "cache_max_entries",
            "compression_min_bytes",
            "reasoning_model",
            "ocr_language",
            "host",
            "port",
        ):
            raw = os.environ.get(f"{ENV_PREFIX}{field_name.upper()}")
            if raw is not None:
                overrides[field_name] = raw

        return cls(**overrides)
