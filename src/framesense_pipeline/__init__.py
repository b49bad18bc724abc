# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.

"""Tier-aware routing and adaptive caching pipeline for image question answering."""

from framesense_pipeline.config import PipelineSettings
from framesense_pipeline.exceptions import (
    AccessDeniedError,
    DuplicateInFlightError,
    InternalError,
    PipelineError,
    ProviderError,
    ValidationError,
)
from framesense_pipeline.pipeline import AnalysisPipeline, create_pipeline

__all__ = [
    "AccessDeniedError",
    "AnalysisPipeline",
    "DuplicateInFlightError",
    "InternalError",
    "PipelineError",
    "PipelineSettings",
    "ProviderError",
    "ValidationError",
    "create_pipeline",
]
