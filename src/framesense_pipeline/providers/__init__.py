# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.

from framesense_pipeline.providers.base import AnalysisProvider, check_conformance
from framesense_pipeline.providers.ocr import TesseractOCRProvider
from framesense_pipeline.providers.reasoning import LiteLLMVisionProvider
from framesense_pipeline.providers.registry import ProviderRegistry

__all__ = [
    "AnalysisProvider",
    "LiteLLMVisionProvider",
    "ProviderRegistry",
    "TesseractOCRProvider",
    "check_conformance",
]
