# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.

from typing import Any, Dict
from unittest.mock import patch

import pytest
import pytesseract

from framesense_pipeline.exceptions import ProviderError
from framesense_pipeline.providers import TesseractOCRProvider, check_conformance

IMAGE_TO_DATA = "framesense_pipeline.providers.ocr.pytesseract.image_to_data"


def tesseract_words() -> Dict[str, Any]:
    # Shape of pytesseract.image_to_data(..., output_type=Output.DICT); blank rows are layout blocks
    return {
        "text": ["", "HELLO", "WORLD", " "],
        "conf": ["-1", "96", 90.0, "-1"],
        "left": [0, 4, 40, 0],
        "top": [0, 2, 2, 0],
        "width": [0, 30, 34, 0],
        "height": [0, 10, 10, 0],
    }


@pytest.fixture
def provider() -> TesseractOCRProvider:
    return TesseractOCRProvider()


def test_provider_conforms(provider: TesseractOCRProvider) -> None:
    check_conformance(provider)
    assert provider.cost_per_request == 0.0


@pytest.mark.asyncio
async def test_analyze_joins_words_and_averages_confidence(
    provider: TesseractOCRProvider, decodable_png: bytes
) -> None:
    with patch(IMAGE_TO_DATA, return_value=tesseract_words()) as mock_data:
        result = await provider.analyze(decodable_png, {"question": "What does this say?", "language": "fr"})

    assert mock_data.call_args.kwargs["lang"] == "fra"
    assert result.data["text"] == "HELLO WORLD"
    assert result.data["word_count"] == 2
    assert result.data["has_text"] is True
    assert result.data["regions"][0] == {"text": "HELLO", "confidence": 96.0, "bbox": [4, 2, 30, 10]}
    assert result.confidence == pytest.approx(0.93)


@pytest.mark.asyncio
async def test_unmapped_language_uses_default(decodable_png: bytes) -> None:
    provider = TesseractOCRProvider(default_language="deu")
    with patch(IMAGE_TO_DATA, return_value=tesseract_words()) as mock_data:
        await provider.analyze(decodable_png, {"language": "xx"})
    assert mock_data.call_args.kwargs["lang"] == "deu"


@pytest.mark.asyncio
async def test_blank_image_has_no_text(provider: TesseractOCRProvider, decodable_png: bytes) -> None:
    blank = {"text": [""], "conf": ["-1"], "left": [0], "top": [0], "width": [0], "height": [0]}
    with patch(IMAGE_TO_DATA, return_value=blank):
        result = await provider.analyze(decodable_png, {})

    assert result.data["has_text"] is False
    assert result.confidence == 0.0


@pytest.mark.asyncio
async def test_missing_tesseract_becomes_provider_error(provider: TesseractOCRProvider, decodable_png: bytes) -> None:
    with patch(IMAGE_TO_DATA, side_effect=pytesseract.TesseractNotFoundError()):
        with pytest.raises(ProviderError, match="Tesseract failed") as exc_info:
            await provider.analyze(decodable_png, {})
    assert exc_info.value.service == "enhanced-ocr"


@pytest.mark.asyncio
async def test_unreadable_image_becomes_provider_error(provider: TesseractOCRProvider) -> None:
    with patch(IMAGE_TO_DATA) as mock_data:
        with pytest.raises(ProviderError, match="could not be read"):
            await provider.analyze(b"definitely not an image", {})
    mock_data.assert_not_called()


@pytest.mark.asyncio
async def test_no_image_is_rejected(provider: TesseractOCRProvider) -> None:
    with pytest.raises(ProviderError, match="needs an image"):
        await provider.analyze(None, {})


@pytest.mark.asyncio
async def test_health_check(provider: TesseractOCRProvider) -> None:
    with patch("framesense_pipeline.providers.ocr.pytesseract.get_tesseract_version", return_value="5.3.0"):
        assert await provider.health_check() is True

    with patch(
        "framesense_pipeline.providers.ocr.pytesseract.get_tesseract_version",
        side_effect=pytesseract.TesseractNotFoundError(),
    ):
        assert await provider.health_check() is False
