# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.

import asyncio
import io
from typing import Any, Dict, List, Optional

import pytesseract
from PIL import Image, UnidentifiedImageError

from framesense_pipeline.exceptions import ProviderError
from framesense_pipeline.models import ProviderResult, ServiceKind
from framesense_pipeline.utils.logger import logger

# ISO 639-1 request languages to Tesseract traineddata names
TESSERACT_LANGUAGES = {
    "en": "eng",
    "es": "spa",
    "fr": "fra",
    "de": "deu",
    "it": "ita",
    "pt": "por",
    "nl": "nld",
    "ja": "jpn",
    "zh": "chi_sim",
}


class TesseractOCRProvider:
    """
    Zero-cost text extraction backed by a local Tesseract install.

    This is the baseline service: degraded routes and the free tier end up here,
    so it needs no credentials and no network.
    """

    name = "tesseract"
    capabilities = frozenset({"text-extraction"})
    cost_per_request = 0.0
    average_response_time_ms = 1500

    def __init__(self, default_language: str = "eng", config: str = "--psm 3") -> None:
        self.default_language = default_language
        self.config = config

    def language_for(self, parameters: Dict[str, Any]) -> str:
        requested = str(parameters.get("language") or "")
        return TESSERACT_LANGUAGES.get(requested.lower(), self.default_language)

    def _recognize(self, image: bytes, language: str) -> Dict[str, Any]:
        with Image.open(io.BytesIO(image)) as img:
            data = pytesseract.image_to_data(
                img, lang=language, config=self.config, output_type=pytesseract.Output.DICT
            )

        words: List[Dict[str, Any]] = []
        for i, raw in enumerate(data.get("text", [])):
            text = (raw or "").strip()
            if not text:
                continue
            try:
                conf = float(data["conf"][i])
            except (KeyError, IndexError, TypeError, ValueError):
                conf = -1.0
            words.append(
                {
                    "text": text,
                    "confidence": conf,
                    "bbox": [data["left"][i], data["top"][i], data["width"][i], data["height"][i]],
                }
            )

        scored = [w["confidence"] for w in words if w["confidence"] >= 0]
        text = " ".join(w["text"] for w in words)
        return {
            "text": text,
            "confidence": round(sum(scored) / len(scored) / 100, 4) if scored else 0.0,
            "has_text": bool(text),
            "word_count": len(words),
            "language_detected": language,
            "regions": words,
        }

    async def analyze(self, image: Optional[bytes], parameters: Dict[str, Any]) -> ProviderResult:
        if not image:
            raise ProviderError("OCR needs an image", service=ServiceKind.ENHANCED_OCR.value)

        language = self.language_for(parameters)
        try:
            # Tesseract runs as a blocking subprocess
            data = await asyncio.to_thread(self._recognize, image, language)
        except (pytesseract.TesseractNotFoundError, pytesseract.TesseractError) as e:
            raise ProviderError(f"Tesseract failed: {e}", service=ServiceKind.ENHANCED_OCR.value) from e
        except (UnidentifiedImageError, OSError) as e:
            raise ProviderError(f"Image could not be read for OCR: {e}", service=ServiceKind.ENHANCED_OCR.value) from e

        logger.debug(f"Tesseract read {data['word_count']} words ({language}), confidence {data['confidence']}")
        return ProviderResult(data=data, confidence=data["confidence"])

    async def health_check(self) -> bool:
        """Healthy when the tesseract binary can be found."""
        try:
            version = await asyncio.to_thread(pytesseract.get_tesseract_version)
        except (pytesseract.TesseractNotFoundError, OSError) as e:
            logger.warning(f"Health check for tesseract failed: {e}")
            return False
        logger.debug(f"Tesseract {version} available")
        return True
