# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.

import re
from typing import Dict, List, NamedTuple, Optional, Pattern

from framesense_pipeline.exceptions import ValidationError
from framesense_pipeline.models import Complexity, QuestionClassification, QuestionType
from framesense_pipeline.utils.logger import logger


class _TypeProfile(NamedTuple):
    capabilities: frozenset
    estimated_cost: float
    complexity: Complexity
    prefer_fast: bool
    default_model: Optional[str]


# Declaration order breaks score ties
QUESTION_PATTERNS: Dict[QuestionType, List[str]] = {
    QuestionType.PURE_TEXT: [
        r"what does (this|it) say",
        r"read (the )?text",
        r"transcribe",
        r"extract text",
        r"what is written",
        r"what text",
        r"can you read",
    ],
    QuestionType.COUNT_OBJECTS: [
        r"how many",
        r"\bcount\b",
        r"number of",
        r"quantity",
        r"total.*(cars|people|objects|items)",
    ],
    QuestionType.IDENTIFY_CELEBRITY: [
        r"who is (this|that)",
        r"identify (the )?(person|actor|celebrity)",
        r"name of (this )?person",
        r"recognize (the )?(person|face)",
        r"famous person",
        r"celebrity",
        r"\bactor\b",
        r"\bactress\b",
    ],
    QuestionType.DETECT_LOGOS: [
        r"\blogo",
        r"\bbrand",
        r"trademark",
        r"which company",
    ],
    QuestionType.ANALYZE_DOCUMENT: [
        r"\bdocument\b",
        r"\bform\b",
        r"invoice",
        r"receipt",
        r"extract.*information",
    ],
    QuestionType.DETECT_OBJECTS: [
        r"what objects",
        r"\bdetect\b",
        r"\blocate\b",
        r"identify objects",
        r"what items",
        r"objects in",
        r"\bfind\b",
    ],
    QuestionType.DESCRIBE_SCENE: [
        r"what is happening",
        r"describe (this )?(image|picture|photo)",
        r"explain (what|this)",
        r"what do you see",
        r"analy[sz]e (this )?(image|picture|photo)",
        r"tell me about",
        r"what'?s in",
        r"\bscene\b",
    ],
    QuestionType.CUSTOM_ANALYSIS: [
        r"\bcustom\b",
        r"\bspecial(ized)?\b",
        r"\badvanced\b",
    ],
}

QUESTION_PROFILES: Dict[QuestionType, _TypeProfile] = {
    QuestionType.PURE_TEXT: _TypeProfile(
        frozenset({"text-extraction", "ocr"}), 0.001, Complexity.LOW, True, "tesseract"
    ),
    QuestionType.COUNT_OBJECTS: _TypeProfile(
        frozenset({"object-detection", "counting"}), 0.02, Complexity.MEDIUM, True, "google-vision"
    ),
    QuestionType.DETECT_OBJECTS: _TypeProfile(
        frozenset({"object-detection", "localization"}), 0.02, Complexity.MEDIUM, True, "google-vision"
    ),
    QuestionType.DESCRIBE_SCENE: _TypeProfile(
        frozenset({"scene-understanding", "reasoning", "description"}), 0.03, Complexity.HIGH, False, "gpt-4-vision"
    ),
    QuestionType.DETECT_LOGOS: _TypeProfile(
        frozenset({"logo-detection", "brand-recognition"}), 0.025, Complexity.MEDIUM, True, "google-vision"
    ),
    QuestionType.ANALYZE_DOCUMENT: _TypeProfile(
        frozenset({"document-analysis", "text-extraction"}), 0.015, Complexity.MEDIUM, False, "google-vision"
    ),
    QuestionType.IDENTIFY_CELEBRITY: _TypeProfile(
        frozenset({"face-recognition", "celebrity-id", "web-search"}), 0.05, Complexity.HIGH, False, "google-vision-web"
    ),
    QuestionType.CUSTOM_ANALYSIS: _TypeProfile(
        frozenset({"custom-models", "reasoning"}), 0.01, Complexity.HIGH, False, None
    ),
}

FALLBACK_TYPE = QuestionType.DESCRIBE_SCENE
FALLBACK_CONFIDENCE = 0.3


def _compile_patterns() -> Dict[QuestionType, List[Pattern[str]]]:
    return {
        question_type: [re.compile(p, re.IGNORECASE) for p in patterns]
        for question_type, patterns in QUESTION_PATTERNS.items()
    }


COMPILED_PATTERNS = _compile_patterns()


def build_classification(question_type: QuestionType, confidence: float = 1.0) -> QuestionClassification:
    """Static classification for a question type, used by the classifier and by tests."""
    profile = QUESTION_PROFILES[question_type]
    return QuestionClassification(
        id=question_type,
        required_capabilities=profile.capabilities,
        estimated_cost=profile.estimated_cost,
        complexity=profile.complexity,
        prefer_fast=profile.prefer_fast,
        default_model=profile.default_model,
        confidence=confidence,
    )


class QuestionClassifier:
    """
    Maps a question to a QuestionType with lightweight regex heuristics.

    Each matching pattern adds 1 plus a specificity bonus (longer patterns are
    more specific, capped at 0.5). The highest score wins; with no match at all
    the question is treated as a scene description with low confidence.
    """

    def classify(self, question_text: str) -> QuestionClassification:
        if not isinstance(question_text, str) or not question_text.strip():
            raise ValidationError("Question text must be a non-empty string")

        normalized = question_text.strip().lower()

        best_type: Optional[QuestionType] = None
        best_score = 0.0
        best_matches = 0
        for question_type, patterns in COMPILED_PATTERNS.items():
            matches = [p for p in patterns if p.search(normalized)]
            score = sum(1 + min(len(p.pattern) / 20, 0.5) for p in matches)
            if score > best_score:
                best_type, best_score, best_matches = question_type, score, len(matches)

        if best_type is None:
            logger.debug(f"Classifier: no pattern matched, falling back to {FALLBACK_TYPE.value}")
            return build_classification(FALLBACK_TYPE, confidence=FALLBACK_CONFIDENCE)

        confidence = min(0.5 + 0.25 * best_matches, 1.0)
        logger.debug(f"Classifier: {best_type.value} (score={best_score:.2f}, confidence={confidence:.2f})")
        return build_classification(best_type, confidence=confidence)
