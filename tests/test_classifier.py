# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.

import pytest

from framesense_pipeline.classifier import (
    FALLBACK_CONFIDENCE,
    QUESTION_PROFILES,
    QuestionClassifier,
    build_classification,
)
from framesense_pipeline.exceptions import ValidationError
from framesense_pipeline.interfaces import Classifier
from framesense_pipeline.models import Complexity, QuestionType


@pytest.fixture
def classifier() -> QuestionClassifier:
    return QuestionClassifier()


def test_implements_classifier_protocol(classifier: QuestionClassifier) -> None:
    assert isinstance(classifier, Classifier)


@pytest.mark.parametrize(
    "question, expected",
    [
        ("What does this say?", QuestionType.PURE_TEXT),
        ("Can you read the text on this sign?", QuestionType.PURE_TEXT),
        ("How many cars are in the parking lot?", QuestionType.COUNT_OBJECTS),
        ("Who is this actor?", QuestionType.IDENTIFY_CELEBRITY),
        ("Which company does this logo belong to?", QuestionType.DETECT_LOGOS),
        ("Extract the total from this invoice", QuestionType.ANALYZE_DOCUMENT),
        ("What objects are on the table?", QuestionType.DETECT_OBJECTS),
        ("Describe this image", QuestionType.DESCRIBE_SCENE),
        ("Run my custom pipeline", QuestionType.CUSTOM_ANALYSIS),
    ],
)
def test_classifies_common_questions(classifier: QuestionClassifier, question: str, expected: QuestionType) -> None:
    assert classifier.classify(question).id == expected


def test_case_and_whitespace_insensitive(classifier: QuestionClassifier) -> None:
    assert classifier.classify("   WHAT DOES THIS SAY   ").id == QuestionType.PURE_TEXT


def test_unmatched_question_falls_back_to_scene(classifier: QuestionClassifier) -> None:
    result = classifier.classify("Hmm?")
    assert result.id == QuestionType.DESCRIBE_SCENE
    assert result.confidence == FALLBACK_CONFIDENCE


def test_confidence_grows_with_matches(classifier: QuestionClassifier) -> None:
    one = classifier.classify("transcribe")
    two = classifier.classify("transcribe and extract text")
    assert one.confidence == 0.75
    assert two.confidence == 1.0


@pytest.mark.parametrize("bad", ["", "   ", None, 42])
def test_rejects_empty_or_non_string(classifier: QuestionClassifier, bad: object) -> None:
    with pytest.raises(ValidationError):
        classifier.classify(bad)  # type: ignore[arg-type]


def test_build_classification_uses_static_profile() -> None:
    classification = build_classification(QuestionType.DESCRIBE_SCENE, confidence=0.6)
    profile = QUESTION_PROFILES[QuestionType.DESCRIBE_SCENE]
    assert classification.required_capabilities == profile.capabilities
    assert classification.complexity == Complexity.HIGH
    assert classification.default_model == "gpt-4-vision"
    assert classification.confidence == 0.6


def test_classification_is_immutable() -> None:
    classification = build_classification(QuestionType.PURE_TEXT)
    with pytest.raises(Exception):
        classification.estimated_cost = 1.0  # type: ignore[misc]
