"""
Tool: Response Validator

Classifies one raw agent answer as valid, invalid, or valid-but-no-experience,
and flags near-duplicates of answers already accepted in the same round.
"""
from __future__ import annotations

from typing import Iterable, List, Optional

from app.config import settings
from app.models.schemas import InvalidReason, ValidationResult
from app.tools.text_similarity import bigram_similarity

MIN_LENGTH = 20
BOILERPLATE_MAX_LENGTH = 60

NO_EXPERIENCE_MARKERS = [
    "no relevant experience",
    "no related experience",
    "no experience with this",
    "not familiar with this",
    "i don't know much about",
    "i can't answer",
    "unable to answer",
    "我没有相关经历",
    "我不了解",
    "无法回答",
    "我没有这方面的经验",
    "没有相关的经历",
    "不太了解这方面",
]

EMPTY_ADVICE_MARKERS = [
    "see a doctor",
    "consult a doctor",
    "consult a professional",
    "go to the hospital",
    "ask your doctor",
    "建议去医院",
    "请咨询专业医生",
    "建议看医生",
    "请去正规医院",
]


def validate_response(text: str) -> ValidationResult:
    """
    Apply the content rules, in order:
      1. shorter than 20 characters → invalid (too short)
      2. contains a no-experience phrase → valid, flagged no-experience
      3. referral boilerplate under 60 characters → invalid (no substance)
      4. otherwise valid
    """
    trimmed = text.strip()
    lowered = trimmed.lower()

    if len(trimmed) < MIN_LENGTH:
        return ValidationResult(is_valid=False, reason=InvalidReason.TOO_SHORT)

    if any(marker in lowered for marker in NO_EXPERIENCE_MARKERS):
        return ValidationResult(is_valid=True, is_no_experience=True)

    if any(marker in lowered for marker in EMPTY_ADVICE_MARKERS) and len(trimmed) < BOILERPLATE_MAX_LENGTH:
        return ValidationResult(is_valid=False, reason=InvalidReason.BOILERPLATE)

    return ValidationResult(is_valid=True)


def is_duplicate(text: str, accepted: Iterable[str], threshold: Optional[float] = None) -> bool:
    """True if ``text`` is at least ``threshold`` bigram-Jaccard similar to any accepted text."""
    threshold = settings.duplicate_threshold if threshold is None else threshold
    return any(bigram_similarity(text, other) >= threshold for other in accepted)


class RoundValidator:
    """Validates a round's answers in arrival order, tracking accepted texts."""

    def __init__(self, duplicate_threshold: Optional[float] = None):
        self.duplicate_threshold = (
            settings.duplicate_threshold if duplicate_threshold is None else duplicate_threshold
        )
        self.accepted: List[str] = []
        self.valid_count = 0
        self.no_experience_count = 0

    def check(self, text: str) -> ValidationResult:
        result = validate_response(text)
        if not result.is_valid:
            return result
        if is_duplicate(text, self.accepted, self.duplicate_threshold):
            return ValidationResult(is_valid=False, reason=InvalidReason.DUPLICATE)

        self.accepted.append(text)
        if result.is_no_experience:
            self.no_experience_count += 1
        else:
            self.valid_count += 1
        return result
