"""
Tool: Heuristic Extractors

Keyword- and regex-driven extraction over accepted agent answers:
key points, preparation checklist, doctor-referral items, divergence
pairs and cost range. Each extractor is a pure function over texts.
"""
from __future__ import annotations

import re
from typing import Iterable, List, Optional, Pattern, Tuple

from app.config import settings
from app.models.schemas import CostRange, DivergencePoint

_SENTENCE_SPLIT = re.compile(r"[。！？!?\n]+|(?<=\.)\s+")

MAX_KEY_POINTS = 3
MAX_PREPARATION_ITEMS = 8
MAX_DOCTOR_ITEMS = 5
MAX_DIVERGENCES = 3

DEFAULT_DOCTOR_ITEM = "Please confirm any diagnosis and treatment plan with a qualified doctor."

PREPARATION_MARKERS = [
    "empty stomach", "fasting", "fast for", "bring", "in advance", "remember to",
    "prepare", "make sure", "don't eat", "do not eat", "stop taking", "arrive early",
    "空腹", "带上", "携带", "提前", "注意", "记得", "准备", "不要吃", "停用",
]

DOCTOR_MARKERS = [
    "ask your doctor", "ask the doctor", "consult", "follow-up", "follow up",
    "further test", "further examination", "diagnos", "specialist", "see a doctor",
    "medical professional", "treatment plan", "prescri", "doctor's advice",
    "问医生", "咨询医生", "医生确认", "遵医嘱", "复查", "进一步检查", "确诊",
    "医生建议", "就医", "看医生", "去医院", "专业医生", "医疗机构", "诊断", "治疗方案",
]

_NEGATION = r"(?:not|don't|do not|doesn't|does not|never|wouldn't|would not|no)"


def _pair(positive: str, negative: str) -> Tuple[Pattern[str], Pattern[str]]:
    return re.compile(positive, re.IGNORECASE), re.compile(negative, re.IGNORECASE)


# (supporting, opposing) polarity patterns
DIVERGENCE_PAIRS: List[Tuple[Pattern[str], Pattern[str]]] = [
    _pair(r"\brecommend", rf"\b{_NEGATION}\s+recommend"),
    _pair(r"\bneed\b", rf"\b{_NEGATION}\s+need\b|\bno need\b|\bunnecessary\b"),
    _pair(r"\bshould\b", r"\bshould\s+not\b|\bshouldn't\b"),
    _pair(r"\bworth\b", rf"\b{_NEGATION}\s+(?:really\s+)?worth\b"),
    _pair(r"\bsafe\b", rf"\b{_NEGATION}\s+safe\b|\bunsafe\b"),
    _pair(r"\bwait\b", rf"\b{_NEGATION}\s+wait\b"),
    _pair(r"\btake\b", rf"\b{_NEGATION}\s+take\b|\bavoid taking\b"),
    _pair("建议", "不建议"),
    _pair("可以", "不要"),
    _pair("需要", "不需要"),
    _pair("应该", "不应该"),
    _pair("做", "不做"),
    _pair("吃", "不吃"),
    _pair("用", "不用"),
]

_AMOUNT = r"(\d[\d,]*)"
_RANGE_SEP = r"\s*(?:-|–|~|to)\s*"
_CURRENCY_SUFFIX = r"\s*(?:元|块|yuan|rmb|dollars|usd)"
COST_PATTERNS: List[Pattern[str]] = [
    re.compile(rf"[$¥￥]\s?{_AMOUNT}{_RANGE_SEP}[$¥￥]?\s?{_AMOUNT}", re.IGNORECASE),
    re.compile(rf"{_AMOUNT}{_RANGE_SEP}{_AMOUNT}{_CURRENCY_SUFFIX}", re.IGNORECASE),
    re.compile(rf"[$¥￥]\s?{_AMOUNT}", re.IGNORECASE),
    re.compile(rf"{_AMOUNT}{_CURRENCY_SUFFIX}", re.IGNORECASE),
]


def split_sentences(text: str) -> List[str]:
    """Naive split on sentence-ending punctuation and newlines."""
    sentences = []
    for part in _SENTENCE_SPLIT.split(text):
        sentence = part.strip().rstrip(".").strip()
        if sentence:
            sentences.append(sentence)
    return sentences


def extract_key_points(text: str, limit: int = MAX_KEY_POINTS) -> List[str]:
    return [s for s in split_sentences(text) if len(s) > 5][:limit]


def _keyword_sentences(
    texts: Iterable[str], markers: List[str], max_length: int, limit: int
) -> List[str]:
    items: List[str] = []
    for text in texts:
        for sentence in split_sentences(text):
            if not (5 < len(sentence) < max_length):
                continue
            lowered = sentence.lower()
            if any(marker in lowered for marker in markers) and sentence not in items:
                items.append(sentence)
    return items[:limit]


def extract_preparation_items(texts: Iterable[str]) -> List[str]:
    return _keyword_sentences(texts, PREPARATION_MARKERS, 150, MAX_PREPARATION_ITEMS)


def extract_doctor_confirm_items(texts: Iterable[str]) -> List[str]:
    items = _keyword_sentences(texts, DOCTOR_MARKERS, 200, MAX_DOCTOR_ITEMS)
    return items or [DEFAULT_DOCTOR_ITEM]


def extract_divergence(texts: List[str]) -> List[DivergencePoint]:
    """
    For each polarity pair, collect supporting and opposing sentences across
    all answers; both polarities present → one divergence entry.
    """
    if len(texts) < 2:
        return []

    sentences = [
        s for text in texts for s in split_sentences(text) if 5 <= len(s) <= 200
    ]
    divergences: List[DivergencePoint] = []
    for positive, negative in DIVERGENCE_PAIRS:
        supporting: List[str] = []
        opposing: List[str] = []
        for sentence in sentences:
            if negative.search(sentence):
                opposing.append(sentence)
            elif positive.search(sentence):
                supporting.append(sentence)
        if supporting and opposing:
            divergences.append(DivergencePoint(
                point_a=supporting[0],
                point_b=opposing[0],
                split_ratio=f"{len(supporting)}:{len(opposing)}",
            ))
        if len(divergences) >= MAX_DIVERGENCES:
            break
    return divergences


def _parse_amount(raw: str) -> int:
    return int(raw.replace(",", ""))


def extract_cost_range(texts: Iterable[str], ceiling: Optional[int] = None) -> Optional[CostRange]:
    """
    Aggregate currency-like mentions (first matching pattern per answer) into
    a min/max range. Ranges whose maximum exceeds the sanity ceiling are dropped.
    """
    ceiling = settings.cost_sanity_ceiling if ceiling is None else ceiling
    costs: List[int] = []
    for text in texts:
        for pattern in COST_PATTERNS:
            match = pattern.search(text)
            if match:
                costs.extend(_parse_amount(g) for g in match.groups() if g)
                break

    if not costs:
        return None
    low, high = min(costs), max(costs)
    if high > ceiling:
        return None

    if high < 100:
        note = "Routine check-up cost"
    elif high < 1000:
        note = "Outpatient / examination cost"
    elif high < 10000:
        note = "Treatment cost range"
    else:
        note = "Overall cost reference"
    return CostRange(min=low, max=high, note=note)
