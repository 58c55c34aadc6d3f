"""
Content heuristics applied when a memory is created.

Extracts fallback keywords, infers the trigger type and estimates the
emotional weight of a memory from its text.
"""

import re
from typing import List, Optional

from .schemas import TriggerType


_NON_WORD = re.compile(r"[^\w\s]")

STOP_WORDS = {
    "的", "了", "在", "是", "我", "有", "和", "就", "不", "人", "都", "一", "一个",
    "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for", "of",
    "with", "by", "is", "are", "was", "were", "be", "been", "being",
}

EMOTIONAL_WORDS = [
    "开心", "高兴", "难过", "生气", "害怕", "紧张", "兴奋",
    "happy", "sad", "angry", "scared", "excited",
]
TEMPORAL_WORDS = [
    "昨天", "今天", "明天", "以前", "后来",
    "yesterday", "today", "tomorrow", "before", "after",
]
POSITIVE_WORDS = ["开心", "高兴", "喜欢", "爱", "好", "棒", "happy", "love", "good", "great", "wonderful"]
NEGATIVE_WORDS = ["难过", "生气", "害怕", "讨厌", "坏", "糟", "sad", "angry", "scared", "hate", "bad", "terrible"]


def tokenize(text: str) -> List[str]:
    """
    Lowercase word split used for keyword extraction and overlap matching.

    CJK runs stay whole, since there is no whitespace to split them on.
    """
    text = _NON_WORD.sub(" ", text.lower())
    return [t for t in text.split() if len(t) > 1 and t not in STOP_WORDS]


def extract_keywords(content: str, limit: int = 10) -> List[str]:
    """
    Extract fallback keywords from memory content.

    Args:
        content: Memory text
        limit: Maximum keywords returned

    Returns:
        Distinct tokens in order of first appearance
    """
    seen = set()
    keywords = []
    for token in tokenize(content):
        if token not in seen:
            seen.add(token)
            keywords.append(token)
        if len(keywords) >= limit:
            break
    return keywords


def has_temporal_cue(text: str) -> bool:
    lowered = text.lower()
    return any(word in lowered for word in TEMPORAL_WORDS)


def infer_trigger_type(content: str, keywords: List[str]) -> TriggerType:
    """Emotional cues win over temporal cues, which win over explicit keywords."""
    lowered = content.lower()
    if any(word in lowered for word in EMOTIONAL_WORDS):
        return TriggerType.EMOTIONAL
    if has_temporal_cue(lowered):
        return TriggerType.TEMPORAL
    if keywords:
        return TriggerType.KEYWORD
    return TriggerType.SEMANTIC


def emotional_weight(content: str, emotional_context: Optional[List[str]] = None) -> float:
    """
    Estimate how emotionally charged a memory is.

    Starts neutral at 0.5, moves 0.1 per positive or negative cue word and
    gains 0.2 when the writer named an emotional context.

    Returns:
        Weight clamped to [0.0, 1.0]
    """
    lowered = content.lower()
    score = 0.5
    score += 0.1 * sum(1 for word in POSITIVE_WORDS if word in lowered)
    score -= 0.1 * sum(1 for word in NEGATIVE_WORDS if word in lowered)

    if emotional_context:
        score += 0.2

    return max(0.0, min(1.0, round(score, 4)))
