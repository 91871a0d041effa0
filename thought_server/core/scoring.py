"""Confidence scoring shared by the draft and thought machines.

Everything except ``Scorer`` is a pure function. ``Scorer`` owns the two
external collaborators (embeddings and coherence) and the content classifier.
"""
import asyncio
import math
import re
from typing import Callable, Dict, List, Optional, Protocol, Sequence, Tuple

import psutil

from ..models.records import ScoreBreakdown, StepContext, StepRecord
from ..utils.logging import get_logger
from .collaborators import CoherenceChecker, Embedder

logger = get_logger(__name__)

MIN_CONTENT_LENGTH = 50
MAX_CONTENT_LENGTH = 20000
MAX_MEMORY_BYTES = 200 * 1024 * 1024
TARGET_PROCESSING_MS = 2000.0
DEFAULT_PROCESSING_MS = 1000.0
HISTORY_WINDOW = 5
TREND_WINDOW = 3

NEUTRAL_REVISION_SCORE = 0.7
NEUTRAL_HISTORY_SCORE = 0.7
NEUTRAL_QUALITY_SCORE = 0.5
RELEVANCE_NO_CONTEXT = 0.4
RELEVANCE_UNAVAILABLE = 0.3

CONTENT_WEIGHTS: Dict[str, Dict[str, float]] = {
    "technical": {"quality": 0.35, "context": 0.30, "creativity": 0.05,
                  "revision": 0.15, "history": 0.10, "resource": 0.05},
    "creative": {"quality": 0.25, "context": 0.25, "creativity": 0.30,
                 "revision": 0.10, "history": 0.05, "resource": 0.05},
    "hybrid": {"quality": 0.30, "context": 0.25, "creativity": 0.20,
               "revision": 0.10, "history": 0.05, "resource": 0.10},
}
BASE_THRESHOLDS = {"technical": 0.55, "creative": 0.45, "hybrid": 0.50}
MAX_CONFIDENCE = {"technical": 0.95, "creative": 0.90, "hybrid": 0.92}


def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


class Classifier(Protocol):
    """Tags a text; the score is the classifier's own certainty."""

    def classify(self, text: str) -> Tuple[Optional[str], float]:
        ...


class KeywordContentClassifier:
    """Technical / creative / hybrid by keyword hit-rate."""

    TECHNICAL = ("implement", "system", "architecture", "database",
                 "algorithm", "performance", "optimization", "protocol")
    CREATIVE = ("innovative", "creative", "design", "novel",
                "unique", "intuitive", "engaging", "experience")

    def classify(self, text: str) -> Tuple[str, float]:
        lowered = (text or "").lower()
        technical = sum(1 for word in self.TECHNICAL if word in lowered) / len(self.TECHNICAL)
        creative = sum(1 for word in self.CREATIVE if word in lowered) / len(self.CREATIVE)
        if technical > 0.3 and creative > 0.3:
            return "hybrid", (technical + creative) / 2
        if creative > technical:
            return "creative", creative
        return "technical", technical


class KeywordThoughtClassifier:
    """Best keyword match over the thought categories."""

    KEYWORDS: Dict[str, Tuple[str, ...]] = {
        "analysis": ("analyze", "examine", "investigate", "study", "review"),
        "hypothesis": ("assume", "predict", "suggest", "might", "could"),
        "verification": ("verify", "test", "validate", "check", "confirm"),
        "revision": ("revise", "update", "modify", "change", "adjust"),
        "solution": ("solve", "implement", "fix", "resolve", "complete"),
    }

    def classify(self, text: str) -> Tuple[Optional[str], float]:
        lowered = (text or "").lower()
        best: Optional[str] = None
        best_matches = 0
        for category, keywords in self.KEYWORDS.items():
            matches = sum(1 for keyword in keywords if keyword in lowered)
            if matches > best_matches:
                best, best_matches = category, matches
        if best is None:
            return None, 0.0
        word_count = max(len(lowered.split(" ")), 1)
        return best, min(1.0, best_matches / word_count)


def structural_score(text: str) -> float:
    score = 0.5 if ("\n" in text or "." in text) else 0.0
    if MIN_CONTENT_LENGTH <= len(text) < MAX_CONTENT_LENGTH:
        score += 0.5
    return score


def _novelty(text: str) -> float:
    score = 0.0
    if "novel" in text or "innovative" in text or "new approach" in text:
        score += 0.4
    if re.search(r"[.!?][^\w\s]*\s+[A-Z]", text):
        score += 0.3
    if "if" in text or "however" in text or "alternatively" in text:
        score += 0.3
    return score


def _flexibility(text: str) -> float:
    score = 0.0
    perspectives = len(re.split(
        r"(?:however|alternatively|on the other hand|in contrast)", text, flags=re.IGNORECASE
    )) - 1
    if perspectives > 1:
        score += 0.4
    if "compared to" in text or "versus" in text or "while" in text:
        score += 0.3
    if "if" in text or "when" in text or "depending" in text:
        score += 0.3
    return score


def _originality(text: str) -> float:
    score = 0.0
    if "combining" in text or "integrating" in text or "merging" in text:
        score += 0.4
    if "innovative" in text or "creative" in text or "unique" in text:
        score += 0.3
    if "unconventional" in text or "alternative" in text or "novel" in text:
        score += 0.3
    return score


def creativity_score(text: str) -> float:
    """Mean of novelty, flexibility and originality."""
    return (_novelty(text) + _flexibility(text) + _originality(text)) / 3


def word_similarity(first: str, second: str) -> float:
    """Jaccard similarity of lowercase whitespace-separated words."""
    words_a = set(first.lower().split())
    words_b = set(second.lower().split())
    union = words_a | words_b
    if not union:
        return 1.0
    return len(words_a & words_b) / len(union)


def revision_impact(text: str, original_text: Optional[str]) -> float:
    if not text or not original_text:
        return NEUTRAL_REVISION_SCORE
    length_diff = abs(len(text) - len(original_text))
    length_score = clamp(1 - length_diff / len(original_text))
    similarity = word_similarity(text, original_text)
    improvement = 0.8 if similarity < 0.9 else 0.6
    return length_score * 0.3 + similarity * 0.3 + improvement * 0.4


def _by_sequence(history: Sequence[StepRecord]) -> List[StepRecord]:
    return sorted(history, key=lambda record: record.sequence_number)


def historical_performance(history: Sequence[StepRecord]) -> float:
    """Share of recent steps not flagged for revision, plus a trend bonus."""
    if not history:
        return NEUTRAL_HISTORY_SCORE
    recent = _by_sequence(history)[-HISTORY_WINDOW:]
    success = sum(1 for record in recent if not record.needs_revision) / len(recent)

    bonus = 0.0
    trend = recent[-TREND_WINDOW:]
    if len(trend) >= 2:
        improving = all(
            cur.confidence >= prev.confidence
            and not (cur.needs_revision and not prev.needs_revision)
            for prev, cur in zip(trend, trend[1:])
        )
        if improving:
            bonus = 0.1
    return min(1.0, success + bonus)


def success_rate(history: Sequence[StepRecord], threshold: float) -> float:
    if not history:
        return 1.0
    recent = _by_sequence(history)[-HISTORY_WINDOW:]
    return sum(1 for record in recent if record.confidence >= threshold) / len(recent)


def average_processing_time(history: Sequence[StepRecord]) -> float:
    times = [r.metrics.processing_time_ms for r in history if r.metrics.processing_time_ms > 0]
    if not times:
        return DEFAULT_PROCESSING_MS
    return sum(times) / len(times)


def resource_efficiency(memory_bytes: float, avg_processing_ms: float) -> float:
    memory_score = max(0.0, 1 - memory_bytes / MAX_MEMORY_BYTES)
    time_score = max(0.0, 1 - avg_processing_ms / TARGET_PROCESSING_MS)
    return clamp((memory_score + time_score) / 2)


def current_memory_bytes() -> int:
    """Resident set size of this process."""
    return psutil.Process().memory_info().rss


def combine(
    content_type: str,
    sub_scores: Dict[str, float],
    recent_success: float,
) -> Tuple[float, float, float, float]:
    """Weighted sum bounded by the adaptive floor and the type ceiling.

    Returns ``(raw, floor, ceiling, confidence)``.
    """
    weights = CONTENT_WEIGHTS[content_type]
    raw = sum(sub_scores[name] * weight for name, weight in weights.items())
    floor = BASE_THRESHOLDS[content_type] * (0.85 + 0.15 * recent_success)
    ceiling = MAX_CONFIDENCE[content_type]
    if math.isnan(raw):
        return raw, floor, ceiling, floor
    return raw, floor, ceiling, max(floor, min(ceiling, raw))


def is_acceptable(
    content: str,
    confidence: float,
    is_revision: bool,
    previous_confidence: Optional[float],
    thresholds,
) -> bool:
    """Validation policy shared by both machines.

    ``thresholds`` is any object carrying ``confidence_threshold``,
    ``min_confidence_growth`` and ``min_revision_confidence``.
    """
    if not content or len(content) < MIN_CONTENT_LENGTH:
        return False
    if is_revision:
        return confidence >= thresholds.min_revision_confidence
    if previous_confidence is not None:
        return confidence >= previous_confidence + thresholds.min_confidence_growth
    return confidence >= thresholds.confidence_threshold


def apply_floors(
    computed: float,
    *,
    thresholds,
    revision_floor: Optional[float] = None,
    previous_confidence: Optional[float] = None,
) -> float:
    """Raise a computed confidence to the revision, growth and absolute floors."""
    confidence = computed
    if revision_floor is not None:
        confidence = max(confidence, thresholds.min_revision_confidence, revision_floor)
    if previous_confidence is not None:
        confidence = max(confidence, previous_confidence + thresholds.min_confidence_growth)
    confidence = max(confidence, thresholds.confidence_threshold)
    return min(1.0, confidence)


class Scorer:
    """Computes step confidence using the external collaborators."""

    def __init__(
        self,
        embedder: Embedder,
        coherence: CoherenceChecker,
        content_classifier: Optional[Classifier] = None,
        memory_probe: Callable[[], int] = current_memory_bytes,
    ):
        self.embedder = embedder
        self.coherence = coherence
        self.content_classifier = content_classifier or KeywordContentClassifier()
        self.memory_probe = memory_probe

    def classify_content(self, text: str) -> Tuple[str, float]:
        content_type, score = self.content_classifier.classify(text)
        if content_type not in CONTENT_WEIGHTS:
            return "technical", score
        return content_type, score

    async def quality(self, text: str) -> float:
        """Half structure, half coherence."""
        coherence = await self.coherence.check_coherence(text)
        result = structural_score(text) * 0.5 + coherence * 0.5
        if math.isnan(result):
            return NEUTRAL_QUALITY_SCORE
        return result

    async def context_relevance(self, text: str, context: Optional[StepContext]) -> float:
        """Max similarity between the text and any context string."""
        context_strings = context.strings() if context is not None else []
        if not text or not context_strings:
            return RELEVANCE_NO_CONTEXT

        try:
            target = await self.embedder.embed(text)
            vectors = await self.embedder.embed_many(context_strings)
        except Exception as e:
            logger.warning("embedding_failed", error=str(e))
            return RELEVANCE_UNAVAILABLE

        if not target or not vectors:
            logger.debug("embedding_unavailable", contexts=len(context_strings))
            return RELEVANCE_UNAVAILABLE

        best = max(sum(a * b for a, b in zip(target, vector)) for vector in vectors)
        if math.isnan(best):
            return RELEVANCE_UNAVAILABLE
        return clamp(best)

    def resource(self, history: Sequence[StepRecord]) -> float:
        return resource_efficiency(self.memory_probe(), average_processing_time(history))

    async def score_step(
        self,
        text: str,
        *,
        context: Optional[StepContext],
        history: Sequence[StepRecord],
        threshold: float,
        is_revision: bool = False,
        original_text: Optional[str] = None,
        parallel: bool = False,
    ) -> ScoreBreakdown:
        """Score one step against its history."""
        content_type, _ = self.classify_content(text)

        if parallel:
            quality, relevance = await asyncio.gather(
                self.quality(text),
                self.context_relevance(text, context),
            )
        else:
            quality = await self.quality(text)
            relevance = await self.context_relevance(text, context)

        sub_scores = {
            "quality": quality,
            "context": relevance,
            "creativity": creativity_score(text),
            "revision": revision_impact(text, original_text) if is_revision else NEUTRAL_REVISION_SCORE,
            "history": historical_performance(history),
            "resource": self.resource(history),
        }
        raw, floor, ceiling, confidence = combine(
            content_type, sub_scores, success_rate(history, threshold)
        )

        return ScoreBreakdown(
            content_type=content_type,
            raw=0.0 if math.isnan(raw) else raw,
            floor=floor,
            ceiling=ceiling,
            confidence=confidence,
            **sub_scores,
        )
