"""
Memory trigger engine.

Scores a role's memories against the current conversation and selects the
ones to inject into the next prompt.

Scoring:
- Topical overlap: fraction of keywords, tags and related topics found in the text
- Emotional overlap: fraction of emotional context found in the text or mood
- Decay: exp(-factor * ln2 * elapsed_days / half_life_days) since last access
- score = relevance_weight * topical + emotional_weight * emotional + priority/100 * decay

Qualifying: every entry surfaces on topical overlap. Emotional-trigger entries
also surface on emotional overlap, and temporal-trigger entries created within
`temporal_window_days` also surface when the text carries a time cue.
"""

import logging
import math
import time
from datetime import datetime
from typing import Callable, Dict, List, Optional, Sequence

import numpy as np

from role_memory.config import TriggerConfig
from role_memory.telemetry import log_step, new_run_id
from .enrich import has_temporal_cue, tokenize
from .schemas import (
    ConversationSnapshot,
    GoalRecord,
    MemoryEntry,
    MemoryType,
    TraitRecord,
    TriggerResult,
    TriggerType,
)
from .store import MemoryStore


logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86400.0
SEPARATOR = "\n\n---\n\n"

TYPE_LABELS = {
    MemoryType.EPISODIC: "Episodic memories",
    MemoryType.SEMANTIC: "Semantic memories",
}


# ============================================================================
# Scoring primitives
# ============================================================================

def decay(elapsed_s: float, factor: float, half_life_days: float) -> float:
    """
    Time decay multiplier in (0, 1].

    Strictly decreasing in elapsed time whenever factor > 0. A factor of 1
    halves the multiplier every `half_life_days`.
    """
    elapsed_days = max(0.0, elapsed_s) / SECONDS_PER_DAY
    return math.exp(-factor * math.log(2) * elapsed_days / half_life_days)


def decay_batch(elapsed_s: np.ndarray, factors: np.ndarray, half_life_days: float) -> np.ndarray:
    """Vectorised decay over a candidate batch."""
    elapsed_days = np.clip(elapsed_s, 0.0, None) / SECONDS_PER_DAY
    return np.exp(-factors * np.log(2) * elapsed_days / half_life_days)


def term_matches(term: str, text: str, tokens: set) -> bool:
    """Case-insensitive substring match, or equality with one of the text's tokens."""
    term = term.lower().strip()
    if not term:
        return False
    return term in text or term in tokens


def overlap_fraction(terms: Sequence[str], text: str, tokens: set) -> float:
    """
    Fraction of terms that match the text.

    Returns:
        0.0 when there are no terms
    """
    if not terms:
        return 0.0
    hits = sum(1 for term in terms if term_matches(term, text, tokens))
    return hits / len(terms)


# ============================================================================
# Engine
# ============================================================================

class TriggerEngine:
    """
    Selects memories worth injecting for one conversation turn.

    Constants are always injected. Non-constants must qualify on the overlap
    their trigger type allows, reach `score_threshold` and fit in the remaining entry and
    character budget.
    """

    def __init__(
        self,
        store: MemoryStore,
        config: Optional[TriggerConfig] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        """
        Initialize trigger engine.

        Args:
            store: MemoryStore that owns the role's entries
            config: Trigger configuration for this session
            clock: Current unix time; defaults to the store's clock
        """
        self.store = store
        self.config = config or TriggerConfig()
        self.clock = clock or store.clock
        self._latest_turn: Dict[str, int] = {}

    def forget(self, role_id: str) -> None:
        """Drop the turn tracking kept for a role, e.g. once its memory is purged."""
        self._latest_turn.pop(role_id, None)

    def context_text(self, snapshot: ConversationSnapshot) -> str:
        """Utterance plus the last `history_window` turns, lowercased."""
        window = snapshot.history[-self.config.history_window:] if self.config.history_window > 0 else []
        parts = list(window) + [snapshot.utterance] + list(snapshot.context_keywords)
        return " ".join(p for p in parts if p).lower()

    def score(
        self,
        entries: Sequence[MemoryEntry],
        snapshot: ConversationSnapshot,
        now: float,
    ) -> Dict[str, np.ndarray]:
        """
        Score a batch of entries against a snapshot.

        Returns:
            Dict of aligned arrays: topical, emotional, decay, score, qualified
        """
        text = self.context_text(snapshot)
        tokens = set(tokenize(text))

        mood_text = text
        if snapshot.emotional_state:
            mood_text = f"{text} {snapshot.emotional_state.lower()}"
        mood_tokens = set(tokenize(mood_text))

        topical = np.array(
            [overlap_fraction(e.topical_terms(), text, tokens) for e in entries],
            dtype=float,
        )
        emotional = np.array(
            [overlap_fraction(e.emotional_context, mood_text, mood_tokens) for e in entries],
            dtype=float,
        )
        relevance = np.array([e.relevance_weight for e in entries], dtype=float)
        emotion_w = np.array([e.emotional_weight for e in entries], dtype=float)
        priority = np.array([e.priority for e in entries], dtype=float) / 100.0
        factors = np.array([e.time_decay_factor for e in entries], dtype=float)
        elapsed = now - np.array([e.last_accessed for e in entries], dtype=float)

        decays = decay_batch(elapsed, factors, self.config.decay_half_life_days)
        scores = relevance * topical + emotion_w * emotional + priority * decays

        emotional_kind = np.array([e.trigger_type == TriggerType.EMOTIONAL for e in entries], dtype=bool)
        temporal_kind = np.array([e.trigger_type == TriggerType.TEMPORAL for e in entries], dtype=bool)
        age = now - np.array([e.created_at for e in entries], dtype=float)
        recent = age <= self.config.temporal_window_days * SECONDS_PER_DAY
        qualified = (
            (topical > 0.0)
            | (emotional_kind & (emotional > 0.0))
            | (temporal_kind & recent & has_temporal_cue(text))
        )

        return {
            "topical": topical,
            "emotional": emotional,
            "decay": decays,
            "score": scores,
            "qualified": qualified,
        }

    def select(
        self,
        entries: Sequence[MemoryEntry],
        snapshot: ConversationSnapshot,
        now: float,
    ) -> List[MemoryEntry]:
        """
        Pick the entries to inject, constants first, each group in rank order.

        Ranking is score descending, then priority descending, then most
        recently updated. Constants count against the entry and character
        budgets but are never dropped.
        """
        if not entries:
            return []

        scored = self.score(entries, snapshot, now)
        ranked = sorted(
            range(len(entries)),
            key=lambda i: (
                -round(float(scored["score"][i]), 9),
                -entries[i].priority,
                -entries[i].updated_at,
            ),
        )

        constants = [entries[i] for i in ranked if entries[i].is_constant]
        used_chars = sum(len(e.content) for e in constants)
        slots = max(0, self.config.max_entries - len(constants))

        triggered: List[MemoryEntry] = []
        for i in ranked:
            if len(triggered) >= slots:
                break
            entry = entries[i]
            if entry.is_constant:
                continue
            if not scored["qualified"][i]:
                continue
            if scored["score"][i] < self.config.score_threshold:
                continue
            if used_chars + len(entry.content) > self.config.max_total_chars:
                continue
            triggered.append(entry)
            used_chars += len(entry.content)

        return constants + triggered

    async def trigger(self, snapshot: ConversationSnapshot) -> TriggerResult:
        """
        Run one trigger pass for a conversation turn.

        Selection and access bookkeeping happen atomically in the store. If
        a newer turn for the same role started while this pass was running,
        the bookkeeping still stands but the result is flagged superseded
        and carries no rendered content.

        Args:
            snapshot: Current conversation state

        Returns:
            TriggerResult with rendered sections
        """
        if not self.config.enabled:
            return TriggerResult()

        role_id = snapshot.role_id
        turn = snapshot.turn
        self._latest_turn[role_id] = max(self._latest_turn.get(role_id, turn), turn)

        start = time.perf_counter()
        now = self.clock()

        selected = await self.store.retrieve(
            role_id,
            lambda entries: self.select(entries, snapshot, now),
        )

        traits: List[TraitRecord] = []
        goals: List[GoalRecord] = []
        if self.config.include_character_state:
            traits = await self.store.list_traits(role_id)
            goals = await self.store.list_goals(role_id)

        duration_ms = (time.perf_counter() - start) * 1000
        matched_ids = [e.id for e in selected]

        if turn < self._latest_turn[role_id]:
            logger.info(f"Discarding trigger result for role {role_id}: turn {turn} superseded")
            result = TriggerResult(
                matched_ids=matched_ids,
                duration_ms=duration_ms,
                superseded=True,
            )
        else:
            result = self.render(selected, traits, goals)
            result.duration_ms = duration_ms

        if self.config.debug:
            log_step(new_run_id(), "trigger", duration_ms, extra={
                "role_id": role_id,
                "turn": turn,
                "selected": len(selected),
                "constants": sum(1 for e in selected if e.is_constant),
                "superseded": result.superseded,
            })

        return result

    # ========================================================================
    # Rendering
    # ========================================================================

    def render(
        self,
        selected: Sequence[MemoryEntry],
        traits: Sequence[TraitRecord] = (),
        goals: Sequence[GoalRecord] = (),
    ) -> TriggerResult:
        """Render selected entries plus optional character state into prompt text."""
        constants = [e for e in selected if e.is_constant]
        triggered = [e for e in selected if not e.is_constant]

        constant_content = self._render_group(constants, "Constant memories")
        triggered_content = self._render_group(triggered, "Relevant memories")
        state = self._render_state(traits, goals) if self.config.include_character_state else ""

        full_content = "\n\n".join(p for p in (constant_content, triggered_content, state) if p)

        return TriggerResult(
            fragments=[self._render_entry(e) for e in selected],
            matched_ids=[e.id for e in selected],
            constant_content=constant_content,
            triggered_content=triggered_content,
            full_content=full_content,
            injected_count=len(selected),
        )

    def _render_entry(self, entry: MemoryEntry) -> str:
        if not self.config.show_timestamps:
            return entry.content
        stamp = datetime.fromtimestamp(entry.updated_at).strftime("%Y-%m-%d %H:%M")
        return f"*{stamp}*\n{entry.content}"

    def _render_group(self, entries: Sequence[MemoryEntry], title: str) -> str:
        if not entries:
            return ""

        lines = [f"[{title.upper()}]"]
        if self.config.separate_by_type:
            for memory_type, label in TYPE_LABELS.items():
                group = [e for e in entries if e.type == memory_type]
                if group:
                    body = SEPARATOR.join(self._render_entry(e) for e in group)
                    lines.append(f"### {label}\n{body}")
        else:
            lines.append(SEPARATOR.join(self._render_entry(e) for e in entries))

        return "\n".join(lines)

    def _render_state(self, traits: Sequence[TraitRecord], goals: Sequence[GoalRecord]) -> str:
        active_goals = [g for g in goals if g.status == "active"]
        if not traits and not active_goals:
            return ""

        lines = ["[CHARACTER STATE]"]
        if traits:
            lines.append("### Traits")
            lines.extend(f"- {t.name}: {t.value}" for t in traits)
        if active_goals:
            lines.append("### Goals")
            lines.extend(f"- {g.value}" for g in active_goals)

        return "\n".join(lines)
