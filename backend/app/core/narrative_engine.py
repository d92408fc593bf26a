"""Narrative engine: one entry point wiring corpus, state, triggers, retrieval, and pacing.

Usage:
    engine = NarrativeEngine()
    ctx = engine.process_turn("whispering-woods", session_id, "I examine the door")
    ...  # narrator writes prose from ctx
    engine.record_narrative("whispering-woods", session_id, narrative, action)

A turn holds the session lock for its whole read-evaluate-write sequence so
two concurrent turns on the same session cannot interleave; different sessions
proceed in parallel.
"""
from __future__ import annotations

import logging
import threading
from typing import Protocol

from backend.app.config import DEFAULT_MAX_RESULTS, DEFAULT_START_BEAT, DEFAULT_START_LOCATION
from backend.app.content.corpus_loader import CorpusLoader, CorpusValidationError, StoryCorpus
from backend.app.core.beat_triggers import BeatTriggerEvaluator
from backend.app.core.error_handling import log_error_with_context
from backend.app.core.lexicon import LoreGate
from backend.app.core.pacing import PacingTracker
from backend.app.core.state_store import StateKey, StoryStateStore
from backend.app.core.warnings import add_warning
from backend.app.models.corpus import BeatDefinition, ScoredContext, TriggerResult
from backend.app.models.story_state import StoryState
from backend.app.models.turn import TurnContext
from backend.app.rag.context_retriever import ContextRetriever, context_summary
from shared.cache import clear_all_caches, get_cache_value

logger = logging.getLogger(__name__)

_INVALID_CORPUS_CACHE_KEY = "invalid_corpus_cache"


class InventorySummaryProvider(Protocol):
    """Inventory service seam. Returned text is surfaced verbatim, never scored."""

    def player_inventory_summary(self, user_id: str, session_id: str) -> str: ...

    def location_items_summary(self, story_id: str, location_id: str) -> str: ...


class NarrativeEngine:
    """Facade over the story state store, trigger evaluator, retriever, and pacing trackers."""

    def __init__(
        self,
        store: StoryStateStore | None = None,
        loader: CorpusLoader | None = None,
        inventory: InventorySummaryProvider | None = None,
        lore_gates: dict[str, LoreGate] | None = None,
    ) -> None:
        if store is None:
            store = StoryStateStore(DEFAULT_START_LOCATION, DEFAULT_START_BEAT or None)
        self.store = store
        self.loader = loader if loader is not None else CorpusLoader()
        self.inventory = inventory
        self.retriever = ContextRetriever(self.store)
        self.triggers = BeatTriggerEvaluator(self.store, self._corpus, lore_gates=lore_gates)
        self._pacing: dict[StateKey, PacingTracker] = {}
        self._pacing_lock = threading.Lock()

    def _corpus(self, story_id: str) -> StoryCorpus:
        """Load the story corpus; an invalid corpus degrades to empty for the turn pipeline.

        The empty stand-in is cached (and the failure logged once) until clear_caches.
        """
        key = (str(self.loader.data_dir), story_id)
        invalid = get_cache_value(_INVALID_CORPUS_CACHE_KEY, dict)
        cached = invalid.get(key)
        if cached is not None:
            return cached
        try:
            return self.loader.load_corpus(story_id)
        except CorpusValidationError as e:
            log_error_with_context(e, "corpus_loader", story_id=story_id,
                                   extra_context={"problems": e.problems})
            return invalid.setdefault(key, StoryCorpus(story_id=story_id))

    # ── story state ──

    def get_or_create_story_state(self, story_id: str, session_id: str) -> StoryState:
        return self.store.get_or_create(story_id, session_id)

    def update_story_state(self, story_id: str, session_id: str, partial: dict) -> StoryState:
        return self.store.update(story_id, session_id, partial)

    def record_player_choice(
        self,
        story_id: str,
        session_id: str,
        beat_id: str,
        choice: str,
        consequence: str,
    ) -> StoryState:
        beat = self._corpus(story_id).beat(beat_id)
        state = self.store.record_choice(
            story_id, session_id, beat_id, choice, consequence,
            repeatable=bool(beat and beat.repeatable),
        )
        self.pacing_for(story_id, session_id).record_choice(choice, consequence)
        return state

    def get_available_beats(self, story_id: str, session_id: str) -> list[BeatDefinition]:
        return self.triggers.available_beats(story_id, session_id)

    # ── retrieval / triggers ──

    def search_story_context(
        self,
        story_id: str,
        session_id: str,
        query: str,
        max_results: int = DEFAULT_MAX_RESULTS,
    ) -> list[ScoredContext]:
        documents = self._corpus(story_id).documents
        return self.retriever.search(story_id, session_id, query, documents, max_results)

    def analyze_and_trigger_beats(
        self,
        story_id: str,
        session_id: str,
        player_action: str,
        action_type: str | None = None,
    ) -> TriggerResult:
        return self.triggers.evaluate(story_id, session_id, player_action, action_type)

    # ── pacing ──

    def pacing_for(self, story_id: str, session_id: str) -> PacingTracker:
        """Tracker for the session; also materializes its story state so both age out together."""
        self.store.get_or_create(story_id, session_id)
        key = StateKey(story_id, session_id)
        with self._pacing_lock:
            tracker = self._pacing.get(key)
            if tracker is None:
                tracker = PacingTracker()
                self._pacing[key] = tracker
            return tracker

    def record_narrative(self, story_id: str, session_id: str, narrative: str, action: str) -> PacingTracker:
        """Feed the narrator's output back into pacing after a turn."""
        with self.store.session_lock(story_id, session_id):
            tracker = self.pacing_for(story_id, session_id)
            tracker.update_from_narrative(narrative, action)
            return tracker

    # ── turn ──

    def process_turn(
        self,
        story_id: str,
        session_id: str,
        action: str,
        action_type: str | None = None,
        user_id: str | None = None,
        max_results: int = DEFAULT_MAX_RESULTS,
    ) -> TurnContext:
        """Evaluate beats, then retrieve context against the post-trigger state."""
        with self.store.session_lock(story_id, session_id):
            trigger_result = self.analyze_and_trigger_beats(story_id, session_id, action, action_type)
            contexts = self.search_story_context(story_id, session_id, action, max_results)
            state = self.store.get_or_create(story_id, session_id)
            tracker = self.pacing_for(story_id, session_id)

            ctx = TurnContext(
                story_id=story_id,
                session_id=session_id,
                action=action,
                action_type=action_type,
                contexts=contexts,
                context_summary=context_summary(contexts),
                trigger_result=trigger_result,
                story_state=state,
                tension=tracker.tension,
                momentum=tracker.momentum,
                intervention=tracker.needs_intervention(),
                pacing_context=tracker.context_for_prompt(),
            )
            if self.inventory is not None:
                self._attach_inventory(ctx, user_id or session_id, state)

        logger.info(
            "Turn %s/%s: %d beats fired, %d contexts, tension=%s momentum=%s",
            story_id, session_id, len(trigger_result.triggered_beats), len(contexts),
            ctx.tension, ctx.momentum,
        )
        return ctx

    def _attach_inventory(self, ctx: TurnContext, user_id: str, state: StoryState) -> None:
        try:
            ctx.inventory_summary = self.inventory.player_inventory_summary(user_id, ctx.session_id) or ""
            ctx.location_items_summary = (
                self.inventory.location_items_summary(ctx.story_id, state.current_location) or ""
            )
        except Exception as e:
            log_error_with_context(e, "inventory", story_id=ctx.story_id, session_id=ctx.session_id)
            ctx.inventory_summary = ""
            ctx.location_items_summary = ""
            add_warning(ctx, "Inventory summary unavailable")

    # ── maintenance ──

    def sweep_states(self, max_age_seconds: float) -> list[StateKey]:
        removed = self.store.sweep(max_age_seconds)
        with self._pacing_lock:
            for key in [k for k in self._pacing if k not in self.store]:
                del self._pacing[key]
        return removed

    def clear_caches(self) -> None:
        """Drop every loaded corpus; the next access reloads from disk."""
        clear_all_caches()
        logger.info("Cleared narrative engine caches")
