"""Beat trigger evaluation: deterministic, pure Python.

Checks every story beat, in declaration order, against the player's action and
the session's StoryState. All beats that pass fire in the same turn (no
first-match-wins). Consequences accumulate on a copy of the state lists and are
committed to the store in one update.

Gates per beat:
1. completed and not repeatable -> skip
2. every prerequisite is a completed beat or a true story flag
3. triggers: substring (either direction) | action-type class | synonym table
4. dialogue_triggers: phrase-level match
5. character_introduction: character not yet discovered
6. exposition_lore: location/action lore gate
"""
from __future__ import annotations

import logging
from typing import Callable, Mapping

from backend.app.content.corpus_loader import StoryCorpus
from backend.app.core.lexicon import (
    DEFAULT_LORE_GATES,
    EntityIndex,
    LoreGate,
    matches_action_type,
    matches_dialogue_phrase,
    matches_synonym,
    matches_trigger_words,
)
from backend.app.core.state_store import StoryStateStore
from backend.app.models.corpus import (
    BEAT_TYPE_CHARACTER_INTRODUCTION,
    BEAT_TYPE_CLIMAX,
    BEAT_TYPE_EXPOSITION_LORE,
    BEAT_TYPE_MAJOR_CONFLICT,
    BeatDefinition,
    StateMutations,
    TriggerResult,
)
from backend.app.models.story_state import StoryState

logger = logging.getLogger(__name__)

URGENT_CONFLICT = "CONFLICT: Major confrontation is imminent"
URGENT_CLIMAX = "CLIMAX: This is a crucial story moment"
URGENT_CHOICE = "CHOICE: Multiple story paths available"
URGENT_FINAL = "FINAL: Story conclusion depends on this choice"

ACCESS_FLAG_PREFIX = "can_access_"


def prerequisites_met(beat: BeatDefinition, state: StoryState) -> bool:
    return all(
        p in state.completed_beats or state.story_flags.get(p) is True
        for p in beat.prerequisites
    )


def is_available(beat: BeatDefinition, state: StoryState) -> bool:
    """Not spent (or repeatable) and prerequisites hold. Independent of any action."""
    if beat.id in state.completed_beats and not beat.repeatable:
        return False
    return prerequisites_met(beat, state)


def matches_action_triggers(triggers: list[str], action: str, action_type: str | None = None) -> bool:
    action_lower = action.lower().strip()
    for trigger in triggers:
        trigger_lower = trigger.lower()
        # An empty action would otherwise be "contained" in every trigger
        if action_lower and (trigger_lower in action_lower or action_lower in trigger_lower):
            return True
        if matches_trigger_words(trigger_lower, action_lower):
            return True
        if matches_action_type(trigger_lower, action_type):
            return True
        if matches_synonym(trigger_lower, action_lower):
            return True
    return False


def matches_dialogue_triggers(triggers: list[str], action: str) -> bool:
    return any(matches_dialogue_phrase(t, action) for t in triggers)


class BeatTriggerEvaluator:
    """Decides which beats fire for an action and commits the resulting state changes."""

    def __init__(
        self,
        store: StoryStateStore,
        corpus_source: Callable[[str], StoryCorpus],
        lore_gates: Mapping[str, LoreGate] | None = None,
    ) -> None:
        self.store = store
        self._corpus_source = corpus_source
        self.lore_gates: dict[str, LoreGate] = dict(DEFAULT_LORE_GATES if lore_gates is None else lore_gates)

    def _lore_gate_for(self, beat: BeatDefinition) -> LoreGate | None:
        if beat.required_location or beat.required_action_keywords:
            return LoreGate(
                location=beat.required_location,
                action_keywords=tuple(k.lower() for k in beat.required_action_keywords),
            )
        return self.lore_gates.get(beat.id)

    def should_trigger(
        self,
        beat: BeatDefinition,
        state: StoryState,
        action: str,
        action_type: str | None = None,
        entities: EntityIndex | None = None,
    ) -> bool:
        if not is_available(beat, state):
            return False

        if beat.triggers and not matches_action_triggers(beat.triggers, action, action_type):
            return False

        if beat.dialogue_triggers and not matches_dialogue_triggers(beat.dialogue_triggers, action):
            return False

        if beat.type == BEAT_TYPE_CHARACTER_INTRODUCTION and entities is not None:
            character_id = entities.character_for_beat(beat)
            if character_id and character_id in state.discovered_characters:
                return False  # already introduced

        if beat.type == BEAT_TYPE_EXPOSITION_LORE:
            gate = self._lore_gate_for(beat)
            if gate is not None and not gate.allows(state.current_location, action):
                return False

        return True

    def evaluate(
        self,
        story_id: str,
        session_id: str,
        player_action: str,
        action_type: str | None = None,
    ) -> TriggerResult:
        """Evaluate all beats for one action. Commits mutations once when anything fired."""
        with self.store.session_lock(story_id, session_id):
            state = self.store.get_or_create(story_id, session_id)
            corpus = self._corpus_source(story_id)
            action = player_action or ""

            mutations = StateMutations(
                active_beats=list(state.active_beats),
                completed_beats=list(state.completed_beats),
                discovered_characters=list(state.discovered_characters),
                known_locations=list(state.known_locations),
                story_flags=dict(state.story_flags),
            )
            triggered: list[BeatDefinition] = []
            for beat in corpus.beats:
                if self.should_trigger(beat, state, action, action_type, corpus.entities):
                    triggered.append(beat)
                    apply_beat_consequences(beat, mutations, corpus.entities)

            if triggered:
                self.store.update(story_id, session_id, mutations.model_dump())

        logger.info(
            "Triggered %d story beats for action %r%s",
            len(triggered), player_action,
            f" ({', '.join(b.id for b in triggered)})" if triggered else "",
        )
        return TriggerResult(
            triggered_beats=triggered,
            state_mutations=mutations,
            narrative_hints=narrative_hints(triggered),
            urgent_actions=urgent_actions(triggered),
        )

    def available_beats(self, story_id: str, session_id: str) -> list[BeatDefinition]:
        state = self.store.get_or_create(story_id, session_id)
        return [b for b in self._corpus_source(story_id).beats if is_available(b, state)]


def apply_beat_consequences(
    beat: BeatDefinition,
    mutations: StateMutations,
    entities: EntityIndex | None = None,
) -> None:
    """Fold one fired beat into the accumulated mutations (in place)."""
    if entities is not None:
        character_id = entities.character_for_beat(beat)
        if character_id and character_id not in mutations.discovered_characters:
            mutations.discovered_characters.append(character_id)
        location_id = entities.location_for_beat(beat)
        if location_id and location_id not in mutations.known_locations:
            mutations.known_locations.append(location_id)

    if beat.repeatable:
        if beat.id not in mutations.active_beats:
            mutations.active_beats.append(beat.id)
    else:
        if beat.id not in mutations.completed_beats:
            mutations.completed_beats.append(beat.id)
        mutations.active_beats = [b for b in mutations.active_beats if b != beat.id]

    for choice in beat.choices:
        if choice.leads_to:
            mutations.story_flags[f"{ACCESS_FLAG_PREFIX}{choice.leads_to}"] = True


def narrative_hints(beats: list[BeatDefinition]) -> list[str]:
    hints: list[str] = []
    for beat in beats:
        if beat.story_significance:
            hints.append(f"Story Significance: {beat.story_significance}")
        if beat.key_information_revealed:
            hints.append(f"Key Information: {', '.join(beat.key_information_revealed)}")
        if beat.wisdom_shared:
            hints.append(f"Wisdom Available: {', '.join(beat.wisdom_shared)}")
    return hints


def urgent_actions(beats: list[BeatDefinition]) -> list[str]:
    out: list[str] = []
    for beat in beats:
        if beat.type == BEAT_TYPE_MAJOR_CONFLICT:
            out.append(URGENT_CONFLICT)
        if beat.type == BEAT_TYPE_CLIMAX:
            out.append(URGENT_CLIMAX)
        if beat.multiple_outcomes:
            out.append(URGENT_CHOICE)
        if beat.final_choices:
            out.append(URGENT_FINAL)
    return out
