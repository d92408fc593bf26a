"""Narrative pacing tracker: tension/momentum heuristics over recent text.

Pure function of recent narrative and player actions, not of the corpus.
Tension is sticky: a narrative with no tension keywords keeps the previous
level. Death is a two-state machine (alive -> dead on a trigger, dead -> alive
only through record_player_resurrection).
"""
from __future__ import annotations

import logging
import re
import time

from backend.app.config import PACING_CHOICE_HISTORY_LIMIT, PACING_HISTORY_LIMIT
from backend.app.core.lexicon import (
    CONFLICT_KEYWORDS,
    DEATH_RULES,
    EXHAUSTION_DEATH,
    EXHAUSTION_SCENE_LIMIT,
    HIGH_TENSION_WORDS,
    LOW_TENSION_WORDS,
    MEDIUM_TENSION_WORDS,
    PLOT_KEYWORDS,
    SIGNIFICANT_EVENT_PHRASES,
    categorize_action,
    contains_any,
)
from backend.app.models.pacing import (
    INTERVENTION_FORCE_CHANGE,
    INTERVENTION_INCREASE_TENSION,
    INTERVENTION_INJECT_COMPLICATION,
    INTERVENTION_REVEAL_PLOT,
    ChoiceRecord,
    DeathCheck,
    Intervention,
    PacingBeats,
    PacingState,
    PlayerStatus,
)

logger = logging.getLogger(__name__)

_CHARACTER_PATTERNS = (
    re.compile(r"([A-Z][a-z]+)\s+(?:says|speaks|tells|whispers|shouts)"),
    re.compile(r"(?:meet|encounter|see)\s+([A-Z][a-z]+)"),
)
_LOCATION_PATTERNS = (
    re.compile(r"(?:enter|arrive at|reach|find yourself in)\s+(?:the\s+)?([A-Z][a-z\s]+)"),
    re.compile(r"(?:You are in|You find yourself in|You stand in)\s+(?:the\s+)?([A-Z][a-z\s]+)"),
)

REPETITION_WINDOW = 3
PEACEFUL_SCENE_LIMIT = 3
PLOTLESS_SCENE_LIMIT = 5
SLOW_SCENE_THRESHOLD = 2

_INTERVENTION_ACTIONS: dict[str, str] = {
    INTERVENTION_INJECT_COMPLICATION: (
        "Introduce an unexpected event, new character, or environmental change that demands "
        "immediate attention. Examples: A door slams shut, an NPC arrives with urgent news, the "
        "ground shakes, something valuable goes missing, or a sound alerts everyone to danger."
    ),
    INTERVENTION_INCREASE_TENSION: (
        "Add time pressure, approaching danger, or mysterious elements to raise stakes. Examples: "
        "A timer counting down, footsteps approaching, something stalking the player, weather "
        "turning dangerous, or resources becoming scarce."
    ),
    INTERVENTION_FORCE_CHANGE: (
        "Have the environment change, NPCs take action, or events unfold that prevent repetitive "
        "behavior. Examples: The room layout changes, an NPC leaves or arrives, new paths "
        "open/close, or the situation evolves without player input."
    ),
    INTERVENTION_REVEAL_PLOT: (
        "Provide clues, reveals, or story developments that advance the main narrative. Examples: "
        "Discover a hidden message, overhear important conversation, find a key item, meet a "
        "crucial NPC, or witness a significant event."
    ),
}


def _push_bounded(items: list, item, limit: int) -> None:
    items.append(item)
    while len(items) > limit:
        items.pop(0)


def _add_unique(items: list[str], item: str) -> None:
    if item not in items:
        items.append(item)


class PacingTracker:
    """Per-session tension/momentum state with intervention and death rules."""

    def __init__(self, state: PacingState | None = None) -> None:
        self.state = state or PacingState()

    @property
    def tension(self) -> str:
        return self.state.tension

    @property
    def momentum(self) -> str:
        return self.state.momentum

    def snapshot(self) -> PacingState:
        return self.state.model_copy(deep=True)

    # ── per-scene update ──

    def update_from_narrative(self, narrative: str, action: str) -> None:
        s = self.state
        s.scene_counter += 1
        _push_bounded(s.last_narratives, narrative, PACING_HISTORY_LIMIT)
        _push_bounded(s.last_actions, action, PACING_HISTORY_LIMIT)

        self._extract_story_beats(narrative)
        self._update_tension(narrative)
        self._update_momentum()
        self._track_significant_event(narrative)
        logger.debug(
            "Pacing scene %d: tension=%s momentum=%s",
            s.scene_counter, s.tension, s.momentum,
        )

    def _extract_story_beats(self, narrative: str) -> None:
        beats = self.state.story_beats
        for pattern in _CHARACTER_PATTERNS:
            for m in pattern.finditer(narrative):
                _add_unique(beats.introduced_characters, m.group(1))
        for pattern in _LOCATION_PATTERNS:
            for m in pattern.finditer(narrative):
                _add_unique(beats.visited_locations, m.group(1).strip())

        lower = narrative.lower()
        scene = self.state.scene_counter
        if contains_any(lower, PLOT_KEYWORDS):
            _add_unique(beats.plot_points_revealed, f"Scene {scene}: Discovery or revelation")
        if contains_any(lower, CONFLICT_KEYWORDS):
            _add_unique(beats.conflicts_introduced, f"Scene {scene}: Combat or conflict")

    def _update_tension(self, narrative: str) -> None:
        lower = narrative.lower()
        if contains_any(lower, HIGH_TENSION_WORDS):
            self.state.tension = "high"
        elif contains_any(lower, MEDIUM_TENSION_WORDS):
            self.state.tension = "medium"
        elif contains_any(lower, LOW_TENSION_WORDS):
            self.state.tension = "low"

    def _update_momentum(self) -> None:
        s = self.state
        if self.has_repetitive_actions():
            s.momentum = "stalled"
        elif s.story_beats.plot_points_revealed or s.story_beats.conflicts_introduced:
            s.momentum = "fast"
        elif s.scene_counter > SLOW_SCENE_THRESHOLD:
            s.momentum = "slow"
        else:
            s.momentum = "steady"

    def _track_significant_event(self, narrative: str) -> None:
        if contains_any(narrative.lower(), SIGNIFICANT_EVENT_PHRASES):
            self.state.last_significant_event = narrative

    def has_repetitive_actions(self) -> bool:
        recent = self.state.last_actions[-REPETITION_WINDOW:]
        if len(recent) < REPETITION_WINDOW:
            return False
        buckets = {categorize_action(a) for a in recent}
        return len(buckets) == 1

    # ── interventions ──

    def needs_intervention(self) -> Intervention:
        """First matching rule wins."""
        s = self.state
        if s.momentum == "stalled":
            return Intervention(needed=True, reason="Story momentum has stalled",
                                intervention=INTERVENTION_INJECT_COMPLICATION)
        if s.scene_counter > PEACEFUL_SCENE_LIMIT and s.tension == "low":
            return Intervention(needed=True, reason="Too many peaceful scenes",
                                intervention=INTERVENTION_INCREASE_TENSION)
        if self.has_repetitive_actions():
            return Intervention(needed=True, reason="Player actions are repetitive",
                                intervention=INTERVENTION_FORCE_CHANGE)
        if s.scene_counter > PLOTLESS_SCENE_LIMIT and not s.story_beats.plot_points_revealed:
            return Intervention(needed=True, reason="No plot progression detected",
                                intervention=INTERVENTION_REVEAL_PLOT)
        return Intervention()

    @staticmethod
    def intervention_action(intervention: str) -> str:
        return _INTERVENTION_ACTIONS.get(intervention, "Continue with engaging narrative")

    def intervention_prompts(self) -> list[str]:
        s = self.state
        prompts: list[str] = []
        if s.tension == "low":
            prompts.append("Consider adding mysterious sounds, strange sights, or unsettling discoveries")
            prompts.append("Introduce time pressure or approaching consequences")
        elif s.tension == "high":
            prompts.append("Maintain tension with escalating stakes or difficult choices")
            prompts.append("Show immediate consequences of high-tension situations")

        if s.momentum == "stalled":
            prompts.append("URGENT: Something must happen immediately to break the stalemate")
            prompts.append("Have the environment or NPCs take action to force player engagement")

        if not s.story_beats.introduced_characters:
            prompts.append("Consider introducing a memorable NPC who can drive the story forward")
        if not s.story_beats.conflicts_introduced and s.scene_counter > PEACEFUL_SCENE_LIMIT:
            prompts.append("The story needs conflict - introduce opposition, obstacles, or challenges")
        return prompts

    def context_for_prompt(self) -> str:
        s = self.state
        beats = s.story_beats
        active_conflicts = [c for c in beats.conflicts_introduced if c not in beats.conflicts_resolved]
        lines = [
            "STORY STATE ANALYSIS:",
            f"- Current Scene: {s.current_scene}",
            f"- Tension Level: {s.tension}",
            f"- Story Momentum: {s.momentum}",
            f"- Scene Count: {s.scene_counter}",
            f"- Recent Actions: {', '.join(s.last_actions)}",
            "",
            "STORY BEATS TRACKER:",
            f"- Characters Introduced: {', '.join(beats.introduced_characters) or 'None'}",
            f"- Locations Visited: {', '.join(beats.visited_locations) or 'None'}",
            f"- Plot Points Revealed: {', '.join(beats.plot_points_revealed) or 'None'}",
            f"- Active Conflicts: {', '.join(active_conflicts) or 'None'}",
        ]
        intervention = self.needs_intervention()
        if intervention.needed:
            lines += [
                "",
                "DUNGEON MASTER INTERVENTION REQUIRED:",
                f"- Reason: {intervention.reason}",
                f"- Intervention Type: {intervention.intervention}",
                f"- Action: {self.intervention_action(intervention.intervention)}",
            ]
        prompts = self.intervention_prompts()
        if prompts:
            lines += ["", "DUNGEON MASTER GUIDANCE:"] + [f"- {p}" for p in prompts]
        return "\n".join(lines)

    def record_choice(self, choice: str, consequences: str) -> None:
        _push_bounded(
            self.state.choice_history,
            ChoiceRecord(choice=choice, consequences=consequences, timestamp=time.time()),
            PACING_CHOICE_HISTORY_LIMIT,
        )

    # ── death / resurrection ──

    def check_for_death_triggers(self, action: str) -> DeathCheck:
        lower = (action or "").lower()
        for rule in DEATH_RULES:
            if contains_any(lower, rule.triggers):
                return DeathCheck(is_death=True, death_type=rule.death_type, death_reason=rule.reason)
        if self.state.scene_counter > EXHAUSTION_SCENE_LIMIT:
            return DeathCheck(
                is_death=True,
                death_type=EXHAUSTION_DEATH.death_type,
                death_reason=EXHAUSTION_DEATH.reason,
            )
        return DeathCheck()

    def record_player_death(self, death_type: str, death_reason: str) -> None:
        status = self.state.player_status
        if not status.alive:
            logger.debug("Ignoring death while already dead (%s)", death_type)
            return
        status.alive = False
        status.death_count += 1
        status.last_death_reason = death_reason
        status.has_experienced_death = True
        self.state.story_beats.death_events.append(f"{death_type}: {death_reason}")
        self.state.tension = "critical"
        logger.info("Player death recorded: %s (total %d)", death_type, status.death_count)

    def record_player_resurrection(self) -> None:
        self.state.player_status.alive = True
        self.state.current_scene = "post_resurrection"
        self.state.tension = "medium"
        self.state.momentum = "steady"

    def needs_resurrection(self) -> bool:
        return not self.state.player_status.alive

    def reset_for_restart(self) -> None:
        """Fresh pacing, keeping cumulative death count and the death log."""
        old = self.state.player_status
        death_events = list(self.state.story_beats.death_events)
        self.state = PacingState(
            player_status=PlayerStatus(
                alive=True,
                death_count=old.death_count,
                has_experienced_death=old.has_experienced_death,
            ),
            story_beats=PacingBeats(death_events=death_events),
        )
