"""Pacing models: tension/momentum tracking and the intervention verdict."""
from __future__ import annotations

from typing import List, Literal

from pydantic import BaseModel, Field


Tension = Literal["low", "medium", "high", "critical"]
Momentum = Literal["stalled", "slow", "steady", "fast"]

INTERVENTION_INJECT_COMPLICATION = "INJECT_COMPLICATION"
INTERVENTION_INCREASE_TENSION = "INCREASE_TENSION"
INTERVENTION_FORCE_CHANGE = "FORCE_CHANGE"
INTERVENTION_REVEAL_PLOT = "REVEAL_PLOT"


class PlayerStatus(BaseModel):
    alive: bool = True
    death_count: int = 0
    last_death_reason: str | None = None
    has_experienced_death: bool = False


class PacingBeats(BaseModel):
    """Heuristic bookkeeping extracted from narrative text (not the corpus beats)."""
    introduced_characters: List[str] = Field(default_factory=list)
    visited_locations: List[str] = Field(default_factory=list)
    plot_points_revealed: List[str] = Field(default_factory=list)
    conflicts_introduced: List[str] = Field(default_factory=list)
    conflicts_resolved: List[str] = Field(default_factory=list)
    death_events: List[str] = Field(default_factory=list)


class ChoiceRecord(BaseModel):
    choice: str
    consequences: str = ""
    timestamp: float = 0


class PacingState(BaseModel):
    current_scene: str = "introduction"
    tension: Tension = "low"
    momentum: Momentum = "slow"
    last_actions: List[str] = Field(default_factory=list)
    last_narratives: List[str] = Field(default_factory=list)
    scene_counter: int = 0
    last_significant_event: str | None = None
    player_status: PlayerStatus = Field(default_factory=PlayerStatus)
    choice_history: List[ChoiceRecord] = Field(default_factory=list)
    story_beats: PacingBeats = Field(default_factory=PacingBeats)


class Intervention(BaseModel):
    needed: bool = False
    reason: str = ""
    intervention: str = ""


class DeathCheck(BaseModel):
    is_death: bool = False
    death_type: str | None = None
    death_reason: str | None = None
