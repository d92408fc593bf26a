"""Per-session narrative state: the record the trigger evaluator mutates and retrieval scores against."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Dict, List, Literal

from pydantic import BaseModel, Field


RelationshipLevel = Literal["unknown", "met", "friendly", "hostile", "allied", "romance"]
RELATIONSHIP_LEVELS: tuple[str, ...] = ("unknown", "met", "friendly", "hostile", "allied", "romance")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RelationshipState(BaseModel):
    character_id: str
    level: RelationshipLevel = "unknown"
    last_interaction: datetime = Field(default_factory=utcnow)
    key_events: List[str] = Field(default_factory=list)


class PlayerChoice(BaseModel):
    beat_id: str
    choice: str
    consequence: str = ""
    timestamp: datetime = Field(default_factory=utcnow)


class StateMetadata(BaseModel):
    last_updated: datetime = Field(default_factory=utcnow)
    total_play_time: float = 0  # seconds
    major_decisions: int = 0


class StoryState(BaseModel):
    """Mutable narrative progress for one (story_id, session_id).

    A beat id sits in at most one of completed_beats / active_beats; repeatable
    beats may re-enter active_beats after leaving it.
    """
    story_id: str
    session_id: str
    current_location: str
    completed_beats: List[str] = Field(default_factory=list)
    active_beats: List[str] = Field(default_factory=list)
    discovered_characters: List[str] = Field(default_factory=list)
    known_locations: List[str] = Field(default_factory=list)
    player_choices: List[PlayerChoice] = Field(default_factory=list)
    relationship_states: Dict[str, RelationshipState] = Field(default_factory=dict)
    inventory_items: List[str] = Field(default_factory=list)  # owned by the inventory service
    revealed_lore: List[str] = Field(default_factory=list)
    story_flags: Dict[str, bool] = Field(default_factory=dict)
    metadata: StateMetadata = Field(default_factory=StateMetadata)


# Identity fields are never overwritten by a partial update
IMMUTABLE_STATE_FIELDS: frozenset[str] = frozenset({"story_id", "session_id"})
