"""Application models (corpus documents, story state, pacing, turn context)."""
from .corpus import (
    BeatDefinition,
    Document,
    DocumentMetadata,
    ScoredContext,
    StateMutations,
    TriggerResult,
)
from .pacing import DeathCheck, Intervention, PacingState
from .story_state import PlayerChoice, RelationshipState, StateMetadata, StoryState
from .turn import TurnContext

__all__ = [
    "BeatDefinition",
    "Document",
    "DocumentMetadata",
    "ScoredContext",
    "StateMutations",
    "TriggerResult",
    "DeathCheck",
    "Intervention",
    "PacingState",
    "PlayerChoice",
    "RelationshipState",
    "StateMetadata",
    "StoryState",
    "TurnContext",
]
