"""Turn context handed to prompt assembly."""
from __future__ import annotations

from typing import List

from pydantic import BaseModel, Field

from backend.app.models.corpus import ScoredContext, TriggerResult
from backend.app.models.pacing import Intervention, Tension, Momentum
from backend.app.models.story_state import StoryState


class TurnContext(BaseModel):
    """Everything one turn produced: ranked context, fired beats, committed state, pacing verdict.

    Inventory and location-item summaries are free text from the inventory
    service; they are folded into the prompt but never scored.
    """
    story_id: str
    session_id: str
    action: str
    action_type: str | None = None
    contexts: List[ScoredContext] = Field(default_factory=list)
    context_summary: str = ""
    trigger_result: TriggerResult = Field(default_factory=TriggerResult)
    story_state: StoryState
    tension: Tension = "low"
    momentum: Momentum = "slow"
    intervention: Intervention = Field(default_factory=Intervention)
    pacing_context: str = ""
    inventory_summary: str = ""
    location_items_summary: str = ""
    warnings: List[str] = Field(default_factory=list)
