"""Pydantic models for story corpora: documents, beat definitions, scored context, trigger results.

Documents and beats are static per story and read-only at runtime.
"""
from __future__ import annotations

from typing import Any, Dict, List, Literal

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator


DOC_TYPE_CHARACTER = "character"
DOC_TYPE_LOCATION = "location"
DOC_TYPE_STORY_BEAT = "story_beat"
DOC_TYPE_LORE = "lore"

BEAT_TYPE_DECISION_POINT = "decision_point"
BEAT_TYPE_CHARACTER_INTRODUCTION = "character_introduction"
BEAT_TYPE_MAJOR_CONFLICT = "major_conflict"
BEAT_TYPE_CLIMAX = "climax"
BEAT_TYPE_EXPOSITION_LORE = "exposition_lore"

DocumentType = Literal["character", "location", "story_beat", "lore"]
BeatType = Literal[
    "decision_point",
    "character_introduction",
    "major_conflict",
    "climax",
    "exposition_lore",
]


class DocumentMetadata(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    type: DocumentType
    id: str
    name: str | None = None
    title: str | None = None
    category: str = ""
    connections: List[str] = Field(default_factory=list)
    story_weight: float | None = Field(default=None, alias="storyWeight")

    @property
    def label(self) -> str:
        return self.name or self.title or self.id


class Document(BaseModel):
    """One unit of world knowledge: rendered text plus routing metadata."""
    model_config = ConfigDict(frozen=True)

    content: str
    metadata: DocumentMetadata


class BeatChoice(BaseModel):
    model_config = ConfigDict(extra="ignore")

    option: str
    leads_to: str | None = None
    consequences: str = ""
    character_impact: str | None = None


class FinalChoice(BaseModel):
    model_config = ConfigDict(extra="ignore")

    option: str
    consequences: str = ""
    ending: str = ""


class DialogueBranch(BaseModel):
    model_config = ConfigDict(extra="ignore")

    condition: str
    response: str = ""
    outcome: str = ""


class OptionalQuest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str
    description: str = ""
    reward: str = ""


class BeatDefinition(BaseModel):
    """A predefined narrative event with trigger conditions and consequences."""
    model_config = ConfigDict(extra="ignore")

    id: str
    name: str = ""
    type: BeatType
    description: str = ""
    triggers: List[str] = Field(default_factory=list)
    dialogue_triggers: List[str] = Field(default_factory=list)
    prerequisites: List[str] = Field(default_factory=list)
    repeatable: bool = False
    choices: List[BeatChoice] = Field(default_factory=list)
    dialogue_branches: List[DialogueBranch] = Field(default_factory=list)
    key_information_revealed: List[str] = Field(default_factory=list)
    wisdom_shared: List[str] = Field(default_factory=list)
    multiple_outcomes: bool = False
    final_choices: List[FinalChoice] = Field(default_factory=list)
    optional_quest: OptionalQuest | None = None
    story_significance: str = ""
    # Optional data-driven gate for exposition beats
    required_location: str | None = None
    required_action_keywords: List[str] = Field(default_factory=list)

    @field_validator("id")
    @classmethod
    def _id_not_blank(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("beat id must not be empty")
        return v

    @field_validator(
        "triggers",
        "dialogue_triggers",
        "prerequisites",
        "key_information_revealed",
        "wisdom_shared",
        "choices",
        "final_choices",
        "dialogue_branches",
        "required_action_keywords",
        mode="before",
    )
    @classmethod
    def _none_to_list(cls, v: Any) -> Any:
        return [] if v is None else v


class ScoredContext(BaseModel):
    """A document plus its three score components. total_score is the ranking key."""

    content: str
    metadata: DocumentMetadata
    relevance_score: float = 0
    relationship_score: float = 0
    story_relevance_score: float = 0

    @computed_field  # type: ignore[misc]
    @property
    def total_score(self) -> float:
        return self.relevance_score + self.relationship_score + self.story_relevance_score


class StateMutations(BaseModel):
    """Post-turn values for every StoryState field the trigger evaluator may change."""

    active_beats: List[str] = Field(default_factory=list)
    completed_beats: List[str] = Field(default_factory=list)
    discovered_characters: List[str] = Field(default_factory=list)
    known_locations: List[str] = Field(default_factory=list)
    story_flags: Dict[str, bool] = Field(default_factory=dict)


class TriggerResult(BaseModel):
    triggered_beats: List[BeatDefinition] = Field(default_factory=list)
    state_mutations: StateMutations = Field(default_factory=StateMutations)
    narrative_hints: List[str] = Field(default_factory=list)
    urgent_actions: List[str] = Field(default_factory=list)

    @property
    def triggered_ids(self) -> list[str]:
        return [b.id for b in self.triggered_beats]
