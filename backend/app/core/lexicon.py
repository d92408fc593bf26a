"""Keyword tables and entity lookups shared by beat triggering, retrieval, and pacing.

No LLM calls, pure Python mappings. Everything that decides "does this text
mean X" by keyword lives here so the trigger evaluator and the pacing
classifier cannot drift apart.

Usage:
    extract_keywords(query) -> list of scoring tokens
    categorize_action(action) -> examine | move | talk | interact | other
    EntityIndex.from_documents(docs).character_for_beat(beat) -> character id or None
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Mapping

from backend.app.models.corpus import (
    DOC_TYPE_CHARACTER,
    DOC_TYPE_LOCATION,
    BeatDefinition,
    Document,
)


# ---------------------------------------------------------------------------
# Retrieval tokens
# ---------------------------------------------------------------------------
STOP_WORDS: frozenset[str] = frozenset({
    "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for", "of", "with", "by",
    "is", "are", "was", "were", "be", "been", "being", "have", "has", "had",
    "do", "does", "did", "will", "would", "should", "could", "may", "might", "must", "can",
    "i", "you", "he", "she", "it", "we", "they", "me", "him", "her", "us", "them",
})

MIN_KEYWORD_LENGTH = 3

# Location-to-location expansion requires one of these plus an id
CONNECTION_KEYWORDS: tuple[str, ...] = ("connection", "connected", "border", "path", "entrance", "exit")

# Relationship tier bonus used by retrieval scoring
RELATIONSHIP_BONUS: dict[str, int] = {
    "allied": 12,
    "romance": 10,
    "friendly": 8,
    "hostile": 7,  # still relevant for conflict
    "met": 5,
    "unknown": 0,
}


def extract_keywords(query: str) -> list[str]:
    """Lowercase, whitespace-split, keep alphabetic words of 3+ chars that are not stop words.

    Duplicates are kept: a repeated word counts once per occurrence.
    """
    out: list[str] = []
    for word in (query or "").lower().split():
        if len(word) < MIN_KEYWORD_LENGTH or word in STOP_WORDS:
            continue
        if not (word.isascii() and word.isalpha()):
            continue
        out.append(word)
    return out


# ---------------------------------------------------------------------------
# Beat trigger matching
# ---------------------------------------------------------------------------
ACTION_TYPE_KEYWORDS: dict[str, tuple[str, ...]] = {
    "exploration": ("look", "search", "examine", "investigate", "observe"),
    "dialogue": ("speak", "talk", "ask", "call", "say"),
    "decision": ("go", "move", "enter", "take", "choose"),
    "combat": ("attack", "fight", "defend", "cast"),
}

ACTION_SYNONYMS: dict[str, tuple[str, ...]] = {
    "look": ("examine", "observe", "inspect", "study"),
    "search": ("look for", "find", "seek", "hunt"),
    "speak": ("talk", "say", "tell", "ask"),
    "move": ("go", "walk", "travel", "proceed"),
    "take": ("grab", "pick up", "collect", "get"),
}

# Dialogue trigger phrase -> action fragments that satisfy it
DIALOGUE_PHRASE_ALIASES: dict[str, tuple[str, ...]] = {
    "searching": ("search",),
    "crystal": ("crystal",),
    "lost": ("lost", "confused"),
}


def contains_any(text: str, words: Iterable[str]) -> bool:
    return any(w in text for w in words)


def matches_action_type(trigger: str, action_type: str | None) -> bool:
    """True if the trigger names a verb from the action type's keyword class."""
    if not action_type:
        return False
    keywords = ACTION_TYPE_KEYWORDS.get(action_type.strip().lower())
    if not keywords:
        return False
    return contains_any(trigger.lower(), keywords)


def matches_synonym(trigger: str, action: str) -> bool:
    """True if the trigger holds a base verb and the action holds one of its synonyms."""
    trigger_lower = trigger.lower()
    action_lower = action.lower()
    for base, synonyms in ACTION_SYNONYMS.items():
        if base in trigger_lower and contains_any(action_lower, synonyms):
            return True
    return False


def matches_trigger_words(trigger: str, action: str) -> bool:
    """True if every keyword of a multi-word trigger occurs in the action.

    "examine door" matches "I examine the door" even though neither string
    contains the other.
    """
    words = extract_keywords(trigger)
    if len(words) < 2:
        return False
    action_lower = action.lower()
    return all(w in action_lower for w in words)


def matches_dialogue_phrase(trigger: str, action: str) -> bool:
    trigger_lower = trigger.lower()
    action_lower = action.lower()
    for phrase, fragments in DIALOGUE_PHRASE_ALIASES.items():
        if phrase in trigger_lower and contains_any(action_lower, fragments):
            return True
    return trigger_lower in action_lower


@dataclass(frozen=True)
class LoreGate:
    """Location/action gate for exposition beats. Empty fields do not constrain."""

    location: str | None = None
    action_keywords: tuple[str, ...] = ()

    def allows(self, current_location: str | None, action: str) -> bool:
        if self.location and current_location != self.location:
            return False
        if self.action_keywords and not contains_any(action.lower(), self.action_keywords):
            return False
        return True


DEFAULT_LORE_GATES: dict[str, LoreGate] = {
    "elder_oak_wisdom": LoreGate(
        location="whispering_woods",
        action_keywords=("guidance", "wisdom", "help", "advice"),
    ),
}


# ---------------------------------------------------------------------------
# Entity lookup (id -> keyword set)
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class EntityIndex:
    """Maps entity ids to the lowercase keywords that imply them.

    Characters are matched against beat ids, locations against beat
    descriptions. First match in insertion (corpus) order wins.
    """

    characters: Mapping[str, tuple[str, ...]] = field(default_factory=dict)
    locations: Mapping[str, tuple[str, ...]] = field(default_factory=dict)

    def character_for_beat(self, beat: BeatDefinition) -> str | None:
        return _first_match(self.characters, beat.id.lower())

    def location_for_beat(self, beat: BeatDefinition) -> str | None:
        return _first_match(self.locations, beat.description.lower())

    @classmethod
    def from_documents(
        cls,
        documents: Iterable[Document],
        overrides: Mapping[str, Mapping[str, Iterable[str]]] | None = None,
    ) -> EntityIndex:
        """Build from corpus: character id; location name and spaced id.

        overrides = {"characters": {id: [kw, ...]}, "locations": {...}} replaces
        the derived keywords for the listed ids and may add new ids.
        """
        characters: dict[str, tuple[str, ...]] = {}
        locations: dict[str, tuple[str, ...]] = {}
        for doc in documents:
            md = doc.metadata
            if md.type == DOC_TYPE_CHARACTER:
                characters[md.id] = _keywords(md.id)
            elif md.type == DOC_TYPE_LOCATION:
                locations[md.id] = _keywords(md.name or "", md.id.replace("_", " "))
        for kind, target in (("characters", characters), ("locations", locations)):
            for entity_id, words in ((overrides or {}).get(kind) or {}).items():
                target[str(entity_id)] = _keywords(*[str(w) for w in words])
        return cls(characters=characters, locations=locations)


def _keywords(*values: str) -> tuple[str, ...]:
    out: list[str] = []
    for v in values:
        kw = (v or "").strip().lower()
        if kw and kw not in out:
            out.append(kw)
    return tuple(out)


def _first_match(table: Mapping[str, tuple[str, ...]], text: str) -> str | None:
    for entity_id, keywords in table.items():
        if contains_any(text, keywords):
            return entity_id
    return None


# ---------------------------------------------------------------------------
# Pacing
# ---------------------------------------------------------------------------
HIGH_TENSION_WORDS: tuple[str, ...] = (
    "attack", "danger", "threat", "enemy", "fear", "panic", "urgent", "quickly", "suddenly",
)
MEDIUM_TENSION_WORDS: tuple[str, ...] = (
    "suspicious", "mysterious", "strange", "unsettling", "concerning", "worried",
)
LOW_TENSION_WORDS: tuple[str, ...] = ("peaceful", "calm", "safe", "rest", "comfortable", "relaxed")

PLOT_KEYWORDS: tuple[str, ...] = (
    "reveal", "discover", "uncover", "learn", "realize", "understand",
    "secret", "mystery", "clue", "evidence", "truth",
)
CONFLICT_KEYWORDS: tuple[str, ...] = (
    "attack", "fight", "battle", "combat", "enemy", "threat",
    "danger", "trap", "ambush", "pursue", "chase",
)
SIGNIFICANT_EVENT_PHRASES: tuple[str, ...] = (
    "major discovery", "plot twist", "character death", "new location",
    "important revelation", "conflict resolution", "new threat",
)

# Ordered: first bucket whose verbs appear wins
ACTION_BUCKETS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("examine", ("look", "examine")),
    ("move", ("move", "go")),
    ("talk", ("talk", "speak")),
    ("interact", ("take", "use")),
)
ACTION_BUCKET_OTHER = "other"


def categorize_action(action: str) -> str:
    lower = (action or "").lower()
    for bucket, verbs in ACTION_BUCKETS:
        if contains_any(lower, verbs):
            return bucket
    return ACTION_BUCKET_OTHER


@dataclass(frozen=True)
class DeathRule:
    death_type: str
    reason: str
    triggers: tuple[str, ...]


DEATH_RULES: tuple[DeathRule, ...] = (
    DeathRule(
        "reckless_torch_handling",
        "Reckless torch manipulation caused a fatal fire",
        ("smash torch", "break torch", "destroy torch", "hit torch", "kick torch"),
    ),
    DeathRule(
        "dangerous_stone_collapse",
        "Reckless stone manipulation caused a fatal collapse",
        ("smash stone", "break wall", "destroy stones", "hit wall", "punch stones"),
    ),
    DeathRule(
        "panic_induced_death",
        "Panic led to fatal poor decisions",
        ("panic", "desperate", "scream", "give up", "break down"),
    ),
)
EXHAUSTION_DEATH = DeathRule(
    "exhaustion_death",
    "Exhaustion and time pressure led to collapse",
    (),
)
EXHAUSTION_SCENE_LIMIT = 15
