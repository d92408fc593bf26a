"""Pytest setup: reset process caches and build small story corpora under tmp_path."""
from __future__ import annotations

import copy
import json
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable

import pytest
import yaml

from backend.app.content.corpus_loader import CorpusLoader
from backend.app.core.narrative_engine import NarrativeEngine
from backend.app.core.state_store import StoryStateStore
from shared.cache import clear_all_caches

STORY_ID = "woods"

WOODS_CHARACTERS: list[dict[str, Any]] = [
    {
        "id": "whiskers",
        "name": "Whiskers",
        "type": "talking cat",
        "description": "A silver cat who guides lost travelers.",
        "personality": "Curious and sardonic",
        "abilities": ["sees through glamours"],
        "location": "whispering_woods",
        "dialogue_style": "Dry wit",
        "story_role": "primary guide",
        "relationships": {"elder_oak": "old friend"},
    },
    {
        "id": "elder_oak",
        "name": "Elder Oak",
        "type": "tree spirit",
        "description": "An ancient talking tree.",
        "personality": "Patient",
        "abilities": [],
        "location": "whispering_woods",
        "dialogue_style": "Slow",
        "story_role": "mentor",
        "relationships": {},
    },
]

WOODS_LOCATIONS: list[dict[str, Any]] = [
    {
        "id": "whispering_woods",
        "name": "Whispering Woods",
        "type": "forest",
        "description": "Moss-hung trees murmur as travelers pass.",
        "atmosphere": "Hushed",
        "notable_features": ["a fallen stone door"],
        "inhabitants": ["Whiskers"],
        "dangers": "low",
        "story_significance": "starting area",
        "connections": {"north": "crystal_caverns"},
    },
    {
        "id": "crystal_caverns",
        "name": "Crystal Caverns",
        "type": "caves",
        "description": "Glittering tunnels.",
        "atmosphere": "Cold",
        "notable_features": [],
        "inhabitants": [],
        "dangers": "high",
        "story_significance": "where the witch vanished",
        "connections": {"south": "whispering_woods"},
    },
]

WOODS_BEATS: list[dict[str, Any]] = [
    {
        "id": "opening_choice",
        "name": "The Forked Path",
        "type": "decision_point",
        "description": "The path splits at the forest edge.",
        "triggers": ["choose a path"],
        "choices": [
            {"option": "Forest", "leads_to": "whiskers_first_meeting", "consequences": "A cat appears"},
            {"option": "Caverns", "leads_to": "crystal_caverns", "consequences": "The air grows cold"},
        ],
        "multiple_outcomes": True,
        "story_significance": "First choice",
    },
    {
        "id": "whiskers_first_meeting",
        "name": "A Cat in the Moss",
        "type": "character_introduction",
        "description": "A silver cat watches from a mossy log in the Whispering Woods.",
        "triggers": ["call out"],
        "key_information_revealed": ["Whiskers knew the witch", "The caverns hold her trail"],
    },
    {
        "id": "stone_door",
        "name": "The Stone Door",
        "type": "decision_point",
        "description": "A rune-carved door blocks the way.",
        "triggers": ["examine door"],
    },
    {
        "id": "elder_oak_wisdom",
        "name": "Counsel of the Oak",
        "type": "exposition_lore",
        "description": "The old tree shares its memories.",
        "triggers": ["ask the tree"],
        "prerequisites": ["whiskers_first_meeting"],
        "wisdom_shared": ["Crystals sing", "Goblins fear the dark"],
    },
    {
        "id": "thornwick_confrontation",
        "name": "The Bramble Warden",
        "type": "major_conflict",
        "description": "A goblin blocks the tunnel.",
        "triggers": ["fight"],
        "prerequisites": ["can_access_crystal_caverns"],
    },
    {
        "id": "campfire_rest",
        "name": "Campfire",
        "type": "decision_point",
        "description": "A quiet fire in a clearing.",
        "triggers": ["rest by the fire"],
        "repeatable": True,
    },
]

WOODS_LORE: list[dict[str, Any]] = [
    {
        "id": "hedge_witch",
        "title": "The Vanished Witch",
        "category": "history",
        "content": "She tended the woods for forty winters.",
    },
]


def write_story(
    root: Path,
    story_id: str,
    characters: list | None = None,
    locations: list | None = None,
    beats: list | None = None,
    lore: list | None = None,
    entities: dict | None = None,
    fmt: str = "json",
) -> Path:
    """Write a story directory; None skips the file."""
    story_dir = Path(root) / story_id
    story_dir.mkdir(parents=True, exist_ok=True)
    sections = {
        "characters": characters,
        "locations": locations,
        "story_beats": beats,
        "lore": lore,
    }
    for stem, items in sections.items():
        if items is None:
            continue
        payload = {stem: items}
        if fmt == "json":
            (story_dir / f"{stem}.json").write_text(json.dumps(payload), encoding="utf-8")
        else:
            (story_dir / f"{stem}.{fmt}").write_text(yaml.safe_dump(payload), encoding="utf-8")
    if entities is not None:
        (story_dir / "entities.json").write_text(json.dumps(entities), encoding="utf-8")
    return story_dir


class FakeClock:
    """Settable clock for last_updated / sweep tests."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


@pytest.fixture(autouse=True)
def _reset_caches():
    clear_all_caches()
    yield
    clear_all_caches()


@pytest.fixture
def make_story(tmp_path: Path) -> Callable[..., Path]:
    def _make(story_id: str = STORY_ID, **sections: Any) -> Path:
        return write_story(tmp_path, story_id, **sections)
    return _make


@pytest.fixture
def woods_story(tmp_path: Path) -> Path:
    return write_story(
        tmp_path,
        STORY_ID,
        characters=copy.deepcopy(WOODS_CHARACTERS),
        locations=copy.deepcopy(WOODS_LOCATIONS),
        beats=copy.deepcopy(WOODS_BEATS),
        lore=copy.deepcopy(WOODS_LORE),
    )


@pytest.fixture
def loader(tmp_path: Path) -> CorpusLoader:
    return CorpusLoader(data_dir=tmp_path, strict=True)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(clock: FakeClock) -> StoryStateStore:
    return StoryStateStore(default_location="whispering_woods", starting_beat="opening_choice", clock=clock)


@pytest.fixture
def engine(woods_story: Path, loader: CorpusLoader, store: StoryStateStore) -> NarrativeEngine:
    return NarrativeEngine(store=store, loader=loader)
