"""Tests for the narrative engine facade: turn pipeline, inventory seam, maintenance."""
from __future__ import annotations

import logging

import pytest

from backend.app.core.narrative_engine import NarrativeEngine
from backend.app.core.state_store import StoryStateStore


class _Inventory:
    def player_inventory_summary(self, user_id: str, session_id: str) -> str:
        return f"{user_id} carries a lantern"

    def location_items_summary(self, story_id: str, location_id: str) -> str:
        return f"A rope lies in {location_id}"


class _BrokenInventory:
    def player_inventory_summary(self, user_id: str, session_id: str) -> str:
        raise ConnectionError("inventory service down")

    def location_items_summary(self, story_id: str, location_id: str) -> str:
        return "unused"


# --- wiring ---

def test_injected_store_is_used(store, loader, woods_story):
    assert len(store) == 0
    engine = NarrativeEngine(store=store, loader=loader)
    assert engine.store is store
    engine.process_turn("woods", "s1", "look around")
    assert len(store) == 1


def test_default_store_when_none_injected(loader):
    engine = NarrativeEngine(loader=loader)
    assert isinstance(engine.store, StoryStateStore)
    assert engine.loader is loader


# --- process_turn ---

def test_turn_triggers_then_retrieves_against_new_state(engine):
    ctx = engine.process_turn("woods", "s1", "I examine the door")
    assert ctx.trigger_result.triggered_ids == ["stone_door"]
    assert "stone_door" in ctx.story_state.completed_beats
    door = next(c for c in ctx.contexts if c.metadata.id == "stone_door")
    assert door.relationship_score == 5  # completed this turn
    assert len(ctx.contexts) <= 12
    assert "story_beats:The Stone Door" in ctx.context_summary


def test_turn_carries_pacing_verdict(engine):
    ctx = engine.process_turn("woods", "s1", "look around")
    assert ctx.tension == "low"
    assert ctx.momentum == "slow"
    assert not ctx.intervention.needed
    assert ctx.pacing_context.startswith("STORY STATE ANALYSIS:")


def test_turn_without_inventory_provider(engine):
    ctx = engine.process_turn("woods", "s1", "call out")
    assert ctx.inventory_summary == ""
    assert ctx.warnings == []


def test_turn_with_inventory_provider(engine, store, loader):
    engine = NarrativeEngine(store=store, loader=loader, inventory=_Inventory())
    ctx = engine.process_turn("woods", "s1", "call out", user_id="u1")
    assert ctx.inventory_summary == "u1 carries a lantern"
    assert ctx.location_items_summary == "A rope lies in whispering_woods"


def test_inventory_failure_degrades_to_warning(store, loader, woods_story):
    engine = NarrativeEngine(store=store, loader=loader, inventory=_BrokenInventory())
    ctx = engine.process_turn("woods", "s1", "call out")
    assert ctx.trigger_result.triggered_ids == ["whiskers_first_meeting"]
    assert ctx.inventory_summary == ""
    assert ctx.location_items_summary == ""
    assert ctx.warnings == ["Inventory summary unavailable"]


# --- corpus failures ---

def test_invalid_corpus_degrades_to_empty(make_story, loader, store):
    make_story("broken", characters=[{"id": "whiskers", "name": "Whiskers"}],
               locations=[{"id": "woods", "name": "Woods"}],
               beats=[{"name": "missing id", "type": "decision_point"}])
    engine = NarrativeEngine(store=store, loader=loader)
    assert engine.search_story_context("broken", "s1", "whiskers") == []
    assert engine.analyze_and_trigger_beats("broken", "s1", "anything").triggered_beats == []
    assert engine.get_available_beats("broken", "s1") == []


def test_invalid_corpus_logged_once_until_caches_cleared(make_story, loader, store, caplog):
    make_story("broken", characters=[{"id": "whiskers", "name": "Whiskers"}],
               locations=[{"id": "woods", "name": "Woods"}],
               beats=[{"name": "missing id", "type": "decision_point"}])
    engine = NarrativeEngine(store=store, loader=loader)
    with caplog.at_level(logging.ERROR):
        for _ in range(3):
            engine.process_turn("broken", "s1", "look around")
    failures = [r for r in caplog.records if "[corpus_loader]" in r.getMessage()]
    assert len(failures) == 1

    make_story("broken", beats=[{"id": "fixed", "type": "decision_point", "name": "Fixed"}])
    assert engine.get_available_beats("broken", "s1") == []
    engine.clear_caches()
    assert [b.id for b in engine.get_available_beats("broken", "s1")] == ["fixed"]


def test_list_shaped_relationships_do_not_break_a_turn(make_story, loader, store):
    make_story("lists", characters=[{"id": "whiskers", "name": "Whiskers", "relationships": ["elder_oak"]}],
               locations=[{"id": "woods", "name": "Woods"}])
    engine = NarrativeEngine(store=store, loader=loader)
    ctx = engine.process_turn("lists", "s1", "look for whiskers")
    assert [c.metadata.id for c in ctx.contexts][0] == "whiskers"


def test_unknown_story_still_has_state(engine):
    ctx = engine.process_turn("nowhere", "s1", "look around")
    assert ctx.contexts == []
    assert ctx.story_state.current_location == "whispering_woods"


# --- state operations ---

def test_record_player_choice_uses_beat_repeatability(engine):
    state = engine.record_player_choice("woods", "s1", "campfire_rest", "sleep", "rested")
    assert "campfire_rest" not in state.completed_beats
    state = engine.record_player_choice("woods", "s1", "opening_choice", "Forest", "A cat appears")
    assert "opening_choice" in state.completed_beats
    assert state.metadata.major_decisions == 2
    assert len(engine.pacing_for("woods", "s1").state.choice_history) == 2


def test_update_story_state_merges(engine):
    engine.update_story_state("woods", "s1", {"completed_beats": ["stone_door"]})
    state = engine.update_story_state("woods", "s1", {"current_location": "crystal_caverns"})
    assert state.completed_beats == ["stone_door"]
    assert engine.get_or_create_story_state("woods", "s1").current_location == "crystal_caverns"


# --- pacing feed ---

def test_record_narrative_feeds_pacing(engine):
    for action in ("look at the tree", "examine the rock", "look under the log"):
        engine.record_narrative("woods", "s1", "Nothing happens.", action)
    ctx = engine.process_turn("woods", "s1", "look again")
    assert ctx.momentum == "stalled"
    assert ctx.intervention.reason == "Story momentum has stalled"
    assert engine.pacing_for("woods", "other").momentum == "slow"


# --- maintenance ---

def test_sweep_states_drops_pacing(engine, clock):
    engine.process_turn("woods", "s1", "look around")
    engine.record_narrative("woods", "s1", "A calm evening.", "look around")
    clock.advance(120)
    removed = engine.sweep_states(60)
    assert [tuple(k) for k in removed] == [("woods", "s1")]
    assert engine.store.get("woods", "s1") is None
    assert engine.pacing_for("woods", "s1").state.scene_counter == 0


def test_pacing_only_sessions_age_out(engine, clock):
    for i in range(5):
        engine.record_narrative("woods", f"told{i}", "A calm evening.", "look around")
        engine.pacing_for("woods", f"peeked{i}")
    assert len(engine.store) == 10
    clock.advance(120)
    assert len(engine.sweep_states(60)) == 10
    assert len(engine.store) == 0
    assert engine._pacing == {}
    assert engine.store._session_locks == {}


def test_clear_caches_reloads_corpus(engine, make_story):
    assert len(engine.search_story_context("woods", "s1", "lantern")) > 0
    make_story("woods", lore=[{"id": "lantern_lore", "title": "Lanterns", "content": "lantern"}])
    ids = [c.metadata.id for c in engine.search_story_context("woods", "s1", "lantern", max_results=12)]
    assert "lantern_lore" not in ids
    engine.clear_caches()
    ids = [c.metadata.id for c in engine.search_story_context("woods", "s1", "lantern", max_results=12)]
    assert "lantern_lore" in ids


@pytest.mark.parametrize("action", ["", "   ", "?!?"])
def test_odd_actions_never_raise(engine, action):
    ctx = engine.process_turn("woods", "s1", action)
    assert ctx.trigger_result.triggered_beats == []
