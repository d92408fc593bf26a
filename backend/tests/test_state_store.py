"""Tests for the in-memory story state store."""
from __future__ import annotations

import threading

from backend.app.core.state_store import StateKey, StoryStateStore


# --- get_or_create ---

def test_first_access_materializes_defaults(store, clock):
    state = store.get_or_create("woods", "s1")
    assert state.current_location == "whispering_woods"
    assert state.active_beats == ["opening_choice"]
    assert state.known_locations == ["whispering_woods"]
    assert state.completed_beats == []
    assert state.metadata.last_updated == clock.now
    assert len(store) == 1


def test_get_or_create_is_idempotent(store):
    store.get_or_create("woods", "s1")
    store.update("woods", "s1", {"completed_beats": ["opening_choice"]})
    again = store.get_or_create("woods", "s1", default_location="elsewhere")
    assert again.completed_beats == ["opening_choice"]
    assert again.current_location == "whispering_woods"
    assert len(store) == 1


def test_custom_default_location_and_no_starting_beat(clock):
    store = StoryStateStore(default_location="village", starting_beat=None, clock=clock)
    state = store.get_or_create("woods", "s1", default_location="meadow")
    assert state.current_location == "meadow"
    assert state.known_locations == ["meadow"]
    assert state.active_beats == []


def test_get_never_creates(store):
    assert store.get("woods", "missing") is None
    assert len(store) == 0


def test_sessions_are_isolated(store):
    store.update("woods", "a", {"current_location": "crystal_caverns"})
    assert store.get_or_create("woods", "b").current_location == "whispering_woods"
    assert store.get_or_create("other", "a").current_location == "whispering_woods"


def test_returned_state_is_a_copy(store):
    state = store.get_or_create("woods", "s1")
    state.completed_beats.append("hacked")
    state.story_flags["x"] = True
    fresh = store.get_or_create("woods", "s1")
    assert fresh.completed_beats == []
    assert fresh.story_flags == {}


# --- update ---

def test_update_leaves_untouched_fields(store):
    store.update("woods", "s1", {"completed_beats": ["opening_choice"], "story_flags": {"met_cat": True}})
    state = store.update("woods", "s1", {"current_location": "x"})
    assert state.current_location == "x"
    assert state.completed_beats == ["opening_choice"]
    assert state.story_flags == {"met_cat": True}


def test_update_refreshes_last_updated(store, clock):
    store.get_or_create("woods", "s1")
    clock.advance(60)
    state = store.update("woods", "s1", {})
    assert state.metadata.last_updated == clock.now


def test_update_ignores_identity_and_unknown_fields(store):
    state = store.update("woods", "s1", {"story_id": "evil", "session_id": "x", "bogus": 1})
    assert state.story_id == "woods"
    assert state.session_id == "s1"
    assert store.get("woods", "x") is None


# --- record_choice ---

def test_record_choice_completes_beat(store):
    state = store.record_choice("woods", "s1", "opening_choice", "Forest", "A cat appears")
    assert state.completed_beats == ["opening_choice"]
    assert state.active_beats == []
    assert state.metadata.major_decisions == 1
    choice = state.player_choices[0]
    assert (choice.beat_id, choice.choice, choice.consequence) == ("opening_choice", "Forest", "A cat appears")


def test_record_choice_repeatable_beat_stays_active(store):
    store.record_choice("woods", "s1", "opening_choice", "Forest", "", repeatable=True)
    state = store.record_choice("woods", "s1", "opening_choice", "Caverns", "", repeatable=True)
    assert state.active_beats == ["opening_choice"]
    assert state.completed_beats == []
    assert len(state.player_choices) == 2
    assert state.metadata.major_decisions == 2


# --- relationships ---

def test_relationship_context(store):
    assert store.relationship_context("woods", "s1", "whiskers") == "You have not yet met whiskers."
    store.set_relationship("woods", "s1", "whiskers", "friendly", "Shared a fish")
    store.set_relationship("woods", "s1", "whiskers", "allied", "Fought together")
    text = store.relationship_context("woods", "s1", "whiskers")
    assert text == "Your relationship with whiskers is allied. Key events: Shared a fish, Fought together"


# --- sweep ---

def test_sweep_removes_only_strictly_older(store, clock):
    store.get_or_create("woods", "old")
    clock.advance(100)
    store.get_or_create("woods", "new")
    removed = store.sweep(100)
    assert removed == []  # "old" is exactly 100s old
    clock.advance(1)
    removed = store.sweep(100)
    assert removed == [StateKey("woods", "old")]
    assert store.get("woods", "old") is None
    assert store.get("woods", "new") is not None


def test_sweep_skips_sessions_held_by_a_turn(store, clock):
    store.get_or_create("woods", "busy")
    clock.advance(1000)
    holding = threading.Event()
    release = threading.Event()

    def hold():
        with store.session_lock("woods", "busy"):
            holding.set()
            release.wait(5)

    worker = threading.Thread(target=hold)
    worker.start()
    assert holding.wait(5)
    try:
        assert store.sweep(10) == []
        assert store.get("woods", "busy") is not None
    finally:
        release.set()
        worker.join(5)
    assert store.sweep(10) == [StateKey("woods", "busy")]


def test_sweep_forgets_locks_of_sessions_without_state(store):
    for i in range(5):
        with store.session_lock("woods", f"ghost{i}"):
            pass
    store.get_or_create("woods", "real")
    with store.session_lock("woods", "real"):
        pass
    assert store.sweep(10) == []
    assert list(store._session_locks) == [StateKey("woods", "real")]
    assert StateKey("woods", "real") in store
    assert StateKey("woods", "ghost0") not in store


def test_session_lock_is_reentrant(store):
    with store.session_lock("woods", "s1"):
        with store.session_lock("woods", "s1"):
            state = store.update("woods", "s1", {"current_location": "cave"})
    assert state.current_location == "cave"


def test_concurrent_updates_on_one_session_do_not_lose_choices(store):
    def worker(n: int):
        for i in range(20):
            store.record_choice("woods", "s1", f"beat_{n}_{i}", "c", "", repeatable=True)

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    state = store.get("woods", "s1")
    assert len(state.player_choices) == 80
    assert state.metadata.major_decisions == 80


def test_clear(store):
    store.get_or_create("woods", "s1")
    store.clear()
    assert len(store) == 0
