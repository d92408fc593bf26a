"""In-memory Story State store keyed by (story_id, session_id).

Create-on-read, shallow-merge updates, age-based eviction. Stored records are
never mutated in place: every write builds a new StoryState and swaps it into
the map, and reads hand out copies. A per-session RLock (session_lock) lets the
engine hold one session for a whole read-evaluate-write turn; the map lock is
only held for single-entry get/swap/remove.
"""
from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Any, Callable, Iterator, Mapping, NamedTuple

from backend.app.config import DEFAULT_START_BEAT, DEFAULT_START_LOCATION
from backend.app.models.story_state import (
    IMMUTABLE_STATE_FIELDS,
    PlayerChoice,
    RelationshipState,
    StateMetadata,
    StoryState,
    utcnow,
)

logger = logging.getLogger(__name__)


class StateKey(NamedTuple):
    story_id: str
    session_id: str


class StoryStateStore:
    """Process-local story state, injected into the engine (not a module singleton)."""

    def __init__(
        self,
        default_location: str = DEFAULT_START_LOCATION,
        starting_beat: str | None = DEFAULT_START_BEAT,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.default_location = default_location
        self.starting_beat = starting_beat
        self._clock = clock
        self._lock = threading.Lock()
        self._states: dict[StateKey, StoryState] = {}
        self._session_locks: dict[StateKey, threading.RLock] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._states)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._states

    def _session_rlock(self, key: StateKey) -> threading.RLock:
        with self._lock:
            lock = self._session_locks.get(key)
            if lock is None:
                lock = threading.RLock()
                self._session_locks[key] = lock
            return lock

    @contextmanager
    def session_lock(self, story_id: str, session_id: str) -> Iterator[None]:
        """Hold one session exclusively (re-entrant) for a read-evaluate-write sequence."""
        key = StateKey(story_id, session_id)
        while True:
            lock = self._session_rlock(key)
            lock.acquire()
            with self._lock:
                registered = self._session_locks.get(key)
            if registered is lock:
                break
            # swept between lookup and acquire; retry with the fresh lock
            lock.release()
        try:
            yield
        finally:
            lock.release()

    def _new_state(self, story_id: str, session_id: str, location: str) -> StoryState:
        return StoryState(
            story_id=story_id,
            session_id=session_id,
            current_location=location,
            active_beats=[self.starting_beat] if self.starting_beat else [],
            known_locations=[location],
            metadata=StateMetadata(last_updated=self._clock()),
        )

    def get(self, story_id: str, session_id: str) -> StoryState | None:
        """Return a copy of the stored state, or None (never creates)."""
        with self._lock:
            state = self._states.get(StateKey(story_id, session_id))
        return state.model_copy(deep=True) if state is not None else None

    def get_or_create(
        self,
        story_id: str,
        session_id: str,
        default_location: str | None = None,
    ) -> StoryState:
        """Return a copy of the session's state, materializing defaults on first access."""
        key = StateKey(story_id, session_id)
        with self._lock:
            state = self._states.get(key)
            if state is None:
                state = self._new_state(story_id, session_id, default_location or self.default_location)
                self._states[key] = state
                logger.info(
                    "Created story state for %s/%s at %s",
                    story_id, session_id, state.current_location,
                )
        return state.model_copy(deep=True)

    def update(self, story_id: str, session_id: str, partial: Mapping[str, Any]) -> StoryState:
        """Shallow-merge partial into the stored state and refresh metadata.last_updated.

        Unknown keys and identity fields are dropped. Top-level fields are
        replaced wholesale; untouched fields keep their values.
        """
        with self.session_lock(story_id, session_id):
            current = self.get_or_create(story_id, session_id)
            merged = current.model_dump()
            dropped = []
            for k, v in (partial or {}).items():
                if k in IMMUTABLE_STATE_FIELDS or k not in StoryState.model_fields:
                    dropped.append(k)
                    continue
                merged[k] = v.model_dump() if hasattr(v, "model_dump") else v
            if dropped:
                logger.debug("State update for %s/%s ignored fields: %s", story_id, session_id, dropped)
            updated = StoryState.model_validate(merged)
            updated.metadata.last_updated = self._clock()
            with self._lock:
                self._states[StateKey(story_id, session_id)] = updated
            return updated.model_copy(deep=True)

    def record_choice(
        self,
        story_id: str,
        session_id: str,
        beat_id: str,
        choice: str,
        consequence: str,
        repeatable: bool = False,
    ) -> StoryState:
        """Append a player choice; a non-repeatable beat moves from active to completed."""
        with self.session_lock(story_id, session_id):
            state = self.get_or_create(story_id, session_id)
            choices = list(state.player_choices)
            choices.append(PlayerChoice(
                beat_id=beat_id,
                choice=choice,
                consequence=consequence,
                timestamp=self._clock(),
            ))
            completed = list(state.completed_beats)
            active = list(state.active_beats)
            if not repeatable:
                if beat_id not in completed:
                    completed.append(beat_id)
                active = [b for b in active if b != beat_id]
            metadata = state.metadata.model_copy()
            metadata.major_decisions += 1
            return self.update(story_id, session_id, {
                "player_choices": choices,
                "completed_beats": completed,
                "active_beats": active,
                "metadata": metadata,
            })

    def set_relationship(
        self,
        story_id: str,
        session_id: str,
        character_id: str,
        level: str,
        key_event: str | None = None,
    ) -> StoryState:
        with self.session_lock(story_id, session_id):
            state = self.get_or_create(story_id, session_id)
            relationships = dict(state.relationship_states)
            existing = relationships.get(character_id)
            events = list(existing.key_events) if existing else []
            if key_event:
                events.append(key_event)
            relationships[character_id] = RelationshipState(
                character_id=character_id,
                level=level,
                last_interaction=self._clock(),
                key_events=events,
            )
            return self.update(story_id, session_id, {"relationship_states": relationships})

    def relationship_context(self, story_id: str, session_id: str, character_id: str) -> str:
        state = self.get_or_create(story_id, session_id)
        rel = state.relationship_states.get(character_id)
        if rel is None:
            return f"You have not yet met {character_id}."
        events = ", ".join(rel.key_events)
        return f"Your relationship with {character_id} is {rel.level}. Key events: {events}"

    def sweep(self, max_age_seconds: float, now: datetime | None = None) -> list[StateKey]:
        """Remove states whose last_updated is strictly older than max_age_seconds.

        Sessions currently held by a turn are skipped; they will be retried on
        the next sweep.
        """
        cutoff = (now or self._clock()) - timedelta(seconds=max_age_seconds)
        with self._lock:
            candidates = [k for k, s in self._states.items() if s.metadata.last_updated < cutoff]

        removed: list[StateKey] = []
        for key in candidates:
            lock = self._session_rlock(key)
            if not lock.acquire(blocking=False):
                continue
            try:
                with self._lock:
                    state = self._states.get(key)
                    if state is None or state.metadata.last_updated >= cutoff:
                        continue
                    del self._states[key]
                    self._session_locks.pop(key, None)
                    removed.append(key)
            finally:
                lock.release()

        orphaned = self._drop_orphaned_locks()
        if removed or orphaned:
            logger.info("Cleaned up %d old story states (%d idle locks)", len(removed), orphaned)
        return removed

    def _drop_orphaned_locks(self) -> int:
        """Forget session locks registered for sessions that have no stored state."""
        with self._lock:
            candidates = [(k, lk) for k, lk in self._session_locks.items() if k not in self._states]
        dropped = 0
        for key, lock in candidates:
            if not lock.acquire(blocking=False):
                continue
            try:
                with self._lock:
                    if key not in self._states and self._session_locks.get(key) is lock:
                        del self._session_locks[key]
                        dropped += 1
            finally:
                lock.release()
        return dropped

    def clear(self) -> None:
        with self._lock:
            self._states.clear()
            self._session_locks.clear()
