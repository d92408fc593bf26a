"""Narrative debug API: inspect story state, run retrieval and beat triggers, feed pacing."""
from __future__ import annotations

import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field

from backend.app.config import DEFAULT_MAX_RESULTS, MAX_EXPANDED_RESULTS
from backend.app.core.narrative_engine import NarrativeEngine
from backend.app.models.corpus import BeatDefinition, ScoredContext
from backend.app.models.pacing import PacingState
from backend.app.models.story_state import StoryState
from backend.app.models.turn import TurnContext

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/stories", tags=["narrative"])


def get_engine(request: Request) -> NarrativeEngine:
    """The app-wide engine (one store per process)."""
    return request.app.state.engine


class SearchRequest(BaseModel):
    query: str = ""
    max_results: int = Field(default=DEFAULT_MAX_RESULTS, ge=1, le=MAX_EXPANDED_RESULTS)


class TurnRequest(BaseModel):
    action: str
    action_type: str | None = None
    user_id: str | None = None
    max_results: int = Field(default=DEFAULT_MAX_RESULTS, ge=1, le=MAX_EXPANDED_RESULTS)


class ChoiceRequest(BaseModel):
    beat_id: str = Field(min_length=1)
    choice: str
    consequence: str = ""


class NarrativeRequest(BaseModel):
    narrative: str
    action: str = ""


class PacingResponse(BaseModel):
    state: PacingState
    intervention_needed: bool
    intervention_reason: str = ""
    intervention: str = ""
    prompt_context: str = ""


class ValidateResponse(BaseModel):
    story_id: str
    documents: int
    beats: int
    characters: List[str]
    locations: List[str]


def _pacing_response(engine: NarrativeEngine, story_id: str, session_id: str) -> PacingResponse:
    tracker = engine.pacing_for(story_id, session_id)
    verdict = tracker.needs_intervention()
    return PacingResponse(
        state=tracker.snapshot(),
        intervention_needed=verdict.needed,
        intervention_reason=verdict.reason,
        intervention=verdict.intervention,
        prompt_context=tracker.context_for_prompt(),
    )


@router.get("/{story_id}/sessions/{session_id}/state", response_model=StoryState)
def get_story_state(story_id: str, session_id: str, engine: NarrativeEngine = Depends(get_engine)):
    return engine.get_or_create_story_state(story_id, session_id)


@router.get("/{story_id}/sessions/{session_id}/beats/available", response_model=List[BeatDefinition])
def get_available_beats(story_id: str, session_id: str, engine: NarrativeEngine = Depends(get_engine)):
    return engine.get_available_beats(story_id, session_id)


@router.post("/{story_id}/sessions/{session_id}/search", response_model=List[ScoredContext])
def search_context(
    story_id: str,
    session_id: str,
    body: SearchRequest,
    engine: NarrativeEngine = Depends(get_engine),
):
    return engine.search_story_context(story_id, session_id, body.query, body.max_results)


@router.post("/{story_id}/sessions/{session_id}/turn", response_model=TurnContext)
def post_turn(
    story_id: str,
    session_id: str,
    body: TurnRequest,
    engine: NarrativeEngine = Depends(get_engine),
):
    if not body.action.strip():
        raise HTTPException(status_code=400, detail="action must not be empty")
    return engine.process_turn(
        story_id,
        session_id,
        body.action,
        action_type=body.action_type,
        user_id=body.user_id,
        max_results=body.max_results,
    )


@router.post("/{story_id}/sessions/{session_id}/choices", response_model=StoryState)
def post_choice(
    story_id: str,
    session_id: str,
    body: ChoiceRequest,
    engine: NarrativeEngine = Depends(get_engine),
):
    return engine.record_player_choice(story_id, session_id, body.beat_id, body.choice, body.consequence)


@router.post("/{story_id}/sessions/{session_id}/narrative", response_model=PacingResponse)
def post_narrative(
    story_id: str,
    session_id: str,
    body: NarrativeRequest,
    engine: NarrativeEngine = Depends(get_engine),
):
    engine.record_narrative(story_id, session_id, body.narrative, body.action)
    return _pacing_response(engine, story_id, session_id)


@router.get("/{story_id}/sessions/{session_id}/pacing", response_model=PacingResponse)
def get_pacing(story_id: str, session_id: str, engine: NarrativeEngine = Depends(get_engine)):
    return _pacing_response(engine, story_id, session_id)


@router.get("/{story_id}/validate", response_model=ValidateResponse)
def validate_story(story_id: str, engine: NarrativeEngine = Depends(get_engine)):
    """Strict re-read of the corpus; CorpusValidationError is rendered by the app handler."""
    corpus = engine.loader.validate(story_id)
    if corpus is None:
        raise HTTPException(status_code=404, detail=f"Story '{story_id}' not found or incomplete")
    return ValidateResponse(
        story_id=story_id,
        documents=len(corpus.documents),
        beats=len(corpus.beats),
        characters=list(corpus.entities.characters),
        locations=list(corpus.entities.locations),
    )


@router.post("/cache/clear")
def clear_cache(engine: NarrativeEngine = Depends(get_engine)):
    engine.clear_caches()
    return {"status": "cleared"}
