"""State-aware keyword retrieval over a story corpus.

ContextRetriever.search(story_id, session_id, query, documents, max_results) scores
every document on three axes, keeps the positive ones, truncates to
max_results, then expands with narratively related documents up to
MAX_EXPANDED_RESULTS.

Scoring is O(documents x query tokens); expansion is O(documents x kept
results). Both are fine for corpora of tens to low hundreds of documents.
"""
from __future__ import annotations

import logging
import re
from typing import Sequence

from backend.app.config import DEFAULT_MAX_RESULTS, MAX_EXPANDED_RESULTS
from backend.app.core.lexicon import (
    CONNECTION_KEYWORDS,
    RELATIONSHIP_BONUS,
    contains_any,
    extract_keywords,
)
from backend.app.core.state_store import StoryStateStore
from backend.app.models.corpus import (
    DOC_TYPE_CHARACTER,
    DOC_TYPE_LOCATION,
    DOC_TYPE_LORE,
    DOC_TYPE_STORY_BEAT,
    Document,
    DocumentMetadata,
    ScoredContext,
)
from backend.app.models.story_state import StoryState

logger = logging.getLogger(__name__)

EXACT_MATCH_WEIGHT = 3
PARTIAL_MATCH_WEIGHT = 1
NAME_MATCH_BONUS = 5

DISCOVERED_CHARACTER_BONUS = 10
KNOWN_LOCATION_BONUS = 8
CURRENT_LOCATION_BONUS = 15
COMPLETED_BEAT_BONUS = 5
REVEALED_LORE_BONUS = 6
ACTIVE_BEAT_BONUS = 20
PROGRESSION_PER_BEAT = 2
PROGRESSION_CAP = 10


def count_matches(content_lower: str, token: str) -> tuple[int, int]:
    """Return (whole-word matches, total substring occurrences) of token in content."""
    exact = len(re.findall(rf"\b{re.escape(token)}\b", content_lower))
    return exact, content_lower.count(token)


def relevance_score(doc: Document, tokens: Sequence[str]) -> float:
    """exact*3 + (substring_total - exact)*1 per token, +5 when the token is in name/title."""
    content = doc.content.lower()
    name = (doc.metadata.name or "").lower()
    title = (doc.metadata.title or "").lower()
    score = 0
    for token in tokens:
        exact, total = count_matches(content, token)
        score += exact * EXACT_MATCH_WEIGHT
        score += (total - exact) * PARTIAL_MATCH_WEIGHT
        if token in name or token in title:
            score += NAME_MATCH_BONUS
    return score


def relationship_score(doc: Document | ScoredContext, state: StoryState) -> float:
    md = doc.metadata
    score = 0
    if md.type == DOC_TYPE_CHARACTER:
        if md.id in state.discovered_characters:
            score += DISCOVERED_CHARACTER_BONUS
        rel = state.relationship_states.get(md.id)
        if rel is not None:
            score += RELATIONSHIP_BONUS.get(rel.level, 0)
    elif md.type == DOC_TYPE_LOCATION:
        if md.id in state.known_locations:
            score += KNOWN_LOCATION_BONUS
        if md.id == state.current_location:
            score += CURRENT_LOCATION_BONUS
    elif md.type == DOC_TYPE_STORY_BEAT:
        if md.id in state.completed_beats:
            score += COMPLETED_BEAT_BONUS
    elif md.type == DOC_TYPE_LORE:
        if md.id in state.revealed_lore:
            score += REVEALED_LORE_BONUS
    return score


def story_relevance_score(doc: Document | ScoredContext, state: StoryState) -> float:
    md = doc.metadata
    score = min(len(state.completed_beats) * PROGRESSION_PER_BEAT, PROGRESSION_CAP)
    if md.type == DOC_TYPE_STORY_BEAT and md.id in state.active_beats:
        score += ACTIVE_BEAT_BONUS
    if md.story_weight:
        score += md.story_weight
    return score


def score_document(doc: Document, tokens: Sequence[str], state: StoryState) -> ScoredContext:
    return ScoredContext(
        content=doc.content,
        metadata=doc.metadata,
        relevance_score=relevance_score(doc, tokens),
        relationship_score=relationship_score(doc, state),
        story_relevance_score=story_relevance_score(doc, state),
    )


# ── relatedness heuristics ──

def _mentions(content: str, needle: str | None) -> bool:
    needle = (needle or "").strip().lower()
    return bool(needle) and needle in content.lower()


def _locations_connected(a: DocumentMetadata, a_content: str, b: DocumentMetadata, b_content: str) -> bool:
    ids = (a.id.lower(), b.id.lower())
    for content in (b_content.lower(), a_content.lower()):
        if contains_any(content, CONNECTION_KEYWORDS) and contains_any(content, ids):
            return True
    return False


def is_related(anchor: ScoredContext, candidate: Document) -> bool:
    """Symmetric keyword heuristics linking two corpus documents."""
    a, b = anchor.metadata, candidate.metadata
    if a.id == b.id:
        return False
    if a.type == DOC_TYPE_CHARACTER and b.type == DOC_TYPE_CHARACTER:
        return _mentions(candidate.content, a.id) or _mentions(anchor.content, b.id)
    if a.type == DOC_TYPE_LOCATION and b.type == DOC_TYPE_LOCATION:
        return _locations_connected(a, anchor.content, b, candidate.content)
    if a.type == DOC_TYPE_CHARACTER and b.type == DOC_TYPE_LOCATION:
        return _mentions(candidate.content, a.name)
    if a.type == DOC_TYPE_LOCATION and b.type == DOC_TYPE_CHARACTER:
        return _mentions(anchor.content, b.name)
    if a.type == DOC_TYPE_STORY_BEAT:
        return _mentions(candidate.content, a.name)
    if b.type == DOC_TYPE_STORY_BEAT:
        return _mentions(anchor.content, b.name)
    return False


def context_summary(results: Sequence[ScoredContext]) -> str:
    """Compact debug line: category:label (total) per result."""
    return ", ".join(
        f"{r.metadata.category}:{r.metadata.label} ({r.total_score:g})" for r in results
    )


class ContextRetriever:
    """Ranks and expands corpus documents for a query against a session's story state."""

    def __init__(self, store: StoryStateStore, expansion_cap: int = MAX_EXPANDED_RESULTS) -> None:
        self.store = store
        self.expansion_cap = expansion_cap

    def search(
        self,
        story_id: str,
        session_id: str,
        query: str,
        documents: Sequence[Document],
        max_results: int = DEFAULT_MAX_RESULTS,
    ) -> list[ScoredContext]:
        state = self.store.get_or_create(story_id, session_id)
        tokens = extract_keywords(query)

        scored = [score_document(doc, tokens, state) for doc in documents]
        positive = [r for r in scored if r.total_score > 0]
        # sorted() is stable: ties keep corpus order
        ranked = sorted(positive, key=lambda r: r.total_score, reverse=True)
        top = ranked[: max(0, min(max_results, self.expansion_cap))]

        results = self._expand(top, documents, state)
        logger.info(
            "Context search found %d results for %r (%d tokens, %d scored > 0)",
            len(results), query, len(tokens), len(positive),
        )
        logger.debug("Context summary: %s", context_summary(results))
        return results

    def _expand(
        self,
        results: list[ScoredContext],
        documents: Sequence[Document],
        state: StoryState,
    ) -> list[ScoredContext]:
        expanded = list(results)
        included = {r.metadata.id for r in results}
        for anchor in results:
            if len(expanded) >= self.expansion_cap:
                break
            for doc in documents:
                if len(expanded) >= self.expansion_cap:
                    break
                if doc.metadata.id in included or not is_related(anchor, doc):
                    continue
                expanded.append(score_document(doc, (), state))
                included.add(doc.metadata.id)
        return expanded
