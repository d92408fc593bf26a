"""Story corpus loader with process-lifetime cache.

Reads <STORY_DATA_DIR>/<story_id>/ and flattens it into Documents:

- characters.json / locations.json  required; if either is missing the story
  loads as an empty corpus (retrieval degrades to "no context").
- story_beats.json / lore.json       optional; absence only drops a category.
- entities.json                      optional EntityIndex keyword overrides.

Each file may also be authored as .yaml/.yml. Malformed beats raise
CorpusValidationError at load time (or are dropped in lenient mode).
"""
from __future__ import annotations

import json
import logging
import re
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable

import yaml
from pydantic import ValidationError

from backend.app.core.lexicon import EntityIndex
from backend.app.models.corpus import (
    BEAT_TYPE_CLIMAX,
    BEAT_TYPE_MAJOR_CONFLICT,
    DOC_TYPE_CHARACTER,
    DOC_TYPE_LOCATION,
    DOC_TYPE_LORE,
    DOC_TYPE_STORY_BEAT,
    BeatDefinition,
    Document,
    DocumentMetadata,
)
from shared.cache import get_cache_value
from shared.config import CORPUS_STRICT_VALIDATION, STORY_DATA_DIR

logger = logging.getLogger(__name__)

_CORPUS_CACHE_KEY = "story_corpus_cache"
_STORY_ID_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_\-]*$")
_DATA_SUFFIXES = (".json", ".yaml", ".yml")


class CorpusValidationError(ValueError):
    """A story corpus contains entries that cannot be used (e.g. a beat without id)."""

    def __init__(self, story_id: str, problems: list[str]) -> None:
        self.story_id = story_id
        self.problems = list(problems)
        super().__init__(f"Invalid corpus for story '{story_id}': " + "; ".join(self.problems))


@dataclass(frozen=True)
class StoryCorpus:
    """Loaded, validated, immutable content for one story."""

    story_id: str
    documents: tuple[Document, ...] = ()
    beats: tuple[BeatDefinition, ...] = ()
    entities: EntityIndex = field(default_factory=EntityIndex)

    def beat(self, beat_id: str) -> BeatDefinition | None:
        for b in self.beats:
            if b.id == beat_id:
                return b
        return None


def _corpus_cache() -> dict[tuple[str, str], StoryCorpus]:
    return get_cache_value(_CORPUS_CACHE_KEY, dict)


def _join(value: Any, sep: str) -> str:
    if isinstance(value, list):
        return sep.join(str(v) for v in value)
    return str(value or "")


def _pairs(value: Any) -> str:
    if isinstance(value, list):
        return "; ".join(str(v) for v in value)
    if not isinstance(value, dict):
        return ""
    return "; ".join(f"{k}: {v}" for k, v in value.items())


def _connection_ids(value: Any) -> list[str]:
    """Keys of an {id: note} mapping, or the items of a plain id list."""
    if isinstance(value, dict):
        return [str(k) for k in value]
    if isinstance(value, list):
        return [str(v) for v in value if isinstance(v, (str, int))]
    return []


def render_character(entry: dict[str, Any]) -> str:
    lines = [
        f"Character: {entry.get('name', '')}",
        f"Type: {entry.get('type', '')}",
        f"Description: {entry.get('description', '')}",
        f"Personality: {entry.get('personality', '')}",
        f"Abilities: {_join(entry.get('abilities'), ', ')}",
        f"Location: {entry.get('location', '')}",
        f"Dialogue Style: {entry.get('dialogue_style', '')}",
        f"Story Role: {entry.get('story_role', '')}",
    ]
    if entry.get("backstory"):
        lines.append(f"Backstory: {entry['backstory']}")
    lines.append(f"Relationships: {_pairs(entry.get('relationships'))}")
    return "\n".join(lines)


def render_location(entry: dict[str, Any]) -> str:
    return "\n".join([
        f"Location: {entry.get('name', '')}",
        f"Type: {entry.get('type', '')}",
        f"Description: {entry.get('description', '')}",
        f"Atmosphere: {entry.get('atmosphere', '')}",
        f"Notable Features: {_join(entry.get('notable_features'), '; ')}",
        f"Inhabitants: {_join(entry.get('inhabitants'), ', ')}",
        f"Danger Level: {entry.get('dangers', '')}",
        f"Story Significance: {entry.get('story_significance', '')}",
        f"Connections: {_pairs(entry.get('connections'))}",
    ])


def render_beat(beat: BeatDefinition) -> str:
    content = (
        f"Story Beat: {beat.name}\n"
        f"Type: {beat.type}\n"
        f"Description: {beat.description}\n"
        f"Story Significance: {beat.story_significance}"
    )
    if beat.choices:
        content += "\nChoices Available: " + "; ".join(
            f"{c.option} -> {c.consequences}" for c in beat.choices
        )
    if beat.key_information_revealed:
        content += "\nKey Information: " + "; ".join(beat.key_information_revealed)
    return content


def render_lore(entry: dict[str, Any]) -> str:
    return (
        f"Lore: {entry.get('title', '')}\n"
        f"Category: {entry.get('category', '')}\n"
        f"Content: {entry.get('content', '')}"
    )


def _character_weight(entry: dict[str, Any]) -> float:
    return 10 if "primary" in str(entry.get("story_role") or "") else 5


def _location_weight(entry: dict[str, Any]) -> float:
    return 8 if "starting" in str(entry.get("story_significance") or "") else 6


def _beat_weight(beat: BeatDefinition) -> float:
    if beat.type == BEAT_TYPE_CLIMAX:
        return 15
    if beat.type == BEAT_TYPE_MAJOR_CONFLICT:
        return 12
    return 8


def _weight(entry: dict[str, Any], default: float) -> float:
    """Authored storyWeight / story_weight wins over the type default."""
    for key in ("storyWeight", "story_weight"):
        raw = entry.get(key)
        if isinstance(raw, (int, float)) and not isinstance(raw, bool):
            return float(raw)
    return default


class CorpusLoader:
    """Loads and caches StoryCorpus objects per (data_dir, story_id).

    First load of a story is serialized by the loader lock; cached reads
    return the same immutable corpus object.
    """

    def __init__(self, data_dir: str | Path | None = None, strict: bool | None = None) -> None:
        self.data_dir = Path(data_dir or STORY_DATA_DIR)
        self.strict = CORPUS_STRICT_VALIDATION if strict is None else strict
        self._lock = threading.RLock()

    def _cache_key(self, story_id: str) -> tuple[str, str]:
        return (str(self.data_dir), story_id)

    def load_corpus(self, story_id: str) -> StoryCorpus:
        """Return the cached corpus, loading it on first use.

        Raises CorpusValidationError for malformed entries in strict mode.
        A story directory with missing or unreadable required files caches an
        empty corpus until clear_cache; unknown story ids are never cached.
        """
        key = self._cache_key(story_id)
        cache = _corpus_cache()
        cached = cache.get(key)
        if cached is not None:
            return cached
        with self._lock:
            cached = cache.get(key)
            if cached is not None:
                return cached
            corpus = self._read_corpus(story_id)
            if corpus is None:
                corpus = StoryCorpus(story_id=story_id)
                if not self._story_exists(story_id):
                    return corpus
            cache[key] = corpus
            return corpus

    def load(self, story_id: str) -> list[Document]:
        return list(self.load_corpus(story_id).documents)

    def load_beats(self, story_id: str) -> list[BeatDefinition]:
        return list(self.load_corpus(story_id).beats)

    def clear_cache(self, story_id: str | None = None) -> None:
        with self._lock:
            cache = _corpus_cache()
            if story_id is None:
                root = str(self.data_dir)
                for key in [k for k in cache if k[0] == root]:
                    cache.pop(key, None)
            else:
                cache.pop(self._cache_key(story_id), None)
        logger.info("Cleared story corpus cache (%s)", story_id or "all stories")

    # ── file access ──

    def _story_dir(self, story_id: str) -> Path | None:
        if not _STORY_ID_RE.match(story_id or ""):
            logger.warning("Rejected story id %r (unsafe characters)", story_id)
            return None
        return self.data_dir / story_id

    def _story_exists(self, story_id: str) -> bool:
        return bool(_STORY_ID_RE.match(story_id or "")) and (self.data_dir / story_id).is_dir()

    def _find_file(self, story_dir: Path, stem: str) -> Path | None:
        for suffix in _DATA_SUFFIXES:
            p = story_dir / f"{stem}{suffix}"
            if p.exists() and p.is_file():
                return p
        return None

    def _read_file(self, path: Path) -> Any:
        text = path.read_text(encoding="utf-8")
        if path.suffix == ".json":
            return json.loads(text)
        return yaml.safe_load(text)

    def _read_section(self, story_dir: Path, stem: str, section_key: str, *, required: bool) -> list[Any] | None:
        """Return the list under section_key, [] for absent optional files, None on required failure."""
        path = self._find_file(story_dir, stem)
        if path is None:
            if required:
                logger.error("Required corpus file missing: %s/%s.json", story_dir, stem)
                return None
            logger.info("No %s file found for %s (optional)", stem, story_dir.name)
            return []
        try:
            data = self._read_file(path)
        except (OSError, ValueError, yaml.YAMLError) as e:
            logger.error("Could not read corpus file %s: %s", path, e)
            return None if required else []
        if isinstance(data, dict):
            data = data.get(section_key)
        if data is None:
            return []
        if not isinstance(data, list):
            logger.warning("Corpus file %s: '%s' is not a list, ignoring", path, section_key)
            return [] if not required else None
        return data

    def validate(self, story_id: str) -> StoryCorpus | None:
        """Re-read a story from disk in strict mode, bypassing the cache.

        Returns None when required files are missing; raises CorpusValidationError
        listing every malformed entry.
        """
        return self._read_corpus(story_id, strict=True)

    def _read_corpus(self, story_id: str, strict: bool | None = None) -> StoryCorpus | None:
        story_dir = self._story_dir(story_id)
        if story_dir is None:
            return None
        if not story_dir.is_dir():
            logger.info("No story directory for %s under %s", story_id, self.data_dir)
            return None

        characters = self._read_section(story_dir, "characters", "characters", required=True)
        locations = self._read_section(story_dir, "locations", "locations", required=True)
        if characters is None or locations is None:
            logger.error("Error loading story content for %s: continuing with empty corpus", story_id)
            return None
        raw_beats = self._read_section(story_dir, "story_beats", "story_beats", required=False) or []
        lore = self._read_section(story_dir, "lore", "lore", required=False) or []

        problems: list[str] = []
        documents: list[Document] = []

        for section, entries, build in (
            ("characters", characters, _character_document),
            ("locations", locations, _location_document),
        ):
            _collect_documents(section, entries, build, documents, problems)

        beats: list[BeatDefinition] = []
        seen_beats: set[str] = set()
        for idx, entry in enumerate(raw_beats):
            if not isinstance(entry, dict):
                problems.append(f"story_beats[{idx}]: not an object")
                continue
            try:
                beat = BeatDefinition.model_validate(entry)
            except ValidationError as e:
                label = entry.get("id") or f"#{idx}"
                problems.append(f"story_beats[{label}]: {_summarize(e)}")
                continue
            if beat.id in seen_beats:
                problems.append(f"story_beats[{beat.id}]: duplicate id")
                continue
            seen_beats.add(beat.id)
            beats.append(beat)
            documents.append(Document(
                content=render_beat(beat),
                metadata=DocumentMetadata(
                    type=DOC_TYPE_STORY_BEAT,
                    id=beat.id,
                    name=beat.name,
                    category="story_beats",
                    story_weight=_weight(entry, _beat_weight(beat)),
                ),
            ))

        _collect_documents("lore", lore, _lore_document, documents, problems)

        if problems:
            if (self.strict if strict is None else strict):
                raise CorpusValidationError(story_id, problems)
            for p in problems:
                logger.warning("Corpus %s: dropped invalid entry: %s", story_id, p)

        overrides = self._read_entity_overrides(story_dir)
        entities = EntityIndex.from_documents(documents, overrides)
        logger.info(
            "Loaded %d story documents for %s (%d beats, %d characters, %d locations)",
            len(documents), story_id, len(beats), len(entities.characters), len(entities.locations),
        )
        return StoryCorpus(
            story_id=story_id,
            documents=tuple(documents),
            beats=tuple(beats),
            entities=entities,
        )

    def _read_entity_overrides(self, story_dir: Path) -> dict[str, Any] | None:
        path = self._find_file(story_dir, "entities")
        if path is None:
            return None
        try:
            data = self._read_file(path)
        except (OSError, ValueError, yaml.YAMLError) as e:
            logger.warning("Ignoring unreadable entity overrides %s: %s", path, e)
            return None
        return data if isinstance(data, dict) else None


def _has_id(entry: Any) -> bool:
    return isinstance(entry, dict) and bool(str(entry.get("id") or "").strip())


def _summarize(error: ValidationError) -> str:
    parts = []
    for err in error.errors():
        loc = ".".join(str(x) for x in err.get("loc", ())) or "entry"
        parts.append(f"{loc}: {err.get('msg', 'invalid')}")
    return ", ".join(parts)


def _character_document(entry: dict[str, Any]) -> Document:
    return Document(
        content=render_character(entry),
        metadata=DocumentMetadata(
            type=DOC_TYPE_CHARACTER,
            id=str(entry["id"]),
            name=entry.get("name"),
            category="characters",
            connections=_connection_ids(entry.get("relationships")),
            story_weight=_weight(entry, _character_weight(entry)),
        ),
    )


def _location_document(entry: dict[str, Any]) -> Document:
    return Document(
        content=render_location(entry),
        metadata=DocumentMetadata(
            type=DOC_TYPE_LOCATION,
            id=str(entry["id"]),
            name=entry.get("name"),
            category="locations",
            connections=_connection_ids(entry.get("connections")),
            story_weight=_weight(entry, _location_weight(entry)),
        ),
    )


def _lore_document(entry: dict[str, Any]) -> Document:
    return Document(
        content=render_lore(entry),
        metadata=DocumentMetadata(
            type=DOC_TYPE_LORE,
            id=str(entry["id"]),
            title=entry.get("title"),
            category=str(entry.get("category") or "lore"),
            story_weight=_weight(entry, 4),
        ),
    )


def _collect_documents(
    section: str,
    entries: list[Any],
    build: Callable[[dict[str, Any]], Document],
    documents: list[Document],
    problems: list[str],
) -> None:
    """Build one Document per entry; entries that cannot be built become problems."""
    for idx, entry in enumerate(entries):
        if not _has_id(entry):
            problems.append(f"{section}[{idx}]: missing id")
            continue
        try:
            documents.append(build(entry))
        except ValidationError as e:
            problems.append(f"{section}[{entry['id']}]: {_summarize(e)}")
