"""Engine config: session defaults, retrieval limits, state sweep timing, env overrides.

Overrides: STORY_START_LOCATION, STORY_START_BEAT, CONTEXT_MAX_RESULTS,
CONTEXT_EXPANSION_CAP, STATE_MAX_AGE_SECONDS, STATE_SWEEP_INTERVAL_SECONDS,
ENABLE_STATE_SWEEP.
"""
from __future__ import annotations

import logging
import os

from shared.config import (
    CORPUS_STRICT_VALIDATION,
    STORY_DATA_DIR,
    _env_flag,
    _env_int,
)

logger = logging.getLogger(__name__)


# New sessions start here, with the opening beat already active
DEFAULT_START_LOCATION = os.environ.get("STORY_START_LOCATION", "whispering_woods").strip() or "whispering_woods"
DEFAULT_START_BEAT = os.environ.get("STORY_START_BEAT", "opening_choice").strip()

# Retrieval: results kept before expansion, and the hard cap after expansion
DEFAULT_MAX_RESULTS = _env_int("CONTEXT_MAX_RESULTS", 8)
MAX_EXPANDED_RESULTS = _env_int("CONTEXT_EXPANSION_CAP", 12)

# Story state eviction (24h default, swept every 10 minutes)
STATE_MAX_AGE_SECONDS = _env_int("STATE_MAX_AGE_SECONDS", 24 * 60 * 60)
STATE_SWEEP_INTERVAL_SECONDS = _env_int("STATE_SWEEP_INTERVAL_SECONDS", 600)
ENABLE_STATE_SWEEP = _env_flag("ENABLE_STATE_SWEEP", default=True)

# Pacing history windows
PACING_HISTORY_LIMIT = 5
PACING_CHOICE_HISTORY_LIMIT = 10


def _log_resolved_engine_config() -> None:
    """Log resolved engine config at startup."""
    logger.info(
        "Narrative engine config: data_dir=%s start=%s/%s max_results=%d cap=%d "
        "state_max_age=%ds sweep=%s every %ds strict_corpus=%s",
        STORY_DATA_DIR,
        DEFAULT_START_LOCATION,
        DEFAULT_START_BEAT or "-",
        DEFAULT_MAX_RESULTS,
        MAX_EXPANDED_RESULTS,
        STATE_MAX_AGE_SECONDS,
        "on" if ENABLE_STATE_SWEEP else "off",
        STATE_SWEEP_INTERVAL_SECONDS,
        CORPUS_STRICT_VALIDATION,
    )


_log_resolved_engine_config()
