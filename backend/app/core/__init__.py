"""Core narrative engine: story state, beat triggers, pacing, and turn orchestration."""
