"""
Configuration settings for speccorpus.

Centralized configuration for the orchestrator, its collaborators
and the command-line entry point.
"""

import os
from pathlib import Path

# Project paths
PROJECT_ROOT = Path(__file__).parent.parent.parent
DATA_ROOT = Path(os.getenv("SPECCORPUS_DATA_ROOT", str(PROJECT_ROOT / "data")))
SPECS_DIR = DATA_ROOT / "specs"
REGISTRY_PATH = DATA_ROOT / "topic_registry.json"
GRAPH_PATH = DATA_ROOT / "shared_graph.json"
PLANNING_NOTES_PATH = DATA_ROOT / "planning_notes.md"
OPERATOR_NOTES_PATH = DATA_ROOT / "operator_notes.md"
OUTPUT_ROOT = PROJECT_ROOT / "output"

# API Configuration
GOOGLE_API_KEY = os.getenv("GOOGLE_API_KEY", "")

# Concurrency caps (per investigation phase)
SPEC_STUDY_CAP = 250  # Jobs that study existing specs (learn-the-corpus phase)
SOURCE_STUDY_CAP = 500  # Jobs that study source material (trace-a-topic phase)

# Investigation collaborator
INVESTIGATION_MODEL = "gemini-1.5-flash"
LLM_TEMPERATURE = 0.0
INVESTIGATION_TIMEOUT_SECONDS = 120
CORPUS_FILE_PATTERNS = ["**/*.py", "**/*.md", "**/*.ts", "**/*.go", "**/*.java"]
CORPUS_MAX_CHARS = 200_000

# Topic review (single-capability admission check)
TOPIC_REVIEW_MODEL = "gemini-1.5-flash"
TOPIC_REVIEW_USE_LLM = False  # Heuristic-only unless enabled

# Topic normalization
TOPIC_STOPWORDS = [
    "a", "an", "the", "of", "for", "to", "in", "on", "by", "with", "from",
    "at", "into", "its", "their", "is", "are", "be",
]
FILE_NAME_MAX_WORDS = 3

# Orchestration
MAX_ROUNDS = 5  # Upper bound on stale/deferred re-queue rounds per batch

# Version control
GIT_REMOTE = "origin"
GIT_BRANCH = "main"

# Logging
LOG_LEVEL = "INFO"  # DEBUG, INFO, WARNING, ERROR
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
