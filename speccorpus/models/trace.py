"""
Trace, investigation request and validation result models.

A trace is what the investigation collaborator returns for one topic;
the orchestrator never interprets the corpus itself.
"""

from dataclasses import dataclass, field
from typing import List, Optional

from speccorpus.models.spec_document import Behavior, Boundary, SpecDocument

SPEC_STUDY = "spec_study"
SOURCE_STUDY = "source_study"
PHASES = (SPEC_STUDY, SOURCE_STUDY)

IDENTICAL = "identical"
DRIFTED = "drifted"
NEW = "new"


def _string_list(data: dict, key: str) -> List[str]:
    values = data.get(key) or []
    if not isinstance(values, list):
        raise TypeError(f"'{key}' must be a list, got {type(values).__name__}")
    return list(values)


def _check_behavior(behavior: Behavior, depth: int = 0) -> None:
    if not isinstance(behavior, Behavior):
        raise ValueError(f"behavior node of type {type(behavior).__name__}")
    if not isinstance(behavior.name, str) or not behavior.name.strip():
        raise ValueError(f"behavior without a name at depth {depth}")
    if not isinstance(behavior.effect, str):
        raise ValueError(f"behavior '{behavior.name}' has a non-text effect")
    if not isinstance(behavior.children, list):
        raise ValueError(f"behavior '{behavior.name}' has malformed children")
    for child in behavior.children:
        _check_behavior(child, depth + 1)


@dataclass
class CorpusHandle:
    """Opaque pointer to a source corpus at a given revision."""
    root: str
    revision: str = ""


@dataclass
class InvestigationRequest:
    """
    One investigation job. `context` carries planning notes read before
    the job is submitted; `document_text` is set for spec-study jobs.
    """
    topic_id: str
    statement: str
    corpus: CorpusHandle
    phase: str = SOURCE_STUDY
    context: str = ""
    document_text: str = ""

    def __post_init__(self):
        if self.phase not in PHASES:
            raise ValueError(
                f"Invalid phase: {self.phase}. Must be '{SPEC_STUDY}' or '{SOURCE_STUDY}'"
            )


@dataclass
class Trace:
    """
    Structured result of investigating a topic against a corpus.
    """
    topic_id: str
    revision: str = ""
    entry_points: List[str] = field(default_factory=list)
    branches: List[str] = field(default_factory=list)
    side_effects: List[str] = field(default_factory=list)
    data_shapes: List[str] = field(default_factory=list)
    behaviors: List[Behavior] = field(default_factory=list)
    boundaries: List[Boundary] = field(default_factory=list)
    shared_topics: List[str] = field(default_factory=list)  # Statements or ids of canonical specs

    @classmethod
    def from_dict(cls, data: dict) -> "Trace":
        """
        Create Trace from JSON dict.

        Raises:
            KeyError, TypeError, ValueError: On malformed input
        """
        trace = cls(
            topic_id=data["topic_id"],
            revision=data.get("revision", ""),
            entry_points=_string_list(data, "entry_points"),
            branches=_string_list(data, "branches"),
            side_effects=_string_list(data, "side_effects"),
            data_shapes=_string_list(data, "data_shapes"),
            behaviors=[Behavior.from_dict(b) for b in _string_list(data, "behaviors")],
            boundaries=[Boundary.from_dict(b) for b in _string_list(data, "boundaries")],
            shared_topics=_string_list(data, "shared_topics"),
        )
        trace.check()
        return trace

    def check(self) -> None:
        """
        Verify field shapes: text lists, named behavior nodes and boundaries,
        and non-blank shared topics.

        Raises:
            ValueError: On the first malformed field
        """
        for key in ("entry_points", "branches", "side_effects", "data_shapes", "shared_topics"):
            values = getattr(self, key)
            if not isinstance(values, list) or not all(isinstance(v, str) for v in values):
                raise ValueError(f"'{key}' must be a list of strings")
        if any(not topic.strip() for topic in self.shared_topics):
            raise ValueError("'shared_topics' contains a blank entry")
        if not isinstance(self.behaviors, list) or not isinstance(self.boundaries, list):
            raise ValueError("'behaviors' and 'boundaries' must be lists")
        for behavior in self.behaviors:
            _check_behavior(behavior)
        for boundary in self.boundaries:
            if not isinstance(boundary, Boundary) or not isinstance(boundary.name, str) \
                    or not boundary.name.strip():
                raise ValueError("boundary without a name")
            if not all(isinstance(v, str) for v in (boundary.sends, boundary.receives, boundary.assumption)):
                raise ValueError(f"boundary '{boundary.name}' has non-text fields")

    def to_dict(self) -> dict:
        return {
            "topic_id": self.topic_id,
            "revision": self.revision,
            "entry_points": self.entry_points,
            "branches": self.branches,
            "side_effects": self.side_effects,
            "data_shapes": self.data_shapes,
            "behaviors": [b.to_dict() for b in self.behaviors],
            "boundaries": [b.to_dict() for b in self.boundaries],
            "shared_topics": self.shared_topics,
        }


@dataclass
class ChangedNode:
    """One behavior node that differs between a document and a trace."""
    path: List[str]
    kind: str  # "added", "removed", "modified" or "moved"
    section: str = "behavior"  # or "boundary"


@dataclass
class ValidationResult:
    """
    Outcome of diffing a document against a fresh trace.
    `document` is the patched document on drift, the advanced document
    when identical, and None for a new topic.
    """
    status: str
    changed: List[ChangedNode] = field(default_factory=list)
    document: Optional[SpecDocument] = None

    @property
    def is_identical(self) -> bool:
        return self.status == IDENTICAL

    @property
    def is_drifted(self) -> bool:
        return self.status == DRIFTED
