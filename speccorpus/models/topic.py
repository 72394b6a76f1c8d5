"""
Topic data model.

A topic is the unit of documentation: one capability, one statement,
one spec document. The lifecycle status of the topic/document pair
lives here.
"""

from dataclasses import dataclass
from typing import Dict, Optional, Tuple

DISCOVERED = "discovered"
INVESTIGATING = "investigating"
DRAFTED = "drafted"
VALIDATED = "validated"
PUBLISHED = "published"
STALE = "stale"

STATUSES = (DISCOVERED, INVESTIGATING, DRAFTED, VALIDATED, PUBLISHED, STALE)

# status -> statuses reachable from it
TRANSITIONS: Dict[str, Tuple[str, ...]] = {
    DISCOVERED: (INVESTIGATING,),
    # An investigation either drafts, confirms unchanged content, or fails
    # back to the status the topic held before it started.
    INVESTIGATING: (DRAFTED, VALIDATED, PUBLISHED, DISCOVERED, STALE),
    DRAFTED: (VALIDATED, INVESTIGATING, STALE),
    VALIDATED: (PUBLISHED, STALE, INVESTIGATING),
    PUBLISHED: (STALE, INVESTIGATING),
    STALE: (INVESTIGATING,),
}


def can_transition(current: str, target: str) -> bool:
    """Return True when the lifecycle permits moving from current to target."""
    return target in TRANSITIONS.get(current, ())


@dataclass
class Topic:
    """
    A named unit of behavior to document.
    """
    topic_id: str  # Normalized identifier
    statement: str  # One-sentence topic statement
    status: str = DISCOVERED
    created_at: str = ""  # ISO-8601 UTC
    updated_at: str = ""

    def __post_init__(self):
        if self.status not in STATUSES:
            raise ValueError(
                f"Invalid status: {self.status}. Must be one of {', '.join(STATUSES)}"
            )

    @classmethod
    def from_dict(cls, data: dict) -> "Topic":
        """Create Topic from JSON dict."""
        return cls(
            topic_id=data["topic_id"],
            statement=data["statement"],
            status=data.get("status", DISCOVERED),
            created_at=data.get("created_at", ""),
            updated_at=data.get("updated_at", ""),
        )

    def to_dict(self) -> dict:
        """Convert to JSON-serializable dict."""
        return {
            "topic_id": self.topic_id,
            "statement": self.statement,
            "status": self.status,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


@dataclass
class RetiredTopic:
    """Tombstone for a topic merged into another one."""
    topic_id: str
    merged_into: str
    retired_at: str = ""
    file_name: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "topic_id": self.topic_id,
            "merged_into": self.merged_into,
            "retired_at": self.retired_at,
            "file_name": self.file_name,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "RetiredTopic":
        return cls(
            topic_id=data["topic_id"],
            merged_into=data["merged_into"],
            retired_at=data.get("retired_at", ""),
            file_name=data.get("file_name"),
        )
