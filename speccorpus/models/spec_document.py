"""
Spec document data model.

The persisted artifact for one topic: a tree of behavior nodes,
boundary declarations, shared references and the bookkeeping used
for drift comparison.
"""

import copy
import hashlib
import json
from dataclasses import dataclass, field
from typing import Iterator, List, Optional, Tuple


@dataclass
class Behavior:
    """
    A named, ordered step of observable behavior.

    `notable` marks surprising or inconsistent behavior, `unreachable`
    marks behavior present in source with no live path triggering it,
    and `shared` marks content inlined from a canonical spec.
    """
    name: str
    effect: str
    notable: bool = False
    unreachable: bool = False
    shared: bool = False
    children: List["Behavior"] = field(default_factory=list)

    def own_fields(self) -> Tuple[str, bool, bool, bool]:
        """Fields compared for this node alone, excluding its children."""
        return (self.effect, self.notable, self.unreachable, self.shared)

    def walk(self, prefix: Tuple[str, ...] = ()) -> Iterator[Tuple[Tuple[str, ...], "Behavior"]]:
        """Yield (path, node) for this node and every descendant, depth first."""
        path = prefix + (self.name,)
        yield path, self
        for child in self.children:
            yield from child.walk(path)

    @classmethod
    def from_dict(cls, data: dict) -> "Behavior":
        return cls(
            name=data["name"],
            effect=data.get("effect", ""),
            notable=bool(data.get("notable", False)),
            unreachable=bool(data.get("unreachable", False)),
            shared=bool(data.get("shared", False)),
            children=[cls.from_dict(c) for c in data.get("children", [])],
        )

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "effect": self.effect,
            "notable": self.notable,
            "unreachable": self.unreachable,
            "shared": self.shared,
            "children": [c.to_dict() for c in self.children],
        }


@dataclass
class Boundary:
    """
    A declared interface to an adjacent concern.
    Describes only what crosses the boundary, never the other side's internals.
    """
    name: str
    sends: str
    receives: str
    assumption: str = ""

    @classmethod
    def from_dict(cls, data: dict) -> "Boundary":
        return cls(
            name=data["name"],
            sends=data.get("sends", ""),
            receives=data.get("receives", ""),
            assumption=data.get("assumption", ""),
        )

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "sends": self.sends,
            "receives": self.receives,
            "assumption": self.assumption,
        }


@dataclass
class SharedReference:
    """
    Link from a consuming document to the canonical document of a reused behavior.
    `canonical_hash` is the canonical's content hash when its behavior was inlined.
    """
    name: str
    canonical_id: str
    canonical_hash: str = ""

    @classmethod
    def from_dict(cls, data: dict) -> "SharedReference":
        return cls(
            name=data["name"],
            canonical_id=data["canonical_id"],
            canonical_hash=data.get("canonical_hash", ""),
        )

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "canonical_id": self.canonical_id,
            "canonical_hash": self.canonical_hash,
        }


@dataclass
class SpecDocument:
    """
    The persisted artifact for one topic (1:1 with Topic).
    """
    topic_id: str
    file_name: str
    behaviors: List[Behavior] = field(default_factory=list)
    boundaries: List[Boundary] = field(default_factory=list)
    shared_references: List[SharedReference] = field(default_factory=list)
    content_hash: str = ""
    last_validated_revision: Optional[str] = None
    published_hash: Optional[str] = None  # content_hash at the last successful publish

    def __post_init__(self):
        if not self.content_hash:
            self.content_hash = self.compute_hash()

    def compute_hash(self) -> str:
        """SHA-256 over behaviors, boundaries and shared references."""
        payload = {
            "behaviors": [b.to_dict() for b in self.behaviors],
            "boundaries": [b.to_dict() for b in self.boundaries],
            "shared_references": [
                {"name": r.name, "canonical_id": r.canonical_id}
                for r in self.shared_references
            ],
        }
        encoded = json.dumps(payload, sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(encoded.encode("utf-8")).hexdigest()

    def refresh_hash(self) -> bool:
        """Recompute content_hash; return True if it changed."""
        new_hash = self.compute_hash()
        changed = new_hash != self.content_hash
        self.content_hash = new_hash
        return changed

    @property
    def is_empty(self) -> bool:
        return not self.behaviors and not self.boundaries

    def shared_reference(self, canonical_id: str) -> Optional[SharedReference]:
        for ref in self.shared_references:
            if ref.canonical_id == canonical_id:
                return ref
        return None

    def clone(self) -> "SpecDocument":
        return copy.deepcopy(self)

    @classmethod
    def from_dict(cls, data: dict) -> "SpecDocument":
        """Create SpecDocument from JSON dict."""
        return cls(
            topic_id=data["topic_id"],
            file_name=data["file_name"],
            behaviors=[Behavior.from_dict(b) for b in data.get("behaviors", [])],
            boundaries=[Boundary.from_dict(b) for b in data.get("boundaries", [])],
            shared_references=[
                SharedReference.from_dict(r) for r in data.get("shared_references", [])
            ],
            content_hash=data.get("content_hash", ""),
            last_validated_revision=data.get("last_validated_revision"),
            published_hash=data.get("published_hash"),
        )

    def to_dict(self) -> dict:
        """Convert to JSON-serializable dict."""
        return {
            "topic_id": self.topic_id,
            "file_name": self.file_name,
            "behaviors": [b.to_dict() for b in self.behaviors],
            "boundaries": [b.to_dict() for b in self.boundaries],
            "shared_references": [r.to_dict() for r in self.shared_references],
            "content_hash": self.content_hash,
            "last_validated_revision": self.last_validated_revision,
            "published_hash": self.published_hash,
        }
