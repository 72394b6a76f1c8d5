"""
Shared-Behavior Graph.

Directed consumer -> canonical edges between spec documents, stored as
an adjacency list keyed by canonical id. Cycles are rejected when an
edge is inserted; staleness propagates one hop per canonical change,
and consumers further down a chain are held Stale until it settles.
"""

import logging
import threading
from typing import Dict, Iterable, List, Optional, Set, Tuple

from speccorpus.exceptions import CyclicSharedReference, TopicNotFound
from speccorpus.models.spec_document import SharedReference, SpecDocument
from speccorpus.models.topic import DISCOVERED, PUBLISHED, STALE, VALIDATED
from speccorpus.registry.topic_registry import TopicRegistry
from speccorpus.utils.storage import load_json_with_backup, write_json_atomic

logger = logging.getLogger(__name__)


class SharedBehaviorGraph:
    """
    Dependency graph from consuming specs to canonical shared-topic specs.

    For every edge the graph remembers the canonical content hash that was
    last propagated to (or inlined by) the consumer, which makes
    `on_canonical_changed` fire exactly once per change.
    """

    def __init__(self, registry: TopicRegistry, graph_path: Optional[str] = None):
        """
        Args:
            registry: Topic registry used for status transitions
            graph_path: JSON file to persist edges to (None keeps the graph in memory)
        """
        self.registry = registry
        self.graph_path = graph_path
        self._consumers: Dict[str, Set[str]] = {}  # canonical_id -> consumer ids
        self._canonicals: Dict[str, Set[str]] = {}  # consumer_id -> canonical ids
        self._propagated: Dict[Tuple[str, str], str] = {}  # (canonical, consumer) -> hash
        self._lock = threading.RLock()

        if graph_path:
            data = load_json_with_backup(graph_path)
            if data is not None:
                self._load(data)

    def _load(self, data: dict) -> None:
        for edge in data.get("edges", []):
            self._insert(edge["consumer"], edge["canonical"], edge.get("propagated_hash", ""))
        logger.info(f"Loaded {len(data.get('edges', []))} shared references")

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def consumers_of(self, canonical_id: str) -> List[str]:
        with self._lock:
            return sorted(self._consumers.get(canonical_id, ()))

    def canonicals_of(self, consumer_id: str) -> List[str]:
        with self._lock:
            return sorted(self._canonicals.get(consumer_id, ()))

    def upstream_of(self, consumer_id: str) -> List[str]:
        """Every canonical the consumer depends on, directly or through a chain."""
        with self._lock:
            found: Set[str] = set()
            stack = list(self._canonicals.get(consumer_id, ()))
            while stack:
                node = stack.pop()
                if node in found:
                    continue
                found.add(node)
                stack.extend(self._canonicals.get(node, ()))
        return sorted(found)

    def edges(self) -> List[Tuple[str, str]]:
        """All (consumer, canonical) edges, sorted."""
        with self._lock:
            return sorted(
                (consumer, canonical)
                for canonical, consumers in self._consumers.items()
                for consumer in consumers
            )

    def _dependency_path(self, start: str, target: str) -> Optional[List[str]]:
        """Path start -> ... -> target following consumer -> canonical edges."""
        stack = [(start, [start])]
        seen = set()
        while stack:
            node, path = stack.pop()
            if node == target:
                return path
            if node in seen:
                continue
            seen.add(node)
            for nxt in sorted(self._canonicals.get(node, ())):
                stack.append((nxt, path + [nxt]))
        return None

    def _check_edge(self, consumer_id: str, canonical_id: str) -> None:
        if consumer_id == canonical_id:
            raise CyclicSharedReference(consumer_id, canonical_id, [consumer_id, canonical_id])
        path = self._dependency_path(canonical_id, consumer_id)
        if path is not None:
            raise CyclicSharedReference(consumer_id, canonical_id, [consumer_id] + path)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def _insert(self, consumer_id: str, canonical_id: str, propagated_hash: str) -> None:
        self._consumers.setdefault(canonical_id, set()).add(consumer_id)
        self._canonicals.setdefault(consumer_id, set()).add(canonical_id)
        self._propagated[(canonical_id, consumer_id)] = propagated_hash

    def _remove(self, consumer_id: str, canonical_id: str) -> None:
        consumers = self._consumers.get(canonical_id)
        if consumers is not None:
            consumers.discard(consumer_id)
            if not consumers:
                del self._consumers[canonical_id]
        canonicals = self._canonicals.get(consumer_id)
        if canonicals is not None:
            canonicals.discard(canonical_id)
            if not canonicals:
                del self._canonicals[consumer_id]
        self._propagated.pop((canonical_id, consumer_id), None)

    def add_reference(self, consumer: SpecDocument, canonical: SpecDocument) -> None:
        """
        Add the edge consumer -> canonical.

        Raises:
            CyclicSharedReference: If the canonical already depends, even
                transitively, on the consumer; the edge is not added
        """
        with self._lock:
            self._check_edge(consumer.topic_id, canonical.topic_id)
            self._insert(consumer.topic_id, canonical.topic_id, canonical.content_hash)
        logger.info(f"Shared reference added: {consumer.topic_id} -> {canonical.topic_id}")

    def set_references(self, consumer_id: str, references: Iterable[SharedReference]) -> None:
        """
        Make the consumer's outgoing edges match its document's shared references.
        All-or-nothing: if any new edge would form a cycle, no edge changes.

        Raises:
            CyclicSharedReference: On the first cyclic edge found
        """
        references = list(references)
        with self._lock:
            wanted = {ref.canonical_id: ref.canonical_hash for ref in references}
            for canonical_id in sorted(wanted):
                if canonical_id not in self._canonicals.get(consumer_id, ()):
                    self._check_edge(consumer_id, canonical_id)
            for canonical_id in list(self._canonicals.get(consumer_id, ())):
                if canonical_id not in wanted:
                    self._remove(consumer_id, canonical_id)
            for canonical_id, canonical_hash in wanted.items():
                self._insert(consumer_id, canonical_id, canonical_hash)

    def remove_consumer(self, consumer_id: str) -> None:
        """Drop every outgoing edge of a consumer."""
        with self._lock:
            for canonical_id in list(self._canonicals.get(consumer_id, ())):
                self._remove(consumer_id, canonical_id)

    def on_canonical_changed(self, canonical: SpecDocument) -> List[SpecDocument]:
        """
        Mark every direct consumer of a changed canonical Stale.

        Consumers already told about this content hash, or already Stale,
        are left alone, so re-running is a no-op. Validated or Published
        consumers further down the chain are held Stale as well, since they
        inline content from a document that is no longer settled.

        Returns:
            Documents that transitioned to Stale in this call
        """
        marked = []
        with self._lock:
            for consumer_id in sorted(self._consumers.get(canonical.topic_id, ())):
                key = (canonical.topic_id, consumer_id)
                if self._propagated.get(key) == canonical.content_hash:
                    continue
                self._propagated[key] = canonical.content_hash
                try:
                    status = self.registry.status(consumer_id)
                except TopicNotFound:
                    logger.warning(f"Consumer {consumer_id} of {canonical.topic_id} is not registered")
                    continue
                if status in (STALE, DISCOVERED):
                    continue
                self.registry.set_status(consumer_id, STALE)
                marked.append(self.registry.lookup(consumer_id))
            held = self.hold_downstream([d.topic_id for d in marked])

        if marked:
            logger.warning(
                f"Canonical {canonical.topic_id} changed: "
                f"{len(marked)} consumer(s) marked stale "
                f"({', '.join(d.topic_id for d in marked)})"
            )
        return marked + held

    def hold_downstream(self, topic_ids: Iterable[str]) -> List[SpecDocument]:
        """
        Mark Stale every Validated or Published consumer reachable from the
        given topics, at any depth. Propagated hashes are left untouched.

        Returns:
            Documents that transitioned to Stale in this call
        """
        held = []
        with self._lock:
            seen: Set[str] = set()
            stack = sorted(topic_ids, reverse=True)
            while stack:
                node = stack.pop()
                for consumer_id in sorted(self._consumers.get(node, ())):
                    if consumer_id in seen:
                        continue
                    seen.add(consumer_id)
                    stack.append(consumer_id)
                    try:
                        status = self.registry.status(consumer_id)
                    except TopicNotFound:
                        continue
                    if status in (VALIDATED, PUBLISHED):
                        self.registry.set_status(consumer_id, STALE)
                        held.append(self.registry.lookup(consumer_id))

        if held:
            logger.warning(
                f"{len(held)} downstream consumer(s) held stale "
                f"({', '.join(d.topic_id for d in held)})"
            )
        return held

    def repoint(self, retired_id: str, successor: SpecDocument) -> List[str]:
        """
        Move every consumer of a retired canonical onto its successor and drop
        the retired topic's own edges. All-or-nothing on cycles.

        Returns:
            Ids of consumers that now reference the successor
        """
        with self._lock:
            moved = [c for c in self.consumers_of(retired_id) if c != successor.topic_id]
            for consumer_id in moved:
                if successor.topic_id not in self._canonicals.get(consumer_id, ()):
                    self._check_edge(consumer_id, successor.topic_id)
            for consumer_id in self.consumers_of(retired_id):
                self._remove(consumer_id, retired_id)
            for consumer_id in moved:
                # Empty hash: the consumer has not inlined the successor yet.
                self._insert(consumer_id, successor.topic_id, "")
            self.remove_consumer(retired_id)
        if moved:
            logger.info(
                f"Re-pointed {len(moved)} consumer(s) from {retired_id} to {successor.topic_id}"
            )
        return moved

    def save(self) -> None:
        if not self.graph_path:
            return
        with self._lock:
            data = {
                "edges": [
                    {
                        "consumer": consumer,
                        "canonical": canonical,
                        "propagated_hash": self._propagated.get((canonical, consumer), ""),
                    }
                    for consumer, canonical in self.edges()
                ]
            }
            write_json_atomic(self.graph_path, data)
        logger.info(f"Shared-behavior graph saved: {len(data['edges'])} edges")


# Design Rationale and Trade-offs:
#
# 1. Adjacency kept in both directions (canonical -> consumers, consumer -> canonicals)
#    - Cycle checks walk consumer -> canonical; propagation walks canonical -> consumers
#    - Trade-off: Both maps must change together, so every mutation holds the lock
#
# 2. Propagated hash stored per edge
#    - A direct consumer is marked Stale once per canonical content hash
#    - Trade-off: Loading an old graph file without hashes re-marks every consumer once
#
# 3. Consumers below the first hop are held Stale by status, not by hash
#    - A Validated document never inlines a canonical that is itself unsettled
#    - Trade-off: A failed link leaves the rest of its chain Stale until the next run
