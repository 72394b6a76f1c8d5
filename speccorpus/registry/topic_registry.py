"""
Topic Registry - Single source of truth for topics and their spec documents.

Enforces one document per normalized topic identifier, owns the
lifecycle status of every topic/document pair, and persists both.
"""

import logging
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Dict, Iterator, List, Optional

from speccorpus.exceptions import (
    AlreadyExists,
    FileNameCollision,
    InvalidTransition,
    TopicNotFound,
)
from speccorpus.models.spec_document import SpecDocument
from speccorpus.models.topic import (
    DISCOVERED,
    PUBLISHED,
    STATUSES,
    RetiredTopic,
    Topic,
    can_transition,
)
from speccorpus.utils.naming import TopicNormalizer
from speccorpus.utils.storage import load_json_with_backup, write_json_atomic

logger = logging.getLogger(__name__)


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class IdentifierLocks:
    """
    Per-identifier reader/writer locks.

    Readers of one identifier share access; a writer of that identifier
    excludes readers and other writers of the same identifier only.
    """

    def __init__(self):
        self._cond = threading.Condition()
        self._readers: Dict[str, int] = {}
        self._writers: set = set()

    @contextmanager
    def read(self, key: str) -> Iterator[None]:
        with self._cond:
            while key in self._writers:
                self._cond.wait()
            self._readers[key] = self._readers.get(key, 0) + 1
        try:
            yield
        finally:
            with self._cond:
                self._readers[key] -= 1
                if not self._readers[key]:
                    del self._readers[key]
                self._cond.notify_all()

    @contextmanager
    def write(self, key: str) -> Iterator[None]:
        with self._cond:
            while key in self._writers or self._readers.get(key):
                self._cond.wait()
            self._writers.add(key)
        try:
            yield
        finally:
            with self._cond:
                self._writers.discard(key)
                self._cond.notify_all()


class TopicRegistry:
    """
    Authoritative map of topic identity to spec document and metadata.

    Every other component queries the registry instead of keeping its own
    copy. Mutations hold the identifier's write lock plus the registry-wide
    mutation lock; reads of one identifier never contend with unrelated
    identifiers.
    """

    def __init__(self, registry_path: str, normalizer: TopicNormalizer):
        """
        Initialize registry from disk or create new empty registry.

        Args:
            registry_path: Path to topic_registry.json file
            normalizer: Derives identifiers and file names from statements
        """
        self.registry_path = registry_path
        self.normalizer = normalizer
        self.version = "1.0.0"
        self.last_updated = _utc_now()
        self.topics: Dict[str, Topic] = {}
        self.documents: Dict[str, SpecDocument] = {}
        self.retired: Dict[str, RetiredTopic] = {}
        self._file_names: Dict[str, str] = {}  # file_name -> topic_id

        self._lock = threading.RLock()
        self.identifier_locks = IdentifierLocks()

        data = load_json_with_backup(registry_path)
        if data is None:
            logger.info(f"No existing registry found at {registry_path}, initializing empty registry")
        else:
            self._load(data)

    def _load(self, data: dict) -> None:
        self.version = data.get("version", "1.0.0")
        self.last_updated = data.get("last_updated", self.last_updated)
        for entry in data.get("topics", []):
            topic = Topic.from_dict(entry["topic"])
            document = SpecDocument.from_dict(entry["document"])
            self.topics[topic.topic_id] = topic
            self.documents[topic.topic_id] = document
            self._file_names[document.file_name] = topic.topic_id
        for entry in data.get("retired", []):
            tombstone = RetiredTopic.from_dict(entry)
            self.retired[tombstone.topic_id] = tombstone
        logger.info(f"Loaded {len(self.topics)} topics from registry")

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def normalize(self, statement_or_id: str) -> str:
        return self.normalizer.normalize(statement_or_id)

    def find(self, statement_or_id: str) -> Optional[SpecDocument]:
        """
        Document for a statement or identifier, or None. Pure read.

        Retired identifiers resolve to the topic they were merged into.
        """
        topic_id = self.normalize(statement_or_id)
        seen = set()
        while topic_id not in seen:
            seen.add(topic_id)
            with self.identifier_locks.read(topic_id):
                document = self.documents.get(topic_id)
                tombstone = self.retired.get(topic_id)
            if document is not None:
                return document
            if tombstone is None:
                return None
            topic_id = tombstone.merged_into
        logger.warning(f"Retirement chain for '{statement_or_id}' loops, ignoring")
        return None

    def lookup(self, statement_or_id: str) -> SpecDocument:
        """
        Document for a statement or identifier.

        Raises:
            TopicNotFound: If no topic with that normalized identifier exists
        """
        document = self.find(statement_or_id)
        if document is None:
            raise TopicNotFound(statement_or_id)
        return document

    def get_topic(self, topic_id: str) -> Optional[Topic]:
        """Retrieve topic by ID. Returns None if not found."""
        return self.topics.get(topic_id)

    def status(self, topic_id: str) -> str:
        topic = self.topics.get(topic_id)
        if topic is None:
            raise TopicNotFound(topic_id)
        return topic.status

    def list(self, status: Optional[str] = None) -> List[SpecDocument]:
        """All documents, optionally filtered by lifecycle status, oldest first."""
        if status is not None and status not in STATUSES:
            raise ValueError(f"Invalid status filter: {status}")
        with self._lock:
            topics = sorted(self.topics.values(), key=lambda t: (t.created_at, t.topic_id))
            return [
                self.documents[t.topic_id]
                for t in topics
                if status is None or t.status == status
            ]

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def register(self, statement: str) -> str:
        """
        Create a new topic and its (empty) spec document.

        Returns:
            The normalized topic identifier

        Raises:
            AlreadyExists: If the normalized identifier is already registered
            FileNameCollision: If a different topic already owns the file name
        """
        topic_id = self.normalize(statement)
        file_name = self.normalizer.file_name(statement)

        with self.identifier_locks.write(topic_id), self._lock:
            if topic_id in self.topics:
                raise AlreadyExists(topic_id)
            owner = self._file_names.get(file_name)
            if owner is not None:
                raise FileNameCollision(file_name, owner)

            now = _utc_now()
            self.topics[topic_id] = Topic(
                topic_id=topic_id,
                statement=statement.strip(),
                status=DISCOVERED,
                created_at=now,
                updated_at=now,
            )
            self.documents[topic_id] = SpecDocument(topic_id=topic_id, file_name=file_name)
            self._file_names[file_name] = topic_id
            self.retired.pop(topic_id, None)

        logger.info(f"Registered topic: {topic_id} -> {file_name}")
        return topic_id

    def set_status(self, topic_id: str, status: str) -> bool:
        """
        Move a topic along its lifecycle.

        Returns:
            False if the topic already had that status (no-op), True otherwise

        Raises:
            TopicNotFound: If the topic is not registered
            InvalidTransition: If the lifecycle does not permit the move
        """
        with self.identifier_locks.write(topic_id), self._lock:
            topic = self.topics.get(topic_id)
            if topic is None:
                raise TopicNotFound(topic_id)
            if topic.status == status:
                return False
            if not can_transition(topic.status, status):
                raise InvalidTransition(topic_id, topic.status, status)
            logger.debug(f"Topic {topic_id}: {topic.status} -> {status}")
            topic.status = status
            topic.updated_at = _utc_now()
            return True

    def update_document(self, document: SpecDocument) -> bool:
        """
        Replace a topic's document in place.

        Returns:
            True if the content hash changed

        Raises:
            TopicNotFound: If the topic is not registered
            ValueError: If the document's file name differs from the registered one
        """
        topic_id = document.topic_id
        with self.identifier_locks.write(topic_id), self._lock:
            current = self.documents.get(topic_id)
            if current is None:
                raise TopicNotFound(topic_id)
            if document.file_name != current.file_name:
                raise ValueError(
                    f"Document for '{topic_id}' must keep file name '{current.file_name}'"
                )
            document.refresh_hash()
            changed = document.content_hash != current.content_hash
            self.documents[topic_id] = document
            self.topics[topic_id].updated_at = _utc_now()
        if changed:
            logger.info(f"Updated document for {topic_id} (hash {document.content_hash[:12]})")
        return changed

    def mark_published(self, topic_id: str) -> None:
        """Record a successful publish: status Published, published hash set."""
        with self.identifier_locks.write(topic_id), self._lock:
            topic = self.topics.get(topic_id)
            if topic is None:
                raise TopicNotFound(topic_id)
            if topic.status != PUBLISHED and not can_transition(topic.status, PUBLISHED):
                raise InvalidTransition(topic_id, topic.status, PUBLISHED)
            document = self.documents[topic_id]
            document.published_hash = document.content_hash
            topic.status = PUBLISHED
            topic.updated_at = _utc_now()

    def retire(self, topic_id: str, merged_into: str) -> RetiredTopic:
        """
        Destroy a topic's document after merging it into another topic.
        Shared references must already have been migrated by the caller.

        Raises:
            TopicNotFound: If either topic is not registered
            ValueError: If a topic is merged into itself
        """
        if topic_id == merged_into:
            raise ValueError(f"Topic '{topic_id}' cannot be merged into itself")
        with self.identifier_locks.write(topic_id), self._lock:
            if topic_id not in self.topics:
                raise TopicNotFound(topic_id)
            if merged_into not in self.topics:
                raise TopicNotFound(merged_into)
            document = self.documents.pop(topic_id)
            del self.topics[topic_id]
            self._file_names.pop(document.file_name, None)
            tombstone = RetiredTopic(
                topic_id=topic_id,
                merged_into=merged_into,
                retired_at=_utc_now(),
                file_name=document.file_name,
            )
            self.retired[topic_id] = tombstone
        logger.info(f"Retired topic {topic_id} into {merged_into}")
        return tombstone

    def save(self) -> None:
        """Persist registry to disk with atomic write pattern."""
        with self._lock:
            self.last_updated = _utc_now()
            data = {
                "version": self.version,
                "last_updated": self.last_updated,
                "topics": [
                    {
                        "topic": self.topics[tid].to_dict(),
                        "document": self.documents[tid].to_dict(),
                    }
                    for tid in sorted(self.topics)
                ],
                "retired": [r.to_dict() for r in self.retired.values()],
            }
            write_json_atomic(self.registry_path, data)
        logger.info(f"Registry saved: {len(self.topics)} topics")
