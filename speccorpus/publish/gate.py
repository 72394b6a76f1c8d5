"""
Publish Gate.

Validation check, staging, commit and push as one unit of work.
Only one publish runs at a time in the process.
"""

import logging
import threading
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from speccorpus.agents.writer import SpecWriter
from speccorpus.exceptions import (
    NotReadyError,
    PublishConflict,
    PushRejected,
    TopicNotFound,
    VersionControlError,
)
from speccorpus.models.spec_document import SpecDocument
from speccorpus.models.topic import PUBLISHED, VALIDATED, RetiredTopic
from speccorpus.publish.git import VersionControl
from speccorpus.registry.shared_graph import SharedBehaviorGraph
from speccorpus.registry.topic_registry import TopicRegistry
from speccorpus.utils.storage import SpecStorage

logger = logging.getLogger(__name__)

_PUBLISH_LOCK = threading.Lock()


@dataclass
class PublishResult:
    """Outcome of a successful publish."""
    commit_id: Optional[str]
    added: List[str] = field(default_factory=list)  # file names
    updated: List[str] = field(default_factory=list)
    retired: List[str] = field(default_factory=list)
    paths: List[str] = field(default_factory=list)

    @property
    def committed(self) -> bool:
        return self.commit_id is not None


def build_commit_message(
    added: List[str],
    updated: List[str],
    retired: List[str],
    statements: Dict[str, str]
) -> str:
    """One commit message summarizing which topics were added, updated or retired."""
    counts = [f"{len(added)} added", f"{len(updated)} updated"]
    if retired:
        counts.append(f"{len(retired)} retired")
    lines = [f"Update spec corpus: {', '.join(counts)}", ""]
    for title, names in (("Added", added), ("Updated", updated), ("Retired", retired)):
        if not names:
            continue
        lines.append(f"{title}:")
        for name in names:
            statement = statements.get(name)
            lines.append(f"- {name}: {statement}" if statement else f"- {name}")
        lines.append("")
    return "\n".join(lines).rstrip() + "\n"


class PublishGate:
    """
    All-or-nothing publish of a batch of Validated documents.

    A batch with any member not in Validated, or with a canonical anywhere
    up its chain that is not Validated or Published, is refused before
    anything is written or staged. A rejected push raises PublishConflict
    and keeps the local commit; members stay Validated so the caller can retry.
    """

    def __init__(
        self,
        registry: TopicRegistry,
        storage: SpecStorage,
        vcs: VersionControl,
        writer: SpecWriter,
        graph: Optional[SharedBehaviorGraph] = None
    ):
        self.registry = registry
        self.storage = storage
        self.vcs = vcs
        self.writer = writer
        self.graph = graph

    def publish(
        self,
        batch: Sequence[SpecDocument],
        retired: Sequence[RetiredTopic] = ()
    ) -> PublishResult:
        """
        Raises:
            NotReadyError: If any member is not Validated; nothing is staged
            VersionControlError: If staging or committing fails; files are restored
            PublishConflict: If the remote rejects the push; the commit is kept
        """
        with _PUBLISH_LOCK:
            topic_ids = list(dict.fromkeys(doc.topic_id for doc in batch))
            self._check_ready(topic_ids)

            if not topic_ids and not retired:
                logger.info("Nothing to publish")
                return PublishResult(commit_id=None)

            documents = [self.registry.lookup(tid) for tid in topic_ids]
            added = [d.file_name for d in documents if d.published_hash is None]
            updated = [d.file_name for d in documents if d.published_hash is not None]
            retired_names = [r.file_name for r in retired if r.file_name]
            statements = {
                d.file_name: self.registry.get_topic(d.topic_id).statement for d in documents
            }
            for r in retired:
                if r.file_name:
                    statements[r.file_name] = f"merged into {r.merged_into}"

            snapshot = {}
            paths = []
            for document in documents:
                path = self.storage.path_for(document.file_name)
                snapshot[document.file_name] = self.storage.read_document(document.file_name)
                text = self.writer.render_markdown(
                    document, self.registry.get_topic(document.topic_id).statement
                )
                paths.append(self.storage.write_document(document.file_name, text))
            paths.extend(self.storage.path_for(name) for name in retired_names)

            message = build_commit_message(added, updated, retired_names, statements)
            try:
                self.vcs.stage(paths)
                commit_id = self.vcs.commit(message)
            except VersionControlError as e:
                logger.error(f"Publish aborted before commit: {e}")
                self._restore(snapshot, paths)
                raise

            logger.info(f"Committed {commit_id}: {len(added)} added, {len(updated)} updated")

            try:
                self.vcs.push()
            except PushRejected as e:
                logger.error(f"Push rejected for {commit_id}; local commit kept")
                raise PublishConflict(commit_id, str(e)) from e

            for tid in topic_ids:
                self.registry.mark_published(tid)
            self.registry.save()

            logger.info(f"Published {len(topic_ids)} document(s) in {commit_id}")
            return PublishResult(
                commit_id=commit_id,
                added=added,
                updated=updated,
                retired=retired_names,
                paths=paths,
            )

    def _check_ready(self, topic_ids: List[str]) -> None:
        not_ready = {}
        for tid in topic_ids:
            try:
                status = self.registry.status(tid)
            except TopicNotFound:
                status = "unregistered"
            if status != VALIDATED:
                not_ready[tid] = status
                continue
            if self.graph is None:
                continue
            for canonical_id in self.graph.upstream_of(tid):
                canonical_status = self.registry.status(canonical_id)
                if canonical_status not in (VALIDATED, PUBLISHED):
                    not_ready[tid] = f"canonical {canonical_id} is {canonical_status}"
                    break
        if not_ready:
            logger.error(f"Refusing publish: {len(not_ready)} member(s) not validated")
            raise NotReadyError(not_ready)

    def _restore(self, snapshot: Dict[str, Optional[str]], paths: List[str]) -> None:
        try:
            self.vcs.unstage(paths)
        except VersionControlError as e:
            logger.error(f"Failed to unstage after aborted publish: {e}")
        for file_name, content in snapshot.items():
            if content is None:
                self.storage.delete_document(file_name)
            else:
                self.storage.write_document(file_name, content)
