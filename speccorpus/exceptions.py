"""
Error taxonomy for the spec corpus orchestrator.

Topic-scoped failures are collected per topic; graph- and batch-scoped
failures abort the operation they occur in.
"""

from typing import List, Optional


class SpecCorpusError(Exception):
    """Base class for all orchestrator errors."""


class AmbiguousTopic(SpecCorpusError):
    """A topic statement joins two independently-variable capabilities."""

    def __init__(self, statement: str, reason: str = ""):
        self.statement = statement
        self.reason = reason
        message = f"Ambiguous topic: '{statement}'"
        if reason:
            message += f" ({reason})"
        super().__init__(message)


class AlreadyExists(SpecCorpusError, ValueError):
    """A topic with the same normalized identifier is already registered."""

    def __init__(self, topic_id: str):
        self.topic_id = topic_id
        super().__init__(f"Topic '{topic_id}' already exists")


class TopicNotFound(SpecCorpusError, KeyError):
    """No registered topic matches the given statement or identifier."""

    def __init__(self, key: str):
        self.key = key
        super().__init__(f"Topic not found: {key}")

    def __str__(self) -> str:
        return self.args[0]


class FileNameCollision(SpecCorpusError, ValueError):
    """Two distinct topics distill to the same document file name."""

    def __init__(self, file_name: str, existing_topic_id: str):
        self.file_name = file_name
        self.existing_topic_id = existing_topic_id
        super().__init__(
            f"File name '{file_name}' is already used by topic '{existing_topic_id}'"
        )


class InvalidTransition(SpecCorpusError, ValueError):
    """A lifecycle transition not permitted from the current status."""

    def __init__(self, topic_id: str, current: str, target: str):
        self.topic_id = topic_id
        self.current = current
        self.target = target
        super().__init__(
            f"Topic '{topic_id}' cannot move from '{current}' to '{target}'"
        )


class InvestigationFailure(SpecCorpusError):
    """The investigation collaborator errored, timed out, or returned malformed output."""

    def __init__(self, topic_id: str, reason: str):
        self.topic_id = topic_id
        self.reason = reason
        super().__init__(f"Investigation failed for '{topic_id}': {reason}")


class UnresolvedSharedReference(SpecCorpusError):
    """A trace names a shared topic that has no registered canonical spec."""

    def __init__(self, consumer_id: str, missing: List[str]):
        self.consumer_id = consumer_id
        self.missing = list(missing)
        super().__init__(
            f"Topic '{consumer_id}' references unregistered shared topics: "
            f"{', '.join(self.missing)}"
        )


class CyclicSharedReference(SpecCorpusError):
    """Adding the edge would make a canonical spec depend on one of its consumers."""

    def __init__(self, consumer_id: str, canonical_id: str, path: Optional[List[str]] = None):
        self.consumer_id = consumer_id
        self.canonical_id = canonical_id
        self.path = list(path or [])
        message = f"Shared reference {consumer_id} -> {canonical_id} would create a cycle"
        if self.path:
            message += f" ({' -> '.join(self.path)})"
        super().__init__(message)


class NotReadyError(SpecCorpusError):
    """A publish batch contains members that are not in the Validated state."""

    def __init__(self, not_ready: dict):
        self.not_ready = dict(not_ready)
        details = ", ".join(f"{tid}={status}" for tid, status in sorted(self.not_ready.items()))
        super().__init__(f"Batch is not ready to publish: {details}")


class VersionControlError(SpecCorpusError):
    """The version-control boundary failed to stage or commit."""


class PublishConflict(SpecCorpusError):
    """The remote rejected the push; the local commit is preserved."""

    def __init__(self, commit_id: str, detail: str = ""):
        self.commit_id = commit_id
        self.detail = detail
        message = f"Push rejected for commit {commit_id}"
        if detail:
            message += f": {detail}"
        super().__init__(message)


class PushRejected(VersionControlError):
    """The remote refused the push (for example, it has diverged)."""
