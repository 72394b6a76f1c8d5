"""
Corpus Orchestrator.

Coordinates admission, investigation, validation, propagation and
publishing for batches of topics.
"""

import logging
import os
import threading
from concurrent.futures import CancelledError, Future, as_completed
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence, Set, Tuple

import speccorpus.config.settings as settings
from speccorpus.agents.investigation import InvestigationAgent
from speccorpus.agents.topic_review import TopicReviewAgent
from speccorpus.agents.writer import SpecWriter
from speccorpus.dispatch.dispatcher import ConcurrencyDispatcher
from speccorpus.exceptions import (
    AlreadyExists,
    AmbiguousTopic,
    CyclicSharedReference,
    FileNameCollision,
    InvestigationFailure,
    TopicNotFound,
    UnresolvedSharedReference,
)
from speccorpus.models.spec_document import SharedReference, SpecDocument
from speccorpus.models.topic import (
    DISCOVERED,
    DRAFTED,
    INVESTIGATING,
    PUBLISHED,
    STALE,
    VALIDATED,
    RetiredTopic,
)
from speccorpus.models.trace import (
    DRIFTED,
    NEW,
    SOURCE_STUDY,
    SPEC_STUDY,
    CorpusHandle,
    InvestigationRequest,
    Trace,
)
from speccorpus.publish.gate import PublishGate, PublishResult
from speccorpus.publish.git import GitVersionControl, VersionControl
from speccorpus.registry.dedup import DedupLookupService
from speccorpus.registry.shared_graph import SharedBehaviorGraph
from speccorpus.registry.topic_registry import TopicRegistry
from speccorpus.utils.naming import TopicNormalizer
from speccorpus.utils.storage import OperatorNotes, PlanningNotes, SpecStorage
from speccorpus.validation.validator import ConsistencyValidator

logger = logging.getLogger(__name__)

SETTLED = (VALIDATED, PUBLISHED)


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


@dataclass
class BatchReport:
    """Per-topic outcomes of one batch run."""
    created: List[str] = field(default_factory=list)
    updated: List[str] = field(default_factory=list)
    identical: List[str] = field(default_factory=list)
    validated: List[str] = field(default_factory=list)
    stale: List[str] = field(default_factory=list)  # Marked stale by propagation
    deferred: List[str] = field(default_factory=list)
    unsettled: List[str] = field(default_factory=list)
    failures: Dict[str, str] = field(default_factory=dict)  # topic_id -> reason
    rejected: Dict[str, str] = field(default_factory=dict)  # statement -> reason
    rounds: int = 0
    publish_result: Optional[PublishResult] = None

    @property
    def ok(self) -> bool:
        return not self.failures and not self.rejected and not self.unsettled


@dataclass
class StudyReport:
    """Outcome of a spec-study pass over existing documents."""
    traces: Dict[str, Trace] = field(default_factory=dict)
    failures: Dict[str, str] = field(default_factory=dict)


class SpecCorpusOrchestrator:
    """
    Runs the topic pipeline:

    1. Review + dedup lookup (new topics are registered as Discovered)
    2. Investigation jobs on the bounded dispatcher
    3. Merges in completion order, one at a time:
       - no prior content: hydrate a new document
       - prior content: validate, patch in place on drift
    4. Canonical changes mark consumers Stale; they re-enter the next round
    5. Validated documents go through the publish gate

    The registry and graph are passed in and owned by the caller.
    """

    def __init__(
        self,
        registry: TopicRegistry,
        graph: SharedBehaviorGraph,
        dispatcher: ConcurrencyDispatcher,
        reviewer: TopicReviewAgent,
        writer: SpecWriter,
        validator: ConsistencyValidator,
        gate: PublishGate,
        storage: SpecStorage,
        planning_notes: PlanningNotes,
        operator_notes: OperatorNotes,
        max_rounds: int = 5
    ):
        self.registry = registry
        self.graph = graph
        self.dedup = DedupLookupService(registry)
        self.dispatcher = dispatcher
        self.reviewer = reviewer
        self.writer = writer
        self.validator = validator
        self.gate = gate
        self.storage = storage
        self.planning_notes = planning_notes
        self.operator_notes = operator_notes
        self.max_rounds = max_rounds
        self._merge_lock = threading.Lock()
        self._pending_retirements: List[RetiredTopic] = []

    # ------------------------------------------------------------------
    # Admission
    # ------------------------------------------------------------------

    def submit_topic(self, statement: str) -> str:
        """
        Admit a topic statement.

        Returns:
            Identifier of the new or already-registered topic

        Raises:
            AmbiguousTopic: If the statement joins two capabilities
            FileNameCollision: If a different topic owns the derived file name
        """
        self.reviewer.review(statement)

        existing = self.dedup.find_candidate(statement)
        if existing is not None:
            logger.info(f"'{statement}' already has a spec ({existing.file_name}), routing to update")
            return existing.topic_id

        try:
            return self.registry.register(statement)
        except AlreadyExists as e:
            # Registered concurrently between lookup and register
            logger.warning(f"{e}; routing to update")
            return e.topic_id

    # ------------------------------------------------------------------
    # Batch run
    # ------------------------------------------------------------------

    def run(
        self,
        statements: Sequence[str],
        corpus: CorpusHandle,
        publish: bool = True
    ) -> BatchReport:
        """Run a batch and, if requested, publish every Validated document."""
        report = self.run_batch(statements, corpus)
        if publish:
            report.publish_result = self.publish()
        return report

    def run_batch(self, statements: Sequence[str], corpus: CorpusHandle) -> BatchReport:
        """
        Investigate and merge a batch of topics until every member settles
        or `max_rounds` is reached. Topic-scoped failures are collected in
        the report and do not stop other topics.
        """
        report = BatchReport()
        pending: List[str] = []
        for statement in statements:
            try:
                topic_id = self.submit_topic(statement)
            except (AmbiguousTopic, FileNameCollision, ValueError) as e:
                logger.warning(f"Rejected topic '{statement}': {e}")
                report.rejected[statement] = str(e)
                continue
            if topic_id not in pending:
                pending.append(topic_id)

        logger.info(f"Starting batch: {len(pending)} topic(s), {len(report.rejected)} rejected")

        while pending and report.rounds < self.max_rounds:
            report.rounds += 1
            logger.info(f"Round {report.rounds}: investigating {len(pending)} topic(s)")
            pending = self._run_round(pending, corpus, report)

        for topic_id in pending:
            if topic_id not in report.failures:
                report.unsettled.append(topic_id)
        if report.unsettled:
            logger.warning(
                f"{len(report.unsettled)} topic(s) unsettled after {report.rounds} rounds: "
                f"{', '.join(report.unsettled)}"
            )

        self.registry.save()
        self.graph.save()
        logger.info(
            f"Batch complete: {len(report.created)} created, {len(report.updated)} updated, "
            f"{len(report.identical)} identical, {len(report.failures)} failed"
        )
        return report

    def _run_round(self, topic_ids: List[str], corpus: CorpusHandle, report: BatchReport) -> List[str]:
        futures: Dict[Future, Tuple[str, str]] = {}
        for topic_id in topic_ids:
            previous = self._begin(topic_id)
            request = InvestigationRequest(
                topic_id=topic_id,
                statement=self.registry.get_topic(topic_id).statement,
                corpus=corpus,
                phase=SOURCE_STUDY,
                context=self.planning_notes.read(topic_id),
            )
            futures[self.dispatcher.submit(request)] = (topic_id, previous)

        in_flight: Set[str] = set(topic_ids)
        next_round: List[str] = []
        for future in as_completed(futures):
            topic_id, previous = futures[future]
            in_flight.discard(topic_id)
            try:
                trace = future.result()
            except (InvestigationFailure, CancelledError) as e:
                reason = str(e) or "investigation cancelled"
                report.failures[topic_id] = reason
                self._revert(topic_id, previous)
                self.planning_notes.append(topic_id, f"- {_utc_now()} investigation failed: {reason}")
                continue

            with self._merge_lock:
                try:
                    requeue = self._merge(topic_id, previous, trace, in_flight, report)
                except Exception as e:
                    reason = f"merge failed: {type(e).__name__}: {e}"
                    logger.error(f"{topic_id}: {reason}", exc_info=True)
                    report.failures[topic_id] = reason
                    self._revert(topic_id, previous)
                    continue
            for requeued in requeue:
                # Failed investigations are never resubmitted automatically
                if requeued in report.failures:
                    continue
                if requeued not in next_round and requeued not in in_flight:
                    next_round.append(requeued)
        return next_round

    def _begin(self, topic_id: str) -> str:
        previous = self.registry.status(topic_id)
        if previous in (DISCOVERED, STALE, DRAFTED):
            self.registry.set_status(topic_id, INVESTIGATING)
        return previous

    def _revert(self, topic_id: str, previous: str) -> None:
        if self.registry.status(topic_id) == INVESTIGATING and previous != INVESTIGATING:
            self.registry.set_status(topic_id, previous)

    # ------------------------------------------------------------------
    # Merge (serialized)
    # ------------------------------------------------------------------

    def _merge(
        self,
        topic_id: str,
        previous: str,
        trace: Trace,
        in_flight: Set[str],
        report: BatchReport
    ) -> List[str]:
        """Apply one trace. Returns topics to investigate in the next round."""
        if not trace.behaviors and not trace.shared_topics:
            reason = str(InvestigationFailure(topic_id, "trace contains no behavior"))
            logger.warning(reason)
            report.failures[topic_id] = reason
            self._revert(topic_id, previous)
            return []

        document = self.registry.lookup(topic_id)
        try:
            result = self.validator.validate(document, trace)
            outcome = result.status
            if result.status == NEW:
                draft = self.writer.hydrate(document, trace)
            elif result.status == DRIFTED:
                draft = result.document
            else:
                draft = None
        except UnresolvedSharedReference as e:
            return self._handle_unresolved(topic_id, previous, e, in_flight, report)

        requeue: List[str] = []
        if draft is not None:
            try:
                self.graph.set_references(topic_id, draft.shared_references)
            except CyclicSharedReference as e:
                logger.error(str(e))
                report.failures[topic_id] = str(e)
                self._revert(topic_id, previous)
                return []
            self._record_canonicals(draft)
            requeue.extend(self._enter_drafted(topic_id, report))
            changed = self.registry.update_document(draft)
            (report.created if result.status == NEW else report.updated).append(topic_id)
            if changed:
                for consumer in self.graph.on_canonical_changed(self.registry.lookup(topic_id)):
                    report.stale.append(consumer.topic_id)
                    requeue.append(consumer.topic_id)

            # Confirm the stored draft against the same trace
            result = self.validator.validate(self.registry.lookup(topic_id), trace)
            if not result.is_identical:
                logger.warning(f"{topic_id} did not settle against its own trace, re-queueing")
                requeue.append(topic_id)
                return requeue
        else:
            report.identical.append(topic_id)

        blocking = self._blocking_canonicals(topic_id)
        failed = [c for c in blocking if c in report.failures]
        if failed:
            reason = str(InvestigationFailure(
                topic_id, f"canonical spec(s) failed investigation: {', '.join(failed)}"
            ))
            logger.warning(reason)
            requeue.extend(self._enter_drafted(topic_id, report))
            report.failures[topic_id] = reason
            return requeue
        if blocking:
            logger.warning(
                f"{topic_id} waits for canonical spec(s) to validate: {', '.join(blocking)}"
            )
            requeue.extend(self._enter_drafted(topic_id, report))
            report.deferred.append(topic_id)
            for canonical_id in blocking:
                if self.registry.status(canonical_id) in (STALE, DRAFTED, DISCOVERED):
                    requeue.append(canonical_id)
            requeue.append(topic_id)
            return requeue

        settled = result.document
        current = self.registry.lookup(topic_id)
        if settled.last_validated_revision != current.last_validated_revision or \
                settled.shared_references != current.shared_references:
            self.registry.update_document(settled)
            self.graph.set_references(topic_id, settled.shared_references)
        self._settle(topic_id)
        report.validated.append(topic_id)
        self.planning_notes.append(
            topic_id, f"- {_utc_now()} {outcome} at revision {trace.revision or 'unknown'}"
        )
        return requeue

    def _handle_unresolved(
        self,
        topic_id: str,
        previous: str,
        error: UnresolvedSharedReference,
        in_flight: Set[str],
        report: BatchReport
    ) -> List[str]:
        waiting_on = []
        for statement in error.missing:
            try:
                missing_id = self.registry.normalize(statement)
            except ValueError:
                continue
            if missing_id in report.failures:
                continue
            if missing_id in in_flight or missing_id in self.registry.topics:
                waiting_on.append(missing_id)
        if not waiting_on:
            report.failures[topic_id] = str(error)
            self._revert(topic_id, previous)
            return []
        logger.warning(f"{topic_id} deferred until {', '.join(waiting_on)} is drafted")
        report.deferred.append(topic_id)
        self._revert(topic_id, previous)
        return [topic_id] + [w for w in waiting_on if w not in in_flight]

    def _blocking_canonicals(self, topic_id: str) -> List[str]:
        """Canonicals anywhere up the chain that are not Validated or Published."""
        return [
            canonical_id
            for canonical_id in self.graph.upstream_of(topic_id)
            if self.registry.status(canonical_id) not in SETTLED
        ]

    def _enter_drafted(self, topic_id: str, report: BatchReport) -> List[str]:
        """Move a topic to Drafted. Returns consumers held Stale on the way."""
        held = []
        status = self.registry.status(topic_id)
        if status in SETTLED:
            # Drift against live source
            self.registry.set_status(topic_id, STALE)
            status = STALE
            held = [d.topic_id for d in self.graph.hold_downstream([topic_id])]
            report.stale.extend(held)
        if status in (STALE, DISCOVERED):
            self.registry.set_status(topic_id, INVESTIGATING)
        self.registry.set_status(topic_id, DRAFTED)
        return held

    def _settle(self, topic_id: str) -> None:
        document = self.registry.lookup(topic_id)
        target = PUBLISHED if document.published_hash == document.content_hash else VALIDATED
        status = self.registry.status(topic_id)
        if status == target:
            return
        if status == STALE:
            self.registry.set_status(topic_id, INVESTIGATING)
        if target == PUBLISHED:
            self.registry.set_status(topic_id, VALIDATED)
            self.registry.mark_published(topic_id)
        else:
            self.registry.set_status(topic_id, VALIDATED)

    def _record_canonicals(self, document: SpecDocument) -> None:
        for ref in document.shared_references:
            consumers = self.graph.consumers_of(ref.canonical_id)
            self.operator_notes.record(
                f"canonical:{ref.canonical_id}",
                f"shared behavior consumed by {', '.join(consumers)}",
            )

    # ------------------------------------------------------------------
    # Spec study, retirement, publish
    # ------------------------------------------------------------------

    def learn_corpus(self, corpus: CorpusHandle) -> StudyReport:
        """Submit one spec-study job per document with content."""
        report = StudyReport()
        futures: Dict[Future, str] = {}
        for document in self.registry.list():
            if document.is_empty:
                continue
            topic = self.registry.get_topic(document.topic_id)
            text = self.storage.read_document(document.file_name) or \
                self.writer.render_markdown(document, topic.statement)
            request = InvestigationRequest(
                topic_id=topic.topic_id,
                statement=topic.statement,
                corpus=corpus,
                phase=SPEC_STUDY,
                context=self.planning_notes.read(topic.topic_id),
                document_text=text,
            )
            futures[self.dispatcher.submit(request)] = topic.topic_id

        for future in as_completed(futures):
            topic_id = futures[future]
            try:
                trace = future.result()
            except (InvestigationFailure, CancelledError) as e:
                report.failures[topic_id] = str(e) or "investigation cancelled"
                continue
            report.traces[topic_id] = trace
            self.planning_notes.append(
                topic_id,
                f"- {_utc_now()} studied spec: {len(trace.behaviors)} behaviors, "
                f"{len(trace.shared_topics)} shared topics",
            )

        logger.info(f"Studied {len(report.traces)} spec(s), {len(report.failures)} failed")
        return report

    def retire_topic(self, topic_id: str, merged_into: str) -> List[str]:
        """
        Merge a topic into another: re-point its consumers at the successor,
        mark them Stale, and destroy the retired document.

        Returns:
            Consumers that were re-pointed

        Raises:
            TopicNotFound: If either topic is not registered
            CyclicSharedReference: If re-pointing would create a cycle (nothing changes)
        """
        with self._merge_lock:
            retired_doc = self.registry.documents.get(topic_id)
            if retired_doc is None:
                raise TopicNotFound(topic_id)
            successor = self.registry.lookup(merged_into)
            former_consumers = self.graph.consumers_of(topic_id)
            moved = self.graph.repoint(topic_id, successor)

            for consumer_id in former_consumers:
                document = self.registry.lookup(consumer_id).clone()
                references = []
                for ref in document.shared_references:
                    if ref.canonical_id != topic_id:
                        references.append(ref)
                    elif consumer_id != successor.topic_id:
                        references.append(SharedReference(ref.name, successor.topic_id, ""))
                document.shared_references = references
                self.registry.update_document(document)
                if self.registry.status(consumer_id) in SETTLED + (DRAFTED,):
                    self.registry.set_status(consumer_id, STALE)
            self.graph.hold_downstream(former_consumers)

            tombstone = self.registry.retire(topic_id, successor.topic_id)
            self.storage.delete_document(retired_doc.file_name)
            if retired_doc.published_hash is not None:
                self._pending_retirements.append(tombstone)

            self.operator_notes.record(
                f"retired:{topic_id}", f"merged into {successor.topic_id}"
            )
            self.registry.save()
            self.graph.save()
        return moved

    def publish(self, batch: Optional[Sequence[SpecDocument]] = None) -> PublishResult:
        """
        Publish the given batch, or every Validated document. Holds the merge
        lock so no member changes status between the readiness check and
        marking it Published.
        """
        with self._merge_lock:
            if batch is None:
                batch = self.registry.list(VALIDATED)
            result = self.gate.publish(batch, retired=self._pending_retirements)
            self._pending_retirements = []
        return result


def build_orchestrator(
    api_key: str,
    data_root: str,
    repo_root: str,
    vcs: Optional[VersionControl] = None
) -> SpecCorpusOrchestrator:
    """
    Wire every component from settings.

    Args:
        api_key: Google API key for the investigation and review agents
        data_root: Directory holding registry, graph, notes and specs
        repo_root: git working tree the specs are published from
        vcs: Version-control boundary (defaults to git at repo_root)
    """

    logger.info("Initializing orchestrator components...")
    normalizer = TopicNormalizer(settings.TOPIC_STOPWORDS, settings.FILE_NAME_MAX_WORDS)
    registry = TopicRegistry(os.path.join(data_root, "topic_registry.json"), normalizer)
    graph = SharedBehaviorGraph(registry, os.path.join(data_root, "shared_graph.json"))
    storage = SpecStorage(os.path.join(data_root, "specs"))
    dedup = DedupLookupService(registry)
    writer = SpecWriter(dedup)

    investigator = InvestigationAgent(
        api_key=api_key,
        model_name=settings.INVESTIGATION_MODEL,
        temperature=settings.LLM_TEMPERATURE,
        timeout_seconds=settings.INVESTIGATION_TIMEOUT_SECONDS,
        file_patterns=settings.CORPUS_FILE_PATTERNS,
        max_chars=settings.CORPUS_MAX_CHARS,
    )
    dispatcher = ConcurrencyDispatcher(
        worker=investigator,
        spec_study_cap=settings.SPEC_STUDY_CAP,
        source_study_cap=settings.SOURCE_STUDY_CAP,
    )
    reviewer = TopicReviewAgent(
        normalizer=normalizer,
        api_key=api_key,
        model_name=settings.TOPIC_REVIEW_MODEL,
        use_llm=settings.TOPIC_REVIEW_USE_LLM,
        temperature=settings.LLM_TEMPERATURE,
    )
    gate = PublishGate(
        registry=registry,
        storage=storage,
        vcs=vcs or GitVersionControl(repo_root, settings.GIT_REMOTE, settings.GIT_BRANCH),
        writer=writer,
        graph=graph,
    )

    orchestrator = SpecCorpusOrchestrator(
        registry=registry,
        graph=graph,
        dispatcher=dispatcher,
        reviewer=reviewer,
        writer=writer,
        validator=ConsistencyValidator(writer),
        gate=gate,
        storage=storage,
        planning_notes=PlanningNotes(os.path.join(data_root, "planning_notes.md")),
        operator_notes=OperatorNotes(os.path.join(data_root, "operator_notes.md")),
        max_rounds=settings.MAX_ROUNDS,
    )
    logger.info("Orchestrator initialized successfully")
    return orchestrator


# Design Rationale and Trade-offs:
#
# 1. Merges applied one at a time in completion order
#    - Registry and graph mutations never interleave between topics
#    - Trade-off: A slow merge delays every other result of the round
#
# 2. Rounds instead of immediate re-submission
#    - Stale and deferred topics wait for the current round to drain
#    - Trade-off: A long chain needs one round per link, bounded by MAX_ROUNDS
#
# 3. Failed investigations are not retried within a batch
#    - Consumers of a failed canonical fail with it instead of looping
#    - Trade-off: The caller re-runs the batch to retry
