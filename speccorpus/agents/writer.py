"""
Spec Writer.

Hydrates a trace into a SpecDocument and renders documents to Markdown.
Behavior shared with a canonical spec is inlined in full, so a consumer
reads on its own; the SharedReference only drives maintenance.
"""

import copy
import logging
from typing import List, Tuple

from speccorpus.exceptions import UnresolvedSharedReference
from speccorpus.models.spec_document import Behavior, SharedReference, SpecDocument
from speccorpus.models.trace import Trace
from speccorpus.registry.dedup import DedupLookupService

logger = logging.getLogger(__name__)


class SpecWriter:
    """
    Builds document content from traces, reading canonical specs through
    the dedup service at the moment content is built.
    """

    def __init__(self, dedup: DedupLookupService):
        self.dedup = dedup

    def build_behaviors(self, trace: Trace) -> Tuple[List[Behavior], List[SharedReference]]:
        """
        Behavior tree for a trace: traced steps first, then one `shared`
        node per canonical spec with the canonical's behaviors inlined.

        Raises:
            UnresolvedSharedReference: If a shared topic has no registered spec
        """
        behaviors = [copy.deepcopy(b) for b in trace.behaviors]
        references: List[SharedReference] = []
        missing = []
        seen = set()

        for shared_topic in trace.shared_topics:
            try:
                canonical = self.dedup.find_candidate(shared_topic)
            except ValueError as e:
                logger.warning(f"Shared topic '{shared_topic}' of {trace.topic_id} is unusable: {e}")
                canonical = None
            if canonical is None or canonical.is_empty:
                missing.append(shared_topic)
                continue
            if canonical.topic_id in seen:
                continue
            seen.add(canonical.topic_id)

            statement = self.dedup.registry.get_topic(canonical.topic_id).statement
            behaviors.append(
                Behavior(
                    name=statement,
                    effect=f"Shared behavior; canonical spec: {canonical.file_name}",
                    shared=True,
                    children=copy.deepcopy(canonical.behaviors),
                )
            )
            references.append(
                SharedReference(
                    name=statement,
                    canonical_id=canonical.topic_id,
                    canonical_hash=canonical.content_hash,
                )
            )

        if missing:
            raise UnresolvedSharedReference(trace.topic_id, missing)
        return behaviors, references

    def hydrate(self, shell: SpecDocument, trace: Trace) -> SpecDocument:
        """New document content for a topic whose registered document is `shell`."""
        behaviors, references = self.build_behaviors(trace)
        document = SpecDocument(
            topic_id=shell.topic_id,
            file_name=shell.file_name,
            behaviors=behaviors,
            boundaries=copy.deepcopy(trace.boundaries),
            shared_references=references,
            published_hash=shell.published_hash,
        )
        logger.info(
            f"Hydrated {shell.topic_id}: {len(behaviors)} behaviors, "
            f"{len(document.boundaries)} boundaries, {len(references)} shared references"
        )
        return document

    def render_markdown(self, document: SpecDocument, statement: str) -> str:
        """Markdown text of a document."""
        lines = [f"# {statement}", ""]

        lines.append("## Behavior")
        lines.append("")
        if document.behaviors:
            for index, behavior in enumerate(document.behaviors, 1):
                self._render_behavior(behavior, f"{index}.", 0, lines)
        else:
            lines.append("_No behavior recorded._")
        lines.append("")

        if document.boundaries:
            lines.append("## Boundaries")
            lines.append("")
            for boundary in document.boundaries:
                lines.append(f"### {boundary.name}")
                lines.append(f"- Sends: {boundary.sends}")
                lines.append(f"- Receives: {boundary.receives}")
                if boundary.assumption:
                    lines.append(f"- Assumes: {boundary.assumption}")
                lines.append("")

        if document.shared_references:
            lines.append("## Shared behavior")
            lines.append("")
            for ref in document.shared_references:
                lines.append(f"- {ref.name} (canonical: `{ref.canonical_id}`)")
            lines.append("")

        return "\n".join(lines).rstrip() + "\n"

    def _render_behavior(self, behavior: Behavior, marker: str, depth: int, lines: List[str]) -> None:
        tags = []
        if behavior.notable:
            tags.append("notable")
        if behavior.unreachable:
            tags.append("unreachable")
        if behavior.shared:
            tags.append("shared")
        suffix = f" _[{', '.join(tags)}]_" if tags else ""
        indent = "   " * depth
        lines.append(f"{indent}{marker} **{behavior.name}**: {behavior.effect}{suffix}")
        for index, child in enumerate(behavior.children, 1):
            self._render_behavior(child, f"{index}.", depth + 1, lines)
