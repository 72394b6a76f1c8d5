"""
Dedup/Lookup Service.

Answers "does a spec for this topic already exist" before any write.
"""

import logging
from typing import Optional

from speccorpus.models.spec_document import SpecDocument
from speccorpus.registry.topic_registry import TopicRegistry

logger = logging.getLogger(__name__)


class DedupLookupService:
    """
    Matching is by normalized identity only. A statement that differs
    materially from an existing one is a distinct topic even when the
    behavior overlaps; overlap is expressed with shared references.
    """

    def __init__(self, registry: TopicRegistry):
        self.registry = registry

    def find_candidate(self, proposed_statement: str) -> Optional[SpecDocument]:
        """
        Existing document for the proposed statement, or None.
        No side effects.
        """
        document = self.registry.find(proposed_statement)
        if document is not None:
            logger.debug(f"Dedup hit: '{proposed_statement}' -> {document.topic_id}")
        return document
