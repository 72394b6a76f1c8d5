"""
Consistency Validator.

Compares a document's asserted behavior and boundaries against a fresh
trace and classifies the result as identical, drifted or new.
"""

import copy
import logging
from typing import Dict, List, Optional, Tuple

from speccorpus.agents.writer import SpecWriter
from speccorpus.models.spec_document import Behavior, Boundary, SharedReference, SpecDocument
from speccorpus.models.trace import (
    DRIFTED,
    IDENTICAL,
    NEW,
    ChangedNode,
    Trace,
    ValidationResult,
)

logger = logging.getLogger(__name__)

NodeKey = Tuple[str, int]  # (name, occurrence among same-named siblings)


def _keyed(nodes: list) -> list:
    seen: Dict[str, int] = {}
    keyed = []
    for node in nodes:
        occurrence = seen.get(node.name, 0)
        seen[node.name] = occurrence + 1
        keyed.append(((node.name, occurrence), node))
    return keyed


def _relative_order(keys: List[NodeKey], common: set) -> Dict[NodeKey, int]:
    ordered = [k for k in keys if k in common]
    return {key: i for i, key in enumerate(ordered)}


def diff_behaviors(
    current: List[Behavior],
    expected: List[Behavior],
    prefix: Tuple[str, ...] = ()
) -> List[ChangedNode]:
    """
    Structural diff of two sibling lists, recursing into matched nodes.

    Siblings match by name and, for repeated names, by occurrence. A node
    is changed when it is added or removed, when its effect or
    notable/unreachable/shared classification differs, or when its order
    relative to the siblings present on both sides differs.
    """
    current_keyed = _keyed(current)
    expected_keyed = _keyed(expected)
    current_by_key = dict(current_keyed)
    expected_by_key = dict(expected_keyed)
    common = set(current_by_key) & set(expected_by_key)
    current_order = _relative_order([k for k, _ in current_keyed], common)
    expected_order = _relative_order([k for k, _ in expected_keyed], common)

    changed: List[ChangedNode] = []
    for key, node in expected_keyed:
        path = list(prefix + (node.name,))
        old = current_by_key.get(key)
        if old is None:
            changed.append(ChangedNode(path=path, kind="added"))
            continue
        if old.own_fields() != node.own_fields():
            changed.append(ChangedNode(path=path, kind="modified"))
        elif current_order[key] != expected_order[key]:
            changed.append(ChangedNode(path=path, kind="moved"))
        changed.extend(diff_behaviors(old.children, node.children, prefix + (node.name,)))

    for key, node in current_keyed:
        if key not in expected_by_key:
            changed.append(ChangedNode(path=list(prefix + (node.name,)), kind="removed"))
    return changed


def patch_behaviors(current: List[Behavior], expected: List[Behavior]) -> List[Behavior]:
    """
    Expected tree, reusing current nodes verbatim wherever they are unchanged.
    """
    current_by_key = dict(_keyed(current))
    patched = []
    for key, node in _keyed(expected):
        old = current_by_key.get(key)
        if old is None or old.own_fields() != node.own_fields():
            patched.append(copy.deepcopy(node))
            continue
        if not diff_behaviors(old.children, node.children):
            patched.append(copy.deepcopy(old))
            continue
        kept = copy.copy(old)
        kept.children = patch_behaviors(old.children, node.children)
        patched.append(kept)
    return patched


def diff_boundaries(current: List[Boundary], expected: List[Boundary]) -> List[ChangedNode]:
    """Boundaries added, removed or redeclared, matched by name."""
    current_by_key = dict(_keyed(current))
    expected_by_key = dict(_keyed(expected))
    changed = []
    for key, boundary in expected_by_key.items():
        old = current_by_key.get(key)
        if old is None:
            changed.append(ChangedNode(path=[boundary.name], kind="added", section="boundary"))
        elif old != boundary:
            changed.append(ChangedNode(path=[boundary.name], kind="modified", section="boundary"))
    for key, boundary in current_by_key.items():
        if key not in expected_by_key:
            changed.append(ChangedNode(path=[boundary.name], kind="removed", section="boundary"))
    return changed


def patch_boundaries(current: List[Boundary], expected: List[Boundary]) -> List[Boundary]:
    current_by_key = dict(_keyed(current))
    patched = []
    for key, boundary in _keyed(expected):
        old = current_by_key.get(key)
        patched.append(copy.copy(old if old == boundary else boundary))
    return patched


def _patch_references(
    current: List[SharedReference],
    expected: List[SharedReference]
) -> List[SharedReference]:
    expected_by_id = {r.canonical_id: r for r in expected}
    result = []
    for ref in current:
        wanted = expected_by_id.pop(ref.canonical_id, None)
        if wanted is None:
            continue
        if wanted.canonical_hash != ref.canonical_hash:
            ref = SharedReference(ref.name, ref.canonical_id, wanted.canonical_hash)
        else:
            ref = copy.copy(ref)
        result.append(ref)
    result.extend(copy.copy(r) for r in expected_by_id.values())
    return result


class ConsistencyValidator:
    """
    Validates documents against traces. Shared content is rebuilt from the
    canonical specs as they are at validation time, never as they were
    when the investigation was submitted.
    """

    def __init__(self, writer: SpecWriter):
        self.writer = writer

    def validate(self, spec: Optional[SpecDocument], trace: Trace) -> ValidationResult:
        """
        Returns:
            NEW when there is no prior content; IDENTICAL with the revision
            marker advanced; DRIFTED with the changed nodes and a minimally
            patched document

        Raises:
            UnresolvedSharedReference: If a shared topic has no registered spec
        """
        if spec is None or spec.is_empty:
            return ValidationResult(status=NEW)

        expected, references = self.writer.build_behaviors(trace)
        changed = diff_behaviors(spec.behaviors, expected)
        changed.extend(diff_boundaries(spec.boundaries, trace.boundaries))
        current_ids = {r.canonical_id for r in spec.shared_references}
        expected_ids = {r.canonical_id for r in references}

        document = spec.clone()
        document.shared_references = _patch_references(spec.shared_references, references)

        if not changed and current_ids == expected_ids:
            document.last_validated_revision = trace.revision
            logger.debug(f"{spec.topic_id} identical at revision {trace.revision}")
            return ValidationResult(status=IDENTICAL, document=document)

        document.behaviors = patch_behaviors(spec.behaviors, expected)
        document.boundaries = patch_boundaries(spec.boundaries, trace.boundaries)
        document.refresh_hash()
        logger.info(
            f"{spec.topic_id} drifted: {len(changed)} changed node(s) "
            f"({', '.join('/'.join(c.path) for c in changed[:5])})"
        )
        return ValidationResult(status=DRIFTED, changed=changed, document=document)


# Design Rationale and Trade-offs:
#
# 1. Siblings matched by (name, occurrence) rather than by position
#    - Inserting a sibling does not mark the rest as moved
#    - Trade-off: Swapping two same-named siblings reads as two modifications
#
# 2. Boundaries compared as whole declarations
#    - Any field change redeclares the boundary in the patch
#    - Trade-off: No per-field diff is reported for boundaries
