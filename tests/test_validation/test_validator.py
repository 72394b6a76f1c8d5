"""
Unit tests for the Consistency Validator and the behavior diff.
"""

import os
import tempfile

import pytest

from speccorpus.agents.writer import SpecWriter
from speccorpus.exceptions import UnresolvedSharedReference
from speccorpus.models.spec_document import Behavior, Boundary
from speccorpus.models.topic import DRAFTED, INVESTIGATING, VALIDATED
from speccorpus.models.trace import DRIFTED, IDENTICAL, NEW, Trace
from speccorpus.registry.dedup import DedupLookupService
from speccorpus.registry.topic_registry import TopicRegistry
from speccorpus.utils.naming import TopicNormalizer
from speccorpus.validation.validator import ConsistencyValidator, diff_behaviors, patch_behaviors


@pytest.fixture
def env():
    with tempfile.TemporaryDirectory() as tmpdir:
        registry = TopicRegistry(
            os.path.join(tmpdir, "topic_registry.json"),
            TopicNormalizer(["the", "of"], max_file_words=3)
        )
        writer = SpecWriter(DedupLookupService(registry))
        yield registry, writer, ConsistencyValidator(writer)


def coupon_behaviors():
    return [
        Behavior("Validate code", "Unknown codes are refused", children=[
            Behavior("Check expiry", "Expired codes are refused"),
            Behavior("Check usage", "Used codes are refused"),
        ]),
        Behavior("Apply discount", "Order total reduced"),
    ]


def store(registry, writer, statement, trace_behaviors, shared_topics=()):
    """Register a topic and store the document hydrated from a trace."""
    topic_id = registry.register(statement)
    trace = Trace(topic_id=topic_id, revision="r1", behaviors=trace_behaviors,
                  shared_topics=list(shared_topics))
    registry.set_status(topic_id, INVESTIGATING)
    registry.update_document(writer.hydrate(registry.lookup(topic_id), trace))
    registry.set_status(topic_id, DRAFTED)
    registry.set_status(topic_id, VALIDATED)
    return registry.lookup(topic_id)


def test_new_when_no_prior_content(env):
    registry, _, validator = env
    topic_id = registry.register("Coupon redemption")
    trace = Trace(topic_id=topic_id, behaviors=coupon_behaviors())

    assert validator.validate(None, trace).status == NEW
    assert validator.validate(registry.lookup(topic_id), trace).status == NEW


def test_identical_advances_revision_only(env):
    """Test an unchanged document is reported identical with the revision advanced."""
    registry, writer, validator = env
    document = store(registry, writer, "Coupon redemption", coupon_behaviors())
    trace = Trace(topic_id=document.topic_id, revision="r2", behaviors=coupon_behaviors())

    result = validator.validate(document, trace)

    assert result.status == IDENTICAL
    assert result.changed == []
    assert result.document.last_validated_revision == "r2"
    assert result.document.content_hash == document.content_hash
    assert document.last_validated_revision == "r1"


def test_drift_patches_only_changed_nodes(env):
    """Test drift reports the changed node and keeps unchanged nodes verbatim."""
    registry, writer, validator = env
    document = store(registry, writer, "Coupon redemption", coupon_behaviors())
    document.boundaries = [Boundary("Pricing service", "order lines", "line totals")]
    behaviors = coupon_behaviors()
    behaviors[0].children[1].effect = "Codes used twice are refused"
    trace = Trace(topic_id=document.topic_id, revision="r2", behaviors=behaviors,
                  boundaries=[Boundary("Pricing service", "order lines", "line totals")])

    result = validator.validate(document, trace)

    assert result.status == DRIFTED
    assert [(c.path, c.kind) for c in result.changed] == [
        (["Validate code", "Check usage"], "modified")
    ]
    patched = result.document
    assert patched.behaviors[0].children[1].effect == "Codes used twice are refused"
    assert patched.behaviors[0].children[0] == document.behaviors[0].children[0]
    assert patched.behaviors[1] == document.behaviors[1]
    assert patched.boundaries == document.boundaries
    assert patched.content_hash != document.content_hash


def test_boundary_changes_are_drift(env):
    """Test added or redeclared boundaries drift and untouched ones stay verbatim."""
    registry, writer, validator = env
    document = store(registry, writer, "Coupon redemption", coupon_behaviors())
    pricing = Boundary("Pricing service", "order lines", "line totals")
    ledger = Boundary("Coupon ledger", "code", "usage count")
    document.boundaries = [pricing, ledger]
    document.refresh_hash()

    trace = Trace(
        topic_id=document.topic_id, revision="r2", behaviors=coupon_behaviors(),
        boundaries=[
            Boundary("Pricing service", "order lines", "line totals"),
            Boundary("Coupon ledger", "code", "usage count and expiry"),
            Boundary("Payments API", "discounted total", "capture id"),
        ],
    )
    result = validator.validate(document, trace)

    assert result.status == DRIFTED
    assert [(c.path, c.kind, c.section) for c in result.changed] == [
        (["Coupon ledger"], "modified", "boundary"),
        (["Payments API"], "added", "boundary"),
    ]
    patched = result.document
    assert [b.name for b in patched.boundaries] == [
        "Pricing service", "Coupon ledger", "Payments API"
    ]
    assert patched.boundaries[0] == pricing
    assert patched.boundaries[1].receives == "usage count and expiry"
    assert patched.behaviors == document.behaviors
    assert patched.content_hash != document.content_hash

    settled = validator.validate(patched, trace)
    assert settled.status == IDENTICAL


def test_boundary_removed_is_drift(env):
    registry, writer, validator = env
    document = store(registry, writer, "Coupon redemption", coupon_behaviors())
    document.boundaries = [Boundary("Pricing service", "order lines", "line totals")]

    trace = Trace(topic_id=document.topic_id, behaviors=coupon_behaviors())
    result = validator.validate(document, trace)

    assert result.status == DRIFTED
    assert [(c.path, c.kind) for c in result.changed] == [(["Pricing service"], "removed")]
    assert result.document.boundaries == []


def test_repeated_sibling_names_settle(env):
    """Test same-named siblings are matched by occurrence, so a draft validates against its trace."""
    registry, writer, validator = env
    behaviors = [
        Behavior("Check", "Code exists"),
        Behavior("Check", "Code unexpired"),
    ]
    document = store(registry, writer, "Coupon redemption", behaviors)
    trace = Trace(topic_id=document.topic_id, revision="r2", behaviors=[
        Behavior("Check", "Code exists"),
        Behavior("Check", "Code unexpired"),
    ])

    assert validator.validate(document, trace).status == IDENTICAL

    trace.behaviors[1].effect = "Code unexpired and unused"
    result = validator.validate(document, trace)

    assert result.status == DRIFTED
    assert [(c.path, c.kind) for c in result.changed] == [(["Check"], "modified")]
    assert [b.effect for b in result.document.behaviors] == [
        "Code exists", "Code unexpired and unused"
    ]
    assert result.document.behaviors[0] == document.behaviors[0]


def test_diff_classifies_added_removed_moved():
    current = [Behavior("A", "a"), Behavior("B", "b"), Behavior("C", "c")]
    expected = [Behavior("B", "b"), Behavior("A", "a"), Behavior("D", "d")]

    kinds = {tuple(c.path): c.kind for c in diff_behaviors(current, expected)}

    assert kinds == {("A",): "moved", ("B",): "moved", ("D",): "added", ("C",): "removed"}


def test_unchanged_siblings_ignore_insertions():
    """Test inserting a sibling does not mark the others as moved."""
    current = [Behavior("A", "a"), Behavior("C", "c")]
    expected = [Behavior("A", "a"), Behavior("B", "b"), Behavior("C", "c")]

    changed = diff_behaviors(current, expected)

    assert [(c.path, c.kind) for c in changed] == [(["B"], "added")]
    assert [b.name for b in patch_behaviors(current, expected)] == ["A", "B", "C"]


def test_shared_behavior_rebuilt_from_current_canonical(env):
    """Test a consumer drifts when its canonical changed since it was written."""
    registry, writer, validator = env
    rounding = store(registry, writer, "Decimal rounding", [Behavior("Round", "Half up")])
    tax = store(registry, writer, "Tax calculation",
                [Behavior("Sum lines", "Line taxes summed")], ["Decimal rounding"])
    assert tax.behaviors[1].children[0].effect == "Half up"

    changed = rounding.clone()
    changed.behaviors[0].effect = "Half to even"
    registry.update_document(changed)

    trace = Trace(topic_id=tax.topic_id, revision="r2",
                  behaviors=[Behavior("Sum lines", "Line taxes summed")],
                  shared_topics=["Decimal rounding"])
    result = validator.validate(tax, trace)

    assert result.status == DRIFTED
    assert result.document.behaviors[1].children[0].effect == "Half to even"
    assert result.document.shared_references[0].canonical_hash == \
        registry.lookup(rounding.topic_id).content_hash


def test_unregistered_shared_topic_raises(env):
    registry, writer, validator = env
    document = store(registry, writer, "Coupon redemption", coupon_behaviors())
    trace = Trace(topic_id=document.topic_id, behaviors=coupon_behaviors(),
                  shared_topics=["Loyalty points"])

    with pytest.raises(UnresolvedSharedReference) as exc_info:
        validator.validate(document, trace)
    assert exc_info.value.missing == ["Loyalty points"]


# Run tests if executed directly
if __name__ == "__main__":
    pytest.main([__file__, "-v"])
