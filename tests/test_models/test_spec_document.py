"""
Unit tests for spec document, trace and request models.
"""

import pytest

from speccorpus.models.spec_document import Behavior, Boundary, SharedReference, SpecDocument
from speccorpus.models.trace import CorpusHandle, InvestigationRequest, Trace


def make_document():
    return SpecDocument(
        topic_id="coupon-redemption",
        file_name="coupon-redemption",
        behaviors=[
            Behavior("Validate code", "Unknown codes are refused", children=[
                Behavior("Check expiry", "Expired codes are refused", notable=True),
            ]),
            Behavior("Apply discount", "Order total reduced"),
        ],
        boundaries=[Boundary("Pricing service", "order lines", "line totals", "totals are final")],
        shared_references=[SharedReference("Decimal rounding", "decimal-rounding", "abc")],
    )


def test_walk_yields_paths_depth_first():
    document = make_document()
    paths = [path for b in document.behaviors for path, _ in b.walk()]
    assert paths == [
        ("Validate code",),
        ("Validate code", "Check expiry"),
        ("Apply discount",),
    ]


def test_hash_changes_with_content_only():
    """Test the content hash tracks behaviors but not inlined canonical hashes."""
    document = make_document()
    original = document.content_hash

    document.shared_references[0].canonical_hash = "def"
    assert document.refresh_hash() is False

    document.behaviors[1].effect = "Order total reduced once"
    assert document.refresh_hash() is True
    assert document.content_hash != original


def test_serialization_preserves_tree():
    """Test SpecDocument to/from dict conversion."""
    document = make_document()
    document.published_hash = document.content_hash

    restored = SpecDocument.from_dict(document.to_dict())

    assert restored == document
    assert restored.behaviors[0].children[0].notable is True


def test_clone_is_independent():
    document = make_document()
    clone = document.clone()
    clone.behaviors[0].children[0].effect = "changed"
    assert document.behaviors[0].children[0].effect == "Expired codes are refused"


def test_empty_document():
    assert SpecDocument(topic_id="t", file_name="t").is_empty
    assert not make_document().is_empty
    assert make_document().shared_reference("decimal-rounding").name == "Decimal rounding"
    assert make_document().shared_reference("tax-calculation") is None


def test_request_phase_validation():
    """Test InvestigationRequest rejects unknown phases."""
    corpus = CorpusHandle(root="/tmp/corpus", revision="r1")
    InvestigationRequest(topic_id="t", statement="T", corpus=corpus, phase="spec_study")

    with pytest.raises(ValueError, match="Invalid phase"):
        InvestigationRequest(topic_id="t", statement="T", corpus=corpus, phase="deep_study")


def test_trace_from_dict():
    trace = Trace.from_dict({
        "topic_id": "coupon-redemption",
        "behaviors": [{"name": "Apply discount", "effect": "Total reduced"}],
        "shared_topics": ["Decimal rounding"],
    })
    assert trace.behaviors[0].notable is False
    assert trace.boundaries == []
    assert trace.to_dict()["shared_topics"] == ["Decimal rounding"]


# Run tests if executed directly
if __name__ == "__main__":
    pytest.main([__file__, "-v"])
