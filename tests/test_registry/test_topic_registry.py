"""
Basic unit tests for Topic Registry.
Verifies identity, lifecycle and persistence before moving to the graph.
"""

import json
import os
import tempfile
import threading

import pytest

from speccorpus.exceptions import (
    AlreadyExists,
    FileNameCollision,
    InvalidTransition,
    TopicNotFound,
)
from speccorpus.models.spec_document import Behavior, SpecDocument
from speccorpus.models.topic import (
    DISCOVERED,
    DRAFTED,
    INVESTIGATING,
    PUBLISHED,
    STALE,
    VALIDATED,
    Topic,
)
from speccorpus.registry.topic_registry import TopicRegistry
from speccorpus.utils.naming import TopicNormalizer

STOPWORDS = ["a", "an", "the", "of", "for", "to", "on", "with"]


def make_registry(tmpdir):
    return TopicRegistry(
        os.path.join(tmpdir, "topic_registry.json"),
        TopicNormalizer(STOPWORDS, max_file_words=3)
    )


def drafted(registry, topic_id, behaviors):
    """Move a topic to Drafted with the given behaviors."""
    registry.set_status(topic_id, INVESTIGATING)
    document = registry.lookup(topic_id).clone()
    document.behaviors = behaviors
    registry.update_document(document)
    registry.set_status(topic_id, DRAFTED)
    return registry.lookup(topic_id)


def test_topic_status_validation():
    """Test Topic status validation."""
    topic = Topic(topic_id="coupon-redemption", statement="Coupon redemption")
    assert topic.status == DISCOVERED

    with pytest.raises(ValueError):
        Topic(topic_id="x", statement="x", status="archived")


def test_registry_initialization():
    """Test creating new registry."""
    with tempfile.TemporaryDirectory() as tmpdir:
        registry = make_registry(tmpdir)

        assert len(registry.topics) == 0
        assert registry.version == "1.0.0"


def test_register_topic():
    """Test registering a topic creates an empty Discovered document."""
    with tempfile.TemporaryDirectory() as tmpdir:
        registry = make_registry(tmpdir)

        topic_id = registry.register("Coupon redemption")

        assert topic_id == "coupon-redemption"
        assert registry.status(topic_id) == DISCOVERED
        document = registry.lookup(topic_id)
        assert document.file_name == "coupon-redemption"
        assert document.is_empty


def test_duplicate_statement_prevention():
    """Test that statements normalizing to one identifier cannot both register."""
    with tempfile.TemporaryDirectory() as tmpdir:
        registry = make_registry(tmpdir)
        registry.register("Coupon redemption")

        with pytest.raises(AlreadyExists, match="already exists"):
            registry.register("  the COUPON   redemption ")

        assert len(registry.topics) == 1


def test_file_name_collision():
    """Test two distinct topics cannot share a document file name."""
    with tempfile.TemporaryDirectory() as tmpdir:
        registry = make_registry(tmpdir)
        registry.register("Order total rounding rules")

        with pytest.raises(FileNameCollision):
            registry.register("Order total rounding exceptions")


def test_lookup_by_statement_or_identifier():
    """Test lookup accepts either the statement or its identifier."""
    with tempfile.TemporaryDirectory() as tmpdir:
        registry = make_registry(tmpdir)
        topic_id = registry.register("Password reset")

        assert registry.lookup("Password reset").topic_id == topic_id
        assert registry.lookup("password-reset").topic_id == topic_id
        assert registry.find("Refund issuance") is None

        with pytest.raises(TopicNotFound):
            registry.lookup("Refund issuance")


def test_concurrent_registration_single_winner():
    """Test concurrent registration of one identifier yields exactly one topic."""
    with tempfile.TemporaryDirectory() as tmpdir:
        registry = make_registry(tmpdir)
        results = []
        errors = []
        barrier = threading.Barrier(8)

        def register():
            barrier.wait()
            try:
                results.append(registry.register("Session expiry"))
            except AlreadyExists as e:
                errors.append(e)

        threads = [threading.Thread(target=register) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert results == ["session-expiry"]
        assert len(errors) == 7
        assert len(registry.topics) == 1


def test_lifecycle_transitions():
    """Test allowed and rejected lifecycle moves."""
    with tempfile.TemporaryDirectory() as tmpdir:
        registry = make_registry(tmpdir)
        topic_id = registry.register("Coupon redemption")

        with pytest.raises(InvalidTransition):
            registry.set_status(topic_id, VALIDATED)

        assert registry.set_status(topic_id, INVESTIGATING) is True
        assert registry.set_status(topic_id, INVESTIGATING) is False
        registry.set_status(topic_id, DRAFTED)
        registry.set_status(topic_id, VALIDATED)
        registry.mark_published(topic_id)
        assert registry.status(topic_id) == PUBLISHED

        registry.set_status(topic_id, STALE)
        with pytest.raises(InvalidTransition):
            registry.set_status(topic_id, VALIDATED)


def test_update_document_reports_hash_change():
    """Test update_document returns whether content changed."""
    with tempfile.TemporaryDirectory() as tmpdir:
        registry = make_registry(tmpdir)
        topic_id = registry.register("Coupon redemption")
        document = drafted(registry, topic_id, [Behavior("Apply code", "Discount applied")])

        same = document.clone()
        same.last_validated_revision = "r2"
        assert registry.update_document(same) is False

        changed = document.clone()
        changed.behaviors[0].effect = "Discount applied once"
        assert registry.update_document(changed) is True


def test_update_document_keeps_file_name():
    """Test a document cannot be renamed through update_document."""
    with tempfile.TemporaryDirectory() as tmpdir:
        registry = make_registry(tmpdir)
        topic_id = registry.register("Coupon redemption")
        document = registry.lookup(topic_id).clone()
        document.file_name = "coupons"

        with pytest.raises(ValueError, match="must keep file name"):
            registry.update_document(document)


def test_list_filters_by_status():
    """Test listing documents by lifecycle status."""
    with tempfile.TemporaryDirectory() as tmpdir:
        registry = make_registry(tmpdir)
        first = registry.register("Coupon redemption")
        registry.register("Password reset")
        registry.set_status(first, INVESTIGATING)

        assert [d.topic_id for d in registry.list(INVESTIGATING)] == [first]
        assert len(registry.list()) == 2
        with pytest.raises(ValueError):
            registry.list("archived")


def test_retire_leaves_tombstone():
    """Test retiring a topic frees its identity and redirects lookups."""
    with tempfile.TemporaryDirectory() as tmpdir:
        registry = make_registry(tmpdir)
        old = registry.register("Coupon stacking")
        new = registry.register("Coupon redemption")

        tombstone = registry.retire(old, new)

        assert tombstone.merged_into == new
        assert tombstone.file_name == "coupon-stacking"
        assert old not in registry.topics
        assert registry.lookup("Coupon stacking").topic_id == new

        with pytest.raises(ValueError):
            registry.retire(new, new)


def test_save_and_load():
    """Test registry persistence."""
    with tempfile.TemporaryDirectory() as tmpdir:
        registry_path = os.path.join(tmpdir, "topic_registry.json")

        registry1 = make_registry(tmpdir)
        topic_id = registry1.register("Coupon redemption")
        drafted(registry1, topic_id, [Behavior("Apply code", "Discount applied")])
        registry1.save()

        assert os.path.exists(registry_path)

        registry2 = make_registry(tmpdir)
        assert registry2.status(topic_id) == DRAFTED
        document = registry2.lookup(topic_id)
        assert document.behaviors[0].name == "Apply code"
        assert document.content_hash == registry1.lookup(topic_id).content_hash

        with pytest.raises(AlreadyExists):
            registry2.register("Coupon redemption")


def test_corrupted_registry_restores_from_backup():
    """Test a corrupted registry file is recovered from its backup."""
    with tempfile.TemporaryDirectory() as tmpdir:
        registry_path = os.path.join(tmpdir, "topic_registry.json")

        registry = make_registry(tmpdir)
        registry.register("Coupon redemption")
        registry.save()
        registry.register("Password reset")
        registry.save()  # Backup now holds the first save

        with open(registry_path, "w") as f:
            f.write("{not json")

        restored = make_registry(tmpdir)
        assert list(restored.topics) == ["coupon-redemption"]
        with open(registry_path) as f:
            assert json.load(f)["topics"][0]["topic"]["topic_id"] == "coupon-redemption"


def test_document_hash_ignores_bookkeeping():
    """Test content hash covers content only."""
    a = SpecDocument(topic_id="t", file_name="t", behaviors=[Behavior("Step", "Effect")])
    b = SpecDocument(
        topic_id="t",
        file_name="t",
        behaviors=[Behavior("Step", "Effect")],
        last_validated_revision="r9",
        published_hash="abc",
    )
    assert a.content_hash == b.content_hash


# Run tests if executed directly
if __name__ == "__main__":
    pytest.main([__file__, "-v"])
