"""
Unit tests for the corpus status report.
"""

import json
import os
import tempfile

import pandas as pd
import pytest

from speccorpus.models.spec_document import Behavior
from speccorpus.models.topic import DRAFTED, INVESTIGATING, VALIDATED
from speccorpus.registry.shared_graph import SharedBehaviorGraph
from speccorpus.registry.topic_registry import TopicRegistry
from speccorpus.utils.naming import TopicNormalizer
from speccorpus.utils.reporting import COLUMNS, CorpusReporter


def validated(registry, statement):
    topic_id = registry.register(statement)
    registry.set_status(topic_id, INVESTIGATING)
    document = registry.lookup(topic_id).clone()
    document.behaviors = [Behavior("Step", statement)]
    document.last_validated_revision = "r1"
    registry.update_document(document)
    registry.set_status(topic_id, DRAFTED)
    registry.set_status(topic_id, VALIDATED)
    return registry.lookup(topic_id)


def test_status_table_and_metadata():
    """Test the CSV lists every topic and the metadata counts statuses."""
    with tempfile.TemporaryDirectory() as tmpdir:
        registry = TopicRegistry(os.path.join(tmpdir, "registry.json"), TopicNormalizer([]))
        graph = SharedBehaviorGraph(registry)
        rounding = validated(registry, "Decimal rounding")
        tax = validated(registry, "Tax calculation")
        graph.add_reference(tax, rounding)
        registry.register("Password reset")

        output_path = CorpusReporter(registry, graph).generate_status_table(
            os.path.join(tmpdir, "output")
        )

        df = pd.read_csv(output_path)
        assert list(df.columns) == COLUMNS
        assert len(df) == 3
        assert df.iloc[0]["Topic"] == "decimal-rounding"
        assert df.iloc[0]["Consumers"] == 1

        with open(output_path.replace(".csv", "_metadata.json")) as f:
            metadata = json.load(f)
        assert metadata["total_topics"] == 3
        assert metadata["status_counts"] == {"validated": 2, "discovered": 1}
        assert metadata["shared_references"] == 1


def test_empty_registry_writes_empty_table():
    with tempfile.TemporaryDirectory() as tmpdir:
        registry = TopicRegistry(os.path.join(tmpdir, "registry.json"), TopicNormalizer([]))
        reporter = CorpusReporter(registry, SharedBehaviorGraph(registry))

        df = reporter.build_table()

        assert df.empty
        assert list(df.columns) == COLUMNS
        assert os.path.exists(reporter.generate_status_table(tmpdir))


# Run tests if executed directly
if __name__ == "__main__":
    pytest.main([__file__, "-v"])
