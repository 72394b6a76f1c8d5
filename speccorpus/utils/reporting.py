"""
Corpus status report.

Tabulates every registered topic with its lifecycle status and
shared-behavior links.
"""

import json
import logging
import os
from collections import Counter
from datetime import datetime, timezone

import pandas as pd

from speccorpus.registry.shared_graph import SharedBehaviorGraph
from speccorpus.registry.topic_registry import TopicRegistry

logger = logging.getLogger(__name__)

COLUMNS = [
    "Topic", "Statement", "File", "Status", "Consumers", "Canonicals",
    "Last Validated Revision", "Published",
]


class CorpusReporter:
    """
    Builds the corpus status table from the registry and graph.
    """

    def __init__(self, registry: TopicRegistry, graph: SharedBehaviorGraph):
        self.registry = registry
        self.graph = graph

    def build_table(self) -> pd.DataFrame:
        rows = []
        for document in self.registry.list():
            topic = self.registry.get_topic(document.topic_id)
            rows.append({
                "Topic": topic.topic_id,
                "Statement": topic.statement,
                "File": f"{document.file_name}.md",
                "Status": topic.status,
                "Consumers": len(self.graph.consumers_of(topic.topic_id)),
                "Canonicals": len(self.graph.canonicals_of(topic.topic_id)),
                "Last Validated Revision": document.last_validated_revision or "",
                "Published": document.published_hash is not None,
            })

        df = pd.DataFrame(rows, columns=COLUMNS)
        if not df.empty:
            # Most-referenced canonicals first, then by identifier
            df = df.sort_values(["Consumers", "Topic"], ascending=[False, True])
            df = df.reset_index(drop=True)
        return df

    def generate_status_table(self, output_dir: str = "output") -> str:
        """
        Write the status table to CSV plus a metadata JSON file.

        Returns:
            Path to generated CSV file
        """
        df = self.build_table()
        if df.empty:
            logger.warning("No topics registered, creating empty status table")

        os.makedirs(output_dir, exist_ok=True)
        output_path = os.path.join(output_dir, "corpus_status.csv")
        df.to_csv(output_path, index=False)

        status_counts = Counter(df["Status"]) if not df.empty else Counter()
        metadata = {
            "total_topics": len(df),
            "status_counts": dict(status_counts),
            "shared_references": len(self.graph.edges()),
            "retired_topics": len(self.registry.retired),
            "generated_at": datetime.now(timezone.utc).isoformat(),
        }
        metadata_path = os.path.join(output_dir, "corpus_status_metadata.json")
        with open(metadata_path, "w", encoding="utf-8") as f:
            json.dump(metadata, f, indent=2)

        logger.info(
            f"Status table saved to {output_path} "
            f"({len(df)} topics, {len(self.graph.edges())} shared references)"
        )
        return output_path
