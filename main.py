"""
speccorpus - Specification Corpus Orchestrator

CLI entry point for running topic batches against a source corpus.
"""

import argparse
import logging
import os
import sys

import speccorpus.config.settings as settings
from speccorpus.exceptions import NotReadyError, PublishConflict
from speccorpus.models.trace import CorpusHandle
from speccorpus.orchestrator import build_orchestrator
from speccorpus.registry.shared_graph import SharedBehaviorGraph
from speccorpus.registry.topic_registry import TopicRegistry
from speccorpus.utils.naming import TopicNormalizer
from speccorpus.utils.reporting import CorpusReporter


def setup_logging(log_level: str = "INFO"):
    """Configure logging for the entire application."""
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format=settings.LOG_FORMAT,
        handlers=[
            logging.StreamHandler(sys.stdout),
            logging.FileHandler("speccorpus.log")
        ]
    )


def read_topics_file(path: str):
    """One topic statement per line; blank lines and '#' comments are skipped."""
    with open(path, "r", encoding="utf-8") as f:
        return [
            line.strip()
            for line in f
            if line.strip() and not line.strip().startswith("#")
        ]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="speccorpus - Specification Corpus Orchestrator",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Investigate a batch of topics and publish the validated specs
  python main.py run --topics-file topics.txt --corpus ../checkout-service

  # Pin the source revision and skip publishing
  python main.py run --topics-file topics.txt --corpus ../checkout-service \\
                     --revision 4f2a9c1 --no-publish

  # Re-read every existing spec (spec-study phase)
  python main.py learn --corpus ../checkout-service

  # Status table of the corpus
  python main.py report

  # Merge one topic into another
  python main.py retire coupon-stacking --into coupon-redemption

Note: Set GOOGLE_API_KEY environment variable before running 'run' or 'learn'.
        """
    )

    parser.add_argument(
        "--data-root",
        default=str(settings.DATA_ROOT),
        help=f"Data directory (default: {settings.DATA_ROOT})"
    )

    parser.add_argument(
        "--repo-root",
        help="git working tree specs are published from (default: data root)"
    )

    parser.add_argument(
        "--log-level",
        default=settings.LOG_LEVEL,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help=f"Logging level (default: {settings.LOG_LEVEL})"
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    run = subparsers.add_parser("run", help="Investigate a batch of topics")
    run.add_argument("--topics-file", required=True, help="File with one topic statement per line")
    run.add_argument("--corpus", required=True, help="Root directory of the source corpus")
    run.add_argument("--revision", help="Source revision the corpus is checked out at")
    run.add_argument("--no-publish", action="store_true", help="Validate only, do not commit")

    learn = subparsers.add_parser("learn", help="Study existing specs")
    learn.add_argument("--corpus", required=True, help="Root directory of the source corpus")
    learn.add_argument("--revision", help="Source revision the corpus is checked out at")

    report = subparsers.add_parser("report", help="Write the corpus status table")
    report.add_argument(
        "--output-dir",
        default=str(settings.OUTPUT_ROOT),
        help=f"Output directory (default: {settings.OUTPUT_ROOT})"
    )

    retire = subparsers.add_parser("retire", help="Merge a topic into another")
    retire.add_argument("topic", help="Topic statement or identifier to retire")
    retire.add_argument("--into", required=True, help="Topic that absorbs it")

    return parser


def print_banner(args):
    print("=" * 60)
    print("speccorpus - Specification Corpus Orchestrator")
    print("=" * 60)
    print(f"Command: {args.command}")
    print(f"Data root: {args.data_root}")
    if getattr(args, "corpus", None):
        print(f"Corpus: {args.corpus}")
    if getattr(args, "revision", None):
        print(f"Revision: {args.revision}")
    print(f"Caps: spec-study {settings.SPEC_STUDY_CAP}, source-study {settings.SOURCE_STUDY_CAP}")
    print("=" * 60)
    print()


def run_report(args) -> int:
    normalizer = TopicNormalizer(settings.TOPIC_STOPWORDS, settings.FILE_NAME_MAX_WORDS)
    registry = TopicRegistry(os.path.join(args.data_root, "topic_registry.json"), normalizer)
    graph = SharedBehaviorGraph(registry, os.path.join(args.data_root, "shared_graph.json"))
    output_path = CorpusReporter(registry, graph).generate_status_table(args.output_dir)

    print("=" * 60)
    print("✅ Report generated")
    print("=" * 60)
    print(f"Status table: {output_path}")
    print(f"Metadata: {output_path.replace('.csv', '_metadata.json')}")
    print("=" * 60)
    return 0


def run_batch(args, orchestrator) -> int:
    statements = read_topics_file(args.topics_file)
    corpus = CorpusHandle(root=args.corpus, revision=args.revision or "")
    report = orchestrator.run(statements, corpus, publish=not args.no_publish)

    print()
    print("=" * 60)
    print("Batch summary")
    print("=" * 60)
    print(f"Created: {len(report.created)}  Updated: {len(report.updated)}  "
          f"Identical: {len(report.identical)}")
    print(f"Validated: {len(report.validated)}  Marked stale: {len(report.stale)}  "
          f"Rounds: {report.rounds}")
    for statement, reason in report.rejected.items():
        print(f"Rejected: {statement} ({reason})")
    for topic_id, reason in report.failures.items():
        print(f"Failed: {topic_id} ({reason})")
    for topic_id in report.unsettled:
        print(f"Unsettled: {topic_id}")
    if report.publish_result is not None:
        if report.publish_result.committed:
            print(f"Published commit: {report.publish_result.commit_id}")
        else:
            print("Nothing to publish")
    print("=" * 60)
    return 0 if report.ok else 1


def run_learn(args, orchestrator) -> int:
    corpus = CorpusHandle(root=args.corpus, revision=args.revision or "")
    study = orchestrator.learn_corpus(corpus)
    print(f"Studied {len(study.traces)} spec(s), {len(study.failures)} failed")
    for topic_id, reason in study.failures.items():
        print(f"Failed: {topic_id} ({reason})")
    return 0 if not study.failures else 1


def main():
    """Main CLI entry point."""
    args = build_parser().parse_args()

    # Setup logging
    setup_logging(args.log_level)
    logger = logging.getLogger(__name__)

    # Validate API key for commands that investigate
    if args.command in ("run", "learn") and not settings.GOOGLE_API_KEY:
        logger.error(
            "GOOGLE_API_KEY environment variable not set. "
            "Please set it before running investigations."
        )
        sys.exit(1)

    print_banner(args)

    try:
        if args.command == "report":
            sys.exit(run_report(args))

        orchestrator = build_orchestrator(
            api_key=settings.GOOGLE_API_KEY,
            data_root=args.data_root,
            repo_root=args.repo_root or args.data_root
        )
        try:
            if args.command == "run":
                code = run_batch(args, orchestrator)
            elif args.command == "learn":
                code = run_learn(args, orchestrator)
            else:
                moved = orchestrator.retire_topic(
                    orchestrator.registry.normalize(args.topic),
                    orchestrator.registry.normalize(args.into)
                )
                print(f"Retired {args.topic}; re-pointed {len(moved)} consumer(s)")
                code = 0
        finally:
            orchestrator.dispatcher.shutdown(wait=False, cancel_queued=True)

        logger.info(f"speccorpus '{args.command}' finished with exit code {code}")
        sys.exit(code)

    except KeyboardInterrupt:
        logger.warning("Run interrupted by user")
        print("\n⚠️  Run interrupted")
        sys.exit(1)

    except NotReadyError as e:
        logger.error(f"Publish refused: {e}")
        print(f"\n❌ Publish refused: {e}")
        sys.exit(1)

    except PublishConflict as e:
        logger.error(f"Publish conflict: {e}")
        print(f"\n❌ Publish conflict: {e}")
        print("The commit was kept locally; pull, then publish again")
        sys.exit(1)

    except Exception as e:
        logger.error(f"Run failed: {e}", exc_info=True)
        print(f"\n❌ Run failed: {e}")
        print("Check speccorpus.log for details")
        sys.exit(1)


if __name__ == "__main__":
    main()
