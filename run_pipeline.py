#!/usr/bin/env python3
"""CLI for the course assistant: index the corpus, ask questions."""

import argparse
import logging
import sys

from core.config import settings
from core.errors import ConfigurationError, IndexingFailed, InvalidInput


def setup_logging(verbose: bool = False) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s"
    )


def _services():
    from core.services import Services

    try:
        return Services.init()
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)


def cmd_index(args: argparse.Namespace) -> None:
    """Rebuild the collection from the corpus."""
    from ingestion.loader import load_corpus

    services = _services()
    corpus = args.corpus or settings.corpus_path
    try:
        print(f"Loading corpus: {corpus}")
        documents = load_corpus(corpus)
        print(f"  Loaded {len(documents)} documents")

        print(f"Indexing into '{settings.collection_name}' (chunk_size={settings.chunk_size})...")
        report = services.indexing.reindex(documents)
    except (FileNotFoundError, InvalidInput, IndexingFailed) as e:
        print(f"Indexing failed: {e}", file=sys.stderr)
        sys.exit(1)
    finally:
        services.close()

    print(f"  Indexed {report.documents_processed} documents as {report.chunks_indexed} chunks")
    for warning in report.warnings:
        print(f"  warning: {warning}")
    print(f"\nDone! Collection: {report.collection_name}")


def cmd_ask(args: argparse.Namespace) -> None:
    """Ask a question using the retrieval pipeline."""
    from core.fallback import Deadline

    services = _services()
    try:
        print(f"Query: {args.question}")
        result = services.retrieval.answer(
            args.question,
            [],
            Deadline(settings.request_timeout),
            document_id=args.lesson,
            group_id=args.module,
        )
    except InvalidInput as e:
        print(f"Invalid question: {e}", file=sys.stderr)
        sys.exit(1)
    finally:
        services.close()

    print(f"\nAnswer: {result.text}")
    if result.degraded:
        print(f"\n(status: {result.status.value})")

    if result.citations:
        print(f"\nSources ({len(result.citations)}):")
        for i, citation in enumerate(result.citations, 1):
            print(f"  {i}. {citation.title} [{citation.document_id}]")


def cmd_clear(args: argparse.Namespace) -> None:
    """Drop the collection."""
    services = _services()
    try:
        count = services.vector_store.drop_collection(settings.collection_name)
    finally:
        services.close()
    print(f"Deleted {count} records from '{settings.collection_name}'")


def cmd_stats(args: argparse.Namespace) -> None:
    """Show collection statistics."""
    services = _services()
    try:
        if not services.vector_store.collection_exists(settings.collection_name):
            print(f"Collection '{settings.collection_name}' does not exist; run indexing first")
            return
        total = services.vector_store.count(settings.collection_name)
    finally:
        services.close()
    print(f"Total records in '{settings.collection_name}': {total}")


def main() -> None:
    parser = argparse.ArgumentParser(description="Course Assistant CLI")
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose logging")
    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # index
    p_index = subparsers.add_parser("index", help="Reindex the course corpus")
    p_index.add_argument(
        "--corpus", help="Corpus JSON file or lesson directory (default: settings.corpus_path)"
    )

    # ask
    p_ask = subparsers.add_parser("ask", help="Ask a question")
    p_ask.add_argument("question", help="Question to ask")
    p_ask.add_argument("--lesson", help="Only retrieve from this lesson id")
    p_ask.add_argument("--module", help="Only retrieve from this module id")

    # clear
    subparsers.add_parser("clear", help="Drop the collection")

    # stats
    subparsers.add_parser("stats", help="Show collection statistics")

    args = parser.parse_args()
    setup_logging(args.verbose)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    commands = {
        "index": cmd_index,
        "ask": cmd_ask,
        "clear": cmd_clear,
        "stats": cmd_stats,
    }
    commands[args.command](args)


if __name__ == "__main__":
    main()
