"""Command-line entry point: ``berkshire-rag ingest | search | chat``.

Exit codes
----------
``0``  ingestion finished completely or partially; search / chat succeeded.
``1``  total failure (missing source directory, no PDFs, nothing stored)
       or a configuration / service error.
``130`` interrupted; batches already committed stay stored.
"""

from __future__ import annotations

import argparse
import json
import logging
import signal
import sys
import threading
from collections.abc import Sequence

from berkshire_rag.config import Settings, get_settings
from berkshire_rag.errors import (
    BerkshireRagError,
    ConfigurationError,
    EmbeddingError,
    LLMError,
    SourceDirectoryError,
    StorageError,
)

logger = logging.getLogger("berkshire_rag")

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_INTERRUPTED = 130


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="berkshire-rag",
        description="RAG assistant over Berkshire Hathaway shareholder letters",
    )
    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL (e.g. DEBUG)")
    sub = parser.add_subparsers(dest="command", required=True)

    ingest = sub.add_parser("ingest", help="Extract, chunk, embed and store the letters")
    ingest.add_argument("--source-dir", default=None, help="Directory of PDF letters (default: SOURCE_DIR)")
    ingest.add_argument("--batch-size", type=int, default=None, help="Chunks per embed/store batch")
    ingest.add_argument("--chunk-size", type=int, default=None, help="Target characters per chunk")
    ingest.add_argument("--chunk-overlap", type=int, default=None, help="Approximate overlap characters")
    ingest.add_argument("--workers", type=int, default=None, help="Threads for PDF extraction")

    search = sub.add_parser("search", help="Search the stored letters")
    search.add_argument("query", help="Natural-language query")
    search.add_argument("--top-k", type=int, default=None, help="Number of results")

    chat = sub.add_parser("chat", help="Interactive conversation with the agent")
    chat.add_argument("--session", default="cli", help="Conversation id for memory")
    chat.add_argument("--memory-db", default=None, help="SQLite file for session memory (default: MEMORY_DB_PATH)")

    return parser


def _cmd_ingest(args: argparse.Namespace, settings: Settings) -> int:
    from berkshire_rag.ingestion.pipeline import run_ingestion

    cancel = threading.Event()
    previous = signal.getsignal(signal.SIGINT)

    def _on_interrupt(signum, frame) -> None:  # noqa: ANN001
        logger.warning("Interrupt received — finishing the current step, then stopping")
        cancel.set()
        signal.signal(signal.SIGINT, previous)

    signal.signal(signal.SIGINT, _on_interrupt)
    try:
        report = run_ingestion(args.source_dir, settings=settings, cancel_event=cancel)
    except SourceDirectoryError as exc:
        logger.error("Ingestion failed: %s", exc)
        return EXIT_FAILURE
    finally:
        signal.signal(signal.SIGINT, previous)

    print(report.summary())
    if report.cancelled:
        return EXIT_INTERRUPTED
    return EXIT_FAILURE if report.status == "failed" else EXIT_OK


def _cmd_search(args: argparse.Namespace, settings: Settings) -> int:
    from berkshire_rag.agent.graph import build_retriever

    try:
        response = build_retriever(settings).search(args.query, top_k=args.top_k)
    except ValueError as exc:
        print(f"Invalid search: {exc}", file=sys.stderr)
        return EXIT_FAILURE
    print(json.dumps(response.model_dump(), indent=2, ensure_ascii=False))
    return EXIT_OK


def _cmd_chat(args: argparse.Namespace, settings: Settings) -> int:
    from berkshire_rag.agent.graph import build_agent

    agent = build_agent(settings)
    print("Ask about the Berkshire Hathaway letters (empty line or Ctrl-D to quit).")
    while True:
        try:
            question = input("\nyou> ").strip()
        except EOFError:
            break
        if not question:
            break
        try:
            reply = agent.ask(question, session_id=args.session)
        except (LLMError, StorageError, EmbeddingError) as exc:
            logger.error("Turn failed: %s", exc)
            print(f"\nassistant> Sorry, I could not answer that ({exc}).", file=sys.stderr)
            continue
        print(f"\nassistant> {reply.answer}")
    return EXIT_OK


_COMMANDS = {
    "ingest": _cmd_ingest,
    "search": _cmd_search,
    "chat": _cmd_chat,
}


def main(argv: Sequence[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)

    overrides = {}
    if args.command == "ingest":
        overrides = {
            "source_dir": args.source_dir,
            "batch_size": args.batch_size,
            "chunk_size": args.chunk_size,
            "chunk_overlap": args.chunk_overlap,
            "extract_workers": args.workers,
        }
    if args.command == "chat":
        overrides = {"memory_db_path": args.memory_db}
    if args.log_level:
        overrides["log_level"] = args.log_level.upper()

    try:
        settings = get_settings(**overrides)
    except ValueError as exc:
        print(f"Invalid configuration: {exc}", file=sys.stderr)
        return EXIT_FAILURE

    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        return _COMMANDS[args.command](args, settings)
    except ConfigurationError as exc:
        logger.error("Configuration error: %s", exc)
        return EXIT_FAILURE
    except BerkshireRagError as exc:
        logger.error("%s failed: %s", args.command, exc)
        return EXIT_FAILURE
    except KeyboardInterrupt:
        return EXIT_INTERRUPTED


if __name__ == "__main__":
    sys.exit(main())
