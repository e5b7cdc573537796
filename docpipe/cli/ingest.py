# =============================================================================
# docpipe/cli/ingest.py -- Pipeline CLI
# =============================================================================
#
# Operator CLI for the document pipeline.  It composes the same services as
# the API (main._build_all) and calls the orchestrator directly, so every
# command behaves exactly like its HTTP counterpart.
#
# Subcommands:
#
#   register  -- Register a stored binary (or upload a local file) as pending
#   extract   -- Run the extract stage for one document
#   chunk     -- Run the chunk stage for one document
#   embed     -- Run the embed stage for one document
#   run       -- One orchestrator pass over every stage (cron-style)
#   retry     -- Move a document out of 'error' into the stage that failed
#   status    -- List documents that are not yet embedded
#   ask       -- Ask a question over indexed documents
#
# Usage examples:
#   python -m docpipe.cli register --type public --key reports/q3.pdf --file ./q3.pdf
#   python -m docpipe.cli run
#   python -m docpipe.cli status
#   python -m docpipe.cli ask "What inputs does the report list?" --document <id>
# =============================================================================

"""Command-line trigger surface for the document pipeline.

Usage::

    python -m docpipe.cli register --type private --key user-1/a.pdf --filename a.pdf
    python -m docpipe.cli extract <document_id> --type private
    python -m docpipe.cli run
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path
from typing import Any

from docpipe.models.document import DocumentRef, Visibility
from docpipe.utils.errors import DocpipeError

# ---------------------------------------------------------------------------
# Output helpers
# ---------------------------------------------------------------------------


def _print_document(document: Any) -> None:
    print(f"  id:          {document.id}")
    print(f"  visibility:  {document.visibility.value}")
    print(f"  key:         {document.ref.storage_key}")
    print(f"  filename:    {document.filename}")
    print(f"  status:      {document.status.value}")
    print(f"  chunks:      {document.chunk_count}")
    if document.retry_count:
        print(f"  retries:     {document.retry_count}")
    if document.error_detail:
        stage = document.failed_stage.value if document.failed_stage else "?"
        print(f"  error:       [{stage}] {document.error_detail}")


# ---------------------------------------------------------------------------
# Subcommand handlers
# ---------------------------------------------------------------------------


async def _handle_register(args: argparse.Namespace, components: dict[str, Any]) -> int:
    orchestrator = components["orchestrator"]
    ref = DocumentRef(visibility=args.visibility, storage_key=args.key)

    if args.file:
        path = Path(args.file)
        document = await orchestrator.upload(ref, args.filename or path.name, path.read_bytes())
        print(f"Uploaded and registered {path.name}:")
    else:
        filename = args.filename or Path(ref.storage_key).name
        document = await orchestrator.register(ref, filename)
        print("Registered:")
    _print_document(document)
    return 0


async def _handle_stage(args: argparse.Namespace, components: dict[str, Any]) -> int:
    orchestrator = components["orchestrator"]
    run_stage = getattr(orchestrator, args.command)
    outcome = await run_stage(args.document_id, args.visibility)
    print(f"{outcome.stage.value}: {'ok' if outcome.ok else 'failed'}")
    if outcome.status is not None:
        print(f"  status: {outcome.status.value}")
    print(f"  count:  {outcome.count}")
    if outcome.detail:
        print(f"  detail: {outcome.detail}")
    return 0 if outcome.ok else 1


async def _handle_run(args: argparse.Namespace, components: dict[str, Any]) -> int:
    summary = await components["orchestrator"].run_once()
    print("Processing run complete")
    print("=" * 40)
    for name in ("extract", "chunk", "embed"):
        stage = getattr(summary, name)
        print(
            f"  {name:<8} ok={len(stage.succeeded):<4} "
            f"deferred={len(stage.deferred):<4} failed={len(stage.failed)}"
        )
    return 0


async def _handle_retry(args: argparse.Namespace, components: dict[str, Any]) -> int:
    document = await components["orchestrator"].retry_document(args.document_id, args.visibility)
    print("Retried:")
    _print_document(document)
    return 0


async def _handle_status(args: argparse.Namespace, components: dict[str, Any]) -> int:
    documents = await components["orchestrator"].processing_status(limit=args.limit)
    if not documents:
        print("All documents are embedded.")
        return 0
    print(f"{len(documents)} document(s) in progress")
    print("=" * 40)
    for document in documents:
        _print_document(document)
        print()
    return 0


async def _handle_ask(args: argparse.Namespace, components: dict[str, Any]) -> int:
    qa_service = components["qa_service"]
    if qa_service is None:
        print("Question answering is not configured (set ANTHROPIC_API_KEY or OPENAI_API_KEY).",
              file=sys.stderr)
        return 1
    result = await qa_service.ask(
        question=args.question,
        document_ids=args.document or None,
        visibility=args.visibility,
    )
    print(result.answer)
    if result.citations:
        print("\nSources:")
        for citation in result.citations:
            page = citation.page_number if citation.page_number is not None else "?"
            print(f"  - {citation.document_id} p.{page} ({citation.relevance_score:.2f})")
    return 0


_HANDLERS = {
    "register": _handle_register,
    "extract": _handle_stage,
    "chunk": _handle_stage,
    "embed": _handle_stage,
    "run": _handle_run,
    "retry": _handle_retry,
    "status": _handle_status,
    "ask": _handle_ask,
}


# ---------------------------------------------------------------------------
# Argument parser
# ---------------------------------------------------------------------------


def _add_visibility(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--type",
        dest="visibility",
        type=Visibility,
        choices=list(Visibility),
        default=Visibility.PRIVATE,
        help="Ownership partition (default: private)",
    )


def _build_parser() -> argparse.ArgumentParser:
    """Build the argparse parser for the pipeline CLI."""
    parser = argparse.ArgumentParser(
        prog="python -m docpipe.cli",
        description="Drive documents through the docpipe ingestion pipeline.",
    )
    subparsers = parser.add_subparsers(dest="command", help="Pipeline commands")

    # -- register --
    register_parser = subparsers.add_parser("register", help="Register a document")
    register_parser.add_argument("--key", required=True, help="Storage key (or public URL)")
    register_parser.add_argument("--filename", help="Original filename (default: key basename)")
    register_parser.add_argument("--file", help="Local file to upload under --key first")
    _add_visibility(register_parser)

    # -- extract / chunk / embed / retry --
    for name, help_text in (
        ("extract", "Run the extract stage for one document"),
        ("chunk", "Run the chunk stage for one document"),
        ("embed", "Run the embed stage for one document"),
        ("retry", "Retry a document that is in 'error'"),
    ):
        stage_parser = subparsers.add_parser(name, help=help_text)
        stage_parser.add_argument("document_id", help="Document id")
        _add_visibility(stage_parser)

    # -- run --
    subparsers.add_parser("run", help="Run one orchestrator pass over all stages")

    # -- status --
    status_parser = subparsers.add_parser("status", help="List documents not yet embedded")
    status_parser.add_argument("--limit", type=int, default=100, help="Maximum rows (default: 100)")

    # -- ask --
    ask_parser = subparsers.add_parser("ask", help="Ask a question over indexed documents")
    ask_parser.add_argument("question", help="Question text")
    ask_parser.add_argument(
        "--document",
        action="append",
        default=[],
        help="Restrict to this document id (repeatable)",
    )
    _add_visibility(ask_parser)

    return parser


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


async def _run(args: argparse.Namespace) -> int:
    # Deferred: importing main loads settings and configures logging.
    from docpipe.main import _build_all, initialize_components, settings

    components = _build_all(settings)
    try:
        await initialize_components(components)
        return await _HANDLERS[args.command](args, components)
    finally:
        await components["http_client"].aclose()


def main(argv: list[str] | None = None) -> None:
    """CLI entry point: parse arguments, run the handler, exit with its code.

    Pipeline errors are printed as ``[ErrorClass] message`` on stderr with
    exit code 1.
    """
    parser = _build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    try:
        exit_code = asyncio.run(_run(args))
    except DocpipeError as exc:
        print(f"[{type(exc).__name__}] {exc}", file=sys.stderr)
        exit_code = 1
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
