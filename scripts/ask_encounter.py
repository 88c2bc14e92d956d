#!/usr/bin/env python3
"""
Encounter Q&A Script

Loads a visit transcript (and optionally its SOAP note), then answers
questions about it. Questions come from the command line, or from stdin
one per line when none are given.

Usage:
    python scripts/ask_encounter.py --transcript visit.txt [--note soap.txt]
        [--show-passages] [--no-hyde] [--verbose] ["What medications?" ...]
"""

import sys
import asyncio
import argparse
import logging
from pathlib import Path

from dotenv import load_dotenv

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))


def _read_text(path: str) -> str:
    try:
        return Path(path).read_text(encoding="utf-8")
    except OSError as e:
        print(f"[ChartQA] ERROR: Cannot read {path}: {e}")
        sys.exit(1)


def _print_reply(reply, show_passages: bool) -> None:
    print(f"\n[{reply.retrieval.mode.value}] {reply.text}\n")
    if not show_passages:
        return

    retrieval = reply.retrieval
    if retrieval.enhanced:
        print(f"[ChartQA] Hypothetical passage: {retrieval.hypothetical_answer}")
    for r in retrieval.results:
        preview = r.text.replace("\n", " ")[:120]
        print(f"[ChartQA]   #{r.chunk_index} {r.kind.value} score={r.relevance_score:.3f} {preview}")


async def run(args) -> int:
    from chartqa.common.config import load_config
    from chartqa.common.errors import ChartQAError
    from chartqa.retriever import EncounterAssistant

    config = load_config()
    if args.no_hyde:
        config.retrieval.hyde_enabled = False
    if args.local_embeddings:
        config.embedding.provider = "local"

    assistant = EncounterAssistant.from_config(config)
    status = assistant.orchestrator.embedding_status()
    print(f"[ChartQA] Embeddings: {status['provider']} | Query enhancement: "
          f"{'on' if status['hyde_enabled'] else 'off'}")

    transcript = _read_text(args.transcript)
    note = _read_text(args.note) if args.note else ""

    try:
        record = await assistant.start_session(transcript, note, session_id=args.session_id)
    except ChartQAError as e:
        print(f"[ChartQA] ERROR: {e}")
        return 1

    print(f"[ChartQA] Session {record.session_id}: {record.mode.value} mode, "
          f"{record.total_length} characters, {record.chunk_count} chunks")

    questions = args.question or (line.strip() for line in sys.stdin)
    errors = 0
    for question in questions:
        if not question:
            continue
        try:
            reply = await assistant.ask(record.session_id, question)
        except ChartQAError as e:
            print(f"[ChartQA] ERROR: {e}")
            errors += 1
            continue
        _print_reply(reply, args.show_passages)

    status = assistant.orchestrator.embedding_status()
    if status["use_local_embeddings"] and status["remote_configured"]:
        print(f"[ChartQA] WARNING: Remote embeddings disabled ({status['degrade_reason']})")

    assistant.end_session(record.session_id)
    return 1 if errors else 0


def main():
    parser = argparse.ArgumentParser(description="Ask questions about a clinical encounter")
    parser.add_argument("--transcript", required=True, help="Path to the visit transcript")
    parser.add_argument("--note", default=None, help="Path to the SOAP note")
    parser.add_argument("question", nargs="*", help="Questions to ask (default: read stdin, one per line)")
    parser.add_argument("--session-id", default=None, help="Session identifier (default: random)")
    parser.add_argument("--show-passages", action="store_true", help="Print retrieved passages")
    parser.add_argument("--no-hyde", action="store_true", help="Disable query enhancement")
    parser.add_argument("--local-embeddings", action="store_true", help="Never call a remote embedding API")
    parser.add_argument("--verbose", "-v", action="store_true", help="Log retrieval details")
    args = parser.parse_args()

    load_dotenv()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    sys.exit(asyncio.run(run(args)))


if __name__ == "__main__":
    main()
