"""
DocMind - Retrieval Verification Script
========================================
Runs one hybrid search against the indexed documents and prints the
ranking with its per-branch scores and the relevance-gate verdict.
Useful to check that ingestion worked and to tune the retrieval
thresholds in ``.env``.

Usage:
    python -m docmind.scripts.verify_retrieval "退款需要多长时间？"
    python -m docmind.scripts.verify_retrieval "退款需要多长时间？" --document-id refund_policy --top-k 3
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path

_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
if str(_PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(_PROJECT_ROOT))

from docmind.src.core.bootstrap import build_retriever  # noqa: E402
from docmind.src.core.query_analysis import QueryAnalyzer, QueryExpander  # noqa: E402
from docmind.src.core.retrieval import RetrievalCandidate  # noqa: E402


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="verify_retrieval", description="DocMind — Inspect the hybrid search ranking for one question.")
    parser.add_argument("question", help="Question to search for.")
    parser.add_argument("--document-id", default=None, help="Restrict the search to one document.")
    parser.add_argument("--top-k", type=int, default=None, help="Passages to return (defaults to SEARCH_TOP_K).")
    return parser.parse_args(argv)


def _fmt(value: float | None) -> str:
    return "   -  " if value is None else f"{value:6.3f}"


def _print_candidate(rank: int, candidate: RetrievalCandidate) -> None:
    print(f"\n--- #{rank}  {candidate.chunk_id} ---")
    print(f"  combined: {_fmt(candidate.combined_score)}  keyword: {_fmt(candidate.keyword_score)}  vector: {_fmt(candidate.vector_score)}  distance: {_fmt(candidate.vector_distance)}  rerank: {_fmt(candidate.rerank_score)}")
    preview = candidate.content.replace("\n", " ")
    print(f"  {preview[:160]}{'…' if len(preview) > 160 else ''}")


async def _run(args: argparse.Namespace) -> int:
    retriever = build_retriever()
    profile = QueryAnalyzer.analyze(args.question)

    print()
    print("=" * 60)
    print(f"  Query    : {args.question}")
    print(f"  Weights  : keyword={profile.keyword_weight}, vector={profile.vector_weight}")
    print(f"  Expanded : {QueryExpander.expand(args.question)}")
    print(f"  Document : {args.document_id or '(all)'}")
    print("=" * 60)

    results = await retriever.hybrid_search(args.question, document_id=args.document_id, top_k=args.top_k)
    if not results:
        print("\nNo passages found. Run 'python -m docmind.scripts.setup_db' first?")
        return 1

    for rank, candidate in enumerate(results, 1):
        _print_candidate(rank, candidate)

    verdict = "RELEVANT — document-grounded answer" if retriever.is_relevant(args.question, results) else "NOT RELEVANT — general-knowledge answer"
    print("\n" + "=" * 60)
    print(f"  Gate: {verdict}")
    print("=" * 60)
    print()
    return 0


def main(argv: list[str] | None = None) -> None:
    sys.exit(asyncio.run(_run(_parse_args(argv))))


if __name__ == "__main__":
    main()
