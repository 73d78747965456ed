#!/usr/bin/env python3
"""
Marketing Intelligence CLI
==========================

Operator tool for the knowledge pipeline.

Usage:
    # Run a full crawl of every enabled source
    python intelligence_cli.py crawl --type regular

    # Build the monthly digest (defaults to the current month)
    python intelligence_cli.py report --month 2025-01

    # Load the core principles
    python intelligence_cli.py ingest-core

    # Preview what the assistant would retrieve
    python intelligence_cli.py retrieve "How should I use Reels?" --category instagram

    # Show store statistics
    python intelligence_cli.py stats

Environment Variables:
    SUPABASE_URL - Supabase project URL
    SUPABASE_SERVICE_KEY - Supabase service key
    OPENROUTER_API_KEY - For LLM distillation
    GOOGLE_API_KEY - For Gemini embeddings
    INSTAGRAM_ACCESS_TOKEN - For Instagram business discovery
    INSTAGRAM_BUSINESS_ACCOUNT_ID - For Instagram business discovery
"""

import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent))

from dotenv import load_dotenv
load_dotenv()

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger("intelligence_cli")


def require_supabase() -> bool:
    if not os.getenv("SUPABASE_URL") or not os.getenv("SUPABASE_SERVICE_KEY"):
        print("ERROR: SUPABASE_URL and SUPABASE_SERVICE_KEY required")
        return False
    return True


async def cmd_crawl(args):
    """Run a full crawl."""
    from src.intelligence import (
        CrawlerOrchestrator,
        CrawlType,
        EmbeddingClient,
        KnowledgeDistiller,
        LLMClient,
        SupabaseKnowledgeStore,
    )

    print(f"\n{'='*60}")
    print("FULL CRAWL")
    print(f"{'='*60}")
    print(f"Crawl type: {args.type}")
    print()

    if not require_supabase():
        return 1
    if not os.getenv("OPENROUTER_API_KEY"):
        print("ERROR: OPENROUTER_API_KEY not set")
        return 1

    orchestrator = CrawlerOrchestrator(
        store=SupabaseKnowledgeStore(),
        distiller=KnowledgeDistiller(LLMClient()),
        embedder=EmbeddingClient(),
    )
    summary = await orchestrator.run_full_crawl(CrawlType(args.type))

    print(f"\nResults:")
    print(f"  Batch: {summary.batch_id}")
    print(f"  Sources: {summary.sources_succeeded}/{summary.sources_processed} succeeded")
    print(f"  Articles found: {summary.articles_found}")
    print(f"  Articles distilled: {summary.articles_distilled}")
    print(f"  Knowledge added: {summary.knowledge_added}")
    print(f"  Duration: {summary.duration_seconds:.1f}s")

    if summary.errors:
        print(f"\nErrors:")
        for err in summary.errors:
            print(f"  - {err}")

    return 0


async def cmd_report(args):
    """Generate a monthly report."""
    from src.intelligence import (
        CrawlerOrchestrator,
        EmbeddingClient,
        KnowledgeDistiller,
        LLMClient,
        SupabaseKnowledgeStore,
    )
    from src.intelligence.base import utcnow

    month = args.month or utcnow().strftime("%Y-%m")

    print(f"\n{'='*60}")
    print("MONTHLY REPORT")
    print(f"{'='*60}")
    print(f"Month: {month}")

    if not require_supabase():
        return 1

    orchestrator = CrawlerOrchestrator(
        store=SupabaseKnowledgeStore(),
        distiller=KnowledgeDistiller(LLMClient()),
        embedder=EmbeddingClient(),
    )
    try:
        report = await orchestrator.generate_monthly_report(month)
    except ValueError as e:
        print(f"ERROR: {e}")
        return 1

    print(f"\nResults:")
    print(f"  New knowledge: {len(report['new_knowledge_ids'])}")
    for highlight in report["highlights"]:
        print(f"  [{highlight['importance'].upper()}] {highlight['title']}")

    return 0


async def cmd_ingest_core(args):
    """Load core knowledge."""
    from src.intelligence import EmbeddingClient, SupabaseKnowledgeStore, ingest_core_knowledge

    print(f"\n{'='*60}")
    print("CORE KNOWLEDGE INGESTION")
    print(f"{'='*60}")

    if not require_supabase():
        return 1

    result = await ingest_core_knowledge(SupabaseKnowledgeStore(), EmbeddingClient())

    print(f"\nResults:")
    print(f"  Inserted: {result['inserted']}")

    if result["errors"]:
        print(f"\nErrors:")
        for err in result["errors"]:
            print(f"  - {err}")

    return 0


async def cmd_retrieve(args):
    """Preview retrieval for a query."""
    from src.intelligence import EmbeddingClient, RAGEngine, SupabaseKnowledgeStore
    from src.intelligence.config import RAGConfig

    print(f"\n{'='*60}")
    print("KNOWLEDGE RETRIEVAL")
    print(f"{'='*60}")
    print(f"Query: {args.query}")
    print(f"Category: {args.category or 'all'}")

    if not require_supabase():
        return 1
    if not os.getenv("GOOGLE_API_KEY"):
        print("ERROR: GOOGLE_API_KEY not set")
        return 1

    engine = RAGEngine(
        store=SupabaseKnowledgeStore(),
        embedder=EmbeddingClient(),
        config=RAGConfig(max_results=args.limit),
    )
    context = await engine.retrieve(args.query, category=args.category)

    print(f"\nFound {len(context.core_knowledge)} core, {len(context.trends_knowledge)} trend:\n")
    for i, result in enumerate(context.retrieved_knowledge, 1):
        print(f"{i}. [{result.knowledge_type.value.upper()}] {result.title}")
        print(f"   similarity={result.similarity:.3f} priority={result.priority_score:.3f}")

    if context.formatted_context:
        print(f"\n{context.formatted_context}")

    return 0


async def cmd_stats(args):
    """Show knowledge store statistics."""
    from src.intelligence import SupabaseKnowledgeStore

    print(f"\n{'='*60}")
    print("KNOWLEDGE STORE STATISTICS")
    print(f"{'='*60}\n")

    if not require_supabase():
        return 1

    stats = await SupabaseKnowledgeStore().get_stats()

    print("Knowledge:")
    print(f"  {'core':20} {stats['knowledge_core']:5}")
    print(f"  {'trend':20} {stats['knowledge_trend']:5}")
    print(f"  {'without embedding':20} {stats['knowledge_without_embedding']:5}")
    print(f"\n  {'TOTAL':20} {stats['knowledge_total']:5}")

    print(f"\nSources:")
    print(f"  {'enabled':20} {stats['sources_enabled']:5}")
    print(f"\n  {'TOTAL':20} {stats['sources_total']:5}")

    return 0


def main():
    parser = argparse.ArgumentParser(
        description="Marketing Intelligence CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # Crawl command
    crawl_parser = subparsers.add_parser("crawl", help="Crawl all enabled sources")
    crawl_parser.add_argument(
        "--type",
        choices=["regular", "emergency", "manual"],
        default="regular",
        help="Crawl type recorded in the crawl logs",
    )

    # Report command
    report_parser = subparsers.add_parser("report", help="Generate a monthly report")
    report_parser.add_argument("--month", help="Month as YYYY-MM (default: current)")

    # Core ingestion command
    subparsers.add_parser("ingest-core", help="Load core knowledge")

    # Retrieve command
    retrieve_parser = subparsers.add_parser("retrieve", help="Preview retrieval for a query")
    retrieve_parser.add_argument("query", help="User query")
    retrieve_parser.add_argument("--category", help="Restrict to one category")
    retrieve_parser.add_argument("--limit", type=int, default=5, help="Max results")

    # Stats command
    subparsers.add_parser("stats", help="Show knowledge store statistics")

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        return 1

    commands = {
        "crawl": cmd_crawl,
        "report": cmd_report,
        "ingest-core": cmd_ingest_core,
        "retrieve": cmd_retrieve,
        "stats": cmd_stats,
    }
    return asyncio.run(commands[args.command](args))


if __name__ == "__main__":
    sys.exit(main() or 0)
