#!/usr/bin/env python3
"""
Run one research query from the command line.

Usage:
  reveries "What is the capital of France?"
  reveries "Compare React vs Vue.js" --model grok-4 --effort high \
      --format markdown --output report.md

Provider credentials come from the environment (or a ``.env`` file):
GEMINI_API_KEY, XAI_API_KEY, AZURE_OPENAI_API_KEY + AZURE_OPENAI_ENDPOINT.
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path
from typing import List, Optional

import structlog
from dotenv import load_dotenv

from reveries.core.config import VALID_EFFORTS, EngineSettings
from reveries.core.errors import ResearchError, to_user_message
from reveries.logging_config import configure_logging
from reveries.services.export_service import ExportFormat
from reveries.services.research_orchestrator import ResearchRouter

logger = structlog.get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="reveries", description="Conversational research engine")
    parser.add_argument("query", help="Research question")
    parser.add_argument("--model", default=None, help="gemini, grok or azure_o3 (or a model id)")
    parser.add_argument("--effort", choices=VALID_EFFORTS, default=None)
    parser.add_argument("--concurrency", type=int, default=None, help="Override the provider concurrency limit")
    parser.add_argument(
        "--format",
        choices=[f.value for f in ExportFormat],
        default=None,
        help="Export the session graph in this format",
    )
    parser.add_argument("--output", help="Write the export here instead of stdout")
    parser.add_argument("--quiet", action="store_true", help="Do not print progress messages")
    return parser


async def run(args: argparse.Namespace) -> int:
    settings = EngineSettings.from_env()
    if args.concurrency:
        settings.concurrency_limit = max(1, args.concurrency)
    router = ResearchRouter.from_settings(settings)

    on_progress = None if args.quiet else (lambda message: print(f"… {message}", file=sys.stderr))
    try:
        result = await router.route_research_query(args.query, args.model, args.effort, on_progress)
    except ResearchError as exc:
        print(f"Error: {to_user_message(exc)}", file=sys.stderr)
        return 1

    print(result.synthesis)
    if result.sources:
        print("\nSources:")
        for i, source in enumerate(result.sources, 1):
            print(f"  {i}. {source.title or source.url} <{source.url}>")
    print(
        f"\n[{result.query_type.value} | {result.adaptive_metadata.strategy} | "
        f"confidence {result.confidence_score:.2f}]",
        file=sys.stderr,
    )

    if args.format:
        export = await router.export(args.format, args.query)
        if args.output:
            Path(args.output).write_bytes(export.data)
            logger.info("Export written", path=args.output, size_bytes=export.size_bytes)
        else:
            print(export.data.decode("utf-8"))
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    load_dotenv()
    configure_logging()
    args = build_parser().parse_args(argv)
    try:
        return asyncio.run(run(args))
    except ResearchError as exc:
        # Construction-time failures, e.g. no provider configured
        print(f"Error: {to_user_message(exc)}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
