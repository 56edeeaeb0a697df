#!/usr/bin/env python3
"""Classify a single comment with the configured model (useful after prompt tuning)."""

import argparse
import asyncio
from datetime import datetime, timezone

from leadwatch.models.schemas import RawItem
from leadwatch.pipeline.analyzer import Analyzer
from leadwatch.pipeline.hub import Hub
from leadwatch.pipeline.work_queue import WorkQueue
from leadwatch.utils.logging import setup_logging


async def main(text: str, source: str, author: str):
    setup_logging()

    item = RawItem(
        source=source,
        thread_id=0,
        item_id=1,
        author=author,
        text=text,
        date=datetime.now(timezone.utc),
    )

    # Same retry policy as the running pipeline
    analyzer = Analyzer(WorkQueue(1), Hub())
    try:
        classification, state = await analyzer.classify_with_retry(item)
    except Exception as e:
        print(f"Classification failed: {e}")
        return

    print(f"Intent:     {classification.intent.label} ({classification.intent.value})")
    print(f"Confidence: {classification.confidence:.0%}")
    print(f"Lead:       {classification.is_lead} ({classification.lead_score:.0%})")
    if classification.need_summary:
        print(f"Need:       {classification.need_summary}")
    if state.retries:
        print(f"Retries:    {state.retries} ({state.total_delay:.0f}s backoff)")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Classify one comment")
    parser.add_argument("text")
    parser.add_argument("--source", default="example_channel")
    parser.add_argument("--author", default="Anonymous")
    args = parser.parse_args()
    asyncio.run(main(args.text, args.source, args.author))
