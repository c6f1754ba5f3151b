"""
Recall Command Line Interface

Provides command-line access to the reconciliation engine.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Optional

from recall.core.config import RecallConfig, get_config
from recall.core.logging import setup_logging
from recall.engine import JOB_EXTRACT, create_engine
from recall.identity.attribution import score
from recall.identity.dedup import DuplicateDetector
from recall.identity.grouping import group_records
from recall.identity.query import QueryResolver
from recall.identity.router import ConfidenceRouter
from recall.identity.store import RecordStore
from recall.identity.types import Record
from recall.oracles.llm import MockLLMClient, create_llm_client


def main(argv: Optional[list[str]] = None) -> int:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="recall",
        description="Recall - identity reconciliation for conversation transcripts",
    )
    parser.add_argument("--log-level", default="WARNING", help="Logging level")
    parser.add_argument("--config", type=Path, help="JSON config file")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Attribute command
    attribute_parser = subparsers.add_parser("attribute", help="Classify who a fragment is about")
    attribute_parser.add_argument("text", help="Transcript fragment")

    # Dedup command
    dedup_parser = subparsers.add_parser("dedup", help="Run the local duplicate pass")
    dedup_parser.add_argument("records", type=Path, help="JSON file of records")
    dedup_parser.add_argument("--apply", action="store_true", help="Apply auto-apply merges")
    dedup_parser.add_argument("--output", type=Path, help="Write merged records here")

    # Query command
    query_parser = subparsers.add_parser("query", help="Resolve a description to a record")
    query_parser.add_argument("records", type=Path, help="JSON file of records")
    query_parser.add_argument("description", nargs="+", help="Free-text description")

    # Group command
    group_parser = subparsers.add_parser("group", help="Group records by company and category")
    group_parser.add_argument("records", type=Path, help="JSON file of records")

    # Simulate command
    simulate_parser = subparsers.add_parser("simulate", help="Replay a transcript script")
    simulate_parser.add_argument("script", type=Path, help="Text file, one final fragment per line")
    simulate_parser.add_argument("--records", type=Path, help="JSON file of earlier records")
    simulate_parser.add_argument("--self-name", action="append", default=[], help="Operator name")
    simulate_parser.add_argument("--mock", action="store_true", help="Use the mock model")

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    setup_logging(args.log_level, "console")
    config = RecallConfig.from_file(args.config) if args.config else get_config()

    try:
        if args.command == "attribute":
            return cmd_attribute(args.text)
        elif args.command == "dedup":
            return cmd_dedup(config, args.records, args.apply, args.output)
        elif args.command == "query":
            return cmd_query(config, args.records, " ".join(args.description))
        elif args.command == "group":
            return cmd_group(args.records)
        elif args.command == "simulate":
            return asyncio.run(cmd_simulate(config, args.script, args.records, args.self_name, args.mock))
    except (OSError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    return 0


def load_records(path: Path) -> list[Record]:
    """Read records from a JSON list or a {"records": [...]} object."""
    with open(path) as f:
        data = json.load(f)
    if isinstance(data, dict):
        data = data.get("records", [])
    if not isinstance(data, list):
        raise ValueError(f"{path} does not contain a list of records")
    return [Record.from_dict(item) for item in data]


def cmd_attribute(text: str) -> int:
    """Print the speaker label for a fragment."""
    result = score(text)
    print(f"{result.label.value} (self={result.self_score}, other={result.other_score})")
    return 0


def cmd_dedup(config: RecallConfig, records_path: Path, apply: bool, output: Optional[Path]) -> int:
    """Print routed local merge proposals, optionally applying them."""
    store = RecordStore()
    store.load_history(load_records(records_path))
    router = ConfidenceRouter(config.router)
    detector = DuplicateDetector(store, router, config=config.dedup)

    proposals = detector.propose_local()
    names = {r.id: r.name for r in store.snapshot().all_records()}
    if not proposals:
        print("No duplicates found.")
    for proposal in proposals:
        action = router.route(proposal.confidence)
        print(
            f"[{action.value}] {names.get(proposal.source_id)} -> {names.get(proposal.target_id)} "
            f"({proposal.confidence:.0f}): {proposal.reason}"
        )

    if apply:
        result = detector.apply(proposals)
        print(f"Merged {result.merged_count} record(s).")
        records = [r.to_dict() for r in store.snapshot().all_records()]
        rendered = json.dumps(records, indent=2)
        if output:
            output.write_text(rendered)
        else:
            print(rendered)
    return 0


def cmd_query(config: RecallConfig, records_path: Path, description: str) -> int:
    """Print the score table and the resolved match."""
    records = load_records(records_path)
    resolver = QueryResolver(config.query)
    resolver.append(description)
    resolution = resolver.resolve(records)

    for scored in resolution.scores:
        print(f"{scored.score:>4}  {scored.record.name}  [{', '.join(scored.reasons)}]")
    if resolution.match:
        print(f"Match: {resolution.match.record.name}")
        return 0
    print("No match.")
    return 0


def cmd_group(records_path: Path) -> int:
    """Print deterministic record groups."""
    records = load_records(records_path)
    names = {r.id: r.name for r in records}
    groups = group_records(records)
    if not groups:
        print("No groups found.")
    for group in groups:
        members = ", ".join(names[record_id] or record_id for record_id in group.record_ids)
        print(f"[{group.type.value}] {group.label} ({group.count}): {members}")
    return 0


async def cmd_simulate(
    config: RecallConfig,
    script: Path,
    records_path: Optional[Path],
    self_names: list[str],
    mock: bool,
) -> int:
    """Feed a script through an engine and print the resulting records."""
    updates = {"ingestion": config.ingestion.model_copy(update={"extraction_debounce_seconds": 0.0})}
    if self_names:
        updates["aggregator"] = config.aggregator.model_copy(update={"self_names": self_names})
    config = config.model_copy(update=updates)

    api_key = config.get_oracle_api_key()
    if mock or config.oracle.provider == "mock" or not api_key:
        client = MockLLMClient()
    else:
        client = create_llm_client(config.oracle, api_key)
    await client.initialize()

    engine = create_engine(config, client, user_id="simulate")
    try:
        if records_path:
            await engine.load_history(load_records(records_path))

        engine.start_session()
        for line in script.read_text().splitlines():
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            outcome = await engine.ingest_transcript(line, is_final=True)
            if outcome.query and outcome.query.match:
                print(f"? {outcome.query.match.record.name}")
            await engine.scheduler.run_now(JOB_EXTRACT)
        await engine.end_session()

        records = [r.to_dict() for r in engine.snapshot().all_records()]
        print(json.dumps(records, indent=2))
        for suggestion in engine.list_suggestions():
            print(f"suggestion: {json.dumps(suggestion.to_dict())}")
    finally:
        await engine.shutdown()
        await client.shutdown()
    return 0


if __name__ == "__main__":
    sys.exit(main())
