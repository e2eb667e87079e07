#!/usr/bin/env python3
"""
Evaluate a soil interpretation from the command line.

Loads a catalog directory (properties.json, evaluations.json,
interpretation_trees.json), evaluates one interpretation for one or many
subjects, and prints or writes the results as JSON.

Usage:
    # List interpretations in the bundled catalog
    python examples/evaluate_interpretation.py --list

    # Show the properties an interpretation reads
    python examples/evaluate_interpretation.py "Dwellings With Basements" --describe

    # Evaluate one subject
    python examples/evaluate_interpretation.py "Septic Tank Absorption Fields" \\
        --data '{"DEPTH TO WATER TABLE": 80, "DEPTH TO BEDROCK": 50}'

    # Evaluate a JSON list of subjects with 4 workers
    python examples/evaluate_interpretation.py "Dwellings With Basements" \\
        --records subjects.json --workers 4 --output ratings.json
"""

import argparse
import json
import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from src import config
from src.config import EngineConfig
from src.interpretation import InterpretationEngineError, create_engine
from src.utils.logging import setup_logging

logger = setup_logging("src", level="INFO")


def describe(engine, name):
    """Print the properties an interpretation reads."""
    print(f"{name}")
    print("-" * len(name))
    for prop in engine.get_required_properties(name):
        if prop.is_categorical:
            choices = ", ".join(prop.choices) or "(no known choices)"
            print(f"  {prop.name}: one of {choices}")
        else:
            print(f"  {prop.name} [{prop.unit_of_measure}]")


def load_records(args):
    if args.data is not None:
        return [json.loads(args.data)]
    with open(args.records, "r", encoding="utf-8") as f:
        records = json.load(f)
    if isinstance(records, dict):
        records = [records]
    return records


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Evaluate fuzzy soil interpretations",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("interpretation", nargs="?", help="Interpretation name")
    parser.add_argument(
        "--catalog-dir",
        type=Path,
        default=config.CATALOG_DIR,
        help="Catalog directory (default: data/catalog)",
    )
    parser.add_argument("--list", action="store_true", help="List interpretations and exit")
    parser.add_argument("--describe", action="store_true", help="Show required properties and exit")
    parser.add_argument("--data", help="Property data for one subject, as a JSON object")
    parser.add_argument("--records", type=Path, help="JSON file holding a list of property data objects")
    parser.add_argument("--workers", type=int, default=1, help="Worker threads for batches (default: 1)")
    parser.add_argument(
        "--missing-data",
        choices=config.MISSING_DATA_POLICIES,
        default=config.DEFAULT_MISSING_DATA,
        help="How missing property values are treated",
    )
    parser.add_argument("--output", type=Path, help="Write results to this JSON file")

    args = parser.parse_args()

    engine = create_engine(
        args.catalog_dir,
        config=EngineConfig(missing_data=args.missing_data, max_workers=max(args.workers, 1)),
    )

    if args.list:
        for name in engine.list_interpretations():
            print(name)
        return 0

    if not args.interpretation:
        parser.error("interpretation name is required unless --list is given")

    if args.describe:
        describe(engine, args.interpretation)
        return 0

    if args.data is None and args.records is None:
        parser.error("Must specify either --data or --records")

    records = load_records(args)
    results = engine.batch_evaluate(
        args.interpretation, records, show_progress=len(records) > 1
    )
    payload = [r.to_dict() for r in results]

    if args.output:
        args.output.parent.mkdir(parents=True, exist_ok=True)
        with open(args.output, "w", encoding="utf-8") as f:
            json.dump(payload, f, indent=2)
        logger.info(f"Wrote {len(payload)} results to {args.output}")
    else:
        print(json.dumps(payload[0] if len(payload) == 1 else payload, indent=2))

    rated = sum(1 for r in results if r.is_rated)
    logger.info(f"{rated}/{len(results)} subjects rated; cache {engine.get_stats()['cache']}")
    return 0


if __name__ == "__main__":
    try:
        sys.exit(main())
    except InterpretationEngineError as e:
        logger.error(f"{type(e).__name__}: {e}")
        sys.exit(1)
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        sys.exit(1)
