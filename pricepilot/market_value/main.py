"""CLI entry point for market value lookups.

Usage:
    python -m pricepilot.market_value.main --make Honda --model Civic --year 2018

    # With optional filters, JSON output and 30-day history:
    python -m pricepilot.market_value.main --make Toyota --model Camry --year 2020 \
        --mileage 42000 --trim LE --zip 10001 \
        --output data/processed/camry_2020.json --history-days 30
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

from ..common.config import Config
from ..common.database import init_db
from ..common.logging import setup_logging
from .engine import AggregationEngine
from .price_history import PriceHistory
from .service import handle_request

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_NO_DATA = 1
EXIT_INVALID = 2


def _build_payload(args: argparse.Namespace) -> dict:
    payload = {"make": args.make, "model": args.model, "year": args.year}
    if args.mileage is not None:
        payload["mileage"] = args.mileage
    if args.trim:
        payload["trim"] = args.trim
    if args.zip:
        payload["zipCode"] = args.zip
    return payload


def _print_history(config: Config, args: argparse.Namespace) -> None:
    rows = PriceHistory(config).daily_values(args.make, args.model, args.year, days=args.history_days)
    if not rows:
        logger.info("No price history for %s %s %s", args.year, args.make, args.model)
        return
    print(f"\nDaily market value, last {args.history_days} days:")
    for row in rows:
        print(f"  {row['day']}  ${row['avg_value']:>10,.2f}  ({row['data_points']} lookups)")


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Vehicle market value lookup")
    parser.add_argument("--make", type=str, required=True, help="Vehicle make (e.g., 'Honda')")
    parser.add_argument("--model", type=str, required=True, help="Vehicle model (e.g., 'Civic')")
    parser.add_argument("--year", type=int, required=True, help="Model year")
    parser.add_argument("--mileage", type=int, help="Odometer reading")
    parser.add_argument("--trim", type=str, help="Trim level")
    parser.add_argument("--zip", type=str, help="Search zip code (default from config)")
    parser.add_argument("--output", type=str, help="Output JSON file path")
    parser.add_argument(
        "--history-days",
        type=int,
        default=0,
        help="Also print the daily value history for this many days",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )

    args = parser.parse_args(argv)
    setup_logging(args.log_level)

    config = Config.load()
    init_db(config)

    with AggregationEngine(config) as engine:
        status, body = handle_request(_build_payload(args), engine)

    print(json.dumps(body, ensure_ascii=False, indent=2))

    if args.output and status == 200:
        Path(args.output).parent.mkdir(parents=True, exist_ok=True)
        Path(args.output).write_text(
            json.dumps(body, ensure_ascii=False, indent=2),
            encoding="utf-8",
        )
        logger.info("Output written to %s", args.output)

    if args.history_days > 0 and status in (200, 404):
        _print_history(config, args)

    if status == 400:
        return EXIT_INVALID
    return EXIT_OK if status == 200 else EXIT_NO_DATA


if __name__ == "__main__":
    sys.exit(main())
