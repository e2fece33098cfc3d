"""
Write the market data table as CSV, PDF or PNG.
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from marketdesk.dependencies import get_store
from marketdesk.exports import export_csv, export_pdf, export_png
from marketdesk.services import MarketDataService

logger = logging.getLogger(__name__)

WRITERS = {"csv": export_csv, "pdf": export_pdf, "png": export_png}


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Export market data")
    parser.add_argument(
        "-f",
        "--format",
        choices=sorted(WRITERS),
        default="csv",
        help="Output format",
    )
    parser.add_argument(
        "-o",
        "--output",
        type=Path,
        default=None,
        help="Output path (defaults to market_data.<format>)",
    )
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO)
    records = MarketDataService(get_store()).list_for_export()
    output = args.output or Path(f"market_data.{args.format}")
    output.write_bytes(WRITERS[args.format](records))
    logger.info("Wrote %d row(s) to %s", len(records), output)
    return 0


if __name__ == "__main__":
    sys.exit(main())
