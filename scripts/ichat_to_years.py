"""Entry point that extracts .ichat archives into per-year message files."""

from __future__ import annotations

import argparse
import logging
from pathlib import Path
import sys

from dotenv import load_dotenv

# Ensure project root is on sys.path when running as a script
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from ichat_archive.config import Settings
from ichat_archive.export import write_year_files
from ichat_archive.extractor import RunContext
from ichat_archive.walker import WalkStats, collect_messages, select_years

load_dotenv()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Extract .ichat archives into per-year message lists.")
    parser.add_argument("--start-year", type=int, help="First year to export (overrides START_YEAR)")
    parser.add_argument("--end-year", type=int, help="Last year to export (overrides END_YEAR)")
    parser.add_argument("--dry-run", action="store_true", help="Extract and report without writing files")
    return parser


def resolve_years(args: argparse.Namespace, settings: Settings) -> tuple[int | None, int | None]:
    start = args.start_year if args.start_year is not None else settings.start_year
    end = args.end_year if args.end_year is not None else settings.end_year
    if start is not None and end is None:
        end = start
    if start is not None and end is not None and end < start:
        raise SystemExit("--end-year must not be earlier than --start-year.")
    return start, end


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


def main() -> None:
    parser = build_parser()
    args = parser.parse_args()

    settings = Settings()
    configure_logging(settings.log_level)
    start, end = resolve_years(args, settings)

    if not settings.archive_root.is_dir():
        raise SystemExit(f"Archive root {settings.archive_root} is not a directory.")

    run = RunContext.from_settings(settings)
    stats = WalkStats()
    buckets = collect_messages(
        settings.archive_root, run, extension=settings.archive_extension, stats=stats
    )
    buckets = select_years(buckets, start, end)

    for year, messages in buckets.items():
        logging.info("%s: %s messages", year, len(messages))

    if args.dry_run:
        logging.info("[DRY-RUN] Would write %s year files to %s", len(buckets), settings.output_dir)
    else:
        write_year_files(buckets, settings.output_dir)

    logging.info(
        "Run complete: files=%s skipped=%s messages=%s years=%s copies=%s",
        stats.files,
        stats.skipped,
        stats.messages,
        len(buckets),
        run.attachments.ledger.count(),
    )


if __name__ == "__main__":
    main()
