"""CLI entrypoint for directory-harvester."""

from __future__ import annotations

import argparse
import logging
import math
import signal
import threading
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass

from .config import RunConfig
from .errors import ConfigError, HarvesterError
from .logging_utils import configure_logging, get_logger
from .pipeline import run_pipeline, run_single_search
from .postcodes import PostcodeCatalog
from .validation import normalize_postcode


@dataclass(frozen=True)
class CommandDefaults:
    batch_size: int
    delay_ms: int
    output: str


COMMAND_DEFAULTS = {
    "full": CommandDefaults(10, 5000, "ca_members_all_australia.json"),
    "state": CommandDefaults(5, 3000, "ca_members_{region}.json"),
    "sample": CommandDefaults(2, 2000, "ca_members_sample.json"),
    "cities": CommandDefaults(3, 4000, "ca_members_major_cities.json"),
    # shares the full run's output so its progress checkpoint is found
    "resume": CommandDefaults(10, 5000, "ca_members_all_australia.json"),
    "search": CommandDefaults(1, 0, "ca_members_headed.json"),
}
SAMPLE_PER_REGION = 5

EXAMPLES = """
Examples:
  directory-harvester sample           # Test with sample postcodes
  directory-harvester cities           # Scrape major cities
  directory-harvester state VIC        # Scrape Victoria only
  directory-harvester resume 3500      # Resume from postcode 3500
  directory-harvester full             # Full Australia scrape
"""


def _run_options() -> argparse.ArgumentParser:
    options = argparse.ArgumentParser(add_help=False)
    options.add_argument("--batch-size", type=int, help="Save progress every N postcodes.")
    options.add_argument("--delay-ms", type=int, help="Delay between postcodes in milliseconds.")
    options.add_argument("--output", help="Output JSON path.")
    options.add_argument(
        "--checkpoint", help="Progress checkpoint path (default: progress_<output>)."
    )
    options.add_argument("--headless", action="store_true", help="Run Chrome without a window.")
    options.add_argument(
        "--screenshot-dir", help="Directory for diagnostic screenshots on failures."
    )
    options.add_argument("--no-progress", action="store_true", help="Disable tqdm progress bars.")
    options.add_argument("--verbose", action="store_true", help="Enable debug logging.")
    return options


def build_parser() -> argparse.ArgumentParser:
    """Build CLI parser."""
    parser = argparse.ArgumentParser(
        prog="directory-harvester",
        description="Find a CA directory scraper - resumable search across Australian postcodes.",
        epilog=EXAMPLES,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    commands = parser.add_subparsers(dest="command", metavar="<command>")
    run_options = _run_options()
    commands.add_parser(
        "full", parents=[run_options], help="Scrape all Australian postcodes (takes hours)."
    )
    state = commands.add_parser(
        "state", parents=[run_options], help="Scrape one state or territory."
    )
    state.add_argument("region", metavar="STATE", help="NSW, VIC, QLD, SA, WA, TAS, NT or ACT.")
    commands.add_parser(
        "sample", parents=[run_options], help="Scrape 5 sample postcodes from each state."
    )
    commands.add_parser("cities", parents=[run_options], help="Scrape major city postcodes only.")
    resume = commands.add_parser(
        "resume", parents=[run_options], help="Resume a full scrape from a postcode."
    )
    resume.add_argument("postcode", metavar="POSTCODE")
    search = commands.add_parser(
        "search", parents=[run_options], help="Search a single postcode."
    )
    search.add_argument("postcode", metavar="POSTCODE")
    commands.add_parser("stats", help="Show postcode statistics.")
    commands.add_parser("help", help="Show this help message.")
    return parser


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse CLI input; no command means help."""
    args = build_parser().parse_args(argv)
    if args.command is None:
        args.command = "help"
    return args


def namespace_to_config(args: argparse.Namespace) -> RunConfig:
    """Convert CLI args to validated RunConfig, filling per-command defaults."""
    defaults = COMMAND_DEFAULTS[args.command]
    output = args.output or defaults.output.format(
        region=str(getattr(args, "region", "")).lower()
    )
    return RunConfig(
        output=output,
        batch_size=args.batch_size if args.batch_size is not None else defaults.batch_size,
        delay_between_units_ms=args.delay_ms if args.delay_ms is not None else defaults.delay_ms,
        resume_from=args.postcode if args.command == "resume" else None,
        checkpoint_path=args.checkpoint,
        headless=args.headless,
        screenshot_dir=args.screenshot_dir,
        show_progress=not args.no_progress,
    )


def select_postcodes(args: argparse.Namespace, catalog: PostcodeCatalog) -> list[str]:
    """Return the ordered postcodes a command should process."""
    if args.command in {"full", "resume"}:
        return catalog.all_units()
    if args.command == "state":
        codes = catalog.units_for_region(args.region)
        if not codes:
            raise ConfigError(f"No postcodes found for state: {args.region}")
        return codes
    if args.command == "sample":
        return catalog.sample_units(SAMPLE_PER_REGION)
    if args.command == "cities":
        return catalog.major_city_units()
    raise ConfigError(f"Command {args.command!r} does not process postcodes.")


def format_statistics(catalog: PostcodeCatalog) -> str:
    stats = catalog.statistics()
    lines = ["Australian Postcode Statistics:"]
    lines.extend(f"   {region}: {count} postcodes" for region, count in stats.items())
    total = stats["TOTAL"]
    lines.append("")
    lines.append(
        f"Estimated scrape time: {math.ceil(total * 10 / 60)} - "
        f"{math.ceil(total * 20 / 60)} minutes"
    )
    lines.append(f"Estimated storage: {math.ceil(total * 0.5)} - {math.ceil(total * 2)} MB")
    return "\n".join(lines)


@contextmanager
def interrupt_stops(stop_event: threading.Event, logger: logging.Logger) -> Iterator[None]:
    """First Ctrl+C stops after the current postcode; a second one aborts."""

    def handle(_signum: int, _frame: object) -> None:
        if stop_event.is_set():
            raise KeyboardInterrupt
        logger.warning(
            "Interrupt received; stopping after the current postcode (Ctrl+C again to abort)"
        )
        stop_event.set()

    previous = signal.signal(signal.SIGINT, handle)
    try:
        yield
    finally:
        signal.signal(signal.SIGINT, previous)


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entrypoint."""
    args = parse_args(argv)
    configure_logging(getattr(args, "verbose", False))
    logger = get_logger()
    catalog = PostcodeCatalog()

    if args.command == "help":
        build_parser().print_help()
        print()
        print(format_statistics(catalog))
        return 0
    if args.command == "stats":
        print(format_statistics(catalog))
        return 0

    try:
        config = namespace_to_config(args)
        if args.command == "search":
            postcode = normalize_postcode(args.postcode)
        else:
            codes = select_postcodes(args, catalog)
    except ConfigError as exc:
        logger.error("Invalid configuration: %s", exc)
        return 2

    stop_event = threading.Event()
    try:
        with interrupt_stops(stop_event, logger):
            if args.command == "search":
                result = run_single_search(
                    config, postcode, region=catalog.region_of(postcode), logger=logger
                )
                if not result.succeeded:
                    logger.error("Search for %s failed: %s", postcode, result.error)
                    return 1
                logger.info("Found %d members for %s", result.record_count, postcode)
                return 0
            logger.info("Running %s scrape over %d postcodes", args.command, len(codes))
            aggregate = run_pipeline(
                config, catalog.to_units(codes), logger=logger, stop_event=stop_event
            )
    except HarvesterError as exc:
        logger.error("Scraping failed: %s", exc)
        return 1

    summary = aggregate["summary"]
    logger.info(
        "Postcodes processed: %d (%d failed), members found: %d",
        summary["total_postcodes_processed"],
        summary["failed_postcodes"],
        summary["total_members_found"],
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
