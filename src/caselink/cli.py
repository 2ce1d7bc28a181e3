import argparse
import contextlib
import shutil
import signal
import sys
from pathlib import Path
from typing import Iterable, Iterator, Optional

from .checkpoint import JsonCheckpointStore
from .config import TARGET_CHOICES, RepairConfig
from .dataset import load_dataset, save_dataset, write_report
from .driver import BatchDriver
from .errors import CaselinkError, ConfigError
from .fetching import HttpClient
from .gatherers import GATHERERS, build_gatherers
from .logger import VERBOSITY_LEVELS, RunLogger
from .models import utc_now_iso
from .processors import PROCESSORS, LinkRepairProcessor
from .sanitize import sanitize_records
from .validation import Validator

EXIT_CONFIG = 2
EXIT_INTERRUPTED = 130

COMMAND_HELP = {
    "repair-links": "Replace dead or blocked outbound links with validated candidates.",
    "repair-thumbnails": "Recover working preview images for missing or broken thumbnails.",
    "audit-links": "Check outbound links and report dead ones without changing the dataset.",
    "audit-thumbnails": "Check thumbnails and report broken or placeholder images without changing the dataset.",
    "sanitize": "Offline normalisation of links, thumbnails and tags (no network).",
}


def default_side_path(dataset: Path, command: str, kind: str) -> Path:
    return dataset.with_name(f"{dataset.stem}.{command}.{kind}.json")


def build_parser() -> argparse.ArgumentParser:
    epilog = (
        "Examples:\n"
        "  caselink repair-links ./data/campaigns.json --target missing_outbound --concurrency 8\n"
        "  caselink repair-links ./data/campaigns.json --gatherers direct,video --min-score 0.35\n"
        "  caselink repair-thumbnails ./data/campaigns.json --target bad_thumbnail --max-items 500\n"
        "  caselink audit-links ./data/campaigns.json --report ./dead-links.json\n"
        "  caselink audit-thumbnails ./data/campaigns.json --concurrency 16\n"
        "  caselink sanitize ./data/campaigns.json\n"
        "  MAX_ITEMS=200 RESUME=0 python -m caselink repair-links ./data/campaigns.json\n"
        "  python run.py repair-links ./data/campaigns.json --force-restart\n"
        "\n"
        "Environment:\n"
        "  CONCURRENCY, MAX_ITEMS/MAX_FIXES, REQUEST_TIMEOUT_MS, MIN_SCORE, MIN_VIDEO_SCORE, MIN_WEB_SCORE,\n"
        "  RESUME, FORCE_RESTART, SAVE_EVERY/CHECKPOINT_EVERY, START_INDEX, START_YEAR, END_YEAR,\n"
        "  LOOKAHEAD, ALLOW_ANY_DOMAIN, PREFERRED_HOSTS, GATHERERS, TARGET, VERBOSITY, LOG_MUTE\n"
    )

    class CleanHelpFormatter(argparse.RawDescriptionHelpFormatter):
        def __init__(self, prog: str) -> None:
            width = shutil.get_terminal_size((120, 20)).columns
            super().__init__(prog, width=width, max_help_position=32)

    ap = argparse.ArgumentParser(
        prog="caselink",
        description="Caselink: resumable link and thumbnail repair for a campaign case-study dataset.",
        formatter_class=CleanHelpFormatter,
        epilog=epilog,
    )
    sub = ap.add_subparsers(dest="command", required=True, metavar="COMMAND")
    for name, help_text in COMMAND_HELP.items():
        p = sub.add_parser(name, help=help_text, description=help_text, formatter_class=CleanHelpFormatter)
        p.add_argument("dataset", help="Dataset JSON file (an array of campaign records).")
        p.add_argument("--report", metavar="PATH", help="Report JSON path (default: next to the dataset).")
        p.add_argument("--log-file", metavar="PATH", help="Append log lines to this file as well.")
        p.add_argument(
            "--verbosity",
            choices=list(VERBOSITY_LEVELS),
            help="Console/log detail (default: VERBOSITY or info).",
        )
        if name == "sanitize":
            continue
        p.add_argument("--progress", metavar="PATH", help="Checkpoint JSON path (default: next to the dataset).")
        p.add_argument("--concurrency", type=int, help="Worker pool size (default: CONCURRENCY or 8).")
        p.add_argument("--max-items", type=int, help="Records to walk in this run (default: MAX_ITEMS or 1000).")
        p.add_argument("--min-score", type=float, help="Global acceptance floor (default: MIN_SCORE or 0.30).")
        p.add_argument("--target", choices=list(TARGET_CHOICES), help="Record filter (default: TARGET or all).")
        p.add_argument(
            "--gatherers",
            help=f"Comma-separated candidate sources for repair-links ({', '.join(GATHERERS)}).",
        )
        p.add_argument("--force-restart", action="store_true", help="Ignore and reset any saved checkpoint.")
        p.add_argument("--no-resume", action="store_true", help="Start from START_INDEX without reading the checkpoint.")
    return ap


def apply_overrides(config: RepairConfig, args: argparse.Namespace) -> RepairConfig:
    if getattr(args, "concurrency", None) is not None:
        config.concurrency = args.concurrency
    if getattr(args, "max_items", None) is not None:
        config.max_items = args.max_items
    if getattr(args, "min_score", None) is not None:
        config.min_score = args.min_score
    if getattr(args, "target", None):
        config.target = args.target
    if getattr(args, "gatherers", None):
        config.gatherers = tuple(part.strip().lower() for part in args.gatherers.split(",") if part.strip())
    if getattr(args, "force_restart", False):
        config.force_restart = True
    if getattr(args, "no_resume", False):
        config.resume = False
    if args.verbosity:
        config.verbosity = args.verbosity
    config.validate()
    return config


@contextlib.contextmanager
def stop_signals(driver: BatchDriver) -> Iterator[None]:
    """Turn SIGINT/SIGTERM into a graceful driver stop for the duration."""

    def handler(signum, frame) -> None:
        driver.logger.log(f"[signal] {signal.Signals(signum).name}: finishing in-flight records")
        driver.request_stop()

    previous = {}
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            previous[sig] = signal.signal(sig, handler)
        except ValueError:
            # Not the main thread; leave handlers alone.
            pass
    try:
        yield
    finally:
        for sig, old in previous.items():
            signal.signal(sig, old)


def run_sanitize(dataset: Path, report_path: Optional[Path], logger: RunLogger) -> int:
    records = load_dataset(dataset)
    counts = sanitize_records(records)
    save_dataset(dataset, records)
    summary = {"generatedAt": utc_now_iso(), "command": "sanitize", **counts}
    if report_path:
        write_report(report_path, summary)
    logger.summary(summary)
    return 0


def build_driver(command: str, dataset: Path, args: argparse.Namespace, config: RepairConfig, logger: RunLogger) -> BatchDriver:
    http = HttpClient(timeout=config.request_timeout)
    validator = Validator(
        http,
        preferred_hosts=config.preferred_hosts,
        allow_any_domain=config.allow_any_domain,
        lookahead=config.lookahead,
        logger=logger,
    )
    gatherers = []
    if command == LinkRepairProcessor.command:
        gatherers = build_gatherers(config.gatherers, http, logger, config.preferred_hosts)
    processor = PROCESSORS[command](config, validator, gatherers, logger)
    progress = Path(args.progress) if args.progress else default_side_path(dataset, command, "progress")
    report = Path(args.report) if args.report else default_side_path(dataset, command, "report")
    return BatchDriver(dataset, processor, JsonCheckpointStore(progress), config, logger, report_path=report)


def main(argv: Optional[Iterable[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    dataset = Path(args.dataset)
    try:
        config = apply_overrides(RepairConfig.from_env(), args)
    except ConfigError as exc:
        print(f"caselink: configuration error: {exc}", file=sys.stderr)
        return EXIT_CONFIG

    logger = RunLogger(
        log_path=Path(args.log_file) if args.log_file else None,
        verbosity=config.verbosity,
        mute=config.mute,
    )
    try:
        if args.command == "sanitize":
            report = Path(args.report) if args.report else None
            return run_sanitize(dataset, report, logger)
        driver = build_driver(args.command, dataset, args, config, logger)
        with stop_signals(driver):
            driver.run()
    except CaselinkError as exc:
        print(f"caselink: {exc}", file=sys.stderr)
        return 1
    return EXIT_INTERRUPTED if driver.stopped else 0
