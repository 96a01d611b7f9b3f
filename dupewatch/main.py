import argparse
import json
import logging
import sys
from dataclasses import replace
from pathlib import Path
from typing import Optional

from .config import Settings, load_config
from .core import DupewatchApp
from .exceptions import DupewatchError
from .reporting import ReportGenerator

def setup_logging(verbose: bool, log_file: Optional[Path] = None):
    """Sets up logging to the console and, optionally, a file."""
    log_level = logging.DEBUG if verbose else logging.INFO

    handlers: list = [logging.StreamHandler(sys.stdout)]
    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file, encoding='utf-8'))

    logging.basicConfig(
        level=log_level,
        format="%(asctime)s [%(levelname)s] %(message)s",
        handlers=handlers,
    )

    # Silence chatty libraries
    logging.getLogger("watchdog").setLevel(logging.WARNING)

def parse_args(argv=None):
    p = argparse.ArgumentParser(description="dupewatch: index a tree, find duplicate files, reclaim space")

    p.add_argument("--config", type=Path, default=None, help="YAML configuration file")
    p.add_argument("--db", type=Path, default=None, help="SQLite database path (overrides config)")
    p.add_argument("--log-file", type=Path, default=None, help="Also write the log to this file")
    p.add_argument("--no-delete", action="store_true", help="Report duplicates but never delete anything")
    p.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")

    sub = p.add_subparsers(dest="command", required=True)

    scan = sub.add_parser("scan", help="Scan directories once, then resolve duplicates")
    scan.add_argument("paths", type=Path, nargs="*", help="Roots to scan (default: monitored paths)")
    scan.add_argument("--skip-sweep", action="store_true", help="Only index, do not resolve duplicates")

    watch = sub.add_parser("watch", help="Scan, then keep the index live and sweep on a schedule")
    watch.add_argument("paths", type=Path, nargs="*", help="Roots to watch (default: monitored paths)")

    sub.add_parser("sweep", help="Resolve duplicates already in the index")
    sub.add_parser("stats", help="Print index and duplicate statistics as JSON")

    report = sub.add_parser("report", help="Write a CSV of duplicate groups without deleting")
    report.add_argument("output", type=Path, help="Output CSV path")

    return p.parse_args(argv)

def build_settings(args) -> Settings:
    settings = load_config(args.config) if args.config else Settings()
    if args.no_delete:
        settings.duplicate_detection = replace(settings.duplicate_detection, auto_delete=False)
    paths = getattr(args, "paths", None)
    if paths:
        settings.monitored_paths = [str(p.resolve()) for p in paths]
    return settings

def run_scan(app: DupewatchApp, skip_sweep: bool) -> int:
    job = app.scan_all().result()
    app.pipeline.writer.drain()
    logging.info(
        f"Scan finished: {job.processed_files} processed, {job.skipped_files} skipped"
        + (f", error: {job.error}" if job.error else "")
    )
    if not skip_sweep:
        result = app.force_duplicate_detection()
        logging.info(f"Deleted {result.deleted_count} duplicates, freed {result.space_freed} bytes")
    return 1 if job.error else 0

def run_watch(app: DupewatchApp) -> int:
    app.scan_all().result()
    threads = app.watch()
    logging.info(f"Watching {len(threads)} roots. Press Ctrl-C to stop.")
    for t in threads:
        t.join()
    return 0

def main(argv=None):
    args = parse_args(argv)
    setup_logging(args.verbose, args.log_file)

    try:
        settings = build_settings(args)
    except DupewatchError as e:
        logging.error(str(e))
        sys.exit(2)

    if args.command in ("scan", "watch") and not settings.monitored_paths:
        logging.error("No paths given and no monitored_paths configured.")
        sys.exit(2)

    logging.info("=== dupewatch started ===")
    app = DupewatchApp(settings, db_path=args.db)
    exit_code = 0
    try:
        app.start(schedule_sweeps=args.command == "watch")
        if args.command == "scan":
            exit_code = run_scan(app, args.skip_sweep)
        elif args.command == "watch":
            exit_code = run_watch(app)
        elif args.command == "sweep":
            app.force_duplicate_detection()
        elif args.command == "stats":
            print(json.dumps(app.status(), indent=2, default=str))
        elif args.command == "report":
            ReportGenerator(app.store, app.resolver).generate_duplicate_report(args.output)
            logging.info(f"Report generation complete: {args.output}")
    except KeyboardInterrupt:
        logging.warning("Operation cancelled by user.")
        exit_code = 1
    except Exception:
        logging.exception("Fatal error.")
        exit_code = 1
    finally:
        app.stop()
    sys.exit(exit_code)

if __name__ == "__main__":
    main()
