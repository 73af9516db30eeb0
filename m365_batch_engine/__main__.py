"""
M365 Batch Engine — command line entry point

Usage:
    python -m m365_batch_engine run --input sites.csv --column Url --processor http-probe
    python -m m365_batch_engine run --input sites.txt --mode batch --batch-size 20 -j 8
    python -m m365_batch_engine run --input sites.csv --profile site-health
    python -m m365_batch_engine history

Profile management:
    python -m m365_batch_engine profile add <name> --processor http-probe --max-concurrency 8
    python -m m365_batch_engine profile list
    python -m m365_batch_engine profile remove <name>
    python -m m365_batch_engine profile set-default <name>

Exit status: 0 when every item succeeded, 1 when any item failed or the run
was stopped early, 2 on usage or configuration errors.
"""

from __future__ import annotations

import argparse
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

from . import __version__
from .config import EXECUTION_MODES, OUTPUT_FORMATS, EngineConfig
from .core import BatchEngineError
from .inputs import read_work_items
from .processors import PROCESSORS
from .profiles import ProfileStore, RunProfile, resolve_profile
from .reporting import export_csv, export_json
from .runner import BatchRun, RunReport, new_run_id
from .safety.guardian import SafetyGuardian
from .store import RunStore

EXIT_OK = 0
EXIT_FAILURES = 1
EXIT_USAGE = 2


# ---------------------------------------------------------------------------
# Profile management sub-commands
# ---------------------------------------------------------------------------

def _cmd_profile(args: argparse.Namespace) -> int:
    """Handle `profile add|list|remove|set-default` sub-commands."""
    action = args.profile_action

    if action == "list":
        return _profile_list()
    elif action == "add":
        return _profile_add(args)
    elif action == "remove":
        return _profile_remove(args)
    elif action == "set-default":
        return _profile_set_default(args)
    print("Usage: python -m m365_batch_engine profile {add|list|remove|set-default}")
    return EXIT_USAGE


def _profile_list() -> int:
    store = ProfileStore.load()
    profiles = store.list_profiles()
    if not profiles:
        print("No profiles configured. Add one with:\n")
        print("  python -m m365_batch_engine profile add <name> --processor http-probe")
        return EXIT_OK

    print(f"\n  {'Name':<20s} {'Processor':<18s} {'Mode':<6s} {'Batch':>5s} {'Workers':>7s} {'Column':<16s} {'Default'}")
    print(f"  {'─'*20} {'─'*18} {'─'*6} {'─'*5} {'─'*7} {'─'*16} {'─'*7}")
    for p in profiles:
        default_marker = "  ✓" if p.name == store.default_profile else ""
        workers = str(p.max_concurrency) if p.max_concurrency else "cpu"
        print(f"  {p.name:<20s} {p.processor:<18s} {p.mode:<6s} {p.batch_size:>5d} "
              f"{workers:>7s} {p.input_column:<16s}{default_marker}")
    print()
    return EXIT_OK


def _profile_add(args: argparse.Namespace) -> int:
    store = ProfileStore.load()
    name = args.profile_name
    if store.get(name):
        print(f"  Profile '{name}' already exists. It will be overwritten.")

    profile = RunProfile(
        name=name,
        processor=args.processor,
        batch_size=args.batch_size,
        max_concurrency=args.max_concurrency,
        mode=args.mode,
        input_column=args.column or "",
        fail_fast=args.fail_fast,
        notes=args.notes or "",
    )
    try:
        profile.to_executor_config().validate()
    except ValueError as e:
        print(f"  ❌ Invalid profile: {e}")
        return EXIT_USAGE

    set_as_default = args.set_default or not store.profiles
    store.add(profile, set_default=set_as_default)
    print(f"  ✅ Profile '{name}' saved.")
    if set_as_default:
        print("  ✅ Set as default profile.")
    return EXIT_OK


def _profile_remove(args: argparse.Namespace) -> int:
    store = ProfileStore.load()
    if store.remove(args.profile_name):
        print(f"  ✅ Profile '{args.profile_name}' removed.")
        return EXIT_OK
    print(f"  ❌ Profile '{args.profile_name}' not found.")
    return EXIT_USAGE


def _profile_set_default(args: argparse.Namespace) -> int:
    store = ProfileStore.load()
    if store.set_default(args.profile_name):
        print(f"  ✅ Default profile set to '{args.profile_name}'.")
        return EXIT_OK
    print(f"  ❌ Profile '{args.profile_name}' not found.")
    return EXIT_USAGE


# ---------------------------------------------------------------------------
# History
# ---------------------------------------------------------------------------

def _cmd_history(args: argparse.Namespace) -> int:
    config = EngineConfig()
    config.output.base_dir = str(args.output_dir)
    store_path = config.output.store_path
    if not store_path.exists():
        print(f"No run history found at {store_path}")
        return EXIT_OK

    runs = RunStore(str(store_path)).get_run_history(limit=args.limit)
    print(f"\n  {'Run ID':<26s} {'Started':<20s} {'Status':<24s} {'OK':>6s} {'Failed':>6s} {'Skipped':>7s}")
    print(f"  {'─'*26} {'─'*20} {'─'*24} {'─'*6} {'─'*6} {'─'*7}")
    for run in runs:
        counts = run["metadata"].get("counts", {})
        started = datetime.fromtimestamp(run["started_at"]).strftime("%Y-%m-%d %H:%M:%S")
        print(f"  {run['run_id']:<26s} {started:<20s} {run['status']:<24s} "
              f"{counts.get('success', 0):>6d} {counts.get('failure', 0):>6d} {counts.get('skipped', 0):>7d}")
    print()
    return EXIT_OK


# ---------------------------------------------------------------------------
# Argument parsing
# ---------------------------------------------------------------------------

def _add_executor_args(p: argparse.ArgumentParser, with_defaults: bool):
    """Executor options shared by `run` and `profile add`."""
    p.add_argument(
        "--processor",
        choices=sorted(PROCESSORS),
        default="echo" if with_defaults else None,
        help="Processor applied to each work item",
    )
    p.add_argument(
        "--batch-size", "-b",
        type=int,
        default=50 if with_defaults else None,
        help="Items per batch in batch mode",
    )
    p.add_argument(
        "--max-concurrency", "-j",
        type=int,
        default=0 if with_defaults else None,
        help="Maximum concurrent workers (0 = one per CPU)",
    )
    p.add_argument(
        "--mode",
        choices=EXECUTION_MODES,
        default="item" if with_defaults else None,
        help="Dispatch one item per worker call, or one batch",
    )
    p.add_argument(
        "--column",
        type=str,
        default=None,
        help="CSV column holding the work item (default: first column)",
    )
    p.add_argument(
        "--fail-fast",
        action="store_true",
        default=False if with_defaults else None,
        help="Stop starting new work after the first failed item",
    )


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="m365_batch_engine",
        description="M365 Batch Engine — bounded parallel batch runs for tenant administration",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable INFO logging")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # --- run ---
    run_p = subparsers.add_parser("run", help="Process a list of work items")
    run_p.add_argument("--input", "-i", type=Path, required=True,
                       help="Work item file (.csv or one item per line)")
    _add_executor_args(run_p, with_defaults=False)
    run_p.add_argument("--profile", "-p", type=str, default=None,
                       help="Run profile to use (run 'profile list' to see available)")
    run_p.add_argument("--config", "-c", type=Path, help="Path to JSON configuration file")
    run_p.add_argument("--output-dir", "-o", type=Path, default=None,
                       help="Output directory for reports (default: ./m365_batch_output)")
    run_p.add_argument("--formats", nargs="+", choices=OUTPUT_FORMATS, default=None,
                       help="Output formats to generate")
    run_p.add_argument("--no-store", action="store_true", help="Do not record the run in the run store")

    # --- profile ---
    prof_parser = subparsers.add_parser("profile", help="Manage run profiles")
    prof_sub = prof_parser.add_subparsers(dest="profile_action", help="Profile actions")

    add_p = prof_sub.add_parser("add", help="Add or update a run profile")
    add_p.add_argument("profile_name", help="Short name for the profile (e.g. 'site-health')")
    _add_executor_args(add_p, with_defaults=True)
    add_p.add_argument("--notes", help="Optional admin notes")
    add_p.add_argument("--set-default", action="store_true", help="Set as default profile")

    prof_sub.add_parser("list", help="List all configured profiles")

    rm_p = prof_sub.add_parser("remove", help="Remove a profile")
    rm_p.add_argument("profile_name", help="Name of the profile to remove")

    sd_p = prof_sub.add_parser("set-default", help="Set the default profile")
    sd_p.add_argument("profile_name", help="Name of the profile to set as default")

    # --- history ---
    hist_p = subparsers.add_parser("history", help="Show recent runs")
    hist_p.add_argument("--output-dir", "-o", type=Path, default=Path("./m365_batch_output"))
    hist_p.add_argument("--limit", type=int, default=10)

    return parser.parse_args(argv)


# ---------------------------------------------------------------------------
# Run command
# ---------------------------------------------------------------------------

def build_config(args: argparse.Namespace) -> tuple[EngineConfig, Optional[RunProfile]]:
    """
    Build engine configuration. Precedence (lowest to highest):
    defaults < config file < profile < CLI flags.
    """
    if args.config:
        if not args.config.exists():
            raise ValueError(f"Config file not found: {args.config}")
        config = EngineConfig.from_file(str(args.config))
    else:
        config = EngineConfig()

    profile = None
    if args.profile:
        profile = resolve_profile(args.profile)
        if not profile:
            raise ValueError(f"Profile '{args.profile}' not found. Use 'profile list' to see available profiles.")
    elif not args.config:
        profile = resolve_profile()

    if profile:
        config.processor = profile.processor
        config.executor = profile.to_executor_config()
        if profile.input_column:
            config.input_column = profile.input_column

    if args.processor is not None:
        config.processor = args.processor
    if args.batch_size is not None:
        config.executor.batch_size = args.batch_size
    if args.max_concurrency is not None:
        config.executor.max_concurrency = args.max_concurrency
    if args.mode is not None:
        config.executor.mode = args.mode
    if args.fail_fast:
        config.executor.fail_fast = True
    if args.column:
        config.input_column = args.column
    if args.output_dir is not None:
        config.output.base_dir = str(args.output_dir)
    if args.formats:
        config.output.formats = list(args.formats)
    if args.no_store:
        config.store_enabled = False
    if args.verbose:
        config.verbose = True

    if config.processor not in PROCESSORS:
        raise ValueError(f"Unknown processor '{config.processor}'. Available: {', '.join(sorted(PROCESSORS))}")
    config.executor.validate()
    return config, profile


def build_processor(config: EngineConfig, guardian: SafetyGuardian) -> Any:
    cls = PROCESSORS[config.processor]
    return cls(config=config.http, guardian=guardian)


def generate_reports(report: RunReport, output_dir: Path, formats: list[str]) -> list[Path]:
    """Generate all requested report formats."""
    created = []

    if "json" in formats:
        path = export_json(report, output_dir)
        created.append(path)
        print(f"  📄 JSON:       {path}")

    if "csv" in formats:
        paths = export_csv(report, output_dir)
        created.extend(paths)
        for p in paths:
            print(f"  📊 CSV:        {p}")

    return created


def _print_summary(report: RunReport):
    counts = report.counts
    print(f"  Total:      {counts['total']}")
    print(f"  Succeeded:  {counts['success']}")
    print(f"  Failed:     {counts['failure']}")
    print(f"  Skipped:    {counts['skipped']}")
    print(f"  Duration:   {report.duration_seconds}s "
          f"(max concurrency {report.max_concurrency}, "
          f"peak {report.dispatcher_stats.get('max_active_observed', '?')})")
    if report.processor_stats:
        stats = ", ".join(f"{k}={v}" for k, v in report.processor_stats.items())
        print(f"  Processor:  {stats}")
    if report.signal_set:
        print(f"  ⚠  Run stopped early: {report.signal_reason}")

    failures = report.results.failures()
    for f in failures[:10]:
        print(f"      ❌ [{f.index}] {f.item}: {f.error.message}")
    if len(failures) > 10:
        print(f"      ... and {len(failures) - 10} more (see reports)")


def _cmd_run(args: argparse.Namespace) -> int:
    try:
        config, profile = build_config(args)
        items = read_work_items(args.input, config.input_column)
    except (ValueError, OSError) as e:
        print(f"\n❌ {e}")
        return EXIT_USAGE

    run_id = new_run_id()
    output_dir = config.output.run_dir

    print("=" * 70)
    print(f" M365 Batch Engine v{__version__}")
    print("=" * 70)
    profile_label = f" (profile: {profile.name})" if profile else ""
    print(f"\n📋 Run ID:     {run_id}")
    print(f"📂 Output:     {output_dir.resolve()}")
    print(f"⚙  Processor:  {config.processor}{profile_label}")
    print(f"📥 Input:      {args.input} ({len(items)} items)")

    store = None
    if config.store_enabled:
        store = RunStore(str(config.output.store_path))
        store.clear_signals(older_than_hours=config.signal_retention_hours)

    guardian = SafetyGuardian()
    processor = build_processor(config, guardian)

    print("\n" + "=" * 70)
    print(" PHASE 1: PROCESSING")
    print("=" * 70 + "\n")
    try:
        report = BatchRun(processor, config.executor, store=store, run_id=run_id).execute(items)
    except BatchEngineError as e:
        print(f"\n❌ Run aborted: {e}")
        return EXIT_FAILURES
    _print_summary(report)

    audit = guardian.get_audit_record()["safety_guardian"]
    if audit["violations_detected"]:
        print(f"  ⚠  Safety guardian blocked {audit['violations_detected']} request(s)")

    print("\n" + "=" * 70)
    print(" PHASE 2: REPORT GENERATION")
    print("=" * 70 + "\n")
    created = generate_reports(report, output_dir, config.output.formats)

    print("\n" + "=" * 70)
    print(f" RUN {report.status.upper()}")
    print("=" * 70)
    print(f"\n  Files: {len(created)} reports generated")
    print(f"  Path:  {output_dir.resolve()}")
    print()

    return EXIT_OK if report.status == "completed" else EXIT_FAILURES


def main(argv: Optional[list[str]] = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
    )

    if args.command == "profile":
        return _cmd_profile(args)
    if args.command == "history":
        return _cmd_history(args)
    if args.command == "run":
        return _cmd_run(args)

    print("Usage: python -m m365_batch_engine {run|profile|history} ...")
    return EXIT_USAGE


if __name__ == "__main__":
    sys.exit(main())
