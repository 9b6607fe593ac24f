# src/main.py — v1
"""CLI entry point — serve, stages, versions commands.

Usage:
    reportflow serve [--host HOST] [--port PORT]
    reportflow stages
    reportflow versions <report_id> [--store-root DIR]
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from reportflow.version import __version__

logger = logging.getLogger(__name__)


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    _setup_logging(args.verbose)

    if not hasattr(args, "func"):
        parser.print_help()
        return 1

    try:
        return asyncio.run(args.func(args))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 130
    except Exception as exc:
        logger.error("Fatal error: %s", exc, exc_info=args.verbose)
        return 1


def _build_parser() -> argparse.ArgumentParser:
    """Build CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="reportflow",
        description=f"reportflow v{__version__} — Staged report pipeline",
    )
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true",
        help="Enable debug logging",
    )

    subparsers = parser.add_subparsers(dest="command")

    # --- serve ---
    p_serve = subparsers.add_parser(
        "serve", help="Run the HTTP API",
    )
    p_serve.add_argument(
        "--host", default=None,
        help="Bind address (default: API_HOST setting)",
    )
    p_serve.add_argument(
        "--port", type=int, default=None,
        help="Port (default: API_PORT setting)",
    )
    p_serve.set_defaults(func=_cmd_serve)

    # --- stages ---
    p_stages = subparsers.add_parser(
        "stages", help="List the stage catalogue and AI routing",
    )
    p_stages.set_defaults(func=_cmd_stages)

    # --- versions ---
    p_versions = subparsers.add_parser(
        "versions", help="Show the version ledger of a stored report",
    )
    p_versions.add_argument("report_id", help="Report id")
    p_versions.add_argument(
        "--store-root", type=Path, default=None,
        help="JSON store directory (default: STORE_ROOT setting)",
    )
    p_versions.set_defaults(func=_cmd_versions)

    return parser


async def _cmd_serve(args: argparse.Namespace) -> int:
    """Run the API under uvicorn until interrupted."""
    import uvicorn

    from reportflow.api.app import create_app
    from reportflow.config.settings import load_settings

    settings = load_settings()
    app = create_app(settings)
    config = uvicorn.Config(
        app,
        host=args.host or settings.api_host,
        port=args.port or settings.api_port,
        log_config=None,
    )
    logger.info("Serving on %s:%d", config.host, config.port)
    await uvicorn.Server(config).serve()
    return 0


async def _cmd_stages(args: argparse.Namespace) -> int:
    """Print the stage order with roles and resolved provider:model."""
    from reportflow.config.settings import load_settings
    from reportflow.llm.config import resolve_all
    from reportflow.pipeline.stage_graph import StageGraph

    graph = StageGraph()
    assignments = resolve_all(load_settings())

    print(f"\nStages ({len(graph.order)}):")
    for index, stage_id in enumerate(graph.order, start=1):
        assignment = assignments[stage_id]
        print(
            f"  {index:>2}. {stage_id:<12} {graph.role_of(stage_id):<11}"
            f" {assignment.key} ({assignment.source})"
        )
    return 0


async def _cmd_versions(args: argparse.Namespace) -> int:
    """Print the ledger of one report from the JSON store."""
    from reportflow.config.settings import load_settings
    from reportflow.storage.json_store import JsonReportStore

    settings = load_settings()
    store = JsonReportStore(store_root=args.store_root or settings.store_root)
    report = await store.get_report(args.report_id)
    if report is None:
        logger.error("Report not found: %s", args.report_id)
        return 1

    ledger = report.ledger
    print(f"\nReport {report.id} ({report.title or 'untitled'}), status {report.status}")
    if ledger.latest is None:
        print("  Latest:   none")
    else:
        print(f"  Latest:   {ledger.latest.pointer} v{ledger.latest.version}")
    print(f"  Snapshots ({len(ledger.snapshots)}):")
    for key, snap in sorted(ledger.snapshots.items(), key=lambda item: item[1].version):
        print(f"    v{snap.version:<3} {key:<16} {len(snap.content):>7} chars  {snap.timestamp:%Y-%m-%d %H:%M:%S}")
    print(f"  History ({len(ledger.history)}):")
    for entry in ledger.history:
        reason = f"  {entry.reason}" if entry.reason else ""
        print(f"    {entry.timestamp:%Y-%m-%d %H:%M:%S}  {entry.action:<8} {entry.stage_id} v{entry.version}{reason}")
    return 0


def _setup_logging(verbose: bool) -> None:
    """Configure logging for CLI usage."""
    from reportflow.logging.logger import setup_logging

    setup_logging(level="DEBUG" if verbose else "INFO", log_format="text")
    # Quiet noisy libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


if __name__ == "__main__":
    sys.exit(main())
