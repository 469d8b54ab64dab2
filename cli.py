#!/usr/bin/env python3
"""
cli.py — WoS Template Reconciliation Tool · CLI Mode

Usage:
  python cli.py template.csv savedrecs.txt
  python cli.py template.csv savedrecs1.txt savedrecs2.txt --format xlsx
  python cli.py template.csv savedrecs.txt --synthesize-unmatched --sort email-first
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
from pathlib import Path
from typing import List, Optional

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from core import (
    load_config, read_input_file, reconcile, format_status,
    build_results_csv, build_results_excel, build_audit_json,
    ReconciliationError, ReconciliationResult,
)
from identifier_matching import MATCH_KEYS, SORT_STRATEGIES, MatchPolicy

logger = logging.getLogger("wos_template.cli")

console = Console()

try:
    import openpyxl  # noqa: F401
    HAS_OPENPYXL = True
except ImportError:
    HAS_OPENPYXL = False


def cprint(msg: str, style: str = ""):
    console.print(msg, style=style) if style else console.print(msg)


def banner():
    cprint("\n[bold blue]╔══════════════════════════════════════════════════╗[/bold blue]")
    cprint("[bold blue]║  WoS Template Reconciliation Tool                ║[/bold blue]")
    cprint("[bold blue]║  Match records to a template roster              ║[/bold blue]")
    cprint("[bold blue]╚══════════════════════════════════════════════════╝[/bold blue]\n")


def print_preview(result: ReconciliationResult, limit: int = 20):
    if limit <= 0:
        return
    table = Table(title=f"Preview (first {min(limit, len(result.rows))} of {len(result.rows)} rows)")
    for col in result.columns:
        table.add_column(col, overflow="fold")
    for row in result.rows[:limit]:
        table.add_row(*[escape(row.get(c, "") or "") for c in result.columns])
    console.print(table)


# ─── Output ───────────────────────────────────────────────────────────────────

def write_outputs(
    result: ReconciliationResult,
    cfg: dict,
    policy: MatchPolicy,
    out_dir: str,
    fmt: str = "both",
    source_files: Optional[List[str]] = None,
) -> dict:
    """Write CSV / XLSX / audit JSON; returns the written paths by kind."""
    os.makedirs(out_dir, exist_ok=True)
    paths: dict = {}

    want_csv = fmt in ("csv", "both")
    want_xlsx = fmt in ("xlsx", "both")

    if want_xlsx and not HAS_OPENPYXL:
        cprint("  [yellow]openpyxl not available — writing CSV instead of Excel.[/yellow]")
        logger.warning("openpyxl missing, Excel export replaced by CSV.")
        want_csv, want_xlsx = True, False

    if want_csv:
        csv_path = os.path.join(out_dir, cfg.get("csv_filename", "populated_template.csv"))
        Path(csv_path).write_text(build_results_csv(result.rows, result.columns), encoding="utf-8")
        paths["csv"] = csv_path

    if want_xlsx:
        excel_path = os.path.join(out_dir, cfg.get("excel_filename", "populated_template.xlsx"))
        Path(excel_path).write_bytes(
            build_results_excel(result.rows, result.columns, cfg.get("excel_sheet", "Results"))
        )
        paths["xlsx"] = excel_path

    audit_path = os.path.join(out_dir, "audit.json")
    Path(audit_path).write_text(
        build_audit_json(result, policy, source_files), encoding="utf-8"
    )
    paths["audit"] = audit_path
    return paths


# ─── Run ──────────────────────────────────────────────────────────────────────

def run_reconcile(
    template_path: str,
    data_paths: List[str],
    cfg: dict,
    out_dir: str,
    fmt: str = "both",
    preview: Optional[int] = None,
) -> dict:
    """
    Read the files in the order given, reconcile, write outputs.

    ReconciliationError (including FileReadError) propagates to the caller.
    """
    policy = MatchPolicy.from_config(cfg)

    template = read_input_file(template_path)
    data_files = [read_input_file(p) for p in data_paths]

    result = reconcile(template, data_files, policy)
    paths = write_outputs(
        result, cfg, policy, out_dir, fmt,
        source_files=[template.name] + [f.name for f in data_files],
    )

    print_preview(result, cfg.get("preview_rows", 20) if preview is None else preview)

    cprint(f"\n[bold green]✅ {format_status(result)}[/bold green]")
    cprint(f"  Template rows        : {result.template_rows}")
    cprint(f"  Data rows            : {result.data_rows}")
    cprint(f"  Matched data rows    : {result.matched}")
    cprint(f"  Unmatched data rows  : {result.orphaned}")
    cprint(f"  Rows without UT      : {result.skipped}")
    if result.skipped_files:
        cprint(f"  [yellow]Empty files skipped  : {', '.join(result.skipped_files)}[/yellow]")
    for kind, path in paths.items():
        cprint(f"  {kind.upper():<20} : {path}")

    return {
        "status": format_status(result),
        "output_rows": len(result.rows),
        "summary": result.summary(),
        **{f"{kind}_path": path for kind, path in paths.items()},
    }


# ─── Entry Point ─────────────────────────────────────────────────────────────

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="WoS Template Reconciliation · attach WoS records to a template roster",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Default policy (template rows first, unmatched records dropped):
  python cli.py template.csv savedrecs.txt

  # Several WoS exports, Excel only:
  python cli.py template.csv part1.txt part2.txt --format xlsx

  # Earlier behaviour: keep unmatched records as new rows, sort by AuthorID:
  python cli.py template.csv savedrecs.txt --synthesize-unmatched --sort authorId-first
        """
    )
    parser.add_argument("template",      help="Template roster (CSV or tab-delimited)")
    parser.add_argument("data",          nargs="+",
                        help="One or more WoS data files (CSV or tab-delimited)")
    parser.add_argument("--config",      default="config.json",
                        help="JSON config file")
    parser.add_argument("--out",         default=None,
                        help="Output directory (default: config output_dir)")
    parser.add_argument("--format",      choices=["csv", "xlsx", "both"], default="both",
                        help="Export format (default: both)")
    parser.add_argument("--synthesize-unmatched", action=argparse.BooleanOptionalAction, default=None,
                        help="Create rows for records that match no template row (overrides config)")
    parser.add_argument("--match-keys",  choices=list(MATCH_KEYS), default=None,
                        help="Identifiers used for matching (default: both)")
    parser.add_argument("--sort",        choices=list(SORT_STRATEGIES), default=None,
                        help="Output ordering (default: original-first)")
    parser.add_argument("--preview",     type=int, default=None,
                        help="Rows to print as a preview table (0 to disable)")
    return parser


def main(argv: Optional[List[str]] = None):
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%H:%M:%S",
    )
    banner()

    cfg = load_config(args.config)
    if args.synthesize_unmatched is not None:
        cfg["synthesize_unmatched"] = args.synthesize_unmatched
    if args.match_keys:
        cfg["match_keys"] = args.match_keys
    if args.sort:
        cfg["sort_strategy"] = args.sort
    out_dir = args.out or cfg.get("output_dir", "output")

    try:
        run_reconcile(args.template, args.data, cfg, out_dir, args.format, args.preview)
    except ReconciliationError as exc:
        logger.error("Run aborted: %s", exc)
        cprint(f"[bold red]Error:[/bold red] {exc}")
        sys.exit(1)


if __name__ == "__main__":
    main()
