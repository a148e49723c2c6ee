# TB FinSight - Trial Balance Reporting & Ratio Analysis for SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Command-Line Interface (CLI) for TB FinSight.

This module wires together the main building blocks of TB FinSight:

- global configuration (database, taxonomy, ratios, mapping and reports),
- trial balance ingestion (CSV files and extraction results),
- mapping suggestions and mapping maintenance,
- aggregation engine (balance sheet, profit & loss, cash flow),
- ratio engine and user benchmarks,
- data quality checks,
- view helpers (tabular rendering and CSV export).

The CLI is intentionally thin: it does not implement accounting or
financial logic itself. It orchestrates the underlying modules based on
command-line arguments and the TOML configuration.


Typical session
---------------

    tb-finsight init
    tb-finsight import data/samples/trial_balance_sample.csv --date 2025-06-30
    tb-finsight suggest
    tb-finsight map auto
    tb-finsight report balance-sheet
    tb-finsight ratios

Most commands work on the latest period unless ``--period ID`` is given.
Reports compare against the previous period by default (``--compare ID``
to pick another one, ``--no-compare`` to disable).


Configuration
-------------

By default, the CLI reads ``tb_finsight_config.toml`` from the current
working directory; use ``--config PATH`` to point elsewhere. The
``[display].mode`` option selects console tables, CSV files or both; CSV
files are written under ``data/output`` unless ``--output`` is given.


Errors
------

Missing prerequisites (no period, no taxonomy, nothing mapped) are reported
as guidance, not failures. Database and extraction backend failures print a
short failure line and exit with status 1.
"""

import argparse
import json
import logging
from datetime import date
from pathlib import Path
from typing import Optional

import pandas as pd

from . import __version__
from .benchmarks import (
    export_benchmarks,
    find_definition_id,
    list_benchmarks,
    reset_benchmark,
    save_benchmark,
)
from .config import AppConfig, load_app_config
from .db import BENCHMARK_SOURCES, Store, init_database
from .engine import aggregate, cash_flow
from .errors import BackendError, NotReadyError
from .extraction import JsonExtractionBackend
from .ingestion import IngestionReport, ingest_extraction, ingest_trial_balance
from .mapping import Taxonomy, load_taxonomy, seed_line_items
from .mapping_service import (
    apply_mapping,
    apply_suggestions,
    list_mappings,
    remove_mapping,
    suggest_for_period,
)
from .periods import FinancialPeriod, list_periods, previous_period, require_period
from .quality import mapping_statistics, period_readiness, stock_reconciliation
from .ratios import (
    RATIO_CATEGORIES,
    compute_ratios,
    health_score,
    load_ratio_definitions,
    ratio_trends,
    seed_ratio_definitions,
)
from .views import (
    cash_flow_view,
    export_csv,
    format_inr,
    format_percentage,
    ratios_to_dataframe,
    statement_view,
    suggestions_to_dataframe,
)

logger = logging.getLogger(__name__)

DEFAULT_OUTPUT_DIR = Path("data/output")

_AMOUNT_COLUMNS = ("current_amount", "previous_amount", "variance")


def _build_parser() -> argparse.ArgumentParser:
    """Create and configure the argument parser for the CLI."""
    ap = argparse.ArgumentParser(
        prog="tb-finsight",
        description=(
            "TB FinSight - Trial Balance Reporting & Ratio Analysis for SMBs. "
            "Imports trial balances, maps ledgers to Schedule III line items, "
            "renders financial statements and computes ratios."
        ),
    )
    ap.add_argument(
        "--version",
        action="store_true",
        help="Show the installed version of tb_finsight and exit.",
    )
    ap.add_argument(
        "--config",
        dest="config_path",
        help=(
            "Path to the main TOML configuration file. "
            "If omitted, 'tb_finsight_config.toml' in the current directory is used."
        ),
    )
    ap.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Log progress messages (INFO level) to stderr.",
    )

    # Shared options
    period_opt = argparse.ArgumentParser(add_help=False)
    period_opt.add_argument(
        "--period",
        dest="period_id",
        type=int,
        help="Financial period id (default: latest period).",
    )

    output_opt = argparse.ArgumentParser(add_help=False)
    output_opt.add_argument(
        "--output",
        dest="output_path",
        help="Write the result as CSV to this path.",
    )

    compare_opt = argparse.ArgumentParser(add_help=False)
    compare_opt.add_argument(
        "--compare",
        dest="compare_id",
        type=int,
        help="Comparison period id (default: the previous period).",
    )
    compare_opt.add_argument(
        "--no-compare",
        action="store_true",
        help="Do not compare with another period.",
    )

    subparsers = ap.add_subparsers(dest="command", metavar="command")

    subparsers.add_parser(
        "init",
        help="Create the database and seed the taxonomy and ratio definitions.",
    )

    # import
    imp = subparsers.add_parser("import", help="Import a trial balance CSV file.")
    imp.add_argument("csv_path", help="Trial balance CSV file.")
    imp.add_argument(
        "--date",
        dest="quarter_end_date",
        required=True,
        help="Quarter end date (YYYY-MM-DD) of the trial balance.",
    )
    imp.add_argument(
        "--replace",
        action="store_true",
        help="Replace the entries already imported for that quarter.",
    )

    # import-extraction
    ext = subparsers.add_parser(
        "import-extraction",
        help="Import rows returned by the document extraction backend.",
    )
    ext.add_argument(
        "document",
        help="Extraction result (.json) or a document with a '<name>.json' result.",
    )
    ext.add_argument(
        "--date",
        dest="quarter_end_date",
        help="Quarter end date (default: the period detected in the document).",
    )
    ext.add_argument("--replace", action="store_true")

    subparsers.add_parser("periods", help="List financial periods, newest first.")

    subparsers.add_parser(
        "suggest",
        parents=[period_opt, output_opt],
        help="Suggest line items for unmapped ledgers.",
    )

    # map
    mp = subparsers.add_parser("map", help="Manage ledger mappings.")
    map_sub = mp.add_subparsers(dest="map_command", metavar="map-command")

    auto = map_sub.add_parser(
        "auto", parents=[period_opt], help="Apply confident suggestions."
    )
    auto.add_argument(
        "--threshold",
        type=float,
        help="Minimum confidence (default: [mapping].auto_apply_threshold).",
    )

    manual = map_sub.add_parser(
        "apply", parents=[period_opt], help="Map one ledger to a line item."
    )
    manual.add_argument("ledger_name")
    manual.add_argument("item_id", type=int)

    remove = map_sub.add_parser(
        "remove", parents=[period_opt], help="Remove the mapping of a ledger."
    )
    remove.add_argument("ledger_name")

    map_sub.add_parser(
        "list", parents=[period_opt, output_opt], help="List the mappings of a period."
    )
    map_sub.add_parser(
        "stats", parents=[period_opt], help="Show mapping completion."
    )

    # report
    rp = subparsers.add_parser(
        "report",
        parents=[period_opt, output_opt, compare_opt],
        help="Render a financial statement.",
    )
    rp.add_argument(
        "statement",
        choices=["balance-sheet", "profit-loss", "cash-flow"],
    )
    rp.add_argument(
        "--show-immaterial",
        action="store_true",
        help="Show line items below the materiality threshold.",
    )
    rp.add_argument(
        "--materiality",
        type=float,
        help="Materiality threshold (default: [reports].materiality_threshold).",
    )

    # ratios
    rt = subparsers.add_parser(
        "ratios",
        parents=[period_opt, output_opt, compare_opt],
        help="Compute financial ratios and the health score.",
    )
    rt.add_argument("--category", choices=[c.lower() for c in RATIO_CATEGORIES])
    rt.add_argument("--user", dest="user_id", help="User whose benchmarks apply.")
    rt.add_argument(
        "--trends",
        action="store_true",
        help="Show stored ratio values for every period instead.",
    )

    # benchmarks
    bm = subparsers.add_parser("benchmarks", help="Manage custom ratio benchmarks.")
    bm.add_argument("--user", dest="user_id", help="User id (default: [user].id).")
    bm_sub = bm.add_subparsers(dest="benchmarks_command", metavar="benchmarks-command")

    bm_list = bm_sub.add_parser("list", help="List benchmarks.")
    bm_list.add_argument("--all", action="store_true", help="Include inactive ones.")

    bm_set = bm_sub.add_parser("set", help="Create or update a benchmark.")
    bm_set.add_argument("ratio", help="Ratio key or name (e.g. current_ratio).")
    bm_set.add_argument("--target", type=float, dest="target")
    bm_set.add_argument("--industry-average", type=float, dest="industry_average")
    bm_set.add_argument("--source", default="Custom", choices=BENCHMARK_SOURCES)
    bm_set.add_argument("--notes")
    bm_set.add_argument("--inactive", action="store_true")

    bm_reset = bm_sub.add_parser("reset", help="Reset a benchmark to the defaults.")
    bm_reset.add_argument("ratio")

    bm_export = bm_sub.add_parser("export", help="Export benchmarks as JSON.")
    bm_export.add_argument("--output", dest="output_path", help="JSON file path.")

    subparsers.add_parser(
        "quality",
        parents=[period_opt],
        help="Mapping completion, stock reconciliation and readiness.",
    )

    return ap


def _configure_logging(config: Optional[AppConfig], verbose: bool) -> None:
    level = "INFO" if verbose else (config.log_level if config else "WARNING")
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.WARNING),
        format="%(levelname)s %(name)s: %(message)s",
    )


def _parse_date(value: Optional[str]) -> Optional[date]:
    if not value:
        return None
    try:
        return date.fromisoformat(value)
    except ValueError as exc:
        raise ValueError(f"Invalid date {value!r}, expected YYYY-MM-DD.") from exc


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------


def _for_display(df: pd.DataFrame) -> pd.DataFrame:
    """Format amounts and percentages for the console."""
    out = df.copy()
    for col in _AMOUNT_COLUMNS:
        if col in out.columns:
            out[col] = out[col].map(lambda v: "" if pd.isna(v) else format_inr(v))
    if "variance_percentage" in out.columns:
        out["variance_percentage"] = out["variance_percentage"].map(
            lambda v: "" if pd.isna(v) else format_percentage(v)
        )
    return out.fillna("")


def _render(
    df: pd.DataFrame,
    config: AppConfig,
    *,
    title: str,
    name: str,
    output_path: Optional[str] = None,
) -> None:
    mode = config.display_mode
    if mode in ("table", "both"):
        print()
        print(f"=== {title} ===")
        if df.empty:
            print("(no rows)")
        else:
            print(_for_display(df).to_string(index=False))

    if output_path or mode in ("csv", "both"):
        path = Path(output_path) if output_path else DEFAULT_OUTPUT_DIR / f"{name}.csv"
        export_csv(df, path, title=title)
        print(f"Saved: {path}")


def _print_ingestion(report: IngestionReport) -> None:
    if report.stats is None:
        print("No valid rows found; nothing was imported.")
    else:
        print(
            f"Imported upload #{report.stats.upload_id} into "
            f"{report.period.period_name}: {report.stats.rows_inserted} entries, "
            f"{report.stats.rows_rejected} rejected."
        )
    if report.errors:
        print(f"{len(report.errors)} row(s) rejected:")
        for err in report.errors:
            print(f"  row {err.row}: {err.message} | {err.line}")


def _comparison(store: Store, period: FinancialPeriod, args) -> Optional[int]:
    if getattr(args, "no_compare", False):
        return None
    if getattr(args, "compare_id", None) is not None:
        return require_period(store, args.compare_id).id
    prev = previous_period(store, period)
    return prev.id if prev else None


def _require_taxonomy(store: Store) -> Taxonomy:
    taxonomy = load_taxonomy(store)
    if not len(taxonomy):
        raise NotReadyError(
            "No taxonomy loaded.", guidance="run 'tb-finsight init' first"
        )
    return taxonomy


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------


def _handle_init(args: argparse.Namespace, config: AppConfig, store: Store) -> None:
    taxonomy = Taxonomy.from_csv(config.taxonomy_file)
    items = seed_line_items(store, taxonomy)
    ratios = seed_ratio_definitions(store, load_ratio_definitions(config.ratios_file))
    print(f"Database ready: {config.database.path}")
    print(f"Seeded {items} line items and {ratios} ratio definitions.")


def _handle_import(args: argparse.Namespace, config: AppConfig, store: Store) -> None:
    csv_path = Path(args.csv_path)
    if not csv_path.is_file():
        raise FileNotFoundError(f"CSV file not found: {csv_path}")
    quarter_end = _parse_date(args.quarter_end_date)
    print(f"Importing trial balance from {csv_path}...")
    report = ingest_trial_balance(store, csv_path, quarter_end, replace=args.replace)
    _print_ingestion(report)


def _handle_import_extraction(
    args: argparse.Namespace, config: AppConfig, store: Store
) -> None:
    quarter_end = _parse_date(args.quarter_end_date)
    extraction = JsonExtractionBackend().extract(Path(args.document), quarter_end)
    if extraction.period_info.detected_period:
        print(f"Detected period: {extraction.period_info.detected_period}")
    report = ingest_extraction(
        store,
        extraction,
        quarter_end,
        source_label=str(args.document),
        replace=args.replace,
    )
    _print_ingestion(report)


def _handle_periods(args: argparse.Namespace, config: AppConfig, store: Store) -> None:
    periods = list_periods(store)
    if not periods:
        print("No financial periods yet: upload data first.")
        return
    df = pd.DataFrame(
        [
            {
                "id": p.id,
                "period": p.period_name,
                "quarter_end_date": p.quarter_end_date.isoformat(),
                "entries": store.count("ledger_entries", {"period_id": p.id}),
                "mappings": store.count("mappings", {"period_id": p.id}),
            }
            for p in periods
        ]
    )
    print(df.to_string(index=False))


def _handle_suggest(args: argparse.Namespace, config: AppConfig, store: Store) -> None:
    period = require_period(store, args.period_id)
    taxonomy = _require_taxonomy(store)
    suggestions = suggest_for_period(
        store,
        period.id,
        taxonomy=taxonomy,
        default_confidence=config.mapping.default_confidence,
    )
    if not suggestions:
        print(f"No unmapped ledgers to suggest for in {period.period_name}.")
        return
    df = suggestions_to_dataframe(suggestions, taxonomy)
    _render(
        df,
        config,
        title=f"Mapping suggestions - {period.period_name}",
        name=f"suggestions_{period.id}",
        output_path=args.output_path,
    )
    confident = sum(
        1 for s in suggestions if s.confidence >= config.mapping.auto_apply_threshold
    )
    print(
        f"\n{len(suggestions)} suggestion(s), {confident} at or above "
        f"{config.mapping.auto_apply_threshold:.0%} confidence."
    )


def _handle_map(args: argparse.Namespace, config: AppConfig, store: Store) -> None:
    subcmd = getattr(args, "map_command", None)
    if subcmd is None:
        print(
            "No map subcommand specified. "
            "Available subcommands are: 'auto', 'apply', 'remove', 'list', 'stats'."
        )
        return

    period = require_period(store, args.period_id)

    if subcmd == "auto":
        threshold = (
            args.threshold
            if args.threshold is not None
            else config.mapping.auto_apply_threshold
        )
        taxonomy = _require_taxonomy(store)
        suggestions = suggest_for_period(
            store,
            period.id,
            taxonomy=taxonomy,
            default_confidence=config.mapping.default_confidence,
        )
        applied = apply_suggestions(store, suggestions, period.id, threshold)
        print(f"Applied {applied} mapping(s) in {period.period_name}.")
    elif subcmd == "apply":
        record = apply_mapping(store, args.ledger_name, args.item_id, period.id)
        print(
            f"Mapped {record.tally_ledger_name!r} to line item "
            f"#{record.master_item_id} in {period.period_name}."
        )
    elif subcmd == "remove":
        if remove_mapping(store, args.ledger_name, period.id):
            print(f"Removed mapping of {args.ledger_name!r}.")
        else:
            print(f"No mapping found for {args.ledger_name!r} in {period.period_name}.")
    elif subcmd == "list":
        _render(
            list_mappings(store, period.id),
            config,
            title=f"Mappings - {period.period_name}",
            name=f"mappings_{period.id}",
            output_path=args.output_path,
        )
    elif subcmd == "stats":
        stats = mapping_statistics(store, period.id)
        print(
            f"{period.period_name}: {stats.mapped_ledgers}/{stats.total_ledgers} "
            f"ledgers mapped ({stats.completion_percentage:.2f}%), "
            f"{stats.unmapped_ledgers} unmapped."
        )


def _handle_report(args: argparse.Namespace, config: AppConfig, store: Store) -> None:
    period = require_period(store, args.period_id)
    comparison_id = _comparison(store, period, args)
    totals = aggregate(store, period.id, comparison_id)
    if not totals:
        raise NotReadyError(
            f"Nothing is mapped in {period.period_name}.",
            guidance="complete mapping first",
        )

    threshold = (
        args.materiality
        if args.materiality is not None
        else config.reports.materiality_threshold
    )
    show_immaterial = args.show_immaterial or config.reports.show_immaterial

    if args.statement == "cash-flow":
        df = cash_flow_view(cash_flow(totals))
        title = f"Cash Flow Statement - {period.period_name}"
    else:
        report_type = (
            "BALANCE_SHEET" if args.statement == "balance-sheet" else "PROFIT_LOSS"
        )
        df = statement_view(totals, report_type, threshold, show_immaterial)
        label = "Balance Sheet" if report_type == "BALANCE_SHEET" else "Profit & Loss"
        title = f"{label} - {period.period_name}"

    _render(
        df,
        config,
        title=title,
        name=f"{args.statement.replace('-', '_')}_{period.id}",
        output_path=args.output_path,
    )


def _handle_ratios(args: argparse.Namespace, config: AppConfig, store: Store) -> None:
    if args.trends:
        table = ratio_trends(store, category=args.category)
        if table.empty:
            print("No ratios computed yet.")
            return
        print(table.round(config.ratio_decimals).to_string())
        return

    period = require_period(store, args.period_id)
    results = compute_ratios(
        store,
        period.id,
        user_id=args.user_id or config.user_id,
        comparison_period_id=_comparison(store, period, args),
        category=args.category,
        decimals=config.ratio_decimals,
    )
    if not results:
        raise NotReadyError(
            f"No ratios for {period.period_name}.",
            guidance="complete mapping first",
        )

    _render(
        ratios_to_dataframe(results, config.ratio_decimals),
        config,
        title=f"Financial Ratios - {period.period_name}",
        name=f"ratios_{period.id}",
        output_path=args.output_path,
    )
    print(f"\nHealth score: {health_score(results)}/100")


def _handle_benchmarks(
    args: argparse.Namespace, config: AppConfig, store: Store
) -> None:
    user_id = args.user_id or config.user_id
    subcmd = getattr(args, "benchmarks_command", None)

    if subcmd == "list":
        df = list_benchmarks(store, user_id, active_only=not args.all)
        if df.empty:
            print(f"No custom benchmarks for {user_id!r}.")
            return
        print(df.fillna("").to_string(index=False))
    elif subcmd == "set":
        saved = save_benchmark(
            store,
            user_id,
            find_definition_id(store, args.ratio),
            custom_target_value=args.target,
            custom_industry_average=args.industry_average,
            benchmark_source=args.source,
            notes=args.notes,
            is_active=not args.inactive,
        )
        print(f"Saved benchmark #{saved['id']} for {args.ratio!r} ({user_id}).")
    elif subcmd == "reset":
        reset_benchmark(store, user_id, find_definition_id(store, args.ratio))
        print(f"Reset benchmark for {args.ratio!r} to the default values.")
    elif subcmd == "export":
        payload = json.dumps(export_benchmarks(store, user_id), indent=2)
        if args.output_path:
            path = Path(args.output_path)
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(payload + "\n", encoding="utf-8")
            print(f"Saved: {path}")
        else:
            print(payload)
    else:
        print(
            "No benchmarks subcommand specified. "
            "Available subcommands are: 'list', 'set', 'reset', 'export'."
        )


def _handle_quality(args: argparse.Namespace, config: AppConfig, store: Store) -> None:
    period = require_period(store, args.period_id)
    readiness = period_readiness(store, period.id)
    stats = readiness.statistics
    print(f"Period: {period.period_name}")
    print(
        f"Mapping: {stats.mapped_ledgers}/{stats.total_ledgers} ledgers "
        f"({stats.completion_percentage:.2f}%)"
    )

    stock = stock_reconciliation(store, period.id)
    print(f"Stock reconciliation: {stock.status}")
    print(f"  Opening stock:   {format_inr(stock.opening_stock)}")
    print(f"  Purchases:       {format_inr(stock.purchases)}")
    print(f"  Closing stock:   {format_inr(stock.closing_stock)}")
    print(f"  Calculated COGS: {format_inr(stock.calculated_cogs)}")
    print(f"  Existing COGS:   {format_inr(stock.existing_cogs)}")

    if readiness.is_ready:
        print("Ready for reporting.")
    else:
        print(f"Not ready: {readiness.guidance}.")
        for warning in readiness.warnings:
            print(f"  - {warning}")


_HANDLERS = {
    "init": _handle_init,
    "import": _handle_import,
    "import-extraction": _handle_import_extraction,
    "periods": _handle_periods,
    "suggest": _handle_suggest,
    "map": _handle_map,
    "report": _handle_report,
    "ratios": _handle_ratios,
    "benchmarks": _handle_benchmarks,
    "quality": _handle_quality,
}


def main(argv: Optional[list[str]] = None) -> int:
    """
    Entry point for the TB FinSight CLI.

    Parses arguments, loads the configuration, opens the database and
    dispatches to the selected command. Returns the process exit status.
    """
    parser = _build_parser()
    args = parser.parse_args(argv)

    if args.version:
        print(f"tb_finsight version {__version__}")
        return 0

    if not args.command:
        parser.print_help()
        return 0

    try:
        config = load_app_config(args.config_path)
    except (FileNotFoundError, ValueError) as exc:
        _configure_logging(None, args.verbose)
        print(f"Error: {exc}")
        return 2
    _configure_logging(config, args.verbose)

    try:
        init_database(config.database)
        with Store(config.database) as store:
            _HANDLERS[args.command](args, config, store)
    except NotReadyError as exc:
        print(f"{exc}")
        if exc.guidance:
            print(f"Next step: {exc.guidance}.")
        return 0
    except BackendError as exc:
        logger.error("Backend failure: %s", exc)
        print(f"Operation failed: {exc}")
        return 1
    except (FileNotFoundError, ValueError) as exc:
        print(f"Error: {exc}")
        return 2
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
