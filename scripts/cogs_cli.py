#!/usr/bin/env python3
"""
Operator CLI for the inventory costing engine.

Usage:
    python3 scripts/cogs_cli.py [--db-url URL] [--config FILE] <command> [options]

Commands:
    apply           Apply COGS to shipped order lines in a date range
    reverse         Reverse COGS for returned units of an order line
    coverage        Print coverage statistics for a date range
    export-missing  Write expected-but-unallocated order lines as CSV
    item            Create or update a catalog item (and a bundle recipe)
    stock-in        Record a purchase receipt (or opening balance)
    runs            List recent COGS runs, or the items of one run

Examples:
    python3 scripts/cogs_cli.py item --sku WIDGET --name "Widget"
    python3 scripts/cogs_cli.py item --sku KIT --name "Kit" --component WIDGET:2 --component BOLT:4
    python3 scripts/cogs_cli.py stock-in --sku WIDGET --quantity 10 --unit-cost 5
    python3 scripts/cogs_cli.py apply --start 2024-03-01 --end 2024-03-31 --method FIFO
    python3 scripts/cogs_cli.py export-missing --start 2024-03-01 --end 2024-03-31 -o gaps.csv

Exit codes:
    0 on success, 1 on a validation or engine error.
"""

from __future__ import annotations

import argparse
import csv
import os
import sys
from datetime import datetime
from pathlib import Path
from uuid import UUID

# Project root on sys.path
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

DB_URL_ENV_VAR = "INVENTORY_COSTING_DB_URL"
DB_URL = os.environ.get(DB_URL_ENV_VAR, "sqlite:///inventory_costing.db")


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Inventory costing and COGS allocation.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--db-url",
        default=DB_URL,
        help=f"Database URL (default: ${DB_URL_ENV_VAR} or {DB_URL!r}).",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Costing policy YAML (default: $INVENTORY_COSTING_CONFIG or bundled default).",
    )
    parser.add_argument(
        "--actor-id",
        type=UUID,
        default=None,
        help="Actor UUID stamped on written rows (default: system actor).",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    apply_p = sub.add_parser("apply", help="Apply COGS to shipped order lines.")
    apply_p.add_argument("--start", required=True, help="First day (YYYY-MM-DD).")
    apply_p.add_argument("--end", required=True, help="Last day, inclusive (YYYY-MM-DD).")
    apply_p.add_argument("--method", default=None, help="FIFO or AVG (default: policy).")

    rev_p = sub.add_parser("reverse", help="Reverse COGS for returned units.")
    rev_p.add_argument("--order", required=True, dest="order_id")
    rev_p.add_argument("--sku", required=True)
    rev_p.add_argument("--quantity", required=True)
    rev_p.add_argument("--reason", required=True)
    restock = rev_p.add_mutually_exclusive_group()
    restock.add_argument("--restock", dest="restock", action="store_true", default=None)
    restock.add_argument("--no-restock", dest="restock", action="store_false")

    cov_p = sub.add_parser("coverage", help="Print coverage statistics.")
    cov_p.add_argument("--start", required=True)
    cov_p.add_argument("--end", required=True)

    miss_p = sub.add_parser("export-missing", help="Export missing allocations as CSV.")
    miss_p.add_argument("--start", required=True)
    miss_p.add_argument("--end", required=True)
    miss_p.add_argument("-o", "--output", type=Path, default=None, help="CSV path (default: stdout).")

    item_p = sub.add_parser("item", help="Create or update a catalog item.")
    item_p.add_argument("--sku", required=True)
    item_p.add_argument("--name", default="", help="Product name.")
    item_p.add_argument("--base-cost", default="0", help="Reference cost per unit.")
    item_p.add_argument(
        "--component",
        action="append",
        default=[],
        metavar="SKU:QTY",
        help="Bundle component; repeat for each one.  Makes the item a bundle.",
    )

    stock_p = sub.add_parser("stock-in", help="Record a receipt layer.")
    stock_p.add_argument("--sku", required=True)
    stock_p.add_argument("--quantity", required=True)
    stock_p.add_argument("--unit-cost", required=True)
    stock_p.add_argument(
        "--received-at",
        type=datetime.fromisoformat,
        default=None,
        help="ISO timestamp (default: now, UTC).",
    )
    stock_p.add_argument("--ref", default=None, help="Source document reference.")
    stock_p.add_argument(
        "--opening",
        action="store_true",
        help="Record as an opening balance instead of a purchase.",
    )

    runs_p = sub.add_parser("runs", help="List COGS runs.")
    runs_p.add_argument("--limit", type=int, default=20)
    runs_p.add_argument("--run-id", type=UUID, default=None, help="Show the items of one run.")

    return parser.parse_args(argv)


def _cmd_apply(service, args) -> int:
    result = service.apply_cogs(args.start, args.end, args.method)
    print(f"Run {result.run_id} [{result.state.value}] method={result.method}")
    print(f"  lines:             {result.total_lines}")
    print(f"  allocated:         {result.allocated_count}")
    print(f"  already allocated: {result.already_allocated_count}")
    print(f"  skipped:           {result.skipped_count}")
    print(f"  errors:            {result.error_count}")
    print(f"  amount:            {result.allocated_amount}")
    for line in result.skipped_lines:
        print(f"  SKIP  {line.order_id} {line.sku}: {line.reason.value}")
    for line in result.error_lines:
        print(f"  ERROR {line.order_id} {line.sku}: {line.reason.value} {line.detail}")
    return 0 if result.error_count == 0 else 1


def _cmd_reverse(service, args) -> int:
    record = service.reverse_allocation(
        args.order_id, args.sku, args.quantity, args.reason, restock=args.restock
    )
    print(
        f"Reversed {record.quantity} x {record.sku} on {record.order_id}: "
        f"amount {record.amount} ({len(record.rows)} rows, restocked={record.restocked})"
    )
    return 0


def _cmd_coverage(service, args) -> int:
    stats = service.get_coverage_stats(args.start, args.end)
    print(f"Expected lines:   {stats.expected_lines}")
    print(f"Allocated lines:  {stats.allocated_lines}")
    print(f"Missing lines:    {stats.missing_lines}")
    print(f"Coverage:         {stats.coverage_percent:.2f}%")
    print(f"Duplicate groups: {stats.duplicate_count}")
    return 0


def _cmd_export_missing(service, args) -> int:
    from inventory_services.coverage_auditor import MISSING_ROW_FIELDS

    rows = service.export_missing_allocations(args.start, args.end)
    if args.output is not None:
        with args.output.open("w", newline="") as handle:
            _write_csv(handle, rows, MISSING_ROW_FIELDS)
        print(f"Wrote {len(rows)} rows to {args.output}")
    else:
        _write_csv(sys.stdout, rows, MISSING_ROW_FIELDS)
    return 0


def _write_csv(handle, rows, fields) -> None:
    writer = csv.DictWriter(handle, fieldnames=list(fields))
    writer.writeheader()
    for row in rows:
        writer.writerow(row.as_csv_row())


def _cmd_item(service, args) -> int:
    components = []
    for spec in args.component:
        sku, sep, qty = spec.rpartition(":")
        if not sep or not sku:
            raise ValueError(f"component must look like SKU:QTY, got {spec!r}")
        components.append((sku, qty))

    item = service.upsert_item(
        args.sku, args.name, is_bundle=bool(components), base_cost_per_unit=args.base_cost
    )
    if components:
        service.set_bundle_recipe(args.sku, components)
    kind = "bundle" if components else "item"
    print(f"Saved {kind} {item.sku} {item.product_name!r}")
    return 0


def _cmd_stock_in(service, args) -> int:
    if args.opening:
        layer = service.record_opening_balance(
            args.sku, args.quantity, args.unit_cost, as_of=args.received_at
        )
    else:
        layer = service.record_receipt(
            args.sku, args.quantity, args.unit_cost,
            received_at=args.received_at, ref_id=args.ref,
        )
    print(
        f"Layer {layer.layer_id}: {layer.qty_received} x {layer.sku} @ {layer.unit_cost} "
        f"[{layer.ref_type}] seq={layer.seq}"
    )
    return 0


def _cmd_runs(service, args) -> int:
    if args.run_id is not None:
        for item in service.get_run_items(args.run_id):
            print(
                f"{item.order_id:<20} {item.sku:<20} {item.status.value:<10} "
                f"{item.reason or ''}"
            )
        return 0
    for run in service.list_runs(limit=args.limit):
        started = run.started_at.isoformat() if run.started_at else "-"
        print(
            f"{run.run_id}  {started}  {run.start_date}..{run.end_date}  "
            f"{run.method:<4} {run.state.value:<10} "
            f"ok={run.successful} skip={run.skipped} fail={run.failed}"
        )
    return 0


_COMMANDS = {
    "apply": _cmd_apply,
    "reverse": _cmd_reverse,
    "coverage": _cmd_coverage,
    "export-missing": _cmd_export_missing,
    "item": _cmd_item,
    "stock-in": _cmd_stock_in,
    "runs": _cmd_runs,
}


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)

    # Lazy imports so we fail fast on args first
    import yaml

    from inventory_config import get_active_policy
    from inventory_kernel.db.engine import create_tables, init_engine_from_url, session_scope
    from inventory_kernel.db.immutability import register_immutability_listeners
    from inventory_kernel.domain.values import SYSTEM_ACTOR_ID
    from inventory_kernel.exceptions import InventoryKernelError
    from inventory_services.cogs_service import COGSService

    try:
        policy = get_active_policy(args.config)
    except (OSError, ValueError, yaml.YAMLError) as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1

    init_engine_from_url(args.db_url)
    create_tables()
    register_immutability_listeners()

    try:
        with session_scope() as session:
            service = COGSService(session, policy=policy, actor_id=args.actor_id or SYSTEM_ACTOR_ID)
            return _COMMANDS[args.command](service, args)
    except InventoryKernelError as e:
        print(f"ERROR [{e.code}]: {e}", file=sys.stderr)
        return 1
    except (ArithmeticError, ValueError) as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
