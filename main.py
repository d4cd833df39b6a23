#!/usr/bin/env python3
"""
LPO Reconciliation Pipeline — CLI entry point.

Usage examples:
  python main.py check                              # Verify setup (database, config files)
  python main.py ingest lpo_12345.pdf               # Ingest a single LPO document
  python main.py ingest lpos/                       # Batch-ingest a folder of PDFs / .txt
  python main.py show PO12345                       # Print an LPO with its reconciliation

  python main.py save-invoice PO12345 --invoice-number INV-889 --invoice-date 2026-03-02 \\
      --delivered 6291234567890=10 --delivered 6291234567891=4 --commission-pct 12 --sync
  python main.py sync PO12345                       # Re-run the brand performance sync

  python main.py import-skus master_sku.xlsx        # Upsert a catalog sheet (CSV or XLSX)
  python main.py add-sku --barcode 6291234567890 --client Acme ...
  python main.py catalog-health                     # Red / amber / ok counts
"""
import json
import logging
import sys
from pathlib import Path

import click

from config import Config
from models.sku import SkuRecord
from pipeline.errors import LpoError
from pipeline.processor import LpoProcessor


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s  %(levelname)-8s  %(name)s — %(message)s",
        datefmt="%H:%M:%S",
    )
    # Quieten noisy third-party loggers
    logging.getLogger("pdfminer").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


def _processor(ctx: click.Context) -> LpoProcessor:
    config = Config()
    if ctx.obj.get("db"):
        config.db_path = Path(ctx.obj["db"])
    return LpoProcessor(config)


def _fail(exc: Exception) -> None:
    click.echo(f"Error: {exc}", err=True)
    sys.exit(1)


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.option("--db", default=None, type=click.Path(dir_okay=False), help="SQLite database file")
@click.pass_context
def cli(ctx: click.Context, verbose: bool, db: str | None) -> None:
    """LPO Reconciliation Pipeline — ingest purchase orders, reconcile invoices, maintain SKUs."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["db"] = db
    _setup_logging(verbose)


# --------------------------------------------------------------------
# check command
# --------------------------------------------------------------------

@cli.command()
@click.pass_context
def check(ctx: click.Context) -> None:
    """Verify that the database and config files are ready."""
    processor = _processor(ctx)
    status = processor.check_setup()

    click.echo("\n=== Pipeline Setup Check ===\n")

    db = status["database"]
    tick = "✓" if db["exists"] else "✗"
    click.echo(f"  Database:             {tick}  {db['path']}")
    click.echo(
        f"     {db.get('orders', 0)} LPO(s) "
        f"({db.get('pending', 0)} pending, {db.get('partial', 0)} partial, "
        f"{db.get('delivered', 0)} delivered, {db.get('complete', 0)} complete), "
        f"{db.get('skus', 0)} SKU(s), {db.get('brand_rows', 0)} brand performance row(s)"
    )

    for key, label in [("config_dir", "Config directory"), ("header_synonyms", "header_synonyms.json")]:
        info = status[key]
        tick = "✓" if info["exists"] else "✗"
        click.echo(f"  {label + ':':<21} {tick}  {info['path']}")
        if not info["exists"]:
            click.echo("     → Run: python bootstrap.py")

    sync = status["brand_sync"]
    click.echo()
    click.echo(f"  Brand sync URL:       {sync['url'] or '(not configured, local projection only)'}")
    if sync["url"]:
        tick = "✓" if sync["template_exists"] else "✗"
        click.echo(f"  Brand sync template:  {tick}  {sync['template']}")
    click.echo()


# --------------------------------------------------------------------
# ingest command
# --------------------------------------------------------------------

@cli.command()
@click.argument("target", type=click.Path(exists=True))
@click.pass_context
def ingest(ctx: click.Context, target: str) -> None:
    """Ingest a single LPO document (PDF or .txt) or a directory of them."""
    processor = _processor(ctx)
    target_path = Path(target)

    if target_path.is_dir():
        results = processor.ingest_directory(target_path)
        click.echo(f"\nIngested {len(results)} LPO(s).")
        for r in results:
            flag = f"  ({len(r.warnings)} warning(s))" if r.warnings else ""
            click.echo(
                f"   {r.order.po_number:<20} {r.line_count:>3} line(s)  "
                f"{r.order.total_incl_vat:>12,.2f}{flag}"
            )
        return

    try:
        result = processor.ingest_file(target_path)
    except (LpoError, OSError) as exc:
        _fail(exc)
        return

    order = result.order
    click.echo()
    click.echo(f"  PO:          {order.po_number}")
    click.echo(f"  Order date:  {order.order_date or '(unknown)'}")
    click.echo(f"  Delivery:    {order.delivery_date or '(none)'}")
    click.echo(f"  Supplier:    {order.supplier}")
    click.echo(f"  Location:    {order.delivery_location}")
    click.echo(f"  Lines:       {result.line_count}")
    click.echo(f"  Total:       {order.total_incl_vat:,.2f} incl VAT")
    click.echo()
    _echo_warnings(result.warnings)


def _echo_warnings(warnings) -> None:
    if warnings:
        click.echo(f"  Data quality ({len(warnings)}):")
        for w in warnings:
            icon = "⚠" if w.severity == "warning" else "ℹ"
            click.echo(f"    {icon} [{w.severity.upper()}] {w.description}")
    else:
        click.echo("  ✓ No data quality warnings")
    click.echo()


# --------------------------------------------------------------------
# show command
# --------------------------------------------------------------------

@cli.command()
@click.argument("po_number")
@click.option("--json", "as_json", is_flag=True, help="Print the order and summary as JSON")
@click.pass_context
def show(ctx: click.Context, po_number: str, as_json: bool) -> None:
    """Print one LPO with its line items and reconciliation summary."""
    processor = _processor(ctx)
    order = processor.get_order(po_number)
    if order is None:
        _fail(LookupError(f"LPO {po_number!r} not found"))
        return
    summary = processor.engine.summarize(po_number)

    if as_json:
        click.echo(json.dumps({
            "order": json.loads(order.model_dump_json()),
            "summary": json.loads(summary.model_dump_json()),
        }, indent=2))
        return

    click.echo(f"\n  {order.po_number}  [{order.status}]  {order.customer}  {order.order_date}")
    if order.invoice_number:
        click.echo(f"  Invoice {order.invoice_number} dated {order.invoice_date}")
    click.echo()
    click.echo(f"  {'Barcode':<15} {'Product':<32} {'Ord':>7} {'Dlv':>7} {'Invoiced':>12}")
    for li in order.line_items:
        click.echo(
            f"  {li.barcode:<15} {li.product_name[:32]:<32} "
            f"{li.quantity_ordered:>7g} {li.quantity_delivered:>7g} "
            f"{li.total_incl_vat_invoiced:>12,.2f}"
        )
    click.echo()
    click.echo(f"  Ordered:        {summary.ordered_total:>12,.2f}")
    click.echo(f"  Invoiced:       {summary.grand_total:>12,.2f}  (VAT {summary.vat_total:,.2f})")
    sl = f"{summary.service_level_pct:.2f}%" if summary.service_level_pct is not None else "n/a"
    click.echo(f"  Service level:  {sl:>12}")
    if summary.commission_amount is not None:
        click.echo(
            f"  Commission:     {summary.commission_amount:>12,.2f}  ({summary.commission_pct:g}%)"
        )
    click.echo()
    _echo_warnings(summary.warnings)


# --------------------------------------------------------------------
# save-invoice command
# --------------------------------------------------------------------

def _parse_deliveries(values: tuple[str, ...]) -> dict[str, float]:
    deliveries: dict[str, float] = {}
    for raw in values:
        barcode, sep, qty = raw.partition("=")
        if not sep or not barcode.strip():
            raise click.BadParameter(f"expected BARCODE=QTY, got {raw!r}", param_hint="--delivered")
        try:
            deliveries[barcode.strip()] = float(qty)
        except ValueError:
            raise click.BadParameter(f"quantity must be a number in {raw!r}", param_hint="--delivered")
    return deliveries


@cli.command("save-invoice")
@click.argument("po_number")
@click.option("--invoice-number", default="", help="Supplier invoice number (required)")
@click.option("--invoice-date", default="", help="Invoice date, YYYY-MM-DD (required)")
@click.option("--delivered", "-d", multiple=True, metavar="BARCODE=QTY",
              help="Delivered quantity for one line; repeat per line")
@click.option("--commission-pct", default=None, type=float, help="Client commission percentage")
@click.option("--status", default=None,
              type=click.Choice(["pending", "partial", "delivered", "complete"]))
@click.option("--customer", default=None, help="Override the customer name")
@click.option("--delivery-date", default=None, help="Delivery date, YYYY-MM-DD")
@click.option("--sync", is_flag=True, help="Run the brand performance sync after saving")
@click.pass_context
def save_invoice(
    ctx: click.Context,
    po_number: str,
    invoice_number: str,
    invoice_date: str,
    delivered: tuple[str, ...],
    commission_pct: float | None,
    status: str | None,
    customer: str | None,
    delivery_date: str | None,
    sync: bool,
) -> None:
    """Record delivered quantities and invoice details against an LPO."""
    processor = _processor(ctx)
    try:
        result = processor.engine.save_invoice(
            po_number,
            invoice_number=invoice_number,
            invoice_date=invoice_date,
            deliveries=_parse_deliveries(delivered),
            commission_pct=commission_pct,
            status=status,
            customer=customer,
            delivery_date=delivery_date,
            sync=sync,
            actor="cli",
        )
    except LpoError as exc:
        _fail(exc)
        return

    s = result.summary
    click.echo()
    click.echo(f"  Saved invoice {result.invoice_number} on {result.po_number}")
    click.echo(f"  Lines saved:    {result.lines_saved}/{s.line_count}")
    click.echo(f"  Grand total:    {s.grand_total:,.2f}")
    sl = f"{s.service_level_pct:.2f}%" if s.service_level_pct is not None else "n/a"
    click.echo(f"  Service level:  {sl}")
    if s.commission_amount is not None:
        click.echo(f"  Commission:     {s.commission_amount:,.2f}")
    if result.partial:
        click.echo(f"  ✗ Failed lines: {', '.join(result.failed_lines)} (re-run to retry)", err=True)
    if result.sync:
        click.echo(f"  ✓ Brand sync: {result.sync.rows_written} row(s)")
    if result.sync_error:
        click.echo(f"  ✗ Brand sync failed: {result.sync_error} (retry with: sync {po_number})", err=True)
    click.echo()
    _echo_warnings(s.warnings)
    if result.partial:
        sys.exit(1)


# --------------------------------------------------------------------
# sync command
# --------------------------------------------------------------------

@cli.command()
@click.argument("po_number")
@click.pass_context
def sync(ctx: click.Context, po_number: str) -> None:
    """(Re-)write the brand performance projection for an invoiced LPO."""
    processor = _processor(ctx)
    try:
        result = processor.brand_sync.sync(po_number, actor="cli")
    except LpoError as exc:
        _fail(exc)
        return
    click.echo(
        f"✓ {result.po_number}/{result.invoice_number}: "
        f"{result.rows_written} row(s) written, {result.rows_replaced} replaced"
    )
    if result.webhook and result.webhook.get("status") != "skipped":
        click.echo(f"  Webhook: {result.webhook.get('status')} ({result.webhook.get('status_code')})")


# --------------------------------------------------------------------
# SKU master data commands
# --------------------------------------------------------------------

@cli.command("import-skus")
@click.argument("file", type=click.Path(exists=True, dir_okay=False))
@click.pass_context
def import_skus(ctx: click.Context, file: str) -> None:
    """Upsert a master SKU sheet (CSV or XLSX) into the catalog."""
    processor = _processor(ctx)
    try:
        result = processor.import_sku_file(file, actor="cli")
    except (LpoError, OSError) as exc:
        _fail(exc)
        return
    click.echo(
        f"\n  Inserted: {result.inserted}\n"
        f"  Updated:  {result.updated}\n"
        f"  Skipped:  {result.skipped} (no barcode)\n"
        f"  Failed:   {result.failed}\n"
        f"  Commission propagated to {result.commission_propagated} record(s)\n"
    )


@cli.command("add-sku")
@click.option("--barcode", required=True)
@click.option("--client", default=None)
@click.option("--brand", default=None)
@click.option("--sku-name", default=None)
@click.option("--category", default=None)
@click.option("--subcategory", default=None)
@click.option("--case-pack", default=None, type=int)
@click.option("--shelf-life", default=None)
@click.option("--talabat-sku", default=None)
@click.option("--noon-zsku", default=None)
@click.option("--careem-code", default=None)
@click.option("--amazon-asin", default=None)
@click.option("--sellin-price", "client_sellin_price", default=None, type=float)
@click.option("--commission-pct", "mantaga_commission_pct", default=None, type=float)
@click.pass_context
def add_sku(ctx: click.Context, **fields) -> None:
    """Add one complete SKU to the catalog."""
    processor = _processor(ctx)
    try:
        record = processor.catalog.add(SkuRecord(**fields), actor="cli")
    except LpoError as exc:
        _fail(exc)
        return
    click.echo(f"✓ Added {record.barcode} ({record.sku_name})")


@cli.command("catalog-health")
@click.option("--client", default=None, help="Only records for this client")
@click.option("--list", "list_missing", is_flag=True, help="List every red / amber record")
@click.pass_context
def catalog_health(ctx: click.Context, client: str | None, list_missing: bool) -> None:
    """Count catalog records by completeness (red / amber / ok)."""
    processor = _processor(ctx)
    counts = processor.catalog.catalog_health(client)
    click.echo(
        f"\n  ✗ red:    {counts['red']}\n"
        f"  ⚠ amber:  {counts['amber']}\n"
        f"  ✓ ok:     {counts['ok']}\n"
        f"    total:  {counts['total']}\n"
    )
    if list_missing:
        for h in processor.catalog.health(client):
            if h.health != "ok":
                click.echo(f"  [{h.health:<5}] {h.barcode}: {', '.join(h.missing)}")
        click.echo()


if __name__ == "__main__":
    cli()
