#!/usr/bin/env python3
"""
Purchase Order engine — CLI entry point.

Usage examples:
  python main.py check                               # Verify data files and database
  python main.py plan                                # Preview low-stock drafts
  python main.py plan --supplier SUP-001             # ...for one supplier only
  python main.py generate                            # Create pending orders from the plan
  python main.py list --status pending
  python main.py list --from 2024-03-01 --to 2024-03-31
  python main.py show OC-000001
  python main.py create --supplier SUP-001 --line P-001:10:4.50 --line P-002:5
  python main.py create --generic "Mercado Central" --line P-003
  python main.py send OC-000001
  python main.py receive OC-000001 --qty P-001=7 --notes "Caja dañada"
  python main.py receive OC-000002 --direct          # Finalize, ordered == received
  python main.py cancel OC-000003
  python main.py delete OC-000004
  python main.py serve --port 8000                   # REST API
"""
import logging
import sys
from datetime import datetime
from typing import Optional

import click

from config import Config
from models.draft import DraftLine, OrderDraft
from models.purchase_order import (
    ALL_STATUSES, GenericSupplier, PurchaseOrder, RegisteredSupplier,
)
from procurement.errors import ProcurementError
from procurement.planner import suggest_quantity
from procurement.service import ProcurementService


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s  %(levelname)-8s  %(name)s — %(message)s",
        datefmt="%H:%M:%S",
    )


def _service(ctx: click.Context) -> ProcurementService:
    if "service" not in ctx.obj:
        ctx.obj["service"] = ProcurementService(Config())
    return ctx.obj["service"]


def _find_order(service: ProcurementService, ref: str) -> PurchaseOrder:
    """Accept either an order id or an order number."""
    order = service.db.get_order(ref) or service.db.get_order_by_number(ref)
    if order is None:
        raise click.ClickException(f"Purchase order not found: {ref}")
    return order


def _fail(exc: ProcurementError) -> None:
    click.echo(f"✗ {type(exc).__name__}: {exc}", err=True)
    sys.exit(1)


def _print_order(order: PurchaseOrder) -> None:
    click.echo()
    click.echo(f"  Order:       {order.order_number}  ({order.id})")
    click.echo(f"  Supplier:    {order.supplier_name}")
    click.echo(f"  Status:      {order.status}")
    click.echo(f"  Ordered:     {order.order_date}")
    if order.expected_delivery_date:
        click.echo(f"  Expected:    {order.expected_delivery_date}")
    if order.received_date:
        click.echo(f"  Received:    {order.received_date}")
    click.echo()
    for line in order.items:
        received = "" if line.received_quantity is None else f"  received {line.received_quantity}"
        click.echo(
            f"    {line.product_name:<30} {line.quantity:>5} × {line.unit_price:>8.2f}"
            f"  = {line.subtotal:>9.2f}{received}"
        )
    click.echo()
    click.echo(f"  Subtotal:    {order.subtotal:.2f}")
    click.echo(f"  Tax ({order.tax_rate:.0%}):   {order.tax:.2f}")
    click.echo(f"  Total:       {order.total:.2f}")
    if order.notes:
        click.echo(f"\n  Notes:\n    {order.notes}")
    if order.receive_notes:
        click.echo("\n  Reception notes:")
        for note_line in order.receive_notes.splitlines():
            click.echo(f"    {note_line}")
    click.echo()


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx: click.Context, verbose: bool) -> None:
    """Purchase Orders — plan replenishment, track orders, receive stock."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    _setup_logging(verbose)


# --------------------------------------------------------------------
# check command
# --------------------------------------------------------------------

@cli.command()
@click.pass_context
def check(ctx: click.Context) -> None:
    """Verify that the catalog files and database are ready."""
    status = _service(ctx).check_setup()

    click.echo("\n=== Procurement Setup Check ===\n")
    for key, label in [("products_csv", "products.csv"), ("suppliers_csv", "suppliers.csv")]:
        info = status[key]
        tick = "✓" if info["exists"] else "✗"
        count_str = f" ({info['count']} loaded)" if info["exists"] else " (file not found)"
        click.echo(f"  {label:<28} {tick}{count_str}")
        if not info["exists"]:
            click.echo(f"     → Expected at: {info['path']}")

    db = status["database"]
    click.echo(f"  Database:                    ✓  {db['path']} ({db['orders']} orders)")
    click.echo(f"  Reception required:          {'yes' if status['require_reception'] else 'no'}")
    click.echo(f"  Tax rate:                    {status['tax_rate']:.0%}")
    click.echo()


# --------------------------------------------------------------------
# planning commands
# --------------------------------------------------------------------

@cli.command()
@click.option("--supplier", "supplier_id", default=None, help="Only plan for this supplier id")
@click.pass_context
def plan(ctx: click.Context, supplier_id: Optional[str]) -> None:
    """Preview the orders that low stock would generate."""
    try:
        drafts = _service(ctx).generate_plan(supplier_id)
    except ProcurementError as exc:
        _fail(exc)

    if not drafts:
        click.echo("\n  ✓ Nothing to reorder — no products at or below their threshold.\n")
        return

    for draft in drafts:
        label = (
            draft.supplier.name or draft.supplier.supplier_id
            if isinstance(draft.supplier, RegisteredSupplier)
            else f"{draft.supplier.name} (generic)"
        )
        click.echo(f"\n  {label}")
        for line in draft.lines:
            click.echo(
                f"    {line.product_name:<30} stock {line.current_stock:>4} / "
                f"min {line.low_stock_threshold:>4}  → order {line.quantity}"
            )
    click.echo()


@cli.command()
@click.option("--supplier", "supplier_id", default=None, help="Only generate for this supplier id")
@click.pass_context
def generate(ctx: click.Context, supplier_id: Optional[str]) -> None:
    """Create one pending purchase order per supplier with low stock."""
    try:
        result = _service(ctx).generate_orders(supplier_id, actor="cli")
    except ProcurementError as exc:
        _fail(exc)

    if not result.orders and not result.skipped:
        click.echo("\n  ✓ Nothing to reorder.\n")
        return
    click.echo(f"\nGenerated {len(result.orders)} order(s):")
    for order in result.orders:
        click.echo(f"   {order.order_number}  {order.supplier_name:<30} {order.total:>10.2f}")
    for draft in result.skipped:
        click.echo(
            f"   ✗ skipped {draft.supplier.supplier_id}: supplier is not active "
            f"({len(draft.lines)} line(s))"
        )
    click.echo()


# --------------------------------------------------------------------
# order commands
# --------------------------------------------------------------------

@cli.command("list")
@click.option("--status", type=click.Choice(ALL_STATUSES), default=None)
@click.option("--search", default=None, help="Match order number or supplier name")
@click.option("--from", "start_date", type=click.DateTime(formats=["%Y-%m-%d"]), default=None,
              help="Orders placed on or after this date (YYYY-MM-DD)")
@click.option("--to", "end_date", type=click.DateTime(formats=["%Y-%m-%d"]), default=None,
              help="Orders placed on or before this date (YYYY-MM-DD)")
@click.pass_context
def list_orders(
    ctx: click.Context,
    status: Optional[str],
    search: Optional[str],
    start_date: Optional[datetime],
    end_date: Optional[datetime],
) -> None:
    """List purchase orders, newest first."""
    rows = _service(ctx).db.list_orders(
        status=status,
        search=search,
        start_date=start_date.date().isoformat() if start_date else None,
        end_date=end_date.date().isoformat() if end_date else None,
    )
    if not rows:
        click.echo("No purchase orders found.")
        return
    for row in rows:
        click.echo(
            f"  {row['order_number']}  {row['status']:<19} "
            f"{(row['supplier_name'] or ''):<30} {row['total']:>10.2f}"
        )


@cli.command()
@click.argument("order_ref")
@click.pass_context
def show(ctx: click.Context, order_ref: str) -> None:
    """Show one order by id or order number."""
    _print_order(_find_order(_service(ctx), order_ref))


def _parse_line(raw: str) -> tuple[str, Optional[int], Optional[float]]:
    """PRODUCT[:QTY[:PRICE]] — missing parts come from the catalog."""
    parts = raw.split(":")
    if len(parts) > 3 or not parts[0]:
        raise click.BadParameter(f"expected PRODUCT[:QTY[:PRICE]], got {raw!r}", param_hint="--line")
    try:
        quantity = int(parts[1]) if len(parts) > 1 and parts[1] else None
        price = float(parts[2]) if len(parts) > 2 and parts[2] else None
    except ValueError as exc:
        raise click.BadParameter(f"bad quantity or price in {raw!r}", param_hint="--line") from exc
    return parts[0], quantity, price


@cli.command()
@click.option("--supplier", "supplier_id", default=None, help="Registered supplier id")
@click.option("--generic", "generic_name", default=None, help="Free-text supplier name")
@click.option("--line", "lines", multiple=True, required=True, help="PRODUCT[:QTY[:PRICE]]")
@click.option("--notes", default=None)
@click.option("--expected", default=None, help="Expected delivery date (YYYY-MM-DD)")
@click.pass_context
def create(
    ctx: click.Context,
    supplier_id: Optional[str],
    generic_name: Optional[str],
    lines: tuple[str, ...],
    notes: Optional[str],
    expected: Optional[str],
) -> None:
    """Create a purchase order by hand."""
    if bool(supplier_id) == bool(generic_name):
        raise click.UsageError("Give exactly one of --supplier or --generic")

    service = _service(ctx)
    draft_lines = []
    for raw in lines:
        product_id, quantity, price = _parse_line(raw)
        product = service.catalog.get_product(product_id)
        if product is not None:
            draft_lines.append(DraftLine(
                product_id=product_id,
                product_name=product.name,
                sku=product.sku,
                quantity=quantity if quantity is not None else suggest_quantity(product),
                unit_price=price if price is not None else product.purchase_price,
            ))
        else:
            draft_lines.append(DraftLine(
                product_id=product_id,
                quantity=quantity if quantity is not None else 1,
                unit_price=price or 0.0,
            ))

    supplier = RegisteredSupplier(supplier_id=supplier_id) if supplier_id else GenericSupplier(name=generic_name)
    try:
        order = service.orders.create_order(
            OrderDraft(supplier=supplier, lines=draft_lines, notes=notes, expected_delivery_date=expected),
            actor="cli",
        )
    except ProcurementError as exc:
        _fail(exc)
    _print_order(order)


@cli.command()
@click.argument("order_ref")
@click.pass_context
def send(ctx: click.Context, order_ref: str) -> None:
    """Mark a pending order as sent to the supplier."""
    service = _service(ctx)
    try:
        order = service.orders.send_order(_find_order(service, order_ref).id, actor="cli")
    except ProcurementError as exc:
        _fail(exc)
    click.echo(f"✓ {order.order_number} is now {order.status}")


@cli.command()
@click.argument("order_ref")
@click.pass_context
def cancel(ctx: click.Context, order_ref: str) -> None:
    """Cancel a pending order."""
    service = _service(ctx)
    try:
        order = service.orders.cancel_order(_find_order(service, order_ref).id, actor="cli")
    except ProcurementError as exc:
        _fail(exc)
    click.echo(f"✓ {order.order_number} is now {order.status}")


@cli.command()
@click.argument("order_ref")
@click.option("--qty", "quantities", multiple=True, help="LINE_OR_PRODUCT=RECEIVED (default: 0)")
@click.option("--all", "receive_all", is_flag=True, help="Start from ordered quantities; --qty overrides")
@click.option("--notes", default=None, help="Reception notes")
@click.option("--direct", is_flag=True, help="Finalize without capturing quantities")
@click.pass_context
def receive(
    ctx: click.Context,
    order_ref: str,
    quantities: tuple[str, ...],
    receive_all: bool,
    notes: Optional[str],
    direct: bool,
) -> None:
    """Receive an order and add the received stock to the catalog."""
    service = _service(ctx)
    order = _find_order(service, order_ref)

    received: dict[str, int] = {}
    if receive_all:
        received = {line.line_id: line.quantity for line in order.items}
    for raw in quantities:
        key, sep, value = raw.partition("=")
        if not sep or not value.strip().lstrip("-").isdigit():
            raise click.BadParameter(f"expected LINE=QTY, got {raw!r}", param_hint="--qty")
        received[key.strip()] = int(value)

    try:
        order, discrepancies = service.orders.receive_order(
            order.id,
            received,
            notes,
            require_reception=False if direct else None,
            actor="cli",
        )
    except ProcurementError as exc:
        _fail(exc)

    if discrepancies:
        click.echo(f"⚠  {order.order_number} received with {len(discrepancies)} discrepancy(ies):")
        for d in discrepancies:
            click.echo(f"    {d.describe()}")
    else:
        click.echo(f"✓ {order.order_number} received — all quantities match")


@cli.command()
@click.argument("order_ref")
@click.pass_context
def delete(ctx: click.Context, order_ref: str) -> None:
    """Delete a pending order (its number is never reused)."""
    service = _service(ctx)
    order = _find_order(service, order_ref)
    try:
        service.orders.delete_order(order.id, actor="cli")
    except ProcurementError as exc:
        _fail(exc)
    click.echo(f"✓ Deleted {order.order_number}")


# --------------------------------------------------------------------
# serve command
# --------------------------------------------------------------------

@cli.command()
@click.option("--host", default="127.0.0.1", show_default=True)
@click.option("--port", default=8000, show_default=True, type=int)
@click.option("--reload", is_flag=True, help="Restart on code changes (development)")
def serve(host: str, port: int, reload: bool) -> None:
    """Run the REST API."""
    import uvicorn

    click.echo(f"Serving purchase orders API on http://{host}:{port}")
    uvicorn.run("api.app:app", host=host, port=port, reload=reload)


if __name__ == "__main__":
    cli()
