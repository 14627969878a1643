"""
orderflow CLI - run the services and operate their stores.

Services:
    orderflow run order               # order service (publisher + reconciler)
    orderflow run inventory           # inventory service (publisher + reservation engine)
    orderflow run all                 # both, sharing one bus (local development)

Operations:
    orderflow init-db                 # create tables for both services
    orderflow order create --email ada@example.com --item SKU-A:2:100.00
    orderflow order cancel <order-id>
    orderflow stock set SKU-A 5
    orderflow outbox errors --service order
    orderflow outbox requeue <record-id> --service order

Configuration comes from the environment (and a .env file); see
orderflow.core.config.ServiceConfig.
"""

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

import click
from rich.console import Console
from rich.table import Table

from orderflow import __version__
from orderflow.bus.factory import create_event_bus_from_env
from orderflow.core.config import ServiceConfig
from orderflow.core.env import load_env
from orderflow.core.exceptions import OrderflowError
from orderflow.inventory.repository import InventoryRepository
from orderflow.monitoring.logging import configure_logging
from orderflow.monitoring.metrics import start_metrics_server
from orderflow.orders.repository import OrderRepository
from orderflow.orders.service import OrderService
from orderflow.outbox.store import OutboxStore
from orderflow.outbox.types import OutboxRecord
from orderflow.services import InventoryServiceRuntime, OrderServiceRuntime, run_services
from orderflow.storage.database import Database
from orderflow.storage.factory import create_database
from orderflow.storage.schema import INVENTORY_SERVICE_TABLES, ORDER_SERVICE_TABLES

console = Console()

_TABLES = {
    "order": ORDER_SERVICE_TABLES,
    "inventory": INVENTORY_SERVICE_TABLES,
}

service_option = click.option(
    "--service",
    type=click.Choice(["order", "inventory"]),
    default="order",
    show_default=True,
    help="Service whose database to use",
)


class OrderedGroup(click.Group):
    """Click Group that lists commands in the order they were added."""

    def list_commands(self, ctx):
        return list(self.commands.keys())


def _run(func: Callable[..., Awaitable[Any]], *args: Any) -> Any:
    try:
        return asyncio.run(func(*args))
    except OrderflowError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise SystemExit(1) from e


async def _open(service: str) -> Database:
    config = ServiceConfig.from_env(service)
    database = create_database(config.database_url)
    await database.initialize(_TABLES[service])
    return database


# ============================================================================
# CLI Group
# ============================================================================


@click.group(cls=OrderedGroup)
@click.version_option(version=__version__, prog_name="orderflow")
@click.option("--env-file", type=click.Path(dir_okay=False), default=None, help="Load this .env file")
@click.option("--log-level", default="INFO", show_default=True)
@click.option("--json-logs/--plain-logs", default=False, help="Structured JSON log lines")
def cli(env_file, log_level, json_logs):
    """
    orderflow - order placement and inventory reservation over an event bus.

    \b
    Services:
        run              Run a service until SIGTERM/SIGINT
        init-db          Create tables
    \b
    Operations:
        order            Create, cancel and inspect orders
        stock            Seed and inspect inventory
        outbox           Inspect and replay outbox records
        ledger           Ledger housekeeping
    """
    load_env(env_file)
    configure_logging(log_level, json_format=json_logs)


# ============================================================================
# orderflow init-db / run
# ============================================================================


@cli.command("init-db")
@click.option(
    "--service",
    type=click.Choice(["order", "inventory", "all"]),
    default="all",
    show_default=True,
)
def init_db(service):
    """Create the tables a service needs in its database."""

    async def _init():
        for name in ["order", "inventory"] if service == "all" else [service]:
            database = await _open(name)
            await database.close()
            console.print(f"[green]✓ {name} tables ready[/green]")

    _run(_init)


@cli.command("run")
@click.argument("service", type=click.Choice(["order", "inventory", "all"]))
@click.option("--metrics-port", type=int, default=None, help="Serve Prometheus metrics on this port")
def run_service(service, metrics_port):
    """Run a service: outbox publisher plus consumer workers."""
    if metrics_port:
        start_metrics_server(metrics_port)
        console.print(f"[dim]Metrics on :{metrics_port}/metrics[/dim]")

    async def _serve():
        bus = create_event_bus_from_env()
        await bus.connect()
        runtimes = []
        if service in ("order", "all"):
            runtimes.append(OrderServiceRuntime(ServiceConfig.from_env("order"), bus))
        if service in ("inventory", "all"):
            runtimes.append(InventoryServiceRuntime(ServiceConfig.from_env("inventory"), bus))
        try:
            await run_services(runtimes)
        finally:
            await bus.close()

    console.print(f"[bold blue]Starting {service} service(s)[/bold blue]")
    _run(_serve)


# ============================================================================
# orderflow order
# ============================================================================


@cli.group(cls=OrderedGroup)
def order():
    """Create, cancel and inspect orders."""


def _parse_item(raw: str) -> dict[str, Any]:
    try:
        sku, quantity, price = raw.split(":")
        return {"sku": sku, "quantity": int(quantity), "unit_price": price}
    except ValueError as e:
        msg = f"Item must look like SKU:QUANTITY:UNIT_PRICE, got {raw!r}"
        raise click.BadParameter(msg) from e


def _order_table(orders) -> Table:
    table = Table(title="Orders")
    table.add_column("Order", style="cyan")
    table.add_column("Status")
    table.add_column("Customer")
    table.add_column("Items")
    table.add_column("Total", justify="right")
    table.add_column("Updated")
    colors = {"PENDING": "yellow", "CONFIRMED": "green", "FAILED": "red", "CANCELED": "dim"}
    for o in orders:
        table.add_row(
            o.order_id,
            f"[{colors[o.status.value]}]{o.status.value}[/]",
            o.customer_email,
            ", ".join(f"{i.sku}x{i.quantity}" for i in o.items),
            str(o.total_amount),
            o.updated_at.isoformat(timespec="seconds"),
        )
    return table


@order.command("create")
@click.option("--email", required=True, help="Customer email")
@click.option("--item", "items", multiple=True, required=True, help="SKU:QUANTITY:UNIT_PRICE")
@click.option("--idempotency-key", default=None)
@click.option("--correlation-id", default=None)
def order_create(email, items, idempotency_key, correlation_id):
    """Create an order (returns immediately with status PENDING)."""
    parsed = [_parse_item(raw) for raw in items]

    async def _create():
        database = await _open("order")
        try:
            service = OrderService(database, OutboxStore(database))
            created = await service.create_order(email, parsed, idempotency_key, correlation_id)
        finally:
            await database.close()
        console.print(f"[green]✓ Order {created.order_id} {created.status.value}[/green]")

    _run(_create)


@order.command("cancel")
@click.argument("order_id")
def order_cancel(order_id):
    """Cancel an order that is still PENDING."""

    async def _cancel():
        database = await _open("order")
        try:
            await OrderService(database, OutboxStore(database)).cancel_order(order_id)
        finally:
            await database.close()
        console.print(f"[green]✓ Order {order_id} canceled[/green]")

    _run(_cancel)


@order.command("show")
@click.argument("order_id", required=False)
@click.option("--limit", default=20, show_default=True)
def order_show(order_id, limit):
    """Show one order, or the most recent ones."""

    async def _show():
        database = await _open("order")
        try:
            if order_id:
                orders = [await OrderService(database, OutboxStore(database)).get_order(order_id)]
            else:
                orders = await OrderRepository(database).list_recent(limit)
        finally:
            await database.close()
        console.print(_order_table(orders))

    _run(_show)


# ============================================================================
# orderflow stock
# ============================================================================


@cli.group(cls=OrderedGroup)
def stock():
    """Seed and inspect inventory."""


@stock.command("set")
@click.argument("sku")
@click.argument("quantity", type=click.IntRange(min=0))
def stock_set(sku, quantity):
    """Set the available quantity of a sku."""

    async def _set():
        database = await _open("inventory")
        try:
            line = await InventoryRepository(database).set_stock(sku, quantity)
        finally:
            await database.close()
        console.print(f"[green]✓ {line.sku}: available={line.available} reserved={line.reserved}[/green]")

    _run(_set)


@stock.command("show")
def stock_show():
    """List inventory lines."""

    async def _show():
        database = await _open("inventory")
        try:
            lines = await InventoryRepository(database).list_all()
        finally:
            await database.close()
        table = Table(title="Inventory")
        table.add_column("SKU", style="cyan")
        table.add_column("Available", justify="right")
        table.add_column("Reserved", justify="right")
        for line in lines:
            table.add_row(line.sku, str(line.available), str(line.reserved))
        console.print(table)

    _run(_show)


# ============================================================================
# orderflow outbox
# ============================================================================


@cli.group(cls=OrderedGroup)
def outbox():
    """Inspect and replay outbox records."""


def _outbox_table(title: str, records: list[OutboxRecord]) -> Table:
    table = Table(title=title)
    table.add_column("Record", style="cyan")
    table.add_column("Topic")
    table.add_column("Aggregate")
    table.add_column("Retries", justify="right")
    table.add_column("Last error", style="red")
    for record in records:
        table.add_row(
            record.record_id,
            record.event_type,
            record.aggregate_id,
            str(record.retry_count),
            record.last_error or "",
        )
    return table


@outbox.command("pending")
@service_option
def outbox_pending(service):
    """Number of NEW records waiting to be published."""

    async def _pending():
        database = await _open(service)
        try:
            count = await OutboxStore(database).pending_count()
        finally:
            await database.close()
        console.print(f"{count} pending record(s) in the {service} outbox")

    _run(_pending)


@outbox.command("errors")
@service_option
@click.option("--limit", default=50, show_default=True)
def outbox_errors(service, limit):
    """Records that exhausted their retry budget."""

    async def _errors():
        database = await _open(service)
        try:
            records = await OutboxStore(database).errored(limit)
        finally:
            await database.close()
        if not records:
            console.print("[green]No errored records[/green]")
            return
        console.print(_outbox_table(f"{service} outbox errors", records))

    _run(_errors)


@outbox.command("requeue")
@click.argument("record_id")
@service_option
def outbox_requeue(record_id, service):
    """Move an ERROR record back to NEW with a fresh retry budget."""

    async def _requeue():
        database = await _open(service)
        try:
            requeued = await OutboxStore(database).requeue(record_id)
        finally:
            await database.close()
        if requeued:
            console.print(f"[green]✓ Record {record_id} requeued[/green]")
        else:
            console.print(f"[yellow]Record {record_id} not found[/yellow]")

    _run(_requeue)


@outbox.command("purge")
@service_option
def outbox_purge(service):
    """Delete SENT records older than OUTBOX_SENT_RETENTION_DAYS."""

    async def _purge():
        config = ServiceConfig.from_env(service)
        database = await _open(service)
        try:
            runtime_cls = OrderServiceRuntime if service == "order" else InventoryServiceRuntime
            runtime = runtime_cls(config, create_event_bus_from_env(), database)
            deleted = await runtime.publisher.purge_sent()
        finally:
            await database.close()
        console.print(f"Purged {deleted} sent record(s)")

    _run(_purge)


# ============================================================================
# orderflow ledger
# ============================================================================


@cli.group(cls=OrderedGroup)
def ledger():
    """Consumer ledger housekeeping."""


@ledger.command("purge")
@service_option
def ledger_purge(service):
    """Delete ledger entries older than LEDGER_RETENTION_DAYS."""

    async def _purge():
        config = ServiceConfig.from_env(service)
        database = await _open(service)
        try:
            runtime_cls = OrderServiceRuntime if service == "order" else InventoryServiceRuntime
            runtime = runtime_cls(config, create_event_bus_from_env(), database)
            deleted = await runtime.purge_ledger()
        finally:
            await database.close()
        console.print(f"Purged {deleted} ledger entr{'y' if deleted == 1 else 'ies'}")

    _run(_purge)


def main():
    cli()


if __name__ == "__main__":
    main()
