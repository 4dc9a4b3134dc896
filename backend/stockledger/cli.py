# Overview: Flask CLI command groups for bootstrap, stock operations and transfers.

# backend/stockledger/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init-db
#   Create all tables (use `flask db upgrade` for migrated deployments).
#
# Catalog identity:
# - python -m flask catalog add-store --name "Main Store" --code MAIN
# - python -m flask catalog add-sku --sku TS-RED-M --name "T-Shirt Red M"
#
# Stock ledger:
# - python -m flask stock add --sku-id 1 --store-id 1 --amount 10 --actor-id 1 [--notes "..."]
# - python -m flask stock reduce --sku-id 1 --store-id 1 --amount 3 --actor-id 1
# - python -m flask stock set --sku-id 1 --store-id 1 --quantity 25 --actor-id 1
# - python -m flask stock show --sku-id 1 --store-id 1 [--threshold 8]
# - python -m flask stock history --sku-id 1 [--store-id 1] [--type addition] [--start-date 2024-05-01]
# - python -m flask stock low-stock [--store-id 1] [--exclude-out-of-stock]
# - python -m flask stock audit --sku-id 1 --store-id 1
# - python -m flask stock retag --transaction-id 7 --type transfer_out
#
# Transfers:
# - python -m flask transfers create --from-store-id 1 --to-store-id 2 --sku-id 1 --quantity 4 --actor-id 1 [--status pending]
# - python -m flask transfers status 3 in_transit --actor-id 1 [--notes "..."]
# - python -m flask transfers cancel 3 --reason "damaged" --actor-id 1
# - python -m flask transfers list [--status pending] [--from-store-id 1]
# - python -m flask transfers show 3 [--with-transactions]
# - python -m flask transfers batch items.json --actor-id 1 [--order-id 42]
#
# Domain failures print "FAIL <message>" and exit with status 1.

import json

import click
from flask.cli import with_appcontext

from .errors import InventoryError
from .extensions import db
from .models import Sku, Store
from .models.inventory import TRANSACTION_TYPES
from .services import stock_service, transaction_log, transfer_batch_service, transfer_service
from .services.transfer_service import INITIAL_STATUSES, TRANSFER_STATUSES


def _fail(message: str):
    click.echo(f"FAIL {message}")
    click.get_current_context().exit(1)


def _echo_record(stock_record):
    flags = []
    if stock_record.is_out_of_stock:
        flags.append("OUT")
    elif stock_record.is_low_stock:
        flags.append("LOW")
    click.echo(
        f"SKU {stock_record.sku_id} @ store {stock_record.store_id}: "
        f"quantity={stock_record.quantity} threshold={stock_record.low_stock_threshold}"
        + (f" [{', '.join(flags)}]" if flags else "")
    )


def _echo_transfer(transfer):
    click.echo(
        f"#{transfer.id} [{transfer.status}] SKU {transfer.sku_id} x{transfer.quantity} "
        f"store {transfer.from_store_id} -> {transfer.to_store_id}"
        + (f" order={transfer.order_id}" if transfer.order_id else "")
    )


@click.group('system')
def system_group():
    """System bootstrap commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables for the configured database."""
    db.create_all()
    click.echo("PASS Database tables created")


@click.group('catalog')
def catalog_group():
    """Minimal store/SKU identity records."""


@catalog_group.command('add-store')
@click.option('--name', required=True)
@click.option('--code', default=None)
@with_appcontext
def add_store(name, code):
    if code and db.session.query(Store).filter_by(code=code).first():
        _fail(f"Store with code '{code}' already exists")
    store = Store(name=name, code=code)
    db.session.add(store)
    db.session.commit()
    click.echo(f"PASS Created store: {store.name} (ID: {store.id})")


@catalog_group.command('add-sku')
@click.option('--sku', 'sku_code', required=True)
@click.option('--name', required=True)
@with_appcontext
def add_sku(sku_code, name):
    if db.session.query(Sku).filter_by(sku=sku_code).first():
        _fail(f"SKU '{sku_code}' already exists")
    sku = Sku(sku=sku_code, name=name)
    db.session.add(sku)
    db.session.commit()
    click.echo(f"PASS Created SKU: {sku.sku} (ID: {sku.id})")


@click.group('stock')
def stock_group():
    """Stock ledger operations."""


def _ledger_options(func):
    func = click.option('--notes', default=None)(func)
    func = click.option('--actor-id', type=int, required=True)(func)
    func = click.option('--store-id', type=int, required=True)(func)
    func = click.option('--sku-id', type=int, required=True)(func)
    return func


@stock_group.command('add')
@_ledger_options
@click.option('--amount', type=int, required=True)
@with_appcontext
def stock_add(sku_id, store_id, actor_id, notes, amount):
    try:
        stock_record = stock_service.add_stock(sku_id, store_id, amount, actor_id=actor_id, notes=notes)
    except InventoryError as e:
        _fail(str(e))
    click.echo("PASS Stock added")
    _echo_record(stock_record)


@stock_group.command('reduce')
@_ledger_options
@click.option('--amount', type=int, required=True)
@with_appcontext
def stock_reduce(sku_id, store_id, actor_id, notes, amount):
    try:
        stock_record = stock_service.reduce_stock(sku_id, store_id, amount, actor_id=actor_id, notes=notes)
    except InventoryError as e:
        _fail(str(e))
    click.echo("PASS Stock reduced")
    _echo_record(stock_record)


@stock_group.command('set')
@_ledger_options
@click.option('--quantity', type=int, required=True)
@with_appcontext
def stock_set(sku_id, store_id, actor_id, notes, quantity):
    try:
        stock_record = stock_service.set_stock(sku_id, store_id, quantity, actor_id=actor_id, notes=notes)
    except InventoryError as e:
        _fail(str(e))
    click.echo("PASS Stock set")
    _echo_record(stock_record)


@stock_group.command('show')
@click.option('--sku-id', type=int, required=True)
@click.option('--store-id', type=int, required=True)
@click.option('--threshold', type=int, default=None, help='Update the low-stock threshold first')
@with_appcontext
def stock_show(sku_id, store_id, threshold):
    try:
        if threshold is not None:
            stock_record = stock_service.update_low_stock_threshold(sku_id, store_id, threshold)
        else:
            stock_record = stock_service.get_stock(sku_id, store_id)
    except InventoryError as e:
        _fail(str(e))
    _echo_record(stock_record)


@stock_group.command('history')
@click.option('--sku-id', type=int, required=True)
@click.option('--store-id', type=int, default=None)
@click.option('--type', 'txn_type', type=click.Choice(TRANSACTION_TYPES), default=None)
@click.option('--start-date', default=None)
@click.option('--end-date', default=None)
@click.option('--page', type=int, default=1)
@click.option('--per-page', type=int, default=None)
@with_appcontext
def stock_history(sku_id, store_id, txn_type, start_date, end_date, page, per_page):
    result = transaction_log.sku_history(
        sku_id,
        store_id=store_id,
        txn_type=txn_type,
        start_date=start_date,
        end_date=end_date,
        page=page,
        per_page=per_page,
    )
    click.echo(f"Page {result['page']}/{result['pages']} ({result['total']} transactions)")
    for txn in result["transactions"]:
        click.echo(
            f"  {txn.id}: {txn.type:<15} {txn.delta:+d} "
            f"({txn.quantity_before} -> {txn.quantity_after}) actor={txn.actor_id}"
            + (f" transfer={txn.transfer_id}" if txn.transfer_id else "")
            + (f" | {txn.notes}" if txn.notes else "")
        )


@stock_group.command('low-stock')
@click.option('--store-id', type=int, default=None)
@click.option('--exclude-out-of-stock', is_flag=True, default=False)
@with_appcontext
def stock_low(store_id, exclude_out_of_stock):
    rows = stock_service.list_low_stock(store_id, include_out_of_stock=not exclude_out_of_stock)
    if not rows:
        click.echo("PASS No low-stock items")
        return
    for row in rows:
        click.echo(
            f"{row['severity'].upper():<8} SKU {row['sku_id']} @ store {row['store_id']}: "
            f"quantity={row['quantity']} threshold={row['low_stock_threshold']} shortage={row['shortage']}"
        )


@stock_group.command('audit')
@click.option('--sku-id', type=int, required=True)
@click.option('--store-id', type=int, required=True)
@with_appcontext
def stock_audit(sku_id, store_id):
    try:
        stock_record = stock_service.get_stock(sku_id, store_id)
        report = transaction_log.audit_stock_record(stock_record.id)
    except InventoryError as e:
        _fail(str(e))
    if report["ok"]:
        click.echo(
            f"PASS Audit trail complete: {report['transaction_count']} transactions, "
            f"quantity {report['quantity']}"
        )
        return
    for problem in report["problems"]:
        click.echo(f"  - {problem}")
    _fail(f"Audit trail broken for stock record {report['stock_record_id']}")


@stock_group.command('retag')
@click.option('--transaction-id', type=int, required=True)
@click.option('--type', 'new_type', type=click.Choice(TRANSACTION_TYPES), required=True)
@with_appcontext
def stock_retag(transaction_id, new_type):
    try:
        txn = transaction_log.retag_type(transaction_id, new_type)
    except InventoryError as e:
        _fail(str(e))
    click.echo(f"PASS Transaction {txn.id} is now {txn.type}")


@click.group('transfers')
def transfers_group():
    """Inter-store transfer workflow."""


@transfers_group.command('create')
@click.option('--from-store-id', type=int, required=True)
@click.option('--to-store-id', type=int, required=True)
@click.option('--sku-id', type=int, required=True)
@click.option('--quantity', type=int, required=True)
@click.option('--actor-id', type=int, required=True)
@click.option('--status', type=click.Choice(INITIAL_STATUSES), default='completed', show_default=True)
@click.option('--notes', default=None)
@click.option('--order-id', type=int, default=None)
@with_appcontext
def transfers_create(from_store_id, to_store_id, sku_id, quantity, actor_id, status, notes, order_id):
    try:
        transfer = transfer_service.create_transfer(
            from_store_id,
            to_store_id,
            sku_id,
            quantity,
            actor_id=actor_id,
            status=status,
            notes=notes,
            order_id=order_id,
        )
    except InventoryError as e:
        _fail(str(e))
    click.echo("PASS Transfer created")
    _echo_transfer(transfer)


@transfers_group.command('status')
@click.argument('transfer_id', type=int)
@click.argument('new_status', type=click.Choice(TRANSFER_STATUSES))
@click.option('--actor-id', type=int, required=True)
@click.option('--notes', default=None)
@with_appcontext
def transfers_status(transfer_id, new_status, actor_id, notes):
    try:
        transfer = transfer_service.update_transfer_status(
            transfer_id, new_status, actor_id=actor_id, notes=notes
        )
    except InventoryError as e:
        _fail(str(e))
    click.echo("PASS Transfer updated")
    _echo_transfer(transfer)


@transfers_group.command('cancel')
@click.argument('transfer_id', type=int)
@click.option('--reason', required=True)
@click.option('--actor-id', type=int, required=True)
@with_appcontext
def transfers_cancel(transfer_id, reason, actor_id):
    try:
        transfer = transfer_service.cancel_transfer(transfer_id, reason=reason, actor_id=actor_id)
    except InventoryError as e:
        _fail(str(e))
    click.echo("PASS Transfer cancelled")
    _echo_transfer(transfer)


@transfers_group.command('list')
@click.option('--from-store-id', type=int, default=None)
@click.option('--to-store-id', type=int, default=None)
@click.option('--sku-id', type=int, default=None)
@click.option('--status', type=click.Choice(TRANSFER_STATUSES), default=None)
@click.option('--order-id', type=int, default=None)
@click.option('--start-date', default=None)
@click.option('--end-date', default=None)
@click.option('--page', type=int, default=1)
@click.option('--per-page', type=int, default=None)
@with_appcontext
def transfers_list(from_store_id, to_store_id, sku_id, status, order_id, start_date, end_date, page, per_page):
    result = transfer_service.list_transfers(
        from_store_id=from_store_id,
        to_store_id=to_store_id,
        sku_id=sku_id,
        status=status,
        order_id=order_id,
        start_date=start_date,
        end_date=end_date,
        page=page,
        per_page=per_page,
    )
    click.echo(f"Page {result['page']}/{result['pages']} ({result['total']} transfers)")
    for transfer in result["transfers"]:
        _echo_transfer(transfer)


@transfers_group.command('show')
@click.argument('transfer_id', type=int)
@click.option('--with-transactions', is_flag=True, default=False)
@with_appcontext
def transfers_show(transfer_id, with_transactions):
    try:
        transfer = transfer_service.get_transfer(transfer_id, include_transactions=with_transactions)
    except InventoryError as e:
        _fail(str(e))
    click.echo(json.dumps(transfer.to_dict(include_transactions=with_transactions), indent=2))


@transfers_group.command('batch')
@click.argument('items_file', type=click.File('r'))
@click.option('--actor-id', type=int, required=True)
@click.option('--order-id', type=int, default=None)
@with_appcontext
def transfers_batch(items_file, actor_id, order_id):
    """Create transfers from a JSON list of {from_store_id, to_store_id, sku_id, quantity, notes?, status?}."""
    try:
        items = json.load(items_file)
    except json.JSONDecodeError as e:
        _fail(f"Invalid JSON: {e}")
    if not isinstance(items, list):
        _fail("Batch file must contain a JSON list")

    try:
        transfers = transfer_batch_service.create_transfer_batch(items, actor_id=actor_id, order_id=order_id)
    except InventoryError as e:
        _fail(str(e))
    click.echo(f"PASS Created {len(transfers)} transfers")
    for transfer in transfers:
        _echo_transfer(transfer)


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(catalog_group)
    app.cli.add_command(stock_group)
    app.cli.add_command(transfers_group)
