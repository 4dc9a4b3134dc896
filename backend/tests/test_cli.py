import json

from stockledger.models import Transfer
from stockledger.services import stock_service


def _invoke(app, *args):
    return app.test_cli_runner().invoke(args=list(args))


def test_catalog_and_stock_commands(app, db_session):
    result = _invoke(app, "catalog", "add-store", "--name", "Main", "--code", "MAIN")
    assert result.exit_code == 0, result.output
    assert "PASS Created store: Main" in result.output

    result = _invoke(app, "catalog", "add-sku", "--sku", "S1", "--name", "Shirt")
    assert result.exit_code == 0, result.output

    result = _invoke(app, "catalog", "add-sku", "--sku", "S1", "--name", "Duplicate")
    assert result.exit_code == 1
    assert "FAIL SKU 'S1' already exists" in result.output


def test_stock_add_reduce_and_audit(app, store_a, sku_s1):
    common = ["--sku-id", str(sku_s1.id), "--store-id", str(store_a.id)]

    result = _invoke(app, "stock", "add", *common, "--actor-id", "1", "--amount", "10")
    assert result.exit_code == 0, result.output
    assert "quantity=10" in result.output

    result = _invoke(app, "stock", "reduce", *common, "--actor-id", "1", "--amount", "12")
    assert result.exit_code == 1
    assert "FAIL Insufficient stock" in result.output

    result = _invoke(app, "stock", "set", *common, "--actor-id", "1", "--quantity", "3")
    assert result.exit_code == 0, result.output
    assert "[LOW]" in result.output

    result = _invoke(app, "stock", "history", "--sku-id", str(sku_s1.id))
    assert "(2 transactions)" in result.output
    assert "adjustment" in result.output

    result = _invoke(app, "stock", "audit", *common)
    assert result.exit_code == 0, result.output
    assert "PASS Audit trail complete" in result.output

    result = _invoke(app, "stock", "low-stock")
    assert "LOW" in result.output


def test_transfer_commands(app, stocked):
    sku_id, a, b = stocked

    result = _invoke(
        app, "transfers", "create",
        "--from-store-id", str(a), "--to-store-id", str(b),
        "--sku-id", str(sku_id), "--quantity", "4", "--actor-id", "1",
        "--status", "pending",
    )
    assert result.exit_code == 0, result.output
    transfer_id = Transfer.query.one().id

    result = _invoke(app, "transfers", "status", str(transfer_id), "in_transit", "--actor-id", "1")
    assert result.exit_code == 0, result.output
    assert "[in_transit]" in result.output

    result = _invoke(app, "transfers", "cancel", str(transfer_id), "--reason", "damaged", "--actor-id", "1")
    assert result.exit_code == 0, result.output
    assert stock_service.get_quantity(sku_id, a) == 10

    result = _invoke(app, "transfers", "cancel", str(transfer_id), "--reason", "again", "--actor-id", "1")
    assert result.exit_code == 1
    assert result.output.startswith("FAIL")

    result = _invoke(app, "transfers", "show", str(transfer_id), "--with-transactions")
    data = json.loads(result.output)
    assert data["status"] == "cancelled"
    assert [t["type"] for t in data["transactions"]] == ["transfer_out", "transfer_cancel"]

    result = _invoke(app, "transfers", "list", "--status", "cancelled")
    assert "(1 transfers)" in result.output


def test_transfer_batch_command(app, stocked, tmp_path):
    sku_id, a, b = stocked
    items_file = tmp_path / "items.json"
    items_file.write_text(json.dumps([
        {"from_store_id": a, "to_store_id": b, "sku_id": sku_id, "quantity": 2, "status": "completed"},
        {"from_store_id": a, "to_store_id": b, "sku_id": sku_id, "quantity": 3},
    ]))

    result = _invoke(app, "transfers", "batch", str(items_file), "--actor-id", "1", "--order-id", "9")
    assert result.exit_code == 0, result.output
    assert "PASS Created 2 transfers" in result.output
    assert stock_service.get_quantity(sku_id, b) == 2

    items_file.write_text(json.dumps([
        {"from_store_id": a, "to_store_id": b, "sku_id": sku_id, "quantity": 50},
    ]))
    result = _invoke(app, "transfers", "batch", str(items_file), "--actor-id", "1")
    assert result.exit_code == 1
    assert "FAIL Insufficient stock for SKU S1" in result.output


def test_transfer_batch_command_rejects_non_object_items(app, stocked, tmp_path):
    items_file = tmp_path / "items.json"
    items_file.write_text(json.dumps([1, 2]))

    result = _invoke(app, "transfers", "batch", str(items_file), "--actor-id", "1")
    assert result.exit_code == 1
    assert "FAIL Batch item 0 must be an object" in result.output
