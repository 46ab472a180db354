"""
CLI command tests (flask system / ledger / orders groups).
"""

from orderledger.models import Item, ItemBalance, Supplier


def test_seed_is_idempotent(app, db_session):
    runner = app.test_cli_runner()

    first = runner.invoke(args=["system", "seed"])
    second = runner.invoke(args=["system", "seed"])

    assert first.exit_code == 0, first.output
    assert "PASS Created item ITM-001" in first.output
    assert second.exit_code == 0
    assert "SKIP Item ITM-001 exists" in second.output
    assert db_session.query(Item).count() == 2
    assert db_session.query(Supplier).count() == 1


def test_verify_and_reindex(app, db_session, second_item):
    runner = app.test_cli_runner()

    result = runner.invoke(args=["ledger", "verify"])
    assert result.exit_code == 0
    assert "PASS" in result.output

    balance = db_session.query(ItemBalance).filter_by(item_id=second_item.id).one()
    balance.stock = 7
    db_session.commit()

    result = runner.invoke(args=["ledger", "verify"])
    assert result.exit_code == 1
    assert f"FAIL item={second_item.id}" in result.output

    result = runner.invoke(args=["ledger", "reindex", "--item-id", str(second_item.id), "--measure", "stock"])
    assert result.exit_code == 0
    assert "stock=50" in result.output

    assert runner.invoke(args=["ledger", "verify"]).exit_code == 0


def test_reindex_unknown_item(app, db_session):
    result = app.test_cli_runner().invoke(args=["ledger", "reindex", "--item-id", "9999"])
    assert result.exit_code != 0
    assert "not found" in result.output


def test_orders_due(app, place_order, item):
    place_order("purchase", [{"item_id": item.id, "quantity": 1, "unit_price_cents": 100}], due_date="2000-01-01")

    result = app.test_cli_runner().invoke(args=["orders", "due", "--days", "0"])

    assert result.exit_code == 0
    assert "OVERDUE" in result.output
