"""
Tests for the `flask returns` command group.
"""

from decimal import Decimal


def test_resync_reports_adjustment(app, db_session, purchase_order, file_return, return_body):
    file_return(return_body(purchase_order, quantity=2), status="COMPLETED")
    runner = app.test_cli_runner()

    result = runner.invoke(args=["returns", "resync", str(purchase_order.id)])

    assert result.exit_code == 0
    assert "PASS" in result.output
    assert "subtotal=90.00" in result.output
    assert purchase_order.subtotal == Decimal("90.00")


def test_resync_unknown_order_fails(app, db_session):
    result = app.test_cli_runner().invoke(args=["returns", "resync", "999"])
    assert result.exit_code != 0
    assert "not found" in result.output


def test_resync_all_counts_orders(app, db_session, make_purchase_order, purchase_order):
    make_purchase_order(items=[], tax_amount=0, paid_amount=0)

    result = app.test_cli_runner().invoke(args=["returns", "resync-all"])

    assert result.exit_code == 0
    assert "2 purchase orders checked, 1 adjusted" in result.output


def test_list_filters(app, db_session, purchase_order, file_return, return_body):
    file_return(return_body(purchase_order, quantity=1, reason="Late delivery"))
    runner = app.test_cli_runner()

    result = runner.invoke(args=["returns", "list", "--status", "pending"])
    assert result.exit_code == 0
    assert "PENDING" in result.output
    assert "Delta Building Supplies" in result.output

    result = runner.invoke(args=["returns", "list", "--status", "completed"])
    assert "No returns found." in result.output

    result = runner.invoke(args=["returns", "list", "--type", "refund"])
    assert result.exit_code != 0
