"""
Tests for statements

Tests cover:
1. Driver statement totals and selection
2. Client statement totals and selection
3. Prepaid statements
4. The single unpaid -> paid transition
5. Issued statements do not follow later order edits
"""

from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import select

from conftest import DAY
from settlement.errors import DuplicateRecordError, InvalidStateTransitionError, NotFoundError, ValidationError
from settlement.models import AccountingCategory, RemitStatus, StatementKind, StatementStatus, TransactionType
from settlement.money import Money
from settlement.tables import AccountingEntry, ClientStatement, ClientTransaction, DriverStatement, Order

PERIOD = (date(2026, 3, 1), date(2026, 3, 31))


@pytest.fixture
def delivered(service, seed):
    """One normal and one driver-paid order, both settled."""
    driver, client = seed.driver(), seed.client()
    normal = seed.order(driver, client, order_amount_usd="20", order_amount_lbp="100000", delivery_fee_usd="5")
    paid = seed.order(
        driver, client,
        order_amount_usd="10", delivery_fee_usd="3",
        driver_paid_for_client=True, driver_paid_amount_usd="10",
    )
    service.process_order_delivery(normal.order_id)
    service.process_order_delivery(paid.order_id)
    return driver, client, normal, paid


class TestDriverStatement:
    """Tests for issuing driver statements."""

    def test_totals(self, service, delivered):
        driver, _, normal, paid = delivered

        statement = service.issue_driver_statement(driver.id, *PERIOD, created_by="clerk")

        assert statement.statement_id == "DS-000001"
        assert statement.status == StatementStatus.UNPAID
        assert statement.order_refs == [normal.order_id, paid.order_id]
        assert statement.total_collected_usd == Decimal("25")
        assert statement.total_collected_lbp == Decimal("100000")
        assert statement.total_delivery_fees_usd == Decimal("8")
        assert statement.total_driver_paid_refund_usd == Decimal("10")
        assert statement.net_due_usd == statement.total_collected_usd - statement.total_driver_paid_refund_usd
        assert statement.net_due_usd == Decimal("15")
        assert statement.net_due_lbp == Decimal("100000")

    def test_period_filter(self, service, delivered):
        driver = delivered[0]

        with pytest.raises(ValidationError, match="No orders to include"):
            service.issue_driver_statement(driver.id, date(2026, 4, 1), date(2026, 4, 30))

    def test_unpaid_statement_does_not_exclude_orders(self, service, delivered):
        driver = delivered[0]
        first = service.issue_driver_statement(driver.id, *PERIOD)

        second = service.issue_driver_statement(driver.id, *PERIOD)

        assert second.statement_id == "DS-000002"
        assert second.order_refs == first.order_refs

    def test_paid_statement_excludes_orders(self, service, seed, delivered):
        driver, _, normal, paid = delivered
        statement = service.issue_driver_statement(driver.id, *PERIOD)
        service.mark_driver_statement_paid(statement.statement_id, day=DAY)
        # a later edit puts one order back to Pending; it stays out of new statements
        seed.update_order(normal, driver_remit_status=RemitStatus.PENDING.value)
        extra = seed.order(driver, order_amount_usd="7", delivery_fee_usd="1")
        service.process_order_delivery(extra.order_id)

        again = service.issue_driver_statement(driver.id, *PERIOD)

        assert again.order_refs == [extra.order_id]

    def test_unknown_driver(self, service):
        with pytest.raises(NotFoundError):
            service.issue_driver_statement("missing", *PERIOD)

    def test_taken_statement_number_is_reported_as_duplicate(self, service, session_factory, delivered):
        driver = delivered[0]
        with session_factory() as db, db.begin():
            db.add(
                DriverStatement(
                    statement_id="DS-000001", driver_id=driver.id, period_from=PERIOD[0], period_to=PERIOD[1]
                )
            )

        with pytest.raises(DuplicateRecordError, match="duplicate an existing record") as excinfo:
            service.issue_driver_statement(driver.id, *PERIOD)

        assert "concurrent" not in str(excinfo.value)


class TestDriverStatementPayment:
    """Tests for paying driver statements."""

    def test_pay_marks_orders_collected_and_moves_cash(self, service, seed, delivered):
        driver, _, normal, paid = delivered
        statement = service.issue_driver_statement(driver.id, *PERIOD)

        result = service.mark_driver_statement_paid(statement.statement_id, payment_method="cash", notes="ok", day=DAY)

        assert result.status == StatementStatus.PAID
        assert result.paid_date is not None
        assert result.payment_method == "cash"
        for order in (normal, paid):
            stored = seed.get(Order, order.id)
            assert stored.driver_remit_status == RemitStatus.COLLECTED.value
            assert stored.driver_remit_date is not None

        day = service.get_cashbox_day(DAY)
        assert day.cash_in_usd == Decimal("15")
        assert day.cash_in_lbp == Decimal("100000")

    def test_negative_net_due_is_paid_out(self, service, seed):
        driver, client = seed.driver(), seed.client()
        order = seed.order(
            driver, client,
            order_amount_usd="10", delivery_fee_usd="2",
            driver_paid_for_client=True, driver_paid_amount_usd="10",
        )
        service.process_order_delivery(order.order_id)
        statement = service.issue_driver_statement(driver.id, *PERIOD)
        assert statement.net_due_usd == Decimal("-10")

        service.mark_driver_statement_paid(statement.statement_id, day=DAY)

        day = service.get_cashbox_day(DAY)
        assert day.cash_out_usd == Decimal("10")
        assert day.cash_in_usd == Decimal("0")

    def test_paying_twice_is_refused(self, service, delivered):
        statement = service.issue_driver_statement(delivered[0].id, *PERIOD)
        service.mark_driver_statement_paid(statement.statement_id, day=DAY)

        with pytest.raises(ValidationError):
            service.mark_driver_statement_paid(statement.statement_id, day=DAY)

        assert service.get_cashbox_day(DAY).cash_in_usd == Decimal("15")

    def test_locked_statement_is_refused(self, service, session_factory, delivered):
        statement = service.issue_driver_statement(delivered[0].id, *PERIOD)
        with session_factory() as db, db.begin():
            row = db.scalars(select(DriverStatement).filter_by(statement_id=statement.statement_id)).one()
            row.status = StatementStatus.LOCKED.value

        with pytest.raises(InvalidStateTransitionError, match="locked"):
            service.mark_driver_statement_paid(statement.statement_id, day=DAY)

    def test_unknown_statement(self, service):
        with pytest.raises(NotFoundError):
            service.mark_driver_statement_paid("DS-999999")


class TestClientStatement:
    """Tests for issuing and paying client statements."""

    def test_totals_and_selection(self, service, seed, delivered):
        _, client, normal, paid = delivered
        seed.order(client=client)  # nothing to settle
        seed.order(client=client, order_amount_usd="50", prepaid_by_company=True, prepay_amount_usd="50")

        statement = service.issue_client_statement(client.id, *PERIOD)

        assert statement.statement_id == "CS-000001"
        assert statement.kind == StatementKind.REGULAR
        assert statement.order_refs == [normal.order_id, paid.order_id]
        assert statement.total_orders == 2
        assert statement.total_order_amount_usd == Decimal("30")
        assert statement.total_delivery_fees_usd == Decimal("8")
        # (20 - 5) + -(10 + 3)
        assert statement.net_due_usd == Decimal("2")
        assert statement.net_due_lbp == Decimal("100000")

    def test_orders_are_listed_once(self, service, delivered):
        client = delivered[1]
        service.issue_client_statement(client.id, *PERIOD)

        with pytest.raises(ValidationError, match="No orders to include"):
            service.issue_client_statement(client.id, *PERIOD)

    def test_paying_client(self, service, seed, delivered):
        client = delivered[1]
        statement = service.issue_client_statement(client.id, *PERIOD)
        before = service.get_client_balance(client.id).balance

        result = service.mark_client_statement_paid(statement.statement_id, created_by="clerk", day=DAY)

        assert result.status == StatementStatus.PAID
        day = service.get_cashbox_day(DAY)
        assert day.cash_out_usd == Decimal("2")
        assert day.cash_out_lbp == Decimal("100000")
        debits = [
            tx for tx in seed.rows(ClientTransaction, client_id=client.id)
            if tx.order_ref is None
        ]
        assert len(debits) == 1
        assert debits[0].type == TransactionType.DEBIT.value
        assert service.get_client_balance(client.id).balance == before - Money.of(2, 100000)

    def test_client_owing_pays_in(self, service, seed):
        driver, client = seed.driver(), seed.client()
        order = seed.order(
            driver, client,
            order_amount_usd="10", delivery_fee_usd="2",
            driver_paid_for_client=True, driver_paid_amount_usd="10",
        )
        service.process_order_delivery(order.order_id)
        statement = service.issue_client_statement(client.id, *PERIOD)

        service.mark_client_statement_paid(statement.statement_id, day=DAY)

        assert service.get_cashbox_day(DAY).cash_in_usd == Decimal("12")
        credits = [tx for tx in seed.rows(ClientTransaction) if tx.order_ref is None]
        assert [tx.type for tx in credits] == [TransactionType.CREDIT.value]

    def test_paying_twice_is_refused(self, service, delivered):
        statement = service.issue_client_statement(delivered[1].id, *PERIOD)
        service.mark_client_statement_paid(statement.statement_id, day=DAY)

        with pytest.raises(InvalidStateTransitionError):
            service.mark_client_statement_paid(statement.statement_id, day=DAY)


class TestPrepaidStatement:
    """Tests for paying a client before delivery."""

    def test_prepaid_flow(self, service, seed):
        driver, client = seed.driver(), seed.client()
        first = seed.order(driver, client, status="Assigned", order_amount_usd="30", delivery_fee_usd="5")
        second = seed.order(driver, client, status="Assigned", order_amount_lbp="900000", delivery_fee_lbp="100000")

        statement = service.issue_prepaid_statement(client.id, [first.order_id, second.id], created_by="clerk", day=DAY)

        assert statement.kind == StatementKind.PREPAID
        assert statement.status == StatementStatus.PAID
        assert statement.order_refs == [first.order_id, second.order_id]
        assert statement.net_due_usd == Decimal("25")
        assert statement.net_due_lbp == Decimal("800000")

        day = service.get_cashbox_day(DAY)
        assert day.cash_out_usd == Decimal("25")
        assert day.cash_out_lbp == Decimal("800000")

        floats = seed.rows(AccountingEntry, category=AccountingCategory.PREPAID_FLOAT.value)
        assert sorted(entry.order_ref for entry in floats) == sorted([first.order_id, second.order_id])

        stored = seed.get(Order, first.id)
        assert stored.prepaid_by_company is True
        assert stored.prepay_amount_usd == Decimal("25")
        assert service.get_client_balance(client.id).balance == Money.of(-30, -900000)

    def test_other_clients_order_refused(self, service, seed):
        client, other = seed.client(), seed.client("Other")
        order = seed.order(client=other, status="Assigned", order_amount_usd="30")

        with pytest.raises(ValidationError, match="does not belong"):
            service.issue_prepaid_statement(client.id, [order.order_id], day=DAY)

    def test_settled_order_refused(self, service, seed):
        driver, client = seed.driver(), seed.client()
        order = seed.order(driver, client, order_amount_usd="30", delivery_fee_usd="5")
        service.process_order_delivery(order.order_id)

        with pytest.raises(ValidationError, match="already settled"):
            service.issue_prepaid_statement(client.id, [order.order_id], day=DAY)

    def test_prepaying_twice_refused_without_side_effects(self, service, seed):
        client = seed.client()
        order = seed.order(client=client, status="Assigned", order_amount_usd="30", delivery_fee_usd="5")
        fresh = seed.order(client=client, status="Assigned", order_amount_usd="12")
        service.issue_prepaid_statement(client.id, [order.order_id], day=DAY)

        with pytest.raises(ValidationError, match="already prepaid"):
            service.issue_prepaid_statement(client.id, [fresh.order_id, order.order_id], day=DAY)

        assert seed.get(Order, fresh.id).prepaid_by_company is False
        assert service.get_cashbox_day(DAY).cash_out_usd == Decimal("25")


class TestIssuedStatementsAreFrozen:
    """Editing an order after issue leaves the stored statement as it was."""

    def test_order_edits_do_not_change_issued_totals(self, service, seed, delivered):
        driver, client, normal, paid = delivered
        driver_statement = service.issue_driver_statement(driver.id, *PERIOD)
        client_statement = service.issue_client_statement(client.id, *PERIOD)

        seed.update_order(normal, order_amount_usd=Decimal("99"), delivery_fee_usd=Decimal("11"))
        seed.update_order(paid, delivery_fee_usd=Decimal("0"), driver_paid_amount_usd=Decimal("4"))

        stored_driver = seed.rows(DriverStatement, statement_id=driver_statement.statement_id)[0]
        assert stored_driver.order_refs == [normal.order_id, paid.order_id]
        assert stored_driver.total_collected_usd == Decimal("25")
        assert stored_driver.total_delivery_fees_usd == Decimal("8")
        assert stored_driver.total_driver_paid_refund_usd == Decimal("10")
        assert stored_driver.net_due_usd == Decimal("15")

        stored_client = seed.rows(ClientStatement, statement_id=client_statement.statement_id)[0]
        assert stored_client.order_refs == [normal.order_id, paid.order_id]
        assert stored_client.total_order_amount_usd == Decimal("30")
        assert stored_client.total_delivery_fees_usd == Decimal("8")
        assert stored_client.net_due_usd == Decimal("2")
