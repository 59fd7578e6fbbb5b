"""
Tests for order deletion with accounting reversal
"""

from decimal import Decimal

import pytest

from conftest import DAY
from settlement.errors import NotFoundError
from settlement.models import OrderStatus
from settlement.money import Money
from settlement.tables import AccountingEntry, ClientTransaction, DriverTransaction, Order


def _rows_for(seed, ref):
    return (
        seed.rows(DriverTransaction, order_ref=ref)
        + seed.rows(ClientTransaction, order_ref=ref)
        + seed.rows(AccountingEntry, order_ref=ref)
    )


class TestReversal:
    """Deleting a settled order returns every ledger to where it was."""

    def test_normal_delivery_is_undone(self, service, seed):
        driver, client = seed.driver(), seed.client()
        service.give_driver_cash(driver.id, Money.of(10, 50000), day=DAY)
        order = seed.order(
            driver, client,
            order_amount_usd="20", order_amount_lbp="100000", delivery_fee_usd="5",
        )
        service.process_order_delivery(order.order_id)
        assert service.get_driver_wallet(driver.id).wallet == Money.of(15, 50000)

        result = service.delete_order_with_accounting(order.order_id, today=DAY)

        assert result.success is True
        assert result.order_id == order.order_id
        assert result.message.startswith(f"Order {order.order_id} deleted. Accounting reversed.")
        assert "(delivery fee)" in result.message

        wallet = service.get_driver_wallet(driver.id)
        assert wallet.wallet == Money.of(10, 50000)
        assert wallet.balanced
        assert service.get_client_balance(client.id).balance == Money.zero()
        assert _rows_for(seed, order.order_id) == []
        assert seed.get(Order, order.id) is None

    def test_driver_paid_delivery_is_undone(self, service, seed):
        driver, client = seed.driver(), seed.client()
        order = seed.order(
            driver, client,
            order_amount_usd="20", delivery_fee_usd="5",
            driver_paid_for_client=True, driver_paid_amount_usd="15",
        )
        service.process_order_delivery(order.order_id)

        result = service.delete_order_with_accounting(order.order_id, today=DAY)

        assert "credited back" in result.message
        assert "(driver paid for client)" in result.message
        wallet = service.get_driver_wallet(driver.id)
        assert wallet.wallet == Money.zero()
        assert wallet.total_entries == 0
        assert wallet.balanced
        assert service.get_client_balance(client.id).total_entries == 0
        assert _rows_for(seed, order.order_id) == []

    def test_prepaid_order_returns_cash(self, service, seed):
        driver, client = seed.driver(), seed.client()
        order = seed.order(
            driver, client,
            status=OrderStatus.ASSIGNED.value,
            order_amount_usd="30", delivery_fee_usd="5",
        )
        service.issue_prepaid_statement(client.id, [order.order_id], day=DAY)
        assert service.get_cashbox_day(DAY).cash_out_usd == Decimal("25")

        seed.update_order(order, status=OrderStatus.DELIVERED.value)
        service.process_order_delivery(order.order_id)

        result = service.delete_order_with_accounting(order.order_id, today=DAY)

        assert "prepaid" in result.message
        day = service.get_cashbox_day(DAY)
        assert day.cash_out_usd == Decimal("0")
        assert day.closing_usd == Decimal("0")
        assert "Reversed prepayment" in day.notes
        assert service.get_driver_wallet(driver.id).wallet == Money.zero()
        assert service.get_client_balance(client.id).balance == Money.zero()
        assert _rows_for(seed, order.order_id) == []

    def test_undelivered_order_is_just_deleted(self, service, seed):
        order = seed.order(seed.driver(), seed.client(), status=OrderStatus.NEW.value, delivery_fee_usd="5")

        result = service.delete_order_with_accounting(order.order_id, today=DAY)

        assert result.message == f"Order {order.order_id} deleted. Accounting reversed."
        assert seed.get(Order, order.id) is None

    def test_other_orders_untouched(self, service, seed):
        driver, client = seed.driver(), seed.client()
        keep = seed.order(driver, client, order_amount_usd="10", delivery_fee_usd="2")
        drop = seed.order(driver, client, order_amount_usd="40", delivery_fee_usd="6")
        service.process_order_delivery(keep.order_id)
        service.process_order_delivery(drop.order_id)

        service.delete_order_with_accounting(drop.order_id, today=DAY)

        wallet = service.get_driver_wallet(driver.id)
        assert wallet.wallet == Money.of(2, 0)
        assert wallet.balanced
        assert len(_rows_for(seed, keep.order_id)) == 3

    def test_settle_then_delete_then_resettle_cycle(self, service, seed):
        driver, client = seed.driver(), seed.client()
        first = seed.order(driver, client, order_amount_usd="10", delivery_fee_usd="3")
        service.process_order_delivery(first.order_id)
        service.delete_order_with_accounting(first.order_id, today=DAY)
        second = seed.order(driver, client, order_amount_usd="10", delivery_fee_usd="3")
        service.process_order_delivery(second.order_id)

        wallet = service.get_driver_wallet(driver.id)
        assert wallet.wallet == Money.of(3, 0)
        assert wallet.total_entries == 1
        assert wallet.balanced

    def test_unknown_order(self, service):
        with pytest.raises(NotFoundError):
            service.delete_order_with_accounting("ORD-0404", today=DAY)
