"""
Delivery settlement.

Runs once per delivered order and moves money between the driver wallet, the
client balance and the accounting journal. Which ledgers move depends on how the
order was paid:

- driver paid for client: nothing was collected, the driver advanced cash;
- prepaid by company: the client was paid up front, the driver collected the
  order amount from the customer;
- normal collection: the driver collected order amount and fee.
"""

import logging
from typing import Optional

from sqlalchemy import or_, select, update
from sqlalchemy.orm import Session

from .errors import NotFoundError, ValidationError
from .models import AccountingCategory, OrderStatus, RemitStatus, SettlementResult, TransactionType
from .primitives import adjust_wallet
from .recorder import record_accounting_entry, record_client_transaction, record_driver_transaction
from .tables import Client, Driver, DriverTransaction, Order, utcnow

logger = logging.getLogger(__name__)

MSG_NOT_DELIVERED = "Order is not delivered yet"
MSG_ALREADY_PROCESSED = "Order already processed"
MSG_PROCESSED = "Delivery processed successfully"


def load_order(db: Session, order_key: str) -> Order:
    """Find an order by primary key or by its human-readable order id."""
    order = db.scalar(select(Order).where(or_(Order.id == order_key, Order.order_id == order_key)))
    if order is None:
        raise NotFoundError(f"Order {order_key} not found")
    return order


def is_settlement_processed(db: Session, order: Order) -> bool:
    existing = db.scalar(
        select(DriverTransaction.id).where(DriverTransaction.order_ref == order.order_id).limit(1)
    )
    return existing is not None or order.settled_at is not None


def _claim(db: Session, order: Order) -> bool:
    """Compare-and-set on ``settled_at``; only one caller can win the claim."""
    now = utcnow()
    result = db.execute(
        update(Order)
        .where(Order.id == order.id, Order.settled_at.is_(None))
        .values(settled_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        return False
    order.settled_at = now
    return True


def _require_parties(db: Session, order: Order) -> None:
    if order.driver_id and db.get(Driver, order.driver_id) is None:
        raise NotFoundError(f"Driver {order.driver_id} not found")
    if order.client_id and db.get(Client, order.client_id) is None:
        raise NotFoundError(f"Client {order.client_id} not found")


def _settle_driver_paid(db: Session, order: Order, created_by: Optional[str]) -> None:
    ref = order.order_id
    logger.info("Processing driver-paid-for-client scenario for %s", ref)

    client_debit = order.order_amount + order.delivery_fee
    if order.client_id and client_debit.is_positive:
        record_client_transaction(
            db,
            order.client_id,
            TransactionType.DEBIT,
            client_debit,
            note=f"Order {ref} delivered (driver paid)",
            order_ref=ref,
            created_by=created_by,
        )

    paid = order.driver_paid_amount
    if order.driver_id and paid.is_positive:
        reason = f" - {order.driver_paid_reason}" if order.driver_paid_reason else ""
        record_driver_transaction(
            db,
            order.driver_id,
            TransactionType.DEBIT,
            paid,
            note=f"Paid for client on {ref}{reason}",
            order_ref=ref,
            created_by=created_by,
        )
        adjust_wallet(db, order.driver_id, -paid)

    if order.driver_id:
        order.driver_remit_status = RemitStatus.PENDING.value


def _settle_prepaid(db: Session, order: Order, created_by: Optional[str]) -> None:
    ref = order.order_id
    logger.info("Processing prepaid order scenario for %s", ref)

    collected = order.order_amount
    if order.driver_id and collected.is_positive:
        record_driver_transaction(
            db,
            order.driver_id,
            TransactionType.CREDIT,
            collected,
            note=f"Collected for prepaid order {ref}",
            order_ref=ref,
            created_by=created_by,
        )
        adjust_wallet(db, order.driver_id, collected)

    order.collected_amount_usd = collected.usd
    order.collected_amount_lbp = collected.lbp
    if order.driver_id:
        order.driver_remit_status = RemitStatus.PENDING.value

    # offsets the Debit written when the client was prepaid
    if order.client_id and collected.is_positive:
        record_client_transaction(
            db,
            order.client_id,
            TransactionType.CREDIT,
            collected,
            note=f"Collected for prepaid order {ref}",
            order_ref=ref,
            created_by=created_by,
        )


def _settle_collection(db: Session, order: Order, created_by: Optional[str]) -> None:
    ref = order.order_id
    logger.info("Processing normal delivery scenario for %s", ref)

    fee = order.delivery_fee
    if order.driver_id:
        if fee.is_positive:
            record_driver_transaction(
                db,
                order.driver_id,
                TransactionType.CREDIT,
                fee,
                note=f"Delivery fee for {ref} ({fee.describe()})",
                order_ref=ref,
                created_by=created_by,
            )
            adjust_wallet(db, order.driver_id, fee)
        # the driver is now holding the customer's cash
        order.driver_remit_status = RemitStatus.PENDING.value
    else:
        logger.info("Skipping driver transaction - no driver assigned to %s", ref)

    collected = order.order_amount + fee
    order.collected_amount_usd = collected.usd
    order.collected_amount_lbp = collected.lbp

    if order.client_id and order.order_amount.is_positive:
        record_client_transaction(
            db,
            order.client_id,
            TransactionType.DEBIT,
            order.order_amount,
            note=f"Order {ref} delivered",
            order_ref=ref,
            created_by=created_by,
        )


def settle_delivery(db: Session, order_key: str, created_by: Optional[str] = None) -> SettlementResult:
    order = load_order(db, order_key)
    ref = order.order_id
    logger.info("Order found: %s status %s", ref, order.status)

    if order.status != OrderStatus.DELIVERED.value:
        return SettlementResult(success=False, message=MSG_NOT_DELIVERED, order_id=ref)

    if order.driver_paid_for_client and order.prepaid_by_company:
        # the prepaid statement already debited the client for this order
        raise ValidationError(f"Order {ref} was prepaid by the company and cannot be settled as driver-paid")

    if is_settlement_processed(db, order) or not _claim(db, order):
        logger.info("Order %s already processed, skipping", ref)
        return SettlementResult(success=True, message=MSG_ALREADY_PROCESSED, order_id=ref)

    _require_parties(db, order)

    if order.driver_paid_for_client:
        _settle_driver_paid(db, order, created_by)
    elif order.prepaid_by_company:
        _settle_prepaid(db, order, created_by)
    else:
        _settle_collection(db, order, created_by)

    fee = order.delivery_fee
    if fee.is_positive:
        record_accounting_entry(
            db,
            AccountingCategory.DELIVERY_INCOME,
            fee,
            memo=f"Delivery income from {ref}",
            order_ref=ref,
        )

    db.flush()
    logger.info("Successfully processed delivery for order %s", ref)
    return SettlementResult(success=True, message=MSG_PROCESSED, order_id=ref)
