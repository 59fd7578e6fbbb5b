"""
Statement issuing and payment.

A statement freezes the set of order references it settles and the totals
computed at issuance; later changes to those orders never alter it. The only
mutation afterwards is the single ``unpaid -> paid`` transition.
"""

import logging
from datetime import date, datetime, time, timezone
from typing import Iterable, Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from . import config
from .cashbox import CashboxDelta, apply_cashbox_delta
from .delivery import is_settlement_processed, load_order
from .errors import InvalidStateTransitionError, NotFoundError, ValidationError
from .models import (
    AccountingCategory,
    OrderStatus,
    RemitStatus,
    StatementKind,
    StatementStatus,
    TransactionType,
)
from .money import Money, total
from .primitives import format_sequence, next_sequence
from .recorder import record_accounting_entry, record_client_transaction
from .tables import Client, ClientStatement, Driver, DriverStatement, Order, utcnow

logger = logging.getLogger(__name__)

DRIVER_SEQUENCE = "driver_statement"
CLIENT_SEQUENCE = "client_statement"

MSG_NOTHING_TO_INCLUDE = "No orders to include in statement"


def _period_bounds(period_from: date, period_to: date):
    return (
        datetime.combine(period_from, time.min, tzinfo=timezone.utc),
        datetime.combine(period_to, time.max, tzinfo=timezone.utc),
    )


def _referenced(statements: Iterable) -> set:
    refs = set()
    for refs_json in statements:
        refs.update(refs_json or [])
    return refs


def _new_statement_id(db: Session, sequence: str, prefix: str) -> str:
    return format_sequence(prefix, next_sequence(db, sequence))


def _require(db: Session, model, key: str, label: str):
    row = db.get(model, key)
    if row is None:
        raise NotFoundError(f"{label} {key} not found")
    return row


# Driver statements


def issue_driver_statement(
    db: Session,
    driver_id: str,
    period_from: date,
    period_to: date,
    created_by: Optional[str] = None,
) -> DriverStatement:
    """
    Snapshot what a driver still has to remit for deliveries in a period.

    Orders already listed on a *paid* statement of the driver are left out;
    orders on an unpaid statement are listed again.
    """
    _require(db, Driver, driver_id, "Driver")
    start, end = _period_bounds(period_from, period_to)

    settled = _referenced(
        db.scalars(
            select(DriverStatement.order_refs).where(
                DriverStatement.driver_id == driver_id,
                DriverStatement.status == StatementStatus.PAID.value,
            )
        )
    )
    candidates = db.scalars(
        select(Order)
        .where(
            Order.driver_id == driver_id,
            Order.driver_remit_status == RemitStatus.PENDING.value,
            Order.delivered_at >= start,
            Order.delivered_at <= end,
        )
        .order_by(Order.delivered_at, Order.order_id)
    ).all()
    orders = [order for order in candidates if order.order_id not in settled]
    if not orders:
        raise ValidationError(MSG_NOTHING_TO_INCLUDE)

    collected = Money.zero()
    fees = Money.zero()
    refunds = Money.zero()
    for order in orders:
        fees = fees + order.delivery_fee
        if order.driver_paid_for_client:
            refunds = refunds + order.driver_paid_amount
        elif order.prepaid_by_company:
            collected = collected + order.order_amount
        else:
            collected = collected + order.order_amount + order.delivery_fee

    net_due = collected - refunds
    statement = DriverStatement(
        statement_id=_new_statement_id(db, DRIVER_SEQUENCE, config.DRIVER_STATEMENT_PREFIX),
        driver_id=driver_id,
        period_from=period_from,
        period_to=period_to,
        order_refs=[order.order_id for order in orders],
        status=StatementStatus.UNPAID.value,
        created_by=created_by,
        **collected.to_columns("total_collected"),
        **fees.to_columns("total_delivery_fees"),
        **refunds.to_columns("total_driver_paid_refund"),
        **net_due.to_columns("net_due"),
    )
    db.add(statement)
    db.flush()
    logger.info(
        "Issued driver statement %s for %s: %d orders, net due %s",
        statement.statement_id,
        driver_id,
        len(orders),
        net_due.describe(),
    )
    return statement


def _load_driver_statement(db: Session, statement_id: str) -> DriverStatement:
    statement = db.scalar(select(DriverStatement).where(DriverStatement.statement_id == statement_id))
    if statement is None:
        raise NotFoundError(f"Statement {statement_id} not found")
    return statement


def _check_unpaid(statement) -> None:
    if statement.status != StatementStatus.UNPAID.value:
        raise InvalidStateTransitionError(
            f"Statement {statement.statement_id} is already {statement.status}"
        )


def _stamp_paid(statement, payment_method: str, notes: Optional[str]) -> None:
    statement.status = StatementStatus.PAID.value
    statement.paid_date = utcnow()
    statement.payment_method = payment_method
    statement.notes = notes


def mark_driver_statement_paid(
    db: Session,
    statement_id: str,
    payment_method: str = "cash",
    notes: Optional[str] = None,
    today: Optional[date] = None,
) -> DriverStatement:
    statement = _load_driver_statement(db, statement_id)
    _check_unpaid(statement)

    _stamp_paid(statement, payment_method, notes)
    db.execute(
        update(Order)
        .where(Order.order_id.in_(statement.order_refs))
        .values(driver_remit_status=RemitStatus.COLLECTED.value, driver_remit_date=statement.paid_date)
        .execution_options(synchronize_session=False)
    )

    net_due = statement.net_due
    if not net_due.is_zero:
        apply_cashbox_delta(
            db,
            today or date.today(),
            CashboxDelta.receiving(net_due),
            note=f"Driver statement {statement.statement_id} settled ({net_due.describe()})",
        )

    db.flush()
    logger.info("Driver statement %s marked paid via %s", statement.statement_id, payment_method)
    return statement


# Client statements


def _client_net(order: Order) -> Money:
    if order.driver_paid_for_client:
        # the client owes both the goods the driver paid for and the fee
        return -(order.order_amount + order.delivery_fee)
    return order.order_amount - order.delivery_fee


def issue_client_statement(
    db: Session,
    client_id: str,
    period_from: date,
    period_to: date,
    created_by: Optional[str] = None,
) -> ClientStatement:
    _require(db, Client, client_id, "Client")
    start, end = _period_bounds(period_from, period_to)

    listed = _referenced(
        db.scalars(select(ClientStatement.order_refs).where(ClientStatement.client_id == client_id))
    )
    candidates = db.scalars(
        select(Order)
        .where(
            Order.client_id == client_id,
            Order.status == OrderStatus.DELIVERED.value,
            Order.prepaid_by_company.is_(False),
            Order.delivered_at >= start,
            Order.delivered_at <= end,
        )
        .order_by(Order.delivered_at, Order.order_id)
    ).all()
    orders = [
        order
        for order in candidates
        if order.order_id not in listed
        and not (order.order_amount.is_zero and order.delivery_fee.is_zero)
    ]
    if not orders:
        raise ValidationError(MSG_NOTHING_TO_INCLUDE)

    amounts = total(order.order_amount for order in orders)
    fees = total(order.delivery_fee for order in orders)
    net_due = total(_client_net(order) for order in orders)

    statement = ClientStatement(
        statement_id=_new_statement_id(db, CLIENT_SEQUENCE, config.CLIENT_STATEMENT_PREFIX),
        client_id=client_id,
        kind=StatementKind.REGULAR.value,
        period_from=period_from,
        period_to=period_to,
        order_refs=[order.order_id for order in orders],
        total_orders=len(orders),
        status=StatementStatus.UNPAID.value,
        created_by=created_by,
        **amounts.to_columns("total_order_amount"),
        **fees.to_columns("total_delivery_fees"),
        **net_due.to_columns("net_due"),
    )
    db.add(statement)
    db.flush()
    logger.info(
        "Issued client statement %s for %s: %d orders, net due %s",
        statement.statement_id,
        client_id,
        len(orders),
        net_due.describe(),
    )
    return statement


def issue_prepaid_statement(
    db: Session,
    client_id: str,
    order_ids: list,
    created_by: Optional[str] = None,
    today: Optional[date] = None,
) -> ClientStatement:
    """
    Pay a client up front for orders that have not been delivered and collected yet.

    The company hands the client ``order_amount - delivery_fee`` per order from
    the cashbox now; the driver's collection later offsets the client Debit
    written here. The statement is recorded already paid.
    """
    _require(db, Client, client_id, "Client")
    today = today or date.today()

    orders = []
    seen = set()
    for key in order_ids:
        order = load_order(db, key)
        if order.order_id in seen:
            continue
        seen.add(order.order_id)
        if order.client_id != client_id:
            raise ValidationError(f"Order {order.order_id} does not belong to client {client_id}")
        if order.prepaid_by_company:
            raise ValidationError(f"Order {order.order_id} is already prepaid")
        if is_settlement_processed(db, order):
            raise ValidationError(f"Order {order.order_id} is already settled")
        net = order.order_amount - order.delivery_fee
        if net.has_negative:
            raise ValidationError(
                f"Order {order.order_id} fee exceeds its amount ({net.describe()})"
            )
        orders.append((order, net))

    amounts = Money.zero()
    fees = Money.zero()
    total_net = Money.zero()
    for order, net in orders:
        ref = order.order_id
        amounts = amounts + order.order_amount
        fees = fees + order.delivery_fee
        total_net = total_net + net

        if net.is_positive:
            record_accounting_entry(
                db,
                AccountingCategory.PREPAID_FLOAT,
                net,
                memo=f"Prepaid client for order {ref}",
                order_ref=ref,
            )
        if order.order_amount.is_positive:
            record_client_transaction(
                db,
                client_id,
                TransactionType.DEBIT,
                order.order_amount,
                note=f"Prepaid for order {ref}",
                order_ref=ref,
                created_by=created_by,
            )
        order.prepaid_by_company = True
        order.prepay_amount_usd = net.usd
        order.prepay_amount_lbp = net.lbp

    statement_id = _new_statement_id(db, CLIENT_SEQUENCE, config.CLIENT_STATEMENT_PREFIX)
    if total_net.is_positive:
        apply_cashbox_delta(
            db,
            today,
            CashboxDelta.cash_out(total_net),
            note=f"Prepaid statement {statement_id} to client ({total_net.describe()})",
        )

    statement = ClientStatement(
        statement_id=statement_id,
        client_id=client_id,
        kind=StatementKind.PREPAID.value,
        period_from=today,
        period_to=today,
        order_refs=[order.order_id for order, _ in orders],
        total_orders=len(orders),
        status=StatementStatus.PAID.value,
        paid_date=utcnow(),
        payment_method="cash",
        created_by=created_by,
        **amounts.to_columns("total_order_amount"),
        **fees.to_columns("total_delivery_fees"),
        **total_net.to_columns("net_due"),
    )
    db.add(statement)
    db.flush()
    logger.info(
        "Issued prepaid statement %s for %s: %d orders, paid out %s",
        statement_id,
        client_id,
        len(orders),
        total_net.describe(),
    )
    return statement


def _load_client_statement(db: Session, statement_id: str) -> ClientStatement:
    statement = db.scalar(select(ClientStatement).where(ClientStatement.statement_id == statement_id))
    if statement is None:
        raise NotFoundError(f"Statement {statement_id} not found")
    return statement


def mark_client_statement_paid(
    db: Session,
    statement_id: str,
    payment_method: str = "cash",
    notes: Optional[str] = None,
    created_by: Optional[str] = None,
    today: Optional[date] = None,
) -> ClientStatement:
    statement = _load_client_statement(db, statement_id)
    _check_unpaid(statement)
    _stamp_paid(statement, payment_method, notes)

    net_due = statement.net_due
    paid_out, received = net_due.split()
    label = f"statement {statement.statement_id}"
    if paid_out.is_positive:
        record_client_transaction(
            db,
            statement.client_id,
            TransactionType.DEBIT,
            paid_out,
            note=f"Paid client for {label}",
            created_by=created_by,
        )
    if received.is_positive:
        record_client_transaction(
            db,
            statement.client_id,
            TransactionType.CREDIT,
            received,
            note=f"Received from client for {label}",
            created_by=created_by,
        )
    if not net_due.is_zero:
        apply_cashbox_delta(
            db,
            today or date.today(),
            CashboxDelta.paying(net_due),
            note=f"Client {label} settled ({net_due.describe()})",
        )

    db.flush()
    logger.info("Client statement %s marked paid via %s", statement.statement_id, payment_method)
    return statement
