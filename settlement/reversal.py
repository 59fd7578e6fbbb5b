"""
Order deletion with accounting reversal.

Undoes what the delivery settlement wrote for an order: the driver wallet is
moved back by the inverse of the driver rows recorded for the order, a
prepayment's cash_out is returned to today's cashbox, and every ledger row
tagged with the order reference is removed together with the order itself.
"""

import logging
from collections import defaultdict
from datetime import date
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from .cashbox import CashboxDelta, apply_cashbox_delta
from .delivery import load_order
from .models import SettlementResult
from .money import Money
from .primitives import adjust_wallet
from .recorder import delete_order_entries, signed
from .tables import DriverTransaction, Order

logger = logging.getLogger(__name__)


def _recorded_driver_totals(db: Session, order_ref: str) -> dict:
    """Signed sum (Credit minus Debit) of the driver rows for one order, per driver."""
    totals = defaultdict(Money.zero)
    rows = db.scalars(select(DriverTransaction).where(DriverTransaction.order_ref == order_ref))
    for tx in rows:
        totals[tx.driver_id] = totals[tx.driver_id] + signed(tx)
    return dict(totals)


def _reverse_driver_side(db: Session, order: Order) -> list:
    actions = []
    for driver_id, recorded in _recorded_driver_totals(db, order.order_id).items():
        if recorded.is_zero:
            continue
        adjust_wallet(db, driver_id, -recorded)
        if order.driver_paid_for_client:
            actions.append(
                f"Driver wallet credited back {(-recorded).describe()} (driver paid for client)"
            )
        elif order.prepaid_by_company:
            actions.append(f"Driver wallet debited {recorded.describe()} (prepaid collection)")
        else:
            actions.append(f"Driver wallet debited {recorded.describe()} (delivery fee)")
    return actions


def _reverse_prepayment(db: Session, order: Order, today: date) -> Optional[str]:
    prepay = order.prepay_amount
    if not order.prepaid_by_company or prepay.is_zero:
        return None
    apply_cashbox_delta(
        db,
        today,
        CashboxDelta.cash_out(-prepay),
        note=f"Reversed prepayment for deleted order {order.order_id}",
        allow_negative=True,
    )
    return f"Cashbox cash_out reversed by {prepay.describe()} (prepaid order)"


def delete_order_with_accounting(
    db: Session, order_key: str, today: Optional[date] = None
) -> SettlementResult:
    order = load_order(db, order_key)
    ref = order.order_id
    today = today or date.today()
    logger.info("Deleting order %s with accounting reversal (status %s)", ref, order.status)

    # driver rows only exist once a Delivered order was settled; replaying them
    # also covers an order whose status moved on after settlement
    actions = _reverse_driver_side(db, order)

    # the prepayment rows are deleted below whatever the status, so the cash goes back too
    prepay_action = _reverse_prepayment(db, order, today)
    if prepay_action:
        actions.append(prepay_action)

    counts = delete_order_entries(db, ref)
    removed = sum(counts.values())
    if removed:
        actions.append(f"Removed {removed} ledger entries")

    db.delete(order)
    db.flush()

    message = f"Order {ref} deleted. Accounting reversed."
    if actions:
        message += " " + "; ".join(actions) + "."
    logger.info(message)
    return SettlementResult(success=True, message=message, order_id=ref)
