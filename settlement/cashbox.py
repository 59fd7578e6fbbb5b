import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from .errors import NotFoundError, ValidationError
from .models import AccountingCategory, CashDirection, TransactionType
from .money import Money
from .primitives import adjust_cashbox, adjust_wallet, read_wallet
from .recorder import record_accounting_entry, record_driver_transaction
from .tables import CashboxDaily, Driver

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CashboxDelta:
    cash_in_usd: Decimal = Decimal("0")
    cash_in_lbp: Decimal = Decimal("0")
    cash_out_usd: Decimal = Decimal("0")
    cash_out_lbp: Decimal = Decimal("0")

    @classmethod
    def cash_in(cls, amount: Money) -> "CashboxDelta":
        return cls(cash_in_usd=amount.usd, cash_in_lbp=amount.lbp)

    @classmethod
    def cash_out(cls, amount: Money) -> "CashboxDelta":
        return cls(cash_out_usd=amount.usd, cash_out_lbp=amount.lbp)

    @classmethod
    def paying(cls, amount: Money) -> "CashboxDelta":
        """Company pays ``amount`` out; a negative currency part comes back in instead."""
        out, back = amount.split()
        return cls(
            cash_in_usd=back.usd,
            cash_in_lbp=back.lbp,
            cash_out_usd=out.usd,
            cash_out_lbp=out.lbp,
        )

    @classmethod
    def receiving(cls, amount: Money) -> "CashboxDelta":
        incoming, out = amount.split()
        return cls(
            cash_in_usd=incoming.usd,
            cash_in_lbp=incoming.lbp,
            cash_out_usd=out.usd,
            cash_out_lbp=out.lbp,
        )

    @property
    def incoming(self) -> Money:
        return Money.of(self.cash_in_usd, self.cash_in_lbp)

    @property
    def outgoing(self) -> Money:
        return Money.of(self.cash_out_usd, self.cash_out_lbp)


def apply_cashbox_delta(
    db: Session,
    day: date,
    delta: CashboxDelta,
    note: Optional[str] = None,
    allow_negative: bool = False,
) -> CashboxDaily:
    """
    Add a cash event to the day's aggregate row.

    Always additive: the row is created on first use, the deltas are added to the
    running cash_in / cash_out totals and closing is recomputed. A negative closing
    is a legitimate deficit and is not rejected.
    """
    return adjust_cashbox(
        db,
        day,
        cash_in=delta.incoming,
        cash_out=delta.outgoing,
        note=note,
        allow_negative=allow_negative,
    )


def get_cashbox_day(db: Session, day: date) -> CashboxDaily:
    row = db.scalar(select(CashboxDaily).where(CashboxDaily.date == day))
    if row is not None:
        return row
    # transient all-zero row; never added to the session
    zero = Money.zero()
    return CashboxDaily(
        date=day,
        notes=None,
        **zero.to_columns("opening"),
        **zero.to_columns("cash_in"),
        **zero.to_columns("cash_out"),
        **zero.to_columns("closing"),
    )


def _require_positive(amount: Money) -> None:
    if amount.has_negative or not amount.is_positive:
        raise ValidationError("Please enter a valid amount")


def _require_driver(db: Session, driver_id: str) -> Driver:
    driver = db.get(Driver, driver_id)
    if driver is None:
        raise NotFoundError(f"Driver {driver_id} not found")
    return driver


def record_capital(
    db: Session,
    day: date,
    direction: CashDirection,
    amount: Money,
    note: Optional[str] = None,
) -> CashboxDaily:
    _require_positive(amount)
    direction = CashDirection(direction)

    if direction == CashDirection.IN:
        label, category = "Added", AccountingCategory.CAPITAL_INJECTION
        delta = CashboxDelta.cash_in(amount)
    else:
        label, category = "Withdrew", AccountingCategory.CAPITAL_WITHDRAWAL
        delta = CashboxDelta.cash_out(amount)

    text = f"{label} {amount.describe()}" + (f" - {note}" if note else "")
    record_accounting_entry(db, category, amount, memo=text)
    return apply_cashbox_delta(db, day, delta, note=text)


def give_driver_cash(
    db: Session,
    day: date,
    driver_id: str,
    amount: Money,
    note: Optional[str] = None,
    created_by: Optional[str] = None,
) -> CashboxDaily:
    _require_positive(amount)
    driver = _require_driver(db, driver_id)

    record_driver_transaction(
        db,
        driver.id,
        TransactionType.CREDIT,
        amount,
        note=note or "Cash given from cashbox",
        created_by=created_by,
    )
    adjust_wallet(db, driver.id, amount)
    return apply_cashbox_delta(
        db,
        day,
        CashboxDelta.cash_out(amount),
        note=f"Gave {amount.describe()} to driver {driver.name}" + (f" - {note}" if note else ""),
    )


def take_back_driver_cash(
    db: Session,
    day: date,
    driver_id: str,
    amount: Money,
    note: Optional[str] = None,
    created_by: Optional[str] = None,
) -> CashboxDaily:
    _require_positive(amount)
    driver = _require_driver(db, driver_id)

    wallet = read_wallet(db, driver.id)
    remaining = wallet - amount
    if (amount.usd > 0 and remaining.usd < 0) or (amount.lbp > 0 and remaining.lbp < 0):
        raise ValidationError(f"Insufficient balance. Driver has {wallet.describe()}")

    record_driver_transaction(
        db,
        driver.id,
        TransactionType.DEBIT,
        amount,
        note=note or "Cash taken back to cashbox",
        created_by=created_by,
    )
    adjust_wallet(db, driver.id, -amount)
    return apply_cashbox_delta(
        db,
        day,
        CashboxDelta.cash_in(amount),
        note=f"Took back {amount.describe()} from driver {driver.name}" + (f" - {note}" if note else ""),
    )
