"""
Atomic balance primitives.

Every balance change is a single UPDATE whose new value is computed from the
column itself (``wallet = wallet + :delta``), so two requests touching the same
driver or cashbox day never overwrite each other's work. Nothing here retries;
callers run inside the unit of work opened by the service.
"""

import logging
from datetime import date
from typing import Optional

from sqlalchemy import case, insert, or_, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from . import config
from .errors import ConcurrencyError, ValidationError
from .money import Money
from .tables import CashboxDaily, Driver, StatementSequence, utcnow

logger = logging.getLogger(__name__)

_NO_SYNC = {"synchronize_session": False}


def adjust_wallet(db: Session, driver_id: str, delta: Money) -> None:
    if delta.is_zero:
        return

    result = db.execute(
        update(Driver)
        .where(Driver.id == driver_id)
        .values(
            wallet_usd=Driver.wallet_usd + delta.usd,
            wallet_lbp=Driver.wallet_lbp + delta.lbp,
        )
        .execution_options(**_NO_SYNC)
    )
    if result.rowcount != 1:
        raise ConcurrencyError(f"Wallet update for driver {driver_id} did not apply")

    logger.info("Driver %s wallet adjusted by %s", driver_id, delta.describe())


def read_wallet(db: Session, driver_id: str) -> Optional[Money]:
    row = db.execute(
        select(Driver.wallet_usd, Driver.wallet_lbp).where(Driver.id == driver_id)
    ).first()
    if row is None:
        return None
    return Money.of(row.wallet_usd, row.wallet_lbp)


def _opening_for(db: Session, day: date) -> Money:
    if not config.CASHBOX_CARRY_FORWARD:
        return Money.zero()
    previous = db.execute(
        select(CashboxDaily.closing_usd, CashboxDaily.closing_lbp)
        .where(CashboxDaily.date < day)
        .order_by(CashboxDaily.date.desc())
        .limit(1)
    ).first()
    if previous is None:
        return Money.zero()
    return Money.of(previous.closing_usd, previous.closing_lbp)


_UPSERT_DIALECTS = {"postgresql": postgresql.insert, "sqlite": sqlite.insert}


def _insert_if_absent(db: Session, model, key: str, values: dict) -> bool:
    """
    Insert a row unless one with the same ``key`` already exists.

    Returns False when another transaction got there first. PostgreSQL and
    SQLite use ``ON CONFLICT DO NOTHING``; other backends insert under a
    savepoint and drop the duplicate.
    """
    dialect_insert = _UPSERT_DIALECTS.get(db.get_bind().dialect.name)
    if dialect_insert is not None:
        stmt = dialect_insert(model).values(**values).on_conflict_do_nothing(index_elements=[key])
        return db.execute(stmt).rowcount == 1

    try:
        with db.begin_nested():
            db.execute(insert(model).values(**values))
    except IntegrityError:
        return False
    return True


def _ensure_cashbox_day(db: Session, day: date) -> None:
    if db.scalar(select(CashboxDaily.id).where(CashboxDaily.date == day)) is not None:
        return

    opening = _opening_for(db, day)
    values = {
        "date": day,
        **opening.to_columns("opening"),
        **Money.zero().to_columns("cash_in"),
        **Money.zero().to_columns("cash_out"),
        **opening.to_columns("closing"),
    }
    if _insert_if_absent(db, CashboxDaily, "date", values):
        logger.info("Opened cashbox day %s with opening %s", day.isoformat(), opening.describe())
    else:
        logger.info("Cashbox day %s was opened by another request", day.isoformat())


def adjust_cashbox(
    db: Session,
    day: date,
    cash_in: Money = Money(),
    cash_out: Money = Money(),
    note: Optional[str] = None,
    allow_negative: bool = False,
) -> CashboxDaily:
    if not allow_negative and (cash_in.has_negative or cash_out.has_negative):
        raise ValidationError("Cashbox deltas must not be negative")

    _ensure_cashbox_day(db, day)

    stmt = update(CashboxDaily).where(CashboxDaily.date == day)
    # closing first: MySQL evaluates SET items left to right against updated values
    values = [
        (
            CashboxDaily.closing_usd,
            CashboxDaily.opening_usd + CashboxDaily.cash_in_usd + cash_in.usd
            - CashboxDaily.cash_out_usd - cash_out.usd,
        ),
        (
            CashboxDaily.closing_lbp,
            CashboxDaily.opening_lbp + CashboxDaily.cash_in_lbp + cash_in.lbp
            - CashboxDaily.cash_out_lbp - cash_out.lbp,
        ),
        (CashboxDaily.cash_in_usd, CashboxDaily.cash_in_usd + cash_in.usd),
        (CashboxDaily.cash_in_lbp, CashboxDaily.cash_in_lbp + cash_in.lbp),
        (CashboxDaily.cash_out_usd, CashboxDaily.cash_out_usd + cash_out.usd),
        (CashboxDaily.cash_out_lbp, CashboxDaily.cash_out_lbp + cash_out.lbp),
        (CashboxDaily.updated_at, utcnow()),
    ]
    if note:
        line = f"{utcnow():%Y-%m-%d %H:%M:%S}: {note}"
        values.append(
            (
                CashboxDaily.notes,
                case(
                    (or_(CashboxDaily.notes.is_(None), CashboxDaily.notes == ""), line),
                    else_=CashboxDaily.notes + "\n" + line,
                ),
            )
        )

    result = db.execute(stmt.ordered_values(*values).execution_options(**_NO_SYNC))
    if result.rowcount != 1:
        raise ConcurrencyError(f"Cashbox update for {day.isoformat()} did not apply")

    logger.info(
        "Cashbox %s: in %s, out %s",
        day.isoformat(),
        cash_in.describe(),
        cash_out.describe(),
    )
    return db.execute(
        select(CashboxDaily)
        .where(CashboxDaily.date == day)
        .execution_options(populate_existing=True)
    ).scalar_one()


def next_sequence(db: Session, name: str) -> int:
    increment = (
        update(StatementSequence)
        .where(StatementSequence.name == name)
        .values(last_value=StatementSequence.last_value + 1)
        .execution_options(**_NO_SYNC)
    )
    if db.execute(increment).rowcount == 0:
        # first use; the counter starts at 0 whoever creates it
        _insert_if_absent(db, StatementSequence, "name", {"name": name, "last_value": 0})
        db.execute(increment)
    return db.scalar(select(StatementSequence.last_value).where(StatementSequence.name == name))


def format_sequence(prefix: str, value: int) -> str:
    return f"{prefix}-{value:0{config.STATEMENT_ID_WIDTH}d}"
