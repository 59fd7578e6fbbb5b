import logging
from typing import Optional

from sqlalchemy import delete
from sqlalchemy.orm import Session

from .errors import ValidationError
from .models import AccountingCategory, TransactionType
from .money import Money
from .tables import AccountingEntry, ClientTransaction, DriverTransaction

logger = logging.getLogger(__name__)


def _check_amount(amount: Money) -> None:
    if amount.has_negative:
        raise ValidationError(f"Ledger amounts must not be negative, got {amount.describe()}")


def record_driver_transaction(
    db: Session,
    driver_id: str,
    tx_type: TransactionType,
    amount: Money,
    note: str,
    order_ref: Optional[str] = None,
    created_by: Optional[str] = None,
) -> DriverTransaction:
    """Append a driver ledger row. The wallet is adjusted separately by the caller."""
    _check_amount(amount)
    tx = DriverTransaction(
        driver_id=driver_id,
        type=TransactionType(tx_type).value,
        note=note,
        order_ref=order_ref,
        created_by=created_by,
        **amount.to_columns("amount"),
    )
    db.add(tx)
    db.flush()
    logger.info(
        "Driver %s %s %s (%s)", driver_id, tx.type, amount.describe(), order_ref or "no order"
    )
    return tx


def record_client_transaction(
    db: Session,
    client_id: str,
    tx_type: TransactionType,
    amount: Money,
    note: str,
    order_ref: Optional[str] = None,
    created_by: Optional[str] = None,
) -> ClientTransaction:
    _check_amount(amount)
    tx = ClientTransaction(
        client_id=client_id,
        type=TransactionType(tx_type).value,
        note=note,
        order_ref=order_ref,
        created_by=created_by,
        **amount.to_columns("amount"),
    )
    db.add(tx)
    db.flush()
    logger.info(
        "Client %s %s %s (%s)", client_id, tx.type, amount.describe(), order_ref or "no order"
    )
    return tx


def record_accounting_entry(
    db: Session,
    category: AccountingCategory,
    amount: Money,
    memo: str,
    order_ref: Optional[str] = None,
) -> AccountingEntry:
    _check_amount(amount)
    entry = AccountingEntry(
        category=AccountingCategory(category).value,
        memo=memo,
        order_ref=order_ref,
        **amount.to_columns("amount"),
    )
    db.add(entry)
    db.flush()
    logger.info("Accounting %s %s (%s)", entry.category, amount.describe(), order_ref or "-")
    return entry


def signed(tx) -> Money:
    """Credit counts up, Debit counts down."""
    if tx.type == TransactionType.CREDIT.value:
        return tx.amount
    return -tx.amount


def delete_order_entries(db: Session, order_ref: str) -> dict:
    """Hard-delete every ledger row tagged with ``order_ref``. Returns row counts per table."""
    counts = {}
    for name, model in (
        ("driver_transactions", DriverTransaction),
        ("client_transactions", ClientTransaction),
        ("accounting_entries", AccountingEntry),
    ):
        result = db.execute(
            delete(model)
            .where(model.order_ref == order_ref)
            .execution_options(synchronize_session=False)
        )
        counts[name] = result.rowcount
    logger.info("Deleted ledger rows for %s: %s", order_ref, counts)
    return counts
