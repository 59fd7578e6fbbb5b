import logging
from contextlib import contextmanager
from datetime import date
from typing import Optional

from sqlalchemy import case, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from . import cashbox, delivery, reversal, statements
from .database import SessionLocal, check_db_connection
from .errors import DuplicateRecordError, NotFoundError, SettlementError
from .models import (
    CashboxDayView,
    CashDirection,
    ClientBalanceView,
    ClientStatementView,
    DriverStatementView,
    SettlementResult,
    TransactionType,
    WalletView,
)
from .money import Money
from .primitives import read_wallet
from .tables import Client, ClientTransaction, DriverTransaction

logger = logging.getLogger(__name__)


def _signed_sum(model, owner_column, owner_id):
    credit = model.type == TransactionType.CREDIT.value
    return select(
        func.coalesce(func.sum(case((credit, model.amount_usd), else_=-model.amount_usd)), 0),
        func.coalesce(func.sum(case((credit, model.amount_lbp), else_=-model.amount_lbp)), 0),
        func.count(model.id),
        func.max(model.created_at),
    ).where(owner_column == owner_id)


class SettlementService:
    """
    Entry point for every settlement operation.

    Each public method runs in its own session and database transaction: the
    transaction commits when the method returns and rolls back completely when
    it raises.
    """

    def __init__(self, session_factory: Optional[sessionmaker] = None):
        self.session_factory = session_factory or SessionLocal

    @contextmanager
    def _unit_of_work(self, operation: str):
        with self.session_factory() as db:
            try:
                with db.begin():
                    yield db
            except SettlementError as e:
                logger.warning("%s rolled back: %s", operation, e)
                raise
            except IntegrityError as e:
                logger.warning("%s rolled back on a duplicate write: %s", operation, e.orig)
                raise DuplicateRecordError(f"{operation} would duplicate an existing record ({e.orig})") from e
            except Exception:
                logger.error("%s failed, rolled back", operation, exc_info=True)
                raise

    def is_healthy(self) -> bool:
        return check_db_connection(self.session_factory.kw.get("bind"))

    # Delivery settlement and reversal

    def process_order_delivery(self, order_id: str, created_by: Optional[str] = None) -> SettlementResult:
        with self._unit_of_work("process_order_delivery") as db:
            return delivery.settle_delivery(db, order_id, created_by=created_by)

    def delete_order_with_accounting(self, order_id: str, today: Optional[date] = None) -> SettlementResult:
        with self._unit_of_work("delete_order_with_accounting") as db:
            return reversal.delete_order_with_accounting(db, order_id, today=today)

    # Cashbox and cash events

    def apply_cashbox_delta(
        self, day: date, delta: cashbox.CashboxDelta, note: Optional[str] = None
    ) -> CashboxDayView:
        with self._unit_of_work("apply_cashbox_delta") as db:
            row = cashbox.apply_cashbox_delta(db, day, delta, note=note)
            return CashboxDayView.model_validate(row)

    def get_cashbox_day(self, day: date) -> CashboxDayView:
        with self._unit_of_work("get_cashbox_day") as db:
            return CashboxDayView.model_validate(cashbox.get_cashbox_day(db, day))

    def record_capital(
        self,
        direction: CashDirection,
        amount: Money,
        note: Optional[str] = None,
        day: Optional[date] = None,
    ) -> CashboxDayView:
        with self._unit_of_work("record_capital") as db:
            row = cashbox.record_capital(db, day or date.today(), direction, amount, note=note)
            return CashboxDayView.model_validate(row)

    def give_driver_cash(
        self,
        driver_id: str,
        amount: Money,
        note: Optional[str] = None,
        created_by: Optional[str] = None,
        day: Optional[date] = None,
    ) -> CashboxDayView:
        with self._unit_of_work("give_driver_cash") as db:
            row = cashbox.give_driver_cash(
                db, day or date.today(), driver_id, amount, note=note, created_by=created_by
            )
            return CashboxDayView.model_validate(row)

    def take_back_driver_cash(
        self,
        driver_id: str,
        amount: Money,
        note: Optional[str] = None,
        created_by: Optional[str] = None,
        day: Optional[date] = None,
    ) -> CashboxDayView:
        with self._unit_of_work("take_back_driver_cash") as db:
            row = cashbox.take_back_driver_cash(
                db, day or date.today(), driver_id, amount, note=note, created_by=created_by
            )
            return CashboxDayView.model_validate(row)

    # Statements

    def issue_driver_statement(
        self, driver_id: str, period_from: date, period_to: date, created_by: Optional[str] = None
    ) -> DriverStatementView:
        with self._unit_of_work("issue_driver_statement") as db:
            statement = statements.issue_driver_statement(
                db, driver_id, period_from, period_to, created_by=created_by
            )
            return DriverStatementView.model_validate(statement)

    def issue_client_statement(
        self, client_id: str, period_from: date, period_to: date, created_by: Optional[str] = None
    ) -> ClientStatementView:
        with self._unit_of_work("issue_client_statement") as db:
            statement = statements.issue_client_statement(
                db, client_id, period_from, period_to, created_by=created_by
            )
            return ClientStatementView.model_validate(statement)

    def issue_prepaid_statement(
        self,
        client_id: str,
        order_ids: list,
        created_by: Optional[str] = None,
        day: Optional[date] = None,
    ) -> ClientStatementView:
        with self._unit_of_work("issue_prepaid_statement") as db:
            statement = statements.issue_prepaid_statement(
                db, client_id, order_ids, created_by=created_by, today=day
            )
            return ClientStatementView.model_validate(statement)

    def mark_driver_statement_paid(
        self,
        statement_id: str,
        payment_method: str = "cash",
        notes: Optional[str] = None,
        day: Optional[date] = None,
    ) -> DriverStatementView:
        with self._unit_of_work("mark_driver_statement_paid") as db:
            statement = statements.mark_driver_statement_paid(
                db, statement_id, payment_method=payment_method, notes=notes, today=day
            )
            return DriverStatementView.model_validate(statement)

    def mark_client_statement_paid(
        self,
        statement_id: str,
        payment_method: str = "cash",
        notes: Optional[str] = None,
        created_by: Optional[str] = None,
        day: Optional[date] = None,
    ) -> ClientStatementView:
        with self._unit_of_work("mark_client_statement_paid") as db:
            statement = statements.mark_client_statement_paid(
                db,
                statement_id,
                payment_method=payment_method,
                notes=notes,
                created_by=created_by,
                today=day,
            )
            return ClientStatementView.model_validate(statement)

    # Balances

    def get_driver_wallet(self, driver_id: str) -> WalletView:
        """Stored wallet next to the signed sum of the driver's transactions."""
        with self._unit_of_work("get_driver_wallet") as db:
            wallet = read_wallet(db, driver_id)
            if wallet is None:
                raise NotFoundError(f"Driver {driver_id} not found")
            usd, lbp, count, _ = db.execute(
                _signed_sum(DriverTransaction, DriverTransaction.driver_id, driver_id)
            ).one()
            ledger_total = Money.of(usd, lbp)
            balanced = wallet == ledger_total
            if not balanced:
                logger.warning(
                    "Driver %s wallet %s does not match ledger %s",
                    driver_id,
                    wallet.describe(),
                    ledger_total.describe(),
                )
            return WalletView(
                driver_id=driver_id,
                wallet=wallet,
                ledger_total=ledger_total,
                total_entries=count,
                balanced=balanced,
            )

    def get_client_balance(self, client_id: str) -> ClientBalanceView:
        with self._unit_of_work("get_client_balance") as db:
            if db.get(Client, client_id) is None:
                raise NotFoundError(f"Client {client_id} not found")
            usd, lbp, count, last_at = db.execute(
                _signed_sum(ClientTransaction, ClientTransaction.client_id, client_id)
            ).one()
            return ClientBalanceView(
                client_id=client_id,
                balance=Money.of(usd, lbp),
                total_entries=count,
                last_transaction_at=last_at,
            )
