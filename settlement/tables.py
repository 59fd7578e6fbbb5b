from datetime import datetime, timezone
from decimal import Decimal
from uuid import uuid4

import sqlalchemy as sa
from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)

from .database import Base
from .models import (
    Fulfillment,
    FeeRule,
    OrderStatus,
    OrderType,
    StatementKind,
    StatementStatus,
)
from .money import Money


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid4())


def amount_column():
    return Column(Numeric(18, 2), nullable=False, default=Decimal("0"))


class Driver(Base):
    __tablename__ = "drivers"

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(120), nullable=False)

    # positive: company owes the driver, negative: driver owes the company
    wallet_usd = amount_column()
    wallet_lbp = amount_column()

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    @property
    def wallet(self) -> Money:
        return Money.from_row(self, "wallet")


class Client(Base):
    __tablename__ = "clients"

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(120), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)


class Order(Base):
    __tablename__ = "orders"

    id = Column(String(36), primary_key=True, default=new_id)
    order_id = Column(String(40), unique=True, index=True, nullable=False)
    order_type = Column(String(20), default=OrderType.INSTANT.value, nullable=False)

    status = Column(String(20), default=OrderStatus.NEW.value, nullable=False)
    fulfillment = Column(String(20), default=Fulfillment.IN_HOUSE.value, nullable=False)
    client_fee_rule = Column(String(20), default=FeeRule.ADD_ON.value, nullable=False)

    client_id = Column(String(36), ForeignKey("clients.id"), index=True, nullable=True)
    driver_id = Column(String(36), ForeignKey("drivers.id"), index=True, nullable=True)

    order_amount_usd = amount_column()
    order_amount_lbp = amount_column()
    delivery_fee_usd = amount_column()
    delivery_fee_lbp = amount_column()

    driver_paid_for_client = Column(Boolean, default=False, nullable=False)
    driver_paid_amount_usd = amount_column()
    driver_paid_amount_lbp = amount_column()
    driver_paid_reason = Column(String(255), nullable=True)

    driver_remit_status = Column(String(20), nullable=True)
    driver_remit_date = Column(DateTime(timezone=True), nullable=True)

    prepaid_by_company = Column(Boolean, default=False, nullable=False)
    prepay_amount_usd = amount_column()
    prepay_amount_lbp = amount_column()
    collected_amount_usd = amount_column()
    collected_amount_lbp = amount_column()

    delivered_at = Column(DateTime(timezone=True), index=True, nullable=True)
    # set by the compare-and-set claim taken when the delivery is settled
    settled_at = Column(DateTime(timezone=True), nullable=True)

    entered_by = Column(String(64), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    @property
    def order_amount(self) -> Money:
        return Money.from_row(self, "order_amount")

    @property
    def delivery_fee(self) -> Money:
        return Money.from_row(self, "delivery_fee")

    @property
    def driver_paid_amount(self) -> Money:
        return Money.from_row(self, "driver_paid_amount")

    @property
    def prepay_amount(self) -> Money:
        return Money.from_row(self, "prepay_amount")


class DriverTransaction(Base):
    __tablename__ = "driver_transactions"
    __table_args__ = (
        UniqueConstraint("driver_id", "order_ref", "type", name="uq_driver_tx_order_type"),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    driver_id = Column(String(36), ForeignKey("drivers.id"), index=True, nullable=False)
    type = Column(String(10), nullable=False)
    amount_usd = amount_column()
    amount_lbp = amount_column()
    order_ref = Column(String(40), index=True, nullable=True)
    note = Column(Text, default="", nullable=False)
    created_by = Column(String(64), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    @property
    def amount(self) -> Money:
        return Money.from_row(self, "amount")


class ClientTransaction(Base):
    __tablename__ = "client_transactions"
    __table_args__ = (
        UniqueConstraint("client_id", "order_ref", "type", name="uq_client_tx_order_type"),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    client_id = Column(String(36), ForeignKey("clients.id"), index=True, nullable=False)
    type = Column(String(10), nullable=False)
    amount_usd = amount_column()
    amount_lbp = amount_column()
    order_ref = Column(String(40), index=True, nullable=True)
    note = Column(Text, default="", nullable=False)
    created_by = Column(String(64), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    @property
    def amount(self) -> Money:
        return Money.from_row(self, "amount")


class AccountingEntry(Base):
    __tablename__ = "accounting_entries"
    __table_args__ = (
        UniqueConstraint("category", "order_ref", name="uq_accounting_category_order"),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    category = Column(String(40), index=True, nullable=False)
    amount_usd = amount_column()
    amount_lbp = amount_column()
    order_ref = Column(String(40), index=True, nullable=True)
    memo = Column(Text, default="", nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    @property
    def amount(self) -> Money:
        return Money.from_row(self, "amount")


class CashboxDaily(Base):
    __tablename__ = "cashbox_daily"

    id = Column(String(36), primary_key=True, default=new_id)
    date = Column(Date, unique=True, index=True, nullable=False)

    opening_usd = amount_column()
    opening_lbp = amount_column()
    cash_in_usd = amount_column()
    cash_in_lbp = amount_column()
    cash_out_usd = amount_column()
    cash_out_lbp = amount_column()
    closing_usd = amount_column()
    closing_lbp = amount_column()

    notes = Column(Text, nullable=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)


class DriverStatement(Base):
    __tablename__ = "driver_statements"

    id = Column(String(36), primary_key=True, default=new_id)
    statement_id = Column(String(32), unique=True, index=True, nullable=False)
    driver_id = Column(String(36), ForeignKey("drivers.id"), index=True, nullable=False)
    period_from = Column(Date, nullable=False)
    period_to = Column(Date, nullable=False)
    order_refs = Column(sa.JSON, nullable=False, default=list)

    total_collected_usd = amount_column()
    total_collected_lbp = amount_column()
    total_delivery_fees_usd = amount_column()
    total_delivery_fees_lbp = amount_column()
    total_driver_paid_refund_usd = amount_column()
    total_driver_paid_refund_lbp = amount_column()
    net_due_usd = amount_column()
    net_due_lbp = amount_column()

    status = Column(String(10), default=StatementStatus.UNPAID.value, nullable=False)
    issued_date = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    paid_date = Column(DateTime(timezone=True), nullable=True)
    payment_method = Column(String(30), nullable=True)
    notes = Column(Text, nullable=True)
    created_by = Column(String(64), nullable=True)

    @property
    def net_due(self) -> Money:
        return Money.from_row(self, "net_due")


class ClientStatement(Base):
    __tablename__ = "client_statements"

    id = Column(String(36), primary_key=True, default=new_id)
    statement_id = Column(String(32), unique=True, index=True, nullable=False)
    client_id = Column(String(36), ForeignKey("clients.id"), index=True, nullable=False)
    kind = Column(String(10), default=StatementKind.REGULAR.value, nullable=False)
    period_from = Column(Date, nullable=False)
    period_to = Column(Date, nullable=False)
    order_refs = Column(sa.JSON, nullable=False, default=list)

    total_orders = Column(Integer, default=0, nullable=False)
    total_order_amount_usd = amount_column()
    total_order_amount_lbp = amount_column()
    total_delivery_fees_usd = amount_column()
    total_delivery_fees_lbp = amount_column()
    net_due_usd = amount_column()
    net_due_lbp = amount_column()

    status = Column(String(10), default=StatementStatus.UNPAID.value, nullable=False)
    issued_date = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    paid_date = Column(DateTime(timezone=True), nullable=True)
    payment_method = Column(String(30), nullable=True)
    notes = Column(Text, nullable=True)
    created_by = Column(String(64), nullable=True)

    @property
    def net_due(self) -> Money:
        return Money.from_row(self, "net_due")


class StatementSequence(Base):
    __tablename__ = "statement_sequences"

    name = Column(String(40), primary_key=True)
    last_value = Column(Integer, default=0, nullable=False)
