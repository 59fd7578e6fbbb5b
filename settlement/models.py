from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .money import Money


class OrderStatus(str, Enum):
    NEW = "New"
    ASSIGNED = "Assigned"
    PICKED_UP = "PickedUp"
    DELIVERED = "Delivered"
    RETURNED = "Returned"
    CANCELLED = "Cancelled"


class OrderType(str, Enum):
    INSTANT = "instant"
    ECOM = "ecom"


class Fulfillment(str, Enum):
    IN_HOUSE = "InHouse"
    THIRD_PARTY = "ThirdParty"


class FeeRule(str, Enum):
    ADD_ON = "ADD_ON"
    DEDUCT = "DEDUCT"
    INCLUDED = "INCLUDED"


class RemitStatus(str, Enum):
    PENDING = "Pending"
    COLLECTED = "Collected"


class TransactionType(str, Enum):
    CREDIT = "Credit"
    DEBIT = "Debit"


class AccountingCategory(str, Enum):
    DELIVERY_INCOME = "DeliveryIncome"
    PREPAID_FLOAT = "PrepaidFloat"
    CAPITAL_INJECTION = "CapitalInjection"
    CAPITAL_WITHDRAWAL = "CapitalWithdrawal"


class StatementStatus(str, Enum):
    UNPAID = "unpaid"
    PAID = "paid"
    LOCKED = "locked"


class StatementKind(str, Enum):
    REGULAR = "regular"
    PREPAID = "prepaid"


class CashDirection(str, Enum):
    IN = "in"
    OUT = "out"


class OrderActionRequest(BaseModel):
    order_id: str = Field(..., alias="orderId", min_length=1)

    model_config = ConfigDict(populate_by_name=True, json_schema_extra={
        "example": {"orderId": "5b0c9d2e-7a31-4d8e-9f0a-2f4f5c1e8a11"}
    })


class SettlementResult(BaseModel):
    success: bool
    message: str
    order_id: Optional[str] = None


class CashAmountRequest(BaseModel):
    amount_usd: Decimal = Field(default=Decimal("0"), ge=0)
    amount_lbp: Decimal = Field(default=Decimal("0"), ge=0)
    note: Optional[str] = None

    @property
    def amount(self) -> Money:
        return Money(self.amount_usd, self.amount_lbp)


class CapitalRequest(CashAmountRequest):
    direction: CashDirection
    day: Optional[date] = None


class StatementPeriodRequest(BaseModel):
    period_from: date
    period_to: date

    @model_validator(mode="after")
    def _check_period(self):
        if self.period_from > self.period_to:
            raise ValueError("period_from must not be after period_to")
        return self


class PrepaidStatementRequest(BaseModel):
    order_ids: list[str] = Field(..., min_length=1)


class PayStatementRequest(BaseModel):
    payment_method: str = Field(default="cash", min_length=1)
    notes: Optional[str] = None


class DriverStatementView(BaseModel):
    statement_id: str
    driver_id: str
    period_from: date
    period_to: date
    order_refs: list[str]
    total_collected_usd: Decimal
    total_collected_lbp: Decimal
    total_delivery_fees_usd: Decimal
    total_delivery_fees_lbp: Decimal
    total_driver_paid_refund_usd: Decimal
    total_driver_paid_refund_lbp: Decimal
    net_due_usd: Decimal
    net_due_lbp: Decimal
    status: StatementStatus
    issued_date: datetime
    paid_date: Optional[datetime] = None
    payment_method: Optional[str] = None
    notes: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class ClientStatementView(BaseModel):
    statement_id: str
    client_id: str
    kind: StatementKind
    period_from: date
    period_to: date
    order_refs: list[str]
    total_orders: int
    total_order_amount_usd: Decimal
    total_order_amount_lbp: Decimal
    total_delivery_fees_usd: Decimal
    total_delivery_fees_lbp: Decimal
    net_due_usd: Decimal
    net_due_lbp: Decimal
    status: StatementStatus
    issued_date: datetime
    paid_date: Optional[datetime] = None
    payment_method: Optional[str] = None
    notes: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class CashboxDayView(BaseModel):
    date: date
    opening_usd: Decimal
    opening_lbp: Decimal
    cash_in_usd: Decimal
    cash_in_lbp: Decimal
    cash_out_usd: Decimal
    cash_out_lbp: Decimal
    closing_usd: Decimal
    closing_lbp: Decimal
    notes: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class WalletView(BaseModel):
    driver_id: str
    wallet: Money
    ledger_total: Money
    total_entries: int
    balanced: bool


class ClientBalanceView(BaseModel):
    client_id: str
    balance: Money
    total_entries: int
    last_transaction_at: Optional[datetime] = None
