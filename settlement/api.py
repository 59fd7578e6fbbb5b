from contextlib import asynccontextmanager
from datetime import date
from typing import Optional

from fastapi import FastAPI, Header, HTTPException, Request, status
from fastapi.exception_handlers import request_validation_exception_handler
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import CORS_ORIGINS
from .database import init_db
from .errors import ConcurrencyError, DuplicateRecordError, NotFoundError, SettlementError
from .logging_setup import configure_logging
from .middleware import RequestContextMiddleware
from .models import (
    CapitalRequest,
    CashAmountRequest,
    CashboxDayView,
    ClientBalanceView,
    ClientStatementView,
    DriverStatementView,
    OrderActionRequest,
    PayStatementRequest,
    PrepaidStatementRequest,
    SettlementResult,
    StatementPeriodRequest,
    WalletView,
)
from .service import SettlementService


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    init_db()
    yield


app = FastAPI(
    title="Courier Settlement API",
    description="USD / LBP settlement of deliveries across driver wallets, client balances, the cashbox and accounting",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(RequestContextMiddleware)

settlement_service = SettlementService()


def _http_error(e: SettlementError) -> HTTPException:
    if isinstance(e, NotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    if isinstance(e, (ConcurrencyError, DuplicateRecordError)):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


SETTLEMENT_PATHS = ("/process-order-delivery", "/delete-order-with-accounting")


def _body_error(exc: RequestValidationError) -> str:
    first = exc.errors()[0]
    field = first["loc"][-1] if first["loc"] else "body"
    if first["type"] == "missing" and field in ("orderId", "order_id"):
        return "Order ID is required"
    return f"Invalid {field}: {first['msg']}"


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    # settlement endpoints keep their {"error": ...} contract for bad bodies
    if request.url.path.endswith(SETTLEMENT_PATHS):
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"error": _body_error(exc)})
    return await request_validation_exception_handler(request, exc)


@app.get("/health", tags=["System"])
def health_check():
    if not settlement_service.is_healthy():
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"status": "unhealthy", "service": "courier-settlement"},
        )
    return {"status": "healthy", "service": "courier-settlement"}


# Settlement


@app.post("/process-order-delivery", response_model=SettlementResult, tags=["Settlement"])
def process_order_delivery(request: OrderActionRequest, x_user_id: Optional[str] = Header(default=None)):
    try:
        return settlement_service.process_order_delivery(request.order_id, created_by=x_user_id)
    except SettlementError as e:
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"error": str(e)})


@app.post("/delete-order-with-accounting", response_model=SettlementResult, tags=["Settlement"])
def delete_order_with_accounting(request: OrderActionRequest):
    try:
        return settlement_service.delete_order_with_accounting(request.order_id)
    except SettlementError as e:
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"error": str(e)})


# Statements


@app.post(
    "/drivers/{driver_id}/statements",
    response_model=DriverStatementView,
    status_code=status.HTTP_201_CREATED,
    tags=["Statements"],
)
def issue_driver_statement(
    driver_id: str, request: StatementPeriodRequest, x_user_id: Optional[str] = Header(default=None)
) -> DriverStatementView:
    try:
        return settlement_service.issue_driver_statement(
            driver_id, request.period_from, request.period_to, created_by=x_user_id
        )
    except SettlementError as e:
        raise _http_error(e)


@app.post(
    "/clients/{client_id}/statements",
    response_model=ClientStatementView,
    status_code=status.HTTP_201_CREATED,
    tags=["Statements"],
)
def issue_client_statement(
    client_id: str, request: StatementPeriodRequest, x_user_id: Optional[str] = Header(default=None)
) -> ClientStatementView:
    try:
        return settlement_service.issue_client_statement(
            client_id, request.period_from, request.period_to, created_by=x_user_id
        )
    except SettlementError as e:
        raise _http_error(e)


@app.post(
    "/clients/{client_id}/prepaid-statements",
    response_model=ClientStatementView,
    status_code=status.HTTP_201_CREATED,
    tags=["Statements"],
)
def issue_prepaid_statement(
    client_id: str, request: PrepaidStatementRequest, x_user_id: Optional[str] = Header(default=None)
) -> ClientStatementView:
    try:
        return settlement_service.issue_prepaid_statement(client_id, request.order_ids, created_by=x_user_id)
    except SettlementError as e:
        raise _http_error(e)


@app.post("/statements/driver/{statement_id}/pay", response_model=DriverStatementView, tags=["Statements"])
def pay_driver_statement(statement_id: str, request: PayStatementRequest) -> DriverStatementView:
    try:
        return settlement_service.mark_driver_statement_paid(
            statement_id, payment_method=request.payment_method, notes=request.notes
        )
    except SettlementError as e:
        raise _http_error(e)


@app.post("/statements/client/{statement_id}/pay", response_model=ClientStatementView, tags=["Statements"])
def pay_client_statement(
    statement_id: str, request: PayStatementRequest, x_user_id: Optional[str] = Header(default=None)
) -> ClientStatementView:
    try:
        return settlement_service.mark_client_statement_paid(
            statement_id, payment_method=request.payment_method, notes=request.notes, created_by=x_user_id
        )
    except SettlementError as e:
        raise _http_error(e)


# Cash


@app.post("/drivers/{driver_id}/cash/give", response_model=CashboxDayView, tags=["Cash"])
def give_driver_cash(
    driver_id: str, request: CashAmountRequest, x_user_id: Optional[str] = Header(default=None)
) -> CashboxDayView:
    try:
        return settlement_service.give_driver_cash(
            driver_id, request.amount, note=request.note, created_by=x_user_id
        )
    except SettlementError as e:
        raise _http_error(e)


@app.post("/drivers/{driver_id}/cash/take-back", response_model=CashboxDayView, tags=["Cash"])
def take_back_driver_cash(
    driver_id: str, request: CashAmountRequest, x_user_id: Optional[str] = Header(default=None)
) -> CashboxDayView:
    try:
        return settlement_service.take_back_driver_cash(
            driver_id, request.amount, note=request.note, created_by=x_user_id
        )
    except SettlementError as e:
        raise _http_error(e)


@app.post("/cashbox/capital", response_model=CashboxDayView, tags=["Cash"])
def record_capital(request: CapitalRequest) -> CashboxDayView:
    try:
        return settlement_service.record_capital(
            request.direction, request.amount, note=request.note, day=request.day
        )
    except SettlementError as e:
        raise _http_error(e)


@app.get("/cashbox/{day}", response_model=CashboxDayView, tags=["Cash"])
def get_cashbox_day(day: date) -> CashboxDayView:
    return settlement_service.get_cashbox_day(day)


# Balances


@app.get("/drivers/{driver_id}/wallet", response_model=WalletView, tags=["Balances"])
def get_driver_wallet(driver_id: str) -> WalletView:
    try:
        return settlement_service.get_driver_wallet(driver_id)
    except NotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Driver {driver_id} not found")


@app.get("/clients/{client_id}/balance", response_model=ClientBalanceView, tags=["Balances"])
def get_client_balance(client_id: str) -> ClientBalanceView:
    try:
        return settlement_service.get_client_balance(client_id)
    except NotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Client {client_id} not found")


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
