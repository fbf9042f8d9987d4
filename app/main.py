import uvicorn
from fastapi import FastAPI, Depends, HTTPException, Header, Query, Request
from typing import List, Optional
from app import config
from app.clock import SystemClock
from app.crud import SqlStorage
from app.database import build_engine, build_sessionmaker, init_db, seed_menu
from app.domain import OrderFilter, OrderLine
from app.errors import (
    AuthorizationError, BillingError, ChargeError, ConflictError, InvalidRequestError, InvalidStateError,
    NotFoundError,
)
from app.pricing import PricingRules
from app.schemas import (
    CheckInRequest, MenuItemResponse, OrderRequest, OrderResponse, PaymentConfirmRequest, PaymentRequest,
    PaymentResponse, ReceiptResponse, SessionResponse, SubtotalResponse,
)
from app.services import ChargeClient
from app.sessions import CafeSessionManager
import logging

logging.basicConfig(level=logging.INFO)
app = FastAPI(title="Cafe Billing Service", version="1.0.0")

STATUS_CODES = [
    (ConflictError, 409),
    (NotFoundError, 404),
    (AuthorizationError, 403),
    (InvalidStateError, 400),
    (InvalidRequestError, 400),
    (ChargeError, 502),
]


@app.on_event("startup")
async def on_startup():
    if not config.DATABASE_URL:
        raise RuntimeError("DATABASE_URL is not set")

    engine = build_engine(config.DATABASE_URL)
    session_factory = build_sessionmaker(engine)
    if config.CREATE_TABLES:
        await init_db(engine)
    if config.SEED_MENU:
        await seed_menu(session_factory)

    charge_client = ChargeClient() if config.CHARGE_SERVICE_URL else None
    if charge_client is None:
        logging.warning("CHARGE_SERVICE_URL is not set, payment endpoints will fail")

    app.state.engine = engine
    app.state.manager = CafeSessionManager(
        SqlStorage(session_factory), SystemClock(), PricingRules(), charge_client
    )


@app.on_event("shutdown")
async def on_shutdown():
    engine = getattr(app.state, "engine", None)
    if engine is not None:
        await engine.dispose()


def get_manager(request: Request) -> CafeSessionManager:
    return request.app.state.manager


def get_user_id(x_user_id: Optional[int] = Header(default=None)) -> int:
    if x_user_id is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return x_user_id


def to_http_error(error: BillingError) -> HTTPException:
    status_code = next((code for cls, code in STATUS_CODES if isinstance(error, cls)), 400)
    return HTTPException(status_code=status_code, detail={"message": error.message, "reason": error.reason})


def internal_error(action: str, e: Exception) -> HTTPException:
    logging.error(f"Unexpected error while {action}: {e}")
    return HTTPException(status_code=500, detail="Internal Server Error")


@app.post("/api/v1/sessions/check-in", response_model=SessionResponse, status_code=201)
async def check_in(request: Optional[CheckInRequest] = None, user_id: int = Depends(get_user_id),
                   manager: CafeSessionManager = Depends(get_manager)):
    try:
        table_number = request.table_number if request else None
        session = await manager.check_in(user_id, table_number)
        return SessionResponse.from_domain(session)
    except BillingError as e:
        raise to_http_error(e)
    except HTTPException as http_error:
        raise http_error
    except Exception as e:
        raise internal_error("checking in", e)


@app.post("/api/v1/sessions/{session_id}/check-out", response_model=SessionResponse)
async def check_out(session_id: int, user_id: int = Depends(get_user_id),
                    manager: CafeSessionManager = Depends(get_manager)):
    try:
        session = await manager.check_out(session_id, user_id)
        return SessionResponse.from_domain(session)
    except BillingError as e:
        raise to_http_error(e)
    except HTTPException as http_error:
        raise http_error
    except Exception as e:
        raise internal_error(f"checking out session {session_id}", e)


@app.get("/api/v1/sessions/active", response_model=SessionResponse)
async def get_active_session(user_id: int = Depends(get_user_id),
                             manager: CafeSessionManager = Depends(get_manager)):
    try:
        session = await manager.get_active_session(user_id)
        if session is None:
            raise HTTPException(status_code=404, detail="No active session found")
        return SessionResponse.from_domain(session)
    except HTTPException as http_error:
        raise http_error
    except Exception as e:
        raise internal_error("fetching active session", e)


@app.get("/api/v1/sessions/history", response_model=List[SessionResponse])
async def get_session_history(user_id: int = Depends(get_user_id),
                              manager: CafeSessionManager = Depends(get_manager)):
    try:
        return [SessionResponse.from_domain(s) for s in await manager.session_history(user_id)]
    except Exception as e:
        raise internal_error("fetching session history", e)


@app.get("/api/v1/sessions/{session_id}/receipt", response_model=ReceiptResponse)
async def get_receipt(session_id: int, user_id: int = Depends(get_user_id),
                      manager: CafeSessionManager = Depends(get_manager)):
    try:
        return ReceiptResponse.from_domain(await manager.get_receipt(session_id, user_id))
    except BillingError as e:
        raise to_http_error(e)
    except HTTPException as http_error:
        raise http_error
    except Exception as e:
        raise internal_error(f"building receipt for session {session_id}", e)


@app.get("/api/v1/sessions/{session_id}/subtotal", response_model=SubtotalResponse)
async def get_order_subtotal(
        session_id: int,
        status: OrderFilter = Query(OrderFilter.ALL, description="Which orders to count: all, pending or completed."),
        user_id: int = Depends(get_user_id),
        manager: CafeSessionManager = Depends(get_manager),
):
    try:
        await manager.list_orders(session_id, user_id)  # ownership check
        subtotal = await manager.get_order_subtotal(session_id, status)
        return SubtotalResponse(session_id=session_id, status=status.value, subtotal=subtotal)
    except BillingError as e:
        raise to_http_error(e)
    except HTTPException as http_error:
        raise http_error
    except Exception as e:
        raise internal_error(f"summing orders of session {session_id}", e)


@app.get("/api/v1/menu", response_model=List[MenuItemResponse])
async def get_menu(category: Optional[str] = Query(None, description="Only items of this category."),
                   manager: CafeSessionManager = Depends(get_manager)):
    try:
        items = await manager.storage.list_menu_items(category)
        return [MenuItemResponse(**item.model_dump()) for item in items]
    except Exception as e:
        raise internal_error("fetching menu", e)


@app.post("/api/v1/orders", response_model=OrderResponse, status_code=201)
async def place_order(request: OrderRequest, user_id: int = Depends(get_user_id),
                      manager: CafeSessionManager = Depends(get_manager)):
    try:
        lines = [OrderLine(menu_item_id=i.menu_item_id, quantity=i.quantity) for i in request.items]
        order = await manager.place_order(request.session_id, user_id, lines)
        return OrderResponse.from_domain(order)
    except BillingError as e:
        raise to_http_error(e)
    except HTTPException as http_error:
        raise http_error
    except Exception as e:
        raise internal_error("placing order", e)


@app.get("/api/v1/orders/session/{session_id}", response_model=List[OrderResponse])
async def get_session_orders(session_id: int, user_id: int = Depends(get_user_id),
                             manager: CafeSessionManager = Depends(get_manager)):
    try:
        return [OrderResponse.from_domain(o) for o in await manager.list_orders(session_id, user_id)]
    except BillingError as e:
        raise to_http_error(e)
    except HTTPException as http_error:
        raise http_error
    except Exception as e:
        raise internal_error(f"fetching orders of session {session_id}", e)


@app.post("/api/v1/payments", response_model=PaymentResponse)
async def create_payment(request: PaymentRequest, user_id: int = Depends(get_user_id),
                         manager: CafeSessionManager = Depends(get_manager)):
    try:
        logging.info(f"Received payment request for session: {request.session_id}")
        payment, client_secret = await manager.create_payment(request.session_id, user_id)
        return PaymentResponse.from_domain(payment, client_secret)
    except BillingError as e:
        raise to_http_error(e)
    except HTTPException as http_error:
        raise http_error
    except Exception as e:
        raise internal_error(f"creating payment for session {request.session_id}", e)


@app.post("/api/v1/payments/{payment_id}/confirm", response_model=PaymentResponse)
async def confirm_payment(payment_id: int, request: Optional[PaymentConfirmRequest] = None,
                          user_id: int = Depends(get_user_id),
                          manager: CafeSessionManager = Depends(get_manager)):
    try:
        external_ref = request.external_ref if request else None
        payment = await manager.confirm_payment(payment_id, user_id, external_ref)
        return PaymentResponse.from_domain(payment)
    except BillingError as e:
        raise to_http_error(e)
    except HTTPException as http_error:
        raise http_error
    except Exception as e:
        raise internal_error(f"confirming payment {payment_id}", e)


@app.get("/health")
async def health():
    return {"ok": True}


if __name__ == "__main__":
    uvicorn.run("app.main:app", host="0.0.0.0", port=config.PORT, reload=True)
