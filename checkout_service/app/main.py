from dataclasses import dataclass
from typing import List, Optional

import structlog
from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.responses import JSONResponse

from .actors import Actor
from .backoffice import BackOffice
from .config import Settings, load_settings
from .database import Base, SessionLocal, engine
from .errors import CheckoutError, UpstreamError
from .gateway import PaymentGateway, PesapalClient
from .logging_config import configure_logging
from .notifications import EventBusNotifier, LogNotifier, Notifier
from .reconciliation import OrderLine, ReconciliationEngine
from .reminders import ReminderService
from . import schemas

settings = load_settings()
configure_logging(settings.log_level, settings.log_json)
log = structlog.get_logger().bind(component="api")

# Create database tables on startup if they don't exist.
Base.metadata.create_all(bind=engine)

app = FastAPI(title="Checkout Service")


@dataclass
class Services:
    checkout: ReconciliationEngine
    reminders: ReminderService
    backoffice: BackOffice


def build_notifier(settings: Settings) -> Notifier:
    if settings.rabbitmq_host:
        return EventBusNotifier(settings.rabbitmq_host, settings.rabbitmq_connect_attempts)
    return LogNotifier()


def build_services(session_factory, gateway: PaymentGateway, notifier: Notifier,
                   settings: Settings) -> Services:
    checkout = ReconciliationEngine(session_factory, gateway, notifier, settings)
    return Services(
        checkout=checkout,
        reminders=ReminderService(checkout.uow, notifier, settings.frontend_url),
        backoffice=BackOffice(checkout.uow),
    )


_services: Optional[Services] = None


def get_services() -> Services:
    global _services
    if _services is None:
        _services = build_services(SessionLocal, PesapalClient(settings.pesapal),
                                   build_notifier(settings), settings)
    return _services


def get_actor(x_user_id: Optional[str] = Header(None),
              x_user_role: Optional[str] = Header(None)) -> Actor:
    """The authenticating proxy in front of the service sets these headers."""
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Authentication required")
    return Actor(user_id=x_user_id, is_admin=(x_user_role or "").lower() == "admin")


@app.exception_handler(CheckoutError)
def checkout_error_handler(request: Request, exc: CheckoutError):
    if exc.status_code >= 500:
        log.error("request_failed", path=request.url.path, error=exc.message, code=exc.code)
    return JSONResponse(status_code=exc.status_code, content={"message": exc.message, "error": exc.code})


@app.get("/")
def root():
    """Health check endpoint."""
    return {"message": "Checkout service is running"}


# --- Orders ---

@app.post("/api/orders", status_code=201, response_model=schemas.PlacedOrderResponse)
def create_order(req: schemas.OrderRequest, actor: Actor = Depends(get_actor),
                 services: Services = Depends(get_services)):
    lines = [OrderLine(product_id=item.product_id, qty=item.qty) for item in req.items]
    order, session = services.checkout.place_order(
        actor, lines, req.payment_method, req.shipping_address,
        coupon_code=req.coupon_code, contact_email=req.contact_email,
    )
    return {"message": "Order created successfully", "order": order, "payment": session}


@app.get("/api/orders/myorders", response_model=List[schemas.OrderResponse])
def my_orders(actor: Actor = Depends(get_actor), services: Services = Depends(get_services)):
    return services.checkout.list_orders_for_user(actor)


@app.get("/api/orders/reminders/all", response_model=List[schemas.ReminderView])
def my_reminders(actor: Actor = Depends(get_actor), services: Services = Depends(get_services)):
    return services.reminders.list_reminders(actor)


@app.put("/api/orders/reminders/mark-read")
def mark_reminder_read(req: schemas.MarkReminderReadRequest, actor: Actor = Depends(get_actor),
                       services: Services = Depends(get_services)):
    services.reminders.mark_reminder_read(actor, req.order_id, req.reminder_id)
    return {"message": "Reminder marked as read"}


@app.get("/api/orders", response_model=List[schemas.OrderResponse])
def all_orders(actor: Actor = Depends(get_actor), services: Services = Depends(get_services)):
    return services.checkout.list_orders(actor)


@app.get("/api/orders/{order_id}", response_model=schemas.OrderResponse)
def get_order(order_id: int, actor: Actor = Depends(get_actor), services: Services = Depends(get_services)):
    return services.checkout.get_order(order_id, actor)


@app.put("/api/orders/{order_id}/status", response_model=schemas.OrderResponse)
def update_order_status(order_id: int, req: schemas.StatusUpdateRequest,
                        actor: Actor = Depends(get_actor), services: Services = Depends(get_services)):
    return services.checkout.update_order_status(order_id, req.status, actor)


@app.put("/api/orders/{order_id}/payment-status", response_model=schemas.OrderResponse)
def update_payment_status(order_id: int, req: schemas.PaymentStatusRequest,
                          actor: Actor = Depends(get_actor), services: Services = Depends(get_services)):
    return services.checkout.set_payment_status(order_id, req.payment_status, actor)


@app.post("/api/orders/{order_id}/send-payment-reminder")
def send_payment_reminder(order_id: int, actor: Actor = Depends(get_actor),
                          services: Services = Depends(get_services)):
    services.reminders.send_payment_reminder(order_id, actor)
    return {"message": "Payment reminder sent"}


@app.delete("/api/orders/{order_id}")
def delete_order(order_id: int, actor: Actor = Depends(get_actor), services: Services = Depends(get_services)):
    services.checkout.delete_order(order_id, actor)
    return {"message": "Order deleted"}


# --- Pesapal ---

@app.post("/api/pesapal/initiate-payment", response_model=schemas.PaymentSessionResponse)
def initiate_payment(req: schemas.InitiatePaymentRequest, actor: Actor = Depends(get_actor),
                     services: Services = Depends(get_services)):
    return services.checkout.initiate_payment(req.order_id, actor)


@app.api_route("/api/pesapal/callback", methods=["GET", "POST"])
def pesapal_callback(tracking_id: str = Query(..., alias="OrderTrackingId"),
                     merchant_reference: str = Query(..., alias="OrderMerchantReference"),
                     notification_type: str = Query("CALLBACKURL", alias="OrderNotificationType"),
                     services: Services = Depends(get_services)):
    """IPN / callback hook. Any payment status it carries is ignored; the
    gateway is asked directly."""
    ack = {
        "orderNotificationType": notification_type,
        "orderTrackingId": tracking_id,
        "orderMerchantReference": merchant_reference,
        "status": 200,
    }
    try:
        services.checkout.handle_gateway_callback(merchant_reference, tracking_id)
    except UpstreamError as exc:
        # Transient: the gateway retries the notification.
        log.warning("callback_deferred", order_ref=merchant_reference, error=exc.message)
        ack["status"] = 500
        return JSONResponse(status_code=503, content=ack)
    return ack


@app.get("/api/pesapal/status/{tracking_id}", response_model=schemas.GatewayStatusResponse)
def transaction_status(tracking_id: str, actor: Actor = Depends(get_actor),
                       services: Services = Depends(get_services)):
    return services.checkout.payment_status(tracking_id, actor)


# --- Transactions (admin) ---

@app.get("/api/transactions", response_model=List[schemas.TransactionResponse])
def list_transactions(actor: Actor = Depends(get_actor), services: Services = Depends(get_services)):
    return services.backoffice.list_transactions(actor)


@app.get("/api/transactions/trash", response_model=List[schemas.TransactionResponse])
def list_trashed_transactions(actor: Actor = Depends(get_actor), services: Services = Depends(get_services)):
    return services.backoffice.list_trashed_transactions(actor)


@app.get("/api/transactions/{transaction_id}", response_model=schemas.TransactionResponse)
def get_transaction(transaction_id: int, actor: Actor = Depends(get_actor),
                    services: Services = Depends(get_services)):
    return services.backoffice.get_transaction(transaction_id, actor)


@app.delete("/api/transactions/{transaction_id}")
def trash_transaction(transaction_id: int, actor: Actor = Depends(get_actor),
                      services: Services = Depends(get_services)):
    services.backoffice.soft_delete_transaction(transaction_id, actor)
    return {"message": "Transaction moved to trash"}


@app.put("/api/transactions/{transaction_id}/restore")
def restore_transaction(transaction_id: int, actor: Actor = Depends(get_actor),
                        services: Services = Depends(get_services)):
    services.backoffice.restore_transaction(transaction_id, actor)
    return {"message": "Transaction restored"}


# --- Products & coupons ---

@app.post("/api/products", status_code=201, response_model=schemas.ProductResponse)
def add_product(req: schemas.ProductRequest, actor: Actor = Depends(get_actor),
                services: Services = Depends(get_services)):
    return services.backoffice.add_product(req.name, req.price, req.stock, actor)


@app.get("/api/products/{product_id}", response_model=schemas.ProductResponse)
def get_product(product_id: int, services: Services = Depends(get_services)):
    return services.backoffice.get_product(product_id)


@app.post("/api/products/{product_id}/restock", response_model=schemas.ProductResponse)
def restock_product(product_id: int, req: schemas.RestockRequest, actor: Actor = Depends(get_actor),
                    services: Services = Depends(get_services)):
    return services.backoffice.restock(product_id, req.qty, actor)


@app.post("/api/coupons", status_code=201, response_model=schemas.CouponResponse)
def create_coupon(req: schemas.CouponRequest, actor: Actor = Depends(get_actor),
                  services: Services = Depends(get_services)):
    return services.backoffice.create_coupon(
        req.code, req.discount_type, req.discount_value, actor,
        max_uses=req.max_uses, expires_at=req.expires_at, active=req.active,
    )
