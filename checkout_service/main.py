import logging
from decimal import Decimal
from typing import List, Optional

from fastapi import Depends, FastAPI, HTTPException, Response
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from . import coupons, db, models, orders, schemas
from .config import PRICING_POLICY
from .deps import CurrentUser, get_correlation_id, get_current_user, get_db, require_admin
from .delivery import dispatch_delivery, get_delivery_client
from .errors import (
    AuthenticationRequired,
    CheckoutError,
    ConflictError,
    FatalCheckoutError,
    InvalidTransition,
    NotFoundError,
    PaymentError,
    PaymentsNotConfigured,
    TransientError,
    ValidationError,
)
from .logging_config import setup_logging
from .metrics import MetricsMiddleware, metrics_endpoint
from .notifications import notify
from .payments import get_payments
from .pricing import compute_discount
from .restaurant_status import get_restaurant_status

# ----- Logging -----
setup_logging()
logger = logging.getLogger("checkout-service")

# ----- Init -----
db.init_db()
app = FastAPI(title="checkout-service", version="v1")
app.add_middleware(MetricsMiddleware, service_name="checkout-service")

ERROR_STATUS = [
    (AuthenticationRequired, 401),
    (NotFoundError, 404),
    (ValidationError, 400),
    (InvalidTransition, 409),
    (ConflictError, 409),
    (PaymentsNotConfigured, 503),
    (PaymentError, 402),
    (TransientError, 503),
    (FatalCheckoutError, 500),
]


def http_error(e: CheckoutError, cid: str) -> HTTPException:
    status = next((code for cls, code in ERROR_STATUS if isinstance(e, cls)), 400)
    return HTTPException(status, {"code": e.code, "message": e.message, "correlationId": cid})


# ----- Infra Endpoints -----
@app.get("/health")
def health():
    return {"status": "ok", "service": "checkout-service"}


@app.get("/metrics")
def metrics():
    return metrics_endpoint()


# ----- API: Restaurants & Menu -----

@app.post("/v1/restaurants", response_model=schemas.RestaurantRead, status_code=201)
def create_restaurant(
    payload: schemas.RestaurantCreate,
    db_sess: Session = Depends(get_db),
    admin: CurrentUser = Depends(require_admin),
):
    restaurant = models.Restaurant(**payload.model_dump())
    db_sess.add(restaurant)
    db_sess.commit()
    db_sess.refresh(restaurant)
    return restaurant


@app.get("/v1/restaurants/{restaurant_id}", response_model=schemas.RestaurantRead)
def get_restaurant(
    restaurant_id: int,
    db_sess: Session = Depends(get_db),
    cid: str = Depends(get_correlation_id),
):
    try:
        return orders.get_restaurant(db_sess, restaurant_id)
    except CheckoutError as e:
        raise http_error(e, cid)


@app.get("/v1/restaurants/{restaurant_id}/status", response_model=schemas.RestaurantStatus)
def restaurant_status(
    restaurant_id: int,
    db_sess: Session = Depends(get_db),
    cid: str = Depends(get_correlation_id),
):
    try:
        return get_restaurant_status(orders.get_restaurant(db_sess, restaurant_id))
    except CheckoutError as e:
        raise http_error(e, cid)


@app.patch("/v1/admin/restaurants/{restaurant_id}", response_model=schemas.RestaurantRead)
def update_restaurant_availability(
    restaurant_id: int,
    payload: schemas.RestaurantAvailabilityUpdate,
    db_sess: Session = Depends(get_db),
    cid: str = Depends(get_correlation_id),
    admin: CurrentUser = Depends(require_admin),
):
    try:
        restaurant = orders.get_restaurant(db_sess, restaurant_id)
    except CheckoutError as e:
        raise http_error(e, cid)
    for field, value in payload.model_dump(exclude_unset=True).items():
        setattr(restaurant, field, value)
    db_sess.commit()
    db_sess.refresh(restaurant)
    logger.info(f"Restaurant {restaurant_id} availability updated", extra={"correlation_id": cid})
    return restaurant


@app.post("/v1/restaurants/{restaurant_id}/menu", response_model=schemas.MenuItemRead, status_code=201)
def create_menu_item(
    restaurant_id: int,
    payload: schemas.MenuItemCreate,
    db_sess: Session = Depends(get_db),
    cid: str = Depends(get_correlation_id),
    admin: CurrentUser = Depends(require_admin),
):
    try:
        orders.get_restaurant(db_sess, restaurant_id)
    except CheckoutError as e:
        raise http_error(e, cid)
    item = models.MenuItem(restaurant_id=restaurant_id, **payload.model_dump())
    db_sess.add(item)
    db_sess.commit()
    db_sess.refresh(item)
    return item


@app.get("/v1/restaurants/{restaurant_id}/menu", response_model=List[schemas.MenuItemRead])
def list_menu(restaurant_id: int, db_sess: Session = Depends(get_db)):
    return (
        db_sess.query(models.MenuItem)
        .filter(models.MenuItem.restaurant_id == restaurant_id)
        .order_by(models.MenuItem.item_id)
        .all()
    )


# ----- API: Coupons -----

@app.get("/v1/coupons", response_model=List[schemas.CouponRead])
def list_coupons(restaurant_id: Optional[int] = None, db_sess: Session = Depends(get_db)):
    return coupons.list_active_coupons(db_sess, restaurant_id)


@app.post("/v1/coupons/validate", response_model=schemas.ValidateCouponResponse)
def validate_coupon(
    payload: schemas.ValidateCouponRequest,
    db_sess: Session = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
    cid: str = Depends(get_correlation_id),
):
    result = coupons.validate_coupon(
        db_sess, payload.code, user.id, payload.restaurant_id, payload.order_amount
    )
    if not result.valid:
        logger.info(f"Coupon {payload.code!r} rejected: {result.error}", extra={"correlation_id": cid})
        return schemas.ValidateCouponResponse(valid=False, error=result.error)

    base_delivery_fee = PRICING_POLICY.delivery_fee if payload.order_amount > 0 else Decimal("0")
    discount = compute_discount(result.coupon, payload.order_amount, base_delivery_fee)
    saved = discount.item_discount + discount.delivery_discount
    return schemas.ValidateCouponResponse(
        valid=True,
        coupon=schemas.CouponRead.model_validate(result.coupon),
        discount_amount=saved.quantize(Decimal("0.01")),
    )


def check_coupon_fields(discount_type, discount_value, start_date, end_date, cid):
    if end_date <= start_date:
        raise HTTPException(400, {"code": "INVALID_COUPON_DATES", "correlationId": cid})
    if discount_type == "percentage" and discount_value > 100:
        raise HTTPException(400, {"code": "INVALID_PERCENTAGE", "correlationId": cid})


@app.get("/v1/admin/coupons", response_model=List[schemas.CouponRead])
def admin_list_coupons(
    db_sess: Session = Depends(get_db),
    admin: CurrentUser = Depends(require_admin),
):
    return db_sess.query(models.Coupon).order_by(models.Coupon.created_at.desc()).all()


@app.post("/v1/admin/coupons", response_model=schemas.CouponRead, status_code=201)
def admin_create_coupon(
    payload: schemas.CouponCreate,
    db_sess: Session = Depends(get_db),
    cid: str = Depends(get_correlation_id),
    admin: CurrentUser = Depends(require_admin),
):
    check_coupon_fields(payload.discount_type, payload.discount_value, payload.start_date, payload.end_date, cid)
    data = payload.model_dump()
    data["code"] = coupons.normalize_code(payload.code)
    if payload.discount_type == "free_delivery":
        data["discount_value"] = Decimal("0")
    coupon = models.Coupon(**data, current_usage=0)
    db_sess.add(coupon)
    try:
        db_sess.commit()
    except IntegrityError:
        db_sess.rollback()
        raise HTTPException(409, {"code": "COUPON_CODE_EXISTS", "correlationId": cid})
    db_sess.refresh(coupon)
    logger.info(f"Coupon {coupon.code} created", extra={"correlation_id": cid})
    return coupon


def _get_coupon(db_sess: Session, coupon_id: int, cid: str) -> models.Coupon:
    coupon = db_sess.get(models.Coupon, coupon_id)
    if coupon is None:
        raise HTTPException(404, {"code": "COUPON_NOT_FOUND", "correlationId": cid})
    return coupon


@app.put("/v1/admin/coupons/{coupon_id}", response_model=schemas.CouponRead)
def admin_update_coupon(
    coupon_id: int,
    payload: schemas.CouponUpdate,
    db_sess: Session = Depends(get_db),
    cid: str = Depends(get_correlation_id),
    admin: CurrentUser = Depends(require_admin),
):
    coupon = _get_coupon(db_sess, coupon_id, cid)
    changes = payload.model_dump(exclude_unset=True)
    for field, value in changes.items():
        setattr(coupon, field, value)
    if coupon.discount_type == "free_delivery":
        coupon.discount_value = Decimal("0")
    check_coupon_fields(coupon.discount_type, Decimal(coupon.discount_value or 0),
                        coupon.start_date, coupon.end_date, cid)
    db_sess.commit()
    db_sess.refresh(coupon)
    return coupon


@app.delete("/v1/admin/coupons/{coupon_id}", status_code=204)
def admin_delete_coupon(
    coupon_id: int,
    db_sess: Session = Depends(get_db),
    cid: str = Depends(get_correlation_id),
    admin: CurrentUser = Depends(require_admin),
):
    coupon = _get_coupon(db_sess, coupon_id, cid)
    if coupon.usages:
        # redeemed coupons stay for the order history
        coupon.is_active = False
    else:
        db_sess.delete(coupon)
    db_sess.commit()
    return Response(status_code=204)


# ----- API: Payments -----

@app.post("/v1/payments/intent", response_model=schemas.PaymentIntentResponse, status_code=201)
def create_payment_intent(
    payload: schemas.PaymentIntentRequest,
    user: CurrentUser = Depends(get_current_user),
    payments=Depends(get_payments),
    cid: str = Depends(get_correlation_id),
):
    try:
        if payments is None:
            raise PaymentsNotConfigured()
        intent = payments.create_intent(payload.amount, metadata={"user_id": user.id})
    except CheckoutError as e:
        raise http_error(e, cid)
    logger.info(f"Payment intent {intent.payment_intent_id} created for {payload.amount}",
                extra={"correlation_id": cid})
    return schemas.PaymentIntentResponse(
        client_secret=intent.client_secret,
        payment_intent_id=intent.payment_intent_id,
    )


# ----- API: Orders -----

@app.post("/v1/orders", response_model=schemas.OrderRead, status_code=201)
def create_order(
    payload: schemas.CreateOrderRequest,
    db_sess: Session = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
    payments=Depends(get_payments),
    cid: str = Depends(get_correlation_id),
):
    try:
        order = orders.create_order(db_sess, user.id, payload, payments=payments, cid=cid)
    except CheckoutError as e:
        if not isinstance(e, FatalCheckoutError):
            logger.info(f"Order rejected: {e.code} {e.message}", extra={"correlation_id": cid})
        raise http_error(e, cid)

    notify(
        "ORDER_CREATED",
        order.customer_email,
        f"Order #{order.order_id} placed successfully",
        f"Your order total is {order.total_amount}. Status: {order.status}",
        cid,
    )
    return order


@app.get("/v1/orders", response_model=List[schemas.OrderRead])
def list_orders(
    db_sess: Session = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
):
    return orders.list_user_orders(db_sess, user.id)


@app.get("/v1/orders/{order_id}", response_model=schemas.OrderDetail)
def get_order(
    order_id: int,
    db_sess: Session = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
    cid: str = Depends(get_correlation_id),
):
    try:
        order = orders.get_order(db_sess, order_id)
    except CheckoutError as e:
        raise http_error(e, cid)
    if order.user_id != user.id and not user.is_admin:
        raise HTTPException(403, {"code": "ACCESS_DENIED", "correlationId": cid})

    detail = schemas.OrderDetail.model_validate(order)
    applied = coupons.order_coupon(db_sess, order.order_id)
    if applied is not None:
        detail.applied_coupon = schemas.CouponRead.model_validate(applied)
    return detail


@app.get("/v1/admin/restaurants/{restaurant_id}/orders", response_model=List[schemas.OrderRead])
def list_restaurant_orders(
    restaurant_id: int,
    status: Optional[schemas.OrderStatus] = None,
    db_sess: Session = Depends(get_db),
    admin: CurrentUser = Depends(require_admin),
):
    return orders.list_restaurant_orders(db_sess, restaurant_id, status)


@app.patch("/v1/admin/orders/{order_id}/status", response_model=schemas.OrderRead)
def update_order_status(
    order_id: int,
    payload: schemas.OrderStatusUpdate,
    db_sess: Session = Depends(get_db),
    cid: str = Depends(get_correlation_id),
    admin: CurrentUser = Depends(require_admin),
    delivery_client=Depends(get_delivery_client),
):
    try:
        order = orders.update_status(db_sess, orders.get_order(db_sess, order_id), payload.status, cid)
    except CheckoutError as e:
        raise http_error(e, cid)

    if order.status == "confirmed":
        restaurant = db_sess.get(models.Restaurant, order.restaurant_id)
        delivery_id = dispatch_delivery(delivery_client, order, restaurant, cid)
        if delivery_id:
            order.delivery_id = delivery_id
            db_sess.commit()
            db_sess.refresh(order)

    notify(
        "ORDER_STATUS_CHANGED",
        order.customer_email,
        f"Order #{order.order_id} is {order.status}",
        f"Your order status is now {order.status}.",
        cid,
    )
    return order


if __name__ == "__main__":
    import os

    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", 8000)))
