import logging
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from . import coupons, models, schemas
from .config import PRICING_POLICY, PricingPolicy
from .errors import (
    CheckoutError,
    ConflictError,
    CouponConflictError,
    EmptyCartError,
    FatalCheckoutError,
    InvalidTransition,
    MultipleRestaurantsError,
    NotFoundError,
    PaymentError,
    PaymentsNotConfigured,
    RestaurantClosedError,
    ValidationError,
)
from .metrics import ORDERS_CREATED
from .pricing import assemble, subtotal_of
from .restaurant_status import get_restaurant_status

logger = logging.getLogger("checkout-service")

# delivered and cancelled are terminal
STATUS_TRANSITIONS = {
    "pending": {"confirmed", "cancelled"},
    "confirmed": {"preparing", "cancelled"},
    "preparing": {"ready", "cancelled"},
    "ready": {"delivered", "cancelled"},
    "delivered": set(),
    "cancelled": set(),
}


def get_restaurant(db: Session, restaurant_id: int) -> models.Restaurant:
    restaurant = db.get(models.Restaurant, restaurant_id)
    if restaurant is None:
        raise NotFoundError("Restaurant not found", code="RESTAURANT_NOT_FOUND")
    return restaurant


def resolve_cart_lines(db: Session, restaurant_id: int,
                       items: List[schemas.OrderItemRequest]) -> List[schemas.CartLine]:
    """Price the requested items from the menu, never from the client."""
    if not items:
        raise EmptyCartError()

    ids = {it.item_id for it in items}
    menu = {
        m.item_id: m
        for m in db.execute(select(models.MenuItem).where(models.MenuItem.item_id.in_(ids))).scalars()
    }

    lines = []
    for it in items:
        menu_item = menu.get(it.item_id)
        if menu_item is None:
            raise ValidationError(f"Unknown menu item {it.item_id}", code="INVALID_MENU_SELECTION")
        if menu_item.restaurant_id != restaurant_id:
            raise MultipleRestaurantsError()
        if not menu_item.is_available:
            raise ValidationError(f"{menu_item.name} is currently unavailable", code="ITEM_UNAVAILABLE")
        lines.append(schemas.CartLine(
            item_id=menu_item.item_id,
            name=menu_item.name,
            unit_price=menu_item.price,
            quantity=it.quantity,
            restaurant_id=menu_item.restaurant_id,
        ))
    return lines


def create_order(
    db: Session,
    user_id: str,
    payload: schemas.CreateOrderRequest,
    payments=None,
    cid: str = "-",
    policy: PricingPolicy = PRICING_POLICY,
) -> models.Order:
    """
    1. Check the restaurant exists and is open.
    2. Re-price the cart from the menu and re-validate the coupon.
    3. Reject if the client's total no longer matches.
    4. For card orders, verify the PaymentIntent was captured for that total.
    5. Insert order + items and redeem the coupon in one transaction.
    """
    restaurant = get_restaurant(db, payload.restaurant_id)
    status = get_restaurant_status(restaurant)
    if not status.is_open:
        raise RestaurantClosedError(f"{restaurant.name} is closed. {status.message}".strip())

    lines = resolve_cart_lines(db, payload.restaurant_id, payload.items)

    coupon = None
    if payload.coupon_code:
        check = coupons.validate_coupon(
            db, payload.coupon_code, user_id, payload.restaurant_id, subtotal_of(lines)
        )
        if not check.valid:
            raise CouponConflictError(f"Coupon no longer valid: {check.error}")
        coupon = check.coupon

    totals = assemble(lines, coupon, policy).rounded()
    if payload.totals.rounded().total != totals.total:
        raise ConflictError("Order totals have changed, please review your order", code="TOTALS_CHANGED")

    payment_captured = False
    if payload.payment_method == "card":
        if not payload.payment_intent_id:
            raise PaymentError("Card payment required", code="PAYMENT_REQUIRED")
        if payments is None:
            raise PaymentsNotConfigured()
        payments.verify_captured(payload.payment_intent_id, totals.total)
        payment_captured = True

    customer = payload.customer
    order = models.Order(
        user_id=user_id,
        restaurant_id=payload.restaurant_id,
        status="pending",
        subtotal=totals.subtotal,
        delivery_fee=totals.delivery_fee,
        service_fee=totals.service_fee,
        discount_amount=totals.discount_amount,
        tax=totals.tax,
        total_amount=totals.total,
        coupon_code=coupon.code if coupon else None,
        payment_method=payload.payment_method,
        payment_intent_id=payload.payment_intent_id if payment_captured else None,
        customer_name=f"{customer.first_name} {customer.last_name}",
        customer_email=customer.email,
        customer_phone=customer.phone,
        delivery_address=payload.delivery.full_address(),
        delivery_instructions=payload.delivery.instructions,
    )
    try:
        db.add(order)
        db.flush()  # get order_id

        for line in lines:
            db.add(models.OrderItem(
                order_id=order.order_id,
                menu_item_id=line.item_id,
                name=line.name,
                quantity=line.quantity,
                unit_price=line.unit_price,
                total_price=line.unit_price * line.quantity,
            ))

        if coupon is not None:
            coupons.redeem_coupon(db, coupon, user_id, order.order_id)

        db.commit()
    except (CheckoutError, IntegrityError) as e:
        db.rollback()
        ORDERS_CREATED.labels("rejected").inc()
        error = e
        if isinstance(e, IntegrityError):
            error = ConflictError("Payment already used for another order", code="DUPLICATE_PAYMENT")
        if payment_captured:
            logger.error(
                f"Payment {payload.payment_intent_id} captured but order creation failed: {error}",
                extra={"correlation_id": cid},
            )
            raise FatalCheckoutError(
                "Your payment was processed but we could not create your order. "
                "Please contact support with your payment reference."
            ) from error
        if error is e:
            raise
        raise error from e

    db.refresh(order)
    ORDERS_CREATED.labels("created").inc()
    logger.info(f"Order {order.order_id} created for user {user_id}, total {order.total_amount}",
                extra={"correlation_id": cid})
    return order


def get_order(db: Session, order_id: int) -> models.Order:
    order = db.get(models.Order, order_id)
    if order is None:
        raise NotFoundError("Order not found", code="ORDER_NOT_FOUND")
    return order


def list_user_orders(db: Session, user_id: str) -> List[models.Order]:
    return list(db.execute(
        select(models.Order)
        .where(models.Order.user_id == user_id)
        .order_by(models.Order.created_at.desc(), models.Order.order_id.desc())
    ).scalars())


def list_restaurant_orders(db: Session, restaurant_id: int, status: Optional[str] = None) -> List[models.Order]:
    query = select(models.Order).where(models.Order.restaurant_id == restaurant_id)
    if status:
        query = query.where(models.Order.status == status)
    return list(db.execute(query.order_by(models.Order.created_at.desc(), models.Order.order_id.desc())).scalars())


def update_status(db: Session, order: models.Order, new_status: str, cid: str = "-") -> models.Order:
    allowed = STATUS_TRANSITIONS[order.status]
    if new_status not in allowed:
        raise InvalidTransition(f"Cannot move order from {order.status} to {new_status}")
    previous = order.status
    order.status = new_status
    db.commit()
    db.refresh(order)
    logger.info(f"Order {order.order_id} {previous} -> {new_status}", extra={"correlation_id": cid})
    return order
