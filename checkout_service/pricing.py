"""
Order pricing.

All arithmetic runs on Decimal without intermediate rounding so that
``total == subtotal - discount_amount + delivery_fee + service_fee + tax``
holds exactly. Call ``OrderTotals.rounded()`` when presenting or persisting.
"""
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Optional

from .config import PRICING_POLICY, PricingPolicy
from .errors import MultipleRestaurantsError
from .schemas import CartLine, OrderTotals

ZERO = Decimal("0")
HUNDRED = Decimal("100")


@dataclass(frozen=True)
class Discount:
    item_discount: Decimal = ZERO
    delivery_discount: Decimal = ZERO


def compute_discount(coupon, subtotal: Decimal, base_delivery_fee: Decimal) -> Discount:
    """Turn a validated coupon into concrete item and delivery discounts.

    ``coupon`` is anything exposing ``discount_type`` and ``discount_value``
    (the ORM row or its API schema); ``None`` means no coupon.
    """
    if coupon is None:
        return Discount()

    value = Decimal(coupon.discount_value or 0)
    if coupon.discount_type == "percentage":
        return Discount(item_discount=subtotal * value / HUNDRED)
    if coupon.discount_type == "fixed":
        return Discount(item_discount=max(ZERO, min(value, subtotal)))
    if coupon.discount_type == "free_delivery":
        return Discount(delivery_discount=base_delivery_fee)
    raise ValueError(f"Unknown discount type: {coupon.discount_type}")


def restaurant_for(lines: Iterable[CartLine]) -> Optional[int]:
    restaurant_ids = {line.restaurant_id for line in lines}
    if len(restaurant_ids) > 1:
        raise MultipleRestaurantsError()
    return next(iter(restaurant_ids), None)


def subtotal_of(lines: Iterable[CartLine]) -> Decimal:
    return sum((Decimal(line.unit_price) * line.quantity for line in lines), ZERO)


def assemble(
    lines: Iterable[CartLine],
    coupon=None,
    policy: PricingPolicy = PRICING_POLICY,
) -> OrderTotals:
    lines = list(lines)
    restaurant_for(lines)

    subtotal = subtotal_of(lines)
    base_delivery_fee = policy.delivery_fee if subtotal > 0 else ZERO
    service_fee = subtotal * policy.service_fee_rate

    discount = compute_discount(coupon, subtotal, base_delivery_fee)
    delivery_fee = max(ZERO, base_delivery_fee - discount.delivery_discount)
    discounted_subtotal = subtotal - discount.item_discount
    tax = (discounted_subtotal + delivery_fee + service_fee) * policy.tax_rate
    total = discounted_subtotal + delivery_fee + service_fee + tax

    return OrderTotals(
        subtotal=subtotal,
        delivery_fee=delivery_fee,
        service_fee=service_fee,
        discount_amount=discount.item_discount,
        tax=tax,
        total=total,
    )


def to_minor_units(amount: Decimal) -> int:
    return int((Decimal(amount) * HUNDRED).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
