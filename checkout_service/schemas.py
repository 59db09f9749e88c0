from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

DiscountType = Literal["percentage", "fixed", "free_delivery"]
OrderStatus = Literal["pending", "confirmed", "preparing", "ready", "delivered", "cancelled"]
PaymentMethod = Literal["cash", "card"]


def to_naive_utc(value: datetime) -> datetime:
    # stored columns are naive UTC
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


# ----- Cart / pricing -----

class CartLine(BaseModel):
    item_id: int
    name: str
    unit_price: Decimal = Field(..., ge=0, decimal_places=2)
    quantity: int = Field(..., ge=1)
    restaurant_id: int


class OrderTotals(BaseModel):
    subtotal: Decimal = Decimal("0")
    delivery_fee: Decimal = Decimal("0")
    service_fee: Decimal = Decimal("0")
    discount_amount: Decimal = Decimal("0")
    tax: Decimal = Decimal("0")
    total: Decimal = Decimal("0")

    def rounded(self) -> "OrderTotals":
        cents = Decimal("0.01")
        return OrderTotals(**{k: v.quantize(cents, rounding=ROUND_HALF_UP) for k, v in self.model_dump().items()})


# ----- Coupons -----

class CouponBase(BaseModel):
    code: str = Field(..., min_length=1, max_length=50)
    title: str
    description: Optional[str] = None
    discount_type: DiscountType
    discount_value: Decimal = Field(Decimal("0"), ge=0)
    minimum_order: Optional[Decimal] = Field(None, ge=0)
    max_usage: Optional[int] = Field(None, ge=1)
    user_limit: Optional[int] = Field(None, ge=1)
    is_active: bool = True
    start_date: datetime
    end_date: datetime
    restaurant_id: Optional[int] = None

    @field_validator("start_date", "end_date")
    @classmethod
    def as_naive_utc(cls, value):
        return to_naive_utc(value)


class CouponCreate(CouponBase):
    pass


class CouponUpdate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    discount_type: Optional[DiscountType] = None
    discount_value: Optional[Decimal] = Field(None, ge=0)
    minimum_order: Optional[Decimal] = Field(None, ge=0)
    max_usage: Optional[int] = Field(None, ge=1)
    user_limit: Optional[int] = Field(None, ge=1)
    is_active: Optional[bool] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    restaurant_id: Optional[int] = None

    @field_validator("start_date", "end_date")
    @classmethod
    def as_naive_utc(cls, value):
        return to_naive_utc(value) if value is not None else None


class CouponRead(CouponBase):
    coupon_id: int
    current_usage: int

    class Config:
        from_attributes = True


class ValidateCouponRequest(BaseModel):
    code: str
    restaurant_id: int
    order_amount: Decimal = Field(..., ge=0)


class ValidateCouponResponse(BaseModel):
    valid: bool
    coupon: Optional[CouponRead] = None
    discount_amount: Optional[Decimal] = None
    error: Optional[str] = None


# ----- Orders -----

class OrderItemRequest(BaseModel):
    item_id: int
    quantity: int = Field(..., ge=1)


class CustomerInfo(BaseModel):
    first_name: str
    last_name: str
    email: str
    phone: str


class DeliveryInfo(BaseModel):
    street_address: str
    apartment: Optional[str] = None
    city: str
    state: str
    postal_code: str
    instructions: Optional[str] = None

    def full_address(self) -> str:
        street = self.street_address
        if self.apartment:
            street = f"{street}, {self.apartment}"
        return f"{street}, {self.city}, {self.state} {self.postal_code}"


class CreateOrderRequest(BaseModel):
    restaurant_id: int
    items: List[OrderItemRequest]
    totals: OrderTotals
    customer: CustomerInfo
    delivery: DeliveryInfo
    coupon_code: Optional[str] = None
    payment_method: PaymentMethod = "cash"
    payment_intent_id: Optional[str] = None


class OrderItemRead(BaseModel):
    order_item_id: int
    menu_item_id: int
    name: str
    quantity: int
    unit_price: Decimal
    total_price: Decimal

    class Config:
        from_attributes = True


class OrderRead(BaseModel):
    order_id: int
    user_id: str
    restaurant_id: int
    status: OrderStatus
    subtotal: Decimal
    delivery_fee: Decimal
    service_fee: Decimal
    discount_amount: Decimal
    tax: Decimal
    total_amount: Decimal
    coupon_code: Optional[str]
    payment_method: PaymentMethod
    customer_name: str
    customer_email: str
    customer_phone: str
    delivery_address: str
    delivery_instructions: Optional[str]
    created_at: datetime
    items: List[OrderItemRead]

    class Config:
        from_attributes = True


class OrderDetail(OrderRead):
    applied_coupon: Optional[CouponRead] = None


class OrderStatusUpdate(BaseModel):
    status: OrderStatus


# ----- Restaurants -----

class DayHours(BaseModel):
    open: str = "00:00"
    close: str = "23:59"
    closed: bool = False


class RestaurantCreate(BaseModel):
    name: str
    address: Optional[str] = None
    phone: Optional[str] = None
    is_open: bool = True
    is_temporarily_closed: bool = False
    operating_hours: Optional[Dict[str, DayHours]] = None


class RestaurantRead(RestaurantCreate):
    restaurant_id: int

    class Config:
        from_attributes = True


class RestaurantStatus(BaseModel):
    is_open: bool
    reason: Optional[Literal["temporarily_closed", "manually_closed", "outside_hours", "no_hours"]] = None
    next_opening_time: Optional[str] = None
    message: str


class MenuItemCreate(BaseModel):
    name: str
    description: Optional[str] = None
    price: Decimal = Field(..., ge=0)
    is_available: bool = True


class MenuItemRead(MenuItemCreate):
    item_id: int
    restaurant_id: int

    class Config:
        from_attributes = True


# ----- Payments -----

class PaymentIntentRequest(BaseModel):
    amount: Decimal = Field(..., gt=0)


class PaymentIntentResponse(BaseModel):
    client_secret: str
    payment_intent_id: str


class RestaurantAvailabilityUpdate(BaseModel):
    is_open: Optional[bool] = None
    is_temporarily_closed: Optional[bool] = None
    operating_hours: Optional[Dict[str, DayHours]] = None
