from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    JSON,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import declarative_base, relationship
from datetime import datetime, timezone

Base = declarative_base()

ORDER_STATUSES = ("pending", "confirmed", "preparing", "ready", "delivered", "cancelled")
DISCOUNT_TYPES = ("percentage", "fixed", "free_delivery")


def utcnow() -> datetime:
    # naive UTC, which is what the DateTime columns hold
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Restaurant(Base):
    __tablename__ = "restaurants"

    restaurant_id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    address = Column(Text, nullable=True)
    phone = Column(String(20), nullable=True)
    is_open = Column(Boolean, nullable=False, default=True)
    is_temporarily_closed = Column(Boolean, nullable=False, default=False)
    # {"monday": {"open": "11:00", "close": "22:00", "closed": false}, ...}
    operating_hours = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=utcnow)

    menu_items = relationship("MenuItem", back_populates="restaurant", cascade="all, delete-orphan")


class MenuItem(Base):
    __tablename__ = "menu_items"

    item_id = Column(Integer, primary_key=True, index=True)
    restaurant_id = Column(Integer, ForeignKey("restaurants.restaurant_id"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    price = Column(Numeric(10, 2), nullable=False)
    is_available = Column(Boolean, nullable=False, default=True)

    restaurant = relationship("Restaurant", back_populates="menu_items")


class Coupon(Base):
    __tablename__ = "coupons"

    coupon_id = Column(Integer, primary_key=True, index=True)
    code = Column(String(50), nullable=False, unique=True, index=True)  # stored upper-case
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    discount_type = Column(String(20), nullable=False)
    discount_value = Column(Numeric(10, 2), nullable=False, default=0)
    minimum_order = Column(Numeric(10, 2), nullable=True)
    max_usage = Column(Integer, nullable=True)  # null = unlimited
    current_usage = Column(Integer, nullable=False, default=0)
    user_limit = Column(Integer, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    start_date = Column(DateTime, nullable=False)
    end_date = Column(DateTime, nullable=False)
    restaurant_id = Column(Integer, ForeignKey("restaurants.restaurant_id"), nullable=True)  # null = platform-wide
    created_at = Column(DateTime, default=utcnow)

    usages = relationship("CouponUsage", back_populates="coupon", cascade="all, delete-orphan")


class CouponUsage(Base):
    __tablename__ = "coupon_usage"

    usage_id = Column(Integer, primary_key=True, index=True)
    coupon_id = Column(Integer, ForeignKey("coupons.coupon_id"), nullable=False, index=True)
    user_id = Column(String(64), nullable=False, index=True)
    order_id = Column(Integer, ForeignKey("orders.order_id"), nullable=True)
    used_at = Column(DateTime, default=utcnow)

    coupon = relationship("Coupon", back_populates="usages")


class Order(Base):
    __tablename__ = "orders"

    order_id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(64), nullable=False, index=True)
    restaurant_id = Column(Integer, ForeignKey("restaurants.restaurant_id"), nullable=False, index=True)
    status = Column(String(20), nullable=False, default="pending")

    subtotal = Column(Numeric(10, 2), nullable=False, default=0)
    delivery_fee = Column(Numeric(10, 2), nullable=False, default=0)
    service_fee = Column(Numeric(10, 2), nullable=False, default=0)
    discount_amount = Column(Numeric(10, 2), nullable=False, default=0)
    tax = Column(Numeric(10, 2), nullable=False, default=0)
    total_amount = Column(Numeric(10, 2), nullable=False, default=0)
    coupon_code = Column(String(50), nullable=True)

    payment_method = Column(String(10), nullable=False, default="cash")
    payment_intent_id = Column(String(255), nullable=True, unique=True)

    customer_name = Column(String(255), nullable=False)
    customer_email = Column(String(255), nullable=False)
    customer_phone = Column(String(20), nullable=False)
    delivery_address = Column(Text, nullable=False)
    delivery_instructions = Column(Text, nullable=True)
    delivery_id = Column(String(255), nullable=True)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    items = relationship("OrderItem", back_populates="order", cascade="all, delete-orphan")


class OrderItem(Base):
    __tablename__ = "order_items"

    order_item_id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.order_id"), nullable=False, index=True)
    menu_item_id = Column(Integer, ForeignKey("menu_items.item_id"), nullable=False)
    name = Column(String(255), nullable=False)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(10, 2), nullable=False)  # snapshot of price at order time
    total_price = Column(Numeric(10, 2), nullable=False)

    order = relationship("Order", back_populates="items")
