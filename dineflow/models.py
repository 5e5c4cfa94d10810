"""
SQLAlchemy Database Models

Tables for the multi-tenant ordering platform:
- Catalog: restaurants, staff, categories, menu items, variants
- Inventory ledger
- Carts
- Orders, order items, deliveries, payments, cancellations, audit trail
- Notifications and feedback
- Transactional outbox and processed webhook events

Version: 4.0.0
"""

import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    String,
    Integer,
    Float,
    DateTime,
    Text,
    Enum,
    Boolean,
    ForeignKey,
    JSON,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from dineflow.database import Base


def new_id() -> str:
    """Primary keys are UUID4 strings."""
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# ENUMS
# =============================================================================

class UserRole(str, enum.Enum):
    CUSTOMER = "CUSTOMER"
    RESTAURANT_OWNER = "RESTAURANT_OWNER"
    RESTAURANT_STAFF = "RESTAURANT_STAFF"
    ADMIN = "ADMIN"
    SUPER_ADMIN = "SUPER_ADMIN"


class StockStatus(str, enum.Enum):
    """Display status cached on a menu item."""
    IN_STOCK = "IN_STOCK"
    LOW_STOCK = "LOW_STOCK"
    OUT_OF_STOCK = "OUT_OF_STOCK"
    DISCONTINUED = "DISCONTINUED"


class InventoryStatus(str, enum.Enum):
    """Derived from (quantity, reorder_threshold)."""
    IN_STOCK = "IN_STOCK"
    LOW_STOCK = "LOW_STOCK"
    OUT_OF_STOCK = "OUT_OF_STOCK"


class OrderStatus(str, enum.Enum):
    """Order status workflow."""
    PENDING = "PENDING"
    PREPARING = "PREPARING"
    SHIPPED = "SHIPPED"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"
    REFUNDED = "REFUNDED"


class PaymentStatus(str, enum.Enum):
    PENDING = "PENDING"
    AUTHORIZED = "AUTHORIZED"
    PAID = "PAID"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"


class OrderType(str, enum.Enum):
    DELIVERY = "DELIVERY"
    PICKUP = "PICKUP"
    DINE_IN = "DINE_IN"


class DeliveryStatus(str, enum.Enum):
    PENDING = "PENDING"
    ASSIGNED = "ASSIGNED"
    IN_TRANSIT = "IN_TRANSIT"
    DELIVERED = "DELIVERED"
    FAILED = "FAILED"


class CancellationStatus(str, enum.Enum):
    REQUESTED = "REQUESTED"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class NotificationType(str, enum.Enum):
    ORDER_STATUS = "ORDER_STATUS"
    PROMOTION = "PROMOTION"
    SYSTEM_ALERT = "SYSTEM_ALERT"
    ACCOUNT_UPDATE = "ACCOUNT_UPDATE"


class NotificationChannel(str, enum.Enum):
    IN_APP = "IN_APP"
    EMAIL = "EMAIL"
    SMS = "SMS"
    PUSH = "PUSH"


class OutboxStatus(str, enum.Enum):
    PENDING = "PENDING"
    PUBLISHED = "PUBLISHED"
    FAILED = "FAILED"


# =============================================================================
# USERS & CATALOG
# =============================================================================

class User(Base):
    """
    Identity record for a caller.

    Credentials live with the external auth service; this table only
    carries what the ordering workflow needs (role, tenant, contact).
    """
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=new_id)
    email = Column(String(255), nullable=False, unique=True, index=True)
    first_name = Column(String(100), nullable=True)
    last_name = Column(String(100), nullable=True)
    phone = Column(String(20), nullable=True)
    role = Column(Enum(UserRole), default=UserRole.CUSTOMER, nullable=False)
    tenant_id = Column(String(36), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    @property
    def display_name(self) -> str:
        full_name = f"{self.first_name or ''} {self.last_name or ''}".strip()
        return full_name or self.email.split("@")[0] or "Customer"

    def __repr__(self):
        return f"<User {self.id} - {self.role.value}>"


class Restaurant(Base):
    __tablename__ = "restaurants"

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(150), nullable=False)
    owner_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    tenant_id = Column(String(36), nullable=True)
    currency = Column(String(3), default="USD", nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), onupdate=utcnow)

    def __repr__(self):
        return f"<Restaurant {self.id} - {self.name}>"


class RestaurantStaff(Base):
    """Membership of a RESTAURANT_STAFF user in a restaurant."""
    __tablename__ = "restaurant_staff"
    __table_args__ = (UniqueConstraint("restaurant_id", "user_id"),)

    id = Column(String(36), primary_key=True, default=new_id)
    restaurant_id = Column(String(36), ForeignKey("restaurants.id"), nullable=False, index=True)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)


class Category(Base):
    __tablename__ = "categories"

    id = Column(String(36), primary_key=True, default=new_id)
    restaurant_id = Column(String(36), ForeignKey("restaurants.id"), nullable=False, index=True)
    name = Column(String(100), nullable=False)


class MenuItem(Base):
    """
    Orderable item. ``stock_status`` is a display cache kept in sync with
    the inventory ledger; ``final_price`` is the price orders are charged.
    """
    __tablename__ = "menu_items"

    id = Column(String(36), primary_key=True, default=new_id)
    restaurant_id = Column(String(36), ForeignKey("restaurants.id"), nullable=False, index=True)
    category_id = Column(String(36), ForeignKey("categories.id"), nullable=True)
    title = Column(String(150), nullable=False)
    description = Column(Text, nullable=True)
    final_price = Column(Float, nullable=False)
    mrp = Column(Float, nullable=True)
    stock_status = Column(Enum(StockStatus), default=StockStatus.IN_STOCK, nullable=False)
    min_order_quantity = Column(Integer, default=1, nullable=False)
    max_order_quantity = Column(Integer, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), onupdate=utcnow)

    restaurant = relationship("Restaurant", lazy="selectin")
    variants = relationship("MenuItemVariant", back_populates="menu_item", lazy="selectin")

    def __repr__(self):
        return f"<MenuItem {self.id} - {self.title} - {self.final_price:.2f}>"


class MenuItemVariant(Base):
    __tablename__ = "menu_item_variants"

    id = Column(String(36), primary_key=True, default=new_id)
    menu_item_id = Column(String(36), ForeignKey("menu_items.id"), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    price_delta = Column(Float, default=0.0, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    menu_item = relationship("MenuItem", back_populates="variants")


# =============================================================================
# INVENTORY
# =============================================================================

class Inventory(Base):
    """
    Stock ledger row, one per (menu item, variant).

    ``variant_key`` is the variant id or an empty string so the pair can be
    covered by a unique constraint (NULLs never collide in SQL).
    """
    __tablename__ = "inventory"
    __table_args__ = (UniqueConstraint("menu_item_id", "variant_key"),)

    id = Column(String(36), primary_key=True, default=new_id)
    restaurant_id = Column(String(36), ForeignKey("restaurants.id"), nullable=False, index=True)
    menu_item_id = Column(String(36), ForeignKey("menu_items.id"), nullable=False, index=True)
    variant_id = Column(String(36), ForeignKey("menu_item_variants.id"), nullable=True)
    variant_key = Column(String(36), default="", nullable=False)
    tenant_id = Column(String(36), nullable=True)
    quantity = Column(Integer, default=0, nullable=False)
    reorder_threshold = Column(Integer, default=0, nullable=False)
    status = Column(Enum(InventoryStatus), default=InventoryStatus.OUT_OF_STOCK, nullable=False)
    last_adjustment_reason = Column(String(255), nullable=True)
    last_adjustment_notes = Column(Text, nullable=True)
    last_updated = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    menu_item = relationship("MenuItem", lazy="selectin")

    def __repr__(self):
        return f"<Inventory {self.menu_item_id}/{self.variant_key or '-'} qty={self.quantity}>"


# =============================================================================
# CART
# =============================================================================

class Cart(Base):
    __tablename__ = "carts"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, unique=True)
    tenant_id = Column(String(36), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), onupdate=utcnow)

    items = relationship(
        "CartItem",
        back_populates="cart",
        lazy="selectin",
        cascade="all, delete-orphan",
        order_by="CartItem.created_at",
    )


class CartItem(Base):
    __tablename__ = "cart_items"
    __table_args__ = (UniqueConstraint("cart_id", "menu_item_id", "variant_key"),)

    id = Column(String(36), primary_key=True, default=new_id)
    cart_id = Column(String(36), ForeignKey("carts.id"), nullable=False, index=True)
    menu_item_id = Column(String(36), ForeignKey("menu_items.id"), nullable=False)
    variant_id = Column(String(36), ForeignKey("menu_item_variants.id"), nullable=True)
    variant_key = Column(String(36), default="", nullable=False)
    quantity = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    cart = relationship("Cart", back_populates="items")
    menu_item = relationship("MenuItem", lazy="selectin")


# =============================================================================
# ORDERS
# =============================================================================

class Order(Base):
    """
    Main Order table.

    Totals are derived once at creation and never recomputed. ``status``
    and ``payment_status`` move independently, each through its own state
    machine (see ``dineflow.state_machine``).
    """
    __tablename__ = "orders"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    restaurant_id = Column(String(36), ForeignKey("restaurants.id"), nullable=False, index=True)
    tenant_id = Column(String(36), nullable=True)
    correlation_id = Column(String(36), nullable=False, default=new_id)

    # =========================================================================
    # ORDER TYPE & DETAILS
    # =========================================================================
    order_type = Column(Enum(OrderType), default=OrderType.DELIVERY, nullable=False)
    delivery_address = Column(JSON, nullable=True)
    delivery_instructions = Column(Text, nullable=True)
    notes = Column(Text, nullable=True)
    priority = Column(String(20), default="NORMAL", nullable=False)
    source = Column(String(30), default="WEB", nullable=False)

    # =========================================================================
    # PRICING
    # =========================================================================
    subtotal = Column(Float, nullable=False)
    tax = Column(Float, nullable=False)
    delivery_fee = Column(Float, nullable=False, default=0.0)
    discount = Column(Float, nullable=False, default=0.0)
    total = Column(Float, nullable=False)

    # =========================================================================
    # STATUS
    # =========================================================================
    status = Column(Enum(OrderStatus), default=OrderStatus.PENDING, nullable=False, index=True)
    payment_status = Column(Enum(PaymentStatus), default=PaymentStatus.PENDING, nullable=False)
    cancel_reason = Column(Text, nullable=True)

    # =========================================================================
    # TIMESTAMPS
    # =========================================================================
    estimated_delivery_time = Column(DateTime(timezone=True), nullable=True)
    actual_delivery_time = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)
    updated_at = Column(DateTime(timezone=True), onupdate=utcnow)

    items = relationship(
        "OrderItem",
        back_populates="order",
        lazy="selectin",
        cascade="all, delete-orphan",
    )
    delivery = relationship("Delivery", back_populates="order", uselist=False, lazy="selectin")

    def __repr__(self):
        return f"<Order {self.id} - {self.order_type.value} - {self.status.value}>"


class OrderItem(Base):
    __tablename__ = "order_items"

    id = Column(String(36), primary_key=True, default=new_id)
    order_id = Column(String(36), ForeignKey("orders.id"), nullable=False, index=True)
    menu_item_id = Column(String(36), ForeignKey("menu_items.id"), nullable=False)
    variant_id = Column(String(36), ForeignKey("menu_item_variants.id"), nullable=True)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Float, nullable=False)  # snapshot at order time
    subtotal = Column(Float, nullable=False)
    notes = Column(Text, nullable=True)

    order = relationship("Order", back_populates="items")


class Delivery(Base):
    __tablename__ = "deliveries"

    id = Column(String(36), primary_key=True, default=new_id)
    order_id = Column(String(36), ForeignKey("orders.id"), nullable=False, unique=True)
    driver_id = Column(String(36), nullable=True)
    tenant_id = Column(String(36), nullable=True)
    status = Column(Enum(DeliveryStatus), default=DeliveryStatus.PENDING, nullable=False)
    assigned_at = Column(DateTime(timezone=True), nullable=True)
    picked_up_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), onupdate=utcnow)

    order = relationship("Order", back_populates="delivery")


class Payment(Base):
    """One gateway attempt for an order; retries create new rows."""
    __tablename__ = "payments"

    id = Column(String(36), primary_key=True, default=new_id)
    order_id = Column(String(36), ForeignKey("orders.id"), nullable=False, index=True)
    amount = Column(Float, nullable=False)
    currency = Column(String(3), default="usd", nullable=False)
    method = Column(String(30), nullable=False)
    status = Column(Enum(PaymentStatus), default=PaymentStatus.PENDING, nullable=False)
    transaction_id = Column(String(255), nullable=True, index=True)
    gateway_response = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), onupdate=utcnow)

    def __repr__(self):
        return f"<Payment {self.id} - {self.status.value} - {self.amount:.2f}>"


class OrderCancellation(Base):
    __tablename__ = "order_cancellations"

    id = Column(String(36), primary_key=True, default=new_id)
    order_id = Column(String(36), ForeignKey("orders.id"), nullable=False, index=True)
    requested_by = Column(String(36), nullable=False)
    approved_by = Column(String(36), nullable=True)
    reason = Column(Text, nullable=False)
    status = Column(Enum(CancellationStatus), default=CancellationStatus.REQUESTED, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), onupdate=utcnow)

    order = relationship("Order", lazy="selectin")


class OrderAudit(Base):
    """Append-only. Rows are never updated or deleted."""
    __tablename__ = "order_audits"

    id = Column(String(36), primary_key=True, default=new_id)
    order_id = Column(String(36), ForeignKey("orders.id"), nullable=False, index=True)
    operation = Column(String(40), nullable=False)
    changed_by = Column(String(36), nullable=False)
    changes = Column(JSON, nullable=True)
    timestamp = Column(DateTime(timezone=True), default=utcnow, nullable=False)


# =============================================================================
# NOTIFICATIONS & FEEDBACK
# =============================================================================

class Notification(Base):
    __tablename__ = "notifications"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), nullable=False, index=True)
    tenant_id = Column(String(36), nullable=True)
    type = Column(Enum(NotificationType), nullable=False)
    channel = Column(Enum(NotificationChannel), default=NotificationChannel.IN_APP, nullable=False)
    title = Column(String(200), nullable=False)
    message = Column(Text, nullable=False)
    metadata_ = Column("metadata", JSON, nullable=True)
    is_read = Column(Boolean, default=False, nullable=False)
    read_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)


class Feedback(Base):
    __tablename__ = "feedback"
    __table_args__ = (UniqueConstraint("order_id", "user_id"),)

    id = Column(String(36), primary_key=True, default=new_id)
    order_id = Column(String(36), ForeignKey("orders.id"), nullable=False, index=True)
    user_id = Column(String(36), nullable=False)
    restaurant_id = Column(String(36), nullable=False, index=True)
    tenant_id = Column(String(36), nullable=True)
    rating = Column(Integer, nullable=False)
    comment = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)


# =============================================================================
# OUTBOX & WEBHOOKS
# =============================================================================

class OutboxEvent(Base):
    """
    Domain event committed with the business transaction and delivered
    later by ``dineflow.services.outbox.dispatch_pending_events``.
    """
    __tablename__ = "outbox_events"

    id = Column(String(36), primary_key=True, default=new_id)
    event_type = Column(String(80), nullable=False, index=True)
    aggregate_id = Column(String(36), nullable=True, index=True)
    payload = Column(JSON, nullable=False)
    status = Column(Enum(OutboxStatus), default=OutboxStatus.PENDING, nullable=False, index=True)
    attempts = Column(Integer, default=0, nullable=False)
    last_error = Column(Text, nullable=True)
    available_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    published_at = Column(DateTime(timezone=True), nullable=True)

    def __repr__(self):
        return f"<OutboxEvent {self.event_type} - {self.status.value} - attempts={self.attempts}>"


class ProcessedWebhookEvent(Base):
    """Gateway event ids already applied; a repeated delivery is skipped."""
    __tablename__ = "processed_webhook_events"

    id = Column(String(255), primary_key=True)
    event_type = Column(String(80), nullable=False)
    received_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
