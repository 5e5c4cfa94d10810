"""
Pydantic Schemas for Request/Response Validation

Covers every resource of the ordering platform:
- Catalog (restaurants, categories, menu items, variants)
- Inventory and cart
- Orders, cancellations, deliveries, payments
- Notifications and feedback

Version: 4.0.0
"""

from datetime import datetime
from typing import Optional, List, Any

from pydantic import AliasChoices, BaseModel, Field, field_validator, model_validator

from dineflow.models import (
    CancellationStatus,
    DeliveryStatus,
    InventoryStatus,
    NotificationChannel,
    NotificationType,
    OrderStatus,
    OrderType,
    PaymentStatus,
    StockStatus,
)


# =============================================================================
# CATALOG REQUEST SCHEMAS
# =============================================================================

class RestaurantCreate(BaseModel):
    name: str = Field(..., min_length=2, max_length=150, examples=["Trattoria Roma"])
    currency: str = Field(default="USD", min_length=3, max_length=3)

    @field_validator("currency")
    @classmethod
    def upper_currency(cls, v: str) -> str:
        return v.upper()


class RestaurantUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=2, max_length=150)
    currency: Optional[str] = Field(None, min_length=3, max_length=3)
    is_active: Optional[bool] = None


class CategoryCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100, examples=["Pizzas"])


class MenuItemCreate(BaseModel):
    """Request schema for adding a menu item."""
    title: str = Field(..., min_length=1, max_length=150, examples=["Pizza Margherita"])
    description: Optional[str] = Field(None, max_length=1000)
    final_price: float = Field(..., gt=0, examples=[12.5])
    mrp: Optional[float] = Field(None, gt=0)
    category_id: Optional[str] = None
    stock_status: StockStatus = StockStatus.IN_STOCK
    min_order_quantity: int = Field(default=1, ge=1)
    max_order_quantity: Optional[int] = Field(None, ge=1)

    @model_validator(mode="after")
    def check_quantity_bounds(self):
        if self.max_order_quantity is not None and self.max_order_quantity < self.min_order_quantity:
            raise ValueError("max_order_quantity must be >= min_order_quantity")
        return self


class MenuItemUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=150)
    description: Optional[str] = Field(None, max_length=1000)
    final_price: Optional[float] = Field(None, gt=0)
    mrp: Optional[float] = Field(None, gt=0)
    category_id: Optional[str] = None
    stock_status: Optional[StockStatus] = None
    min_order_quantity: Optional[int] = Field(None, ge=1)
    max_order_quantity: Optional[int] = Field(None, ge=1)
    is_active: Optional[bool] = None


class VariantCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100, examples=["Large"])
    price_delta: float = Field(default=0.0, examples=[3.0])


class StaffCreate(BaseModel):
    user_id: str


# =============================================================================
# INVENTORY & CART REQUEST SCHEMAS
# =============================================================================

class InventoryCreate(BaseModel):
    restaurant_id: str
    menu_item_id: str
    variant_id: Optional[str] = None
    quantity: int = Field(..., ge=0)
    reorder_threshold: int = Field(default=0, ge=0)


class InventoryUpdate(BaseModel):
    quantity: Optional[int] = Field(None, ge=0)
    reorder_threshold: Optional[int] = Field(None, ge=0)


class InventoryAdjust(BaseModel):
    """Relative stock change; negative deltas debit."""
    menu_item_id: str
    variant_id: Optional[str] = None
    delta: int = Field(..., examples=[-2, 10])
    reason: Optional[str] = Field(None, max_length=255)
    notes: Optional[str] = Field(None, max_length=1000)


class CartItemAdd(BaseModel):
    menu_item_id: str
    variant_id: Optional[str] = None
    quantity: int = Field(default=1, ge=1, le=99)


class CartItemUpdate(BaseModel):
    quantity: int = Field(..., ge=1, le=99)


# =============================================================================
# ORDER REQUEST SCHEMAS
# =============================================================================

class OrderItemCreate(BaseModel):
    """Single line in an order. ``unit_price`` is accepted but never trusted."""
    menu_item_id: str
    variant_id: Optional[str] = None
    quantity: int = Field(..., ge=1, examples=[2])
    unit_price: Optional[float] = Field(None, ge=0)
    notes: Optional[str] = Field(None, max_length=200)


class OrderCreate(BaseModel):
    """Request schema for placing an order."""
    restaurant_id: str
    items: List[OrderItemCreate] = Field(..., min_length=1)
    order_type: OrderType = Field(default=OrderType.DELIVERY, examples=["DELIVERY"])
    delivery_address: Optional[dict] = Field(
        None,
        examples=[{"street": "350 Fifth Avenue", "city": "New York", "zip": "10118"}],
    )
    delivery_instructions: Optional[str] = Field(None, max_length=500)
    notes: Optional[str] = Field(None, max_length=500)
    priority: str = Field(default="NORMAL", pattern="^(LOW|NORMAL|HIGH|URGENT)$")
    source: str = Field(default="WEB", max_length=30)

    @model_validator(mode="after")
    def require_delivery_address(self):
        if self.order_type == OrderType.DELIVERY and not self.delivery_address:
            raise ValueError("delivery_address is required for DELIVERY orders")
        return self


class OrderUpdate(BaseModel):
    status: Optional[OrderStatus] = None
    notes: Optional[str] = Field(None, max_length=500)
    priority: Optional[str] = Field(None, pattern="^(LOW|NORMAL|HIGH|URGENT)$")
    estimated_delivery_time: Optional[datetime] = None


class CancellationCreate(BaseModel):
    reason: str = Field(..., max_length=500)


class CancellationUpdate(BaseModel):
    status: CancellationStatus

    @field_validator("status")
    @classmethod
    def decision_only(cls, v: CancellationStatus) -> CancellationStatus:
        if v == CancellationStatus.REQUESTED:
            raise ValueError("status must be APPROVED or REJECTED")
        return v


class DeliveryCreate(BaseModel):
    order_id: str
    driver_id: Optional[str] = None


class DeliveryUpdate(BaseModel):
    status: Optional[DeliveryStatus] = None
    driver_id: Optional[str] = None


# =============================================================================
# PAYMENT REQUEST SCHEMAS
# =============================================================================

class PaymentCreate(BaseModel):
    order_id: str
    amount: float = Field(..., gt=0)
    method: str = Field(default="card", max_length=30, examples=["card", "cash"])


class PaymentUpdate(BaseModel):
    status: Optional[PaymentStatus] = None
    transaction_id: Optional[str] = None
    gateway_response: Optional[dict] = None


class PaymentIntentCreate(BaseModel):
    order_id: str


class CheckoutSessionCreate(BaseModel):
    order_id: str
    success_url: Optional[str] = None
    cancel_url: Optional[str] = None


# =============================================================================
# NOTIFICATION & FEEDBACK REQUEST SCHEMAS
# =============================================================================

class NotificationCreate(BaseModel):
    user_id: str
    type: NotificationType
    channel: NotificationChannel = NotificationChannel.IN_APP
    title: str = Field(..., min_length=1, max_length=200)
    message: str = Field(..., min_length=1, max_length=2000)
    metadata: Optional[dict] = None


class BulkNotificationCreate(BaseModel):
    user_ids: List[str] = Field(..., min_length=1, max_length=1000)
    type: NotificationType
    channel: NotificationChannel = NotificationChannel.IN_APP
    title: str = Field(..., min_length=1, max_length=200)
    message: str = Field(..., min_length=1, max_length=2000)
    metadata: Optional[dict] = None


class FeedbackCreate(BaseModel):
    order_id: str
    rating: int = Field(..., examples=[5])
    comment: Optional[str] = Field(None, max_length=2000)


# =============================================================================
# RESPONSE SCHEMAS
# =============================================================================

class RestaurantResponse(BaseModel):
    id: str
    name: str
    owner_id: str
    tenant_id: Optional[str]
    currency: str
    is_active: bool
    created_at: Optional[datetime]

    class Config:
        from_attributes = True


class CategoryResponse(BaseModel):
    id: str
    restaurant_id: str
    name: str

    class Config:
        from_attributes = True


class VariantResponse(BaseModel):
    id: str
    menu_item_id: str
    name: str
    price_delta: float
    is_active: bool

    class Config:
        from_attributes = True


class MenuItemResponse(BaseModel):
    id: str
    restaurant_id: str
    category_id: Optional[str]
    title: str
    description: Optional[str]
    final_price: float
    mrp: Optional[float]
    stock_status: StockStatus
    min_order_quantity: int
    max_order_quantity: Optional[int]
    is_active: bool
    variants: List[VariantResponse] = []

    class Config:
        from_attributes = True


class InventoryResponse(BaseModel):
    id: str
    restaurant_id: str
    menu_item_id: str
    variant_id: Optional[str]
    quantity: int
    reorder_threshold: int
    status: InventoryStatus
    last_adjustment_reason: Optional[str]
    last_updated: Optional[datetime]

    class Config:
        from_attributes = True


class InventoryAnalytics(BaseModel):
    total_items: int
    in_stock: int
    low_stock: int
    out_of_stock: int
    below_threshold: int
    average_quantity: float


class CartItemResponse(BaseModel):
    id: str
    menu_item_id: str
    variant_id: Optional[str]
    quantity: int
    title: Optional[str] = None
    unit_price: Optional[float] = None
    line_total: Optional[float] = None


class CartResponse(BaseModel):
    id: str
    user_id: str
    items: List[CartItemResponse]
    total_items: int
    subtotal: float
    currency: str


class OrderItemResponse(BaseModel):
    id: str
    menu_item_id: str
    variant_id: Optional[str]
    quantity: int
    unit_price: float
    subtotal: float
    notes: Optional[str]

    class Config:
        from_attributes = True


class DeliveryResponse(BaseModel):
    id: str
    order_id: str
    driver_id: Optional[str]
    status: DeliveryStatus
    assigned_at: Optional[datetime]
    picked_up_at: Optional[datetime]
    completed_at: Optional[datetime]

    class Config:
        from_attributes = True


class OrderResponse(BaseModel):
    """Response schema for a single order."""
    id: str
    user_id: str
    restaurant_id: str
    tenant_id: Optional[str]
    correlation_id: str
    order_type: OrderType
    delivery_address: Optional[dict]
    delivery_instructions: Optional[str]
    notes: Optional[str]
    priority: str
    subtotal: float
    tax: float
    delivery_fee: float
    discount: float
    total: float
    status: OrderStatus
    payment_status: PaymentStatus
    cancel_reason: Optional[str]
    estimated_delivery_time: Optional[datetime]
    actual_delivery_time: Optional[datetime]
    created_at: Optional[datetime]
    updated_at: Optional[datetime]
    items: List[OrderItemResponse] = []
    delivery: Optional[DeliveryResponse] = None

    class Config:
        from_attributes = True


class OrderListResponse(BaseModel):
    """Response for listing orders."""
    total: int
    page: int
    limit: int
    orders: List[OrderResponse]


class AuditResponse(BaseModel):
    id: str
    order_id: str
    operation: str
    changed_by: str
    changes: Optional[Any]
    timestamp: datetime

    class Config:
        from_attributes = True


class CancellationResponse(BaseModel):
    id: str
    order_id: str
    requested_by: str
    approved_by: Optional[str]
    reason: str
    status: CancellationStatus
    created_at: Optional[datetime]

    class Config:
        from_attributes = True


class PaymentResponse(BaseModel):
    id: str
    order_id: str
    amount: float
    currency: str
    method: str
    status: PaymentStatus
    transaction_id: Optional[str]
    created_at: Optional[datetime]

    class Config:
        from_attributes = True


class PaymentSessionResponse(BaseModel):
    """Payment row plus what the frontend needs to finish paying."""
    payment: PaymentResponse
    client_secret: Optional[str] = None
    checkout_url: Optional[str] = None


class WebhookAck(BaseModel):
    received: bool = True
    duplicate: bool = False
    handled: bool = False


class NotificationResponse(BaseModel):
    id: str
    user_id: str
    type: NotificationType
    channel: NotificationChannel
    title: str
    message: str
    metadata: Optional[dict] = Field(None, validation_alias=AliasChoices("metadata_", "metadata"))
    is_read: bool
    read_at: Optional[datetime]
    created_at: Optional[datetime]

    class Config:
        from_attributes = True


class NotificationListResponse(BaseModel):
    notifications: List[NotificationResponse]
    total: int
    unread_count: int
    page: int
    limit: int


class FeedbackResponse(BaseModel):
    id: str
    order_id: str
    user_id: str
    restaurant_id: str
    rating: int
    comment: Optional[str]
    created_at: Optional[datetime]

    class Config:
        from_attributes = True


class FeedbackStats(BaseModel):
    total_count: int
    average_rating: float
    rating_distribution: dict


class ErrorResponse(BaseModel):
    """Standard error response."""
    success: bool = False
    error: str
    detail: Optional[str] = None


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    database: str
    redis: str
    payment_gateway: str
    notification_provider: str
    timestamp: datetime
