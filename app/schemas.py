"""Schemas/models for the FastAPI application."""
from enum import Enum
from typing import Optional, List, Literal
from pydantic import BaseModel, Field


class Product(BaseModel):
    id: int
    name: str
    description: Optional[str] = ""
    price: float = Field(ge=0)
    original_price: Optional[float] = None
    category: str
    subcategory: Optional[str] = None
    brand: Optional[str] = None
    sku: Optional[str] = None
    stock_quantity: int = 0
    images: List[str] = Field(default_factory=list)
    sizes: List[str] = Field(default_factory=list)
    colors: List[str] = Field(default_factory=list)
    is_featured: bool = False
    is_active: bool = True
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class ProductIn(BaseModel):
    name: str = ""
    description: Optional[str] = ""
    price: float = Field(0, ge=0)
    original_price: Optional[float] = None
    category: str = ""
    subcategory: Optional[str] = None
    brand: Optional[str] = None
    sku: Optional[str] = None
    stock_quantity: int = Field(0, ge=0)
    images: List[str] = Field(default_factory=list)
    sizes: List[str] = Field(default_factory=list)
    colors: List[str] = Field(default_factory=list)
    is_featured: bool = False
    is_active: bool = True


class ProductUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    original_price: Optional[float] = None
    category: Optional[str] = None
    subcategory: Optional[str] = None
    brand: Optional[str] = None
    sku: Optional[str] = None
    stock_quantity: Optional[int] = Field(None, ge=0)
    images: Optional[List[str]] = None
    sizes: Optional[List[str]] = None
    colors: Optional[List[str]] = None
    is_featured: Optional[bool] = None
    is_active: Optional[bool] = None


class ProductSnapshot(BaseModel):
    """Product data joined into a cart line when the cart is read."""
    name: str
    price: float
    images: List[str] = Field(default_factory=list)


class CartItem(BaseModel):
    id: int
    product_id: int
    quantity: int = Field(ge=1)
    size: Optional[str] = None
    color: Optional[str] = None
    product: ProductSnapshot
    stock_quantity: Optional[int] = None

    @property
    def subtotal(self) -> float:
        return self.product.price * self.quantity


class CartResponse(BaseModel):
    items: List[CartItem]
    item_count: int
    total: float
    stock_warnings: List[int] = Field(default_factory=list, description="IDs of items above available stock")


class AddCartItemRequest(BaseModel):
    product_id: int
    quantity: int = 1
    size: Optional[str] = None
    color: Optional[str] = None


class UpdateQuantityRequest(BaseModel):
    quantity: int


class CheckoutForm(BaseModel):
    """Shipping details collected by the checkout dialog."""
    full_name: str = ""
    email: str = ""
    phone: str = ""
    address: str = ""
    city: str = ""
    state: str = ""
    pincode: str = ""
    notes: str = ""


class Address(BaseModel):
    full_name: str
    email: Optional[str] = None
    phone: str
    address: str
    city: str
    state: str
    pincode: str


class OrderStatus(str, Enum):
    pending = "pending"
    processing = "processing"
    shipped = "shipped"
    delivered = "delivered"
    cancelled = "cancelled"
    failed = "failed"


class OrderItem(BaseModel):
    id: Optional[int] = None
    order_id: Optional[int] = None
    product_id: int
    product_name: Optional[str] = None
    quantity: int = Field(ge=1)
    price: float
    size: Optional[str] = None
    color: Optional[str] = None


class Order(BaseModel):
    id: int
    user_id: str
    total_amount: float
    status: OrderStatus = OrderStatus.pending
    payment_status: str = "pending"
    payment_method: str = "cod"
    shipping_address: Optional[Address] = None
    billing_address: Optional[Address] = None
    notes: Optional[str] = None
    created_at: Optional[str] = None
    customer_name: Optional[str] = None
    customer_email: Optional[str] = None
    items: List[OrderItem] = Field(default_factory=list)


class OrderStatusUpdate(BaseModel):
    status: OrderStatus


class Profile(BaseModel):
    user_id: str
    email: Optional[str] = None
    full_name: Optional[str] = None
    is_admin: bool = False
    created_at: Optional[str] = None


class AdminFlagUpdate(BaseModel):
    is_admin: bool


class StoreStats(BaseModel):
    total_products: int
    total_orders: int
    total_users: int
    total_revenue: float


class CheckoutStatus(BaseModel):
    state: str
    form: Optional[CheckoutForm] = None
    order: Optional[Order] = None
    total: float = 0.0


class CropRegion(BaseModel):
    """Crop selection against the displayed image, in percent or pixels."""
    unit: Literal["%", "px"] = "%"
    x: float = Field(0, ge=0)
    y: float = Field(0, ge=0)
    width: float = Field(gt=0)
    height: float = Field(gt=0)


class PixelCrop(BaseModel):
    x: float = Field(ge=0)
    y: float = Field(ge=0)
    width: float = Field(gt=0)
    height: float = Field(gt=0)


class ImageEditState(BaseModel):
    rotation: float = Field(0, ge=0, lt=360)
    brightness: float = Field(100, ge=0, le=200)
    contrast: float = Field(100, ge=0, le=200)
    saturation: float = Field(100, ge=0, le=200)


class ImageEditRequest(BaseModel):
    """Edit parameters sent along with an image.

    `displayed_width`/`displayed_height` describe the on-screen image the crop
    was drawn against; they default to the natural size.
    """
    crop: Optional[CropRegion] = None
    aspect: Optional[float] = Field(None, gt=0)
    displayed_width: Optional[float] = Field(None, gt=0)
    displayed_height: Optional[float] = Field(None, gt=0)
    adjustments: ImageEditState = Field(default_factory=ImageEditState)
