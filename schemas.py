"""
Database Schemas for the Plant Shop

Each Pydantic model either describes a MongoDB collection (collection
name is the lowercase of the entity: user, category, product, order,
review) or a request body accepted by the API.

Persisted field names follow the storefront's camelCase conventions
(orderNumber, ratingsAverage, helpfulVotes, ...).
"""

from typing import Any, List, Literal, Optional, Type, TypeVar, get_args

from pydantic import BaseModel, ConfigDict, EmailStr, Field
from pydantic import ValidationError as PydanticValidationError

from errors import ValidationError

Role = Literal["customer", "admin"]
OrderStatus = Literal["pending", "confirmed", "processing", "shipped", "delivered", "cancelled", "refunded"]
PaymentMethod = Literal["cod", "card", "upi", "netbanking", "wallet"]
ShippingMethod = Literal["standard", "express", "overnight"]
VoteType = Literal["positive", "negative"]
ReportReason = Literal["spam", "inappropriate", "fake", "offensive", "other"]

ORDER_STATUSES = get_args(OrderStatus)
REPORT_REASONS = get_args(ReportReason)

M = TypeVar("M", bound=BaseModel)


def describe_errors(errors: List[dict]) -> str:
    problems = []
    for err in errors:
        loc = ".".join(str(part) for part in err["loc"])
        problems.append(f"{loc}: {err['msg']}" if loc else err["msg"])
    return "; ".join(problems)


def parse(model: Type[M], data: Any) -> M:
    """Validate ``data`` against ``model``, raising the shop's ValidationError."""
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data)
    except PydanticValidationError as e:
        raise ValidationError(describe_errors(e.errors()))


class Strict(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)


# Identity

class User(Strict):
    name: str = Field(..., min_length=1, description="Display name")
    firstName: Optional[str] = None
    lastName: Optional[str] = None
    email: EmailStr = Field(..., description="Unique, lower-cased email address")
    passwordHash: str = Field(..., description="bcrypt hash")
    phone: Optional[str] = None
    role: Role = Field("customer", description="Role: customer or admin")
    isActive: bool = True
    cart: List[dict] = Field(default_factory=list, description="Cart lines: {product, quantity, addedAt}")


class Principal(BaseModel):
    """The authenticated caller handed to every workflow operation."""
    id: str
    role: Role = "customer"

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: dict


class RegisterRequest(Strict):
    name: str = Field(..., min_length=1)
    email: EmailStr
    password: str = Field(..., min_length=6)
    firstName: Optional[str] = None
    lastName: Optional[str] = None
    phone: Optional[str] = None


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class UserAdminUpdate(BaseModel):
    name: Optional[str] = None
    role: Optional[Role] = None
    isActive: Optional[bool] = None


# Catalog

class CategoryIn(Strict):
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    image: Optional[str] = None
    icon: Optional[str] = None
    parentCategory: Optional[str] = None
    isActive: bool = True
    sortOrder: int = 0


class ProductImage(Strict):
    url: str
    alt: Optional[str] = None
    isPrimary: bool = False


class StockInfo(BaseModel):
    quantity: int = Field(0, ge=0)
    trackInventory: bool = True


class TemperatureRange(BaseModel):
    min: Optional[float] = None
    max: Optional[float] = None


class PlantCare(BaseModel):
    lightRequirement: Literal["Low Light", "Medium Light", "Bright Indirect", "Direct Sun"]
    wateringFrequency: Literal["Daily", "Every 2-3 days", "Weekly", "Bi-weekly", "Monthly"]
    difficulty: Literal["Beginner", "Intermediate", "Advanced", "Expert"] = "Beginner"
    humidity: Literal["Low", "Medium", "High"] = "Medium"
    temperature: Optional[TemperatureRange] = None
    petFriendly: bool = False
    airPurifying: bool = False


class ProductIn(Strict):
    name: str = Field(..., min_length=1)
    sku: Optional[str] = None
    description: str = Field(..., min_length=1)
    price: float = Field(..., ge=0)
    category: str = Field(..., description="Category id")
    images: List[ProductImage] = Field(..., min_length=1)
    stock: StockInfo = Field(default_factory=StockInfo)
    plantCare: PlantCare
    tags: List[str] = Field(default_factory=list)
    isActive: bool = True


class ProductUpdate(Strict):
    name: Optional[str] = Field(None, min_length=1)
    sku: Optional[str] = None
    description: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    category: Optional[str] = None
    images: Optional[List[ProductImage]] = Field(None, min_length=1)
    stock: Optional[StockInfo] = None
    plantCare: Optional[PlantCare] = None
    tags: Optional[List[str]] = None
    isActive: Optional[bool] = None


# Orders

class Address(Strict):
    street: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1)
    state: str = Field(..., min_length=1)
    zipCode: str = Field(..., min_length=1)
    country: str = Field(..., min_length=1)


class BillingInfo(Strict):
    firstName: str = Field(..., min_length=1)
    lastName: str = Field(..., min_length=1)
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    address: Address


class ShippingInfo(Strict):
    firstName: str = Field(..., min_length=1)
    lastName: str = Field(..., min_length=1)
    address: Address
    method: ShippingMethod = "standard"


class OrderItemIn(BaseModel):
    product: str = Field(..., description="Product id")
    quantity: int = Field(..., ge=1)


class OrderIn(BaseModel):
    items: List[OrderItemIn] = Field(..., min_length=1)
    billing: BillingInfo
    shipping: ShippingInfo
    paymentMethod: PaymentMethod = "cod"
    discount: float = Field(0, ge=0)
    notes: Optional[str] = Field(None, max_length=500)


class Tracking(Strict):
    number: Optional[str] = None
    carrier: Optional[str] = None
    url: Optional[str] = None


class StatusUpdate(BaseModel):
    status: str
    tracking: Optional[Tracking] = None


class PaymentUpdate(BaseModel):
    transactionId: Optional[str] = None


# Cart

class CartItemIn(BaseModel):
    product: str = Field(..., description="Product id")
    quantity: int = Field(1, ge=1)


class CartQuantityUpdate(BaseModel):
    quantity: int = Field(..., ge=0, description="0 removes the item")


class CheckoutIn(BaseModel):
    billing: BillingInfo
    shipping: ShippingInfo
    paymentMethod: PaymentMethod = "cod"
    discount: float = Field(0, ge=0)
    notes: Optional[str] = Field(None, max_length=500)


# Reviews

class ReviewContent(Strict):
    title: str = Field(..., min_length=1, max_length=200)
    comment: str = Field(..., min_length=1, max_length=1000)
    rating: int = Field(..., ge=1, le=5, strict=True)
    pros: List[str] = Field(default_factory=list)
    cons: List[str] = Field(default_factory=list)


class ReviewIn(BaseModel):
    product: str
    rating: int = Field(..., ge=1, le=5)
    title: str
    comment: str
    order: Optional[str] = None
    pros: List[str] = Field(default_factory=list)
    cons: List[str] = Field(default_factory=list)


class ReviewUpdate(BaseModel):
    title: Optional[str] = None
    comment: Optional[str] = None
    rating: Optional[int] = Field(None, ge=1, le=5)
    pros: Optional[List[str]] = None
    cons: Optional[List[str]] = None
    reason: Optional[str] = None


class VoteIn(BaseModel):
    voteType: VoteType = "positive"


class ReportIn(BaseModel):
    reason: ReportReason


class RejectIn(BaseModel):
    reason: str = Field(..., min_length=1)


class AdminResponseIn(BaseModel):
    message: str = Field(..., min_length=1, max_length=500)
