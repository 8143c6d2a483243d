"""
Database Schemas

Each collection model maps to the collection named after it in lowercase
(CartItem -> "cartitem"). Documents are written through
``database.create_document``, which adds the timestamps.

References between collections are stored as ObjectId values; ownership is
one-directional (a cart knows its user, the user document knows nothing of
its cart).

The second half of the module holds the API payloads. They speak camelCase on
the wire and accept snake_case too.
"""

from datetime import datetime
from typing import Annotated, List, Optional

from bson import ObjectId
from email_validator import EmailNotValidError, validate_email
from pydantic import AfterValidator, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def check_email(value: str) -> str:
    """Reject malformed addresses but keep the text exactly as submitted."""
    try:
        validate_email(value, check_deliverability=False)
    except EmailNotValidError as e:
        raise ValueError(str(e))
    return value


Email = Annotated[str, AfterValidator(check_email)]


class MongoModel(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)


class User(MongoModel):
    name: str = Field(..., description="Display name")
    email: Email = Field(..., description="Unique, case-sensitive as stored")
    password_hash: str = Field(..., description="BCrypt hashed password")


class Category(MongoModel):
    name: str = Field(..., min_length=1)


class Product(MongoModel):
    name: str = Field(..., min_length=1)
    price: float = Field(..., ge=0)
    description: Optional[str] = None
    brand: Optional[str] = None
    rating: Optional[float] = Field(default=None, ge=0, le=5)
    tags: List[str] = Field(default_factory=list)
    image_url: Optional[str] = None
    category_id: Optional[ObjectId] = None


class Review(MongoModel):
    product_id: ObjectId
    rating: int = Field(..., ge=1, le=5)
    comment: str = Field(..., min_length=1)
    reviewer_name: str
    reviewer_email: Email
    date: datetime


class Cart(MongoModel):
    user_id: ObjectId


class CartItem(MongoModel):
    cart_id: ObjectId
    product_id: ObjectId
    quantity: int = Field(1, ge=1)


class Wishlist(MongoModel):
    user_id: ObjectId


class WishlistItem(MongoModel):
    wishlist_id: ObjectId
    product_id: ObjectId


class OrderItem(MongoModel):
    product_id: ObjectId
    product_name: str
    price: float = Field(..., ge=0)
    quantity: int = Field(..., ge=1)


class Order(MongoModel):
    user_id: ObjectId
    order_date: datetime
    status: str = Field("PLACED", description="Order status")
    items: List[OrderItem]
    total: float = Field(..., ge=0)


# ---------------------- API payloads ----------------------

class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SignUpRequest(ApiModel):
    name: str = Field(..., min_length=1)
    email: Email
    password: str = Field(..., min_length=4)


class LoginRequest(ApiModel):
    username: str = Field(..., min_length=1, description="Email address")
    password: str = Field(..., min_length=1)


class LoginResponse(ApiModel):
    user_id: str
    name: str
    email: str
    token: str
    type: str = "Bearer"


class UserOut(ApiModel):
    id: str
    name: str
    email: str


class UpdatedUserOut(UserOut):
    token: Optional[str] = Field(default=None, description="Fresh bearer token when the email changed")


class UpdateUserRequest(ApiModel):
    name: Optional[str] = Field(default=None, min_length=1)
    email: Optional[Email] = None


class UpdatePasswordRequest(ApiModel):
    current_password: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=4)


class ProductRequest(ApiModel):
    product_id: str


class QuantityRequest(ApiModel):
    quantity: int = Field(..., ge=1)


class CartItemOut(ApiModel):
    id: str
    product_id: str
    product_name: str
    product_image_url: Optional[str] = None
    product_price: float
    quantity: int


class WishlistItemOut(ApiModel):
    id: str
    product_id: str
    product_name: str
    product_image_url: Optional[str] = None
    product_price: float


class ProductIn(ApiModel):
    name: str = Field(..., min_length=1)
    price: float = Field(..., ge=0)
    description: Optional[str] = None
    brand: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    image_url: Optional[str] = None
    category: Optional[str] = Field(default=None, description="Category name, created on demand")


class ProductUpdate(ApiModel):
    name: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None


class ProductNameRequest(ApiModel):
    name: str = Field(..., min_length=1)


class ProductDescriptionRequest(ApiModel):
    description: str


class ProductOut(ApiModel):
    id: str
    name: str
    price: float
    description: Optional[str] = None
    brand: Optional[str] = None
    rating: Optional[float] = None
    tags: List[str] = Field(default_factory=list)
    image_url: Optional[str] = None
    category: Optional[str] = None


class CategoryIn(ApiModel):
    name: str = Field(..., min_length=1)


class CategoryOut(ApiModel):
    id: str
    name: str


class ReviewIn(ApiModel):
    product_id: str
    rating: int = Field(..., ge=1, le=5)
    comment: str = Field(..., min_length=1)
    reviewer_name: str = Field(..., min_length=1)
    reviewer_email: Email


class ReviewUpdate(ApiModel):
    rating: Optional[int] = Field(default=None, ge=1, le=5)
    comment: Optional[str] = Field(default=None, min_length=1)


class ReviewOut(ApiModel):
    review_id: str
    product_id: str
    rating: int
    comment: str
    reviewer_name: str
    reviewer_email: str
    date: datetime


class OrderItemOut(ApiModel):
    product_id: str
    product_name: str
    price: float
    quantity: int


class OrderOut(ApiModel):
    id: str
    order_date: datetime
    status: str
    items: List[OrderItemOut]
    total: float
