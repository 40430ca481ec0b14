"""Inbound payload schemas.

Every request body is checked here before anything touches the database.
Keys are accepted in camelCase (``confirmPassword``) or snake_case.
"""
import re
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from schemas import Address, OrderStatus, Size
from security import Role

PHONE_PATTERN = r"^\+?[\d\s\-()]+$"
SLUG_PATTERN = r"^[a-z0-9-]+$"


class Payload(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, str_strip_whitespace=True, use_enum_values=True
    )


def check_password_strength(value: str) -> str:
    if len(value) < 8:
        raise ValueError("Password must be at least 8 characters long")
    if not re.search(r"[A-Z]", value):
        raise ValueError("Password must contain at least one uppercase letter")
    if not re.search(r"[a-z]", value):
        raise ValueError("Password must contain at least one lowercase letter")
    if not re.search(r"[0-9]", value):
        raise ValueError("Password must contain at least one number")
    if not re.search(r"[^A-Za-z0-9]", value):
        raise ValueError("Password must contain at least one special character")
    return value


class RegisterRequest(Payload):
    username: str = Field(..., min_length=3, max_length=50)
    email: EmailStr
    password: str
    confirm_password: str
    phone: str = Field(..., pattern=PHONE_PATTERN)

    @field_validator("email")
    @classmethod
    def _lower_email(cls, v: str) -> str:
        return v.lower()

    @field_validator("password")
    @classmethod
    def _strong_password(cls, v: str) -> str:
        return check_password_strength(v)

    @model_validator(mode="after")
    def _passwords_match(self):
        if self.password != self.confirm_password:
            raise ValueError("Passwords don't match")
        return self


class RegisterWithRoleRequest(RegisterRequest):
    role: Role = Role.USER


class LoginRequest(Payload):
    email: EmailStr
    password: str = Field(..., min_length=1)

    @field_validator("email")
    @classmethod
    def _lower_email(cls, v: str) -> str:
        return v.lower()


class ProfileUpdate(Payload):
    username: Optional[str] = Field(None, min_length=3, max_length=50)
    phone: Optional[str] = Field(None, pattern=PHONE_PATTERN)


class ProductCreate(Payload):
    name: str = Field(..., min_length=1, max_length=100)
    slug: Optional[str] = Field(None, min_length=1, max_length=100, pattern=SLUG_PATTERN)
    description: str = Field(..., min_length=1, max_length=2000)
    tags: List[str] = []
    price: float = Field(..., ge=0)
    colour: str = Field(..., min_length=1)
    size: Size
    images: List[str] = []
    total_stock: int = Field(..., ge=0)
    in_stock: bool = True

    @field_validator("tags")
    @classmethod
    def _clean_tags(cls, v: List[str]) -> List[str]:
        return [t.strip() for t in v if t and t.strip()]


class ProductUpdate(Payload):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    slug: Optional[str] = Field(None, min_length=1, max_length=100, pattern=SLUG_PATTERN)
    description: Optional[str] = Field(None, min_length=1, max_length=2000)
    tags: Optional[List[str]] = None
    price: Optional[float] = Field(None, ge=0)
    colour: Optional[str] = Field(None, min_length=1)
    size: Optional[Size] = None
    images: Optional[List[str]] = None
    total_stock: Optional[int] = Field(None, ge=0)
    in_stock: Optional[bool] = None


class CartItemCreate(Payload):
    product_id: str = Field(..., min_length=1)
    quantity: int = Field(..., ge=1)
    colour: str = Field(..., min_length=1)
    size: Size


class CartItemUpdate(Payload):
    quantity: int = Field(..., ge=1)


class FavoriteCreate(Payload):
    product_id: str = Field(..., min_length=1)


class CheckoutRequest(Payload):
    shipping_address: Address
    payment_method: str = Field(..., min_length=1)

    @field_validator("shipping_address")
    @classmethod
    def _complete_address(cls, v: Address) -> Address:
        for field, value in v.model_dump().items():
            if not value.strip():
                raise ValueError(f"{field} is required")
        return v


class OrderStatusUpdate(Payload):
    status: OrderStatus
