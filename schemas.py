"""
Database Schemas for E-commerce

Each Pydantic model represents a MongoDB collection.
Collection name is the lowercase of the class name.

Documents are stored with snake_case keys; ``to_api`` renders them with the
camelCase keys used on the wire.
"""
from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Dict, List, Optional

from bson import ObjectId
from pydantic import BaseModel, BeforeValidator, ConfigDict, EmailStr, Field
from pydantic.alias_generators import to_camel


def _stringify_id(v: Any) -> Any:
    return str(v) if isinstance(v, ObjectId) else v


ObjectIdStr = Annotated[str, BeforeValidator(_stringify_id)]
# an identity, or the populated document it points at
Ref = Annotated[Any, BeforeValidator(_stringify_id)]


class Size(str, Enum):
    SM = "sm"
    MD = "md"
    LG = "lg"
    XL = "xl"


class OrderStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class Document(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, use_enum_values=True)

    id: Optional[ObjectIdStr] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_doc(cls, doc: Dict[str, Any]):
        data = dict(doc)
        if "_id" in data:
            data["id"] = data.pop("_id")
        return cls.model_validate(data)

    def to_api(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


class User(Document):
    username: str
    email: EmailStr
    phone: str
    profile_image: Optional[str] = None
    role: str = "user"
    # password_hash is stored but never part of this model


class Product(Document):
    name: str
    slug: str
    description: str
    tags: List[str] = []
    price: float = Field(..., ge=0)
    colour: str
    size: Size
    images: List[str] = Field(..., min_length=1)
    in_stock: bool = True
    total_stock: int  # may go negative when two paid checkouts race for the last units
    sold_count: int = Field(0, ge=0)


class ProductSummary(BaseModel):
    """Product fields shown inside cart, favorite and order lines."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: ObjectIdStr
    name: str
    price: float
    images: List[str] = []
    description: Optional[str] = None
    tags: Optional[List[str]] = None
    in_stock: Optional[bool] = None
    total_stock: Optional[int] = None

    @classmethod
    def from_doc(cls, doc: Dict[str, Any]):
        data = dict(doc)
        data["id"] = data.pop("_id")
        return cls.model_validate(data)


class CartItem(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, use_enum_values=True)

    id: ObjectIdStr
    product: Ref
    quantity: int = Field(..., ge=1)
    colour: str
    size: Size


class Cart(Document):
    user: ObjectIdStr
    items: List[CartItem] = []
    total_amount: float = Field(0, ge=0)

    @classmethod
    def from_doc(cls, doc: Dict[str, Any]):
        data = dict(doc)
        data["id"] = data.pop("_id", None)
        data["items"] = [dict(item, id=item["_id"]) for item in data.get("items", [])]
        return cls.model_validate(data)


class Favorite(Document):
    user: ObjectIdStr
    product: Ref


class Address(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    street: str
    city: str
    state: str
    zip_code: str
    country: str


class OrderItem(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, use_enum_values=True)

    product: Ref
    name: Optional[str] = None
    quantity: int = Field(..., ge=1)
    price: float = Field(..., ge=0)
    colour: str
    size: Size


class Order(Document):
    user: Ref
    items: List[OrderItem]
    total_amount: float = Field(..., ge=0)
    shipping_address: Address
    payment_method: str
    payment_status: PaymentStatus = PaymentStatus.PENDING
    status: OrderStatus = OrderStatus.PENDING
    payment_session_id: Optional[str] = None
    payment_intent_id: Optional[str] = None
    paid_at: Optional[datetime] = None
