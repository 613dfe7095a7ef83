"""
Database Schemas for the Cruise Concierge portal

Each Pydantic model below corresponds to a MongoDB collection.
The collection name is the lowercase class name (e.g., Item -> "item"),
except UserRole which lives in "user_roles".
"""
from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field, EmailStr

from workflow import BookingStatus, Category, OrderStatus, Role

USER = "user"
USER_ROLES = "user_roles"
SESSION = "session"
ITEM = "item"
ORDER = "order"
BOOKING = "booking"


class Document(BaseModel):
    # Enums are stored as their plain string values.
    model_config = ConfigDict(use_enum_values=True)


class User(Document):
    full_name: str = Field(..., description="Full name")
    email: EmailStr = Field(..., description="Unique, lower-cased email address")
    password_hash: str = Field(..., description="BCrypt password hash")
    is_active: bool = True


class UserRole(Document):
    user_id: str = Field(..., description="Reference to user _id")
    role: Role


class Item(Document):
    name: str = Field(..., min_length=1, description="Item or service name")
    description: Optional[str] = None
    category: Category
    price: float = Field(..., ge=0)
    stock: int = Field(0, ge=0)
    image_url: Optional[str] = None
    available: bool = True


class OrderLine(Document):
    item_id: str
    name: str
    quantity: int = Field(..., ge=1)
    price: float = Field(..., ge=0)


class Order(Document):
    user_id: str = Field(..., description="Voyager placing the order")
    type: Category = Field(..., description="Category of the ordered items")
    items: List[OrderLine]
    total_amount: float = Field(..., ge=0)
    status: OrderStatus = OrderStatus.PENDING
    approved_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    version: int = 0


class BookingDetails(Document):
    item_id: str
    item_name: str


class Booking(Document):
    user_id: str = Field(..., description="Voyager making the booking")
    booking_type: Category
    booking_date: str = Field(..., description="ISO date, YYYY-MM-DD")
    status: BookingStatus = BookingStatus.PENDING
    total_amount: float = Field(..., ge=0)
    details: BookingDetails
    approved_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    version: int = 0
"""
Notes:
- Define new collections by creating new Pydantic classes in this file.
- `version` is bumped on every status write and guards concurrent updates.
"""
