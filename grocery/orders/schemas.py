import re
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

PHONE_RE = re.compile(r"^\+?[1-9]\d{1,14}$")


class CartItem(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    product_id: str = Field(alias="productId", min_length=1)
    quantity: int = Field(ge=1)


class DeliveryAddress(BaseModel):
    # Champs requis contrôlés par cart.validate_address (message "incomplete_address")
    street: Optional[str] = None
    city: Optional[str] = None
    region: Optional[str] = None
    phone: Optional[str] = None

    @field_validator("phone")
    @classmethod
    def phone_format(cls, v: Optional[str]) -> Optional[str]:
        if v is None or not v.strip():
            return v
        cleaned = re.sub(r"[\s\-()]", "", v)
        if not PHONE_RE.match(cleaned):
            raise ValueError("Invalid phone number")
        return cleaned


class CheckoutRequest(BaseModel):
    """Le total n'est jamais lu depuis le client: seuls produits et quantités comptent."""
    model_config = ConfigDict(populate_by_name=True)

    cart_items: List[CartItem] = Field(default_factory=list, alias="cartItems")
    delivery_address: Optional[DeliveryAddress] = Field(default=None, alias="deliveryAddress")
    discount: Decimal = Decimal("0")
    credits: Decimal = Decimal("0")
    delivery_notes: Optional[str] = Field(default=None, alias="deliveryNotes", max_length=500)


class VerifyRequest(BaseModel):
    reference: str = Field(min_length=1)


class CancelOrderRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=500)


class StatusUpdateRequest(BaseModel):
    status: str = Field(min_length=1)
    reason: Optional[str] = Field(default=None, max_length=500)
