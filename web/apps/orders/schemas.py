"""Pydantic schemas for the orders and checkout API.

Request schemas validate incoming payloads before they are mapped to the
domain inputs; ``OrderReadDTO`` shapes orders on the way out.
"""

import re
from datetime import date, datetime
from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator

from .domain import (
    CheckoutInput,
    CheckoutItem,
    CreateOrderInput,
    CustomerInput,
    Order,
    OrderFilters,
    OrderItemInput,
    OrderStatus,
    PaymentNotification,
)

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
PHONE_RE = re.compile(r"^\d{10}$")
CURRENCY_RE = re.compile(r"^[A-Z]{3}$")


class CustomerIn(BaseModel):
    """Customer contact details.

    Attributes:
        name: At least two characters.
        phone: Exactly ten digits.
        email: Normalized to lowercase.
    """

    name: str = Field(min_length=2, max_length=200)
    phone: str
    email: str = Field(max_length=254)

    @field_validator("phone")
    @classmethod
    def validate_phone(cls, v: str) -> str:
        v2 = v.strip()
        if not PHONE_RE.match(v2):
            raise ValueError("Phone must be 10 digits")
        return v2

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        v2 = v.strip().lower()
        if not EMAIL_RE.match(v2):
            raise ValueError("Invalid email")
        return v2

    def to_domain(self) -> CustomerInput:
        return CustomerInput(name=self.name, email=self.email, phone=self.phone)


class OrderItemIn(BaseModel):
    product_id: int = Field(gt=0)
    quantity: int = Field(ge=1)
    size_id: Optional[str] = None


class CreateOrderDTO(BaseModel):
    """Admin order entry. Prices are never accepted from the client."""

    tenant_slug: str = Field(min_length=1)
    customer: CustomerIn
    items: list[OrderItemIn] = Field(min_length=1)
    payment_method: Literal["mercadopago", "cash", "transfer"]
    notes: Optional[str] = Field(default=None, max_length=2000)

    def to_domain(self) -> CreateOrderInput:
        return CreateOrderInput(
            tenant_slug=self.tenant_slug,
            customer=self.customer.to_domain(),
            items=[OrderItemInput(i.product_id, i.quantity, i.size_id) for i in self.items],
            payment_method=self.payment_method,
            notes=self.notes,
        )


class ColorIn(BaseModel):
    id: int
    name: str


class CheckoutItemIn(BaseModel):
    product_id: int = Field(gt=0)
    name: str = Field(min_length=1)
    price: Decimal = Field(ge=0)
    quantity: int = Field(ge=1)
    currency: str
    image: Optional[str] = None
    size_id: Optional[str] = None
    color: Optional[ColorIn] = None


class CheckoutCustomerIn(CustomerIn):
    notes: Optional[str] = Field(default=None, max_length=2000)


class CheckoutDTO(BaseModel):
    """Public checkout payload, line items denormalized by the storefront."""

    customer: CheckoutCustomerIn
    payment_method: Literal["cash", "mercadopago"]
    items: list[CheckoutItemIn] = Field(min_length=1)
    total: Decimal = Field(ge=0)
    currency: str
    tenant_slug: str = Field(min_length=1)
    return_url: Optional[str] = None

    @field_validator("currency")
    @classmethod
    def validate_currency(cls, v: str) -> str:
        v2 = v.upper()
        if not CURRENCY_RE.match(v2):
            raise ValueError("Invalid currency")
        return v2

    def to_domain(self) -> CheckoutInput:
        return CheckoutInput(
            customer=self.customer.to_domain(),
            payment_method=self.payment_method,
            items=[
                CheckoutItem(
                    product_id=i.product_id,
                    name=i.name,
                    price=i.price,
                    quantity=i.quantity,
                    currency=i.currency,
                    image=i.image,
                    size_id=i.size_id,
                    color=i.color.model_dump() if i.color else None,
                )
                for i in self.items
            ],
            total=self.total,
            currency=self.currency,
            tenant_slug=self.tenant_slug,
            return_url=self.return_url,
            notes=self.customer.notes,
        )


class StatusUpdateDTO(BaseModel):
    status: OrderStatus


class ListOrdersQuery(BaseModel):
    tenant_id: int = Field(gt=0)
    status: Optional[OrderStatus] = None
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    limit: int = Field(default=50, ge=1, le=200)
    offset: int = Field(default=0, ge=0)

    def to_filters(self) -> OrderFilters:
        return OrderFilters(
            status=self.status.value if self.status else None,
            date_from=self.date_from,
            date_to=self.date_to,
            limit=self.limit,
            offset=self.offset,
        )


class CustomerOut(BaseModel):
    id: int
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None


class OrderReadDTO(BaseModel):
    id: int
    tenant_id: int
    customer: Optional[CustomerOut] = None
    items: list[dict]
    total: Decimal
    status: str
    payment_method: Optional[str] = None
    payment_id: Optional[str] = None
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_domain(cls, order: Order) -> "OrderReadDTO":
        return cls(
            id=order.id,
            tenant_id=order.tenant_id,
            customer=order.customer,
            items=order.items,
            total=order.total,
            status=order.status,
            payment_method=order.payment_method,
            payment_id=order.payment_id,
            notes=order.notes,
            created_at=order.created_at,
            updated_at=order.updated_at,
        )


class WebhookDataIn(BaseModel):
    id: Optional[str | int] = None


class WebhookDTO(BaseModel):
    """MercadoPago notification body; only ``type`` and ``data.id`` are used."""

    type: str = ""
    data: Optional[WebhookDataIn] = None

    def to_domain(self) -> PaymentNotification:
        payment_id = self.data.id if self.data else None
        return PaymentNotification(type=self.type, payment_id=str(payment_id) if payment_id is not None else None)
