"""
Entity shapes for the replicated state.

The repository keeps records as plain JSON-compatible dicts so a snapshot can
be stored and shipped as-is. These models normalize and default a record at
the mutator boundary: `Product.model_validate(raw).model_dump()`.
Unknown keys are kept (UI collaborators attach their own presentation fields).
"""

from __future__ import annotations

import copy
from dataclasses import dataclass
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .validation import (
    ActivityAction,
    BudgetCategory,
    CashChannel,
    CashMovementType,
    OrderPriority,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    ProductType,
    PurchaseStatus,
    TransactionStatus,
    UserRole,
)


class _Record(BaseModel):
    model_config = ConfigDict(extra="allow")

    @field_validator("id", mode="before", check_fields=False)
    @classmethod
    def _id_as_str(cls, v):
        if v is None:
            return ""
        return str(v).strip()


class ProductVariant(_Record):
    id: str = ""
    name: str = ""
    price: float = 0
    stock: float = Field(default=0, ge=0)
    sku: str = ""


class Product(_Record):
    id: str = ""
    name: str
    price: float = 0
    cost: float = 0
    stock: float = Field(default=0, ge=0)
    category: str = "General"
    sku: str = ""
    type: ProductType = "PRODUCT"
    unit: str = "PIECE"
    is_active: bool = True
    tax_rate: float = 0
    has_variants: bool = False
    variants: list[ProductVariant] = []
    is_consignment: bool = False


class Customer(_Record):
    id: str = ""
    name: str
    email: str = ""
    phone: str = ""
    address: str = ""
    notes: str = ""
    credit_limit: float = 0
    current_debt: float = Field(default=0, ge=0)
    has_unlimited_credit: bool = False
    client_type: str = "INDIVIDUAL"


class Supplier(_Record):
    id: str = ""
    name: str
    contact_person: str = ""
    email: str = ""
    phone: str = ""
    address: str = ""


class PurchaseItem(_Record):
    product_id: str
    variant_id: Optional[str] = None
    variant_name: Optional[str] = None
    name: str = ""
    quantity: float = Field(gt=0)
    unit_cost: float = 0
    total: float = 0


class Purchase(_Record):
    id: str = ""
    supplier_id: str = ""
    supplier_name: str = ""
    date: str = ""
    items: list[PurchaseItem] = []
    total: float = 0
    status: PurchaseStatus = "COMPLETED"
    notes: str = ""


class CartItem(_Record):
    id: str
    name: str = ""
    price: float = 0
    quantity: float = Field(gt=0)
    variant_id: Optional[str] = None
    variant_name: Optional[str] = None


class SplitDetails(BaseModel):
    cash: float = 0
    other: float = 0


class Transaction(_Record):
    id: str = ""
    date: str = ""
    subtotal: float = 0
    tax_amount: float = 0
    discount: float = 0
    shipping: float = 0
    total: float
    items: list[CartItem] = []
    payment_method: PaymentMethod = "cash"
    payment_status: PaymentStatus = "paid"
    amount_paid: float = 0
    split_details: Optional[SplitDetails] = None
    customer_id: Optional[str] = None
    customer_name: Optional[str] = None
    status: TransactionStatus = "completed"
    is_return: bool = False
    original_transaction_id: Optional[str] = None


class Order(_Record):
    id: str = ""
    customer_id: Optional[str] = None
    customer_name: str = ""
    date: str = ""
    delivery_date: Optional[str] = None
    items: list[CartItem] = []
    total: float = 0
    status: OrderStatus = "PENDING"
    notes: str = ""
    priority: OrderPriority = "NORMAL"


class CashMovement(_Record):
    id: str = ""
    type: CashMovementType
    amount: float = Field(ge=0)
    description: str = ""
    date: str = ""
    category: Optional[BudgetCategory] = None
    sub_category: Optional[str] = None
    channel: CashChannel = "cash"
    transaction_id: Optional[str] = None
    customer_id: Optional[str] = None


class User(_Record):
    id: str = ""
    username: str
    full_name: str = ""
    role: UserRole = "CASHIER"
    active: bool = True
    password_hash: str
    salt: str
    last_login: Optional[str] = None
    last_active: Optional[str] = None
    failed_login_attempts: int = 0
    lockout_until: Optional[str] = None
    recovery_code: Optional[str] = None
    security_question: Optional[str] = None
    security_answer_hash: Optional[str] = None
    # Salt the security answer was hashed with; survives password salt rotation.
    security_salt: Optional[str] = None
    two_factor_enabled: bool = False
    two_factor_secret: Optional[str] = None


class UserInvite(_Record):
    code: str
    role: UserRole
    created_at: str
    created_by: str


class ActivityEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    user_id: str
    user_name: str
    user_role: Optional[str] = None
    action: ActivityAction
    details: str = ""
    timestamp: str


DEFAULT_SETTINGS: dict[str, Any] = {
    "name": "My Store",
    "address": "",
    "phone": "",
    "email": "",
    "website": "",
    "tax_id": "",
    "currency": "MXN",
    "tax_rate": 0,
    "enable_tax": False,
    "logo": None,
    "receipt_logo": None,
    "receipt_header": "",
    "receipt_footer": "Thank you for your purchase",
    "ticket_paper_width": "80mm",
    "theme": "light",
    "budget_config": {
        "expenses_percentage": 50,
        "investment_percentage": 30,
        "profit_percentage": 20,
    },
    "notifications_enabled": True,
    "security_config": {
        "auto_lock_minutes": 5,
    },
    "sequences": {
        "customer_start": 1,
        "ticket_start": 1,
        "order_start": 1,
        "product_start": 1000,
    },
    "remote_url": "",
    "remote_secret": "",
    "sync_enabled": False,
}

# Nested settings objects are merged key-by-key over their defaults.
NESTED_SETTINGS_KEYS = ("budget_config", "security_config", "sequences")


def default_business_settings() -> dict[str, Any]:
    return copy.deepcopy(DEFAULT_SETTINGS)


def layer_settings(base: dict[str, Any], overrides: Optional[dict[str, Any]]) -> dict[str, Any]:
    out = copy.deepcopy(base)
    for k, v in (overrides or {}).items():
        if k in NESTED_SETTINGS_KEYS and isinstance(v, dict):
            out[k] = {**(out.get(k) or {}), **copy.deepcopy(v)}
        else:
            out[k] = copy.deepcopy(v)
    return out


@dataclass
class PendingChanges:
    """Local mutations not yet reflected remotely. Never persisted or pushed."""

    flag: bool = False
    since: Optional[str] = None
    # Bumped by every mutation; lets a finished push/pull tell whether the
    # state changed while it was on the wire.
    revision: int = 0
