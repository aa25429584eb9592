from __future__ import annotations

from typing import Annotated, Literal

from pydantic import BeforeValidator, StringConstraints


def _to_upper_str(v):
    if v is None:
        return v
    return str(v).strip().upper()


def _to_lower_str(v):
    if v is None:
        return v
    return str(v).strip().lower()


UserRole = Annotated[Literal["ADMIN", "MANAGER", "CASHIER"], BeforeValidator(_to_upper_str)]
ProductType = Annotated[Literal["PRODUCT", "SERVICE", "SUPPLY"], BeforeValidator(_to_upper_str)]
StockDirection = Annotated[Literal["IN", "OUT"], BeforeValidator(_to_upper_str)]

PaymentMethod = Annotated[
    Literal["cash", "card", "transfer", "credit", "split"],
    BeforeValidator(_to_lower_str),
]
# Methods accepted for a follow-up payment on an existing sale.
SettlementMethod = Annotated[
    Literal["cash", "card", "transfer", "credit"],
    BeforeValidator(_to_lower_str),
]
PaymentStatus = Annotated[Literal["paid", "partial", "pending", "refunded"], BeforeValidator(_to_lower_str)]
TransactionStatus = Annotated[Literal["completed", "cancelled", "returned"], BeforeValidator(_to_lower_str)]

OrderStatus = Annotated[Literal["PENDING", "IN_PROGRESS", "READY", "COMPLETED"], BeforeValidator(_to_upper_str)]
OrderPriority = Annotated[Literal["NORMAL", "HIGH"], BeforeValidator(_to_upper_str)]
PurchaseStatus = Annotated[Literal["COMPLETED", "CANCELLED"], BeforeValidator(_to_upper_str)]

CashMovementType = Annotated[
    Literal["OPEN", "CLOSE", "EXPENSE", "DEPOSIT", "WITHDRAWAL"],
    BeforeValidator(_to_upper_str),
]
CashChannel = Annotated[Literal["cash", "non_cash"], BeforeValidator(_to_lower_str)]
BudgetCategory = Annotated[
    Literal["OPERATIONAL", "INVESTMENT", "PROFIT", "SALES", "EQUITY", "THIRD_PARTY", "OTHER"],
    BeforeValidator(_to_upper_str),
]

ActivityAction = Annotated[
    Literal["LOGIN", "SALE", "INVENTORY", "SETTINGS", "USER_MGMT", "SECURITY", "CASH", "ORDER", "CRM", "RECOVERY"],
    BeforeValidator(_to_upper_str),
]

# Usernames are matched case-insensitively; keep a tight, stable character set.
Username = Annotated[
    str,
    BeforeValidator(lambda v: v if v is None else str(v).strip()),
    StringConstraints(min_length=3, max_length=32, pattern=r"^[A-Za-z0-9][A-Za-z0-9_.-]*$"),
]
