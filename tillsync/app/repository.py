"""
In-process owner of the business state.

One StateRepository per device process, constructed explicitly and handed to
collaborators (auth, sync engine, UI). Lifecycle: `load()` from durable
storage -> mutators -> `flush()` on teardown.

Every mutator runs to completion under the repository lock, keeps the
structural invariants (stock never negative, debt follows unpaid balances,
sequence ids never reused), records an activity entry where the action is
user-visible, marks pending changes and mirrors the touched collections to
durable storage. Business preconditions ("customer has debt", "enough stock")
are the caller's to check with the accessors before calling.
"""

import copy
import threading
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Iterable, Optional

from pydantic import TypeAdapter

from .activity import ActivityLog
from .logs import json_log
from .models import (
    CashMovement,
    Customer,
    Order,
    PendingChanges,
    Product,
    Purchase,
    Supplier,
    Transaction,
    User,
    UserInvite,
    default_business_settings,
    layer_settings,
)
from .sequences import numeric_id, next_sequence_id
from .storage import CURRENT_USER_KEY
from .validation import OrderStatus, SettlementMethod, StockDirection

EPSILON = 0.01

COLLECTION_KEYS = (
    "products",
    "customers",
    "transactions",
    "suppliers",
    "purchases",
    "orders",
    "cash_movements",
    "users",
    "user_invites",
    "categories",
)
ACTIVITY_KEY = "activity_logs"
SETTINGS_KEY = "settings"
SEQUENCE_MARKS_KEY = "sequence_marks"

# collection -> settings.sequences key holding its first id
SEQUENCE_STARTS = {
    "products": "product_start",
    "customers": "customer_start",
    "orders": "order_start",
    "transactions": "ticket_start",
}

DEFAULT_CATEGORIES = ["General"]

_order_status = TypeAdapter(OrderStatus)
_settlement_method = TypeAdapter(SettlementMethod)
_stock_direction = TypeAdapter(StockDirection)


class TransactionUpdateResult(str, Enum):
    OK = "OK"
    NOT_FOUND = "NOT_FOUND"
    DUPLICATE_ID = "DUPLICATE_ID"


def _money(v) -> float:
    try:
        return round(float(v or 0), 2)
    except (TypeError, ValueError):
        return 0.0


def _qty(v) -> float:
    try:
        n = float(v or 0)
    except (TypeError, ValueError):
        return 0.0
    return int(n) if n.is_integer() else n


def _payment_status(total: float, paid: float) -> str:
    if paid >= total - EPSILON:
        return "paid"
    if paid > 0:
        return "partial"
    return "pending"


def _owed(tx: dict) -> float:
    """Unpaid balance a sale contributes to its customer's debt."""
    if tx.get("status") != "completed" or tx.get("is_return"):
        return 0.0
    return _money(_money(tx.get("total")) - _money(tx.get("amount_paid")))


def _public_actor(user: Optional[dict]) -> Optional[dict]:
    if not user:
        return None
    return {"id": user.get("id"), "username": user.get("username"), "role": user.get("role")}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class StateRepository:
    def __init__(self, storage, clock: Optional[Callable[[], datetime]] = None, activity_cap: int = 500):
        self.storage = storage
        self.clock = clock or _utcnow
        self.lock = threading.RLock()
        self.pending = PendingChanges()
        self.incoming_order: Optional[dict] = None
        self.current_user: Optional[dict] = None
        self._listeners: list[Callable[[], None]] = []
        self._data: dict[str, list] = {k: [] for k in COLLECTION_KEYS}
        self._data["categories"] = list(DEFAULT_CATEGORIES)
        self._activity = ActivityLog([], cap=activity_cap)
        self.settings: dict[str, Any] = default_business_settings()
        self.sequence_marks: dict[str, int] = {}

    # ---- lifecycle -------------------------------------------------------

    def load(self) -> "StateRepository":
        with self.lock:
            for key in COLLECTION_KEYS:
                default = list(DEFAULT_CATEGORIES) if key == "categories" else []
                loaded = self.storage.load(key, default)
                self._data[key] = loaded if isinstance(loaded, list) else default
            self._activity.replace(self.storage.load(ACTIVITY_KEY, []))
            loaded_settings = self.storage.load(SETTINGS_KEY, {})
            self.settings = layer_settings(
                default_business_settings(), loaded_settings if isinstance(loaded_settings, dict) else {}
            )
            marks = self.storage.load(SEQUENCE_MARKS_KEY, {})
            marks = marks if isinstance(marks, dict) else {}
            self.sequence_marks = {k: numeric_id(v) for k, v in marks.items() if numeric_id(v) is not None}
            user = self.storage.load(CURRENT_USER_KEY, None)
            self.current_user = user if isinstance(user, dict) else None
        return self

    def flush(self) -> None:
        with self.lock:
            self._persist(COLLECTION_KEYS + (ACTIVITY_KEY, SETTINGS_KEY, SEQUENCE_MARKS_KEY))
            if self.current_user:
                self.storage.save(CURRENT_USER_KEY, self.current_user)

    def add_change_listener(self, fn: Callable[[], None]) -> None:
        self._listeners.append(fn)

    # ---- internals -------------------------------------------------------

    def now_iso(self) -> str:
        return self.clock().isoformat()

    def _persist(self, keys: Iterable[str]) -> None:
        for key in keys:
            if key == ACTIVITY_KEY:
                value = self._activity.entries()
            elif key == SETTINGS_KEY:
                value = self.settings
            elif key == SEQUENCE_MARKS_KEY:
                value = self.sequence_marks
            else:
                value = self._data[key]
            self.storage.save(key, value)

    def _commit(self, *keys: str) -> None:
        self.pending.flag = True
        if not self.pending.since:
            self.pending.since = self.now_iso()
        self.pending.revision += 1
        self._persist(keys)
        for fn in list(self._listeners):
            try:
                fn()
            except Exception as ex:
                json_log("warning", "repository.listener_failed", error=str(ex))

    def _log(self, action: str, details: str, actor: Optional[dict] = None) -> None:
        self._activity.append(_public_actor(actor or self.current_user), action, details, self.now_iso())

    def _find(self, key: str, record_id) -> Optional[dict]:
        rid = str(record_id)
        for r in self._data[key]:
            if str(r.get("id")) == rid:
                return r
        return None

    def _next_id(self, key: str) -> str:
        start = (self.settings.get("sequences") or {}).get(SEQUENCE_STARTS[key]) or 1
        new_id = next_sequence_id(self._data[key], start, self.sequence_marks.get(key, 0))
        self.sequence_marks[key] = int(new_id)
        return new_id

    def _bump_mark(self, key: str, record_id) -> None:
        n = numeric_id(record_id)
        if n is not None and n > self.sequence_marks.get(key, 0):
            self.sequence_marks[key] = n

    def _apply_stock(self, product_id, qty, direction: str, variant_id=None) -> Optional[dict]:
        direction = _stock_direction.validate_python(direction)
        product = self._find("products", product_id)
        if not product:
            return None
        amount = abs(_qty(qty))

        def moved(current) -> float:
            current = _qty(current)
            if direction == "IN":
                return _qty(current + amount)
            return _qty(max(0, current - amount))

        variants = product.get("variants") or []
        if variant_id and variants:
            for v in variants:
                if str(v.get("id")) == str(variant_id):
                    v["stock"] = moved(v.get("stock"))
            product["stock"] = _qty(sum(_qty(v.get("stock")) for v in variants))
        else:
            product["stock"] = moved(product.get("stock"))
        return product

    def _add_movement(self, movement: dict) -> dict:
        data = CashMovement.model_validate(movement).model_dump()
        if not data["id"]:
            data["id"] = uuid.uuid4().hex
        if not data["date"]:
            data["date"] = self.now_iso()
        self._data["cash_movements"].insert(0, data)
        return data

    def _change_debt(self, customer_id, delta: float) -> None:
        if not customer_id:
            return
        customer = self._find("customers", customer_id)
        if customer:
            customer["current_debt"] = _money(max(0, _money(customer.get("current_debt")) + delta))

    # ---- accessors -------------------------------------------------------

    def collection(self, key: str) -> list[dict]:
        with self.lock:
            if key == ACTIVITY_KEY:
                return self._activity.entries()
            return copy.deepcopy(self._data[key])

    @property
    def products(self) -> list[dict]:
        return self.collection("products")

    @property
    def customers(self) -> list[dict]:
        return self.collection("customers")

    @property
    def transactions(self) -> list[dict]:
        return self.collection("transactions")

    @property
    def cash_movements(self) -> list[dict]:
        return self.collection("cash_movements")

    @property
    def orders(self) -> list[dict]:
        return self.collection("orders")

    @property
    def users(self) -> list[dict]:
        return self.collection("users")

    @property
    def user_invites(self) -> list[dict]:
        return self.collection("user_invites")

    @property
    def activity_logs(self) -> list[dict]:
        return self._activity.entries()

    def has_activity(self) -> bool:
        return not self._activity.is_empty()

    def is_locally_empty(self) -> bool:
        with self.lock:
            return not self._data["products"] and not self._data["customers"]

    def get(self, key: str, record_id) -> Optional[dict]:
        with self.lock:
            found = self._find(key, record_id)
            return copy.deepcopy(found) if found else None

    def get_product(self, product_id) -> Optional[dict]:
        return self.get("products", product_id)

    def get_customer(self, customer_id) -> Optional[dict]:
        return self.get("customers", customer_id)

    def get_transaction(self, tx_id) -> Optional[dict]:
        return self.get("transactions", tx_id)

    def get_order(self, order_id) -> Optional[dict]:
        return self.get("orders", order_id)

    def get_user(self, user_id) -> Optional[dict]:
        return self.get("users", user_id)

    def find_user_by_username(self, username: str) -> Optional[dict]:
        name = (username or "").strip().lower()
        if not name:
            return None
        with self.lock:
            for u in self._data["users"]:
                if str(u.get("username") or "").lower() == name:
                    return copy.deepcopy(u)
        return None

    def find_invite(self, code: str) -> Optional[dict]:
        c = (code or "").strip().upper()
        with self.lock:
            for i in self._data["user_invites"]:
                if str(i.get("code") or "").upper() == c:
                    return dict(i)
        return None

    def cash_drawer_balance(self) -> float:
        total = 0.0
        with self.lock:
            for m in self._data["cash_movements"]:
                if m.get("channel", "cash") != "cash":
                    continue
                if m.get("type") in {"DEPOSIT", "OPEN"}:
                    total += _money(m.get("amount"))
                elif m.get("type") in {"EXPENSE", "WITHDRAWAL"}:
                    total -= _money(m.get("amount"))
        return _money(total)

    # ---- activity --------------------------------------------------------

    def record_activity(self, action: str, details: str, actor: Optional[dict] = None) -> None:
        with self.lock:
            self._log(action, details, actor=actor)
            self._commit(ACTIVITY_KEY)

    # ---- products & categories -------------------------------------------

    def add_product(self, product: dict) -> dict:
        with self.lock:
            data = Product.model_validate(product).model_dump()
            if not data["id"] or self._find("products", data["id"]):
                data["id"] = self._next_id("products")
            else:
                self._bump_mark("products", data["id"])
            if data["variants"]:
                data["has_variants"] = True
                data["stock"] = _qty(sum(_qty(v["stock"]) for v in data["variants"]))
            self._data["products"].append(data)
            self._log("INVENTORY", f"Product added: {data['name']}")
            self._commit("products", ACTIVITY_KEY, SEQUENCE_MARKS_KEY)
            return copy.deepcopy(data)

    def update_product(self, product: dict) -> bool:
        with self.lock:
            data = Product.model_validate(product).model_dump()
            existing = self._find("products", data["id"])
            if not existing:
                return False
            if data["variants"]:
                data["stock"] = _qty(sum(_qty(v["stock"]) for v in data["variants"]))
            existing.clear()
            existing.update(data)
            self._log("INVENTORY", f"Product updated: {data['name']}")
            self._commit("products", ACTIVITY_KEY)
            return True

    def delete_product(self, product_id) -> bool:
        with self.lock:
            existing = self._find("products", product_id)
            if not existing:
                return False
            self._data["products"].remove(existing)
            self._log("INVENTORY", f"Product deleted: {existing.get('name')}")
            self._commit("products", ACTIVITY_KEY)
            return True

    def adjust_stock(self, product_id, qty, direction: str, variant_id=None) -> bool:
        with self.lock:
            product = self._apply_stock(product_id, qty, direction, variant_id)
            if product is None:
                return False
            self._log(
                "INVENTORY",
                f"Stock {str(direction).upper()} {_qty(qty)} for {product.get('name')} (#{product.get('id')})",
            )
            self._commit("products", ACTIVITY_KEY)
            return True

    def update_stock_after_sale(self, items: list[dict]) -> None:
        with self.lock:
            for item in items or []:
                self.adjust_stock(item.get("id"), item.get("quantity"), "OUT", item.get("variant_id"))

    def register_production_surplus(self, order_id, items: list[dict]) -> None:
        with self.lock:
            for item in items or []:
                if _qty(item.get("quantity")) > 0:
                    self._apply_stock(item.get("id"), item.get("quantity"), "IN", item.get("variant_id"))
            self._log("INVENTORY", f"Production surplus from order #{order_id}")
            self._commit("products", ACTIVITY_KEY)

    def add_category(self, name: str) -> bool:
        name = (name or "").strip()
        with self.lock:
            if not name or name in self._data["categories"]:
                return False
            self._data["categories"].append(name)
            self._commit("categories")
            return True

    def remove_category(self, name: str) -> bool:
        with self.lock:
            if name not in self._data["categories"]:
                return False
            self._data["categories"].remove(name)
            self._commit("categories")
            return True

    # ---- customers & suppliers -------------------------------------------

    def add_customer(self, customer: dict) -> dict:
        with self.lock:
            data = Customer.model_validate(customer).model_dump()
            data["id"] = self._next_id("customers")
            self._data["customers"].append(data)
            self._log("CRM", f"Customer added: {data['name']}")
            self._commit("customers", ACTIVITY_KEY, SEQUENCE_MARKS_KEY)
            return copy.deepcopy(data)

    def update_customer(self, customer: dict) -> bool:
        with self.lock:
            data = Customer.model_validate(customer).model_dump()
            existing = self._find("customers", data["id"])
            if not existing:
                return False
            existing.clear()
            existing.update(data)
            self._commit("customers")
            return True

    def delete_customer(self, customer_id) -> bool:
        with self.lock:
            existing = self._find("customers", customer_id)
            if not existing:
                return False
            self._data["customers"].remove(existing)
            self._log("CRM", f"Customer deleted: {existing.get('name')}")
            self._commit("customers", ACTIVITY_KEY)
            return True

    def process_customer_payment(self, customer_id, amount, method: str = "cash") -> bool:
        method = _settlement_method.validate_python(method)
        amount = _money(amount)
        with self.lock:
            customer = self._find("customers", customer_id)
            if not customer or amount <= 0:
                return False
            self._change_debt(customer_id, -amount)
            if method != "credit":
                self._add_movement(
                    {
                        "type": "DEPOSIT",
                        "amount": amount,
                        "description": f"Customer payment: {customer.get('name')}",
                        "category": "SALES",
                        "channel": "cash" if method == "cash" else "non_cash",
                        "customer_id": str(customer_id),
                    }
                )
            self._log("CRM", f"Payment from customer #{customer_id}: {amount:.2f}")
            self._commit("customers", "cash_movements", ACTIVITY_KEY)
            return True

    def add_supplier(self, supplier: dict) -> dict:
        with self.lock:
            data = Supplier.model_validate(supplier).model_dump()
            if not data["id"]:
                data["id"] = uuid.uuid4().hex
            self._data["suppliers"].append(data)
            self._log("CRM", f"Supplier added: {data['name']}")
            self._commit("suppliers", ACTIVITY_KEY)
            return copy.deepcopy(data)

    def update_supplier(self, supplier: dict) -> bool:
        with self.lock:
            data = Supplier.model_validate(supplier).model_dump()
            existing = self._find("suppliers", data["id"])
            if not existing:
                return False
            existing.clear()
            existing.update(data)
            self._commit("suppliers")
            return True

    def delete_supplier(self, supplier_id) -> bool:
        with self.lock:
            existing = self._find("suppliers", supplier_id)
            if not existing:
                return False
            self._data["suppliers"].remove(existing)
            self._commit("suppliers")
            return True

    # ---- transactions ----------------------------------------------------

    def _sale_movements(self, tx: dict) -> list[dict]:
        paid = _money(tx["amount_paid"])
        method = tx["payment_method"]
        if method == "cash":
            parts = [("cash", paid)]
        elif method in {"card", "transfer"}:
            parts = [("non_cash", paid)]
        elif method == "split":
            split = tx.get("split_details") or {}
            if split:
                parts = [("cash", _money(split.get("cash"))), ("non_cash", _money(split.get("other")))]
            else:
                parts = [("cash", paid)]
        else:
            parts = []

        out = []
        for channel, amount in parts:
            if amount <= 0:
                continue
            out.append(
                {
                    "id": f"mv_{tx['id']}" if channel == "cash" else f"mv_{tx['id']}_other",
                    "type": "DEPOSIT",
                    "amount": amount,
                    "description": f"Sale #{tx['id']}" + ("" if channel == "cash" else f" ({method})"),
                    "date": tx["date"],
                    "category": "SALES",
                    "channel": channel,
                    "transaction_id": tx["id"],
                    "customer_id": tx.get("customer_id"),
                }
            )
        return out

    def add_transaction(self, tx: dict, affect_cash: Optional[bool] = None) -> dict:
        with self.lock:
            data = Transaction.model_validate(tx).model_dump()
            if not data["id"] or self._find("transactions", data["id"]):
                data["id"] = self._next_id("transactions")
            else:
                self._bump_mark("transactions", data["id"])
            if not data["date"]:
                data["date"] = self.now_iso()
            data["amount_paid"] = _money(data["amount_paid"])
            data["total"] = _money(data["total"])
            counts = data["status"] == "completed" and not data["is_return"]
            if counts:
                data["payment_status"] = _payment_status(data["total"], data["amount_paid"])
            self._data["transactions"].insert(0, data)

            balance = _money(data["total"] - data["amount_paid"])
            if counts and data["customer_id"] and balance > EPSILON:
                self._change_debt(data["customer_id"], balance)

            if counts and affect_cash is not False and data["amount_paid"] > 0:
                for mv in self._sale_movements(data):
                    self._add_movement(mv)

            self._log("SALE", f"Sale #{data['id']}")
            self._commit("transactions", "customers", "cash_movements", ACTIVITY_KEY, SEQUENCE_MARKS_KEY)
            return copy.deepcopy(data)

    def update_transaction(self, old_id, updates: dict) -> TransactionUpdateResult:
        old_id = str(old_id)
        with self.lock:
            tx = self._find("transactions", old_id)
            if not tx:
                return TransactionUpdateResult.NOT_FOUND
            new_id = str(updates.get("id") or old_id)
            if new_id != old_id and self._find("transactions", new_id):
                return TransactionUpdateResult.DUPLICATE_ID
            merged = Transaction.model_validate({**tx, **updates, "id": new_id}).model_dump()
            merged["total"] = _money(merged["total"])
            merged["amount_paid"] = _money(merged["amount_paid"])

            # Debt is re-derived from the edited totals.
            old_balance = _owed(tx)
            if old_balance > EPSILON:
                self._change_debt(tx.get("customer_id"), -old_balance)
            if merged["status"] == "completed" and not merged["is_return"]:
                merged["payment_status"] = _payment_status(merged["total"], merged["amount_paid"])
            new_balance = _owed(merged)
            if new_balance > EPSILON:
                self._change_debt(merged.get("customer_id"), new_balance)

            tx.clear()
            tx.update(merged)
            if new_id != old_id:
                self._bump_mark("transactions", new_id)
                for m in self._data["cash_movements"]:
                    mid = str(m.get("id"))
                    if m.get("transaction_id") != old_id and mid not in (f"mv_{old_id}", f"mv_{old_id}_other"):
                        continue
                    m["transaction_id"] = new_id
                    if mid == f"mv_{old_id}" or mid == f"mv_{old_id}_other":
                        m["id"] = f"mv_{new_id}" + mid[len(f"mv_{old_id}"):]
                    m["description"] = str(m.get("description") or "").replace(f"#{old_id}", f"#{new_id}")
            self._log("SALE", f"Sale #{old_id} edited" + (f" -> #{new_id}" if new_id != old_id else ""))
            self._commit("transactions", "customers", "cash_movements", ACTIVITY_KEY, SEQUENCE_MARKS_KEY)
            return TransactionUpdateResult.OK

    def register_transaction_payment(self, tx_id, amount, method: str) -> bool:
        method = _settlement_method.validate_python(method)
        amount = _money(amount)
        with self.lock:
            tx = self._find("transactions", tx_id)
            if not tx or amount <= 0:
                return False
            tx["amount_paid"] = _money(_money(tx.get("amount_paid")) + amount)
            tx["payment_status"] = _payment_status(_money(tx.get("total")), tx["amount_paid"])
            self._change_debt(tx.get("customer_id"), -amount)
            if method != "credit":
                self._add_movement(
                    {
                        "id": f"pay_{tx['id']}_{uuid.uuid4().hex[:8]}",
                        "type": "DEPOSIT",
                        "amount": amount,
                        "description": f"Payment for sale #{tx['id']} ({method})",
                        "category": "SALES",
                        "channel": "cash" if method == "cash" else "non_cash",
                        "transaction_id": str(tx["id"]),
                        "customer_id": tx.get("customer_id"),
                    }
                )
            self._log("SALE", f"Payment of {amount:.2f} registered for sale #{tx['id']}")
            self._commit("transactions", "customers", "cash_movements", ACTIVITY_KEY)
            return True

    def delete_transaction(self, tx_id, items: Optional[list[dict]] = None) -> bool:
        """Cancel a sale: stock comes back, the record stays for audit."""
        with self.lock:
            tx = self._find("transactions", tx_id)
            if not tx or tx.get("status") == "cancelled":
                return False
            tid = str(tx["id"])
            balance = _owed(tx)
            if balance > EPSILON:
                self._change_debt(tx.get("customer_id"), -balance)

            for item in tx.get("items") if items is None else items:
                self._apply_stock(item.get("id"), item.get("quantity"), "IN", item.get("variant_id"))

            if _money(tx.get("amount_paid")) > 0:
                tx["payment_status"] = "refunded"
            tx["status"] = "cancelled"
            tx["amount_paid"] = 0

            derived = (f"mv_{tid}_", f"pay_{tid}_")
            self._data["cash_movements"] = [
                m
                for m in self._data["cash_movements"]
                if str(m.get("transaction_id") or "") != tid
                and str(m.get("id")) != f"mv_{tid}"
                and not str(m.get("id")).startswith(derived)
            ]
            self._log("SALE", f"Sale #{tid} cancelled")
            self._commit("transactions", "products", "customers", "cash_movements", ACTIVITY_KEY)
            return True

    # ---- purchases & orders ----------------------------------------------

    def add_purchase(self, purchase: dict) -> dict:
        with self.lock:
            data = Purchase.model_validate(purchase).model_dump()
            if not data["id"]:
                data["id"] = uuid.uuid4().hex
            if not data["date"]:
                data["date"] = self.now_iso()
            data["status"] = "COMPLETED"
            self._data["purchases"].append(data)
            for item in data["items"]:
                self._apply_stock(item["product_id"], item["quantity"], "IN", item.get("variant_id"))
            if _money(data["total"]) > 0:
                self._add_movement(
                    {
                        "id": f"purch_{data['id']}",
                        "type": "EXPENSE",
                        "amount": _money(data["total"]),
                        "description": f"Purchase from {data['supplier_name'] or data['supplier_id']}",
                        "date": data["date"],
                        "category": "OPERATIONAL",
                    }
                )
            self._log("INVENTORY", f"Purchase from {data['supplier_name'] or data['supplier_id']}")
            self._commit("purchases", "products", "cash_movements", ACTIVITY_KEY)
            return copy.deepcopy(data)

    def add_order(self, order: dict) -> dict:
        with self.lock:
            data = Order.model_validate(order).model_dump()
            data["id"] = self._next_id("orders")
            if not data["date"]:
                data["date"] = self.now_iso()
            self._data["orders"].append(data)
            self._log("ORDER", f"Order #{data['id']} created")
            self._commit("orders", ACTIVITY_KEY, SEQUENCE_MARKS_KEY)
            return copy.deepcopy(data)

    def update_order(self, order: dict) -> bool:
        with self.lock:
            data = Order.model_validate(order).model_dump()
            existing = self._find("orders", data["id"])
            if not existing:
                return False
            existing.clear()
            existing.update(data)
            self._log("ORDER", f"Order #{data['id']} edited")
            self._commit("orders", ACTIVITY_KEY)
            return True

    def update_order_status(self, order_id, status: str) -> bool:
        status = _order_status.validate_python(status)
        with self.lock:
            existing = self._find("orders", order_id)
            if not existing:
                return False
            existing["status"] = status
            self._log("ORDER", f"Order #{order_id} moved to {status}")
            self._commit("orders", ACTIVITY_KEY)
            return True

    def delete_order(self, order_id) -> bool:
        with self.lock:
            existing = self._find("orders", order_id)
            if not existing:
                return False
            self._data["orders"].remove(existing)
            self._log("ORDER", f"Order #{order_id} deleted")
            self._commit("orders", ACTIVITY_KEY)
            return True

    def send_order_to_pos(self, order_id) -> Optional[dict]:
        with self.lock:
            existing = self._find("orders", order_id)
            if not existing:
                return None
            self._data["orders"].remove(existing)
            self.incoming_order = copy.deepcopy(existing)
            self._log("ORDER", f"Order #{order_id} sent to the register")
            self._commit("orders", ACTIVITY_KEY)
            return copy.deepcopy(existing)

    def clear_incoming_order(self) -> None:
        self.incoming_order = None

    # ---- cash ------------------------------------------------------------

    def add_cash_movement(self, movement: dict) -> dict:
        with self.lock:
            data = self._add_movement(movement)
            self._log("CASH", f"{data['type']}: {data['description']}")
            self._commit("cash_movements", ACTIVITY_KEY)
            return copy.deepcopy(data)

    def delete_cash_movement(self, movement_id) -> bool:
        with self.lock:
            existing = self._find("cash_movements", movement_id)
            if not existing:
                return False
            self._data["cash_movements"].remove(existing)
            self._log("CASH", f"Cash movement removed: {existing.get('description')}")
            self._commit("cash_movements", ACTIVITY_KEY)
            return True

    # ---- users, invites, session -----------------------------------------

    def add_user(self, user: dict, log: bool = True) -> dict:
        with self.lock:
            data = User.model_validate(user).model_dump()
            if not data["id"]:
                data["id"] = uuid.uuid4().hex
            self._data["users"].append(data)
            if log:
                self._log("USER_MGMT", f"User created: {data['username']}")
            self._commit("users", ACTIVITY_KEY)
            return copy.deepcopy(data)

    def update_user(self, user: dict) -> bool:
        with self.lock:
            data = User.model_validate(user).model_dump()
            existing = self._find("users", data["id"])
            if not existing:
                return False
            existing.clear()
            existing.update(data)
            if self.current_user and str(self.current_user.get("id")) == str(data["id"]):
                self.set_current_user(data)
            self._commit("users")
            return True

    def delete_user(self, user_id) -> bool:
        with self.lock:
            existing = self._find("users", user_id)
            if not existing:
                return False
            self._data["users"].remove(existing)
            self._log("USER_MGMT", f"User deleted: {existing.get('username')}")
            self._commit("users", ACTIVITY_KEY)
            return True

    def seed_user(self, user: dict) -> dict:
        """Insert a user without activity or pending changes (first-run bootstrap)."""
        with self.lock:
            data = User.model_validate(user).model_dump()
            if not data["id"]:
                data["id"] = uuid.uuid4().hex
            self._data["users"].append(data)
            self._persist(("users",))
            return copy.deepcopy(data)

    def add_invite(self, invite: dict) -> dict:
        with self.lock:
            data = UserInvite.model_validate(invite).model_dump()
            self._data["user_invites"].append(data)
            self._commit("user_invites")
            return dict(data)

    def delete_invite(self, code: str) -> bool:
        c = (code or "").strip().upper()
        with self.lock:
            before = len(self._data["user_invites"])
            self._data["user_invites"] = [
                i for i in self._data["user_invites"] if str(i.get("code") or "").upper() != c
            ]
            if len(self._data["user_invites"]) == before:
                return False
            self._commit("user_invites")
            return True

    def set_current_user(self, user: Optional[dict]) -> None:
        self.current_user = copy.deepcopy(user) if user else None
        if self.current_user:
            self.storage.save(CURRENT_USER_KEY, self.current_user)
        else:
            self.storage.remove(CURRENT_USER_KEY)

    def clear_current_user(self) -> None:
        self.set_current_user(None)

    # ---- settings --------------------------------------------------------

    def update_settings(self, changes: dict) -> dict:
        with self.lock:
            self.settings = layer_settings(self.settings, changes)
            self._log("SETTINGS", "Settings updated")
            self._commit(SETTINGS_KEY, ACTIVITY_KEY)
            return copy.deepcopy(self.settings)

    # ---- snapshots -------------------------------------------------------

    def snapshot(self) -> dict[str, Any]:
        with self.lock:
            out: dict[str, Any] = {k: copy.deepcopy(v) for k, v in self._data.items()}
            out[ACTIVITY_KEY] = self._activity.entries()
            out[SETTINGS_KEY] = copy.deepcopy(self.settings)
            out[SEQUENCE_MARKS_KEY] = dict(self.sequence_marks)
            return out

    def _apply(self, data: dict, merge_settings: Callable[[dict, dict], dict]) -> None:
        for key in COLLECTION_KEYS:
            if isinstance(data.get(key), list):
                self._data[key] = copy.deepcopy(data[key])
        if isinstance(data.get(ACTIVITY_KEY), list):
            self._activity.replace(data[ACTIVITY_KEY])
        if isinstance(data.get(SETTINGS_KEY), dict):
            self.settings = merge_settings(self.settings, data[SETTINGS_KEY])
        marks = data.get(SEQUENCE_MARKS_KEY)
        for key, mark in (marks if isinstance(marks, dict) else {}).items():
            n = numeric_id(mark)
            if n is not None and n > self.sequence_marks.get(key, 0):
                self.sequence_marks[key] = n
        if self.current_user:
            fresh = self._find("users", self.current_user.get("id"))
            if fresh:
                self.set_current_user(fresh)

    def apply_remote_snapshot(self, data: dict, merge_settings: Callable[[dict, dict], dict], expected_revision: int) -> bool:
        """
        Replace local collections with a pulled snapshot, unless the state was
        mutated after `expected_revision` was read (the pull is then stale).
        """
        with self.lock:
            if self.pending.revision != expected_revision:
                return False
            self._apply(data, merge_settings)
            self._persist(COLLECTION_KEYS + (ACTIVITY_KEY, SETTINGS_KEY, SEQUENCE_MARKS_KEY))
            self.pending.flag = False
            self.pending.since = None
            return True

    def import_data(self, data: dict) -> bool:
        """Load a manual backup; unlike a pull this is a local change to push."""
        if not isinstance(data, dict):
            return False
        with self.lock:
            self._apply(data, lambda local, incoming: layer_settings(default_business_settings(), incoming))
            self._log("SETTINGS", "Data imported from backup")
            self._commit(*(COLLECTION_KEYS + (ACTIVITY_KEY, SETTINGS_KEY, SEQUENCE_MARKS_KEY)))
            return True

    def clear_pending(self, expected_revision: Optional[int] = None) -> bool:
        with self.lock:
            if expected_revision is not None and self.pending.revision != expected_revision:
                return False
            self.pending.flag = False
            self.pending.since = None
            return True

    def hard_reset(self) -> None:
        """Drop the pending marker so the next (forced) pull may overwrite local state."""
        self.clear_pending()
