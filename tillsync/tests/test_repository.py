import pytest

from tillsync.app.repository import StateRepository, TransactionUpdateResult
from tillsync.app.settings_merge import merge_settings


def _product(repo, stock=10, **extra):
    return repo.add_product({"name": "Pan dulce", "price": 12, "stock": stock, **extra})


def _sale(repo, product, qty, **extra):
    tx = {
        "total": product["price"] * qty,
        "amount_paid": product["price"] * qty,
        "payment_method": "cash",
        "items": [{"id": product["id"], "name": product["name"], "price": product["price"], "quantity": qty}],
        **extra,
    }
    saved = repo.add_transaction(tx)
    repo.update_stock_after_sale(saved["items"])
    return saved


def test_stock_out_is_floored_at_zero(repo):
    p = _product(repo, stock=10)
    for _ in range(3):
        assert repo.adjust_stock(p["id"], 5, "OUT") is True
    assert repo.get_product(p["id"])["stock"] == 0
    inventory = [e for e in repo.activity_logs if e["action"] == "INVENTORY"]
    assert len(inventory) >= 3


def test_stock_in_and_unknown_direction(repo):
    p = _product(repo, stock=1)
    repo.adjust_stock(p["id"], 4, "in")
    assert repo.get_product(p["id"])["stock"] == 5
    with pytest.raises(ValueError):
        repo.adjust_stock(p["id"], 1, "SIDEWAYS")
    assert repo.adjust_stock("missing", 1, "IN") is False


def test_variant_stock_recomputes_aggregate(repo):
    p = repo.add_product(
        {
            "name": "Playera",
            "variants": [{"id": "s", "name": "S", "stock": 3}, {"id": "m", "name": "M", "stock": 4}],
        }
    )
    assert p["stock"] == 7
    repo.adjust_stock(p["id"], 10, "OUT", variant_id="s")
    fresh = repo.get_product(p["id"])
    assert [v["stock"] for v in fresh["variants"]] == [0, 4]
    assert fresh["stock"] == 4


def test_product_ids_follow_sequence_and_are_never_reused(repo):
    a = _product(repo)
    b = _product(repo)
    assert (a["id"], b["id"]) == ("1000", "1001")
    repo.delete_product(b["id"])
    c = _product(repo)
    assert c["id"] == "1002"


def test_sequence_marks_survive_reload(storage, clock, repo):
    _product(repo)
    last = _product(repo)
    repo.delete_product(last["id"])
    reloaded = StateRepository(storage, clock=clock).load()
    assert reloaded.add_product({"name": "Otro"})["id"] == "1002"


def test_credit_sale_then_payment_restores_debt(repo):
    customer = repo.add_customer({"name": "C1"})
    tx = repo.add_transaction(
        {"total": 100, "amount_paid": 40, "payment_method": "credit", "customer_id": customer["id"]}
    )
    assert repo.get_customer(customer["id"])["current_debt"] == 60
    assert tx["payment_status"] == "partial"
    assert repo.cash_movements == []

    assert repo.register_transaction_payment(tx["id"], 60, "cash") is True
    assert repo.get_customer(customer["id"])["current_debt"] == 0
    assert repo.get_transaction(tx["id"])["payment_status"] == "paid"
    (mv,) = repo.cash_movements
    assert mv["id"].startswith(f"pay_{tx['id']}_")
    assert mv["channel"] == "cash"
    assert mv["transaction_id"] == tx["id"]


def test_payment_rejects_unknown_method(repo):
    tx = repo.add_transaction({"total": 10, "amount_paid": 0, "payment_method": "credit"})
    with pytest.raises(ValueError):
        repo.register_transaction_payment(tx["id"], 5, "bitcoin")
    assert repo.register_transaction_payment(tx["id"], 0, "cash") is False
    assert repo.register_transaction_payment("nope", 5, "cash") is False


def test_debt_tracks_outstanding_balances_across_operations(repo):
    customer = repo.add_customer({"name": "C1"})
    cid = customer["id"]
    t1 = repo.add_transaction({"total": 50, "amount_paid": 0, "payment_method": "credit", "customer_id": cid})
    t2 = repo.add_transaction({"total": 80, "amount_paid": 30, "payment_method": "credit", "customer_id": cid})
    repo.register_transaction_payment(t2["id"], 20, "card")
    assert repo.get_customer(cid)["current_debt"] == 80

    repo.delete_transaction(t1["id"])
    assert repo.get_customer(cid)["current_debt"] == 30
    tx = repo.get_transaction(t2["id"])
    assert repo.get_customer(cid)["current_debt"] == tx["total"] - tx["amount_paid"]


def test_delete_transaction_restores_stock_and_drops_movements(repo):
    p = _product(repo, stock=10)
    tx = _sale(repo, p, 2)
    assert repo.get_product(p["id"])["stock"] == 8
    assert [m["id"] for m in repo.cash_movements] == [f"mv_{tx['id']}"]

    assert repo.delete_transaction(tx["id"]) is True
    cancelled = repo.get_transaction(tx["id"])
    assert cancelled["status"] == "cancelled"
    assert cancelled["amount_paid"] == 0
    assert repo.get_product(p["id"])["stock"] == 10
    assert repo.cash_movements == []

    # Cancelling twice must not return stock twice.
    assert repo.delete_transaction(tx["id"]) is False
    assert repo.get_product(p["id"])["stock"] == 10


def test_split_payment_emits_cash_and_non_cash_movements(repo):
    tx = repo.add_transaction(
        {"total": 100, "amount_paid": 100, "payment_method": "split", "split_details": {"cash": 30, "other": 70}}
    )
    by_id = {m["id"]: m for m in repo.cash_movements}
    assert by_id[f"mv_{tx['id']}"]["amount"] == 30
    assert by_id[f"mv_{tx['id']}"]["channel"] == "cash"
    assert by_id[f"mv_{tx['id']}_other"]["amount"] == 70
    assert by_id[f"mv_{tx['id']}_other"]["channel"] == "non_cash"
    assert repo.cash_drawer_balance() == 30


def test_card_sale_is_not_drawer_cash_and_affect_cash_false_suppresses(repo):
    tx = repo.add_transaction({"total": 40, "amount_paid": 40, "payment_method": "card"})
    assert [m["id"] for m in repo.cash_movements] == [f"mv_{tx['id']}_other"]
    assert repo.cash_drawer_balance() == 0
    repo.add_transaction({"total": 10, "amount_paid": 10, "payment_method": "cash"}, affect_cash=False)
    assert len(repo.cash_movements) == 1


def test_update_transaction_rename_and_duplicate(repo):
    a = repo.add_transaction({"total": 10, "amount_paid": 10})
    b = repo.add_transaction({"total": 20, "amount_paid": 20})
    assert repo.update_transaction(a["id"], {"id": b["id"]}) == TransactionUpdateResult.DUPLICATE_ID
    assert repo.update_transaction("404", {"total": 1}) == TransactionUpdateResult.NOT_FOUND

    assert repo.update_transaction(a["id"], {"id": "900"}) == TransactionUpdateResult.OK
    assert repo.get_transaction("900")["total"] == 10
    ids = {m["id"] for m in repo.cash_movements}
    assert "mv_900" in ids and f"mv_{a['id']}" not in ids
    assert repo.add_transaction({"total": 1, "amount_paid": 1})["id"] == "901"


def test_explicit_transaction_id_is_not_duplicated(repo):
    first = repo.add_transaction({"id": "7", "total": 10, "amount_paid": 10, "payment_method": "cash"})
    second = repo.add_transaction({"id": "7", "total": 30, "amount_paid": 0, "payment_method": "credit"})
    assert first["id"] == "7"
    assert second["id"] != "7"
    ids = [t["id"] for t in repo.transactions]
    assert len(ids) == len(set(ids))
    assert [m["id"] for m in repo.cash_movements] == ["mv_7"]

    assert repo.delete_transaction("7") is True
    assert repo.get_transaction(second["id"])["status"] == "completed"


def test_update_transaction_rederives_debt_and_payment_status(repo):
    customer = repo.add_customer({"name": "C1"})
    cid = customer["id"]
    tx = repo.add_transaction({"total": 100, "amount_paid": 40, "payment_method": "credit", "customer_id": cid})
    assert repo.get_customer(cid)["current_debt"] == 60

    assert repo.update_transaction(tx["id"], {"amount_paid": 100}) == TransactionUpdateResult.OK
    assert repo.get_customer(cid)["current_debt"] == 0
    assert repo.get_transaction(tx["id"])["payment_status"] == "paid"

    assert repo.delete_transaction(tx["id"]) is True
    assert repo.get_customer(cid)["current_debt"] == 0


def test_update_transaction_moves_debt_between_customers(repo):
    a = repo.add_customer({"name": "A"})
    b = repo.add_customer({"name": "B"})
    tx = repo.add_transaction({"total": 50, "amount_paid": 10, "payment_method": "credit", "customer_id": a["id"]})

    repo.update_transaction(tx["id"], {"customer_id": b["id"], "total": 70})
    assert repo.get_customer(a["id"])["current_debt"] == 0
    assert repo.get_customer(b["id"])["current_debt"] == 60
    assert repo.get_transaction(tx["id"])["payment_status"] == "partial"

    repo.update_transaction(tx["id"], {"status": "cancelled"})
    assert repo.get_customer(b["id"])["current_debt"] == 0


def test_purchase_adds_stock_and_expense(repo):
    p = _product(repo, stock=2)
    repo.add_cash_movement({"type": "OPEN", "amount": 500, "description": "Opening fund"})
    purchase = repo.add_purchase(
        {"supplier_name": "Harinas SA", "total": 120, "items": [{"product_id": p["id"], "quantity": 6, "unit_cost": 20}]}
    )
    assert repo.get_product(p["id"])["stock"] == 8
    expense = [m for m in repo.cash_movements if m["id"] == f"purch_{purchase['id']}"]
    assert expense and expense[0]["type"] == "EXPENSE"
    assert repo.cash_drawer_balance() == 380


def test_customer_payment_floors_debt(repo):
    customer = repo.add_customer({"name": "C2"})
    repo.add_transaction({"total": 30, "amount_paid": 0, "payment_method": "credit", "customer_id": customer["id"]})
    assert repo.process_customer_payment(customer["id"], 50, "transfer") is True
    assert repo.get_customer(customer["id"])["current_debt"] == 0
    assert repo.cash_movements[0]["channel"] == "non_cash"


def test_orders_flow_to_register(repo):
    order = repo.add_order({"customer_name": "Ana", "total": 250})
    assert order["id"] == "1"
    assert repo.update_order_status(order["id"], "in_progress") is True
    assert repo.get_order(order["id"])["status"] == "IN_PROGRESS"
    with pytest.raises(ValueError):
        repo.update_order_status(order["id"], "SHIPPED")

    sent = repo.send_order_to_pos(order["id"])
    assert sent["id"] == order["id"]
    assert repo.incoming_order["id"] == order["id"]
    assert repo.orders == []
    repo.clear_incoming_order()
    assert repo.incoming_order is None


def test_mutations_mark_pending_and_notify(repo):
    calls = []
    repo.add_change_listener(lambda: calls.append(1))
    assert repo.pending.flag is False
    _product(repo)
    assert repo.pending.flag is True
    assert repo.pending.since is not None
    assert repo.pending.revision == 1
    assert calls == [1]


def test_failing_listener_does_not_break_mutation(repo):
    def boom():
        raise RuntimeError("listener down")

    repo.add_change_listener(boom)
    assert _product(repo)["id"] == "1000"


def test_mutations_persist_to_storage(storage, clock, repo):
    _product(repo)
    repo.update_settings({"name": "Panadería Sol"})
    reloaded = StateRepository(storage, clock=clock).load()
    assert [p["name"] for p in reloaded.products] == ["Pan dulce"]
    assert reloaded.settings["name"] == "Panadería Sol"
    assert reloaded.settings["sequences"]["product_start"] == 1000
    # Pending changes live only in memory.
    assert reloaded.pending.flag is False


def test_accessors_return_copies(repo):
    p = _product(repo, stock=3)
    repo.products[0]["stock"] = 99
    repo.get_product(p["id"])["stock"] = 99
    assert repo.get_product(p["id"])["stock"] == 3


def test_activity_log_is_capped_newest_first(storage, clock):
    repo = StateRepository(storage, clock=clock, activity_cap=3).load()
    for i in range(5):
        repo.record_activity("SETTINGS", f"change {i}")
    assert [e["details"] for e in repo.activity_logs] == ["change 4", "change 3", "change 2"]
    assert repo.activity_logs[0]["user_name"] == "system"


def test_remote_snapshot_refused_when_state_moved(repo):
    revision = repo.pending.revision
    _product(repo)
    assert repo.apply_remote_snapshot({"products": []}, merge_settings, revision) is False
    assert len(repo.products) == 1


def test_remote_snapshot_replaces_collections_wholesale(repo):
    _product(repo)
    snapshot = {
        "products": [{"id": "77", "name": "Remoto", "stock": 1}],
        "settings": {"name": "Remote"},
        "sequence_marks": {"products": 1500},
    }
    assert repo.apply_remote_snapshot(snapshot, merge_settings, repo.pending.revision) is True
    assert [p["id"] for p in repo.products] == ["77"]
    assert repo.settings["name"] == "Remote"
    assert repo.pending.flag is False
    assert _product(repo)["id"] == "1501"


def test_import_data_marks_pending(repo):
    assert repo.import_data({"customers": [{"id": "5", "name": "Imported"}]}) is True
    assert repo.pending.flag is True
    assert repo.add_customer({"name": "Next"})["id"] == "6"
    assert repo.import_data("not a dict") is False


def test_hard_reset_only_clears_pending(repo):
    _product(repo)
    repo.hard_reset()
    assert repo.pending.flag is False
    assert len(repo.products) == 1


def test_session_user_persisted_and_cleared(storage, repo):
    repo.set_current_user({"id": "u1", "username": "ana", "role": "CASHIER"})
    assert storage.load("current_user", None)["username"] == "ana"
    repo.clear_current_user()
    assert storage.load("current_user", None) is None
    assert repo.current_user is None
