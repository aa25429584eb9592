from tillsync.app.settings_merge import merge_settings, prefer_non_empty


def test_prefer_non_empty():
    assert prefer_non_empty("local", "") == "local"
    assert prefer_non_empty("local", None) == "local"
    assert prefer_non_empty("", "remote") == "remote"
    assert prefer_non_empty("a longer value", "short") == "a longer value"
    assert prefer_non_empty("short", "a longer value") == "a longer value"
    assert prefer_non_empty(None, None) is None
    assert prefer_non_empty(True, False) is True


def test_merge_keeps_freshly_uploaded_logo():
    local = {"logo": "data:image/png;base64," + "A" * 500, "name": "Local"}
    merged = merge_settings(local, {"logo": "", "name": "Remote"})
    assert merged["logo"] == local["logo"]
    assert merged["name"] == "Remote"


def test_merge_keeps_connection_fields():
    local = {"remote_url": "https://store.example/exec", "remote_secret": "s3cret", "sync_enabled": True}
    merged = merge_settings(local, {"remote_url": "", "sync_enabled": False})
    assert merged["remote_url"] == "https://store.example/exec"
    assert merged["remote_secret"] == "s3cret"
    assert merged["sync_enabled"] is True


def test_merge_layers_incoming_over_defaults():
    merged = merge_settings({}, {"sequences": {"ticket_start": 500}, "currency": "USD"})
    assert merged["sequences"] == {"customer_start": 1, "ticket_start": 500, "order_start": 1, "product_start": 1000}
    assert merged["currency"] == "USD"
    assert merged["security_config"]["auto_lock_minutes"] == 5
