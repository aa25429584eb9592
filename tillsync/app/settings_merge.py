"""
Field-level merge of business settings on pull.

Collections are replaced wholesale on pull; settings are not. Incoming
settings are layered over defaults, then a handful of fields keep the local
value when the incoming one looks emptier (see `prefer_non_empty`).
"""

from typing import Any

from .models import default_business_settings, layer_settings

# Without these a device could lose its own way back to the remote.
CONNECTION_FIELDS = ("remote_url", "remote_secret", "sync_enabled")
# Large uploads that may not have reached the remote yet.
ASSET_FIELDS = ("logo", "receipt_logo")


def prefer_non_empty(local: Any, remote: Any) -> Any:
    """
    Pick `remote` unless it looks like a stale or truncated copy of `local`:
    empty while local is set, or a shorter string than the local string.
    """
    if local and not remote:
        return local
    if isinstance(local, str) and isinstance(remote, str) and len(remote) < len(local):
        return local
    return remote


def merge_settings(local: dict, incoming: dict) -> dict:
    merged = layer_settings(default_business_settings(), incoming or {})
    for key in CONNECTION_FIELDS + ASSET_FIELDS:
        merged[key] = prefer_non_empty((local or {}).get(key), merged.get(key))
    return merged
