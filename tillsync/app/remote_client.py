"""
Client side of the remote store wire contract.

pull: GET <url>?action=pull&secret=...&t=<ms>
push: POST <url>?action=push, text/plain body {"action","secret","payload"}
      payload = base64(UTF-8 JSON {"timestamp", "data"})
"""

import base64
import binascii
import json
import time
from datetime import datetime, timezone
from typing import Any, Optional
from urllib.error import HTTPError, URLError
from urllib.parse import urlencode
from urllib.request import Request, urlopen

from .logs import json_log


class RemoteStoreError(Exception):
    pass


class RemoteStoreBusy(RemoteStoreError):
    pass


def encode_payload(data: Any, now: Optional[datetime] = None) -> str:
    body = {"timestamp": (now or datetime.now(timezone.utc)).isoformat(), "data": data}
    raw = json.dumps(body, ensure_ascii=False, separators=(",", ":")).encode("utf-8")
    return base64.b64encode(raw).decode("ascii")


def decode_payload(payload: str) -> Any:
    try:
        parsed = json.loads(base64.b64decode(payload, validate=True).decode("utf-8"))
    except (binascii.Error, UnicodeDecodeError, ValueError) as ex:
        raise RemoteStoreError(f"undecodable payload: {ex}") from None
    if isinstance(parsed, dict) and "data" in parsed:
        return parsed["data"]
    return parsed


def _with_query(url: str, params: dict) -> str:
    sep = "&" if "?" in url else "?"
    return f"{url}{sep}{urlencode(params)}"


class RemoteStoreClient:
    def __init__(self, url: str, secret: str = "", timeout: float = 15.0):
        url = (url or "").strip()
        if not url.startswith(("http://", "https://")):
            raise RemoteStoreError(f"unsupported remote url: {url!r}")
        self.url = url
        self.secret = secret or ""
        self.timeout = timeout

    def _request(self, req: Request) -> dict:
        try:
            with urlopen(req, timeout=self.timeout) as resp:
                raw = resp.read().decode("utf-8")
        except HTTPError as ex:
            raise RemoteStoreError(f"http {ex.code}") from None
        except (URLError, TimeoutError, OSError) as ex:
            raise RemoteStoreError(f"unreachable: {ex}") from None
        try:
            body = json.loads(raw) if raw.strip() else {}
        except ValueError:
            raise RemoteStoreError("malformed response") from None
        if not isinstance(body, dict):
            raise RemoteStoreError("malformed response")
        status = str(body.get("status") or "").lower()
        if status == "busy":
            raise RemoteStoreBusy("remote store busy")
        if status == "error":
            raise RemoteStoreError(str(body.get("message") or "remote error"))
        return body

    def pull(self) -> Optional[Any]:
        """Return the stored snapshot, or None when the remote holds nothing yet."""
        url = _with_query(self.url, {"action": "pull", "secret": self.secret, "t": int(time.time() * 1000)})
        body = self._request(Request(url, method="GET"))
        payload = body.get("payload")
        if not payload:
            return None
        if not isinstance(payload, str):
            return payload
        data = decode_payload(payload)
        json_log("info", "remote_client.pulled", bytes=len(payload))
        return data

    def _post_push(self, payload: str) -> dict:
        body = json.dumps({"action": "push", "secret": self.secret, "payload": payload}).encode("utf-8")
        req = Request(_with_query(self.url, {"action": "push"}), data=body, method="POST")
        req.add_header("Content-Type", "text/plain")
        return self._request(req)

    def verify(self) -> bool:
        # A trivial payload is acknowledged without overwriting anything.
        return self._post_push("").get("status") == "success"

    def push(self, data: Any) -> dict:
        payload = encode_payload(data)
        out = self._post_push(payload)
        json_log("info", "remote_client.pushed", bytes=len(payload))
        return out
