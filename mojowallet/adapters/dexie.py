from __future__ import annotations

import json
import urllib.error
import urllib.parse
import urllib.request
from typing import Any

DEFAULT_OFFER_URL_TEMPLATE = "https://dexie.space/offers/{offer_id}"


class DexieAdapter:
    def __init__(self, base_url: str, *, timeout_seconds: float = 20.0) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = float(timeout_seconds)

    def get_offer(self, offer_id: str) -> dict[str, Any]:
        clean_offer_id = str(offer_id).strip()
        if not clean_offer_id:
            raise ValueError("offer_id is required")
        url = f"{self.base_url}/v1/offers/{urllib.parse.quote(clean_offer_id)}"
        try:
            with urllib.request.urlopen(url, timeout=self.timeout_seconds) as resp:
                payload = json.loads(resp.read().decode("utf-8"))
        except urllib.error.HTTPError as exc:
            return {"success": False, "error": f"dexie_http_error:{exc.code}"}
        except urllib.error.URLError as exc:
            return {"success": False, "error": f"dexie_network_error:{exc.reason}"}
        if isinstance(payload, dict):
            return payload
        return {"success": False, "error": "invalid_response_format"}

    def post_offer(self, offer: str) -> dict[str, Any]:
        """Publish a signed offer blob. Errors come back as ``{"success": False, "error": …}``."""
        url = f"{self.base_url}/v1/offers"
        body = json.dumps({"offer": offer}).encode("utf-8")
        req = urllib.request.Request(
            url,
            data=body,
            method="POST",
            headers={"Content-Type": "application/json"},
        )
        try:
            with urllib.request.urlopen(req, timeout=self.timeout_seconds) as resp:
                result = json.loads(resp.read().decode("utf-8"))
        except urllib.error.HTTPError as exc:
            raw = exc.read().decode("utf-8", errors="replace").strip()
            snippet = raw[:500] if raw else ""
            error = f"dexie_http_error:{exc.code}"
            if snippet:
                error = f"{error}:{snippet}"
            return {"success": False, "error": error}
        except urllib.error.URLError as exc:
            return {"success": False, "error": f"dexie_network_error:{exc.reason}"}
        except ValueError as exc:
            return {"success": False, "error": f"dexie_invalid_json:{exc}"}
        if isinstance(result, dict):
            return result
        return {"success": False, "error": "invalid_response_format"}


def offer_url_for(offer_id: str, result: dict[str, Any] | None = None) -> str:
    """Prefer the venue-provided link; fall back to the public offer page."""
    if isinstance(result, dict):
        for key in ("offer_url", "url"):
            value = str(result.get(key, "")).strip()
            if value:
                return value
    return DEFAULT_OFFER_URL_TEMPLATE.format(offer_id=urllib.parse.quote(offer_id))
