from __future__ import annotations

import base64
import json
import logging
import os
import time
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass
from typing import Callable, Sequence, TypeVar

import jwt
from services.api.app.models.cart import CartLine
from services.api.app.services.delivery_base import (
    AcceptResult,
    AddressSuggestion,
    DeliveryAdapterError,
    DeliveryAddressError,
    DeliveryProviderUnavailableError,
    DeliveryQuoteNotFoundError,
    Dropoff,
    QuoteResult,
    dropoff_instructions,
    normalize_phone_e164,
    quote_items,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

_TRANSIENT_STATUSES = {429, 500, 502, 503, 504}


@dataclass(frozen=True, slots=True)
class _DoorDashConfig:
    base_url: str
    developer_id: str
    key_id: str
    signing_secret: str
    pickup_address: str
    pickup_business_name: str
    pickup_phone: str
    geocoder_url: str
    request_timeout_s: float
    max_retries: int = 3
    initial_backoff_s: float = 1.0
    max_backoff_s: float = 8.0


def _require_env(name: str) -> str:
    value = os.getenv(name, "").strip()
    if not value:
        raise ValueError(f"{name} must be set for the doordash delivery adapter")
    return value


def retry_transient(
    fn: Callable[[], T],
    *,
    max_retries: int,
    initial_backoff_s: float,
    max_backoff_s: float,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Call ``fn``, retrying only ``DeliveryProviderUnavailableError`` with exponential backoff."""

    delay = initial_backoff_s
    attempt = 0
    while True:
        try:
            return fn()
        except DeliveryProviderUnavailableError as e:
            if attempt >= max_retries:
                raise
            attempt += 1
            logger.warning(
                "delivery.retry attempt=%s delay_s=%s error=%s", attempt, delay, e
            )
            sleep(delay)
            delay = min(delay * 2, max_backoff_s)


class DoorDashDriveAdapter:
    """DoorDash Drive v2 quotes, accepts and cancels.

    Pickup details come from configuration only; the storefront never supplies them.
    Only quote creation is retried. Accept and cancel have side effects the caller
    must reason about, so they fail straight through.
    """

    vendor = "DOORDASH"

    def __init__(self, cfg: _DoorDashConfig) -> None:
        self._cfg = cfg

    @classmethod
    def from_env(cls) -> "DoorDashDriveAdapter":
        return cls(
            _DoorDashConfig(
                base_url=os.getenv("DOORDASH_BASE_URL", "https://openapi.doordash.com").rstrip("/"),
                developer_id=_require_env("DOORDASH_DEVELOPER_ID"),
                key_id=_require_env("DOORDASH_KEY_ID"),
                signing_secret=_require_env("DOORDASH_SIGNING_SECRET"),
                pickup_address=_require_env("DOORDASH_PICKUP_ADDRESS"),
                pickup_business_name=_require_env("DOORDASH_PICKUP_BUSINESS_NAME"),
                pickup_phone=_require_env("DOORDASH_PICKUP_PHONE"),
                geocoder_url=os.getenv(
                    "TABLEFRONT_GEOCODER_URL", "https://nominatim.openstreetmap.org/search"
                ),
                request_timeout_s=float(os.getenv("TABLEFRONT_QUOTE_TIMEOUT_S", "15")),
            )
        )

    def suggest_addresses(self, query: str) -> list[AddressSuggestion]:
        query = (query or "").strip()
        if len(query) < 3:
            return []

        params = urllib.parse.urlencode(
            {"q": query, "format": "jsonv2", "addressdetails": 0, "limit": 5, "countrycodes": "us"}
        )
        req = urllib.request.Request(f"{self._cfg.geocoder_url}?{params}", method="GET")
        req.add_header("User-Agent", "tablefront-checkout/1.0")
        try:
            with urllib.request.urlopen(req, timeout=self._cfg.request_timeout_s) as resp:
                rows = json.loads(resp.read().decode("utf-8"))
        except (urllib.error.URLError, TimeoutError) as e:
            raise DeliveryProviderUnavailableError(f"Address lookup failed: {e}") from e

        suggestions: list[AddressSuggestion] = []
        for row in rows:
            try:
                suggestions.append(
                    AddressSuggestion(
                        suggestion_id=f"osm-{row['osm_type']}-{row['osm_id']}",
                        formatted_address=row["display_name"],
                        lat=float(row["lat"]),
                        lng=float(row["lon"]),
                    )
                )
            except (KeyError, TypeError, ValueError):
                continue
        return suggestions

    def create_quote(
        self,
        external_id: str,
        *,
        cart: Sequence[CartLine],
        dropoff: Dropoff,
        order_value_cents: int,
        tip_cents: int,
    ) -> QuoteResult:
        phone = normalize_phone_e164(dropoff.phone) or normalize_phone_e164(self._cfg.pickup_phone)
        given, _, family = dropoff.contact_name.strip().partition(" ")
        body = {
            "external_delivery_id": external_id,
            "pickup_address": self._cfg.pickup_address,
            "pickup_business_name": self._cfg.pickup_business_name,
            "pickup_phone_number": normalize_phone_e164(self._cfg.pickup_phone),
            "dropoff_address": dropoff.address,
            "dropoff_location": {"lat": dropoff.lat, "lng": dropoff.lng},
            "dropoff_phone_number": phone,
            "dropoff_instructions": dropoff_instructions(dropoff),
            "dropoff_contact_given_name": given or dropoff.contact_name,
            "dropoff_contact_family_name": family or None,
            "dropoff_contact_send_notifications": True,
            "order_value": order_value_cents,
            "tip": tip_cents,
            "items": quote_items(cart),
        }
        body = {k: v for k, v in body.items() if v is not None}

        payload = retry_transient(
            lambda: self._request("POST", "/drive/v2/quotes", body),
            max_retries=self._cfg.max_retries,
            initial_backoff_s=self._cfg.initial_backoff_s,
            max_backoff_s=self._cfg.max_backoff_s,
        )
        try:
            fee_cents = int(payload["fee"])
        except (KeyError, TypeError, ValueError) as e:
            raise DeliveryAdapterError("Unexpected DoorDash quote response shape") from e

        return QuoteResult(
            external_id=external_id,
            fee_cents=fee_cents,
            expires_at=payload.get("expires_at"),
        )

    def accept_quote(self, external_id: str, *, tip_cents: int) -> AcceptResult:
        path = f"/drive/v2/quotes/{urllib.parse.quote(external_id, safe='')}/accept"
        payload = self._request("POST", path, {"tip": tip_cents})
        try:
            return AcceptResult(
                external_id=external_id,
                delivery_id=str(
                    payload.get("support_reference") or payload["external_delivery_id"]
                ),
                fee_cents=int(payload["fee"]),
                tracking_url=payload.get("tracking_url"),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise DeliveryAdapterError("Unexpected DoorDash accept response shape") from e

    def cancel(self, external_id: str) -> None:
        path = f"/drive/v2/deliveries/{urllib.parse.quote(external_id, safe='')}/cancel"
        self._request("PUT", path, None)

    def _auth_token(self) -> str:
        now = int(time.time())
        secret = self._cfg.signing_secret
        key = base64.urlsafe_b64decode(secret + "=" * (-len(secret) % 4))
        return jwt.encode(
            {
                "aud": "doordash",
                "iss": self._cfg.developer_id,
                "kid": self._cfg.key_id,
                "iat": now,
                "exp": now + 30 * 60,
            },
            key,
            algorithm="HS256",
            headers={"dd-ver": "DD-JWT-V1"},
        )

    def _request(self, method: str, path: str, body: dict | None) -> dict:
        url = f"{self._cfg.base_url}{path}"
        data = json.dumps(body).encode("utf-8") if body is not None else None

        req = urllib.request.Request(url, method=method)
        req.add_header("Authorization", f"Bearer {self._auth_token()}")
        req.add_header("Content-Type", "application/json")

        try:
            timeout = self._cfg.request_timeout_s
            with urllib.request.urlopen(req, data=data, timeout=timeout) as resp:
                raw = resp.read().decode("utf-8")
        except urllib.error.HTTPError as e:
            raw = e.read().decode("utf-8", errors="replace")
            raise _map_http_error(e.code, raw, path) from e
        except (urllib.error.URLError, TimeoutError) as e:
            raise DeliveryProviderUnavailableError(f"DoorDash unreachable: {e}") from e

        return json.loads(raw) if raw else {}


def _map_http_error(status: int, raw: str, path: str) -> DeliveryAdapterError:
    try:
        payload = json.loads(raw)
    except ValueError:
        payload = {}
    if not isinstance(payload, dict):
        payload = {}
    message = payload.get("message")

    if status in _TRANSIENT_STATUSES:
        return DeliveryProviderUnavailableError(f"DoorDash HTTP {status}: {message or raw[:200]}")

    if status in (400, 422):
        field_errors = {}
        for item in payload.get("field_errors") or []:
            name = item.get("field") or "address"
            field_errors[name] = item.get("error") or "Invalid value"
        if field_errors:
            return DeliveryAddressError(field_errors, message)
        return DeliveryAddressError(
            {"dropoff_address": message or "Address could not be validated"}
        )

    if status == 404 and "/accept" in path:
        external_id = path.split("/")[-2]
        return DeliveryQuoteNotFoundError(urllib.parse.unquote(external_id))

    logger.warning("delivery.provider_error status=%s path=%s", status, path)
    return DeliveryAdapterError(f"DoorDash HTTP {status}: {message or 'request failed'}")
