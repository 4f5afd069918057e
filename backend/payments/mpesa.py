"""
Safaricom Daraja client for M-Pesa Express (STK push).

Covers the client-credentials token exchange, the push request, the status
query used as a polling fallback, and parsing of the asynchronous callback.
"""

from __future__ import annotations

import base64
import enum
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Callable, Mapping, Optional, Protocol

import requests
from django.conf import settings
from django.core.exceptions import ValidationError
from django.utils import timezone

from core.phone import normalize_phone
from core.redis import get_redis_client

from .errors import PaymentConfigurationError, PaymentProviderError, PaymentTransientError
from .gateways import PushResult, QueryResult

logger = logging.getLogger(__name__)

PRODUCTION_BASE_URL = "https://api.safaricom.co.ke"
SANDBOX_BASE_URL = "https://sandbox.safaricom.co.ke"
OAUTH_PATH = "/oauth/v1/generate?grant_type=client_credentials"
STK_PUSH_PATH = "/mpesa/stkpush/v1/processrequest"
STK_QUERY_PATH = "/mpesa/stkpushquery/v1/query"

TRANSACTION_TYPE = "CustomerPayBillOnline"
DEFAULT_TOKEN_TTL_SECONDS = 3599
TOKEN_EXPIRY_MARGIN = timedelta(seconds=60)
STILL_PROCESSING_CODE = "500.001.1001"


class QueryStatus(str, enum.Enum):
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    TIMEOUT = "timeout"
    FAILED = "failed"
    PENDING = "pending"


# ResultCode -> (status, fallback description). Codes not listed here fail.
RESULT_CODES: dict[str, tuple[QueryStatus, str]] = {
    "0": (QueryStatus.COMPLETED, "The service request is processed successfully."),
    "1032": (QueryStatus.CANCELLED, "Request cancelled by user."),
    "1037": (QueryStatus.TIMEOUT, "Request timed out, the user could not be reached."),
    "1001": (QueryStatus.FAILED, "Insufficient funds."),
    "1025": (QueryStatus.FAILED, "Transaction already in process."),
}

CALLBACK_ITEM_FIELDS = {
    "MpesaReceiptNumber": "mpesa_receipt_number",
    "Amount": "amount",
    "PhoneNumber": "phone_number",
    "TransactionDate": "transaction_date",
}


def map_result_code(result_code: Any, description: str = "") -> tuple[QueryStatus, str]:
    code = str(result_code if result_code is not None else "").strip()
    status, fallback = RESULT_CODES.get(code, (QueryStatus.FAILED, ""))
    return status, description or fallback or f"M-Pesa payment failed (code {code or 'unknown'})."


# --- token caches ---


class TokenCache(Protocol):
    def get(self) -> Optional[str]: ...

    def set(self, token: str, expires_in: int) -> None: ...

    def is_expired(self) -> bool: ...


@dataclass(frozen=True)
class _CacheEntry:
    token: str
    expires_at: datetime


class InMemoryTokenCache:
    """Process-local token cache; the entry expires a margin before the provider says so."""

    def __init__(
        self,
        *,
        margin: timedelta = TOKEN_EXPIRY_MARGIN,
        clock: Callable[[], datetime] = timezone.now,
    ):
        self._lock = threading.Lock()
        self._entry: Optional[_CacheEntry] = None
        self._margin = margin
        self._clock = clock

    def get(self) -> Optional[str]:
        with self._lock:
            entry = self._entry
        if entry is None or self._clock() >= entry.expires_at:
            return None
        return entry.token

    def set(self, token: str, expires_in: int) -> None:
        expires_at = self._clock() + timedelta(seconds=int(expires_in)) - self._margin
        with self._lock:
            self._entry = _CacheEntry(token=token, expires_at=expires_at)

    def is_expired(self) -> bool:
        return self.get() is None

    def clear(self) -> None:
        with self._lock:
            self._entry = None


class RedisTokenCache:
    """Token shared by every web and worker process through Redis key expiry."""

    def __init__(
        self,
        *,
        key: str = "mpesa:access_token",
        margin: timedelta = TOKEN_EXPIRY_MARGIN,
        client: Any = None,
    ):
        self.key = key
        self._margin = margin
        self._client = client

    @property
    def client(self):
        return self._client or get_redis_client()

    def get(self) -> Optional[str]:
        value = self.client.get(self.key)
        if value is None:
            return None
        if isinstance(value, bytes):
            return value.decode("utf-8")
        return value

    def set(self, token: str, expires_in: int) -> None:
        ttl = int(expires_in) - int(self._margin.total_seconds())
        if ttl <= 0:
            self.client.delete(self.key)
            return
        self.client.set(self.key, token, ex=ttl)

    def is_expired(self) -> bool:
        return self.get() is None


_memory_token_cache = InMemoryTokenCache()


def build_token_cache(backend: str | None = None) -> TokenCache:
    backend = (backend or getattr(settings, "MPESA_TOKEN_CACHE", "") or "memory").lower()
    if backend == "memory":
        return _memory_token_cache
    if backend == "redis":
        return RedisTokenCache()
    raise PaymentConfigurationError(f"Unknown MPESA_TOKEN_CACHE backend: {backend}")


# --- request helpers ---


def base_url() -> str:
    if (getattr(settings, "MPESA_ENV", "") or "").lower() == "production":
        return PRODUCTION_BASE_URL
    return SANDBOX_BASE_URL


def build_password(shortcode: str, passkey: str, timestamp: str) -> str:
    return base64.b64encode(f"{shortcode}{passkey}{timestamp}".encode()).decode()


def build_timestamp(now: Optional[datetime] = None) -> str:
    return timezone.localtime(now or timezone.now()).strftime("%Y%m%d%H%M%S")


def account_reference(payment_id: Any) -> str:
    return f"VR{str(payment_id)[-8:]}"


def _setting(name: str) -> str:
    value = getattr(settings, name, "") or ""
    if not value:
        raise PaymentConfigurationError(f"{name} is not configured.")
    return str(value)


def parse_callback_items(callback_metadata: Optional[Mapping[str, Any]]) -> dict[str, Any]:
    """Flatten ``CallbackMetadata.Item[{Name, Value}]`` into snake_case keys."""
    parsed: dict[str, Any] = {}
    items = (callback_metadata or {}).get("Item") or []
    for item in items:
        if not isinstance(item, Mapping) or "Value" not in item:
            continue
        key = CALLBACK_ITEM_FIELDS.get(item.get("Name"))
        if key is None:
            continue
        value = item["Value"]
        parsed[key] = str(value) if key in ("phone_number", "transaction_date") else value
    return parsed


def interpret_query_response(data: Mapping[str, Any]) -> QueryResult:
    """Translate an STK query response body into a :class:`QueryResult`."""
    response_code = str(data.get("ResponseCode", "") or "").strip()
    error_code = str(data.get("errorCode", "") or "").strip()

    if STILL_PROCESSING_CODE in (response_code, error_code):
        return QueryResult(
            status=QueryStatus.PENDING,
            result_code=STILL_PROCESSING_CODE,
            description=data.get("errorMessage")
            or data.get("ResponseDescription")
            or "The transaction is being processed.",
        )

    if response_code != "0":
        return QueryResult(
            status=QueryStatus.FAILED,
            result_code=response_code or error_code,
            description=data.get("ResponseDescription")
            or data.get("errorMessage")
            or "M-Pesa status query failed.",
        )

    result_code = str(data.get("ResultCode", "") or "").strip()
    result_desc = data.get("ResultDesc") or ""
    status, description = map_result_code(result_code, result_desc)
    metadata: dict[str, Any] = {
        "result_code": result_code,
        "result_desc": result_desc,
        "merchant_request_id": data.get("MerchantRequestID", ""),
        "checkout_request_id": data.get("CheckoutRequestID", ""),
    }
    if status is QueryStatus.COMPLETED:
        metadata.update(parse_callback_items(data.get("CallbackMetadata")))
    return QueryResult(status=status, result_code=result_code, description=description, metadata=metadata)


@dataclass(frozen=True)
class StkCallback:
    merchant_request_id: str
    checkout_request_id: str
    result_code: int
    result_desc: str
    items: dict[str, Any] = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return self.result_code == 0


def parse_callback(body: Any) -> StkCallback:
    try:
        callback = body["Body"]["stkCallback"]
        checkout_request_id = callback["CheckoutRequestID"]
    except (KeyError, TypeError) as exc:
        raise ValidationError({"detail": "Malformed M-Pesa callback body."}) from exc
    if checkout_request_id is None or not str(checkout_request_id).strip():
        raise ValidationError({"detail": "M-Pesa callback is missing its CheckoutRequestID."})

    raw_code = callback.get("ResultCode")
    try:
        result_code = int(raw_code)
    except (TypeError, ValueError):
        logger.warning("mpesa: callback with non-numeric result code", extra={"result_code": raw_code})
        result_code = -1

    return StkCallback(
        merchant_request_id=str(callback.get("MerchantRequestID") or ""),
        checkout_request_id=str(checkout_request_id).strip(),
        result_code=result_code,
        result_desc=str(callback.get("ResultDesc") or ""),
        items=parse_callback_items(callback.get("CallbackMetadata")),
    )


class MpesaGateway:
    """Mobile-money gateway over the Daraja REST API."""

    def __init__(self, *, token_cache: TokenCache, timeout: Optional[float] = None):
        self.token_cache = token_cache
        self.timeout = timeout or float(getattr(settings, "MPESA_REQUEST_TIMEOUT", 30))

    def authenticate(self) -> str:
        """Return a bearer token, exchanging credentials only when the cached one is gone."""
        token = self.token_cache.get()
        if token:
            return token

        consumer_key = _setting("MPESA_CONSUMER_KEY")
        consumer_secret = _setting("MPESA_CONSUMER_SECRET")
        credentials = base64.b64encode(f"{consumer_key}:{consumer_secret}".encode()).decode()
        try:
            response = requests.get(
                f"{base_url()}{OAUTH_PATH}",
                headers={"Authorization": f"Basic {credentials}"},
                timeout=self.timeout,
            )
            response.raise_for_status()
            data = response.json()
        except (requests.Timeout, requests.ConnectionError) as exc:
            raise PaymentTransientError("M-Pesa authentication is unreachable, please retry.") from exc
        except (requests.RequestException, ValueError) as exc:
            logger.warning("mpesa: authentication failed", exc_info=True)
            raise PaymentProviderError("M-Pesa authentication failed.") from exc

        token = data.get("access_token") if isinstance(data, Mapping) else None
        if not token:
            raise PaymentProviderError("M-Pesa authentication returned no access token.")
        try:
            expires_in = int(data.get("expires_in") or DEFAULT_TOKEN_TTL_SECONDS)
        except (TypeError, ValueError):
            expires_in = DEFAULT_TOKEN_TTL_SECONDS
        self.token_cache.set(token, expires_in)
        logger.info("mpesa: access token refreshed", extra={"expires_in": expires_in})
        return token

    def _post(self, path: str, payload: Mapping[str, Any]) -> dict[str, Any]:
        token = self.authenticate()
        try:
            response = requests.post(
                f"{base_url()}{path}",
                json=payload,
                headers={"Authorization": f"Bearer {token}"},
                timeout=self.timeout,
            )
        except (requests.Timeout, requests.ConnectionError) as exc:
            raise PaymentTransientError("M-Pesa is unreachable, please retry.") from exc
        except requests.RequestException as exc:
            raise PaymentProviderError("M-Pesa request failed.") from exc

        # Daraja puts error codes in the JSON body of non-2xx responses too.
        try:
            data = response.json()
        except ValueError as exc:
            raise PaymentProviderError(
                f"M-Pesa returned an unreadable response (HTTP {response.status_code})."
            ) from exc
        if not isinstance(data, dict):
            raise PaymentProviderError("M-Pesa returned an unexpected response.")
        if not response.ok:
            logger.info(
                "mpesa: error response",
                extra={"path": path, "status_code": response.status_code, "error_code": data.get("errorCode")},
            )
        return data

    def push(
        self,
        *,
        phone_number: str,
        amount: Decimal,
        payment_id: int,
        description: str = "",
    ) -> PushResult:
        phone = normalize_phone(phone_number)
        whole_amount = int(Decimal(str(amount)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
        if whole_amount < 1:
            raise ValidationError({"amount": ["M-Pesa amount must be at least 1."]})

        shortcode = _setting("MPESA_SHORTCODE")
        passkey = _setting("MPESA_PASSKEY")
        callback_url = _setting("MPESA_CALLBACK_URL")
        timestamp = build_timestamp()

        data = self._post(
            STK_PUSH_PATH,
            {
                "BusinessShortCode": shortcode,
                "Password": build_password(shortcode, passkey, timestamp),
                "Timestamp": timestamp,
                "TransactionType": TRANSACTION_TYPE,
                "Amount": whole_amount,
                "PartyA": phone,
                "PartyB": shortcode,
                "PhoneNumber": phone,
                "CallBackURL": callback_url,
                "AccountReference": account_reference(payment_id),
                "TransactionDesc": (description or "Vehicle rental payment")[:100],
            },
        )
        if str(data.get("ResponseCode", "")).strip() != "0":
            reason = data.get("ResponseDescription") or data.get("errorMessage") or "Unknown error"
            logger.info("mpesa: push rejected", extra={"payment_id": payment_id, "reason": reason})
            raise ValidationError({"detail": f"M-Pesa request failed: {reason}"})

        logger.info(
            "mpesa: push sent",
            extra={"payment_id": payment_id, "checkout_request_id": data.get("CheckoutRequestID")},
        )
        return PushResult(
            checkout_request_id=data.get("CheckoutRequestID", ""),
            merchant_request_id=data.get("MerchantRequestID", ""),
            response_description=data.get("ResponseDescription", ""),
            customer_message=data.get("CustomerMessage", ""),
        )

    def query(self, checkout_request_id: str) -> QueryResult:
        shortcode = _setting("MPESA_SHORTCODE")
        passkey = _setting("MPESA_PASSKEY")
        timestamp = build_timestamp()
        data = self._post(
            STK_QUERY_PATH,
            {
                "BusinessShortCode": shortcode,
                "Password": build_password(shortcode, passkey, timestamp),
                "Timestamp": timestamp,
                "CheckoutRequestID": checkout_request_id,
            },
        )
        result = interpret_query_response(data)
        logger.info(
            "mpesa: status queried",
            extra={
                "checkout_request_id": checkout_request_id,
                "status": result.status.value,
                "result_code": result.result_code,
            },
        )
        return result
