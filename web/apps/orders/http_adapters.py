"""HTTP adapter for the MercadoPago preferences and payments APIs.

This module implements the ``PaymentProvider`` port using ``httpx``. It adds:

- Request correlation: propagates ``X-Request-ID`` from the ContextVar set by
  the gateway middleware.
- A circuit breaker for the provider, so an unhealthy gateway fails fast
  instead of holding every checkout for the full timeout. OPEN moves to
  HALF_OPEN after a timeout and a single trial call decides what comes next.
- Retries with exponential backoff for transport errors and 5xx.
- Idempotency: the caller's key is sent as ``X-Idempotency-Key`` so a
  retried POST does not create two preferences.

Every failure leaves this module as ``PaymentProviderError``, including a
2xx answer whose body is not a JSON object.
"""

import logging
import threading
import time
from typing import Optional

import httpx
from django.conf import settings

from gateway.middleware import REQUEST_ID_CTX

from .domain import PaymentInfo, PaymentProvider, Preference, PreferenceRequest
from .errors import PaymentProviderError

logger = logging.getLogger(__name__)

CLOSED, OPEN, HALF_OPEN = "CLOSED", "OPEN", "HALF_OPEN"


class CircuitOpenError(PaymentProviderError):
    """The breaker refused the call without reaching the provider."""


# ---------------- Circuit Breaker ---------------- #

class CircuitBreaker:
    """Thread-safe breaker with CLOSED/OPEN/HALF_OPEN states.

    CLOSED opens after ``fail_threshold`` consecutive failures. OPEN lets a
    single trial call through once ``reset_timeout`` seconds have elapsed; the
    trial call's outcome closes or re-opens it.
    """

    def __init__(self, name: str, fail_threshold: int, reset_timeout: float):
        self.name = name
        self.fail_threshold = fail_threshold
        self.reset_timeout = reset_timeout
        self._lock = threading.RLock()
        self._failures = 0
        self._state = CLOSED
        self._opened_at = 0.0
        self._trial_in_flight = False

    @property
    def state(self) -> str:
        with self._lock:
            if self._state == OPEN and (time.monotonic() - self._opened_at) >= self.reset_timeout:
                self._state = HALF_OPEN
                self._trial_in_flight = False
            return self._state

    def before_call(self) -> str:
        """Return the state at call time.

        Raises:
            CircuitOpenError: When OPEN, or HALF_OPEN with a trial call in flight.
        """
        with self._lock:
            st = self.state
            if st == OPEN:
                raise CircuitOpenError(f"{self.name} circuit open")
            if st == HALF_OPEN:
                if self._trial_in_flight:
                    raise CircuitOpenError(f"{self.name} circuit half-open, trial call in flight")
                self._trial_in_flight = True
            return st

    def on_success(self):
        with self._lock:
            self._failures = 0
            self._state = CLOSED
            self._trial_in_flight = False

    def on_failure(self):
        with self._lock:
            self._failures += 1
            if self._state == HALF_OPEN or (self._failures >= self.fail_threshold and self._state != OPEN):
                self._state = OPEN
                self._opened_at = time.monotonic()
                self._trial_in_flight = False

    def on_finish(self):
        with self._lock:
            if self._state == HALF_OPEN:
                self._trial_in_flight = False


_mercadopago_cb = CircuitBreaker(
    "mercadopago",
    getattr(settings, "HTTP_CIRCUIT_FAIL_THRESHOLD", 5),
    getattr(settings, "HTTP_CIRCUIT_RESET_TIMEOUT", 30.0),
)


# ---------------- Helpers ---------------- #

def _request_headers(extra: Optional[dict] = None) -> dict:
    """Base headers with ``X-Request-ID`` when a request id is in context."""
    headers: dict[str, str] = {}
    rid = REQUEST_ID_CTX.get()
    if rid and rid != "-":
        headers["X-Request-ID"] = rid
    if extra:
        headers.update(extra)
    return headers


def _retry_policy():
    """Return ``(max_attempts, backoff_base_seconds, max_sleep_seconds)``."""
    return (
        max(1, getattr(settings, "HTTP_RETRY_MAX", 3)),
        getattr(settings, "HTTP_RETRY_BACKOFF_BASE", 0.15),
        getattr(settings, "HTTP_RETRY_MAX_SLEEP", 0.5),
    )


def _error_message(resp) -> str:
    """Extract the provider's message from an error response."""
    try:
        data = resp.json()
    except ValueError:
        data = None
    if isinstance(data, dict):
        msg = data.get("message") or data.get("error")
        if msg:
            return str(msg)
    return f"HTTP {resp.status_code}"


def _success_body(resp) -> dict:
    """Decode a 2xx body; anything but a JSON object is a provider error."""
    try:
        data = resp.json()
    except ValueError as exc:
        raise PaymentProviderError("invalid provider response") from exc
    if not isinstance(data, dict):
        raise PaymentProviderError("invalid provider response")
    return data


# ---------------- MercadoPago Adapter ---------------- #

class HttpMercadoPagoClient(PaymentProvider):
    """MercadoPago client (preferences and payments) with retry and circuit breaker."""

    def __init__(self, base_url: str | None = None, timeout: float | None = None):
        self.base_url = (base_url or getattr(settings, "MERCADOPAGO_BASE_URL", "https://api.mercadopago.com")).rstrip("/")
        self.timeout = timeout or getattr(settings, "HTTP_TIMEOUT_SECS", 10.0)

    def create_preference(
        self,
        access_token: str,
        request: PreferenceRequest,
        idempotency_key: Optional[str] = None,
    ) -> Preference:
        """POST a checkout preference.

        Business mappings:
        - 200/201 with a JSON object -> Preference(id, init_point)
        - 4xx -> PaymentProviderError with the provider message; not retried
          and not counted as a circuit failure.
        - 5xx / transport errors -> retried, then PaymentProviderError.

        Args:
            access_token: Decrypted tenant access token.
            request: Preference to create.
            idempotency_key: Optional key forwarded as ``X-Idempotency-Key``.

        Returns:
            Preference: Provider id and redirect URL.

        Raises:
            PaymentProviderError: On any failure, including an open circuit
                or a body that is not a JSON object.
        """
        data = self._call("POST", "/checkout/preferences", access_token,
                          payload=request.to_payload(), idempotency_key=idempotency_key)
        if not data.get("id"):
            raise PaymentProviderError("response without preference id")
        return Preference(
            id=str(data["id"]),
            init_point=data.get("init_point") or data.get("sandbox_init_point"),
        )

    def get_payment(self, access_token: str, payment_id: str) -> PaymentInfo:
        """GET a payment to learn its status and ``external_reference``."""
        data = self._call("GET", f"/v1/payments/{payment_id}", access_token)
        return PaymentInfo(
            id=str(data.get("id") or payment_id),
            status=str(data.get("status") or ""),
            external_reference=data.get("external_reference"),
        )

    def _call(self, method: str, path: str, access_token: str, payload: Optional[dict] = None,
              idempotency_key: Optional[str] = None) -> dict:
        """Send one request through the breaker with retries; return the JSON object body."""
        max_attempts, backoff, max_sleep = _retry_policy()

        extras = {"Authorization": f"Bearer {access_token}"}
        if idempotency_key:
            extras["X-Idempotency-Key"] = idempotency_key
        state = _mercadopago_cb.before_call()
        extras["X-Circuit-State"] = state
        headers = _request_headers(extras)
        url = f"{self.base_url}{path}"
        tries = 0

        try:
            with httpx.Client(timeout=self.timeout) as client:
                while True:
                    resp = None
                    exc = None
                    try:
                        if method == "POST":
                            resp = client.post(url, json=payload, headers=headers)
                        else:
                            resp = client.get(url, headers=headers)
                        if resp.status_code in (200, 201):
                            try:
                                data = _success_body(resp)
                            except PaymentProviderError:
                                _mercadopago_cb.on_failure()
                                raise
                            _mercadopago_cb.on_success()
                            return data
                        if 400 <= resp.status_code < 500:
                            # rejected request, the provider itself is healthy
                            _mercadopago_cb.on_success()
                            raise PaymentProviderError(_error_message(resp))
                    except httpx.RequestError as e:
                        exc = e

                    tries += 1
                    if tries >= max_attempts:
                        _mercadopago_cb.on_failure()
                        if exc is not None:
                            raise PaymentProviderError(f"transport error: {exc}") from exc
                        raise PaymentProviderError(_error_message(resp))

                    logger.warning(
                        "retrying mercadopago request",
                        extra={"path": path, "attempt": tries, "status": getattr(resp, "status_code", None)},
                    )
                    time.sleep(min(backoff * (2 ** (tries - 1)), max_sleep))
        finally:
            _mercadopago_cb.on_finish()
