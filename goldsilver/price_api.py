"""Client for the metalpriceapi.com ``timeframe`` endpoint.

One call to :meth:`MetalPriceClient.fetch` issues one logical request for a
date range (callers chunk long ranges) and retries rate-limit and server
failures with exponential backoff.  Every backoff caused by an HTTP
response (429, 5xx or a rate-limit error body) is also recorded on a shared
:class:`RateLimitContext`, whose delay only ever grows, so the history loader
can space out its subsequent requests.
"""

from __future__ import annotations

import logging
import math
import re
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional

import requests

from .config import DEFAULT_API_URL
from .engine.errors import FetchError
from .engine.normalize import parse_date
from .engine.series import PriceRecord

logger = logging.getLogger(__name__)

BASE_DELAY_MS = 700.0
MAX_ATTEMPTS = 5
MAX_THROTTLE_MS = 5000.0
TARGET_CURRENCIES = ("XAU", "XAG")

_DATE_KEY_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


class RateLimitContext:
    """Session-wide minimum spacing between outbound requests, in milliseconds."""

    def __init__(
        self,
        max_delay_ms: float = MAX_THROTTLE_MS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.max_delay_ms = float(max_delay_ms)
        self.clock = clock
        self._delay_ms = 0.0
        self._last_request: Optional[float] = None

    def current_delay(self) -> float:
        return self._delay_ms

    def mark_request(self) -> None:
        self._last_request = self.clock()

    def pending_delay(self) -> float:
        """Milliseconds still to wait before the next request may be sent."""

        if self._last_request is None or self._delay_ms <= 0:
            return 0.0
        elapsed_ms = (self.clock() - self._last_request) * 1000.0
        return max(0.0, self._delay_ms - elapsed_ms)

    def record_backoff(self, delay_ms: float) -> float:
        self._delay_ms = min(self.max_delay_ms, max(self._delay_ms, float(delay_ms)))
        return self._delay_ms


class AttemptState(Enum):
    ATTEMPTING = "attempting"
    BACKING_OFF = "backing_off"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class FetchAttempt:
    attempt: int = 1
    state: AttemptState = AttemptState.ATTEMPTING
    delay_ms: float = 0.0
    last_cause: Optional[str] = None
    last_status: Optional[int] = None
    last_body: Optional[str] = None


def _finite(value: Any) -> Optional[float]:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def _retry_after_seconds(headers: Mapping[str, str]) -> Optional[float]:
    raw = headers.get("Retry-After") if headers else None
    if raw is None:
        return None
    seconds = _finite(str(raw).strip())
    if seconds is None or seconds < 0:
        return None
    return seconds


def _error_text(payload: Mapping[str, Any]) -> str:
    error = payload.get("error")
    if isinstance(error, Mapping):
        parts = [str(error.get(key)) for key in ("statusCode", "code", "type", "info", "message") if error.get(key)]
        return " ".join(parts) or "unknown error"
    if error:
        return str(error)
    return str(payload.get("message") or "unknown error")


def _is_rate_limited(payload: Mapping[str, Any]) -> bool:
    error = payload.get("error")
    if isinstance(error, Mapping):
        for key in ("statusCode", "code"):
            if str(error.get(key, "")).strip() == "429":
                return True
    text = _error_text(payload).lower()
    return "rate limit" in text or "too many requests" in text or "rate_limit" in text


def derive_price(rates: Mapping[str, Any], code: str) -> Optional[float]:
    """USD per ounce for ``code``: ``USD<code>`` if present, else ``1 / <code>``."""

    direct = _finite(rates.get(f"USD{code}"))
    if direct is not None and direct > 0:
        return direct
    inverse = _finite(rates.get(code))
    if inverse is None or inverse <= 0:
        return None
    value = 1.0 / inverse
    return value if math.isfinite(value) else None


def parse_rates(payload: Mapping[str, Any], fallback_date: str) -> List[PriceRecord]:
    """Turn a timeframe (date-keyed) or single-day response into price records."""

    rates = payload.get("rates")
    if not isinstance(rates, Mapping):
        raise FetchError("Price API response has no rates object", body=str(payload)[:500])

    if rates and all(_DATE_KEY_RE.match(str(key)) for key in rates):
        per_date = rates
    elif not rates:
        return []
    else:
        date = parse_date(payload.get("date")) or fallback_date
        per_date = {date: rates}

    records: List[PriceRecord] = []
    for date in sorted(per_date):
        entry = per_date[date]
        if not isinstance(entry, Mapping):
            continue
        gold = derive_price(entry, "XAU")
        silver = derive_price(entry, "XAG")
        if gold is None or silver is None:
            continue
        records.append(PriceRecord(date=str(date), gold=gold, silver=silver))
    return records


class MetalPriceClient:
    def __init__(
        self,
        session: Optional[requests.Session] = None,
        rate_limit: Optional[RateLimitContext] = None,
        sleep: Callable[[float], None] = time.sleep,
        url: str = DEFAULT_API_URL,
        timeout: float = 30.0,
        base_delay_ms: float = BASE_DELAY_MS,
        max_attempts: int = MAX_ATTEMPTS,
    ) -> None:
        if session is None:
            session = requests.Session()
            session.headers.update({"User-Agent": "goldsilver/0.1 (+price-history loader)"})
        self.session = session
        self.rate_limit = rate_limit if rate_limit is not None else RateLimitContext()
        self.sleep = sleep
        self.url = url
        self.timeout = timeout
        self.base_delay_ms = float(base_delay_ms)
        self.max_attempts = max(1, int(max_attempts))

    def _back_off(
        self,
        attempt: FetchAttempt,
        cause: str,
        retry_after: Optional[float] = None,
        rate_limited: bool = True,
        status: Optional[int] = None,
        body: Optional[str] = None,
    ) -> None:
        attempt.last_cause = cause
        attempt.last_status = status
        attempt.last_body = body
        delay_ms = self.base_delay_ms * (2 ** (attempt.attempt - 1))
        if retry_after is not None:
            delay_ms = max(delay_ms, retry_after * 1000.0)
        if rate_limited:
            self.rate_limit.record_backoff(delay_ms)
        if attempt.attempt >= self.max_attempts:
            attempt.state = AttemptState.FAILED
            logger.error(
                "Price API request failed",
                extra={"attempts": attempt.attempt, "cause": cause, "status": status},
            )
            raise FetchError(
                f"Price API request failed after {attempt.attempt} attempts: {cause}",
                status=status,
                body=body,
                attempts=attempt.attempt,
            )
        attempt.delay_ms = delay_ms
        attempt.state = AttemptState.BACKING_OFF
        logger.info(
            "Backing off price API request",
            extra={"attempt": attempt.attempt, "delay_ms": delay_ms, "cause": cause},
        )

    def fetch(self, start: str, end: str, api_key: str) -> List[PriceRecord]:
        params = {
            "api_key": api_key,
            "start_date": start,
            "end_date": end,
            "base": "USD",
            "currencies": ",".join(TARGET_CURRENCIES),
        }
        attempt = FetchAttempt()
        while True:
            if attempt.state is AttemptState.BACKING_OFF:
                self.sleep(attempt.delay_ms / 1000.0)
                attempt.attempt += 1
                attempt.state = AttemptState.ATTEMPTING

            self.rate_limit.mark_request()
            try:
                response = self.session.get(self.url, params=params, timeout=self.timeout)
            except requests.RequestException as exc:
                self._back_off(attempt, f"network error: {exc}", rate_limited=False)
                continue

            status = response.status_code
            if status == 429 or 500 <= status < 600:
                self._back_off(
                    attempt,
                    f"HTTP {status}",
                    retry_after=_retry_after_seconds(response.headers),
                    status=status,
                    body=response.text,
                )
                continue
            if not 200 <= status < 300:
                attempt.state = AttemptState.FAILED
                raise FetchError(
                    f"Price API returned HTTP {status}",
                    status=status,
                    body=response.text,
                    attempts=attempt.attempt,
                )

            try:
                payload: Dict[str, Any] = response.json()
            except ValueError as exc:
                attempt.state = AttemptState.FAILED
                raise FetchError(
                    f"Price API returned malformed JSON: {exc}",
                    status=status,
                    body=response.text,
                    attempts=attempt.attempt,
                ) from exc
            if not isinstance(payload, dict):
                attempt.state = AttemptState.FAILED
                raise FetchError(
                    "Price API returned a non-object body",
                    status=status,
                    body=response.text,
                    attempts=attempt.attempt,
                )

            if payload.get("success") is False:
                if _is_rate_limited(payload):
                    self._back_off(
                        attempt,
                        f"rate limited: {_error_text(payload)}",
                        retry_after=_retry_after_seconds(response.headers),
                        status=status,
                        body=response.text,
                    )
                    continue
                attempt.state = AttemptState.FAILED
                raise FetchError(
                    f"Price API error: {_error_text(payload)}",
                    status=status,
                    body=response.text,
                    attempts=attempt.attempt,
                )

            records = parse_rates(payload, fallback_date=start)
            attempt.state = AttemptState.SUCCEEDED
            logger.debug(
                "Fetched price chunk",
                extra={"start": start, "end": end, "rows": len(records), "attempts": attempt.attempt},
            )
            return records
