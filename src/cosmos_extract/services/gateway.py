"""Remote data gateway: search service + chain REST (LCD) client."""

import re
import threading
import time
from abc import ABC, abstractmethod
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any

import requests
import structlog

from cosmos_extract.config.settings import GatewaySettings
from cosmos_extract.services._helpers import (
    COMMISSION_PRECISION,
    parse_timestamp,
    to_rfc3339,
)
from cosmos_extract.services.errors import (
    DecodeError,
    NoHeightFoundError,
    RemoteCallError,
    RunCancelledError,
)
from cosmos_extract.services.schemas.gateway import (
    DelegationData,
    RewardEntry,
    ValidatorCommission,
)

logger = structlog.get_logger(__name__)

_RETRYABLE_STATUS: frozenset[int] = frozenset({429, 500, 502, 503, 504})
_INTEGER: re.Pattern[str] = re.compile(r"-?[0-9]+")


class RemoteGateway(ABC):
    """Capability interface the report core consumes."""

    @abstractmethod
    def last_height_before(self, network: str, chain_id: str, before_time: datetime) -> int:
        """Last on-chain height strictly before ``before_time``."""

    @abstractmethod
    def delegations_at(self, account: str, height: int) -> list[DelegationData]:
        """Per-validator delegation balances of ``account`` at ``height``."""

    @abstractmethod
    def reward_entries(
        self, account: str, start_time: datetime, end_time: datetime
    ) -> list[RewardEntry]:
        """Raw, pre-fee reward entries in ``[start_time, end_time)``."""

    @abstractmethod
    def commission_of(self, validator: str) -> ValidatorCommission:
        """Commission currently in effect for ``validator``."""


class RateLimiter:
    """Spaces calls at least ``1 / requests_per_second`` apart, across threads."""

    def __init__(self, requests_per_second: int) -> None:
        self._min_interval: float = 1.0 / requests_per_second if requests_per_second > 0 else 0.0
        self._next_slot: float = 0.0
        self._lock: threading.Lock = threading.Lock()

    def acquire(self) -> None:
        with self._lock:
            now: float = time.monotonic()
            slot: float = max(now, self._next_slot)
            self._next_slot = slot + self._min_interval
        wait: float = slot - now
        if wait > 0:
            time.sleep(wait)


def _as_int(value: object, what: str) -> int:
    if isinstance(value, bool):
        raise DecodeError(f"{what}: expected integer, got {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, str) and _INTEGER.fullmatch(value.strip()):
        return int(value.strip())
    raise DecodeError(f"{what}: expected integer, got {value!r}")


def _rate_to_numerator(raw: object) -> int:
    """Exact conversion of a decimal rate string ("0.05...") to an int over 10^18."""
    if not isinstance(raw, str):
        raise DecodeError(f"commission rate: expected decimal string, got {raw!r}")
    try:
        scaled: Decimal = Decimal(raw) * COMMISSION_PRECISION
    except InvalidOperation as exc:
        raise DecodeError(f"commission rate: not a decimal: {raw!r}") from exc
    if not scaled.is_finite() or scaled != scaled.to_integral_value() or scaled < 0:
        raise DecodeError(f"commission rate: more than 18 decimals or negative: {raw!r}")
    return int(scaled)


class CosmosGateway(RemoteGateway):
    """HTTP implementation over the search service and the chain's LCD API."""

    def __init__(
        self,
        settings: GatewaySettings,
        network: str = "cosmos",
        chain_id: str = "cosmoshub-4",
        cancel_event: threading.Event | None = None,
        session: requests.Session | None = None,
    ) -> None:
        self._network: str = network
        self._chain_id: str = chain_id
        self.search_url: str = settings.search_url.rstrip("/")
        self.lcd_url: str = settings.lcd_url.rstrip("/")
        self.timeout: float = settings.timeout
        self.retry_attempts: int = max(1, settings.retry_attempts)
        self.retry_delay: float = settings.retry_delay
        self._cancel: threading.Event = cancel_event or threading.Event()
        self._limiter: RateLimiter = RateLimiter(settings.requests_per_second)
        self._session: requests.Session = session or requests.Session()
        self._session.headers.update({"Authorization": settings.auth_token})

    def close(self) -> None:
        self._session.close()

    def __enter__(self) -> "CosmosGateway":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _request(
        self,
        method: str,
        url: str,
        *,
        params: dict[str, str] | None = None,
        json_body: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> Any:
        """Send one call with throttling and bounded retry; return decoded JSON."""
        last_error: RemoteCallError | None = None

        for attempt in range(self.retry_attempts):
            if self._cancel.is_set():
                raise RunCancelledError(f"Run cancelled before {method} {url}")
            self._limiter.acquire()
            try:
                resp: requests.Response = self._session.request(
                    method,
                    url,
                    params=params,
                    json=json_body,
                    headers=headers,
                    timeout=self.timeout,
                )
            except requests.RequestException as e:
                last_error = RemoteCallError(f"{method} {url} failed: {e}")
            else:
                if 200 <= resp.status_code < 300:
                    try:
                        return resp.json()
                    except ValueError as e:
                        raise DecodeError(f"{method} {url}: invalid JSON body") from e
                error = RemoteCallError(
                    f"{method} {url} returned {resp.status_code}: {resp.text[:200]}",
                    status_code=resp.status_code,
                )
                if resp.status_code not in _RETRYABLE_STATUS:
                    raise error
                last_error = error

            if attempt < self.retry_attempts - 1:
                logger.warning(
                    "Gateway call failed, retrying",
                    attempt=attempt + 1,
                    max_attempts=self.retry_attempts,
                    error=str(last_error)[:100],
                )
                if self._cancel.wait(self.retry_delay * (attempt + 1)):
                    raise RunCancelledError(f"Run cancelled while retrying {method} {url}")

        raise RemoteCallError(
            f"Gateway call failed after {self.retry_attempts} attempts: {last_error}",
            status_code=last_error.status_code if last_error else None,
        )

    # ------------------------------------------------------------------
    # Search service
    # ------------------------------------------------------------------

    def last_height_before(self, network: str, chain_id: str, before_time: datetime) -> int:
        body: dict[str, Any] = {
            "network": network,
            "chain_ids": [chain_id],
            "before_time": to_rfc3339(before_time),
            "limit": 1,
        }
        data: Any = self._request("POST", f"{self.search_url}/transactions_search", json_body=body)
        if not isinstance(data, list):
            raise DecodeError("transactions_search: expected a JSON list")
        if not data:
            raise NoHeightFoundError(f"No heights found before time {to_rfc3339(before_time)}")
        first: Any = data[0]
        if not isinstance(first, dict) or "height" not in first:
            raise DecodeError("transactions_search: entry has no height")
        return _as_int(first["height"], "height")

    def reward_entries(
        self, account: str, start_time: datetime, end_time: datetime
    ) -> list[RewardEntry]:
        params: dict[str, str] = {
            "network": self._network,
            "chain_id": self._chain_id,
            "start_time": to_rfc3339(start_time),
            "end_time": to_rfc3339(end_time),
            "account": account,
        }
        data: Any = self._request("GET", f"{self.search_url}/rewards", params=params)
        if data is None:
            return []
        if not isinstance(data, list):
            raise DecodeError("rewards: expected a JSON list")

        entries: list[RewardEntry] = []
        for item in data:
            if not isinstance(item, dict) or not isinstance(item.get("validator"), str):
                raise DecodeError(f"rewards: malformed entry {item!r}"[:200])
            amounts: Any = item.get("amount") or []
            if not isinstance(amounts, list):
                raise DecodeError("rewards: amount must be a list")
            components: list[int] = []
            for amount in amounts:
                if not isinstance(amount, dict):
                    raise DecodeError("rewards: amount component must be an object")
                components.append(_as_int(amount.get("numeric"), "reward amount"))
            entries.append(RewardEntry(validator=item["validator"], components=components))
        return entries

    # ------------------------------------------------------------------
    # Chain REST (LCD)
    # ------------------------------------------------------------------

    def delegations_at(self, account: str, height: int) -> list[DelegationData]:
        url: str = f"{self.lcd_url}/cosmos/staking/v1beta1/delegations/{account}"
        headers: dict[str, str] = {"x-cosmos-block-height": str(height)}
        delegations: list[DelegationData] = []
        next_key: str | None = None

        while True:
            params: dict[str, str] = {"pagination.key": next_key} if next_key else {}
            data: Any = self._request("GET", url, params=params, headers=headers)
            if not isinstance(data, dict):
                raise DecodeError("delegations: expected a JSON object")
            for item in data.get("delegation_responses") or []:
                try:
                    validator: Any = item["delegation"]["validator_address"]
                    amount: Any = item["balance"]["amount"]
                except (KeyError, TypeError) as e:
                    raise DecodeError(f"delegations: malformed entry: {e}") from e
                if not isinstance(validator, str):
                    raise DecodeError("delegations: validator_address must be a string")
                delegations.append(
                    DelegationData(validator=validator, balance=_as_int(amount, "delegation balance"))
                )
            next_key = (data.get("pagination") or {}).get("next_key")
            if not next_key:
                return delegations

    def commission_of(self, validator: str) -> ValidatorCommission:
        data: Any = self._request(
            "GET", f"{self.lcd_url}/cosmos/staking/v1beta1/validators/{validator}"
        )
        try:
            commission: Any = data["validator"]["commission"]
            raw_rate: Any = commission["commission_rates"]["rate"]
        except (KeyError, TypeError) as e:
            raise DecodeError(f"validator {validator}: commission missing: {e}") from e

        last_changed: datetime | None = None
        update_time: Any = commission.get("update_time")
        if update_time:
            try:
                last_changed = parse_timestamp(str(update_time))
            except ValueError as e:
                raise DecodeError(f"validator {validator}: bad update_time {update_time!r}") from e

        return ValidatorCommission(rate=_rate_to_numerator(raw_rate), last_changed=last_changed)
