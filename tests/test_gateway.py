"""Tests for cosmos_extract.services.gateway against a scripted HTTP session."""

import threading
import time
from datetime import UTC, datetime
from typing import Any

import pytest
import requests
from structlog.testing import capture_logs

from cosmos_extract.config.settings import GatewaySettings
from cosmos_extract.services.errors import (
    DecodeError,
    NoHeightFoundError,
    RemoteCallError,
    RunCancelledError,
)
from cosmos_extract.services.gateway import CosmosGateway, RateLimiter, _rate_to_numerator
from cosmos_extract.services.schemas.gateway import (
    DelegationData,
    RewardEntry,
    ValidatorCommission,
)

SEARCH: str = "https://search.example"
LCD: str = "https://lcd.example"


class FakeResponse:
    def __init__(self, status_code: int = 200, payload: Any = None, text: str = "") -> None:
        self.status_code: int = status_code
        self.payload: Any = payload
        self.text: str = text

    def json(self) -> Any:
        if isinstance(self.payload, Exception):
            raise self.payload
        return self.payload


class FakeSession:
    """Replays queued responses (or raises queued exceptions) in order."""

    def __init__(self, *responses: FakeResponse | Exception) -> None:
        self.headers: dict[str, str] = {}
        self.responses: list[FakeResponse | Exception] = list(responses)
        self.calls: list[dict[str, Any]] = []
        self.closed: bool = False

    def request(self, method: str, url: str, **kwargs: Any) -> FakeResponse:
        self.calls.append({"method": method, "url": url, **kwargs})
        item: FakeResponse | Exception = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    def close(self) -> None:
        self.closed = True


def _settings(**overrides: Any) -> GatewaySettings:
    values: dict[str, Any] = {
        "search_url": SEARCH + "/",
        "lcd_url": LCD,
        "auth_token": "secret-token",
        "requests_per_second": 1000,
        "retry_attempts": 3,
        "retry_delay": 0.0,
    }
    values.update(overrides)
    return GatewaySettings(**values)


def _gateway(session: FakeSession, **overrides: Any) -> CosmosGateway:
    cancel: threading.Event | None = overrides.pop("cancel_event", None)
    return CosmosGateway(_settings(**overrides), cancel_event=cancel, session=session)  # type: ignore[arg-type]


class TestSearchService:
    def test_last_height_before(self) -> None:
        session: FakeSession = FakeSession(FakeResponse(payload=[{"height": "14250000"}]))
        gw: CosmosGateway = _gateway(session)

        height: int = gw.last_height_before("cosmos", "cosmoshub-4", datetime(2023, 2, 1, tzinfo=UTC))

        assert height == 14250000
        call: dict[str, Any] = session.calls[0]
        assert call["method"] == "POST"
        assert call["url"] == f"{SEARCH}/transactions_search"
        assert call["json"] == {
            "network": "cosmos",
            "chain_ids": ["cosmoshub-4"],
            "before_time": "2023-02-01T00:00:00Z",
            "limit": 1,
        }
        assert session.headers["Authorization"] == "secret-token"

    def test_empty_result_is_no_height(self) -> None:
        gw: CosmosGateway = _gateway(FakeSession(FakeResponse(payload=[])))
        with pytest.raises(NoHeightFoundError, match="2023-02-01T00:00:00Z"):
            gw.last_height_before("cosmos", "cosmoshub-4", datetime(2023, 2, 1, tzinfo=UTC))

    def test_reward_entries(self) -> None:
        payload: list[dict[str, Any]] = [
            {"validator": "val1", "amount": [{"numeric": "100"}, {"numeric": 50}]},
            {"validator": "val2", "amount": []},
        ]
        session: FakeSession = FakeSession(FakeResponse(payload=payload))
        gw: CosmosGateway = _gateway(session)

        entries: list[RewardEntry] = gw.reward_entries(
            "cosmos1alice", datetime(2023, 1, 1, tzinfo=UTC), datetime(2023, 2, 1, tzinfo=UTC)
        )

        assert entries == [
            RewardEntry(validator="val1", components=[100, 50]),
            RewardEntry(validator="val2", components=[]),
        ]
        assert session.calls[0]["params"] == {
            "network": "cosmos",
            "chain_id": "cosmoshub-4",
            "start_time": "2023-01-01T00:00:00Z",
            "end_time": "2023-02-01T00:00:00Z",
            "account": "cosmos1alice",
        }

    def test_null_rewards_are_empty(self) -> None:
        gw: CosmosGateway = _gateway(FakeSession(FakeResponse(payload=None)))
        entries: list[RewardEntry] = gw.reward_entries(
            "cosmos1alice", datetime(2023, 1, 1, tzinfo=UTC), datetime(2023, 2, 1, tzinfo=UTC)
        )
        assert entries == []

    @pytest.mark.parametrize("raw", ["1.5", "--5", "²", "-", "", "1e3", True])
    def test_non_numeric_amount_is_decode_error(self, raw: object) -> None:
        payload: list[dict[str, Any]] = [{"validator": "val1", "amount": [{"numeric": raw}]}]
        gw: CosmosGateway = _gateway(FakeSession(FakeResponse(payload=payload)))
        with pytest.raises(DecodeError):
            gw.reward_entries(
                "cosmos1alice", datetime(2023, 1, 1, tzinfo=UTC), datetime(2023, 2, 1, tzinfo=UTC)
            )

    @pytest.mark.parametrize("raw", ["--5", "²", "12a"])
    def test_malformed_delegation_balance_is_decode_error(self, raw: str) -> None:
        payload: dict[str, Any] = {
            "delegation_responses": [
                {"delegation": {"validator_address": "val1"}, "balance": {"amount": raw}},
            ],
        }
        gw: CosmosGateway = _gateway(FakeSession(FakeResponse(payload=payload)))
        with pytest.raises(DecodeError):
            gw.delegations_at("cosmos1alice", 1)

    def test_negative_and_padded_integers_decode(self) -> None:
        payload: list[dict[str, Any]] = [
            {"validator": "val1", "amount": [{"numeric": " 42 "}, {"numeric": "-3"}]}
        ]
        gw: CosmosGateway = _gateway(FakeSession(FakeResponse(payload=payload)))
        entries: list[RewardEntry] = gw.reward_entries(
            "cosmos1alice", datetime(2023, 1, 1, tzinfo=UTC), datetime(2023, 2, 1, tzinfo=UTC)
        )
        assert entries[0].components == [42, -3]


class TestChainRest:
    def test_delegations_follow_pagination(self) -> None:
        page_one: dict[str, Any] = {
            "delegation_responses": [
                {"delegation": {"validator_address": "val1"}, "balance": {"amount": "1000"}},
            ],
            "pagination": {"next_key": "abc="},
        }
        page_two: dict[str, Any] = {
            "delegation_responses": [
                {"delegation": {"validator_address": "val2"}, "balance": {"amount": "5"}},
            ],
            "pagination": {"next_key": None},
        }
        session: FakeSession = FakeSession(FakeResponse(payload=page_one), FakeResponse(payload=page_two))
        gw: CosmosGateway = _gateway(session)

        delegations: list[DelegationData] = gw.delegations_at("cosmos1alice", 14250000)

        assert delegations == [
            DelegationData(validator="val1", balance=1000),
            DelegationData(validator="val2", balance=5),
        ]
        assert session.calls[0]["url"] == f"{LCD}/cosmos/staking/v1beta1/delegations/cosmos1alice"
        assert session.calls[0]["headers"] == {"x-cosmos-block-height": "14250000"}
        assert session.calls[0]["params"] == {}
        assert session.calls[1]["params"] == {"pagination.key": "abc="}

    def test_malformed_delegation(self) -> None:
        payload: dict[str, Any] = {"delegation_responses": [{"balance": {"amount": "1"}}]}
        gw: CosmosGateway = _gateway(FakeSession(FakeResponse(payload=payload)))
        with pytest.raises(DecodeError):
            gw.delegations_at("cosmos1alice", 1)

    def test_commission_of(self) -> None:
        payload: dict[str, Any] = {
            "validator": {
                "commission": {
                    "commission_rates": {"rate": "0.100000000000000000"},
                    "update_time": "2023-01-20T08:15:00.123456789Z",
                }
            }
        }
        session: FakeSession = FakeSession(FakeResponse(payload=payload))
        gw: CosmosGateway = _gateway(session)

        commission: ValidatorCommission = gw.commission_of("val1")

        assert commission.rate == 10**17
        assert commission.last_changed == datetime(2023, 1, 20, 8, 15, 0, 123456, tzinfo=UTC)
        assert session.calls[0]["url"] == f"{LCD}/cosmos/staking/v1beta1/validators/val1"

    def test_commission_without_rate(self) -> None:
        gw: CosmosGateway = _gateway(FakeSession(FakeResponse(payload={"validator": {}})))
        with pytest.raises(DecodeError):
            gw.commission_of("val1")


class TestRateConversion:
    def test_exact_values(self) -> None:
        assert _rate_to_numerator("0.050000000000000000") == 5 * 10**16
        assert _rate_to_numerator("1.000000000000000000") == 10**18
        assert _rate_to_numerator("0") == 0
        assert _rate_to_numerator("0.000000000000000001") == 1

    @pytest.mark.parametrize("raw", ["abc", "0.0000000000000000001", "-0.1", 0.1, None])
    def test_rejected_values(self, raw: object) -> None:
        with pytest.raises(DecodeError):
            _rate_to_numerator(raw)


class TestTransport:
    def test_retries_server_errors(self) -> None:
        session: FakeSession = FakeSession(
            FakeResponse(status_code=503, text="unavailable"),
            FakeResponse(payload=[{"height": 7}]),
        )
        gw: CosmosGateway = _gateway(session)
        assert gw.last_height_before("cosmos", "cosmoshub-4", datetime(2023, 2, 1, tzinfo=UTC)) == 7
        assert len(session.calls) == 2

    def test_retries_connection_errors(self) -> None:
        session: FakeSession = FakeSession(
            requests.ConnectionError("reset by peer"),
            FakeResponse(payload=[{"height": 7}]),
        )
        gw: CosmosGateway = _gateway(session)
        assert gw.last_height_before("cosmos", "cosmoshub-4", datetime(2023, 2, 1, tzinfo=UTC)) == 7

    def test_client_error_is_not_retried(self) -> None:
        session: FakeSession = FakeSession(FakeResponse(status_code=404, text="not found"))
        gw: CosmosGateway = _gateway(session)

        with pytest.raises(RemoteCallError) as exc_info:
            gw.commission_of("val1")

        assert exc_info.value.status_code == 404
        assert len(session.calls) == 1

    def test_gives_up_after_attempts(self) -> None:
        session: FakeSession = FakeSession(*[FakeResponse(status_code=500) for _ in range(3)])
        gw: CosmosGateway = _gateway(session)

        with pytest.raises(RemoteCallError) as exc_info:
            gw.commission_of("val1")

        assert exc_info.value.status_code == 500
        assert len(session.calls) == 3

    def test_retry_warning_only_when_a_retry_follows(self) -> None:
        session: FakeSession = FakeSession(*[FakeResponse(status_code=502) for _ in range(3)])
        gw: CosmosGateway = _gateway(session)

        with capture_logs() as logs:
            with pytest.raises(RemoteCallError):
                gw.commission_of("val1")

        retries: list[dict[str, Any]] = [
            e for e in logs if e["event"] == "Gateway call failed, retrying"
        ]
        assert [e["attempt"] for e in retries] == [1, 2]

    def test_single_attempt_logs_no_retry(self) -> None:
        session: FakeSession = FakeSession(FakeResponse(status_code=503))
        gw: CosmosGateway = _gateway(session, retry_attempts=1)

        with capture_logs() as logs:
            with pytest.raises(RemoteCallError):
                gw.commission_of("val1")

        assert not [e for e in logs if e["event"] == "Gateway call failed, retrying"]

    def test_invalid_json_is_decode_error(self) -> None:
        session: FakeSession = FakeSession(FakeResponse(payload=ValueError("not json")))
        gw: CosmosGateway = _gateway(session)
        with pytest.raises(DecodeError):
            gw.commission_of("val1")
        assert len(session.calls) == 1

    def test_cancelled_gateway_makes_no_calls(self) -> None:
        event: threading.Event = threading.Event()
        event.set()
        session: FakeSession = FakeSession(FakeResponse(payload=[{"height": 7}]))
        gw: CosmosGateway = _gateway(session, cancel_event=event)

        with pytest.raises(RunCancelledError):
            gw.last_height_before("cosmos", "cosmoshub-4", datetime(2023, 2, 1, tzinfo=UTC))
        assert session.calls == []

    def test_context_manager_closes_session(self) -> None:
        session: FakeSession = FakeSession()
        with _gateway(session):
            pass
        assert session.closed


class TestRateLimiter:
    def test_spaces_calls(self) -> None:
        limiter: RateLimiter = RateLimiter(20)
        started: float = time.monotonic()
        for _ in range(3):
            limiter.acquire()
        assert time.monotonic() - started >= 0.09
