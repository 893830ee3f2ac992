"""Aggregation of delegations, rewards and validator fees per (account, period)."""

import threading
from collections.abc import Iterable

import structlog

from cosmos_extract.services._helpers import COMMISSION_PRECISION
from cosmos_extract.services.commission import CommissionCache
from cosmos_extract.services.enums import CommissionFailurePolicy
from cosmos_extract.services.errors import GatewayError, RunCancelledError
from cosmos_extract.services.gateway import RemoteGateway
from cosmos_extract.services.schemas.gateway import (
    DelegationData,
    RewardEntry,
    ValidatorCommission,
)
from cosmos_extract.services.schemas.results import DurationResult, Period

logger = structlog.get_logger(__name__)

ZERO_COMMISSION: ValidatorCommission = ValidatorCommission(rate=0, last_changed=None)


def accumulate(totals: dict[str, int], key: str, amount: int) -> None:
    """Insert-or-add: the first touch of ``key`` starts from zero."""
    totals[key] = totals.get(key, 0) + amount


def sum_rewards(entries: Iterable[RewardEntry]) -> dict[str, int]:
    """Gross reward per validator: every component of every entry, summed."""
    totals: dict[str, int] = {}
    for entry in entries:
        accumulate(totals, entry.validator, entry.subtotal)
    return totals


def compute_fee(gross: int, rate: int) -> int:
    """floor(gross * rate / 10^18), integer arithmetic only."""
    return gross * rate // COMMISSION_PRECISION


def net_rewards(gross: int | None, fee: int | None) -> int | None:
    """gross - fee; whichever is present when only one is; None when neither."""
    if gross is not None and fee is not None:
        return gross - fee
    if gross is not None:
        return gross
    return fee


class Aggregator:
    """Builds one DurationResult per (account, period).

    Fees are reconstructed from the validator's *current* commission rate,
    since the search backend only reports raw pre-fee rewards. A rate that
    changed during the period is logged but not corrected.
    """

    def __init__(
        self,
        gateway: RemoteGateway,
        commissions: CommissionCache,
        failure_policy: CommissionFailurePolicy = CommissionFailurePolicy.FAIL,
    ) -> None:
        self.gateway: RemoteGateway = gateway
        self.commissions: CommissionCache = commissions
        self.failure_policy: CommissionFailurePolicy = failure_policy
        self._degraded: set[str] = set()
        self._rate_change_warned: set[tuple[str, str]] = set()
        self._lock: threading.Lock = threading.Lock()

    @property
    def degraded_validators(self) -> list[str]:
        """Validators fee'd at rate 0 because their commission lookup failed."""
        with self._lock:
            return sorted(self._degraded)

    def aggregate(self, account: str, period: Period) -> DurationResult:
        result: DurationResult = DurationResult(period_start=period.start_time)

        logger.info(
            "Getting account delegations",
            account=account,
            period=period.label,
            height=period.end_height,
        )
        delegations: list[DelegationData] = self.gateway.delegations_at(account, period.end_height)
        for d in delegations:
            result.validators.add(d.validator)
            accumulate(result.delegations, d.validator, d.balance)

        logger.info("Getting account rewards", account=account, period=period.label)
        entries: list[RewardEntry] = self.gateway.reward_entries(
            account, period.start_time, period.next_start_time
        )
        result.rewards = sum_rewards(entries)
        result.validators.update(result.rewards)

        for validator in sorted(result.rewards):
            gross: int = result.rewards[validator]
            if gross == 0:
                continue
            commission: ValidatorCommission = self._commission_for(validator, period)
            accumulate(result.fees, validator, compute_fee(gross, commission.rate))

        return result

    def _commission_for(self, validator: str, period: Period) -> ValidatorCommission:
        try:
            commission: ValidatorCommission = self.commissions.get(validator)
        except RunCancelledError:
            raise
        except GatewayError as e:
            if self.failure_policy is CommissionFailurePolicy.FAIL:
                raise
            with self._lock:
                first: bool = validator not in self._degraded
                self._degraded.add(validator)
            if first:
                logger.warning(
                    "Commission lookup failed, using zero rate",
                    validator=validator,
                    error=str(e),
                )
            return ZERO_COMMISSION

        if commission.last_changed is not None and commission.last_changed > period.start_time:
            key: tuple[str, str] = (validator, period.label)
            with self._lock:
                first_warning: bool = key not in self._rate_change_warned
                self._rate_change_warned.add(key)
            if first_warning:
                logger.warning(
                    "Validator commission changed after period start",
                    validator=validator,
                    period=period.label,
                    last_changed=commission.last_changed.isoformat(),
                )
        return commission
