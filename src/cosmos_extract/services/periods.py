"""Calendar-month periods anchored to on-chain heights."""

from datetime import datetime

import structlog

from cosmos_extract.services._helpers import ensure_utc, month_start, months_spanned
from cosmos_extract.services.errors import ConfigurationError
from cosmos_extract.services.gateway import RemoteGateway
from cosmos_extract.services.schemas.results import Period

logger = structlog.get_logger(__name__)


class PeriodBuilder:
    """Splits a time range into whole calendar months, each resolved to its last height.

    Periods are never clipped to the requested range: a range starting on
    the 15th still yields a period starting on the 1st, and the last
    period's ``next_start_time`` may lie after ``end_time``.
    """

    def __init__(self, gateway: RemoteGateway, network: str, chain_id: str) -> None:
        self.gateway: RemoteGateway = gateway
        self.network: str = network
        self.chain_id: str = chain_id

    def build(self, start_time: datetime, end_time: datetime) -> list[Period]:
        start: datetime = ensure_utc(start_time)
        end: datetime = ensure_utc(end_time)
        if start > end:
            raise ConfigurationError("start time must come before end time")

        periods: list[Period] = []
        for i in range(months_spanned(start, end)):
            curr_start: datetime = month_start(start.year, start.month + i)
            next_start: datetime = month_start(start.year, start.month + i + 1)

            # NoHeightFoundError and transport errors propagate; both are fatal.
            height: int = self.gateway.last_height_before(self.network, self.chain_id, next_start)
            logger.debug(
                "Resolved period end height",
                period=curr_start.date().isoformat(),
                before=next_start.isoformat(),
                height=height,
            )
            periods.append(
                Period(start_time=curr_start, next_start_time=next_start, end_height=height)
            )
        return periods
