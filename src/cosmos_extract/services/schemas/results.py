"""Result dataclasses produced by report services."""

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

from cosmos_extract.services._helpers import month_label


@dataclass(frozen=True)
class Period:
    start_time: datetime
    next_start_time: datetime  # exclusive
    end_height: int

    @property
    def label(self) -> str:
        return month_label(self.start_time)


@dataclass
class DurationResult:
    """Per (account, period) aggregate; absent map entries mean "no data", not zero."""

    period_start: datetime
    validators: set[str] = field(default_factory=set)
    delegations: dict[str, int] = field(default_factory=dict)
    rewards: dict[str, int] = field(default_factory=dict)
    fees: dict[str, int] = field(default_factory=dict)

    @property
    def label(self) -> str:
        return month_label(self.period_start)


# account -> one DurationResult per period, in period order
AccountResults = dict[str, list[DurationResult]]


@dataclass(frozen=True)
class ReportRow:
    account: str
    period_label: str
    validator: str
    delegation: str
    gross_rewards: str
    fees: str
    net_rewards: str

    def as_csv_row(self) -> list[str]:
        return [
            self.account,
            self.period_label,
            self.validator,
            self.delegation,
            self.gross_rewards,
            self.fees,
            self.net_rewards,
        ]


@dataclass
class ExportResult:
    output_path: Path
    row_count: int


@dataclass
class RunResult:
    run_id: str
    output_path: Path
    periods: list[Period]
    account_count: int
    row_count: int
    degraded_validators: list[str]
    warnings: list[str]
    elapsed_seconds: float
