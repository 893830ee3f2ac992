"""Gateway data transfer objects."""

from dataclasses import dataclass, field
from datetime import datetime


@dataclass
class DelegationData:
    validator: str
    balance: int


@dataclass
class RewardEntry:
    """Raw, pre-fee reward record; ``components`` are summed before attribution."""

    validator: str
    components: list[int] = field(default_factory=list)

    @property
    def subtotal(self) -> int:
        return sum(self.components, 0)


@dataclass(frozen=True)
class ValidatorCommission:
    rate: int  # numerator over COMMISSION_PRECISION
    last_changed: datetime | None
