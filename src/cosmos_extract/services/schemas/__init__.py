"""Shared dataclasses for report services."""

from cosmos_extract.services.schemas.gateway import (
    DelegationData,
    RewardEntry,
    ValidatorCommission,
)
from cosmos_extract.services.schemas.results import (
    AccountResults,
    DurationResult,
    ExportResult,
    Period,
    ReportRow,
    RunResult,
)

__all__ = [
    # Gateway schemas
    "DelegationData",
    "RewardEntry",
    "ValidatorCommission",
    # Result schemas
    "AccountResults",
    "DurationResult",
    "ExportResult",
    "Period",
    "ReportRow",
    "RunResult",
]
