"""Shared exception hierarchy for report services."""

from dataclasses import dataclass

# ── Configuration ─────────────────────────────────────────────────────────────


class ConfigurationError(Exception):
    """Run parameters or gateway settings are missing or contradictory."""


# ── Gateway ───────────────────────────────────────────────────────────────────


class GatewayError(Exception):
    """Base exception for remote gateway errors."""


class RemoteCallError(GatewayError):
    """Transport failure, timeout, or non-success response."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code: int | None = status_code


class NoHeightFoundError(GatewayError):
    """The chain has no height before the requested instant."""


class DecodeError(GatewayError):
    """Response payload could not be decoded."""


class RunCancelledError(GatewayError):
    """A call was attempted after the run was cancelled."""


# ── Aggregation ───────────────────────────────────────────────────────────────


class AggregationError(Exception):
    """One (account, period) unit could not be aggregated."""

    def __init__(self, account: str, period_label: str, cause: Exception) -> None:
        super().__init__(f"{account} @ {period_label}: {cause}")
        self.account: str = account
        self.period_label: str = period_label
        self.cause: Exception = cause


@dataclass
class UnitFailure:
    account: str
    period_label: str
    error: Exception


class ReportRunError(Exception):
    """One or more (account, period) units failed; no output was written."""

    def __init__(self, failures: list[UnitFailure]) -> None:
        summary: str = "; ".join(
            f"{f.account} @ {f.period_label}: {f.error}" for f in failures[:5]
        )
        if len(failures) > 5:
            summary += f"; ... and {len(failures) - 5} more"
        super().__init__(f"{len(failures)} report unit(s) failed: {summary}")
        self.failures: list[UnitFailure] = failures


# ── Export ────────────────────────────────────────────────────────────────────


class ExportError(Exception):
    """Report output could not be written."""
