"""Report run orchestration: periods x accounts -> CSV."""

import threading
import time
from concurrent.futures import CancelledError, Future, ThreadPoolExecutor, as_completed

import structlog

from cosmos_extract.config.settings import RunConfig
from cosmos_extract.services._helpers import new_id
from cosmos_extract.services.aggregation import Aggregator
from cosmos_extract.services.commission import CommissionCache
from cosmos_extract.services.errors import (
    AggregationError,
    GatewayError,
    ReportRunError,
    RunCancelledError,
    UnitFailure,
)
from cosmos_extract.services.export import ReportAssembler
from cosmos_extract.services.gateway import RemoteGateway
from cosmos_extract.services.periods import PeriodBuilder
from cosmos_extract.services.schemas.results import (
    AccountResults,
    DurationResult,
    ExportResult,
    Period,
    ReportRow,
    RunResult,
)

logger = structlog.get_logger(__name__)

# (period index, period, account)
Unit = tuple[int, Period, str]


class ReportRunner:
    """Runs one report: build periods, aggregate every (period, account), write the CSV.

    Nothing is written unless every unit succeeds. With ``max_workers > 1``
    units run on a thread pool; failures are collected and reported together.
    """

    def __init__(
        self,
        gateway: RemoteGateway,
        config: RunConfig,
        cancel_event: threading.Event | None = None,
        assembler: ReportAssembler | None = None,
    ) -> None:
        self.gateway: RemoteGateway = gateway
        self.config: RunConfig = config
        self.cancel_event: threading.Event = cancel_event or threading.Event()
        self.assembler: ReportAssembler = assembler or ReportAssembler()

    def run(self) -> RunResult:
        started: float = time.monotonic()
        self.config.validate()
        run_id: str = new_id()
        accounts: list[str] = self.config.accounts
        start, end = self.config.time_range()

        logger.info(
            "Starting report run",
            run_id=run_id,
            accounts=len(accounts),
            start=start.isoformat(),
            end=end.isoformat(),
            workers=self.config.max_workers,
        )

        periods: list[Period] = PeriodBuilder(
            self.gateway, self.config.network, self.config.chain_id
        ).build(start, end)
        aggregator: Aggregator = Aggregator(
            self.gateway,
            CommissionCache(self.gateway),
            self.config.commission_failure_policy,
        )

        try:
            results: AccountResults = self._collect(aggregator, periods, accounts)
        except KeyboardInterrupt as e:
            self.cancel_event.set()
            raise RunCancelledError("Report run interrupted") from e

        if self.cancel_event.is_set():
            raise RunCancelledError("Report run cancelled before export")

        rows: list[ReportRow] = self.assembler.assemble(results, accounts)
        export: ExportResult = self.assembler.write_csv(rows, self.config.output_path)

        degraded: list[str] = aggregator.degraded_validators
        warnings: list[str] = []
        if degraded:
            warnings.append(
                f"{len(degraded)} validator(s) fee'd at zero commission after lookup failure"
            )
        if not rows:
            warnings.append("No delegations or rewards found for any account")

        elapsed: float = time.monotonic() - started
        logger.info(
            "Report run complete",
            run_id=run_id,
            periods=len(periods),
            rows=export.row_count,
            elapsed_seconds=round(elapsed, 3),
        )
        return RunResult(
            run_id=run_id,
            output_path=export.output_path,
            periods=periods,
            account_count=len(accounts),
            row_count=export.row_count,
            degraded_validators=degraded,
            warnings=warnings,
            elapsed_seconds=elapsed,
        )

    # ------------------------------------------------------------------
    # Unit execution
    # ------------------------------------------------------------------

    def _run_unit(self, aggregator: Aggregator, account: str, period: Period) -> DurationResult:
        if self.cancel_event.is_set():
            raise RunCancelledError(f"Run cancelled before {account} @ {period.label}")
        try:
            return aggregator.aggregate(account, period)
        except RunCancelledError:
            raise
        except GatewayError as e:
            raise AggregationError(account, period.label, e) from e

    def _collect(
        self, aggregator: Aggregator, periods: list[Period], accounts: list[str]
    ) -> AccountResults:
        slots: dict[str, list[DurationResult | None]] = {a: [None] * len(periods) for a in accounts}
        units: list[Unit] = [(i, p, a) for i, p in enumerate(periods) for a in accounts]

        if self.config.max_workers <= 1:
            for i, period, account in units:
                try:
                    slots[account][i] = self._run_unit(aggregator, account, period)
                except AggregationError as e:
                    logger.error("Report unit failed", account=account, period=period.label)
                    raise ReportRunError([UnitFailure(account, period.label, e.cause)]) from e
        else:
            self._collect_parallel(aggregator, units, slots)

        merged: AccountResults = {}
        for account, durations in slots.items():
            merged[account] = [d for d in durations if d is not None]
        return merged

    def _collect_parallel(
        self,
        aggregator: Aggregator,
        units: list[Unit],
        slots: dict[str, list[DurationResult | None]],
    ) -> None:
        failures: list[tuple[int, int, UnitFailure]] = []
        order: dict[str, int] = {a: n for n, a in enumerate(slots)}

        with ThreadPoolExecutor(
            max_workers=self.config.max_workers, thread_name_prefix="report-unit"
        ) as pool:
            futures: dict[Future[DurationResult], Unit] = {
                pool.submit(self._run_unit, aggregator, account, period): (i, period, account)
                for i, period, account in units
            }
            try:
                for fut in as_completed(futures):
                    i, period, account = futures[fut]
                    try:
                        slots[account][i] = fut.result()
                    except (CancelledError, RunCancelledError):
                        continue
                    except AggregationError as e:
                        logger.error("Report unit failed", account=account, period=period.label)
                        failures.append(
                            (i, order[account], UnitFailure(account, period.label, e.cause))
                        )
                        for pending in futures:
                            pending.cancel()
            except KeyboardInterrupt:
                self.cancel_event.set()
                pool.shutdown(wait=False, cancel_futures=True)
                raise

        if failures:
            failures.sort(key=lambda f: (f[0], f[1]))
            raise ReportRunError([f[2] for f in failures])
        if self.cancel_event.is_set():
            raise RunCancelledError("Report run cancelled")
