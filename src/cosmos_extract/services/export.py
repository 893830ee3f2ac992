"""Flattening of account results into report rows, and CSV export."""

import csv
import os
import tempfile
from collections.abc import Sequence
from pathlib import Path

import structlog

from cosmos_extract.services.aggregation import net_rewards
from cosmos_extract.services.errors import ExportError
from cosmos_extract.services.schemas.results import (
    AccountResults,
    DurationResult,
    ExportResult,
    ReportRow,
)

logger = structlog.get_logger(__name__)

CSV_COLUMNS: list[str] = [
    "account",
    "date",
    "validator",
    "delegation",
    "gross_rewards",
    "fees",
    "net_rewards",
]


def _current_umask() -> int:
    mask: int = os.umask(0)
    os.umask(mask)
    return mask


def _fmt(value: int | None) -> str:
    return "" if value is None else str(value)


class ReportAssembler:
    """Turns AccountResults into ordered ReportRows and writes them out."""

    def assemble(self, results: AccountResults, accounts: Sequence[str]) -> list[ReportRow]:
        """Rows ordered by account (input order), period, then validator id."""
        rows: list[ReportRow] = []
        for account in accounts:
            for duration in results.get(account, []):
                rows.extend(self._rows_for(account, duration))
        return rows

    def _rows_for(self, account: str, duration: DurationResult) -> list[ReportRow]:
        rows: list[ReportRow] = []
        for validator in sorted(duration.validators):
            gross: int | None = duration.rewards.get(validator)
            fee: int | None = duration.fees.get(validator)
            rows.append(
                ReportRow(
                    account=account,
                    period_label=duration.label,
                    validator=validator,
                    delegation=_fmt(duration.delegations.get(validator)),
                    gross_rewards=_fmt(gross),
                    fees=_fmt(fee),
                    net_rewards=_fmt(net_rewards(gross, fee)),
                )
            )
        return rows

    def write_csv(self, rows: Sequence[ReportRow], output_path: Path) -> ExportResult:
        """Write all rows; the target only appears once the file is complete."""
        output_path = Path(output_path)
        try:
            output_path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{output_path.name}.", suffix=".tmp", dir=output_path.parent
            )
        except OSError as e:
            raise ExportError(f"Cannot create output in {output_path.parent}: {e}") from e

        try:
            with os.fdopen(fd, "w", newline="", encoding="utf-8") as f:
                writer = csv.writer(f)
                writer.writerow(CSV_COLUMNS)
                for row in rows:
                    writer.writerow(row.as_csv_row())
            # mkstemp creates 0600; give the report the mode a plain open() would
            os.chmod(tmp_name, 0o666 & ~_current_umask())
            os.replace(tmp_name, output_path)
        except OSError as e:
            Path(tmp_name).unlink(missing_ok=True)
            raise ExportError(f"Failed writing {output_path}: {e}") from e
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

        logger.info("Report written", output=str(output_path), rows=len(rows))
        return ExportResult(output_path=output_path, row_count=len(rows))
