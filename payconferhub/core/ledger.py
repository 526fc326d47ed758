"""
Append-only payment ledger.

One CSV line per payment: ``partner,total_value,payment_date``. No header.
The file is opened in append mode for every record and closed right after,
so nothing holds it open between aggregation runs.
"""
import asyncio
import csv
import io
import threading
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from pathlib import Path
from typing import Any, List, Optional

import structlog

from payconferhub.core.exceptions import PersistenceError
from payconferhub.core.models import Payment


@dataclass(frozen=True)
class LedgerEntry:
    """A payment record as read back from the ledger file."""

    partner: str
    total_value: Decimal
    payment_date: date


def format_entry(payment: Payment) -> str:
    """
    Serialize a payment to a single ledger line (newline included).

    Totals are written in plain positional notation, never in exponent form.
    """
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(
        [payment.partner, format(payment.total_value, "f"), payment.payment_date.isoformat()]
    )
    return buffer.getvalue()


class LedgerWriter:
    """
    Writes payment records to the append-only ledger file.

    Each record goes out in a single ``write`` call under a lock shared by
    every writer in the process, so concurrent aggregation runs never
    interleave partial lines.
    """

    _write_lock = threading.Lock()

    def __init__(self, path: str | Path, logger: Optional[Any] = None):
        self.path = Path(path)
        self._logger = logger or structlog.get_logger(__name__)

    def _append_line(self, line: str) -> None:
        with self._write_lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "a", encoding="utf-8", newline="") as handle:
                handle.write(line)

    async def append(self, payment: Payment) -> None:
        """
        Append one payment record.

        Args:
            payment: Payment to record

        Raises:
            PersistenceError: If the ledger file cannot be written
        """
        line = format_entry(payment)
        try:
            await asyncio.to_thread(self._append_line, line)
        except OSError as e:
            raise PersistenceError(
                f"Failed to append payment to ledger {self.path}: {e}",
                ledger_path=str(self.path),
                partner=payment.partner,
            ) from e

        self._logger.info(
            "ledger_entry_appended",
            ledger_path=str(self.path),
            partner=payment.partner,
            total_value=str(payment.total_value),
        )

    def read_entries(self) -> List[LedgerEntry]:
        """Parse every record in the ledger, oldest first."""
        if not self.path.exists():
            return []

        with open(self.path, "r", encoding="utf-8", newline="") as handle:
            return [
                LedgerEntry(
                    partner=row[0],
                    total_value=Decimal(row[1]),
                    payment_date=date.fromisoformat(row[2]),
                )
                for row in csv.reader(handle)
                if row
            ]
