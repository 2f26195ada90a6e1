"""
Statement import pipeline.

    upload -> detect dialect -> read rows -> normalize -> reconcile -> audit

``parse_statement`` is pure CPU work; ``import_statement`` performs the
store writes. Format errors surface before anything is persisted.
"""

import uuid
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, List, Optional, Union

from .dialect import DialectDetector, decode_content, read_rows
from .models import Dialect, RawRow, RejectedRow, Transaction, UploadBatch
from .normalizer import normalize_rows
from .reconciliation import ReconciliationEngine
from .store import TransactionStore

logger = logging.getLogger(__name__)


@dataclass
class ParsedStatement:
    """A statement after detection and normalization, before reconciliation."""

    dialect: Dialect
    rows: List[RawRow]
    transactions: List[Transaction]
    rejected: List[RejectedRow]


@dataclass
class ImportOutcome:
    batch: UploadBatch
    accepted: List[Transaction] = field(default_factory=list)

    @property
    def rejected(self) -> List[RejectedRow]:
        return list(self.batch.rejected)


def parse_statement(
    content: Union[bytes, str],
    bank_hint: Optional[str] = None,
    detector: Optional[DialectDetector] = None,
) -> ParsedStatement:
    """Detect the dialect and normalize every data row.

    Raises UnrecognizedFormat / AmbiguousAmountColumns for unusable files.
    """
    detector = detector or DialectDetector()
    text = decode_content(content)
    dialect = detector.detect(text, bank_hint)
    rows = read_rows(text, dialect)
    transactions, rejected = normalize_rows(rows, dialect)

    logger.info(
        f"Parsed {len(rows)} rows: {len(transactions)} normalized, {len(rejected)} rejected"
    )
    return ParsedStatement(dialect, rows, transactions, rejected)


async def import_statement(
    engine: ReconciliationEngine,
    store: TransactionStore,
    user_id: str,
    filename: str,
    content: Union[bytes, str],
    bank_hint: Optional[str] = None,
    detector: Optional[DialectDetector] = None,
    upload_id: Optional[str] = None,
    clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
) -> ImportOutcome:
    """
    Parse, reconcile and audit one uploaded statement for ``user_id``.

    ``user_id`` must come from a validated session. The UploadBatch is
    written once, after every row has been processed; ``row_count``
    includes rejected rows, accepted/duplicate counts do not.
    """
    parsed = parse_statement(content, bank_hint, detector)
    upload_id = upload_id or str(uuid.uuid4())

    result = await engine.reconcile(user_id, upload_id, parsed.transactions)
    rejected = parsed.rejected + result.rejected

    batch = UploadBatch(
        upload_id=upload_id,
        user_id=user_id,
        timestamp=clock(),
        source_filename=filename,
        row_count=len(parsed.rows),
        accepted_count=len(result.accepted),
        duplicate_count=result.duplicates,
        rejected_count=len(rejected),
        rejected=tuple(sorted(rejected, key=lambda r: r.line_number or 0)),
    )
    await store.record_upload_batch(batch)

    logger.info(
        f"Upload {upload_id} ({filename}): rows={batch.row_count} "
        f"accepted={batch.accepted_count} duplicates={batch.duplicate_count} "
        f"rejected={batch.rejected_count}"
    )
    return ImportOutcome(batch=batch, accepted=result.accepted)
