"""Bulk persistence of validated product records."""

from __future__ import annotations

import logging
from typing import Any, Sequence

from sqlalchemy import insert, text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from catalog_io.db.models.product import Product
from catalog_io.services.validator import ERROR_TYPE_DATABASE, RowError, ValidatedRecord

logger = logging.getLogger(__name__)


def _describe_integrity_error(exc: IntegrityError, values: dict[str, Any]) -> tuple[str | None, str]:
    detail = str(exc.orig).lower()
    if "uq_products_brand_sku" in detail or ("unique" in detail and "sku" in detail):
        return "sku", f"sku: Duplicate SKU '{values.get('sku')}'"
    if "not null" in detail:
        return None, "Database error: missing required value"
    return None, "Database error: record rejected by constraint"


class ProductStore:
    """Inserts product rows for one owner, isolating rows the database rejects."""

    def __init__(self, statement_timeout_seconds: int | None = None):
        self.statement_timeout_seconds = statement_timeout_seconds

    def _apply_statement_timeout(self, session: Session) -> None:
        if not self.statement_timeout_seconds:
            return
        if session.get_bind().dialect.name != "postgresql":
            return
        timeout_ms = int(self.statement_timeout_seconds * 1000)
        session.execute(text(f"SET LOCAL statement_timeout = {timeout_ms}"))

    def _to_row(self, record: ValidatedRecord, owner_id: str, batch_id: str | None) -> dict[str, Any]:
        return {**record.data, "brand_id": owner_id, "import_batch_id": batch_id}

    def bulk_insert(
        self,
        session: Session,
        records: Sequence[ValidatedRecord],
        owner_id: str,
        batch_id: str | None = None,
    ) -> tuple[int, list[RowError]]:
        """Insert ``records`` inside the caller's transaction.

        Returns the number of inserted rows and a RowError for every record the
        database refused. Errors other than integrity violations propagate.
        """
        if not records:
            return 0, []

        self._apply_statement_timeout(session)
        rows = [self._to_row(record, owner_id, batch_id) for record in records]

        try:
            with session.begin_nested():
                session.execute(insert(Product), rows)
            return len(rows), []
        except IntegrityError as exc:
            logger.warning(f"Bulk insert rejected ({exc.orig}); retrying {len(rows)} rows individually")

        inserted = 0
        errors: list[RowError] = []
        for record, row in zip(records, rows):
            try:
                with session.begin_nested():
                    session.execute(insert(Product), [row])
                inserted += 1
            except IntegrityError as exc:
                column_name, message = _describe_integrity_error(exc, row)
                errors.append(
                    RowError(
                        row_number=record.row_number,
                        message=message,
                        raw_data=record.raw_data,
                        column_name=column_name,
                        error_type=ERROR_TYPE_DATABASE,
                    )
                )
        return inserted, errors
