from __future__ import annotations

import logging

from openpyxl import load_workbook

from tbo.domain.errors import AppError, ValidationError

log = logging.getLogger(__name__)

REQUIRED_HEADERS = ["code", "quantity", "batch_no", "expiry_date"]


class ExcelService:
    def __init__(self, repo, lot_store):
        self.repo = repo
        self.lots = lot_store

    def import_stock_entries_excel(self, path: str, warehouse_id: int) -> tuple[int, int]:
        """
        Each row is a stock entry (a new lot), not an absolute stock level.
        Headers:
          code | quantity | batch_no | expiry_date
        batch_no and expiry_date may be left empty.
        """
        wb = load_workbook(path)
        ws = wb.active

        headers = {}
        for col in range(1, ws.max_column + 1):
            v = ws.cell(row=1, column=col).value
            if isinstance(v, str):
                headers[v.strip().lower()] = col

        for h in REQUIRED_HEADERS:
            if h not in headers:
                raise ValidationError(f"Missing column header: {h}")

        ok = 0
        skipped = 0

        for row in range(2, ws.max_row + 1):
            code = ws.cell(row=row, column=headers["code"]).value
            qty = ws.cell(row=row, column=headers["quantity"]).value
            batch_no = ws.cell(row=row, column=headers["batch_no"]).value
            expiry = ws.cell(row=row, column=headers["expiry_date"]).value

            if not code or qty is None:
                skipped += 1
                continue

            try:
                product = self.repo.get_product_by_code(str(code).strip())
                if not product:
                    raise ValidationError(f"Unknown product code: {code}")
                self.lots.create_lot(
                    product.id,
                    int(warehouse_id),
                    int(float(qty)),
                    batch_no=(str(batch_no).strip() if batch_no else None),
                    expiry_date=expiry or None,
                    notes=f"Excel import row {row}",
                )
                ok += 1
            except (AppError, TypeError, ValueError) as e:
                log.warning("Excel import skipped row %s: %s", row, e)
                skipped += 1

        log.info("excel_import path=%s warehouse_id=%s ok=%s skipped=%s", path, warehouse_id, ok, skipped)
        return ok, skipped
