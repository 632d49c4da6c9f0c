from __future__ import annotations

from ksiegai.platform.security.repository import BaseRepository


class InvoiceRepository(BaseRepository):
    resource = "invoicing.invoice"


class InvoiceLineRepository(BaseRepository):
    resource = "invoicing.invoice_line"
