from __future__ import annotations

from ksiegai.platform.security.repository import BaseRepository


class FinanceReportRepository(BaseRepository):
    resource = "reports.finance.statement"


class ReceivablesReportRepository(BaseRepository):
    resource = "reports.finance.receivables"
