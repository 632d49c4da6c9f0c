from __future__ import annotations

from ksiegai.platform.security.repository import BaseRepository


class CashAccountRepository(BaseRepository):
    resource = "cash.account"


class CashDocumentRepository(BaseRepository):
    resource = "cash.document"


class CashReconciliationRepository(BaseRepository):
    resource = "cash.reconciliation"
