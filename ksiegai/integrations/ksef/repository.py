from __future__ import annotations

from ksiegai.platform.security.repository import BaseRepository


class KsefInvoiceRepository(BaseRepository):
    resource = "ksef.invoice"


class KsefReceivedInvoiceRepository(BaseRepository):
    resource = "ksef.received_invoice"


class KsefSyncStateRepository(BaseRepository):
    resource = "ksef.sync_state"
