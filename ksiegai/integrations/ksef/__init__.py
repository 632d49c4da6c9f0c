from ksiegai.integrations.ksef.errors import KsefError, KsefErrorType
from ksiegai.integrations.ksef.models import KsefReceivedInvoice, KsefSyncRun, KsefSyncState

__all__ = [
    "KsefError",
    "KsefErrorType",
    "KsefReceivedInvoice",
    "KsefSyncRun",
    "KsefSyncState",
]
