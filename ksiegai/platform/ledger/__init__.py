from ksiegai.platform.ledger.models import AccountingPeriod, JournalEntry, JournalLine, LedgerAccount
from ksiegai.platform.ledger.schemas import (
    AccountLedgerRead,
    JournalEntryCreate,
    JournalEntryRead,
    JournalEntryReverseRequest,
    JournalLineInput,
    JournalLineRead,
    LedgerAccountCreate,
    LedgerAccountRead,
)

__all__ = [
    "AccountingPeriod",
    "LedgerAccount",
    "JournalEntry",
    "JournalLine",
    "AccountLedgerRead",
    "LedgerAccountCreate",
    "LedgerAccountRead",
    "JournalEntryCreate",
    "JournalEntryRead",
    "JournalEntryReverseRequest",
    "JournalLineInput",
    "JournalLineRead",
]
