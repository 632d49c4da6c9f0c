from ksiegai.models.audit import AuditEvent
from ksiegai.business.profiles.models import BusinessProfile
from ksiegai.business.customers.models import Customer
from ksiegai.business.products.models import Product
from ksiegai.business.invoicing.models import Invoice, InvoiceLine
from ksiegai.business.cash.models import CashAccount, CashDocument, CashReconciliation
from ksiegai.platform.ledger.models import AccountingPeriod, JournalEntry, JournalLine, LedgerAccount
from ksiegai.integrations.ksef.models import KsefReceivedInvoice, KsefSyncRun, KsefSyncState

__all__ = [
	"AuditEvent",
	"BusinessProfile",
	"Customer",
	"Product",
	"Invoice",
	"InvoiceLine",
	"CashAccount",
	"CashDocument",
	"CashReconciliation",
	"AccountingPeriod",
	"LedgerAccount",
	"JournalEntry",
	"JournalLine",
	"KsefReceivedInvoice",
	"KsefSyncState",
	"KsefSyncRun",
]
