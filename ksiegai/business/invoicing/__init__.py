from ksiegai.business.invoicing.models import Invoice, InvoiceLine
from ksiegai.business.invoicing.schemas import (
    CorrectionCreate,
    InvoiceCreate,
    InvoiceLineInput,
    InvoiceLineRead,
    InvoiceRead,
    InvoiceUpdate,
    MarkInvoicePaidRequest,
    VatSummaryRead,
)

__all__ = [
    "Invoice",
    "InvoiceLine",
    "CorrectionCreate",
    "InvoiceCreate",
    "InvoiceLineInput",
    "InvoiceLineRead",
    "InvoiceRead",
    "InvoiceUpdate",
    "MarkInvoicePaidRequest",
    "VatSummaryRead",
]
