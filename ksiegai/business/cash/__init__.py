from ksiegai.business.cash.models import CashAccount, CashDocument, CashReconciliation
from ksiegai.business.cash.schemas import (
    CashAccountCreate,
    CashAccountRead,
    CashDocumentCreate,
    CashDocumentRead,
    CashReconciliationCreate,
    CashReconciliationRead,
    CashRegisterSummary,
)

__all__ = [
    "CashAccount",
    "CashDocument",
    "CashReconciliation",
    "CashAccountCreate",
    "CashAccountRead",
    "CashDocumentCreate",
    "CashDocumentRead",
    "CashReconciliationCreate",
    "CashReconciliationRead",
    "CashRegisterSummary",
]
