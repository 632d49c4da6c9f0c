from ksiegai.business.tax.schemas import (
    DeclarationRequest,
    GeneratedDeclaration,
    IncomeTaxRequest,
    IncomeTaxResult,
    PitAdvanceResult,
    VatSettlementResult,
    ZusContributions,
)

__all__ = [
    "DeclarationRequest",
    "GeneratedDeclaration",
    "IncomeTaxRequest",
    "IncomeTaxResult",
    "PitAdvanceResult",
    "VatSettlementResult",
    "ZusContributions",
]
