from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal

from ksiegai.business.invoicing.models import Invoice
from ksiegai.core.money import q, to_grosze


@dataclass(slots=True)
class RateBreakdown:
    vat_rate: str
    net_pln: Decimal
    vat_pln: Decimal


@dataclass(slots=True)
class PostingFacts:
    """Normalised view of an invoice, in PLN, that posting rules work from."""

    invoice_id: uuid.UUID | None
    business_profile_id: uuid.UUID | None
    document_type: str
    transaction_type: str
    issue_date: date
    currency: str
    exchange_rate: Decimal
    net_pln: Decimal
    vat_pln: Decimal
    gross_pln: Decimal
    net_grosze: int
    vat_grosze: int
    gross_grosze: int
    vat_status: str
    ksef_status: str
    ksef_number: str | None
    counterparty_name: str | None
    counterparty_nip: str | None
    breakdown: list[RateBreakdown] = field(default_factory=list)


@dataclass(slots=True)
class FactsValidation:
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


def build_posting_facts(invoice: Invoice, *, vat_status: str) -> PostingFacts:
    rate = Decimal(invoice.exchange_rate) if invoice.currency != "PLN" else Decimal("1")

    grouped: dict[str, list[Decimal]] = {}
    for line in invoice.lines:
        bucket = grouped.setdefault(line.vat_rate, [Decimal("0"), Decimal("0")])
        bucket[0] += Decimal(line.net_amount)
        bucket[1] += Decimal(line.vat_amount)
    breakdown = [
        RateBreakdown(vat_rate=code, net_pln=q(net * rate), vat_pln=q(vat * rate))
        for code, (net, vat) in sorted(grouped.items())
    ]

    net_pln = q(sum((item.net_pln for item in breakdown), Decimal("0")))
    vat_pln = q(sum((item.vat_pln for item in breakdown), Decimal("0")))
    gross_pln = net_pln + vat_pln
    return PostingFacts(
        invoice_id=invoice.id,
        business_profile_id=invoice.business_profile_id,
        document_type=invoice.document_type,
        transaction_type=invoice.transaction_type,
        issue_date=invoice.issue_date,
        currency=invoice.currency,
        exchange_rate=rate,
        net_pln=net_pln,
        vat_pln=vat_pln,
        gross_pln=gross_pln,
        net_grosze=to_grosze(net_pln),
        vat_grosze=to_grosze(vat_pln),
        gross_grosze=to_grosze(gross_pln),
        vat_status=vat_status,
        ksef_status=invoice.ksef_status,
        ksef_number=invoice.ksef_number,
        counterparty_name=invoice.counterparty_name,
        counterparty_nip=invoice.counterparty_nip,
        breakdown=breakdown,
    )


def validate_posting_facts(facts: PostingFacts) -> FactsValidation:
    result = FactsValidation()
    if facts.invoice_id is None:
        result.errors.append("missing invoice id")
    if facts.business_profile_id is None:
        result.errors.append("missing business profile id")
    if facts.document_type == "VAT" and facts.gross_grosze <= 0:
        result.errors.append("gross amount must be positive for a VAT invoice")
    if facts.document_type == "CORRECTION" and facts.gross_grosze == 0:
        result.errors.append("correction has nothing to post")

    if facts.vat_status == "ACTIVE" and not facts.breakdown:
        result.warnings.append("VAT-active profile without a VAT rate breakdown")
    if facts.currency != "PLN" and facts.exchange_rate == Decimal("1"):
        result.warnings.append(f"{facts.currency} invoice without an exchange rate")
    if facts.ksef_status in {"SUBMITTED", "ACCEPTED"} and not facts.ksef_number:
        result.warnings.append("KSeF status set without a KSeF number")
    if facts.transaction_type == "EXPENSE" and not (facts.counterparty_name or facts.counterparty_nip):
        result.warnings.append("expense invoice without a counterparty")
    return result
