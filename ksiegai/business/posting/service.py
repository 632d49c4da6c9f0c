from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from decimal import Decimal

from fastapi import HTTPException, status
from opentelemetry import trace
from sqlalchemy import func, select
from sqlalchemy.orm import Session, selectinload

from ksiegai import audit
from ksiegai.business.invoicing.models import Invoice
from ksiegai.business.invoicing.repository import InvoiceRepository
from ksiegai.business.posting.facts import PostingFacts, build_posting_facts, validate_posting_facts
from ksiegai.business.posting.schemas import AutoPostPendingResult, PostingResult, PostingStats
from ksiegai.business.profiles.models import BusinessProfile
from ksiegai.platform.ledger.chart import (
    EXPENSES_ACCOUNT,
    PAYABLES_ACCOUNT,
    RECEIVABLES_ACCOUNT,
    REVENUE_ACCOUNT,
    VAT_INPUT_ACCOUNT,
    VAT_OUTPUT_ACCOUNT,
)
from ksiegai.platform.ledger.schemas import JournalEntryCreate, JournalLineInput
from ksiegai.platform.ledger.service import ledger_service
from ksiegai.platform.security.context import AuthContext
from ksiegai.platform.security.errors import AuthorizationError, ForbiddenFieldError


logger = logging.getLogger("ksiegai.posting")
tracer = trace.get_tracer("ksiegai.posting")

ZERO = Decimal("0")
POSTABLE_STATUSES = ("ISSUED", "OVERDUE", "PAID")


class MissingAccountError(Exception):
    def __init__(self, code: str) -> None:
        super().__init__(f"ledger account {code} not found")
        self.code = code


def posting_legs(facts: PostingFacts) -> list[tuple[str, Decimal, Decimal]]:
    """Return (account_code, debit, credit) legs for an invoice.

    Amounts are in PLN. A negative correction swaps every leg's side.
    """

    exempt = facts.vat_status == "EXEMPT"
    gross = abs(facts.gross_pln)
    net = gross if exempt else abs(facts.net_pln)
    vat = ZERO if exempt else abs(facts.vat_pln)

    if facts.transaction_type == "INCOME":
        debits = [(RECEIVABLES_ACCOUNT, gross)]
        credits = [(REVENUE_ACCOUNT, net)]
        if vat > ZERO:
            credits.append((VAT_OUTPUT_ACCOUNT, vat))
    else:
        debits = [(EXPENSES_ACCOUNT, net)]
        if vat > ZERO:
            debits.append((VAT_INPUT_ACCOUNT, vat))
        credits = [(PAYABLES_ACCOUNT, gross)]

    if facts.gross_pln < ZERO:
        debits, credits = credits, debits
    return [(code, amount, ZERO) for code, amount in debits if amount > ZERO] + [
        (code, ZERO, amount) for code, amount in credits if amount > ZERO
    ]


@dataclass(slots=True)
class PostingService:
    invoice_repository: InvoiceRepository = InvoiceRepository()

    def auto_post_invoice(self, session: Session, ctx: AuthContext, invoice_id: uuid.UUID) -> PostingResult:
        invoice = self._get_invoice(session, ctx, invoice_id)
        if invoice.status not in POSTABLE_STATUSES:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="only issued invoices can be posted")
        if invoice.posting_status == "POSTED":
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="invoice already posted")
        try:
            self.invoice_repository.validate_write_security(
                {"posting_status": "POSTED"},
                ctx,
                existing_scope={"business_profile_id": str(invoice.business_profile_id)},
                action="post",
            )
        except (ForbiddenFieldError, AuthorizationError) as exc:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc))

        profile = session.get(BusinessProfile, invoice.business_profile_id)
        facts = build_posting_facts(invoice, vat_status=profile.vat_status if profile is not None else "ACTIVE")
        validation = validate_posting_facts(facts)
        if not validation.ok:
            return self._finish(session, ctx, invoice_id, "ERROR", message="; ".join(validation.errors), warnings=validation.warnings)

        try:
            lines = self._journal_lines(session, facts, invoice)
        except MissingAccountError as exc:
            return self._finish(session, ctx, invoice_id, "NEEDS_REVIEW", message=str(exc), warnings=validation.warnings)

        request = JournalEntryCreate(
            business_profile_id=invoice.business_profile_id,
            entry_date=invoice.issue_date,
            description=self._description(invoice),
            source_type="INVOICE",
            source_id=str(invoice.id),
            lines=lines,
        )
        try:
            entry = ledger_service.record_entry(session, ctx, request)
        except HTTPException as exc:
            session.rollback()
            return self._finish(session, ctx, invoice_id, "ERROR", message=str(exc.detail), warnings=validation.warnings)

        return self._finish(session, ctx, invoice_id, "POSTED", journal_entry_id=entry.id, warnings=validation.warnings)

    def auto_post_pending(
        self,
        session: Session,
        ctx: AuthContext,
        *,
        business_profile_id: uuid.UUID,
        limit: int = 100,
    ) -> AutoPostPendingResult:
        with tracer.start_as_current_span("posting.auto_post_pending") as span:
            span.set_attribute("business_profile_id", str(business_profile_id))
            span.set_attribute("limit", limit)

            stmt = (
                select(Invoice.id)
                .where(
                    Invoice.business_profile_id == business_profile_id,
                    Invoice.posting_status == "UNPOSTED",
                    Invoice.status.in_(POSTABLE_STATUSES),
                )
                .order_by(Invoice.issue_date.asc(), Invoice.created_at.asc())
                .limit(limit)
            )
            invoice_ids = list(session.scalars(self.invoice_repository.apply_scope_query(stmt, ctx)).all())

            result = AutoPostPendingResult()
            for invoice_id in invoice_ids:
                outcome = self.auto_post_invoice(session, ctx, invoice_id)
                result.processed += 1
                if outcome.outcome == "POSTED":
                    result.posted += 1
                elif outcome.outcome == "NEEDS_REVIEW":
                    result.needs_review += 1
                else:
                    result.errors += 1
                result.results.append(outcome)

            span.set_attribute("processed", result.processed)
            span.set_attribute("posted", result.posted)
            logger.info(
                "posting.auto_post_pending.completed",
                extra={"business_profile_id": str(business_profile_id), "count": result.processed, "status": f"{result.posted} posted"},
            )
            return result

    def posting_stats(self, session: Session, ctx: AuthContext, *, business_profile_id: uuid.UUID) -> PostingStats:
        stmt = (
            select(Invoice.posting_status, func.count())
            .where(
                Invoice.business_profile_id == business_profile_id,
                Invoice.status.in_(POSTABLE_STATUSES),
            )
            .group_by(Invoice.posting_status)
        )
        counts = {row[0]: int(row[1]) for row in session.execute(self.invoice_repository.apply_scope_query(stmt, ctx)).all()}
        return PostingStats(
            business_profile_id=business_profile_id,
            posted=counts.get("POSTED", 0),
            unposted=counts.get("UNPOSTED", 0),
            needs_review=counts.get("NEEDS_REVIEW", 0),
            error=counts.get("ERROR", 0),
        )

    def _journal_lines(self, session: Session, facts: PostingFacts, invoice: Invoice) -> list[JournalLineInput]:
        lines: list[JournalLineInput] = []
        for code, debit, credit in posting_legs(facts):
            account = ledger_service.find_account_by_code(session, invoice.business_profile_id, code)
            if account is None:
                raise MissingAccountError(code)
            lines.append(
                JournalLineInput(
                    account_id=account.id,
                    debit_amount=debit,
                    credit_amount=credit,
                    description=invoice.number,
                    counterparty_id=invoice.customer_id,
                )
            )
        return lines

    def _finish(
        self,
        session: Session,
        ctx: AuthContext,
        invoice_id: uuid.UUID,
        outcome: str,
        *,
        journal_entry_id: uuid.UUID | None = None,
        message: str | None = None,
        warnings: list[str] | None = None,
    ) -> PostingResult:
        invoice = session.get(Invoice, invoice_id)
        previous = invoice.posting_status
        invoice.posting_status = outcome
        invoice.posting_error = message
        if journal_entry_id is not None:
            invoice.journal_entry_id = journal_entry_id
        session.commit()

        audit.record(
            actor_user_id=ctx.user_id,
            entity_type="invoicing.invoice",
            entity_id=str(invoice_id),
            action="posting",
            before={"posting_status": previous},
            after={"posting_status": outcome, "posting_error": message},
            correlation_id=ctx.correlation_id,
        )
        if outcome != "POSTED":
            logger.warning(
                "posting.invoice.not_posted",
                extra={"invoice_id": str(invoice_id), "status": outcome, "reason": message},
            )
        return PostingResult(
            invoice_id=invoice_id,
            outcome=outcome,
            journal_entry_id=journal_entry_id,
            message=message,
            warnings=warnings or [],
        )

    def _get_invoice(self, session: Session, ctx: AuthContext, invoice_id: uuid.UUID) -> Invoice:
        invoice = self.invoice_repository.get_scoped(session, ctx, Invoice, invoice_id, selectinload(Invoice.lines))
        if invoice is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="invoice not found")
        return invoice

    @staticmethod
    def _description(invoice: Invoice) -> str:
        kind = "Korekta" if invoice.document_type == "CORRECTION" else "Faktura"
        side = "sprzedaży" if invoice.transaction_type == "INCOME" else "zakupu"
        counterparty = f" - {invoice.counterparty_name}" if invoice.counterparty_name else ""
        return f"{kind} {side} {invoice.number}{counterparty}"


posting_service = PostingService()
