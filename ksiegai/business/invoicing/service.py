from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
from typing import Any

from fastapi import HTTPException, status
from sqlalchemy import Select, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from ksiegai import audit, events
from ksiegai.business.customers.models import Customer
from ksiegai.business.invoicing.models import Invoice, InvoiceLine
from ksiegai.business.invoicing.repository import InvoiceLineRepository, InvoiceRepository
from ksiegai.business.invoicing.schemas import (
    CorrectionCreate,
    InvoiceCreate,
    InvoiceLineInput,
    InvoiceLineRead,
    InvoiceRead,
    InvoiceUpdate,
    InvoiceVoidRequest,
    MarkInvoicePaidRequest,
    RefreshOverdueResponse,
    VatSummaryRead,
    VatSummaryRow,
)
from ksiegai.business.posting.service import posting_service
from ksiegai.business.products.models import Product
from ksiegai.business.profiles.models import BusinessProfile
from ksiegai.business.profiles.service import business_profile_service
from ksiegai.core.config import get_settings
from ksiegai.core.money import q, vat_rate_value
from ksiegai.integrations.ksef.validators import is_valid_nip, normalize_nip
from ksiegai.metrics import observe_invoice_auto_post, observe_invoice_issued
from ksiegai.platform.ledger.schemas import JournalEntryReverseRequest
from ksiegai.platform.ledger.service import ledger_service
from ksiegai.platform.security.context import AuthContext
from ksiegai.platform.security.errors import AuthorizationError, ForbiddenFieldError


ZERO = Decimal("0")
TAXED_RATES = {"23", "8", "5"}
OPEN_STATUSES = {"ISSUED", "OVERDUE"}


def compute_line_amounts(quantity: Decimal, unit_price_net: Decimal, vat_rate: str) -> tuple[Decimal, Decimal, Decimal]:
    """Return (net, vat, gross) for one invoice line, rounded to grosze."""

    net = q(Decimal(quantity) * Decimal(unit_price_net))
    vat = q(net * vat_rate_value(vat_rate))
    return net, vat, net + vat


@dataclass(slots=True)
class InvoicingService:
    invoice_repository: InvoiceRepository = InvoiceRepository()
    invoice_line_repository: InvoiceLineRepository = InvoiceLineRepository()

    def create_invoice(self, session: Session, ctx: AuthContext, payload: InvoiceCreate) -> InvoiceRead:
        header = payload.model_dump(mode="python", exclude={"lines"})
        self._validate_write(header, ctx, action="create")

        profile = business_profile_service.require_profile(session, ctx, payload.business_profile_id)
        header.update(self._counterparty_fields(session, profile.id, payload.customer_id, header))
        header["currency"] = payload.currency.upper()
        if header["currency"] == "PLN":
            header["exchange_rate"] = Decimal("1")

        if payload.transaction_type == "EXPENSE":
            if not payload.number:
                raise HTTPException(
                    status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                    detail="expense invoices require the supplier's invoice number",
                )
        else:
            header["number"] = self._next_number(session, profile.id, "FV", payload.issue_date, transaction_type="INCOME")

        line_rows = self._build_lines(session, profile, payload.transaction_type, payload.lines)
        invoice = Invoice(document_type="VAT", status="DRAFT", **header)
        self._apply_lines(invoice, line_rows)
        session.add(invoice)
        self._commit(session, "invoice number already exists")

        audit.record(
            actor_user_id=ctx.user_id,
            entity_type="invoicing.invoice",
            entity_id=str(invoice.id),
            action="create",
            before=None,
            after={"number": invoice.number, "transaction_type": invoice.transaction_type, "total_gross": str(invoice.total_gross)},
            correlation_id=ctx.correlation_id,
        )
        return self.get_invoice(session, ctx, invoice.id)

    def update_invoice(self, session: Session, ctx: AuthContext, invoice_id: uuid.UUID, payload: InvoiceUpdate) -> InvoiceRead:
        invoice = self._get_invoice(session, ctx, invoice_id)
        if invoice.status != "DRAFT":
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="only draft invoices can be edited")

        changes = payload.model_dump(mode="python", exclude_unset=True, exclude={"lines"})
        self._validate_write(changes, ctx, invoice=invoice, action="update")
        profile = session.get(BusinessProfile, invoice.business_profile_id)

        if invoice.transaction_type == "INCOME":
            changes.pop("number", None)
        if "customer_id" in changes or "counterparty_nip" in changes:
            merged = {
                "counterparty_name": changes.get("counterparty_name", invoice.counterparty_name),
                "counterparty_nip": changes.get("counterparty_nip", invoice.counterparty_nip),
            }
            changes.update(
                self._counterparty_fields(session, invoice.business_profile_id, changes.get("customer_id", invoice.customer_id), merged)
            )
        if "currency" in changes and changes["currency"] is not None:
            changes["currency"] = changes["currency"].upper()

        before = {key: str(getattr(invoice, key)) for key in changes}
        for key, value in changes.items():
            if value is None and key in {"issue_date", "currency", "exchange_rate", "payment_method", "number"}:
                continue
            setattr(invoice, key, value)
        if invoice.currency == "PLN":
            invoice.exchange_rate = Decimal("1")

        if payload.lines is not None:
            line_rows = self._build_lines(session, profile, invoice.transaction_type, payload.lines)
            invoice.lines.clear()
            session.flush()
            self._apply_lines(invoice, line_rows)

        self._commit(session, "invoice number already exists")
        audit.record(
            actor_user_id=ctx.user_id,
            entity_type="invoicing.invoice",
            entity_id=str(invoice.id),
            action="update",
            before=before,
            after={key: str(getattr(invoice, key)) for key in changes},
            correlation_id=ctx.correlation_id,
        )
        return self.get_invoice(session, ctx, invoice.id)

    def delete_invoice(self, session: Session, ctx: AuthContext, invoice_id: uuid.UUID) -> None:
        invoice = self._get_invoice(session, ctx, invoice_id)
        if invoice.status != "DRAFT":
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="only draft invoices can be deleted")
        self._validate_write({}, ctx, invoice=invoice, action="delete")
        number = invoice.number
        session.delete(invoice)
        session.commit()
        audit.record(
            actor_user_id=ctx.user_id,
            entity_type="invoicing.invoice",
            entity_id=str(invoice_id),
            action="delete",
            before={"number": number, "status": "DRAFT"},
            after=None,
            correlation_id=ctx.correlation_id,
        )

    def issue_invoice(self, session: Session, ctx: AuthContext, invoice_id: uuid.UUID) -> InvoiceRead:
        invoice = self._get_invoice(session, ctx, invoice_id)
        if invoice.status != "DRAFT":
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="invoice must be DRAFT")
        if not invoice.lines:
            raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="invoice has no lines")

        settings = get_settings()
        self._validate_write({"status": "ISSUED"}, ctx, invoice=invoice, action="issue")
        invoice.status = "ISSUED"
        invoice.due_date = invoice.due_date or (invoice.issue_date + timedelta(days=settings.invoice_default_payment_days))
        invoice.amount_due = invoice.total_gross
        session.commit()

        observe_invoice_issued(invoice.transaction_type, invoice.document_type)
        events.publish(
            {
                "event_type": "invoice.issued",
                "business_profile_id": str(invoice.business_profile_id),
                "invoice_id": str(invoice.id),
                "number": invoice.number,
                "transaction_type": invoice.transaction_type,
                "total_gross": str(invoice.total_gross),
            }
        )
        audit.record(
            actor_user_id=ctx.user_id,
            entity_type="invoicing.invoice",
            entity_id=str(invoice.id),
            action="issue",
            before={"status": "DRAFT"},
            after={"status": "ISSUED", "due_date": invoice.due_date.isoformat()},
            correlation_id=ctx.correlation_id,
        )
        if settings.invoice_auto_post:
            self._auto_post(session, ctx, invoice.id)
        return self.get_invoice(session, ctx, invoice.id)

    def void_invoice(self, session: Session, ctx: AuthContext, invoice_id: uuid.UUID, payload: InvoiceVoidRequest) -> InvoiceRead:
        invoice = self._get_invoice(session, ctx, invoice_id)
        if invoice.status not in OPEN_STATUSES:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="invoice must be ISSUED or OVERDUE")
        if invoice.ksef_status == "ACCEPTED":
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="invoice is registered in KSeF; issue a correction instead",
            )
        self._validate_write({"status": "VOID", "amount_due": ZERO}, ctx, invoice=invoice, action="void")

        if invoice.journal_entry_id is not None and invoice.posting_status == "POSTED":
            ledger_service.reverse_entry(
                session,
                ctx,
                invoice.journal_entry_id,
                JournalEntryReverseRequest(reason=f"Invoice {invoice.number} voided: {payload.reason}"),
            )
            invoice = self._get_invoice(session, ctx, invoice_id)

        previous_status = invoice.status
        invoice.status = "VOID"
        invoice.amount_due = ZERO
        session.commit()

        events.publish(
            {
                "event_type": "invoice.voided",
                "business_profile_id": str(invoice.business_profile_id),
                "invoice_id": str(invoice.id),
                "reason": payload.reason,
            }
        )
        audit.record(
            actor_user_id=ctx.user_id,
            entity_type="invoicing.invoice",
            entity_id=str(invoice.id),
            action="void",
            before={"status": previous_status},
            after={"status": "VOID", "reason": payload.reason},
            correlation_id=ctx.correlation_id,
        )
        return self.get_invoice(session, ctx, invoice.id)

    def mark_invoice_paid(
        self,
        session: Session,
        ctx: AuthContext,
        invoice_id: uuid.UUID,
        payload: MarkInvoicePaidRequest,
    ) -> InvoiceRead:
        invoice = self._get_invoice(session, ctx, invoice_id)
        if invoice.status not in {"ISSUED", "OVERDUE", "PAID"}:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="invoice must be ISSUED/OVERDUE/PAID")

        new_due = q(max(ZERO, Decimal(invoice.amount_due) - Decimal(payload.amount)))
        new_status = "PAID" if new_due == ZERO else invoice.status
        self._validate_write({"status": new_status, "amount_due": new_due}, ctx, invoice=invoice, action="pay")

        invoice.amount_due = new_due
        invoice.status = new_status
        session.commit()

        events.publish(
            {
                "event_type": "invoice.paid",
                "business_profile_id": str(invoice.business_profile_id),
                "invoice_id": str(invoice.id),
                "amount": str(q(payload.amount)),
                "amount_due": str(invoice.amount_due),
            }
        )
        return self.get_invoice(session, ctx, invoice.id)

    def refresh_overdue(
        self,
        session: Session,
        ctx: AuthContext,
        *,
        business_profile_id: uuid.UUID,
        today: date | None = None,
    ) -> RefreshOverdueResponse:
        business_profile_service.require_profile(session, ctx, business_profile_id)
        today = today or date.today()
        stmt = select(Invoice).where(
            Invoice.business_profile_id == business_profile_id,
            Invoice.status == "ISSUED",
        )
        rows = session.scalars(self.invoice_repository.apply_scope_query(stmt, ctx)).all()

        marked: list[uuid.UUID] = []
        for invoice in rows:
            if invoice.due_date is not None and today > invoice.due_date and Decimal(invoice.amount_due) > ZERO:
                invoice.status = "OVERDUE"
                marked.append(invoice.id)
        session.commit()

        for invoice_id in marked:
            events.publish(
                {
                    "event_type": "invoice.overdue",
                    "business_profile_id": str(business_profile_id),
                    "invoice_id": str(invoice_id),
                }
            )
        return RefreshOverdueResponse(business_profile_id=business_profile_id, checked=len(rows), marked_overdue=marked)

    def create_correction(
        self,
        session: Session,
        ctx: AuthContext,
        invoice_id: uuid.UUID,
        payload: CorrectionCreate,
    ) -> InvoiceRead:
        original = self._get_invoice(session, ctx, invoice_id)
        if original.document_type != "VAT" or original.status not in {"ISSUED", "OVERDUE", "PAID"}:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="invoice cannot be corrected")
        self._validate_write({"status": original.status}, ctx, invoice=original, action="correct")

        issue_date = payload.issue_date or date.today()
        number = self._next_number(session, original.business_profile_id, "KOR", issue_date, transaction_type=None)
        correction = Invoice(
            business_profile_id=original.business_profile_id,
            number=number,
            transaction_type=original.transaction_type,
            document_type="CORRECTION",
            customer_id=original.customer_id,
            counterparty_name=original.counterparty_name,
            counterparty_nip=original.counterparty_nip,
            issue_date=issue_date,
            sale_date=original.sale_date,
            due_date=original.due_date,
            currency=original.currency,
            exchange_rate=original.exchange_rate,
            payment_method=original.payment_method,
            status="ISSUED",
            corrected_invoice_id=original.id,
            notes=payload.reason,
        )
        line_rows: list[dict[str, Any]] = []
        for line in payload.lines:
            net, vat, gross = compute_line_amounts(line.quantity, line.unit_price_net, line.vat_rate)
            line_rows.append(
                {
                    "product_id": None,
                    "name": line.name,
                    "unit": line.unit,
                    "quantity": line.quantity,
                    "unit_price_net": q(line.unit_price_net),
                    "vat_rate": line.vat_rate,
                    "net_amount": net,
                    "vat_amount": vat,
                    "gross_amount": gross,
                }
            )
        self._apply_lines(correction, line_rows)
        correction.amount_due = ZERO
        session.add(correction)

        original.amount_due = q(max(ZERO, Decimal(original.amount_due) + Decimal(correction.total_gross)))
        if original.amount_due == ZERO and original.status in OPEN_STATUSES:
            original.status = "PAID"
        elif original.amount_due > ZERO and original.status == "PAID":
            original.status = "ISSUED"
        self._commit(session, "correction number already exists")

        observe_invoice_issued(correction.transaction_type, correction.document_type)
        events.publish(
            {
                "event_type": "invoice.corrected",
                "business_profile_id": str(original.business_profile_id),
                "invoice_id": str(original.id),
                "correction_id": str(correction.id),
                "total_gross": str(correction.total_gross),
            }
        )
        audit.record(
            actor_user_id=ctx.user_id,
            entity_type="invoicing.invoice",
            entity_id=str(correction.id),
            action="correct",
            before=None,
            after={"corrected_invoice_id": str(original.id), "number": correction.number, "reason": payload.reason},
            correlation_id=ctx.correlation_id,
        )
        if get_settings().invoice_auto_post:
            self._auto_post(session, ctx, correction.id)
        return self.get_invoice(session, ctx, correction.id)

    def get_invoice(self, session: Session, ctx: AuthContext, invoice_id: uuid.UUID) -> InvoiceRead:
        return self._to_read(self._get_invoice(session, ctx, invoice_id), ctx)

    def list_invoices(
        self,
        session: Session,
        ctx: AuthContext,
        *,
        business_profile_id: uuid.UUID,
        transaction_type: str | None = None,
        status_filter: str | None = None,
        posting_status: str | None = None,
        start_date: date | None = None,
        end_date: date | None = None,
    ) -> list[InvoiceRead]:
        stmt: Select[tuple[Invoice]] = (
            select(Invoice)
            .where(Invoice.business_profile_id == business_profile_id)
            .options(selectinload(Invoice.lines))
        )
        if transaction_type is not None:
            stmt = stmt.where(Invoice.transaction_type == transaction_type)
        if status_filter is not None:
            stmt = stmt.where(Invoice.status == status_filter)
        if posting_status is not None:
            stmt = stmt.where(Invoice.posting_status == posting_status)
        if start_date is not None:
            stmt = stmt.where(Invoice.issue_date >= start_date)
        if end_date is not None:
            stmt = stmt.where(Invoice.issue_date <= end_date)

        stmt = self.invoice_repository.apply_scope_query(stmt, ctx)
        rows = session.scalars(stmt.order_by(Invoice.issue_date.desc(), Invoice.number.desc())).all()
        return [self._to_read(row, ctx) for row in rows]

    def vat_summary(self, session: Session, ctx: AuthContext, invoice_id: uuid.UUID) -> VatSummaryRead:
        invoice = self._get_invoice(session, ctx, invoice_id)
        rows = summarize_vat(invoice.lines)
        return VatSummaryRead(
            invoice_id=invoice.id,
            rows=rows,
            total_net=q(sum((row.net_amount for row in rows), ZERO)),
            total_vat=q(sum((row.vat_amount for row in rows), ZERO)),
            total_gross=q(sum((row.gross_amount for row in rows), ZERO)),
        )

    def _auto_post(self, session: Session, ctx: AuthContext, invoice_id: uuid.UUID) -> None:
        result = posting_service.auto_post_invoice(session, ctx, invoice_id)
        observe_invoice_auto_post(result.outcome)

    def _build_lines(
        self,
        session: Session,
        profile: BusinessProfile,
        transaction_type: str,
        lines: list[InvoiceLineInput],
    ) -> list[dict[str, Any]]:
        rows: list[dict[str, Any]] = []
        for line in lines:
            product = None
            if line.product_id is not None:
                product = session.get(Product, line.product_id)
                if product is None or product.business_profile_id != profile.id:
                    raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="product not found")

            name = line.name or (product.name if product is not None else None)
            unit_price = line.unit_price_net if line.unit_price_net is not None else (product.unit_price_net if product else None)
            vat_rate = line.vat_rate or (product.vat_rate if product is not None else None)
            if name is None or unit_price is None or vat_rate is None:
                raise HTTPException(
                    status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                    detail="line needs name, unit_price_net and vat_rate or a product",
                )
            if transaction_type == "INCOME" and profile.vat_status == "EXEMPT" and vat_rate in TAXED_RATES:
                raise HTTPException(
                    status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                    detail="VAT-exempt profile cannot issue invoices with a positive VAT rate",
                )

            net, vat, gross = compute_line_amounts(line.quantity, unit_price, vat_rate)
            rows.append(
                {
                    "product_id": line.product_id,
                    "name": name,
                    "unit": line.unit or (product.unit if product is not None else "szt"),
                    "quantity": line.quantity,
                    "unit_price_net": q(unit_price),
                    "vat_rate": vat_rate,
                    "net_amount": net,
                    "vat_amount": vat,
                    "gross_amount": gross,
                }
            )
        return rows

    @staticmethod
    def _apply_lines(invoice: Invoice, line_rows: list[dict[str, Any]]) -> None:
        for position, row in enumerate(line_rows, start=1):
            invoice.lines.append(InvoiceLine(position=position, **row))
        invoice.total_net = q(sum((row["net_amount"] for row in line_rows), ZERO))
        invoice.total_vat = q(sum((row["vat_amount"] for row in line_rows), ZERO))
        invoice.total_gross = q(sum((row["gross_amount"] for row in line_rows), ZERO))
        if invoice.status == "DRAFT":
            invoice.amount_due = invoice.total_gross

    @staticmethod
    def _counterparty_fields(
        session: Session,
        business_profile_id: uuid.UUID,
        customer_id: uuid.UUID | None,
        header: dict[str, Any],
    ) -> dict[str, Any]:
        fields = {
            "counterparty_name": header.get("counterparty_name"),
            "counterparty_nip": header.get("counterparty_nip"),
        }
        if customer_id is not None:
            customer = session.get(Customer, customer_id)
            if customer is None or customer.business_profile_id != business_profile_id:
                raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="customer not found")
            fields["counterparty_name"] = fields["counterparty_name"] or customer.name
            fields["counterparty_nip"] = fields["counterparty_nip"] or customer.nip
        if fields["counterparty_nip"]:
            nip = normalize_nip(fields["counterparty_nip"])
            if not is_valid_nip(nip):
                raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="invalid counterparty NIP")
            fields["counterparty_nip"] = nip
        return fields

    def _validate_write(
        self,
        payload: dict[str, Any],
        ctx: AuthContext,
        *,
        invoice: Invoice | None = None,
        action: str,
    ) -> None:
        existing_scope = {"business_profile_id": str(invoice.business_profile_id)} if invoice is not None else None
        try:
            self.invoice_repository.validate_write_security(payload, ctx, existing_scope=existing_scope, action=action)
        except (ForbiddenFieldError, AuthorizationError) as exc:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc))

    def _get_invoice(self, session: Session, ctx: AuthContext, invoice_id: uuid.UUID) -> Invoice:
        invoice = self.invoice_repository.get_scoped(session, ctx, Invoice, invoice_id, selectinload(Invoice.lines))
        if invoice is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="invoice not found")
        return invoice

    @staticmethod
    def _commit(session: Session, detail: str) -> None:
        try:
            session.commit()
        except IntegrityError:
            session.rollback()
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=detail)

    @staticmethod
    def _next_number(
        session: Session,
        business_profile_id: uuid.UUID,
        prefix: str,
        issue_date: date,
        *,
        transaction_type: str | None,
    ) -> str:
        """Next ``PREFIX/YYYY/MM/NNN`` number; ``transaction_type=None`` numbers across both series."""

        stem = f"{prefix}/{issue_date.year:04d}/{issue_date.month:02d}/"
        stmt = select(Invoice.number).where(
            Invoice.business_profile_id == business_profile_id,
            Invoice.number.like(f"{stem}%"),
        )
        if transaction_type is not None:
            stmt = stmt.where(Invoice.transaction_type == transaction_type)
        existing = session.scalars(stmt).all()
        last = max((int(item.rsplit("/", 1)[1]) for item in existing if item.rsplit("/", 1)[1].isdigit()), default=0)
        return f"{stem}{last + 1:03d}"

    def _to_read(self, invoice: Invoice, ctx: AuthContext) -> InvoiceRead:
        payload = {
            "id": invoice.id,
            "business_profile_id": invoice.business_profile_id,
            "number": invoice.number,
            "transaction_type": invoice.transaction_type,
            "document_type": invoice.document_type,
            "customer_id": invoice.customer_id,
            "counterparty_name": invoice.counterparty_name,
            "counterparty_nip": invoice.counterparty_nip,
            "issue_date": invoice.issue_date,
            "sale_date": invoice.sale_date,
            "due_date": invoice.due_date,
            "currency": invoice.currency,
            "exchange_rate": invoice.exchange_rate,
            "payment_method": invoice.payment_method,
            "status": invoice.status,
            "total_net": invoice.total_net,
            "total_vat": invoice.total_vat,
            "total_gross": invoice.total_gross,
            "amount_due": invoice.amount_due,
            "posting_status": invoice.posting_status,
            "posting_error": invoice.posting_error,
            "journal_entry_id": invoice.journal_entry_id,
            "ksef_status": invoice.ksef_status,
            "ksef_reference_number": invoice.ksef_reference_number,
            "ksef_number": invoice.ksef_number,
            "corrected_invoice_id": invoice.corrected_invoice_id,
            "notes": invoice.notes,
            "created_at": invoice.created_at,
            "updated_at": invoice.updated_at,
            "lines": [InvoiceLineRead.model_validate(line).model_dump(mode="python") for line in invoice.lines],
        }
        secured = self.invoice_repository.apply_read_security(payload, ctx)
        secured_lines = self.invoice_line_repository.apply_read_security_many(secured.get("lines", []), ctx)
        secured["lines"] = [InvoiceLineRead.model_validate(item) for item in secured_lines]
        return InvoiceRead.model_validate(secured)


def summarize_vat(lines: list[InvoiceLine]) -> list[VatSummaryRow]:
    """Group invoice lines by VAT rate code."""

    grouped: dict[str, list[Decimal]] = {}
    for line in lines:
        bucket = grouped.setdefault(line.vat_rate, [ZERO, ZERO, ZERO])
        bucket[0] += Decimal(line.net_amount)
        bucket[1] += Decimal(line.vat_amount)
        bucket[2] += Decimal(line.gross_amount)
    return [
        VatSummaryRow(vat_rate=rate, net_amount=q(net), vat_amount=q(vat), gross_amount=q(gross))
        for rate, (net, vat, gross) in sorted(grouped.items())
    ]


invoicing_service = InvoicingService()
