from __future__ import annotations

import base64
import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from fastapi import HTTPException, status
from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from ksiegai import audit, events
from ksiegai.business.customers.models import Customer
from ksiegai.business.invoicing.models import Invoice
from ksiegai.business.invoicing.schemas import InvoiceRead
from ksiegai.business.invoicing.service import invoicing_service
from ksiegai.business.profiles.models import BusinessProfile
from ksiegai.business.profiles.service import business_profile_service
from ksiegai.core.config import get_settings
from ksiegai.integrations.ksef.client import InvoiceMetadata, KsefApiClient
from ksiegai.integrations.ksef.errors import KsefError
from ksiegai.integrations.ksef.invoice_xml import build_invoice_xml
from ksiegai.integrations.ksef.models import KsefReceivedInvoice, KsefSyncRun, KsefSyncState
from ksiegai.integrations.ksef.qr import KsefQrCodeService
from ksiegai.integrations.ksef.repository import (
    KsefInvoiceRepository,
    KsefReceivedInvoiceRepository,
    KsefSyncStateRepository,
)
from ksiegai.integrations.ksef.schemas import (
    SUBJECT_TYPES,
    KsefQrCodeRead,
    KsefReceivedInvoiceRead,
    KsefSyncRunRead,
    KsefTokensStore,
    KsefTokenStatusRead,
    SubjectSyncResult,
)
from ksiegai.integrations.ksef.tokens import KsefTokenRegistry, TokenInfo, token_registry
from ksiegai.integrations.ksef.validators import is_valid_ksef_number
from ksiegai.platform.security.context import AuthContext
from ksiegai.platform.security.errors import AuthorizationError, ForbiddenFieldError


logger = logging.getLogger("ksiegai.ksef")

SUBMITTABLE_STATUSES = ("ISSUED", "OVERDUE", "PAID")
INITIAL_SYNC_WINDOW = timedelta(days=30)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _aware(value: datetime | None) -> datetime | None:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


@dataclass(slots=True)
class KsefService:
    invoice_repository: KsefInvoiceRepository = KsefInvoiceRepository()
    received_repository: KsefReceivedInvoiceRepository = KsefReceivedInvoiceRepository()
    state_repository: KsefSyncStateRepository = KsefSyncStateRepository()
    client_factory: Callable[[], KsefApiClient] = KsefApiClient.from_settings
    tokens: KsefTokenRegistry = field(default_factory=lambda: token_registry)

    def submit_invoice_to_ksef(
        self,
        session: Session,
        ctx: AuthContext,
        invoice_id: uuid.UUID,
        *,
        token: str | None = None,
    ) -> InvoiceRead:
        invoice = self._get_invoice(session, ctx, invoice_id)
        if invoice.transaction_type != "INCOME":
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="only income invoices are sent to KSeF")
        if invoice.status not in SUBMITTABLE_STATUSES:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="only issued invoices can be sent to KSeF")
        if invoice.ksef_status not in ("NOT_SENT", "REJECTED"):
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=f"invoice already {invoice.ksef_status.lower()} in KSeF")
        self._validate_write(invoice, ctx, {"ksef_status": "SUBMITTED"})

        profile = self._profile(session, invoice)
        if not profile.ksef_enabled:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="KSeF is not enabled for this business profile")

        access_token = token or self.tokens.get(str(profile.id)).get_access_token()
        invoice_xml = build_invoice_xml(invoice, profile, self._customer(session, invoice))

        client = self.client_factory()
        try:
            client.init_session(access_token)
            result = client.submit_invoice(invoice_xml)
        finally:
            client.terminate_session()
            client.close()

        previous = invoice.ksef_status
        invoice.ksef_status = "SUBMITTED"
        invoice.ksef_reference_number = result.reference_number
        session.commit()

        events.publish(
            {
                "event_type": "ksef.invoice.submitted",
                "business_profile_id": str(invoice.business_profile_id),
                "invoice_id": str(invoice.id),
                "reference_number": result.reference_number,
            }
        )
        audit.record(
            actor_user_id=ctx.user_id,
            entity_type="invoicing.invoice",
            entity_id=str(invoice.id),
            action="ksef_submit",
            before={"ksef_status": previous},
            after={"ksef_status": "SUBMITTED", "ksef_reference_number": result.reference_number},
            correlation_id=ctx.correlation_id,
        )
        logger.info(
            "ksef.invoice.submitted",
            extra={"invoice_id": str(invoice.id), "business_profile_id": str(invoice.business_profile_id)},
        )
        return invoicing_service.get_invoice(session, ctx, invoice.id)

    def confirm_ksef_number(self, session: Session, ctx: AuthContext, invoice_id: uuid.UUID, ksef_number: str) -> InvoiceRead:
        invoice = self._get_invoice(session, ctx, invoice_id)
        if invoice.ksef_status != "SUBMITTED":
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="invoice has not been submitted to KSeF")
        if not is_valid_ksef_number(ksef_number):
            raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="invalid KSeF number")
        profile = self._profile(session, invoice)
        if ksef_number[:10] != profile.nip:
            raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="KSeF number does not match the seller NIP")
        self._validate_write(invoice, ctx, {"ksef_status": "ACCEPTED", "ksef_number": ksef_number})

        invoice.ksef_status = "ACCEPTED"
        invoice.ksef_number = ksef_number
        session.commit()

        events.publish(
            {
                "event_type": "ksef.invoice.accepted",
                "business_profile_id": str(invoice.business_profile_id),
                "invoice_id": str(invoice.id),
                "ksef_number": ksef_number,
            }
        )
        audit.record(
            actor_user_id=ctx.user_id,
            entity_type="invoicing.invoice",
            entity_id=str(invoice.id),
            action="ksef_confirm",
            before={"ksef_status": "SUBMITTED"},
            after={"ksef_status": "ACCEPTED", "ksef_number": ksef_number},
            correlation_id=ctx.correlation_id,
        )
        return invoicing_service.get_invoice(session, ctx, invoice.id)

    def invoice_qr_code(self, session: Session, ctx: AuthContext, invoice_id: uuid.UUID) -> KsefQrCodeRead:
        invoice = self._get_invoice(session, ctx, invoice_id)
        if invoice.transaction_type != "INCOME" or invoice.status == "DRAFT":
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="QR codes are generated for issued income invoices")
        profile = self._profile(session, invoice)
        invoice_xml = build_invoice_xml(invoice, profile, self._customer(session, invoice))

        qr = KsefQrCodeService(get_settings().ksef_environment).generate_invoice_qr(
            seller_nip=profile.nip,
            issue_date=invoice.issue_date,
            invoice_xml=invoice_xml,
            ksef_number=invoice.ksef_number if invoice.ksef_status == "ACCEPTED" else None,
        )
        return KsefQrCodeRead(url=qr.url, label=qr.label, png_base64=base64.b64encode(qr.png).decode("ascii"))

    def store_tokens(self, session: Session, ctx: AuthContext, payload: KsefTokensStore) -> KsefTokenStatusRead:
        """Keep a profile's KSeF session tokens; the access token is then refreshed through the KSeF API."""

        profile = business_profile_service.require_profile(session, ctx, payload.business_profile_id)
        if not profile.ksef_enabled:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="KSeF is not enabled for this business profile")

        manager = self.tokens.get(str(profile.id))
        manager.set_refresh_callback(self._refresh_access_token)
        manager.store_tokens(
            TokenInfo.issued(payload.access_token, payload.access_token_expires_in),
            TokenInfo.issued(payload.refresh_token, payload.refresh_token_expires_in),
            company_id=str(profile.id),
            context_type=payload.context_type,
            context_value=payload.context_value or profile.nip,
        )
        audit.record(
            actor_user_id=ctx.user_id,
            entity_type="ksef.tokens",
            entity_id=str(profile.id),
            action="ksef_tokens_stored",
            before=None,
            after={"context_type": payload.context_type, "access_token_expires_in": payload.access_token_expires_in},
            correlation_id=ctx.correlation_id,
        )
        return self.token_status(session, ctx, profile.id)

    def clear_tokens(self, session: Session, ctx: AuthContext, business_profile_id: uuid.UUID) -> KsefTokenStatusRead:
        business_profile_service.require_profile(session, ctx, business_profile_id)
        self.tokens.remove(str(business_profile_id))
        audit.record(
            actor_user_id=ctx.user_id,
            entity_type="ksef.tokens",
            entity_id=str(business_profile_id),
            action="ksef_tokens_cleared",
            before=None,
            after=None,
            correlation_id=ctx.correlation_id,
        )
        return KsefTokenStatusRead(business_profile_id=business_profile_id, has_tokens=False)

    def _refresh_access_token(self, refresh_token: str) -> TokenInfo:
        client = self.client_factory()
        try:
            return client.refresh_access_token(refresh_token)
        finally:
            client.close()

    def token_status(self, session: Session, ctx: AuthContext, business_profile_id: uuid.UUID) -> KsefTokenStatusRead:
        business_profile_service.require_profile(session, ctx, business_profile_id)
        manager = self.tokens.find(str(business_profile_id))
        token_status = manager.get_token_status() if manager is not None else {"has_tokens": False}
        return KsefTokenStatusRead(business_profile_id=business_profile_id, **token_status)

    def sync_profile(
        self,
        session: Session,
        ctx: AuthContext,
        business_profile_id: uuid.UUID,
        subject_type: str,
        *,
        client: KsefApiClient | None = None,
        now: datetime | None = None,
    ) -> SubjectSyncResult:
        """Pull received-invoice metadata from the high water mark and upsert it."""

        if subject_type not in SUBJECT_TYPES:
            raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=f"unknown subject type: {subject_type}")
        profile = business_profile_service.require_profile(session, ctx, business_profile_id)
        current = now or utcnow()

        state = self._sync_state(session, profile.id, subject_type)
        high_water_mark = _aware(state.high_water_mark)
        date_from = high_water_mark or current - INITIAL_SYNC_WINDOW

        owns_client = client is None
        api = client or self.client_factory()
        synced = 0
        try:
            api.init_session(self.tokens.get(str(profile.id)).get_access_token())
            for metadata in api.iter_invoice_metadata(subject_type=subject_type, date_from=date_from):
                self._upsert_received(session, profile.id, subject_type, metadata)
                synced += 1
                stored_at = _aware(metadata.permanent_storage_date)
                if high_water_mark is None or stored_at > high_water_mark:
                    high_water_mark = stored_at
        except KsefError as exc:
            session.rollback()
            failed_state = self._sync_state(session, profile.id, subject_type)
            failed_state.last_error = exc.message
            session.commit()
            raise
        finally:
            api.terminate_session()
            if owns_client:
                api.close()

        state.high_water_mark = high_water_mark
        state.last_synced_at = current
        state.invoices_synced = (state.invoices_synced or 0) + synced
        state.last_error = None
        session.commit()

        logger.info(
            "ksef.sync.subject_completed",
            extra={"business_profile_id": str(profile.id), "subject_type": subject_type, "count": synced},
        )
        return SubjectSyncResult(subject_type=subject_type, invoices_synced=synced, new_high_water_mark=high_water_mark)

    def list_received_invoices(
        self,
        session: Session,
        ctx: AuthContext,
        *,
        business_profile_id: uuid.UUID,
        subject_type: str | None = None,
    ) -> list[KsefReceivedInvoiceRead]:
        business_profile_service.require_profile(session, ctx, business_profile_id)
        stmt = select(KsefReceivedInvoice).where(KsefReceivedInvoice.business_profile_id == business_profile_id)
        if subject_type is not None:
            stmt = stmt.where(KsefReceivedInvoice.subject_type == subject_type)
        stmt = self.received_repository.apply_scope_query(stmt, ctx).order_by(
            KsefReceivedInvoice.issue_date.desc(), KsefReceivedInvoice.ksef_number.asc()
        )
        rows = [KsefReceivedInvoiceRead.model_validate(row).model_dump(mode="python") for row in session.scalars(stmt).all()]
        return [KsefReceivedInvoiceRead.model_validate(item) for item in self.received_repository.apply_read_security_many(rows, ctx)]

    def list_sync_runs(self, session: Session, *, limit: int = 20) -> list[KsefSyncRunRead]:
        stmt = select(KsefSyncRun).order_by(KsefSyncRun.started_at.desc()).limit(limit)
        return [KsefSyncRunRead.model_validate(row) for row in session.scalars(stmt).all()]

    def _upsert_received(
        self,
        session: Session,
        profile_id: uuid.UUID,
        subject_type: str,
        metadata: InvoiceMetadata,
    ) -> KsefReceivedInvoice:
        row = session.scalar(
            select(KsefReceivedInvoice).where(
                KsefReceivedInvoice.business_profile_id == profile_id,
                KsefReceivedInvoice.ksef_number == metadata.ksef_number,
            )
        )
        if row is None:
            row = KsefReceivedInvoice(business_profile_id=profile_id, ksef_number=metadata.ksef_number)
            session.add(row)
        row.subject_type = subject_type
        row.invoice_number = metadata.invoice_number
        row.issue_date = metadata.issue_date
        row.seller_nip = metadata.seller_nip
        row.seller_name = metadata.seller_name
        row.buyer_nip = metadata.buyer_nip
        row.total_gross_amount = metadata.total_gross_amount
        row.currency = metadata.currency
        row.permanent_storage_date = metadata.permanent_storage_date
        session.flush()
        return row

    @staticmethod
    def _sync_state(session: Session, profile_id: uuid.UUID, subject_type: str) -> KsefSyncState:
        state = session.scalar(
            select(KsefSyncState).where(
                KsefSyncState.business_profile_id == profile_id,
                KsefSyncState.subject_type == subject_type,
            )
        )
        if state is None:
            state = KsefSyncState(business_profile_id=profile_id, subject_type=subject_type, invoices_synced=0)
            session.add(state)
            session.flush()
        return state

    def _get_invoice(self, session: Session, ctx: AuthContext, invoice_id: uuid.UUID) -> Invoice:
        invoice = self.invoice_repository.get_scoped(session, ctx, Invoice, invoice_id, selectinload(Invoice.lines))
        if invoice is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="invoice not found")
        return invoice

    def _validate_write(self, invoice: Invoice, ctx: AuthContext, payload: dict[str, str]) -> None:
        try:
            self.invoice_repository.validate_write_security(
                payload,
                ctx,
                existing_scope={"business_profile_id": str(invoice.business_profile_id)},
                action="ksef",
            )
        except (ForbiddenFieldError, AuthorizationError) as exc:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc))

    @staticmethod
    def _profile(session: Session, invoice: Invoice) -> BusinessProfile:
        profile = session.get(BusinessProfile, invoice.business_profile_id)
        if profile is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="business profile not found")
        return profile

    @staticmethod
    def _customer(session: Session, invoice: Invoice) -> Customer | None:
        if invoice.customer_id is None:
            return None
        return session.get(Customer, invoice.customer_id)


ksef_service = KsefService()
