from __future__ import annotations

import csv
import io
import uuid
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any

from fastapi import HTTPException, status
from sqlalchemy import Select, case, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ksiegai import audit, events
from ksiegai.business.cash.models import CashAccount, CashDocument, CashReconciliation
from ksiegai.business.cash.repository import CashAccountRepository, CashDocumentRepository, CashReconciliationRepository
from ksiegai.business.cash.schemas import (
    CashAccountCreate,
    CashAccountRead,
    CashDocumentCancelRequest,
    CashDocumentCreate,
    CashDocumentRead,
    CashReconciliationCreate,
    CashReconciliationRead,
    CashRegisterSummary,
)
from ksiegai.business.invoicing.models import Invoice
from ksiegai.business.profiles.service import business_profile_service
from ksiegai.core.money import q
from ksiegai.integrations.ksef.validators import is_valid_nip, normalize_nip
from ksiegai.platform.security.context import AuthContext
from ksiegai.platform.security.errors import AuthorizationError, ForbiddenFieldError


ZERO = Decimal("0")
RECONCILIATION_TOLERANCE = Decimal("0.01")

CSV_HEADERS = [
    "Nr dokumentu",
    "Data",
    "Typ",
    "Kwota",
    "Opis",
    "Kontrahent",
    "NIP kontrahenta",
    "Kategoria",
    "Koszty uzyskania przychodu",
    "Zatwierdzony",
]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def reconciliation_result(difference: Decimal) -> str:
    if difference > RECONCILIATION_TOLERANCE:
        return "surplus"
    if difference < -RECONCILIATION_TOLERANCE:
        return "shortage"
    return "match"


@dataclass(slots=True)
class CashService:
    account_repository: CashAccountRepository = CashAccountRepository()
    document_repository: CashDocumentRepository = CashDocumentRepository()
    reconciliation_repository: CashReconciliationRepository = CashReconciliationRepository()

    def create_account(self, session: Session, ctx: AuthContext, dto: CashAccountCreate) -> CashAccountRead:
        payload = dto.model_dump(mode="python")
        self._validate_write(self.account_repository, payload, ctx, action="create")
        business_profile_service.require_profile(session, ctx, dto.business_profile_id)

        account = CashAccount(currency="PLN", **payload)
        session.add(account)
        session.commit()
        session.refresh(account)
        audit.record(
            actor_user_id=ctx.user_id,
            entity_type="cash.account",
            entity_id=str(account.id),
            action="create",
            before=None,
            after={"name": account.name, "opening_balance": str(account.opening_balance)},
            correlation_id=ctx.correlation_id,
        )
        return self._to_account_read(session, account, ctx)

    def list_accounts(
        self,
        session: Session,
        ctx: AuthContext,
        *,
        business_profile_id: uuid.UUID,
        include_closed: bool = False,
    ) -> list[CashAccountRead]:
        stmt: Select[tuple[CashAccount]] = select(CashAccount).where(CashAccount.business_profile_id == business_profile_id)
        if not include_closed:
            stmt = stmt.where(CashAccount.is_active.is_(True))
        stmt = self.account_repository.apply_scope_query(stmt, ctx)
        rows = session.scalars(stmt.order_by(CashAccount.name.asc())).all()
        return [self._to_account_read(session, row, ctx) for row in rows]

    def close_account(self, session: Session, ctx: AuthContext, account_id: uuid.UUID) -> CashAccountRead:
        account = self._get_account(session, ctx, account_id)
        self._validate_write(
            self.account_repository,
            {"is_active": False},
            ctx,
            existing_scope={"business_profile_id": str(account.business_profile_id)},
            action="update",
        )
        account.is_active = False
        session.commit()
        audit.record(
            actor_user_id=ctx.user_id,
            entity_type="cash.account",
            entity_id=str(account.id),
            action="close",
            before={"is_active": True},
            after={"is_active": False},
            correlation_id=ctx.correlation_id,
        )
        return self._to_account_read(session, account, ctx)

    def account_balance(self, session: Session, account: CashAccount) -> Decimal:
        movements = session.scalar(
            select(
                func.coalesce(
                    func.sum(case((CashDocument.type == "KP", CashDocument.amount), else_=-CashDocument.amount)),
                    0,
                )
            ).where(
                CashDocument.cash_account_id == account.id,
                CashDocument.is_cancelled.is_(False),
            )
        )
        adjustments = session.scalar(
            select(func.coalesce(func.sum(CashReconciliation.difference), 0)).where(
                CashReconciliation.cash_account_id == account.id
            )
        )
        return q(Decimal(account.opening_balance) + Decimal(movements or 0) + Decimal(adjustments or 0))

    def create_document(self, session: Session, ctx: AuthContext, dto: CashDocumentCreate) -> CashDocumentRead:
        account = self._get_account(session, ctx, dto.cash_account_id)
        payload = dto.model_dump(mode="python")
        self._validate_write(
            self.document_repository,
            payload,
            ctx,
            existing_scope={"business_profile_id": str(account.business_profile_id)},
            action="create",
        )
        if not account.is_active:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="cash account is closed")

        amount = q(dto.amount)
        if dto.type == "KW":
            balance = self.account_balance(session, account)
            if amount > balance:
                raise HTTPException(
                    status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                    detail=f"insufficient cash: balance {balance}, requested {amount}",
                )
        if dto.counterparty_nip:
            nip = normalize_nip(dto.counterparty_nip)
            if not is_valid_nip(nip):
                raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="invalid counterparty NIP")
            payload["counterparty_nip"] = nip
        if dto.linked_invoice_id is not None:
            invoice = session.get(Invoice, dto.linked_invoice_id)
            if invoice is None or invoice.business_profile_id != account.business_profile_id:
                raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="linked invoice not found")

        payload["amount"] = amount
        document = CashDocument(
            business_profile_id=account.business_profile_id,
            document_number=self._next_document_number(session, account.business_profile_id, dto.type, dto.document_date.year),
            created_by=ctx.user_id,
            **payload,
        )
        session.add(document)
        try:
            session.commit()
        except IntegrityError:
            session.rollback()
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="cash document number already exists")
        session.refresh(document)

        audit.record(
            actor_user_id=ctx.user_id,
            entity_type="cash.document",
            entity_id=str(document.id),
            action="create",
            before=None,
            after={"document_number": document.document_number, "type": document.type, "amount": str(document.amount)},
            correlation_id=ctx.correlation_id,
        )
        events.publish(
            {
                "event_type": "cash.document.created",
                "business_profile_id": str(document.business_profile_id),
                "document_id": str(document.id),
                "document_number": document.document_number,
                "type": document.type,
                "amount": str(document.amount),
            }
        )
        return self._to_document_read(document, ctx)

    def approve_document(self, session: Session, ctx: AuthContext, document_id: uuid.UUID) -> CashDocumentRead:
        document = self._get_document_for_write(session, ctx, document_id, {"is_approved": True}, action="approve")
        if document.is_cancelled:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="cancelled documents cannot be approved")
        if document.is_approved:
            return self._to_document_read(document, ctx)

        document.is_approved = True
        document.approved_by = ctx.user_id
        document.approved_at = utcnow()
        session.commit()
        audit.record(
            actor_user_id=ctx.user_id,
            entity_type="cash.document",
            entity_id=str(document.id),
            action="approve",
            before={"is_approved": False},
            after={"is_approved": True},
            correlation_id=ctx.correlation_id,
        )
        return self._to_document_read(document, ctx)

    def cancel_document(
        self,
        session: Session,
        ctx: AuthContext,
        document_id: uuid.UUID,
        payload: CashDocumentCancelRequest,
    ) -> CashDocumentRead:
        document = self._get_document_for_write(session, ctx, document_id, {"is_cancelled": True}, action="cancel")
        if document.is_cancelled:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="document already cancelled")

        document.is_cancelled = True
        document.cancelled_by = ctx.user_id
        document.cancelled_at = utcnow()
        document.cancellation_reason = payload.reason
        session.commit()
        audit.record(
            actor_user_id=ctx.user_id,
            entity_type="cash.document",
            entity_id=str(document.id),
            action="cancel",
            before={"is_cancelled": False},
            after={"is_cancelled": True, "reason": payload.reason},
            correlation_id=ctx.correlation_id,
        )
        return self._to_document_read(document, ctx)

    def list_documents(
        self,
        session: Session,
        ctx: AuthContext,
        *,
        cash_account_id: uuid.UUID,
        document_type: str | None = None,
        start_date: date | None = None,
        end_date: date | None = None,
        include_cancelled: bool = False,
    ) -> list[CashDocumentRead]:
        rows = self._documents(
            session,
            ctx,
            cash_account_id=cash_account_id,
            document_type=document_type,
            start_date=start_date,
            end_date=end_date,
            include_cancelled=include_cancelled,
        )
        payload = [CashDocumentRead.model_validate(row).model_dump(mode="python") for row in rows]
        secured = self.document_repository.apply_read_security_many(payload, ctx)
        return [CashDocumentRead.model_validate(item) for item in secured]

    def reconcile(
        self,
        session: Session,
        ctx: AuthContext,
        account_id: uuid.UUID,
        dto: CashReconciliationCreate,
    ) -> CashReconciliationRead:
        account = self._get_account(session, ctx, account_id)
        self._validate_write(
            self.reconciliation_repository,
            dto.model_dump(mode="python"),
            ctx,
            existing_scope={"business_profile_id": str(account.business_profile_id)},
            action="create",
        )
        if not account.is_active:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="cash account is closed")

        system_balance = self.account_balance(session, account)
        counted = q(dto.counted_balance)
        difference = q(counted - system_balance)
        reconciliation = CashReconciliation(
            business_profile_id=account.business_profile_id,
            cash_account_id=account.id,
            reconciliation_date=dto.reconciliation_date,
            system_balance=system_balance,
            counted_balance=counted,
            difference=difference,
            result=reconciliation_result(difference),
            explanation=dto.explanation,
            created_by=ctx.user_id,
        )
        session.add(reconciliation)
        session.commit()
        session.refresh(reconciliation)

        audit.record(
            actor_user_id=ctx.user_id,
            entity_type="cash.reconciliation",
            entity_id=str(reconciliation.id),
            action="create",
            before={"balance": str(system_balance)},
            after={"balance": str(counted), "result": reconciliation.result},
            correlation_id=ctx.correlation_id,
        )
        secured = self.reconciliation_repository.apply_read_security(
            CashReconciliationRead.model_validate(reconciliation).model_dump(mode="python"),
            ctx,
        )
        return CashReconciliationRead.model_validate(secured)

    def list_reconciliations(self, session: Session, ctx: AuthContext, account_id: uuid.UUID) -> list[CashReconciliationRead]:
        account = self._get_account(session, ctx, account_id)
        stmt = self.reconciliation_repository.apply_scope_query(
            select(CashReconciliation).where(CashReconciliation.cash_account_id == account.id),
            ctx,
        )
        rows = session.scalars(
            stmt.order_by(CashReconciliation.reconciliation_date.desc(), CashReconciliation.created_at.desc())
        ).all()
        payload = [CashReconciliationRead.model_validate(row).model_dump(mode="python") for row in rows]
        return [
            CashReconciliationRead.model_validate(item)
            for item in self.reconciliation_repository.apply_read_security_many(payload, ctx)
        ]

    def register_summary(
        self,
        session: Session,
        ctx: AuthContext,
        account_id: uuid.UUID,
        *,
        start_date: date | None = None,
        end_date: date | None = None,
    ) -> CashRegisterSummary:
        account = self._get_account(session, ctx, account_id)
        rows = self._documents(session, ctx, cash_account_id=account.id, start_date=start_date, end_date=end_date)
        total_kp = q(sum((Decimal(row.amount) for row in rows if row.type == "KP"), ZERO))
        total_kw = q(sum((Decimal(row.amount) for row in rows if row.type == "KW"), ZERO))
        return CashRegisterSummary(
            cash_account_id=account.id,
            start_date=start_date,
            end_date=end_date,
            total_kp=total_kp,
            total_kw=total_kw,
            net_change=total_kp - total_kw,
            current_balance=self.account_balance(session, account),
            document_count=len(rows),
        )

    def export_csv(
        self,
        session: Session,
        ctx: AuthContext,
        account_id: uuid.UUID,
        *,
        start_date: date | None = None,
        end_date: date | None = None,
    ) -> str:
        """Render the register as a semicolon-separated CSV, one row per document."""

        account = self._get_account(session, ctx, account_id)
        output = io.StringIO()
        writer = csv.writer(output, delimiter=";", quoting=csv.QUOTE_ALL, lineterminator="\n")
        writer.writerow(CSV_HEADERS)
        for row in self._documents(session, ctx, cash_account_id=account.id, start_date=start_date, end_date=end_date):
            writer.writerow(
                [
                    row.document_number,
                    row.document_date.isoformat(),
                    row.type,
                    f"{Decimal(row.amount):.2f}",
                    row.description,
                    row.counterparty_name or "",
                    row.counterparty_nip or "",
                    row.category,
                    "Tak" if row.is_tax_deductible else "Nie",
                    "Tak" if row.is_approved else "Nie",
                ]
            )
        return output.getvalue()

    def _documents(
        self,
        session: Session,
        ctx: AuthContext,
        *,
        cash_account_id: uuid.UUID,
        document_type: str | None = None,
        start_date: date | None = None,
        end_date: date | None = None,
        include_cancelled: bool = False,
    ) -> list[CashDocument]:
        stmt: Select[tuple[CashDocument]] = select(CashDocument).where(CashDocument.cash_account_id == cash_account_id)
        if document_type is not None:
            stmt = stmt.where(CashDocument.type == document_type)
        if start_date is not None:
            stmt = stmt.where(CashDocument.document_date >= start_date)
        if end_date is not None:
            stmt = stmt.where(CashDocument.document_date <= end_date)
        if not include_cancelled:
            stmt = stmt.where(CashDocument.is_cancelled.is_(False))
        stmt = self.document_repository.apply_scope_query(stmt, ctx)
        return list(session.scalars(stmt.order_by(CashDocument.document_date.asc(), CashDocument.document_number.asc())).all())

    def _get_account(self, session: Session, ctx: AuthContext, account_id: uuid.UUID) -> CashAccount:
        account = self.account_repository.get_scoped(session, ctx, CashAccount, account_id)
        if account is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="cash account not found")
        return account

    def _get_document_for_write(
        self,
        session: Session,
        ctx: AuthContext,
        document_id: uuid.UUID,
        payload: dict[str, Any],
        *,
        action: str,
    ) -> CashDocument:
        document = session.scalar(
            self.document_repository.apply_scope_query(select(CashDocument).where(CashDocument.id == document_id), ctx)
        )
        if document is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="cash document not found")
        self._validate_write(
            self.document_repository,
            payload,
            ctx,
            existing_scope={"business_profile_id": str(document.business_profile_id)},
            action=action,
        )
        return document

    @staticmethod
    def _next_document_number(session: Session, business_profile_id: uuid.UUID, document_type: str, year: int) -> str:
        prefix = f"{document_type}/{year:04d}/"
        existing = session.scalars(
            select(CashDocument.document_number).where(
                CashDocument.business_profile_id == business_profile_id,
                CashDocument.document_number.like(f"{prefix}%"),
            )
        ).all()
        last = max((int(item.rsplit("/", 1)[1]) for item in existing if item.rsplit("/", 1)[1].isdigit()), default=0)
        return f"{prefix}{last + 1:04d}"

    @staticmethod
    def _validate_write(
        repository: CashAccountRepository | CashDocumentRepository | CashReconciliationRepository,
        payload: dict[str, Any],
        ctx: AuthContext,
        *,
        existing_scope: dict[str, str | None] | None = None,
        action: str,
    ) -> None:
        try:
            repository.validate_write_security(payload, ctx, existing_scope=existing_scope, action=action)
        except (ForbiddenFieldError, AuthorizationError) as exc:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc))

    def _to_account_read(self, session: Session, account: CashAccount, ctx: AuthContext) -> CashAccountRead:
        payload = CashAccountRead.model_validate(account).model_dump(mode="python")
        payload["balance"] = self.account_balance(session, account)
        return CashAccountRead.model_validate(self.account_repository.apply_read_security(payload, ctx))

    def _to_document_read(self, document: CashDocument, ctx: AuthContext) -> CashDocumentRead:
        secured = self.document_repository.apply_read_security(
            CashDocumentRead.model_validate(document).model_dump(mode="python"),
            ctx,
        )
        return CashDocumentRead.model_validate(secured)


cash_service = CashService()
