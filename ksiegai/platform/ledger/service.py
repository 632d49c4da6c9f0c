from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any

from fastapi import HTTPException, status
from sqlalchemy import Select, and_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from ksiegai import audit, events
from ksiegai.business.profiles.models import BusinessProfile
from ksiegai.core.money import q
from ksiegai.metrics import (
    observe_ledger_entries_posted,
    observe_ledger_entry_reversed,
    observe_ledger_lines_posted,
    observe_ledger_post_failure,
)
from ksiegai.platform.ledger.models import AccountingPeriod, JournalEntry, JournalLine, LedgerAccount
from ksiegai.platform.ledger.schemas import (
    AccountLedgerLine,
    AccountLedgerRead,
    JournalEntryCreate,
    JournalEntryLinesUpdate,
    JournalEntryRead,
    JournalEntryReverseRequest,
    JournalLineInput,
    JournalLineRead,
    LedgerAccountCreate,
    LedgerAccountRead,
)
from ksiegai.platform.ledger.chart import POLISH_CHART_OF_ACCOUNTS
from ksiegai.platform.security.context import AuthContext
from ksiegai.platform.security.errors import AuthorizationError, ForbiddenFieldError
from ksiegai.platform.security.repository import BaseRepository
from ksiegai.services.audit import write_audit_event


logger = logging.getLogger("ksiegai.ledger")

ZERO = Decimal("0")
BOOKED_STATUSES = ("POSTED", "REVERSED")
DEBIT_NORMAL_TYPES = {"ASSET", "EXPENSE"}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LedgerAccountRepository(BaseRepository):
    resource = "ledger.account"


class JournalEntryRepository(BaseRepository):
    resource = "ledger.entry"


class JournalLineRepository(BaseRepository):
    resource = "ledger.line"


@dataclass(slots=True)
class LedgerService:
    account_repository: LedgerAccountRepository = LedgerAccountRepository()
    entry_repository: JournalEntryRepository = JournalEntryRepository()
    line_repository: JournalLineRepository = JournalLineRepository()

    def create_account(self, session: Session, ctx: AuthContext, dto: LedgerAccountCreate) -> LedgerAccountRead:
        payload = dto.model_dump(mode="python")
        self._validate_write(self.account_repository, payload, ctx, action="create")
        self._require_profile(session, dto.business_profile_id)

        level = 1
        if dto.parent_code is not None:
            parent = self.find_account_by_code(session, dto.business_profile_id, dto.parent_code)
            if parent is None:
                raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="parent account not found")
            level = parent.level + 1

        account = LedgerAccount(level=level, **payload)
        session.add(account)
        try:
            session.commit()
        except IntegrityError:
            session.rollback()
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="ledger account already exists")
        session.refresh(account)
        return self._to_account_read(account, ctx)

    def list_accounts(
        self,
        session: Session,
        ctx: AuthContext,
        *,
        business_profile_id: uuid.UUID,
        account_type: str | None = None,
        active_only: bool = False,
    ) -> list[LedgerAccountRead]:
        stmt: Select[tuple[LedgerAccount]] = select(LedgerAccount).where(LedgerAccount.business_profile_id == business_profile_id)
        if account_type is not None:
            stmt = stmt.where(LedgerAccount.type == account_type)
        if active_only:
            stmt = stmt.where(LedgerAccount.is_active.is_(True))
        stmt = self.account_repository.apply_scope_query(stmt, ctx)
        rows = session.scalars(stmt.order_by(LedgerAccount.code.asc())).all()
        return [self._to_account_read(item, ctx) for item in rows]

    def deactivate_account(self, session: Session, ctx: AuthContext, account_id: uuid.UUID) -> LedgerAccountRead:
        account = self.account_repository.get_scoped(session, ctx, LedgerAccount, account_id)
        if account is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="ledger account not found")
        self._validate_write(
            self.account_repository,
            {"is_active": False},
            ctx,
            existing_scope={"business_profile_id": str(account.business_profile_id)},
            action="update",
        )
        account.is_active = False
        session.commit()
        session.refresh(account)
        audit.record(
            actor_user_id=ctx.user_id,
            entity_type="ledger.account",
            entity_id=str(account.id),
            action="deactivate",
            before={"is_active": True},
            after={"is_active": False},
            correlation_id=ctx.correlation_id,
        )
        return self._to_account_read(account, ctx)

    def seed_chart_of_accounts(
        self,
        session: Session,
        ctx: AuthContext,
        *,
        business_profile_id: uuid.UUID,
    ) -> list[LedgerAccountRead]:
        self._validate_write(self.account_repository, {"business_profile_id": business_profile_id}, ctx, action="seed")
        self._require_profile(session, business_profile_id)

        existing = {
            item.code: item
            for item in session.scalars(
                select(LedgerAccount).where(LedgerAccount.business_profile_id == business_profile_id)
            ).all()
        }

        created: list[LedgerAccount] = []
        for code, name, account_type, parent_code in POLISH_CHART_OF_ACCOUNTS:
            if code in existing:
                continue
            parent = existing.get(parent_code) if parent_code else None
            account = LedgerAccount(
                business_profile_id=business_profile_id,
                code=code,
                name=name,
                type=account_type,
                parent_code=parent_code,
                level=parent.level + 1 if parent is not None else 1,
                is_active=True,
            )
            session.add(account)
            existing[code] = account
            created.append(account)

        session.commit()
        return [self._to_account_read(item, ctx) for item in created]

    def find_account_by_code(self, session: Session, business_profile_id: uuid.UUID, code: str) -> LedgerAccount | None:
        return session.scalar(
            select(LedgerAccount).where(
                and_(
                    LedgerAccount.business_profile_id == business_profile_id,
                    LedgerAccount.code == code,
                    LedgerAccount.is_active.is_(True),
                )
            )
        )

    def get_or_create_period(self, session: Session, business_profile_id: uuid.UUID, year: int, month: int) -> AccountingPeriod:
        period = session.scalar(
            select(AccountingPeriod).where(
                AccountingPeriod.business_profile_id == business_profile_id,
                AccountingPeriod.year == year,
                AccountingPeriod.month == month,
            )
        )
        if period is None:
            period = AccountingPeriod(business_profile_id=business_profile_id, year=year, month=month, status="OPEN")
            session.add(period)
            session.flush()
        return period

    def create_entry(self, session: Session, ctx: AuthContext, request: JournalEntryCreate) -> JournalEntryRead:
        payload = request.model_dump(mode="python", exclude={"lines", "post"})
        try:
            self.entry_repository.validate_write_security(payload, ctx, action="create")
        except (ForbiddenFieldError, AuthorizationError) as exc:
            observe_ledger_post_failure("authz")
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc))

        self._require_profile(session, request.business_profile_id)
        period = self._open_period_for(session, request.business_profile_id, request.entry_date)
        line_rows = self._prepare_lines(session, request.business_profile_id, request.lines)

        entry = JournalEntry(
            business_profile_id=request.business_profile_id,
            period_id=period.id,
            entry_number=self._next_entry_number(session, request.business_profile_id, request.entry_date),
            entry_date=request.entry_date,
            description=request.description,
            source_type=request.source_type,
            source_id=request.source_id,
            status="DRAFT",
            created_by=ctx.user_id,
        )
        entry.id = uuid.uuid4()
        event = write_audit_event(
            session,
            actor_id=ctx.user_id,
            action="ledger.entry.created",
            entity_type="ledger.entry",
            entity_id=str(entry.id),
            business_profile_id=request.business_profile_id,
            metadata={"entry_number": entry.entry_number, "source_type": entry.source_type, "source_id": entry.source_id},
            correlation_id=ctx.correlation_id,
        )
        entry.event_id = event.id
        session.add(entry)
        session.flush()

        for row in line_rows:
            session.add(JournalLine(journal_entry_id=entry.id, **row))
        session.flush()

        if request.post:
            self._mark_posted(session, ctx, entry)

        self._commit(session, "failed to persist journal entry")
        entry = self._load_entry(session, entry.id)

        audit.record(
            actor_user_id=ctx.user_id,
            entity_type="ledger.entry",
            entity_id=str(entry.id),
            action="ledger.created",
            before=None,
            after={
                "business_profile_id": str(entry.business_profile_id),
                "entry_number": entry.entry_number,
                "status": entry.status,
                "line_count": len(entry.lines),
            },
            correlation_id=ctx.correlation_id,
        )
        if entry.status == "POSTED":
            self._after_posted(ctx, entry)
        return self._to_entry_read(entry, ctx)

    def record_entry(self, session: Session, ctx: AuthContext, request: JournalEntryCreate) -> JournalEntryRead:
        """Create and post an entry in one transaction."""

        return self.create_entry(session, ctx, request.model_copy(update={"post": True}))

    def update_entry_lines(
        self,
        session: Session,
        ctx: AuthContext,
        entry_id: uuid.UUID,
        request: JournalEntryLinesUpdate,
    ) -> JournalEntryRead:
        entry = self._get_entry_for_write(session, ctx, entry_id, action="update")
        if entry.status != "DRAFT":
            observe_ledger_post_failure("immutable_entry")
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="only draft entries can be edited")

        if request.entry_date is not None and request.entry_date != entry.entry_date:
            period = self._open_period_for(session, entry.business_profile_id, request.entry_date)
            entry.period_id = period.id
            entry.entry_date = request.entry_date
        if request.description is not None:
            entry.description = request.description

        line_rows = self._prepare_lines(session, entry.business_profile_id, request.lines)
        entry.lines.clear()
        session.flush()
        for row in line_rows:
            entry.lines.append(JournalLine(**row))

        event = write_audit_event(
            session,
            actor_id=ctx.user_id,
            action="ledger.entry.updated",
            entity_type="ledger.entry",
            entity_id=str(entry.id),
            business_profile_id=entry.business_profile_id,
            metadata={"entry_number": entry.entry_number, "line_count": len(line_rows)},
            correlation_id=ctx.correlation_id,
        )
        entry.event_id = event.id
        self._commit(session, "failed to update journal entry")
        return self._to_entry_read(self._load_entry(session, entry.id), ctx)

    def delete_entry(self, session: Session, ctx: AuthContext, entry_id: uuid.UUID) -> None:
        entry = self._get_entry_for_write(session, ctx, entry_id, action="delete")
        if entry.status != "DRAFT":
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="only draft entries can be deleted")

        write_audit_event(
            session,
            actor_id=ctx.user_id,
            action="ledger.entry.deleted",
            entity_type="ledger.entry",
            entity_id=str(entry.id),
            business_profile_id=entry.business_profile_id,
            metadata={"entry_number": entry.entry_number},
            correlation_id=ctx.correlation_id,
        )
        session.delete(entry)
        session.commit()
        audit.record(
            actor_user_id=ctx.user_id,
            entity_type="ledger.entry",
            entity_id=str(entry_id),
            action="ledger.deleted",
            before={"status": "DRAFT", "entry_number": entry.entry_number},
            after=None,
            correlation_id=ctx.correlation_id,
        )

    def post_entry(self, session: Session, ctx: AuthContext, entry_id: uuid.UUID) -> JournalEntryRead:
        entry = self._get_entry_for_write(session, ctx, entry_id, action="post")
        if entry.status != "DRAFT":
            observe_ledger_post_failure("already_posted")
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="only draft entries can be posted")

        self._open_period_for(session, entry.business_profile_id, entry.entry_date)
        self._assert_balanced(entry.lines)
        self._mark_posted(session, ctx, entry)
        self._commit(session, "failed to post journal entry")

        entry = self._load_entry(session, entry.id)
        audit.record(
            actor_user_id=ctx.user_id,
            entity_type="ledger.entry",
            entity_id=str(entry.id),
            action="ledger.posted",
            before={"status": "DRAFT"},
            after={"status": "POSTED", "entry_number": entry.entry_number},
            correlation_id=ctx.correlation_id,
        )
        self._after_posted(ctx, entry)
        return self._to_entry_read(entry, ctx)

    def reverse_entry(
        self,
        session: Session,
        ctx: AuthContext,
        entry_id: uuid.UUID,
        request: JournalEntryReverseRequest,
    ) -> JournalEntryRead:
        entry = self._get_entry_for_write(session, ctx, entry_id, action="reverse")
        if entry.status == "REVERSED":
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="entry already reversed")
        if entry.status != "POSTED":
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="only posted entries can be reversed")

        reversal_date = request.reversal_date or date.today()
        reversal = self._build_reversal_request(entry, reversal_date)
        period = self._open_period_for(session, entry.business_profile_id, reversal_date)
        line_rows = self._prepare_lines(session, entry.business_profile_id, reversal.lines)

        reversal_entry = JournalEntry(
            id=uuid.uuid4(),
            business_profile_id=entry.business_profile_id,
            period_id=period.id,
            entry_number=self._next_entry_number(session, entry.business_profile_id, reversal_date),
            entry_date=reversal_date,
            description=reversal.description,
            source_type="REVERSAL",
            source_id=str(entry.id),
            status="DRAFT",
            reversal_of_id=entry.id,
            reversal_reason=request.reason,
            created_by=ctx.user_id,
        )
        event = write_audit_event(
            session,
            actor_id=ctx.user_id,
            action="ledger.entry.reversed",
            entity_type="ledger.entry",
            entity_id=str(entry.id),
            business_profile_id=entry.business_profile_id,
            metadata={
                "entry_number": entry.entry_number,
                "reversal_entry_id": str(reversal_entry.id),
                "reason": request.reason,
            },
            correlation_id=ctx.correlation_id,
        )
        reversal_entry.event_id = event.id
        session.add(reversal_entry)
        session.flush()
        for row in line_rows:
            session.add(JournalLine(journal_entry_id=reversal_entry.id, **row))
        session.flush()
        self._mark_posted(session, ctx, reversal_entry, event_id=event.id)

        entry.status = "REVERSED"
        entry.reversal_reason = request.reason
        entry.event_id = event.id
        self._commit(session, "failed to reverse journal entry")

        reversal_entry = self._load_entry(session, reversal_entry.id)
        observe_ledger_entry_reversed()
        audit.record(
            actor_user_id=ctx.user_id,
            entity_type="ledger.entry",
            entity_id=str(entry.id),
            action="ledger.reversed",
            before={"status": "POSTED"},
            after={"status": "REVERSED", "reversal_entry_id": str(reversal_entry.id)},
            correlation_id=ctx.correlation_id,
        )
        events.publish(
            {
                "event_type": "ledger.entry.reversed",
                "business_profile_id": str(entry.business_profile_id),
                "entry_id": str(entry.id),
                "reversal_entry_id": str(reversal_entry.id),
                "reason": request.reason,
            }
        )
        logger.info(
            "ledger.entry.reversed",
            extra={"business_profile_id": str(entry.business_profile_id), "entry_id": str(entry.id), "reason": request.reason},
        )
        return self._to_entry_read(reversal_entry, ctx)

    def get_entry(self, session: Session, ctx: AuthContext, entry_id: uuid.UUID) -> JournalEntryRead:
        entry = session.scalar(
            self.entry_repository.apply_scope_query(
                select(JournalEntry)
                .where(JournalEntry.id == entry_id)
                .options(selectinload(JournalEntry.lines)),
                ctx,
            )
        )
        if entry is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="journal entry not found")
        return self._to_entry_read(entry, ctx)

    def list_entries(
        self,
        session: Session,
        ctx: AuthContext,
        *,
        business_profile_id: uuid.UUID,
        status_filter: str | None = None,
        start_date: date | None = None,
        end_date: date | None = None,
        source_type: str | None = None,
        source_id: str | None = None,
        period_id: uuid.UUID | None = None,
    ) -> list[JournalEntryRead]:
        stmt: Select[tuple[JournalEntry]] = (
            select(JournalEntry)
            .where(JournalEntry.business_profile_id == business_profile_id)
            .options(selectinload(JournalEntry.lines))
        )
        if status_filter is not None:
            stmt = stmt.where(JournalEntry.status == status_filter)
        if start_date is not None:
            stmt = stmt.where(JournalEntry.entry_date >= start_date)
        if end_date is not None:
            stmt = stmt.where(JournalEntry.entry_date <= end_date)
        if source_type is not None:
            stmt = stmt.where(JournalEntry.source_type == source_type)
        if source_id is not None:
            stmt = stmt.where(JournalEntry.source_id == source_id)
        if period_id is not None:
            stmt = stmt.where(JournalEntry.period_id == period_id)

        stmt = self.entry_repository.apply_scope_query(stmt, ctx)
        rows = session.scalars(stmt.order_by(JournalEntry.entry_date.desc(), JournalEntry.entry_number.desc())).all()
        return [self._to_entry_read(row, ctx) for row in rows]

    def account_ledger(
        self,
        session: Session,
        ctx: AuthContext,
        account_id: uuid.UUID,
        *,
        start_date: date | None = None,
        end_date: date | None = None,
    ) -> AccountLedgerRead:
        account = self.account_repository.get_scoped(session, ctx, LedgerAccount, account_id)
        if account is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="ledger account not found")

        rows = session.execute(
            select(JournalLine, JournalEntry)
            .join(JournalEntry, JournalEntry.id == JournalLine.journal_entry_id)
            .where(
                JournalLine.account_id == account.id,
                JournalEntry.status.in_(BOOKED_STATUSES),
            )
            .order_by(JournalEntry.entry_date.asc(), JournalEntry.entry_number.asc(), JournalLine.position.asc())
        ).all()

        sign = Decimal("1") if account.type in DEBIT_NORMAL_TYPES else Decimal("-1")
        opening = ZERO
        balance = ZERO
        ledger_lines: list[AccountLedgerLine] = []
        for line, entry in rows:
            debit_pln, credit_pln = line_amounts_pln(line)
            movement = sign * (debit_pln - credit_pln)
            if start_date is not None and entry.entry_date < start_date:
                opening += movement
                balance += movement
                continue
            if end_date is not None and entry.entry_date > end_date:
                break
            balance += movement
            ledger_lines.append(
                AccountLedgerLine(
                    entry_id=entry.id,
                    entry_number=entry.entry_number,
                    entry_date=entry.entry_date,
                    description=line.description or entry.description,
                    status=entry.status,
                    debit_pln=debit_pln,
                    credit_pln=credit_pln,
                    balance=q(balance),
                )
            )

        return AccountLedgerRead(
            account=self._to_account_read(account, ctx),
            start_date=start_date,
            end_date=end_date,
            opening_balance=q(opening),
            closing_balance=q(balance),
            lines=ledger_lines,
        )

    def _open_period_for(self, session: Session, business_profile_id: uuid.UUID, entry_date: date) -> AccountingPeriod:
        period = self.get_or_create_period(session, business_profile_id, entry_date.year, entry_date.month)
        if period.status != "OPEN":
            observe_ledger_post_failure("period_not_open")
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail=f"accounting period {entry_date.year}-{entry_date.month:02d} is {period.status}",
            )
        return period

    def _prepare_lines(
        self,
        session: Session,
        business_profile_id: uuid.UUID,
        lines: list[JournalLineInput],
    ) -> list[dict[str, Any]]:
        if len(lines) < 2:
            observe_ledger_post_failure("too_few_lines")
            raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="journal entry needs at least two lines")

        account_ids = {line.account_id for line in lines}
        accounts = session.scalars(select(LedgerAccount).where(LedgerAccount.id.in_(account_ids))).all()
        account_map = {item.id: item for item in accounts}
        if len(account_map) != len(account_ids):
            observe_ledger_post_failure("account_not_found")
            raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="one or more accounts not found")

        for account in account_map.values():
            if account.business_profile_id != business_profile_id or not account.is_active:
                observe_ledger_post_failure("account_scope_invalid")
                raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="invalid account scope")

        line_rows: list[dict[str, Any]] = []
        for position, line in enumerate(lines, start=1):
            debit = q(line.debit_amount)
            credit = q(line.credit_amount)
            if (debit > 0 and credit > 0) or (debit == 0 and credit == 0):
                observe_ledger_post_failure("invalid_line_side")
                raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="line must be single-sided")

            fx_rate = Decimal(line.fx_rate) if line.currency.upper() != "PLN" else Decimal("1")
            line_rows.append(
                {
                    "account_id": line.account_id,
                    "position": position,
                    "debit_amount": debit,
                    "credit_amount": credit,
                    "currency": line.currency.upper(),
                    "fx_rate": fx_rate,
                    "amount_pln": q((debit if debit > 0 else credit) * fx_rate),
                    "description": line.description,
                    "counterparty_id": line.counterparty_id,
                    "cost_center": line.cost_center,
                }
            )

        debit_total = sum((row["amount_pln"] for row in line_rows if row["debit_amount"] > 0), ZERO)
        credit_total = sum((row["amount_pln"] for row in line_rows if row["credit_amount"] > 0), ZERO)
        if q(debit_total) != q(credit_total):
            observe_ledger_post_failure("unbalanced_entry")
            raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="journal entry is not balanced")
        return line_rows

    @staticmethod
    def _assert_balanced(lines: list[JournalLine]) -> None:
        debit_total, credit_total = entry_totals_pln(lines)
        if len(lines) < 2 or debit_total != credit_total:
            observe_ledger_post_failure("unbalanced_entry")
            raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="journal entry is not balanced")

    def _mark_posted(
        self,
        session: Session,
        ctx: AuthContext,
        entry: JournalEntry,
        *,
        event_id: uuid.UUID | None = None,
    ) -> None:
        if event_id is None:
            event = write_audit_event(
                session,
                actor_id=ctx.user_id,
                action="ledger.entry.posted",
                entity_type="ledger.entry",
                entity_id=str(entry.id),
                business_profile_id=entry.business_profile_id,
                metadata={"entry_number": entry.entry_number},
                correlation_id=ctx.correlation_id,
            )
            event_id = event.id
        entry.status = "POSTED"
        entry.posted_at = utcnow()
        entry.posted_by = ctx.user_id
        entry.event_id = event_id

    def _after_posted(self, ctx: AuthContext, entry: JournalEntry) -> None:
        observe_ledger_entries_posted()
        observe_ledger_lines_posted(len(entry.lines))
        events.publish(
            {
                "event_type": "ledger.entry.posted",
                "event_id": str(entry.event_id),
                "correlation_id": ctx.correlation_id,
                "business_profile_id": str(entry.business_profile_id),
                "entry_id": str(entry.id),
                "entry_number": entry.entry_number,
                "source_type": entry.source_type,
                "source_id": entry.source_id,
            }
        )
        logger.info(
            "ledger.entry.posted",
            extra={
                "business_profile_id": str(entry.business_profile_id),
                "entry_id": str(entry.id),
                "count": len(entry.lines),
            },
        )

    @staticmethod
    def _build_reversal_request(entry: JournalEntry, reversal_date: date) -> JournalEntryCreate:
        return JournalEntryCreate(
            business_profile_id=entry.business_profile_id,
            entry_date=reversal_date,
            description=f"Reversal of: {entry.description}",
            source_type="REVERSAL",
            source_id=str(entry.id),
            lines=[
                JournalLineInput(
                    account_id=line.account_id,
                    debit_amount=line.credit_amount,
                    credit_amount=line.debit_amount,
                    currency=line.currency,
                    fx_rate=line.fx_rate,
                    description=line.description,
                    counterparty_id=line.counterparty_id,
                    cost_center=line.cost_center,
                )
                for line in entry.lines
            ],
        )

    def _get_entry_for_write(self, session: Session, ctx: AuthContext, entry_id: uuid.UUID, *, action: str) -> JournalEntry:
        entry = session.scalar(
            self.entry_repository.apply_scope_query(
                select(JournalEntry)
                .where(JournalEntry.id == entry_id)
                .options(selectinload(JournalEntry.lines)),
                ctx,
            )
        )
        if entry is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="journal entry not found")
        self._validate_write(
            self.entry_repository,
            {},
            ctx,
            existing_scope={"business_profile_id": str(entry.business_profile_id)},
            action=action,
        )
        return entry

    def _load_entry(self, session: Session, entry_id: uuid.UUID) -> JournalEntry:
        session.expire_all()
        entry = session.scalar(
            select(JournalEntry)
            .where(JournalEntry.id == entry_id)
            .options(selectinload(JournalEntry.lines))
        )
        if entry is None:
            observe_ledger_post_failure("reload_error")
            raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="entry reload failed")
        return entry

    @staticmethod
    def _commit(session: Session, detail: str) -> None:
        try:
            session.commit()
        except IntegrityError:
            session.rollback()
            observe_ledger_post_failure("db_error")
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=detail)

    @staticmethod
    def _next_entry_number(session: Session, business_profile_id: uuid.UUID, entry_date: date) -> str:
        prefix = f"PK/{entry_date.year:04d}/{entry_date.month:02d}/"
        existing = session.scalars(
            select(JournalEntry.entry_number).where(
                JournalEntry.business_profile_id == business_profile_id,
                JournalEntry.entry_number.like(f"{prefix}%"),
            )
        ).all()
        last = max((int(item.rsplit("/", 1)[1]) for item in existing if item.rsplit("/", 1)[1].isdigit()), default=0)
        return f"{prefix}{last + 1:04d}"

    @staticmethod
    def _require_profile(session: Session, business_profile_id: uuid.UUID) -> BusinessProfile:
        profile = session.get(BusinessProfile, business_profile_id)
        if profile is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="business profile not found")
        return profile

    @staticmethod
    def _validate_write(
        repository: BaseRepository,
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

    def _to_account_read(self, account: LedgerAccount, ctx: AuthContext) -> LedgerAccountRead:
        secured = self.account_repository.apply_read_security(
            LedgerAccountRead.model_validate(account).model_dump(mode="python"),
            ctx,
        )
        return LedgerAccountRead.model_validate(secured)

    def _to_entry_read(self, entry: JournalEntry, ctx: AuthContext) -> JournalEntryRead:
        total_debit, total_credit = entry_totals_pln(entry.lines)
        payload = {
            "id": entry.id,
            "business_profile_id": entry.business_profile_id,
            "period_id": entry.period_id,
            "entry_number": entry.entry_number,
            "entry_date": entry.entry_date,
            "description": entry.description,
            "source_type": entry.source_type,
            "source_id": entry.source_id,
            "status": entry.status,
            "event_id": entry.event_id,
            "reversal_of_id": entry.reversal_of_id,
            "reversal_reason": entry.reversal_reason,
            "posted_at": entry.posted_at,
            "posted_by": entry.posted_by,
            "created_by": entry.created_by,
            "created_at": entry.created_at,
            "total_debit_pln": total_debit,
            "total_credit_pln": total_credit,
            "lines": [JournalLineRead.model_validate(line).model_dump(mode="python") for line in entry.lines],
        }

        secured_entry = self.entry_repository.apply_read_security(payload, ctx)
        secured_lines = self.line_repository.apply_read_security_many(secured_entry.get("lines", []), ctx)
        secured_entry["lines"] = [JournalLineRead.model_validate(item) for item in secured_lines]
        return JournalEntryRead.model_validate(secured_entry)


def line_amounts_pln(line: JournalLine) -> tuple[Decimal, Decimal]:
    amount = Decimal(line.amount_pln)
    if Decimal(line.debit_amount) > 0:
        return amount, ZERO
    return ZERO, amount


def entry_totals_pln(lines: list[JournalLine]) -> tuple[Decimal, Decimal]:
    debit_total = ZERO
    credit_total = ZERO
    for line in lines:
        debit, credit = line_amounts_pln(line)
        debit_total += debit
        credit_total += credit
    return q(debit_total), q(credit_total)


ledger_service = LedgerService()
