from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal

from fastapi import HTTPException, status
from opentelemetry import trace
from sqlalchemy import select
from sqlalchemy.orm import Session

from ksiegai import audit, events
from ksiegai.context import get_correlation_id
from ksiegai.business.invoicing.models import Invoice
from ksiegai.business.profiles.models import BusinessProfile
from ksiegai.core.money import q
from ksiegai.metrics import observe_period_locked
from ksiegai.platform.ledger.models import AccountingPeriod, JournalEntry, JournalLine, LedgerAccount
from ksiegai.platform.ledger.service import BOOKED_STATUSES, ledger_service, line_amounts_pln
from ksiegai.platform.periods.schemas import AccountingPeriodRead, AutoLockResult, PeriodCheck, PeriodDecision
from ksiegai.platform.security.context import AuthContext
from ksiegai.platform.security.errors import AuthorizationError, ForbiddenFieldError
from ksiegai.platform.security.repository import BaseRepository


logger = logging.getLogger("ksiegai.periods")
tracer = trace.get_tracer("ksiegai.periods")

ZERO = Decimal("0")
TAX_DEADLINE_DAY = 20


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def tax_deadline(year: int, month: int) -> date:
    """The 20th of the month following the period."""

    if month == 12:
        return date(year + 1, 1, TAX_DEADLINE_DAY)
    return date(year, month + 1, TAX_DEADLINE_DAY)


def months_to_check(today: date) -> list[tuple[int, int]]:
    """Every month from January of last year up to the month before ``today``."""

    months: list[tuple[int, int]] = []
    year, month = today.year - 1, 1
    while (year, month) < (today.year, today.month):
        months.append((year, month))
        year, month = (year + 1, 1) if month == 12 else (year, month + 1)
    return months


def _month_bounds(year: int, month: int) -> tuple[date, date]:
    start = date(year, month, 1)
    end = date(year + 1, 1, 1) if month == 12 else date(year, month + 1, 1)
    return start, end


class AccountingPeriodRepository(BaseRepository):
    resource = "periods.accounting_period"


@dataclass(slots=True)
class PeriodService:
    period_repository: AccountingPeriodRepository = AccountingPeriodRepository()

    def get_or_create_period(
        self,
        session: Session,
        ctx: AuthContext,
        *,
        business_profile_id: uuid.UUID,
        year: int,
        month: int,
    ) -> AccountingPeriodRead:
        self._require_profile(session, ctx, business_profile_id)
        period = ledger_service.get_or_create_period(session, business_profile_id, year, month)
        session.commit()
        return self._to_read(period, ctx)

    def list_periods(
        self,
        session: Session,
        ctx: AuthContext,
        *,
        business_profile_id: uuid.UUID,
        year: int | None = None,
    ) -> list[AccountingPeriodRead]:
        stmt = select(AccountingPeriod).where(AccountingPeriod.business_profile_id == business_profile_id)
        if year is not None:
            stmt = stmt.where(AccountingPeriod.year == year)
        stmt = self.period_repository.apply_scope_query(stmt, ctx)
        rows = session.scalars(stmt.order_by(AccountingPeriod.year.asc(), AccountingPeriod.month.asc())).all()
        return [self._to_read(row, ctx) for row in rows]

    def close_period(
        self,
        session: Session,
        ctx: AuthContext,
        *,
        business_profile_id: uuid.UUID,
        year: int,
        month: int,
    ) -> AccountingPeriodRead:
        period = self._period_for_write(session, ctx, business_profile_id, year, month, action="close")
        if period.status != "OPEN":
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=f"cannot close a {period.status} period")

        self._capture_totals(session, period)
        period.status = "CLOSED"
        period.closed_at = utcnow()
        period.closed_by = ctx.user_id
        session.commit()

        self._record(ctx, period, "close", before="OPEN")
        events.publish(
            {
                "event_type": "period.closed",
                "business_profile_id": str(business_profile_id),
                "period": f"{year}-{month:02d}",
                "net_result": str(period.net_result),
            }
        )
        return self._to_read(period, ctx)

    def reopen_period(
        self,
        session: Session,
        ctx: AuthContext,
        *,
        business_profile_id: uuid.UUID,
        year: int,
        month: int,
    ) -> AccountingPeriodRead:
        period = self._period_for_write(session, ctx, business_profile_id, year, month, action="reopen")
        if period.status != "CLOSED":
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=f"cannot reopen a {period.status} period")

        period.status = "OPEN"
        period.closed_at = None
        period.closed_by = None
        period.total_revenue = None
        period.total_expenses = None
        period.net_result = None
        session.commit()

        self._record(ctx, period, "reopen", before="CLOSED")
        events.publish(
            {
                "event_type": "period.reopened",
                "business_profile_id": str(business_profile_id),
                "period": f"{year}-{month:02d}",
            }
        )
        return self._to_read(period, ctx)

    def lock_period(
        self,
        session: Session,
        ctx: AuthContext,
        *,
        business_profile_id: uuid.UUID,
        year: int,
        month: int,
        reason: str,
        trigger: str = "manual",
    ) -> AccountingPeriodRead:
        period = self._period_for_write(session, ctx, business_profile_id, year, month, action="lock")
        self._lock(session, ctx, period, reason=reason, trigger=trigger)
        session.commit()
        return self._to_read(period, ctx)

    def check_periods(
        self,
        session: Session,
        ctx: AuthContext,
        *,
        business_profile_id: uuid.UUID,
        today: date | None = None,
    ) -> list[PeriodCheck]:
        self._require_profile(session, ctx, business_profile_id)
        today = today or date.today()
        existing = {
            (row.year, row.month): row
            for row in session.scalars(
                select(AccountingPeriod).where(AccountingPeriod.business_profile_id == business_profile_id)
            ).all()
        }

        checks: list[PeriodCheck] = []
        for year, month in months_to_check(today):
            period = existing.get((year, month))
            deadline = tax_deadline(year, month)
            period_status = period.status if period is not None else "OPEN"
            checks.append(
                PeriodCheck(
                    year=year,
                    month=month,
                    period_id=period.id if period is not None else None,
                    status=period_status,
                    tax_deadline=deadline,
                    deadline_passed=today > deadline,
                    days_overdue=max(0, (today - deadline).days),
                    is_locked=period_status == "LOCKED",
                    has_unposted_invoices=self._has_unposted_invoices(session, business_profile_id, year, month),
                )
            )
        return checks

    def periods_needing_attention(
        self,
        session: Session,
        ctx: AuthContext,
        *,
        business_profile_id: uuid.UUID,
        today: date | None = None,
    ) -> list[PeriodCheck]:
        checks = self.check_periods(session, ctx, business_profile_id=business_profile_id, today=today)
        return [item for item in checks if item.deadline_passed and not item.is_locked]

    def auto_lock_periods(
        self,
        session: Session,
        ctx: AuthContext,
        *,
        business_profile_id: uuid.UUID,
        today: date | None = None,
        dry_run: bool = False,
        max_days_overdue: int = 365,
        skip_if_unposted: bool = True,
    ) -> AutoLockResult:
        today = today or date.today()
        result = AutoLockResult(business_profile_id=business_profile_id, dry_run=dry_run)

        with tracer.start_as_current_span("periods.auto_lock") as span:
            span.set_attribute("business_profile_id", str(business_profile_id))
            span.set_attribute("dry_run", dry_run)

            for check in self.check_periods(session, ctx, business_profile_id=business_profile_id, today=today):
                if check.is_locked:
                    continue
                if not check.deadline_passed:
                    result.skipped.append(PeriodDecision(year=check.year, month=check.month, reason="Tax deadline not passed"))
                    continue
                if check.days_overdue > max_days_overdue:
                    result.skipped.append(PeriodDecision(year=check.year, month=check.month, reason="Too old to auto-lock"))
                    continue
                if skip_if_unposted and check.has_unposted_invoices:
                    result.skipped.append(PeriodDecision(year=check.year, month=check.month, reason="Has unposted invoices"))
                    continue

                reason = f"Automatically locked {check.days_overdue} days after tax deadline"
                if dry_run:
                    result.locked.append(PeriodDecision(year=check.year, month=check.month, reason=reason))
                    continue
                try:
                    period = ledger_service.get_or_create_period(session, business_profile_id, check.year, check.month)
                    self._lock(session, ctx, period, reason=reason, trigger="auto")
                    session.commit()
                except HTTPException as exc:
                    session.rollback()
                    result.errors.append(PeriodDecision(year=check.year, month=check.month, reason=str(exc.detail)))
                    logger.warning(
                        "periods.auto_lock.failed",
                        extra={"business_profile_id": str(business_profile_id), "period": f"{check.year}-{check.month:02d}", "error": str(exc.detail)},
                    )
                    continue
                result.locked.append(PeriodDecision(year=check.year, month=check.month, reason=reason))
                logger.info(
                    "periods.auto_lock.locked",
                    extra={"business_profile_id": str(business_profile_id), "period": f"{check.year}-{check.month:02d}", "reason": reason},
                )

            span.set_attribute("locked", len(result.locked))
            span.set_attribute("skipped", len(result.skipped))
        return result

    def auto_lock_all_profiles(
        self,
        session: Session,
        *,
        today: date | None = None,
        max_days_overdue: int = 90,
        skip_if_unposted: bool = True,
    ) -> list[AutoLockResult]:
        """Scheduled entry point: auto-lock every profile, isolating failures per profile."""

        ctx = AuthContext.system(correlation_id=get_correlation_id())
        results: list[AutoLockResult] = []
        for profile_id in session.scalars(select(BusinessProfile.id).order_by(BusinessProfile.created_at.asc())).all():
            try:
                results.append(
                    self.auto_lock_periods(
                        session,
                        ctx,
                        business_profile_id=profile_id,
                        today=today,
                        max_days_overdue=max_days_overdue,
                        skip_if_unposted=skip_if_unposted,
                    )
                )
            except HTTPException as exc:
                session.rollback()
                logger.error(
                    "periods.auto_lock.profile_failed",
                    extra={"business_profile_id": str(profile_id), "error": str(exc.detail)},
                )
        return results

    def _lock(self, session: Session, ctx: AuthContext, period: AccountingPeriod, *, reason: str, trigger: str) -> None:
        if period.status == "LOCKED":
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="period is already locked")
        previous = period.status
        if previous == "OPEN" or period.total_revenue is None:
            self._capture_totals(session, period)
        period.status = "LOCKED"
        period.locked_at = utcnow()
        period.locked_by = ctx.user_id
        period.lock_reason = reason
        session.flush()

        observe_period_locked(trigger)
        self._record(ctx, period, "lock", before=previous)
        events.publish(
            {
                "event_type": "period.locked",
                "business_profile_id": str(period.business_profile_id),
                "period": f"{period.year}-{period.month:02d}",
                "reason": reason,
                "trigger": trigger,
            }
        )

    @staticmethod
    def _capture_totals(session: Session, period: AccountingPeriod) -> None:
        rows = session.execute(
            select(JournalLine, LedgerAccount.type)
            .join(JournalEntry, JournalEntry.id == JournalLine.journal_entry_id)
            .join(LedgerAccount, LedgerAccount.id == JournalLine.account_id)
            .where(
                JournalEntry.period_id == period.id,
                JournalEntry.status.in_(BOOKED_STATUSES),
                LedgerAccount.type.in_(("REVENUE", "EXPENSE")),
            )
        ).all()

        revenue = ZERO
        expenses = ZERO
        for line, account_type in rows:
            debit, credit = line_amounts_pln(line)
            if account_type == "REVENUE":
                revenue += credit - debit
            else:
                expenses += debit - credit
        period.total_revenue = q(revenue)
        period.total_expenses = q(expenses)
        period.net_result = q(revenue - expenses)

    @staticmethod
    def _has_unposted_invoices(session: Session, business_profile_id: uuid.UUID, year: int, month: int) -> bool:
        start, end = _month_bounds(year, month)
        found = session.scalar(
            select(Invoice.id)
            .where(
                Invoice.business_profile_id == business_profile_id,
                Invoice.status.in_(("ISSUED", "OVERDUE", "PAID")),
                Invoice.posting_status != "POSTED",
                Invoice.issue_date >= start,
                Invoice.issue_date < end,
            )
            .limit(1)
        )
        return found is not None

    def _period_for_write(
        self,
        session: Session,
        ctx: AuthContext,
        business_profile_id: uuid.UUID,
        year: int,
        month: int,
        *,
        action: str,
    ) -> AccountingPeriod:
        self._require_profile(session, ctx, business_profile_id)
        try:
            self.period_repository.validate_write_security(
                {"business_profile_id": business_profile_id},
                ctx,
                action=action,
            )
        except (ForbiddenFieldError, AuthorizationError) as exc:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc))
        return ledger_service.get_or_create_period(session, business_profile_id, year, month)

    def _require_profile(self, session: Session, ctx: AuthContext, business_profile_id: uuid.UUID) -> None:
        if session.get(BusinessProfile, business_profile_id) is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="business profile not found")
        try:
            self.period_repository.validate_read_scope(ctx, business_profile_id=business_profile_id)
        except AuthorizationError as exc:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc))

    @staticmethod
    def _record(ctx: AuthContext, period: AccountingPeriod, action: str, *, before: str) -> None:
        audit.record(
            actor_user_id=ctx.user_id,
            entity_type="periods.accounting_period",
            entity_id=str(period.id),
            action=action,
            before={"status": before},
            after={"status": period.status, "lock_reason": period.lock_reason},
            correlation_id=ctx.correlation_id,
        )

    def _to_read(self, period: AccountingPeriod, ctx: AuthContext) -> AccountingPeriodRead:
        secured = self.period_repository.apply_read_security(
            AccountingPeriodRead.model_validate(period).model_dump(mode="python"),
            ctx,
        )
        return AccountingPeriodRead.model_validate(secured)


period_service = PeriodService()
