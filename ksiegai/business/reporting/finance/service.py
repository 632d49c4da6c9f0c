from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any

from fastapi import HTTPException, status
from sqlalchemy import case, func, select
from sqlalchemy.orm import Session

from ksiegai.business.invoicing.models import Invoice
from ksiegai.business.profiles.service import business_profile_service
from ksiegai.business.reporting.finance.repository import FinanceReportRepository, ReceivablesReportRepository
from ksiegai.business.reporting.finance.schemas import (
    AgingBucket,
    AgingRow,
    BalanceSheetReportRead,
    ProfitAndLossReportRead,
    ReceivablesAgingReportRead,
    StatementRow,
    TrialBalanceReportRead,
    TrialBalanceRow,
)
from ksiegai.core.money import q
from ksiegai.platform.ledger.models import JournalEntry, JournalLine, LedgerAccount
from ksiegai.platform.ledger.service import BOOKED_STATUSES, DEBIT_NORMAL_TYPES
from ksiegai.platform.security.context import AuthContext


ZERO = Decimal("0")
AGING_BUCKETS = ("current", "1-30", "31-60", "61-90", "90+")


def aging_bucket(days_overdue: int) -> str:
    if days_overdue <= 0:
        return "current"
    if days_overdue <= 30:
        return "1-30"
    if days_overdue <= 60:
        return "31-60"
    if days_overdue <= 90:
        return "61-90"
    return "90+"


@dataclass(slots=True)
class AccountTotals:
    account_id: uuid.UUID
    code: str
    name: str
    type: str
    debit: Decimal
    credit: Decimal

    def natural_balance(self) -> Decimal:
        if self.type in DEBIT_NORMAL_TYPES:
            return q(self.debit - self.credit)
        return q(self.credit - self.debit)


@dataclass(slots=True)
class FinanceReportingService:
    report_repository: FinanceReportRepository = FinanceReportRepository()
    receivables_repository: ReceivablesReportRepository = ReceivablesReportRepository()

    def trial_balance(
        self,
        session: Session,
        ctx: AuthContext,
        *,
        business_profile_id: uuid.UUID,
        start_date: date | None,
        end_date: date | None,
    ) -> TrialBalanceReportRead:
        self._validate_range(start_date, end_date)
        business_profile_service.require_profile(session, ctx, business_profile_id)

        totals = self._account_totals(session, ctx, business_profile_id, start_date=start_date, end_date=end_date)
        rows: list[dict[str, Any]] = []
        debit_total = ZERO
        credit_total = ZERO
        for item in totals:
            debit_total += item.debit
            credit_total += item.credit
            rows.append(
                {
                    "account_id": item.account_id,
                    "account_code": item.code,
                    "account_name": item.name,
                    "account_type": item.type,
                    "debit_total": q(item.debit),
                    "credit_total": q(item.credit),
                    "net_balance": q(item.debit - item.credit),
                }
            )

        secured_rows = self.report_repository.apply_read_security_many(rows, ctx)
        payload = {
            "business_profile_id": business_profile_id,
            "start_date": start_date,
            "end_date": end_date,
            "total_debits": q(debit_total),
            "total_credits": q(credit_total),
            "is_balanced": q(debit_total) == q(credit_total),
            "rows": [TrialBalanceRow.model_validate(item) for item in secured_rows],
        }
        secured = self.report_repository.apply_read_security(payload, ctx)
        secured["rows"] = [TrialBalanceRow.model_validate(item) for item in secured.get("rows", [])]
        return TrialBalanceReportRead.model_validate(secured)

    def profit_and_loss(
        self,
        session: Session,
        ctx: AuthContext,
        *,
        business_profile_id: uuid.UUID,
        start_date: date | None,
        end_date: date | None,
    ) -> ProfitAndLossReportRead:
        self._validate_range(start_date, end_date)
        business_profile_service.require_profile(session, ctx, business_profile_id)

        totals = self._account_totals(session, ctx, business_profile_id, start_date=start_date, end_date=end_date)
        revenue = [item for item in totals if item.type == "REVENUE"]
        expenses = [item for item in totals if item.type == "EXPENSE"]
        total_revenue = q(sum((item.natural_balance() for item in revenue), ZERO))
        total_expenses = q(sum((item.natural_balance() for item in expenses), ZERO))

        payload = {
            "business_profile_id": business_profile_id,
            "start_date": start_date,
            "end_date": end_date,
            "total_revenue": total_revenue,
            "total_expenses": total_expenses,
            "net_result": q(total_revenue - total_expenses),
            "revenue": self._statement_rows(revenue, ctx),
            "expenses": self._statement_rows(expenses, ctx),
        }
        secured = self.report_repository.apply_read_security(payload, ctx)
        secured["revenue"] = [StatementRow.model_validate(item) for item in secured.get("revenue", [])]
        secured["expenses"] = [StatementRow.model_validate(item) for item in secured.get("expenses", [])]
        return ProfitAndLossReportRead.model_validate(secured)

    def balance_sheet(
        self,
        session: Session,
        ctx: AuthContext,
        *,
        business_profile_id: uuid.UUID,
        as_of_date: date | None,
    ) -> BalanceSheetReportRead:
        """Assets against liabilities and equity as of a date.

        Revenue and expense accounts are not closed into equity, so the
        current-year result and the result of earlier years are added to
        equity here.
        """

        business_profile_service.require_profile(session, ctx, business_profile_id)
        target_date = as_of_date or date.today()
        year_start = date(target_date.year, 1, 1)

        totals = self._account_totals(session, ctx, business_profile_id, start_date=None, end_date=target_date)
        current_year = self._account_totals(session, ctx, business_profile_id, start_date=year_start, end_date=target_date)

        assets = [item for item in totals if item.type == "ASSET"]
        liabilities = [item for item in totals if item.type == "LIABILITY"]
        equity = [item for item in totals if item.type == "EQUITY"]

        total_result = self._result(totals)
        current_year_result = self._result(current_year)
        retained_result = q(total_result - current_year_result)

        total_assets = q(sum((item.natural_balance() for item in assets), ZERO))
        total_liabilities = q(sum((item.natural_balance() for item in liabilities), ZERO))
        total_equity = q(sum((item.natural_balance() for item in equity), ZERO) + total_result)

        payload = {
            "business_profile_id": business_profile_id,
            "as_of_date": target_date,
            "total_assets": total_assets,
            "total_liabilities": total_liabilities,
            "total_equity": total_equity,
            "retained_result": retained_result,
            "current_year_result": current_year_result,
            "is_balanced": total_assets == q(total_liabilities + total_equity),
            "assets": self._statement_rows(assets, ctx),
            "liabilities": self._statement_rows(liabilities, ctx),
            "equity": self._statement_rows(equity, ctx),
        }
        secured = self.report_repository.apply_read_security(payload, ctx)
        for section in ("assets", "liabilities", "equity"):
            secured[section] = [StatementRow.model_validate(item) for item in secured.get(section, [])]
        return BalanceSheetReportRead.model_validate(secured)

    def receivables_aging(
        self,
        session: Session,
        ctx: AuthContext,
        *,
        business_profile_id: uuid.UUID,
        as_of_date: date | None,
    ) -> ReceivablesAgingReportRead:
        business_profile_service.require_profile(session, ctx, business_profile_id)
        target_date = as_of_date or date.today()

        stmt = select(Invoice).where(
            Invoice.business_profile_id == business_profile_id,
            Invoice.transaction_type == "INCOME",
            Invoice.status.in_(["ISSUED", "OVERDUE"]),
            Invoice.amount_due > ZERO,
            Invoice.issue_date <= target_date,
        )
        stmt = self.receivables_repository.apply_scope_query(stmt, ctx)
        invoices = session.scalars(stmt.order_by(Invoice.due_date.asc(), Invoice.number.asc())).all()

        amounts: dict[str, Decimal] = {label: ZERO for label in AGING_BUCKETS}
        counts: dict[str, int] = {label: 0 for label in AGING_BUCKETS}
        rows: list[dict[str, Any]] = []
        total_due = ZERO

        for invoice in invoices:
            due = Decimal(invoice.amount_due)
            due_pln = due if invoice.currency == "PLN" else q(due * Decimal(invoice.exchange_rate))
            days_overdue = 0
            if invoice.due_date is not None:
                days_overdue = max(0, (target_date - invoice.due_date).days)
            bucket = aging_bucket(days_overdue)
            amounts[bucket] += due_pln
            counts[bucket] += 1
            total_due += due_pln

            rows.append(
                {
                    "invoice_id": invoice.id,
                    "invoice_number": invoice.number,
                    "counterparty_name": invoice.counterparty_name,
                    "due_date": invoice.due_date,
                    "days_overdue": days_overdue,
                    "bucket": bucket,
                    "amount_due": q(due),
                    "amount_due_pln": q(due_pln),
                    "currency": invoice.currency,
                    "status": invoice.status,
                }
            )

        secured_rows = self.receivables_repository.apply_read_security_many(rows, ctx)
        payload = {
            "business_profile_id": business_profile_id,
            "as_of_date": target_date,
            "total_amount_due": q(total_due),
            "buckets": [{"label": label, "amount": q(amounts[label]), "count": counts[label]} for label in AGING_BUCKETS],
            "rows": [AgingRow.model_validate(item) for item in secured_rows],
        }
        secured = self.receivables_repository.apply_read_security(payload, ctx)
        secured["buckets"] = [AgingBucket.model_validate(item) for item in secured.get("buckets", [])]
        secured["rows"] = [AgingRow.model_validate(item) for item in secured.get("rows", [])]
        return ReceivablesAgingReportRead.model_validate(secured)

    def _account_totals(
        self,
        session: Session,
        ctx: AuthContext,
        business_profile_id: uuid.UUID,
        *,
        start_date: date | None,
        end_date: date | None,
    ) -> list[AccountTotals]:
        debit_pln = func.coalesce(func.sum(case((JournalLine.debit_amount > 0, JournalLine.amount_pln), else_=0)), 0)
        credit_pln = func.coalesce(func.sum(case((JournalLine.debit_amount > 0, 0), else_=JournalLine.amount_pln)), 0)
        stmt = (
            select(LedgerAccount.id, LedgerAccount.code, LedgerAccount.name, LedgerAccount.type, debit_pln, credit_pln)
            .join(JournalLine, JournalLine.account_id == LedgerAccount.id)
            .join(JournalEntry, JournalEntry.id == JournalLine.journal_entry_id)
            .where(
                LedgerAccount.business_profile_id == business_profile_id,
                JournalEntry.business_profile_id == business_profile_id,
                JournalEntry.status.in_(BOOKED_STATUSES),
            )
            .group_by(LedgerAccount.id, LedgerAccount.code, LedgerAccount.name, LedgerAccount.type)
        )
        if start_date is not None:
            stmt = stmt.where(JournalEntry.entry_date >= start_date)
        if end_date is not None:
            stmt = stmt.where(JournalEntry.entry_date <= end_date)

        stmt = self.report_repository.apply_scope_query(stmt, ctx)
        records = session.execute(stmt.order_by(LedgerAccount.code.asc())).all()
        return [
            AccountTotals(
                account_id=account_id,
                code=code,
                name=name,
                type=account_type,
                debit=q(Decimal(debit)),
                credit=q(Decimal(credit)),
            )
            for account_id, code, name, account_type, debit, credit in records
        ]

    def _statement_rows(self, items: list[AccountTotals], ctx: AuthContext) -> list[StatementRow]:
        rows = [
            {
                "account_id": item.account_id,
                "account_code": item.code,
                "account_name": item.name,
                "amount": item.natural_balance(),
            }
            for item in items
        ]
        return [StatementRow.model_validate(row) for row in self.report_repository.apply_read_security_many(rows, ctx)]

    @staticmethod
    def _result(totals: list[AccountTotals]) -> Decimal:
        revenue = sum((item.natural_balance() for item in totals if item.type == "REVENUE"), ZERO)
        expenses = sum((item.natural_balance() for item in totals if item.type == "EXPENSE"), ZERO)
        return q(revenue - expenses)

    @staticmethod
    def _validate_range(start_date: date | None, end_date: date | None) -> None:
        if start_date is not None and end_date is not None and start_date > end_date:
            raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="start_date must not be after end_date")


finance_reporting_service = FinanceReportingService()
