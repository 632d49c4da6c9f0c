from __future__ import annotations

import calendar
import logging
import uuid
from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from fastapi import HTTPException, status
from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from ksiegai.business.invoicing.models import Invoice
from ksiegai.business.invoicing.repository import InvoiceRepository
from ksiegai.business.profiles.models import BusinessProfile
from ksiegai.business.profiles.service import business_profile_service
from ksiegai.business.tax import calculator
from ksiegai.business.tax.declarations import build_jpk_v7m, build_pit_advance, build_zus_dra
from ksiegai.business.tax.schemas import (
    DeclarationRequest,
    GeneratedDeclaration,
    IncomeTaxRequest,
    IncomeTaxResult,
    PitAdvanceResult,
    VatRateTotals,
    VatSettlementResult,
    ZusContributions,
)
from ksiegai.core.money import VAT_RATES, q
from ksiegai.platform.security.context import AuthContext


logger = logging.getLogger("ksiegai.tax")

ZERO = Decimal("0")
SETTLED_STATUSES = ("ISSUED", "OVERDUE", "PAID")
SUPPORTED_DECLARATIONS = ("JPK_V7M", "PIT_ADVANCE", "ZUS_DRA")


def _month_end(year: int, month: int) -> date:
    return date(year, month, calendar.monthrange(year, month)[1])


def _to_pln(invoice: Invoice, amount: Decimal) -> Decimal:
    if invoice.currency == "PLN":
        return q(Decimal(amount))
    return q(Decimal(amount) * Decimal(invoice.exchange_rate))


@dataclass(slots=True)
class TaxService:
    invoice_repository: InvoiceRepository = InvoiceRepository()

    def calculate_income_tax(self, dto: IncomeTaxRequest) -> IncomeTaxResult:
        try:
            return calculator.calculate_income_tax(dto.income, dto.costs, dto.tax_type, dto.ryczalt_rate)
        except ValueError as exc:
            raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc))

    def zus_contributions(self, base: Decimal) -> ZusContributions:
        return calculator.zus_contributions(base)

    def pit_advance(
        self,
        session: Session,
        ctx: AuthContext,
        *,
        business_profile_id: uuid.UUID,
        year: int,
        month: int,
    ) -> PitAdvanceResult:
        profile = business_profile_service.require_profile(session, ctx, business_profile_id)
        if profile.tax_type == "RYCZALT" and profile.ryczalt_rate is None:
            raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="profile has no ryczalt_rate")

        income, costs = self._cumulative_totals(session, ctx, profile, year, month)
        cumulative = calculator.calculate_income_tax(income, costs, profile.tax_type, profile.ryczalt_rate)
        if month > 1:
            previous_income, previous_costs = self._cumulative_totals(session, ctx, profile, year, month - 1)
            previous = calculator.calculate_income_tax(
                previous_income, previous_costs, profile.tax_type, profile.ryczalt_rate
            ).tax
        else:
            previous = ZERO

        return PitAdvanceResult(
            business_profile_id=profile.id,
            year=year,
            month=month,
            tax_type=profile.tax_type,
            cumulative_income=income,
            cumulative_costs=costs,
            cumulative_tax=cumulative.tax,
            previous_cumulative_tax=previous,
            advance_due=max(ZERO, cumulative.tax - previous),
        )

    def vat_settlement(
        self,
        session: Session,
        ctx: AuthContext,
        *,
        business_profile_id: uuid.UUID,
        year: int,
        month: int,
    ) -> VatSettlementResult:
        profile = business_profile_service.require_profile(session, ctx, business_profile_id)
        sales = self._month_invoices(session, ctx, profile.id, year, month, "INCOME")
        purchases = self._month_invoices(session, ctx, profile.id, year, month, "EXPENSE")

        output_by_rate = self._totals_by_rate(sales)
        input_by_rate = self._totals_by_rate(purchases)
        output_vat = sum((row.vat_amount for row in output_by_rate), ZERO)
        input_vat = sum((row.vat_amount for row in input_by_rate), ZERO)

        return VatSettlementResult(
            business_profile_id=profile.id,
            year=year,
            month=month,
            output_vat=q(output_vat),
            input_vat=q(input_vat),
            vat_due=q(max(ZERO, output_vat - input_vat)),
            carry_forward=q(max(ZERO, input_vat - output_vat)),
            output_by_rate=output_by_rate,
            input_by_rate=input_by_rate,
            sales_count=len(sales),
            purchase_count=len(purchases),
        )

    def generate_declaration(self, session: Session, ctx: AuthContext, dto: DeclarationRequest) -> GeneratedDeclaration:
        if dto.declaration_type not in SUPPORTED_DECLARATIONS:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail=f"unsupported declaration type: {dto.declaration_type}",
            )
        profile = business_profile_service.require_profile(session, ctx, dto.business_profile_id)

        if dto.declaration_type == "JPK_V7M":
            sales = self._month_invoices(session, ctx, profile.id, dto.year, dto.month, "INCOME")
            purchases = self._month_invoices(session, ctx, profile.id, dto.year, dto.month, "EXPENSE")
            declaration = build_jpk_v7m(profile, dto.year, dto.month, sales, purchases)
        elif dto.declaration_type == "PIT_ADVANCE":
            result = self.pit_advance(session, ctx, business_profile_id=profile.id, year=dto.year, month=dto.month)
            declaration = build_pit_advance(profile, result)
        else:
            if dto.zus_base is None:
                raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="zus_base is required for ZUS_DRA")
            declaration = build_zus_dra(profile, dto.year, dto.month, calculator.zus_contributions(dto.zus_base))

        logger.info(
            "tax.declaration.generated",
            extra={
                "business_profile_id": str(profile.id),
                "period": f"{dto.year:04d}-{dto.month:02d}",
                "status": dto.declaration_type,
            },
        )
        return declaration

    def _cumulative_totals(
        self,
        session: Session,
        ctx: AuthContext,
        profile: BusinessProfile,
        year: int,
        month: int,
    ) -> tuple[Decimal, Decimal]:
        invoices = self._invoices_between(session, ctx, profile.id, date(year, 1, 1), _month_end(year, month))
        income = ZERO
        costs = ZERO
        for invoice in invoices:
            amount = _to_pln(invoice, invoice.total_net)
            if invoice.transaction_type == "INCOME":
                income += amount
            else:
                costs += amount
        return q(income), q(costs)

    def _month_invoices(
        self,
        session: Session,
        ctx: AuthContext,
        profile_id: uuid.UUID,
        year: int,
        month: int,
        transaction_type: str,
    ) -> list[Invoice]:
        return self._invoices_between(
            session,
            ctx,
            profile_id,
            date(year, month, 1),
            _month_end(year, month),
            transaction_type=transaction_type,
        )

    def _invoices_between(
        self,
        session: Session,
        ctx: AuthContext,
        profile_id: uuid.UUID,
        start: date,
        end: date,
        *,
        transaction_type: str | None = None,
    ) -> list[Invoice]:
        stmt = (
            select(Invoice)
            .where(
                Invoice.business_profile_id == profile_id,
                Invoice.status.in_(SETTLED_STATUSES),
                Invoice.issue_date >= start,
                Invoice.issue_date <= end,
            )
            .options(selectinload(Invoice.lines))
            .order_by(Invoice.issue_date.asc(), Invoice.number.asc())
        )
        if transaction_type is not None:
            stmt = stmt.where(Invoice.transaction_type == transaction_type)
        return list(session.scalars(self.invoice_repository.apply_scope_query(stmt, ctx)).all())

    @staticmethod
    def _totals_by_rate(invoices: list[Invoice]) -> list[VatRateTotals]:
        net: dict[str, Decimal] = {}
        vat: dict[str, Decimal] = {}
        for invoice in invoices:
            for line in invoice.lines:
                net[line.vat_rate] = net.get(line.vat_rate, ZERO) + _to_pln(invoice, line.net_amount)
                vat[line.vat_rate] = vat.get(line.vat_rate, ZERO) + _to_pln(invoice, line.vat_amount)
        order = list(VAT_RATES)
        return [
            VatRateTotals(vat_rate=code, net_amount=q(net[code]), vat_amount=q(vat[code]))
            for code in sorted(net, key=lambda code: order.index(code) if code in order else len(order))
        ]


tax_service = TaxService()
