from __future__ import annotations

import uuid
from dataclasses import dataclass

from fastapi import HTTPException, status
from sqlalchemy import Select, func, select
from sqlalchemy.orm import Session

from ksiegai import audit
from ksiegai.business.customers.models import Customer
from ksiegai.business.customers.repository import CustomerRepository
from ksiegai.business.customers.schemas import CustomerCreate, CustomerRead, CustomerUpdate
from ksiegai.business.profiles.service import business_profile_service
from ksiegai.integrations.ksef.validators import is_valid_nip, normalize_nip
from ksiegai.platform.security.context import AuthContext
from ksiegai.platform.security.errors import AuthorizationError, ForbiddenFieldError


@dataclass(slots=True)
class CustomerService:
    customer_repository: CustomerRepository = CustomerRepository()

    def create_customer(self, session: Session, ctx: AuthContext, dto: CustomerCreate) -> CustomerRead:
        payload = dto.model_dump(mode="python")
        try:
            self.customer_repository.validate_write_security(payload, ctx, action="create")
        except (ForbiddenFieldError, AuthorizationError) as exc:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc))

        business_profile_service.require_profile(session, ctx, dto.business_profile_id)
        payload["nip"] = self._optional_nip(payload.get("nip"))

        customer = Customer(**payload)
        session.add(customer)
        session.commit()
        session.refresh(customer)

        audit.record(
            actor_user_id=ctx.user_id,
            entity_type="customers.customer",
            entity_id=str(customer.id),
            action="create",
            before=None,
            after={"name": customer.name, "nip": customer.nip, "customer_type": customer.customer_type},
            correlation_id=ctx.correlation_id,
        )
        return self._to_read(customer, ctx)

    def list_customers(
        self,
        session: Session,
        ctx: AuthContext,
        *,
        business_profile_id: uuid.UUID,
        search: str | None = None,
        customer_type: str | None = None,
        active_only: bool = True,
    ) -> list[CustomerRead]:
        stmt: Select[tuple[Customer]] = select(Customer).where(Customer.business_profile_id == business_profile_id)
        if search:
            pattern = f"%{search.lower()}%"
            stmt = stmt.where(func.lower(Customer.name).like(pattern) | Customer.nip.like(f"%{search}%"))
        if customer_type is not None:
            stmt = stmt.where(Customer.customer_type.in_([customer_type, "BOTH"]))
        if active_only:
            stmt = stmt.where(Customer.is_active.is_(True))

        stmt = self.customer_repository.apply_scope_query(stmt, ctx)
        rows = session.scalars(stmt.order_by(Customer.name.asc())).all()

        payload = [CustomerRead.model_validate(row).model_dump(mode="python") for row in rows]
        secured_rows = self.customer_repository.apply_read_security_many(payload, ctx)
        return [CustomerRead.model_validate(item) for item in secured_rows]

    def get_customer(self, session: Session, ctx: AuthContext, customer_id: uuid.UUID) -> CustomerRead:
        return self._to_read(self._get_customer(session, ctx, customer_id), ctx)

    def update_customer(
        self,
        session: Session,
        ctx: AuthContext,
        customer_id: uuid.UUID,
        dto: CustomerUpdate,
    ) -> CustomerRead:
        customer = self._get_customer(session, ctx, customer_id)
        changes = dto.model_dump(mode="python", exclude_unset=True)
        try:
            self.customer_repository.validate_write_security(
                changes,
                ctx,
                existing_scope={"business_profile_id": str(customer.business_profile_id)},
                action="update",
            )
        except (ForbiddenFieldError, AuthorizationError) as exc:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc))

        if "nip" in changes:
            changes["nip"] = self._optional_nip(changes["nip"])

        before = {key: getattr(customer, key) for key in changes}
        for key, value in changes.items():
            if value is None and key in {"name", "country", "customer_type"}:
                continue
            setattr(customer, key, value)
        session.commit()
        session.refresh(customer)

        audit.record(
            actor_user_id=ctx.user_id,
            entity_type="customers.customer",
            entity_id=str(customer.id),
            action="update",
            before=before,
            after={key: getattr(customer, key) for key in changes},
            correlation_id=ctx.correlation_id,
        )
        return self._to_read(customer, ctx)

    def deactivate_customer(self, session: Session, ctx: AuthContext, customer_id: uuid.UUID) -> CustomerRead:
        customer = self._get_customer(session, ctx, customer_id)
        if not customer.is_active:
            return self._to_read(customer, ctx)
        customer.is_active = False
        session.commit()
        session.refresh(customer)
        audit.record(
            actor_user_id=ctx.user_id,
            entity_type="customers.customer",
            entity_id=str(customer.id),
            action="deactivate",
            before={"is_active": True},
            after={"is_active": False},
            correlation_id=ctx.correlation_id,
        )
        return self._to_read(customer, ctx)

    def _get_customer(self, session: Session, ctx: AuthContext, customer_id: uuid.UUID) -> Customer:
        customer = self.customer_repository.get_scoped(session, ctx, Customer, customer_id)
        if customer is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="customer not found")
        return customer

    @staticmethod
    def _optional_nip(raw: str | None) -> str | None:
        if raw is None or not raw.strip():
            return None
        nip = normalize_nip(raw)
        if not is_valid_nip(nip):
            raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="invalid NIP checksum")
        return nip

    def _to_read(self, customer: Customer, ctx: AuthContext) -> CustomerRead:
        secured = self.customer_repository.apply_read_security(
            CustomerRead.model_validate(customer).model_dump(mode="python"),
            ctx,
        )
        return CustomerRead.model_validate(secured)


customer_service = CustomerService()
