from __future__ import annotations

import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from fastapi import HTTPException, status
from sqlalchemy import Select, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ksiegai import audit
from ksiegai.business.profiles.models import BusinessProfile
from ksiegai.business.profiles.repository import BusinessProfileRepository
from ksiegai.business.profiles.schemas import (
    RYCZALT_RATES,
    BusinessProfileCreate,
    BusinessProfileRead,
    BusinessProfileUpdate,
)
from ksiegai.integrations.ksef.validators import is_valid_nip, normalize_nip
from ksiegai.platform.security.context import AuthContext
from ksiegai.platform.security.errors import AuthorizationError, ForbiddenFieldError


_PROFILE_FIELDS = (
    "id",
    "owner_user_id",
    "name",
    "nip",
    "regon",
    "street",
    "city",
    "postal_code",
    "country",
    "entity_type",
    "tax_type",
    "ryczalt_rate",
    "vat_status",
    "is_default",
    "ksef_enabled",
    "created_at",
    "updated_at",
)


@dataclass(slots=True)
class BusinessProfileService:
    profile_repository: BusinessProfileRepository = BusinessProfileRepository()

    def create_profile(self, session: Session, ctx: AuthContext, dto: BusinessProfileCreate) -> BusinessProfileRead:
        payload = dto.model_dump(mode="python")
        try:
            self.profile_repository.validate_write_security(payload, ctx, action="create")
        except (ForbiddenFieldError, AuthorizationError) as exc:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc))

        payload["nip"] = self._validated_nip(payload["nip"])
        self._validate_tax_settings(payload["tax_type"], payload.get("ryczalt_rate"))
        if payload["tax_type"] != "RYCZALT":
            payload["ryczalt_rate"] = None

        has_profiles = session.scalar(
            select(BusinessProfile.id).where(BusinessProfile.owner_user_id == ctx.user_id).limit(1)
        )
        profile = BusinessProfile(owner_user_id=ctx.user_id, is_default=has_profiles is None, **payload)
        session.add(profile)
        try:
            session.commit()
        except IntegrityError:
            session.rollback()
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="business profile with this NIP already exists")
        session.refresh(profile)

        audit.record(
            actor_user_id=ctx.user_id,
            entity_type="profiles.business_profile",
            entity_id=str(profile.id),
            action="create",
            before=None,
            after={"nip": profile.nip, "name": profile.name, "is_default": profile.is_default},
            correlation_id=ctx.correlation_id,
        )
        return self._to_read(profile, ctx)

    def list_profiles(self, session: Session, ctx: AuthContext) -> list[BusinessProfileRead]:
        stmt: Select[tuple[BusinessProfile]] = select(BusinessProfile)
        if not ctx.entity_scope and not ctx.is_super_admin:
            stmt = stmt.where(BusinessProfile.owner_user_id == ctx.user_id)
        stmt = self.profile_repository.apply_scope_query(stmt, ctx)
        rows = session.scalars(stmt.order_by(BusinessProfile.is_default.desc(), BusinessProfile.name.asc())).all()
        return [self._to_read(row, ctx) for row in rows]

    def get_profile(self, session: Session, ctx: AuthContext, profile_id: uuid.UUID) -> BusinessProfileRead:
        return self._to_read(self.require_profile(session, ctx, profile_id), ctx)

    def update_profile(
        self,
        session: Session,
        ctx: AuthContext,
        profile_id: uuid.UUID,
        dto: BusinessProfileUpdate,
    ) -> BusinessProfileRead:
        profile = self.require_profile(session, ctx, profile_id)
        changes = dto.model_dump(mode="python", exclude_unset=True)
        try:
            self.profile_repository.validate_write_security(
                {"business_profile_id": profile.id, **changes},
                ctx,
                action="update",
            )
        except (ForbiddenFieldError, AuthorizationError) as exc:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc))

        if "nip" in changes and changes["nip"] is not None:
            changes["nip"] = self._validated_nip(changes["nip"])
        tax_type = changes.get("tax_type") or profile.tax_type
        ryczalt_rate = changes["ryczalt_rate"] if "ryczalt_rate" in changes else profile.ryczalt_rate
        self._validate_tax_settings(tax_type, ryczalt_rate)
        if tax_type != "RYCZALT":
            changes["ryczalt_rate"] = None

        before = {key: getattr(profile, key) for key in changes}
        for key, value in changes.items():
            if value is None and key not in {"regon", "street", "city", "postal_code", "ryczalt_rate"}:
                continue
            setattr(profile, key, value)

        try:
            session.commit()
        except IntegrityError:
            session.rollback()
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="business profile with this NIP already exists")
        session.refresh(profile)

        audit.record(
            actor_user_id=ctx.user_id,
            entity_type="profiles.business_profile",
            entity_id=str(profile.id),
            action="update",
            before={key: str(value) if value is not None else None for key, value in before.items()},
            after={key: str(getattr(profile, key)) for key in changes},
            correlation_id=ctx.correlation_id,
        )
        return self._to_read(profile, ctx)

    def set_default_profile(self, session: Session, ctx: AuthContext, profile_id: uuid.UUID) -> BusinessProfileRead:
        profile = self.require_profile(session, ctx, profile_id)
        session.execute(
            update(BusinessProfile)
            .where(BusinessProfile.owner_user_id == profile.owner_user_id, BusinessProfile.id != profile.id)
            .values(is_default=False)
        )
        profile.is_default = True
        session.commit()
        session.refresh(profile)
        audit.record(
            actor_user_id=ctx.user_id,
            entity_type="profiles.business_profile",
            entity_id=str(profile.id),
            action="set_default",
            before=None,
            after={"is_default": True},
            correlation_id=ctx.correlation_id,
        )
        return self._to_read(profile, ctx)

    def require_profile(self, session: Session, ctx: AuthContext, profile_id: uuid.UUID) -> BusinessProfile:
        """Load a profile the caller may act on, raising 404 or 403 otherwise."""

        profile = session.get(BusinessProfile, profile_id)
        if profile is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="business profile not found")
        try:
            self.profile_repository.validate_read_scope(ctx, business_profile_id=profile.id)
        except AuthorizationError as exc:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc))
        return profile

    @staticmethod
    def _validated_nip(raw: str) -> str:
        nip = normalize_nip(raw)
        if not is_valid_nip(nip):
            raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="invalid NIP checksum")
        return nip

    @staticmethod
    def _validate_tax_settings(tax_type: str, ryczalt_rate: Decimal | None) -> None:
        if tax_type != "RYCZALT":
            return
        if ryczalt_rate is None:
            raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="ryczalt_rate is required for RYCZALT")
        if Decimal(ryczalt_rate).normalize() not in {rate.normalize() for rate in RYCZALT_RATES}:
            raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="unsupported ryczalt_rate")

    def _to_read(self, profile: BusinessProfile, ctx: AuthContext) -> BusinessProfileRead:
        payload: dict[str, Any] = {field: getattr(profile, field) for field in _PROFILE_FIELDS}
        secured = self.profile_repository.apply_read_security(payload, ctx)
        return BusinessProfileRead.model_validate(secured)


business_profile_service = BusinessProfileService()
