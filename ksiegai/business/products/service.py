from __future__ import annotations

import uuid
from dataclasses import dataclass

from fastapi import HTTPException, status
from sqlalchemy import Select, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ksiegai import audit
from ksiegai.business.products.models import Product
from ksiegai.business.products.repository import ProductRepository
from ksiegai.business.products.schemas import ProductCreate, ProductRead, ProductUpdate
from ksiegai.business.profiles.service import business_profile_service
from ksiegai.core.money import q
from ksiegai.platform.security.context import AuthContext
from ksiegai.platform.security.errors import AuthorizationError, ForbiddenFieldError


@dataclass(slots=True)
class ProductService:
    product_repository: ProductRepository = ProductRepository()

    def create_product(self, session: Session, ctx: AuthContext, dto: ProductCreate) -> ProductRead:
        payload = dto.model_dump(mode="python")
        try:
            self.product_repository.validate_write_security(payload, ctx, action="create")
        except (ForbiddenFieldError, AuthorizationError) as exc:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc))

        business_profile_service.require_profile(session, ctx, dto.business_profile_id)
        payload["unit_price_net"] = q(payload["unit_price_net"])

        product = Product(**payload)
        session.add(product)
        try:
            session.commit()
        except IntegrityError:
            session.rollback()
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="product already exists")
        session.refresh(product)

        audit.record(
            actor_user_id=ctx.user_id,
            entity_type="products.product",
            entity_id=str(product.id),
            action="create",
            before=None,
            after={"name": product.name, "unit_price_net": str(product.unit_price_net), "vat_rate": product.vat_rate},
            correlation_id=ctx.correlation_id,
        )
        return self._to_read(product, ctx)

    def list_products(
        self,
        session: Session,
        ctx: AuthContext,
        *,
        business_profile_id: uuid.UUID,
        active_only: bool = True,
    ) -> list[ProductRead]:
        stmt: Select[tuple[Product]] = select(Product).where(Product.business_profile_id == business_profile_id)
        if active_only:
            stmt = stmt.where(Product.is_active.is_(True))

        stmt = self.product_repository.apply_scope_query(stmt, ctx)
        rows = session.scalars(stmt.order_by(Product.name.asc())).all()

        payload = [ProductRead.model_validate(row).model_dump(mode="python") for row in rows]
        secured_rows = self.product_repository.apply_read_security_many(payload, ctx)
        return [ProductRead.model_validate(item) for item in secured_rows]

    def get_product(self, session: Session, ctx: AuthContext, product_id: uuid.UUID) -> ProductRead:
        return self._to_read(self.require_product(session, ctx, product_id), ctx)

    def update_product(self, session: Session, ctx: AuthContext, product_id: uuid.UUID, dto: ProductUpdate) -> ProductRead:
        product = self.require_product(session, ctx, product_id)
        changes = {key: value for key, value in dto.model_dump(mode="python", exclude_unset=True).items() if value is not None or key == "description"}
        try:
            self.product_repository.validate_write_security(
                changes,
                ctx,
                existing_scope={"business_profile_id": str(product.business_profile_id)},
                action="update",
            )
        except (ForbiddenFieldError, AuthorizationError) as exc:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc))

        if "unit_price_net" in changes:
            changes["unit_price_net"] = q(changes["unit_price_net"])
        before = {key: str(getattr(product, key)) for key in changes}
        for key, value in changes.items():
            setattr(product, key, value)
        try:
            session.commit()
        except IntegrityError:
            session.rollback()
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="product already exists")
        session.refresh(product)

        audit.record(
            actor_user_id=ctx.user_id,
            entity_type="products.product",
            entity_id=str(product.id),
            action="update",
            before=before,
            after={key: str(getattr(product, key)) for key in changes},
            correlation_id=ctx.correlation_id,
        )
        return self._to_read(product, ctx)

    def deactivate_product(self, session: Session, ctx: AuthContext, product_id: uuid.UUID) -> ProductRead:
        product = self.require_product(session, ctx, product_id)
        if product.is_active:
            product.is_active = False
            session.commit()
            session.refresh(product)
            audit.record(
                actor_user_id=ctx.user_id,
                entity_type="products.product",
                entity_id=str(product.id),
                action="deactivate",
                before={"is_active": True},
                after={"is_active": False},
                correlation_id=ctx.correlation_id,
            )
        return self._to_read(product, ctx)

    def require_product(self, session: Session, ctx: AuthContext, product_id: uuid.UUID) -> Product:
        product = self.product_repository.get_scoped(session, ctx, Product, product_id)
        if product is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="product not found")
        return product

    def _to_read(self, product: Product, ctx: AuthContext) -> ProductRead:
        secured = self.product_repository.apply_read_security(ProductRead.model_validate(product).model_dump(mode="python"), ctx)
        return ProductRead.model_validate(secured)


product_service = ProductService()
