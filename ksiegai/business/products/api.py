from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from ksiegai.api.deps import get_request_auth_context
from ksiegai.business.products.schemas import ProductCreate, ProductRead, ProductUpdate
from ksiegai.business.products.service import product_service
from ksiegai.core.database import get_db
from ksiegai.platform.security.context import AuthContext


router = APIRouter(prefix="/api/products", tags=["products"])


@router.post("", response_model=ProductRead, status_code=status.HTTP_201_CREATED)
def create_product(
    payload: ProductCreate,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_request_auth_context),
) -> ProductRead:
    return product_service.create_product(db, ctx, payload)


@router.get("", response_model=list[ProductRead])
def list_products(
    business_profile_id: uuid.UUID = Query(),
    active_only: bool = Query(default=True),
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_request_auth_context),
) -> list[ProductRead]:
    return product_service.list_products(db, ctx, business_profile_id=business_profile_id, active_only=active_only)


@router.get("/{product_id}", response_model=ProductRead)
def get_product(
    product_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_request_auth_context),
) -> ProductRead:
    return product_service.get_product(db, ctx, product_id)


@router.patch("/{product_id}", response_model=ProductRead)
def update_product(
    product_id: uuid.UUID,
    payload: ProductUpdate,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_request_auth_context),
) -> ProductRead:
    return product_service.update_product(db, ctx, product_id, payload)


@router.post("/{product_id}/deactivate", response_model=ProductRead)
def deactivate_product(
    product_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_request_auth_context),
) -> ProductRead:
    return product_service.deactivate_product(db, ctx, product_id)
